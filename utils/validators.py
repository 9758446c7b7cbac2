import re
from typing import Optional

from email_validator import EmailNotValidError, validate_email


class ISBNValidator:
    """ISBN-10 / ISBN-13 normalization and checksum validation."""

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[^0-9Xx]", "", raw)
        return s.upper()

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        if not isbn:
            return False
        s = ISBNValidator.normalize_isbn(isbn)
        if len(s) == 10:
            # weighted 1..10 checksum, 'X' stands for 10 in the last position
            total = 0
            for i, ch in enumerate(s[:-1], 1):
                if not ch.isdigit():
                    return False
                total += i * int(ch)
            check = s[-1]
            if check == 'X':
                check_val = 10
            elif check.isdigit():
                check_val = int(check)
            else:
                return False
            return (total + 10 * check_val) % 11 == 0
        elif len(s) == 13 and s.isdigit():
            total = 0
            for i, ch in enumerate(s[:-1]):
                factor = 1 if i % 2 == 0 else 3
                total += factor * int(ch)
            check_val = (10 - (total % 10)) % 10
            return check_val == int(s[-1])
        return False


class TextValidator:
    """Basic checks for free-text fields."""

    @staticmethod
    def has_text(text: Optional[str]) -> bool:
        return text is not None and bool(text.strip())

    @staticmethod
    def validate_title(title: Optional[str]) -> bool:
        return TextValidator.has_text(title)

    @staticmethod
    def validate_name(name: Optional[str]) -> bool:
        # must not be digits only
        if not TextValidator.has_text(name):
            return False
        return not name.strip().isdigit()


class EmailValidator:
    """Email checks delegated to email-validator, the same library behind pydantic's EmailStr."""

    @staticmethod
    def normalize_email(raw: Optional[str]) -> str:
        """Return the validated address lowercased; raise ValueError when it is not a valid email."""
        try:
            info = validate_email((raw or "").strip(), check_deliverability=False)
        except EmailNotValidError as e:
            raise ValueError(f"A valid email must be provided: {e}") from e
        return info.normalized.lower()
