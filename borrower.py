from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from config import settings


class MembershipType(str, Enum):
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"


def borrow_limit_for(membership_type: MembershipType | None) -> int:
    """Maximum number of simultaneous open loans for a membership tier."""
    if membership_type == MembershipType.PREMIUM:
        return settings.premium_borrow_limit
    return settings.basic_borrow_limit


class Borrower:
    """A registered library member."""

    def __init__(self, name: str, email: str, membership_type: MembershipType | str | None = None,
                 max_borrow_limit: int | None = None, id: str | None = None) -> None:
        self.id = id
        self.name = name
        self.email = email
        self.membership_type = MembershipType(membership_type.upper()) if membership_type else MembershipType.BASIC
        self.max_borrow_limit = (
            borrow_limit_for(self.membership_type) if max_borrow_limit is None else max_borrow_limit
        )

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.name} <{self.email}> [{self.membership_type.value}]"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "membership_type": self.membership_type.value,
            "max_borrow_limit": self.max_borrow_limit,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Borrower":
        return Borrower(
            id=data["id"],
            name=data["name"],
            email=data["email"],
            membership_type=data["membership_type"],
            max_borrow_limit=data["max_borrow_limit"],
        )
