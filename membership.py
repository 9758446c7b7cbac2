import logging
from typing import List, Optional

import database
from borrower import Borrower, MembershipType
from errors import DuplicateResourceError, ResourceNotFoundError
from stores import MembershipStore
from utils.validators import EmailValidator, TextValidator

logger = logging.getLogger(__name__)


class Membership:
    """Borrower registration and lookup."""

    def __init__(self, db_file: Optional[str] = None, store: Optional[MembershipStore] = None) -> None:
        self.db_file = db_file
        database.initialize_database(db_file)
        self.store = store or MembershipStore(db_file)

    def register(self, name: str, email: str, membership_type: Optional[MembershipType | str] = None) -> Borrower:
        """Register a borrower; the loan limit is fixed by the tier chosen here."""
        if not TextValidator.validate_name(name):
            raise ValueError("Name must be provided")
        email = EmailValidator.normalize_email(email)

        with database.transaction(self.db_file):
            if self.store.exists_by_email(email):
                raise DuplicateResourceError("A borrower with this email already exists.")
            borrower = self.store.save(Borrower(name=name.strip(), email=email, membership_type=membership_type))

        logger.info("Registered borrower %s (%s, limit %d)",
                    borrower.id, borrower.membership_type.value, borrower.max_borrow_limit)
        return borrower

    def get_borrower(self, borrower_id: str) -> Borrower:
        borrower = self.store.find_by_id(borrower_id)
        if not borrower:
            raise ResourceNotFoundError(f"Borrower not found with id: {borrower_id}")
        return borrower

    def list_borrowers(self) -> List[Borrower]:
        return self.store.find_all()
