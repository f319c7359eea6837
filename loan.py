from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class Loan:
    """A borrowing transaction between a patron and a book.

    The loan is active until ``return_date`` is recorded. Once set, the
    return date is never changed. Dates are ISO-8601 strings.
    """

    def __init__(self, loan_id: int, book_id: int, patron_id: int, loan_date: str,
                 return_date: Optional[str] = None) -> None:
        self._id = loan_id
        self._book_id = book_id
        self._patron_id = patron_id
        self._loan_date = loan_date
        self._return_date = return_date

    @property
    def id(self) -> int:
        return self._id

    @property
    def book_id(self) -> int:
        return self._book_id

    @property
    def patron_id(self) -> int:
        return self._patron_id

    @property
    def loan_date(self) -> str:
        return self._loan_date

    @property
    def return_date(self) -> Optional[str]:
        return self._return_date

    @property
    def status(self) -> str:
        """Human readable status: ACTIVE or RETURNED."""
        return "ACTIVE" if self.is_active() else "RETURNED"

    def is_active(self) -> bool:
        return self._return_date is None

    def mark_returned(self, timestamp: str) -> bool:
        """Record the return date. Returns False if the loan was already closed."""
        if not self.is_active():
            logger.warning(f"Loan {self._id} was already returned")
            return False
        self._return_date = timestamp
        logger.debug(f"Loan {self._id} marked as returned")
        return True

    def to_dict(self) -> dict:
        data = {
            "id": self._id,
            "bookId": self._book_id,
            "patronId": self._patron_id,
            "loanDate": self._loan_date,
        }
        if self._return_date is not None:
            data["returnDate"] = self._return_date
        return data

    @staticmethod
    def from_dict(data: dict) -> "Loan":
        return Loan(
            loan_id=data["id"],
            book_id=data["bookId"],
            patron_id=data["patronId"],
            loan_date=data["loanDate"],
            return_date=data.get("returnDate"),
        )
