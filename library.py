import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from book import Book
from config import settings
from database import BookRecord, JsonFileStorage, LoanRecord, NextIds, PatronRecord, Snapshot, Storage, StorageError
from loan import Loan
from patron import Patron

logger = logging.getLogger(__name__)


class Failure(Enum):
    """Why a lend or return was refused."""

    BOOK_NOT_FOUND = ("Book", "Book not found")
    PATRON_NOT_FOUND = ("Patron", "Patron not found")
    LOAN_NOT_FOUND = ("Loan", "Loan not found")
    UNAVAILABLE = (None, "Book not available")
    ALREADY_RETURNED = (None, "Loan already returned")

    @property
    def entity(self) -> Optional[str]:
        """Kind of entity that was missing, for the not-found failures."""
        return self.value[0]

    @property
    def message(self) -> str:
        return self.value[1]


@dataclass(frozen=True)
class OperationResult:
    ok: bool
    message: str
    error: Optional[Failure] = None
    loan: Optional[Loan] = None

    @classmethod
    def success(cls, message: str, loan: Optional[Loan] = None) -> "OperationResult":
        return cls(ok=True, message=message, loan=loan)

    @classmethod
    def failure(cls, error: Failure) -> "OperationResult":
        return cls(ok=False, message=error.message, error=error)


@dataclass(frozen=True)
class Statistics:
    total_books: int
    available_count: int
    active_loan_count: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_books": self.total_books,
            "available_count": self.available_count,
            "active_loan_count": self.active_loan_count,
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Library:
    """Owns the books, patrons and loans of the catalog and persists them.

    Every successful mutation writes a full snapshot through the injected
    storage before returning. Lend/return refusals are reported as
    ``OperationResult`` values and never raised.
    """

    def __init__(self, storage: Optional[Storage] = None,
                 clock: Optional[Callable[[], datetime]] = None) -> None:
        self.storage: Storage = storage or JsonFileStorage(settings.data_file, strict=settings.strict_load)
        self._clock = clock or _utc_now

        self._books: Dict[int, Book] = {}
        self._patrons: Dict[int, Patron] = {}
        self._loans: Dict[int, Loan] = {}
        self._next_ids = NextIds()

        self._load()

    # ------------------------- Persistence ------------------------- #
    def snapshot(self) -> Snapshot:
        """Build the persistable aggregate from the current in-memory state."""
        return Snapshot(
            books=[BookRecord.model_validate(b.to_dict()) for b in self._books.values()],
            patrons=[PatronRecord.model_validate(p.to_dict()) for p in self._patrons.values()],
            loans=[LoanRecord.model_validate(loan.to_dict()) for loan in self._loans.values()],
            next_ids=self._next_ids.model_copy(),
        )

    def _save(self, undo: Callable[[], None]) -> None:
        """Persist the current state, reverting the pending change if the write fails."""
        try:
            self.storage.save(self.snapshot())
        except StorageError:
            undo()
            logger.error("Snapshot write failed; in-memory change reverted")
            raise

    def _load(self) -> None:
        data = self.storage.load()
        if data is None:
            logger.info("Starting with an empty catalog")
            return

        for record in data.books:
            self._books[record.id] = Book.from_dict(record.model_dump())
        for record in data.patrons:
            self._patrons[record.id] = Patron.from_dict(record.model_dump())
        for record in data.loans:
            self._loans[record.id] = Loan.from_dict(record.model_dump(by_alias=True))
        self._next_ids = data.next_ids.model_copy()

        logger.info(
            f"Loaded {len(self._books)} books, {len(self._patrons)} patrons, {len(self._loans)} loans"
        )

    def _allocate_id(self, kind: str) -> int:
        value = getattr(self._next_ids, kind)
        setattr(self._next_ids, kind, value + 1)
        return value

    def _timestamp(self) -> str:
        return self._clock().isoformat()

    def _discard(self, collection: dict, kind: str, entity_id: int) -> None:
        # Undo a creation: drop the entity and hand its id out again
        del collection[entity_id]
        setattr(self._next_ids, kind, entity_id)

    # ------------------------- Books & patrons ------------------------- #
    def create_book(self, title: str, author: str, year: int) -> Book:
        book = Book(self._allocate_id("book"), title, author, year)
        self._books[book.id] = book
        self._save(lambda: self._discard(self._books, "book", book.id))
        logger.info(f"Created book {book.id}: {book.title}")
        return book

    def list_books(self) -> List[Book]:
        return list(self._books.values())

    def find_book(self, book_id: int) -> Optional[Book]:
        return self._books.get(book_id)

    def create_patron(self, name: str) -> Patron:
        patron = Patron(self._allocate_id("patron"), name)
        self._patrons[patron.id] = patron
        self._save(lambda: self._discard(self._patrons, "patron", patron.id))
        logger.info(f"Created patron {patron.id}: {patron.name}")
        return patron

    def list_patrons(self) -> List[Patron]:
        return list(self._patrons.values())

    def find_patron(self, patron_id: int) -> Optional[Patron]:
        return self._patrons.get(patron_id)

    # ------------------------- Loans ------------------------- #
    def lend_book(self, book_id: int, patron_id: int) -> OperationResult:
        """Lend a book to a patron.

        Checks run in order (book exists, patron exists, book available) and
        the first failing one is returned without touching any state.
        """
        book = self._books.get(book_id)
        if book is None:
            return self._refuse(Failure.BOOK_NOT_FOUND, f"lend of book {book_id}")
        if patron_id not in self._patrons:
            return self._refuse(Failure.PATRON_NOT_FOUND, f"lend to patron {patron_id}")
        if not book.is_available():
            return self._refuse(Failure.UNAVAILABLE, f"lend of book {book_id}")

        loan = Loan(self._allocate_id("loan"), book_id, patron_id, self._timestamp())
        book.lend()
        self._loans[loan.id] = loan

        def undo() -> None:
            self._discard(self._loans, "loan", loan.id)
            book.return_()

        self._save(undo)

        logger.info(f"Loan {loan.id}: book {book_id} lent to patron {patron_id}")
        return OperationResult.success("Loan registered", loan=loan)

    def return_book(self, loan_id: int) -> OperationResult:
        """Close an active loan and make its book available again."""
        loan = self._loans.get(loan_id)
        if loan is None:
            return self._refuse(Failure.LOAN_NOT_FOUND, f"return of loan {loan_id}")
        if not loan.is_active():
            return self._refuse(Failure.ALREADY_RETURNED, f"return of loan {loan_id}")

        book = self._books.get(loan.book_id)
        if book is None:
            return self._refuse(Failure.BOOK_NOT_FOUND, f"return of loan {loan_id} (book {loan.book_id})")

        loan.mark_returned(self._timestamp())
        book.return_()

        def undo() -> None:
            # Return dates are write-once, so put back an open copy of the loan
            self._loans[loan_id] = Loan(loan.id, loan.book_id, loan.patron_id, loan.loan_date)
            book.lend()

        self._save(undo)

        logger.info(f"Loan {loan_id}: book {book.id} returned")
        return OperationResult.success("Book returned", loan=loan)

    def list_loans(self, active_only: bool = False) -> List[Loan]:
        loans = list(self._loans.values())
        if active_only:
            return [loan for loan in loans if loan.is_active()]
        return loans

    def find_loan(self, loan_id: int) -> Optional[Loan]:
        return self._loans.get(loan_id)

    @staticmethod
    def _refuse(error: Failure, action: str) -> OperationResult:
        logger.warning(f"Refused {action}: {error.message}")
        return OperationResult.failure(error)

    # ------------------------- Reporting ------------------------- #
    def statistics(self) -> Statistics:
        """Aggregate counts, computed from the current state on every call."""
        return Statistics(
            total_books=len(self._books),
            available_count=sum(1 for b in self._books.values() if b.is_available()),
            active_loan_count=len(self.list_loans(active_only=True)),
        )
