from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class Book:
    """Represents a single book item in the library catalog."""

    def __init__(self, book_id: int, title: str, author: str, year: int) -> None:
        self._id = book_id
        self.title = title
        self.author = author
        self.year = year
        self._available = True

    @property
    def id(self) -> int:
        return self._id

    @property
    def available(self) -> bool:
        return self._available

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.year})"

    def is_available(self) -> bool:
        return self._available

    def lend(self) -> bool:
        """Mark the book as on loan. Returns False if it already was."""
        if not self._available:
            logger.warning(f"Book '{self.title}' is already on loan")
            return False
        self._available = False
        logger.debug(f"Book '{self.title}' lent")
        return True

    def return_(self) -> bool:
        """Mark the book as available again. Returns False if it already was."""
        if self._available:
            logger.warning(f"Book '{self.title}' was already available")
            return False
        self._available = True
        logger.debug(f"Book '{self.title}' returned")
        return True

    def to_dict(self) -> dict:
        return {
            "id": self._id,
            "title": self.title,
            "author": self.author,
            "year": self.year,
            "available": self._available,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        book = Book(book_id=data["id"], title=data["title"], author=data["author"], year=data["year"])
        # Restore loan state through the regular transition
        if data.get("available") is False:
            book.lend()
        return book
