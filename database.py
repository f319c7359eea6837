"""Snapshot persistence for the library catalog.

The catalog is stored as one whole-database snapshot: every book, patron
and loan plus the three id counters. ``Storage`` is the port the catalog
talks to; ``JsonFileStorage`` keeps the snapshot in a single JSON file and
``InMemoryStorage`` keeps it in process memory (handy for tests).

Snapshot payloads are validated with pydantic before the catalog rebuilds
its entities from them.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base class for storage failures."""


class PersistenceError(StorageError):
    """A snapshot could not be written.

    The catalog undoes the in-memory change that triggered the write before
    letting this propagate, so memory still matches the last saved snapshot.
    """


class CorruptSnapshotError(StorageError):
    """A stored snapshot exists but cannot be read or validated."""


# ------------------------- Snapshot records ------------------------- #
class BookRecord(BaseModel):
    id: int = Field(ge=1)
    title: str
    author: str
    year: int
    available: bool = True


class PatronRecord(BaseModel):
    id: int = Field(ge=1)
    name: str


class LoanRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(ge=1)
    book_id: int = Field(alias="bookId")
    patron_id: int = Field(alias="patronId")
    loan_date: str = Field(alias="loanDate")
    # None while the loan is active; omitted from the serialized form
    return_date: Optional[str] = Field(default=None, alias="returnDate")

    @field_validator("loan_date", "return_date")
    @classmethod
    def _iso_timestamp(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            # Raises ValueError for anything that is not ISO-8601
            datetime.fromisoformat(value)
        return value


class NextIds(BaseModel):
    book: int = Field(default=1, ge=1)
    patron: int = Field(default=1, ge=1)
    loan: int = Field(default=1, ge=1)


class Snapshot(BaseModel):
    """The persisted aggregate: all entities plus the next-id counters."""

    model_config = ConfigDict(populate_by_name=True)

    books: List[BookRecord] = Field(default_factory=list)
    patrons: List[PatronRecord] = Field(default_factory=list)
    loans: List[LoanRecord] = Field(default_factory=list)
    next_ids: NextIds = Field(default_factory=NextIds, alias="nextIds")

    @model_validator(mode="after")
    def _entities_consistent(self) -> "Snapshot":
        for kind, records in (("book", self.books), ("patron", self.patrons), ("loan", self.loans)):
            duplicates = sorted(i for i, n in Counter(r.id for r in records).items() if n > 1)
            if duplicates:
                raise ValueError(f"duplicate {kind} ids: {duplicates}")

        active = Counter(loan.book_id for loan in self.loans if loan.return_date is None)
        for book_id, count in active.items():
            if count > 1:
                raise ValueError(f"book {book_id} has {count} active loans")
        for book in self.books:
            # A book is on loan exactly when it has an active loan
            if book.available == (book.id in active):
                state = "available" if book.available else "on loan"
                raise ValueError(f"book {book.id} is {state} but has {active.get(book.id, 0)} active loans")
        return self

    @model_validator(mode="after")
    def _counters_above_stored_ids(self) -> "Snapshot":
        # Counters must never hand out an id that is already taken
        for field, records in (("book", self.books), ("patron", self.patrons), ("loan", self.loans)):
            highest = max((r.id for r in records), default=0)
            if getattr(self.next_ids, field) <= highest:
                logger.warning(f"Repairing next {field} id: {getattr(self.next_ids, field)} -> {highest + 1}")
                setattr(self.next_ids, field, highest + 1)
        return self

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# ------------------------- Storage port ------------------------- #
class Storage(ABC):
    """Save/load contract for a single catalog snapshot."""

    @abstractmethod
    def save(self, snapshot: Snapshot) -> None:
        """Persist the full snapshot, replacing whatever was stored before."""

    @abstractmethod
    def load(self) -> Optional[Snapshot]:
        """Return the most recently saved snapshot, or None on first run."""


class InMemoryStorage(Storage):
    """Keeps the last snapshot in memory. Nothing survives the process."""

    def __init__(self, snapshot: Optional[Snapshot] = None) -> None:
        self._snapshot = snapshot.model_copy(deep=True) if snapshot is not None else None
        self.save_count = 0

    def save(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot.model_copy(deep=True)
        self.save_count += 1

    def load(self) -> Optional[Snapshot]:
        if self._snapshot is None:
            return None
        return self._snapshot.model_copy(deep=True)


class JsonFileStorage(Storage):
    """Stores the snapshot as one UTF-8 JSON file.

    With ``strict=False`` an unreadable or invalid file is logged and treated
    as "no prior data", so the catalog still starts. With ``strict=True`` a
    ``CorruptSnapshotError`` is raised instead. Write failures always raise
    ``PersistenceError``.
    """

    def __init__(self, path: Union[str, os.PathLike], strict: bool = False) -> None:
        self.path = Path(path)
        self.strict = strict

    def _ensure_data_dir(self) -> None:
        if not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.path.parent}")

    def save(self, snapshot: Snapshot) -> None:
        payload = snapshot.to_json_dict()
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self._ensure_data_dir()
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            logger.error(f"Failed to write snapshot to {self.path}: {exc}")
            raise PersistenceError(f"Could not write snapshot to {self.path}") from exc
        logger.info(f"Snapshot saved to {self.path}")

    def load(self) -> Optional[Snapshot]:
        if not self.path.exists():
            logger.info(f"No previous snapshot at {self.path}")
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            snapshot = Snapshot.model_validate(raw)
        except (OSError, ValueError) as exc:
            # json.JSONDecodeError, UnicodeDecodeError and pydantic's
            # ValidationError are all ValueErrors
            if self.strict:
                raise CorruptSnapshotError(f"Snapshot at {self.path} is unreadable: {exc}") from exc
            logger.error(f"Ignoring unreadable snapshot at {self.path}: {exc}")
            return None
        logger.info(f"Snapshot loaded from {self.path}")
        return snapshot
