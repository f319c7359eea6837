from datetime import datetime, timedelta, timezone

import pytest

from database import InMemoryStorage, JsonFileStorage, PersistenceError
from library import Failure, Library


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        value = self.now
        self.now = self.now + timedelta(hours=1)
        return value


def test_empty_catalog(memory_lib):
    assert memory_lib.list_books() == []
    assert memory_lib.list_patrons() == []
    assert memory_lib.list_loans() == []
    assert memory_lib.statistics().to_dict() == {
        "total_books": 0, "available_count": 0, "active_loan_count": 0
    }


def test_create_book_and_patron(memory_lib):
    book = memory_lib.create_book("Ulysses", "James Joyce", 1922)
    other = memory_lib.create_book("", "", 0)
    patron = memory_lib.create_patron("Ana")

    assert (book.id, other.id, patron.id) == (1, 2, 1)
    assert book.is_available()
    assert [b.id for b in memory_lib.list_books()] == [1, 2]
    assert memory_lib.list_patrons() == [patron]
    assert memory_lib.find_book(2) is other
    assert memory_lib.find_patron(1) is patron
    assert memory_lib.find_book(99) is None


def test_lend_unknown_book(memory_lib, memory_storage):
    memory_lib.create_patron("Ana")
    saves = memory_storage.save_count

    result = memory_lib.lend_book(42, 1)
    assert result.ok is False
    assert result.error is Failure.BOOK_NOT_FOUND
    assert result.error.entity == "Book"
    assert result.loan is None
    assert memory_lib.list_loans() == []
    assert memory_storage.save_count == saves


def test_lend_unknown_book_checked_before_patron(memory_lib):
    result = memory_lib.lend_book(1, 1)
    assert result.error is Failure.BOOK_NOT_FOUND


def test_lend_unknown_patron(memory_lib):
    book = memory_lib.create_book("Ulysses", "James Joyce", 1922)
    result = memory_lib.lend_book(book.id, 7)
    assert result.ok is False
    assert result.error is Failure.PATRON_NOT_FOUND
    assert result.error.entity == "Patron"
    assert book.is_available()


def test_lend_unavailable_book(memory_lib, memory_storage):
    book = memory_lib.create_book("Ulysses", "James Joyce", 1922)
    memory_lib.create_patron("Ana")
    memory_lib.create_patron("Carlos")
    assert memory_lib.lend_book(book.id, 1).ok
    saves = memory_storage.save_count

    result = memory_lib.lend_book(book.id, 2)
    assert result.ok is False
    assert result.error is Failure.UNAVAILABLE
    assert result.message == "Book not available"
    assert book.is_available() is False
    assert len(memory_lib.list_loans()) == 1
    assert memory_storage.save_count == saves


def test_failed_lend_does_not_consume_loan_id(memory_lib):
    book = memory_lib.create_book("Ulysses", "James Joyce", 1922)
    memory_lib.create_patron("Ana")
    memory_lib.lend_book(book.id, 99)

    result = memory_lib.lend_book(book.id, 1)
    assert result.loan.id == 1


def test_lend_records_loan_date():
    clock = FakeClock()
    lib = Library(storage=InMemoryStorage(), clock=clock)
    lib.create_book("Ulysses", "James Joyce", 1922)
    lib.create_patron("Ana")

    result = lib.lend_book(1, 1)
    assert result.ok
    assert result.message == "Loan registered"
    assert result.loan.loan_date == "2026-03-01T09:00:00+00:00"
    assert result.loan.is_active()

    returned = lib.return_book(1)
    assert returned.ok
    assert lib.find_loan(1).return_date == "2026-03-01T10:00:00+00:00"


def test_return_unknown_loan(memory_lib, memory_storage):
    memory_lib.create_book("Ulysses", "James Joyce", 1922)
    saves = memory_storage.save_count

    result = memory_lib.return_book(5)
    assert result.ok is False
    assert result.error is Failure.LOAN_NOT_FOUND
    assert result.error.entity == "Loan"
    assert memory_storage.save_count == saves
    assert memory_lib.statistics().available_count == 1


def test_return_with_missing_book():
    storage = InMemoryStorage()
    lib = Library(storage=storage)
    lib.create_book("Ulysses", "James Joyce", 1922)
    lib.create_patron("Ana")
    lib.lend_book(1, 1)

    # Drop the book from the stored snapshot behind the catalog's back
    snapshot = storage.load()
    snapshot.books = []
    broken = Library(storage=InMemoryStorage(snapshot))

    result = broken.return_book(1)
    assert result.ok is False
    assert result.error is Failure.BOOK_NOT_FOUND
    assert broken.find_loan(1).is_active()


def test_each_mutation_saves_once(memory_lib, memory_storage):
    memory_lib.create_book("Ulysses", "James Joyce", 1922)
    memory_lib.create_patron("Ana")
    memory_lib.lend_book(1, 1)
    memory_lib.return_book(1)
    assert memory_storage.save_count == 4


def test_list_loans_active_only(memory_lib):
    for title in ("A", "B", "C"):
        memory_lib.create_book(title, "Author", 2000)
    memory_lib.create_patron("Ana")
    for book_id in (1, 2, 3):
        memory_lib.lend_book(book_id, 1)
    memory_lib.return_book(2)

    assert [loan.id for loan in memory_lib.list_loans()] == [1, 2, 3]
    assert [loan.id for loan in memory_lib.list_loans(active_only=True)] == [1, 3]

    stats = memory_lib.statistics()
    assert stats.total_books == 3
    assert stats.available_count == 1
    assert stats.active_loan_count == len(memory_lib.list_loans(True))
    assert stats.available_count <= stats.total_books


def test_end_to_end_scenario(lib):
    book = lib.create_book("Cien años de soledad", "Gabriel García Márquez", 1967)
    patron = lib.create_patron("Ana Pérez")
    assert book.id == 1 and book.is_available()
    assert patron.id == 1

    lent = lib.lend_book(1, 1)
    assert lent.ok is True
    assert lent.loan.id == 1
    assert book.is_available() is False

    again = lib.lend_book(1, 1)
    assert again.ok is False
    assert again.error is Failure.UNAVAILABLE

    returned = lib.return_book(1)
    assert returned.ok is True
    assert returned.message == "Book returned"
    assert book.is_available() is True
    assert lib.find_loan(1).is_active() is False

    twice = lib.return_book(1)
    assert twice.ok is False
    assert twice.error is Failure.ALREADY_RETURNED

    assert lib.statistics().to_dict() == {
        "total_books": 1, "available_count": 1, "active_loan_count": 0
    }


def test_persistence_across_instances(data_file):
    lib = Library(storage=JsonFileStorage(data_file))
    lib.create_book("Sapiens", "Yuval Noah Harari", 2011)
    lib.create_book("Dune", "Frank Herbert", 1965)
    lib.create_patron("Ana")
    lib.lend_book(1, 1)
    lib.lend_book(2, 1)
    lib.return_book(2)

    lib2 = Library(storage=JsonFileStorage(data_file))
    assert [b.to_dict() for b in lib2.list_books()] == [b.to_dict() for b in lib.list_books()]
    assert [p.to_dict() for p in lib2.list_patrons()] == [p.to_dict() for p in lib.list_patrons()]
    assert [loan.to_dict() for loan in lib2.list_loans()] == [loan.to_dict() for loan in lib.list_loans()]
    assert [loan.id for loan in lib2.list_loans(active_only=True)] == [1]
    assert lib2.find_book(1).is_available() is False

    # Counters continue where the first instance stopped
    assert lib2.create_book("Emma", "Jane Austen", 1815).id == 3
    assert lib2.create_patron("Carlos").id == 2
    assert lib2.lend_book(3, 2).loan.id == 3


def test_snapshot_matches_state(memory_lib):
    memory_lib.create_book("Ulysses", "James Joyce", 1922)
    memory_lib.create_patron("Ana")
    memory_lib.lend_book(1, 1)

    data = memory_lib.snapshot().to_json_dict()
    assert data["books"] == [{"id": 1, "title": "Ulysses", "author": "James Joyce",
                              "year": 1922, "available": False}]
    assert data["patrons"] == [{"id": 1, "name": "Ana"}]
    assert data["loans"][0]["bookId"] == 1
    assert "returnDate" not in data["loans"][0]
    assert data["nextIds"] == {"book": 2, "patron": 2, "loan": 2}


@pytest.mark.parametrize("failure,entity", [
    (Failure.BOOK_NOT_FOUND, "Book"),
    (Failure.PATRON_NOT_FOUND, "Patron"),
    (Failure.LOAN_NOT_FOUND, "Loan"),
    (Failure.UNAVAILABLE, None),
    (Failure.ALREADY_RETURNED, None),
])
def test_failure_entities(failure, entity):
    assert failure.entity == entity


class FlakyStorage(InMemoryStorage):
    """In-memory storage whose writes can be switched to fail."""

    def __init__(self):
        super().__init__()
        self.fail = False

    def save(self, snapshot):
        if self.fail:
            raise PersistenceError("disk full")
        super().save(snapshot)


def test_failed_save_reverts_lend():
    storage = FlakyStorage()
    lib = Library(storage=storage)
    book = lib.create_book("Ulysses", "James Joyce", 1922)
    lib.create_patron("Ana")

    storage.fail = True
    with pytest.raises(PersistenceError):
        lib.lend_book(1, 1)
    assert book.is_available() is True
    assert lib.list_loans() == []
    assert lib.statistics().active_loan_count == 0

    storage.fail = False
    result = lib.lend_book(1, 1)
    assert result.ok
    assert result.loan.id == 1


def test_failed_save_reverts_return():
    storage = FlakyStorage()
    lib = Library(storage=storage)
    book = lib.create_book("Ulysses", "James Joyce", 1922)
    lib.create_patron("Ana")
    lib.lend_book(1, 1)

    storage.fail = True
    with pytest.raises(PersistenceError):
        lib.return_book(1)
    assert book.is_available() is False
    assert lib.find_loan(1).is_active() is True
    assert memory_matches_storage(lib, storage)

    storage.fail = False
    assert lib.return_book(1).ok
    assert book.is_available() is True


def test_failed_save_reverts_creation():
    storage = FlakyStorage()
    lib = Library(storage=storage)
    lib.create_book("Ulysses", "James Joyce", 1922)

    storage.fail = True
    with pytest.raises(PersistenceError):
        lib.create_book("Dune", "Frank Herbert", 1965)
    with pytest.raises(PersistenceError):
        lib.create_patron("Ana")
    assert [b.id for b in lib.list_books()] == [1]
    assert lib.list_patrons() == []

    storage.fail = False
    assert lib.create_book("Dune", "Frank Herbert", 1965).id == 2
    assert lib.create_patron("Ana").id == 1


def memory_matches_storage(lib, storage):
    return lib.snapshot().to_json_dict() == storage.load().to_json_dict()
