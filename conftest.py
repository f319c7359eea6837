import pytest

from database import InMemoryStorage, JsonFileStorage
from library import Library


@pytest.fixture
def data_file(tmp_path):
    # tmp_path is already unique per test
    return tmp_path / "data" / "library.json"


@pytest.fixture
def lib(data_file):
    return Library(storage=JsonFileStorage(data_file))


@pytest.fixture
def memory_storage():
    return InMemoryStorage()


@pytest.fixture
def memory_lib(memory_storage):
    return Library(storage=memory_storage)
