import pytest

from campus_library.config import settings
from campus_library.library import Library


@pytest.fixture
def db_file(tmp_path, monkeypatch):
    # Point every component (CLI, API, default store) at a per-test database
    path = str(tmp_path / "library_test.db")
    monkeypatch.setattr(settings, "data_file", path)
    return path


@pytest.fixture
def lib(db_file):
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def dune():
    return {"bookName": "Dune", "authorName": "Herbert", "quantity": "2"}


@pytest.fixture
def ana():
    return {"studentName": "Ana", "year": "1st Year", "program": "BSIT"}
