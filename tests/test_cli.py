import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from campus_library.main import LibraryManager, app
from campus_library.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def fresh_cli(db_file, monkeypatch):
    # --output writes to the environment; keep it from leaking between tests
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")
    LibraryManager.reset()
    yield
    LibraryManager.reset()


@pytest.fixture
def stocked(lib, dune, ana):
    lib.create_entity("book", "101", dune)
    lib.create_entity("student", "S1", ana)
    return lib


def test_books_empty(lib):
    result = runner.invoke(app, ["books"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_add_book(lib):
    result = runner.invoke(app, ["add-book", "101", "Dune", "Herbert", "2"])
    assert result.exit_code == 0
    assert "Book added successfully!" in result.stdout
    assert lib.read_entity("book", "101")["quantity"] == "2"

    result = runner.invoke(app, ["books"])
    assert "101 - Dune by Herbert (qty 2)" in result.stdout


def test_add_book_invalid_quantity(lib):
    result = runner.invoke(app, ["add-book", "101", "Dune", "Herbert", "abc"])
    assert result.exit_code == 1
    assert "Error: Please correct the errors before proceeding." in result.stdout
    assert "quantity:" in result.stdout
    assert lib.list_books() == []


def test_add_student(lib):
    result = runner.invoke(app, ["add-student", "S1", "Ana", "--year", "1st Year", "--program", "BSIT"])
    assert result.exit_code == 0
    assert "Student added successfully!" in result.stdout
    assert lib.get_student("S1").program == "BSIT"

    result = runner.invoke(app, ["students"])
    assert "S1 - Ana (1st Year, BSIT)" in result.stdout


def test_add_student_unknown_program(lib):
    result = runner.invoke(app, ["add-student", "S1", "Ana", "-y", "1st Year", "-p", "BSXX"])
    assert result.exit_code == 1
    assert "program:" in result.stdout


def test_borrow(stocked):
    result = runner.invoke(app, ["borrow", "101", "S1", "2024-01-10", "--from", "2024-01-01"])
    assert result.exit_code == 0
    assert "Book borrowed by Ana from 2024-01-01 to 2024-01-10" in result.stdout
    assert stocked.read_entity("book", "101")["quantity"] == "1"


def test_borrow_out_of_stock(stocked):
    stocked.update_entity("book", "101", {"quantity": "1"})
    runner.invoke(app, ["borrow", "101", "S1", "2024-01-10", "--from", "2024-01-01"])

    result = runner.invoke(app, ["borrow", "101", "S1", "2024-01-10", "--from", "2024-01-01"])
    assert result.exit_code == 1
    assert "Unavailable: Book with ID 101 is currently out of stock." in result.stdout
    assert len(stocked.list_borrow_records()) == 1


def test_borrow_bad_dates(stocked):
    result = runner.invoke(app, ["borrow", "101", "S1", "2024-01-01", "--from", "2024-01-10"])
    assert result.exit_code == 1
    assert "dateReturn: Return date must be after the borrow date." in result.stdout


def test_loans_filtered_by_student(stocked, ana):
    stocked.create_entity("student", "S2", dict(ana, studentName="Ben"))
    stocked.borrow("101", "S1", "2024-01-01", "2024-01-10")
    stocked.borrow("101", "S2", "2024-01-02", "2024-01-10")

    result = runner.invoke(app, ["loans", "--student", "s1"])
    assert result.exit_code == 0
    assert "101 -> S1 (2024-01-01 to 2024-01-10)" in result.stdout
    assert "S2" not in result.stdout

    result = runner.invoke(app, ["loans", "-s", "nobody"])
    assert "No borrowed books found." in result.stdout


def test_stats_json(stocked):
    stocked.borrow("101", "S1", "2024-01-01", "2024-01-10")

    result = runner.invoke(app, ["--output", "json", "stats"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"total_books": 1, "total_students": 1, "borrowed": 1}


def test_stats_plain(lib):
    result = runner.invoke(app, ["stats"])
    assert result.exit_code == 0
    assert "Total Books: 0" in result.stdout
    assert "Borrowed Books: 0" in result.stdout
    assert "Total Students: 0" in result.stdout


def test_update(stocked):
    result = runner.invoke(app, ["update", "book", "101", "quantity=5"])
    assert result.exit_code == 0
    assert "Book updated successfully!" in result.stdout
    assert "quantity: 5" in result.stdout
    assert stocked.read_entity("book", "101")["bookName"] == "Dune"


def test_update_bad_assignment(stocked):
    result = runner.invoke(app, ["update", "book", "101", "quantity"])
    assert result.exit_code == 2
    assert "expected FIELD=VALUE" in result.stdout


def test_show_missing():
    result = runner.invoke(app, ["show", "book", "nope"])
    assert result.exit_code == 1
    assert "Book with ID nope not found." in result.stdout


def test_show(stocked):
    result = runner.invoke(app, ["show", "student", "S1"])
    assert result.exit_code == 0
    assert "Student S1" in result.stdout
    assert "studentName: Ana" in result.stdout


def test_remove_twice(stocked):
    for _ in range(2):
        result = runner.invoke(app, ["remove", "book", "101"])
        assert result.exit_code == 0
        assert "Book deleted successfully!" in result.stdout
    assert stocked.list_books() == []


def test_watch_prints_counts_once(stocked):
    result = runner.invoke(app, ["watch", "--iterations", "1", "--interval", "0"])
    assert result.exit_code == 0
    assert result.stdout.count("Total Books: 1") == 1


@patch("subprocess.run")
def test_serve_command(mock_subprocess_run):
    result = runner.invoke(app, ["serve"])
    assert result.exit_code == 0
    assert "Starting API on" in result.stdout
    mock_subprocess_run.assert_called_once()
    args = mock_subprocess_run.call_args[0][0]
    assert "uvicorn" in args
    assert "campus_library.api:app" in args
    assert "--host" in args
    assert "--port" in args
