import logging
import os
import subprocess
import sys
from datetime import date
from typing import Dict, List, Optional

import typer

from . import database
from .book import PROGRAMS, YEAR_LEVELS
from .config import settings
from .errors import LibraryError, NotFoundError, StorageError, UnavailableError, ValidationError
from .library import Library
from .ui_helpers import (
    print_books,
    print_borrow_records,
    print_counts,
    print_entity,
    print_students,
    set_output_mode,
)

APP_NAME = "Library Ledger CLI"


class LibraryManager:
    _instance: Optional[Library] = None
    _db_file_snapshot: Optional[str] = None

    @classmethod
    def get_instance(cls) -> Library:
        """Get or create the Library singleton; rebuilt when the database file changes."""
        current_db = database.default_store_path()
        if cls._instance is None or current_db != cls._db_file_snapshot:
            if cls._instance is not None:
                cls._instance.close()
            cls._instance = Library(db_file=current_db)
            cls._db_file_snapshot = current_db
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None
        cls._db_file_snapshot = None


def _fail(error: LibraryError) -> None:
    """Print a library error the way the mobile alerts phrased it and exit non-zero."""
    if isinstance(error, ValidationError):
        print("Error: Please correct the errors before proceeding.")
        for field, reason in error.errors.items():
            print(f"  {field}: {reason}")
    elif isinstance(error, UnavailableError):
        print(f"Unavailable: {error}")
    elif isinstance(error, NotFoundError):
        print(f"Error: {error}")
    elif isinstance(error, StorageError):
        print(f"Storage error: {error}")
    else:
        print(f"Error: {error}")
    raise typer.Exit(code=1)


def _parse_assignments(assignments: List[str]) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for item in assignments:
        field, sep, value = item.partition("=")
        if not sep or not field.strip():
            print(f"Error: expected FIELD=VALUE, got {item!r}")
            raise typer.Exit(code=2)
        fields[field.strip()] = value
    return fields


# --- Typer CLI application ---
app = typer.Typer(help="Library inventory, membership and lending ledger")

@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (e.g. output mode)."""
    if output:
        set_output_mode(output)

@app.command("add-book")
def cli_add_book(
    book_id: str = typer.Argument(..., help="Book ID"),
    book_name: str = typer.Argument(..., help="Book name"),
    author_name: str = typer.Argument(..., help="Author name"),
    quantity: str = typer.Argument(..., help="Copies on the shelf"),
    image_uri: Optional[str] = typer.Option(None, "--image", help="Cover image URI"),
):
    """Add a book, or replace the book stored under the same ID."""
    payload = {"bookName": book_name, "authorName": author_name, "quantity": quantity}
    if image_uri:
        payload["imageUri"] = image_uri
    try:
        LibraryManager.get_instance().create_entity("book", book_id, payload)
    except LibraryError as e:
        _fail(e)
    print("Book added successfully!")

@app.command("add-student")
def cli_add_student(
    student_id: str = typer.Argument(..., help="Student number"),
    student_name: str = typer.Argument(..., help="Student name"),
    year: str = typer.Option(..., "--year", "-y", help=f"One of: {', '.join(YEAR_LEVELS)}"),
    program: str = typer.Option(..., "--program", "-p", help=f"One of: {', '.join(PROGRAMS)}"),
):
    """Register a student."""
    payload = {"studentName": student_name, "year": year, "program": program}
    try:
        LibraryManager.get_instance().create_entity("student", student_id, payload)
    except LibraryError as e:
        _fail(e)
    print("Student added successfully!")

@app.command("show")
def cli_show(kind: str = typer.Argument(..., help="book | student"), entity_id: str = typer.Argument(...)):
    """Show one book or student."""
    try:
        payload = LibraryManager.get_instance().read_entity(kind, entity_id)
    except LibraryError as e:
        _fail(e)
    print_entity(kind, entity_id, payload)

@app.command("update")
def cli_update(
    kind: str = typer.Argument(..., help="book | student"),
    entity_id: str = typer.Argument(...),
    assignments: List[str] = typer.Argument(..., help="FIELD=VALUE pairs, e.g. quantity=3"),
):
    """Merge the given fields into a stored book or student."""
    partial = _parse_assignments(assignments)
    try:
        payload = LibraryManager.get_instance().update_entity(kind, entity_id, partial)
    except LibraryError as e:
        _fail(e)
    print(f"{kind.capitalize()} updated successfully!")
    print_entity(kind, entity_id, payload)

@app.command("remove")
def cli_remove(kind: str = typer.Argument(..., help="book | student"), entity_id: str = typer.Argument(...)):
    """Delete a book or student. Missing IDs are not an error."""
    try:
        LibraryManager.get_instance().delete_entity(kind, entity_id)
    except LibraryError as e:
        _fail(e)
    print(f"{kind.capitalize()} deleted successfully!")

@app.command("books")
def cli_books():
    """List all books."""
    try:
        books = LibraryManager.get_instance().list_books()
    except LibraryError as e:
        _fail(e)
    print_books(books)

@app.command("students")
def cli_students():
    """List all students."""
    try:
        students = LibraryManager.get_instance().list_students()
    except LibraryError as e:
        _fail(e)
    print_students(students)

@app.command("borrow")
def cli_borrow(
    book_id: str = typer.Argument(..., help="Book ID"),
    student_id: str = typer.Argument(..., help="Student number"),
    date_return: str = typer.Argument(..., help="Return date (YYYY-MM-DD)"),
    date_borrow: Optional[str] = typer.Option(None, "--from", help="Borrow date (default: today)"),
):
    """Lend one copy of a book to a student."""
    lib = LibraryManager.get_instance()
    start = date_borrow or date.today().isoformat()
    try:
        record = lib.borrow(book_id, student_id, start, date_return)
        student = lib.get_student(student_id)
    except LibraryError as e:
        _fail(e)
    print(
        f"Book borrowed by {student.student_name} from {record.date_borrow[:10]} "
        f"to {record.date_return[:10]}"
    )

@app.command("loans")
def cli_loans(student: Optional[str] = typer.Option(None, "--student", "-s", help="Filter by student number")):
    """List borrow records, optionally filtered by student number."""
    try:
        records = LibraryManager.get_instance().list_borrow_records(student)
    except LibraryError as e:
        _fail(e)
    print_borrow_records(records)

@app.command("stats")
def cli_stats():
    """Show dashboard counts."""
    try:
        counts = LibraryManager.get_instance().dashboard_counts()
    except LibraryError as e:
        _fail(e)
    print_counts(counts)

@app.command("watch")
def cli_watch(
    iterations: Optional[int] = typer.Option(None, "--iterations", "-n", help="Stop after N refreshes"),
    interval: Optional[float] = typer.Option(None, "--interval", help="Seconds between refreshes"),
):
    """Re-print dashboard counts whenever they change."""
    lib = LibraryManager.get_instance()
    monitor = lib.monitor(interval=interval, on_update=print_counts)
    try:
        monitor.run(iterations=iterations)
    except KeyboardInterrupt:
        pass
    finally:
        monitor.detach()

@app.command("serve")
def cli_serve():
    """Start the HTTP API with Uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "campus_library.api:app",
        "--host", host,
        "--port", str(port),
    ]
    try:
        subprocess.run(args, env=dict(os.environ))
    except FileNotFoundError:
        print("Error: `uvicorn` could not be started. Make sure it is installed.")
        raise typer.Exit(code=1)


def run() -> None:
    """Console-script entry point."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app()


if __name__ == "__main__":
    run()
