import os
import json
from typing import Any, Dict, List, Sequence, Tuple
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from .book import Book, BorrowRecord, Student
from .scanner import DashboardCounts

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode

def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()

def _print_rows(title: str, columns: Sequence[str], rows: List[Tuple[str, ...]],
                json_rows: List[Dict[str, Any]], plain_rows: List[str], empty: str) -> None:
    mode = get_output_mode()

    if not rows:
        print(empty)
        return

    if mode == "json":
        print(json.dumps(json_rows, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for i, column in enumerate(columns):
            table.add_column(column, style="magenta" if i == 0 else "white", no_wrap=i == 0)
        for row in rows:
            table.add_row(*row)
        _console.print(table)
    else:
        for line in plain_rows:
            print(line)

def print_books(books: List[Book]) -> None:
    """Print books sorted by id.
    - plain: 'ID - Name by Author (qty N)'
    - json: array of stored payloads plus id
    - rich: table
    """
    books = sorted(books, key=lambda b: b.id)
    _print_rows(
        "📚 Books",
        ("ID", "Book Name", "Author", "Qty"),
        [(b.id, b.book_name, b.author_name, str(b.quantity)) for b in books],
        [{"id": b.id, **b.to_dict()} for b in books],
        [f"{b.id} - {b.book_name} by {b.author_name} (qty {b.quantity})" for b in books],
        "No books in library.",
    )

def print_students(students: List[Student]) -> None:
    students = sorted(students, key=lambda s: s.id)
    _print_rows(
        "🎓 Students",
        ("Student No.", "Name", "Year", "Program"),
        [(s.id, s.student_name, s.year, s.program) for s in students],
        [{"id": s.id, **s.to_dict()} for s in students],
        [f"{s.id} - {s.student_name} ({s.year}, {s.program})" for s in students],
        "No students registered.",
    )

def print_borrow_records(records: List[BorrowRecord]) -> None:
    _print_rows(
        "📖 Borrowed Books",
        ("Book ID", "Student No.", "Borrowed", "Return"),
        [(r.book_id, r.student_id, r.date_borrow[:10], r.date_return[:10]) for r in records],
        [{"compositeKey": r.composite_key, **r.to_dict()} for r in records],
        [f"{r.book_id} -> {r.student_id} ({r.date_borrow[:10]} to {r.date_return[:10]})" for r in records],
        "No borrowed books found.",
    )

def print_entity(kind: str, entity_id: str, payload: Dict[str, Any]) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps({"id": entity_id, **payload}, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k}:[/] {v}" for k, v in payload.items())
        _console.print(Panel.fit(content, title=f"{kind.capitalize()} {entity_id}", border_style="green"))
    else:
        print(f"{kind.capitalize()} {entity_id}")
        for k, v in payload.items():
            print(f"{k}: {v}")

def print_counts(counts: DashboardCounts) -> None:
    """Dashboard counts.
    - plain: one line per metric
    - json: JSON object
    - rich: Panel
    """
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(counts.to_dict(), ensure_ascii=False))
    elif mode == "rich":
        content = (
            f"[bold]Total Books:[/] {counts.total_books}\n"
            f"[bold]Borrowed Books:[/] {counts.borrowed}\n"
            f"[bold]Total Students:[/] {counts.total_students}"
        )
        _console.print(Panel.fit(content, title="📊 Dashboard", border_style="blue"))
    else:
        print(f"Total Books: {counts.total_books}")
        print(f"Borrowed Books: {counts.borrowed}")
        print(f"Total Students: {counts.total_students}")
