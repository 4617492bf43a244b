from __future__ import annotations

from typing import Any, Dict

# Fixed enumerations offered by the student form
YEAR_LEVELS = ("1st Year", "2nd Year", "3rd Year", "4th Year")
PROGRAMS = ("BSN", "BSOA", "BSHM", "BSCE", "BSECE", "BSTM", "BSM", "BSIT", "BSCS", "BSIS")


class Book:
    """A single title in the inventory and how many copies are on the shelf."""

    def __init__(self, id: str, book_name: str, author_name: str, quantity: int | str,
                 image_uri: str | None = None) -> None:
        self.id = id.strip()
        self.book_name = book_name.strip()
        self.author_name = author_name.strip()
        self.quantity = int(quantity)
        self.image_uri = image_uri

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.book_name} by {self.author_name} (ID: {self.id}, qty: {self.quantity})"

    @property
    def available(self) -> bool:
        return self.quantity > 0

    def to_dict(self) -> dict:
        """Stored payload shape; quantity is kept as a decimal string."""
        data: Dict[str, Any] = {
            "bookName": self.book_name,
            "authorName": self.author_name,
            "quantity": str(self.quantity),
        }
        if self.image_uri is not None:
            data["imageUri"] = self.image_uri
        return data

    @staticmethod
    def from_dict(entity_id: str, data: dict) -> "Book":
        return Book(
            id=entity_id,
            book_name=data["bookName"],
            author_name=data["authorName"],
            quantity=data["quantity"],
            image_uri=data.get("imageUri"),
        )


class Student:
    """A library member."""

    def __init__(self, id: str, student_name: str, year: str, program: str) -> None:
        self.id = id.strip()
        self.student_name = student_name.strip()
        self.year = year
        self.program = program

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.student_name} ({self.id}, {self.year} {self.program})"

    def to_dict(self) -> dict:
        return {"studentName": self.student_name, "year": self.year, "program": self.program}

    @staticmethod
    def from_dict(entity_id: str, data: dict) -> "Student":
        return Student(
            id=entity_id,
            student_name=data["studentName"],
            year=data["year"],
            program=data["program"],
        )


class BorrowRecord:
    """Immutable loan record. Dates are ISO-8601 UTC strings."""

    def __init__(self, composite_key: str, book_id: str, student_id: str,
                 date_borrow: str, date_return: str) -> None:
        self.composite_key = composite_key
        self.book_id = book_id
        self.student_id = student_id
        self.date_borrow = date_borrow
        self.date_return = date_return

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.book_id} -> {self.student_id} ({self.date_borrow} .. {self.date_return})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BorrowRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict() and self.composite_key == other.composite_key

    def to_dict(self) -> dict:
        return {
            "bookId": self.book_id,
            "studentId": self.student_id,
            "dateBorrow": self.date_borrow,
            "dateReturn": self.date_return,
        }

    @staticmethod
    def from_dict(composite_key: str, data: dict) -> "BorrowRecord":
        # Records written by the mobile app used "studentNo"
        student_id = data.get("studentId", data.get("studentNo"))
        if student_id is None:
            raise KeyError("studentId")
        for field in ("dateBorrow", "dateReturn"):
            if not isinstance(data.get(field), str):
                raise ValueError(f"{field} must be an ISO date string, got {data.get(field)!r}")
        return BorrowRecord(
            composite_key=composite_key,
            book_id=str(data["bookId"]),
            student_id=str(student_id),
            date_borrow=data["dateBorrow"],
            date_return=data["dateReturn"],
        )
