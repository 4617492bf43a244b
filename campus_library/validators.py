from datetime import date, datetime, time, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from .book import PROGRAMS, YEAR_LEVELS
from .errors import ValidationError

BOOK_FIELDS = {
    "bookName": "Book Name",
    "authorName": "Author Name",
    "quantity": "Quantity",
}
BOOK_OPTIONAL_FIELDS = ("imageUri",)

STUDENT_FIELDS = {
    "studentName": "Student Name",
    "year": "Year",
    "program": "Program",
}


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


class QuantityValidator:
    """Quantities arrive from text inputs; stored back as decimal strings."""

    @staticmethod
    def parse(value: Any) -> Optional[int]:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            s = value.strip()
            if s.lstrip("+-").isdigit():
                return int(s)
        return None

    @staticmethod
    def is_positive(value: Any) -> bool:
        parsed = QuantityValidator.parse(value)
        return parsed is not None and parsed > 0


class EntityValidator:
    """Field rules shared by create (every field) and update (fields present)."""

    @staticmethod
    def clean_book(payload: Mapping[str, Any], partial: bool = False) -> Dict[str, Any]:
        errors: Dict[str, str] = {}
        cleaned: Dict[str, Any] = {}

        for field in payload:
            if field not in BOOK_FIELDS and field not in BOOK_OPTIONAL_FIELDS:
                errors[field] = "Unknown field"

        for field, label in BOOK_FIELDS.items():
            if field not in payload:
                if not partial:
                    errors[field] = f"{label} is required"
                continue
            value = payload[field]
            if _is_blank(value):
                errors[field] = f"{label} is required"
            elif field == "quantity":
                if not QuantityValidator.is_positive(value):
                    errors[field] = "Quantity must be a positive number"
                else:
                    cleaned[field] = str(QuantityValidator.parse(value))
            elif not isinstance(value, str):
                errors[field] = f"{label} must be text"
            else:
                cleaned[field] = value.strip()

        if "imageUri" in payload:
            uri = payload["imageUri"]
            if uri is not None and not isinstance(uri, str):
                errors["imageUri"] = "Image URI must be text"
            else:
                cleaned["imageUri"] = uri

        if errors:
            raise ValidationError(errors)
        return cleaned

    @staticmethod
    def clean_student(payload: Mapping[str, Any], partial: bool = False) -> Dict[str, Any]:
        errors: Dict[str, str] = {}
        cleaned: Dict[str, Any] = {}

        for field in payload:
            if field not in STUDENT_FIELDS:
                errors[field] = "Unknown field"

        for field, label in STUDENT_FIELDS.items():
            if field not in payload:
                if not partial:
                    errors[field] = f"{label} is required"
                continue
            value = payload[field]
            if _is_blank(value):
                errors[field] = f"{label} is required"
            elif not isinstance(value, str):
                errors[field] = f"{label} must be text"
            elif field == "year" and value.strip() not in YEAR_LEVELS:
                errors[field] = f"Year must be one of: {', '.join(YEAR_LEVELS)}"
            elif field == "program" and value.strip() not in PROGRAMS:
                errors[field] = f"Program must be one of: {', '.join(PROGRAMS)}"
            else:
                cleaned[field] = value.strip()

        if errors:
            raise ValidationError(errors)
        return cleaned

    @staticmethod
    def clean_id(entity_id: Any, label: str = "ID") -> str:
        if not isinstance(entity_id, str) or not entity_id.strip():
            raise ValidationError({"id": f"{label} is required"})
        return entity_id.strip()


class DateValidator:
    """Loan dates: ``date``, ``datetime`` or ISO-8601 text, normalized to UTC."""

    @staticmethod
    def parse(value: Any, field: str) -> datetime:
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, date):
            parsed = datetime.combine(value, time.min)
        elif isinstance(value, str) and value.strip():
            text = value.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                raise ValidationError({field: "Invalid date, expected ISO-8601"}) from None
        else:
            raise ValidationError({field: "Date is required"})
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    @staticmethod
    def to_iso(value: datetime) -> str:
        """Millisecond ISO string with a Z suffix, e.g. 2024-01-01T00:00:00.000Z."""
        return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

    @staticmethod
    def validate_loan_period(date_borrow: Any, date_return: Any) -> Tuple[datetime, datetime]:
        start = DateValidator.parse(date_borrow, "dateBorrow")
        end = DateValidator.parse(date_return, "dateReturn")
        if end <= start:
            raise ValidationError({"dateReturn": "Return date must be after the borrow date."})
        return start, end
