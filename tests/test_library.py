import json

import pytest

from campus_library.errors import NotFoundError, StorageError, ValidationError
from campus_library.library import Library
from campus_library.records import EntityKind


def test_create_and_read_round_trip(lib, dune, ana):
    assert lib.list_books() == []

    lib.create_entity("book", "101", dune)
    lib.create_entity("student", "S1", ana)

    assert lib.read_entity("book", "101") == dune
    assert lib.read_entity("student", "S1") == ana


def test_image_uri_is_optional_and_kept(lib):
    payload = {"bookName": "Emma", "authorName": "Austen", "quantity": "1", "imageUri": "file:///emma.jpg"}
    lib.create_entity("book", "7", payload)
    assert lib.read_entity("book", "7") == payload
    assert lib.get_book("7").image_uri == "file:///emma.jpg"


def test_integer_quantity_is_stored_as_text(lib):
    lib.create_entity("book", "8", {"bookName": "Ulysses", "authorName": "Joyce", "quantity": 3})
    assert lib.read_entity("book", "8")["quantity"] == "3"


def test_create_reports_every_missing_field(lib):
    with pytest.raises(ValidationError) as exc:
        lib.create_entity("book", "101", {"bookName": "  ", "authorName": "Herbert"})
    assert set(exc.value.errors) == {"bookName", "quantity"}
    assert exc.value.errors["bookName"] == "Book Name is required"
    assert lib.list_books() == []


@pytest.mark.parametrize("quantity", ["abc", "0", "-3", "", 2.5, True])
def test_create_rejects_bad_quantity(lib, dune, quantity):
    with pytest.raises(ValidationError) as exc:
        lib.create_entity("book", "101", dict(dune, quantity=quantity))
    assert "quantity" in exc.value.errors
    with pytest.raises(NotFoundError):
        lib.read_entity("book", "101")


@pytest.mark.parametrize("field,value", [("program", "BSXX"), ("year", "5th Year"), ("studentName", "")])
def test_create_student_field_rules(lib, ana, field, value):
    with pytest.raises(ValidationError) as exc:
        lib.create_entity("student", "S1", dict(ana, **{field: value}))
    assert field in exc.value.errors


def test_unknown_fields_and_blank_ids_are_rejected(lib, dune):
    with pytest.raises(ValidationError) as exc:
        lib.create_entity("book", "101", dict(dune, isBorrowed=True))
    assert exc.value.errors == {"isBorrowed": "Unknown field"}

    with pytest.raises(ValidationError):
        lib.create_entity("book", "   ", dune)


def test_unknown_kind_is_rejected(lib, dune):
    with pytest.raises(ValidationError):
        lib.create_entity("borrow", "101", dune)


def test_read_missing_raises_not_found(lib):
    with pytest.raises(NotFoundError, match="Book with ID nope not found."):
        lib.read_entity("book", "nope")


def test_update_merges_instead_of_overwriting(lib, dune):
    lib.create_entity("book", "101", dune)

    updated = lib.update_entity("book", "101", {"quantity": "5"})

    assert updated == {"bookName": "Dune", "authorName": "Herbert", "quantity": "5"}
    assert lib.read_entity("book", "101") == updated


def test_update_partial_student(lib, ana):
    lib.create_entity("student", "S1", ana)
    lib.update_entity("student", "S1", {"year": "2nd Year"})
    assert lib.read_entity("student", "S1") == dict(ana, year="2nd Year")


def test_update_not_found(lib):
    with pytest.raises(NotFoundError):
        lib.update_entity("book", "nonexistent", {"bookName": "New Title"})


def test_update_validation_leaves_record_untouched(lib, dune):
    lib.create_entity("book", "101", dune)

    with pytest.raises(ValidationError):
        lib.update_entity("book", "101", {"quantity": "0"})
    with pytest.raises(ValidationError):
        lib.update_entity("book", "101", {})

    assert lib.read_entity("book", "101") == dune


def test_delete_is_idempotent(lib, dune):
    lib.create_entity("book", "101", dune)

    lib.delete_entity("book", "101")
    with pytest.raises(NotFoundError):
        lib.read_entity("book", "101")
    lib.delete_entity("book", "101")  # second delete does not raise


def test_same_id_for_book_and_student_does_not_collide(lib, dune, ana):
    lib.create_entity("book", "101", dune)
    lib.create_entity("student", "101", ana)

    assert lib.read_entity("book", "101") == dune
    assert lib.read_entity("student", "101") == ana

    lib.delete_entity("student", "101")
    assert lib.read_entity("book", "101") == dune


def test_lists_are_filtered_by_kind_and_shape(lib, dune, ana):
    lib.create_entity("book", "101", dune)
    lib.create_entity("student", "S1", ana)
    lib.borrow("101", "S1", "2024-01-01", "2024-01-10")
    lib.store.set("garbage", "{not json")
    lib.store.set("5", "[1, 2]")
    lib.store.set("userData", json.dumps({"fullname": "Admin", "loggedIn": True}))

    assert [b.id for b in lib.list_books()] == ["101"]
    assert [s.id for s in lib.list_students()] == ["S1"]


def test_list_predicate(lib, dune):
    lib.create_entity("book", "101", dune)
    lib.create_entity("book", "102", {"bookName": "Emma", "authorName": "Austen", "quantity": "1"})

    items = lib.repository.list(EntityKind.BOOK, predicate=lambda p: p["authorName"] == "Austen")
    assert items == [{"id": "102", "bookName": "Emma", "authorName": "Austen", "quantity": "1"}]


def test_legacy_records_under_bare_ids(lib):
    lib.store.set("202", json.dumps({"bookName": "Legacy", "authorName": "Old", "quantity": "3"}))
    lib.store.set("S9", json.dumps({"studentName": "Ben", "year": "3rd Year", "program": "BSCS"}))

    assert lib.read_entity("book", "202")["bookName"] == "Legacy"
    assert [b.id for b in lib.list_books()] == ["202"]
    assert [s.id for s in lib.list_students()] == ["S9"]

    lib.update_entity("book", "202", {"quantity": "4"})
    assert lib.read_entity("book", "202")["quantity"] == "4"
    assert lib.store.get("book:202") is None

    # A bare student-shaped key is not a book
    with pytest.raises(NotFoundError):
        lib.read_entity("book", "S9")


def test_create_replaces_legacy_record_in_place(lib, dune):
    lib.store.set("101", json.dumps({"bookName": "Old", "authorName": "Someone", "quantity": "1"}))

    lib.create_entity("book", "101", dune)

    assert lib.store.list_keys() == ["101"]
    assert lib.read_entity("book", "101") == dune
    assert [b.id for b in lib.list_books()] == ["101"]
    assert lib.dashboard_counts().total_books == 1


def test_delete_removes_legacy_copy_too(lib, dune):
    # Both layouts present for the same id
    lib.store.set("101", json.dumps({"bookName": "Old", "authorName": "Someone", "quantity": "1"}))
    lib.store.set("book:101", json.dumps(dict(dune, kind="book")))

    lib.delete_entity("book", "101")

    with pytest.raises(NotFoundError):
        lib.read_entity("book", "101")
    assert lib.store.list_keys() == []


def test_delete_leaves_other_kinds_alone(lib, ana):
    lib.store.set("S1", json.dumps(ana))
    lib.delete_entity("book", "S1")
    assert lib.read_entity("student", "S1") == ana


@pytest.mark.parametrize("key,payload", [
    ("7", {"bookName": "X", "authorName": "Y", "quantity": "1.5"}),
    ("8", {"bookName": 42, "authorName": "Y", "quantity": "1"}),
    ("9", {"bookName": "X", "authorName": "Y", "quantity": None}),
    ("book:10", {"kind": "book", "bookName": "X", "authorName": ["Y"], "quantity": "2"}),
])
def test_malformed_books_are_left_out_of_listing(lib, dune, key, payload):
    lib.create_entity("book", "101", dune)
    lib.store.set(key, json.dumps(payload))

    assert [b.id for b in lib.list_books()] == ["101"]


@pytest.mark.parametrize("payload", [
    {"studentName": 7, "year": "1st Year", "program": "BSIT"},
    {"studentName": "Ben", "year": 2, "program": "BSIT"},
    {"studentName": "Ben", "year": "2nd Year", "program": None},
])
def test_malformed_students_are_left_out_of_listing(lib, ana, payload):
    lib.create_entity("student", "S1", ana)
    lib.store.set("S2", json.dumps(payload))

    assert [s.id for s in lib.list_students()] == ["S1"]


def test_get_malformed_record_raises_storage_error(lib):
    lib.store.set("7", json.dumps({"bookName": "X", "authorName": "Y", "quantity": "1.5"}))
    with pytest.raises(StorageError):
        lib.get_book("7")


def test_persistence(db_file, dune):
    lib = Library(db_file=db_file)
    lib.create_entity("book", "101", dune)

    lib2 = Library(db_file=db_file)
    assert lib2.get_book("101").book_name == "Dune"


def test_mutations_publish_change_events(lib, dune):
    events = []
    unsubscribe = lib.subscribe(events.append)

    lib.create_entity("book", "101", dune)
    lib.update_entity("book", "101", {"quantity": "3"})
    lib.delete_entity("book", "101")
    lib.delete_entity("book", "101")
    unsubscribe()
    lib.create_entity("book", "102", dune)

    assert [(e.entity_id, e.action) for e in events] == [
        ("101", "created"),
        ("101", "updated"),
        ("101", "deleted"),
    ]
