import logging
from datetime import datetime
from typing import Dict, List, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Query, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from . import database
from .book import Book
from .config import settings
from .errors import LibraryError, NotFoundError, StorageError, UnavailableError, ValidationError
from .library import Library

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version=settings.app_version)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_library: Optional[Library] = None
_library_db: Optional[str] = None


def get_library() -> Library:
    """Library bound to the currently configured database file."""
    global _library, _library_db
    current_db = database.default_store_path()
    if _library is None or current_db != _library_db:
        if _library is not None:
            _library.close()
        _library = Library(db_file=current_db)
        _library_db = current_db
    return _library


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")

def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency validating the API key."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


def _to_http(error: LibraryError) -> HTTPException:
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail={"message": str(error), "errors": error.errors})
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, UnavailableError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, StorageError):
        logger.error(f"Storage failure: {error}")
        return HTTPException(status_code=503, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


# --- Models ---
class BookModel(BaseModel):
    id: str
    bookName: str
    authorName: str
    quantity: Union[int, str]
    imageUri: Optional[str] = None

class BookUpdateModel(BaseModel):
    bookName: Optional[str] = None
    authorName: Optional[str] = None
    quantity: Optional[Union[int, str]] = None
    imageUri: Optional[str] = None

class StudentModel(BaseModel):
    id: str
    studentName: str
    year: str
    program: str

class StudentUpdateModel(BaseModel):
    studentName: Optional[str] = None
    year: Optional[str] = None
    program: Optional[str] = None

class BorrowRequest(BaseModel):
    bookId: str
    studentId: str
    dateBorrow: datetime
    dateReturn: datetime

class BorrowRecordModel(BaseModel):
    compositeKey: str
    bookId: str
    studentId: str
    dateBorrow: str
    dateReturn: str

class StatsModel(BaseModel):
    total_books: int
    total_students: int
    borrowed: int = Field(description="Active loans")


def _record_model(record) -> BorrowRecordModel:
    return BorrowRecordModel(compositeKey=record.composite_key, **record.to_dict())


# --- Health check ---
@app.get("/health")
def health():
    """Lightweight health endpoint: touches the store once."""
    store_ok = True
    try:
        get_library().store.list_keys()
    except StorageError:
        store_ok = False
    return {"status": "healthy" if store_ok else "degraded", "store": store_ok}


# --- Books ---
@app.get("/books", response_model=List[BookModel])
def list_books(lib: Library = Depends(get_library)):
    """All books, sorted by ID."""
    try:
        books = sorted(lib.list_books(), key=lambda b: b.id)
    except LibraryError as e:
        raise _to_http(e)
    return [BookModel(id=b.id, **b.to_dict()) for b in books]

@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: str, lib: Library = Depends(get_library)):
    try:
        return BookModel(id=book_id, **lib.get_book(book_id).to_dict())
    except LibraryError as e:
        raise _to_http(e)

@app.post("/books", response_model=BookModel, dependencies=[Depends(get_api_key)])
def add_book(payload: BookModel, lib: Library = Depends(get_library)):
    fields = payload.model_dump(exclude={"id"}, exclude_none=True)
    try:
        stored = lib.create_entity("book", payload.id, fields)
    except LibraryError as e:
        raise _to_http(e)
    return BookModel(id=payload.id.strip(), **stored)

@app.patch("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: str, update: BookUpdateModel, lib: Library = Depends(get_library)):
    try:
        stored = lib.update_entity("book", book_id, update.model_dump(exclude_unset=True))
    except LibraryError as e:
        raise _to_http(e)
    return BookModel(id=book_id, **Book.from_dict(book_id, stored).to_dict())

@app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
def delete_book(book_id: str, lib: Library = Depends(get_library)):
    try:
        lib.delete_entity("book", book_id)
    except LibraryError as e:
        raise _to_http(e)
    return {"message": "Book deleted."}


# --- Students ---
@app.get("/students", response_model=List[StudentModel])
def list_students(lib: Library = Depends(get_library)):
    try:
        students = sorted(lib.list_students(), key=lambda s: s.id)
    except LibraryError as e:
        raise _to_http(e)
    return [StudentModel(id=s.id, **s.to_dict()) for s in students]

@app.get("/students/{student_id}", response_model=StudentModel)
def get_student(student_id: str, lib: Library = Depends(get_library)):
    try:
        return StudentModel(id=student_id, **lib.get_student(student_id).to_dict())
    except LibraryError as e:
        raise _to_http(e)

@app.post("/students", response_model=StudentModel, dependencies=[Depends(get_api_key)])
def add_student(payload: StudentModel, lib: Library = Depends(get_library)):
    try:
        stored = lib.create_entity("student", payload.id, payload.model_dump(exclude={"id"}))
    except LibraryError as e:
        raise _to_http(e)
    return StudentModel(id=payload.id.strip(), **stored)

@app.patch("/students/{student_id}", response_model=StudentModel, dependencies=[Depends(get_api_key)])
def update_student(student_id: str, update: StudentUpdateModel, lib: Library = Depends(get_library)):
    try:
        stored = lib.update_entity("student", student_id, update.model_dump(exclude_unset=True))
    except LibraryError as e:
        raise _to_http(e)
    return StudentModel(id=student_id, **stored)

@app.delete("/students/{student_id}", dependencies=[Depends(get_api_key)])
def delete_student(student_id: str, lib: Library = Depends(get_library)):
    try:
        lib.delete_entity("student", student_id)
    except LibraryError as e:
        raise _to_http(e)
    return {"message": "Student deleted."}


# --- Loans ---
@app.post("/borrow", response_model=BorrowRecordModel, dependencies=[Depends(get_api_key)])
def borrow_book(request: BorrowRequest, lib: Library = Depends(get_library)):
    try:
        record = lib.borrow(request.bookId, request.studentId, request.dateBorrow, request.dateReturn)
    except LibraryError as e:
        raise _to_http(e)
    return _record_model(record)

@app.get("/borrow-records", response_model=List[BorrowRecordModel])
def list_borrow_records(
    student: Optional[str] = Query(None, description="Case-insensitive student number filter"),
    lib: Library = Depends(get_library),
):
    try:
        records = lib.list_borrow_records(student)
    except LibraryError as e:
        raise _to_http(e)
    return [_record_model(r) for r in records]

@app.get("/stats", response_model=StatsModel)
def get_stats(lib: Library = Depends(get_library)) -> Dict[str, int]:
    """Dashboard counts: books, students and active loans."""
    try:
        return lib.dashboard_counts().to_dict()
    except LibraryError as e:
        raise _to_http(e)
