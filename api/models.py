"""
Book schema, validation and response envelopes for the API.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel, ConfigDict, Field, StrictBool, ValidationError, validator
)


# Fields assigned by the server; clients can never set them.
IMMUTABLE_FIELDS = ("_id", "id", "addedDate")

# Largest integer BSON can encode.
MAX_STOCK = 2 ** 63 - 1


def utcnow() -> datetime:
    """Current UTC time at the millisecond precision MongoDB stores."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def reject_bool(v):
    """JSON true/false is not a count."""
    if isinstance(v, bool):
        raise ValueError('must be an integer, not a boolean')
    return v


class BookDocument(BaseModel):
    """A book as it is stored in the document store."""
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    genre: Optional[str] = Field(None, description="Book genre")
    stock: int = Field(0, ge=0, le=MAX_STOCK, description="Copies in stock")
    available: StrictBool = Field(True, description="Whether the book can be sold")
    addedDate: datetime = Field(default_factory=utcnow, description="When the book was added")

    model_config = ConfigDict(extra="ignore")

    @validator('stock', pre=True)
    def validate_stock_type(cls, v):
        return reject_bool(v)

    @validator('title', 'author')
    def validate_required_text(cls, v):
        """Required text must contain something other than whitespace."""
        v = v.strip()
        if not v:
            raise ValueError('must not be empty')
        return v

    @validator('genre')
    def validate_genre(cls, v):
        if v is None:
            return v
        return v.strip() or None


class Violation(BaseModel):
    """A single schema rule broken by a payload."""
    field: str
    message: str


class ValidationResult(BaseModel):
    """Outcome of validating a book payload."""
    ok: bool
    book: Optional[BookDocument] = None
    errors: List[Violation] = Field(default_factory=list)
    quantity: Optional[int] = None


class StockUpdate(BaseModel):
    """Body of the stock update endpoint."""
    quantity: int = Field(..., ge=0, le=MAX_STOCK, description="New stock level")

    @validator('quantity', pre=True)
    def validate_quantity_type(cls, v):
        return reject_bool(v)


def _violations(exc: ValidationError) -> List[Violation]:
    violations = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "body"
        violations.append(Violation(field=field, message=error["msg"]))
    return violations


def strip_immutable(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Drop server-assigned fields from a client payload."""
    return {k: v for k, v in payload.items() if k not in IMMUTABLE_FIELDS}


def validate_book(payload: Any) -> ValidationResult:
    """
    Validate a candidate book document.

    When the payload does not say whether the book is available,
    availability follows the stock level.

    Args:
        payload: Candidate document, usually a decoded JSON object

    Returns:
        ValidationResult holding either the validated book or the violations
    """
    if not isinstance(payload, dict):
        return ValidationResult(
            ok=False,
            errors=[Violation(field="body", message="Book payload must be a JSON object")]
        )

    try:
        book = BookDocument.model_validate(payload)
    except ValidationError as e:
        return ValidationResult(ok=False, errors=_violations(e))

    if "available" not in book.model_fields_set:
        book.available = book.stock > 0

    return ValidationResult(ok=True, book=book)


def validate_stock_quantity(quantity: Any) -> ValidationResult:
    """Validate a stock quantity; the result carries the parsed quantity."""
    try:
        update = StockUpdate(quantity=quantity)
    except ValidationError as e:
        return ValidationResult(ok=False, errors=_violations(e))
    return ValidationResult(ok=True, quantity=update.quantity)


class BookResponse(BaseModel):
    """Book response model for API."""
    id: str = Field(..., description="Unique book identifier")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    genre: Optional[str] = Field(None, description="Book genre")
    stock: int = Field(..., description="Copies in stock")
    available: bool = Field(..., description="Whether the book can be sold")
    addedDate: datetime = Field(..., description="When the book was added")


def serialize_book(document: Dict[str, Any]) -> BookResponse:
    """
    Convert a stored document into its API representation.

    MongoDB hands datetimes back without a timezone; they are stored as UTC.
    """
    added = document.get("addedDate")
    if isinstance(added, datetime) and added.tzinfo is None:
        added = added.replace(tzinfo=timezone.utc)

    return BookResponse(
        id=str(document["_id"]),
        title=document.get("title", ""),
        author=document.get("author", ""),
        genre=document.get("genre"),
        stock=document.get("stock", 0),
        available=document.get("available", False),
        addedDate=added,
    )


class BookEnvelope(BaseModel):
    """Envelope around a single book."""
    success: bool = True
    message: Optional[str] = Field(None, description="Outcome message")
    book: BookResponse


class BookListEnvelope(BaseModel):
    """Envelope around a list of books."""
    success: bool = True
    count: int = Field(..., description="Number of books returned")
    books: List[BookResponse]


class SearchEnvelope(BookListEnvelope):
    searchQuery: str = Field(..., description="Text that was searched for")


class GenreEnvelope(BookListEnvelope):
    genre: str = Field(..., description="Genre that was filtered on")


class DeleteAllEnvelope(BaseModel):
    success: bool = True
    message: str
    deletedCount: int = Field(..., description="Number of books removed")


class ErrorResponse(BaseModel):
    """Error response model."""
    success: bool = False
    message: str = Field(..., description="Error message")
    error: Optional[str] = Field(None, description="Additional error details")


class HealthResponse(BaseModel):
    """Health check response model."""
    success: bool
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")
