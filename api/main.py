"""
FastAPI application for the Book Store API.
"""

from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.config import APIConfig, config as default_api_config
from api.database import BookStore
from api.exceptions import BookNotFoundError, BookValidationError, StoreError
from api.models import (
    BookEnvelope, BookListEnvelope, DeleteAllEnvelope, ErrorResponse,
    GenreEnvelope, HealthResponse, SearchEnvelope, serialize_book
)
from utilities.config import StoreConfig, config as default_store_config
from utilities.logger import RequestLogger

logger = structlog.get_logger(__name__)

NOT_FOUND_MESSAGE = "Book not found in store"

ENDPOINTS = {
    "GET /books": "Get all books",
    "GET /books/:id": "Get single book by ID",
    "GET /books/search/:query": "Search books by title, author or genre",
    "GET /books/genre/:genre": "Get books by genre",
    "GET /books/available/true": "Get books that are in stock",
    "POST /books": "Create new book",
    "PUT /books/:id": "Update book by ID",
    "PATCH /books/:id/stock": "Update stock quantity of a book",
    "DELETE /books/:id": "Delete book by ID",
    "DELETE /books": "Delete all books",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Book Store API")

    # A store handed to create_app is owned by the caller.
    owns_store = app.state.book_store is None
    if owns_store:
        settings: StoreConfig = app.state.store_settings
        try:
            app.state.book_store = await BookStore.connect(
                settings.mongo_uri,
                settings.get_database_name(),
                settings.mongo_collection
            )
        except StoreError as e:
            logger.error("Failed to connect to database", error=str(e))
            raise
        logger.info("Database connection established",
                    database=settings.get_database_name())

    yield

    logger.info("Shutting down Book Store API")
    if owns_store and app.state.book_store is not None:
        app.state.book_store.close()
        app.state.book_store = None


def get_book_store(request: Request) -> BookStore:
    """Dependency returning the store opened at startup."""
    store = request.app.state.book_store
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database service not available"
        )
    return store


def _content(envelope: BaseModel) -> Dict[str, Any]:
    content = envelope.model_dump(mode="json")
    for key in ("message", "error"):
        if key in content and content[key] is None:
            del content[key]
    return content


def _books(documents) -> list:
    return [serialize_book(document) for document in documents]


@contextmanager
def translate_errors(
    validation_message: str = "Invalid book data",
    not_found_message: str = NOT_FOUND_MESSAGE
):
    """Map store errors raised inside the block onto HTTP errors."""
    try:
        yield
    except BookValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": validation_message, "error": str(e)}
        )
    except BookNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=not_found_message
        )
    except StoreError as e:
        logger.error("Store operation failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


router = APIRouter()


@router.get("/", tags=["Info"])
async def home(request: Request):
    """Describe the API and its endpoints."""
    return {
        "success": True,
        "message": "Welcome to Book Store API",
        "version": request.app.version,
        "endpoints": ENDPOINTS,
    }


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint."""
    store = request.app.state.book_store
    healthy = store is not None and await store.ping()
    body = HealthResponse(
        success=healthy,
        status="healthy" if healthy else "unhealthy",
        timestamp=datetime.now(timezone.utc),
        version=request.app.version,
        database_status="healthy" if healthy else "unhealthy"
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=_content(body)
    )


@router.post("/books", status_code=status.HTTP_201_CREATED, tags=["Books"])
async def create_book(
    payload: Any = Body(None),
    store: BookStore = Depends(get_book_store)
):
    """Add a new book to the store."""
    with translate_errors("Error adding book to store"):
        document = await store.create(payload)

    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=_content(BookEnvelope(
            message="Book added to store successfully",
            book=serialize_book(document)
        ))
    )


@router.get("/books", tags=["Books"])
async def list_books(store: BookStore = Depends(get_book_store)):
    """Get all books, newest first."""
    with translate_errors():
        documents = await store.list_all()

    books = _books(documents)
    return _content(BookListEnvelope(count=len(books), books=books))


# Literal routes go before /books/{book_id}.
@router.get("/books/search/{query}", tags=["Books"])
async def search_books(query: str, store: BookStore = Depends(get_book_store)):
    """
    Search books by title, author or genre.

    - **query**: Text matched case-insensitively anywhere in those fields
    """
    with translate_errors():
        documents = await store.find_by_text(query)

    books = _books(documents)
    return _content(SearchEnvelope(count=len(books), searchQuery=query, books=books))


@router.get("/books/genre/{genre}", tags=["Books"])
async def books_by_genre(genre: str, store: BookStore = Depends(get_book_store)):
    """Get books whose genre contains the given text."""
    with translate_errors():
        documents = await store.find_by_genre(genre)

    books = _books(documents)
    return _content(GenreEnvelope(genre=genre, count=len(books), books=books))


@router.get("/books/available/true", tags=["Books"])
async def available_books(store: BookStore = Depends(get_book_store)):
    """Get books that are available and in stock."""
    with translate_errors():
        documents = await store.find_available()

    books = _books(documents)
    return _content(BookListEnvelope(count=len(books), books=books))


@router.get("/books/{book_id}", tags=["Books"])
async def get_book(book_id: str, store: BookStore = Depends(get_book_store)):
    """
    Get a single book by ID.

    - **book_id**: MongoDB ObjectId of the book
    """
    with translate_errors():
        document = await store.get_by_id(book_id)

    return _content(BookEnvelope(book=serialize_book(document)))


@router.put("/books/{book_id}", tags=["Books"])
async def update_book(
    book_id: str,
    payload: Any = Body(None),
    store: BookStore = Depends(get_book_store)
):
    """Merge the given fields onto a book."""
    with translate_errors("Error updating book"):
        document = await store.update_by_id(book_id, payload)

    return _content(BookEnvelope(
        message="Book updated successfully",
        book=serialize_book(document)
    ))


@router.patch("/books/{book_id}/stock", tags=["Books"])
async def update_stock(
    book_id: str,
    payload: Any = Body(None),
    store: BookStore = Depends(get_book_store)
):
    """
    Set the stock quantity of a book.

    Availability follows the new quantity.
    """
    quantity = payload.get("quantity") if isinstance(payload, dict) else None
    with translate_errors("Error updating stock", not_found_message="Book not found"):
        document = await store.set_stock(book_id, quantity)

    return _content(BookEnvelope(
        message="Stock updated successfully",
        book=serialize_book(document)
    ))


@router.delete("/books/{book_id}", tags=["Books"])
async def delete_book(book_id: str, store: BookStore = Depends(get_book_store)):
    """Remove a book and echo it back."""
    with translate_errors():
        document = await store.delete_by_id(book_id)

    return _content(BookEnvelope(
        message="Book removed from store successfully",
        book=serialize_book(document)
    ))


@router.delete("/books", tags=["Books"])
async def delete_all_books(store: BookStore = Depends(get_book_store)):
    """Remove every book in the store."""
    with translate_errors():
        deleted = await store.delete_all()

    return _content(DeleteAllEnvelope(
        message=f"{deleted} books removed from store",
        deletedCount=deleted
    ))


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as envelopes."""
    if isinstance(exc.detail, dict):
        body = ErrorResponse(**exc.detail)
    else:
        body = ErrorResponse(message=str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content=_content(body),
        headers=getattr(exc, "headers", None)
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors."""
    details = "; ".join(error.get("msg", "") for error in exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_content(ErrorResponse(message="Invalid request", error=details))
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_content(ErrorResponse(message=str(exc)))
    )


def create_app(
    store: Optional[BookStore] = None,
    api_settings: Optional[APIConfig] = None,
    store_settings: Optional[StoreConfig] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        store: Already opened store; when omitted one is opened at startup
        api_settings: API settings, defaults to the environment
        store_settings: Store settings, defaults to the environment

    Returns:
        Configured FastAPI application
    """
    api_settings = api_settings or default_api_config
    store_settings = store_settings or default_store_config

    app = FastAPI(
        title=api_settings.api_title,
        description=api_settings.api_description,
        version=api_settings.api_version,
        debug=api_settings.debug,
        lifespan=lifespan
    )
    app.state.book_store = store
    app.state.store_settings = store_settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=api_settings.cors_origins,
        allow_credentials=api_settings.cors_allow_credentials,
        allow_methods=api_settings.cors_allow_methods,
        allow_headers=api_settings.cors_allow_headers,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_logger = RequestLogger(request.method, request.url.path)
        try:
            response = await call_next(request)
        except Exception as e:
            request_logger.log_request_failed(str(e))
            raise
        request_logger.log_request_complete(response.status_code)
        response.headers["X-Request-ID"] = request_logger.request_id
        return response

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(router)
    return app


app = create_app()
