"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from api.database import BookStore
from api.main import create_app


@pytest.fixture
def book_id():
    """A valid ObjectId string."""
    return "652f1b2c9d1e8a3f4b5c6d7e"


@pytest.fixture
def sample_book_document(book_id):
    """A book as MongoDB returns it."""
    return {
        "_id": ObjectId(book_id),
        "title": "Dune",
        "author": "Frank Herbert",
        "genre": "Science Fiction",
        "stock": 5,
        "available": True,
        "addedDate": datetime(2024, 1, 15, 10, 30, 0),
    }


@pytest.fixture
def mock_book_store():
    """Create a mock book store for testing."""
    return AsyncMock(spec=BookStore)


@pytest.fixture
def client(mock_book_store):
    """Create test client around the mock store."""
    return TestClient(create_app(store=mock_book_store))


@pytest.fixture
def mock_cursor():
    """Motor cursor whose sort() chains and to_list() is awaitable."""
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[])
    return cursor


@pytest.fixture
def mock_collection(mock_cursor):
    """Create a mock motor collection for testing."""
    collection = MagicMock()
    collection.find.return_value = mock_cursor
    collection.find_one = AsyncMock(return_value=None)
    collection.insert_one = AsyncMock()
    collection.find_one_and_update = AsyncMock(return_value=None)
    collection.find_one_and_delete = AsyncMock(return_value=None)
    collection.delete_many = AsyncMock()
    collection.database.command = AsyncMock(return_value={"ok": 1})
    return collection


@pytest.fixture
def book_store(mock_collection):
    """BookStore over the mock collection."""
    return BookStore(mock_collection)


@pytest.fixture
def mongo_book_store():
    """BookStore over an in-memory MongoDB that evaluates real queries."""
    client = AsyncMongoMockClient()
    return BookStore(client["bookStoreDB"]["books"])


@pytest.fixture
def mongo_client(mongo_book_store):
    """Create test client around the in-memory store."""
    return TestClient(create_app(store=mongo_book_store))
