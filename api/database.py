"""
Persistence gateway over the MongoDB books collection.
"""

import re
from typing import Any, Dict, List, Optional, Sequence

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from api.exceptions import BookNotFoundError, BookValidationError, StoreError
from api.models import (
    strip_immutable, validate_book, validate_stock_quantity
)

logger = structlog.get_logger(__name__)

TEXT_SEARCH_FIELDS = ("title", "author", "genre")
NEWEST_FIRST = [("addedDate", DESCENDING)]


def _object_id(book_id: str) -> ObjectId:
    """Parse a book id; ids the store could never have issued match nothing."""
    try:
        return ObjectId(book_id)
    except (InvalidId, TypeError):
        raise BookNotFoundError(book_id)


def _substring(text: str) -> Dict[str, str]:
    """Case-insensitive literal substring filter."""
    return {"$regex": re.escape(text), "$options": "i"}


class BookStore:
    """
    Typed create/read/update/delete operations over book documents.

    Holds one motor collection for the lifetime of the process. Every
    operation is a single round trip except the merge-then-write updates.
    """

    def __init__(
        self,
        collection: AsyncIOMotorCollection,
        client: Optional[AsyncIOMotorClient] = None
    ):
        self.collection = collection
        self.client = client

    @classmethod
    async def connect(
        cls,
        connection_url: str,
        database_name: str,
        collection_name: str = "books"
    ) -> "BookStore":
        """
        Open the store connection and verify it.

        Args:
            connection_url: MongoDB connection string
            database_name: Name of the database
            collection_name: Name of the books collection

        Returns:
            Connected BookStore

        Raises:
            StoreError: If MongoDB cannot be reached
        """
        client = None
        try:
            client = AsyncIOMotorClient(connection_url)
            await client.admin.command("ping")
            collection = client[database_name][collection_name]
            await collection.create_index(NEWEST_FIRST)
        except PyMongoError as e:
            if client is not None:
                client.close()
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise StoreError(str(e), e)

        logger.info("Successfully connected to MongoDB",
                    database=database_name,
                    collection=collection_name)
        return cls(collection, client)

    def close(self) -> None:
        """Close the MongoDB connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    async def ping(self) -> bool:
        """Check that the store answers."""
        try:
            await self.collection.database.command("ping")
            return True
        except PyMongoError as e:
            logger.error("Database health check failed", error=str(e))
            return False

    async def _find(self, filter_query: Dict[str, Any], sort=None) -> List[Dict[str, Any]]:
        cursor = self.collection.find(filter_query)
        if sort:
            cursor = cursor.sort(sort)
        return await cursor.to_list(length=None)

    async def create(self, payload: Any) -> Dict[str, Any]:
        """
        Insert a new book.

        Args:
            payload: Candidate book fields

        Returns:
            The stored document, including its generated _id

        Raises:
            BookValidationError: If the payload breaks the schema
        """
        if isinstance(payload, dict):
            payload = strip_immutable(payload)
        result = validate_book(payload)
        if not result.ok:
            raise BookValidationError(result.errors)

        document = result.book.model_dump()
        try:
            inserted = await self.collection.insert_one(document)
        except PyMongoError as e:
            logger.error("Failed to insert book", title=document["title"], error=str(e))
            raise StoreError(str(e), e)

        document["_id"] = inserted.inserted_id
        logger.debug("Successfully inserted book", book_id=str(inserted.inserted_id))
        return document

    async def list_all(self) -> List[Dict[str, Any]]:
        """Every book, newest first."""
        try:
            return await self._find({}, NEWEST_FIRST)
        except PyMongoError as e:
            logger.error("Failed to list books", error=str(e))
            raise StoreError(str(e), e)

    async def get_by_id(self, book_id: str) -> Dict[str, Any]:
        """
        Get a single book by id.

        Raises:
            BookNotFoundError: If no book has this id
        """
        object_id = _object_id(book_id)
        try:
            document = await self.collection.find_one({"_id": object_id})
        except PyMongoError as e:
            logger.error("Failed to get book by ID", book_id=book_id, error=str(e))
            raise StoreError(str(e), e)

        if document is None:
            raise BookNotFoundError(book_id)
        return document

    async def find_by_text(
        self,
        query: str,
        fields: Sequence[str] = TEXT_SEARCH_FIELDS
    ) -> List[Dict[str, Any]]:
        """
        Books where any of the given fields contains the query.

        Args:
            query: Text to look for, matched case-insensitively
            fields: Fields searched, OR-combined
        """
        filter_query = {"$or": [{field: _substring(query)} for field in fields]}
        try:
            return await self._find(filter_query)
        except PyMongoError as e:
            logger.error("Failed to search books", query=query, error=str(e))
            raise StoreError(str(e), e)

    async def find_by_genre(self, genre: str) -> List[Dict[str, Any]]:
        """Books whose genre contains the given text."""
        try:
            return await self._find({"genre": _substring(genre)})
        except PyMongoError as e:
            logger.error("Failed to get books by genre", genre=genre, error=str(e))
            raise StoreError(str(e), e)

    async def find_available(self) -> List[Dict[str, Any]]:
        """Books flagged available that also have copies in stock."""
        try:
            return await self._find({"available": True, "stock": {"$gt": 0}})
        except PyMongoError as e:
            logger.error("Failed to get available books", error=str(e))
            raise StoreError(str(e), e)

    async def update_by_id(self, book_id: str, payload: Any) -> Dict[str, Any]:
        """
        Merge a partial payload onto a stored book.

        The merged document is validated as a whole before it is written.
        Availability is taken as given here; only set_stock keeps it in
        line with the stock level.

        Returns:
            The document after the update

        Raises:
            BookNotFoundError: If no book has this id
            BookValidationError: If the merged document breaks the schema
        """
        stored = await self.get_by_id(book_id)
        if not isinstance(payload, dict):
            raise BookValidationError(validate_book(payload).errors)

        merged = {k: v for k, v in stored.items() if k != "_id"}
        merged.update(strip_immutable(payload))
        result = validate_book(merged)
        if not result.ok:
            raise BookValidationError(result.errors)

        changes = result.book.model_dump()
        del changes["addedDate"]
        return await self._set(book_id, stored["_id"], changes)

    async def set_stock(self, book_id: str, quantity: Any) -> Dict[str, Any]:
        """
        Set the stock level and derive availability from it.

        The book is looked up before the quantity is checked, so an unknown
        id is reported as missing whatever the quantity.

        Raises:
            BookNotFoundError: If no book has this id
            BookValidationError: If quantity is not a non-negative integer
        """
        stored = await self.get_by_id(book_id)
        result = validate_stock_quantity(quantity)
        if not result.ok:
            raise BookValidationError(result.errors)

        return await self._set(
            book_id,
            stored["_id"],
            {"stock": result.quantity, "available": result.quantity > 0}
        )

    async def _set(self, book_id: str, object_id: ObjectId, changes: Dict[str, Any]) -> Dict[str, Any]:
        try:
            document = await self.collection.find_one_and_update(
                {"_id": object_id},
                {"$set": changes},
                return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            logger.error("Failed to update book", book_id=book_id, error=str(e))
            raise StoreError(str(e), e)

        # Removed between the read and the write.
        if document is None:
            raise BookNotFoundError(book_id)
        logger.debug("Successfully updated book", book_id=book_id, fields=sorted(changes))
        return document

    async def delete_by_id(self, book_id: str) -> Dict[str, Any]:
        """
        Remove a book and return it.

        Raises:
            BookNotFoundError: If no book has this id
        """
        object_id = _object_id(book_id)
        try:
            document = await self.collection.find_one_and_delete({"_id": object_id})
        except PyMongoError as e:
            logger.error("Failed to delete book", book_id=book_id, error=str(e))
            raise StoreError(str(e), e)

        if document is None:
            raise BookNotFoundError(book_id)
        logger.debug("Successfully deleted book", book_id=book_id)
        return document

    async def delete_all(self) -> int:
        """Remove every book; returns how many were removed."""
        try:
            result = await self.collection.delete_many({})
        except PyMongoError as e:
            logger.error("Failed to delete books", error=str(e))
            raise StoreError(str(e), e)

        logger.info("Deleted all books", count=result.deleted_count)
        return result.deleted_count
