"""
Tests for the BookStore persistence gateway.
Uses a mocked motor collection instead of a running MongoDB.
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import ServerSelectionTimeoutError

from api.database import BookStore
from api.exceptions import BookNotFoundError, BookValidationError, StoreError


class TestCreate:
    """Test cases for BookStore.create."""

    @pytest.mark.asyncio
    async def test_create_inserts_validated_document(self, book_store, mock_collection):
        new_id = ObjectId()
        mock_collection.insert_one.return_value = MagicMock(inserted_id=new_id)

        document = await book_store.create({"title": "Dune", "author": "Herbert", "stock": 5})

        inserted = mock_collection.insert_one.call_args.args[0]
        assert inserted["title"] == "Dune"
        assert inserted["stock"] == 5
        assert inserted["available"] is True
        assert isinstance(inserted["addedDate"], datetime)
        assert document["_id"] == new_id

    @pytest.mark.asyncio
    async def test_create_ignores_client_ids(self, book_store, mock_collection):
        mock_collection.insert_one.return_value = MagicMock(inserted_id=ObjectId())

        await book_store.create({
            "_id": "mine", "id": "mine", "addedDate": "1999-01-01",
            "title": "Dune", "author": "Herbert"
        })

        inserted = mock_collection.insert_one.call_args.args[0]
        assert "id" not in inserted
        assert inserted["addedDate"].year != 1999

    @pytest.mark.asyncio
    async def test_create_rejects_invalid_payload(self, book_store, mock_collection):
        with pytest.raises(BookValidationError) as exc_info:
            await book_store.create({"title": "Dune"})

        assert "author: Field required" in str(exc_info.value)
        mock_collection.insert_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_store_failure(self, book_store, mock_collection):
        mock_collection.insert_one.side_effect = ServerSelectionTimeoutError("no servers")

        with pytest.raises(StoreError) as exc_info:
            await book_store.create({"title": "Dune", "author": "Herbert"})

        assert "no servers" in str(exc_info.value)


class TestQueries:
    """Test cases for the read operations."""

    @pytest.mark.asyncio
    async def test_list_all_sorted_newest_first(self, book_store, mock_collection, mock_cursor,
                                                sample_book_document):
        mock_cursor.to_list.return_value = [sample_book_document]

        books = await book_store.list_all()

        assert books == [sample_book_document]
        mock_collection.find.assert_called_once_with({})
        mock_cursor.sort.assert_called_once_with([("addedDate", -1)])

    @pytest.mark.asyncio
    async def test_get_by_id(self, book_store, mock_collection, sample_book_document, book_id):
        mock_collection.find_one.return_value = sample_book_document

        book = await book_store.get_by_id(book_id)

        assert book == sample_book_document
        mock_collection.find_one.assert_called_once_with({"_id": ObjectId(book_id)})

    @pytest.mark.asyncio
    async def test_get_by_id_not_found(self, book_store, book_id):
        with pytest.raises(BookNotFoundError) as exc_info:
            await book_store.get_by_id(book_id)

        assert exc_info.value.book_id == book_id

    @pytest.mark.asyncio
    async def test_malformed_id_is_not_found(self, book_store, mock_collection):
        with pytest.raises(BookNotFoundError):
            await book_store.get_by_id("available")

        mock_collection.find_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_find_by_text_matches_any_field(self, book_store, mock_collection):
        await book_store.find_by_text("dune")

        filter_query = mock_collection.find.call_args.args[0]
        assert filter_query == {"$or": [
            {"title": {"$regex": "dune", "$options": "i"}},
            {"author": {"$regex": "dune", "$options": "i"}},
            {"genre": {"$regex": "dune", "$options": "i"}},
        ]}

    @pytest.mark.asyncio
    async def test_find_by_text_escapes_regex(self, book_store, mock_collection):
        await book_store.find_by_text("c++ (3rd)")

        filter_query = mock_collection.find.call_args.args[0]
        assert filter_query["$or"][0]["title"]["$regex"] == r"c\+\+\ \(3rd\)"

    @pytest.mark.asyncio
    async def test_find_by_genre(self, book_store, mock_collection):
        await book_store.find_by_genre("fiction")

        mock_collection.find.assert_called_once_with(
            {"genre": {"$regex": "fiction", "$options": "i"}}
        )

    @pytest.mark.asyncio
    async def test_find_available(self, book_store, mock_collection):
        await book_store.find_available()

        mock_collection.find.assert_called_once_with({"available": True, "stock": {"$gt": 0}})

    @pytest.mark.asyncio
    async def test_query_store_failure(self, book_store, mock_cursor):
        mock_cursor.to_list.side_effect = ServerSelectionTimeoutError("timed out")

        with pytest.raises(StoreError):
            await book_store.find_available()


class TestUpdates:
    """Test cases for update_by_id and set_stock."""

    @pytest.mark.asyncio
    async def test_update_merges_onto_stored(self, book_store, mock_collection,
                                             sample_book_document, book_id):
        mock_collection.find_one.return_value = sample_book_document
        updated = dict(sample_book_document, genre="Classic")
        mock_collection.find_one_and_update.return_value = updated

        result = await book_store.update_by_id(book_id, {"genre": "Classic", "addedDate": "x"})

        assert result == updated
        filter_query, update = mock_collection.find_one_and_update.call_args.args
        assert filter_query == {"_id": ObjectId(book_id)}
        assert update["$set"]["genre"] == "Classic"
        assert update["$set"]["title"] == "Dune"
        assert "addedDate" not in update["$set"]
        assert mock_collection.find_one_and_update.call_args.kwargs["return_document"] \
            == ReturnDocument.AFTER

    @pytest.mark.asyncio
    async def test_update_keeps_inconsistent_availability(self, book_store, mock_collection,
                                                          sample_book_document, book_id):
        mock_collection.find_one.return_value = sample_book_document
        mock_collection.find_one_and_update.return_value = sample_book_document

        await book_store.update_by_id(book_id, {"available": False})

        update = mock_collection.find_one_and_update.call_args.args[1]
        assert update["$set"]["available"] is False
        assert update["$set"]["stock"] == 5

    @pytest.mark.asyncio
    async def test_update_rejects_invalid_merge(self, book_store, mock_collection,
                                                sample_book_document, book_id):
        mock_collection.find_one.return_value = sample_book_document

        with pytest.raises(BookValidationError) as exc_info:
            await book_store.update_by_id(book_id, {"title": ""})

        assert "title" in str(exc_info.value)
        mock_collection.find_one_and_update.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_not_found(self, book_store, mock_collection, book_id):
        with pytest.raises(BookNotFoundError):
            await book_store.update_by_id(book_id, {"title": "Dune"})

        mock_collection.find_one_and_update.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_removed_before_write(self, book_store, mock_collection,
                                               sample_book_document, book_id):
        mock_collection.find_one.return_value = sample_book_document
        mock_collection.find_one_and_update.return_value = None

        with pytest.raises(BookNotFoundError):
            await book_store.update_by_id(book_id, {"title": "Dune Messiah"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity,available", [(0, False), (1, True), (12, True)])
    async def test_set_stock_derives_availability(self, book_store, mock_collection,
                                                  sample_book_document, book_id,
                                                  quantity, available):
        mock_collection.find_one.return_value = sample_book_document
        mock_collection.find_one_and_update.return_value = dict(
            sample_book_document, stock=quantity, available=available
        )

        result = await book_store.set_stock(book_id, quantity)

        update = mock_collection.find_one_and_update.call_args.args[1]
        assert update == {"$set": {"stock": quantity, "available": available}}
        assert result["available"] is available

    @pytest.mark.asyncio
    async def test_set_stock_rejects_negative(self, book_store, mock_collection,
                                              sample_book_document, book_id):
        mock_collection.find_one.return_value = sample_book_document

        with pytest.raises(BookValidationError):
            await book_store.set_stock(book_id, -4)

        mock_collection.find_one_and_update.assert_not_called()

    @pytest.mark.asyncio
    async def test_set_stock_unknown_id_wins_over_bad_quantity(self, book_store, book_id):
        with pytest.raises(BookNotFoundError):
            await book_store.set_stock(book_id, -4)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity,stored", [("7.0", 7), (" 7 ", 7), (3.0, 3)])
    async def test_set_stock_writes_parsed_quantity(self, book_store, mock_collection,
                                                    sample_book_document, book_id,
                                                    quantity, stored):
        mock_collection.find_one.return_value = sample_book_document
        mock_collection.find_one_and_update.return_value = sample_book_document

        await book_store.set_stock(book_id, quantity)

        update = mock_collection.find_one_and_update.call_args.args[1]
        assert update == {"$set": {"stock": stored, "available": True}}

    @pytest.mark.asyncio
    async def test_set_stock_not_found(self, book_store, book_id):
        with pytest.raises(BookNotFoundError):
            await book_store.set_stock(book_id, 3)


class TestDeletes:
    """Test cases for delete_by_id and delete_all."""

    @pytest.mark.asyncio
    async def test_delete_returns_removed_document(self, book_store, mock_collection,
                                                   sample_book_document, book_id):
        mock_collection.find_one_and_delete.return_value = sample_book_document

        result = await book_store.delete_by_id(book_id)

        assert result == sample_book_document
        mock_collection.find_one_and_delete.assert_called_once_with({"_id": ObjectId(book_id)})

    @pytest.mark.asyncio
    async def test_delete_not_found(self, book_store, book_id):
        with pytest.raises(BookNotFoundError):
            await book_store.delete_by_id(book_id)

    @pytest.mark.asyncio
    async def test_delete_all_returns_count(self, book_store, mock_collection):
        mock_collection.delete_many.return_value = MagicMock(deleted_count=7)

        assert await book_store.delete_all() == 7
        mock_collection.delete_many.assert_called_once_with({})


class TestConnection:
    """Test cases for connect, ping and close."""

    @pytest.mark.asyncio
    async def test_connect(self):
        with patch("api.database.AsyncIOMotorClient") as client_class:
            client = client_class.return_value
            client.admin.command = AsyncMock(return_value={"ok": 1})
            collection = client.__getitem__.return_value.__getitem__.return_value
            collection.create_index = AsyncMock()

            store = await BookStore.connect("mongodb://db:27017", "bookStoreDB", "books")

        client_class.assert_called_once_with("mongodb://db:27017")
        client.admin.command.assert_awaited_once_with("ping")
        collection.create_index.assert_awaited_once_with([("addedDate", -1)])
        assert store.collection is collection
        assert store.client is client

    @pytest.mark.asyncio
    async def test_connect_unreachable(self):
        with patch("api.database.AsyncIOMotorClient") as client_class:
            client = client_class.return_value
            client.admin.command = AsyncMock(side_effect=ServerSelectionTimeoutError("refused"))

            with pytest.raises(StoreError):
                await BookStore.connect("mongodb://db:27017", "bookStoreDB")

        client.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_ping(self, book_store, mock_collection):
        assert await book_store.ping() is True

        mock_collection.database.command.side_effect = ServerSelectionTimeoutError("down")
        assert await book_store.ping() is False

    def test_close(self):
        client = MagicMock()
        BookStore(MagicMock(), client).close()
        client.close.assert_called_once()
