"""
Tests for marketplace queries: exchange transitions and their guards.
"""

import pytest
from unittest.mock import AsyncMock, patch

from database import helpers, marketplace

BOOK = {
    "title": "Linear Algebra",
    "author": "Strang",
    "condition": "good",
    "category": "Mathematics",
    "listing_type": "sell",
}


async def _user(executor, user_id):
    await helpers.create_user_with_stats(executor, user_id, f"{user_id}@example.com", "hash")
    return user_id


async def _seller_stats(executor, seller_id):
    rows = await executor.execute(
        "SELECT books_sold, successful_exchanges FROM user_stats WHERE user_id = :id", {"id": seller_id},
    )
    return rows[0]


async def _status(executor, table, row_id):
    rows = await executor.execute(f"SELECT status FROM {table} WHERE id = :id", {"id": row_id})
    return rows[0]["status"]


class TestCreate:
    @pytest.mark.asyncio
    async def test_book_without_price(self, executor):
        seller = await _user(executor, "seller")
        book = await marketplace.create_book(executor, seller, {**BOOK, "listing_type": "donate"})
        assert book["price"] is None
        assert book["status"] == "available"

    @pytest.mark.asyncio
    async def test_exchange_without_meeting_time(self, executor):
        seller = await _user(executor, "seller")
        buyer = await _user(executor, "buyer")
        book = await marketplace.create_book(executor, seller, BOOK)
        exchange = await marketplace.create_exchange(executor, buyer, book["id"])
        assert exchange["meeting_time"] is None
        assert exchange["status"] == "pending"


class TestExchangeTransitions:
    @pytest.mark.asyncio
    async def test_complete_marks_book_sold_once(self, executor):
        seller = await _user(executor, "seller")
        buyer = await _user(executor, "buyer")
        book = await marketplace.create_book(executor, seller, BOOK)
        exchange = await marketplace.create_exchange(executor, buyer, book["id"])

        await marketplace.update_exchange_status(executor, exchange["id"], seller, "accepted")
        done = await marketplace.update_exchange_status(executor, exchange["id"], seller, "completed")

        assert done["status"] == "completed"
        assert await _status(executor, "books", book["id"]) == "sold"
        assert await _seller_stats(executor, seller) == {"books_sold": 1, "successful_exchanges": 1}

        with pytest.raises(ValueError, match="already completed"):
            await marketplace.update_exchange_status(executor, exchange["id"], seller, "completed")

    @pytest.mark.asyncio
    async def test_stale_read_cannot_complete_twice(self, executor):
        seller = await _user(executor, "seller")
        buyer = await _user(executor, "buyer")
        book = await marketplace.create_book(executor, seller, BOOK)
        exchange = await marketplace.create_exchange(executor, buyer, book["id"])
        await marketplace.update_exchange_status(executor, exchange["id"], seller, "accepted")
        stale = await marketplace._load_exchange(executor, exchange["id"])

        await marketplace.update_exchange_status(executor, exchange["id"], seller, "completed")

        # A second request that read the row before the first one committed.
        with patch("database.marketplace._load_exchange", new=AsyncMock(return_value=stale)):
            with pytest.raises(ValueError, match="no longer accepted"):
                await marketplace.update_exchange_status(executor, exchange["id"], seller, "completed")

        assert await _seller_stats(executor, seller) == {"books_sold": 1, "successful_exchanges": 1}

    @pytest.mark.asyncio
    async def test_stale_read_cannot_reopen_cancelled(self, executor):
        seller = await _user(executor, "seller")
        buyer = await _user(executor, "buyer")
        book = await marketplace.create_book(executor, seller, BOOK)
        exchange = await marketplace.create_exchange(executor, buyer, book["id"])
        stale = await marketplace._load_exchange(executor, exchange["id"])

        await marketplace.update_exchange_status(executor, exchange["id"], buyer, "cancelled")

        with patch("database.marketplace._load_exchange", new=AsyncMock(return_value=stale)):
            with pytest.raises(ValueError, match="no longer pending"):
                await marketplace.update_exchange_status(executor, exchange["id"], seller, "accepted")

        assert await _status(executor, "exchanges", exchange["id"]) == "cancelled"

    @pytest.mark.asyncio
    async def test_second_exchange_on_sold_book(self, executor):
        seller = await _user(executor, "seller")
        first_buyer = await _user(executor, "buyer-1")
        second_buyer = await _user(executor, "buyer-2")
        book = await marketplace.create_book(executor, seller, BOOK)
        first = await marketplace.create_exchange(executor, first_buyer, book["id"])
        second = await marketplace.create_exchange(executor, second_buyer, book["id"])
        await marketplace.update_exchange_status(executor, first["id"], seller, "accepted")
        await marketplace.update_exchange_status(executor, second["id"], seller, "accepted")

        await marketplace.update_exchange_status(executor, first["id"], seller, "completed")
        with pytest.raises(ValueError, match="Book has already been sold"):
            await marketplace.update_exchange_status(executor, second["id"], seller, "completed")

        assert await _status(executor, "exchanges", second["id"]) == "accepted"
        assert await _seller_stats(executor, seller) == {"books_sold": 1, "successful_exchanges": 1}

    @pytest.mark.asyncio
    async def test_buyer_may_only_cancel(self, executor):
        seller = await _user(executor, "seller")
        buyer = await _user(executor, "buyer")
        book = await marketplace.create_book(executor, seller, BOOK)
        exchange = await marketplace.create_exchange(executor, buyer, book["id"])

        with pytest.raises(ValueError, match="Not allowed"):
            await marketplace.update_exchange_status(executor, exchange["id"], buyer, "accepted")

    @pytest.mark.asyncio
    async def test_outsider(self, executor):
        seller = await _user(executor, "seller")
        buyer = await _user(executor, "buyer")
        outsider = await _user(executor, "outsider")
        book = await marketplace.create_book(executor, seller, BOOK)
        exchange = await marketplace.create_exchange(executor, buyer, book["id"])

        with pytest.raises(LookupError):
            await marketplace.update_exchange_status(executor, exchange["id"], outsider, "cancelled")
