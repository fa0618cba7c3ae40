"""
Marketplace queries — books, exchanges and messages.

Filters append constant SQL fragments; their values are always bound
parameters.  Ownership / participation failures raise ``LookupError``
(reported as "not found"), bad input raises ``ValueError``.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.types import DateTime, Numeric

from database.executor import NoRowsAffected, QueryExecutor, Statement
from database.helpers import utcnow

logger = logging.getLogger(__name__)

# Column types for nullable non-text parameters.
_PRICE_NULL = {"price": Numeric(10, 2)}
_MEETING_TIME_NULL = {"meeting_time": DateTime(timezone=True)}

BOOK_CONDITIONS = ("new", "like_new", "good", "acceptable", "poor")
LISTING_TYPES = ("sell", "exchange", "donate")
BOOK_STATUSES = ("available", "reserved", "sold")
EXCHANGE_STATUSES = ("pending", "accepted", "rejected", "completed", "cancelled")
MESSAGE_TYPES = ("text", "system", "image")

UPDATABLE_BOOK_FIELDS = (
    "title",
    "author",
    "isbn",
    "description",
    "condition",
    "category",
    "price",
    "listing_type",
    "status",
    "image_url",
    "location",
)

MAX_PAGE_SIZE = 50
DEFAULT_PAGE_SIZE = 12

_BOOK_WITH_OWNER = """
    SELECT b.*, u.full_name AS user_name, u.avatar_url AS user_avatar
    FROM books b
    INNER JOIN users u ON b.user_id = u.id
"""

_EXCHANGE_WITH_DETAILS = """
    SELECT e.*,
           b.title AS book_title,
           b.author AS book_author,
           b.image_url AS book_image_url,
           seller.full_name AS seller_name,
           buyer.full_name AS buyer_name
    FROM exchanges e
    INNER JOIN books b ON e.book_id = b.id
    INNER JOIN users seller ON e.seller_id = seller.id
    INNER JOIN users buyer ON e.buyer_id = buyer.id
"""

# Which side of an exchange may move it to a given status.
_SELLER_TRANSITIONS = {"accepted", "rejected", "completed", "cancelled"}
_BUYER_TRANSITIONS = {"cancelled"}
_OPEN_EXCHANGE_STATUSES = ("pending", "accepted")


def _check_choice(field: str, value: Any, choices: Tuple[str, ...]) -> None:
    if value not in choices:
        raise ValueError(f"Invalid {field} value")


# ── Books ──────────────────────────────────────────────────────────────


@dataclass
class BookFilters:
    category: Optional[str] = None
    condition: Optional[str] = None
    listing_type: Optional[str] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    search: Optional[str] = None
    university: Optional[str] = None
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE


def _book_where(filters: BookFilters) -> Tuple[str, Dict[str, Any]]:
    conditions = ["b.status = :status"]
    params: Dict[str, Any] = {"status": "available"}

    if filters.category:
        conditions.append("b.category = :category")
        params["category"] = filters.category
    if filters.condition:
        conditions.append("b.condition = :condition")
        params["condition"] = filters.condition
    if filters.listing_type:
        conditions.append("b.listing_type = :listing_type")
        params["listing_type"] = filters.listing_type
    if filters.min_price is not None:
        conditions.append("b.price >= :min_price")
        params["min_price"] = filters.min_price
    if filters.max_price is not None:
        conditions.append("b.price <= :max_price")
        params["max_price"] = filters.max_price
    if filters.search:
        conditions.append(
            "(b.title LIKE :search OR b.author LIKE :search OR b.description LIKE :search)"
        )
        params["search"] = f"%{filters.search}%"
    if filters.university:
        conditions.append("u.university = :university")
        params["university"] = filters.university

    return " AND ".join(conditions), params


async def search_books(executor: QueryExecutor, filters: BookFilters) -> Dict[str, Any]:
    """Available books matching ``filters`` plus pagination info."""
    page = max(filters.page, 1)
    limit = min(max(filters.limit, 1), MAX_PAGE_SIZE)
    where, params = _book_where(filters)

    books = await executor.execute(
        f"{_BOOK_WITH_OWNER} WHERE {where} "
        "ORDER BY b.created_at DESC LIMIT :limit OFFSET :offset",
        {**params, "limit": limit, "offset": (page - 1) * limit},
    )
    count_rows = await executor.execute(
        "SELECT COUNT(*) AS total_count FROM books b "
        f"INNER JOIN users u ON b.user_id = u.id WHERE {where}",
        params,
    )
    total = int(count_rows[0]["total_count"]) if count_rows else 0
    return {
        "books": books,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit),
        },
    }


async def get_book(executor: QueryExecutor, book_id: str) -> Optional[Dict[str, Any]]:
    rows = await executor.execute(f"{_BOOK_WITH_OWNER} WHERE b.id = :book_id", {"book_id": book_id})
    return rows[0] if rows else None


async def increment_views(executor: QueryExecutor, book_id: str) -> None:
    await executor.execute(
        "UPDATE books SET views_count = views_count + 1 WHERE id = :book_id",
        {"book_id": book_id},
    )


async def list_user_books(executor: QueryExecutor, user_id: str) -> List[Dict[str, Any]]:
    return await executor.execute(
        f"{_BOOK_WITH_OWNER} WHERE b.user_id = :user_id ORDER BY b.created_at DESC",
        {"user_id": user_id},
    )


async def create_book(executor: QueryExecutor, user_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Insert a listing, bump the owner's stats and log it atomically."""
    missing = [f for f in ("title", "author", "condition", "category", "listing_type") if not data.get(f)]
    if missing:
        raise ValueError("Title, author, condition, category, and listing type are required")
    _check_choice("condition", data["condition"], BOOK_CONDITIONS)
    _check_choice("listing type", data["listing_type"], LISTING_TYPES)

    book_id = str(uuid.uuid4())
    now = utcnow()
    await executor.execute_transaction([
        Statement(
            "INSERT INTO books (id, user_id, title, author, isbn, description, condition, "
            "category, price, listing_type, status, image_url, location, views_count, "
            "created_at, updated_at) "
            "VALUES (:id, :user_id, :title, :author, :isbn, :description, :condition, "
            ":category, :price, :listing_type, 'available', :image_url, :location, 0, "
            ":created_at, :updated_at)",
            {
                "id": book_id,
                "user_id": user_id,
                "title": data["title"],
                "author": data["author"],
                "isbn": data.get("isbn") or None,
                "description": data.get("description") or None,
                "condition": data["condition"],
                "category": data["category"],
                "price": data.get("price"),
                "listing_type": data["listing_type"],
                "image_url": data.get("image_url") or None,
                "location": data.get("location") or None,
                "created_at": now,
                "updated_at": now,
            },
            _PRICE_NULL,
        ),
        (
            "UPDATE user_stats SET books_listed = books_listed + 1, updated_at = :updated_at "
            "WHERE user_id = :user_id",
            {"user_id": user_id, "updated_at": now},
        ),
        (
            "INSERT INTO activity_logs (user_id, action, resource_type, resource_id, details, created_at) "
            "VALUES (:user_id, 'book_created', 'book', :book_id, :details, :created_at)",
            {
                "user_id": user_id,
                "book_id": book_id,
                "details": f"Listed book: {data['title']}",
                "created_at": now,
            },
        ),
    ])
    logger.info("Book %s listed by %s", book_id, user_id)
    return await get_book(executor, book_id)


def build_book_update(updates: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """SET clause from ``UPDATABLE_BOOK_FIELDS`` only; unknown keys raise ``ValueError``."""
    unknown = sorted(set(updates) - set(UPDATABLE_BOOK_FIELDS))
    if unknown:
        raise ValueError(f"Fields cannot be updated: {', '.join(unknown)}")
    if "condition" in updates:
        _check_choice("condition", updates["condition"], BOOK_CONDITIONS)
    if "listing_type" in updates:
        _check_choice("listing type", updates["listing_type"], LISTING_TYPES)
    if "status" in updates:
        _check_choice("status", updates["status"], BOOK_STATUSES)

    assignments = [f"{f} = :{f}" for f in UPDATABLE_BOOK_FIELDS if f in updates]
    if not assignments:
        raise ValueError("No updates provided")
    return ", ".join(assignments), {f: updates[f] for f in UPDATABLE_BOOK_FIELDS if f in updates}


async def _owned_book(executor: QueryExecutor, book_id: str, user_id: str) -> Dict[str, Any]:
    rows = await executor.execute("SELECT id, user_id FROM books WHERE id = :book_id", {"book_id": book_id})
    if not rows or rows[0]["user_id"] != user_id:
        raise LookupError("Book not found or access denied")
    return rows[0]


async def update_book(
    executor: QueryExecutor, book_id: str, user_id: str, updates: Mapping[str, Any],
) -> Dict[str, Any]:
    set_clause, params = build_book_update(updates)
    await _owned_book(executor, book_id, user_id)
    params.update({"updated_at": utcnow(), "book_id": book_id})
    await executor.execute(
        f"UPDATE books SET {set_clause}, updated_at = :updated_at WHERE id = :book_id",
        params,
        _PRICE_NULL,
    )
    return await get_book(executor, book_id)


async def delete_book(executor: QueryExecutor, book_id: str, user_id: str) -> None:
    await _owned_book(executor, book_id, user_id)
    rows = await executor.execute(
        "SELECT COUNT(*) AS active_exchanges FROM exchanges "
        "WHERE book_id = :book_id AND status IN ('pending', 'accepted')",
        {"book_id": book_id},
    )
    if rows and int(rows[0]["active_exchanges"]) > 0:
        raise ValueError("Cannot delete book with active exchanges")
    await executor.execute("DELETE FROM books WHERE id = :book_id", {"book_id": book_id})
    logger.info("Book %s deleted by %s", book_id, user_id)


# ── Exchanges ──────────────────────────────────────────────────────────


async def get_exchange(executor: QueryExecutor, exchange_id: str) -> Optional[Dict[str, Any]]:
    rows = await executor.execute(
        f"{_EXCHANGE_WITH_DETAILS} WHERE e.id = :exchange_id", {"exchange_id": exchange_id},
    )
    return rows[0] if rows else None


async def list_exchanges(
    executor: QueryExecutor,
    user_id: str,
    status: Optional[str] = None,
    side: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Exchanges the user takes part in; ``side`` is ``selling`` or ``buying``."""
    query = f"{_EXCHANGE_WITH_DETAILS} WHERE (e.seller_id = :user_id OR e.buyer_id = :user_id)"
    params: Dict[str, Any] = {"user_id": user_id}
    if status:
        query += " AND e.status = :status"
        params["status"] = status
    if side == "selling":
        query += " AND e.seller_id = :user_id"
    elif side == "buying":
        query += " AND e.buyer_id = :user_id"
    query += " ORDER BY e.created_at DESC"
    return await executor.execute(query, params)


async def create_exchange(
    executor: QueryExecutor,
    buyer_id: str,
    book_id: str,
    message: Optional[str] = None,
    meeting_location: Optional[str] = None,
    meeting_time: Optional[datetime] = None,
) -> Dict[str, Any]:
    books = await executor.execute(
        "SELECT id, user_id, status, title FROM books WHERE id = :book_id", {"book_id": book_id},
    )
    if not books:
        raise LookupError("Book not found")
    book = books[0]
    if book["user_id"] == buyer_id:
        raise ValueError("Cannot create exchange request for your own book")
    if book["status"] != "available":
        raise ValueError("Book is not available for exchange")

    exchange_id = str(uuid.uuid4())
    now = utcnow()
    await executor.execute_transaction([
        Statement(
            "INSERT INTO exchanges (id, book_id, seller_id, buyer_id, status, message, "
            "meeting_location, meeting_time, created_at, updated_at) "
            "VALUES (:id, :book_id, :seller_id, :buyer_id, 'pending', :message, "
            ":meeting_location, :meeting_time, :created_at, :updated_at)",
            {
                "id": exchange_id,
                "book_id": book_id,
                "seller_id": book["user_id"],
                "buyer_id": buyer_id,
                "message": message or None,
                "meeting_location": meeting_location or None,
                "meeting_time": meeting_time,
                "created_at": now,
                "updated_at": now,
            },
            _MEETING_TIME_NULL,
        ),
        (
            "INSERT INTO activity_logs (user_id, action, resource_type, resource_id, details, created_at) "
            "VALUES (:user_id, 'exchange_requested', 'exchange', :exchange_id, :details, :created_at)",
            {
                "user_id": buyer_id,
                "exchange_id": exchange_id,
                "details": f"Requested book: {book['title']}",
                "created_at": now,
            },
        ),
    ])
    return await get_exchange(executor, exchange_id)


async def update_exchange_status(
    executor: QueryExecutor, exchange_id: str, user_id: str, status: str,
) -> Dict[str, Any]:
    """
    Move an exchange to ``status`` on behalf of ``user_id``.

    The status write is conditional on the status read here, and completing
    requires the book to be unsold, so concurrent requests cannot apply the
    same transition twice.
    """
    _check_choice("status", status, EXCHANGE_STATUSES)
    exchange = await _load_exchange(executor, exchange_id)
    if exchange is None or user_id not in (exchange["seller_id"], exchange["buyer_id"]):
        raise LookupError("Exchange not found or access denied")

    allowed = _SELLER_TRANSITIONS if user_id == exchange["seller_id"] else _BUYER_TRANSITIONS
    if status not in allowed:
        raise ValueError(f"Not allowed to mark this exchange as {status}")
    if exchange["status"] not in _OPEN_EXCHANGE_STATUSES:
        raise ValueError(f"Exchange is already {exchange['status']}")
    if status == "completed" and exchange["status"] != "accepted":
        raise ValueError("Only accepted exchanges can be completed")

    now = utcnow()
    statements = [Statement(
        "UPDATE exchanges SET status = :status, updated_at = :updated_at "
        "WHERE id = :exchange_id AND status = :expected_status",
        {
            "status": status,
            "updated_at": now,
            "exchange_id": exchange_id,
            "expected_status": exchange["status"],
        },
        require_rows=True,
    )]
    if status == "completed":
        statements.append(Statement(
            "UPDATE books SET status = 'sold', updated_at = :updated_at "
            "WHERE id = :book_id AND status <> 'sold'",
            {"updated_at": now, "book_id": exchange["book_id"]},
            require_rows=True,
        ))
        statements.append(Statement(
            "UPDATE user_stats SET books_sold = books_sold + 1, "
            "successful_exchanges = successful_exchanges + 1, updated_at = :updated_at "
            "WHERE user_id = :user_id",
            {"updated_at": now, "user_id": exchange["seller_id"]},
        ))

    try:
        await executor.execute_transaction(statements)
    except NoRowsAffected as exc:
        logger.info("Exchange %s -> %s lost a concurrent update (%s)", exchange_id, status, exc.operation)
        if exc.operation == "UPDATE books":
            raise ValueError("Book has already been sold") from exc
        raise ValueError(f"Exchange is no longer {exchange['status']}") from exc
    logger.info("Exchange %s -> %s by %s", exchange_id, status, user_id)
    return await get_exchange(executor, exchange_id)


async def _load_exchange(executor: QueryExecutor, exchange_id: str) -> Optional[Dict[str, Any]]:
    rows = await executor.execute(
        "SELECT id, book_id, seller_id, buyer_id, status FROM exchanges WHERE id = :exchange_id",
        {"exchange_id": exchange_id},
    )
    return rows[0] if rows else None


# ── Messages ───────────────────────────────────────────────────────────


async def _require_participant(executor: QueryExecutor, exchange_id: str, user_id: str) -> None:
    rows = await executor.execute(
        "SELECT id FROM exchanges WHERE id = :exchange_id "
        "AND (seller_id = :user_id OR buyer_id = :user_id)",
        {"exchange_id": exchange_id, "user_id": user_id},
    )
    if not rows:
        raise LookupError("Exchange not found or access denied")


async def list_messages(executor: QueryExecutor, user_id: str, exchange_id: str) -> List[Dict[str, Any]]:
    return await executor.execute(
        """
        SELECT m.*, u.full_name AS sender_name, u.avatar_url AS sender_avatar
        FROM messages m
        INNER JOIN users u ON m.sender_id = u.id
        INNER JOIN exchanges e ON m.exchange_id = e.id
        WHERE m.exchange_id = :exchange_id
          AND (e.seller_id = :user_id OR e.buyer_id = :user_id)
        ORDER BY m.created_at ASC
        """,
        {"exchange_id": exchange_id, "user_id": user_id},
    )


async def list_conversations(executor: QueryExecutor, user_id: str) -> List[Dict[str, Any]]:
    """One row per exchange: latest message, the other party and unread count."""
    return await executor.execute(
        """
        WITH latest_messages AS (
            SELECT m.exchange_id, m.content, m.created_at, m.sender_id,
                   ROW_NUMBER() OVER (PARTITION BY m.exchange_id ORDER BY m.created_at DESC) AS rn
            FROM messages m
            INNER JOIN exchanges e ON m.exchange_id = e.id
            WHERE (e.seller_id = :user_id OR e.buyer_id = :user_id)
        )
        SELECT e.id AS exchange_id,
               e.status,
               b.title AS book_title,
               b.author AS book_author,
               b.image_url AS book_image_url,
               lm.content AS last_message,
               lm.created_at AS last_message_time,
               CASE WHEN e.seller_id = :user_id THEN buyer.full_name
                    ELSE seller.full_name END AS other_user_name,
               CASE WHEN e.seller_id = :user_id THEN buyer.avatar_url
                    ELSE seller.avatar_url END AS other_user_avatar,
               (SELECT COUNT(*) FROM messages m2
                 WHERE m2.exchange_id = e.id
                   AND m2.sender_id != :user_id
                   AND m2.is_read = :unread) AS unread_count
        FROM exchanges e
        INNER JOIN books b ON e.book_id = b.id
        INNER JOIN users seller ON e.seller_id = seller.id
        INNER JOIN users buyer ON e.buyer_id = buyer.id
        LEFT JOIN latest_messages lm ON e.id = lm.exchange_id AND lm.rn = 1
        WHERE (e.seller_id = :user_id OR e.buyer_id = :user_id)
        ORDER BY COALESCE(lm.created_at, e.created_at) DESC
        """,
        {"user_id": user_id, "unread": False},
    )


async def send_message(
    executor: QueryExecutor,
    user_id: str,
    exchange_id: str,
    content: str,
    message_type: str = "text",
) -> Dict[str, Any]:
    if not exchange_id or not content:
        raise ValueError("Exchange ID and content are required")
    _check_choice("message type", message_type, MESSAGE_TYPES)
    await _require_participant(executor, exchange_id, user_id)

    message_id = str(uuid.uuid4())
    await executor.execute(
        "INSERT INTO messages (id, exchange_id, sender_id, content, message_type, is_read, created_at) "
        "VALUES (:id, :exchange_id, :sender_id, :content, :message_type, :is_read, :created_at)",
        {
            "id": message_id,
            "exchange_id": exchange_id,
            "sender_id": user_id,
            "content": content,
            "message_type": message_type,
            "is_read": False,
            "created_at": utcnow(),
        },
    )
    rows = await executor.execute(
        """
        SELECT m.*, u.full_name AS sender_name, u.avatar_url AS sender_avatar
        FROM messages m
        INNER JOIN users u ON m.sender_id = u.id
        WHERE m.id = :id
        """,
        {"id": message_id},
    )
    return rows[0]
