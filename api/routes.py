"""
Marketplace REST routes (books, exchanges, messages) plus health checks.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field

from api.dependencies import get_executor
from auth.dependencies import get_current_user_id
from database import marketplace
from database.executor import QueryExecutor

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request schemas ────────────────────────────────────────────────────


class BookCreateRequest(BaseModel):
    title: str = Field("", max_length=255)
    author: str = Field("", max_length=255)
    isbn: Optional[str] = Field(None, max_length=32)
    description: Optional[str] = None
    condition: str = ""
    category: str = Field("", max_length=64)
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    listing_type: str = ""
    image_url: Optional[str] = None
    location: Optional[str] = Field(None, max_length=255)


class BookUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, max_length=255)
    author: Optional[str] = Field(None, max_length=255)
    isbn: Optional[str] = Field(None, max_length=32)
    description: Optional[str] = None
    condition: Optional[str] = None
    category: Optional[str] = Field(None, max_length=64)
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    listing_type: Optional[str] = None
    status: Optional[str] = None
    image_url: Optional[str] = None
    location: Optional[str] = Field(None, max_length=255)


class ExchangeCreateRequest(BaseModel):
    book_id: str = ""
    message: Optional[str] = None
    meeting_location: Optional[str] = Field(None, max_length=255)
    meeting_time: Optional[datetime] = None


class ExchangeStatusRequest(BaseModel):
    status: str


class MessageCreateRequest(BaseModel):
    exchange_id: str = ""
    content: str = ""
    message_type: str = "text"


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _not_found(exc: LookupError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


# ── Books ──────────────────────────────────────────────────────────────


@router.get("/books")
async def list_books(
    category: Optional[str] = None,
    search: Optional[str] = None,
    condition: Optional[str] = None,
    listing_type: Optional[str] = None,
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    university: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(marketplace.DEFAULT_PAGE_SIZE, ge=1),
    executor: QueryExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    """Browse / search available books."""
    filters = marketplace.BookFilters(
        category=category,
        condition=condition,
        listing_type=listing_type,
        min_price=min_price,
        max_price=max_price,
        search=search,
        university=university,
        page=page,
        limit=limit,
    )
    return jsonable_encoder(await marketplace.search_books(executor, filters))


@router.get("/books/mine")
async def my_books(
    user_id: str = Depends(get_current_user_id),
    executor: QueryExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    return {"books": jsonable_encoder(await marketplace.list_user_books(executor, user_id))}


@router.get("/books/{book_id}")
async def get_book(book_id: str, executor: QueryExecutor = Depends(get_executor)) -> Dict[str, Any]:
    book = await marketplace.get_book(executor, book_id)
    if book is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Book not found")
    await marketplace.increment_views(executor, book_id)
    return {"book": jsonable_encoder(book)}


@router.post("/books", status_code=status.HTTP_201_CREATED)
async def create_book(
    req: BookCreateRequest,
    user_id: str = Depends(get_current_user_id),
    executor: QueryExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    """Create a new listing owned by the current user."""
    try:
        book = await marketplace.create_book(executor, user_id, req.model_dump())
    except ValueError as exc:
        raise _bad_request(exc)
    return {"message": "Book created successfully", "book": jsonable_encoder(book)}


@router.patch("/books/{book_id}")
async def update_book(
    book_id: str,
    req: BookUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    executor: QueryExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    try:
        book = await marketplace.update_book(
            executor, book_id, user_id, req.model_dump(exclude_unset=True),
        )
    except LookupError as exc:
        raise _not_found(exc)
    except ValueError as exc:
        raise _bad_request(exc)
    return {"message": "Book updated successfully", "book": jsonable_encoder(book)}


@router.delete("/books/{book_id}")
async def delete_book(
    book_id: str,
    user_id: str = Depends(get_current_user_id),
    executor: QueryExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    try:
        await marketplace.delete_book(executor, book_id, user_id)
    except LookupError as exc:
        raise _not_found(exc)
    except ValueError as exc:
        raise _bad_request(exc)
    return {"message": "Book deleted successfully"}


# ── Exchanges ──────────────────────────────────────────────────────────


@router.get("/exchanges")
async def list_exchanges(
    status_filter: Optional[str] = Query(None, alias="status"),
    side: Optional[Literal["selling", "buying"]] = Query(None, alias="type"),
    user_id: str = Depends(get_current_user_id),
    executor: QueryExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    exchanges = await marketplace.list_exchanges(executor, user_id, status=status_filter, side=side)
    return {"exchanges": jsonable_encoder(exchanges)}


@router.post("/exchanges", status_code=status.HTTP_201_CREATED)
async def create_exchange(
    req: ExchangeCreateRequest,
    user_id: str = Depends(get_current_user_id),
    executor: QueryExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    """Request an exchange for someone else's available book."""
    if not req.book_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Book ID is required")
    try:
        exchange = await marketplace.create_exchange(
            executor, user_id, req.book_id,
            message=req.message,
            meeting_location=req.meeting_location,
            meeting_time=req.meeting_time,
        )
    except LookupError as exc:
        raise _not_found(exc)
    except ValueError as exc:
        raise _bad_request(exc)
    return {"message": "Exchange request created successfully", "exchange": jsonable_encoder(exchange)}


@router.patch("/exchanges/{exchange_id}")
async def update_exchange(
    exchange_id: str,
    req: ExchangeStatusRequest,
    user_id: str = Depends(get_current_user_id),
    executor: QueryExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    try:
        exchange = await marketplace.update_exchange_status(executor, exchange_id, user_id, req.status)
    except LookupError as exc:
        raise _not_found(exc)
    except ValueError as exc:
        raise _bad_request(exc)
    return {"message": "Exchange updated successfully", "exchange": jsonable_encoder(exchange)}


# ── Messages ───────────────────────────────────────────────────────────


@router.get("/messages")
async def list_messages(
    exchange_id: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    executor: QueryExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    """Messages of one exchange, or the conversation overview when no id is given."""
    if exchange_id:
        messages = await marketplace.list_messages(executor, user_id, exchange_id)
        return {"messages": jsonable_encoder(messages)}
    conversations = await marketplace.list_conversations(executor, user_id)
    return {"conversations": jsonable_encoder(conversations)}


@router.post("/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    req: MessageCreateRequest,
    user_id: str = Depends(get_current_user_id),
    executor: QueryExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    try:
        message = await marketplace.send_message(
            executor, user_id, req.exchange_id, req.content, req.message_type,
        )
    except LookupError as exc:
        raise _not_found(exc)
    except ValueError as exc:
        raise _bad_request(exc)
    return {"message": "Message sent successfully", "data": jsonable_encoder(message)}


# ── Health ─────────────────────────────────────────────────────────────


@router.get("/health", tags=["health"])
async def health() -> Dict[str, Any]:
    return {"status": "ok"}


@router.get("/test-db", tags=["health"])
async def test_db(executor: QueryExecutor = Depends(get_executor)):
    """Database connectivity check."""
    result = await executor.test_connection()
    if not result["success"]:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database connection failed",
        )
    return {"status": "connected"}
