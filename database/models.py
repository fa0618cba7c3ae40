"""
SQLAlchemy ORM models — the canonical schema for the BookSwap store.

Application code reads and writes through ``database.executor`` with plain
SQL; these classes define the tables (``init_schema``) and their
constraints.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(128))
    university = Column(String(255))
    student_id = Column(String(64))
    phone = Column(String(32))
    avatar_url = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True, server_default="1")
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)
    last_login_at = Column(DateTime(timezone=True), nullable=True)


class UserStats(Base):
    __tablename__ = "user_stats"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    experience_points = Column(Integer, nullable=False, default=0)
    level_number = Column(Integer, nullable=False, default=1)
    books_listed = Column(Integer, nullable=False, default=0, server_default="0")
    books_sold = Column(Integer, nullable=False, default=0, server_default="0")
    successful_exchanges = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(64), nullable=False)
    resource_type = Column(String(32))
    resource_id = Column(String(36))
    details = Column(Text)
    ip_address = Column(String(64))
    user_agent = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (Index("ix_activity_logs_user_action", "user_id", "action"),)


class Book(Base):
    __tablename__ = "books"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    author = Column(String(255), nullable=False)
    isbn = Column(String(32))
    description = Column(Text)
    condition = Column(String(16), nullable=False)
    category = Column(String(64), nullable=False)
    price = Column(Numeric(10, 2))
    listing_type = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default="available", server_default="available")
    image_url = Column(Text)
    location = Column(String(255))
    views_count = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (Index("ix_books_status_created", "status", "created_at"),)


class Exchange(Base):
    __tablename__ = "exchanges"

    id = Column(String(36), primary_key=True)
    book_id = Column(String(36), ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    seller_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    status = Column(String(16), nullable=False, default="pending", server_default="pending")
    message = Column(Text)
    meeting_location = Column(String(255))
    meeting_time = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True)
    exchange_id = Column(String(36), ForeignKey("exchanges.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    message_type = Column(String(16), nullable=False, default="text", server_default="text")
    is_read = Column(Boolean, nullable=False, default=False, server_default="0")
    created_at = Column(DateTime(timezone=True), default=_now)
