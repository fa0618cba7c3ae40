"""
Credential store and activity-log helpers.

All functions take the ``QueryExecutor`` explicitly.  ``password_hash``
is only ever returned by :func:`find_user_credentials`; every other read
selects the public columns.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from database.executor import QueryExecutor

logger = logging.getLogger(__name__)

PUBLIC_USER_COLUMNS = (
    "id",
    "email",
    "full_name",
    "university",
    "student_id",
    "phone",
    "avatar_url",
    "created_at",
    "updated_at",
    "last_login_at",
)

# Columns a user may change on their own profile.
UPDATABLE_PROFILE_FIELDS = ("full_name", "university", "student_id", "phone", "avatar_url")

_SENSITIVE_USER_FIELDS = ("password_hash", "is_active")

_SELECT_PUBLIC_USER = f"SELECT {', '.join(PUBLIC_USER_COLUMNS)} FROM users"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def strip_sensitive(user: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of a user row without the password hash or status flag."""
    return {k: v for k, v in user.items() if k not in _SENSITIVE_USER_FIELDS}


# ── Users ──────────────────────────────────────────────────────────────


async def find_user_credentials(executor: QueryExecutor, email: str) -> Optional[Dict[str, Any]]:
    """Full user row (hash and status included) for a case-folded email."""
    rows = await executor.execute(
        f"SELECT {', '.join(PUBLIC_USER_COLUMNS)}, password_hash, is_active "
        "FROM users WHERE email = :email",
        {"email": email.strip().lower()},
    )
    return rows[0] if rows else None


async def email_exists(executor: QueryExecutor, email: str) -> bool:
    rows = await executor.execute(
        "SELECT id FROM users WHERE email = :email",
        {"email": email.strip().lower()},
    )
    return bool(rows)


async def get_user_by_id(executor: QueryExecutor, user_id: str) -> Optional[Dict[str, Any]]:
    rows = await executor.execute(f"{_SELECT_PUBLIC_USER} WHERE id = :id", {"id": user_id})
    return rows[0] if rows else None


async def create_user_with_stats(
    executor: QueryExecutor,
    user_id: str,
    email: str,
    password_hash: str,
    full_name: Optional[str] = None,
    university: Optional[str] = None,
) -> None:
    """Insert the user row and its stats row in one transaction."""
    now = utcnow()
    await executor.execute_transaction([
        (
            "INSERT INTO users (id, email, password_hash, full_name, university, "
            "is_active, created_at, updated_at) "
            "VALUES (:id, :email, :password_hash, :full_name, :university, "
            ":is_active, :created_at, :updated_at)",
            {
                "id": user_id,
                "email": email.strip().lower(),
                "password_hash": password_hash,
                "full_name": full_name or None,
                "university": university or None,
                "is_active": True,
                "created_at": now,
                "updated_at": now,
            },
        ),
        (
            "INSERT INTO user_stats (user_id, experience_points, level_number, created_at, updated_at) "
            "VALUES (:user_id, 0, 1, :created_at, :updated_at)",
            {"user_id": user_id, "created_at": now, "updated_at": now},
        ),
    ])


async def touch_last_login(executor: QueryExecutor, user_id: str) -> datetime:
    now = utcnow()
    await executor.execute(
        "UPDATE users SET last_login_at = :last_login WHERE id = :id",
        {"last_login": now, "id": user_id},
    )
    return now


def build_profile_update(updates: Mapping[str, Any]) -> tuple[str, Dict[str, Any]]:
    """
    Turn ``updates`` into a SET clause and its parameters.

    Column names come from ``UPDATABLE_PROFILE_FIELDS`` only; keys outside
    the allow-list raise ``ValueError``.
    """
    unknown = sorted(set(updates) - set(UPDATABLE_PROFILE_FIELDS))
    if unknown:
        raise ValueError(f"Fields cannot be updated: {', '.join(unknown)}")

    assignments: List[str] = []
    params: Dict[str, Any] = {}
    for field in UPDATABLE_PROFILE_FIELDS:
        if field in updates:
            assignments.append(f"{field} = :{field}")
            params[field] = updates[field]
    if not assignments:
        raise ValueError("No updates provided")
    return ", ".join(assignments), params


async def update_user_profile(
    executor: QueryExecutor, user_id: str, updates: Mapping[str, Any],
) -> Optional[Dict[str, Any]]:
    set_clause, params = build_profile_update(updates)
    params.update({"updated_at": utcnow(), "id": user_id})
    await executor.execute(
        f"UPDATE users SET {set_clause}, updated_at = :updated_at WHERE id = :id",
        params,
    )
    return await get_user_by_id(executor, user_id)


# ── Activity log ───────────────────────────────────────────────────────


async def log_activity(
    executor: QueryExecutor,
    action: str,
    *,
    user_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    details: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """Append one entry to ``activity_logs``."""
    await executor.execute(
        "INSERT INTO activity_logs (user_id, action, resource_type, resource_id, details, "
        "ip_address, user_agent, created_at) "
        "VALUES (:user_id, :action, :resource_type, :resource_id, :details, "
        ":ip_address, :user_agent, :created_at)",
        {
            "user_id": user_id,
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "details": details,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "created_at": utcnow(),
        },
    )


async def list_activity(
    executor: QueryExecutor, *, user_id: Optional[str] = None, action: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Activity entries, newest first, optionally filtered."""
    query = "SELECT * FROM activity_logs WHERE 1 = 1"
    params: Dict[str, Any] = {}
    if user_id is not None:
        query += " AND user_id = :user_id"
        params["user_id"] = user_id
    if action is not None:
        query += " AND action = :action"
        params["action"] = action
    query += " ORDER BY created_at DESC, id DESC"
    return await executor.execute(query, params)
