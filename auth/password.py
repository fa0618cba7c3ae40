"""
Password hashing and verification.

Uses bcrypt for password hashing with automatic salting and a
configurable work factor.  The cost is encoded in every digest, so
raising ``BCRYPT_ROUNDS`` never invalidates hashes stored at a lower cost.
"""

from __future__ import annotations

import asyncio

import bcrypt

DEFAULT_ROUNDS = 12


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash a password with bcrypt (fresh salt per call)."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time comparison against a bcrypt hash.

    Malformed digests and library errors count as a mismatch.
    """
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except (ValueError, TypeError, AttributeError):
        return False


async def hash_password_async(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Run :func:`hash_password` in a worker thread."""
    return await asyncio.to_thread(hash_password, password, rounds)


async def verify_password_async(password: str, password_hash: str) -> bool:
    """Run :func:`verify_password` in a worker thread."""
    return await asyncio.to_thread(verify_password, password, password_hash)
