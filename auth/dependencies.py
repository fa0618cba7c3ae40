"""
FastAPI dependencies for authentication.

The session token is read from the ``auth-token`` cookie first, then from
an ``Authorization: Bearer`` header.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status

from api.dependencies import get_executor, get_settings, get_token_issuer
from auth.jwt import TokenIssuer
from config.settings import Settings
from database import helpers
from database.executor import QueryExecutor


def _extract_token(request: Request, cookie_name: str) -> Optional[str]:
    token = request.cookies.get(cookie_name)
    if token:
        return token
    authorization = request.headers.get("Authorization", "")
    if authorization.startswith("Bearer "):
        return authorization[7:].strip() or None
    return None


async def get_current_user_id(
    request: Request,
    settings: Settings = Depends(get_settings),
    tokens: TokenIssuer = Depends(get_token_issuer),
) -> str:
    """Verify the session token and return the authenticated user id."""
    token = _extract_token(request, settings.auth_cookie_name)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    claims = tokens.verify(token)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return claims.user_id


async def get_current_user(
    user_id: str = Depends(get_current_user_id),
    executor: QueryExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    """The authenticated user's public record."""
    user = await helpers.get_user_by_id(executor, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user
