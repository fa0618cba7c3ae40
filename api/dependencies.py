"""
FastAPI dependencies (shared across routes).

The executor and token issuer live on ``app.state``; they are created in
the application lifespan (see ``main.py``).
"""

from __future__ import annotations

from fastapi import Request

from auth.jwt import TokenIssuer
from auth.service import AuthService, ClientInfo
from config.settings import Settings
from database.executor import QueryExecutor


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_executor(request: Request) -> QueryExecutor:
    return request.app.state.executor


def get_token_issuer(request: Request) -> TokenIssuer:
    return request.app.state.tokens


def get_auth_service(request: Request) -> AuthService:
    state = request.app.state
    return AuthService(state.executor, state.tokens, bcrypt_rounds=state.settings.bcrypt_rounds)


def get_client_info(request: Request) -> ClientInfo:
    """Client IP (first forwarded hop) and user agent for activity logging."""
    forwarded_for = request.headers.get("x-forwarded-for")
    ip_address = (
        (forwarded_for.split(",")[0].strip() if forwarded_for else None)
        or request.headers.get("x-real-ip")
        or (request.client.host if request.client else None)
        or "unknown"
    )
    return ClientInfo(
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent") or "unknown",
    )
