"""
JWT session token creation and verification.

Tokens are HS256-signed JWTs carrying ``sub`` (user id), ``email``,
``iat`` and ``exp``.  Secret and lifetime come from ``config.jwt_secret``
and ``config.jwt_expiry_seconds`` (env vars ``JWT_SECRET`` and
``JWT_EXPIRY_SECONDS``).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from jose import JWTError, jwt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    email: str


class TokenIssuer:
    """Issues and verifies signed session tokens."""

    def __init__(self, secret: str, expiry_seconds: int = 86400, algorithm: str = "HS256"):
        if not secret or not secret.strip():
            raise ValueError("A non-empty token signing secret is required")
        self._secret = secret
        self._algorithm = algorithm
        self.expiry_seconds = expiry_seconds

    def issue(self, user_id: str, email: str) -> str:
        """Create a signed token for ``user_id`` / ``email``."""
        now = int(time.time())
        claims = {
            "sub": str(user_id),
            "email": email,
            "iat": now,
            "exp": now + self.expiry_seconds,
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> Optional[TokenClaims]:
        """
        Return the token's claims, or ``None`` when the token is invalid.

        Bad signatures, tampered payloads, malformed tokens and expired
        tokens all produce the same ``None``.
        """
        if not token:
            return None
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except (JWTError, ValueError, TypeError) as exc:
            logger.debug("Token rejected: %s", type(exc).__name__)
            return None

        user_id = payload.get("sub")
        email = payload.get("email")
        if not user_id or not email or "exp" not in payload:
            logger.debug("Token rejected: missing claims")
            return None
        return TokenClaims(user_id=user_id, email=email)
