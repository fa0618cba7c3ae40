"""
Auth service — registration, login and profile updates.

User-correctable outcomes (bad input, wrong credentials, blocked account,
duplicate email) come back as an ``AuthResult`` with a ``reason``;
infrastructure failures propagate as ``QueryError``.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from auth.jwt import TokenIssuer
from auth.password import DEFAULT_ROUNDS, hash_password_async, verify_password_async
from auth.validation import is_valid_email, password_policy_errors
from database import helpers
from database.executor import ConstraintViolation, QueryExecutor

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
ACCOUNT_DEACTIVATED = "Your account has been deactivated. Please contact support."
MISSING_CREDENTIALS = "Email and password are required"
EMAIL_TAKEN = "User with this email already exists"


class AuthFailure(str, enum.Enum):
    MISSING_FIELDS = "missing_fields"
    INVALID_EMAIL = "invalid_email"
    WEAK_PASSWORD = "weak_password"
    ALREADY_EXISTS = "already_exists"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_BLOCKED = "account_blocked"


@dataclass
class AuthResult:
    user: Optional[Dict[str, Any]] = None
    token: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[AuthFailure] = None
    details: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def rejected(cls, reason: AuthFailure, error: str, details: Optional[List[str]] = None) -> "AuthResult":
        return cls(error=error, reason=reason, details=details or [])


@dataclass
class ClientInfo:
    """Request metadata recorded with every auth event."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuthService:
    def __init__(
        self,
        executor: QueryExecutor,
        tokens: TokenIssuer,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
    ):
        self._db = executor
        self._tokens = tokens
        self._rounds = bcrypt_rounds

    # ── Registration ───────────────────────────────────────────────────

    async def register(
        self,
        email: str,
        password: str,
        full_name: Optional[str] = None,
        university: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> AuthResult:
        """Validate, persist and sign in a new user."""
        client = client or ClientInfo()
        if not email or not password:
            return AuthResult.rejected(AuthFailure.MISSING_FIELDS, MISSING_CREDENTIALS)

        email = email.strip().lower()
        if not is_valid_email(email):
            return AuthResult.rejected(AuthFailure.INVALID_EMAIL, "Invalid email format")

        problems = password_policy_errors(password)
        if problems:
            return AuthResult.rejected(AuthFailure.WEAK_PASSWORD, "; ".join(problems), problems)

        if await helpers.email_exists(self._db, email):
            return AuthResult.rejected(AuthFailure.ALREADY_EXISTS, EMAIL_TAKEN)

        user_id = str(uuid.uuid4())
        password_hash = await hash_password_async(password, self._rounds)
        try:
            await helpers.create_user_with_stats(
                self._db, user_id, email, password_hash,
                full_name=full_name, university=university,
            )
        except ConstraintViolation:
            # Lost a race with a concurrent registration for the same email.
            return AuthResult.rejected(AuthFailure.ALREADY_EXISTS, EMAIL_TAKEN)

        user = await helpers.get_user_by_id(self._db, user_id)
        token = self._tokens.issue(user_id, email)

        await helpers.log_activity(
            self._db, "user_registered",
            user_id=user_id, resource_type="user", resource_id=user_id,
            ip_address=client.ip_address, user_agent=client.user_agent,
        )
        logger.info("Registered user %s", user_id)
        return AuthResult(user=user, token=token)

    # ── Login ──────────────────────────────────────────────────────────

    async def login(
        self, email: str, password: str, client: Optional[ClientInfo] = None,
    ) -> AuthResult:
        """
        Authenticate ``email`` / ``password``.

        Order is fixed: lookup, account status, then the bcrypt comparison.
        Unknown email and wrong password yield the same message.
        """
        client = client or ClientInfo()
        if not email or not password:
            return AuthResult.rejected(AuthFailure.MISSING_FIELDS, MISSING_CREDENTIALS)

        email = email.strip().lower()
        record = await helpers.find_user_credentials(self._db, email)

        if record is None:
            await helpers.log_activity(
                self._db, "login_failed",
                resource_type="auth",
                details=f"Failed login attempt for email: {email}",
                ip_address=client.ip_address, user_agent=client.user_agent,
            )
            logger.info("Login failed: unknown email")
            return AuthResult.rejected(AuthFailure.INVALID_CREDENTIALS, INVALID_CREDENTIALS)

        user_id = record["id"]
        if not record["is_active"]:
            await helpers.log_activity(
                self._db, "login_blocked",
                user_id=user_id, resource_type="auth",
                details="Login attempt for deactivated/banned account",
                ip_address=client.ip_address, user_agent=client.user_agent,
            )
            logger.warning("Login blocked for inactive account %s", user_id)
            return AuthResult.rejected(AuthFailure.ACCOUNT_BLOCKED, ACCOUNT_DEACTIVATED)

        if not await verify_password_async(password, record["password_hash"]):
            await helpers.log_activity(
                self._db, "login_failed",
                user_id=user_id, resource_type="auth", details="Invalid password",
                ip_address=client.ip_address, user_agent=client.user_agent,
            )
            logger.info("Login failed: bad password for %s", user_id)
            return AuthResult.rejected(AuthFailure.INVALID_CREDENTIALS, INVALID_CREDENTIALS)

        record["last_login_at"] = await helpers.touch_last_login(self._db, user_id)
        await helpers.log_activity(
            self._db, "login_success",
            user_id=user_id, resource_type="auth", details="User logged in",
            ip_address=client.ip_address, user_agent=client.user_agent,
        )
        token = self._tokens.issue(user_id, record["email"])
        logger.info("Login: %s", user_id)
        return AuthResult(user=helpers.strip_sensitive(record), token=token)

    # ── Profile ────────────────────────────────────────────────────────

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await helpers.get_user_by_id(self._db, user_id)

    async def update_profile(self, user_id: str, updates: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply allow-listed profile changes. Raises ``ValueError`` on bad keys."""
        user = await helpers.update_user_profile(self._db, user_id, updates)
        if user is not None:
            logger.info("Profile updated for %s: %s", user_id, sorted(updates))
        return user
