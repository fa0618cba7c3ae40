"""
Tests for the registration and login flows against a real (SQLite) store.
"""

import pytest
from unittest.mock import AsyncMock, patch

from auth.service import (
    ACCOUNT_DEACTIVATED,
    EMAIL_TAKEN,
    INVALID_CREDENTIALS,
    AuthFailure,
    AuthService,
    ClientInfo,
)
from database import helpers

PASSWORD = "Str0ng!Pass"


async def _set_active(executor, user_id, active):
    await executor.execute(
        "UPDATE users SET is_active = :active WHERE id = :id", {"active": active, "id": user_id},
    )


class TestRegister:
    @pytest.mark.asyncio
    async def test_success(self, auth_service, tokens):
        result = await auth_service.register(
            "Alice@Example.com", PASSWORD, full_name="Alice", university="State U",
        )
        assert result.ok
        assert result.user["email"] == "alice@example.com"
        assert result.user["full_name"] == "Alice"
        assert "password_hash" not in result.user
        claims = tokens.verify(result.token)
        assert claims.user_id == result.user["id"]
        assert claims.email == "alice@example.com"

    @pytest.mark.asyncio
    async def test_creates_stats_row_and_logs(self, auth_service, executor):
        result = await auth_service.register(
            "alice@example.com", PASSWORD, client=ClientInfo("203.0.113.7", "pytest"),
        )
        stats = await executor.execute(
            "SELECT * FROM user_stats WHERE user_id = :id", {"id": result.user["id"]},
        )
        assert len(stats) == 1
        events = await helpers.list_activity(executor, action="user_registered")
        assert events[0]["user_id"] == result.user["id"]
        assert events[0]["ip_address"] == "203.0.113.7"

    @pytest.mark.asyncio
    async def test_password_is_hashed(self, auth_service, executor):
        await auth_service.register("alice@example.com", PASSWORD)
        record = await helpers.find_user_credentials(executor, "alice@example.com")
        assert record["password_hash"].startswith("$2")
        assert PASSWORD not in record["password_hash"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email,password", [("", PASSWORD), ("alice@example.com", "")])
    async def test_missing_fields(self, auth_service, email, password):
        result = await auth_service.register(email, password)
        assert result.reason is AuthFailure.MISSING_FIELDS

    @pytest.mark.asyncio
    async def test_invalid_email(self, auth_service):
        result = await auth_service.register("not-an-email", PASSWORD)
        assert result.reason is AuthFailure.INVALID_EMAIL
        assert result.error == "Invalid email format"

    @pytest.mark.asyncio
    async def test_weak_password_lists_every_problem(self, auth_service):
        result = await auth_service.register("alice@example.com", "weak")
        assert result.reason is AuthFailure.WEAK_PASSWORD
        assert "Password must be at least 8 characters long" in result.details
        assert len(result.details) > 1

    @pytest.mark.asyncio
    async def test_duplicate_leaves_existing_user_untouched(self, auth_service, executor):
        first = await auth_service.register("alice@example.com", PASSWORD, full_name="Alice")
        before = await helpers.find_user_credentials(executor, "alice@example.com")

        second = await auth_service.register("ALICE@example.com", "Other!Pass9", full_name="Mallory")
        assert second.reason is AuthFailure.ALREADY_EXISTS
        assert second.error == EMAIL_TAKEN

        after = await helpers.find_user_credentials(executor, "alice@example.com")
        assert after == before
        assert after["id"] == first.user["id"]
        count = await executor.execute("SELECT COUNT(*) AS n FROM users")
        assert count[0]["n"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_caught_by_constraint(self, auth_service):
        await auth_service.register("alice@example.com", PASSWORD)
        with patch("database.helpers.email_exists", new=AsyncMock(return_value=False)):
            result = await auth_service.register("alice@example.com", PASSWORD)
        assert result.reason is AuthFailure.ALREADY_EXISTS


class TestLogin:
    @pytest.mark.asyncio
    async def test_success_updates_last_login(self, auth_service, executor, tokens):
        registered = await auth_service.register("alice@example.com", PASSWORD)
        user_id = registered.user["id"]

        result = await auth_service.login(" Alice@Example.com ", PASSWORD)
        assert result.ok
        assert result.user["id"] == user_id
        assert result.user["last_login_at"] is not None
        assert "password_hash" not in result.user
        assert "is_active" not in result.user
        assert tokens.verify(result.token).user_id == user_id

        stored = await helpers.get_user_by_id(executor, user_id)
        assert stored["last_login_at"] is not None
        events = await helpers.list_activity(executor, user_id=user_id, action="login_success")
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_wrong_password(self, auth_service, executor):
        registered = await auth_service.register("alice@example.com", PASSWORD)
        user_id = registered.user["id"]

        result = await auth_service.login("alice@example.com", "Wrong!Pass1")
        assert result.reason is AuthFailure.INVALID_CREDENTIALS
        assert result.error == INVALID_CREDENTIALS
        assert result.token is None

        stored = await helpers.get_user_by_id(executor, user_id)
        assert stored["last_login_at"] is None
        events = await helpers.list_activity(executor, user_id=user_id, action="login_failed")
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_unknown_email_looks_like_wrong_password(self, auth_service, executor):
        result = await auth_service.login("nobody@example.com", PASSWORD)
        assert result.reason is AuthFailure.INVALID_CREDENTIALS
        assert result.error == INVALID_CREDENTIALS

        events = await helpers.list_activity(executor, action="login_failed")
        assert events[0]["user_id"] is None
        assert "nobody@example.com" in events[0]["details"]

    @pytest.mark.asyncio
    async def test_blocked_account(self, auth_service, executor):
        registered = await auth_service.register("alice@example.com", PASSWORD)
        user_id = registered.user["id"]
        await _set_active(executor, user_id, False)

        result = await auth_service.login("alice@example.com", PASSWORD)
        assert result.reason is AuthFailure.ACCOUNT_BLOCKED
        assert result.error == ACCOUNT_DEACTIVATED

        stored = await helpers.get_user_by_id(executor, user_id)
        assert stored["last_login_at"] is None
        events = await helpers.list_activity(executor, user_id=user_id, action="login_blocked")
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_missing_fields(self, auth_service):
        result = await auth_service.login("", "")
        assert result.reason is AuthFailure.MISSING_FIELDS

    @pytest.mark.asyncio
    async def test_raising_cost_keeps_existing_users(self, executor, tokens):
        """Users hashed at the old cost still sign in after BCRYPT_ROUNDS goes up."""
        old_cost = AuthService(executor, tokens, bcrypt_rounds=4)
        await old_cost.register("alice@example.com", PASSWORD)
        stored = await helpers.find_user_credentials(executor, "alice@example.com")
        assert stored["password_hash"].startswith("$2b$04$")

        new_cost = AuthService(executor, tokens, bcrypt_rounds=6)
        result = await new_cost.login("alice@example.com", PASSWORD)
        assert result.ok

        await new_cost.register("bob@example.com", PASSWORD)
        bob = await helpers.find_user_credentials(executor, "bob@example.com")
        assert bob["password_hash"].startswith("$2b$06$")


class TestProfile:
    @pytest.mark.asyncio
    async def test_update_allowed_fields(self, auth_service):
        registered = await auth_service.register("alice@example.com", PASSWORD)
        user = await auth_service.update_profile(
            registered.user["id"], {"full_name": "Alice A.", "phone": "555-0100"},
        )
        assert user["full_name"] == "Alice A."
        assert user["phone"] == "555-0100"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("updates", [{"email": "x@example.com"}, {"password_hash": "x"}, {}])
    async def test_rejects_non_allow_listed_keys(self, auth_service, executor, updates):
        registered = await auth_service.register("alice@example.com", PASSWORD)
        with pytest.raises(ValueError):
            await auth_service.update_profile(registered.user["id"], updates)
        record = await helpers.find_user_credentials(executor, "alice@example.com")
        assert record["email"] == "alice@example.com"
        assert record["password_hash"].startswith("$2")


class TestProfileUpdateBuilder:
    def test_set_clause_uses_fixed_column_order(self):
        clause, params = helpers.build_profile_update({"phone": "1", "full_name": "A"})
        assert clause == "full_name = :full_name, phone = :phone"
        assert params == {"full_name": "A", "phone": "1"}
