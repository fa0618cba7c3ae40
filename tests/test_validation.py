"""
Tests for registration input checks.
"""

import pytest

from auth.validation import is_valid_email, password_policy_errors


class TestEmail:
    @pytest.mark.parametrize("email", ["a@b.co", "first.last@uni.example.edu"])
    def test_valid(self, email):
        assert is_valid_email(email)

    @pytest.mark.parametrize("email", ["", "plain", "a@b", "a b@c.de", "@c.de", "a@.de"])
    def test_invalid(self, email):
        assert not is_valid_email(email)


class TestPasswordPolicy:
    def test_strong_password_passes(self):
        assert password_policy_errors("Str0ng!Pass") == []

    def test_reports_every_failure(self):
        errors = password_policy_errors("abc")
        assert "Password must be at least 8 characters long" in errors
        assert "Password must contain at least one uppercase letter" in errors
        assert "Password must contain at least one number" in errors
        assert "Password must contain at least one special character" in errors
        assert "Password must contain at least one lowercase letter" not in errors

    def test_symbol_required(self):
        assert password_policy_errors("Str0ngPass") == [
            "Password must contain at least one special character"
        ]

    def test_too_long_for_bcrypt(self):
        errors = password_policy_errors("Aa1!" + "x" * 69)
        assert errors == ["Password must be at most 72 bytes long"]
