"""
Tests for session token issue / verify.
"""

import base64
import json

import pytest
from jose import jwt

from auth.jwt import TokenClaims, TokenIssuer

SECRET = "unit-test-secret"


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _flip(segment: str) -> str:
    i = len(segment) // 2
    replacement = "A" if segment[i] != "A" else "B"
    return segment[:i] + replacement + segment[i + 1:]


class TestTokenIssuer:
    def test_round_trip(self):
        issuer = TokenIssuer(SECRET)
        token = issuer.issue("user-1", "alice@example.com")
        assert issuer.verify(token) == TokenClaims(user_id="user-1", email="alice@example.com")

    def test_claims_include_expiry(self):
        issuer = TokenIssuer(SECRET, expiry_seconds=3600)
        claims = jwt.get_unverified_claims(issuer.issue("user-1", "alice@example.com"))
        assert claims["sub"] == "user-1"
        assert claims["exp"] - claims["iat"] == 3600

    def test_expired_token(self):
        issuer = TokenIssuer(SECRET, expiry_seconds=-10)
        assert issuer.verify(issuer.issue("user-1", "alice@example.com")) is None

    def test_wrong_secret(self):
        token = TokenIssuer("another-secret").issue("user-1", "alice@example.com")
        assert TokenIssuer(SECRET).verify(token) is None

    def test_tampered_signature(self):
        issuer = TokenIssuer(SECRET)
        header, payload, signature = issuer.issue("user-1", "alice@example.com").split(".")
        assert issuer.verify(f"{header}.{payload}.{_flip(signature)}") is None

    def test_tampered_payload(self):
        issuer = TokenIssuer(SECRET)
        header, payload, signature = issuer.issue("user-1", "alice@example.com").split(".")
        claims = jwt.get_unverified_claims(f"{header}.{payload}.{signature}")
        claims["sub"] = "admin"
        assert issuer.verify(f"{header}.{_b64(claims)}.{signature}") is None

    def test_missing_subject(self):
        token = jwt.encode({"email": "alice@example.com", "exp": 9999999999}, SECRET, algorithm="HS256")
        assert TokenIssuer(SECRET).verify(token) is None

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_malformed(self, token):
        assert TokenIssuer(SECRET).verify(token) is None

    @pytest.mark.parametrize("secret", ["", "   "])
    def test_blank_secret_rejected(self, secret):
        with pytest.raises(ValueError):
            TokenIssuer(secret)
