"""
Registration input checks: email shape and password strength.
"""

from __future__ import annotations

import re
from typing import List

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PASSWORD_MIN_LENGTH = 8
# bcrypt ignores everything past 72 bytes.
PASSWORD_MAX_BYTES = 72
PASSWORD_SYMBOLS = '!@#$%^&*(),.?":{}|<>'


def is_valid_email(email: str) -> bool:
    return bool(email) and EMAIL_RE.match(email) is not None


def password_policy_errors(password: str) -> List[str]:
    """Return every unmet password rule (empty list when the password passes)."""
    errors: List[str] = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password.encode()) > PASSWORD_MAX_BYTES:
        errors.append(f"Password must be at most {PASSWORD_MAX_BYTES} bytes long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not any(ch in PASSWORD_SYMBOLS for ch in password):
        errors.append("Password must contain at least one special character")
    return errors
