# otp_service/core/security.py
from __future__ import annotations

import secrets
import string

from passlib.context import CryptContext

# bcryptjs on the front-end writes $2a$ hashes; passlib verifies both $2a$ and $2b$.
otp_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def generate_otp(length: int = 6) -> str:
    """Return a numeric one-time code drawn from the OS CSPRNG."""
    if length < 4:
        raise ValueError("OTP length must be at least 4 digits")
    return "".join(secrets.choice(string.digits) for _ in range(length))


def hash_otp(code: str) -> str:
    return otp_context.hash(code)


def verify_otp_hash(code: str, otp_hash: str) -> bool:
    """
    Check a plaintext code against a stored bcrypt hash.

    Malformed or unknown hash formats are treated as a mismatch rather than an error,
    so a corrupt row reads as "wrong code" instead of a 500.
    """
    if not code or not otp_hash:
        return False
    try:
        return otp_context.verify(code, otp_hash)
    except (ValueError, TypeError):
        return False
