"""
Store contracts used by the OTP flows.

The secret store holds issued OTP records; the identity store holds user accounts.
Both live outside this service. Backends implement these protocols and translate
their own failures into StoreUnavailableError.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol


class StoreUnavailableError(Exception):
    """Raised when a backing store cannot be reached or rejects a call."""


@dataclass(frozen=True)
class OtpRecord:
    id: str
    owner_email: str
    secret_hash: str
    issued_at: datetime | None
    expires_at: datetime
    consumed: bool = False

    def is_expired(self, now: datetime) -> bool:
        return ensure_utc(self.expires_at) < ensure_utc(now)


@dataclass(frozen=True)
class IdentityAccount:
    id: str
    email: str
    email_confirmed: bool = False


@dataclass(frozen=True)
class NewOtpRecord:
    owner_email: str
    secret_hash: str
    issued_at: datetime
    expires_at: datetime
    purpose: str = "email_verification"
    user_id: str | None = None


class SecretStore(Protocol):
    def find_latest_eligible_by_email(self, email: str) -> OtpRecord | None:
        """Newest record for `email` whose consumed flag is false or unset."""
        ...

    def mark_consumed_if_eligible(self, record_id: str) -> bool:
        """Set consumed=true only if still unconsumed. Returns False when nothing changed."""
        ...

    def insert(self, record: NewOtpRecord) -> OtpRecord:
        ...


class IdentityStore(Protocol):
    def find_account_by_email(self, email: str) -> IdentityAccount | None:
        ...

    def set_email_confirmed(self, account_id: str) -> None:
        ...


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def ensure_utc(value: datetime) -> datetime:
    # Stores may hand back naive timestamps; they are always written as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


_FRACTION_RE = re.compile(r"\.(\d+)")
_SHORT_OFFSET_RE = re.compile(r"(\d{2}:\d{2}(?:\.\d+)?)([+-]\d{2})$")


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """
    Parse an ISO-8601 timestamp as written by Postgres/PostgREST.

    Postgres trims trailing zeros from fractional seconds and may emit a bare
    `+00` offset; both are normalised so `datetime.fromisoformat` accepts them
    on every supported Python. Raises ValueError for anything else it cannot read.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    raw = _SHORT_OFFSET_RE.sub(r"\1\2:00", raw)
    raw = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), raw, count=1)
    return ensure_utc(datetime.fromisoformat(raw))
