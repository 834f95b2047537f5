# otp_service/services/email_otp.py
"""
Email one-time code flows.

Responsibilities:
- Verifying a submitted code against the newest outstanding record for an email
- Consuming that record exactly once and confirming the owning account
- Issuing (and re-issuing) codes with a resend cooldown

All state lives in the injected stores; nothing is cached between calls.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from otp_service.core.config import settings
from otp_service.core.security import generate_otp, hash_otp, verify_otp_hash
from otp_service.services.email import EmailDeliveryError, EmailNotConfiguredError, send_otp_email
from otp_service.services.stores import (
    IdentityStore,
    NewOtpRecord,
    SecretStore,
    StoreUnavailableError,
    ensure_utc,
    normalize_email,
)

logger = logging.getLogger(__name__)

OTP_PURPOSE = "email_verification"
VERIFIED_MESSAGE = "Email verified successfully"
GENERIC_SEND_MESSAGE = "If the account exists, a verification code has been sent."


class OtpError(Exception):
    """Base class for OTP flow failures that map onto a client-visible answer."""

    status_code = 400
    error_code = "OTP_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class OtpBadRequestError(OtpError):
    status_code = 400
    error_code = "VALIDATION_ERROR"


class OtpNotFoundError(OtpError):
    status_code = 404
    error_code = "OTP_NOT_FOUND"


class OtpExpiredError(OtpError):
    status_code = 400
    error_code = "OTP_EXPIRED"


class InvalidOtpError(OtpError):
    status_code = 401
    error_code = "INVALID_OTP"


class OtpAlreadyConsumedError(OtpError):
    status_code = 409
    error_code = "OTP_ALREADY_CONSUMED"


class AccountNotFoundError(OtpError):
    status_code = 404
    error_code = "ACCOUNT_NOT_FOUND"


class OtpResendCooldownError(OtpError):
    status_code = 429
    error_code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after_seconds: int) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


@dataclass(frozen=True)
class VerificationResult:
    account_id: str
    email: str
    record_id: str
    message: str = VERIFIED_MESSAGE


@dataclass(frozen=True)
class IssueResult:
    issued: bool
    resend_available_in_seconds: int
    record_id: str | None = None


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _require(value: str, message: str) -> str:
    if not value:
        raise OtpBadRequestError(message)
    return value


def verify_code(
    *,
    email: str | None,
    code: str | None,
    secret_store: SecretStore,
    identity_store: IdentityStore,
    now: datetime | None = None,
) -> VerificationResult:
    """
    Redeem `code` for `email`.

    Only the newest unconsumed record is checked. A wrong code leaves the record
    untouched; a correct one is consumed with a conditional update before the
    account is confirmed.

    Raises:
        OtpBadRequestError, OtpNotFoundError, OtpExpiredError, InvalidOtpError,
        OtpAlreadyConsumedError, AccountNotFoundError: terminal answers for the request.
        StoreUnavailableError: a store could not be reached; safe to retry.
    """
    normalized = normalize_email(email)
    submitted = (code or "").strip()
    if not normalized or not submitted:
        raise OtpBadRequestError("Missing email or OTP")

    now = ensure_utc(now or _now_utc())

    record = secret_store.find_latest_eligible_by_email(normalized)
    if record is None:
        logger.info("OTP verify: no outstanding code for email=%s", normalized)
        raise OtpNotFoundError("No OTP found for this email")

    if record.is_expired(now):
        logger.info("OTP verify: expired record id=%s email=%s", record.id, normalized)
        raise OtpExpiredError("OTP expired")

    if not verify_otp_hash(submitted, record.secret_hash):
        logger.warning("OTP verify: code mismatch for record id=%s email=%s", record.id, normalized)
        raise InvalidOtpError("Invalid OTP")

    if not secret_store.mark_consumed_if_eligible(record.id):
        # Another request redeemed the same record between our read and write.
        logger.warning("OTP verify: record id=%s was consumed concurrently", record.id)
        raise OtpAlreadyConsumedError("OTP has already been used")

    try:
        account = identity_store.find_account_by_email(normalized)
        if account is None:
            logger.error(
                "OTP verify: record id=%s consumed but no account exists for email=%s",
                record.id,
                normalized,
            )
            raise AccountNotFoundError("User not found")
        identity_store.set_email_confirmed(account.id)
    except StoreUnavailableError:
        logger.error(
            "OTP verify: record id=%s consumed but account confirmation failed for email=%s; "
            "a new code must be issued",
            record.id,
            normalized,
        )
        raise

    logger.info("OTP verified and user confirmed: email=%s account_id=%s", normalized, account.id)
    return VerificationResult(account_id=account.id, email=normalized, record_id=record.id)


def _cooldown_remaining(issued_at: datetime | None, now: datetime) -> int:
    if issued_at is None or settings.OTP_RESEND_COOLDOWN_SECONDS <= 0:
        return 0
    available_at = ensure_utc(issued_at) + timedelta(seconds=settings.OTP_RESEND_COOLDOWN_SECONDS)
    remaining = (available_at - now).total_seconds()
    return max(0, int(remaining + 0.999))


def _retire_undelivered(secret_store: SecretStore, record_id: str) -> None:
    # A code nobody received must neither verify nor hold the resend cooldown.
    try:
        secret_store.mark_consumed_if_eligible(record_id)
    except StoreUnavailableError:
        logger.exception("OTP send: could not retire undelivered record id=%s", record_id)
    else:
        logger.warning("OTP send: delivery failed, retired record id=%s", record_id)


def send_code(
    *,
    email: str | None,
    secret_store: SecretStore,
    identity_store: IdentityStore,
    now: datetime | None = None,
) -> IssueResult:
    """
    Issue a fresh code for `email` and deliver it.

    Unknown emails are a silent no-op so callers cannot probe for accounts.
    Earlier outstanding codes are left in place; verification only ever checks
    the newest one. If delivery fails the new record is retired before the
    error propagates, so an immediate retry is not held by the cooldown.
    """
    normalized = _require(normalize_email(email), "Missing email")
    now = ensure_utc(now or _now_utc())

    account = identity_store.find_account_by_email(normalized)
    if account is None:
        logger.info("OTP send: no account for email=%s; skipping", normalized)
        return IssueResult(issued=False, resend_available_in_seconds=settings.OTP_RESEND_COOLDOWN_SECONDS)

    latest = secret_store.find_latest_eligible_by_email(normalized)
    if latest is not None and not latest.is_expired(now):
        remaining = _cooldown_remaining(latest.issued_at, now)
        if remaining > 0:
            raise OtpResendCooldownError(
                "Please wait before requesting another code.",
                retry_after_seconds=remaining,
            )

    code = generate_otp(settings.OTP_LENGTH)
    record = secret_store.insert(
        NewOtpRecord(
            owner_email=normalized,
            secret_hash=hash_otp(code),
            issued_at=now,
            expires_at=now + timedelta(seconds=settings.OTP_TTL_SECONDS),
            purpose=OTP_PURPOSE,
            user_id=account.id,
        )
    )

    if settings.EMAIL_ENABLED:
        try:
            send_otp_email(to_email=normalized, code=code, expires_minutes=settings.otp_ttl_minutes)
        except (EmailDeliveryError, EmailNotConfiguredError):
            _retire_undelivered(secret_store, record.id)
            raise
    else:
        logger.info("OTP send: EMAIL_ENABLED=false, delivery skipped for record id=%s", record.id)

    logger.info("OTP issued: record id=%s email=%s", record.id, normalized)
    return IssueResult(
        issued=True,
        resend_available_in_seconds=settings.OTP_RESEND_COOLDOWN_SECONDS,
        record_id=record.id,
    )
