from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from otp_service.models.account import Account
from otp_service.models.email_otp import EmailOtp
from otp_service.services.stores import (
    IdentityAccount,
    NewOtpRecord,
    OtpRecord,
    StoreUnavailableError,
    ensure_utc,
    normalize_email,
)

logger = logging.getLogger(__name__)


def _to_record(row: EmailOtp) -> OtpRecord:
    return OtpRecord(
        id=row.id,
        owner_email=row.email,
        secret_hash=row.otp_hash,
        issued_at=ensure_utc(row.created_at) if row.created_at else None,
        expires_at=ensure_utc(row.expires_at),
        consumed=row.is_consumed,
    )


def _unconsumed():
    return or_(EmailOtp.consumed.is_(None), EmailOtp.consumed.is_(False))


def _newest_first():
    # Postgres sorts NULLs first under DESC; keep undated rows behind dated ones.
    return EmailOtp.created_at.desc().nulls_last()


class SqlSecretStore:
    """SecretStore over the `email_otps` table in a SQL database."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_latest_eligible_by_email(self, email: str) -> OtpRecord | None:
        try:
            row = (
                self.db.query(EmailOtp)
                .filter(func.lower(EmailOtp.email) == normalize_email(email), _unconsumed())
                .order_by(_newest_first())
                .first()
            )
        except SQLAlchemyError as exc:
            logger.exception("OTP lookup failed")
            raise StoreUnavailableError("Database query failed") from exc
        return _to_record(row) if row else None

    def mark_consumed_if_eligible(self, record_id: str) -> bool:
        stmt = (
            update(EmailOtp)
            .where(EmailOtp.id == record_id, _unconsumed())
            .values(consumed=True)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to mark OTP consumed: id=%s", record_id)
            raise StoreUnavailableError("Failed to update OTP record") from exc
        return result.rowcount == 1

    def insert(self, record: NewOtpRecord) -> OtpRecord:
        row = EmailOtp(
            email=normalize_email(record.owner_email),
            otp_hash=record.secret_hash,
            purpose=record.purpose,
            user_id=record.user_id,
            consumed=False,
            created_at=ensure_utc(record.issued_at),
            expires_at=ensure_utc(record.expires_at),
        )
        try:
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to insert OTP record")
            raise StoreUnavailableError("Failed to store OTP record") from exc
        return _to_record(row)


class SqlIdentityStore:
    """IdentityStore over the local `accounts` table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_account_by_email(self, email: str) -> IdentityAccount | None:
        try:
            row = (
                self.db.query(Account)
                .filter(func.lower(Account.email) == normalize_email(email))
                .first()
            )
        except SQLAlchemyError as exc:
            logger.exception("Account lookup failed")
            raise StoreUnavailableError("Failed to fetch account") from exc
        if row is None:
            return None
        return IdentityAccount(id=row.id, email=row.email, email_confirmed=bool(row.email_confirmed))

    def set_email_confirmed(self, account_id: str) -> None:
        try:
            row = self.db.get(Account, account_id)
            if row is None:
                raise StoreUnavailableError(f"Account {account_id} disappeared before confirmation")
            if not row.email_confirmed:
                row.email_confirmed = True
                row.email_confirmed_at = datetime.now(timezone.utc)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to confirm account: id=%s", account_id)
            raise StoreUnavailableError("Failed to confirm account") from exc
