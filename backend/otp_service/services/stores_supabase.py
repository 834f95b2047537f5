from __future__ import annotations

import logging

import httpx

from otp_service.core.config import settings
from otp_service.services.stores import (
    IdentityAccount,
    NewOtpRecord,
    OtpRecord,
    StoreUnavailableError,
    normalize_email,
    parse_timestamp,
)
from otp_service.services.supabase_client import (
    SupabaseClientError,
    admin_list_users,
    admin_update_user,
    escape_like,
    insert_row,
    select_rows,
    update_rows,
)

logger = logging.getLogger(__name__)

UNCONSUMED_FILTER = "(consumed.is.null,consumed.eq.false)"


def _to_record(row: dict) -> OtpRecord:
    try:
        expires_at = parse_timestamp(row.get("expires_at"))
        issued_at = parse_timestamp(row.get("created_at"))
    except ValueError as exc:
        logger.error("OTP record id=%s has an unreadable timestamp: %s", row.get("id"), exc)
        raise StoreUnavailableError(f"OTP record {row.get('id')} has an unreadable timestamp") from exc
    if expires_at is None:
        raise StoreUnavailableError(f"OTP record {row.get('id')} has no expires_at")
    return OtpRecord(
        id=str(row["id"]),
        owner_email=row.get("email") or "",
        secret_hash=row.get("otp_hash") or "",
        issued_at=issued_at,
        expires_at=expires_at,
        consumed=bool(row.get("consumed")),
    )


class SupabaseSecretStore:
    """SecretStore over the hosted `email_otps` table via PostgREST."""

    def __init__(self, client: httpx.Client, *, table: str | None = None) -> None:
        self.client = client
        self.table = table or settings.SUPABASE_OTP_TABLE

    def find_latest_eligible_by_email(self, email: str) -> OtpRecord | None:
        params = {
            "select": "*",
            "email": f"ilike.{escape_like(normalize_email(email))}",
            "or": UNCONSUMED_FILTER,
            "order": "created_at.desc.nullslast",
            "limit": "1",
        }
        try:
            rows = select_rows(self.client, self.table, params)
        except SupabaseClientError as exc:
            logger.error("Supabase OTP query failed: code=%s message=%s", exc.code, exc)
            raise StoreUnavailableError("Database query failed") from exc
        return _to_record(rows[0]) if rows else None

    def mark_consumed_if_eligible(self, record_id: str) -> bool:
        params = {"id": f"eq.{record_id}", "or": UNCONSUMED_FILTER}
        try:
            changed = update_rows(self.client, self.table, params, {"consumed": True})
        except SupabaseClientError as exc:
            logger.error("Failed to mark OTP consumed: id=%s code=%s message=%s", record_id, exc.code, exc)
            raise StoreUnavailableError("Failed to update OTP record") from exc
        return len(changed) == 1

    def insert(self, record: NewOtpRecord) -> OtpRecord:
        values = {
            "email": normalize_email(record.owner_email),
            "otp_hash": record.secret_hash,
            "purpose": record.purpose,
            "user_id": record.user_id,
            "consumed": False,
            "created_at": record.issued_at.isoformat(),
            "expires_at": record.expires_at.isoformat(),
        }
        try:
            row = insert_row(self.client, self.table, values)
        except SupabaseClientError as exc:
            logger.error("Failed to insert OTP record: code=%s message=%s", exc.code, exc)
            raise StoreUnavailableError("Failed to store OTP record") from exc
        return _to_record(row)


class SupabaseIdentityStore:
    """IdentityStore over the Supabase Auth admin API."""

    def __init__(self, client: httpx.Client, *, page_size: int | None = None) -> None:
        self.client = client
        self.page_size = max(1, page_size or settings.SUPABASE_ADMIN_PAGE_SIZE)

    def find_account_by_email(self, email: str) -> IdentityAccount | None:
        target = normalize_email(email)
        page = 1
        while True:
            try:
                users = admin_list_users(self.client, page=page, per_page=self.page_size)
            except SupabaseClientError as exc:
                logger.error("Failed to list users: page=%s code=%s message=%s", page, exc.code, exc)
                raise StoreUnavailableError("Failed to fetch users from Supabase") from exc

            for user in users:
                if normalize_email(user.get("email")) == target:
                    return IdentityAccount(
                        id=str(user["id"]),
                        email=user.get("email") or target,
                        email_confirmed=bool(user.get("email_confirmed_at")),
                    )

            if len(users) < self.page_size:
                return None
            page += 1

    def set_email_confirmed(self, account_id: str) -> None:
        try:
            admin_update_user(self.client, account_id, {"email_confirm": True})
        except SupabaseClientError as exc:
            logger.error("Supabase update error: user_id=%s code=%s message=%s", account_id, exc.code, exc)
            raise StoreUnavailableError("Failed to confirm user in Supabase") from exc
