#!/usr/bin/env python3
"""
Dev-only helper: create a local account (if missing) and issue a one-time code for it.

Works against the `database` store backend only, so a code can be verified end to end
without the hosted backend or an email provider. The plaintext code is printed once.

Guardrails:
- Requires ENV=dev
- Requires OTP_STORE_BACKEND=database

Usage:
  ENV=dev OTP_STORE_BACKEND=database python scripts/issue_dev_otp.py alice@example.com
  ENV=dev OTP_STORE_BACKEND=database python scripts/issue_dev_otp.py bob@example.com --expired
"""

from __future__ import annotations

import argparse
from datetime import datetime, timedelta, timezone

from otp_service.core.config import settings
from otp_service.core.database import SessionLocal
from otp_service.core.security import generate_otp, hash_otp
from otp_service.models.account import Account
from otp_service.services.stores import NewOtpRecord, normalize_email
from otp_service.services.stores_sql import SqlIdentityStore, SqlSecretStore


def main() -> int:
    parser = argparse.ArgumentParser(description="Issue a dev OTP for a local account.")
    parser.add_argument("email", help="Account email address.")
    parser.add_argument("--expired", action="store_true", help="Issue a code that is already expired.")
    args = parser.parse_args()

    if (settings.ENV or "").strip().lower() != "dev":
        print(f"Refusing to run: ENV must be 'dev' (got {settings.ENV!r})")
        return 2
    if settings.OTP_STORE_BACKEND != "database":
        print(f"Refusing to run: OTP_STORE_BACKEND must be 'database' (got {settings.OTP_STORE_BACKEND!r})")
        return 2

    email = normalize_email(args.email)
    if not email:
        print("Email is required.")
        return 1

    now = datetime.now(timezone.utc)
    if args.expired:
        expires_at = now - timedelta(seconds=1)
    else:
        expires_at = now + timedelta(seconds=settings.OTP_TTL_SECONDS)

    with SessionLocal() as db:
        account = SqlIdentityStore(db).find_account_by_email(email)
        if account is None:
            row = Account(email=email, email_confirmed=False)
            db.add(row)
            db.commit()
            print(f"Created account id={row.id} email={email}")
            account_id = row.id
        else:
            account_id = account.id

        code = generate_otp(settings.OTP_LENGTH)
        record = SqlSecretStore(db).insert(
            NewOtpRecord(
                owner_email=email,
                secret_hash=hash_otp(code),
                issued_at=now,
                expires_at=expires_at,
                user_id=account_id,
            )
        )

    print(f"Issued OTP record id={record.id} expires_at={record.expires_at.isoformat()}")
    print(f"Code: {code}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
