from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from otp_service.core.config import settings
from otp_service.core.database import get_db
from otp_service.services.stores import IdentityStore, SecretStore
from otp_service.services.stores_sql import SqlIdentityStore, SqlSecretStore
from otp_service.services.stores_supabase import SupabaseIdentityStore, SupabaseSecretStore
from otp_service.services.supabase_client import get_supabase_http_client


def _use_database() -> bool:
    return settings.OTP_STORE_BACKEND == "database"


def get_secret_store(db: Session = Depends(get_db)) -> SecretStore:
    if _use_database():
        return SqlSecretStore(db)
    return SupabaseSecretStore(get_supabase_http_client())


def get_identity_store(db: Session = Depends(get_db)) -> IdentityStore:
    if _use_database():
        return SqlIdentityStore(db)
    return SupabaseIdentityStore(get_supabase_http_client())
