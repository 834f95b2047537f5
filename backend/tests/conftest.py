import os
from datetime import datetime, timedelta, timezone

# Settings are read at import time; pin a local, offline configuration first.
os.environ.setdefault("ENV", "dev")
os.environ.setdefault("OTP_STORE_BACKEND", "database")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("EMAIL_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from otp_service.core import config as app_config
from otp_service.core.base import Base
from otp_service.core.database import get_db
from otp_service.core.security import hash_otp

# Import models so they register with SQLAlchemy metadata.
from otp_service.models.account import Account
from otp_service.models.email_otp import EmailOtp

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def db_session(db_engine):
    # The in-memory DB persists across tests (StaticPool); reset schema per test.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def _reset_mutable_settings():
    """
    Tests tweak the process-global settings object; restore it after each test.
    """
    keys = [
        "OTP_STORE_BACKEND",
        "EMAIL_ENABLED",
        "EMAIL_PROVIDER",
        "FROM_EMAIL",
        "RESEND_API_KEY",
        "OTP_TTL_SECONDS",
        "OTP_RESEND_COOLDOWN_SECONDS",
        "OTP_LENGTH",
        "ENABLE_RATE_LIMITING",
    ]
    original = {k: getattr(app_config.settings, k) for k in keys}
    app_config.settings.OTP_STORE_BACKEND = "database"
    try:
        yield
    finally:
        for k, v in original.items():
            setattr(app_config.settings, k, v)


@pytest.fixture()
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture()
def make_account(db_session):
    def _make(email: str, *, confirmed: bool = False) -> Account:
        account = Account(email=email, email_confirmed=confirmed)
        db_session.add(account)
        db_session.commit()
        db_session.refresh(account)
        return account

    return _make


@pytest.fixture()
def issue_record(db_session):
    """
    Insert an OTP row directly, the way the sign-up flow would.

    `issued_at` defaults to FIXED_NOW and `expires_in` to ten minutes after it.
    Pass `consumed=None` to simulate rows written without the flag.
    """

    def _issue(
        email: str,
        code: str,
        *,
        issued_at: datetime = FIXED_NOW,
        expires_in: timedelta = timedelta(minutes=10),
        consumed: bool | None = False,
    ) -> EmailOtp:
        row = EmailOtp(
            email=email,
            otp_hash=hash_otp(code),
            consumed=consumed,
            created_at=issued_at,
            expires_at=issued_at + expires_in,
        )
        db_session.add(row)
        db_session.commit()
        db_session.refresh(row)
        return row

    return _issue


@pytest.fixture()
def app(db_session):
    import otp_service.main as main

    fastapi_app = main.app

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c
