from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from otp_service.core import config as app_config
from otp_service.models.email_otp import EmailOtp
from otp_service.services.email import EmailDeliveryError
from otp_service.services.email_otp import OtpResendCooldownError, send_code
from otp_service.services.stores_sql import SqlIdentityStore, SqlSecretStore


@pytest.fixture()
def enable_delivery():
    app_config.settings.EMAIL_ENABLED = True
    app_config.settings.OTP_TTL_SECONDS = 600
    app_config.settings.OTP_RESEND_COOLDOWN_SECONDS = 60
    app_config.settings.OTP_LENGTH = 6
    yield


def _capture_delivery(monkeypatch):
    sent: dict[str, str] = {}

    def _fake_send(*, to_email: str, code: str, expires_minutes: int):
        sent["email"] = to_email
        sent["code"] = code
        sent["expires"] = str(expires_minutes)
        return "msg_test_123"

    monkeypatch.setattr("otp_service.services.email_otp.send_otp_email", _fake_send)
    return sent


def _send(db_session: Session, email: str, now):
    return send_code(
        email=email,
        secret_store=SqlSecretStore(db_session),
        identity_store=SqlIdentityStore(db_session),
        now=now,
    )


def test_send_code_persists_hash_and_respects_cooldown(
    enable_delivery, db_session: Session, make_account, monkeypatch, fixed_now
):
    account = make_account("alice@example.com")
    sent = _capture_delivery(monkeypatch)

    result = _send(db_session, "Alice@Example.com", fixed_now)

    assert result.issued is True
    record = db_session.query(EmailOtp).filter(EmailOtp.id == result.record_id).one()
    assert len(sent["code"]) == 6 and sent["code"].isdigit()
    assert sent["email"] == "alice@example.com"
    assert sent["expires"] == "10"
    assert record.otp_hash != sent["code"]
    assert record.email == "alice@example.com"
    assert record.user_id == account.id
    assert record.consumed is False

    with pytest.raises(OtpResendCooldownError) as exc:
        _send(db_session, "alice@example.com", fixed_now + timedelta(seconds=20))
    assert exc.value.status_code == 429
    assert exc.value.retry_after_seconds == 40


def test_resend_after_cooldown_supersedes_previous_code(
    enable_delivery, db_session: Session, make_account, monkeypatch, fixed_now
):
    make_account("bob@example.com")
    _capture_delivery(monkeypatch)

    first = _send(db_session, "bob@example.com", fixed_now)
    second = _send(db_session, "bob@example.com", fixed_now + timedelta(seconds=61))

    assert second.record_id != first.record_id
    assert db_session.query(EmailOtp).count() == 2
    latest = SqlSecretStore(db_session).find_latest_eligible_by_email("bob@example.com")
    assert latest.id == second.record_id


def test_send_code_without_account_is_noop(enable_delivery, db_session: Session, monkeypatch, fixed_now):
    sent = _capture_delivery(monkeypatch)

    result = _send(db_session, "missing@example.test", fixed_now)

    assert result.issued is False
    assert sent == {}
    assert db_session.query(EmailOtp).count() == 0


def test_delivery_skipped_when_email_disabled(db_session: Session, make_account, monkeypatch, fixed_now):
    app_config.settings.EMAIL_ENABLED = False
    make_account("carol@example.com")
    sent = _capture_delivery(monkeypatch)

    result = _send(db_session, "carol@example.com", fixed_now)

    assert result.issued is True
    assert sent == {}
    assert db_session.query(EmailOtp).count() == 1


def test_send_then_verify_round_trip(enable_delivery, client: TestClient, make_account, monkeypatch, fixed_now):
    make_account("dana@example.com")
    sent = _capture_delivery(monkeypatch)
    monkeypatch.setattr("otp_service.services.email_otp._now_utc", lambda: fixed_now)

    res = client.post("/send-otp", json={"email": "dana@example.com"})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["resend_available_in_seconds"] == 60

    res2 = client.post("/verify-otp", json={"email": "dana@example.com", "otp": sent["code"]})
    assert res2.status_code == 200
    assert res2.json()["success"] is True


def test_send_route_generic_response_for_unknown_email(enable_delivery, client: TestClient, monkeypatch):
    _capture_delivery(monkeypatch)

    res = client.post("/send-otp", json={"email": "missing@example.test"})
    assert res.status_code == 200
    assert res.json()["message"] == "If the account exists, a verification code has been sent."


def test_send_route_cooldown_is_429_with_retry_after(
    enable_delivery, client: TestClient, make_account, monkeypatch, fixed_now
):
    make_account("erin@example.com")
    _capture_delivery(monkeypatch)
    monkeypatch.setattr("otp_service.services.email_otp._now_utc", lambda: fixed_now)

    assert client.post("/send-otp", json={"email": "erin@example.com"}).status_code == 200
    res = client.post("/send-otp", json={"email": "erin@example.com"})

    assert res.status_code == 429
    assert res.json()["error"] == "RATE_LIMITED"
    assert res.json()["details"]["retry_after_seconds"] == 60
    assert res.headers["Retry-After"] == "60"


def test_send_route_missing_email_is_400(client: TestClient):
    res = client.post("/send-otp", json={})
    assert res.status_code == 400
    assert res.json()["error"] == "VALIDATION_ERROR"


def test_send_route_delivery_failure_is_502(enable_delivery, client: TestClient, make_account, monkeypatch):
    make_account("frank@example.com")

    def _boom(**kwargs):
        raise EmailDeliveryError("Resend send failed: boom")

    monkeypatch.setattr("otp_service.services.email_otp.send_otp_email", _boom)

    res = client.post("/send-otp", json={"email": "frank@example.com"})
    assert res.status_code == 502
    assert res.json()["error"] == "EMAIL_DELIVERY_FAILED"


def test_failed_delivery_retires_record_and_allows_immediate_retry(
    enable_delivery, db_session: Session, make_account, monkeypatch, fixed_now
):
    make_account("gina@example.com")

    def _boom(**kwargs):
        raise EmailDeliveryError("Resend send failed: boom")

    monkeypatch.setattr("otp_service.services.email_otp.send_otp_email", _boom)
    with pytest.raises(EmailDeliveryError):
        _send(db_session, "gina@example.com", fixed_now)

    failed = db_session.query(EmailOtp).one()
    assert failed.consumed is True

    sent = _capture_delivery(monkeypatch)
    result = _send(db_session, "gina@example.com", fixed_now + timedelta(seconds=1))

    assert result.issued is True
    assert result.record_id != failed.id
    assert sent["email"] == "gina@example.com"


def test_send_route_retry_after_delivery_failure_is_not_rate_limited(
    enable_delivery, client: TestClient, make_account, monkeypatch, fixed_now
):
    make_account("hank@example.com")
    monkeypatch.setattr("otp_service.services.email_otp._now_utc", lambda: fixed_now)

    def _boom(**kwargs):
        raise EmailDeliveryError("Resend send failed: boom")

    monkeypatch.setattr("otp_service.services.email_otp.send_otp_email", _boom)
    assert client.post("/send-otp", json={"email": "hank@example.com"}).status_code == 502

    _capture_delivery(monkeypatch)
    res = client.post("/send-otp", json={"email": "hank@example.com"})
    assert res.status_code == 200
