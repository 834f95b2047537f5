from __future__ import annotations

import importlib.util
from pathlib import Path

from sqlalchemy.orm import sessionmaker

from otp_service.core.security import verify_otp_hash
from otp_service.models.account import Account
from otp_service.models.email_otp import EmailOtp

SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "issue_dev_otp.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("issue_dev_otp", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_issue_dev_otp_links_record_to_account(db_engine, db_session, monkeypatch, capsys):
    script = _load_script()
    monkeypatch.setattr(script, "SessionLocal", sessionmaker(autocommit=False, autoflush=False, bind=db_engine))
    monkeypatch.setattr("sys.argv", ["issue_dev_otp.py", "Dev@Example.com"])

    assert script.main() == 0

    account = db_session.query(Account).one()
    record = db_session.query(EmailOtp).one()
    assert account.email == "dev@example.com"
    assert record.user_id == account.id

    code = capsys.readouterr().out.strip().splitlines()[-1].removeprefix("Code: ")
    assert verify_otp_hash(code, record.otp_hash) is True


def test_issue_dev_otp_refuses_outside_dev(db_session, monkeypatch):
    script = _load_script()
    monkeypatch.setattr(script.settings, "ENV", "prod")
    monkeypatch.setattr("sys.argv", ["issue_dev_otp.py", "dev@example.com"])

    assert script.main() == 2
    assert db_session.query(EmailOtp).count() == 0
