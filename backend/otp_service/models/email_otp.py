from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, String, false, func

from otp_service.core.base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class EmailOtp(Base):
    """One issued one-time code. Mirrors the hosted `email_otps` table."""

    __tablename__ = "email_otps"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), nullable=False, index=True)
    otp_hash = Column(String(255), nullable=False)
    purpose = Column(String(50), nullable=False, server_default="email_verification")
    user_id = Column(String(36), nullable=True)
    # NULL reads as "not consumed"; rows written by older clients never set it.
    consumed = Column(Boolean, nullable=True, server_default=false())
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=True, server_default=func.now())

    @property
    def is_consumed(self) -> bool:
        return bool(self.consumed)
