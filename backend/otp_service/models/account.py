from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, String, false, func

from otp_service.core.base import Base


class Account(Base):
    """Local stand-in for the hosted auth user directory (database backend only)."""

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, index=True, nullable=False)
    email_confirmed = Column(Boolean, nullable=False, server_default=false(), default=False)
    email_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
