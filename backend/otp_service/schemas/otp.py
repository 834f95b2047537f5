from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, field_validator


class VerifyOtpIn(BaseModel):
    # Both fields stay optional here so a missing value is answered with 400, not 422.
    email: Optional[str] = None
    otp: Optional[str] = None

    @field_validator("otp", mode="before")
    @classmethod
    def _coerce_numeric_otp(cls, value):
        # Front-ends sometimes post the code as a JSON number.
        if isinstance(value, bool):
            raise ValueError("otp must be a string")
        if isinstance(value, int):
            return str(value)
        return value


class VerifyOtpOut(BaseModel):
    success: bool = True
    message: str


class SendOtpIn(BaseModel):
    email: Optional[str] = None


class SendOtpOut(BaseModel):
    success: bool = True
    message: str
    resend_available_in_seconds: int | None = None
