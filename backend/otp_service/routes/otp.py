import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from otp_service.core.config import settings
from otp_service.core.rate_limit import limiter
from otp_service.dependencies.stores import get_identity_store, get_secret_store
from otp_service.schemas.otp import SendOtpIn, SendOtpOut, VerifyOtpIn, VerifyOtpOut
from otp_service.services.email import EmailDeliveryError, EmailNotConfiguredError
from otp_service.services.email_otp import (
    GENERIC_SEND_MESSAGE,
    OtpError,
    OtpResendCooldownError,
    send_code,
    verify_code,
)
from otp_service.services.stores import IdentityStore, SecretStore, StoreUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["otp"])


def _maybe_limit(rule: str):
    if not settings.ENABLE_RATE_LIMITING:
        def passthrough(fn):
            return fn
        return passthrough
    return limiter.limit(rule)


def _translate_otp_error(exc: OtpError) -> HTTPException:
    headers = None
    details = None
    if isinstance(exc, OtpResendCooldownError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
        details = {"retry_after_seconds": exc.retry_after_seconds}
    detail: dict = {"error": exc.error_code, "message": exc.message}
    if details:
        detail["details"] = details
    return HTTPException(status_code=exc.status_code, detail=detail, headers=headers)


def _store_unavailable(exc: StoreUnavailableError) -> HTTPException:
    return HTTPException(status_code=500, detail={"error": "STORE_UNAVAILABLE", "message": str(exc)})


@router.post("/verify-otp", response_model=VerifyOtpOut)
@_maybe_limit(settings.OTP_VERIFY_RATE_LIMIT)
def verify_otp(
    request: Request,
    payload: VerifyOtpIn,
    secret_store: SecretStore = Depends(get_secret_store),
    identity_store: IdentityStore = Depends(get_identity_store),
):
    try:
        result = verify_code(
            email=payload.email,
            code=payload.otp,
            secret_store=secret_store,
            identity_store=identity_store,
        )
    except OtpError as exc:
        raise _translate_otp_error(exc)
    except StoreUnavailableError as exc:
        raise _store_unavailable(exc)
    return VerifyOtpOut(success=True, message=result.message)


@router.post("/send-otp", response_model=SendOtpOut)
@_maybe_limit(settings.OTP_SEND_RATE_LIMIT)
def send_otp(
    request: Request,
    payload: SendOtpIn,
    secret_store: SecretStore = Depends(get_secret_store),
    identity_store: IdentityStore = Depends(get_identity_store),
):
    try:
        result = send_code(
            email=payload.email,
            secret_store=secret_store,
            identity_store=identity_store,
        )
    except OtpError as exc:
        raise _translate_otp_error(exc)
    except StoreUnavailableError as exc:
        raise _store_unavailable(exc)
    except EmailNotConfiguredError as exc:
        logger.error("OTP email delivery not configured: %s", exc)
        raise HTTPException(
            status_code=502,
            detail={"error": "EMAIL_DELIVERY_FAILED", "message": "Email delivery is not configured"},
        )
    except EmailDeliveryError as exc:
        logger.error("OTP email delivery failed: %s", exc)
        raise HTTPException(
            status_code=502,
            detail={"error": "EMAIL_DELIVERY_FAILED", "message": "Unable to send verification email right now."},
        )
    return SendOtpOut(
        success=True,
        message=GENERIC_SEND_MESSAGE,
        resend_available_in_seconds=result.resend_available_in_seconds,
    )
