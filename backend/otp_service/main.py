import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from otp_service.core.config import settings
from otp_service.core.rate_limit import limiter
from otp_service.middleware.request_id import (
    REQUEST_ID_HEADER,
    generate_correlation_id,
    register_request_id_middleware,
)
from otp_service.routes.otp import router as otp_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

LIVENESS_MESSAGE = "OTP verification server running"

app = FastAPI(title="OTP Verification Service")
logger.info(
    "Startup config: ENV=%s OTP_STORE_BACKEND=%s EMAIL_ENABLED=%s RATE_LIMITING=%s",
    settings.ENV,
    settings.OTP_STORE_BACKEND,
    settings.EMAIL_ENABLED,
    settings.ENABLE_RATE_LIMITING,
)

_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    502: "BAD_GATEWAY",
}


def _error_code(status_code: int) -> str:
    return _ERROR_CODE_BY_STATUS.get(int(status_code), "HTTP_ERROR")


@app.exception_handler(StarletteHTTPException)
def http_exception_handler(request: Request, exc: StarletteHTTPException):  # noqa: ARG001
    detail = exc.detail
    error = _error_code(exc.status_code)
    details: dict | None = None

    if isinstance(detail, str):
        message = detail
    elif isinstance(detail, dict):
        # Routes raise HTTPException(detail={"error": "...", "message": "...", "details": {...}}).
        err = detail.get("error")
        if isinstance(err, str) and err:
            error = err
        msg = detail.get("message")
        message = msg if isinstance(msg, str) and msg else "Request failed"
        det = detail.get("details")
        details = det if isinstance(det, dict) else None
    else:
        message = str(detail) if detail is not None else "Request failed"

    payload: dict = {"error": error, "message": message}
    if details:
        payload["details"] = details
    return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):  # noqa: ARG001
    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Invalid request payload",
            "details": {"errors": exc.errors()},
        },
    )


def _fallback_headers(request: Request) -> dict[str, str]:
    # Unhandled errors are answered outside the CORS and request-id middleware.
    request_id = getattr(request.state, "request_id", None) or generate_correlation_id(
        request.headers.get(REQUEST_ID_HEADER)
    )
    headers = {REQUEST_ID_HEADER: request_id}
    origin = request.headers.get("origin")
    if origin and origin in settings.CORS_ORIGINS:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Credentials"] = "true"
        headers["Vary"] = "Origin"
    return headers


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled error: path=%s request_id=%s",
        request.url.path,
        getattr(request.state, "request_id", None),
    )
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_ERROR", "message": "Internal server error"},
        headers=_fallback_headers(request),
    )


if settings.ENABLE_RATE_LIMITING:
    app.state.limiter = limiter
    # Provide our standard error shape for rate limits, instead of slowapi's default.
    app.add_exception_handler(
        RateLimitExceeded,
        lambda request, exc: JSONResponse(  # noqa: ARG005
            status_code=429,
            content={"error": "RATE_LIMITED", "message": "Too many requests"},
        ),
    )

register_request_id_middleware(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "x-client-info", "apikey"],
)

app.include_router(otp_router)


@app.get("/", response_class=PlainTextResponse)
def liveness() -> str:
    return LIVENESS_MESSAGE


@app.get("/health")
def health_check():
    return {"status": "ok"}
