from __future__ import annotations

import uuid

from fastapi import FastAPI, Request

REQUEST_ID_HEADER = "X-Request-Id"


def generate_correlation_id(existing: str | None = None) -> str:
    if existing and existing.strip():
        return existing.strip()[:128]
    return uuid.uuid4().hex


def register_request_id_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Attach a correlation id to request.state and echo it on the response."""
        request_id = generate_correlation_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
