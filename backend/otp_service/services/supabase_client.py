"""
Thin wrapper around the Supabase REST (PostgREST) and Auth admin HTTP APIs.

Provides a stable, exception-friendly interface for the store adapters to call
without leaking httpx-specific errors up the stack. Every call uses the
service-role key, so this module must never be reachable from client-supplied URLs.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List

import httpx

from otp_service.core.config import settings

logger = logging.getLogger(__name__)


class SupabaseClientError(Exception):
    """Raised when Supabase returns an error or cannot be reached."""

    def __init__(self, code: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code


def _require_supabase_config() -> None:
    if not settings.SUPABASE_URL:
        raise RuntimeError("SUPABASE_URL is not configured")
    if not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY is not configured")


@lru_cache(maxsize=1)
def get_supabase_http_client() -> httpx.Client:
    _require_supabase_config()
    key = settings.SUPABASE_SERVICE_ROLE_KEY
    return httpx.Client(
        base_url=settings.SUPABASE_URL,
        headers={
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        },
        timeout=settings.SUPABASE_TIMEOUT_SECONDS,
    )


def _translate_error(response: httpx.Response) -> SupabaseClientError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    # PostgREST uses {code, message}; GoTrue uses {error_code|code, msg|message}.
    code = body.get("error_code") or body.get("code") or f"HTTP_{response.status_code}"
    message = body.get("message") or body.get("msg") or body.get("error_description") or response.reason_phrase
    return SupabaseClientError(code=str(code), message=str(message), status_code=response.status_code)


def _request(client: httpx.Client, method: str, path: str, **kwargs: Any) -> Any:
    try:
        response = client.request(method, path, **kwargs)
    except httpx.HTTPError as exc:
        raise SupabaseClientError(code="NETWORK_ERROR", message=f"Supabase request failed: {exc}") from exc

    if response.status_code >= 400:
        raise _translate_error(response)
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise SupabaseClientError(
            code="INVALID_RESPONSE",
            message="Supabase returned a non-JSON body",
            status_code=response.status_code,
        ) from exc


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so an email is matched literally by `ilike`."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# -------------------------
# REST (PostgREST) helpers
# -------------------------
def select_rows(client: httpx.Client, table: str, params: Dict[str, str]) -> List[dict]:
    rows = _request(client, "GET", f"/rest/v1/{table}", params=params)
    return rows if isinstance(rows, list) else []


def update_rows(client: httpx.Client, table: str, params: Dict[str, str], values: Dict[str, Any]) -> List[dict]:
    """PATCH matching rows and return the rows that actually changed."""
    rows = _request(
        client,
        "PATCH",
        f"/rest/v1/{table}",
        params=params,
        json=values,
        headers={"Prefer": "return=representation"},
    )
    return rows if isinstance(rows, list) else []


def insert_row(client: httpx.Client, table: str, values: Dict[str, Any]) -> dict:
    rows = _request(
        client,
        "POST",
        f"/rest/v1/{table}",
        json=values,
        headers={"Prefer": "return=representation"},
    )
    if isinstance(rows, list) and rows:
        return rows[0]
    raise SupabaseClientError(code="INVALID_RESPONSE", message=f"Insert into {table} returned no row")


# -------------------------
# Auth admin helpers
# -------------------------
def admin_list_users(client: httpx.Client, *, page: int, per_page: int) -> List[dict]:
    body = _request(client, "GET", "/auth/v1/admin/users", params={"page": page, "per_page": per_page})
    if isinstance(body, dict):
        users = body.get("users")
        return users if isinstance(users, list) else []
    return []


def admin_update_user(client: httpx.Client, user_id: str, attributes: Dict[str, Any]) -> dict:
    body = _request(client, "PUT", f"/auth/v1/admin/users/{user_id}", json=attributes)
    return body if isinstance(body, dict) else {}
