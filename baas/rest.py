"""PostgREST table adapter.

Talks to the ``/rest/v1`` endpoint of a Supabase-style backend with the
project's anon key plus the signed-in user's bearer token, so row-level
security scopes every query to the caller.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Optional

import httpx

from baas.protocol import (
    NOTE_PATCH_FIELDS,
    PROFILE_PATCH_FIELDS,
    Row,
    check_patch,
)
from noteapp.config import Settings
from noteapp.errors import (
    BackendError,
    ConflictError,
    RecordNotFoundError,
    SchemaMismatchError,
)
from noteapp.metrics import BACKEND_DURATION

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
RETURN_ROWS = "return=representation"


def _jsonable(row: Row) -> Row:
    return {k: v.isoformat() if isinstance(v, datetime) else v for k, v in row.items()}


def _error_from(resp: httpx.Response, operation: str) -> BackendError:
    """Map a PostgREST error response to the error taxonomy."""
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = body.get("message") or f"{operation} failed with HTTP {resp.status_code}"
    if resp.status_code == 409 or body.get("code") == UNIQUE_VIOLATION:
        return ConflictError(message, status_code=resp.status_code)
    return BackendError(message, status_code=resp.status_code)


class RestBackend:
    """Async PostgREST client for the ``profiles`` and ``notes`` tables."""

    name = "rest"

    def __init__(
        self,
        settings: Settings,
        token_provider: Callable[[], Optional[str]] = lambda: None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = f"{settings.supabase_url.rstrip('/')}/rest/v1"
        self._anon_key = settings.supabase_anon_key
        self._token_provider = token_provider
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout)

    async def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def fetch_profiles(self, user_id: str) -> list[Row]:
        return await self._rows(
            "fetch_profiles",
            "GET",
            "profiles",
            params={"select": "*", "user_id": f"eq.{user_id}"},
        )

    async def insert_profile(self, row: Row) -> Row:
        rows = await self._rows(
            "insert_profile", "POST", "profiles", json=_jsonable(row), prefer=RETURN_ROWS
        )
        return self._single(rows, "insert_profile")

    async def update_profile(self, user_id: str, patch: Row) -> Row:
        check_patch(patch, PROFILE_PATCH_FIELDS)
        rows = await self._rows(
            "update_profile",
            "PATCH",
            "profiles",
            params={"user_id": f"eq.{user_id}"},
            json=_jsonable(patch),
            prefer=RETURN_ROWS,
        )
        return self._single(rows, "update_profile")

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def list_notes(self, user_id: str) -> list[Row]:
        return await self._rows(
            "list_notes",
            "GET",
            "notes",
            params={
                "select": "*",
                "user_id": f"eq.{user_id}",
                "order": "updated_at.desc",
            },
        )

    async def insert_note(self, row: Row) -> Row:
        rows = await self._rows(
            "insert_note", "POST", "notes", json=_jsonable(row), prefer=RETURN_ROWS
        )
        return self._single(rows, "insert_note")

    async def update_note(self, note_id: Any, user_id: str, patch: Row) -> Row:
        check_patch(patch, NOTE_PATCH_FIELDS)
        rows = await self._rows(
            "update_note",
            "PATCH",
            "notes",
            params={"id": f"eq.{note_id}", "user_id": f"eq.{user_id}"},
            json=_jsonable(patch),
            prefer=RETURN_ROWS,
        )
        return self._single(rows, "update_note")

    async def delete_note(self, note_id: Any, user_id: str) -> bool:
        rows = await self._rows(
            "delete_note",
            "DELETE",
            "notes",
            params={"id": f"eq.{note_id}", "user_id": f"eq.{user_id}"},
            prefer=RETURN_ROWS,
        )
        return bool(rows)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self, prefer: Optional[str]) -> dict[str, str]:
        token = self._token_provider() or self._anon_key
        headers = {"apikey": self._anon_key, "Authorization": f"Bearer {token}"}
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _rows(
        self,
        operation: str,
        method: str,
        table: str,
        *,
        params: Optional[dict[str, str]] = None,
        json: Optional[Row] = None,
        prefer: Optional[str] = None,
    ) -> list[Row]:
        """Send one request and return the JSON array of rows."""
        start = time.perf_counter()
        try:
            resp = await self._client.request(
                method,
                f"{self._base_url}/{table}",
                params=params,
                json=json,
                headers=self._headers(prefer),
            )
        except httpx.HTTPError as e:
            logger.warning("PostgREST %s failed: %s", operation, e)
            raise BackendError(f"{operation} failed: {e}") from e
        finally:
            BACKEND_DURATION.labels(backend=self.name, operation=operation).observe(
                time.perf_counter() - start
            )

        if resp.status_code >= 400:
            raise _error_from(resp, operation)
        if not resp.content:
            return []
        try:
            body = resp.json()
        except ValueError as e:
            raise SchemaMismatchError(f"{operation}: response is not JSON") from e
        if not isinstance(body, list):
            raise SchemaMismatchError(f"{operation}: expected a list of rows")
        return body

    @staticmethod
    def _single(rows: list[Row], operation: str) -> Row:
        if not rows:
            raise RecordNotFoundError(f"{operation}: no matching row")
        return rows[0]
