"""PostgreSQL table adapter.

Same contract as the PostgREST adapter, for self-hosted deployments.
Uses SQLAlchemy async engine with asyncpg driver. The unique constraint on
``profiles.user_id`` enforces one profile per identity at the storage layer.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from baas.protocol import (
    NOTE_PATCH_FIELDS,
    PROFILE_PATCH_FIELDS,
    Row,
    check_patch,
)
from noteapp.errors import BackendError, ConflictError, RecordNotFoundError
from noteapp.metrics import BACKEND_DURATION

logger = logging.getLogger(__name__)

_CREATE_TABLE_STMTS = [
    """CREATE TABLE IF NOT EXISTS profiles (
        id BIGSERIAL PRIMARY KEY,
        user_id TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL,
        full_name TEXT NOT NULL,
        subscription_tier VARCHAR(16) NOT NULL DEFAULT 'free',
        notes_count INTEGER NOT NULL DEFAULT 0 CHECK (notes_count >= 0),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        paypal_subscription_id TEXT,
        paypal_plan_id TEXT,
        subscription_status VARCHAR(16),
        subscription_end_date TIMESTAMPTZ
    )""",
    """CREATE TABLE IF NOT EXISTS notes (
        id BIGSERIAL PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        content TEXT NOT NULL DEFAULT '',
        tags TEXT[] NOT NULL DEFAULT '{}',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )""",
    "CREATE INDEX IF NOT EXISTS idx_notes_user_updated ON notes(user_id, updated_at DESC)",
]


def _note_key(note_id: Any) -> int:
    try:
        return int(note_id)
    except (TypeError, ValueError) as e:
        raise RecordNotFoundError(f"Invalid note id: {note_id!r}") from e


def _set_clause(patch: Row) -> str:
    return ", ".join(f"{column} = :{column}" for column in patch)


class SqlBackend:
    """Async PostgreSQL client for the ``profiles`` and ``notes`` tables."""

    name = "sql"

    def __init__(self, database_url: str, timeout: float = 15.0) -> None:
        self._url = database_url
        self._timeout = timeout
        self._engine: Optional[AsyncEngine] = None

    @property
    def available(self) -> bool:
        """Whether the PostgreSQL connection is active."""
        return self._engine is not None

    async def init(self) -> None:
        """Create engine, connection pool, and tables."""
        try:
            self._engine = create_async_engine(self._url, pool_size=5, max_overflow=10)
            async with self._engine.begin() as conn:
                for stmt in _CREATE_TABLE_STMTS:
                    await conn.execute(text(stmt))
            logger.info("PostgreSQL connected; tables ready")
        except Exception as e:
            logger.error("PostgreSQL unavailable: %s", e)
            self._engine = None
            raise BackendError(f"Database unavailable: {e}") from e

    async def close(self) -> None:
        """Dispose of the engine and connection pool."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def fetch_profiles(self, user_id: str) -> list[Row]:
        return await self._execute(
            "fetch_profiles",
            "SELECT * FROM profiles WHERE user_id = :user_id",
            {"user_id": user_id},
            write=False,
        )

    async def insert_profile(self, row: Row) -> Row:
        rows = await self._execute(
            "insert_profile",
            "INSERT INTO profiles "
            "(user_id, email, full_name, subscription_tier, notes_count, "
            "subscription_status) "
            "VALUES (:user_id, :email, :full_name, :subscription_tier, "
            ":notes_count, :subscription_status) "
            "RETURNING *",
            row,
        )
        return self._single(rows, "insert_profile")

    async def update_profile(self, user_id: str, patch: Row) -> Row:
        check_patch(patch, PROFILE_PATCH_FIELDS)
        rows = await self._execute(
            "update_profile",
            f"UPDATE profiles SET {_set_clause(patch)}, updated_at = NOW() "
            "WHERE user_id = :user_id RETURNING *",
            {**patch, "user_id": user_id},
        )
        return self._single(rows, "update_profile")

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def list_notes(self, user_id: str) -> list[Row]:
        return await self._execute(
            "list_notes",
            "SELECT * FROM notes WHERE user_id = :user_id ORDER BY updated_at DESC",
            {"user_id": user_id},
            write=False,
        )

    async def insert_note(self, row: Row) -> Row:
        rows = await self._execute(
            "insert_note",
            "INSERT INTO notes (user_id, title, content, tags) "
            "VALUES (:user_id, :title, :content, :tags) RETURNING *",
            row,
        )
        return self._single(rows, "insert_note")

    async def update_note(self, note_id: Any, user_id: str, patch: Row) -> Row:
        check_patch(patch, NOTE_PATCH_FIELDS)
        rows = await self._execute(
            "update_note",
            f"UPDATE notes SET {_set_clause(patch)} "
            "WHERE id = :id AND user_id = :user_id RETURNING *",
            {**patch, "id": _note_key(note_id), "user_id": user_id},
        )
        return self._single(rows, "update_note")

    async def delete_note(self, note_id: Any, user_id: str) -> bool:
        rows = await self._execute(
            "delete_note",
            "DELETE FROM notes WHERE id = :id AND user_id = :user_id RETURNING id",
            {"id": _note_key(note_id), "user_id": user_id},
        )
        return bool(rows)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _execute(
        self, operation: str, stmt: str, params: Row, *, write: bool = True
    ) -> list[Row]:
        """Run one statement with a timeout and return the rows as dicts."""
        if not self.available:
            raise BackendError("Database not initialised")

        start = time.perf_counter()
        try:
            return await asyncio.wait_for(
                self._run(stmt, params, write), timeout=self._timeout
            )
        except IntegrityError as e:
            raise ConflictError(f"{operation}: {e.orig}") from e
        except SQLAlchemyError as e:
            logger.warning("PostgreSQL %s failed: %s", operation, e)
            raise BackendError(f"{operation} failed: {e}") from e
        except TimeoutError as e:
            logger.warning("PostgreSQL %s timed out after %.1fs", operation, self._timeout)
            raise BackendError(f"{operation} timed out") from e
        finally:
            BACKEND_DURATION.labels(backend=self.name, operation=operation).observe(
                time.perf_counter() - start
            )

    async def _run(self, stmt: str, params: Row, write: bool) -> list[Row]:
        ctx = self._engine.begin() if write else self._engine.connect()
        async with ctx as conn:
            result = await conn.execute(text(stmt), params)
            return [dict(row) for row in result.mappings().all()]

    @staticmethod
    def _single(rows: list[Row], operation: str) -> Row:
        if not rows:
            raise RecordNotFoundError(f"{operation}: no matching row")
        return rows[0]
