"""JSON file-based table adapter for offline use and tests."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from baas.protocol import (
    NOTE_PATCH_FIELDS,
    PROFILE_PATCH_FIELDS,
    Row,
    check_patch,
)
from noteapp.errors import ConflictError, RecordNotFoundError

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _stamp(row: Row) -> Row:
    return {k: v.isoformat() if isinstance(v, datetime) else v for k, v in row.items()}


class LocalStore(BaseModel):
    """Container for all rows, used for JSON serialization."""

    profiles: list[dict[str, Any]] = Field(default_factory=list)
    notes: list[dict[str, Any]] = Field(default_factory=list)
    next_profile_id: int = 1
    next_note_id: int = 1


class LocalBackend:
    """Manages profile and note rows in a local JSON file."""

    name = "local"

    def __init__(self, storage_path: Path) -> None:
        self._path = storage_path
        self._store = LocalStore()
        self._load()

    def _load(self) -> None:
        """Load rows from disk. Creates file if missing."""
        if self._path.exists():
            try:
                raw = json.loads(self._path.read_text(encoding="utf-8"))
                self._store = LocalStore.model_validate(raw)
                logger.info(
                    "Loaded %d profiles and %d notes from %s",
                    len(self._store.profiles),
                    len(self._store.notes),
                    self._path,
                )
            except Exception as exc:
                logger.error("Failed to load store: %s; starting fresh", exc)
                self._store = LocalStore()
        else:
            logger.info("No storage file found at %s; starting fresh", self._path)
            self._persist()

    def _persist(self) -> None:
        """Write current state to disk."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(self._store.model_dump_json(indent=2), encoding="utf-8")

    async def close(self) -> None:
        return None

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def fetch_profiles(self, user_id: str) -> list[Row]:
        return [dict(p) for p in self._store.profiles if p["user_id"] == user_id]

    async def insert_profile(self, row: Row) -> Row:
        if any(p["user_id"] == row["user_id"] for p in self._store.profiles):
            raise ConflictError(
                f"Profile for {row['user_id']} already exists", status_code=409
            )
        now = _now()
        profile = {
            "id": self._store.next_profile_id,
            "created_at": now,
            "updated_at": now,
            **_stamp(row),
        }
        self._store.next_profile_id += 1
        self._store.profiles.append(profile)
        self._persist()
        return dict(profile)

    async def update_profile(self, user_id: str, patch: Row) -> Row:
        check_patch(patch, PROFILE_PATCH_FIELDS)
        for profile in self._store.profiles:
            if profile["user_id"] == user_id:
                profile.update(_stamp(patch), updated_at=_now())
                self._persist()
                return dict(profile)
        raise RecordNotFoundError(f"No profile for {user_id}", status_code=404)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def list_notes(self, user_id: str) -> list[Row]:
        owned = [dict(n) for n in self._store.notes if n["user_id"] == user_id]
        return sorted(owned, key=lambda n: n["updated_at"], reverse=True)

    async def insert_note(self, row: Row) -> Row:
        now = _now()
        note = {
            "id": self._store.next_note_id,
            "created_at": now,
            "updated_at": now,
            **_stamp(row),
        }
        self._store.next_note_id += 1
        self._store.notes.append(note)
        self._persist()
        logger.info("Saved note %s: '%s'", note["id"], note["title"])
        return dict(note)

    async def update_note(self, note_id: Any, user_id: str, patch: Row) -> Row:
        check_patch(patch, NOTE_PATCH_FIELDS)
        for note in self._store.notes:
            if str(note["id"]) == str(note_id) and note["user_id"] == user_id:
                note.update(_stamp(patch))
                self._persist()
                return dict(note)
        raise RecordNotFoundError(f"No note {note_id}", status_code=404)

    async def delete_note(self, note_id: Any, user_id: str) -> bool:
        before = len(self._store.notes)
        self._store.notes = [
            n
            for n in self._store.notes
            if not (str(n["id"]) == str(note_id) and n["user_id"] == user_id)
        ]
        removed = len(self._store.notes) != before
        if removed:
            self._persist()
        return removed

    @property
    def count(self) -> int:
        """Number of stored notes across all users."""
        return len(self._store.notes)
