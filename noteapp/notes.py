"""Note Repository: per-identity note CRUD coupled to the profile quota."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from baas.protocol import Backend, Row
from noteapp.errors import (
    BackendError,
    NoteNotFoundError,
    NoteValidationError,
    QuotaExceededError,
    RecordNotFoundError,
    SchemaMismatchError,
)
from noteapp.metrics import NOTE_OPERATIONS, QUOTA_REJECTIONS
from noteapp.models import Identity, Note, Profile, utcnow
from noteapp.profiles import ProfileRepository

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled"
FREE_NOTE_LIMIT = 10


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


def normalize_tag(raw: str) -> str:
    return raw.strip().lower()


def normalize_tags(raw_tags: Iterable[str]) -> list[str]:
    """Normalize, drop empties and duplicates, keep first-seen order."""
    tags: list[str] = []
    for raw in raw_tags:
        tag = normalize_tag(raw)
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class TagInput:
    """Editor-side tag list; tags are added one explicit commit at a time."""

    def __init__(self, tags: Iterable[str] = ()) -> None:
        self._tags = normalize_tags(tags)

    @property
    def tags(self) -> list[str]:
        return list(self._tags)

    def commit(self, raw: str) -> bool:
        """Add ``raw`` as a tag. Empty or duplicate input is ignored."""
        tag = normalize_tag(raw)
        if not tag or tag in self._tags:
            return False
        self._tags.append(tag)
        return True

    def remove(self, tag: str) -> None:
        self._tags = [t for t in self._tags if t != tag]


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NoteChange:
    """A created note together with the profile after the counter update."""

    note: Note
    profile: Profile


def parse_note(row: Row) -> Note:
    try:
        return Note.model_validate(row)
    except ValidationError as e:
        raise SchemaMismatchError(f"Malformed note row: {e}") from e


def prepare_fields(title: str, content: str, tags: Iterable[str]) -> Row:
    """Validate a save and apply the title default."""
    if not title.strip() and not content.strip():
        raise NoteValidationError("Please add a title or content")
    return {
        "title": title.strip() or DEFAULT_TITLE,
        "content": content,
        "tags": normalize_tags(tags),
    }


class NoteRepository:
    """Note CRUD scoped to the caller's identity."""

    def __init__(
        self,
        backend: Backend,
        profiles: ProfileRepository,
        free_limit: int = FREE_NOTE_LIMIT,
    ) -> None:
        self._backend = backend
        self._profiles = profiles
        self._free_limit = free_limit

    @property
    def free_limit(self) -> int:
        return self._free_limit

    def quota_reached(self, profile: Optional[Profile]) -> bool:
        """Whether the cached counter blocks creating another note."""
        if profile is None or profile.is_premium:
            return False
        return profile.notes_count >= self._free_limit

    async def list_notes(self, identity: Identity) -> list[Note]:
        """All notes of ``identity``, most recently modified first."""
        try:
            rows = await self._backend.list_notes(identity.id)
        except BackendError:
            NOTE_OPERATIONS.labels(operation="list", status="error").inc()
            raise
        NOTE_OPERATIONS.labels(operation="list", status="success").inc()
        return [parse_note(row) for row in rows]

    async def create_note(
        self,
        identity: Identity,
        profile: Profile,
        title: str,
        content: str,
        tags: Iterable[str] = (),
    ) -> NoteChange:
        """Insert a note, then best-effort increment the profile counter."""
        if self.quota_reached(profile):
            QUOTA_REJECTIONS.inc()
            logger.info(
                "Quota reached for %s (%d notes)", identity.id, profile.notes_count
            )
            raise QuotaExceededError(self._free_limit)

        fields = prepare_fields(title, content, tags)
        try:
            row = await self._backend.insert_note({"user_id": identity.id, **fields})
        except BackendError:
            NOTE_OPERATIONS.labels(operation="create", status="error").inc()
            raise
        NOTE_OPERATIONS.labels(operation="create", status="success").inc()
        note = parse_note(row)
        logger.info("Created note %s for %s", note.id, identity.id)

        updated = await self._profiles.adjust_count(profile, +1, operation="increment")
        return NoteChange(note=note, profile=updated)

    async def update_note(
        self,
        identity: Identity,
        note_id: Any,
        title: str,
        content: str,
        tags: Iterable[str] = (),
    ) -> Note:
        """Save edits to an existing note. Editing is never quota-limited."""
        fields = prepare_fields(title, content, tags)
        try:
            row = await self._backend.update_note(
                note_id, identity.id, {**fields, "updated_at": utcnow()}
            )
        except RecordNotFoundError as e:
            NOTE_OPERATIONS.labels(operation="update", status="error").inc()
            raise NoteNotFoundError(f"Note {note_id} not found") from e
        except BackendError:
            NOTE_OPERATIONS.labels(operation="update", status="error").inc()
            raise
        NOTE_OPERATIONS.labels(operation="update", status="success").inc()
        return parse_note(row)

    async def delete_note(
        self, identity: Identity, profile: Optional[Profile], note_id: Any
    ) -> Optional[Profile]:
        """Remove a note, then best-effort decrement the counter (floored at 0)."""
        try:
            removed = await self._backend.delete_note(note_id, identity.id)
        except BackendError:
            NOTE_OPERATIONS.labels(operation="delete", status="error").inc()
            raise
        if not removed:
            NOTE_OPERATIONS.labels(operation="delete", status="error").inc()
            raise NoteNotFoundError(f"Note {note_id} not found")
        NOTE_OPERATIONS.labels(operation="delete", status="success").inc()
        logger.info("Deleted note %s for %s", note_id, identity.id)

        if profile is None:
            return None
        return await self._profiles.adjust_count(profile, -1, operation="decrement")

    async def reconcile_count(self, profile: Profile, notes: list[Note]) -> Profile:
        """Rewrite a drifted ``notes_count`` from the loaded collection."""
        if profile.notes_count == len(notes):
            return profile
        logger.info(
            "notes_count drift for %s: cached=%d actual=%d",
            profile.user_id,
            profile.notes_count,
            len(notes),
        )
        return await self._profiles.set_count(profile, len(notes), operation="reconcile")
