"""Tests for noteapp.notes: tag normalization and the quota-coupled repository."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from baas.local import LocalBackend
from conftest import IDENTITY
from noteapp.errors import (
    BackendError,
    NoteNotFoundError,
    NoteValidationError,
    QuotaExceededError,
)
from noteapp.models import Identity, Profile
from noteapp.notes import (
    DEFAULT_TITLE,
    NoteRepository,
    TagInput,
    normalize_tag,
    normalize_tags,
)
from noteapp.profiles import ProfileRepository

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _setup(backend: LocalBackend, **profile_fields) -> tuple[NoteRepository, Profile]:
    """Create the test identity's profile and a repository over ``backend``."""
    profiles = ProfileRepository(backend)
    profile = await profiles.create(IDENTITY.id, IDENTITY.email, IDENTITY.full_name)
    if profile_fields:
        profile = await profiles.update(IDENTITY.id, **profile_fields)
    return NoteRepository(backend, profiles, free_limit=10), profile


async def _stored_count(backend: LocalBackend) -> int:
    rows = await backend.fetch_profiles(IDENTITY.id)
    return rows[0]["notes_count"]


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


class TestTags:
    def test_normalize_tag(self) -> None:
        assert normalize_tag("  Work ") == "work"

    def test_normalize_tags_dedupes_and_drops_empty(self) -> None:
        assert normalize_tags(["Home", " home", "", "  ", "Work"]) == ["home", "work"]

    def test_commit_normalizes_and_rejects_duplicates(self) -> None:
        tags = TagInput()
        assert tags.commit(" Work ") is True
        assert tags.commit("work") is False
        assert tags.tags == ["work"]

    def test_commit_ignores_blank(self) -> None:
        tags = TagInput()
        assert tags.commit("   ") is False
        assert tags.tags == []

    def test_remove(self) -> None:
        tags = TagInput(["a", "b"])
        tags.remove("a")
        assert tags.tags == ["b"]

    def test_display_order_preserved(self) -> None:
        tags = TagInput()
        for raw in ["zeta", "Alpha", "mid"]:
            tags.commit(raw)
        assert tags.tags == ["zeta", "alpha", "mid"]


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


class TestCreate:
    @pytest.mark.asyncio
    async def test_round_trip(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        change = await repo.create_note(IDENTITY, profile, "Groceries", "<p>eggs</p>", [" Home ", "home"])

        notes = await repo.list_notes(IDENTITY)
        assert [n.id for n in notes] == [change.note.id]
        assert notes[0].title == "Groceries"
        assert notes[0].content == "<p>eggs</p>"
        assert notes[0].tags == ["home"]
        assert notes[0].user_id == IDENTITY.id

    @pytest.mark.asyncio
    async def test_blank_title_defaults(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        change = await repo.create_note(IDENTITY, profile, "   ", "body")
        assert change.note.title == DEFAULT_TITLE

    @pytest.mark.asyncio
    async def test_title_is_trimmed(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        change = await repo.create_note(IDENTITY, profile, "  Plan  ", "")
        assert change.note.title == "Plan"

    @pytest.mark.asyncio
    async def test_empty_title_and_content_rejected(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        with pytest.raises(NoteValidationError):
            await repo.create_note(IDENTITY, profile, " ", "  ")
        assert backend.count == 0

    @pytest.mark.asyncio
    async def test_increments_counter(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend, notes_count=4)
        change = await repo.create_note(IDENTITY, profile, "T", "C")
        assert change.profile.notes_count == 5
        assert await _stored_count(backend) == 5

    @pytest.mark.asyncio
    async def test_quota_blocks_free_tier(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend, notes_count=10)
        with pytest.raises(QuotaExceededError) as exc:
            await repo.create_note(IDENTITY, profile, "T", "C")
        assert exc.value.limit == 10
        assert backend.count == 0
        assert await _stored_count(backend) == 10

    @pytest.mark.asyncio
    async def test_quota_over_limit(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend, notes_count=25)
        with pytest.raises(QuotaExceededError):
            await repo.create_note(IDENTITY, profile, "T", "C")

    @pytest.mark.asyncio
    async def test_premium_not_limited(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend, notes_count=10, subscription_tier="premium")
        change = await repo.create_note(IDENTITY, profile, "T", "C")
        assert change.profile.notes_count == 11

    @pytest.mark.asyncio
    async def test_counter_failure_keeps_note(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend, notes_count=2)
        backend.update_profile = AsyncMock(side_effect=BackendError("down"))

        change = await repo.create_note(IDENTITY, profile, "T", "C")

        assert backend.count == 1
        assert change.profile.notes_count == 3

    @pytest.mark.asyncio
    async def test_insert_failure_propagates(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        backend.insert_note = AsyncMock(side_effect=BackendError("down"))
        with pytest.raises(BackendError):
            await repo.create_note(IDENTITY, profile, "T", "C")
        assert await _stored_count(backend) == 0


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_fields(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        created = (await repo.create_note(IDENTITY, profile, "Old", "old", ["a"])).note

        updated = await repo.update_note(IDENTITY, created.id, "New", "new", ["B", "c"])

        assert updated.title == "New"
        assert updated.content == "new"
        assert updated.tags == ["b", "c"]
        assert updated.updated_at > created.updated_at
        assert updated.created_at == created.created_at

    @pytest.mark.asyncio
    async def test_update_not_quota_limited(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        created = (await repo.create_note(IDENTITY, profile, "T", "C")).note
        await ProfileRepository(backend).update(IDENTITY.id, notes_count=10)

        updated = await repo.update_note(IDENTITY, created.id, "T2", "C")
        assert updated.title == "T2"

    @pytest.mark.asyncio
    async def test_update_moves_note_to_front(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        first = (await repo.create_note(IDENTITY, profile, "first", "")).note
        change = await repo.create_note(IDENTITY, profile, "second", "")

        await repo.update_note(IDENTITY, first.id, "first edited", "")

        notes = await repo.list_notes(IDENTITY)
        assert [n.id for n in notes] == [first.id, change.note.id]

    @pytest.mark.asyncio
    async def test_update_missing_note(self, backend: LocalBackend) -> None:
        repo, _ = await _setup(backend)
        with pytest.raises(NoteNotFoundError):
            await repo.update_note(IDENTITY, 999, "T", "C")

    @pytest.mark.asyncio
    async def test_update_validation(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        created = (await repo.create_note(IDENTITY, profile, "T", "C")).note
        with pytest.raises(NoteValidationError):
            await repo.update_note(IDENTITY, created.id, "", "")


# ---------------------------------------------------------------------------
# Delete / scoping / reconcile
# ---------------------------------------------------------------------------


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_and_decrements(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        change = await repo.create_note(IDENTITY, profile, "T", "C")

        updated = await repo.delete_note(IDENTITY, change.profile, change.note.id)

        assert change.note.id not in [n.id for n in await repo.list_notes(IDENTITY)]
        assert updated.notes_count == 0
        assert await _stored_count(backend) == 0

    @pytest.mark.asyncio
    async def test_decrement_floored_at_zero(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        change = await repo.create_note(IDENTITY, profile, "T", "C")
        drifted = change.profile.model_copy(update={"notes_count": 0})

        updated = await repo.delete_note(IDENTITY, drifted, change.note.id)
        assert updated.notes_count == 0

    @pytest.mark.asyncio
    async def test_counter_failure_does_not_abort_delete(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        change = await repo.create_note(IDENTITY, profile, "T", "C")
        backend.update_profile = AsyncMock(side_effect=BackendError("down"))

        updated = await repo.delete_note(IDENTITY, change.profile, change.note.id)

        assert updated.notes_count == 0
        assert await repo.list_notes(IDENTITY) == []

    @pytest.mark.asyncio
    async def test_delete_without_profile(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        change = await repo.create_note(IDENTITY, profile, "T", "C")
        assert await repo.delete_note(IDENTITY, None, change.note.id) is None

    @pytest.mark.asyncio
    async def test_delete_missing_note(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        with pytest.raises(NoteNotFoundError):
            await repo.delete_note(IDENTITY, profile, 404)
        assert await _stored_count(backend) == 0

    @pytest.mark.asyncio
    async def test_other_users_notes_invisible(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        change = await repo.create_note(IDENTITY, profile, "Mine", "C")
        other = Identity(id="user-2", email="bob@example.com", full_name="Bob")

        assert await repo.list_notes(other) == []
        with pytest.raises(NoteNotFoundError):
            await repo.delete_note(other, None, change.note.id)
        with pytest.raises(NoteNotFoundError):
            await repo.update_note(other, change.note.id, "Stolen", "")


class TestReconcile:
    @pytest.mark.asyncio
    async def test_rewrites_drifted_counter(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        await repo.create_note(IDENTITY, profile, "T", "C")
        drifted = await ProfileRepository(backend).update(IDENTITY.id, notes_count=7)

        fixed = await repo.reconcile_count(drifted, await repo.list_notes(IDENTITY))

        assert fixed.notes_count == 1
        assert await _stored_count(backend) == 1

    @pytest.mark.asyncio
    async def test_consistent_counter_untouched(self, backend: LocalBackend) -> None:
        repo, profile = await _setup(backend)
        backend.update_profile = AsyncMock()
        assert await repo.reconcile_count(profile, []) is profile
        backend.update_profile.assert_not_awaited()

    def test_quota_reached(self, backend: LocalBackend) -> None:
        repo = NoteRepository(backend, ProfileRepository(backend), free_limit=2)
        assert repo.quota_reached(None) is False
