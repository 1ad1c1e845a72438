"""Tests for noteapp.profiles: tagged lookups and lazy creation."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from baas.local import LocalBackend
from conftest import IDENTITY
from noteapp.errors import (
    BackendError,
    ConflictError,
    ProfileExistsError,
    ProfileUnavailableError,
    SchemaMismatchError,
)
from noteapp.models import Identity
from noteapp.profiles import Found, NotFound, ProfileRepository, TransientError

ROW = {
    "id": 7,
    "user_id": IDENTITY.id,
    "email": IDENTITY.email,
    "full_name": IDENTITY.full_name,
    "subscription_tier": "free",
    "notes_count": 2,
    "created_at": "2026-01-01T00:00:00+00:00",
    "updated_at": "2026-01-02T00:00:00+00:00",
    "subscription_status": "active",
}


def _mock_backend(**methods) -> AsyncMock:
    backend = AsyncMock()
    for name, value in methods.items():
        setattr(backend, name, value)
    return backend


# ---------------------------------------------------------------------------
# lookup
# ---------------------------------------------------------------------------


class TestLookup:
    @pytest.mark.asyncio
    async def test_found(self) -> None:
        repo = ProfileRepository(_mock_backend(fetch_profiles=AsyncMock(return_value=[ROW])))
        result = await repo.lookup(IDENTITY.id)
        assert isinstance(result, Found)
        assert result.profile.id == 7
        assert result.profile.notes_count == 2

    @pytest.mark.asyncio
    async def test_not_found(self) -> None:
        repo = ProfileRepository(_mock_backend(fetch_profiles=AsyncMock(return_value=[])))
        assert await repo.lookup(IDENTITY.id) == NotFound()

    @pytest.mark.asyncio
    async def test_backend_error_is_transient(self) -> None:
        repo = ProfileRepository(
            _mock_backend(fetch_profiles=AsyncMock(side_effect=BackendError("timeout")))
        )
        result = await repo.lookup(IDENTITY.id)
        assert isinstance(result, TransientError)
        assert "timeout" in result.reason

    @pytest.mark.asyncio
    async def test_multiple_rows_is_transient(self) -> None:
        repo = ProfileRepository(
            _mock_backend(fetch_profiles=AsyncMock(return_value=[ROW, {**ROW, "id": 8}]))
        )
        assert isinstance(await repo.lookup(IDENTITY.id), TransientError)

    @pytest.mark.asyncio
    async def test_malformed_row(self) -> None:
        bad = {k: v for k, v in ROW.items() if k != "email"}
        repo = ProfileRepository(_mock_backend(fetch_profiles=AsyncMock(return_value=[bad])))
        with pytest.raises(SchemaMismatchError):
            await repo.lookup(IDENTITY.id)


# ---------------------------------------------------------------------------
# load / create
# ---------------------------------------------------------------------------


class TestLoad:
    @pytest.mark.asyncio
    async def test_creates_on_definitive_miss(self, backend: LocalBackend) -> None:
        profile = await ProfileRepository(backend).load(IDENTITY)

        assert profile is not None
        assert profile.user_id == IDENTITY.id
        assert profile.email == IDENTITY.email
        assert profile.full_name == IDENTITY.full_name
        assert profile.subscription_tier == "free"
        assert profile.notes_count == 0
        assert profile.subscription_status == "active"

    @pytest.mark.asyncio
    async def test_existing_profile_returned(self, backend: LocalBackend) -> None:
        repo = ProfileRepository(backend)
        created = await repo.create(IDENTITY.id, IDENTITY.email, IDENTITY.full_name)
        assert (await repo.load(IDENTITY)).id == created.id
        assert len(await backend.fetch_profiles(IDENTITY.id)) == 1

    @pytest.mark.asyncio
    async def test_no_create_without_display_name(self, backend: LocalBackend) -> None:
        identity = Identity(id="user-9", email="x@example.com")
        assert await ProfileRepository(backend).load(identity) is None
        assert await backend.fetch_profiles("user-9") == []

    @pytest.mark.asyncio
    async def test_transient_error_never_creates(self) -> None:
        backend = _mock_backend(
            fetch_profiles=AsyncMock(side_effect=BackendError("503")),
            insert_profile=AsyncMock(),
        )
        with pytest.raises(ProfileUnavailableError):
            await ProfileRepository(backend).load(IDENTITY)
        backend.insert_profile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lost_create_race_reloads(self) -> None:
        backend = _mock_backend(
            fetch_profiles=AsyncMock(side_effect=[[], [ROW]]),
            insert_profile=AsyncMock(side_effect=ConflictError("duplicate", 409)),
        )
        profile = await ProfileRepository(backend).load(IDENTITY)
        assert profile.id == 7
        assert backend.fetch_profiles.await_count == 2

    @pytest.mark.asyncio
    async def test_lost_race_then_reload_fails(self) -> None:
        backend = _mock_backend(
            fetch_profiles=AsyncMock(side_effect=[[], BackendError("down")]),
            insert_profile=AsyncMock(side_effect=ConflictError("duplicate", 409)),
        )
        with pytest.raises(ProfileUnavailableError):
            await ProfileRepository(backend).load(IDENTITY)

    @pytest.mark.asyncio
    async def test_create_twice_fails(self, backend: LocalBackend) -> None:
        repo = ProfileRepository(backend)
        await repo.create(IDENTITY.id, IDENTITY.email, IDENTITY.full_name)
        with pytest.raises(ProfileExistsError):
            await repo.create(IDENTITY.id, IDENTITY.email, IDENTITY.full_name)
        assert len(await backend.fetch_profiles(IDENTITY.id)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_loads_single_profile(self, backend: LocalBackend) -> None:
        repo = ProfileRepository(backend)
        first, second = await asyncio.gather(repo.load(IDENTITY), repo.load(IDENTITY))
        assert first.id == second.id
        assert len(await backend.fetch_profiles(IDENTITY.id)) == 1


# ---------------------------------------------------------------------------
# update / counters
# ---------------------------------------------------------------------------


class TestUpdate:
    @pytest.mark.asyncio
    async def test_partial_update(self, backend: LocalBackend) -> None:
        repo = ProfileRepository(backend)
        await repo.create(IDENTITY.id, IDENTITY.email, IDENTITY.full_name)
        updated = await repo.update(
            IDENTITY.id,
            subscription_tier="premium",
            paypal_subscription_id="I-123",
            subscription_status="active",
        )
        assert updated.is_premium
        assert updated.paypal_subscription_id == "I-123"
        assert updated.full_name == IDENTITY.full_name

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, backend: LocalBackend) -> None:
        repo = ProfileRepository(backend)
        await repo.create(IDENTITY.id, IDENTITY.email, IDENTITY.full_name)
        with pytest.raises(ValueError):
            await repo.update(IDENTITY.id, email="x@example.com")
        with pytest.raises(ValueError):
            await repo.update(IDENTITY.id, user_id="other")
        assert (await backend.fetch_profiles(IDENTITY.id))[0]["email"] == IDENTITY.email

    @pytest.mark.asyncio
    async def test_adjust_count_floors_at_zero(self, backend: LocalBackend) -> None:
        repo = ProfileRepository(backend)
        profile = await repo.create(IDENTITY.id, IDENTITY.email, IDENTITY.full_name)
        adjusted = await repo.adjust_count(profile, -1, operation="decrement")
        assert adjusted.notes_count == 0

    @pytest.mark.asyncio
    async def test_adjust_count_swallows_failure(self, backend: LocalBackend) -> None:
        repo = ProfileRepository(backend)
        profile = await repo.create(IDENTITY.id, IDENTITY.email, IDENTITY.full_name)
        backend.update_profile = AsyncMock(side_effect=BackendError("down"))

        adjusted = await repo.adjust_count(profile, +1, operation="increment")

        assert adjusted.notes_count == 1
        assert adjusted.id == profile.id
