"""Profile Repository: load, lazily create and update per-identity profiles.

Lookups return a tagged result so that only a definitive miss ever leads
to profile creation; transport failures surface as errors instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import ValidationError

from baas.protocol import PROFILE_PATCH_FIELDS, Backend, Row
from noteapp.errors import (
    BackendError,
    ConflictError,
    ProfileExistsError,
    ProfileUnavailableError,
    SchemaMismatchError,
)
from noteapp.metrics import COUNTER_SYNC_FAILURES, PROFILE_LOOKUPS, PROFILES_CREATED
from noteapp.models import Identity, Profile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Found:
    profile: Profile


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class TransientError:
    reason: str


ProfileLookup = Union[Found, NotFound, TransientError]


def parse_profile(row: Row) -> Profile:
    """Validate a backend row into a Profile."""
    try:
        return Profile.model_validate(row)
    except ValidationError as e:
        raise SchemaMismatchError(f"Malformed profile row: {e}") from e


class ProfileRepository:
    """Profile access scoped by identity reference."""

    def __init__(self, backend: Backend) -> None:
        self._backend = backend

    async def lookup(self, user_id: str) -> ProfileLookup:
        """Fetch the single profile of ``user_id`` as a tagged result."""
        try:
            rows = await self._backend.fetch_profiles(user_id)
        except BackendError as e:
            PROFILE_LOOKUPS.labels(result="transient_error").inc()
            return TransientError(str(e))

        if not rows:
            PROFILE_LOOKUPS.labels(result="not_found").inc()
            return NotFound()
        if len(rows) > 1:
            PROFILE_LOOKUPS.labels(result="transient_error").inc()
            return TransientError(f"{len(rows)} profiles found for {user_id}")

        PROFILE_LOOKUPS.labels(result="found").inc()
        return Found(parse_profile(rows[0]))

    async def load(self, identity: Identity) -> Optional[Profile]:
        """Return the identity's profile, creating it on a definitive miss.

        Creation needs both an email and a display name on the identity;
        without them the profile stays unset. Raises
        ``ProfileUnavailableError`` on any non-definitive failure.
        """
        result = await self.lookup(identity.id)
        if isinstance(result, Found):
            return result.profile
        if isinstance(result, TransientError):
            logger.warning("Profile lookup failed for %s: %s", identity.id, result.reason)
            raise ProfileUnavailableError(result.reason)

        if not (identity.email and identity.full_name):
            logger.info("No profile for %s and not enough data to create one", identity.id)
            return None

        try:
            return await self.create(identity.id, identity.email, identity.full_name)
        except ProfileExistsError:
            logger.info("Profile for %s created concurrently; reloading", identity.id)
            retry = await self.lookup(identity.id)
            if isinstance(retry, Found):
                return retry.profile
            reason = retry.reason if isinstance(retry, TransientError) else "not found"
            raise ProfileUnavailableError(f"Profile reload failed: {reason}")

    async def create(self, user_id: str, email: str, full_name: str) -> Profile:
        """Insert a fresh free-tier profile."""
        try:
            row = await self._backend.insert_profile(
                {
                    "user_id": user_id,
                    "email": email,
                    "full_name": full_name,
                    "subscription_tier": "free",
                    "notes_count": 0,
                    "subscription_status": "active",
                }
            )
        except ConflictError as e:
            raise ProfileExistsError(f"Profile for {user_id} already exists") from e
        PROFILES_CREATED.inc()
        logger.info("Created profile for %s", user_id)
        return parse_profile(row)

    async def update(self, user_id: str, /, **fields: Any) -> Profile:
        """Partially update the profile of ``user_id``."""
        unknown = set(fields) - PROFILE_PATCH_FIELDS
        if unknown:
            raise ValueError(f"Cannot update profile fields: {sorted(unknown)}")
        row = await self._backend.update_profile(user_id, fields)
        return parse_profile(row)

    async def adjust_count(
        self, profile: Profile, delta: int, *, operation: str
    ) -> Profile:
        """Best-effort ``notes_count`` write.

        The returned profile always carries the adjusted count, floored at
        zero, whether or not the remote write succeeded.
        """
        return await self.set_count(
            profile, max(0, profile.notes_count + delta), operation=operation
        )

    async def set_count(self, profile: Profile, count: int, *, operation: str) -> Profile:
        local = profile.model_copy(update={"notes_count": count})
        try:
            return await self.update(profile.user_id, notes_count=count)
        except Exception as e:
            COUNTER_SYNC_FAILURES.labels(operation=operation).inc()
            logger.warning(
                "Failed to %s notes_count for %s: %s", operation, profile.user_id, e
            )
            return local
