"""Table contract shared by every storage adapter.

Rows cross this boundary as plain dicts; repositories validate them into
``noteapp.models`` records. Adapters raise ``BackendError`` (or a subclass)
for any failure.
"""

from __future__ import annotations

from typing import Any, Protocol

Row = dict[str, Any]

# Columns a profile patch may touch.
PROFILE_PATCH_FIELDS = frozenset(
    {
        "notes_count",
        "subscription_tier",
        "paypal_subscription_id",
        "paypal_plan_id",
        "subscription_status",
        "subscription_end_date",
        "full_name",
    }
)

NOTE_PATCH_FIELDS = frozenset({"title", "content", "tags", "updated_at"})


class Backend(Protocol):
    """Point lookups, inserts and keyed updates over profiles and notes."""

    name: str

    async def fetch_profiles(self, user_id: str) -> list[Row]:
        """All profile rows for ``user_id`` (zero or one when healthy)."""
        ...

    async def insert_profile(self, row: Row) -> Row:
        """Insert and return the stored row; ``ConflictError`` on duplicate."""
        ...

    async def update_profile(self, user_id: str, patch: Row) -> Row:
        """Patch the profile of ``user_id``; ``RecordNotFoundError`` on miss."""
        ...

    async def list_notes(self, user_id: str) -> list[Row]:
        """Notes of ``user_id`` ordered by ``updated_at`` descending."""
        ...

    async def insert_note(self, row: Row) -> Row:
        ...

    async def update_note(self, note_id: Any, user_id: str, patch: Row) -> Row:
        ...

    async def delete_note(self, note_id: Any, user_id: str) -> bool:
        """Return whether a row was removed."""
        ...

    async def close(self) -> None:
        ...


def check_patch(patch: Row, allowed: frozenset[str]) -> None:
    """Reject patch keys outside ``allowed``."""
    unknown = set(patch) - allowed
    if unknown:
        raise ValueError(f"Unknown fields in patch: {sorted(unknown)}")

