"""Exception hierarchy for the note client core.

Repositories and adapters raise these; ``AppContext`` catches them at the
user-intent boundary and turns them into a single notification.
"""

from __future__ import annotations

from typing import Optional


class NoteAppError(Exception):
    """Base class for every error raised by the client core."""


# ---------------------------------------------------------------------------
# Backend / transport
# ---------------------------------------------------------------------------


class BackendError(NoteAppError):
    """A remote call failed or returned an unexpected status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConflictError(BackendError):
    """An insert violated a uniqueness constraint."""


class RecordNotFoundError(BackendError):
    """A keyed update or delete matched no row."""


class SchemaMismatchError(NoteAppError):
    """A backend row did not match the expected record shape."""


# ---------------------------------------------------------------------------
# Session / profile
# ---------------------------------------------------------------------------


class AuthError(NoteAppError):
    """The identity provider rejected a sign-up, sign-in or sign-out."""


class NoActiveSessionError(NoteAppError):
    """An operation needed an authenticated session and there was none."""

    def __init__(self, message: str = "No active session") -> None:
        super().__init__(message)


class ProfileUnavailableError(NoteAppError):
    """Profile lookup failed for a reason other than a definitive miss."""


class ProfileExistsError(NoteAppError):
    """A profile already exists for this identity."""


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


class QuotaExceededError(NoteAppError):
    """Free-tier note creation at or over the limit."""

    def __init__(self, limit: int) -> None:
        super().__init__(
            "Free tier limit reached. Upgrade to Premium for unlimited notes!"
        )
        self.limit = limit


class NoteValidationError(NoteAppError):
    """A note save was rejected before reaching the backend."""


class NoteNotFoundError(NoteAppError):
    """The note does not exist or is not owned by the caller."""


# ---------------------------------------------------------------------------
# Subscriptions / premium features
# ---------------------------------------------------------------------------


class SubscriptionError(NoteAppError):
    """A subscription endpoint call failed."""


class SubscriptionStateError(SubscriptionError):
    """The requested transition is not valid from the current state."""


class PremiumRequiredError(NoteAppError):
    """A premium-only feature was requested on the free tier."""


class FeatureUnavailableError(NoteAppError):
    """The feature exists as a placeholder only."""
