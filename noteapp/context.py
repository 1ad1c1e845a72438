"""Application context: session, profile and note state for one UI root.

Replaces a global provider with an explicit object that the presentation
layer constructs on start, passes to whatever needs it, and closes on exit.
User intents catch their own failures and emit exactly one notification.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from baas.auth import AuthClient
from baas.local import LocalBackend
from baas.protocol import Backend
from baas.rest import RestBackend
from baas.sql import SqlBackend
from noteapp.config import Settings
from noteapp.errors import (
    FeatureUnavailableError,
    NoActiveSessionError,
    NoteAppError,
    ProfileUnavailableError,
)
from noteapp.filtering import FilterState, tag_facets
from noteapp.models import AuthSession, Identity, Note, Profile, TagFacet
from noteapp.notes import NoteRepository
from noteapp.notifications import Notifier
from noteapp.profiles import ProfileRepository
from noteapp.session import IdentityProvider, SessionStore
from noteapp.subscriptions import SubscriptionGateway, summarize

logger = logging.getLogger(__name__)


class AppContext:
    """State and intents behind one signed-in (or anonymous) UI.

    Every session change bumps an epoch; responses to requests issued under
    an older epoch are dropped, so signing out leaves no stale profile or
    notes behind even while requests are still in flight.
    """

    def __init__(
        self,
        settings: Settings,
        auth: IdentityProvider,
        backend: Backend,
        gateway: Optional[SubscriptionGateway] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.settings = settings
        self.notifier = notifier or Notifier()
        self.session = SessionStore(auth)
        self.profiles = ProfileRepository(backend)
        self.notes_repo = NoteRepository(backend, self.profiles, settings.free_note_limit)
        self.gateway = gateway or SubscriptionGateway(settings, self.profiles)
        self.filters = FilterState()
        self.profile: Optional[Profile] = None
        self.notes: list[Note] = []
        self.notes_loading = False
        self._auth = auth
        self._backend = backend
        self._epoch = 0
        self.session.subscribe(self._on_session_change)

    async def __aenter__(self) -> "AppContext":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def start(self) -> None:
        """Resolve any existing session; always ends interactive."""
        await self.session.start()

    async def close(self) -> None:
        self.session.close()
        await self.gateway.close()
        await self._backend.close()
        await self._auth.close()

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def identity(self) -> Optional[Identity]:
        return self.session.identity

    @property
    def ready(self) -> bool:
        return not self.session.resolving

    @property
    def visible_notes(self) -> list[Note]:
        return self.filters.apply(self.notes)

    @property
    def facets(self) -> list[TagFacet]:
        return tag_facets(self.notes)

    @property
    def can_create_note(self) -> bool:
        return self.profile is not None and not self.notes_repo.quota_reached(self.profile)

    @property
    def quota_label(self) -> Optional[str]:
        if self.profile is None:
            return None
        return self.profile.quota_label(self.notes_repo.free_limit)

    @property
    def empty_message(self) -> Optional[str]:
        """Empty-state text for the note list, or None when it has content."""
        if self.notes_loading or self.visible_notes:
            return None
        if self.filters.active:
            return "No notes match your filters"
        return "No notes yet. Create your first note!"

    # ------------------------------------------------------------------
    # Session reconciliation
    # ------------------------------------------------------------------

    async def _on_session_change(self, session: Optional[AuthSession]) -> None:
        self._epoch += 1
        if session is None:
            self._clear()
            return
        await self._reconcile(session.user, self._epoch)

    def _clear(self) -> None:
        self.profile = None
        self.notes = []
        self.notes_loading = False
        self.filters.clear()

    def _current(self, epoch: int) -> bool:
        return epoch == self._epoch

    async def _reconcile(self, identity: Identity, epoch: int) -> None:
        try:
            profile = await self.profiles.load(identity)
        except NoteAppError as e:
            logger.error("Error loading profile for %s: %s", identity.id, e)
            if self._current(epoch):
                self.notifier.error("Failed to load your profile")
            profile = None
        if not self._current(epoch):
            return
        self.profile = profile
        await self._load_notes(identity, epoch)

    async def _load_notes(self, identity: Identity, epoch: int) -> bool:
        if not self._current(epoch):
            return False
        self.notes_loading = True
        try:
            notes = await self.notes_repo.list_notes(identity)
        except NoteAppError as e:
            logger.error("Error loading notes for %s: %s", identity.id, e)
            if self._current(epoch):
                self.notifier.error("Failed to load notes")
            return False
        finally:
            if self._current(epoch):
                self.notes_loading = False

        if not self._current(epoch):
            return False
        self.notes = notes
        if self.settings.reconcile_notes_count and self.profile is not None:
            profile = await self.notes_repo.reconcile_count(self.profile, notes)
            if self._current(epoch):
                self.profile = profile
        return True

    # ------------------------------------------------------------------
    # Auth intents
    # ------------------------------------------------------------------

    async def sign_up(self, email: str, password: str, full_name: str) -> bool:
        try:
            await self.session.sign_up(email, password, full_name)
        except NoteAppError as e:
            self.notifier.error(str(e) or "Failed to create account")
            return False
        self.notifier.success(
            "Account created successfully! Please check your email for verification."
        )
        return True

    async def sign_in(self, email: str, password: str) -> bool:
        try:
            await self.session.sign_in(email, password)
        except NoteAppError as e:
            self.notifier.error(str(e) or "Failed to sign in")
            return False
        self.notifier.success("Signed in successfully!")
        return True

    async def sign_out(self) -> bool:
        try:
            await self.session.sign_out()
        except NoteAppError as e:
            self.notifier.error(str(e) or "Failed to sign out")
            return False
        finally:
            self._epoch += 1
            self._clear()
        self.notifier.success("Signed out successfully!")
        return True

    # ------------------------------------------------------------------
    # Note intents
    # ------------------------------------------------------------------

    async def refresh_notes(self) -> bool:
        identity = self.identity
        if identity is None:
            return False
        return await self._load_notes(identity, self._epoch)

    async def save_note(
        self,
        note: Optional[Note],
        title: str,
        content: str,
        tags: Iterable[str] = (),
    ) -> Optional[Note]:
        """Create a note (``note`` is None) or save edits to ``note``."""
        identity = self.identity
        epoch = self._epoch
        try:
            if identity is None:
                raise NoActiveSessionError("Please sign in first")
            if note is not None:
                saved = await self.notes_repo.update_note(
                    identity, note.id, title, content, tags
                )
                message = "Note updated successfully!"
            else:
                if self.profile is None:
                    raise ProfileUnavailableError("Your profile is not loaded yet")
                change = await self.notes_repo.create_note(
                    identity, self.profile, title, content, tags
                )
                if self._current(epoch):
                    self.profile = change.profile
                saved = change.note
                message = "Note created successfully!"
        except NoteAppError as e:
            self.notifier.error(str(e) or "Failed to save note")
            return None

        self.notifier.success(message)
        await self._load_notes(identity, epoch)
        return saved

    async def delete_note(self, note_id: Any) -> bool:
        identity = self.identity
        epoch = self._epoch
        try:
            if identity is None:
                raise NoActiveSessionError("Please sign in first")
            profile = await self.notes_repo.delete_note(identity, self.profile, note_id)
        except NoteAppError as e:
            logger.error("Error deleting note %s: %s", note_id, e)
            self.notifier.error("Failed to delete note")
            return False

        if self._current(epoch):
            self.profile = profile
        self.notifier.success("Note deleted successfully")
        await self._load_notes(identity, epoch)
        return True

    async def request_summary(self, content: str) -> Optional[str]:
        if not content.strip():
            return None
        try:
            return await summarize(self.profile, content)
        except FeatureUnavailableError as e:
            self.notifier.info(str(e))
        except NoteAppError as e:
            self.notifier.error(str(e) or "Failed to generate summary")
        return None

    # ------------------------------------------------------------------
    # Subscription intents
    # ------------------------------------------------------------------

    async def begin_upgrade(self) -> Optional[str]:
        """Start the upgrade handshake; returns the approval URL to open."""
        try:
            url = await self.gateway.begin(self.session.session, self.profile)
        except NoteAppError as e:
            self.notifier.error(str(e) or "Failed to create subscription")
            return None
        self.notifier.info("Redirecting to PayPal for payment processing...")
        return url

    async def complete_upgrade(self, subscription_id: str) -> bool:
        epoch = self._epoch
        try:
            profile = await self.gateway.complete(self.session.session, subscription_id)
        except NoteAppError as e:
            self.notifier.error(str(e) or "Failed to complete subscription")
            return False
        if self._current(epoch):
            self.profile = profile
        self.notifier.success("Premium subscription activated successfully!")
        return True

    async def cancel_subscription(self) -> bool:
        epoch = self._epoch
        try:
            profile = await self.gateway.cancel(self.session.session, self.profile)
        except NoteAppError as e:
            self.notifier.error(str(e) or "Failed to cancel subscription")
            return False
        if self._current(epoch):
            self.profile = profile
        self.notifier.success("Subscription cancelled successfully")
        return True


async def build_context(settings: Settings, notifier: Optional[Notifier] = None) -> AppContext:
    """Wire the configured adapters into a context (not yet started)."""
    if not settings.is_backend_configured:
        logger.warning("Backend credentials missing; using placeholder configuration")

    auth = AuthClient(settings)

    def token() -> Optional[str]:
        return auth.session.access_token if auth.session else None

    backend: Backend
    if settings.storage_backend == "sql":
        sql = SqlBackend(settings.database_url, timeout=settings.request_timeout)
        try:
            await sql.init()
        except NoteAppError:
            await auth.close()
            raise
        backend = sql
    elif settings.storage_backend == "local":
        backend = LocalBackend(settings.local_store_path)
    else:
        backend = RestBackend(settings, token_provider=token)

    logger.info("Using %s storage backend", backend.name)
    return AppContext(settings, auth, backend, notifier=notifier)
