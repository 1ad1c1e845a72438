"""Shared fixtures: an in-process identity provider and a temp JSON store."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest

from baas.local import LocalBackend
from noteapp.config import Settings
from noteapp.errors import AuthError
from noteapp.models import AuthSession, Identity

IDENTITY = Identity(id="user-1", email="ada@example.com", full_name="Ada Lovelace")
PASSWORD = "secret"


def make_session(identity: Identity = IDENTITY) -> AuthSession:
    return AuthSession(access_token="token-1", refresh_token="refresh-1", user=identity)


class FakeAuth:
    """Identity provider double that notifies listeners like the real client."""

    def __init__(self) -> None:
        self.stored: Optional[AuthSession] = None
        self.fail_bootstrap = False
        self.fail_sign_out = False
        self.auto_confirm = True
        self.closed = False
        self.listeners: list = []

    def on_auth_state_change(self, listener):
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)

    async def emit(self, session: Optional[AuthSession]) -> None:
        for listener in list(self.listeners):
            await listener(session)

    async def get_session(self) -> Optional[AuthSession]:
        if self.fail_bootstrap:
            raise AuthError("Identity provider unreachable")
        return self.stored

    async def sign_up(self, email: str, password: str, full_name: str) -> Identity:
        identity = Identity(id="user-new", email=email, full_name=full_name)
        if self.auto_confirm:
            await self.emit(make_session(identity))
        return identity

    async def sign_in(self, email: str, password: str) -> AuthSession:
        if password != PASSWORD:
            raise AuthError("Invalid login credentials")
        session = make_session()
        await self.emit(session)
        return session

    async def sign_out(self) -> None:
        if self.fail_sign_out:
            raise AuthError("Failed to sign out")
        await self.emit(None)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def auth() -> FakeAuth:
    return FakeAuth()


@pytest.fixture()
def backend(tmp_path: Path) -> LocalBackend:
    """Return a LocalBackend backed by a temp JSON file."""
    return LocalBackend(storage_path=tmp_path / "store.json")


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        supabase_url="https://project.supabase.test",
        supabase_anon_key="anon-key",
        api_base_url="http://api.test",
        storage_backend="local",
        local_store_path=tmp_path / "store.json",
        session_file=tmp_path / "session.json",
    )
