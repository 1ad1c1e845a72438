"""Pydantic records for identities, profiles and notes.

Backend rows are validated into these models at the repository boundary.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any, Literal, Optional

from bs4 import BeautifulSoup
from pydantic import BaseModel, Field, field_validator

PREVIEW_LENGTH = 150

SubscriptionTier = Literal["free", "premium"]
SubscriptionStatus = Literal["active", "cancelled", "expired", "pending"]


def utcnow() -> datetime:
    return datetime.now(UTC)


class Identity(BaseModel):
    """Authenticated end-user record supplied by the identity provider."""

    model_config = {"frozen": True}

    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None

    @classmethod
    def from_user(cls, user: dict[str, Any]) -> "Identity":
        """Build from a provider user object (display name lives in metadata)."""
        metadata = user.get("user_metadata") or {}
        return cls(
            id=user["id"],
            email=user.get("email"),
            full_name=metadata.get("full_name"),
        )


class AuthSession(BaseModel):
    """An established session: bearer credentials plus the identity."""

    model_config = {"frozen": True}

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None  # unix seconds
    user: Identity

    @property
    def expired(self) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= int(utcnow().timestamp())


class Profile(BaseModel):
    """Per-identity extension record: tier, quota counter, subscription."""

    id: int
    user_id: str
    email: str
    full_name: str
    subscription_tier: SubscriptionTier = "free"
    notes_count: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime
    paypal_subscription_id: Optional[str] = None
    paypal_plan_id: Optional[str] = None
    subscription_status: Optional[SubscriptionStatus] = None
    subscription_end_date: Optional[datetime] = None

    @property
    def is_premium(self) -> bool:
        return self.subscription_tier == "premium"

    @property
    def member_since(self) -> date:
        return self.created_at.date()

    def quota_label(self, limit: int) -> str:
        """Usage as shown on the account page, e.g. ``"3 / 10"``."""
        if self.is_premium:
            return str(self.notes_count)
        return f"{self.notes_count} / {limit}"


class Note(BaseModel):
    """A single note owned by one identity."""

    id: int | str
    user_id: str
    title: str
    content: str = ""
    tags: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @field_validator("tags", mode="before")
    @classmethod
    def _null_tags(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("content", mode="before")
    @classmethod
    def _null_content(cls, value: Any) -> Any:
        return "" if value is None else value

    def preview(self, limit: int = PREVIEW_LENGTH) -> str:
        """Plain-text excerpt of the rich-text content."""
        text = BeautifulSoup(self.content, "html.parser").get_text(
            separator=" ", strip=True
        )
        return text[:limit] + ("..." if len(text) > limit else "")


class TagFacet(BaseModel):
    """A tag and the number of notes carrying it."""

    tag: str
    count: int
