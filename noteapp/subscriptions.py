"""Subscription Gateway: payment-subscription handshake and profile reconciliation.

The backend endpoints and the payment provider's approval flow are external;
this module owns the request/response contract and the state machine::

    none -> pending -> active -> cancelled
    (any) -> expired            driven externally
    cancelled/expired -> pending  re-subscribe
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

import httpx

from noteapp.config import Settings
from noteapp.errors import (
    FeatureUnavailableError,
    NoActiveSessionError,
    PremiumRequiredError,
    ProfileUnavailableError,
    SubscriptionError,
    SubscriptionStateError,
)
from noteapp.metrics import SUBSCRIPTION_CALLS
from noteapp.models import AuthSession, Profile
from noteapp.profiles import ProfileRepository

logger = logging.getLogger(__name__)


class SubscriptionState(str, Enum):
    NONE = "none"
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TRANSITIONS: dict[SubscriptionState, frozenset[SubscriptionState]] = {
    SubscriptionState.NONE: frozenset({SubscriptionState.PENDING}),
    SubscriptionState.PENDING: frozenset({SubscriptionState.PENDING, SubscriptionState.ACTIVE}),
    SubscriptionState.ACTIVE: frozenset({SubscriptionState.CANCELLED}),
    SubscriptionState.CANCELLED: frozenset({SubscriptionState.PENDING}),
    SubscriptionState.EXPIRED: frozenset({SubscriptionState.PENDING}),
}


def can_transition(current: SubscriptionState, target: SubscriptionState) -> bool:
    if target is SubscriptionState.EXPIRED:
        return True
    return target in TRANSITIONS[current]


def subscription_state(profile: Optional[Profile]) -> SubscriptionState:
    """Derive the subscription state recorded on a profile.

    Free profiles carry ``subscription_status="active"`` for the account
    itself, so without a subscription id only ``pending`` is meaningful.
    """
    if profile is None:
        return SubscriptionState.NONE
    status = profile.subscription_status
    if not profile.paypal_subscription_id:
        return SubscriptionState.PENDING if status == "pending" else SubscriptionState.NONE
    if status is None:
        return SubscriptionState.ACTIVE if profile.is_premium else SubscriptionState.NONE
    return SubscriptionState(status)


def require_premium(profile: Optional[Profile]) -> None:
    if profile is None or not profile.is_premium:
        raise PremiumRequiredError("AI features are available in Premium plan only!")


class SubscriptionGateway:
    """Client for the ``/api/*-paypal-subscription`` endpoints."""

    def __init__(
        self,
        settings: Settings,
        profiles: ProfileRepository,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = f"{settings.api_base_url.rstrip('/')}/api"
        self._profiles = profiles
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def begin(
        self, session: Optional[AuthSession], profile: Optional[Profile] = None
    ) -> str:
        """Request an approval handshake; returns the approval redirect URL."""
        if session is None:
            raise NoActiveSessionError()
        current = subscription_state(profile)
        if not can_transition(current, SubscriptionState.PENDING):
            raise SubscriptionStateError(
                f"Cannot start a subscription while {current.value}"
            )

        data = await self._post(
            "begin",
            "create-paypal-subscription",
            session,
            fallback="Failed to create PayPal subscription",
        )
        approval_url = data.get("approvalUrl")
        if not approval_url:
            raise SubscriptionError("Subscription response had no approval URL")
        logger.info("Subscription handshake started for %s", session.user.id)
        return approval_url

    async def complete(
        self, session: Optional[AuthSession], subscription_id: str
    ) -> Profile:
        """Confirm an approved subscription and return the reloaded profile."""
        if session is None:
            raise NoActiveSessionError()
        if not subscription_id:
            raise SubscriptionError("Missing subscription id")

        await self._post(
            "complete",
            "complete-paypal-subscription",
            session,
            {"subscriptionID": subscription_id},
            fallback="Failed to complete PayPal subscription",
        )
        profile = await self._reload(session)
        if subscription_state(profile) is not SubscriptionState.ACTIVE:
            logger.warning(
                "Subscription %s confirmed but profile of %s shows %s",
                subscription_id,
                session.user.id,
                subscription_state(profile).value,
            )
        return profile

    async def cancel(
        self, session: Optional[AuthSession], profile: Optional[Profile]
    ) -> Profile:
        """Cancel the profile's subscription and return the reloaded profile."""
        if session is None:
            raise NoActiveSessionError()
        if profile is None or not profile.paypal_subscription_id:
            raise SubscriptionStateError("No active subscription found")

        await self._post(
            "cancel",
            "cancel-paypal-subscription",
            session,
            {"subscriptionId": profile.paypal_subscription_id},
            fallback="Failed to cancel subscription",
        )
        return await self._reload(session)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _reload(self, session: AuthSession) -> Profile:
        profile = await self._profiles.load(session.user)
        if profile is None:
            raise ProfileUnavailableError("Profile missing after subscription change")
        return profile

    async def _post(
        self,
        operation: str,
        endpoint: str,
        session: AuthSession,
        body: Optional[dict[str, Any]] = None,
        *,
        fallback: str,
    ) -> dict[str, Any]:
        try:
            resp = await self._client.post(
                f"{self._base_url}/{endpoint}",
                json=body,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {session.access_token}",
                },
            )
        except httpx.HTTPError as e:
            SUBSCRIPTION_CALLS.labels(operation=operation, status="error").inc()
            logger.error("Subscription %s request failed: %s", operation, e)
            raise SubscriptionError(fallback) from e

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if resp.status_code >= 400:
            SUBSCRIPTION_CALLS.labels(operation=operation, status="error").inc()
            message = data.get("message") or fallback
            logger.error(
                "Subscription %s rejected (HTTP %d): %s", operation, resp.status_code, message
            )
            raise SubscriptionError(message)

        SUBSCRIPTION_CALLS.labels(operation=operation, status="success").inc()
        return data


async def summarize(profile: Optional[Profile], content: str) -> str:
    """AI summary of a note's content (premium only).

    Placeholder: no summarization provider is wired up yet.
    """
    require_premium(profile)
    raise FeatureUnavailableError("AI Summary feature coming soon!")
