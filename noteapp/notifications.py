"""User-visible notifications raised by user intents.

The presentation layer drains the queue and renders each entry as a toast.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

logger = logging.getLogger(__name__)

Level = Literal["success", "error", "info"]


@dataclass
class Notification:
    """A single human-readable message."""

    level: Level
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class Notifier:
    """In-memory notification queue."""

    def __init__(self) -> None:
        self._pending: list[Notification] = []

    def success(self, message: str) -> None:
        self._push("success", message)

    def error(self, message: str) -> None:
        self._push("error", message)

    def info(self, message: str) -> None:
        self._push("info", message)

    @property
    def pending(self) -> list[Notification]:
        return list(self._pending)

    def drain(self) -> list[Notification]:
        """Return and clear every queued notification."""
        items, self._pending = self._pending, []
        return items

    def _push(self, level: Level, message: str) -> None:
        logger.debug("NOTIFY %s: %s", level, message)
        self._pending.append(Notification(level=level, message=message))
