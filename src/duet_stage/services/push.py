"""Push-notification hook for users who are offline when something arrives."""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class PushNotifier(Protocol):
    """Dispatches an out-of-band notification to a user's devices."""

    async def notify(self, user_id: int, kind: str) -> None:
        """Notify ``user_id`` that something of ``kind`` happened."""


class LoggingPushNotifier:
    """Default notifier: records the notification and delivers nothing."""

    async def notify(self, user_id: int, kind: str) -> None:
        logger.info("Push notification %r queued for offline user %s", kind, user_id)
