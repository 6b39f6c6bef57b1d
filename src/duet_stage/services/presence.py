"""Registry of which users are online and how to reach them."""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class ConnectionHandle(Protocol):
    """Something that can deliver an outbound event to one connected client."""

    async def send(self, event: str, data: Any) -> None:
        """Deliver ``event`` with ``data`` to the client."""


class PresenceRegistry:
    """Maps a user id to the handle of their current connection.

    Only the most recent connection of a user is tracked (last connection
    wins). Lookups are used for best-effort addressing only: when a user is
    absent, pushes for them are dropped rather than queued.
    """

    def __init__(self) -> None:
        self._handles: dict[int, ConnectionHandle] = {}

    def set(self, user_id: int, handle: ConnectionHandle) -> None:
        """Register ``handle`` as the current connection of ``user_id``."""
        previous = self._handles.get(user_id)
        self._handles[user_id] = handle
        if previous is not None and previous is not handle:
            logger.debug("User %s reconnected; replacing previous connection", user_id)

    def get(self, user_id: int) -> ConnectionHandle | None:
        """Return the current handle for ``user_id`` or None when offline."""
        return self._handles.get(user_id)

    def remove(self, user_id: int, handle: ConnectionHandle | None = None) -> bool:
        """Forget ``user_id``.

        When ``handle`` is given the entry is only removed if it is still the
        current one, so a stale connection closing late never evicts a newer
        connection of the same user.
        """
        current = self._handles.get(user_id)
        if current is None:
            return False
        if handle is not None and current is not handle:
            return False
        del self._handles[user_id]
        return True

    def is_online(self, user_id: int) -> bool:
        """Return True when ``user_id`` has a registered connection."""
        return user_id in self._handles

    def online_user_ids(self) -> list[int]:
        """Return the ids of every connected user."""
        return list(self._handles)

    def __len__(self) -> int:
        return len(self._handles)
