"""Background removal of disappearing messages.

Read paths already hide expired messages on their own; this worker only
reclaims the rows. Running it late, or not at all, never makes an expired
message visible again.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from duet_stage.core.settings import settings
from duet_stage.db.session import SessionLocal, atomic
from duet_stage.services.messages import MessageService

logger = logging.getLogger(__name__)


class ExpiredMessageSweeper:
    """Periodically hard-deletes messages whose ``expires_at`` has passed."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        interval_seconds: float | None = None,
        batch_size: int = 500,
    ) -> None:
        """Initialize the sweeper.

        Args:
            session_factory: Callable returning a new database session.
            interval_seconds: Pause between sweeps; defaults to the configured interval.
            batch_size: Maximum rows removed per statement.
        """
        self.session_factory = session_factory
        self.interval = interval_seconds or settings.expired_sweep_interval_seconds
        self.batch_size = batch_size
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop."""
        if not self.running:
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background loop and wait for the current sweep to finish."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    def sweep_once(self) -> int:
        """Delete every expired message now; returns how many were removed."""
        total = 0
        with self.session_factory() as db:
            while True:
                with atomic(db):
                    removed = MessageService(db).purge_expired(batch_size=self.batch_size)
                total += removed
                if removed < self.batch_size:
                    break
        if total:
            logger.info("Removed %s expired message(s)", total)
        return total

    async def _run(self) -> None:
        interval = max(0.1, float(self.interval))
        while not self._stopping.is_set():
            try:
                await asyncio.to_thread(self.sweep_once)
            except SQLAlchemyError as e:
                logger.warning("ExpiredMessageSweeper encountered database error: %s", e)
            except Exception:
                logger.exception("ExpiredMessageSweeper sweep failed")
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
