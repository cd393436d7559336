"""
SOS status tracking fed by both the realtime change feed and a poller.

The realtime channel can drop events or fail outright, so a fixed-interval
poll runs alongside it. Both producers feed one consumer that only reacts
when the status actually differs from the last applied value.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping

logger = logging.getLogger(__name__)

StatusFetcher = Callable[[], Awaitable[str | None]]
StatusCallback = Callable[[str], Awaitable[None]]

DEFAULT_POLL_INTERVAL_SECONDS = 10.0


class SosStatusTracker:
    """Idempotent "apply status if changed" consumer."""

    def __init__(self, fetch_latest: StatusFetcher, on_change: StatusCallback):
        self._fetch_latest = fetch_latest
        self._on_change = on_change
        self._lock = asyncio.Lock()
        self.last_applied: str | None = None

    async def prime(self) -> str | None:
        """Load the current status without firing the change callback."""
        status = await self._fetch_latest()
        async with self._lock:
            if status:
                self.last_applied = status
        logger.info("Initial SOS status: %s", status)
        return status

    async def apply(self, status: str | None, source: str = "unknown") -> bool:
        """Apply a status report. Returns True when it was a real change."""
        if not status:
            return False
        async with self._lock:
            if status == self.last_applied:
                logger.debug("Ignoring duplicate SOS status %r from %s", status, source)
                return False
            previous = self.last_applied
            self.last_applied = status
            logger.info("SOS status changed %r -> %r (via %s)", previous, status, source)
            await self._on_change(status)
            return True

    async def on_realtime_event(self, payload: Mapping[str, Any]) -> bool:
        """Handle a row-change event: {"new": {...}, "old": {...}}."""
        new_row = payload.get("new") or {}
        return await self.apply(new_row.get("status"), source="realtime")

    async def poll_once(self) -> bool:
        try:
            status = await self._fetch_latest()
        except Exception as e:
            logger.warning("SOS status poll failed: %s", e)
            return False
        return await self.apply(status, source="poll")

    async def run_polling(
        self,
        stop_event: asyncio.Event,
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        """Poll until stop_event is set."""
        while not stop_event.is_set():
            await self.poll_once()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
