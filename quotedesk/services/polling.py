"""
quotedesk/services/polling.py

Periodic refresh of an asset's quote list.

QuotePoller calls `fetch` every `interval` seconds and reports quotes whose
(status, cost) changed since the previous fetch. A tick that fires while the
previous fetch is still running is skipped, so fetches never overlap.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

logger = logging.getLogger("quotedesk.polling")

Fetch = Callable[[], Awaitable[Sequence[Any]]]
OnChange = Callable[[list], Any]


def snapshot(quotes: Sequence[Any]) -> dict:
    """id -> (status, cost) for change detection."""
    return {q.id: (q.status, str(q.cost)) for q in quotes}


def diff_snapshots(previous: dict | None, quotes: Sequence[Any]) -> list:
    """Quotes that are new or whose status/cost changed."""
    if previous is None:
        return list(quotes)
    current = snapshot(quotes)
    return [q for q in quotes if previous.get(q.id) != current[q.id]]


class QuotePoller:
    def __init__(self, fetch: Fetch, interval: float = 20.0, on_change: Optional[OnChange] = None):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.fetch = fetch
        self.interval = interval
        self.on_change = on_change

        self.ticks = 0
        self.skipped = 0
        self.fetches = 0

        self._last: dict | None = None
        self._in_flight: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    async def _run_fetch(self) -> None:
        quotes = await self.fetch()
        self.fetches += 1
        changed = diff_snapshots(self._last, quotes)
        self._last = snapshot(quotes)
        if changed and self.on_change is not None:
            result = self.on_change(changed)
            if asyncio.iscoroutine(result):
                await result

    def _fetch_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Quote refresh failed: %s", exc)

    def tick(self) -> bool:
        """Start a fetch unless one is already running. Returns False when skipped."""
        self.ticks += 1
        if self.in_flight:
            self.skipped += 1
            logger.debug("Quote refresh still in flight; tick %d skipped", self.ticks)
            return False
        self._in_flight = asyncio.ensure_future(self._run_fetch())
        self._in_flight.add_done_callback(self._fetch_done)
        return True

    async def _loop(self, max_ticks: Optional[int]) -> None:
        while max_ticks is None or self.ticks < max_ticks:
            self.tick()
            await asyncio.sleep(self.interval)
        if self.in_flight:
            await asyncio.wait([self._in_flight])

    def start(self, max_ticks: Optional[int] = None) -> asyncio.Task:
        """Schedule the polling loop on the running event loop."""
        if self.running:
            return self._loop_task
        self._loop_task = asyncio.ensure_future(self._loop(max_ticks))
        return self._loop_task

    async def stop(self) -> None:
        """Cancel the loop; a fetch in flight is cancelled and its result discarded."""
        tasks = [t for t in (self._loop_task, self._in_flight) if t is not None]
        for task in tasks:
            if not task.done():
                task.cancel()
        # fetch errors are logged by _fetch_done
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._in_flight = None

    async def run(self, max_ticks: Optional[int] = None) -> None:
        """Poll until max_ticks ticks have fired (forever when None)."""
        task = self.start(max_ticks)
        try:
            await task
        finally:
            await self.stop()
