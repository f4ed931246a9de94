"""Sequenced pollers for the display's periodic checks.

Each concern (weather, dismissal status, livestream liveness, bell tick) gets its
own :class:`SequencedPoller`.  Every request is stamped with a sequence
number and its result is applied only if no newer request has been issued
since, so a slow response can never overwrite a fresher one.  Pollers are
independently cancellable and a failed poll never stops the loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SequencedPoller(Generic[T]):
    """Periodically run *fetch* and hand fresh results to *apply*."""

    def __init__(
        self,
        name: str,
        fetch: Callable[[], Awaitable[T]],
        apply: Callable[[T], Any],
        interval: float,
    ):
        self.name = name
        self._fetch = fetch
        self._apply = apply
        self.interval = interval
        self._seq = 0
        self._applied_seq = 0
        self._task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def latest_seq(self) -> int:
        return self._seq

    @property
    def applied_seq(self) -> int:
        return self._applied_seq

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"poller-{self.name}")
        logger.debug("Poller %s started (every %.1fs)", self.name, self.interval)

    async def stop(self) -> None:
        """Cancel the timer and any in-flight request; pending results are dropped."""
        self._seq += 1
        tasks = [t for t in (self._task, *self._inflight) if t is not None]
        self._task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.debug("Poller %s task ended with an error during stop", self.name)
        self._inflight.clear()
        logger.debug("Poller %s stopped", self.name)

    async def set_interval(self, interval: float) -> None:
        """Change the cadence, restarting the timer if it is running."""
        if interval == self.interval:
            return
        was_running = self.running
        self.interval = interval
        if was_running:
            await self.stop()
            self.start()

    async def refresh(self) -> bool:
        """Poll now; True if this response was the freshest and got applied."""
        self._seq += 1
        seq = self._seq
        request = asyncio.create_task(self._fetch())
        self._inflight.add(request)
        try:
            result = await request
        except asyncio.CancelledError:
            if request.cancelled() and seq != self._seq:
                # Cancelled by stop(); the poll itself is not being cancelled
                return False
            raise
        except Exception as exc:
            logger.warning("Poller %s request failed: %s", self.name, exc)
            return False
        finally:
            self._inflight.discard(request)

        if seq != self._seq:
            logger.debug("Poller %s: discarding stale response #%d (latest #%d)",
                         self.name, seq, self._seq)
            return False
        try:
            self._apply(result)
        except Exception:
            logger.exception("Poller %s failed to apply response", self.name)
            return False
        self._applied_seq = seq
        return True

    async def _loop(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await self.refresh()
            if self._task is not me:
                break
            await asyncio.sleep(self.interval)
