"""Fixed-interval status polling that feeds a :class:`LifecycleMonitor`."""
from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from time import monotonic
from typing import Any, Awaitable, Callable, Optional, Union

from shiftlight.errors import StorageError
from shiftlight.metrics import EventLogger
from shiftlight.models import StatusSnapshot
from shiftlight.monitor import LifecycleMonitor

logger = logging.getLogger(__name__)

FetchStatus = Callable[[], Union[StatusSnapshot, Awaitable[StatusSnapshot]]]


class StatusPoller:
    """Poll the controller and hand each snapshot to the monitor.

    Ticks never overlap: if a fetch is still in flight when the next tick is
    due, that tick is skipped. Fetch errors count as "no snapshot" and never
    reach the monitor as a disconnect.
    """

    def __init__(
        self,
        fetch_status: FetchStatus,
        monitor: LifecycleMonitor,
        *,
        interval: float = 3.0,
        events: Optional[EventLogger] = None,
    ) -> None:
        self.fetch_status = fetch_status
        self.monitor = monitor
        self.interval = max(0.01, interval)
        self.events = events

        self.ticks = 0
        self.failed_ticks = 0
        self.skipped_ticks = 0
        self.last_snapshot: Optional[StatusSnapshot] = None

        self._tick_lock = asyncio.Lock()
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._stop_event is not None and not self._stop_event.is_set()

    async def run(self, runtime: Optional[float] = None) -> None:
        """Poll until :meth:`request_stop` is called or ``runtime`` elapses."""
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        deadline = monotonic() + runtime if runtime else None
        logger.info("Status polling started (interval=%.1fs)", self.interval)

        tick: Optional["asyncio.Task[Optional[StatusSnapshot]]"] = None
        try:
            while not stop_event.is_set():
                if deadline and monotonic() >= deadline:
                    break
                if tick is not None and not tick.done():
                    self.skipped_ticks += 1
                    logger.debug("Previous poll still in flight, skipping tick")
                else:
                    tick = asyncio.create_task(self.poll_once())
                    tick.add_done_callback(_consume_result)
                await self._sleep_with_stop(self.interval, stop_event, deadline)
        finally:
            stop_event.set()
            if tick is not None and not tick.done():
                tick.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await tick
            logger.info("Status polling stopped after %d ticks", self.ticks)

    def request_stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()

    async def poll_once(self) -> Optional[StatusSnapshot]:
        if self._tick_lock.locked():
            self.skipped_ticks += 1
            logger.debug("Previous poll still in flight, skipping tick")
            return None

        async with self._tick_lock:
            self.ticks += 1
            try:
                snapshot = await self._fetch()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.failed_ticks += 1
                logger.warning("Status fetch failed: %s", exc)
                self._event("poll_error", status="error", message=str(exc))
                return None

            self.last_snapshot = snapshot
            # Edges are evaluated off the loop; a cancelled tick still waits
            # for the evaluation before releasing the lock.
            evaluation = asyncio.ensure_future(asyncio.to_thread(self.monitor.on_status_snapshot, snapshot))
            try:
                await asyncio.shield(evaluation)
            except asyncio.CancelledError:
                evaluation.add_done_callback(_consume_result)
                await asyncio.wait({evaluation})
                raise
            except StorageError as exc:
                logger.error("Could not persist connection history: %s", exc)
                self._event("storage_error", status="error", message=str(exc))
            return snapshot

    async def _fetch(self) -> StatusSnapshot:
        fetch = self.fetch_status
        if inspect.iscoroutinefunction(fetch) or inspect.iscoroutinefunction(getattr(fetch, "__call__", None)):
            result: Any = await fetch()
        else:
            result = await asyncio.to_thread(fetch)
            if inspect.isawaitable(result):
                result = await result
        if isinstance(result, StatusSnapshot):
            return result
        return StatusSnapshot.from_payload(result)

    async def _sleep_with_stop(
        self,
        duration: float,
        stop_event: asyncio.Event,
        deadline: Optional[float],
    ) -> None:
        wait_time = duration
        if deadline:
            wait_time = min(wait_time, max(0.0, deadline - monotonic()))
            if wait_time <= 0:
                return
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
        except asyncio.TimeoutError:
            pass

    def _event(self, event: str, **fields: Any) -> None:
        if not self.events:
            return
        try:
            self.events.log(event, **fields)
        except Exception:  # pragma: no cover - I/O failure safeguard
            logger.debug("Event logging failed for %s", event, exc_info=True)


def _consume_result(task: "asyncio.Task[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Poll tick raised unexpectedly", exc_info=exc)


__all__ = ["StatusPoller", "FetchStatus"]
