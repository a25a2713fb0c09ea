"""Per-run, one-way progress channels.

Each run (identified by the report id) owns an append-only log of
ProgressEvent values. Subscribers receive the latest known event as soon as
they attach and then every event published afterwards, in publish order.
A subscriber going away never affects the run that publishes.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator

from app.core.config import settings
from app.core.exceptions import RunAlreadyActive
from app.models.report_models import ProgressEvent

logger = logging.getLogger(__name__)

# Marks the end of a subscription queue.
_CLOSED = None


class ProgressChannel:
    def __init__(self, run_id: str):
        self.run_id = run_id
        self.events: list[ProgressEvent] = []
        self.subscribers: set[asyncio.Queue] = set()
        self.active = False
        self.closed = False
        self.closed_at: float | None = None
        self.created_at = time.monotonic()

    @property
    def latest(self) -> ProgressEvent | None:
        return self.events[-1] if self.events else None

    @property
    def finished(self) -> bool:
        latest = self.latest
        return self.closed or (latest is not None and latest.terminal)


class ProgressBroadcaster:
    def __init__(self, retention_seconds: float | None = None):
        self._channels: dict[str, ProgressChannel] = {}
        self._lock = asyncio.Lock()
        self._retention_seconds = (
            settings.progress_retention_seconds if retention_seconds is None else retention_seconds
        )

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    @staticmethod
    def _unopened(channel: ProgressChannel) -> bool:
        # Created by a subscriber for a run that has not started
        return not channel.active and not channel.closed and not channel.events

    def _expired(self, channel: ProgressChannel, now: float) -> bool:
        if channel.closed:
            return channel.closed_at is not None and now - channel.closed_at > self._retention_seconds
        return self._unopened(channel) and now - channel.created_at > self._retention_seconds

    def _purge_expired(self) -> None:
        now = time.monotonic()
        expired = [run_id for run_id, channel in self._channels.items() if self._expired(channel, now)]
        for run_id in expired:
            channel = self._channels.pop(run_id)
            for queue in channel.subscribers:
                queue.put_nowait(_CLOSED)
            logger.debug("[%s] Purged expired progress channel", run_id)

    def __contains__(self, run_id: str) -> bool:
        return run_id in self._channels

    async def open_channel(self, run_id: str) -> ProgressChannel:
        """Register a new run for *run_id*.

        A channel created by a subscriber that attached before the run
        started is reused, so that subscriber sees every event. A finished
        channel from an earlier run is replaced.
        """
        async with self._lock:
            self._purge_expired()
            channel = self._channels.get(run_id)
            if channel is not None and channel.active and not channel.finished:
                raise RunAlreadyActive(f"A report generation run is already in progress for report {run_id}")
            if channel is None or channel.finished:
                channel = ProgressChannel(run_id)
                self._channels[run_id] = channel
            channel.active = True
            logger.info("[%s] Progress channel opened", run_id)
            return channel

    async def close_channel(self, run_id: str) -> None:
        """End every subscription of *run_id*. The channel stays readable until retention expires."""
        async with self._lock:
            channel = self._channels.get(run_id)
            if channel is None or channel.closed:
                return
            channel.closed = True
            channel.active = False
            channel.closed_at = time.monotonic()
            for queue in channel.subscribers:
                queue.put_nowait(_CLOSED)
            logger.info("[%s] Progress channel closed (%d events)", run_id, len(channel.events))

    async def _attach(self, run_id: str) -> tuple[ProgressChannel, asyncio.Queue]:
        async with self._lock:
            self._purge_expired()
            channel = self._channels.get(run_id)
            if channel is None:
                channel = ProgressChannel(run_id)
                self._channels[run_id] = channel
            queue: asyncio.Queue = asyncio.Queue()
            if channel.latest is not None:
                queue.put_nowait(channel.latest)
            if channel.closed:
                queue.put_nowait(_CLOSED)
            else:
                channel.subscribers.add(queue)
            return channel, queue

    async def _detach(self, channel: ProgressChannel, queue: asyncio.Queue) -> None:
        async with self._lock:
            channel.subscribers.discard(queue)
            if (
                not channel.subscribers
                and self._unopened(channel)
                and self._channels.get(channel.run_id) is channel
            ):
                del self._channels[channel.run_id]
                logger.debug("[%s] Dropped progress channel of a run that never started", channel.run_id)

    # ------------------------------------------------------------------
    # Publish / subscribe
    # ------------------------------------------------------------------

    async def publish(self, run_id: str, event: ProgressEvent) -> ProgressEvent:
        """Append *event* to the run's log and fan it out to current subscribers.

        Percentages never go backwards within a run: an event reporting less
        than the previous one is raised to the previous value. Events
        published after the terminal event are dropped.
        """
        channel = self._channels.get(run_id)
        if channel is None or channel.closed:
            logger.warning("[%s] Dropping progress event for a channel that is not open", run_id)
            return event
        latest = channel.latest
        if latest is not None and latest.terminal:
            logger.warning("[%s] Dropping progress event published after the terminal event", run_id)
            return event
        if latest is not None and event.percent_complete < latest.percent_complete:
            event = event.model_copy(update={"percent_complete": latest.percent_complete})

        channel.events.append(event)
        for queue in channel.subscribers:
            queue.put_nowait(event)
        logger.debug(
            "[%s] Progress %.1f%%: %s (subscribers=%d)",
            run_id,
            event.percent_complete,
            event.current_task_label,
            len(channel.subscribers),
        )
        return event

    async def subscribe(self, run_id: str) -> AsyncIterator[ProgressEvent]:
        """Yield the latest event, then tail the run until its terminal event or channel closure.

        Waiting for a run that has not started is bounded by the retention
        period; the subscription then ends without events.
        """
        channel, queue = await self._attach(run_id)
        try:
            while True:
                if self._unopened(channel):
                    try:
                        event = await asyncio.wait_for(queue.get(), timeout=self._retention_seconds)
                    except asyncio.TimeoutError:
                        logger.info(
                            "[%s] No run started within %.0fs, ending subscription", run_id, self._retention_seconds
                        )
                        return
                else:
                    event = await queue.get()
                if event is _CLOSED:
                    return
                yield event
                if event.terminal:
                    return
        finally:
            await self._detach(channel, queue)

    def latest(self, run_id: str) -> ProgressEvent | None:
        channel = self._channels.get(run_id)
        return channel.latest if channel else None

    def history(self, run_id: str) -> list[ProgressEvent]:
        channel = self._channels.get(run_id)
        return list(channel.events) if channel else []

    def subscriber_count(self, run_id: str) -> int:
        channel = self._channels.get(run_id)
        return len(channel.subscribers) if channel else 0


broadcaster = ProgressBroadcaster()
