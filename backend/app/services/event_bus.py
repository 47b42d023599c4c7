"""
backend/app/services/event_bus.py

Purpose:
    Process-local publish/subscribe for the settlement trigger. Each
    subscriber owns a bounded queue drained by one worker task. publish()
    never blocks: when a subscriber's queue is full the event is dropped for
    that subscriber and publish() reports it, so the caller can leave the
    work to the scheduled settlement sweep.

Dependencies:
    - asyncio
    - app.services.event_models
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from app.services.event_models import BaseEvent
from app.utils import utcnow

logger = logging.getLogger("oddsmarket.event_bus")

AsyncEventHandler = Callable[[BaseEvent], Awaitable[None]]


@dataclass
class _Subscriber:
    name: str
    handler: AsyncEventHandler
    queue: asyncio.Queue[BaseEvent]
    worker: asyncio.Task | None = None
    counts: dict[str, int] = field(default_factory=lambda: {"handled_total": 0, "failed_total": 0, "dropped_total": 0})


class InMemoryEventBus:
    def __init__(self, *, queue_maxsize: int, error_buffer_size: int) -> None:
        self._queue_maxsize = max(1, int(queue_maxsize))
        self._subscribers: dict[str, list[_Subscriber]] = defaultdict(list)
        self._running = False
        self._published = 0
        self._errors: deque[dict[str, Any]] = deque(maxlen=max(1, int(error_buffer_size)))

    @property
    def running(self) -> bool:
        return self._running

    def subscribe(self, event_type: str, handler: AsyncEventHandler, *, handler_name: str) -> None:
        sub = _Subscriber(handler_name, handler, asyncio.Queue(maxsize=self._queue_maxsize))
        self._subscribers[event_type].append(sub)
        if self._running:
            self._start_worker(event_type, sub)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for event_type, subs in self._subscribers.items():
            for sub in subs:
                self._start_worker(event_type, sub)
        logger.info("Event bus started")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        workers = [sub.worker for subs in self._subscribers.values() for sub in subs if sub.worker]
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        for subs in self._subscribers.values():
            for sub in subs:
                sub.worker = None
        logger.info("Event bus stopped")

    async def publish(self, event: BaseEvent) -> bool:
        """Queue `event` for every subscriber. False if any subscriber dropped it."""
        self._published += 1
        delivered = True
        for sub in self._subscribers.get(event.event_type, []):
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                sub.counts["dropped_total"] += 1
                delivered = False
                logger.warning(
                    "Event bus queue full; dropping event_type=%s handler=%s",
                    event.event_type, sub.name,
                )
        return delivered

    def stats(self) -> dict[str, Any]:
        per_handler = {
            f"{event_type}:{sub.name}": {"queue_depth": sub.queue.qsize(), **sub.counts}
            for event_type, subs in self._subscribers.items()
            for sub in subs
        }
        return {
            "running": self._running,
            "published_total": self._published,
            "handled_total": sum(h["handled_total"] for h in per_handler.values()),
            "failed_total": sum(h["failed_total"] for h in per_handler.values()),
            "dropped_total": sum(h["dropped_total"] for h in per_handler.values()),
            "per_handler": per_handler,
            "recent_errors": list(self._errors),
        }

    def _start_worker(self, event_type: str, sub: _Subscriber) -> None:
        if sub.worker is None:
            sub.worker = asyncio.create_task(self._drain(sub), name=f"event_bus_{event_type}_{sub.name}")

    async def _drain(self, sub: _Subscriber) -> None:
        while self._running:
            event = await sub.queue.get()
            try:
                await sub.handler(event)
                sub.counts["handled_total"] += 1
            except Exception as exc:
                sub.counts["failed_total"] += 1
                self._errors.append({
                    "event_id": event.event_id,
                    "event_type": event.event_type,
                    "handler_name": sub.name,
                    "correlation_id": event.correlation_id,
                    "ts": utcnow().isoformat(),
                    "error": str(exc),
                })
                logger.error(
                    "Event handler failed event_id=%s handler=%s correlation_id=%s",
                    event.event_id, sub.name, event.correlation_id,
                    exc_info=True,
                )
