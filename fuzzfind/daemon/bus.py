"""In-process event bus between the finder and the editor front-end.

Display notifications travel as ``gui.<notification>`` events, inbound
editor events as ``finder.<event>`` events carrying ``data["args"]``.
"""

import asyncio
import inspect
import weakref
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from loguru import logger


Handler = Callable[["Event"], Any]


@dataclass
class Event:
    """A bus message."""
    type: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)
    source: Optional[str] = None


def _weak(handler: Handler):
    # A plain weakref to a bound method dies with the temporary method object
    if inspect.ismethod(handler):
        return weakref.WeakMethod(handler)
    return weakref.ref(handler)


class EventBus:
    """
    Async pub/sub with wildcard topics.

    Subscriptions are weak, a handler lives as long as its owner. A single
    delivery task takes events off a bounded queue in emission order, so
    the display sees notifications in the order the finder produced them.
    When the queue is full new events are dropped and counted.
    """

    def __init__(self, maxsize: int = 1000):
        self._topics: Dict[str, List[weakref.ref]] = defaultdict(list)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._running = False
        self._delivery_task: Optional[asyncio.Task] = None
        self._counters = defaultdict(int)

    def subscribe(self, topic: str, handler: Handler) -> None:
        """Call ``handler`` for events matching ``topic`` ('gui.*', '*', 'finder.run')."""
        self._topics[topic].append(_weak(handler))
        logger.debug(f"Subscribed to {topic}")

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        kept = []
        for ref in self._topics.get(topic, []):
            live = ref()
            if live is not None and live != handler:
                kept.append(ref)
        self._topics[topic] = kept

    async def emit(self, event: Event) -> bool:
        """Queue an event. False when the queue is full and it was dropped."""
        return self.emit_nowait(event)

    def emit_nowait(self, event: Event) -> bool:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Bus full, dropping {event.type}")
            self._counters['dropped'] += 1
            return False
        self._counters['emitted'] += 1
        logger.trace(f"Queued {event.type}")
        return True

    async def start(self) -> None:
        if self._running:
            logger.warning("Event bus already running")
            return
        self._running = True
        self._delivery_task = asyncio.create_task(self._deliver_loop())
        logger.info("Event bus started")

    async def stop(self) -> None:
        self._running = False
        if self._delivery_task:
            await self._delivery_task
            self._delivery_task = None
        logger.info("Event bus stopped")

    async def drain(self, timeout: float = 1.0) -> bool:
        """Wait until every queued event was delivered. False on timeout."""
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _deliver_loop(self) -> None:
        while self._running:
            try:
                # Short wait so stop() is noticed
                event = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            try:
                await self._deliver(event)
                self._counters['delivered'] += 1
            except Exception as e:
                logger.error(f"Delivery of {event.type} failed: {e}")
                self._counters['delivery_errors'] += 1
            finally:
                self._queue.task_done()

    def _handlers_for(self, event_type: str) -> List[Handler]:
        handlers = []
        for topic, refs in self._topics.items():
            if not self._matches(event_type, topic):
                continue
            live_refs = []
            for ref in refs:
                handler = ref()
                if handler is not None:
                    handlers.append(handler)
                    live_refs.append(ref)
            self._topics[topic] = live_refs
        return handlers

    async def _deliver(self, event: Event) -> None:
        handlers = self._handlers_for(event.type)
        if not handlers:
            return

        calls = []
        for handler in handlers:
            if asyncio.iscoroutinefunction(handler):
                calls.append(handler(event))
            else:
                calls.append(asyncio.to_thread(handler, event))

        outcomes = await asyncio.gather(*calls, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                logger.error(f"Subscriber of {event.type} failed: {outcome}")
                self._counters['handler_errors'] += 1

    @staticmethod
    def _matches(event_type: str, topic: str) -> bool:
        if topic == "*":
            return True
        if topic.endswith(".*"):
            return event_type.startswith(topic[:-1])
        return event_type == topic

    def get_stats(self) -> Dict[str, int]:
        return dict(self._counters)

    def reset_stats(self) -> None:
        self._counters.clear()
