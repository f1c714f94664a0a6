"""
In-process broadcast channel for cross-window notices.

Each open view (storage service instance) subscribes to a named channel and
publishes events such as {"type": "RECORD_DELETED", "id": ...}. Delivery is
best-effort fan-out: a failing subscriber is logged and skipped.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

RECORD_DELETED = "RECORD_DELETED"


@dataclass(frozen=True)
class ChannelEvent:
    type: str
    id: str
    sender: Optional[str] = None

    def to_message(self) -> Dict[str, Any]:
        """Wire shape seen by other windows."""
        return {"type": self.type, "id": self.id}


Subscriber = Callable[[ChannelEvent], Any]


class BroadcastChannel:
    def __init__(self, name: str):
        self.name = name
        # (subscriber token, callback)
        self._subscribers: List[tuple] = []
        # coroutine deliveries still running
        self._tasks: Set[asyncio.Future] = set()

    def subscribe(self, callback: Subscriber, token: Optional[str] = None) -> Callable[[], None]:
        """
        Register `callback`. Events published with sender == token are not
        echoed back to it. Returns an unsubscribe function.
        """
        entry = (token, callback)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: ChannelEvent) -> int:
        """Deliver to every other subscriber; returns how many were reached."""
        delivered = 0
        for token, callback in list(self._subscribers):
            if event.sender is not None and token == event.sender:
                continue
            try:
                outcome = callback(event)
                if asyncio.iscoroutine(outcome):
                    task = asyncio.ensure_future(outcome)
                    self._tasks.add(task)
                    task.add_done_callback(self._delivery_done)
                delivered += 1
            except Exception:
                logger.exception("Subscriber on %s failed for %s", self.name, event.type)
        logger.debug("Published %s on %s to %d subscriber(s)", event.to_message(), self.name, delivered)
        return delivered

    def _delivery_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Async subscriber on %s failed: %s", self.name, error, exc_info=error)

    async def wait_delivered(self) -> None:
        """Wait for coroutine subscribers scheduled by earlier publishes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def __len__(self) -> int:
        return len(self._subscribers)


_channels: Dict[str, BroadcastChannel] = {}


def get_channel(name: str) -> BroadcastChannel:
    """Process-wide registry: same name, same channel."""
    channel = _channels.get(name)
    if channel is None:
        channel = _channels[name] = BroadcastChannel(name)
    return channel


def reset_channels() -> None:
    _channels.clear()
