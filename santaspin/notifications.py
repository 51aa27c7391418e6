from __future__ import annotations

import atexit
import json
import logging
import queue
import threading
from typing import Any, Iterator

logger = logging.getLogger(__name__)

_CLOSED = object()


class Broadcaster:
    """
    Process-wide fan-out of engine events to connected observers.

    Every subscriber owns a bounded queue. publish() never blocks: a subscriber
    whose queue is full misses the event. Failures are logged and swallowed so
    a committed spin is never affected by a slow or broken observer.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self.maxsize = maxsize
        self._subscribers: set[queue.Queue] = set()
        self._lock = threading.Lock()
        self._closed = False
        self._atexit_registered = False

    def init_app(self, app) -> None:
        self.maxsize = int(app.config.get("SANTA_EVENT_QUEUE_SIZE", self.maxsize))
        self._closed = False
        app.extensions["santa_broadcaster"] = self
        if not self._atexit_registered:
            atexit.register(self.close)
            self._atexit_registered = True

    # --- subscriptions ---

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self.maxsize)
        with self._lock:
            self._subscribers.add(q)
        logger.info("Observer subscribed (%d connected)", self.subscriber_count)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            self._subscribers.discard(q)
        logger.info("Observer unsubscribed (%d connected)", self.subscriber_count)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    # --- publishing ---

    def publish(self, event: str, payload: dict[str, Any]) -> int:
        """Returns how many subscribers received the event."""
        delivered = 0
        try:
            with self._lock:
                targets = list(self._subscribers)
            for q in targets:
                try:
                    q.put_nowait((event, payload))
                    delivered += 1
                except queue.Full:
                    logger.warning("Dropping %s event for a slow observer", event)
        except Exception:
            logger.exception("Failed to publish %s event", event)
        return delivered

    def stream(self, q: queue.Queue, keepalive: float = 15.0) -> Iterator[str]:
        """Yield Server-Sent-Event frames from a subscriber queue until closed."""
        try:
            while True:
                try:
                    item = q.get(timeout=keepalive)
                except queue.Empty:
                    if self._closed:
                        return
                    yield ": keepalive\n\n"
                    continue
                if item is _CLOSED:
                    return
                event, payload = item
                yield f"event: {event}\ndata: {json.dumps(payload, default=str)}\n\n"
        finally:
            self.unsubscribe(q)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._lock:
            targets = list(self._subscribers)
        for q in targets:
            try:
                q.put_nowait(_CLOSED)
            except queue.Full:
                logger.warning("Observer queue full at shutdown; its stream ends on the next keepalive")


def notify(notifier: Broadcaster | None, event: str, payload: dict[str, Any]) -> None:
    """Fire-and-forget publish used by the engine after its transaction commits."""
    if notifier is None:
        return
    try:
        notifier.publish(event, payload)
    except Exception:
        logger.exception("Notification %s failed", event)
