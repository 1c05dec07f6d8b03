# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Typed publish/subscribe broker.

Each subscriber owns a bounded buffer. When it fills up the oldest event
for that subscriber is dropped, so a slow subscriber never blocks
publish() or other subscribers.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 64


class EventType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class Event:
    type: EventType
    payload: Any


class Subscription:
    """One subscriber's view of a broker."""

    def __init__(self, broker, buffer_size=DEFAULT_BUFFER_SIZE):
        self._broker = broker
        self._events = deque(maxlen=buffer_size)
        self._cond = threading.Condition()
        self._closed = False
        self.dropped = 0

    def _deliver(self, event):
        with self._cond:
            if self._closed:
                return
            if len(self._events) == self._events.maxlen:
                self.dropped += 1
            self._events.append(event)
            self._cond.notify()

    def get(self, timeout=None):
        """Next event, or None when closed and drained or on timeout."""
        with self._cond:
            if not self._events and not self._closed:
                self._cond.wait_for(lambda: self._events or self._closed, timeout)
            if self._events:
                return self._events.popleft()
            return None

    def __iter__(self):
        while True:
            event = self.get()
            if event is None:
                return
            yield event

    @property
    def closed(self):
        return self._closed

    def close(self):
        self._broker._unsubscribe(self)
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class Broker:
    """Generic event broker; payload type is up to the owner."""

    def __init__(self, buffer_size=DEFAULT_BUFFER_SIZE):
        self._buffer_size = buffer_size
        self._subscribers = []
        self._lock = threading.Lock()
        self._shutdown = False

    def subscribe(self, ctx=None):
        """Register a subscriber; it is released when ctx is done."""
        subscription = Subscription(self, self._buffer_size)
        with self._lock:
            if self._shutdown:
                subscription._closed = True
                return subscription
            self._subscribers.append(subscription)

        if ctx is not None:
            ctx.add_done_callback(subscription.close)
        return subscription

    def publish(self, event_type, payload):
        event = Event(EventType(event_type), payload)
        # Delivery happens under the broker lock so every subscriber sees
        # the same total order.
        with self._lock:
            if self._shutdown:
                return
            for subscription in self._subscribers:
                subscription._deliver(event)

    def _unsubscribe(self, subscription):
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def subscriber_count(self):
        with self._lock:
            return len(self._subscribers)

    def shutdown(self):
        with self._lock:
            self._shutdown = True
            subscribers = list(self._subscribers)
            self._subscribers.clear()

        for subscription in subscribers:
            with subscription._cond:
                subscription._closed = True
                subscription._cond.notify_all()
        logger.debug("Broker shut down with %d subscribers", len(subscribers))
