# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Cancellation contexts for blocking tool operations.

A Context carries a cancellation flag, an optional deadline and a few
request-scoped values (session id, message id). Children derived with
with_cancel() or with_timeout() are cancelled together with their parent;
children derived with with_values() share the parent's cancellation state.
"""

import queue
import threading
import time

from .errors import Cancelled

CANCELLED_REASON = "context cancelled"
DEADLINE_REASON = "deadline exceeded"


class _CancelState:
    """Cancellation flag plus the callbacks waiting on it."""

    def __init__(self):
        self.event = threading.Event()
        self.lock = threading.Lock()
        self.callbacks = {}
        self.next_handle = 1
        self.reason = None
        self.timer = None
        self.detach = None

    def finish(self, reason):
        with self.lock:
            if self.event.is_set():
                return
            self.reason = reason
            self.event.set()
            callbacks = list(self.callbacks.values())
            self.callbacks.clear()
            timer = self.timer
            self.timer = None
            detach = self.detach
            self.detach = None

        if timer is not None:
            timer.cancel()
        if detach is not None:
            detach()
        for callback in callbacks:
            callback()


class Context:
    """Cancellation and request values for one unit of work."""

    def __init__(self, parent=None, deadline=None, values=None, _state=None):
        self._parent = parent
        self._values = dict(parent._values) if parent is not None else {}
        if values:
            self._values.update(values)

        parent_deadline = parent._deadline if parent is not None else None
        if deadline is None:
            self._deadline = parent_deadline
        elif parent_deadline is None:
            self._deadline = deadline
        else:
            self._deadline = min(deadline, parent_deadline)

        self._parent_handle = None
        if _state is not None:
            self._state = _state
            return

        self._state = _CancelState()
        if parent is not None:
            self._parent_handle = parent.add_done_callback(
                lambda: self._state.finish(parent.err())
            )
            self._state.detach = self._detach_from_parent
        if deadline is not None:
            delay = max(0.0, deadline - time.monotonic())
            timer = threading.Timer(delay, self._state.finish, args=(DEADLINE_REASON,))
            timer.daemon = True
            self._state.timer = timer
            timer.start()

    # Derivation

    def with_cancel(self):
        """Return (child, cancel) where cancel() cancels only the child."""
        child = Context(parent=self)
        return child, child.cancel

    def with_timeout(self, seconds):
        """Return a child that cancels itself after `seconds`."""
        return Context(parent=self, deadline=time.monotonic() + seconds)

    def with_values(self, **values):
        """Return a child carrying extra values and sharing this cancellation."""
        child = Context(parent=self, values=values, _state=self._state)
        return child

    # Cancellation

    def cancel(self):
        self._state.finish(CANCELLED_REASON)

    def _detach_from_parent(self):
        if self._parent is not None and self._parent_handle is not None:
            self._parent.remove_done_callback(self._parent_handle)
            self._parent_handle = None

    @property
    def cancelled(self):
        return self._state.event.is_set()

    def err(self):
        """Cancellation reason, or None while the context is live."""
        return self._state.reason

    def wait(self, timeout=None):
        """Block until cancelled or timeout elapses. Returns True if cancelled."""
        return self._state.event.wait(timeout)

    def remaining(self):
        """Seconds until the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self):
        if self.cancelled:
            raise Cancelled(self.err() or CANCELLED_REASON)

    def add_done_callback(self, callback):
        """Run callback once the context is done. Returns a removal handle."""
        state = self._state
        with state.lock:
            if not state.event.is_set():
                handle = state.next_handle
                state.next_handle += 1
                state.callbacks[handle] = callback
                return handle
        callback()
        return None

    def remove_done_callback(self, handle):
        if handle is None:
            return
        with self._state.lock:
            self._state.callbacks.pop(handle, None)

    # Values

    def value(self, key, default=None):
        return self._values.get(key, default)

    @property
    def session_id(self):
        return self._values.get("session_id", "")

    @property
    def message_id(self):
        return self._values.get("message_id", "")


def background():
    """Return a fresh root context that is never cancelled on its own."""
    return Context()


def run_cancellable(ctx, func, *args, **kwargs):
    """Run a blocking callable on a worker thread, honouring ctx.

    Raises Cancelled as soon as ctx is done; a late result is discarded.
    """
    ctx.raise_if_cancelled()
    outcome = queue.Queue(maxsize=2)

    def worker():
        try:
            outcome.put(("ok", func(*args, **kwargs)))
        except BaseException as error:  # re-raised in the caller's thread
            outcome.put(("error", error))

    def on_done():
        try:
            outcome.put_nowait(("cancelled", None))
        except queue.Full:
            pass

    handle = ctx.add_done_callback(on_done)
    name = getattr(func, "__name__", "call")
    thread = threading.Thread(target=worker, daemon=True, name=f"cancellable-{name}")
    thread.start()

    try:
        kind, value = outcome.get()
    finally:
        ctx.remove_done_callback(handle)

    if kind == "cancelled":
        raise Cancelled(ctx.err() or CANCELLED_REASON)
    if kind == "error":
        raise value
    return value
