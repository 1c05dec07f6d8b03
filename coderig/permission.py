# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Permission broker for side-effecting tool actions.

Every request is published on the broker's event bus; a UI consumes it and
answers with grant(), grant_persistent() or deny(). request() blocks until
an answer arrives or the calling context is cancelled. There is no timeout.
"""

import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import Cancelled
from .pubsub import Broker, EventType

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    ALLOW_ONCE = "allow-once"
    ALLOW_PERSISTENT = "allow-persistent"
    DENY = "deny"


@dataclass
class CreatePermissionRequest:
    """What a tool asks for."""

    session_id: str
    tool_name: str
    action: str
    path: str
    description: str = ""
    params: Any = None


@dataclass(frozen=True)
class PermissionRequest:
    """A published request, with a normalized path and a unique id."""

    id: str
    session_id: str
    tool_name: str
    action: str
    path: str
    description: str = ""
    params: Any = field(default=None, compare=False, hash=False)


class _Pending:
    def __init__(self):
        self.event = threading.Event()
        self.allowed = False


class PermissionService:
    """Mediates user consent; safe to call from many tools at once."""

    def __init__(self, working_dir, auto_approve=False):
        self.working_dir = str(working_dir)
        self.auto_approve = auto_approve
        self.broker = Broker()
        self._lock = threading.Lock()
        self._pending: dict[str, _Pending] = {}
        self._persistent: list[PermissionRequest] = []
        self._auto_sessions: set[str] = set()

    def subscribe(self, ctx=None):
        return self.broker.subscribe(ctx)

    def normalize_path(self, path):
        """Directory a grant applies to: the path itself if it is a directory."""
        if not path:
            return self.working_dir
        # URLs (fetch) are granted as-is
        if "://" in path:
            return path
        if os.path.isdir(path):
            return path
        directory = os.path.dirname(path)
        if directory in ("", "."):
            return self.working_dir
        return directory

    def auto_approve_session(self, session_id):
        with self._lock:
            self._auto_sessions.add(session_id)
        logger.info("Tool usage auto-approved for session %s", session_id)

    def _has_persistent_grant(self, request):
        for granted in self._persistent:
            if (
                granted.session_id == request.session_id
                and granted.tool_name == request.tool_name
                and granted.action == request.action
                and granted.path.startswith(request.path)
            ):
                return True
        return False

    def request(self, ctx, opts: CreatePermissionRequest) -> bool:
        """Block until the user decides. Raises Cancelled if ctx is done first."""
        ctx.raise_if_cancelled()
        request = PermissionRequest(
            id=uuid.uuid4().hex,
            session_id=opts.session_id,
            tool_name=opts.tool_name,
            action=opts.action,
            path=self.normalize_path(opts.path),
            description=opts.description,
            params=opts.params,
        )

        pending = _Pending()
        with self._lock:
            if self.auto_approve or opts.session_id in self._auto_sessions:
                logger.debug("Auto-approved %s/%s", opts.tool_name, opts.action)
                return True
            if self._has_persistent_grant(request):
                return True
            self._pending[request.id] = pending

        handle = ctx.add_done_callback(pending.event.set)
        try:
            self.broker.publish(EventType.CREATED, request)
            pending.event.wait()
        finally:
            ctx.remove_done_callback(handle)
            with self._lock:
                self._pending.pop(request.id, None)

        if not pending.allowed and ctx.cancelled:
            raise Cancelled(ctx.err())
        logger.debug(
            "Permission %s for %s/%s on %s",
            "granted" if pending.allowed else "denied",
            request.tool_name,
            request.action,
            request.path,
        )
        return pending.allowed

    def _resolve(self, request, allowed, persist=False):
        with self._lock:
            if persist:
                self._persistent.append(request)
            pending = self._pending.get(request.id)
        if pending is None:
            return
        pending.allowed = allowed
        pending.event.set()

    def grant(self, request):
        self._resolve(request, True)

    def grant_persistent(self, request):
        self._resolve(request, True, persist=True)

    def deny(self, request):
        self._resolve(request, False)

    def decide(self, request, decision):
        """Apply a Decision value (used by UIs)."""
        decision = Decision(decision)
        if decision == Decision.ALLOW_PERSISTENT:
            self.grant_persistent(request)
        elif decision == Decision.ALLOW_ONCE:
            self.grant(request)
        else:
            self.deny(request)
