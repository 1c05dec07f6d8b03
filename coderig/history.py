# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Versioned snapshots of file contents per session.

Rows live in a flat mapping keyed by (session_id, path, created_at). The
first row ever recorded for a path is version "initial"; later rows are
"v1", "v2", ... Every mutation is published on the service's broker.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, replace

from .errors import ExternalFailure
from .pubsub import Broker, EventType

logger = logging.getLogger(__name__)

INITIAL_VERSION = "initial"
MAX_CREATE_RETRIES = 3


@dataclass(frozen=True)
class HistoryFile:
    id: str
    session_id: str
    path: str
    content: str
    version: str
    created_at: int
    updated_at: int


def _now_ms():
    return int(time.time() * 1000)


def _parse_version_number(version):
    """Return N for "vN", else None."""
    if not version.startswith("v"):
        return None
    try:
        return int(version[1:])
    except ValueError:
        return None


def next_version(latest: HistoryFile) -> str:
    """Version that follows `latest`."""
    if latest.version == INITIAL_VERSION:
        return "v1"
    number = _parse_version_number(latest.version)
    if number is None:
        return f"v{latest.created_at}"
    return f"v{number + 1}"


class HistoryService:
    """In-memory history store; all mutations are serialized."""

    def __init__(self, clock=_now_ms):
        self.broker = Broker()
        self._clock = clock
        self._rows: dict[tuple[str, str, int], HistoryFile] = {}
        self._keys_by_id: dict[str, tuple[str, str, int]] = {}
        self._sequence: dict[str, int] = {}
        self._next_sequence = 0
        self._lock = threading.RLock()

    def subscribe(self, ctx=None):
        return self.broker.subscribe(ctx)

    # Queries

    def _ordered(self, rows, newest_first=False):
        return sorted(
            rows,
            key=lambda row: (row.created_at, self._sequence[row.id]),
            reverse=newest_first,
        )

    def _rows_for_path(self, path):
        with self._lock:
            rows = [row for key, row in self._rows.items() if key[1] == path]
            return self._ordered(rows, newest_first=True)

    def get(self, file_id) -> HistoryFile:
        with self._lock:
            key = self._keys_by_id.get(file_id)
            if key is None:
                raise KeyError(f"history file not found: {file_id}")
            return self._rows[key]

    def get_by_path_and_session(self, path, session_id) -> HistoryFile:
        """Latest row for path within a session."""
        with self._lock:
            rows = [
                row for key, row in self._rows.items()
                if key[0] == session_id and key[1] == path
            ]
            if not rows:
                raise KeyError(f"no history for {path} in session {session_id}")
            return self._ordered(rows, newest_first=True)[0]

    def list_by_session(self, session_id) -> list[HistoryFile]:
        with self._lock:
            rows = [row for key, row in self._rows.items() if key[0] == session_id]
            return self._ordered(rows)

    def list_latest_per_path_in_session(self, session_id) -> list[HistoryFile]:
        latest: dict[str, HistoryFile] = {}
        for row in self.list_by_session(session_id):
            latest[row.path] = row
        return sorted(latest.values(), key=lambda row: row.path)

    # Mutations

    def create(self, session_id, path, content) -> HistoryFile:
        return self._create_with_version(session_id, path, content, INITIAL_VERSION)

    def create_version(self, session_id, path, content) -> HistoryFile:
        with self._lock:
            rows = self._rows_for_path(path)
            if not rows:
                return self.create(session_id, path, content)
            version = next_version(rows[0])
            return self._create_with_version(session_id, path, content, version)

    def _version_taken(self, session_id, path, version):
        return any(
            key[0] == session_id and key[1] == path and row.version == version
            for key, row in self._rows.items()
        )

    def _created_at_for(self, session_id, path):
        created_at = self._clock()
        existing = [key[2] for key in self._rows if key[0] == session_id and key[1] == path]
        if existing and created_at <= max(existing):
            created_at = max(existing) + 1
        return created_at

    def _create_with_version(self, session_id, path, content, version) -> HistoryFile:
        with self._lock:
            for attempt in range(MAX_CREATE_RETRIES):
                if not self._version_taken(session_id, path, version):
                    break
                if attempt == MAX_CREATE_RETRIES - 1:
                    raise ExternalFailure(
                        f"could not allocate a history version for {path} after "
                        f"{MAX_CREATE_RETRIES} attempts"
                    )
                number = _parse_version_number(version)
                if number is not None:
                    version = f"v{number + 1}"
                else:
                    version = f"v{int(time.time())}"
                logger.debug("Version conflict for %s, retrying as %s", path, version)

            created_at = self._created_at_for(session_id, path)
            row = HistoryFile(
                id=uuid.uuid4().hex,
                session_id=session_id,
                path=path,
                content=content,
                version=version,
                created_at=created_at,
                updated_at=created_at,
            )
            key = (session_id, path, created_at)
            self._rows[key] = row
            self._keys_by_id[row.id] = key
            self._sequence[row.id] = self._next_sequence
            self._next_sequence += 1
            self.broker.publish(EventType.CREATED, row)
            return row

    def update(self, file: HistoryFile) -> HistoryFile:
        with self._lock:
            key = self._keys_by_id.get(file.id)
            if key is None:
                raise KeyError(f"history file not found: {file.id}")
            current = self._rows[key]
            updated = replace(
                current,
                content=file.content,
                version=file.version,
                updated_at=max(self._clock(), current.updated_at),
            )
            self._rows[key] = updated
            self.broker.publish(EventType.UPDATED, updated)
            return updated

    def delete(self, file_id):
        with self._lock:
            key = self._keys_by_id.pop(file_id, None)
            if key is None:
                raise KeyError(f"history file not found: {file_id}")
            row = self._rows.pop(key)
            self._sequence.pop(file_id, None)
            self.broker.publish(EventType.DELETED, row)

    def delete_session_files(self, session_id):
        with self._lock:
            for row in self.list_by_session(session_id):
                self.delete(row.id)
