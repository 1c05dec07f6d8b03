# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""File-access ledger: last read and last write time per absolute path.

One ledger lives as long as the running agent and is handed to every tool
that reads or mutates files. It backs the read-before-modify and stale-read
checks. Alongside the timestamps it keeps a digest of the bytes seen at the
last read, which catches edits that land within the filesystem's mtime
granularity.
"""

import hashlib
import os
import threading
import time
from dataclasses import dataclass


@dataclass
class FileRecord:
    path: str
    last_read_at: float = 0.0
    last_write_at: float = 0.0
    read_digest: str = ""


def content_digest(data) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


class FileLedger:
    """Thread-safe map of absolute path to FileRecord."""

    def __init__(self, clock=time.time):
        self._clock = clock
        self._records: dict[str, FileRecord] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(path):
        return os.path.abspath(str(path))

    def record_read(self, path, content=None):
        """Mark path as read now; content (str or bytes) is what was seen."""
        key = self._key(path)
        with self._lock:
            record = self._records.setdefault(key, FileRecord(key))
            record.last_read_at = self._clock()
            record.read_digest = content_digest(content) if content is not None else ""

    def record_write(self, path):
        key = self._key(path)
        with self._lock:
            record = self._records.setdefault(key, FileRecord(key))
            record.last_write_at = self._clock()

    def last_read(self, path) -> float:
        """Epoch seconds of the last read, 0 if never read."""
        with self._lock:
            record = self._records.get(self._key(path))
            return record.last_read_at if record else 0.0

    def last_write(self, path) -> float:
        with self._lock:
            record = self._records.get(self._key(path))
            return record.last_write_at if record else 0.0

    def changed_since_read(self, path, content) -> bool:
        """True when content differs from what the last read saw."""
        with self._lock:
            record = self._records.get(self._key(path))
            if record is None or not record.read_digest:
                return False
            return record.read_digest != content_digest(content)
