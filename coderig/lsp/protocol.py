# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""The slice of the Language Server Protocol the diagnostics client needs.

Messages are JSON-RPC 2.0 objects framed as:

    Content-Length: <bytes>\\r\\n
    \\r\\n
    <json body>
"""

import json
import logging
import os
from dataclasses import dataclass, field
from enum import IntEnum
from urllib.parse import quote, unquote, urlparse

from ..errors import ExternalFailure

logger = logging.getLogger(__name__)

HEADER_ENCODING = "ascii"
CONTENT_LENGTH = "content-length"


class DiagnosticSeverity(IntEnum):
    ERROR = 1
    WARNING = 2
    INFORMATION = 3
    HINT = 4


class DiagnosticTag(IntEnum):
    UNNECESSARY = 1
    DEPRECATED = 2


@dataclass(frozen=True)
class Position:
    line: int = 0
    character: int = 0

    @classmethod
    def from_lsp(cls, data):
        data = data or {}
        return cls(int(data.get("line", 0)), int(data.get("character", 0)))


@dataclass(frozen=True)
class Range:
    start: Position = Position()
    end: Position = Position()

    @classmethod
    def from_lsp(cls, data):
        data = data or {}
        return cls(Position.from_lsp(data.get("start")), Position.from_lsp(data.get("end")))


@dataclass
class Diagnostic:
    range: Range
    message: str
    severity: DiagnosticSeverity = DiagnosticSeverity.ERROR
    source: str = ""
    code: str = ""
    tags: list[DiagnosticTag] = field(default_factory=list)

    @classmethod
    def from_lsp(cls, data):
        """Build from a decoded LSP Diagnostic object."""
        severity = data.get("severity") or DiagnosticSeverity.ERROR
        try:
            severity = DiagnosticSeverity(severity)
        except ValueError:
            severity = DiagnosticSeverity.ERROR

        tags = []
        for tag in data.get("tags") or []:
            try:
                tags.append(DiagnosticTag(tag))
            except ValueError:
                continue

        code = data.get("code")
        return cls(
            range=Range.from_lsp(data.get("range")),
            message=str(data.get("message", "")),
            severity=severity,
            source=str(data.get("source") or ""),
            code="" if code is None else str(code),
            tags=tags,
        )


def path_to_uri(path):
    absolute = os.path.abspath(path)
    return "file://" + quote(absolute.replace(os.sep, "/"))


def uri_to_path(uri):
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return uri
    return unquote(parsed.path)


def encode_message(obj):
    body = json.dumps(obj, separators=(",", ":")).encode("utf-8")
    header = f"Content-Length: {len(body)}\r\n\r\n".encode(HEADER_ENCODING)
    return header + body


def write_message(stream, obj):
    """Frame and write one message; the caller serializes writers."""
    stream.write(encode_message(obj))
    stream.flush()


def read_message(stream):
    """Read one framed message.

    Returns:
        The decoded object, or None at end of stream

    Raises:
        ExternalFailure: On a malformed header or body
    """
    content_length = None
    while True:
        line = stream.readline()
        if not line:
            return None
        text = line.decode(HEADER_ENCODING, errors="replace").strip()
        if not text:
            if content_length is None:
                continue
            break
        name, _, value = text.partition(":")
        if name.strip().lower() == CONTENT_LENGTH:
            try:
                content_length = int(value.strip())
            except ValueError as error:
                raise ExternalFailure(f"invalid Content-Length: {value.strip()}") from error

    body = stream.read(content_length)
    if len(body) < content_length:
        return None
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as error:
        raise ExternalFailure(f"failed to decode LSP message: {error}") from error


def _offset(text, position):
    """Character offset of an LSP position within text."""
    lines = text.split("\n")
    line = min(max(position.line, 0), len(lines))
    offset = sum(len(current) + 1 for current in lines[:line])
    if line < len(lines):
        offset += min(max(position.character, 0), len(lines[line]))
    return min(offset, len(text))


def apply_text_edits(text, edits):
    """Apply LSP TextEdit objects to text, last edit first."""
    resolved = []
    for edit in edits:
        edit_range = Range.from_lsp(edit.get("range"))
        resolved.append((_offset(text, edit_range.start), _offset(text, edit_range.end), edit.get("newText", "")))

    resolved.sort(key=lambda item: (item[0], item[1]))
    for previous, current in zip(resolved, resolved[1:]):
        if current[0] < previous[1]:
            raise ExternalFailure("overlapping edits in workspace edit")

    for start, end, new_text in reversed(resolved):
        text = text[:start] + new_text + text[end:]
    return text


def _edit_file(uri, edits):
    path = uri_to_path(uri)
    with open(path, encoding="utf-8") as handle:
        content = handle.read()
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(apply_text_edits(content, edits))
    logger.debug("Applied %d workspace edits to %s", len(edits), path)


def apply_workspace_edit(edit):
    """Apply the `changes` and text `documentChanges` of a WorkspaceEdit."""
    for uri, edits in (edit.get("changes") or {}).items():
        _edit_file(uri, edits)

    for change in edit.get("documentChanges") or []:
        document = change.get("textDocument")
        if document is None:
            # create/rename/delete resource operations
            logger.debug("Skipping resource operation %s", change.get("kind"))
            continue
        _edit_file(document["uri"], change.get("edits") or [])
