# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""File tools: view, write and edit.

Every mutation follows the same protocol: resolve the path, check the file
was read and has not changed since, ask permission, write, then record the
write in the ledger, add a history version and wait for diagnostics.
"""

import logging
import os
from dataclasses import dataclass

from ..diff import generate_diff
from ..errors import ExternalFailure, PreconditionError
from .base import BaseTool, ToolInfo, ToolResponse
from .constants import (
    DEFAULT_READ_LIMIT,
    IMAGE_EXTENSIONS,
    MAX_LINE_LENGTH,
    MAX_READ_SIZE,
)
from .validation import (
    ask_permission,
    check_fresh_read,
    require_file,
    require_session,
    resolve_path,
)

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 3


# =============================================================================
# SHARED HELPERS
# =============================================================================


def read_text(path):
    """Read a file exactly as stored; line endings are preserved."""
    try:
        with open(path, encoding="utf-8", newline="") as handle:
            return handle.read()
    except UnicodeDecodeError as error:
        raise PreconditionError(f"cannot read binary file: {path}") from error
    except OSError as error:
        raise ExternalFailure(f"failed to read file {path}: {error}") from error


def write_text(path, content):
    try:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
    except OSError as error:
        raise ExternalFailure(f"failed to write file {path}: {error}") from error


def record_history(history, session_id, path, old_content, new_content):
    """Append history versions for a successful write.

    If the newest version this session holds for path no longer matches
    what was on disk before the write, the on-disk content is saved as an
    intermediate version first.
    """
    try:
        latest = history.get_by_path_and_session(path, session_id)
    except KeyError:
        latest = None

    if latest is None and old_content is not None:
        history.create_version(session_id, path, old_content)
    elif latest is not None and latest.content != (old_content or ""):
        logger.debug("%s changed outside the session, saving intermediate version", path)
        history.create_version(session_id, path, old_content or "")
    return history.create_version(session_id, path, new_content)


def record_mutation(services, session_id, path, old_content, new_content):
    """Ledger and history bookkeeping after writing path."""
    record_history(services.history, session_id, path, old_content, new_content)
    services.ledger.record_write(path)
    services.ledger.record_read(path, new_content)


def diagnostics_after(services, ctx, path, include_project=True):
    """Wait for fresh diagnostics on path and render them."""
    collector = services.diagnostics
    if collector is None or not collector.has_clients:
        return ""
    collector.wait_for_diagnostics(ctx, path)
    return collector.render(path, include_project)


def add_line_numbers(lines, start_line):
    numbered = []
    for index, line in enumerate(lines):
        number = str(index + start_line)
        line = line.rstrip("\r")
        if len(number) >= 6:
            numbered.append(f"{number}\t{line}")
        else:
            numbered.append(f"{number:>6}\t|{line}")
    return "\n".join(numbered)


def _suggestions(path):
    directory = os.path.dirname(path)
    base = os.path.basename(path).lower()
    try:
        entries = sorted(os.listdir(directory))
    except OSError:
        return []
    found = []
    for entry in entries:
        name = entry.lower()
        if base in name or name in base:
            found.append(os.path.join(directory, entry))
            if len(found) >= MAX_SUGGESTIONS:
                break
    return found


# =============================================================================
# VIEW
# =============================================================================


@dataclass
class ViewParams:
    file_path: str
    offset: int = 0
    limit: int = DEFAULT_READ_LIMIT


class ViewTool(BaseTool):
    """Read a text file with line numbers."""

    params_type = ViewParams

    def __init__(self, services):
        self.services = services

    def info(self):
        return ToolInfo(
            name="view",
            description=(
                "Reads a file from the local filesystem and returns it with line numbers. "
                "Use offset (0-based line) and limit to page through large files. "
                f"Files over {MAX_READ_SIZE // 1024}KB, directories and images are rejected; "
                f"lines longer than {MAX_LINE_LENGTH} characters are cut. "
                "A file must be viewed before it can be edited, written or patched."
            ),
            parameters={
                "file_path": {"type": "string", "description": "The path to the file to read"},
                "offset": {
                    "type": "integer",
                    "description": "The line number to start reading from (0-based)",
                },
                "limit": {
                    "type": "integer",
                    "description": f"The number of lines to read (defaults to {DEFAULT_READ_LIMIT})",
                },
            },
            required=["file_path"],
        )

    def execute(self, ctx, params):
        path = resolve_path(self.services.working_dir, params.file_path)

        if not os.path.exists(path):
            suggestions = _suggestions(path)
            if suggestions:
                raise PreconditionError(
                    f"file not found: {path}\n\nDid you mean one of these?\n" + "\n".join(suggestions)
                )
            raise PreconditionError(f"file not found: {path}")
        if os.path.isdir(path):
            raise PreconditionError(f"path is a directory, not a file: {path}")

        size = os.path.getsize(path)
        if size > MAX_READ_SIZE:
            raise PreconditionError(
                f"file is too large ({size} bytes). Maximum size is {MAX_READ_SIZE} bytes"
            )

        extension = os.path.splitext(path)[1].lower()
        if extension in IMAGE_EXTENSIONS:
            raise PreconditionError(
                f"This is an image file of type: {extension.lstrip('.').upper()}\n"
                "Use a different tool to process images"
            )

        offset = max(params.offset, 0)
        limit = params.limit if params.limit > 0 else DEFAULT_READ_LIMIT

        content = read_text(path)
        lines = content.split("\n")
        if content.endswith("\n"):
            lines.pop()

        shown = [
            line[:MAX_LINE_LENGTH] + "..." if len(line) > MAX_LINE_LENGTH else line
            for line in lines[offset:offset + limit]
        ]

        self.services.ledger.record_read(path, content)
        if self.services.diagnostics is not None:
            self.services.diagnostics.open_file(path)

        output = "<file>\n" + add_line_numbers(shown, offset + 1)
        end_line = offset + len(shown)
        if len(lines) > end_line:
            output += f"\n\n(File has more lines. Use 'offset' parameter to read beyond line {end_line})"
        output += "\n</file>\n"
        if self.services.diagnostics is not None:
            output += self.services.diagnostics.render(path)

        return ToolResponse.text(output).with_metadata({
            "file_path": path,
            "content": "\n".join(shown),
        })


# =============================================================================
# WRITE
# =============================================================================


@dataclass
class WriteParams:
    file_path: str
    content: str


class WriteTool(BaseTool):
    """Create or overwrite a file."""

    params_type = WriteParams

    def __init__(self, services):
        self.services = services

    def info(self):
        return ToolInfo(
            name="write",
            description=(
                "Writes a file to the local filesystem, creating parent directories as needed. "
                "An existing file must be viewed first and must not have changed since. "
                "Prefer the edit tool for changes to part of a file."
            ),
            parameters={
                "file_path": {"type": "string", "description": "The path to the file to write"},
                "content": {"type": "string", "description": "The content to write to the file"},
            },
            required=["file_path", "content"],
        )

    def execute(self, ctx, params):
        session_id = require_session(ctx)
        path = resolve_path(self.services.working_dir, params.file_path)

        old_content = None
        if os.path.exists(path):
            if os.path.isdir(path):
                raise PreconditionError(f"path is a directory, not a file: {path}")
            old_content = read_text(path)
            check_fresh_read(self.services.ledger, path, old_content, "writing")
            if old_content == params.content:
                raise PreconditionError(f"File {path} already contains the exact content. No changes made.")

        diff, additions, removals = generate_diff(old_content or "", params.content, path)
        ask_permission(
            self.services, ctx, "write", "write", path,
            f"Create file {path}",
            {"file_path": path, "diff": diff},
        )

        write_text(path, params.content)
        record_mutation(self.services, session_id, path, old_content, params.content)
        logger.debug("Wrote %s (+%d -%d)", path, additions, removals)

        output = f"<result>\nFile successfully written: {path}\n</result>"
        output += diagnostics_after(self.services, ctx, path)
        return ToolResponse.text(output).with_metadata({
            "diff": diff,
            "additions": additions,
            "removals": removals,
        })


# =============================================================================
# EDIT
# =============================================================================


@dataclass
class EditParams:
    file_path: str
    old_string: str = ""
    new_string: str = ""


class EditTool(BaseTool):
    """Replace exactly one occurrence of a string in a file."""

    params_type = EditParams

    def __init__(self, services):
        self.services = services

    def info(self):
        return ToolInfo(
            name="edit",
            description=(
                "Edits a file by replacing exactly one occurrence of old_string with new_string. "
                "old_string must match the file exactly, including whitespace, and must be unique; "
                "include surrounding lines when needed. An empty old_string creates a new file "
                "with new_string as its content. An empty new_string deletes the matched text. "
                "The file must be viewed first."
            ),
            parameters={
                "file_path": {"type": "string", "description": "The path to the file to modify"},
                "old_string": {"type": "string", "description": "The text to replace"},
                "new_string": {"type": "string", "description": "The text to replace it with"},
            },
            required=["file_path", "old_string", "new_string"],
        )

    def execute(self, ctx, params):
        session_id = require_session(ctx)
        path = resolve_path(self.services.working_dir, params.file_path)

        if params.old_string == "":
            return self._create(ctx, session_id, path, params.new_string)
        if params.new_string == "":
            return self._replace(ctx, session_id, path, params.old_string, "")
        return self._replace(ctx, session_id, path, params.old_string, params.new_string)

    def _respond(self, ctx, path, message, diff, additions, removals):
        output = f"<result>\n{message}: {path}\n</result>\n"
        output += diagnostics_after(self.services, ctx, path)
        return ToolResponse.text(output).with_metadata({
            "diff": diff,
            "additions": additions,
            "removals": removals,
        })

    def _create(self, ctx, session_id, path, content):
        if os.path.exists(path):
            if os.path.isdir(path):
                raise PreconditionError(f"path is a directory, not a file: {path}")
            raise PreconditionError(f"file already exists: {path}")

        diff, additions, removals = generate_diff("", content, path)
        ask_permission(
            self.services, ctx, "edit", "create", path,
            f"Create file {path}",
            {"file_path": path, "diff": diff},
        )

        write_text(path, content)
        record_mutation(self.services, session_id, path, None, content)
        return self._respond(ctx, path, "File created", diff, additions, removals)

    def _replace(self, ctx, session_id, path, old_string, new_string):
        require_file(path)
        old_content = read_text(path)
        check_fresh_read(self.services.ledger, path, old_content, "editing")

        index = old_content.find(old_string)
        if index == -1:
            raise PreconditionError(
                "old_string not found in file. Make sure it matches exactly, "
                "including whitespace and line breaks"
            )
        if old_content.find(old_string, index + 1) != -1:
            raise PreconditionError(
                "old_string appears multiple times in the file. "
                "Please provide more context to ensure a unique match"
            )

        new_content = old_content[:index] + new_string + old_content[index + len(old_string):]
        if new_content == old_content:
            raise PreconditionError("new content is the same as old content. No changes made.")

        deleting = new_string == ""
        diff, additions, removals = generate_diff(old_content, new_content, path)
        ask_permission(
            self.services, ctx, "edit",
            "delete" if deleting else "replace",
            path,
            f"Delete content from file {path}" if deleting else f"Replace content in file {path}",
            {"file_path": path, "diff": diff},
        )

        write_text(path, new_content)
        record_mutation(self.services, session_id, path, old_content, new_content)
        message = "Content deleted from file" if deleting else "Content replaced in file"
        return self._respond(ctx, path, message, diff, additions, removals)
