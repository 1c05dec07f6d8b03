# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Unified diffs: generate, parse and apply.

Lines are always split on "\\n" and joined back with "\\n", so a diff
generated from two strings applies back to exactly the second string,
including trailing newlines.
"""

import difflib
import logging
import re
from dataclasses import dataclass, field

from .errors import ParamError, PreconditionError

logger = logging.getLogger(__name__)

HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
NO_NEWLINE_MARKER = "\\ No newline at end of file"

CONTEXT = "context"
REMOVED = "removed"
ADDED = "added"


@dataclass
class DiffLine:
    kind: str
    content: str


@dataclass
class Hunk:
    header: str
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[DiffLine] = field(default_factory=list)


@dataclass
class FileDiff:
    old_path: str = ""
    new_path: str = ""
    hunks: list[Hunk] = field(default_factory=list)


def count_changes(diff_lines):
    """Count additions and removals in unified diff lines.

    Args:
        diff_lines: Lines of a unified diff, headers included

    Returns:
        Tuple of (additions, removals)
    """
    additions = 0
    removals = 0

    for line in diff_lines:
        if line.startswith("+") and not line.startswith("+++"):
            additions += 1
        elif line.startswith("-") and not line.startswith("---"):
            removals += 1

    return additions, removals


def generate_diff(before, after, file_name=""):
    """Line-level unified diff between two strings.

    Args:
        before: Original content
        after: New content
        file_name: Name used in the a/ and b/ headers

    Returns:
        Tuple of (diff text, additions, removals); ("", 0, 0) when equal
    """
    before = before or ""
    after = after or ""
    if before == after:
        return "", 0, 0

    name = file_name.lstrip("/")
    diff_lines = list(
        difflib.unified_diff(
            before.split("\n"),
            after.split("\n"),
            fromfile=f"a/{name}",
            tofile=f"b/{name}",
            lineterm="",
        )
    )
    additions, removals = count_changes(diff_lines)
    return "\n".join(diff_lines) + "\n", additions, removals


def _strip_path(header_value):
    path = header_value.split("\t", 1)[0].strip()
    if path.startswith(("a/", "b/")):
        path = path[2:]
    return path


def _parse_hunk_header(line):
    match = HUNK_HEADER.match(line)
    if not match:
        raise ParamError(f"malformed hunk header: {line}")
    old_start, old_count, new_start, new_count = match.groups()
    return Hunk(
        header=line,
        old_start=int(old_start),
        old_count=1 if old_count is None else int(old_count),
        new_start=int(new_start),
        new_count=1 if new_count is None else int(new_count),
    )


def _read_hunk_body(hunk, lines, index):
    """Consume body lines until the header's counts are satisfied."""
    old_left = hunk.old_count
    new_left = hunk.new_count

    while index < len(lines) and (old_left > 0 or new_left > 0):
        line = lines[index]
        if line.startswith("\\"):
            index += 1
            continue
        if line.startswith("@@"):
            break
        if line.startswith("-"):
            hunk.lines.append(DiffLine(REMOVED, line[1:]))
            old_left -= 1
        elif line.startswith("+"):
            hunk.lines.append(DiffLine(ADDED, line[1:]))
            new_left -= 1
        elif line.startswith(" ") or line == "":
            # Editors and models often strip the lone space of a blank context line.
            hunk.lines.append(DiffLine(CONTEXT, line[1:]))
            old_left -= 1
            new_left -= 1
        else:
            break
        index += 1

    while index < len(lines) and lines[index] == NO_NEWLINE_MARKER:
        index += 1
    return index


def parse_unified_diff(text):
    """Parse unified diff text into file sections.

    Hunks that appear before any file header are collected into a single
    anonymous section.

    Raises:
        ParamError: On a malformed hunk header
    """
    files = []
    current = None
    lines = text.split("\n")
    index = 0

    while index < len(lines):
        line = lines[index]

        if line.startswith("--- ") and index + 1 < len(lines) and lines[index + 1].startswith("+++ "):
            current = FileDiff(
                old_path=_strip_path(line[4:]),
                new_path=_strip_path(lines[index + 1][4:]),
            )
            files.append(current)
            index += 2
            continue

        if line.startswith("@@"):
            if current is None:
                current = FileDiff()
                files.append(current)
            hunk = _parse_hunk_header(line)
            index = _read_hunk_body(hunk, lines, index + 1)
            current.hunks.append(hunk)
            continue

        index += 1

    return files


def apply_unified_diff(base, file_diff):
    """Replay the hunks of one file section against base.

    Raises:
        PreconditionError: When a context or removed line does not match,
            or when hunks overlap or run past the end of base
    """
    base_lines = base.split("\n")
    result = []
    cursor = 0

    for hunk in file_diff.hunks:
        # A zero-length old range names the line after which to insert.
        start = hunk.old_start - 1 if hunk.old_count > 0 else hunk.old_start
        if start < cursor:
            raise PreconditionError(
                f"hunk {hunk.header} overlaps the previous hunk (line {start + 1})"
            )
        if start > len(base_lines):
            raise PreconditionError(
                f"hunk {hunk.header} starts past the end of the file ({len(base_lines)} lines)"
            )

        result.extend(base_lines[cursor:start])
        cursor = start

        for diff_line in hunk.lines:
            if diff_line.kind == ADDED:
                result.append(diff_line.content)
                continue

            if cursor >= len(base_lines) or base_lines[cursor] != diff_line.content:
                found = base_lines[cursor] if cursor < len(base_lines) else "<end of file>"
                raise PreconditionError(
                    f"context mismatch at line {cursor + 1}: expected {diff_line.content!r}, "
                    f"found {found!r}"
                )
            if diff_line.kind == CONTEXT:
                result.append(diff_line.content)
            cursor += 1

    result.extend(base_lines[cursor:])
    logger.debug("Applied %d hunks", len(file_diff.hunks))
    return "\n".join(result)
