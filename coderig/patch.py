# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Multi-file patch format.

Format:
    *** Begin Patch
    *** Update File: /abs/path/to/file.py
    *** Move to: /abs/path/to/renamed.py      (optional)
    @@ def some_function():
     unchanged line
    -old line
    +new line
    *** Add File: /abs/path/to/new_file.py
    +entire content
    *** Delete File: /abs/path/to/delete_me.py
    *** End Patch

Parsing needs the current contents of every updated or deleted file and
produces a Patch plus a fuzz score (0 means every context block matched
exactly). patch_to_commit turns a Patch into a Commit of whole-file changes
that apply_commit writes through caller-supplied functions.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from .errors import DiffError

logger = logging.getLogger(__name__)

BEGIN_PATCH = "*** Begin Patch"
END_PATCH = "*** End Patch"
UPDATE_FILE = "*** Update File: "
DELETE_FILE = "*** Delete File: "
ADD_FILE = "*** Add File: "
MOVE_TO = "*** Move to: "
END_OF_FILE = "*** End of File"

EOF_FALLBACK_FUZZ = 10000


class ActionType(str, Enum):
    ADD = "add"
    DELETE = "delete"
    UPDATE = "update"


@dataclass
class Chunk:
    orig_index: int
    del_lines: list[str] = field(default_factory=list)
    ins_lines: list[str] = field(default_factory=list)


@dataclass
class PatchAction:
    type: ActionType
    new_file: str | None = None
    chunks: list[Chunk] = field(default_factory=list)
    move_path: str | None = None


@dataclass
class Patch:
    actions: dict[str, PatchAction] = field(default_factory=dict)


@dataclass
class FileChange:
    type: ActionType
    old_content: str | None = None
    new_content: str | None = None
    move_path: str | None = None


@dataclass
class Commit:
    changes: dict[str, FileChange] = field(default_factory=dict)


def file_error(action, reason, path):
    return DiffError(f"{action} File Error: {reason}: {path}")


def context_error(index, context, is_eof):
    prefix = "Invalid EOF Context" if is_eof else "Invalid Context"
    return DiffError(f"{prefix} {index}:\n{context}")


# Context matching


def _match_at(lines, context, start, same):
    for i in range(start, len(lines) - len(context) + 1):
        if all(same(lines[i + j], context[j]) for j in range(len(context))):
            return i
    return -1


MATCHERS = (
    (0, lambda a, b: a == b),
    (1, lambda a, b: a.rstrip(" \t") == b.rstrip(" \t")),
    (100, lambda a, b: a.strip() == b.strip()),
)


def _find_context_core(lines, context, start):
    if not context:
        return start, 0
    for fuzz, same in MATCHERS:
        index = _match_at(lines, context, max(start, 0), same)
        if index >= 0:
            return index, fuzz
    return -1, 0


def find_context(lines, context, start, eof):
    """Locate context in lines at or after start.

    Returns:
        Tuple of (index, fuzz); index is -1 when there is no match.
        An end-of-file anchored block is tried against the tail first.
    """
    if eof:
        index, fuzz = _find_context_core(lines, context, len(lines) - len(context))
        if index != -1:
            return index, fuzz
        index, fuzz = _find_context_core(lines, context, start)
        return index, fuzz + EOF_FALLBACK_FUZZ
    return _find_context_core(lines, context, start)


def _ends_section(line):
    return line.startswith("@@") or line.startswith("***")


def peek_next_section(lines, initial_index):
    """Read one context block of an update.

    Returns:
        Tuple of (old context lines, chunks relative to the block, index of
        the next unread line, whether the block is anchored at end of file)
    """
    index = initial_index
    old = []
    del_lines = []
    ins_lines = []
    chunks = []
    mode = "keep"

    while index < len(lines):
        line = lines[index]
        if _ends_section(line):
            break
        index += 1
        last_mode = mode

        if line.startswith("+"):
            mode = "add"
        elif line.startswith("-"):
            mode = "delete"
        else:
            mode = "keep"
            if not line.startswith(" "):
                line = " " + line
        line = line[1:]

        if mode == "keep" and last_mode != mode:
            if ins_lines or del_lines:
                chunks.append(Chunk(len(old) - len(del_lines), del_lines, ins_lines))
            del_lines = []
            ins_lines = []

        if mode == "delete":
            del_lines.append(line)
            old.append(line)
        elif mode == "add":
            ins_lines.append(line)
        else:
            old.append(line)

    if ins_lines or del_lines:
        chunks.append(Chunk(len(old) - len(del_lines), del_lines, ins_lines))

    if index < len(lines) and lines[index] == END_OF_FILE:
        return old, chunks, index + 1, True
    return old, chunks, index, False


class Parser:
    """Walks patch lines and builds a Patch against the current files."""

    def __init__(self, current_files, lines):
        self.current_files = current_files
        self.lines = lines
        self.index = 0
        self.patch = Patch()
        self.fuzz = 0

    def _is_done(self, prefixes):
        if self.index >= len(self.lines):
            return True
        return self.lines[self.index].startswith(tuple(prefixes))

    def _read(self, prefix):
        """Consume the current line if it starts with prefix; return the rest."""
        if self.index >= len(self.lines):
            return ""
        line = self.lines[self.index]
        if line.startswith(prefix):
            self.index += 1
            return line[len(prefix):]
        return ""

    def parse(self):
        while not self._is_done([END_PATCH]):
            path = self._read(UPDATE_FILE)
            if path:
                if path in self.patch.actions:
                    raise file_error("Update", "Duplicate Path", path)
                move_to = self._read(MOVE_TO)
                if path not in self.current_files:
                    raise file_error("Update", "Missing File", path)
                action = self._parse_update_file(self.current_files[path])
                if move_to:
                    action.move_path = move_to
                self.patch.actions[path] = action
                continue

            path = self._read(DELETE_FILE)
            if path:
                if path in self.patch.actions:
                    raise file_error("Delete", "Duplicate Path", path)
                if path not in self.current_files:
                    raise file_error("Delete", "Missing File", path)
                self.patch.actions[path] = PatchAction(ActionType.DELETE)
                continue

            path = self._read(ADD_FILE)
            if path:
                if path in self.patch.actions:
                    raise file_error("Add", "Duplicate Path", path)
                if path in self.current_files:
                    raise file_error("Add", "File already exists", path)
                self.patch.actions[path] = self._parse_add_file()
                continue

            raise DiffError(f"Unknown Line: {self.lines[self.index]}")

        if self.index >= len(self.lines) or not self.lines[self.index].startswith(END_PATCH):
            raise DiffError("Missing End Patch")
        self.index += 1

    def _seek_def_line(self, file_lines, def_line, index):
        """Move past an `@@ <line>` anchor; returns the new index."""
        if def_line in file_lines[:index]:
            return index
        for i in range(index, len(file_lines)):
            if file_lines[i] == def_line:
                return i + 1

        stripped = def_line.strip()
        if any(line.strip() == stripped for line in file_lines[:index]):
            return index
        for i in range(index, len(file_lines)):
            if file_lines[i].strip() == stripped:
                self.fuzz += 1
                return i + 1
        return index

    def _parse_update_file(self, text):
        action = PatchAction(ActionType.UPDATE)
        file_lines = text.split("\n")
        index = 0
        end_prefixes = [END_PATCH, UPDATE_FILE.strip(), DELETE_FILE.strip(), ADD_FILE.strip(), END_OF_FILE]

        while not self._is_done(end_prefixes):
            def_line = self._read("@@ ")
            bare_section = False
            if not def_line and self.index < len(self.lines) and self.lines[self.index] == "@@":
                bare_section = True
                self.index += 1
            if not def_line and not bare_section and index != 0:
                raise DiffError(f"Invalid Line:\n{self.lines[self.index]}")
            if def_line.strip():
                index = self._seek_def_line(file_lines, def_line, index)

            context, chunks, end_index, eof = peek_next_section(self.lines, self.index)
            new_index, fuzz = find_context(file_lines, context, index, eof)
            if new_index == -1:
                raise context_error(index, "\n".join(context), eof)
            self.fuzz += fuzz

            for chunk in chunks:
                chunk.orig_index += new_index
                action.chunks.append(chunk)
            index = new_index + len(context)
            self.index = end_index

        return action

    def _parse_add_file(self):
        lines = []
        end_prefixes = [END_PATCH, UPDATE_FILE.strip(), DELETE_FILE.strip(), ADD_FILE.strip()]

        while not self._is_done(end_prefixes):
            line = self.lines[self.index]
            self.index += 1
            if not line.startswith("+"):
                raise DiffError(f"Invalid Add File Line: {line}")
            lines.append(line[1:])

        return PatchAction(ActionType.ADD, new_file="\n".join(lines))


def text_to_patch(text, orig):
    """Parse patch text against the original file contents.

    Args:
        text: Patch text from *** Begin Patch to *** End Patch
        orig: Mapping of path to current content for updated/deleted files

    Returns:
        Tuple of (Patch, fuzz)

    Raises:
        DiffError: If the text is not a well-formed patch
    """
    lines = text.strip().split("\n")
    if len(lines) < 2 or not lines[0].startswith(BEGIN_PATCH) or lines[-1] != END_PATCH:
        raise DiffError("Invalid patch text")

    parser = Parser(orig, lines)
    parser.index = 1
    parser.parse()
    return parser.patch, parser.fuzz


def _paths_with_prefix(text, prefixes):
    found = []
    for line in text.strip().split("\n"):
        for prefix in prefixes:
            if line.startswith(prefix):
                path = line[len(prefix):]
                if path not in found:
                    found.append(path)
    return found


def identify_files_needed(text):
    """Paths the patch updates or deletes (their contents must be loaded)."""
    return _paths_with_prefix(text, (UPDATE_FILE, DELETE_FILE))


def identify_files_added(text):
    return _paths_with_prefix(text, (ADD_FILE,))


def load_files(paths, open_fn):
    """Read every path through open_fn into a path -> content mapping."""
    orig = {}
    for path in paths:
        try:
            orig[path] = open_fn(path)
        except OSError as error:
            raise file_error("Open", "File not found", path) from error
    return orig


def get_updated_file(text, action, path):
    """Apply an update action's chunks to text."""
    if action.type != ActionType.UPDATE:
        raise DiffError("expected UPDATE action")

    orig_lines = text.split("\n")
    dest_lines = []
    orig_index = 0

    for chunk in action.chunks:
        if chunk.orig_index > len(orig_lines):
            raise DiffError(
                f"{path}: chunk.orig_index {chunk.orig_index} > len(lines) {len(orig_lines)}"
            )
        if orig_index > chunk.orig_index:
            raise DiffError(
                f"{path}: orig_index {orig_index} > chunk.orig_index {chunk.orig_index}"
            )
        dest_lines.extend(orig_lines[orig_index:chunk.orig_index])
        orig_index = chunk.orig_index
        dest_lines.extend(chunk.ins_lines)
        orig_index += len(chunk.del_lines)

    dest_lines.extend(orig_lines[orig_index:])
    return "\n".join(dest_lines)


def patch_to_commit(patch, orig):
    """Turn parsed actions into whole-file changes."""
    commit = Commit()
    for path, action in patch.actions.items():
        if action.type == ActionType.DELETE:
            commit.changes[path] = FileChange(ActionType.DELETE, old_content=orig[path])
        elif action.type == ActionType.ADD:
            commit.changes[path] = FileChange(ActionType.ADD, new_content=action.new_file)
        else:
            commit.changes[path] = FileChange(
                ActionType.UPDATE,
                old_content=orig[path],
                new_content=get_updated_file(orig[path], action, path),
                move_path=action.move_path,
            )
    return commit


def assemble_changes(orig, updated_files):
    """Build a Commit from before/after contents; empty content means delete."""
    commit = Commit()
    for path, new_content in updated_files.items():
        exists = path in orig
        old_content = orig.get(path)
        if exists and old_content == new_content:
            continue
        if exists and new_content:
            commit.changes[path] = FileChange(ActionType.UPDATE, old_content, new_content)
        elif new_content:
            commit.changes[path] = FileChange(ActionType.ADD, new_content=new_content)
        elif exists:
            commit.changes[path] = FileChange(ActionType.DELETE, old_content=old_content)
    return commit


def apply_commit(commit, write_fn, remove_fn, on_applied=None):
    """Write every change through write_fn(path, content) / remove_fn(path).

    on_applied(path, change) runs as soon as a change is on disk. Stops at
    the first failing write; earlier changes stay applied.
    """
    for path, change in commit.changes.items():
        if change.type == ActionType.DELETE:
            remove_fn(path)
        elif change.new_content is None:
            raise DiffError(f"{change.type.value.capitalize()} action for {path} has no new content")
        elif change.type == ActionType.UPDATE and change.move_path:
            write_fn(change.move_path, change.new_content)
            remove_fn(path)
        else:
            write_fn(path, change.new_content)
        logger.debug("Applied %s to %s", change.type.value, path)
        if on_applied is not None:
            on_applied(path, change)


def validate_patch(text, files):
    """Dry-run a patch against in-memory files.

    Returns:
        Tuple of (ok, message)
    """
    if not text.startswith(BEGIN_PATCH):
        return False, "Patch must start with *** Begin Patch"

    for path in identify_files_needed(text):
        if path not in files:
            return False, f"File not found: {path}"

    try:
        patch, fuzz = text_to_patch(text, files)
        if fuzz > 0:
            return False, f"Patch contains fuzzy matches (fuzz level: {fuzz})"
        patch_to_commit(patch, files)
    except DiffError as error:
        return False, str(error)

    return True, "Patch is valid"
