# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Directory listing rendered as an indented tree."""

import fnmatch
import logging
import os
from dataclasses import dataclass, field

from ..errors import PreconditionError
from .base import BaseTool, ToolInfo, ToolResponse
from .constants import LS_IGNORE_PATTERNS, MAX_LS_FILES

logger = logging.getLogger(__name__)


def should_skip(name, ignore_patterns):
    """Hidden entries, the fixed ignore list and caller globs are skipped."""
    if name.startswith("."):
        return True
    for pattern in LS_IGNORE_PATTERNS:
        if fnmatch.fnmatch(name, pattern):
            return True
    return any(fnmatch.fnmatch(name, pattern) for pattern in ignore_patterns)


def list_directory(root, ignore_patterns=(), max_depth=0, limit=MAX_LS_FILES):
    """Walk root breadth by directory, returning (entries, truncated).

    Entries are paths relative to root; directories end with "/".
    A max_depth of 1 lists only the immediate children; 0 is unlimited.
    """
    entries = []

    for current, dirs, files in os.walk(root):
        rel_dir = os.path.relpath(current, root)
        depth = 0 if rel_dir == "." else rel_dir.count(os.sep) + 1

        dirs[:] = sorted(d for d in dirs if not should_skip(d, ignore_patterns))
        files = sorted(f for f in files if not should_skip(f, ignore_patterns))

        if max_depth and depth + 1 > max_depth:
            dirs[:] = []
            continue

        prefix = "" if rel_dir == "." else rel_dir + "/"
        for name in dirs:
            entries.append(prefix + name + "/")
            if len(entries) >= limit:
                return entries, True
        for name in files:
            entries.append(prefix + name)
            if len(entries) >= limit:
                return entries, True

    return entries, False


def render_tree(root, entries):
    tree = {}
    for entry in entries:
        node = tree
        parts = entry.rstrip("/").split("/")
        for index, part in enumerate(parts):
            is_dir = index < len(parts) - 1 or entry.endswith("/")
            key = part + "/" if is_dir else part
            node = node.setdefault(key, {})

    lines = [f"- {root.rstrip(os.sep)}{os.sep}"]

    def walk(node, level):
        for key in sorted(node):
            lines.append(f"{'  ' * level}- {key}")
            walk(node[key], level + 1)

    walk(tree, 1)
    return "\n".join(lines) + "\n"


@dataclass
class LsParams:
    path: str = ""
    ignore: list[str] = field(default_factory=list)
    max_depth: int = 0


class LsTool(BaseTool):
    """List a directory tree."""

    params_type = LsParams

    def __init__(self, services):
        self.services = services

    def info(self):
        return ToolInfo(
            name="ls",
            description=(
                "Lists files and directories under a path as a tree. Hidden files and common "
                "build or dependency directories are skipped. Use ignore for extra glob patterns "
                f"and max_depth to limit recursion. At most {MAX_LS_FILES} entries are returned."
            ),
            parameters={
                "path": {
                    "type": "string",
                    "description": "The directory to list (defaults to the working directory)",
                },
                "ignore": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Glob patterns to ignore",
                },
                "max_depth": {
                    "type": "integer",
                    "description": "Maximum depth; 1 lists only immediate children",
                },
            },
            required=[],
        )

    def execute(self, ctx, params):
        root = params.path or self.services.working_dir
        if not os.path.isabs(root):
            root = os.path.join(self.services.working_dir, root)
        root = os.path.abspath(os.path.expanduser(root))

        if not os.path.exists(root):
            raise PreconditionError(f"path does not exist: {root}")
        if not os.path.isdir(root):
            raise PreconditionError(f"path is not a directory: {root}")

        entries, truncated = list_directory(root, params.ignore, max(params.max_depth, 0))
        output = render_tree(root, entries)
        if truncated:
            output = (
                f"There are more than {MAX_LS_FILES} files in the directory. Use a more specific "
                f"path or use the Glob tool to find specific files. The first {MAX_LS_FILES} "
                f"files and directories are included below:\n\n{output}"
            )
        logger.debug("Listed %d entries under %s", len(entries), root)

        return ToolResponse.text(output).with_metadata({
            "number_of_files": len(entries),
            "truncated": truncated,
        })
