# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Search tools: glob and grep.

Glob patterns use doublestar semantics: ** crosses directories, * and ?
stay inside one path segment, {a,b} alternates and [...] is a class.
"""

import logging
import os
import re
import shutil
import subprocess
from dataclasses import dataclass

from ..errors import ParamError, PreconditionError
from .base import BaseTool, ToolInfo, ToolResponse
from .constants import MAX_GREP_MATCHES, MAX_SEARCH_RESULTS, TRUNCATED_RESULTS_NOTE

logger = logging.getLogger(__name__)


def _split_alternatives(body):
    """Split the inside of {...} on top-level commas."""
    parts = []
    depth = 0
    current = ""
    for char in body:
        if char == "," and depth == 0:
            parts.append(current)
            current = ""
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
        current += char
    parts.append(current)
    return parts


def _translate(pattern):
    out = ""
    index = 0
    length = len(pattern)
    while index < length:
        char = pattern[index]
        if char == "*":
            if pattern.startswith("**", index):
                index += 2
                if index < length and pattern[index] == "/":
                    index += 1
                    out += "(?:.*/)?"
                else:
                    out += ".*"
                continue
            out += "[^/]*"
        elif char == "?":
            out += "[^/]"
        elif char == "[":
            end = pattern.find("]", index + 1)
            if end == -1:
                out += re.escape(char)
            else:
                body = pattern[index + 1:end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out += f"[{body}]"
                index = end
        elif char == "{":
            depth = 0
            end = -1
            for position in range(index, length):
                if pattern[position] == "{":
                    depth += 1
                elif pattern[position] == "}":
                    depth -= 1
                    if depth == 0:
                        end = position
                        break
            if end == -1:
                out += re.escape(char)
            else:
                options = _split_alternatives(pattern[index + 1:end])
                out += "(?:" + "|".join(_translate(option) for option in options) + ")"
                index = end
        else:
            out += re.escape(char)
        index += 1
    return out


def glob_to_regex(pattern):
    """Compile a doublestar glob into an anchored regex over "/" paths."""
    return re.compile("^" + _translate(pattern) + "$")


def _is_hidden(rel_path):
    return any(part.startswith(".") for part in rel_path.split("/"))


def _resolve_root(working_dir, path):
    root = path or working_dir
    if not os.path.isabs(root):
        root = os.path.join(working_dir, root)
    root = os.path.abspath(os.path.expanduser(root))
    if not os.path.isdir(root):
        raise PreconditionError(f"path does not exist or is not a directory: {root}")
    return root


def _mtime(path):
    try:
        return os.path.getmtime(path)
    except OSError:
        return 0.0


def glob_files(root, pattern, limit=MAX_SEARCH_RESULTS):
    """Files under root matching pattern, newest first.

    Returns:
        Tuple of (absolute paths, truncated)
    """
    regex = glob_to_regex(pattern)
    matches = []
    for current, dirs, files in os.walk(root):
        dirs[:] = [d for d in dirs if not d.startswith(".")]
        for name in files:
            full = os.path.join(current, name)
            rel_path = os.path.relpath(full, root).replace(os.sep, "/")
            if _is_hidden(rel_path):
                continue
            if regex.match(rel_path):
                matches.append(full)

    matches.sort(key=_mtime, reverse=True)
    return matches[:limit], len(matches) > limit


@dataclass
class GlobParams:
    pattern: str
    path: str = ""


class GlobTool(BaseTool):
    """Find files by name pattern."""

    params_type = GlobParams

    def __init__(self, services):
        self.services = services

    def info(self):
        return ToolInfo(
            name="glob",
            description=(
                "Finds files by glob pattern such as '**/*.py' or 'src/**/*.{ts,tsx}'. "
                "Returns absolute paths sorted by modification time, newest first, "
                f"at most {MAX_SEARCH_RESULTS}."
            ),
            parameters={
                "pattern": {"type": "string", "description": "The glob pattern to match files against"},
                "path": {
                    "type": "string",
                    "description": "The directory to search in (defaults to the working directory)",
                },
            },
            required=["pattern"],
        )

    def execute(self, ctx, params):
        if not params.pattern:
            raise ParamError("pattern is required")
        root = _resolve_root(self.services.working_dir, params.path)

        files, truncated = glob_files(root, params.pattern)
        if not files:
            output = "No files found"
        else:
            output = "\n".join(files)
            if truncated:
                output += "\n\n" + TRUNCATED_RESULTS_NOTE

        return ToolResponse.text(output).with_metadata({
            "number_of_files": len(files),
            "truncated": truncated,
        })


# =============================================================================
# GREP
# =============================================================================


@dataclass
class GrepMatch:
    path: str
    line_num: int
    line_text: str
    mod_time: float = 0.0


def _include_matcher(include):
    if not include:
        return None
    regex = glob_to_regex(include)
    if "/" in include:
        return lambda rel_path: bool(regex.match(rel_path))
    return lambda rel_path: bool(regex.match(rel_path.rsplit("/", 1)[-1]))


def search_with_ripgrep(root, pattern, include="", literal=False):
    """Run rg; returns matches, or None when rg is unavailable or failed."""
    rg = shutil.which("rg")
    if not rg:
        return None

    args = [rg, "-n", "--no-heading", "--with-filename"]
    if literal:
        args.append("-F")
    if include:
        args.extend(["--glob", include])
    args.extend(["--", pattern, root])

    try:
        completed = subprocess.run(args, capture_output=True, text=True, errors="replace", check=False)
    except OSError as error:
        logger.warning("ripgrep failed to start: %s", error)
        return None

    if completed.returncode == 1:
        return []
    if completed.returncode != 0:
        logger.debug("ripgrep exited with %d: %s", completed.returncode, completed.stderr.strip())
        return None

    matches = []
    for line in completed.stdout.splitlines():
        parts = line.split(":", 2)
        if len(parts) < 3 or not parts[1].isdigit():
            continue
        path, line_num, text = parts
        matches.append(GrepMatch(path, int(line_num), text, _mtime(path)))
    return matches


def search_with_python(root, pattern, include="", literal=False, limit=MAX_GREP_MATCHES):
    """Walk root and record the first matching line of each file."""
    try:
        regex = re.compile(re.escape(pattern) if literal else pattern)
    except re.error as error:
        raise ParamError(f"invalid regex pattern: {error}") from error

    matches_include = _include_matcher(include)
    matches = []
    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if not d.startswith("."))
        for name in sorted(files):
            if name.startswith("."):
                continue
            full = os.path.join(current, name)
            rel_path = os.path.relpath(full, root).replace(os.sep, "/")
            if matches_include and not matches_include(rel_path):
                continue
            try:
                with open(full, encoding="utf-8", errors="ignore") as handle:
                    for line_num, line in enumerate(handle, 1):
                        line = line.rstrip("\n")
                        if regex.search(line):
                            matches.append(GrepMatch(full, line_num, line, _mtime(full)))
                            break
            except OSError as error:
                logger.debug("Skipping unreadable file %s: %s", full, error)
                continue
            if len(matches) >= limit:
                return matches
    return matches


def format_matches(matches, truncated):
    if not matches:
        return "No files found"

    output = f"Found {len(matches)} matches\n"
    current_file = ""
    for match in matches:
        if match.path != current_file:
            if current_file:
                output += "\n"
            current_file = match.path
            output += f"{match.path}:\n"
        output += f"  Line {match.line_num}: {match.line_text}\n"
    if truncated:
        output += "\n" + TRUNCATED_RESULTS_NOTE
    return output


@dataclass
class GrepParams:
    pattern: str
    path: str = ""
    include: str = ""
    literal_text: bool = False


class GrepTool(BaseTool):
    """Search file contents by regex or literal text."""

    params_type = GrepParams

    def __init__(self, services):
        self.services = services

    def info(self):
        return ToolInfo(
            name="grep",
            description=(
                "Searches file contents for a regular expression (or literal text when "
                "literal_text is true). Use include to filter files, e.g. '*.py' or '*.{ts,tsx}'. "
                "Results are grouped by file, newest files first, "
                f"at most {MAX_SEARCH_RESULTS} matches."
            ),
            parameters={
                "pattern": {"type": "string", "description": "The pattern to search for"},
                "path": {
                    "type": "string",
                    "description": "The directory to search in (defaults to the working directory)",
                },
                "include": {"type": "string", "description": "File pattern to include in the search"},
                "literal_text": {
                    "type": "boolean",
                    "description": "Treat the pattern as literal text instead of a regex",
                },
            },
            required=["pattern"],
        )

    def execute(self, ctx, params):
        if not params.pattern:
            raise ParamError("pattern is required")
        root = _resolve_root(self.services.working_dir, params.path)

        matches = search_with_ripgrep(root, params.pattern, params.include, params.literal_text)
        if matches is None:
            matches = search_with_python(root, params.pattern, params.include, params.literal_text)
        ctx.raise_if_cancelled()

        # Newest files first; lines stay in file order
        matches.sort(key=lambda match: (-match.mod_time, match.path, match.line_num))
        truncated = len(matches) > MAX_SEARCH_RESULTS
        matches = matches[:MAX_SEARCH_RESULTS]

        return ToolResponse.text(format_matches(matches, truncated)).with_metadata({
            "number_of_matches": len(matches),
            "truncated": truncated,
        })
