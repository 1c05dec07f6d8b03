# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""File extension to LSP language identifier."""

import os

LANGUAGE_IDS = {
    ".bat": "bat",
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".cxx": "cpp",
    ".c++": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".css": "css",
    ".clj": "clojure",
    ".dart": "dart",
    ".diff": "diff",
    ".patch": "diff",
    ".dockerfile": "dockerfile",
    ".ex": "elixir",
    ".exs": "elixir",
    ".erl": "erlang",
    ".hrl": "erlang",
    ".fs": "fsharp",
    ".fsx": "fsharp",
    ".go": "go",
    ".groovy": "groovy",
    ".hs": "haskell",
    ".html": "html",
    ".htm": "html",
    ".ini": "ini",
    ".java": "java",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascriptreact",
    ".json": "json",
    ".kt": "kotlin",
    ".tex": "latex",
    ".less": "less",
    ".lua": "lua",
    ".md": "markdown",
    ".markdown": "markdown",
    ".m": "objective-c",
    ".mm": "objective-cpp",
    ".pl": "perl",
    ".pm": "perl",
    ".php": "php",
    ".ps1": "powershell",
    ".py": "python",
    ".pyi": "python",
    ".r": "r",
    ".rb": "ruby",
    ".rs": "rust",
    ".scss": "scss",
    ".sass": "sass",
    ".scala": "scala",
    ".sh": "shellscript",
    ".bash": "shellscript",
    ".zsh": "shellscript",
    ".sql": "sql",
    ".swift": "swift",
    ".toml": "toml",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".xml": "xml",
    ".yaml": "yaml",
    ".yml": "yaml",
}

SPECIAL_NAMES = {
    "makefile": "makefile",
    "dockerfile": "dockerfile",
}


def detect_language_id(path):
    """Language id for path, or "" when unknown."""
    name = os.path.basename(path).lower()
    if name in SPECIAL_NAMES:
        return SPECIAL_NAMES[name]
    _, ext = os.path.splitext(name)
    return LANGUAGE_IDS.get(ext, "")
