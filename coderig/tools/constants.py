# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Constants and limits shared by the tools."""

# =============================================================================
# SHELL POLICY
# =============================================================================

# Network fetchers and interactive browsers; rejected before dispatch
BANNED_COMMANDS = [
    "alias",
    "curl",
    "curlie",
    "wget",
    "axel",
    "aria2c",
    "nc",
    "telnet",
    "lynx",
    "w3m",
    "links",
    "httpie",
    "xh",
    "http-prompt",
    "chrome",
    "firefox",
    "safari",
]

# Commands that run without asking for permission
SAFE_READ_ONLY_COMMANDS = [
    "ls", "echo", "pwd", "date", "cal", "uptime", "whoami", "id", "groups",
    "printenv", "which", "type", "whereis", "whatis",
    "uname", "hostname", "df", "du", "free", "ps",

    "git status", "git log", "git diff", "git show", "git branch", "git tag",
    "git remote", "git ls-files", "git ls-remote", "git rev-parse",
    "git config --get", "git config --list", "git describe", "git blame",
    "git grep", "git shortlog",

    "go version", "go help", "go list", "go env", "go doc", "go vet",

    "python --version", "python3 --version", "pip list", "pip show",
    "pip freeze", "pytest --collect-only",
]

DEFAULT_BASH_TIMEOUT_MS = 60 * 1000
MAX_BASH_TIMEOUT_MS = 10 * 60 * 1000

# =============================================================================
# SIZE LIMITS
# =============================================================================

MAX_READ_SIZE = 250 * 1024  # view refuses larger files
DEFAULT_READ_LIMIT = 2000  # lines returned by view
MAX_LINE_LENGTH = 2000  # longer lines are cut
MAX_LS_FILES = 1000
MAX_SEARCH_RESULTS = 100  # glob and grep
MAX_GREP_MATCHES = 200  # python fallback walker
MAX_FETCH_SIZE = 5 * 1024 * 1024
DEFAULT_FETCH_TIMEOUT = 30  # seconds
MAX_FETCH_TIMEOUT = 120  # seconds
MAX_AGENT_ITERATIONS = 25

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".svg", ".webp"}

# =============================================================================
# DIRECTORY WALKING
# =============================================================================

LS_IGNORE_PATTERNS = [
    "node_modules",
    "__pycache__",
    ".git",
    "build",
    "target",
    "dist",
    "vendor",
    "bin",
    "obj",
    ".idea",
    ".vscode",
    "*.pyc",
    "*.o",
    "*.so",
    "*.exe",
    "*.dll",
    "*.class",
]

TRUNCATED_RESULTS_NOTE = "(Results are truncated. Consider using a more specific path or pattern.)"
