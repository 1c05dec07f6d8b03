# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Bash tool: policy checks in front of the persistent shell."""

import logging
import re
import time
from dataclasses import dataclass

from ..errors import ParamError, PreconditionError
from ..shell import MAX_OUTPUT_LENGTH
from .base import BaseTool, ToolInfo, ToolResponse
from .constants import (
    BANNED_COMMANDS,
    DEFAULT_BASH_TIMEOUT_MS,
    MAX_BASH_TIMEOUT_MS,
    SAFE_READ_ONLY_COMMANDS,
)
from .validation import ask_permission

logger = logging.getLogger(__name__)

# Splits a command line into the commands it chains together
COMMAND_SEPARATORS = re.compile(r"&&|\|\||[;|&\n]")


def banned_command(command):
    """Return the first banned program named in command, or None."""
    for segment in COMMAND_SEPARATORS.split(command):
        words = segment.strip().split()
        if words and words[0] in BANNED_COMMANDS:
            return words[0]
    return None


# Chaining, redirection or substitution always needs permission
UNSAFE_SHELL_SYNTAX = re.compile(r"[;&|<>`\n]|\$\(")


def is_safe_read_only(command):
    normalized = command.strip().lower()
    if UNSAFE_SHELL_SYNTAX.search(normalized):
        return False
    for prefix in SAFE_READ_ONLY_COMMANDS:
        if normalized.startswith(prefix):
            rest = normalized[len(prefix):]
            if rest == "" or rest[0] in (" ", "-"):
                return True
    return False


def clamp_timeout(timeout_ms):
    if timeout_ms <= 0:
        return DEFAULT_BASH_TIMEOUT_MS
    return min(timeout_ms, MAX_BASH_TIMEOUT_MS)


def format_result(result):
    output = result.stdout
    stderr = result.stderr.strip("\n") if result.stderr else ""
    if stderr:
        if output and not output.endswith("\n"):
            output += "\n"
        output += stderr
    if result.interrupted:
        output += "\nCommand was aborted before completion"
    elif result.exit_code != 0:
        output += f"\nExit code {result.exit_code}"
    return output if output.strip() else "no output"


@dataclass
class BashParams:
    command: str
    timeout: int = 0


class BashTool(BaseTool):
    """Run a command in the persistent shell for the working directory."""

    params_type = BashParams

    def __init__(self, services):
        self.services = services

    def info(self):
        banned = ", ".join(BANNED_COMMANDS)
        return ToolInfo(
            name="bash",
            description=(
                "Executes a command in a persistent shell session. Working directory, "
                "environment variables and shell state carry over between calls. "
                f"Timeout is in milliseconds (default {DEFAULT_BASH_TIMEOUT_MS}, "
                f"max {MAX_BASH_TIMEOUT_MS}). Output over {MAX_OUTPUT_LENGTH} characters "
                "is truncated in the middle. These commands are not allowed: "
                f"{banned}. Use the fetch tool for network access and the view, ls, "
                "glob and grep tools instead of cat, find and grep."
            ),
            parameters={
                "command": {"type": "string", "description": "The command to execute"},
                "timeout": {
                    "type": "integer",
                    "description": f"Optional timeout in milliseconds (max {MAX_BASH_TIMEOUT_MS})",
                },
            },
            required=["command"],
        )

    def execute(self, ctx, params):
        command = params.command.strip()
        if not command:
            raise ParamError("missing command")

        banned = banned_command(command)
        if banned:
            raise PreconditionError(f"command '{banned}' is not allowed")

        working_dir = self.services.working_dir
        if not is_safe_read_only(command):
            ask_permission(
                self.services, ctx, "bash", "execute", working_dir,
                f"Execute command: {command}",
                {"command": command},
            )

        timeout_ms = clamp_timeout(params.timeout)
        start_time = int(time.time() * 1000)
        result = self.services.shells.exec(ctx, working_dir, command, timeout_ms)
        end_time = int(time.time() * 1000)

        ctx.raise_if_cancelled()

        logger.debug(
            "Command finished in %dms with exit code %d: %s",
            end_time - start_time, result.exit_code, command[:80],
        )
        return ToolResponse.text(format_result(result)).with_metadata({
            "start_time": start_time,
            "end_time": end_time,
            "exit_code": result.exit_code,
            "interrupted": result.interrupted,
        })
