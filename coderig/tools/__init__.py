# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Coderig tools package.

Modules:
- base: Tool contract, responses and parameter decoding
- constants: Limits and shell policy lists
- validation: Path resolution and guarded-write checks
- file_ops: view, write, edit
- patch_ops: patch, apply_patch
- directory_ops: ls
- search: glob, grep
- shell: bash
- web: fetch
- code_search: sourcegraph
- web_search: web_search
- diagnostics: diagnostics
- todo: todo_write, todo_read
- agent: agent (sub-agent)
- registry: ToolRegistry, ToolInvoker, Services
"""

from .base import BaseTool, ToolCall, ToolInfo, ToolResponse, decode_params
from .registry import (
    Services,
    ToolInvoker,
    ToolRegistry,
    build_coder_tools,
    build_task_tools,
)

__all__ = [
    "BaseTool",
    "ToolCall",
    "ToolInfo",
    "ToolResponse",
    "decode_params",
    "Services",
    "ToolInvoker",
    "ToolRegistry",
    "build_coder_tools",
    "build_task_tools",
]
