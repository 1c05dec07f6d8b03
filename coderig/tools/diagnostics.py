# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Diagnostics tool: language-server findings for a file or the project."""

from dataclasses import dataclass

from ..errors import PreconditionError
from .base import BaseTool, ToolInfo, ToolResponse
from .validation import resolve_path


@dataclass
class DiagnosticsParams:
    file_path: str = ""


class DiagnosticsTool(BaseTool):
    params_type = DiagnosticsParams

    def __init__(self, services):
        self.services = services

    def info(self):
        return ToolInfo(
            name="diagnostics",
            description=(
                "Reports errors and warnings from the configured language servers. With "
                "file_path it waits for fresh results for that file; without it the whole "
                "project is reported."
            ),
            parameters={
                "file_path": {"type": "string", "description": "The path to the file to check"},
            },
            required=[],
        )

    def execute(self, ctx, params):
        collector = self.services.diagnostics
        if collector is None or not collector.has_clients:
            raise PreconditionError("no LSP clients available")

        if not params.file_path:
            output = collector.render()
        else:
            path = resolve_path(self.services.working_dir, params.file_path)
            collector.wait_for_diagnostics(ctx, path)
            output = collector.render(path)

        return ToolResponse.text(output or "No diagnostics found")
