# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Tool registry, invoker and the service bundle tools are built from."""

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..config import Config
from ..diagnostics import DiagnosticsCollector
from ..errors import ParamError, PermissionDenied
from ..history import HistoryService
from ..ledger import FileLedger
from ..permission import PermissionService
from ..session import SessionService
from ..shell import ShellPool
from .agent import AgentTool
from .base import BaseTool, ToolCall, ToolResponse
from .code_search import SourcegraphTool
from .diagnostics import DiagnosticsTool
from .directory_ops import LsTool
from .file_ops import EditTool, ViewTool, WriteTool
from .patch_ops import ApplyPatchTool, PatchTool
from .search import GlobTool, GrepTool
from .shell import BashTool
from .todo import TodoReadTool, TodoWriteTool
from .web import FetchTool
from .web_search import WebSearchTool

logger = logging.getLogger(__name__)

PERMISSION_DENIED_MESSAGE = "permission denied"


@dataclass
class Services:
    """Everything a tool may touch, built once per running agent."""

    working_dir: str
    ledger: FileLedger
    permissions: PermissionService
    history: HistoryService
    sessions: SessionService
    shells: ShellPool
    diagnostics: DiagnosticsCollector | None = None
    config: Config | None = None
    client_factory: Callable | None = None

    @classmethod
    def create(cls, config, client_factory=None, auto_approve=None):
        if auto_approve is None:
            auto_approve = config.auto_approve
        history = HistoryService()
        return cls(
            working_dir=config.working_dir,
            ledger=FileLedger(),
            permissions=PermissionService(config.working_dir, auto_approve=auto_approve),
            history=history,
            sessions=SessionService(history),
            shells=ShellPool(config.shell.path, config.shell.args),
            diagnostics=DiagnosticsCollector(),
            config=config,
            client_factory=client_factory,
        )

    def shutdown(self):
        """Stop every shell and language server."""
        self.shells.close_all()
        if self.diagnostics is not None:
            self.diagnostics.shutdown()


class ToolRegistry:
    """Tools by name, in registration order."""

    def __init__(self, tools=()):
        self._tools: dict[str, BaseTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool):
        name = tool.name
        if name in self._tools:
            raise ValueError(f"tool already registered: {name}")
        self._tools[name] = tool
        return tool

    def get(self, name):
        return self._tools.get(name)

    @property
    def names(self):
        return list(self._tools)

    def definitions(self):
        return [tool.info().to_definition() for tool in self._tools.values()]

    def subset(self, names):
        return ToolRegistry(self._tools[name] for name in names if name in self._tools)

    def __contains__(self, name):
        return name in self._tools

    def __len__(self):
        return len(self._tools)


class ToolInvoker:
    """Dispatch tool calls and convert permission denials.

    With abort_on_denied the PermissionDenied propagates so the caller can
    stop the turn; otherwise the model sees a "permission denied" error.
    ExternalFailure and Cancelled always propagate.
    """

    def __init__(self, registry, abort_on_denied=False):
        self.registry = registry
        self.abort_on_denied = abort_on_denied

    def invoke(self, ctx, call: ToolCall) -> ToolResponse:
        tool = self.registry.get(call.name)
        if tool is None:
            return ToolResponse.error(f"Tool not found: {call.name}")

        start = time.monotonic()
        try:
            response = tool.run(ctx, call)
        except PermissionDenied:
            logger.debug("Tool %s denied after %.3fs", call.name, time.monotonic() - start)
            if self.abort_on_denied:
                raise
            return ToolResponse.error(PERMISSION_DENIED_MESSAGE)

        logger.debug(
            "Tool %s finished in %.3fs (error=%s)",
            call.name, time.monotonic() - start, response.is_error,
        )
        return response

    def invoke_json(self, ctx, payload):
        """Invoke a wire-format call: {"id", "name", "input"} as text or dict."""
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as error:
                raise ParamError(f"invalid tool call: {error}") from error
        if not isinstance(payload, dict) or not payload.get("name"):
            raise ParamError("invalid tool call: expected an object with a name")

        call = ToolCall(
            id=str(payload.get("id", "")),
            name=payload["name"],
            input=payload.get("input", "{}"),
        )
        return self.invoke(ctx, call)


def build_coder_tools(services):
    """The full tool set of the coder agent."""
    return ToolRegistry([
        ViewTool(services),
        LsTool(services),
        GlobTool(services),
        GrepTool(services),
        WriteTool(services),
        EditTool(services),
        PatchTool(services),
        ApplyPatchTool(services),
        BashTool(services),
        FetchTool(services),
        DiagnosticsTool(services),
        TodoWriteTool(services),
        TodoReadTool(services),
        AgentTool(services),
        SourcegraphTool(),
        WebSearchTool(),
    ])


def build_task_tools(services):
    """Read-only tools for sub-agents."""
    return ToolRegistry([
        BashTool(services),
        LsTool(services),
        GlobTool(services),
        ViewTool(services),
    ])
