# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Agent tool: delegate a read-only research task to a sub-agent."""

import logging
from dataclasses import dataclass

from ..errors import ConfigError, ExternalFailure, ParamError
from .base import BaseTool, ToolInfo, ToolResponse

logger = logging.getLogger(__name__)

TASK_AGENT = "task"


@dataclass
class AgentParams:
    prompt: str


class AgentTool(BaseTool):
    """Run the task agent with the read-only tool set."""

    params_type = AgentParams

    def __init__(self, services):
        self.services = services

    def info(self):
        return ToolInfo(
            name="agent",
            description=(
                "Launches a sub-agent with read-only tools (bash, ls, glob, view) to research "
                "a question, such as finding where something is defined or how a feature works. "
                "The sub-agent starts with no memory of this conversation, so the prompt must "
                "be self-contained. Only its final answer is returned."
            ),
            parameters={
                "prompt": {"type": "string", "description": "The task for the agent to perform"},
            },
            required=["prompt"],
        )

    def _client(self):
        factory = self.services.client_factory
        if factory is None:
            raise ExternalFailure("no model client configured for the task agent")
        try:
            return factory(TASK_AGENT)
        except (ConfigError, ImportError) as error:
            raise ExternalFailure(f"failed to create task agent client: {error}") from error

    def execute(self, ctx, params):
        if not params.prompt.strip():
            raise ParamError("prompt is required")

        # Imported here; both modules import this package
        from ..agent import AgentRunner
        from ..prompts import get_system_prompt
        from .registry import ToolInvoker, build_task_tools

        config = self.services.config
        max_tokens = config.agent(TASK_AGENT).max_tokens if config is not None else None
        registry = build_task_tools(self.services)
        runner = AgentRunner(
            client=self._client(),
            invoker=ToolInvoker(registry),
            tool_definitions=registry.definitions(),
            system_prompt=get_system_prompt(TASK_AGENT, config),
        )
        if max_tokens:
            runner.max_tokens = max_tokens

        result = runner.run(ctx, params.prompt)
        logger.info(
            "Task agent finished in %d iterations (%d in, %d out tokens)",
            result.iterations, result.input_tokens, result.output_tokens,
        )
        return ToolResponse.text(result.content).with_metadata({
            "input_tokens": result.input_tokens,
            "output_tokens": result.output_tokens,
        })
