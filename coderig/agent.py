# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Agent loop: model turn, tool calls, tool results, repeat.

The loop ends when the model answers without tool calls or the iteration
limit is reached. Model-visible tool errors are fed back; permission
denials are fed back unless the invoker aborts on them; infrastructure
failures and cancellation end the run.
"""

import json
import logging
from dataclasses import dataclass

from .config import DEFAULT_MAX_TOKENS
from .errors import CoderigError, ExternalFailure
from .tools.base import ToolCall
from .tools.constants import MAX_AGENT_ITERATIONS

logger = logging.getLogger(__name__)


@dataclass
class AgentResult:
    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    iterations: int = 0


def extract_text(response):
    """Concatenated text blocks of a model response."""
    return "\n".join(
        block.get("text", "") for block in response.get("content", []) if block.get("type") == "text"
    )


def tool_use_blocks(response):
    return [block for block in response.get("content", []) if block.get("type") == "tool_use"]


def tool_result_block(block, envelope):
    content = envelope.content
    if not isinstance(content, str):
        content = json.dumps(content)
    return {
        "type": "tool_result",
        "tool_use_id": block.get("id", ""),
        "content": content,
        "is_error": envelope.is_error,
    }


class AgentRunner:
    """Drive one model through the tool loop."""

    def __init__(
        self,
        client,
        invoker,
        tool_definitions,
        system_prompt=None,
        max_iterations=MAX_AGENT_ITERATIONS,
        max_tokens=DEFAULT_MAX_TOKENS,
    ):
        self.client = client
        self.invoker = invoker
        self.tool_definitions = tool_definitions
        self.system_prompt = system_prompt
        self.max_iterations = max_iterations
        self.max_tokens = max_tokens

    def _chat(self, messages):
        try:
            return self.client.chat(
                messages,
                system_prompt=self.system_prompt,
                tools=self.tool_definitions or None,
                max_tokens=self.max_tokens,
            )
        except CoderigError:
            raise
        except Exception as error:
            raise ExternalFailure(f"model request failed: {error}") from error

    def run(self, ctx, prompt) -> AgentResult:
        """Run the loop for a single user prompt.

        Raises:
            ExternalFailure: If the model or a tool fails
            Cancelled: If ctx is cancelled
            PermissionDenied: If the invoker aborts on a denial
        """
        messages = [{"role": "user", "content": prompt}]
        result = AgentResult(content="")

        for iteration in range(1, self.max_iterations + 1):
            ctx.raise_if_cancelled()
            response = self._chat(messages)
            result.iterations = iteration

            usage = response.get("usage") or {}
            result.input_tokens += usage.get("input_tokens", 0) or 0
            result.output_tokens += usage.get("output_tokens", 0) or 0
            result.content = extract_text(response)

            blocks = tool_use_blocks(response)
            if not blocks:
                return result

            messages.append({"role": "assistant", "content": response.get("content", [])})
            results = []
            for block in blocks:
                call = ToolCall(id=block.get("id", ""), name=block.get("name", ""), input=block.get("input", {}))
                logger.debug("Agent iteration %d calling %s", iteration, call.name)
                envelope = self.invoker.invoke(ctx.with_values(message_id=call.id), call)
                results.append(tool_result_block(block, envelope))
            messages.append({"role": "user", "content": results})

        logger.warning("Agent stopped after %d iterations", self.max_iterations)
        result.content += (
            f"\n\n[WARNING: Agent hit max iterations ({self.max_iterations}). Response may be incomplete.]"
        )
        return result
