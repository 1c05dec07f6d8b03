# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Model provider clients used by the agent runner.

Every client answers chat() with the same shape:

    {
        "content": [{"type": "text", "text": ...},
                    {"type": "tool_use", "id": ..., "name": ..., "input": {...}}],
        "stop_reason": "...",
        "usage": {"input_tokens": N, "output_tokens": N},
    }
"""

import json
import logging
import random
import time
from abc import ABC, abstractmethod
from functools import wraps

from .config import DEFAULT_MAX_TOKENS, DEFAULT_MODELS
from .errors import ConfigError

# Explicit timeouts; the SDK defaults wait far too long
DEFAULT_TIMEOUT_SECONDS = 120
DEFAULT_CONNECT_TIMEOUT = 10

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 60.0  # seconds
DEFAULT_EXPONENTIAL_BASE = 2

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

logger = logging.getLogger(__name__)


class RetryableError(Exception):
    """Wrapper for errors that should trigger a retry."""

    def __init__(self, original_error, is_rate_limit=False):
        self.original_error = original_error
        self.is_rate_limit = is_rate_limit
        super().__init__(str(original_error))


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    exponential_base: int = DEFAULT_EXPONENTIAL_BASE,
    jitter: bool = True,
) -> float:
    """Calculate delay for exponential backoff with optional jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        exponential_base: Base for exponential calculation
        jitter: Add up to 50% random jitter

    Returns:
        Delay in seconds before next retry
    """
    delay = min(base_delay * (exponential_base ** attempt), max_delay)
    if jitter:
        delay = delay * (1 + random.random() * 0.5)
    return delay


def with_retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    retryable_exceptions: tuple = None,
):
    """Decorator for exponential backoff retry logic.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries
        max_delay: Maximum delay cap
        retryable_exceptions: Tuple of exception types to retry on
    """
    if retryable_exceptions is None:
        retryable_exceptions = (ConnectionError, TimeoutError, RetryableError)

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt >= max_retries:
                        logger.error("All %d retries exhausted: %s", max_retries, e)
                        raise

                    delay = calculate_backoff_delay(attempt, base_delay=base_delay, max_delay=max_delay)
                    # Rate limits get longer delays
                    if isinstance(e, RetryableError) and e.is_rate_limit:
                        delay = delay * 2
                    logger.warning("Retry %d/%d after %.1fs: %s", attempt + 1, max_retries, delay, e)
                    time.sleep(delay)

        return wrapper

    return decorator


RATE_LIMIT_INDICATORS = ("rate_limit", "rate limit", "too many requests", "429", "quota", "throttl")
RETRYABLE_INDICATORS = (
    "timeout",
    "connection",
    "temporary",
    "unavailable",
    "503",
    "502",
    "500",
    "overloaded",
    "capacity",
)


def is_retryable_error(error) -> tuple[bool, bool]:
    """Check if an error is retryable and if it's a rate limit.

    Returns:
        Tuple of (is_retryable, is_rate_limit)
    """
    error_str = str(error).lower()
    error_type = type(error).__name__.lower()

    is_rate_limit = any(indicator in error_str for indicator in RATE_LIMIT_INDICATORS)
    is_retryable = (
        is_rate_limit
        or any(indicator in error_str for indicator in RETRYABLE_INDICATORS)
        or any(indicator in error_type for indicator in ("timeout", "connection"))
    )
    return is_retryable, is_rate_limit


class BaseAPIClient(ABC):
    """Base class for API clients."""

    model = ""

    @abstractmethod
    def chat(self, messages, system_prompt=None, tools=None, max_tokens=DEFAULT_MAX_TOKENS):
        """Send a chat request and return the normalized response."""

    def _call(self, request, **kwargs):
        """Run one SDK request, marking transient failures as retryable."""
        try:
            return request(**kwargs)
        except Exception as e:
            is_retryable, is_rate_limit = is_retryable_error(e)
            if is_retryable:
                raise RetryableError(e, is_rate_limit=is_rate_limit) from e
            raise


class ClaudeClient(BaseAPIClient):
    """Anthropic Claude API client."""

    def __init__(self, api_key, model=DEFAULT_MODELS["anthropic"], timeout=DEFAULT_TIMEOUT_SECONDS):
        try:
            import anthropic
            from anthropic import Timeout
        except ImportError:
            raise ImportError("Install anthropic: pip install anthropic") from None

        self.client = anthropic.Anthropic(
            api_key=api_key,
            timeout=Timeout(timeout, connect=DEFAULT_CONNECT_TIMEOUT),
        )
        self.model = model

    def chat(self, messages, system_prompt=None, tools=None, max_tokens=DEFAULT_MAX_TOKENS):
        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": messages,
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        if tools:
            kwargs["tools"] = tools
        return self._chat_with_retry(**kwargs)

    @with_retry(max_retries=DEFAULT_MAX_RETRIES)
    def _chat_with_retry(self, **kwargs):
        response = self._call(self.client.messages.create, **kwargs)
        return self._parse_response(response)

    def _parse_response(self, response):
        result = {
            "content": [],
            "stop_reason": response.stop_reason,
            "usage": {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        }
        for block in response.content:
            if block.type == "text":
                result["content"].append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                result["content"].append(
                    {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
                )
        return result


class OpenAIClient(BaseAPIClient):
    """OpenAI API client."""

    def __init__(self, api_key, model=DEFAULT_MODELS["openai"], timeout=DEFAULT_TIMEOUT_SECONDS):
        try:
            import openai
        except ImportError:
            raise ImportError("Install openai: pip install openai") from None

        self.client = openai.OpenAI(api_key=api_key, timeout=timeout)
        self.model = model

    def chat(self, messages, system_prompt=None, tools=None, max_tokens=DEFAULT_MAX_TOKENS):
        formatted_messages = []
        if system_prompt:
            formatted_messages.append({"role": "system", "content": system_prompt})

        for msg in messages:
            formatted = self._format_message(msg)
            # Tool results expand into one message per result
            if isinstance(formatted, list):
                formatted_messages.extend(formatted)
            else:
                formatted_messages.append(formatted)

        kwargs = {
            "model": self.model,
            "messages": formatted_messages,
            "max_completion_tokens": max_tokens,
        }
        if tools:
            kwargs["tools"] = self._convert_tools(tools)
        return self._chat_with_retry(**kwargs)

    @with_retry(max_retries=DEFAULT_MAX_RETRIES)
    def _chat_with_retry(self, **kwargs):
        response = self._call(self.client.chat.completions.create, **kwargs)
        return self._parse_response(response)

    def _format_message(self, msg):
        """Convert an Anthropic-shaped message to OpenAI chat format."""
        content = msg["content"]
        if msg["role"] == "user":
            if isinstance(content, str):
                return {"role": "user", "content": content}
            if content and content[0].get("type") == "tool_result":
                return [
                    {
                        "role": "tool",
                        "tool_call_id": item["tool_use_id"],
                        "content": item["content"]
                        if isinstance(item["content"], str)
                        else json.dumps(item["content"]),
                    }
                    for item in content
                ]
            return {"role": "user", "content": json.dumps(content)}

        if msg["role"] == "assistant" and isinstance(content, list):
            text_content = ""
            tool_calls = []
            for block in content:
                if block.get("type") == "text":
                    text_content += block.get("text", "")
                elif block.get("type") == "tool_use":
                    tool_calls.append({
                        "id": block["id"],
                        "type": "function",
                        "function": {"name": block["name"], "arguments": json.dumps(block["input"])},
                    })
            result = {"role": "assistant", "content": text_content or None}
            if tool_calls:
                result["tool_calls"] = tool_calls
            return result

        return msg

    def _convert_tools(self, tools):
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool["description"],
                    "parameters": tool["input_schema"],
                },
            }
            for tool in tools
        ]

    def _parse_response(self, response):
        choice = response.choices[0]
        message = choice.message
        result = {
            "content": [],
            "stop_reason": choice.finish_reason,
            "usage": {
                "input_tokens": response.usage.prompt_tokens,
                "output_tokens": response.usage.completion_tokens,
            },
        }
        if message.content:
            result["content"].append({"type": "text", "text": message.content})
        for tool_call in message.tool_calls or []:
            try:
                arguments = json.loads(tool_call.function.arguments or "{}")
            except json.JSONDecodeError:
                # Pass it through; the tool reports invalid parameters
                arguments = tool_call.function.arguments
            result["content"].append({
                "type": "tool_use",
                "id": tool_call.id,
                "name": tool_call.function.name,
                "input": arguments,
            })
        return result


class OpenRouterClient(OpenAIClient):
    """OpenRouter API client (OpenAI-compatible)."""

    def __init__(self, api_key, model=DEFAULT_MODELS["openrouter"], timeout=DEFAULT_TIMEOUT_SECONDS):
        try:
            import openai
        except ImportError:
            raise ImportError("Install openai: pip install openai") from None

        self.client = openai.OpenAI(
            api_key=api_key,
            base_url=OPENROUTER_BASE_URL,
            timeout=timeout,
            default_headers={"X-Title": "Coderig"},
        )
        self.model = model


CLIENTS = {
    "anthropic": ClaudeClient,
    "openai": OpenAIClient,
    "openrouter": OpenRouterClient,
}


def create_client(provider, api_key, model=None):
    """Create an API client for the specified provider."""
    if provider not in CLIENTS:
        raise ConfigError(f"Unknown provider: {provider}")
    if not api_key:
        raise ConfigError(f"No API key configured for provider {provider}")

    client_class = CLIENTS[provider]
    if model:
        return client_class(api_key, model)
    return client_class(api_key)


def client_factory_for(config):
    """Return a callable building the model client for a named agent."""

    def factory(agent_name):
        agent_config = config.agent(agent_name)
        provider = config.provider_for(agent_config)
        return create_client(provider, config.api_key(provider), agent_config.model)

    return factory
