"""Tests for the model clients: retry logic, message conversion, factories."""

from types import SimpleNamespace

import pytest

from coderig import api_client
from coderig.api_client import (
    ClaudeClient,
    OpenAIClient,
    RetryableError,
    calculate_backoff_delay,
    client_factory_for,
    create_client,
    is_retryable_error,
    with_retry,
)
from coderig.config import load_config
from coderig.errors import ConfigError


class TestCalculateBackoffDelay:
    """Tests for exponential backoff calculation."""

    def test_exponential_growth(self):
        """Delays should grow exponentially."""
        delays = [calculate_backoff_delay(i, base_delay=1.0, jitter=False) for i in range(5)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_max_delay_cap(self):
        assert calculate_backoff_delay(10, base_delay=1.0, max_delay=30.0, jitter=False) == 30.0

    def test_jitter_bounds(self):
        delays = [calculate_backoff_delay(0, base_delay=1.0) for _ in range(50)]
        assert all(1.0 <= d <= 1.5 for d in delays)


class TestIsRetryableError:
    """Tests for error classification."""

    @pytest.mark.parametrize("message", ["rate_limit_exceeded", "Too Many Requests", "Error 429", "throttled"])
    def test_rate_limits(self, message):
        assert is_retryable_error(Exception(message)) == (True, True)

    @pytest.mark.parametrize("error", [
        ConnectionError("refused"),
        TimeoutError("timed out"),
        Exception("503 Service Unavailable"),
        Exception("Service overloaded"),
    ])
    def test_transient(self, error):
        assert is_retryable_error(error) == (True, False)

    @pytest.mark.parametrize("message", ["Invalid API key", "Bad request: missing parameter"])
    def test_client_errors(self, message):
        assert is_retryable_error(Exception(message)) == (False, False)


class TestWithRetryDecorator:
    """Tests for the @with_retry decorator."""

    def test_retry_until_success(self):
        calls = []

        @with_retry(max_retries=3, base_delay=0.01)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise RetryableError(Exception("Temporary failure"))
            return "success"

        assert flaky() == "success"
        assert len(calls) == 3

    def test_max_retries_exceeded(self):
        calls = []

        @with_retry(max_retries=2, base_delay=0.01)
        def always_fails():
            calls.append(1)
            raise RetryableError(Exception("Always fails"))

        with pytest.raises(RetryableError):
            always_fails()
        assert len(calls) == 3

    def test_non_retryable_error_propagates(self):
        calls = []

        @with_retry(max_retries=3)
        def broken():
            calls.append(1)
            raise ValueError("Not retryable")

        with pytest.raises(ValueError):
            broken()
        assert len(calls) == 1

    def test_call_marks_transient_failures(self):
        client = object.__new__(OpenAIClient)

        def request(**kwargs):
            raise Exception("503 Service Unavailable")

        with pytest.raises(RetryableError):
            client._call(request)


def bare_openai_client():
    """An OpenAIClient without an SDK connection, for conversion tests."""
    client = object.__new__(OpenAIClient)
    client.model = "gpt-test"
    return client


class TestOpenAIConversion:
    """Anthropic-shaped messages to chat completions and back."""

    def test_tool_results_expand(self):
        message = {
            "role": "user",
            "content": [
                {"type": "tool_result", "tool_use_id": "a", "content": "one", "is_error": False},
                {"type": "tool_result", "tool_use_id": "b", "content": "two", "is_error": True},
            ],
        }
        assert bare_openai_client()._format_message(message) == [
            {"role": "tool", "tool_call_id": "a", "content": "one"},
            {"role": "tool", "tool_call_id": "b", "content": "two"},
        ]

    def test_assistant_tool_calls(self):
        message = {
            "role": "assistant",
            "content": [
                {"type": "text", "text": "Looking."},
                {"type": "tool_use", "id": "c1", "name": "view", "input": {"file_path": "a.py"}},
            ],
        }
        formatted = bare_openai_client()._format_message(message)
        assert formatted["content"] == "Looking."
        assert formatted["tool_calls"][0]["function"] == {
            "name": "view",
            "arguments": '{"file_path": "a.py"}',
        }

    def test_convert_tools(self):
        definition = {"name": "ls", "description": "List.", "input_schema": {"type": "object"}}
        assert bare_openai_client()._convert_tools([definition]) == [{
            "type": "function",
            "function": {"name": "ls", "description": "List.", "parameters": {"type": "object"}},
        }]

    def test_parse_response(self):
        tool_call = SimpleNamespace(
            id="c1",
            function=SimpleNamespace(name="grep", arguments='{"pattern": "x"}'),
        )
        response = SimpleNamespace(
            choices=[SimpleNamespace(
                finish_reason="tool_calls",
                message=SimpleNamespace(content=None, tool_calls=[tool_call]),
            )],
            usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3),
        )
        parsed = bare_openai_client()._parse_response(response)
        assert parsed["content"] == [{"type": "tool_use", "id": "c1", "name": "grep", "input": {"pattern": "x"}}]
        assert parsed["usage"] == {"input_tokens": 12, "output_tokens": 3}

    def test_chat_sends_system_prompt(self):
        client = bare_openai_client()
        sent = {}

        def create(**kwargs):
            sent.update(kwargs)
            return SimpleNamespace(
                choices=[SimpleNamespace(finish_reason="stop", message=SimpleNamespace(content="hi", tool_calls=None))],
                usage=SimpleNamespace(prompt_tokens=1, completion_tokens=1),
            )

        client.client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        result = client.chat([{"role": "user", "content": "hello"}], system_prompt="be brief", max_tokens=50)

        assert result["content"] == [{"type": "text", "text": "hi"}]
        assert sent["messages"][0] == {"role": "system", "content": "be brief"}
        assert sent["max_completion_tokens"] == 50
        assert "tools" not in sent


class TestClaudeParse:
    def test_parse_response(self):
        client = object.__new__(ClaudeClient)
        response = SimpleNamespace(
            stop_reason="tool_use",
            usage=SimpleNamespace(input_tokens=5, output_tokens=7),
            content=[
                SimpleNamespace(type="text", text="Checking"),
                SimpleNamespace(type="tool_use", id="t1", name="ls", input={}),
            ],
        )
        assert client._parse_response(response) == {
            "content": [
                {"type": "text", "text": "Checking"},
                {"type": "tool_use", "id": "t1", "name": "ls", "input": {}},
            ],
            "stop_reason": "tool_use",
            "usage": {"input_tokens": 5, "output_tokens": 7},
        }


class TestFactories:
    def test_unknown_provider(self):
        with pytest.raises(ConfigError, match="Unknown provider: acme"):
            create_client("acme", "key")

    def test_missing_key(self):
        with pytest.raises(ConfigError, match="No API key configured for provider openai"):
            create_client("openai", "")

    def test_factory_uses_agent_model(self, tmp_path, mock_env, monkeypatch):
        built = []

        class RecordingClient:
            def __init__(self, api_key, model=None):
                built.append((api_key, model))

        monkeypatch.setattr(api_client, "CLIENTS", {**api_client.CLIENTS, "openai": RecordingClient})
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        (tmp_path / ".coderig.yaml").write_text(
            "agents:\n  task:\n    provider: openai\n    model: gpt-mini\n"
        )
        monkeypatch.setattr("pathlib.Path.home", lambda: tmp_path / "home")

        factory = client_factory_for(load_config(tmp_path))
        assert isinstance(factory("task"), RecordingClient)
        assert built == [("sk-test", "gpt-mini")]
