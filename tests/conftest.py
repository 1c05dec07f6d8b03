"""Shared test configuration and fixtures for Coderig tests."""

import shutil
import threading

import pytest

from coderig.context import background
from coderig.diagnostics import DiagnosticsCollector
from coderig.history import HistoryService
from coderig.ledger import FileLedger
from coderig.permission import Decision, PermissionService
from coderig.session import SessionService
from coderig.shell import ShellPool
from coderig.tools.registry import Services

HAS_BASH = shutil.which("bash") is not None


class ScriptedResponder:
    """Answers every permission request.

    decision is a Decision, or a callable taking the request and
    returning one.
    """

    def __init__(self, permissions, decision=Decision.ALLOW_ONCE):
        self.permissions = permissions
        self.decision = decision
        self.requests = []
        self._subscription = permissions.subscribe()
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()

    def _loop(self):
        for event in self._subscription:
            request = event.payload
            self.requests.append(request)
            decision = self.decision(request) if callable(self.decision) else self.decision
            self.permissions.decide(request, decision)

    def close(self):
        self._subscription.close()
        self._thread.join(timeout=1)


@pytest.fixture
def tmp_project(tmp_path):
    """Create a temporary project directory for testing."""
    return tmp_path


@pytest.fixture
def mock_env(monkeypatch):
    """Clear Coderig environment variables for isolated tests."""
    env_vars_to_clear = [
        "CODERIG_LOG_LEVEL",
        "CODERIG_DATA_DIR",
        "ANTHROPIC_API_KEY",
        "OPENAI_API_KEY",
        "OPENROUTER_API_KEY",
        "XDG_CONFIG_HOME",
    ]
    for var in env_vars_to_clear:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def services(tmp_project):
    """Services over tmp_project with no LSP clients and no auto-approval."""
    history = HistoryService()
    built = Services(
        working_dir=str(tmp_project),
        ledger=FileLedger(),
        permissions=PermissionService(str(tmp_project)),
        history=history,
        sessions=SessionService(history),
        shells=ShellPool("bash" if HAS_BASH else "sh", []),
        diagnostics=DiagnosticsCollector(),
    )
    yield built
    built.shutdown()


@pytest.fixture
def allow(services):
    """Grant every permission request once."""
    responder = ScriptedResponder(services.permissions, Decision.ALLOW_ONCE)
    yield responder
    responder.close()


@pytest.fixture
def deny(services):
    """Deny every permission request."""
    responder = ScriptedResponder(services.permissions, Decision.DENY)
    yield responder
    responder.close()


@pytest.fixture
def ctx(services):
    """Background context carrying a fresh session id."""
    session = services.sessions.create(title="test")
    return background().with_values(session_id=session.id)
