# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""
Terminal UI for Coderig using 'rich'.
Renders permission requests, status spinners and result panels. Everything
goes to stderr so stdout stays free for tool envelopes.
"""

import logging
import sys
import threading

from rich.console import Console, Group
from rich.panel import Panel
from rich.prompt import Prompt
from rich.syntax import Syntax
from rich.text import Text
from rich.theme import Theme

from .permission import Decision

logger = logging.getLogger(__name__)

COLORS = {
    "primary": "#00D4AA",    # Cyan
    "success": "#00C853",    # Green
    "warning": "#FFD600",    # Yellow
    "error": "#FF1744",      # Red
    "muted": "#78909C",      # Gray
    "accent": "#E040FB",     # Magenta
}

coderig_theme = Theme({
    "primary": COLORS["primary"],
    "success": COLORS["success"],
    "warning": COLORS["warning"],
    "error": COLORS["error"],
    "muted": COLORS["muted"],
    "accent": COLORS["accent"],

    # Semantic mappings
    "info": COLORS["primary"],
    "prompt": COLORS["primary"],
})

# Prompt choices and what they decide
CHOICES = {
    "a": Decision.ALLOW_ONCE,
    "s": Decision.ALLOW_PERSISTENT,
    "d": Decision.DENY,
}


def supports_color():
    """Check if the terminal supports colors."""
    if not hasattr(sys.stderr, "isatty"):
        return False
    return sys.stderr.isatty()


def open_terminal():
    """The controlling terminal, for answers when stdin is taken. None without one."""
    try:
        return open("/dev/tty", encoding="utf-8")
    except OSError:
        return None


console = Console(theme=coderig_theme, stderr=True, force_terminal=True if supports_color() else False)


class Spinner:
    """Contextual spinner for a single long step such as an agent run."""

    def __init__(self, message="Thinking...", style="dots", target=None):
        self.target = target or console
        self.status = self.target.status(
            f"[primary]{message}[/primary]",
            spinner=style,
            spinner_style="primary",
        )
        self.is_active = False

    def start(self):
        if not self.is_active:
            self.status.start()
            self.is_active = True

    def stop(self):
        if self.is_active:
            self.status.stop()
            self.is_active = False

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()


def render_request(request):
    """Panel describing one permission request."""
    body = Text()
    body.append("Tool:   ", style="muted")
    body.append(f"{request.tool_name}\n", style="accent")
    body.append("Action: ", style="muted")
    body.append(f"{request.action}\n")
    body.append("Path:   ", style="muted")
    body.append(request.path)
    if request.description:
        body.append(f"\n\n{request.description}")

    renderables = [body]
    diff = request.params.get("diff") if isinstance(request.params, dict) else None
    if diff:
        renderables.append(Syntax(diff, "diff", theme="ansi_dark", word_wrap=True))

    return Panel(
        Group(*renderables),
        title="[warning]Permission required[/warning]",
        border_style="warning",
        expand=False,
        padding=(0, 2),
    )


class PermissionPrompt:
    """Answer permission requests from the terminal.

    A daemon thread subscribes to the permission bus, renders each request
    and asks the user to allow once (a), allow for the session (s) or deny
    (d). Requests are answered one at a time in publication order.
    """

    def __init__(self, permissions, target=None, ask=None, input_stream=None):
        self.permissions = permissions
        self.target = target or console
        # Answers come from here instead of stdin when stdin carries tool calls
        self.input_stream = input_stream
        self._ask = ask or self._ask_user
        self._subscription = None
        self._thread = None

    def _ask_user(self):
        return Prompt.ask(
            "[prompt]Allow?[/prompt] [muted](a)llow once, allow for (s)ession, (d)eny[/muted]",
            choices=list(CHOICES),
            default="d",
            console=self.target,
            stream=self.input_stream,
        )

    def start(self):
        if self._thread is not None:
            return
        self._subscription = self.permissions.subscribe()
        self._thread = threading.Thread(target=self._loop, name="coderig-permission-prompt", daemon=True)
        self._thread.start()

    def stop(self):
        if self._subscription is not None:
            self._subscription.close()
        if self._thread is not None:
            self._thread.join(timeout=1)
            self._thread = None

    def _loop(self):
        for event in self._subscription:
            self.handle(event.payload)

    def handle(self, request):
        self.target.print(render_request(request))
        try:
            answer = self._ask()
        except EOFError:
            logger.warning("No answer for permission request %s; denying", request.id)
            answer = "d"
        decision = CHOICES.get(str(answer).strip().lower(), Decision.DENY)
        self.permissions.decide(request, decision)
        return decision


def print_error(message):
    console.print(f"[error]Error:[/error] {message}")


def show_result_panel(title, content):
    console.print(Panel(content, title=f"[success]{title}[/success]", border_style="success", expand=False, padding=(0, 2)))
