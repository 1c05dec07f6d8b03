# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Session-scoped todo list.

The model rewrites the whole list with todo_write; the rendered checklist
is stored on the session so it survives across turns.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum

from ..errors import ParamError, PreconditionError
from .base import BaseTool, ToolInfo, ToolResponse
from .validation import require_session

logger = logging.getLogger(__name__)


class TodoStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class TodoPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


CHECKBOXES = {
    TodoStatus.TODO: "- [ ] ",
    TodoStatus.IN_PROGRESS: "- [~] ",
    TodoStatus.COMPLETED: "- [x] ",
}

PRIORITY_MARKERS = {
    TodoPriority.LOW: "",
    TodoPriority.MEDIUM: " (~)",
    TodoPriority.HIGH: " (!)",
}


@dataclass
class TodoItem:
    id: str
    content: str
    status: str = TodoStatus.TODO.value
    priority: str = TodoPriority.MEDIUM.value


def render_todos(todos):
    """One checklist line per item, e.g. "- [~] Write tests (!)"."""
    lines = []
    for item in todos:
        try:
            status = TodoStatus(item.status)
        except ValueError:
            raise ParamError(
                f"invalid status '{item.status}' for todo {item.id} (must be todo, in-progress or completed)"
            ) from None
        try:
            priority = TodoPriority(item.priority)
        except ValueError:
            raise ParamError(
                f"invalid priority '{item.priority}' for todo {item.id} (must be low, medium or high)"
            ) from None
        lines.append(f"{CHECKBOXES[status]}{item.content}{PRIORITY_MARKERS[priority]}")
    return "\n".join(lines)


def _load_session(services, ctx):
    session_id = require_session(ctx)
    try:
        return services.sessions.get(session_id)
    except KeyError as error:
        raise PreconditionError(f"session not found: {session_id}") from error


@dataclass
class TodoWriteParams:
    todos: list[TodoItem] = field(default_factory=list)


class TodoWriteTool(BaseTool):
    params_type = TodoWriteParams

    def __init__(self, services):
        self.services = services

    def info(self):
        return ToolInfo(
            name="todo_write",
            description=(
                "Replaces the todo list for this session. Use it to plan multi-step work and "
                "keep progress visible: mark an item in-progress before starting it and "
                "completed as soon as it is done."
            ),
            parameters={
                "todos": {
                    "type": "array",
                    "description": "The full, updated todo list",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string"},
                            "content": {"type": "string"},
                            "status": {"type": "string", "enum": [s.value for s in TodoStatus]},
                            "priority": {"type": "string", "enum": [p.value for p in TodoPriority]},
                        },
                        "required": ["id", "content", "status", "priority"],
                    },
                },
            },
            required=["todos"],
        )

    def execute(self, ctx, params):
        session = _load_session(self.services, ctx)
        rendered = render_todos(params.todos)
        self.services.sessions.save(replace(session, todos=rendered))
        logger.debug("Session %s now has %d todos", session.id, len(params.todos))
        return ToolResponse.text(f"Todo list updated successfully!\n\n{rendered}")


class TodoReadTool(BaseTool):
    def __init__(self, services):
        self.services = services

    def info(self):
        return ToolInfo(
            name="todo_read",
            description="Reads the current todo list for this session.",
            parameters={},
            required=[],
        )

    def execute(self, ctx, params):
        session = _load_session(self.services, ctx)
        if not session.todos:
            return ToolResponse.text("No todo items found for this session. Use todo_write to add new tasks.")
        return ToolResponse.text(f"Current Todo List\n\n{session.todos}")
