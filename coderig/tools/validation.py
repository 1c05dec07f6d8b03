# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Path resolution and the guarded-write checks shared by mutating tools."""

import logging
import os
from datetime import datetime

from ..errors import ParamError, PermissionDenied, PreconditionError
from ..permission import CreatePermissionRequest

logger = logging.getLogger(__name__)


def resolve_path(working_dir, file_path):
    """Absolute path for file_path; relative paths resolve against working_dir.

    Raises:
        ParamError: If file_path is empty
    """
    if not file_path:
        raise ParamError("file_path is required")
    path = os.path.expanduser(file_path)
    if not os.path.isabs(path):
        path = os.path.join(working_dir, path)
    return os.path.abspath(path)


def require_session(ctx):
    if not ctx.session_id:
        raise PreconditionError("No session ID found in context")
    return ctx.session_id


def require_file(path):
    """Raise unless path is an existing regular file."""
    if not os.path.exists(path):
        raise PreconditionError(f"file not found: {path}")
    if os.path.isdir(path):
        raise PreconditionError(f"path is a directory, not a file: {path}")


def _timestamp(seconds):
    return datetime.fromtimestamp(seconds).isoformat(timespec="microseconds")


def check_fresh_read(ledger, path, content, verb="editing"):
    """Enforce read-before-modify and stale-read detection.

    Args:
        ledger: The FileLedger shared by the tools
        path: Absolute path about to be modified
        content: Current on-disk content of path (str or bytes)
        verb: Fills "you must read the file before <verb> it"

    Raises:
        PreconditionError: If the file was never read, or changed since
    """
    last_read = ledger.last_read(path)
    if not last_read:
        raise PreconditionError(f"you must read the file before {verb} it. Use the View tool first")

    mod_time = os.path.getmtime(path)
    if mod_time > last_read or ledger.changed_since_read(path, content):
        raise PreconditionError(
            f"file {path} has been modified since it was last read "
            f"(mod time: {_timestamp(mod_time)}, last read: {_timestamp(last_read)})"
        )


def ask_permission(services, ctx, tool_name, action, path, description, params=None):
    """Block on the permission broker; raise PermissionDenied on refusal."""
    request = CreatePermissionRequest(
        session_id=ctx.session_id,
        tool_name=tool_name,
        action=action,
        path=path,
        description=description,
        params=params,
    )
    if not services.permissions.request(ctx, request):
        logger.info("Permission denied: %s %s on %s", tool_name, action, path)
        raise PermissionDenied(request=request)
