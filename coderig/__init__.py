# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Coderig - the tool execution core of a terminal coding agent."""

__version__ = "0.3.0"
__author__ = "Emera Digital Tools"

from .context import Context, background
from .errors import (
    Cancelled,
    CoderigError,
    ConfigError,
    ExternalFailure,
    ParamError,
    PermissionDenied,
    PreconditionError,
)

__all__ = [
    # Version
    "__version__",
    "__author__",
    # Context
    "Context",
    "background",
    # Errors
    "CoderigError",
    "ParamError",
    "PreconditionError",
    "PermissionDenied",
    "ExternalFailure",
    "Cancelled",
    "ConfigError",
]
