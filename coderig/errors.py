# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Error taxonomy for the tool execution core.

ParamError and PreconditionError are model-visible: tools turn them into
error responses so the model can retry. PermissionDenied, ExternalFailure
and Cancelled propagate to the agent loop.
"""


class CoderigError(Exception):
    """Base class for all coderig errors."""


class ParamError(CoderigError):
    """Malformed tool input."""


class PreconditionError(CoderigError):
    """A tool precondition does not hold (stale read, missing file, ...)."""


class DiffError(PreconditionError):
    """Malformed or inapplicable multi-file patch."""


class PermissionDenied(CoderigError):
    """The permission broker refused the action."""

    def __init__(self, message="permission denied", request=None):
        super().__init__(message)
        self.request = request


class ExternalFailure(CoderigError):
    """Shell, LSP, filesystem or network failure."""


class Cancelled(CoderigError):
    """The calling context was cancelled or its deadline passed."""

    def __init__(self, message="context cancelled"):
        super().__init__(message)


class ConfigError(CoderigError):
    """Fatal configuration error."""
