# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Language server client used for post-edit diagnostics."""

from .client import LISTENER_QUEUE_SIZE, LSPClient
from .language import detect_language_id
from .protocol import (
    Diagnostic,
    DiagnosticSeverity,
    DiagnosticTag,
    Position,
    Range,
    path_to_uri,
    read_message,
    uri_to_path,
    write_message,
)

__all__ = [
    "LISTENER_QUEUE_SIZE",
    "LSPClient",
    "detect_language_id",
    "Diagnostic",
    "DiagnosticSeverity",
    "DiagnosticTag",
    "Position",
    "Range",
    "path_to_uri",
    "uri_to_path",
    "read_message",
    "write_message",
]
