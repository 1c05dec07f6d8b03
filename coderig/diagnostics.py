# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Diagnostics collector over a pool of language server clients.

After a file changes, tools call wait_for_diagnostics() so the servers have
a chance to publish before the response is rendered. The wait ends on the
first of: diagnostics for the file itself, any growth in the total number
of diagnostics across clients, a five second timeout, or cancellation.
"""

import logging
import os
import queue
import time

from .errors import ExternalFailure
from .lsp import (
    LISTENER_QUEUE_SIZE,
    DiagnosticSeverity,
    DiagnosticTag,
    LSPClient,
    path_to_uri,
    uri_to_path,
)

logger = logging.getLogger(__name__)

WAIT_TIMEOUT_SECONDS = 5.0
INIT_TIMEOUT_SECONDS = 30.0
MAX_RENDERED = 10

SEVERITY_LABELS = {
    DiagnosticSeverity.ERROR: "Error",
    DiagnosticSeverity.WARNING: "Warn",
    DiagnosticSeverity.INFORMATION: "Info",
    DiagnosticSeverity.HINT: "Hint",
}

TAG_LABELS = {
    DiagnosticTag.UNNECESSARY: "unnecessary",
    DiagnosticTag.DEPRECATED: "deprecated",
}

_WAKE = ("", "")


def format_diagnostic(path, diagnostic, source):
    """One rendered diagnostic line."""
    severity = SEVERITY_LABELS.get(diagnostic.severity, "Info")
    start = diagnostic.range.start
    location = f"{path}:{start.line + 1}:{start.character + 1}"
    code = f"[{diagnostic.code}]" if diagnostic.code else ""
    tags = [TAG_LABELS[tag] for tag in diagnostic.tags if tag in TAG_LABELS]
    tag_text = f" ({', '.join(tags)})" if tags else ""
    return f"{severity}: {location} [{diagnostic.source or source}]{code}{tag_text} {diagnostic.message}"


def _sort_key(line):
    return (not line.startswith("Error"), line)


def _block(tag, lines):
    shown = lines[:MAX_RENDERED]
    body = "\n".join(shown)
    if len(lines) > MAX_RENDERED:
        body += f"\n... and {len(lines) - MAX_RENDERED} more diagnostics"
    return f"\n<{tag}>\n{body}\n</{tag}>\n"


def _count(lines, severity):
    return sum(1 for line in lines if line.startswith(severity))


class DiagnosticsCollector:
    """Pool of LSP clients keyed by language name."""

    def __init__(self, clients=None, wait_timeout=WAIT_TIMEOUT_SECONDS):
        self.clients: dict[str, LSPClient] = dict(clients or {})
        self.wait_timeout = wait_timeout

    @property
    def has_clients(self):
        return bool(self.clients)

    def start_from_config(self, config, ctx):
        """Start every enabled server in config.lsp; failures are skipped."""
        for name, lsp_config in config.lsp.items():
            if lsp_config.disabled:
                logger.debug("LSP %s is disabled", name)
                continue
            client = LSPClient(name, lsp_config.command, lsp_config.args, config.working_dir)
            init_ctx = ctx.with_timeout(INIT_TIMEOUT_SECONDS)
            try:
                client.start()
                client.initialize(init_ctx)
            except ExternalFailure as error:
                logger.error("Failed to start LSP %s: %s", name, error)
                client.shutdown()
                continue
            finally:
                init_ctx.cancel()
            self.clients[name] = client

    def open_file(self, path):
        """didOpen the file in every client, or didChange when already open."""
        for name, client in self.clients.items():
            try:
                if client.is_file_open(path):
                    client.notify_change(path)
                else:
                    client.open_file(path)
            except (OSError, ExternalFailure) as error:
                logger.warning("LSP %s could not open %s: %s", name, path, error)

    def _total(self):
        return sum(
            len(items)
            for client in self.clients.values()
            for items in client.diagnostics().values()
        )

    def wait_for_diagnostics(self, ctx, path):
        """Notify the servers about path and wait for fresh diagnostics.

        Returns:
            True when fresh diagnostics arrived, False on timeout or cancel
        """
        if not self.clients:
            return False

        target = path_to_uri(path)
        listener = queue.Queue(maxsize=LISTENER_QUEUE_SIZE)
        baseline = self._total()

        def wake():
            try:
                listener.put_nowait(_WAKE)
            except queue.Full:
                pass

        for client in self.clients.values():
            client.add_diagnostics_listener(listener)
        handle = ctx.add_done_callback(wake)
        try:
            self.open_file(path)
            deadline = time.monotonic() + self.wait_timeout
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                try:
                    item = listener.get(timeout=remaining)
                except queue.Empty:
                    return False
                if ctx.cancelled:
                    return False
                _, uri = item
                if uri == target or self._total() > baseline:
                    return True
        finally:
            ctx.remove_done_callback(handle)
            for client in self.clients.values():
                client.remove_diagnostics_listener(listener)

    def render(self, path=None, include_project=True):
        """File and project diagnostics blocks plus a summary; "" if none."""
        current = os.path.abspath(path) if path else None
        file_lines = []
        project_lines = []

        for name, client in self.clients.items():
            for uri, items in client.diagnostics().items():
                location = uri_to_path(uri)
                if not os.path.exists(location):
                    continue
                is_current = current is not None and os.path.abspath(location) == current
                if not is_current and not include_project:
                    continue
                target = file_lines if is_current else project_lines
                target.extend(format_diagnostic(location, item, name) for item in items)

        file_lines.sort(key=_sort_key)
        project_lines.sort(key=_sort_key)

        output = ""
        if file_lines:
            output += _block("file_diagnostics", file_lines)
        if project_lines:
            output += _block("project_diagnostics", project_lines)
        if file_lines or project_lines:
            output += (
                "\n<diagnostic_summary>\n"
                f"Current file: {_count(file_lines, 'Error')} errors, {_count(file_lines, 'Warn')} warnings\n"
                f"Project: {_count(project_lines, 'Error')} errors, {_count(project_lines, 'Warn')} warnings\n"
                "</diagnostic_summary>\n"
            )
        return output

    def shutdown(self):
        for client in self.clients.values():
            try:
                client.shutdown()
            except OSError as error:
                logger.warning("LSP %s did not shut down cleanly: %s", client.name, error)
        self.clients.clear()
