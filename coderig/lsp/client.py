# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""JSON-RPC client for one language server process.

A reader thread owns the server's stdout and dispatches three kinds of
message: responses (matched to pending calls by id), requests from the
server (answered inline) and notifications. Published diagnostics are cached
per URI and forwarded to every registered listener queue.
"""

import itertools
import logging
import os
import queue
import subprocess
import threading

from ..errors import Cancelled, ExternalFailure
from .language import detect_language_id
from .protocol import (
    Diagnostic,
    apply_workspace_edit,
    path_to_uri,
    read_message,
    write_message,
)

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT = 30.0
SHUTDOWN_GRACE_SECONDS = 2.0
LISTENER_QUEUE_SIZE = 16

PUBLISH_DIAGNOSTICS = "textDocument/publishDiagnostics"

_WAKE = object()


class LSPClient:
    """One language server, spoken to over stdin/stdout."""

    def __init__(self, name, command, args=None, workspace=None):
        self.name = name
        self.command = command
        self.args = list(args or [])
        self.workspace = os.path.abspath(workspace or os.getcwd())

        self._process = None
        self._writer = None
        self._write_lock = threading.Lock()
        self._ids = itertools.count(1)

        self._pending: dict[int, queue.Queue] = {}
        self._pending_lock = threading.Lock()

        self._diagnostics: dict[str, list[Diagnostic]] = {}
        self._listeners: list[queue.Queue] = []
        self._state_lock = threading.Lock()

        self._open_files: dict[str, int] = {}
        self._open_lock = threading.Lock()

        self.request_handlers = {
            "workspace/configuration": self._handle_configuration,
            "client/registerCapability": lambda params: None,
            "workspace/applyEdit": self._handle_apply_edit,
        }
        self.notification_handlers = {
            PUBLISH_DIAGNOSTICS: self._handle_diagnostics,
            "window/showMessage": self._handle_show_message,
        }

    def __repr__(self):
        return f"LSPClient({self.name!r}, {self.command!r})"

    # Transport

    def start(self):
        """Spawn the server process and begin reading its output."""
        try:
            self._process = subprocess.Popen(
                [self.command, *self.args],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.workspace,
            )
        except OSError as error:
            raise ExternalFailure(f"failed to start LSP server {self.command}: {error}") from error

        threading.Thread(
            target=self._drain_stderr,
            args=(self._process.stderr,),
            daemon=True,
            name=f"lsp-{self.name}-stderr",
        ).start()
        self.attach(self._process.stdin, self._process.stdout)
        logger.info("Started LSP server %s (pid %s)", self.name, self._process.pid)

    def attach(self, writer, reader=None):
        """Use the given byte streams as the transport."""
        self._writer = writer
        if reader is not None:
            threading.Thread(
                target=self._read_loop,
                args=(reader,),
                daemon=True,
                name=f"lsp-{self.name}-reader",
            ).start()

    def _drain_stderr(self, stream):
        for line in iter(stream.readline, b""):
            logger.debug("LSP %s: %s", self.name, line.decode("utf-8", errors="replace").rstrip())

    def _send(self, message):
        if self._writer is None:
            raise ExternalFailure(f"LSP server {self.name} is not running")
        message = {"jsonrpc": "2.0", **message}
        try:
            with self._write_lock:
                write_message(self._writer, message)
        except (OSError, ValueError) as error:
            raise ExternalFailure(f"failed to write to LSP server {self.name}: {error}") from error

    def _read_loop(self, reader):
        while True:
            try:
                message = read_message(reader)
            except ExternalFailure as error:
                logger.error("LSP %s: %s", self.name, error)
                break
            except (OSError, ValueError):
                break
            if message is None:
                break
            try:
                self._dispatch(message)
            except Exception:
                logger.exception("LSP %s: failed to handle %s", self.name, message.get("method"))
        logger.debug("LSP %s reader stopped", self.name)
        self._fail_pending()

    def _fail_pending(self):
        with self._pending_lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for waiter in pending:
            try:
                waiter.put_nowait({"error": {"code": -32099, "message": "server connection closed"}})
            except queue.Full:
                continue

    def _dispatch(self, message):
        method = message.get("method")
        if method and "id" in message:
            self._answer_request(message)
        elif "id" in message:
            with self._pending_lock:
                waiter = self._pending.pop(message["id"], None)
            if waiter is None:
                logger.debug("LSP %s: response for unknown id %s", self.name, message["id"])
                return
            waiter.put(message)
        elif method:
            handler = self.notification_handlers.get(method)
            if handler is not None:
                handler(message.get("params") or {})

    def _answer_request(self, message):
        handler = self.request_handlers.get(message["method"])
        if handler is None:
            self._send({
                "id": message["id"],
                "error": {"code": -32601, "message": f"method not found: {message['method']}"},
            })
            return
        try:
            result = handler(message.get("params") or {})
        except (OSError, ExternalFailure) as error:
            logger.warning("LSP %s: %s failed: %s", self.name, message["method"], error)
            self._send({"id": message["id"], "error": {"code": -32603, "message": str(error)}})
            return
        self._send({"id": message["id"], "result": result})

    # Requests

    def call(self, ctx, method, params, timeout=DEFAULT_CALL_TIMEOUT):
        """Send a request and block for its result.

        Raises:
            ExternalFailure: On an error response, a closed connection or timeout
            Cancelled: If ctx is done first
        """
        request_id = next(self._ids)
        waiter = queue.Queue(maxsize=2)
        with self._pending_lock:
            self._pending[request_id] = waiter

        handle = ctx.add_done_callback(lambda: waiter.put_nowait(_WAKE))
        try:
            self._send({"id": request_id, "method": method, "params": params})
            try:
                response = waiter.get(timeout=timeout)
            except queue.Empty as error:
                raise ExternalFailure(f"LSP {self.name}: {method} timed out") from error
        finally:
            ctx.remove_done_callback(handle)
            with self._pending_lock:
                self._pending.pop(request_id, None)

        if response is _WAKE:
            raise Cancelled(ctx.err())
        if response.get("error"):
            error = response["error"]
            raise ExternalFailure(
                f"LSP {self.name}: {method} failed: {error.get('message')} (code {error.get('code')})"
            )
        return response.get("result")

    def notify(self, method, params):
        self._send({"method": method, "params": params})

    def initialize(self, ctx):
        uri = path_to_uri(self.workspace)
        result = self.call(ctx, "initialize", {
            "processId": os.getpid(),
            "clientInfo": {"name": "coderig", "version": "1.0"},
            "rootPath": self.workspace,
            "rootUri": uri,
            "workspaceFolders": [{"uri": uri, "name": os.path.basename(self.workspace)}],
            "capabilities": {
                "workspace": {"configuration": True, "applyEdit": True},
                "textDocument": {
                    "synchronization": {"didSave": True},
                    "publishDiagnostics": {"versionSupport": True},
                },
            },
        })
        self.notify("initialized", {})
        return result

    def shutdown(self):
        process = self._process
        if process is None:
            self._writer = None
            return
        try:
            self._send({"id": next(self._ids), "method": "shutdown", "params": None})
            self.notify("exit", None)
        except ExternalFailure:
            pass
        try:
            process.wait(timeout=SHUTDOWN_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
        self._process = None
        self._writer = None
        logger.info("Stopped LSP server %s", self.name)

    # Documents

    def is_file_open(self, path):
        with self._open_lock:
            return path_to_uri(path) in self._open_files

    def open_file(self, path):
        """didOpen with the full text; a file already open is left alone."""
        uri = path_to_uri(path)
        with self._open_lock:
            if uri in self._open_files:
                return
            self._open_files[uri] = 1
        with open(path, encoding="utf-8", errors="replace") as handle:
            text = handle.read()
        self.notify("textDocument/didOpen", {
            "textDocument": {
                "uri": uri,
                "languageId": detect_language_id(path),
                "version": 1,
                "text": text,
            },
        })

    def notify_change(self, path):
        uri = path_to_uri(path)
        with self._open_lock:
            if uri not in self._open_files:
                raise ExternalFailure(f"cannot notify change for unopened file: {path}")
            self._open_files[uri] += 1
            version = self._open_files[uri]
        with open(path, encoding="utf-8", errors="replace") as handle:
            text = handle.read()
        self.notify("textDocument/didChange", {
            "textDocument": {"uri": uri, "version": version},
            "contentChanges": [{"text": text}],
        })

    def close_file(self, path):
        uri = path_to_uri(path)
        with self._open_lock:
            if self._open_files.pop(uri, None) is None:
                return
        self.notify("textDocument/didClose", {"textDocument": {"uri": uri}})

    # Diagnostics

    def diagnostics(self):
        with self._state_lock:
            return {uri: list(items) for uri, items in self._diagnostics.items()}

    def add_diagnostics_listener(self, listener):
        with self._state_lock:
            self._listeners.append(listener)

    def remove_diagnostics_listener(self, listener):
        with self._state_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # Handlers

    def _handle_diagnostics(self, params):
        uri = params.get("uri", "")
        items = [Diagnostic.from_lsp(item) for item in params.get("diagnostics") or []]
        with self._state_lock:
            self._diagnostics[uri] = items
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener.put_nowait((self.name, uri))
            except queue.Full:
                logger.debug("LSP %s: diagnostics listener full, dropping %s", self.name, uri)

    def _handle_show_message(self, params):
        logger.info("LSP %s: %s", self.name, params.get("message", ""))

    def _handle_configuration(self, params):
        return [{} for _ in params.get("items") or [{}]]

    def _handle_apply_edit(self, params):
        apply_workspace_edit(params.get("edit") or {})
        return {"applied": True}
