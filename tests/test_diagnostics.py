"""Tests for LSP framing, the LSP client and the diagnostics collector."""

import io
import json
import os
import queue
import threading

import pytest

from coderig.context import background
from coderig.diagnostics import DiagnosticsCollector, format_diagnostic
from coderig.errors import Cancelled, ExternalFailure
from coderig.lsp import (
    Diagnostic,
    DiagnosticSeverity,
    DiagnosticTag,
    LSPClient,
    Position,
    Range,
    detect_language_id,
    path_to_uri,
    read_message,
    uri_to_path,
    write_message,
)
from coderig.lsp.protocol import apply_text_edits, apply_workspace_edit, encode_message
from coderig.tools.base import ToolCall
from coderig.tools.diagnostics import DiagnosticsTool


def make_diagnostic(message, severity=DiagnosticSeverity.ERROR, line=0, character=0, **kwargs):
    return Diagnostic(
        range=Range(Position(line, character), Position(line, character + 1)),
        message=message,
        severity=severity,
        **kwargs,
    )


class FakeClient:
    """Stands in for an LSPClient; publishes on open when told to."""

    def __init__(self, name, publish_on_open=None):
        self.name = name
        self.items = {}
        self.listeners = []
        self.opened = []
        self.changed = []
        self.publish_on_open = publish_on_open
        self.stopped = False

    def diagnostics(self):
        return {uri: list(items) for uri, items in self.items.items()}

    def add_diagnostics_listener(self, listener):
        self.listeners.append(listener)

    def remove_diagnostics_listener(self, listener):
        self.listeners.remove(listener)

    def is_file_open(self, path):
        return path in self.opened

    def open_file(self, path):
        self.opened.append(path)
        if self.publish_on_open is not None:
            uri = path_to_uri(self.publish_on_open)
            self.items[uri] = [make_diagnostic("published")]
            for listener in self.listeners:
                listener.put_nowait((self.name, uri))

    def notify_change(self, path):
        self.changed.append(path)

    def shutdown(self):
        self.stopped = True


class TestFraming:
    """Content-Length framed JSON-RPC."""

    def test_encode(self):
        assert encode_message({"a": 1}) == b'Content-Length: 7\r\n\r\n{"a":1}'

    def test_write_then_read(self):
        stream = io.BytesIO()
        write_message(stream, {"jsonrpc": "2.0", "method": "initialized", "params": {"x": "é"}})
        write_message(stream, {"id": 2})
        stream.seek(0)
        assert read_message(stream) == {"jsonrpc": "2.0", "method": "initialized", "params": {"x": "é"}}
        assert read_message(stream) == {"id": 2}
        assert read_message(stream) is None

    def test_extra_headers_ignored(self):
        body = b'{"id":1}'
        stream = io.BytesIO(
            b"Content-Type: application/vscode-jsonrpc; charset=utf-8\r\n"
            + f"content-length: {len(body)}\r\n\r\n".encode()
            + body
        )
        assert read_message(stream) == {"id": 1}

    def test_truncated_body(self):
        assert read_message(io.BytesIO(b'Content-Length: 50\r\n\r\n{"id":1}')) is None

    def test_bad_length(self):
        with pytest.raises(ExternalFailure, match="invalid Content-Length"):
            read_message(io.BytesIO(b"Content-Length: abc\r\n\r\n"))

    def test_bad_json(self):
        with pytest.raises(ExternalFailure, match="failed to decode"):
            read_message(io.BytesIO(b"Content-Length: 3\r\n\r\n{{{"))


class TestProtocolTypes:
    def test_diagnostic_from_lsp(self):
        diagnostic = Diagnostic.from_lsp({
            "range": {"start": {"line": 2, "character": 4}, "end": {"line": 2, "character": 9}},
            "message": "unused import",
            "severity": 2,
            "source": "pyright",
            "code": 401,
            "tags": [1, 99],
        })
        assert diagnostic.range.start == Position(2, 4)
        assert diagnostic.severity is DiagnosticSeverity.WARNING
        assert diagnostic.code == "401"
        assert diagnostic.tags == [DiagnosticTag.UNNECESSARY]

    def test_unknown_severity_defaults_to_error(self):
        assert Diagnostic.from_lsp({"message": "x", "severity": 7}).severity is DiagnosticSeverity.ERROR

    def test_uri_round_trip(self, tmp_path):
        path = str(tmp_path / "with space.py")
        uri = path_to_uri(path)
        assert uri.startswith("file://")
        assert "%20" in uri
        assert uri_to_path(uri) == path

    def test_language_ids(self):
        assert detect_language_id("main.py") == "python"
        assert detect_language_id("App.TSX") == "typescriptreact"
        assert detect_language_id("README") == ""

    def test_apply_text_edits(self):
        text = "alpha\nbeta\ngamma\n"
        edits = [
            {"range": {"start": {"line": 0, "character": 0}, "end": {"line": 0, "character": 5}}, "newText": "ALPHA"},
            {"range": {"start": {"line": 2, "character": 0}, "end": {"line": 2, "character": 0}}, "newText": "> "},
        ]
        assert apply_text_edits(text, edits) == "ALPHA\nbeta\n> gamma\n"

    def test_overlapping_edits(self):
        edits = [
            {"range": {"start": {"line": 0, "character": 0}, "end": {"line": 0, "character": 4}}, "newText": "a"},
            {"range": {"start": {"line": 0, "character": 2}, "end": {"line": 0, "character": 6}}, "newText": "b"},
        ]
        with pytest.raises(ExternalFailure, match="overlapping"):
            apply_text_edits("abcdefgh", edits)

    def test_apply_workspace_edit(self, tmp_path):
        path = tmp_path / "m.py"
        path.write_text("x = 1\n")
        apply_workspace_edit({
            "changes": {
                path_to_uri(str(path)): [
                    {"range": {"start": {"line": 0, "character": 4}, "end": {"line": 0, "character": 5}}, "newText": "2"},
                ],
            },
            "documentChanges": [{"kind": "create", "uri": "file:///ignored"}],
        })
        assert path.read_text() == "x = 2\n"


class FakeServer:
    """Reads client messages from one pipe and answers on another."""

    def __init__(self, respond):
        inbound_r, inbound_w = os.pipe()
        outbound_r, outbound_w = os.pipe()
        # client side
        self.client_writer = os.fdopen(inbound_w, "wb")
        self.client_reader = os.fdopen(outbound_r, "rb")
        # server side
        self._reader = os.fdopen(inbound_r, "rb")
        self._writer = os.fdopen(outbound_w, "wb")
        self.respond = respond
        self.received = []
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()

    def _loop(self):
        while True:
            try:
                message = read_message(self._reader)
            except (OSError, ValueError):
                return
            if message is None:
                return
            self.received.append(message)
            for reply in self.respond(message) or []:
                write_message(self._writer, reply)

    def send(self, message):
        write_message(self._writer, message)

    def close(self):
        self._writer.close()
        self.client_writer.close()
        self._thread.join(timeout=1)


class TestLSPClient:
    """Client behaviour against an in-process server."""

    def connect(self, respond):
        server = FakeServer(respond)
        client = LSPClient("fake", "fake-server")
        client.attach(server.client_writer, server.client_reader)
        return client, server

    def test_call_returns_result(self):
        def respond(message):
            if message.get("method") == "initialize":
                return [{"jsonrpc": "2.0", "id": message["id"], "result": {"capabilities": {}}}]
            return []

        client, server = self.connect(respond)
        try:
            assert client.initialize(background()) == {"capabilities": {}}
            methods = [message["method"] for message in server.received]
            assert methods[0] == "initialize"
        finally:
            server.close()

    def test_error_response(self):
        def respond(message):
            return [{"jsonrpc": "2.0", "id": message["id"], "error": {"code": -32600, "message": "nope"}}]

        client, server = self.connect(respond)
        try:
            with pytest.raises(ExternalFailure, match="nope"):
                client.call(background(), "custom/method", {})
        finally:
            server.close()

    def test_cancelled_call(self):
        client, server = self.connect(lambda message: [])
        ctx, cancel = background().with_cancel()
        threading.Timer(0.05, cancel).start()
        try:
            with pytest.raises(Cancelled):
                client.call(ctx, "slow/method", {}, timeout=5)
        finally:
            server.close()

    def test_published_diagnostics_reach_listeners(self):
        client, server = self.connect(lambda message: [])
        listener = queue.Queue()
        client.add_diagnostics_listener(listener)
        try:
            server.send({
                "jsonrpc": "2.0",
                "method": "textDocument/publishDiagnostics",
                "params": {"uri": "file:///p/a.py", "diagnostics": [{"message": "boom"}]},
            })
            assert listener.get(timeout=2) == ("fake", "file:///p/a.py")
            assert [d.message for d in client.diagnostics()["file:///p/a.py"]] == ["boom"]
        finally:
            server.close()

    def test_server_request_answered(self):
        answered = threading.Event()

        def respond(message):
            if message.get("id") == 99:
                answered.set()
            return []

        client, server = self.connect(respond)
        try:
            server.send({
                "jsonrpc": "2.0",
                "id": 99,
                "method": "workspace/configuration",
                "params": {"items": [{}, {}]},
            })
            assert answered.wait(2)
            reply = [m for m in server.received if m.get("id") == 99][0]
            assert reply["result"] == [{}, {}]
        finally:
            server.close()

    def test_open_and_change(self, tmp_path):
        path = tmp_path / "a.py"
        path.write_text("x = 1\n")
        client, server = self.connect(lambda message: [])
        try:
            client.open_file(str(path))
            assert client.is_file_open(str(path))
            client.notify_change(str(path))
        finally:
            server.close()
        methods = [message["method"] for message in server.received]
        assert methods == ["textDocument/didOpen", "textDocument/didChange"]
        assert server.received[0]["params"]["textDocument"]["languageId"] == "python"
        assert server.received[1]["params"]["textDocument"]["version"] == 2

    def test_close_file(self, tmp_path):
        path = tmp_path / "a.py"
        path.write_text("x = 1\n")
        client, server = self.connect(lambda message: [])
        try:
            client.open_file(str(path))
            client.close_file(str(path))
            client.close_file(str(path))
            assert not client.is_file_open(str(path))
        finally:
            server.close()
        methods = [message["method"] for message in server.received]
        assert methods == ["textDocument/didOpen", "textDocument/didClose"]
        assert server.received[1]["params"] == {"textDocument": {"uri": path_to_uri(str(path))}}

    def test_change_of_unopened_file(self, tmp_path):
        client = LSPClient("fake", "fake-server")
        with pytest.raises(ExternalFailure, match="unopened file"):
            client.notify_change(str(tmp_path / "a.py"))

    def test_send_without_transport(self):
        with pytest.raises(ExternalFailure, match="is not running"):
            LSPClient("fake", "fake-server").notify("initialized", {})

    def test_missing_binary(self, tmp_path):
        client = LSPClient("fake", str(tmp_path / "no-such-server"))
        with pytest.raises(ExternalFailure, match="failed to start LSP server"):
            client.start()


class TestDiagnosticsCollector:
    """Waiting on and rendering diagnostics."""

    def test_format_diagnostic(self):
        diagnostic = make_diagnostic(
            "unused variable",
            severity=DiagnosticSeverity.WARNING,
            line=2,
            character=4,
            code="W0612",
            tags=[DiagnosticTag.UNNECESSARY],
        )
        assert format_diagnostic("/p/a.py", diagnostic, "pylsp") == (
            "Warn: /p/a.py:3:5 [pylsp][W0612] (unnecessary) unused variable"
        )

    def test_render_file_and_project(self, tmp_path):
        current = tmp_path / "a.py"
        other = tmp_path / "b.py"
        current.write_text("")
        other.write_text("")
        client = FakeClient("py")
        client.items = {
            path_to_uri(str(current)): [
                make_diagnostic("minor", DiagnosticSeverity.WARNING),
                make_diagnostic("broken"),
            ],
            path_to_uri(str(other)): [make_diagnostic("elsewhere")],
            path_to_uri(str(tmp_path / "deleted.py")): [make_diagnostic("stale")],
        }
        output = DiagnosticsCollector({"py": client}).render(str(current))

        assert "<file_diagnostics>\nError: " in output
        assert output.index("broken") < output.index("minor")
        assert "<project_diagnostics>" in output
        assert "stale" not in output
        assert "Current file: 1 errors, 1 warnings\nProject: 1 errors, 0 warnings" in output

    def test_render_without_project(self, tmp_path):
        current = tmp_path / "a.py"
        other = tmp_path / "b.py"
        current.write_text("")
        other.write_text("")
        client = FakeClient("py")
        client.items = {path_to_uri(str(other)): [make_diagnostic("elsewhere")]}
        assert DiagnosticsCollector({"py": client}).render(str(current), include_project=False) == ""

    def test_render_caps_blocks(self, tmp_path):
        current = tmp_path / "a.py"
        current.write_text("")
        client = FakeClient("py")
        client.items = {path_to_uri(str(current)): [make_diagnostic(f"e{n}", line=n) for n in range(12)]}
        output = DiagnosticsCollector({"py": client}).render(str(current))
        assert "... and 2 more diagnostics" in output

    def test_wait_returns_on_publish(self, tmp_path):
        path = str(tmp_path / "a.py")
        client = FakeClient("py", publish_on_open=path)
        collector = DiagnosticsCollector({"py": client}, wait_timeout=2)
        assert collector.wait_for_diagnostics(background(), path) is True
        assert client.opened == [path]
        assert client.listeners == []

    def test_wait_counts_any_growth(self, tmp_path):
        path = str(tmp_path / "a.py")
        client = FakeClient("py", publish_on_open=str(tmp_path / "other.py"))
        collector = DiagnosticsCollector({"py": client}, wait_timeout=2)
        assert collector.wait_for_diagnostics(background(), path) is True

    def test_wait_times_out(self, tmp_path):
        collector = DiagnosticsCollector({"py": FakeClient("py")}, wait_timeout=0.05)
        assert collector.wait_for_diagnostics(background(), str(tmp_path / "a.py")) is False

    def test_wait_ends_on_cancel(self, tmp_path):
        ctx, cancel = background().with_cancel()
        cancel()
        collector = DiagnosticsCollector({"py": FakeClient("py")}, wait_timeout=5)
        assert collector.wait_for_diagnostics(ctx, str(tmp_path / "a.py")) is False

    def test_open_file_uses_change_when_open(self, tmp_path):
        path = str(tmp_path / "a.py")
        client = FakeClient("py")
        collector = DiagnosticsCollector({"py": client})
        collector.open_file(path)
        collector.open_file(path)
        assert client.opened == [path]
        assert client.changed == [path]

    def test_no_clients(self, tmp_path):
        collector = DiagnosticsCollector()
        assert collector.wait_for_diagnostics(background(), str(tmp_path)) is False
        assert collector.render() == ""

    def test_shutdown(self):
        client = FakeClient("py")
        collector = DiagnosticsCollector({"py": client})
        collector.shutdown()
        assert client.stopped
        assert not collector.has_clients


class TestDiagnosticsTool:
    def test_no_clients(self, services, ctx):
        response = DiagnosticsTool(services).run(ctx, ToolCall("1", "diagnostics", "{}"))
        assert response.is_error
        assert response.content == "no LSP clients available"

    def test_project_report(self, services, ctx, tmp_project):
        path = tmp_project / "a.py"
        path.write_text("")
        client = FakeClient("py")
        client.items = {path_to_uri(str(path)): [make_diagnostic("broken")]}
        services.diagnostics.clients["py"] = client

        response = DiagnosticsTool(services).run(ctx, ToolCall("1", "diagnostics", "{}"))
        assert "<project_diagnostics>" in response.content
        assert "broken" in response.content

    def test_file_report_waits(self, services, ctx, tmp_project):
        path = tmp_project / "a.py"
        path.write_text("")
        services.diagnostics.clients["py"] = FakeClient("py", publish_on_open=str(path))

        response = DiagnosticsTool(services).run(
            ctx, ToolCall("1", "diagnostics", json.dumps({"file_path": "a.py"}))
        )
        assert "<file_diagnostics>" in response.content
        assert "published" in response.content

    def test_clean_project(self, services, ctx):
        services.diagnostics.clients["py"] = FakeClient("py")
        response = DiagnosticsTool(services).run(ctx, ToolCall("1", "diagnostics", "{}"))
        assert response.content == "No diagnostics found"
