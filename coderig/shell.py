# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Persistent shell sessions, one per working directory.

Commands run inside a long-lived shell so that `cd`, exported variables and
shell state carry over between calls. Each command is framed by a unique
sentinel printed on stdout and stderr together with the exit code; the
caller reads both streams until both sentinels arrive, the timeout fires or
the context is cancelled. On timeout the command's processes are killed and
the shell itself is kept for the next call.
"""

import logging
import os
import signal
import subprocess
import threading
import time
import uuid
from dataclasses import dataclass

from .context import background
from .errors import ExternalFailure

logger = logging.getLogger(__name__)

MAX_OUTPUT_LENGTH = 30000
INTERRUPTED_EXIT_CODE = 143
KILL_GRACE_SECONDS = 0.5
SENTINEL_GRACE_SECONDS = 1.0
STARTUP_TIMEOUT_MS = 10000
INTERRUPTED_MESSAGE = "Command execution timed out or was interrupted"

POSIX_SHELLS = {"sh", "bash", "zsh", "dash", "ksh", "ash", "mksh"}
DEFAULT_SHELL = "/bin/bash"


@dataclass
class ShellResult:
    stdout: str
    stderr: str
    exit_code: int
    interrupted: bool


def shell_quote(text):
    """Single-quote text for a POSIX shell."""
    return "'" + text.replace("'", "'\\''") + "'"


def truncate_output(text, limit=MAX_OUTPUT_LENGTH):
    """Keep the first and last halves of text, noting the dropped lines."""
    if len(text) <= limit:
        return text

    half = limit // 2
    start = text[:half]
    end = text[-half:]
    middle = text[half:-half]
    truncated_lines = 0 if middle == "" else len(middle.split("\n"))
    return f"{start}\n\n... [{truncated_lines} lines truncated] ...\n\n{end}"


def _child_map():
    """Map of parent pid to child pids for every live process."""
    children = {}
    if os.path.isdir("/proc"):
        for entry in os.listdir("/proc"):
            if not entry.isdigit():
                continue
            try:
                with open(f"/proc/{entry}/stat", encoding="utf-8", errors="replace") as handle:
                    data = handle.read()
            except OSError:
                continue
            fields = data[data.rfind(")") + 2:].split()
            if len(fields) < 2:
                continue
            children.setdefault(int(fields[1]), []).append(int(entry))
        return children

    result = subprocess.run(["ps", "-A", "-o", "pid=,ppid="], capture_output=True, text=True)
    for line in result.stdout.splitlines():
        parts = line.split()
        if len(parts) == 2 and parts[0].isdigit() and parts[1].isdigit():
            children.setdefault(int(parts[1]), []).append(int(parts[0]))
    return children


def descendant_pids(pid):
    """All descendants of pid, deepest first."""
    children = _child_map()
    ordered = []
    frontier = [pid]
    while frontier:
        current = frontier.pop()
        for child in children.get(current, []):
            ordered.append(child)
            frontier.append(child)
    return list(reversed(ordered))


def _signal_pids(pids, sig, own_pgid):
    for pid in pids:
        try:
            pgid = os.getpgid(pid)
            if pgid != own_pgid and pgid > 1:
                os.killpg(pgid, sig)
            else:
                os.kill(pid, sig)
        except (ProcessLookupError, PermissionError):
            continue


def resolve_shell_path(path=None):
    """Configured shell, then $SHELL, then /bin/bash; must be POSIX-like."""
    candidate = path or os.environ.get("SHELL") or DEFAULT_SHELL
    if os.path.basename(candidate) not in POSIX_SHELLS:
        logger.warning("Shell %s does not speak POSIX sh, using %s", candidate, DEFAULT_SHELL)
        return DEFAULT_SHELL
    return candidate


class PersistentShell:
    """A single long-lived shell bound to a working directory."""

    def __init__(self, cwd, shell_path=None, shell_args=None):
        self.cwd = str(cwd)
        self.shell_path = resolve_shell_path(shell_path)
        self.shell_args = ["-l"] if shell_args is None else list(shell_args)
        self.env = dict(os.environ)
        self.env["GIT_EDITOR"] = "true"

        self._exec_lock = threading.Lock()
        self._cond = threading.Condition()
        self._buffers = {"stdout": bytearray(), "stderr": bytearray()}
        self._eof = {"stdout": False, "stderr": False}
        self._process = None
        self._start()

    # Process lifecycle

    @property
    def pid(self):
        return self._process.pid if self._process else None

    @property
    def alive(self):
        return self._process is not None and self._process.poll() is None

    def _start(self):
        try:
            self._process = subprocess.Popen(
                [self.shell_path, *self.shell_args],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.cwd,
                env=self.env,
                bufsize=0,
                start_new_session=True,
            )
        except OSError as error:
            raise ExternalFailure(f"failed to start shell {self.shell_path}: {error}") from error

        with self._cond:
            self._buffers = {"stdout": bytearray(), "stderr": bytearray()}
            self._eof = {"stdout": False, "stderr": False}

        for name, stream in (("stdout", self._process.stdout), ("stderr", self._process.stderr)):
            reader = threading.Thread(
                target=self._read_stream,
                args=(self._process, name, stream),
                daemon=True,
                name=f"shell-{name}-{self._process.pid}",
            )
            reader.start()

        logger.debug("Started shell %s (pid %s) in %s", self.shell_path, self._process.pid, self.cwd)
        # Swallow anything the login profile prints.
        self._run(background(), "true", STARTUP_TIMEOUT_MS)

    def _read_stream(self, process, name, stream):
        fd = stream.fileno()
        while True:
            try:
                chunk = os.read(fd, 65536)
            except OSError:
                chunk = b""
            with self._cond:
                if process is not self._process:
                    return
                if not chunk:
                    self._eof[name] = True
                    self._cond.notify_all()
                    return
                self._buffers[name].extend(chunk)
                self._cond.notify_all()

    def close(self):
        process = self._process
        if process is None:
            return
        self._process = None
        with self._cond:
            self._cond.notify_all()
        try:
            if process.stdin:
                process.stdin.close()
        except OSError:
            pass
        try:
            os.killpg(process.pid, signal.SIGTERM)
            process.wait(timeout=1)
        except (ProcessLookupError, PermissionError):
            pass
        except subprocess.TimeoutExpired:
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            process.wait()
        logger.debug("Closed shell pid %s", process.pid)

    # Execution

    def exec(self, ctx, command, timeout_ms=None) -> ShellResult:
        """Run command; concurrent calls on one shell are serialized."""
        with self._exec_lock:
            if not self.alive:
                logger.info("Shell for %s is not running, starting a new one", self.cwd)
                self._start()
            return self._run(ctx, command, timeout_ms)

    def _frame(self, command, marker):
        return (
            f"{{ eval {shell_quote(command)}\n}} < /dev/null\n"
            "__coderig_rc=$?\n"
            f"printf '%s%s\\n' '{marker}' \"$__coderig_rc\"\n"
            f"printf '%s%s\\n' '{marker}' \"$__coderig_rc\" >&2\n"
        )

    def _finished(self, marker_bytes):
        both_marked = all(marker_bytes in self._buffers[name] for name in self._buffers)
        return both_marked or all(self._eof.values())

    def _wait_for(self, marker_bytes, deadline, ctx=None):
        """Wait until the command finishes. Returns False on timeout or cancel."""
        with self._cond:
            while not self._finished(marker_bytes):
                if ctx is not None and ctx.cancelled:
                    return False
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    def _wake(self):
        with self._cond:
            self._cond.notify_all()

    def _interrupt(self, marker_bytes):
        """Kill the running command; keep the shell if it recovers."""
        if self._process is None:
            return
        shell_pid = self._process.pid
        _signal_pids(descendant_pids(shell_pid), signal.SIGTERM, shell_pid)
        if self._wait_for(marker_bytes, time.monotonic() + KILL_GRACE_SECONDS):
            return
        _signal_pids(descendant_pids(shell_pid), signal.SIGKILL, shell_pid)
        if self._wait_for(marker_bytes, time.monotonic() + SENTINEL_GRACE_SECONDS):
            return
        logger.warning("Shell %s did not recover from interrupt, replacing it", shell_pid)
        self.close()

    def _run(self, ctx, command, timeout_ms):
        marker = f"<<CODERIG-{uuid.uuid4().hex}>>"
        marker_bytes = marker.encode()
        process = self._process

        with self._cond:
            self._buffers["stdout"].clear()
            self._buffers["stderr"].clear()

        try:
            process.stdin.write(self._frame(command, marker).encode())
            process.stdin.flush()
        except (BrokenPipeError, OSError) as error:
            self.close()
            raise ExternalFailure(f"shell is not accepting commands: {error}") from error

        deadline = None
        if timeout_ms:
            deadline = time.monotonic() + timeout_ms / 1000.0

        handle = ctx.add_done_callback(self._wake)
        try:
            completed = self._wait_for(marker_bytes, deadline, ctx)
        finally:
            ctx.remove_done_callback(handle)

        interrupted = not completed
        if interrupted:
            logger.debug("Interrupting command in %s: %s", self.cwd, command[:80])
            self._interrupt(marker_bytes)

        with self._cond:
            stdout, stdout_code = self._split(self._buffers["stdout"], marker_bytes)
            stderr, _ = self._split(self._buffers["stderr"], marker_bytes)
            shell_exited = all(self._eof.values())

        exit_code = stdout_code
        if exit_code is None:
            if interrupted:
                exit_code = INTERRUPTED_EXIT_CODE
            elif shell_exited:
                exit_code = process.wait()
            else:
                exit_code = 1
        if shell_exited and self._process is process:
            self._process = None

        if interrupted:
            stderr = f"{stderr}\n{INTERRUPTED_MESSAGE}" if stderr else INTERRUPTED_MESSAGE

        return ShellResult(
            stdout=truncate_output(stdout),
            stderr=truncate_output(stderr),
            exit_code=exit_code,
            interrupted=interrupted,
        )

    @staticmethod
    def _split(buffer, marker_bytes):
        """Text before the sentinel and the exit code after it."""
        index = buffer.find(marker_bytes)
        if index < 0:
            return bytes(buffer).decode("utf-8", errors="replace"), None
        output = bytes(buffer[:index]).decode("utf-8", errors="replace")
        tail = bytes(buffer[index + len(marker_bytes):]).split(b"\n", 1)[0].strip()
        try:
            return output, int(tail)
        except ValueError:
            return output, None


class ShellPool:
    """One PersistentShell per working directory, created on demand."""

    def __init__(self, shell_path=None, shell_args=None):
        self.shell_path = shell_path
        self.shell_args = shell_args
        self._shells: dict[str, PersistentShell] = {}
        self._lock = threading.Lock()

    def get(self, cwd) -> PersistentShell:
        key = os.path.abspath(str(cwd))
        with self._lock:
            shell = self._shells.get(key)
            if shell is None:
                shell = PersistentShell(key, self.shell_path, self.shell_args)
                self._shells[key] = shell
            return shell

    def exec(self, ctx, cwd, command, timeout_ms=None) -> ShellResult:
        return self.get(cwd).exec(ctx, command, timeout_ms)

    def close_all(self):
        with self._lock:
            shells = list(self._shells.values())
            self._shells.clear()
        for shell in shells:
            shell.close()
