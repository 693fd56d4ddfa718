from __future__ import annotations

import asyncio
import logging
import os
import re
import selectors
import signal
import subprocess
import time
from pathlib import Path

from sandbox_agent.errors import ToolResult, failure, ok
from sandbox_agent.observability.metrics import RuntimeMetrics, get_runtime_metrics
from sandbox_agent.observability.redaction import sanitize_output, truncate_output
from sandbox_agent.security.patterns import OUTPUT_BLOCKED_MARKER

logger = logging.getLogger("sandbox_agent.runtime")

_BACKGROUND_RE = re.compile(r"(?<!&)&\s*$")
_READ_CHUNK = 64 * 1024


class _CaptureLimit(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def is_background_command(command: str) -> bool:
    return _BACKGROUND_RE.search(command) is not None


class CommandExecutor:
    """Runs already-vetted commands and sanitizes whatever they print."""

    def __init__(
        self,
        *,
        timeout_seconds: int = 180,
        max_output_bytes: int = 10 * 1024 * 1024,
        max_output_chars: int = 10000,
        background_check_seconds: float = 1.0,
        metrics: RuntimeMetrics | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.max_output_bytes = max_output_bytes
        self.max_output_chars = max_output_chars
        self.background_check_seconds = background_check_seconds
        self.metrics = metrics or get_runtime_metrics()

    async def run_async(self, command: str, cwd: str | Path) -> ToolResult:
        return await asyncio.to_thread(self.run, command, cwd)

    def run(self, command: str, cwd: str | Path) -> ToolResult:
        Path(cwd).mkdir(parents=True, exist_ok=True)
        if is_background_command(command):
            result = self._run_background(_BACKGROUND_RE.sub("", command).rstrip(), cwd)
        else:
            result = self._run_foreground(command, cwd)
        self.metrics.increment("commands_executed_total" if result.success else "commands_failed_total")
        return result

    def _run_background(self, command: str, cwd: str | Path) -> ToolResult:
        try:
            proc = subprocess.Popen(
                command,
                shell=True,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            return failure(f"Failed to start background command: {exc}")

        time.sleep(self.background_check_seconds)
        returncode = proc.poll()
        logger.info("background_command_started", extra={"pid": proc.pid, "outcome": returncode})
        if returncode is None:
            return ok(f"Started in background (pid {proc.pid})")
        if returncode == 0:
            return ok(f"Background command finished immediately (pid {proc.pid}, exit 0)")
        return failure(f"Background command crashed immediately (exit {returncode})")

    def _run_foreground(self, command: str, cwd: str | Path) -> ToolResult:
        try:
            proc = subprocess.Popen(
                command,
                shell=True,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            return failure(f"Failed to start command: {exc}")

        try:
            stdout, stderr = self._capture(proc)
        except _CaptureLimit as exc:
            _kill_process_group(proc)
            return failure(exc.message)
        finally:
            for stream in (proc.stdout, proc.stderr):
                if stream is not None:
                    stream.close()

        stdout_text = stdout.decode("utf-8", errors="replace")
        stderr_text = stderr.decode("utf-8", errors="replace")

        if proc.returncode == 0:
            combined = "\n".join(part for part in (stdout_text.rstrip("\n"), stderr_text.rstrip("\n")) if part)
            return ok(self._clean(combined, self.max_output_chars) or "(empty output)")

        detail = stderr_text or stdout_text or "command failed"
        return failure(f"Exit {proc.returncode}: {self._clean(detail, self.max_output_chars // 2)}")

    def _capture(self, proc: subprocess.Popen) -> tuple[bytes, bytes]:
        deadline = time.monotonic() + self.timeout_seconds
        buffers: dict[int, bytearray] = {proc.stdout.fileno(): bytearray(), proc.stderr.fileno(): bytearray()}
        total = 0

        with selectors.DefaultSelector() as selector:
            for fd in buffers:
                selector.register(fd, selectors.EVENT_READ)
            while selector.get_map():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise _CaptureLimit(f"Command timed out after {self.timeout_seconds}s")
                for key, _ in selector.select(timeout=remaining):
                    chunk = os.read(key.fd, _READ_CHUNK)
                    if not chunk:
                        selector.unregister(key.fd)
                        continue
                    buffers[key.fd].extend(chunk)
                    total += len(chunk)
                    if total > self.max_output_bytes:
                        raise _CaptureLimit(f"Command output exceeded {self.max_output_bytes} bytes")

        try:
            proc.wait(timeout=max(deadline - time.monotonic(), 0.01))
        except subprocess.TimeoutExpired as exc:
            raise _CaptureLimit(f"Command timed out after {self.timeout_seconds}s") from exc

        return bytes(buffers[proc.stdout.fileno()]), bytes(buffers[proc.stderr.fileno()])

    def _clean(self, text: str, max_chars: int) -> str:
        sanitized = sanitize_output(text)
        if sanitized == OUTPUT_BLOCKED_MARKER:
            self.metrics.increment("sanitization_blocks_total")
            logger.warning("output_suppressed", extra={"reason": "secret dump"})
            return sanitized
        return truncate_output(sanitized, max_chars)


def _kill_process_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    proc.wait()
