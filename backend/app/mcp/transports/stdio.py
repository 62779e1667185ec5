"""MCP stdio transport: spawn subprocess and exchange newline-delimited frames over stdin/stdout."""

from __future__ import annotations

import asyncio
import logging
import os
from collections import deque
from typing import Any

from app.mcp.errors import EndOfStream, ReadError, ShutdownError, SpawnError, WriteError

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD_SECONDS = 2.0
DEFAULT_MAX_LINE_BYTES = 16 * 1024 * 1024
DEFAULT_STDERR_TAIL_LINES = 50


def build_env(overrides: dict[str, Any] | None) -> dict[str, str]:
    """Overlay `overrides` on the inherited environment."""
    env = dict(os.environ)
    if isinstance(overrides, dict):
        for k, v in overrides.items():
            if k and v is not None:
                env[str(k)] = str(v)
    return env


class StdioTransport:
    """Owns one child process; frames are single lines of UTF-8 JSON."""

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        *,
        cwd: str | None = None,
        grace_period: float = DEFAULT_GRACE_PERIOD_SECONDS,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
        stderr_tail_lines: int = DEFAULT_STDERR_TAIL_LINES,
    ) -> None:
        if not command or not command.strip():
            raise SpawnError("Command must not be empty")
        self._argv: list[str] = [command, *[str(a) for a in args or []]]
        self._env = build_env(env)
        self._cwd = cwd
        self._grace_period = grace_period
        self._max_line_bytes = max_line_bytes
        self._process: asyncio.subprocess.Process | None = None
        self._write_lock = asyncio.Lock()
        self._stderr_task: asyncio.Task | None = None
        self._stderr_tail: deque[str] = deque(maxlen=max(stderr_tail_lines, 1))
        self._terminated = False

    @classmethod
    async def start(
        cls,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> StdioTransport:
        transport = cls(command, args, env, **kwargs)
        await transport.open()
        return transport

    @property
    def label(self) -> str:
        return os.path.basename(self._argv[0])

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process is not None else None

    @property
    def is_running(self) -> bool:
        return (
            self._process is not None
            and self._process.returncode is None
            and not self._terminated
        )

    def stderr_tail(self) -> list[str]:
        return list(self._stderr_tail)

    async def open(self) -> None:
        if self._process is not None:
            return
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
                cwd=self._cwd,
                limit=self._max_line_bytes,
            )
        except OSError as e:
            raise SpawnError(f"Failed to start {self._argv[0]}: {e}") from e
        if self._process.stdin is None or self._process.stdout is None:
            raise SpawnError("Subprocess stdin/stdout not available")
        logger.info("Started MCP server process %s (pid=%s)", self.label, self._process.pid)
        self._stderr_task = asyncio.create_task(
            self._drain_stderr(), name=f"mcp-stderr-{self.label}-{self._process.pid}"
        )

    async def send(self, message: bytes) -> None:
        process = self._process
        if process is None or process.stdin is None or self._terminated:
            raise WriteError("Transport is not running")
        async with self._write_lock:
            if process.stdin.is_closing():
                raise WriteError(f"{self.label} stdin is closed")
            try:
                process.stdin.write(message + b"\n")
                await process.stdin.drain()
            except OSError as e:
                raise WriteError(f"Failed to write to {self.label}: {e}") from e

    async def receive(self) -> bytes:
        process = self._process
        if process is None or process.stdout is None:
            raise EndOfStream("Transport is not running")
        try:
            line = await process.stdout.readline()
        except ValueError as e:
            # StreamReader reports an over-limit line as ValueError
            raise ReadError(f"Frame from {self.label} exceeds {self._max_line_bytes} bytes") from e
        except OSError as e:
            raise ReadError(f"Failed to read from {self.label}: {e}") from e
        if not line:
            raise EndOfStream(f"{self.label} closed its output")
        return line.rstrip(b"\r\n")

    async def terminate(self) -> None:
        """Terminate the subprocess, escalating to kill after the grace period."""
        process = self._process
        if process is None or self._terminated:
            return
        self._terminated = True
        try:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            if process.returncode is None:
                try:
                    process.terminate()
                except ProcessLookupError:
                    pass
                try:
                    await asyncio.wait_for(process.wait(), timeout=self._grace_period)
                except asyncio.TimeoutError:
                    logger.warning(
                        "MCP server %s (pid=%s) ignored SIGTERM; killing",
                        self.label,
                        process.pid,
                    )
                    try:
                        process.kill()
                    except ProcessLookupError:
                        pass
                    try:
                        await asyncio.wait_for(process.wait(), timeout=self._grace_period)
                    except asyncio.TimeoutError as e:
                        raise ShutdownError(
                            f"{self.label} (pid={process.pid}) did not exit after kill"
                        ) from e
            logger.info(
                "MCP server process %s exited (pid=%s, code=%s)",
                self.label,
                process.pid,
                process.returncode,
            )
        finally:
            if self._stderr_task is not None and not self._stderr_task.done():
                self._stderr_task.cancel()

    async def _drain_stderr(self) -> None:
        process = self._process
        if process is None or process.stderr is None:
            return
        while True:
            try:
                line = await process.stderr.readline()
            except ValueError:
                self._stderr_tail.append("<stderr line truncated>")
                continue
            except OSError:
                break
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                self._stderr_tail.append(text)
                logger.debug("[%s stderr] %s", self.label, text)
