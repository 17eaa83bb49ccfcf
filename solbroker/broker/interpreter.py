"""Isolated host process for scripted (soljson) compiler builds.

A soljson build is an Emscripten module with process-global state, so it
is never loaded into the broker itself. ``InterpreterProcess`` spawns a
small host (``host/soljson_host.js`` under node by default) that loads one
build and answers line-delimited JSON commands:

    host → {"ready": true, "entrypoints": ["standard", "callback", ...]}
    broker → {"id": 1, "cmd": "standard", "input": "<json>", "optimize": false}
    host → {"id": 1, "ok": true, "output": "<json>"}

The process is a scoped resource: leaving the ``async with`` block always
terminates it and drains its streams, on success, error, cancellation and
timeout alike.
"""

import asyncio
import contextlib
import json
import logging
from collections.abc import Iterable, Sequence
from enum import StrEnum
from pathlib import Path
from typing import Any

from solbroker.broker.errors import CompilerCrashError, InvocationError, OutputParseError

logger = logging.getLogger(__name__)

HOST_SCRIPT = Path(__file__).parent / "host" / "soljson_host.js"

# Whole compiler outputs travel as one line.
_STREAM_LIMIT = 256 * 1024 * 1024
_EXIT_GRACE_S = 2.0


class InterpreterCapability(StrEnum):
    """Call convention of a loaded build, in dispatch preference order."""

    MODERN = "modern"
    CALLBACK_LEGACY = "callback-legacy"
    MULTI_SOURCE_LEGACY = "multi-source-legacy"
    SINGLE_SOURCE_LEGACY = "single-source-legacy"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_entrypoints(cls, entrypoints: Iterable[str]) -> "InterpreterCapability":
        """Pick the preferred convention among the entrypoints a build exports."""
        available = set(entrypoints)
        for entrypoint, capability in _ENTRYPOINT_PREFERENCE:
            if entrypoint in available:
                return capability
        return cls.UNSUPPORTED

    @property
    def entrypoint(self) -> str | None:
        """Host command name serving this convention."""
        for entrypoint, capability in _ENTRYPOINT_PREFERENCE:
            if capability is self:
                return entrypoint
        return None

    @property
    def is_legacy(self) -> bool:
        return self is not InterpreterCapability.MODERN


_ENTRYPOINT_PREFERENCE: tuple[tuple[str, InterpreterCapability], ...] = (
    ("standard", InterpreterCapability.MODERN),
    ("callback", InterpreterCapability.CALLBACK_LEGACY),
    ("multi", InterpreterCapability.MULTI_SOURCE_LEGACY),
    ("single", InterpreterCapability.SINGLE_SOURCE_LEGACY),
)


def host_command(runtime: str) -> list[str]:
    """Default host invocation: ``<runtime> soljson_host.js``."""
    return [runtime, str(HOST_SCRIPT)]


class InterpreterProcess:
    """One running host process with one scripted build loaded."""

    def __init__(self, command: Sequence[str], artifact: Path) -> None:
        self._command = list(command)
        self._artifact = artifact
        self._proc: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task | None = None
        self._stderr_chunks: list[bytes] = []
        self._next_id = 0
        self.capability = InterpreterCapability.UNSUPPORTED

    @property
    def stderr(self) -> str:
        return b"".join(self._stderr_chunks).decode("utf-8", errors="replace")

    async def __aenter__(self) -> "InterpreterProcess":
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self._command,
                str(self._artifact.resolve()),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
            )
        except OSError as exc:
            msg = f"failed to start interpreter host {self._command[0]!r}: {exc}"
            raise InvocationError(msg) from exc
        self._stderr_task = asyncio.create_task(self._drain_stderr())

        try:
            hello = await self._read_message()
            if not hello.get("ready"):
                msg = f"interpreter failed to load {self._artifact.name}: {hello.get('error', 'unknown error')}"
                raise InvocationError(msg)
        except BaseException:
            await self._terminate(force=True)
            raise

        self.capability = InterpreterCapability.from_entrypoints(hello.get("entrypoints") or [])
        logger.debug("Loaded %s with capability %s", self._artifact.name, self.capability.value)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._terminate(force=exc_type is not None)

    async def call(self, entrypoint: str, payload: str, *, optimize: bool = False) -> str:
        """Run one compiler entrypoint and return its raw output text.

        Raises:
            InvocationError: If the host reports a failure or exits.
        """
        if self._proc is None or self._proc.stdin is None:
            msg = "interpreter host is not running"
            raise InvocationError(msg)

        self._next_id += 1
        request = {"id": self._next_id, "cmd": entrypoint, "input": payload, "optimize": optimize}
        self._proc.stdin.write(json.dumps(request).encode("utf-8") + b"\n")
        try:
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            msg = f"interpreter host closed its input: {exc}"
            raise InvocationError(msg) from exc

        reply = await self._read_message()
        if reply.get("id") != self._next_id:
            msg = f"interpreter host answered request {reply.get('id')!r}, expected {self._next_id}"
            raise InvocationError(msg)
        if not reply.get("ok"):
            raise InvocationError(str(reply.get("error") or "interpreter call failed"))
        output = reply.get("output")
        if not isinstance(output, str):
            msg = "interpreter host returned no output"
            raise OutputParseError(msg)
        return output

    # ------------------------------------------------------------------
    # Stream handling
    # ------------------------------------------------------------------

    async def _read_message(self) -> dict[str, Any]:
        assert self._proc is not None and self._proc.stdout is not None
        line = await self._proc.stdout.readline()
        if not line:
            # host died: collect everything it said before reporting
            await self._proc.wait()
            if self._stderr_task is not None:
                await self._stderr_task
            stderr = self.stderr
            if stderr.strip():
                raise CompilerCrashError(stderr)
            msg = f"interpreter host exited with status {self._proc.returncode} and no output"
            raise InvocationError(msg)
        try:
            message = json.loads(line)
        except json.JSONDecodeError as exc:
            msg = f"interpreter host sent malformed message: {exc}"
            raise OutputParseError(msg) from exc
        if not isinstance(message, dict):
            msg = "interpreter host sent a non-object message"
            raise OutputParseError(msg)
        return message

    async def _drain_stderr(self) -> None:
        assert self._proc is not None and self._proc.stderr is not None
        while chunk := await self._proc.stderr.read(65536):
            self._stderr_chunks.append(chunk)

    async def _terminate(self, *, force: bool) -> None:
        proc = self._proc
        if proc is None:
            return
        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
        if proc.returncode is None:
            if force:
                _kill(proc)
            try:
                await asyncio.wait_for(proc.wait(), timeout=_EXIT_GRACE_S)
            except TimeoutError:
                _kill(proc)
                await proc.wait()
        if self._stderr_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task


def _kill(proc: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
