"""CompilerInvoker — run one compilation through the right protocol.

Native releases run as ``<binary> --standard-json`` subprocesses and already
speak the modern output schema. Scripted releases run inside an isolated
interpreter host; builds exposing the standard entrypoint are called
directly, older ones go through the legacy shim.

Every invocation is bounded by a wall-clock timeout that kills the
subprocess, and records an ``InvocationTrace`` whatever the outcome.
"""

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable, Sequence
from contextlib import AbstractAsyncContextManager
from pathlib import Path
from typing import Any

from solbroker.broker.artifacts import ArtifactCache
from solbroker.broker.catalog import ProtocolKind, VersionCatalog
from solbroker.broker.errors import (
    CompilerCrashError,
    InvocationError,
    InvocationTimeoutError,
    OutputParseError,
)
from solbroker.broker.interpreter import InterpreterCapability, InterpreterProcess, host_command
from solbroker.broker.legacy import compile_legacy
from solbroker.config.settings import Settings
from solbroker.models.compile import StandardInputDocument
from solbroker.observability.traces import InvocationTrace, TraceRecorder

logger = logging.getLogger(__name__)

NATIVE_STANDARD_JSON_FLAG = "--standard-json"

InterpreterFactory = Callable[[Path], AbstractAsyncContextManager[Any]]


def parse_compiler_output(stdout: str, stderr: str) -> dict[str, Any]:
    """Interpret a compiler's output stream.

    Empty output with diagnostics on stderr is a crash. The exit status is
    not consulted.

    Raises:
        CompilerCrashError: Empty output, non-empty stderr.
        OutputParseError: Output missing or not a JSON object.
    """
    if not stdout.strip():
        if stderr.strip():
            raise CompilerCrashError(stderr)
        msg = "compiler produced no output"
        raise OutputParseError(msg)
    try:
        result = json.loads(stdout)
    except json.JSONDecodeError as exc:
        msg = f"failed to parse compiler output: {exc}"
        raise OutputParseError(msg) from exc
    if not isinstance(result, dict):
        msg = "compiler output is not a JSON object"
        raise OutputParseError(msg)
    return result


async def run_native_compiler(executable: Path, payload: bytes) -> tuple[str, str, int | None]:
    """Feed ``payload`` to ``<executable> --standard-json`` and drain it.

    The process is killed if the caller is cancelled before it exits.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            str(executable),
            NATIVE_STANDARD_JSON_FLAG,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        msg = f"failed to start {executable.name}: {exc}"
        raise InvocationError(msg) from exc

    try:
        stdout, stderr = await proc.communicate(payload)
    finally:
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()

    return (
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
        proc.returncode,
    )


class CompilerInvoker:
    """Dispatch compilations to native binaries or interpreter hosts."""

    def __init__(
        self,
        *,
        catalog: VersionCatalog,
        cache: ArtifactCache,
        recorder: TraceRecorder,
        timeout_s: float = 120.0,
        interpreter_command: Sequence[str] | None = None,
        interpreter_factory: InterpreterFactory | None = None,
    ) -> None:
        self._catalog = catalog
        self._cache = cache
        self._recorder = recorder
        self._timeout_s = timeout_s
        command = list(interpreter_command or host_command("node"))
        self._interpreter_factory = interpreter_factory or (
            lambda artifact: InterpreterProcess(command, artifact)
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        catalog: VersionCatalog,
        cache: ArtifactCache,
        recorder: TraceRecorder,
    ) -> "CompilerInvoker":
        return cls(
            catalog=catalog,
            cache=cache,
            recorder=recorder,
            timeout_s=settings.INVOCATION_TIMEOUT_S,
            interpreter_command=host_command(settings.NODE_BINARY),
        )

    async def invoke(self, version: str, document: StandardInputDocument) -> dict[str, Any]:
        """Compile ``document`` with compiler release ``version``.

        ``settings.modelChecker`` is removed before anything is invoked.

        Raises:
            UnknownVersionError: Version not in the catalog.
            AcquisitionError: Artifact download failed.
            InvocationError: Process-level failure (crash, parse, timeout).
        """
        document = document.without_model_checker()
        kind = self._catalog.classify(version)

        trace = InvocationTrace(version=version, protocol=kind.value)
        failure: str | None = None
        try:
            artifact = await self._cache.acquire(version)
            logger.debug("Invoking %s (%s) from %s", version, kind.value, artifact.name)
            async with asyncio.timeout(self._timeout_s):
                if kind == ProtocolKind.NATIVE:
                    return await self._invoke_native(artifact, document, trace)
                return await self._invoke_scripted(artifact, document, trace)
        except TimeoutError as exc:
            failure = f"compilation timed out after {self._timeout_s:g}s"
            raise InvocationTimeoutError(failure) from exc
        except asyncio.CancelledError:
            failure = "cancelled"
            raise
        except Exception as exc:
            failure = str(exc) or type(exc).__name__
            raise
        finally:
            trace.finish(error=failure)
            self._recorder.record(trace)

    # ------------------------------------------------------------------
    # Native
    # ------------------------------------------------------------------

    async def _invoke_native(
        self,
        artifact: Path,
        document: StandardInputDocument,
        trace: InvocationTrace,
    ) -> dict[str, Any]:
        payload = json.dumps(document.to_compiler_input()).encode("utf-8")
        stdout, stderr, exit_code = await run_native_compiler(artifact, payload)
        trace.stderr = stderr
        trace.exit_code = exit_code
        return parse_compiler_output(stdout, stderr)

    # ------------------------------------------------------------------
    # Scripted
    # ------------------------------------------------------------------

    async def _invoke_scripted(
        self,
        artifact: Path,
        document: StandardInputDocument,
        trace: InvocationTrace,
    ) -> dict[str, Any]:
        async with self._interpreter_factory(artifact) as interpreter:
            trace.protocol = (
                "scripted-legacy" if interpreter.capability.is_legacy else "scripted-modern"
            )
            try:
                return await self._compile_scripted(interpreter, document)
            finally:
                trace.stderr = interpreter.stderr

    async def _compile_scripted(
        self,
        interpreter: Any,
        document: StandardInputDocument,
    ) -> dict[str, Any]:
        if interpreter.capability == InterpreterCapability.MODERN:
            payload = json.dumps(document.to_compiler_input())
            raw = await interpreter.call(InterpreterCapability.MODERN.entrypoint, payload)
            return parse_compiler_output(raw, "")

        return await compile_legacy(
            interpreter,
            document,
            lambda seed: self._compile_scripted(interpreter, seed),
        )
