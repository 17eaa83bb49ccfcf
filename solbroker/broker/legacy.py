"""LegacyProtocolShim — serve standard-JSON requests on pre-standard builds.

Old scripted builds only export narrower entrypoints (callback, multi-source
or single-source compile taking raw source text and an optimize flag). The
shim adapts the request to whichever one the interpreter exposes, compiles
any alternate-settings seeds first, translates the legacy output to modern
field names, then per contract:

- synthesizes the ``metadata`` string old builds never emit, recording the
  optimizer flag and the seeds' ``{sources, settings}`` provenance;
- regroups path-less library link references under the ``""`` key.
"""

import json
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from solbroker.broker.errors import (
    InputValidationError,
    InvocationError,
    OutputParseError,
    UnsupportedLegacyConfigError,
)
from solbroker.broker.interpreter import InterpreterCapability
from solbroker.broker.linkrefs import reshape_link_references
from solbroker.broker.translate import translate_legacy_output
from solbroker.models.compile import StandardInputDocument, parse_standard_input

MULTIPLE_SOURCES_MESSAGE = "multiple sources not supported in legacy mode"
NO_INTERFACE_MESSAGE = "compiler does not support any json interfaces"

SeedCompiler = Callable[[StandardInputDocument], Awaitable[dict[str, Any]]]


class LegacyInterpreter(Protocol):
    capability: InterpreterCapability

    async def call(self, entrypoint: str, payload: str, *, optimize: bool = False) -> str: ...


# ---------------------------------------------------------------------------
# Output normalization
# ---------------------------------------------------------------------------


def synthesize_metadata(optimize: bool, seeds: list[dict[str, Any]]) -> str:
    """Metadata string for a legacy-compiled contract."""
    metadata = {
        "settings": {
            "optimizer": {"enabled": optimize},
            "nonDeterministicSeeds": seeds,
        },
    }
    return json.dumps(metadata, separators=(",", ":"))


def normalize_legacy_output(
    output: dict[str, Any],
    *,
    optimize: bool,
    seeds: list[dict[str, Any]],
) -> dict[str, Any]:
    """Translate legacy output and apply the per-contract transforms."""
    translated = translate_legacy_output(output)
    metadata = synthesize_metadata(optimize, seeds)

    for contracts in translated["contracts"].values():
        for contract in contracts.values():
            contract["metadata"] = metadata
            evm = contract.get("evm") or {}
            for section in ("bytecode", "deployedBytecode"):
                code = evm.get(section)
                if isinstance(code, dict):
                    code["linkReferences"] = reshape_link_references(code.get("linkReferences"))
    return translated


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def legacy_sources(document: StandardInputDocument) -> dict[str, str]:
    """``{path: content}`` for legacy entrypoints, which cannot resolve imports.

    Raises:
        InputValidationError: If any source entry has no content.
    """
    sources: dict[str, str] = {}
    for path, entry in document.sources.items():
        if entry.content is None:
            msg = f"missing content for source: {path}"
            raise InputValidationError(msg, violations=[f"sources.{path}.content: missing"])
        sources[path] = entry.content
    return sources


def _check_dispatchable(capability: InterpreterCapability, sources: dict[str, str]) -> None:
    match capability:
        case InterpreterCapability.CALLBACK_LEGACY | InterpreterCapability.MULTI_SOURCE_LEGACY:
            return
        case InterpreterCapability.SINGLE_SOURCE_LEGACY:
            if len(sources) > 1:
                raise UnsupportedLegacyConfigError(MULTIPLE_SOURCES_MESSAGE)
            if not sources:
                msg = "at least one source is required"
                raise InputValidationError(msg, violations=["sources: empty"])
        case InterpreterCapability.UNSUPPORTED:
            raise UnsupportedLegacyConfigError(NO_INTERFACE_MESSAGE)
        case InterpreterCapability.MODERN:
            msg = "standard-JSON interpreter handed to the legacy shim"
            raise InvocationError(msg)


def _parse_seeds(document: StandardInputDocument) -> list[StandardInputDocument]:
    seeds = []
    for index, raw_seed in enumerate(document.seeds):
        seed, violations = parse_standard_input(raw_seed)
        if seed is None:
            prefixed = [f"settings.nonDeterministicSeeds.{index}.{v}" for v in violations]
            msg = f"invalid seed {index}: " + "; ".join(violations)
            raise InputValidationError(msg, violations=prefixed)
        seeds.append(seed.without_model_checker())
    return seeds


async def compile_legacy(
    interpreter: LegacyInterpreter,
    document: StandardInputDocument,
    compile_seed: SeedCompiler,
) -> dict[str, Any]:
    """Compile ``document`` through a legacy entrypoint of ``interpreter``.

    Seeds are compiled one after another, in declaration order, through
    ``compile_seed`` before the primary compilation; their results are
    discarded and only their ``{sources, settings}`` are kept as provenance.

    Raises:
        InputValidationError: Source without content, or a malformed seed.
        UnsupportedLegacyConfigError: Several sources for a single-source
            build, or no supported entrypoint at all.
        OutputParseError: Legacy output is not well-formed.
    """
    sources = legacy_sources(document)
    capability = interpreter.capability
    _check_dispatchable(capability, sources)
    optimize = document.optimizer_enabled

    provenance = []
    for seed in _parse_seeds(document):
        await compile_seed(seed)
        provenance.append(seed.provenance())

    if capability == InterpreterCapability.SINGLE_SOURCE_LEGACY:
        (payload,) = sources.values()
    else:
        payload = json.dumps({"sources": sources})
    raw = await interpreter.call(capability.entrypoint, payload, optimize=optimize)

    try:
        output = json.loads(raw)
    except json.JSONDecodeError as exc:
        msg = f"failed to parse legacy compiler output: {exc}"
        raise OutputParseError(msg) from exc
    if not isinstance(output, dict):
        msg = "legacy compiler output is not a JSON object"
        raise OutputParseError(msg)

    return normalize_legacy_output(output, optimize=optimize, seeds=provenance)
