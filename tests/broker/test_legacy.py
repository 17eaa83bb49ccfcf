"""Tests for the legacy protocol shim (fake interpreter, no subprocesses)."""

import json
from typing import Any

import pytest

from solbroker.broker.errors import (
    InputValidationError,
    InvocationError,
    OutputParseError,
    UnsupportedLegacyConfigError,
)
from solbroker.broker.interpreter import InterpreterCapability
from solbroker.broker.legacy import (
    MULTIPLE_SOURCES_MESSAGE,
    NO_INTERFACE_MESSAGE,
    compile_legacy,
    synthesize_metadata,
)
from solbroker.models.compile import StandardInputDocument

LIB = "__" + "Lib".ljust(36, "_") + "__"


class FakeLegacyInterpreter:
    """Records calls and answers with canned legacy output."""

    def __init__(self, capability: InterpreterCapability, output: dict | str | None = None) -> None:
        self.capability = capability
        self.calls: list[tuple[str, str, bool]] = []
        self._output = output

    async def call(self, entrypoint: str, payload: str, *, optimize: bool = False) -> str:
        self.calls.append((entrypoint, payload, optimize))
        if isinstance(self._output, str):
            return self._output
        if self._output is not None:
            return json.dumps(self._output)
        if entrypoint == "single":
            contracts = {":C": _legacy_contract()}
        else:
            contracts = {f"{path}:C": _legacy_contract() for path in json.loads(payload)["sources"]}
        return json.dumps({"contracts": contracts})


def _legacy_contract() -> dict:
    return {"interface": "[]", "bytecode": "6060" + LIB, "runtimeBytecode": "60" + LIB}


def _document(sources: dict[str, Any] | None = None, **settings: Any) -> StandardInputDocument:
    sources = sources or {"a.sol": {"content": "contract C {}"}}
    return StandardInputDocument.model_validate({"language": "Solidity", "sources": sources, "settings": settings})


class SeedRecorder:
    def __init__(self) -> None:
        self.seen: list[StandardInputDocument] = []

    async def __call__(self, seed: StandardInputDocument) -> dict:
        self.seen.append(seed)
        return {"contracts": {}}


def _metadata(result: dict, path: str = "a.sol") -> dict:
    return json.loads(result["contracts"][path]["C"]["metadata"])


# ===================================================================
# Dispatch by capability
# ===================================================================


class TestDispatch:
    @pytest.mark.anyio
    @pytest.mark.parametrize(
        ("capability", "entrypoint"),
        [
            (InterpreterCapability.CALLBACK_LEGACY, "callback"),
            (InterpreterCapability.MULTI_SOURCE_LEGACY, "multi"),
        ],
    )
    async def test_multi_source_entrypoints_get_sources_json(self, capability, entrypoint) -> None:
        interpreter = FakeLegacyInterpreter(capability)
        doc = _document({"a.sol": {"content": "A"}, "b.sol": {"content": "B"}})

        result = await compile_legacy(interpreter, doc, SeedRecorder())

        ((called, payload, optimize),) = interpreter.calls
        assert called == entrypoint
        assert json.loads(payload) == {"sources": {"a.sol": "A", "b.sol": "B"}}
        assert optimize is False
        assert set(result["contracts"]) == {"a.sol", "b.sol"}

    @pytest.mark.anyio
    async def test_single_source_gets_raw_content(self) -> None:
        interpreter = FakeLegacyInterpreter(InterpreterCapability.SINGLE_SOURCE_LEGACY)
        await compile_legacy(interpreter, _document({"a.sol": {"content": "contract C {}"}}), SeedRecorder())
        assert interpreter.calls == [("single", "contract C {}", False)]

    @pytest.mark.anyio
    async def test_single_source_rejects_two_sources(self) -> None:
        interpreter = FakeLegacyInterpreter(InterpreterCapability.SINGLE_SOURCE_LEGACY)
        doc = _document({"a.sol": {"content": "A"}, "b.sol": {"content": "B"}})
        with pytest.raises(UnsupportedLegacyConfigError) as exc_info:
            await compile_legacy(interpreter, doc, SeedRecorder())
        assert str(exc_info.value) == MULTIPLE_SOURCES_MESSAGE
        assert interpreter.calls == []

    @pytest.mark.anyio
    async def test_unsupported_build(self) -> None:
        interpreter = FakeLegacyInterpreter(InterpreterCapability.UNSUPPORTED)
        with pytest.raises(UnsupportedLegacyConfigError, match=NO_INTERFACE_MESSAGE):
            await compile_legacy(interpreter, _document(), SeedRecorder())

    @pytest.mark.anyio
    async def test_modern_build_is_not_legacy(self) -> None:
        interpreter = FakeLegacyInterpreter(InterpreterCapability.MODERN)
        with pytest.raises(InvocationError):
            await compile_legacy(interpreter, _document(), SeedRecorder())

    @pytest.mark.anyio
    async def test_missing_content(self) -> None:
        interpreter = FakeLegacyInterpreter(InterpreterCapability.MULTI_SOURCE_LEGACY)
        doc = _document({"a.sol": {"urls": ["ipfs://x"]}})
        with pytest.raises(InputValidationError, match="missing content for source: a.sol"):
            await compile_legacy(interpreter, doc, SeedRecorder())

    @pytest.mark.anyio
    async def test_unparseable_output(self) -> None:
        interpreter = FakeLegacyInterpreter(InterpreterCapability.MULTI_SOURCE_LEGACY, output="<html>")
        with pytest.raises(OutputParseError):
            await compile_legacy(interpreter, _document(), SeedRecorder())


# ===================================================================
# Output normalization
# ===================================================================


class TestNormalization:
    @pytest.mark.anyio
    async def test_optimizer_flag_in_metadata(self) -> None:
        interpreter = FakeLegacyInterpreter(InterpreterCapability.MULTI_SOURCE_LEGACY)
        doc = _document(optimizer={"enabled": True, "runs": 200})

        result = await compile_legacy(interpreter, doc, SeedRecorder())

        assert interpreter.calls[0][2] is True
        assert _metadata(result)["settings"]["optimizer"]["enabled"] is True

    @pytest.mark.anyio
    async def test_optimizer_defaults_to_disabled(self) -> None:
        interpreter = FakeLegacyInterpreter(InterpreterCapability.MULTI_SOURCE_LEGACY)
        result = await compile_legacy(interpreter, _document(), SeedRecorder())
        assert _metadata(result)["settings"] == {"optimizer": {"enabled": False}, "nonDeterministicSeeds": []}

    @pytest.mark.anyio
    async def test_link_references_grouped(self) -> None:
        interpreter = FakeLegacyInterpreter(InterpreterCapability.MULTI_SOURCE_LEGACY)
        result = await compile_legacy(interpreter, _document(), SeedRecorder())
        evm = result["contracts"]["a.sol"]["C"]["evm"]
        assert evm["bytecode"]["linkReferences"] == {"": {"Lib": [{"start": 2, "length": 20}]}}
        assert evm["deployedBytecode"]["linkReferences"] == {"": {"Lib": [{"start": 1, "length": 20}]}}

    def test_metadata_is_compact_json(self) -> None:
        assert synthesize_metadata(True, []) == (
            '{"settings":{"optimizer":{"enabled":true},"nonDeterministicSeeds":[]}}'
        )


# ===================================================================
# Seeds
# ===================================================================


class TestSeeds:
    @pytest.mark.anyio
    async def test_seeds_compiled_in_order_before_primary(self) -> None:
        interpreter = FakeLegacyInterpreter(InterpreterCapability.MULTI_SOURCE_LEGACY)
        seeds = [
            {"sources": {"s1.sol": {"content": "one"}}, "settings": {"optimizer": {"enabled": True}}},
            {"sources": {"s2.sol": {"content": "two"}}},
            {"sources": {"s3.sol": {"content": "three"}}, "settings": {"evmVersion": "byzantium"}},
        ]
        recorder = SeedRecorder()

        result = await compile_legacy(interpreter, _document(nonDeterministicSeeds=seeds), recorder)

        assert [list(seed.sources) for seed in recorder.seen] == [["s1.sol"], ["s2.sol"], ["s3.sol"]]
        recorded = _metadata(result)["settings"]["nonDeterministicSeeds"]
        assert len(recorded) == 3
        assert [list(entry["sources"]) for entry in recorded] == [["s1.sol"], ["s2.sol"], ["s3.sol"]]
        assert recorded[0]["settings"] == {"optimizer": {"enabled": True}}
        assert recorded[1]["settings"] == {}
        assert recorded[2]["sources"] == {"s3.sol": {"content": "three"}}

    @pytest.mark.anyio
    async def test_seed_model_checker_stripped(self) -> None:
        interpreter = FakeLegacyInterpreter(InterpreterCapability.MULTI_SOURCE_LEGACY)
        seeds = [{"sources": {"s.sol": {"content": "s"}}, "settings": {"modelChecker": {"engine": "all"}}}]
        recorder = SeedRecorder()

        result = await compile_legacy(interpreter, _document(nonDeterministicSeeds=seeds), recorder)

        assert "modelChecker" not in recorder.seen[0].settings
        assert _metadata(result)["settings"]["nonDeterministicSeeds"][0]["settings"] == {}

    @pytest.mark.anyio
    async def test_invalid_seed_rejected_before_compiling(self) -> None:
        interpreter = FakeLegacyInterpreter(InterpreterCapability.MULTI_SOURCE_LEGACY)
        recorder = SeedRecorder()
        with pytest.raises(InputValidationError, match="invalid seed 0"):
            await compile_legacy(interpreter, _document(nonDeterministicSeeds=[{"sources": "nope"}]), recorder)
        assert recorder.seen == []
        assert interpreter.calls == []
