"""Translate legacy compiler JSON into the standard-JSON output shape.

Pre-standard-JSON releases answer with one flat ``contracts`` map keyed
``"<file>:<contract>"`` (or just ``"<contract>"``) and use the historical
field names (``interface``, ``bytecode``, ``runtimeBytecode``, ``srcmap``,
``functionHashes`` ...). The result of ``translate_legacy_output`` has the
modern ``{errors, contracts: {file: {name: {abi, metadata, evm}}},
sources}`` layout.
"""

import json
import re
from typing import Any

from solbroker.broker.errors import OutputParseError
from solbroker.broker.linkrefs import find_link_references

_CONTRACT_KEY_RE = re.compile(r"^(?:(.*):)?([^:]+)$")
_LOCATED_ERROR_RE = re.compile(r"^(.*):(\d+):(\d+):(.*):")


def translate_errors(errors: list[str]) -> list[dict[str, str]]:
    translated = []
    for message in errors:
        located = _LOCATED_ERROR_RE.match(message)
        if located:
            error_type = located.group(4).strip()
        elif ": Warning:" in message:
            error_type = "Warning"
        else:
            error_type = "Error"
        translated.append({
            "type": error_type,
            "component": "general",
            "severity": "warning" if error_type == "Warning" else "error",
            "message": message,
            "formattedMessage": message,
        })
    return translated


def translate_gas_estimates(estimate: Any) -> Any:
    """Legacy gas numbers → strings; ``null`` (unbounded) → ``"infinite"``."""
    if estimate is None:
        return "infinite"
    if isinstance(estimate, (int, float)):
        return str(int(estimate)) if float(estimate).is_integer() else str(estimate)
    if isinstance(estimate, dict):
        return {name: translate_gas_estimates(value) for name, value in estimate.items()}
    return estimate


def _translate_contract(contract: dict[str, Any]) -> dict[str, Any]:
    gas = contract.get("gasEstimates") or {}
    translated_gas: dict[str, Any] = {}
    creation = gas.get("creation")
    if creation:
        translated_gas["creation"] = {
            "codeDepositCost": translate_gas_estimates(creation[1]),
            "executionCost": translate_gas_estimates(creation[0]),
        }
    if gas.get("internal"):
        translated_gas["internal"] = translate_gas_estimates(gas["internal"])
    if gas.get("external"):
        translated_gas["external"] = translate_gas_estimates(gas["external"])

    interface = contract.get("interface")
    try:
        abi = json.loads(interface) if interface else []
    except json.JSONDecodeError as exc:
        msg = f"legacy contract interface is not JSON: {exc}"
        raise OutputParseError(msg) from exc

    bytecode = contract.get("bytecode")
    runtime_bytecode = contract.get("runtimeBytecode")
    return {
        "abi": abi,
        "metadata": contract.get("metadata"),
        "evm": {
            "legacyAssembly": contract.get("assembly"),
            "bytecode": {
                "object": bytecode,
                "opcodes": contract.get("opcodes"),
                "sourceMap": contract.get("srcmap"),
                "linkReferences": find_link_references(bytecode),
            },
            "deployedBytecode": {
                "object": runtime_bytecode,
                "sourceMap": contract.get("srcmapRuntime"),
                "linkReferences": find_link_references(runtime_bytecode),
            },
            "methodIdentifiers": contract.get("functionHashes"),
            "gasEstimates": translated_gas,
        },
    }


def translate_legacy_output(output: dict[str, Any]) -> dict[str, Any]:
    """Rebuild a standard-JSON output document from legacy compiler output.

    Raises:
        OutputParseError: If a contract key or ABI cannot be interpreted.
    """
    if output.get("error"):
        raw_errors = [output["error"]]
    else:
        raw_errors = list(output.get("errors") or [])

    contracts: dict[str, dict[str, Any]] = {}
    for key, contract in (output.get("contracts") or {}).items():
        match = _CONTRACT_KEY_RE.match(key)
        if match is None:
            msg = f"unrecognised legacy contract key: {key!r}"
            raise OutputParseError(msg)
        file_name = match.group(1) or ""
        contracts.setdefault(file_name, {})[match.group(2)] = _translate_contract(contract)

    source_ids = {name: index for index, name in enumerate(output.get("sourceList") or [])}
    sources = {
        name: {"id": source_ids.get(name), "legacyAST": source.get("AST")}
        for name, source in (output.get("sources") or {}).items()
    }

    return {
        "errors": translate_errors(raw_errors),
        "contracts": contracts,
        "sources": sources,
    }
