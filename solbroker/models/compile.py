"""Compile request/response models and the standard-JSON input schema.

The standard input document is the one shape every compiler release is
ultimately fed: ``{language, sources: {path: {content}}, settings}``.
Settings stay a free-form mapping because each release understands a
different subset of keys; only the few keys the broker itself acts on are
read through typed accessors.
"""

from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from solbroker.models.common import BrokerBase

MODEL_CHECKER_KEY = "modelChecker"
SEEDS_KEY = "nonDeterministicSeeds"


class SourceEntry(BrokerBase):
    """One entry of ``sources``. ``urls``/``keccak256`` pass through as extras."""

    content: str | None = None


class StandardInputDocument(BrokerBase):
    """Validated standard-JSON compiler input."""

    language: str = "Solidity"
    sources: dict[str, SourceEntry]
    settings: dict[str, Any] = Field(default_factory=dict)

    @field_validator("settings", mode="before")
    @classmethod
    def _null_settings_as_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def optimizer_enabled(self) -> bool:
        optimizer = self.settings.get("optimizer")
        if not isinstance(optimizer, dict):
            return False
        return bool(optimizer.get("enabled"))

    @property
    def seeds(self) -> list[Any]:
        """Raw alternate-settings documents, in declaration order."""
        seeds = self.settings.get(SEEDS_KEY)
        return list(seeds) if isinstance(seeds, list) else []

    def without_model_checker(self) -> "StandardInputDocument":
        if MODEL_CHECKER_KEY not in self.settings:
            return self
        settings = {k: v for k, v in self.settings.items() if k != MODEL_CHECKER_KEY}
        return self.model_copy(update={"settings": settings})

    def provenance(self) -> dict[str, Any]:
        """The ``{sources, settings}`` pair recorded for a seed compilation."""
        payload = self.to_compiler_input()
        return {"sources": payload["sources"], "settings": payload["settings"]}

    def to_compiler_input(self) -> dict[str, Any]:
        """Serialize for a compiler's standard-JSON entrypoint."""
        payload = self.model_dump(mode="json", exclude={"sources", "settings"})
        payload["sources"] = {
            path: entry.model_dump(mode="json", exclude_none=True)
            for path, entry in self.sources.items()
        }
        payload["settings"] = dict(self.settings)
        return payload


def parse_standard_input(raw: Any) -> tuple[StandardInputDocument | None, list[str]]:
    """Validate a raw input document.

    Returns ``(document, [])`` on success or ``(None, violations)`` where
    every violation is a ``"<field path>: <message>"`` string.
    """
    try:
        return StandardInputDocument.model_validate(raw), []
    except ValidationError as exc:
        violations = []
        for error in exc.errors():
            loc = ".".join(str(part) for part in error["loc"]) or "input"
            violations.append(f"{loc}: {error['msg']}")
        return None, violations


# ---------------------------------------------------------------------------
# HTTP envelope
# ---------------------------------------------------------------------------


class CompileRequest(BaseModel):
    """Body of ``POST /v1/compile``; ``input`` is validated by the broker."""

    version: str
    input: Any = None


class CompileResponse(BaseModel):
    ok: bool
    result: dict[str, Any] | None = None
    error: str | None = None
