"""CompilationBroker — one request, end to end.

Order matters: the version is checked against the catalog before the
input is looked at, and both before anything touches disk or network.
"""

import logging
from typing import Any

import httpx

from solbroker.broker.artifacts import ArtifactCache
from solbroker.broker.catalog import VersionCatalog
from solbroker.broker.errors import InputValidationError, UnknownVersionError
from solbroker.broker.invoker import CompilerInvoker
from solbroker.config.settings import Settings
from solbroker.models.compile import parse_standard_input
from solbroker.observability.traces import TraceRecorder

logger = logging.getLogger(__name__)


class CompilationBroker:
    """Facade over catalog, artifact cache and invoker."""

    def __init__(
        self,
        *,
        catalog: VersionCatalog,
        cache: ArtifactCache,
        invoker: CompilerInvoker,
        recorder: TraceRecorder,
    ) -> None:
        self.catalog = catalog
        self.cache = cache
        self.invoker = invoker
        self.recorder = recorder

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> "CompilationBroker":
        catalog = VersionCatalog.from_settings(settings, http_client=http_client)
        cache = ArtifactCache.from_settings(settings, catalog, http_client=http_client)
        recorder = TraceRecorder(settings.TRACE_BUFFER_SIZE)
        invoker = CompilerInvoker.from_settings(
            settings, catalog=catalog, cache=cache, recorder=recorder
        )
        return cls(catalog=catalog, cache=cache, invoker=invoker, recorder=recorder)

    def has_version(self, version: str) -> bool:
        return self.catalog.exists(version)

    async def compile(self, version: str, raw_input: Any) -> dict[str, Any]:
        """Compile ``raw_input`` with compiler release ``version``.

        Raises:
            UnknownVersionError: Version not in the catalog.
            InputValidationError: ``raw_input`` is not a standard-JSON
                input document.
            BrokerError: Any acquisition or invocation failure.
        """
        if not self.has_version(version):
            raise UnknownVersionError(version)

        document, violations = parse_standard_input(raw_input)
        if document is None:
            msg = "invalid input: " + "; ".join(violations)
            raise InputValidationError(msg, violations=violations)

        return await self.invoker.invoke(version, document)

    async def start(self) -> None:
        await self.catalog.initialize()

    async def close(self) -> None:
        await self.catalog.close()
