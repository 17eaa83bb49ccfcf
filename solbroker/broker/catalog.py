"""VersionCatalog — the set of compiler releases known to exist.

Two newline-delimited feeds on the release mirror are polled: the scripted
(soljson) builds and the native binaries for one platform. Each refresh
builds a fresh immutable snapshot and swaps it in whole, so readers never
see a half-updated set and a failed refresh leaves the previous snapshot
in place.

Native classification is gated on a minimum version: older native builds
predate the unified standard-JSON protocol and are always served through
their scripted build instead.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

import httpx

from solbroker.broker.errors import CatalogRefreshError, UnknownVersionError
from solbroker.broker.upstream import upstream_client
from solbroker.broker.versions import CompilerVersion
from solbroker.config.settings import Settings
from solbroker.models.common import utc_now

logger = logging.getLogger(__name__)

SCRIPTED_PREFIX = "soljson-"
SCRIPTED_SUFFIX = ".js"


class ProtocolKind(StrEnum):
    """How a release's artifact is obtained and run."""

    NATIVE = "native"
    SCRIPTED = "scripted"


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable view of both release indices at one point in time."""

    scripted: frozenset[str] = field(default_factory=frozenset)
    native: frozenset[str] = field(default_factory=frozenset)
    refreshed_at: datetime | None = None

    @property
    def is_loaded(self) -> bool:
        return self.refreshed_at is not None


def parse_scripted_index(lines: list[str]) -> set[str]:
    """``soljson-<version>.js`` lines → canonical version identifiers."""
    versions: set[str] = set()
    for line in lines:
        name = line.strip()
        if not name.startswith(SCRIPTED_PREFIX) or not name.endswith(SCRIPTED_SUFFIX):
            continue
        version = CompilerVersion.try_parse(name[len(SCRIPTED_PREFIX):-len(SCRIPTED_SUFFIX)])
        if version is None:
            logger.debug("Skipping unparseable scripted index line %r", name)
            continue
        versions.add(version.canonical)
    return versions


def parse_native_index(
    lines: list[str],
    platform: str,
    floor: CompilerVersion,
) -> set[str]:
    """``solc-<platform>-<version>`` lines at or above ``floor``."""
    prefix = f"solc-{platform}-"
    versions: set[str] = set()
    for line in lines:
        name = line.strip()
        if not name.startswith(prefix):
            continue
        version = CompilerVersion.try_parse(name[len(prefix):])
        if version is None:
            logger.debug("Skipping unparseable native index line %r", name)
            continue
        if version < floor:
            continue
        versions.add(version.canonical)
    return versions


class VersionCatalog:
    """Owns the current snapshot and the periodic refresh task."""

    def __init__(
        self,
        *,
        scripted_index_url: str,
        native_index_url: str,
        native_platform: str,
        native_floor: CompilerVersion,
        refresh_interval_s: float = 3600.0,
        http_timeout_s: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._scripted_index_url = scripted_index_url
        self._native_index_url = native_index_url
        self._platform = native_platform
        self._floor = native_floor
        self._interval = refresh_interval_s
        self._timeout = http_timeout_s
        self._http_client = http_client
        self._snapshot = CatalogSnapshot()
        self._task: asyncio.Task | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> "VersionCatalog":
        return cls(
            scripted_index_url=settings.scripted_index_url,
            native_index_url=settings.native_index_url,
            native_platform=settings.NATIVE_PLATFORM,
            native_floor=CompilerVersion.parse(settings.NATIVE_MIN_VERSION),
            refresh_interval_s=settings.CATALOG_REFRESH_INTERVAL_S,
            http_timeout_s=settings.HTTP_TIMEOUT_S,
            http_client=http_client,
        )

    @property
    def snapshot(self) -> CatalogSnapshot:
        return self._snapshot

    @property
    def native_platform(self) -> str:
        return self._platform

    # ----- Queries -----

    def exists(self, version: str) -> bool:
        canonical = _canonical_or_none(version)
        if canonical is None:
            return False
        snapshot = self._snapshot
        return canonical in snapshot.scripted or canonical in snapshot.native

    def classify(self, version: str) -> ProtocolKind:
        """Return the protocol kind for a known version.

        Raises:
            UnknownVersionError: If the version is not in the snapshot.
        """
        canonical = _canonical_or_none(version)
        snapshot = self._snapshot
        if canonical is not None and canonical in snapshot.native:
            return ProtocolKind.NATIVE
        if canonical is not None and canonical in snapshot.scripted:
            return ProtocolKind.SCRIPTED
        raise UnknownVersionError(version)

    # ----- Refresh -----

    async def refresh(self) -> CatalogSnapshot:
        """Fetch both indices and swap in a new snapshot.

        Raises:
            CatalogRefreshError: If either feed cannot be fetched. The
                current snapshot is left untouched.
        """
        try:
            async with (
                upstream_client(self._http_client, self._timeout) as client,
                asyncio.TaskGroup() as group,
            ):
                scripted = group.create_task(self._fetch_lines(client, self._scripted_index_url))
                native = group.create_task(self._fetch_lines(client, self._native_index_url))
        except ExceptionGroup as exc:
            # first feed failure; the sibling fetch has been cancelled
            raise exc.exceptions[0] from None

        snapshot = CatalogSnapshot(
            scripted=frozenset(parse_scripted_index(scripted.result())),
            native=frozenset(parse_native_index(native.result(), self._platform, self._floor)),
            refreshed_at=utc_now(),
        )
        self._snapshot = snapshot
        logger.info(
            "Version catalog refreshed: %d scripted, %d native releases",
            len(snapshot.scripted),
            len(snapshot.native),
        )
        return snapshot

    async def _fetch_lines(self, client: httpx.AsyncClient, url: str) -> list[str]:
        try:
            resp = await client.get(url)
        except httpx.HTTPError as exc:
            msg = f"fetch {url} failed: {exc}"
            raise CatalogRefreshError(msg) from exc
        if resp.status_code != 200:
            msg = f"fetch {url} returned {resp.status_code}"
            raise CatalogRefreshError(msg)
        return resp.text.splitlines()

    # ----- Lifecycle -----

    async def initialize(self) -> None:
        """First refresh attempt, then start the periodic refresher.

        A failed first attempt is logged, not raised: the snapshot stays
        empty and requests are rejected as unknown versions until a later
        refresh succeeds.
        """
        try:
            await self.refresh()
        except CatalogRefreshError:
            logger.exception("Initial version catalog refresh failed")
        if self._task is None:
            self._task = asyncio.create_task(self.run_periodic())

    async def run_periodic(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.refresh()
            except CatalogRefreshError:
                logger.warning("Version catalog refresh failed; keeping previous snapshot", exc_info=True)

    async def close(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None


def _canonical_or_none(version: str) -> str | None:
    parsed = CompilerVersion.try_parse(version)
    return parsed.canonical if parsed is not None else None
