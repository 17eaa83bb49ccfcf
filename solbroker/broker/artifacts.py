"""ArtifactCache — downloads each compiler build once and keeps it on disk.

Artifacts are immutable per version identifier, so a file that exists is
returned as-is: no freshness check, no eviction. Concurrent first use of
one version shares a single in-flight download task. Files are written to
a temp name in the target directory and renamed into place, so readers
never see a partial artifact.
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path

import httpx

from solbroker.broker.catalog import SCRIPTED_PREFIX, SCRIPTED_SUFFIX, ProtocolKind, VersionCatalog
from solbroker.broker.errors import AcquisitionError
from solbroker.broker.upstream import upstream_client
from solbroker.broker.versions import CompilerVersion
from solbroker.config.settings import Settings

logger = logging.getLogger(__name__)

# Execution-mode directives current JS runtimes reject or warn about.
_INCOMPATIBLE_DIRECTIVES = ('"use asm";',)

_EXECUTABLE_MODE = 0o755


def patch_scripted_source(source: str) -> str:
    """Strip known-incompatible directives from a soljson build."""
    for directive in _INCOMPATIBLE_DIRECTIVES:
        source = source.replace(directive, "")
    return source


class ArtifactCache:
    """Version → local artifact path, acquiring on first use."""

    def __init__(
        self,
        *,
        root: str | Path,
        catalog: VersionCatalog,
        base_url: str,
        http_timeout_s: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._root = Path(root)
        self._catalog = catalog
        self._base_url = base_url.rstrip("/")
        self._timeout = http_timeout_s
        self._http_client = http_client
        self._inflight: dict[str, asyncio.Task[Path]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        catalog: VersionCatalog,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> "ArtifactCache":
        return cls(
            root=settings.ARTIFACT_DIR,
            catalog=catalog,
            base_url=settings.BINARIES_BASE_URL,
            http_timeout_s=settings.HTTP_TIMEOUT_S,
            http_client=http_client,
        )

    @property
    def root(self) -> Path:
        return self._root

    # ----- Naming -----

    def artifact_name(self, version: str, kind: ProtocolKind) -> str:
        canonical = CompilerVersion.parse(version).canonical
        if kind == ProtocolKind.NATIVE:
            return f"solc-{self._catalog.native_platform}-{canonical}"
        return f"{SCRIPTED_PREFIX}{canonical}{SCRIPTED_SUFFIX}"

    def artifact_path(self, version: str, kind: ProtocolKind) -> Path:
        return self._root / self.artifact_name(version, kind)

    def download_url(self, version: str, kind: ProtocolKind) -> str:
        name = self.artifact_name(version, kind)
        if kind == ProtocolKind.NATIVE:
            return f"{self._base_url}/{self._catalog.native_platform}/{name}"
        return f"{self._base_url}/bin/{name}"

    # ----- Acquisition -----

    async def acquire(self, version: str) -> Path:
        """Return a ready-to-run artifact for ``version``.

        Raises:
            UnknownVersionError: If the catalog does not know the version.
            AcquisitionError: If the upstream download fails.
        """
        kind = self._catalog.classify(version)
        path = self.artifact_path(version, kind)
        if path.exists():
            return path

        key = path.name
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._download(version, kind, path))
            self._inflight[key] = task
            task.add_done_callback(lambda _t: self._inflight.pop(key, None))
        # shield: one caller giving up must not cancel the shared download
        return await asyncio.shield(task)

    async def _download(self, version: str, kind: ProtocolKind, path: Path) -> Path:
        url = self.download_url(version, kind)
        logger.info("Downloading %s artifact for %s from %s", kind.value, version, url)

        async with upstream_client(self._http_client, self._timeout) as client:
            try:
                resp = await client.get(url)
            except httpx.HTTPError as exc:
                msg = f"fetch {version} failed: {exc}"
                raise AcquisitionError(msg) from exc

        if resp.status_code != 200:
            msg = f"fetch {version} returned {resp.status_code}: {resp.reason_phrase}"
            raise AcquisitionError(msg, upstream_status=resp.status_code)

        if kind == ProtocolKind.SCRIPTED:
            content = patch_scripted_source(resp.text).encode("utf-8")
            mode = None
        else:
            content = resp.content
            mode = _EXECUTABLE_MODE

        await asyncio.to_thread(self._persist, path, content, mode)
        return path

    def _persist(self, path: Path, content: bytes, mode: int | None) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(content)
            if mode is not None:
                os.chmod(tmp_name, mode)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
