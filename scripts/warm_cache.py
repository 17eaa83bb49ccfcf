"""Warm the artifact cache — download compiler builds ahead of traffic.

Refreshes the release catalog, then acquires each requested release so
the first compile request for it does not pay the download.

Usage:
    python -m scripts.warm_cache v0.8.20+commit.a1b79de6 v0.4.26+commit.4563c3fc
    python -m scripts.warm_cache --latest 5
"""

import argparse
import asyncio
import sys

import httpx

from solbroker.broker.artifacts import ArtifactCache
from solbroker.broker.catalog import VersionCatalog
from solbroker.broker.errors import BrokerError
from solbroker.broker.versions import CompilerVersion
from solbroker.config.settings import get_settings


def latest_releases(catalog: VersionCatalog, count: int) -> list[str]:
    """The ``count`` newest non-prerelease versions in the catalog."""
    snapshot = catalog.snapshot
    releases = [
        CompilerVersion.parse(v)
        for v in snapshot.scripted | snapshot.native
    ]
    releases = [v for v in releases if not v.prerelease]
    releases.sort(reverse=True)
    return [v.canonical for v in releases[:count]]


async def warm_cache(
    catalog: VersionCatalog,
    cache: ArtifactCache,
    versions: list[str],
) -> dict[str, str]:
    """Acquire every version; return ``{version: path or error}``.

    One failing version does not stop the others.
    """
    results: dict[str, str] = {}
    for version in versions:
        try:
            path = await cache.acquire(version)
        except BrokerError as exc:
            results[version] = f"error: {exc}"
        else:
            results[version] = str(path)
    return results


async def _run(versions: list[str], latest: int) -> int:
    settings = get_settings()
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_S, follow_redirects=True) as client:
        catalog = VersionCatalog.from_settings(settings, http_client=client)
        cache = ArtifactCache.from_settings(settings, catalog, http_client=client)
        snapshot = await catalog.refresh()
        print(f"Catalog: {len(snapshot.scripted)} scripted, {len(snapshot.native)} native releases")

        wanted = list(versions)
        if latest:
            wanted += [v for v in latest_releases(catalog, latest) if v not in wanted]
        if not wanted:
            print("Nothing to warm.")
            return 0

        results = await warm_cache(catalog, cache, wanted)

    failed = 0
    for version, outcome in results.items():
        print(f"  {version:<45} {outcome}")
        failed += outcome.startswith("error:")
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Download compiler builds into the solbroker artifact cache",
    )
    parser.add_argument(
        "versions",
        nargs="*",
        help="Compiler versions, e.g. v0.8.20+commit.a1b79de6",
    )
    parser.add_argument(
        "--latest",
        type=int,
        default=0,
        help="Also warm the N newest releases",
    )
    args = parser.parse_args(argv)
    return asyncio.run(_run(args.versions, args.latest))


if __name__ == "__main__":
    sys.exit(main())
