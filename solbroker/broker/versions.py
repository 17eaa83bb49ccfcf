"""Compiler release identifiers.

Release mirrors name builds ``v0.8.20+commit.a1b79de6`` and nightlies
``v0.4.1-nightly.2016.9.9+commit.79867f4``. Ordering follows semantic
versioning: numeric core first, a pre-release sorts before its release,
build metadata is ignored.
"""

import re
from dataclasses import dataclass

_VERSION_RE = re.compile(
    r"^v?(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)"
    r"(?:-(?P<prerelease>[0-9A-Za-z.\-]+))?"
    r"(?:\+(?P<build>[0-9A-Za-z.\-]+))?$"
)


@dataclass(frozen=True)
class CompilerVersion:
    major: int
    minor: int
    patch: int
    prerelease: str | None = None
    build: str | None = None

    @classmethod
    def parse(cls, text: str) -> "CompilerVersion":
        """Parse an identifier, with or without the leading ``v``.

        Raises:
            ValueError: If ``text`` is not a version identifier.
        """
        match = _VERSION_RE.match(text.strip())
        if match is None:
            msg = f"Not a compiler version: {text!r}"
            raise ValueError(msg)
        return cls(
            major=int(match["major"]),
            minor=int(match["minor"]),
            patch=int(match["patch"]),
            prerelease=match["prerelease"],
            build=match["build"],
        )

    @classmethod
    def try_parse(cls, text: str) -> "CompilerVersion | None":
        try:
            return cls.parse(text)
        except ValueError:
            return None

    @property
    def canonical(self) -> str:
        """Identifier as used in artifact file names (always ``v``-prefixed)."""
        text = f"v{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.build:
            text += f"+{self.build}"
        return text

    @property
    def _sort_key(self) -> tuple:
        # A release outranks any pre-release of the same core version.
        return (
            self.major,
            self.minor,
            self.patch,
            self.prerelease is None,
            self.prerelease or "",
        )

    def __lt__(self, other: "CompilerVersion") -> bool:
        return self._sort_key < other._sort_key

    def __le__(self, other: "CompilerVersion") -> bool:
        return self._sort_key <= other._sort_key

    def __gt__(self, other: "CompilerVersion") -> bool:
        return self._sort_key > other._sort_key

    def __ge__(self, other: "CompilerVersion") -> bool:
        return self._sort_key >= other._sort_key

    def __str__(self) -> str:
        return self.canonical
