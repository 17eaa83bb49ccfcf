"""Shared pytest fixtures for the solbroker test suite.

Provides:
- anyio_backend: async tests run on asyncio
- mirror: in-memory release mirror (index feeds + artifacts) behind
  httpx.MockTransport, counting every request it serves
- http_client: AsyncClient wired to the mirror
- make_catalog / make_cache: broker components bound to the mirror
- fake_executable: writes a Python script to tmp_path and marks it
  executable; stands in for native compilers and the interpreter host
"""

import json
import sys
import textwrap
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest

from solbroker.broker.artifacts import ArtifactCache
from solbroker.broker.catalog import VersionCatalog
from solbroker.broker.versions import CompilerVersion

MIRROR_URL = "https://mirror.test"
PLATFORM = "linux-amd64"


# ===================================================================
# Fake release mirror
# ===================================================================


class FakeMirror:
    """Serves ``/bin/list.txt``, ``/<platform>/list.txt`` and artifact files."""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.status_overrides: dict[str, int] = {}
        self.requests: list[str] = []

    def publish_scripted(self, version: str, content: str | bytes) -> None:
        body = content.encode("utf-8") if isinstance(content, str) else content
        self.files[f"/bin/soljson-{version}.js"] = body
        self._relist()

    def publish_native(self, version: str, content: str | bytes) -> None:
        body = content.encode("utf-8") if isinstance(content, str) else content
        self.files[f"/{PLATFORM}/solc-{PLATFORM}-{version}"] = body
        self._relist()

    def list_native_only(self, version: str) -> None:
        """Native index entry without a file behind it."""
        self.files.setdefault(f"/{PLATFORM}/solc-{PLATFORM}-{version}", b"")
        self._relist()

    def _relist(self) -> None:
        scripted = sorted(
            path.removeprefix("/bin/") for path in self.files
            if path.startswith("/bin/soljson-")
        )
        native = sorted(
            path.removeprefix(f"/{PLATFORM}/") for path in self.files
            if path.startswith(f"/{PLATFORM}/solc-")
        )
        self.files["/bin/list.txt"] = "\n".join(scripted).encode("utf-8")
        self.files[f"/{PLATFORM}/list.txt"] = "\n".join(native).encode("utf-8")

    def downloads(self) -> list[str]:
        return [path for path in self.requests if not path.endswith("/list.txt")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)
        if path in self.status_overrides:
            return httpx.Response(self.status_overrides[path])
        body = self.files.get(path)
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def mirror() -> FakeMirror:
    m = FakeMirror()
    m._relist()
    return m


@pytest.fixture
async def http_client(mirror: FakeMirror):
    async with httpx.AsyncClient(transport=httpx.MockTransport(mirror.handler)) as client:
        yield client


@pytest.fixture
def make_catalog(http_client: httpx.AsyncClient):
    """VersionCatalog reading the fake mirror's index feeds."""

    def _make(floor: str = "0.6.0", **kwargs) -> VersionCatalog:
        return VersionCatalog(
            scripted_index_url=f"{MIRROR_URL}/bin/list.txt",
            native_index_url=f"{MIRROR_URL}/{PLATFORM}/list.txt",
            native_platform=PLATFORM,
            native_floor=CompilerVersion.parse(floor),
            http_client=http_client,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_cache(http_client: httpx.AsyncClient, tmp_path: Path):
    """ArtifactCache downloading from the fake mirror into tmp_path."""

    def _make(catalog: VersionCatalog) -> ArtifactCache:
        return ArtifactCache(
            root=tmp_path / "artifacts",
            catalog=catalog,
            base_url=MIRROR_URL,
            http_client=http_client,
        )

    return _make


# ===================================================================
# Fake executables
# ===================================================================


def write_executable(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
    path.chmod(0o755)
    return path


@pytest.fixture
def fake_executable(tmp_path: Path):
    def _make(name: str, body: str) -> Path:
        return write_executable(tmp_path / name, body)

    return _make


# A native compiler: records its input next to itself and emits one
# contract per source with non-empty bytecode.
NATIVE_COMPILER_SCRIPT = f"#!{sys.executable}\n" + """\
import json
import sys

raw = sys.stdin.read()
with open(sys.argv[0] + ".input.json", "w") as fh:
    fh.write(raw)
if sys.argv[1:] != ["--standard-json"]:
    sys.stderr.write("unexpected arguments: %r\\n" % sys.argv[1:])
    sys.exit(2)
doc = json.loads(raw)
contracts = {
    path: {"C": {"abi": [], "evm": {"bytecode": {"object": "6080604052"}}}}
    for path in doc["sources"]
}
sources = {path: {"id": index} for index, path in enumerate(doc["sources"])}
print(json.dumps({"contracts": contracts, "sources": sources}))
"""

CRASHING_COMPILER_SCRIPT = f"#!{sys.executable}\n" + """\
import sys

sys.stdin.read()
sys.stderr.write("Segmentation fault (core dumped)\\n")
sys.exit(139)
"""

HANGING_COMPILER_SCRIPT = f"#!{sys.executable}\n" + """\
import time

time.sleep(60)
"""

GARBAGE_COMPILER_SCRIPT = f"#!{sys.executable}\n" + """\
import sys

sys.stdin.read()
print("this is not json")
"""


# Stands in for host/soljson_host.js. The "soljson" artifact it loads is a
# JSON document: {"entrypoints": [...]} selects which entrypoints the build
# exposes. Every request line is appended to <artifact>.calls.jsonl.
FAKE_HOST_SCRIPT = """\
import json
import sys

artifact = sys.argv[1]
with open(artifact) as fh:
    config = json.load(fh)


def send(message):
    sys.stdout.write(json.dumps(message) + "\\n")
    sys.stdout.flush()


LIBRARY_PLACEHOLDER = "__" + "Lib".ljust(36, "_") + "__"


def legacy_contract():
    return {
        "interface": '[{"type": "function", "name": "f", "inputs": [], "outputs": []}]',
        "bytecode": "6060" + LIBRARY_PLACEHOLDER + "6060",
        "runtimeBytecode": "6060",
        "functionHashes": {"f()": "26121ff0"},
        "gasEstimates": {"creation": [None, 20000], "external": {"f()": 120}},
    }


send({"ready": True, "entrypoints": config["entrypoints"]})

for line in sys.stdin:
    request = json.loads(line)
    with open(artifact + ".calls.jsonl", "a") as log:
        log.write(json.dumps(request) + "\\n")
    sys.stderr.write("compiling via %s\\n" % request["cmd"])
    sys.stderr.flush()
    if request["cmd"] == "standard":
        doc = json.loads(request["input"])
        output = {
            "contracts": {
                path: {"C": {"abi": [], "evm": {"bytecode": {"object": "60806040"}}}}
                for path in doc["sources"]
            },
        }
    elif request["cmd"] == "single":
        output = {
            "contracts": {":C": legacy_contract()},
            "sourceList": [""],
            "sources": {"": {"AST": {}}},
        }
    else:
        sources = json.loads(request["input"])["sources"]
        output = {
            "contracts": {path + ":C": legacy_contract() for path in sources},
            "sourceList": list(sources),
            "sources": {path: {"AST": {}} for path in sources},
        }
    send({"id": request["id"], "ok": True, "output": json.dumps(output)})
"""


@pytest.fixture
def fake_host(fake_executable) -> list[str]:
    """Interpreter host command running the fake host under this Python."""
    script = fake_executable("fake_host.py", FAKE_HOST_SCRIPT)
    return [sys.executable, str(script)]


@pytest.fixture
def compiler_scripts() -> SimpleNamespace:
    """Bodies for fake native compilers."""
    return SimpleNamespace(
        native=NATIVE_COMPILER_SCRIPT,
        crashing=CRASHING_COMPILER_SCRIPT,
        hanging=HANGING_COMPILER_SCRIPT,
        garbage=GARBAGE_COMPILER_SCRIPT,
    )


@pytest.fixture
def scripted_build():
    """Content of a fake soljson artifact exposing the given entrypoints."""

    def _build(*entrypoints: str) -> str:
        return json.dumps({"entrypoints": list(entrypoints)})

    return _build


@pytest.fixture
def read_calls():
    """Requests the fake host received for one artifact, in order."""

    def _read(artifact: Path) -> list[dict]:
        calls = Path(str(artifact) + ".calls.jsonl")
        if not calls.exists():
            return []
        return [json.loads(line) for line in calls.read_text().splitlines()]

    return _read
