"""
Shared Test Fixtures for the Plugin Build Pipeline
====================================================

This module provides reusable pytest fixtures used across the entire
test suite. Fixtures are organized by layer:

    1. Fake toolchain (package manager + compiler shell scripts)
    2. Source archives (tarball factory, mock HTTP archive host)
    3. Configuration
    4. Infrastructure (ArtifactStorage)
    5. Orchestration (StateManager, BuildPipeline)

No real bun, extism-js or network access is needed: the toolchain is a
pair of small /bin/sh scripts written into tmp_path, and downloads are
served by httpx.MockTransport.
"""

from __future__ import annotations

import io
import json
import tarfile
from pathlib import Path
from typing import Callable, Optional, Union

import httpx
import pytest

from plugin_builder.core.config import BuilderConfig, ToolchainConfig
from plugin_builder.core.models import BuildRequest, Plugin
from plugin_builder.infrastructure.artifact_storage import InMemoryArtifactStorage
from plugin_builder.orchestration.build_pipeline import BuildPipeline
from plugin_builder.orchestration.state_manager import InMemoryStateManager
from plugin_builder.pipeline.fetcher import ArchiveFetcher


PLUGIN_ID = "clipboard-history"
ARCHIVE_URL = "https://archives.test/acme/clipboard-history/v1.0.0.tar.gz"
ARCHIVE_ROOT = "acme-clipboard-history-1a2b3c4"

# Bytes written by the fake compiler: the 8-byte WebAssembly header.
FAKE_WASM = b"\x00asm\x01\x00\x00\x00"

FileTree = dict[str, Union[str, bytes]]


# =============================================================================
# Fake Toolchain
# =============================================================================
# Every invocation appends "<tool> <args>" to calls.log so tests can assert
# which commands ran (or that none did).
#
#   bun:        "install --frozen-lockfile" fails unless bun.lockb exists;
#               plain "install" always succeeds.
#   extism-js:  "<entry> -o <out>" fails if <entry> is missing, otherwise
#               writes FAKE_WASM to <out>.
# =============================================================================

def _write_script(path: Path, body: str) -> Path:
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return path


@pytest.fixture
def calls_log(tmp_path: Path) -> Path:
    """File receiving one line per fake toolchain invocation."""
    return tmp_path / "calls.log"


@pytest.fixture
def tool_calls(calls_log: Path) -> Callable[[], list[str]]:
    """Read back the recorded toolchain invocations."""

    def _read() -> list[str]:
        if not calls_log.exists():
            return []
        return calls_log.read_text().splitlines()

    return _read


@pytest.fixture
def fake_bun(tmp_path: Path, calls_log: Path) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)
    return _write_script(
        bin_dir / "bun",
        f'echo "bun $*" >> "{calls_log}"\n'
        'if [ "$2" = "--frozen-lockfile" ] && [ ! -f bun.lockb ]; then\n'
        '  echo "error: lockfile had changes, but lockfile is frozen" >&2\n'
        "  exit 1\n"
        "fi\n"
        'echo "installed dependencies"\n',
    )


@pytest.fixture
def fake_compiler(tmp_path: Path, calls_log: Path) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)
    return _write_script(
        bin_dir / "extism-js",
        f'echo "extism-js $*" >> "{calls_log}"\n'
        'if [ ! -f "$1" ]; then\n'
        '  echo "cannot read $1" >&2\n'
        "  exit 2\n"
        "fi\n"
        "printf '\\000asm\\001\\000\\000\\000' > \"$3\"\n"
        'echo "compiled $1"\n',
    )


@pytest.fixture
def fake_wasm() -> bytes:
    """The exact bytes the fake compiler writes."""
    return FAKE_WASM


@pytest.fixture
def toolchain(fake_bun: Path, fake_compiler: Path) -> ToolchainConfig:
    """ToolchainConfig pointing at the fake scripts, with short timeouts."""
    return ToolchainConfig(
        package_manager=str(fake_bun),
        compiler=str(fake_compiler),
        install_timeout_seconds=10,
        compile_timeout_seconds=10,
    )


# =============================================================================
# Source Archives
# =============================================================================

def _manifest_json(version: str = "1.0.0", **extra) -> str:
    data = {"name": "Clipboard History", "version": version, **extra}
    return json.dumps(data)


@pytest.fixture
def manifest_json() -> Callable[..., str]:
    """Render a manifest.json body: manifest_json("1.2.0", permissions=[...])."""
    return _manifest_json


@pytest.fixture
def ts_plugin_files() -> Callable[..., FileTree]:
    """A minimal TypeScript plugin: manifest, package.json and src/index.ts."""

    def _files(version: str = "1.0.0", **manifest_extra) -> FileTree:
        return {
            "manifest.json": _manifest_json(version, **manifest_extra),
            "package.json": json.dumps(
                {
                    "name": PLUGIN_ID,
                    "scripts": {"build": "extism-js src/index.ts -o plugin.wasm"},
                }
            ),
            "src/index.ts": "export function run() { return 0; }\n",
        }

    return _files


@pytest.fixture
def tarball_factory() -> Callable[..., bytes]:
    """Build an in-memory .tar.gz from a {relative_path: content} mapping.

    Files are placed under a single ``root`` directory, as release tarballs
    are. Pass ``root=None`` to put them at the archive top level.
    """

    def _build(files: FileTree, root: Optional[str] = ARCHIVE_ROOT) -> bytes:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
            if root:
                info = tarfile.TarInfo(root)
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                archive.addfile(info)
            for rel_path, content in files.items():
                data = content.encode() if isinstance(content, str) else content
                name = f"{root}/{rel_path}" if root else rel_path
                info = tarfile.TarInfo(name)
                info.size = len(data)
                info.mode = 0o644
                archive.addfile(info, io.BytesIO(data))
        return buffer.getvalue()

    return _build


class FakeArchiveHost:
    """Serves registered archives through an httpx.MockTransport.

    Unknown URLs answer 404. Every request is recorded.
    """

    def __init__(self) -> None:
        self.archives: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []

    def add(self, url: str, data: bytes) -> str:
        self.archives[url] = data
        return url

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        data = self.archives.get(str(request.url))
        if data is None:
            return httpx.Response(404)
        return httpx.Response(200, content=data)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def archive_host() -> FakeArchiveHost:
    return FakeArchiveHost()


@pytest.fixture
def publish_archive(
    archive_host: FakeArchiveHost,
    tarball_factory: Callable[..., bytes],
) -> Callable[..., str]:
    """Pack a file tree and serve it from the fake host; returns the URL."""

    def _publish(
        files: FileTree,
        url: str = ARCHIVE_URL,
        root: Optional[str] = ARCHIVE_ROOT,
    ) -> str:
        return archive_host.add(url, tarball_factory(files, root=root))

    return _publish


@pytest.fixture
def fetcher(archive_host: FakeArchiveHost, config: BuilderConfig) -> ArchiveFetcher:
    """ArchiveFetcher wired to the fake archive host."""
    return ArchiveFetcher(config.fetcher, transport=archive_host.transport())


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def config(tmp_path: Path, toolchain: ToolchainConfig) -> BuilderConfig:
    """BuilderConfig with a tmp build dir and the fake toolchain."""
    return BuilderConfig(build_dir=tmp_path / "builds", toolchain=toolchain)


# =============================================================================
# Infrastructure
# =============================================================================

@pytest.fixture
def storage() -> InMemoryArtifactStorage:
    """Fresh InMemoryArtifactStorage."""
    return InMemoryArtifactStorage()


# =============================================================================
# Orchestration
# =============================================================================

@pytest.fixture
async def state_manager() -> InMemoryStateManager:
    """Connected InMemoryStateManager with the test plugin registered."""
    sm = InMemoryStateManager()
    await sm.connect()
    await sm.save_plugin(Plugin(plugin_id=PLUGIN_ID, name="Clipboard History"))
    return sm


@pytest.fixture
def pipeline(
    config: BuilderConfig,
    state_manager: InMemoryStateManager,
    storage: InMemoryArtifactStorage,
    fetcher: ArchiveFetcher,
) -> BuildPipeline:
    """BuildPipeline over in-memory state/storage and the fake archive host."""
    return BuildPipeline(config, state_manager, storage, fetcher)


@pytest.fixture
def make_request() -> Callable[..., BuildRequest]:
    """Create a BuildRequest for the test plugin: make_request("1.2.0", ...)."""

    def _make(version: str = "1.0.0", **overrides) -> BuildRequest:
        fields = {
            "plugin_id": PLUGIN_ID,
            "target_version": version,
            "archive_url": ARCHIVE_URL,
            "release_tag": f"v{version}",
        }
        fields.update(overrides)
        return BuildRequest(**fields)

    return _make
