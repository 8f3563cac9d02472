"""
Tests for plugin_builder.infrastructure.artifact_storage
==========================================================

What's Being Tested:
    - storage_key layout and rejection of unsafe parts
    - InMemoryArtifactStorage / LocalArtifactStorage uploads and URLs
    - HttpArtifactStorage PUT requests (via httpx.MockTransport)
    - create_artifact_storage backend selection
"""

import json
from pathlib import Path

import httpx
import pytest

from plugin_builder.core.config import StorageConfig
from plugin_builder.core.exceptions import ConfigurationError, UploadError
from plugin_builder.infrastructure.artifact_storage import (
    HttpArtifactStorage,
    InMemoryArtifactStorage,
    LocalArtifactStorage,
    create_artifact_storage,
    storage_key,
)


WASM = b"\x00asm\x01\x00\x00\x00"


# =============================================================================
# Tests: Storage Key
# =============================================================================
class TestStorageKey:
    def test_layout(self) -> None:
        assert storage_key("clip", "1.2.0", "plugin.wasm") == "plugins/clip/1.2.0/plugin.wasm"

    @pytest.mark.parametrize(
        "plugin_id, version, file_name",
        [
            ("", "1.0.0", "plugin.wasm"),
            ("clip", "..", "plugin.wasm"),
            ("clip", "1.0.0", "../../etc/passwd"),
            ("a/b", "1.0.0", "plugin.wasm"),
        ],
    )
    def test_unsafe_parts_rejected(self, plugin_id: str, version: str, file_name: str) -> None:
        with pytest.raises(UploadError) as exc_info:
            storage_key(plugin_id, version, file_name)
        assert exc_info.value.error_code == "INVALID_STORAGE_KEY"


# =============================================================================
# Tests: InMemoryArtifactStorage
# =============================================================================
class TestInMemoryArtifactStorage:
    async def test_upload_returns_url_and_keeps_bytes(self, storage: InMemoryArtifactStorage) -> None:
        url = await storage.upload("clip", "1.0.0", WASM, "plugin.wasm")

        assert url == "memory://plugins/clip/1.0.0/plugin.wasm"
        assert storage.get("plugins/clip/1.0.0/plugin.wasm") == WASM
        assert len(storage) == 1

    async def test_versions_do_not_collide(self, storage: InMemoryArtifactStorage) -> None:
        await storage.upload("clip", "1.0.0", b"one", "plugin.wasm")
        await storage.upload("clip", "1.1.0", b"two", "plugin.wasm")
        await storage.upload("notes", "1.0.0", b"three", "plugin.wasm")

        assert storage.keys == [
            "plugins/clip/1.0.0/plugin.wasm",
            "plugins/clip/1.1.0/plugin.wasm",
            "plugins/notes/1.0.0/plugin.wasm",
        ]


# =============================================================================
# Tests: LocalArtifactStorage
# =============================================================================
class TestLocalArtifactStorage:
    async def test_writes_file_and_returns_public_url(self, tmp_path: Path) -> None:
        storage = LocalArtifactStorage(tmp_path, base_url="https://cdn.test/")

        url = await storage.upload("clip", "1.0.0", WASM, "plugin.wasm")

        assert url == "https://cdn.test/plugins/clip/1.0.0/plugin.wasm"
        assert (tmp_path / "plugins" / "clip" / "1.0.0" / "plugin.wasm").read_bytes() == WASM

    async def test_file_uri_without_base_url(self, tmp_path: Path) -> None:
        storage = LocalArtifactStorage(tmp_path)

        url = await storage.upload("clip", "1.0.0", WASM, "plugin.wasm")

        assert url.startswith("file://")
        assert url.endswith("/plugins/clip/1.0.0/plugin.wasm")

    async def test_overwrite_same_key(self, tmp_path: Path) -> None:
        storage = LocalArtifactStorage(tmp_path)
        await storage.upload("clip", "1.0.0", b"old", "plugin.wasm")
        await storage.upload("clip", "1.0.0", b"new", "plugin.wasm")

        assert (tmp_path / "plugins" / "clip" / "1.0.0" / "plugin.wasm").read_bytes() == b"new"

    async def test_unwritable_root_raises(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        storage = LocalArtifactStorage(blocker)

        with pytest.raises(UploadError):
            await storage.upload("clip", "1.0.0", WASM, "plugin.wasm")


# =============================================================================
# Tests: HttpArtifactStorage
# =============================================================================
class TestHttpArtifactStorage:
    async def test_put_with_token_and_content_type(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201)

        storage = HttpArtifactStorage(
            "https://blobs.test/bucket/",
            api_token="blob-token",
            transport=httpx.MockTransport(handler),
        )

        url = await storage.upload("clip", "1.0.0", WASM, "plugin.wasm")
        await storage.close()

        assert url == "https://blobs.test/bucket/plugins/clip/1.0.0/plugin.wasm"
        request = seen[0]
        assert request.method == "PUT"
        assert request.headers["Authorization"] == "Bearer blob-token"
        assert request.headers["Content-Type"] == "application/wasm"
        assert request.content == WASM

    async def test_json_url_in_response_wins(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                content=json.dumps({"url": "https://cdn.test/abc123/plugin.wasm"}),
                headers={"content-type": "application/json"},
            )

        storage = HttpArtifactStorage("https://blobs.test", transport=httpx.MockTransport(handler))

        url = await storage.upload("clip", "1.0.0", WASM, "plugin.wasm")

        assert url == "https://cdn.test/abc123/plugin.wasm"

    async def test_error_status_raises(self) -> None:
        storage = HttpArtifactStorage(
            "https://blobs.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )

        with pytest.raises(UploadError) as exc_info:
            await storage.upload("clip", "1.0.0", WASM, "plugin.wasm")

        assert exc_info.value.details["status_code"] == 503
        assert exc_info.value.key == "plugins/clip/1.0.0/plugin.wasm"

    async def test_transport_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        storage = HttpArtifactStorage("https://blobs.test", transport=httpx.MockTransport(handler))

        with pytest.raises(UploadError):
            await storage.upload("clip", "1.0.0", WASM, "plugin.wasm")


# =============================================================================
# Tests: Factory
# =============================================================================
class TestCreateArtifactStorage:
    def test_memory(self) -> None:
        assert isinstance(create_artifact_storage(StorageConfig()), InMemoryArtifactStorage)

    def test_local(self, tmp_path: Path) -> None:
        storage = create_artifact_storage(StorageConfig(backend="local", local_root=tmp_path))
        assert isinstance(storage, LocalArtifactStorage)

    async def test_http(self) -> None:
        storage = create_artifact_storage(
            StorageConfig(backend="http", base_url="https://blobs.test", api_token="t")
        )
        assert isinstance(storage, HttpArtifactStorage)
        await storage.close()

    def test_local_without_root_raises(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            create_artifact_storage(StorageConfig(backend="local"))
        assert exc_info.value.error_code == "MISSING_STORAGE_ROOT"

    def test_http_without_url_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            create_artifact_storage(StorageConfig(backend="http"))
