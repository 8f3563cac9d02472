"""
plugin_builder.infrastructure.artifact_storage - Durable Artifact Storage
===========================================================================

Places built artifacts into durable blob storage and returns the URL they
can be downloaded from.

Storage Key:
    plugins/{plugin_id}/{version}/{file_name}

    Including plugin id and version in the key keeps concurrent builds of
    different plugins/versions from colliding. Uniqueness beyond that is not
    enforced here; re-uploading the same key overwrites it.

Storage Implementations:
    - InMemoryArtifactStorage: Dict-based, for development/testing
    - LocalArtifactStorage:    Files under a local root (single-host deploys)
    - HttpArtifactStorage:     Authenticated PUT to a blob-store HTTP API

Usage:
    >>> storage = InMemoryArtifactStorage()
    >>> url = await storage.upload("clipboard-history", "1.4.0", data, "plugin.wasm")
    >>> url
    'memory://plugins/clipboard-history/1.4.0/plugin.wasm'
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import httpx
import structlog

from plugin_builder.core.config import StorageConfig
from plugin_builder.core.exceptions import ConfigurationError, UploadError


# =============================================================================
# Logger
# =============================================================================
logger = structlog.get_logger()

PLUGIN_FOLDER = "plugins"


def storage_key(plugin_id: str, version: str, file_name: str) -> str:
    """Build the storage key for one artifact file."""
    for part_name, part in (("plugin_id", plugin_id), ("version", version), ("file_name", file_name)):
        if not part or "/" in part or part in (".", ".."):
            raise UploadError(
                message=f"Invalid {part_name} for storage key: {part!r}",
                key=f"{PLUGIN_FOLDER}/{plugin_id}/{version}/{file_name}",
                error_code="INVALID_STORAGE_KEY",
            )
    return f"{PLUGIN_FOLDER}/{plugin_id}/{version}/{file_name}"


# =============================================================================
# Abstract Base Class
# =============================================================================
class ArtifactStorage(ABC):
    """Abstract interface for artifact blob storage.

    Methods:
        upload(plugin_id, version, data, file_name): Store bytes, return URL.
        close(): Release any held resources.
    """

    @abstractmethod
    async def upload(
        self,
        plugin_id: str,
        version: str,
        data: bytes,
        file_name: str,
    ) -> str:
        """Persist an artifact and return its retrieval URL.

        Raises:
            UploadError: If the artifact could not be stored.
        """
        ...

    async def close(self) -> None:
        """Release resources. No-op by default."""


# =============================================================================
# In-Memory Implementation
# =============================================================================
class InMemoryArtifactStorage(ArtifactStorage):
    """In-memory artifact storage for development and testing.

    Attributes:
        _blobs: Maps storage key to stored bytes.
        _base_url: Prefix of the returned URLs.
    """

    def __init__(self, base_url: str = "memory://") -> None:
        self._blobs: dict[str, bytes] = {}
        self._base_url = base_url
        self._logger = logger.bind(component="in_memory_artifact_storage")

    async def upload(
        self,
        plugin_id: str,
        version: str,
        data: bytes,
        file_name: str,
    ) -> str:
        key = storage_key(plugin_id, version, file_name)
        self._blobs[key] = bytes(data)
        self._logger.debug("artifact_uploaded", key=key, size=len(data))
        return f"{self._base_url}{key}"

    def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes for ``key``, if any."""
        return self._blobs.get(key)

    @property
    def keys(self) -> list[str]:
        return sorted(self._blobs)

    def __len__(self) -> int:
        return len(self._blobs)


# =============================================================================
# Local Filesystem Implementation
# =============================================================================
class LocalArtifactStorage(ArtifactStorage):
    """Stores artifacts as files under ``root``.

    Returned URLs are ``base_url/key`` when a public base URL is configured
    (e.g. a static file server in front of ``root``), otherwise file:// URIs.
    """

    def __init__(self, root: Path, base_url: Optional[str] = None) -> None:
        self._root = Path(root)
        self._base_url = base_url.rstrip("/") if base_url else None
        self._logger = logger.bind(component="local_artifact_storage", root=str(self._root))

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_bytes(data)
        tmp_path.replace(path)

    async def upload(
        self,
        plugin_id: str,
        version: str,
        data: bytes,
        file_name: str,
    ) -> str:
        key = storage_key(plugin_id, version, file_name)
        path = self._root / key
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            raise UploadError(message=f"Failed to write artifact: {e}", key=key) from e

        self._logger.info("artifact_uploaded", key=key, size=len(data))
        if self._base_url:
            return f"{self._base_url}/{key}"
        return path.resolve().as_uri()


# =============================================================================
# HTTP Blob Store Implementation
# =============================================================================
class HttpArtifactStorage(ArtifactStorage):
    """Uploads artifacts with an authenticated HTTP PUT to ``base_url/key``.

    If the blob service answers with a JSON body containing "url", that URL
    is returned (services that add CDN hosts or suffixes); otherwise the
    PUT target itself is the download URL.
    """

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        *,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Content-Type": "application/wasm"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"

        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )
        self._logger = logger.bind(component="http_artifact_storage")

    async def upload(
        self,
        plugin_id: str,
        version: str,
        data: bytes,
        file_name: str,
    ) -> str:
        key = storage_key(plugin_id, version, file_name)
        target = f"{self._base_url}/{key}"

        try:
            response = await self._client.put(target, content=data)
        except httpx.HTTPError as e:
            raise UploadError(
                message=f"Upload failed: {type(e).__name__}: {e}",
                key=key,
            ) from e

        if not response.is_success:
            raise UploadError(
                message=f"Upload failed: {response.status_code} {response.reason_phrase}",
                key=key,
                details={"status_code": response.status_code},
            )

        url = target
        if response.headers.get("content-type", "").startswith("application/json"):
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and isinstance(body.get("url"), str):
                url = body["url"]

        self._logger.info("artifact_uploaded", key=key, size=len(data), url=url)
        return url

    async def close(self) -> None:
        await self._client.aclose()


# =============================================================================
# Factory
# =============================================================================
def create_artifact_storage(config: StorageConfig) -> ArtifactStorage:
    """Create the storage backend selected by ``config.backend``.

    Raises:
        ConfigurationError: If the backend lacks required settings.
    """
    backend = config.backend

    if backend == "memory":
        return InMemoryArtifactStorage()

    if backend == "local":
        if config.local_root is None:
            raise ConfigurationError(
                message="storage.local_root is required for the local storage backend",
                error_code="MISSING_STORAGE_ROOT",
            )
        return LocalArtifactStorage(config.local_root, base_url=config.base_url)

    if backend == "http":
        if not config.base_url:
            raise ConfigurationError(
                message="storage.base_url is required for the http storage backend",
                error_code="MISSING_STORAGE_URL",
            )
        return HttpArtifactStorage(
            config.base_url,
            config.api_token,
            timeout_seconds=config.timeout_seconds,
        )

    raise ConfigurationError(
        message=f"Unknown storage backend: '{backend}'. Available: 'memory', 'local', 'http'.",
        error_code="UNKNOWN_STORAGE_BACKEND",
    )
