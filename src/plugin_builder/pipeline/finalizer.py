"""
plugin_builder.pipeline.finalizer - Artifact Checksum and Size
================================================================

Computes the SHA-256 content hash and byte length of a built artifact.
Identical bytes always yield the identical checksum, so downstream
consumers can deduplicate and cache by content.

``verify_checksum`` re-checks the exact bytes handed to the uploader against
the finalized checksum, so a file modified between hashing and upload is
never published under the wrong hash.
"""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path

from plugin_builder.core.exceptions import ChecksumError
from plugin_builder.core.models import ArtifactInfo


_CHUNK_SIZE = 1024 * 1024


def _hash_file(path: Path) -> tuple[str, int]:
    digest = hashlib.sha256()
    size = 0
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
            size += len(chunk)
    return digest.hexdigest(), size


def sha256_hex(data: bytes) -> str:
    """Hex SHA-256 of an in-memory buffer."""
    return hashlib.sha256(data).hexdigest()


async def finalize_artifact(artifact_path: Path) -> ArtifactInfo:
    """Hash and measure the artifact at ``artifact_path``.

    Raises:
        ChecksumError: If the file cannot be read.
    """
    artifact_path = Path(artifact_path)
    try:
        checksum, size = await asyncio.to_thread(_hash_file, artifact_path)
    except OSError as e:
        raise ChecksumError(
            message=f"Could not read artifact for checksum: {e}",
            details={"path": str(artifact_path)},
        ) from e

    return ArtifactInfo(
        path=artifact_path,
        file_name=artifact_path.name,
        checksum=checksum,
        file_size=size,
    )


def verify_checksum(data: bytes, artifact: ArtifactInfo) -> None:
    """Ensure ``data`` is exactly the finalized artifact.

    Raises:
        ChecksumError: On a size or digest mismatch.
    """
    actual = sha256_hex(data)
    if len(data) != artifact.file_size or actual != artifact.checksum:
        raise ChecksumError(
            message="Artifact changed after checksum was computed",
            error_code="CHECKSUM_MISMATCH",
            details={
                "expected": artifact.checksum,
                "actual": actual,
                "expected_size": artifact.file_size,
                "actual_size": len(data),
            },
        )
