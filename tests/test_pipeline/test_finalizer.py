"""Tests for plugin_builder.pipeline.finalizer (checksum and size)."""

import hashlib
from pathlib import Path

import pytest

from plugin_builder.core.exceptions import ChecksumError
from plugin_builder.pipeline.finalizer import finalize_artifact, sha256_hex, verify_checksum


class TestFinalizeArtifact:
    async def test_checksum_and_size_match_bytes(self, tmp_path: Path) -> None:
        data = bytes(range(256)) * 5000
        path = tmp_path / "plugin.wasm"
        path.write_bytes(data)

        artifact = await finalize_artifact(path)

        assert artifact.checksum == hashlib.sha256(data).hexdigest()
        assert artifact.file_size == len(data)
        assert artifact.file_name == "plugin.wasm"
        assert artifact.path == path

    async def test_empty_file_is_valid(self, tmp_path: Path) -> None:
        path = tmp_path / "plugin.wasm"
        path.write_bytes(b"")

        artifact = await finalize_artifact(path)

        assert artifact.file_size == 0
        assert artifact.checksum == sha256_hex(b"")

    async def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ChecksumError):
            await finalize_artifact(tmp_path / "plugin.wasm")


class TestVerifyChecksum:
    async def test_same_bytes_pass(self, tmp_path: Path) -> None:
        path = tmp_path / "plugin.wasm"
        path.write_bytes(b"\x00asm")
        artifact = await finalize_artifact(path)

        verify_checksum(b"\x00asm", artifact)

    async def test_changed_bytes_fail(self, tmp_path: Path) -> None:
        path = tmp_path / "plugin.wasm"
        path.write_bytes(b"\x00asm")
        artifact = await finalize_artifact(path)

        with pytest.raises(ChecksumError) as exc_info:
            verify_checksum(b"\x00asX", artifact)

        assert exc_info.value.error_code == "CHECKSUM_MISMATCH"
