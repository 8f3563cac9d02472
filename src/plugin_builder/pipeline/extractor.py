"""
plugin_builder.pipeline.extractor - Archive Extraction
========================================================

Unpacks a gzip tarball into the workspace and identifies the single
top-level directory it produced. Release tarballs unpack into one directory
with an unpredictable name (e.g. "acme-clipboard-history-3f2a9c1").

Selection rule:
    The immediate children of ``dest_dir`` must contain exactly one
    directory. Plain files at the top level are ignored. Zero or several
    directories is an ExtractionError: guessing would build the wrong tree.

Member safety:
    Extraction uses tarfile's "data" filter, which rejects absolute paths,
    ``..`` traversal, device files and links pointing outside the target.
"""

from __future__ import annotations

import asyncio
import tarfile
from pathlib import Path

import structlog

from plugin_builder.core.exceptions import ExtractionError


logger = structlog.get_logger()


def _extract_sync(archive_path: Path, dest_dir: Path) -> None:
    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive_path, mode="r:gz") as archive:
            archive.extractall(dest_dir, filter="data")
    except (tarfile.TarError, EOFError, OSError) as e:
        raise ExtractionError(
            message=f"Failed to extract archive: {e}",
            details={"archive": str(archive_path)},
        ) from e


def _single_root_dir(dest_dir: Path) -> Path:
    directories = sorted(entry for entry in dest_dir.iterdir() if entry.is_dir())

    if not directories:
        raise ExtractionError(
            message="No directory found in extracted tarball",
            error_code="NO_ROOT_DIRECTORY",
            details={"dest_dir": str(dest_dir)},
        )
    if len(directories) > 1:
        raise ExtractionError(
            message=(
                "Expected a single top-level directory in extracted tarball, "
                f"found {len(directories)}: {', '.join(d.name for d in directories)}"
            ),
            error_code="AMBIGUOUS_ROOT_DIRECTORY",
            details={"directories": [d.name for d in directories]},
        )

    return directories[0].resolve()


async def extract_archive(archive_path: Path, dest_dir: Path) -> Path:
    """Extract ``archive_path`` into ``dest_dir`` and return its root directory.

    Args:
        archive_path: A gzip-compressed tarball.
        dest_dir: Extraction target; created if missing.

    Returns:
        Absolute path of the single top-level directory.

    Raises:
        ExtractionError: If the archive is unreadable, contains unsafe
            members, or does not unpack into exactly one directory.
    """
    await asyncio.to_thread(_extract_sync, archive_path, dest_dir)
    root = _single_root_dir(dest_dir)
    logger.debug("archive_extracted", archive=str(archive_path), root=str(root))
    return root
