"""
plugin_builder.pipeline.workspace - Per-Build Scratch Directories
===================================================================

Each pipeline run owns one workspace directory, ``<build_dir>/<build_id>``,
holding the downloaded archive, the extracted tree and the build output.
No two runs share local filesystem state.

The workspace is a scoped resource: ``async with Workspace(...)`` creates the
directory and always removes it on exit (success, handled failure, unexpected
exception or task cancellation). Creation failures, and build ids that would
resolve outside the build root, raise WorkspaceError before anything is
written or removed. Removal is best effort: a failure to delete
is logged and swallowed so it can never turn a successful build into a
failed one.

Layout:
    <build_dir>/<build_id>/
        ├── source.tar.gz
        └── extracted/
              └── <owner>-<repo>-<sha>/   ← single top-level archive dir
"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import Any

import structlog

from plugin_builder.core.exceptions import WorkspaceError


logger = structlog.get_logger()

ARCHIVE_FILE_NAME = "source.tar.gz"
EXTRACT_DIR_NAME = "extracted"


async def cleanup_workspace(path: Path) -> bool:
    """Remove a workspace directory tree, never raising.

    Args:
        path: The workspace directory.

    Returns:
        True if the directory is gone afterwards, False if removal failed.
    """
    try:
        await asyncio.to_thread(shutil.rmtree, path)
    except FileNotFoundError:
        return True
    except OSError as e:
        logger.warning("workspace_cleanup_failed", path=str(path), error=str(e))
        return False

    logger.debug("workspace_removed", path=str(path))
    return True


class Workspace:
    """Async context manager owning one build's scratch directory.

    Example:
        >>> async with Workspace(config.build_dir, build_id) as ws:
        ...     await fetcher.fetch(url, ws.archive_path)
        ...     root = await extract_archive(ws.archive_path, ws.extract_dir)
    """

    def __init__(self, root: Path, build_id: str) -> None:
        self.path = Path(root) / build_id
        self.build_id = build_id
        self.cleaned_up = False

        # The directory is removed recursively on exit, so it must be a
        # strict descendant of the root.
        resolved_root = Path(root).resolve()
        resolved = self.path.resolve()
        if resolved == resolved_root or not resolved.is_relative_to(resolved_root):
            raise WorkspaceError(
                message=f"Build id {build_id!r} does not name a directory under {root}",
                path=str(self.path),
                error_code="INVALID_WORKSPACE_PATH",
                details={"build_id": build_id},
            )

    @property
    def archive_path(self) -> Path:
        """Where the downloaded source archive is written."""
        return self.path / ARCHIVE_FILE_NAME

    @property
    def extract_dir(self) -> Path:
        """Directory the archive is unpacked into."""
        return self.path / EXTRACT_DIR_NAME

    async def __aenter__(self) -> Workspace:
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkspaceError(
                message=f"Could not create workspace {self.path}: {e}",
                path=str(self.path),
                details={"build_id": self.build_id},
            ) from e
        logger.debug("workspace_created", build_id=self.build_id, path=str(self.path))
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        # Shielded so a cancelled run still releases its directory.
        self.cleaned_up = await asyncio.shield(cleanup_workspace(self.path))

    def __repr__(self) -> str:
        return f"Workspace(path={str(self.path)!r})"
