"""
plugin_builder.orchestration.build_pipeline - Build Orchestrator
==================================================================

This module implements the BuildPipeline: it runs every stage of one build,
in order, for a single build id, and drives the build record through its
state machine.

Architecture Context:
    ┌──────────────────────────────────────────────────────────────────┐
    │                         BuildPipeline.run                         │
    │                                                                  │
    │  mark_building ──→ Workspace(build_dir/build_id)                 │
    │                      │                                           │
    │                      ├── fetch      (ArchiveFetcher)             │
    │                      ├── extract    (extract_archive)            │
    │                      ├── locate     (locate_plugin_root)         │
    │                      ├── manifest   (load_manifest)              │
    │                      ├── detect     (detect_plugin_type)         │
    │                      ├── build      (BuilderStrategy)            │
    │                      ├── finalize   (finalize_artifact)          │
    │                      ├── upload     (ArtifactStorage)            │
    │                      └── promote    (StateManager.complete_build)│
    │                                                                  │
    │  any PluginBuilderError ──→ "ERROR: ..." ──→ fail_build          │
    │  workspace removed on every exit path                            │
    └──────────────────────────────────────────────────────────────────┘

Failure Semantics:
    - A typed PluginBuilderError short-circuits the remaining stages. The
      message is appended to the build log, the record goes to FAILED and a
      failed BuildResult is returned. Nothing is uploaded or promoted after
      the failing stage.
    - Any other exception is also recorded as FAILED, then re-raised.
    - A workspace that cannot be created (WorkspaceError) fails the build
      like any stage error; the record never stays BUILDING.
    - mark_building refusing the build (unknown id, or not PENDING) raises
      before any workspace exists and leaves the record untouched.

Usage:
    >>> pipeline = BuildPipeline(config, state_manager, storage)
    >>> record = await state_manager.create_build(request)
    >>> result = await pipeline.run(record.build_id, request)
    >>> result.success, result.download_url
    (True, 'memory://plugins/clipboard-history/1.4.0/plugin.wasm')
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import structlog

from plugin_builder.core.config import BuilderConfig
from plugin_builder.core.exceptions import (
    ChecksumError,
    PluginBuilderError,
    StateTransactionError,
)
from plugin_builder.core.models import (
    BuildRequest,
    BuildResult,
    PluginManifest,
    generate_version_id,
)
from plugin_builder.infrastructure.artifact_storage import ArtifactStorage
from plugin_builder.orchestration.state_manager import StateManager
from plugin_builder.pipeline.build_log import BuildLog
from plugin_builder.pipeline.builders import get_builder
from plugin_builder.pipeline.detector import detect_plugin_type
from plugin_builder.pipeline.extractor import extract_archive
from plugin_builder.pipeline.fetcher import ArchiveFetcher
from plugin_builder.pipeline.finalizer import finalize_artifact, verify_checksum
from plugin_builder.pipeline.locator import load_manifest, locate_plugin_root
from plugin_builder.pipeline.workspace import Workspace


# =============================================================================
# Logger Setup
# =============================================================================
logger = structlog.get_logger()


class BuildPipeline:
    """Runs the build stages for one build id at a time.

    A single BuildPipeline instance can serve many concurrent runs: all
    per-run state (log sink, workspace, manifest) lives in ``run``.

    Attributes:
        _config: Build directory and toolchain settings.
        _state_manager: Owner of the build/version/plugin state.
        _storage: Durable artifact storage.
        _fetcher: Source archive downloader.
        _logger: Structured logger with pipeline context.
    """

    def __init__(
        self,
        config: BuilderConfig,
        state_manager: StateManager,
        storage: ArtifactStorage,
        fetcher: Optional[ArchiveFetcher] = None,
    ) -> None:
        self._config = config
        self._state_manager = state_manager
        self._storage = storage
        self._fetcher = fetcher or ArchiveFetcher(config.fetcher)
        self._logger = logger.bind(component="build_pipeline")

    async def run(self, build_id: str, request: BuildRequest) -> BuildResult:
        """Execute the pipeline for ``build_id``.

        Args:
            build_id: Id of a PENDING build record created for ``request``.
            request: The build parameters.

        Returns:
            BuildResult with success=True and the published artifact's URL,
            checksum and version id, or success=False with the error.

        Raises:
            StateTransactionError: If the build cannot be started (unknown
                id or not PENDING).
            Exception: Any unexpected, non-pipeline error, after the build
                has been recorded as FAILED.
        """
        await self._state_manager.mark_building(build_id)

        log = BuildLog(build_id)
        self._logger.info(
            "build_started",
            build_id=build_id,
            plugin_id=request.plugin_id,
            version=request.target_version,
        )

        # Workspace setup is inside the try: once the record is BUILDING,
        # every exit path must reach _record_failure or complete_build.
        try:
            async with Workspace(self._config.build_dir, build_id) as workspace:
                return await self._run_stages(build_id, request, workspace, log)
        except PluginBuilderError as e:
            log.error(e.message)
            await self._record_failure(build_id, e.message, log)
            self._logger.warning(
                "build_failed",
                build_id=build_id,
                error_code=e.error_code,
                error=e.message,
            )
            return BuildResult(
                build_id=build_id,
                success=False,
                error=e.message,
                error_code=e.error_code,
                logs=log.lines,
            )
        except asyncio.CancelledError:
            log.error("Build cancelled")
            await asyncio.shield(self._record_failure(build_id, "Build cancelled", log))
            raise
        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            log.error(message)
            await self._record_failure(build_id, message, log)
            self._logger.exception("build_crashed", build_id=build_id)
            raise

    # =========================================================================
    # Stages
    # =========================================================================
    async def _run_stages(
        self,
        build_id: str,
        request: BuildRequest,
        workspace: Workspace,
        log: BuildLog,
    ) -> BuildResult:
        log.info(f"Starting build for {request.plugin_id}@{request.target_version}")
        log.info(f"Release tag: {request.release_tag}")
        if request.plugin_sub_path:
            log.info(f"Plugin path (monorepo): {request.plugin_sub_path}")
        log.info(f"Work directory: {workspace.path}")

        # --- Fetch ---
        log.info(f"Downloading source from: {request.archive_url}")
        auth_token = request.auth_token.get_secret_value() if request.auth_token else None
        await self._fetcher.fetch(request.archive_url, workspace.archive_path, auth_token)
        log.info("Download complete")

        # --- Extract ---
        log.info("Extracting source...")
        source_dir = await extract_archive(workspace.archive_path, workspace.extract_dir)
        log.info(f"Extracted to: {source_dir}")

        # --- Locate + Manifest ---
        plugin_dir = locate_plugin_root(source_dir, request.plugin_sub_path)
        log.info(f"Plugin root: {plugin_dir}")
        manifest = load_manifest(plugin_dir)
        log.info(f"Manifest loaded: {manifest.name} v{manifest.version}")
        self._check_manifest_version(manifest, request, log)

        # --- Detect + Build ---
        plugin_type = detect_plugin_type(plugin_dir)
        log.info(f"Plugin type: {plugin_type.value}")
        builder = get_builder(plugin_type, self._config.toolchain)
        artifact_path = await builder.build(plugin_dir, log, manifest)

        # --- Finalize ---
        artifact = await finalize_artifact(artifact_path)
        log.info(f"WASM size: {artifact.file_size / 1024:.2f} KB")
        log.info(f"Checksum: {artifact.checksum}")

        # --- Upload ---
        data = await self._read_artifact(artifact_path)
        verify_checksum(data, artifact)
        log.info("Uploading to storage...")
        download_url = await self._storage.upload(
            request.plugin_id,
            request.target_version,
            data,
            artifact.file_name,
        )
        log.info(f"Uploaded: {download_url}")

        # --- Promote ---
        # The closing lines are stored with the record in the same
        # transaction, so they only reach the sink once it commits.
        version_id = generate_version_id()
        closing_lines = [
            f"Version created: {version_id}",
            "Build completed successfully!",
        ]
        await self._state_manager.complete_build(
            build_id,
            request,
            artifact,
            download_url,
            manifest,
            log.lines + closing_lines,
            version_id=version_id,
        )
        for line in closing_lines:
            log.info(line)

        self._logger.info(
            "build_succeeded",
            build_id=build_id,
            plugin_id=request.plugin_id,
            version=request.target_version,
            version_id=version_id,
            size=artifact.file_size,
        )
        return BuildResult(
            build_id=build_id,
            success=True,
            download_url=download_url,
            checksum=artifact.checksum,
            file_size=artifact.file_size,
            version_id=version_id,
            logs=log.lines,
        )

    # =========================================================================
    # Helpers
    # =========================================================================
    @staticmethod
    def _check_manifest_version(
        manifest: PluginManifest,
        request: BuildRequest,
        log: BuildLog,
    ) -> None:
        if manifest.version != request.target_version:
            log.warning(
                f"Manifest version {manifest.version} does not match "
                f"release version {request.target_version}"
            )

    @staticmethod
    async def _read_artifact(path: Path) -> bytes:
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise ChecksumError(
                message=f"Could not read artifact for upload: {e}",
                details={"path": str(path)},
            ) from e

    async def _record_failure(self, build_id: str, message: str, log: BuildLog) -> None:
        """Move the record to FAILED with the logs so far.

        A state error here is logged rather than raised: the run has already
        failed and the caller gets that failure, not the bookkeeping one.
        """
        try:
            await self._state_manager.fail_build(build_id, message, log.lines)
        except StateTransactionError as e:
            self._logger.error(
                "build_failure_not_recorded",
                build_id=build_id,
                error_code=e.error_code,
                error=e.message,
            )
