"""
plugin_builder.facade - Build Service Facade
==============================================

This module implements PluginBuildService, the single entry point that wires
configuration, state, storage and the pipeline together.

Architecture Context:
    ┌──────────────────────────────────────────────────┐
    │           PluginBuildService (Facade)             │
    │                                                   │
    │  ┌─────────────────────────────────────────────┐ │
    │  │         Orchestration Layer                   │ │
    │  │  BuildPipeline, StateManager                  │ │
    │  └─────────────────────┬───────────────────────┘ │
    │                        │                          │
    │  ┌─────────────────────▼───────────────────────┐ │
    │  │            Pipeline Stages                    │ │
    │  │  fetch, extract, locate, detect, build, ...  │ │
    │  └─────────────────────┬───────────────────────┘ │
    │                        │                          │
    │  ┌─────────────────────▼───────────────────────┐ │
    │  │         Infrastructure Layer                  │ │
    │  │  ArtifactStorage                              │ │
    │  └─────────────────────────────────────────────┘ │
    └──────────────────────────────────────────────────┘

Usage:
    >>> async with PluginBuildService(config) as service:
    ...     await service.register_plugin(Plugin(plugin_id="clipboard-history"))
    ...     result = await service.submit_build(request)
    ...     latest = await service.get_latest_version("clipboard-history")

    Or accept now, run later (e.g. from a webhook handler and a worker):
    >>> record = await service.accept_build(request)
    >>> result = await service.run_build(record.build_id, request)
"""

from __future__ import annotations

from typing import Any, Optional

import structlog

from plugin_builder.core.config import BuilderConfig
from plugin_builder.core.logging import configure_logging
from plugin_builder.core.models import (
    BuildRecord,
    BuildRequest,
    BuildResult,
    Plugin,
    PluginVersion,
)
from plugin_builder.infrastructure.artifact_storage import (
    ArtifactStorage,
    create_artifact_storage,
)
from plugin_builder.orchestration.build_pipeline import BuildPipeline
from plugin_builder.orchestration.factory import create_state_manager
from plugin_builder.orchestration.state_manager import (
    DEFAULT_BUILD_LIST_LIMIT,
    StateManager,
)
from plugin_builder.pipeline.fetcher import ArchiveFetcher


# =============================================================================
# Logger
# =============================================================================
logger = structlog.get_logger()


class PluginBuildService:
    """Top-level facade for the plugin build pipeline.

    Lifecycle:
        1. ``PluginBuildService(config)`` - Instantiate with configuration
        2. ``await initialize()`` - Configure logging, connect state
        3. ``await register_plugin(...)`` / ``await submit_build(...)``
        4. ``await shutdown()`` - Disconnect state, close storage

    Attributes:
        _config: Builder configuration.
        _state_manager: Build/version/plugin state.
        _storage: Artifact storage.
        _pipeline: The stage runner.
        _initialized: Whether initialize() has been called.
    """

    def __init__(
        self,
        config: Optional[BuilderConfig] = None,
        *,
        state_manager: Optional[StateManager] = None,
        storage: Optional[ArtifactStorage] = None,
        fetcher: Optional[ArchiveFetcher] = None,
    ) -> None:
        """Initialize the facade.

        Args:
            config: Builder configuration. Defaults to BuilderConfig(), which
                reads PLUGIN_BUILDER_* environment variables.
            state_manager: Custom state manager. Defaults to the backend
                selected by config.state_backend.
            storage: Custom artifact storage. Defaults to the backend
                selected by config.storage.backend.
            fetcher: Custom archive fetcher (tests inject a mock transport).
        """
        self._config = config or BuilderConfig()
        self._state_manager = state_manager or create_state_manager(self._config)
        self._storage = storage or create_artifact_storage(self._config.storage)
        self._pipeline = BuildPipeline(
            config=self._config,
            state_manager=self._state_manager,
            storage=self._storage,
            fetcher=fetcher,
        )
        self._initialized = False
        self._logger = logger.bind(component="plugin_build_service")

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> BuilderConfig:
        return self._config

    @property
    def state_manager(self) -> StateManager:
        """Access the State Manager for direct state queries."""
        return self._state_manager

    @property
    def storage(self) -> ArtifactStorage:
        return self._storage

    @property
    def pipeline(self) -> BuildPipeline:
        return self._pipeline

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # =========================================================================
    # Lifecycle Management
    # =========================================================================

    async def initialize(self) -> None:
        """Configure logging and connect the state manager.

        Idempotent: Safe to call multiple times.
        """
        if self._initialized:
            self._logger.debug("service_already_initialized")
            return

        configure_logging(self._config.log_level)
        self._logger.info("service_initializing", environment=self._config.environment)

        await self._state_manager.connect()
        self._config.build_dir.mkdir(parents=True, exist_ok=True)

        self._initialized = True
        self._logger.info("service_initialized", build_dir=str(self._config.build_dir))

    async def shutdown(self) -> None:
        """Disconnect the state manager and close storage.

        Idempotent: Safe to call multiple times.
        """
        if not self._initialized:
            self._logger.debug("service_not_initialized_skipping_shutdown")
            return

        self._logger.info("service_shutting_down")
        await self._state_manager.disconnect()
        await self._storage.close()

        self._initialized = False
        self._logger.info("service_shutdown_complete")

    async def __aenter__(self) -> PluginBuildService:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()

    # =========================================================================
    # Plugins
    # =========================================================================

    async def register_plugin(self, plugin: Plugin) -> None:
        """Insert or replace a plugin summary. Builds require one.

        Raises:
            RuntimeError: If the service has not been initialized.
        """
        self._ensure_initialized()
        await self._state_manager.save_plugin(plugin)
        self._logger.info("plugin_registered", plugin_id=plugin.plugin_id)

    # =========================================================================
    # Builds
    # =========================================================================

    async def accept_build(
        self,
        request: BuildRequest,
        build_id: Optional[str] = None,
    ) -> BuildRecord:
        """Create a PENDING build record for ``request``.

        Raises:
            RuntimeError: If the service has not been initialized.
            StateTransactionError: If the build id is malformed, the plugin
                is not registered, or the build id is already taken.
        """
        self._ensure_initialized()
        record = await self._state_manager.create_build(request, build_id)
        self._logger.info(
            "build_accepted",
            build_id=record.build_id,
            plugin_id=request.plugin_id,
            version=request.target_version,
        )
        return record

    async def run_build(self, build_id: str, request: BuildRequest) -> BuildResult:
        """Run the pipeline for an accepted build.

        Raises:
            RuntimeError: If the service has not been initialized.
            StateTransactionError: If the build is unknown or not PENDING.
        """
        self._ensure_initialized()
        return await self._pipeline.run(build_id, request)

    async def submit_build(self, request: BuildRequest) -> BuildResult:
        """Accept and immediately run a build."""
        record = await self.accept_build(request)
        return await self.run_build(record.build_id, request)

    async def get_build_status(self, build_id: str) -> Optional[BuildRecord]:
        """Return the build record, including status and logs."""
        self._ensure_initialized()
        return await self._state_manager.get_build(build_id)

    async def list_plugin_builds(
        self,
        plugin_id: str,
        limit: int = DEFAULT_BUILD_LIST_LIMIT,
    ) -> list[BuildRecord]:
        """Return the plugin's most recent builds, newest first."""
        self._ensure_initialized()
        return await self._state_manager.list_builds(plugin_id, limit)

    # =========================================================================
    # Versions
    # =========================================================================

    async def get_latest_version(self, plugin_id: str) -> Optional[PluginVersion]:
        self._ensure_initialized()
        return await self._state_manager.get_latest_version(plugin_id)

    async def list_versions(self, plugin_id: str) -> list[PluginVersion]:
        self._ensure_initialized()
        return await self._state_manager.list_versions(plugin_id)

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError(
                "PluginBuildService has not been initialized. "
                "Call await service.initialize() or use "
                "'async with PluginBuildService() as service:'"
            )

    def __repr__(self) -> str:
        return (
            f"PluginBuildService("
            f"initialized={self._initialized}, "
            f"state_backend={self._config.state_backend!r}, "
            f"storage_backend={self._config.storage.backend!r})"
        )
