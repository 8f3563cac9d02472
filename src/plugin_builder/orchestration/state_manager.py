"""
plugin_builder.orchestration.state_manager - Build State Persistence
======================================================================

This module implements the State Manager: owner of the build-record state
machine and of the version-promotion transaction.

Build State Machine:
    create_build   → PENDING
    mark_building  : PENDING  → BUILDING   (sets started_at)
    complete_build : BUILDING → SUCCESS    (promotion transaction, see below)
    fail_build     : PENDING | BUILDING → FAILED

Promotion Transaction (complete_build), one atomic unit:
    a. Unset is_latest on the plugin's current latest version
       (skipped for prereleases, which never become latest)
    b. Insert the new PluginVersion with is_latest = not is_prerelease
    c. Plugin → PUBLISHED; current_version = version unless prerelease;
       published_at / updated_at refreshed
    d. Build → SUCCESS with version_id, completed_at and the full logs

    (a) happens-before (b), and no other promotion for the same plugin can
    interleave, so a plugin never ends up with zero or two latest versions.
    If any step fails nothing is applied.

Implementations:
    - StateManager (ABC):     Abstract interface
    - InMemoryStateManager:   Dict-based, serialized by an asyncio.Lock
    - SqlStateManager:        SQLAlchemy, one database transaction
                              (see sql_state_manager.py)
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from plugin_builder.core.enums import BuildStatus, PluginStatus
from plugin_builder.core.exceptions import StateTransactionError
from plugin_builder.core.models import (
    ArtifactInfo,
    BuildRecord,
    BuildRequest,
    Plugin,
    PluginManifest,
    PluginVersion,
    is_valid_build_id,
)

logger = logging.getLogger(__name__)

DEFAULT_BUILD_LIST_LIMIT = 10


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Shared Helpers
# =============================================================================
def new_plugin_version(
    request: BuildRequest,
    artifact: ArtifactInfo,
    download_url: str,
    manifest: Optional[PluginManifest],
    version_id: Optional[str] = None,
) -> PluginVersion:
    """Assemble the PluginVersion a successful build publishes."""
    fields = {"version_id": version_id} if version_id else {}
    return PluginVersion(
        **fields,
        plugin_id=request.plugin_id,
        version=request.target_version,
        download_url=download_url,
        checksum=artifact.checksum,
        file_size=artifact.file_size,
        permissions=list(manifest.permissions) if manifest else [],
        ai_tool_schemas=manifest.ai_tool_schemas if manifest else {},
        min_launcher_version=manifest.min_launcher_version if manifest else None,
        changelog=request.changelog,
        is_latest=not request.is_prerelease,
        is_prerelease=request.is_prerelease,
        published_at=_now(),
    )


def invalid_transition(build_id: str, status: BuildStatus, expected: str) -> StateTransactionError:
    """Error for a transition attempted from the wrong build status."""
    return StateTransactionError(
        message=f"Build {build_id} is {status.value}, expected {expected}",
        error_code="INVALID_BUILD_TRANSITION",
        details={"build_id": build_id, "status": status.value, "expected": expected},
    )


def build_not_found(build_id: str) -> StateTransactionError:
    return StateTransactionError(
        message=f"Build not found: {build_id}",
        error_code="BUILD_NOT_FOUND",
        details={"build_id": build_id},
    )


def check_build_id(build_id: str) -> None:
    """Reject caller-chosen ids that are not a single safe path segment."""
    if not is_valid_build_id(build_id):
        raise StateTransactionError(
            message=f"Invalid build id: {build_id!r}",
            error_code="INVALID_BUILD_ID",
            details={"build_id": build_id},
        )


def plugin_not_registered(plugin_id: str) -> StateTransactionError:
    return StateTransactionError(
        message=f"Plugin not registered: {plugin_id}",
        error_code="PLUGIN_NOT_REGISTERED",
        details={"plugin_id": plugin_id},
    )


# =============================================================================
# Abstract Base Class: StateManager
# =============================================================================
class StateManager(ABC):
    """Abstract base class for build/version/plugin state persistence.

    Components should type-hint against this ABC.

    Example:
        >>> record = await sm.create_build(request)
        >>> await sm.mark_building(record.build_id)
        >>> version = await sm.complete_build(
        ...     record.build_id, request, artifact, url, manifest, log.lines
        ... )
    """

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------
    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the storage backend."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Gracefully disconnect from the storage backend."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether connect() has run and disconnect() has not."""

    # -------------------------------------------------------------------------
    # Plugin Summary
    # -------------------------------------------------------------------------
    @abstractmethod
    async def save_plugin(self, plugin: Plugin) -> None:
        """Insert or replace a plugin summary row."""

    @abstractmethod
    async def get_plugin(self, plugin_id: str) -> Optional[Plugin]:
        """Return the plugin summary, or None if not registered."""

    # -------------------------------------------------------------------------
    # Build Records
    # -------------------------------------------------------------------------
    @abstractmethod
    async def create_build(
        self,
        request: BuildRequest,
        build_id: Optional[str] = None,
    ) -> BuildRecord:
        """Accept a build request: create a PENDING build record.

        Args:
            request: The build request.
            build_id: Caller-chosen id; generated when omitted. Must be a single
                path segment: ASCII letters, digits, ".", "_" or "-", starting
                with a letter or digit, at most 64 characters.

        Raises:
            StateTransactionError: If the build id is malformed
                (INVALID_BUILD_ID), the plugin is not registered, or the build
                id already exists.
        """

    @abstractmethod
    async def get_build(self, build_id: str) -> Optional[BuildRecord]:
        """Return a build record, or None if unknown."""

    @abstractmethod
    async def list_builds(
        self,
        plugin_id: str,
        limit: int = DEFAULT_BUILD_LIST_LIMIT,
    ) -> list[BuildRecord]:
        """Return the plugin's most recent builds, newest first."""

    @abstractmethod
    async def mark_building(self, build_id: str) -> BuildRecord:
        """PENDING → BUILDING, setting started_at.

        Raises:
            StateTransactionError: If the build is unknown or not PENDING.
                A build already BUILDING belongs to another run.
        """

    @abstractmethod
    async def complete_build(
        self,
        build_id: str,
        request: BuildRequest,
        artifact: ArtifactInfo,
        download_url: str,
        manifest: Optional[PluginManifest],
        logs: list[str],
        version_id: Optional[str] = None,
    ) -> PluginVersion:
        """Run the promotion transaction and mark the build SUCCESS.

        Args:
            version_id: Id for the new PluginVersion; generated when omitted.
                The pipeline chooses it up front so the stored logs can
                name it.

        Returns:
            The newly created PluginVersion.

        Raises:
            StateTransactionError: If the build is not BUILDING, the plugin
                is missing, or the transaction fails. Nothing is applied.
        """

    @abstractmethod
    async def fail_build(
        self,
        build_id: str,
        error_message: str,
        logs: list[str],
    ) -> BuildRecord:
        """PENDING | BUILDING → FAILED with error message and logs so far.

        Raises:
            StateTransactionError: If the build is unknown or already terminal.
        """

    # -------------------------------------------------------------------------
    # Plugin Versions
    # -------------------------------------------------------------------------
    @abstractmethod
    async def get_version(self, version_id: str) -> Optional[PluginVersion]:
        """Return a plugin version by id, or None."""

    @abstractmethod
    async def list_versions(self, plugin_id: str) -> list[PluginVersion]:
        """Return all versions of a plugin, oldest first."""

    @abstractmethod
    async def get_latest_version(self, plugin_id: str) -> Optional[PluginVersion]:
        """Return the plugin's latest (non-prerelease) version, or None."""


# =============================================================================
# InMemoryStateManager Implementation
# =============================================================================
# Development and testing implementation using Python dicts. All mutations
# run under one asyncio.Lock and perform every validation before the first
# write, so the promotion unit is atomic with respect to other coroutines.
#
# Key Data Structures:
#   _plugins:  dict[plugin_id, Plugin]
#   _builds:   dict[build_id, BuildRecord]      (insertion ordered)
#   _versions: dict[version_id, PluginVersion]  (insertion ordered)
# =============================================================================
class InMemoryStateManager(StateManager):
    """In-memory state manager for development and testing.

    Stored models are copied on the way in and out, so callers can never
    mutate persisted state by holding a reference.
    """

    def __init__(self) -> None:
        self._plugins: dict[str, Plugin] = {}
        self._builds: dict[str, BuildRecord] = {}
        self._versions: dict[str, PluginVersion] = {}
        self._lock = asyncio.Lock()
        self._connected: bool = False

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------
    async def connect(self) -> None:
        """Mark the state manager as connected."""
        self._connected = True
        logger.info("InMemoryStateManager connected")

    async def disconnect(self) -> None:
        """Clear all stored state and mark as disconnected."""
        self._plugins.clear()
        self._builds.clear()
        self._versions.clear()
        self._connected = False
        logger.info("InMemoryStateManager disconnected")

    @property
    def is_connected(self) -> bool:
        return self._connected

    # -------------------------------------------------------------------------
    # Plugin Summary
    # -------------------------------------------------------------------------
    async def save_plugin(self, plugin: Plugin) -> None:
        async with self._lock:
            self._plugins[plugin.plugin_id] = plugin.model_copy(deep=True)
        logger.debug("Saved plugin: %s (status=%s)", plugin.plugin_id, plugin.status)

    async def get_plugin(self, plugin_id: str) -> Optional[Plugin]:
        plugin = self._plugins.get(plugin_id)
        return plugin.model_copy(deep=True) if plugin else None

    # -------------------------------------------------------------------------
    # Build Records
    # -------------------------------------------------------------------------
    async def create_build(
        self,
        request: BuildRequest,
        build_id: Optional[str] = None,
    ) -> BuildRecord:
        if build_id is not None:
            check_build_id(build_id)

        async with self._lock:
            if request.plugin_id not in self._plugins:
                raise plugin_not_registered(request.plugin_id)

            fields = {
                "plugin_id": request.plugin_id,
                "target_version": request.target_version,
                "release_tag": request.release_tag,
            }
            if build_id is not None:
                fields["build_id"] = build_id
            record = BuildRecord(**fields)

            if record.build_id in self._builds:
                raise StateTransactionError(
                    message=f"Build already exists: {record.build_id}",
                    error_code="DUPLICATE_BUILD",
                    details={"build_id": record.build_id},
                )
            self._builds[record.build_id] = record

        logger.debug("Created build: %s for %s@%s", record.build_id,
                     record.plugin_id, record.target_version)
        return record.model_copy(deep=True)

    async def get_build(self, build_id: str) -> Optional[BuildRecord]:
        record = self._builds.get(build_id)
        return record.model_copy(deep=True) if record else None

    async def list_builds(
        self,
        plugin_id: str,
        limit: int = DEFAULT_BUILD_LIST_LIMIT,
    ) -> list[BuildRecord]:
        indexed = [
            (record.created_at, index, record)
            for index, record in enumerate(self._builds.values())
            if record.plugin_id == plugin_id
        ]
        indexed.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [record.model_copy(deep=True) for _, _, record in indexed[:limit]]

    async def mark_building(self, build_id: str) -> BuildRecord:
        async with self._lock:
            record = self._require_build(build_id)
            if record.status != BuildStatus.PENDING:
                raise invalid_transition(build_id, record.status, BuildStatus.PENDING.value)

            updated = record.model_copy(
                update={"status": BuildStatus.BUILDING, "started_at": _now()}
            )
            self._builds[build_id] = updated

        logger.debug("Build %s → building", build_id)
        return updated.model_copy(deep=True)

    async def complete_build(
        self,
        build_id: str,
        request: BuildRequest,
        artifact: ArtifactInfo,
        download_url: str,
        manifest: Optional[PluginManifest],
        logs: list[str],
        version_id: Optional[str] = None,
    ) -> PluginVersion:
        async with self._lock:
            # --- Validate everything before the first write ---
            record = self._require_build(build_id)
            if record.status != BuildStatus.BUILDING:
                raise invalid_transition(build_id, record.status, BuildStatus.BUILDING.value)
            plugin = self._plugins.get(request.plugin_id)
            if plugin is None:
                raise plugin_not_registered(request.plugin_id)

            version = new_plugin_version(request, artifact, download_url, manifest, version_id)
            if version.version_id in self._versions:
                raise StateTransactionError(
                    message=f"Version already exists: {version.version_id}",
                    error_code="DUPLICATE_VERSION",
                    details={"version_id": version.version_id},
                )
            now = _now()

            # (a) supersede the previous latest
            superseded: dict[str, PluginVersion] = {}
            if not request.is_prerelease:
                for existing in self._versions.values():
                    if existing.plugin_id == request.plugin_id and existing.is_latest:
                        superseded[existing.version_id] = existing.model_copy(
                            update={"is_latest": False}
                        )

            # (c) plugin summary
            plugin_update: dict[str, object] = {
                "status": PluginStatus.PUBLISHED,
                "published_at": now,
                "updated_at": now,
            }
            if not request.is_prerelease:
                plugin_update["current_version"] = request.target_version

            # (d) build record
            completed = record.model_copy(
                update={
                    "status": BuildStatus.SUCCESS,
                    "version_id": version.version_id,
                    "completed_at": now,
                    "logs": list(logs),
                }
            )

            # --- Apply: no awaits from here on ---
            self._versions.update(superseded)
            self._versions[version.version_id] = version
            self._plugins[plugin.plugin_id] = plugin.model_copy(update=plugin_update)
            self._builds[build_id] = completed

        logger.info(
            "Build %s succeeded: %s@%s (latest=%s)",
            build_id, request.plugin_id, request.target_version, version.is_latest,
        )
        return version.model_copy(deep=True)

    async def fail_build(
        self,
        build_id: str,
        error_message: str,
        logs: list[str],
    ) -> BuildRecord:
        async with self._lock:
            record = self._require_build(build_id)
            if record.status.is_terminal:
                raise invalid_transition(build_id, record.status, "pending or building")

            failed = record.model_copy(
                update={
                    "status": BuildStatus.FAILED,
                    "error_message": error_message,
                    "completed_at": _now(),
                    "logs": list(logs),
                }
            )
            self._builds[build_id] = failed

        logger.info("Build %s failed: %s", build_id, error_message)
        return failed.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Plugin Versions
    # -------------------------------------------------------------------------
    async def get_version(self, version_id: str) -> Optional[PluginVersion]:
        version = self._versions.get(version_id)
        return version.model_copy(deep=True) if version else None

    async def list_versions(self, plugin_id: str) -> list[PluginVersion]:
        return [
            v.model_copy(deep=True)
            for v in self._versions.values()
            if v.plugin_id == plugin_id
        ]

    async def get_latest_version(self, plugin_id: str) -> Optional[PluginVersion]:
        for version in self._versions.values():
            if version.plugin_id == plugin_id and version.is_latest:
                return version.model_copy(deep=True)
        return None

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------
    def _require_build(self, build_id: str) -> BuildRecord:
        record = self._builds.get(build_id)
        if record is None:
            raise build_not_found(build_id)
        return record
