"""
plugin_builder.core.models - Core Data Models
===============================================

This module defines the Pydantic data models that flow through every stage
of the build pipeline.

Model Overview:
    BuildRequest   → What should be built? (immutable input, consumed once)
    PluginManifest → What does the plugin declare about itself? (manifest.json)
    ArtifactInfo   → What did the builder produce? (path, checksum, size)
    BuildRecord    → What happened to this build id? (state machine row)
    PluginVersion  → A published, downloadable artifact for one version
    Plugin         → Marketplace summary row updated on success
    BuildResult    → What the orchestrator returns to its caller

Data Flow:
    ┌──────────────┐  BuildRequest   ┌──────────────┐  ArtifactInfo   ┌──────────────┐
    │  External     │ ─────────────→ │  Pipeline     │ ─────────────→ │  State        │
    │  orchestrator │                 │  stages       │                 │  Manager      │
    │              │ ←───────────── │              │                 │ BuildRecord   │
    └──────────────┘  BuildResult    └──────────────┘                 │ PluginVersion │
                                                                        │ Plugin        │
                                                                        └──────────────┘
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, SecretStr

from plugin_builder.core.enums import BuildStatus, PluginStatus


# =============================================================================
# Helpers: IDs and Timestamps
# =============================================================================
def generate_build_id() -> str:
    """Generate a unique build identifier, e.g. "bld-a1b2c3d4-...". """
    return f"bld-{uuid4()}"


# Build ids name a directory under the build root, so they are restricted to
# a single safe path segment.
BUILD_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
BUILD_ID_MAX_LENGTH = 64


def is_valid_build_id(build_id: str) -> bool:
    """True if ``build_id`` is one safe path segment of at most 64 chars."""
    return len(build_id) <= BUILD_ID_MAX_LENGTH and bool(BUILD_ID_PATTERN.fullmatch(build_id))


def generate_version_id() -> str:
    """Generate a unique plugin version identifier."""
    return f"ver-{uuid4()}"


def _now() -> datetime:
    """Get the current UTC timestamp. Every timestamp in the pipeline is UTC."""
    return datetime.now(timezone.utc)


# =============================================================================
# Release Tag Parsing
# =============================================================================
# Release tags come in many shapes: "v1.0.0", "1.0.0", "release-1.0.0",
# "release/1.0.0", "v2.1.0-beta.1". The build targets the bare X.Y.Z.
# =============================================================================
_TAG_PREFIX_RE = re.compile(r"^(?:v|release[-/])", re.IGNORECASE)
_SEMVER_CORE_RE = re.compile(r"^(\d+\.\d+\.\d+)")


def parse_version_from_tag(tag: str) -> str:
    """Derive a plugin version string from a git release tag.

    Strips a leading "v" or "release-"/"release/" prefix, then keeps only
    the leading semver core when one is present.

    Args:
        tag: The release tag name.

    Returns:
        The normalized version. Tags that are not semver are returned with
        only the prefix removed.

    Example:
        >>> parse_version_from_tag("v1.2.3-beta.1")
        '1.2.3'
        >>> parse_version_from_tag("nightly")
        'nightly'
    """
    cleaned = _TAG_PREFIX_RE.sub("", tag.strip())
    match = _SEMVER_CORE_RE.match(cleaned)
    return match.group(1) if match else cleaned


# =============================================================================
# Build Request
# =============================================================================
# Submitted by the external caller (typically a release webhook handler).
# Immutable: the pipeline reads it, never writes it.
# =============================================================================
class BuildRequest(BaseModel):
    """Parameters of one build, identified externally by a build id.

    Attributes:
        plugin_id: Identifier of the plugin being built.
        target_version: Semver string the new PluginVersion will carry.
        archive_url: URL of the gzip tarball containing the plugin source.
        release_tag: The git tag of the release (logged, stored on the record).
        changelog: Optional release notes copied onto the PluginVersion.
        is_prerelease: Prereleases are published but never become "latest".
        plugin_sub_path: Monorepo path of the plugin inside the archive.
        auth_token: Bearer token for private archive downloads. Never logged.

    Example:
        >>> request = BuildRequest(
        ...     plugin_id="clipboard-history",
        ...     target_version="1.4.0",
        ...     archive_url="https://api.github.com/repos/acme/clip/tarball/v1.4.0",
        ...     release_tag="v1.4.0",
        ... )
    """

    plugin_id: str = Field(min_length=1, description="Plugin identifier")
    target_version: str = Field(min_length=1, description="Semver version to publish")
    archive_url: str = Field(min_length=1, description="Fetchable URL of the source tarball")
    release_tag: str = Field(description="Release tag name")
    changelog: Optional[str] = Field(default=None, description="Release notes")
    is_prerelease: bool = Field(default=False, description="Excluded from latest promotion")
    plugin_sub_path: Optional[str] = Field(
        default=None,
        description="Plugin directory inside the archive (monorepos)",
    )
    auth_token: Optional[SecretStr] = Field(
        default=None,
        description="Bearer token for authenticated archive downloads",
    )

    model_config = {"frozen": True}

    @classmethod
    def from_release(
        cls,
        plugin_id: str,
        tag: str,
        archive_url: str,
        *,
        changelog: Optional[str] = None,
        is_prerelease: bool = False,
        plugin_sub_path: Optional[str] = None,
        auth_token: Optional[str] = None,
    ) -> BuildRequest:
        """Create a request from release metadata, deriving the version from the tag."""
        return cls(
            plugin_id=plugin_id,
            target_version=parse_version_from_tag(tag),
            archive_url=archive_url,
            release_tag=tag,
            changelog=changelog,
            is_prerelease=is_prerelease,
            plugin_sub_path=plugin_sub_path,
            auth_token=SecretStr(auth_token) if auth_token else None,
        )


# =============================================================================
# Plugin Manifest
# =============================================================================
# Parsed manifest.json from the plugin root. Only name and version are
# required; everything the pipeline copies onto the PluginVersion defaults
# to empty. Unknown keys are kept so collaborators can read them later.
# =============================================================================
class PluginManifest(BaseModel):
    """Declarative plugin metadata read from manifest.json."""

    name: str
    version: str
    permissions: list[str] = Field(default_factory=list)
    ai_tool_schemas: Any = Field(default_factory=dict)
    min_launcher_version: Optional[str] = None
    entry: Optional[str] = Field(
        default=None,
        description="Entry point override, relative to the plugin root",
    )

    model_config = {"extra": "allow"}


# =============================================================================
# Artifact Info
# =============================================================================
class ArtifactInfo(BaseModel):
    """The finalized build output: where it is and what it hashes to."""

    path: Path
    file_name: str
    checksum: str = Field(description="Hex SHA-256 of the artifact bytes")
    file_size: int = Field(ge=0, description="Artifact length in bytes")


# =============================================================================
# Build Record
# =============================================================================
class BuildRecord(BaseModel):
    """Persistent state of a single build id.

    Created PENDING when a request is accepted; moved to BUILDING when the
    pipeline starts and to SUCCESS/FAILED when it ends. Never deleted by
    the pipeline.

    Invariants:
        - error_message is set iff status is FAILED
        - version_id is set iff status is SUCCESS
        - build_id is a single path segment (see is_valid_build_id)
    """

    build_id: str = Field(
        default_factory=generate_build_id,
        pattern=BUILD_ID_PATTERN.pattern,
        max_length=BUILD_ID_MAX_LENGTH,
    )
    plugin_id: str
    target_version: str
    release_tag: str = ""
    status: BuildStatus = BuildStatus.PENDING
    created_at: datetime = Field(default_factory=_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    logs: list[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    version_id: Optional[str] = None


# =============================================================================
# Plugin Version
# =============================================================================
class PluginVersion(BaseModel):
    """A published, downloadable artifact for one version of a plugin.

    Invariant (per plugin_id): at most one non-prerelease version has
    is_latest=True at any time.
    """

    version_id: str = Field(default_factory=generate_version_id)
    plugin_id: str
    version: str
    download_url: str
    checksum: str
    file_size: int = Field(ge=0)
    permissions: list[str] = Field(default_factory=list)
    ai_tool_schemas: Any = Field(default_factory=dict)
    min_launcher_version: Optional[str] = None
    changelog: Optional[str] = None
    is_latest: bool = False
    is_prerelease: bool = False
    published_at: datetime = Field(default_factory=_now)


# =============================================================================
# Plugin Summary
# =============================================================================
class Plugin(BaseModel):
    """Marketplace summary row for a plugin.

    The pipeline only writes status (→ PUBLISHED), current_version (latest
    non-prerelease version string), published_at and updated_at.
    """

    plugin_id: str
    name: str = ""
    status: PluginStatus = PluginStatus.DRAFT
    current_version: Optional[str] = None
    published_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


# =============================================================================
# Build Result
# =============================================================================
class BuildResult(BaseModel):
    """Outcome of one pipeline run, returned to the caller.

    The authoritative record is the BuildRecord; this is a convenience
    snapshot so callers don't need a second read.
    """

    build_id: str
    success: bool
    download_url: Optional[str] = None
    checksum: Optional[str] = None
    file_size: Optional[int] = None
    version_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    logs: list[str] = Field(default_factory=list)
