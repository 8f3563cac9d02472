"""
plugin_builder.core.enums - Type-Safe Enumerations
====================================================

This module defines the enumeration types used throughout the build pipeline.

All enums inherit from both `str` and `Enum`, which means:
    - They serialize to strings in JSON/YAML and database columns
    - They can be compared with plain strings: BuildStatus.SUCCESS == "success"
    - They have human-readable representations

    ┌─────────────────────────────────────────────────────────────────┐
    │  BUILD TRACKING                                                  │
    │    BuildStatus: pending → building → (success | failed)         │
    ├─────────────────────────────────────────────────────────────────┤
    │  PLUGIN SUMMARY                                                  │
    │    PluginStatus: draft → pending_review → published → ...       │
    ├─────────────────────────────────────────────────────────────────┤
    │  TOOLCHAIN SELECTION                                             │
    │    PluginType: typescript | rust | unknown                      │
    └─────────────────────────────────────────────────────────────────┘
"""

from enum import Enum


# =============================================================================
# Build Status Enumeration
# =============================================================================
# The build record state machine. A record is created PENDING when the
# request is accepted and is mutated exactly twice more:
#
#   PENDING → BUILDING → (SUCCESS | FAILED)
#
# The transitions are enforced by the StateManager implementations.
# =============================================================================
class BuildStatus(str, Enum):
    """Lifecycle states of a single build record.

    State Transitions:
        PENDING → BUILDING:  Pipeline run starts for this build id
        BUILDING → SUCCESS:  Artifact uploaded and version promoted
        BUILDING → FAILED:   Any stage raised an error
        PENDING → FAILED:    Run aborted before the building transition

    Usage:
        >>> record.status == BuildStatus.SUCCESS
        True
    """

    PENDING = "pending"
    BUILDING = "building"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """True for states that never transition again."""
        return self in (BuildStatus.SUCCESS, BuildStatus.FAILED)


# =============================================================================
# Plugin Status Enumeration
# =============================================================================
# Marketplace-facing status of a plugin summary row. The build pipeline only
# ever moves a plugin to PUBLISHED (on its first successful build); the
# remaining states are owned by the review/marketplace collaborators.
# =============================================================================
class PluginStatus(str, Enum):
    """Publication status of a plugin in the marketplace."""

    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    PUBLISHED = "published"
    REJECTED = "rejected"
    ARCHIVED = "archived"


# =============================================================================
# Plugin Type Enumeration
# =============================================================================
# Result of the Type Detector. Each concrete value maps to a BuilderStrategy
# in pipeline/builders/. UNKNOWN is a valid detection result, but it never
# reaches a builder: the registry rejects it.
# =============================================================================
class PluginType(str, Enum):
    """Source language / toolchain of a plugin."""

    TYPESCRIPT = "typescript"   # package.json or *.ts sources, built with extism-js
    RUST = "rust"               # Cargo.toml project
    UNKNOWN = "unknown"         # Nothing recognizable at the plugin root
