"""
plugin_builder.core - Foundation Layer
========================================

The building blocks every other module depends on:

    - config:      BuilderConfig and its sub-configurations
    - enums:       BuildStatus, PluginStatus, PluginType
    - models:      BuildRequest, BuildRecord, PluginVersion, Plugin, ...
    - exceptions:  The typed error taxonomy of the pipeline
    - logging:     structlog level configuration

Dependency Rule:
    core/ depends on NOTHING else in the plugin_builder package.
"""

from plugin_builder.core.config import (
    BuilderConfig,
    DatabaseConfig,
    FetcherConfig,
    StorageConfig,
    ToolchainConfig,
)
from plugin_builder.core.enums import BuildStatus, PluginStatus, PluginType
from plugin_builder.core.exceptions import (
    ArtifactMissingError,
    BuildError,
    ChecksumError,
    CompileError,
    ConfigurationError,
    DependencyInstallError,
    DownloadError,
    EntryPointNotFoundError,
    ExtractionError,
    ManifestError,
    PluginBuilderError,
    PluginNotFoundError,
    StateTransactionError,
    UnsupportedPluginTypeError,
    UnsupportedToolchainError,
    UploadError,
    WorkspaceError,
)
from plugin_builder.core.models import (
    ArtifactInfo,
    BuildRecord,
    BuildRequest,
    BuildResult,
    Plugin,
    PluginManifest,
    PluginVersion,
    parse_version_from_tag,
)

__all__ = [
    # Config
    "BuilderConfig",
    "FetcherConfig",
    "ToolchainConfig",
    "StorageConfig",
    "DatabaseConfig",
    # Enums
    "BuildStatus",
    "PluginStatus",
    "PluginType",
    # Models
    "BuildRequest",
    "BuildRecord",
    "BuildResult",
    "PluginVersion",
    "Plugin",
    "PluginManifest",
    "ArtifactInfo",
    "parse_version_from_tag",
    # Exceptions
    "PluginBuilderError",
    "ConfigurationError",
    "DownloadError",
    "ExtractionError",
    "PluginNotFoundError",
    "ManifestError",
    "UnsupportedPluginTypeError",
    "BuildError",
    "EntryPointNotFoundError",
    "DependencyInstallError",
    "CompileError",
    "ArtifactMissingError",
    "UnsupportedToolchainError",
    "ChecksumError",
    "UploadError",
    "StateTransactionError",
    "WorkspaceError",
]
