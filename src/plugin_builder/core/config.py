"""
plugin_builder.core.config - Configuration Management
=======================================================

This module provides the configuration system for the build pipeline.
Configuration can be loaded from multiple sources with the following
priority (highest first):

    1. Explicit constructor arguments (and values read from a YAML file)
    2. Environment variables (prefixed with PLUGIN_BUILDER_)
    3. Default values defined in the models below

Architecture Context:
    Configuration flows DOWN through the system. The top-level BuilderConfig
    is created once and handed to the facade, which passes the relevant
    sub-configuration to each component:

        BuilderConfig
            ├── FetcherConfig    → ArchiveFetcher
            ├── ToolchainConfig  → BuilderStrategy implementations
            ├── StorageConfig    → ArtifactStorage factory
            ├── DatabaseConfig   → SqlStateManager
            └── build_dir        → Workspace

Usage:
    # Load from environment variables:
    config = BuilderConfig()

    # Load from YAML file:
    config = load_config("plugin-builder.yaml")

Environment Variables:
    PLUGIN_BUILDER_BUILD_DIR=/var/tmp/plugin-builds
    PLUGIN_BUILDER_STATE_BACKEND=sql
    PLUGIN_BUILDER_DATABASE__URL=postgresql+psycopg://builder@db/launcher
    PLUGIN_BUILDER_TOOLCHAIN__COMPILE_TIMEOUT_SECONDS=600
    PLUGIN_BUILDER_STORAGE__BACKEND=http
    PLUGIN_BUILDER_STORAGE__API_TOKEN=...
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from plugin_builder.core.exceptions import ConfigurationError


DEFAULT_CONFIG_FILE = "plugin-builder.yaml"


# =============================================================================
# Fetcher Configuration
# =============================================================================
class FetcherConfig(BaseModel):
    """Settings for downloading source archives.

    Attributes:
        timeout_seconds: Overall HTTP timeout. Bounds how long a stalled
            download can hold a workspace.
        user_agent: Identifying client header sent with every request.
        chunk_size: Bytes written to disk per streamed chunk.
    """

    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="HTTP client timeout for archive downloads",
    )
    user_agent: str = Field(
        default="Launcher-Build-Service/1.0",
        description="User-Agent header identifying the build service",
    )
    chunk_size: int = Field(
        default=64 * 1024,
        ge=1024,
        description="Streaming chunk size in bytes",
    )


# =============================================================================
# Toolchain Configuration
# =============================================================================
# Commands and timeouts for the external build tools. Install and compile
# have separate limits: installs are network-bound, compiles CPU-bound.
# =============================================================================
class ToolchainConfig(BaseModel):
    """Settings for the external build toolchains.

    Attributes:
        package_manager: Executable used to install JS dependencies.
        compiler: Executable compiling a TypeScript entry point to WASM.
        install_timeout_seconds: Limit for each dependency install attempt.
        compile_timeout_seconds: Limit for the compile step.
        artifact_name: File name of the compiled output in the plugin root.
    """

    package_manager: str = Field(default="bun", description="JS package manager executable")
    compiler: str = Field(default="extism-js", description="TypeScript → WASM compiler")
    install_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        le=3600,
        description="Timeout for each dependency install attempt",
    )
    compile_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        le=3600,
        description="Timeout for the compile step",
    )
    artifact_name: str = Field(default="plugin.wasm", description="Compiled artifact file name")


# =============================================================================
# Storage Configuration
# =============================================================================
class StorageConfig(BaseModel):
    """Settings for durable artifact storage.

    Backends:
        - "memory": InMemoryArtifactStorage (dev/test, lost on exit)
        - "local":  LocalArtifactStorage under local_root
        - "http":   HttpArtifactStorage, PUT to base_url with api_token
    """

    backend: Literal["memory", "local", "http"] = Field(default="memory")
    local_root: Optional[Path] = Field(
        default=None,
        description="Root directory for the local backend",
    )
    base_url: Optional[str] = Field(
        default=None,
        description="Public base URL artifacts are served from",
    )
    api_token: Optional[str] = Field(
        default=None,
        description="Bearer token for the http backend",
    )
    timeout_seconds: float = Field(default=60.0, gt=0)


# =============================================================================
# Database Configuration
# =============================================================================
class DatabaseConfig(BaseModel):
    """Connection settings for the SQL state backend."""

    url: str = Field(
        default="sqlite:///plugin-builder.db",
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(default=False, description="Log emitted SQL")


# =============================================================================
# Main Configuration
# =============================================================================
# Environment Variable Mapping:
#   PLUGIN_BUILDER_LOG_LEVEL              → config.log_level
#   PLUGIN_BUILDER_BUILD_DIR              → config.build_dir
#   PLUGIN_BUILDER_TOOLCHAIN__COMPILER    → config.toolchain.compiler
#   PLUGIN_BUILDER_DATABASE__URL          → config.database.url
# =============================================================================
class BuilderConfig(BaseSettings):
    """Top-level configuration for the plugin build pipeline.

    Attributes:
        environment: Deployment environment.
        log_level: Level for structlog's filtering logger.
        build_dir: Scratch-space root; each build gets build_dir/<build_id>.
            Must be writable and sized for concurrent builds.
        state_backend: "memory" (InMemoryStateManager) or "sql"
            (SqlStateManager using database.url).
        fetcher / toolchain / storage / database: Sub-configurations.

    Example:
        >>> config = BuilderConfig(
        ...     build_dir=Path("/var/tmp/builds"),
        ...     toolchain=ToolchainConfig(compile_timeout_seconds=600),
        ... )
    """

    # -------------------------------------------------------------------------
    # General Settings
    # -------------------------------------------------------------------------
    environment: Literal["dev", "staging", "prod"] = Field(default="dev")
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    build_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "plugin-builds",
        description="Root directory for per-build workspaces",
    )
    state_backend: Literal["memory", "sql"] = Field(
        default="memory",
        description="Where build/version/plugin state is persisted",
    )

    # -------------------------------------------------------------------------
    # Nested Configurations
    # -------------------------------------------------------------------------
    fetcher: FetcherConfig = Field(default_factory=FetcherConfig)
    toolchain: ToolchainConfig = Field(default_factory=ToolchainConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    model_config = {
        "env_prefix": "PLUGIN_BUILDER_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }


# =============================================================================
# Configuration Loader
# =============================================================================
def load_config(path: Optional[str] = None) -> BuilderConfig:
    """Load builder configuration from a YAML file and environment variables.

    Args:
        path: Path to a YAML configuration file. If None, looks for
            'plugin-builder.yaml' in the current directory and falls back to
            defaults + environment variables when it is absent.

    Returns:
        A fully validated BuilderConfig instance.

    Raises:
        ConfigurationError: If the YAML file cannot be parsed or is not a mapping.
        FileNotFoundError: If an explicit path is provided but doesn't exist.
    """
    if path is None:
        default_path = Path(DEFAULT_CONFIG_FILE)
        if default_path.exists():
            path = str(default_path)

    yaml_data: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {path}. "
                f"Create one or configure via PLUGIN_BUILDER_* environment variables."
            )

        with open(config_path) as f:
            try:
                raw_data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(
                    message=f"Invalid YAML in configuration file {path}: {e}",
                    error_code="INVALID_CONFIG_FILE",
                    details={"path": str(path)},
                ) from e

        if raw_data is None:
            raw_data = {}
        if not isinstance(raw_data, dict):
            raise ConfigurationError(
                message=f"Configuration file {path} must contain a mapping",
                error_code="INVALID_CONFIG_FILE",
                details={"path": str(path), "type": type(raw_data).__name__},
            )
        yaml_data = raw_data

    return BuilderConfig(**yaml_data)


def get_default_config() -> BuilderConfig:
    """Create a BuilderConfig from defaults and environment variables."""
    return BuilderConfig()
