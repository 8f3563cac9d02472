"""
plugin_builder.core.exceptions - Build Pipeline Exception Hierarchy
=====================================================================

Every pipeline stage raises its own typed error. The orchestrator catches
them at the top level, records the message in the build log, and drives the
failure transition of the build record.

Exception Hierarchy:
    PluginBuilderError (base)
        ├── ConfigurationError          - Invalid or missing settings
        ├── WorkspaceError              - Build scratch directory unavailable
        ├── DownloadError               - Archive fetch failed (HTTP / transport)
        ├── ExtractionError             - Archive unreadable or no single root dir
        ├── PluginNotFoundError         - No manifest.json where expected
        ├── ManifestError               - manifest.json unreadable or invalid
        ├── UnsupportedPluginTypeError  - Detected type has no builder
        ├── BuildError                  - Toolchain stage failed (carries output)
        │     ├── EntryPointNotFoundError
        │     ├── DependencyInstallError
        │     ├── CompileError
        │     ├── ArtifactMissingError
        │     └── UnsupportedToolchainError
        ├── ChecksumError               - Artifact could not be hashed / verified
        ├── UploadError                 - Blob storage rejected the artifact
        └── StateTransactionError       - Build/version/plugin state update failed

Design Principles:
    1. Every exception carries structured context (not just a string message)
    2. Error codes enable programmatic handling by the build record consumers
    3. All exceptions serialize cleanly to JSON (for logging and API responses)

Usage:
    >>> raise DownloadError(
    ...     message="Failed to download: 404 Not Found",
    ...     url="https://example.com/source.tar.gz",
    ...     status_code=404,
    ... )
"""

from __future__ import annotations

from typing import Any, Optional


# =============================================================================
# Base Exception
# =============================================================================
# All pipeline exceptions inherit from this base class. This allows the
# orchestrator to catch every expected failure with a single except clause:
#
#   try:
#       await self._run_stages(...)
#   except PluginBuilderError as e:
#       log.error(e.message)
#       await state_manager.fail_build(build_id, e.message, log.lines)
# =============================================================================
class PluginBuilderError(Exception):
    """Base exception for all build pipeline errors.

    Attributes:
        message: Human-readable error description. This is the text stored
            in BuildRecord.error_message.
        error_code: Machine-readable error code (UPPER_SNAKE_CASE).
        details: Arbitrary dict with additional debugging context.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "BUILD_PIPELINE_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize this exception to a dictionary.

        Returns:
            Dictionary with error_type, message, error_code, and details.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


# =============================================================================
# Configuration Error
# =============================================================================
class ConfigurationError(PluginBuilderError):
    """Raised when builder configuration is invalid or missing.

    Common Causes:
        - Malformed YAML configuration file
        - Unknown state or storage backend name
        - HTTP storage selected without a base URL
    """

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIG_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


# =============================================================================
# Workspace Error
# =============================================================================
class WorkspaceError(PluginBuilderError):
    """Raised when a build's scratch directory cannot be created.

    Common Causes:
        - build_dir exists but is not a directory, or is not writable
        - Build id would place the workspace outside build_dir

    Attributes:
        path: The workspace path that was refused.
    """

    def __init__(
        self,
        message: str,
        path: str,
        error_code: str = "WORKSPACE_UNAVAILABLE",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["path"] = path

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.path = path


# =============================================================================
# Fetch / Extract / Locate Errors
# =============================================================================
class DownloadError(PluginBuilderError):
    """Raised when the source archive cannot be downloaded.

    Covers non-2xx responses as well as transport failures (DNS, TLS,
    connection reset, timeout). There is no retry at this layer.

    Attributes:
        url: The archive URL that was requested.
        status_code: HTTP status of the response, None for transport errors.
    """

    def __init__(
        self,
        message: str,
        url: str,
        status_code: Optional[int] = None,
        error_code: str = "DOWNLOAD_FAILED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["url"] = url
        if status_code is not None:
            enriched_details["status_code"] = status_code

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.url = url
        self.status_code = status_code


class ExtractionError(PluginBuilderError):
    """Raised when the archive cannot be unpacked or has no single root directory."""

    def __init__(
        self,
        message: str,
        error_code: str = "EXTRACTION_FAILED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


class PluginNotFoundError(PluginBuilderError):
    """Raised when no manifest.json can be found in the extracted tree.

    Attributes:
        sub_path: The monorepo sub-path hint, if the caller supplied one.
    """

    def __init__(
        self,
        message: str,
        sub_path: Optional[str] = None,
        error_code: str = "PLUGIN_NOT_FOUND",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if sub_path is not None:
            enriched_details["sub_path"] = sub_path

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.sub_path = sub_path


class ManifestError(PluginBuilderError):
    """Raised when manifest.json exists but cannot be parsed or validated."""

    def __init__(
        self,
        message: str,
        error_code: str = "INVALID_MANIFEST",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


class UnsupportedPluginTypeError(PluginBuilderError):
    """Raised when the detected plugin type has no registered builder.

    Attributes:
        plugin_type: The detected type value (e.g. "unknown").
    """

    def __init__(
        self,
        message: str,
        plugin_type: str,
        error_code: str = "UNSUPPORTED_PLUGIN_TYPE",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["plugin_type"] = plugin_type

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.plugin_type = plugin_type


# =============================================================================
# Build Errors
# =============================================================================
# Raised by BuilderStrategy implementations. Every BuildError carries the
# output captured from the toolchain so the failure reason survives in the
# build record even when the log sink is summarised.
# =============================================================================
class BuildError(PluginBuilderError):
    """Raised when a toolchain build stage fails.

    Attributes:
        output: Captured stdout/stderr of the failing command (may be empty).
    """

    default_code = "BUILD_FAILED"

    def __init__(
        self,
        message: str,
        output: str = "",
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if output:
            enriched_details["output"] = output

        super().__init__(
            message=message,
            error_code=error_code or self.default_code,
            details=enriched_details,
        )

        self.output = output


class EntryPointNotFoundError(BuildError):
    """Raised when none of the candidate entry-point source files exist."""

    default_code = "ENTRY_POINT_NOT_FOUND"


class DependencyInstallError(BuildError):
    """Raised when the package manager fails to install dependencies."""

    default_code = "DEPENDENCY_INSTALL_FAILED"


class CompileError(BuildError):
    """Raised when the compiler exits non-zero, times out, or is missing."""

    default_code = "COMPILE_FAILED"


class ArtifactMissingError(BuildError):
    """Raised when a compile exits zero but the expected artifact is absent."""

    default_code = "ARTIFACT_MISSING"


class UnsupportedToolchainError(BuildError):
    """Raised by a builder whose toolchain is recognised but not implemented."""

    default_code = "TOOLCHAIN_NOT_SUPPORTED"


# =============================================================================
# Finalize / Upload Errors
# =============================================================================
class ChecksumError(PluginBuilderError):
    """Raised when the artifact cannot be hashed or its checksum does not match."""

    def __init__(
        self,
        message: str,
        error_code: str = "CHECKSUM_FAILED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


class UploadError(PluginBuilderError):
    """Raised when the artifact cannot be written to blob storage.

    Attributes:
        key: The storage key the upload targeted.
    """

    def __init__(
        self,
        message: str,
        key: str,
        error_code: str = "UPLOAD_FAILED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["key"] = key

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.key = key


# =============================================================================
# State Transaction Error
# =============================================================================
# Raised by the StateManager when a build transition is illegal or when the
# promotion transaction (supersede latest → insert version → update plugin →
# mark build success) cannot be committed. A failed transaction leaves no
# partial version/plugin mutation behind.
# =============================================================================
class StateTransactionError(PluginBuilderError):
    """Raised when build, version or plugin state cannot be updated.

    Common Causes:
        - Build id unknown, or already past the expected state
        - Plugin not registered before a build was accepted
        - Database transaction rolled back (constraint, connection loss)

    Example:
        >>> raise StateTransactionError(
        ...     message="Build bld-123 is building, expected pending",
        ...     error_code="INVALID_BUILD_TRANSITION",
        ...     details={"build_id": "bld-123", "status": "building"},
        ... )
    """

    def __init__(
        self,
        message: str,
        error_code: str = "STATE_TRANSACTION_FAILED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)
