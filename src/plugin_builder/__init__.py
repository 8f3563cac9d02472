"""
plugin_builder - Plugin Build Pipeline
========================================

Turns a plugin's release tarball into a verified, versioned WebAssembly
artifact and records the outcome against plugin/version/build state:

    fetch → extract → locate → detect → build → checksum → upload → promote

Layers (top to bottom):
    1. Facade          - PluginBuildService
    2. Orchestration   - BuildPipeline, StateManager (memory / SQL)
    3. Pipeline stages - fetcher, extractor, locator, detector, builders, ...
    4. Infrastructure  - ArtifactStorage (memory / local / HTTP)

Quick Start:
    >>> from plugin_builder import PluginBuildService
    >>> async with PluginBuildService() as service:
    ...     result = await service.submit_build(request)
"""

# =============================================================================
# Package Version
# =============================================================================
# Single source of truth for the package version, read by pyproject.toml.
# =============================================================================
__version__ = "0.1.0"

# =============================================================================
# Package-Level Exports
# =============================================================================
# For specific components, import from submodules directly:
#   from plugin_builder.core.config import BuilderConfig
#   from plugin_builder.core.models import BuildRequest
# =============================================================================
from plugin_builder.facade import PluginBuildService

__all__ = ["PluginBuildService", "__version__"]
