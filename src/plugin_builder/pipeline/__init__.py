"""
plugin_builder.pipeline - Build Pipeline Stages
=================================================

The stages a build runs through, in order:

    fetcher     → download the release tarball into the workspace
    extractor   → unpack it and find the single top-level directory
    locator     → find the plugin root (manifest.json) and load the manifest
    detector    → classify the toolchain (PluginType)
    builders    → install dependencies and compile to plugin.wasm
    finalizer   → SHA-256 checksum and byte size

Supporting pieces:
    build_log   → per-run log sink flushed into the build record
    workspace   → per-run scratch directory, always removed

The stages are sequenced by orchestration.build_pipeline.BuildPipeline.
"""

from plugin_builder.pipeline.build_log import BuildLog
from plugin_builder.pipeline.builders import BuilderStrategy, get_builder, register_builder
from plugin_builder.pipeline.detector import detect_plugin_type
from plugin_builder.pipeline.extractor import extract_archive
from plugin_builder.pipeline.fetcher import ArchiveFetcher
from plugin_builder.pipeline.finalizer import finalize_artifact, verify_checksum
from plugin_builder.pipeline.locator import load_manifest, locate_plugin_root
from plugin_builder.pipeline.workspace import Workspace, cleanup_workspace

__all__ = [
    "ArchiveFetcher",
    "BuildLog",
    "BuilderStrategy",
    "Workspace",
    "cleanup_workspace",
    "detect_plugin_type",
    "extract_archive",
    "finalize_artifact",
    "get_builder",
    "load_manifest",
    "locate_plugin_root",
    "register_builder",
    "verify_checksum",
]
