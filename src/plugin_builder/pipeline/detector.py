"""
plugin_builder.pipeline.detector - Plugin Type Detection
==========================================================

Classifies a plugin root by the files present at its top level:

    package.json, or any *.ts file  → PluginType.TYPESCRIPT  (checked first)
    Cargo.toml                      → PluginType.RUST
    anything else                   → PluginType.UNKNOWN

UNKNOWN is a normal result, not an error. The builder registry rejects it
before any toolchain runs.
"""

from __future__ import annotations

from pathlib import Path

from plugin_builder.core.enums import PluginType


def detect_plugin_type(plugin_dir: Path) -> PluginType:
    """Detect the toolchain of the plugin rooted at ``plugin_dir``."""
    names = {entry.name for entry in Path(plugin_dir).iterdir() if entry.is_file()}

    if "package.json" in names or any(name.endswith(".ts") for name in names):
        return PluginType.TYPESCRIPT

    if "Cargo.toml" in names:
        return PluginType.RUST

    return PluginType.UNKNOWN
