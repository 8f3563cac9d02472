"""
plugin_builder.pipeline.builders.rust - Rust Builder
======================================================

Rust plugins are detected (Cargo.toml) but server-side builds are not
available. The builder fails explicitly instead of attempting a best-effort
cargo invocation; authors build locally and upload the WASM file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from plugin_builder.core.enums import PluginType
from plugin_builder.core.exceptions import UnsupportedToolchainError
from plugin_builder.core.models import PluginManifest
from plugin_builder.pipeline.build_log import BuildLog
from plugin_builder.pipeline.builders.base import BuilderStrategy


class RustBuilder(BuilderStrategy):
    """Placeholder strategy for Cargo projects; always fails."""

    plugin_type = PluginType.RUST

    async def build(
        self,
        plugin_dir: Path,
        log: BuildLog,
        manifest: Optional[PluginManifest] = None,
    ) -> Path:
        log.info("Rust plugin builds not yet supported")
        raise UnsupportedToolchainError(
            message=(
                "Rust plugin builds not yet supported. "
                "Please build locally and upload the WASM file."
            ),
            details={"plugin_type": self.plugin_type.value},
        )
