"""
plugin_builder.pipeline.builders - Builder Strategy Registry
==============================================================

Maps each buildable PluginType to its BuilderStrategy class:
    - TYPESCRIPT → TypeScriptBuilder
    - RUST       → RustBuilder (fails: not yet supported)

UNKNOWN (and any unregistered type) is rejected by ``get_builder`` with
UnsupportedPluginTypeError, before any subprocess is spawned.

Usage:
    >>> builder = get_builder(PluginType.TYPESCRIPT, config.toolchain)
    >>> artifact_path = await builder.build(plugin_dir, log, manifest)
"""

from __future__ import annotations

from typing import Optional

from plugin_builder.core.config import ToolchainConfig
from plugin_builder.core.enums import PluginType
from plugin_builder.core.exceptions import UnsupportedPluginTypeError
from plugin_builder.pipeline.builders.base import BuilderStrategy, run_command
from plugin_builder.pipeline.builders.rust import RustBuilder
from plugin_builder.pipeline.builders.typescript import TypeScriptBuilder, resolve_entry_point


BUILDER_REGISTRY: dict[PluginType, type[BuilderStrategy]] = {
    PluginType.TYPESCRIPT: TypeScriptBuilder,
    PluginType.RUST: RustBuilder,
}


def register_builder(builder_cls: type[BuilderStrategy]) -> None:
    """Register (or replace) the strategy for ``builder_cls.plugin_type``."""
    if builder_cls.plugin_type == PluginType.UNKNOWN:
        raise ValueError("Cannot register a builder for PluginType.UNKNOWN")
    BUILDER_REGISTRY[builder_cls.plugin_type] = builder_cls


def get_builder(
    plugin_type: PluginType,
    config: Optional[ToolchainConfig] = None,
) -> BuilderStrategy:
    """Instantiate the strategy for ``plugin_type``.

    Raises:
        UnsupportedPluginTypeError: For UNKNOWN or unregistered types.
    """
    builder_cls = BUILDER_REGISTRY.get(plugin_type)
    if builder_cls is None:
        raise UnsupportedPluginTypeError(
            message=f"Unsupported plugin type: {plugin_type.value}",
            plugin_type=plugin_type.value,
        )
    return builder_cls(config)


__all__ = [
    "BUILDER_REGISTRY",
    "BuilderStrategy",
    "RustBuilder",
    "TypeScriptBuilder",
    "get_builder",
    "register_builder",
    "resolve_entry_point",
    "run_command",
]
