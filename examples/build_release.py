"""
Build Release Example - Publish One Plugin Release
====================================================

This example builds a single plugin release end to end: it downloads the
release tarball, compiles the plugin to WebAssembly with the configured
toolchain (bun + extism-js by default), uploads the artifact and promotes
the new version.

Configuration comes from plugin-builder.yaml (if present) and
PLUGIN_BUILDER_* environment variables, e.g.:

    PLUGIN_BUILDER_STATE_BACKEND=sql
    PLUGIN_BUILDER_DATABASE__URL=sqlite:///builds.db
    PLUGIN_BUILDER_STORAGE__BACKEND=local
    PLUGIN_BUILDER_STORAGE__LOCAL_ROOT=./artifacts

Usage:
    python examples/build_release.py clipboard-history v1.4.0 \\
        https://api.github.com/repos/acme/clipboard-history/tarball/v1.4.0
    python examples/build_release.py clipboard-history v2.0.0-rc.1 <url> \\
        --prerelease --sub-path plugins/clipboard
"""

from __future__ import annotations

import argparse
import asyncio
import os

from plugin_builder.core.config import load_config
from plugin_builder.core.models import BuildRequest, Plugin
from plugin_builder.facade import PluginBuildService


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build and publish one plugin release")
    parser.add_argument("plugin_id")
    parser.add_argument("tag", help="Release tag, e.g. v1.4.0")
    parser.add_argument("archive_url", help="URL of the release source tarball")
    parser.add_argument("--sub-path", default=None, help="Plugin directory in a monorepo")
    parser.add_argument("--prerelease", action="store_true")
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    return parser.parse_args()


async def main() -> None:
    """Run one build and print the outcome and its log."""
    args = _parse_args()
    config = load_config(args.config)

    request = BuildRequest.from_release(
        args.plugin_id,
        args.tag,
        args.archive_url,
        is_prerelease=args.prerelease,
        plugin_sub_path=args.sub_path,
        # Private repositories need a token for the tarball download
        auth_token=os.environ.get("GITHUB_TOKEN"),
    )

    async with PluginBuildService(config) as service:
        if await service.state_manager.get_plugin(args.plugin_id) is None:
            await service.register_plugin(Plugin(plugin_id=args.plugin_id))

        result = await service.submit_build(request)

        print(f"Build {result.build_id}")
        print("-" * 40)
        for line in result.logs:
            print(line)
        print("-" * 40)
        if result.success:
            print(f"Version  : {request.target_version} ({result.version_id})")
            print(f"Artifact : {result.download_url}")
            print(f"SHA-256  : {result.checksum}")
        else:
            print(f"FAILED [{result.error_code}]: {result.error}")


if __name__ == "__main__":
    asyncio.run(main())
