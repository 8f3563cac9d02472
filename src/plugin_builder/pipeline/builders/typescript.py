"""
plugin_builder.pipeline.builders.typescript - TypeScript → WASM Builder
=========================================================================

Builds TypeScript plugins with the extism-js compiler.

Build Steps:
    1. Resolve the entry point:
         a. manifest.json "entry"
         b. an `extism-js <file>.ts` reference in package.json scripts.build
         c. src/index.ts, index.ts, src/main.ts, main.ts (first existing)
       Nothing found → EntryPointNotFoundError.
    2. If package.json exists, install dependencies:
         `<pm> install --frozen-lockfile`, and on failure one retry of
         `<pm> install` (lockfile drift is common and recoverable).
    3. Compile: `<compiler> <entry> -o plugin.wasm` in the plugin root.
    4. A zero-exit compile that left no artifact → ArtifactMissingError.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Optional

from plugin_builder.core.enums import PluginType
from plugin_builder.core.exceptions import (
    ArtifactMissingError,
    CompileError,
    DependencyInstallError,
    EntryPointNotFoundError,
)
from plugin_builder.core.models import PluginManifest
from plugin_builder.pipeline.build_log import BuildLog
from plugin_builder.pipeline.builders.base import BuilderStrategy, run_command


DEFAULT_ENTRY_POINTS: tuple[str, ...] = ("src/index.ts", "index.ts", "src/main.ts", "main.ts")

_BUILD_SCRIPT_ENTRY_RE = re.compile(r"extism-js\s+(\S+\.ts)")


def _build_script_entry(plugin_dir: Path) -> Optional[str]:
    """Entry point named in package.json's build script, if any."""
    package_json = plugin_dir / "package.json"
    if not package_json.is_file():
        return None
    try:
        data = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(data, dict):
        return None

    scripts = data.get("scripts")
    build_script = scripts.get("build") if isinstance(scripts, dict) else None
    if not isinstance(build_script, str):
        return None

    match = _BUILD_SCRIPT_ENTRY_RE.search(build_script)
    return match.group(1) if match else None


def resolve_entry_point(
    plugin_dir: Path,
    manifest: Optional[PluginManifest] = None,
) -> str:
    """Pick the entry point source file, relative to ``plugin_dir``.

    Raises:
        EntryPointNotFoundError: If no candidate exists, listing all tried.
    """
    candidates: list[str] = []
    if manifest is not None and manifest.entry:
        candidates.append(manifest.entry)
    script_entry = _build_script_entry(plugin_dir)
    if script_entry:
        candidates.append(script_entry)
    candidates.extend(entry for entry in DEFAULT_ENTRY_POINTS if entry not in candidates)

    root = plugin_dir.resolve()
    for entry in candidates:
        path = (plugin_dir / entry).resolve()
        if path.is_relative_to(root) and path.is_file():
            return entry

    raise EntryPointNotFoundError(
        message=f"Entry point not found. Tried: {', '.join(candidates)}",
        details={"tried": candidates},
    )


class TypeScriptBuilder(BuilderStrategy):
    """Compiles a TypeScript plugin to WebAssembly with extism-js."""

    plugin_type = PluginType.TYPESCRIPT

    async def build(
        self,
        plugin_dir: Path,
        log: BuildLog,
        manifest: Optional[PluginManifest] = None,
    ) -> Path:
        log.info("Building TypeScript plugin...")

        entry_point = resolve_entry_point(plugin_dir, manifest)
        log.info(f"Entry point: {entry_point}")

        if (plugin_dir / "package.json").is_file():
            await self._install_dependencies(plugin_dir, log)

        output_path = plugin_dir / self._config.artifact_name

        log.info("Compiling to WASM...")
        await run_command(
            [self._config.compiler, entry_point, "-o", self._config.artifact_name],
            cwd=plugin_dir,
            timeout=self._config.compile_timeout_seconds,
            log=log,
            error_cls=CompileError,
        )

        if not output_path.is_file():
            raise ArtifactMissingError(
                message=f"Build completed but {self._config.artifact_name} not found",
                details={"expected": str(output_path)},
            )

        log.info("Build successful!")
        self._logger.info("typescript_build_complete", entry_point=entry_point)
        return output_path

    async def _install_dependencies(self, plugin_dir: Path, log: BuildLog) -> None:
        pm = self._config.package_manager
        timeout = self._config.install_timeout_seconds

        log.info("Installing dependencies...")
        try:
            await run_command(
                [pm, "install", "--frozen-lockfile"],
                cwd=plugin_dir,
                timeout=timeout,
                log=log,
                error_cls=DependencyInstallError,
            )
        except DependencyInstallError as e:
            self._logger.info("frozen_install_failed", error=e.message)
            log.info("Retrying without frozen lockfile...")
            await run_command(
                [pm, "install"],
                cwd=plugin_dir,
                timeout=timeout,
                log=log,
                error_cls=DependencyInstallError,
            )
