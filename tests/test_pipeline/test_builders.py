"""
Tests for plugin_builder.pipeline.builders
============================================

What's Being Tested:
    - run_command:         output capture, non-zero exit, timeout, missing exe,
                           process-group kill on timeout and cancellation
    - resolve_entry_point: manifest override, build script, default order
    - TypeScriptBuilder:   install (frozen, then retry), compile, artifact
    - RustBuilder:         explicit unsupported failure
    - Registry:            UNKNOWN rejected, custom strategies registered

The toolchain is the pair of fake /bin/sh scripts from conftest.py; each
invocation is recorded so tests can assert exactly which commands ran.
"""

import asyncio
import json
import time
from pathlib import Path
from typing import Optional

import pytest

from plugin_builder.core.config import ToolchainConfig
from plugin_builder.core.enums import PluginType
from plugin_builder.core.exceptions import (
    ArtifactMissingError,
    BuildError,
    CompileError,
    DependencyInstallError,
    EntryPointNotFoundError,
    UnsupportedPluginTypeError,
    UnsupportedToolchainError,
)
from plugin_builder.core.models import PluginManifest
from plugin_builder.pipeline import builders
from plugin_builder.pipeline.build_log import BuildLog
from plugin_builder.pipeline.builders import (
    BuilderStrategy,
    RustBuilder,
    TypeScriptBuilder,
    get_builder,
    register_builder,
    resolve_entry_point,
    run_command,
)
from plugin_builder.pipeline.builders.base import KILL_DRAIN_SECONDS


def _script(path: Path, body: str) -> str:
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return str(path)


def _ts_plugin(plugin_dir: Path, *, package_json: bool = True, entry: str = "src/index.ts") -> Path:
    plugin_dir.mkdir(parents=True, exist_ok=True)
    (plugin_dir / "manifest.json").write_text(json.dumps({"name": "Clip", "version": "1.0.0"}))
    if package_json:
        (plugin_dir / "package.json").write_text(json.dumps({"name": "clip"}))
    (plugin_dir / entry).parent.mkdir(parents=True, exist_ok=True)
    (plugin_dir / entry).write_text("export function run() {}\n")
    return plugin_dir


def _manifest(entry: Optional[str] = None) -> PluginManifest:
    return PluginManifest(name="Clip", version="1.0.0", entry=entry)


# =============================================================================
# Tests: run_command
# =============================================================================
class TestRunCommand:
    async def test_captures_stdout_and_stderr(self, tmp_path: Path) -> None:
        tool = _script(tmp_path / "tool", 'echo "hello"\necho "careful" >&2\n')
        log = BuildLog("bld-1")

        stdout = await run_command([tool], cwd=tmp_path, timeout=10, log=log)

        assert stdout.strip() == "hello"
        assert log.lines == ["hello", "[stderr] careful"]

    async def test_non_zero_exit_raises_chosen_error(self, tmp_path: Path) -> None:
        tool = _script(tmp_path / "tool", 'echo "bad input" >&2\nexit 3\n')

        with pytest.raises(CompileError) as exc_info:
            await run_command(
                [tool, "x"], cwd=tmp_path, timeout=10, log=BuildLog("b"), error_cls=CompileError
            )

        assert "exited with code 3" in exc_info.value.message
        assert "bad input" in exc_info.value.output
        assert exc_info.value.details["returncode"] == 3

    async def test_timeout_kills_and_raises(self, tmp_path: Path) -> None:
        tool = _script(tmp_path / "slow", "exec sleep 30\n")

        with pytest.raises(BuildError) as exc_info:
            await run_command([tool], cwd=tmp_path, timeout=0.5, log=BuildLog("b"))

        assert "timed out after 0.5s" in exc_info.value.message

    async def test_timeout_with_child_holding_pipes_returns_promptly(
        self, tmp_path: Path
    ) -> None:
        # The shell forks sleep rather than exec'ing it, so the pipes are
        # shared with a grandchild of the event loop.
        tool = _script(tmp_path / "wrapper", "echo starting\nsleep 30\necho done\n")

        started = time.monotonic()
        with pytest.raises(CompileError) as exc_info:
            await run_command(
                [tool], cwd=tmp_path, timeout=0.5, log=BuildLog("b"), error_cls=CompileError
            )

        assert time.monotonic() - started < KILL_DRAIN_SECONDS
        assert "timed out after 0.5s" in exc_info.value.message
        assert "starting" in exc_info.value.output
        assert "done" not in exc_info.value.output

    async def test_timeout_kills_background_helpers(self, tmp_path: Path) -> None:
        marker = tmp_path / "helper-ran"
        tool = _script(
            tmp_path / "spawner",
            f"(sleep 1; touch {marker}) &\nsleep 30\n",
        )

        with pytest.raises(BuildError):
            await run_command([tool], cwd=tmp_path, timeout=0.3, log=BuildLog("b"))

        await asyncio.sleep(1.5)
        assert not marker.exists()

    async def test_cancellation_kills_process_group(self, tmp_path: Path) -> None:
        marker = tmp_path / "helper-ran"
        tool = _script(tmp_path / "spawner", f"(sleep 1; touch {marker}) &\nsleep 30\n")
        task = asyncio.create_task(
            run_command([tool], cwd=tmp_path, timeout=60, log=BuildLog("b"))
        )
        await asyncio.sleep(0.3)

        started = time.monotonic()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert time.monotonic() - started < KILL_DRAIN_SECONDS
        await asyncio.sleep(1.5)
        assert not marker.exists()

    async def test_missing_executable_raises(self, tmp_path: Path) -> None:
        with pytest.raises(DependencyInstallError) as exc_info:
            await run_command(
                [str(tmp_path / "does-not-exist"), "install"],
                cwd=tmp_path,
                timeout=10,
                log=BuildLog("b"),
                error_cls=DependencyInstallError,
            )

        assert exc_info.value.message.startswith("Could not start")


# =============================================================================
# Tests: Entry Point Resolution
# =============================================================================
class TestResolveEntryPoint:
    def test_default_src_index(self, tmp_path: Path) -> None:
        _ts_plugin(tmp_path)
        assert resolve_entry_point(tmp_path) == "src/index.ts"

    @pytest.mark.parametrize("entry", ["index.ts", "src/main.ts", "main.ts"])
    def test_other_defaults(self, tmp_path: Path, entry: str) -> None:
        _ts_plugin(tmp_path, entry=entry)
        assert resolve_entry_point(tmp_path) == entry

    def test_default_order(self, tmp_path: Path) -> None:
        _ts_plugin(tmp_path, entry="main.ts")
        (tmp_path / "index.ts").write_text("")
        assert resolve_entry_point(tmp_path) == "index.ts"

    def test_manifest_entry_wins(self, tmp_path: Path) -> None:
        _ts_plugin(tmp_path)
        (tmp_path / "lib").mkdir()
        (tmp_path / "lib" / "plugin.ts").write_text("")

        assert resolve_entry_point(tmp_path, _manifest("lib/plugin.ts")) == "lib/plugin.ts"

    def test_build_script_entry(self, tmp_path: Path) -> None:
        _ts_plugin(tmp_path, entry="lib/entry.ts")
        (tmp_path / "package.json").write_text(
            json.dumps({"scripts": {"build": "extism-js lib/entry.ts -i plugin.d.ts -o plugin.wasm"}})
        )
        assert resolve_entry_point(tmp_path) == "lib/entry.ts"

    def test_nothing_found_lists_tried(self, tmp_path: Path) -> None:
        (tmp_path / "manifest.json").write_text("{}")

        with pytest.raises(EntryPointNotFoundError) as exc_info:
            resolve_entry_point(tmp_path)

        assert exc_info.value.message == (
            "Entry point not found. Tried: src/index.ts, index.ts, src/main.ts, main.ts"
        )


# =============================================================================
# Tests: TypeScriptBuilder
# =============================================================================
class TestTypeScriptBuilder:
    async def test_build_retries_install_without_frozen_lockfile(
        self, tmp_path: Path, toolchain: ToolchainConfig, tool_calls, fake_wasm: bytes
    ) -> None:
        plugin_dir = _ts_plugin(tmp_path / "plugin")
        log = BuildLog("bld-1")

        artifact = await TypeScriptBuilder(toolchain).build(plugin_dir, log, _manifest())

        assert artifact == plugin_dir / "plugin.wasm"
        assert artifact.read_bytes() == fake_wasm
        assert tool_calls() == [
            "bun install --frozen-lockfile",
            "bun install",
            "extism-js src/index.ts -o plugin.wasm",
        ]
        lines = log.lines
        assert lines[0] == "Building TypeScript plugin..."
        assert "Entry point: src/index.ts" in lines
        assert "Retrying without frozen lockfile..." in lines
        assert "Compiling to WASM..." in lines
        assert lines[-1] == "Build successful!"

    async def test_frozen_install_success_needs_no_retry(
        self, tmp_path: Path, toolchain: ToolchainConfig, tool_calls
    ) -> None:
        plugin_dir = _ts_plugin(tmp_path / "plugin")
        (plugin_dir / "bun.lockb").write_bytes(b"lock")

        await TypeScriptBuilder(toolchain).build(plugin_dir, BuildLog("b"))

        assert tool_calls()[:2] == ["bun install --frozen-lockfile", "extism-js src/index.ts -o plugin.wasm"]

    async def test_no_package_json_skips_install(
        self, tmp_path: Path, toolchain: ToolchainConfig, tool_calls
    ) -> None:
        plugin_dir = _ts_plugin(tmp_path / "plugin", package_json=False, entry="index.ts")

        await TypeScriptBuilder(toolchain).build(plugin_dir, BuildLog("b"))

        assert tool_calls() == ["extism-js index.ts -o plugin.wasm"]

    async def test_missing_entry_point_runs_nothing(
        self, tmp_path: Path, toolchain: ToolchainConfig, tool_calls
    ) -> None:
        plugin_dir = tmp_path / "plugin"
        plugin_dir.mkdir()
        (plugin_dir / "package.json").write_text("{}")

        with pytest.raises(EntryPointNotFoundError):
            await TypeScriptBuilder(toolchain).build(plugin_dir, BuildLog("b"))

        assert tool_calls() == []

    async def test_install_failing_twice_raises(self, tmp_path: Path, toolchain: ToolchainConfig) -> None:
        broken_pm = _script(tmp_path / "broken-bun", 'echo "registry unreachable" >&2\nexit 1\n')
        plugin_dir = _ts_plugin(tmp_path / "plugin")
        log = BuildLog("b")

        with pytest.raises(DependencyInstallError) as exc_info:
            await TypeScriptBuilder(
                toolchain.model_copy(update={"package_manager": broken_pm})
            ).build(plugin_dir, log)

        assert "registry unreachable" in exc_info.value.output
        assert "Retrying without frozen lockfile..." in log.lines

    async def test_compile_failure_raises_compile_error(
        self, tmp_path: Path, toolchain: ToolchainConfig
    ) -> None:
        broken_compiler = _script(tmp_path / "broken-js", 'echo "syntax error" >&2\nexit 1\n')
        plugin_dir = _ts_plugin(tmp_path / "plugin", package_json=False)

        with pytest.raises(CompileError) as exc_info:
            await TypeScriptBuilder(
                toolchain.model_copy(update={"compiler": broken_compiler})
            ).build(plugin_dir, BuildLog("b"))

        assert "syntax error" in exc_info.value.output

    async def test_zero_exit_without_artifact_raises(
        self, tmp_path: Path, toolchain: ToolchainConfig
    ) -> None:
        lazy_compiler = _script(tmp_path / "lazy-js", 'echo "done"\n')
        plugin_dir = _ts_plugin(tmp_path / "plugin", package_json=False)

        with pytest.raises(ArtifactMissingError) as exc_info:
            await TypeScriptBuilder(
                toolchain.model_copy(update={"compiler": lazy_compiler})
            ).build(plugin_dir, BuildLog("b"))

        assert exc_info.value.message == "Build completed but plugin.wasm not found"


# =============================================================================
# Tests: RustBuilder
# =============================================================================
class TestRustBuilder:
    async def test_always_unsupported(self, tmp_path: Path) -> None:
        (tmp_path / "Cargo.toml").write_text("[package]\n")
        log = BuildLog("b")

        with pytest.raises(UnsupportedToolchainError) as exc_info:
            await RustBuilder().build(tmp_path, log)

        assert exc_info.value.message.startswith("Rust plugin builds not yet supported")
        assert log.lines == ["Rust plugin builds not yet supported"]


# =============================================================================
# Tests: Registry
# =============================================================================
class TestBuilderRegistry:
    def test_typescript_builder_uses_config(self, toolchain: ToolchainConfig) -> None:
        builder = get_builder(PluginType.TYPESCRIPT, toolchain)
        assert isinstance(builder, TypeScriptBuilder)
        assert builder.config is toolchain

    def test_rust_builder_registered(self) -> None:
        assert isinstance(get_builder(PluginType.RUST), RustBuilder)

    def test_unknown_type_rejected(self) -> None:
        with pytest.raises(UnsupportedPluginTypeError) as exc_info:
            get_builder(PluginType.UNKNOWN)
        assert exc_info.value.message == "Unsupported plugin type: unknown"

    def test_register_custom_builder(self, monkeypatch) -> None:
        monkeypatch.setattr(builders, "BUILDER_REGISTRY", dict(builders.BUILDER_REGISTRY))

        class CargoComponentBuilder(BuilderStrategy):
            plugin_type = PluginType.RUST

            async def build(self, plugin_dir, log, manifest=None) -> Path:
                return plugin_dir / "plugin.wasm"

        register_builder(CargoComponentBuilder)

        assert isinstance(get_builder(PluginType.RUST), CargoComponentBuilder)

    def test_cannot_register_for_unknown(self) -> None:
        class Nothing(BuilderStrategy):
            plugin_type = PluginType.UNKNOWN

            async def build(self, plugin_dir, log, manifest=None) -> Path:
                return plugin_dir

        with pytest.raises(ValueError):
            register_builder(Nothing)
