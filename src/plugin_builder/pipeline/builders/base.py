"""
plugin_builder.pipeline.builders.base - BuilderStrategy Interface
===================================================================

A BuilderStrategy turns a plugin root into a single compiled artifact for
one PluginType. Adding a toolchain means adding one subclass and registering
it (see builders/__init__.py), never editing a dispatch chain.

Subclass Contract:
    class MyBuilder(BuilderStrategy):
        plugin_type = PluginType.SOMETHING

        async def build(self, plugin_dir, log, manifest=None) -> Path:
            ...   # install deps, compile, return artifact path

Subprocess Rules:
    Every external command goes through ``run_command``:
        - spawned with asyncio.create_subprocess_exec (no shell)
        - bounded by an explicit timeout, including the output drain
        - started in its own session; on timeout or cancellation the whole
          process group is killed, so helpers it spawned die with it
        - stdout and stderr appended to the build log
        - failures raised as the caller's BuildError subclass, carrying output
"""

from __future__ import annotations

import asyncio
import os
import signal
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence

import structlog

from plugin_builder.core.config import ToolchainConfig
from plugin_builder.core.enums import PluginType
from plugin_builder.core.exceptions import BuildError
from plugin_builder.core.models import PluginManifest
from plugin_builder.pipeline.build_log import BuildLog


logger = structlog.get_logger()


# Upper bound on collecting output after a kill. A descendant that left the
# process group can keep the pipes open; its output is then abandoned.
KILL_DRAIN_SECONDS = 5.0


def _decode(data: Optional[bytes]) -> str:
    return (data or b"").decode("utf-8", errors="replace")


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """SIGKILL the process and every descendant still in its group."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        process.kill()


async def _drain_after_kill(process: asyncio.subprocess.Process) -> tuple[bytes, bytes]:
    try:
        return await asyncio.wait_for(process.communicate(), timeout=KILL_DRAIN_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("command_output_abandoned", pid=process.pid)
        return b"", b""


async def run_command(
    args: Sequence[str],
    *,
    cwd: Path,
    timeout: float,
    log: BuildLog,
    error_cls: type[BuildError] = BuildError,
) -> str:
    """Run an external command with a hard timeout.

    Args:
        args: Program and arguments.
        cwd: Working directory.
        timeout: Seconds before the process is killed.
        log: Build log receiving stdout/stderr lines.
        error_cls: BuildError subclass raised on failure.

    Returns:
        The command's stdout.

    Raises:
        error_cls: If the executable is missing, the command times out, or
            it exits non-zero.
    """
    command = " ".join(args)
    logger.debug("command_started", command=command, cwd=str(cwd), timeout=timeout)

    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        raise error_cls(
            message=f"Could not start `{command}`: {e}",
            details={"command": command},
        ) from e

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        _kill_process_group(process)
        stdout_bytes, stderr_bytes = await _drain_after_kill(process)
        stdout, stderr = _decode(stdout_bytes), _decode(stderr_bytes)
        log.output(stdout, stderr)
        raise error_cls(
            message=f"`{command}` timed out after {timeout:g}s",
            output=(stdout + stderr).strip(),
            details={"command": command, "timeout": timeout},
        )
    except asyncio.CancelledError:
        _kill_process_group(process)
        await _drain_after_kill(process)
        raise

    stdout, stderr = _decode(stdout_bytes), _decode(stderr_bytes)
    log.output(stdout, stderr)

    if process.returncode != 0:
        raise error_cls(
            message=f"`{command}` exited with code {process.returncode}",
            output=(stdout + stderr).strip(),
            details={"command": command, "returncode": process.returncode},
        )

    return stdout


class BuilderStrategy(ABC):
    """Abstract base for per-toolchain builders.

    Attributes:
        plugin_type: The PluginType this strategy builds.
        _config: Toolchain commands, timeouts and artifact name.
    """

    plugin_type: PluginType

    def __init__(self, config: Optional[ToolchainConfig] = None) -> None:
        self._config = config or ToolchainConfig()
        self._logger = logger.bind(
            component="builder", plugin_type=self.plugin_type.value
        )

    @property
    def config(self) -> ToolchainConfig:
        return self._config

    @abstractmethod
    async def build(
        self,
        plugin_dir: Path,
        log: BuildLog,
        manifest: Optional[PluginManifest] = None,
    ) -> Path:
        """Build the plugin and return the path of the produced artifact.

        Args:
            plugin_dir: The plugin root (contains manifest.json).
            log: Shared build log sink.
            manifest: Parsed manifest, for manifest-declared overrides.

        Raises:
            BuildError: Or a subclass, with the captured toolchain output.
        """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(plugin_type={self.plugin_type.value!r})"
