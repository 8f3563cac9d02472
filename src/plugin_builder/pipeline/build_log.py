"""
plugin_builder.pipeline.build_log - Per-Build Log Sink
========================================================

A BuildLog collects the human-readable lines of one pipeline run. One
instance is created per run and passed by reference into each stage; the
orchestrator flushes ``lines`` into BuildRecord.logs exactly once, when the
record reaches SUCCESS or FAILED.

Every appended line is mirrored to structlog at debug level with the build
id bound, so operators can follow a run without reading the record.

Usage:
    >>> log = BuildLog("bld-123")
    >>> log.info("Downloading source from: https://...")
    >>> log.output(stdout, stderr)
    >>> record_logs = log.lines
"""

from __future__ import annotations

import structlog


logger = structlog.get_logger()


class BuildLog:
    """Ordered, append-only collection of build log lines.

    Attributes:
        build_id: The build these lines belong to.
    """

    def __init__(self, build_id: str) -> None:
        self.build_id = build_id
        self._lines: list[str] = []
        self._logger = logger.bind(component="build_log", build_id=build_id)

    @property
    def lines(self) -> list[str]:
        """A copy of the accumulated lines, oldest first."""
        return list(self._lines)

    def info(self, line: str) -> None:
        """Append a progress line."""
        self._lines.append(line)
        self._logger.debug("build_log_line", line=line)

    def warning(self, line: str) -> None:
        """Append a line flagged as a warning."""
        self.info(f"WARNING: {line}")

    def error(self, line: str) -> None:
        """Append a line flagged as an error."""
        self.info(f"ERROR: {line}")

    def output(self, stdout: str, stderr: str = "") -> None:
        """Append captured subprocess output; empty streams are skipped."""
        stdout = stdout.strip()
        stderr = stderr.strip()
        if stdout:
            self.info(stdout)
        if stderr:
            self.info(f"[stderr] {stderr}")

    def text(self) -> str:
        """All lines joined with newlines."""
        return "\n".join(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def __repr__(self) -> str:
        return f"BuildLog(build_id={self.build_id!r}, lines={len(self._lines)})"
