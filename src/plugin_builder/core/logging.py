"""
plugin_builder.core.logging - Structured Logging Setup
========================================================

Operational logs go through structlog. Components obtain a module-level
logger with ``structlog.get_logger()`` and bind their own context
(``logger.bind(component="archive_fetcher")``); this module only sets the
process-wide level filter from BuilderConfig.log_level.

The per-build, user-visible log lines are a separate concern: see
plugin_builder.pipeline.build_log.BuildLog.
"""

from __future__ import annotations

import logging

import structlog


def configure_logging(level: str = "INFO") -> None:
    """Filter structlog output below ``level``.

    Args:
        level: Standard level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Unknown names fall back to INFO.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=False,
    )
