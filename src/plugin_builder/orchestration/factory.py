"""
plugin_builder.orchestration.factory - State Manager Factory
==============================================================

Maps ``BuilderConfig.state_backend`` to a concrete StateManager.

Usage:
    >>> from plugin_builder.orchestration import create_state_manager
    >>> sm = create_state_manager(BuilderConfig(state_backend="sql"))
    >>> type(sm)  # SqlStateManager
"""

from __future__ import annotations

from plugin_builder.core.config import BuilderConfig
from plugin_builder.core.exceptions import ConfigurationError
from plugin_builder.orchestration.state_manager import InMemoryStateManager, StateManager


def create_state_manager(config: BuilderConfig) -> StateManager:
    """Create the state manager selected by configuration.

        - "memory" → InMemoryStateManager (state lost on restart)
        - "sql"    → SqlStateManager on config.database.url

    Raises:
        ConfigurationError: If the backend name is not recognized.
    """
    backend = config.state_backend.lower()

    if backend == "memory":
        return InMemoryStateManager()

    if backend == "sql":
        from plugin_builder.orchestration.sql_state_manager import SqlStateManager
        return SqlStateManager(config.database)

    raise ConfigurationError(
        message=f"Unknown state backend: '{backend}'. Available: 'memory', 'sql'.",
        error_code="UNKNOWN_STATE_BACKEND",
    )
