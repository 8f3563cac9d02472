"""
plugin_builder.orchestration - Orchestration Layer
====================================================

Sequences the pipeline stages and owns the persisted state:

    - StateManager:          Build state machine + version promotion (ABC)
    - InMemoryStateManager:  Dict-based backend, asyncio.Lock
    - SqlStateManager:       SQLAlchemy backend, one transaction per unit
    - BuildPipeline:         Runs every stage for one build id
    - create_state_manager:  Backend selection from BuilderConfig
"""

from plugin_builder.orchestration.build_pipeline import BuildPipeline
from plugin_builder.orchestration.factory import create_state_manager
from plugin_builder.orchestration.sql_state_manager import SqlStateManager
from plugin_builder.orchestration.state_manager import InMemoryStateManager, StateManager

__all__ = [
    "BuildPipeline",
    "InMemoryStateManager",
    "SqlStateManager",
    "StateManager",
    "create_state_manager",
]
