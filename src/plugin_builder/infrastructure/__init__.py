"""
plugin_builder.infrastructure - Infrastructure Layer
======================================================

Durable storage for built artifacts:

    - ArtifactStorage:          Abstract upload interface
    - InMemoryArtifactStorage:  Dict-based, for development/testing
    - LocalArtifactStorage:     Files under a local directory
    - HttpArtifactStorage:      PUT to a blob-store HTTP endpoint
"""

from plugin_builder.infrastructure.artifact_storage import (
    ArtifactStorage,
    HttpArtifactStorage,
    InMemoryArtifactStorage,
    LocalArtifactStorage,
    create_artifact_storage,
    storage_key,
)

__all__ = [
    "ArtifactStorage",
    "HttpArtifactStorage",
    "InMemoryArtifactStorage",
    "LocalArtifactStorage",
    "create_artifact_storage",
    "storage_key",
]
