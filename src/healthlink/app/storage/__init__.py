"""Encrypted artifact storage."""

from .artifacts import (
    ArtifactStorage,
    ArtifactStore,
    InMemoryArtifactStorage,
    artifact_role,
)
from .s3 import S3ArtifactStorage

__all__ = [
    'ArtifactStorage',
    'ArtifactStore',
    'InMemoryArtifactStorage',
    'S3ArtifactStorage',
    'artifact_role',
]
