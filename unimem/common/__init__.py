"""
Unimem Common Module

Shared infrastructure: configuration, schemas, embedding provider and
the repository interfaces over the object/chunk store.
"""

from .config import UnimemConfig, load_config
from .embedding_service import EmbeddingService, BatchEmbeddingResult
from .object_store import ObjectStore, InMemoryObjectStore, StoreError, ObjectNotFoundError
from .evaluation_store import (
    GroundTruthSource,
    InMemoryGroundTruthSource,
    MetricsSink,
    InMemoryMetricsSink,
)

__all__ = [
    "UnimemConfig",
    "load_config",
    "EmbeddingService",
    "BatchEmbeddingResult",
    "ObjectStore",
    "InMemoryObjectStore",
    "StoreError",
    "ObjectNotFoundError",
    "GroundTruthSource",
    "InMemoryGroundTruthSource",
    "MetricsSink",
    "InMemoryMetricsSink",
]
