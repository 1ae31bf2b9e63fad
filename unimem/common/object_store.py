"""
Object Store

Narrow repository interface over canonical objects and their chunks.
Callers never see query syntax: they get objects by id, list by
platform/type, search chunks by vector, and merge match results back
into an object's relations.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from .schemas import CanonicalObject, Chunk, ChunkResult

logger = logging.getLogger("unimem.common.object_store")

MATCH_CONFIDENCE_KEY = "match_confidence"


class StoreError(Exception):
    """Raised when the underlying store fails"""


class ObjectNotFoundError(StoreError):
    """Raised when a write targets an unknown object id"""

    def __init__(self, object_id: str):
        super().__init__(f"Object not found: {object_id}")
        self.object_id = object_id


def merge_target_ids(existing: Any, target_id: str) -> List[str]:
    """Union a target id into a relation value (str, list or missing)"""
    if existing is None:
        targets = []
    elif isinstance(existing, str):
        targets = [existing]
    else:
        targets = [str(t) for t in existing]

    if target_id not in targets:
        targets.append(target_id)
    return targets


class ObjectStore(ABC):
    """
    Abstract base class for object/chunk stores.

    Each store must implement:
    - get_object / get_objects: read by id
    - list_objects: filtered listing
    - search_chunks: top-k vector search with a similarity floor
    - get_chunk_embeddings: chunk vectors per object
    - merge_relation: idempotent relation write-back
    """

    @abstractmethod
    async def get_object(self, object_id: str) -> Optional[CanonicalObject]:
        """Fetch one object, or None if absent"""

    async def get_objects(self, object_ids: Iterable[str]) -> List[CanonicalObject]:
        """
        Fetch many objects. Missing ids are omitted; input order is kept.

        Override in subclass for a single round trip.
        """
        objects = []
        for object_id in object_ids:
            obj = await self.get_object(object_id)
            if obj is not None:
                objects.append(obj)
        return objects

    @abstractmethod
    async def list_objects(
        self,
        platform: Optional[str] = None,
        object_type: Optional[str] = None,
        limit: int = 1000,
    ) -> List[CanonicalObject]:
        """List objects, optionally filtered by platform and object type"""

    @abstractmethod
    async def search_chunks(
        self,
        query_vector: List[float],
        threshold: float,
        limit: int,
    ) -> List[ChunkResult]:
        """Top-`limit` chunks with similarity >= threshold, best first"""

    @abstractmethod
    async def get_chunk_embeddings(
        self,
        object_ids: Iterable[str],
        per_object_limit: int = 5,
    ) -> Dict[str, List[List[float]]]:
        """Chunk vectors grouped by parent object id (objects without vectors omitted)"""

    @abstractmethod
    async def merge_relation(
        self,
        object_id: str,
        relation_name: str,
        target_id: str,
        confidence: Optional[float] = None,
    ) -> None:
        """
        Union `target_id` into relations[relation_name] and overwrite
        relations["match_confidence"] when a confidence is given.
        """

    async def close(self) -> None:
        """Release store resources"""

    async def __aenter__(self) -> "ObjectStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class InMemoryObjectStore(ObjectStore):
    """
    Object store held in process memory.

    Vector search is a brute-force cosine scan with numpy, which is
    enough for evaluation datasets and tests.
    """

    def __init__(
        self,
        objects: Optional[Iterable[CanonicalObject]] = None,
        chunks: Optional[Iterable[Chunk]] = None,
    ):
        self._objects: Dict[str, CanonicalObject] = {}
        self._chunks: Dict[str, Chunk] = {}
        for obj in objects or []:
            self.add_object(obj)
        for chunk in chunks or []:
            self.add_chunk(chunk)

    def add_object(self, obj: CanonicalObject) -> None:
        self._objects[obj.id] = obj.model_copy(deep=True)

    def add_chunk(self, chunk: Chunk) -> None:
        self._chunks[chunk.id] = chunk.model_copy(deep=True)

    @property
    def object_count(self) -> int:
        return len(self._objects)

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    async def get_object(self, object_id: str) -> Optional[CanonicalObject]:
        obj = self._objects.get(object_id)
        return obj.model_copy(deep=True) if obj else None

    async def list_objects(
        self,
        platform: Optional[str] = None,
        object_type: Optional[str] = None,
        limit: int = 1000,
    ) -> List[CanonicalObject]:
        results = []
        for obj in self._objects.values():
            if platform and obj.platform != platform:
                continue
            if object_type and obj.object_type != object_type:
                continue
            results.append(obj.model_copy(deep=True))
            if len(results) >= limit:
                break
        return results

    async def search_chunks(
        self,
        query_vector: List[float],
        threshold: float,
        limit: int,
    ) -> List[ChunkResult]:
        query = np.asarray(query_vector, dtype=float)
        candidates = [
            c for c in self._chunks.values()
            if c.embedding is not None and len(c.embedding) == len(query)
        ]
        if not candidates or limit <= 0:
            return []

        matrix = np.asarray([c.embedding for c in candidates], dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)

        ranked = sorted(
            zip(candidates, scores.tolist()),
            key=lambda pair: pair[1],
            reverse=True,
        )
        return [
            ChunkResult(
                id=chunk.id,
                parent_object_id=chunk.parent_object_id,
                content=chunk.content,
                method=chunk.method,
                metadata=dict(chunk.metadata),
                similarity=score,
            )
            for chunk, score in ranked
            if score >= threshold
        ][:limit]

    async def get_chunk_embeddings(
        self,
        object_ids: Iterable[str],
        per_object_limit: int = 5,
    ) -> Dict[str, List[List[float]]]:
        wanted = set(object_ids)
        grouped: Dict[str, List[Chunk]] = {}
        for chunk in self._chunks.values():
            if chunk.parent_object_id in wanted and chunk.embedding:
                grouped.setdefault(chunk.parent_object_id, []).append(chunk)

        return {
            object_id: [
                list(c.embedding)
                for c in sorted(chunks, key=lambda c: c.chunk_index)[:per_object_limit]
            ]
            for object_id, chunks in grouped.items()
        }

    async def merge_relation(
        self,
        object_id: str,
        relation_name: str,
        target_id: str,
        confidence: Optional[float] = None,
    ) -> None:
        obj = self._objects.get(object_id)
        if obj is None:
            raise ObjectNotFoundError(object_id)

        obj.relations[relation_name] = merge_target_ids(
            obj.relations.get(relation_name), target_id
        )
        if confidence is not None:
            obj.relations[MATCH_CONFIDENCE_KEY] = confidence
