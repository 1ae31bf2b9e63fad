"""
Retriever

Answers a natural-language query against the object store:
1. Embed the query
2. Vector search over chunks
3. Resolve parent objects
4. Infer relations among them

Variants add graph expansion, BFS traversal from one object and
recency reranking.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from ..common.config import RetrieverConfig, TemporalConfig
from ..common.object_store import ObjectStore
from ..common.schemas import CanonicalObject, ChunkResult, Relation
from ..graph.relation_inferrer import RelationInferrer, deduplicate_relations
from .temporal import TemporalProcessor

logger = logging.getLogger("unimem.retriever.retriever")


class RetrievalError(Exception):
    """Embedding or store failure during retrieval"""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage


@dataclass
class RetrievalStats:
    total_chunks: int = 0
    total_objects: int = 0
    total_relations: int = 0
    retrieval_time_ms: float = 0.0


@dataclass
class RetrievalResult:
    """Chunks, parent objects and relations for one query"""
    query: str
    chunks: List[ChunkResult] = field(default_factory=list)
    objects: List[CanonicalObject] = field(default_factory=list)
    relations: List[Relation] = field(default_factory=list)
    stats: RetrievalStats = field(default_factory=RetrievalStats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "chunks": [c.model_dump(mode="json") for c in self.chunks],
            "objects": [o.model_dump(mode="json") for o in self.objects],
            "relations": [r.model_dump(mode="json") for r in self.relations],
            "stats": {
                "total_chunks": self.stats.total_chunks,
                "total_objects": self.stats.total_objects,
                "total_relations": self.stats.total_relations,
                "retrieval_time_ms": self.stats.retrieval_time_ms,
            },
        }


@dataclass
class RelatedObjects:
    """Objects reached by traversal and the edges followed"""
    objects: List[CanonicalObject] = field(default_factory=list)
    relations: List[Relation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "objects": [o.model_dump(mode="json") for o in self.objects],
            "relations": [r.model_dump(mode="json") for r in self.relations],
        }


class Retriever:
    """
    Query-time retrieval over chunks and the relation graph.

    The store and embedding service are owned by the caller.
    """

    def __init__(
        self,
        store: ObjectStore,
        embedding_service,
        inferrer: Optional[RelationInferrer] = None,
        config: Optional[RetrieverConfig] = None,
        temporal_config: Optional[TemporalConfig] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize retriever.

        Args:
            store: Object/chunk store
            embedding_service: Anything with `async embed(text) -> list[float]`
            inferrer: Relation inferrer (default config if omitted)
            config: Retrieval settings
            temporal_config: Default settings for reranking
            now: Clock override for reranking
        """
        self._store = store
        self._embedding = embedding_service
        self._inferrer = inferrer or RelationInferrer()
        self.config = config or RetrieverConfig()
        self.temporal_config = temporal_config or TemporalConfig()
        self._now = now

    # =========================================================================
    # Basic retrieval
    # =========================================================================

    async def retrieve(self, query: str) -> RetrievalResult:
        start = time.perf_counter()

        try:
            query_vector = await self._embedding.embed(query)
        except Exception as e:
            raise RetrievalError("embed", str(e)) from e

        try:
            chunks = await self._store.search_chunks(
                query_vector,
                threshold=self.config.similarity_threshold,
                limit=self.config.chunk_limit,
            )
        except Exception as e:
            raise RetrievalError("search", str(e)) from e

        object_ids = list(dict.fromkeys(c.parent_object_id for c in chunks))
        objects = await self._fetch(object_ids)

        relations: List[Relation] = []
        if self.config.include_relations and objects:
            relations = self._inferrer.infer_all(objects)

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("Retrieved %d chunks, %d objects, %d relations in %.1fms",
                    len(chunks), len(objects), len(relations), elapsed_ms)

        return RetrievalResult(
            query=query,
            chunks=chunks,
            objects=objects,
            relations=relations,
            stats=RetrievalStats(
                total_chunks=len(chunks),
                total_objects=len(objects),
                total_relations=len(relations),
                retrieval_time_ms=round(elapsed_ms, 2),
            ),
        )

    async def _fetch(self, object_ids: List[str]) -> List[CanonicalObject]:
        if not object_ids:
            return []
        try:
            return await self._store.get_objects(object_ids)
        except Exception as e:
            raise RetrievalError("fetch", str(e)) from e

    # =========================================================================
    # Graph expansion
    # =========================================================================

    async def retrieve_with_expansion(self, query: str) -> RetrievalResult:
        """
        Retrieve, then pull in objects referenced by the relations.

        Returned relations only connect objects present in the result.
        """
        base = await self.retrieve(query)
        if not self.config.include_relations:
            return base

        present = {obj.id for obj in base.objects}
        referenced = []
        for rel in base.relations:
            for object_id in (rel.from_id, rel.to_id):
                if object_id not in present and object_id not in referenced:
                    referenced.append(object_id)

        related = await self._fetch(referenced)
        objects = base.objects + [obj for obj in related if obj.id not in present]
        object_ids = {obj.id for obj in objects}

        relations = [
            rel for rel in self._inferrer.infer_all(objects)
            if rel.from_id in object_ids and rel.to_id in object_ids
        ]

        logger.info("Expanded %d -> %d objects (%d referenced ids unresolved)",
                    len(base.objects), len(objects), len(referenced) - len(related))

        return replace(
            base,
            objects=objects,
            relations=relations,
            stats=replace(base.stats, total_objects=len(objects), total_relations=len(relations)),
        )

    async def get_related_objects(self, object_id: str, depth: Optional[int] = None) -> RelatedObjects:
        """
        Breadth-first traversal over explicit relations.

        Both edge directions are followed, so participants reach the
        threads they joined and threads reach their participants.
        Ids that do not resolve to objects are skipped.
        """
        max_depth = self.config.relation_depth if depth is None else depth
        visited: Set[str] = set()
        objects: List[CanonicalObject] = []
        relations: List[Relation] = []
        queue = deque([(object_id, 0)])

        while queue:
            current_id, current_depth = queue.popleft()
            if current_id in visited or current_depth > max_depth:
                continue
            visited.add(current_id)

            try:
                obj = await self._store.get_object(current_id)
            except Exception as e:
                raise RetrievalError("fetch", str(e)) from e
            if obj is None:
                continue
            objects.append(obj)

            if current_depth >= max_depth:
                continue

            for rel in self._inferrer.extract_explicit([obj]):
                relations.append(rel)
                neighbor = rel.to_id if rel.from_id == current_id else rel.from_id
                if neighbor not in visited:
                    queue.append((neighbor, current_depth + 1))

        return RelatedObjects(objects=objects, relations=deduplicate_relations(relations))

    # =========================================================================
    # Temporal reranking
    # =========================================================================

    async def retrieve_with_reranking(
        self,
        query: str,
        temporal_config: Optional[TemporalConfig] = None,
    ) -> RetrievalResult:
        """Retrieve, then boost recent objects' chunks and reorder objects to match"""
        base = await self.retrieve(query)
        if not base.chunks:
            return base

        processor = TemporalProcessor(temporal_config or self.temporal_config, now=self._now)
        chunks = processor.apply_recency_boost(base.chunks, base.objects)

        position: Dict[str, int] = {}
        for index, chunk in enumerate(chunks):
            position.setdefault(chunk.parent_object_id, index)
        objects = sorted(base.objects, key=lambda o: position.get(o.id, len(chunks)))

        return replace(base, chunks=chunks, objects=objects)
