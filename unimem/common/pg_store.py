"""
PostgreSQL Store

asyncpg + pgvector implementation of the repository interfaces:
- canonical_objects / chunks tables for ObjectStore
- ground_truth_relations for GroundTruthSource
- layer_metrics for MetricsSink

The pool is created once per process (see `create_pool`) and passed to
each store; `close()` on any store owning the pool releases it.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

import asyncpg
from pgvector.asyncpg import register_vector

from .config import StoreConfig
from .evaluation_store import GroundTruthSource, MetricsSink
from .object_store import MATCH_CONFIDENCE_KEY, ObjectNotFoundError, ObjectStore, StoreError
from .schemas import CanonicalObject, ChunkResult, GroundTruthRelation

logger = logging.getLogger("unimem.common.pg_store")

_OBJECT_COLUMNS = """
    id, platform, object_type, title, body, actors, timestamps,
    relations, properties, semantic_hash, visibility
"""


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Register jsonb and vector codecs on every pooled connection"""
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )
    await register_vector(conn)


async def create_pool(config: StoreConfig) -> asyncpg.Pool:
    """Create the asyncpg pool used by all Postgres stores"""
    return await asyncpg.create_pool(init=_init_connection, **config.to_asyncpg_kwargs())


def _row_to_object(row: asyncpg.Record) -> CanonicalObject:
    return CanonicalObject(
        id=row["id"],
        platform=row["platform"],
        object_type=row["object_type"],
        title=row["title"],
        body=row["body"],
        actors=row["actors"] or {},
        timestamps=row["timestamps"],
        relations=row["relations"] or {},
        properties=row["properties"] or {},
        content_hash=row["semantic_hash"],
        visibility=row["visibility"] or "team",
    )


class PostgresObjectStore(ObjectStore):
    """
    ObjectStore over the canonical_objects and chunks tables.

    Vector search uses the pgvector cosine distance operator (<=>),
    similarity = 1 - distance.
    """

    def __init__(self, pool: asyncpg.Pool, owns_pool: bool = False):
        """
        Args:
            pool: asyncpg pool created by `create_pool`
            owns_pool: close the pool when this store is closed
        """
        self.db_pool = pool
        self._owns_pool = owns_pool

    @classmethod
    async def connect(cls, config: StoreConfig) -> "PostgresObjectStore":
        pool = await create_pool(config)
        logger.info("Connected to %s:%s/%s", config.host, config.port, config.database)
        return cls(pool, owns_pool=True)

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get_object(self, object_id: str) -> Optional[CanonicalObject]:
        try:
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_OBJECT_COLUMNS} FROM canonical_objects "
                    "WHERE id = $1 AND deleted_at IS NULL",
                    object_id,
                )
        except asyncpg.PostgresError as e:
            raise StoreError(f"Failed to fetch object {object_id}: {e}") from e

        return _row_to_object(row) if row else None

    async def get_objects(self, object_ids: Iterable[str]) -> List[CanonicalObject]:
        ids = list(dict.fromkeys(object_ids))
        if not ids:
            return []

        try:
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch(
                    f"SELECT {_OBJECT_COLUMNS} FROM canonical_objects "
                    "WHERE id = ANY($1::varchar[]) AND deleted_at IS NULL",
                    ids,
                )
        except asyncpg.PostgresError as e:
            raise StoreError(f"Failed to fetch {len(ids)} objects: {e}") from e

        by_id = {row["id"]: _row_to_object(row) for row in rows}
        return [by_id[i] for i in ids if i in by_id]

    async def list_objects(
        self,
        platform: Optional[str] = None,
        object_type: Optional[str] = None,
        limit: int = 1000,
    ) -> List[CanonicalObject]:
        try:
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {_OBJECT_COLUMNS} FROM canonical_objects
                    WHERE deleted_at IS NULL
                      AND ($1::varchar IS NULL OR platform = $1)
                      AND ($2::varchar IS NULL OR object_type = $2)
                    ORDER BY id
                    LIMIT $3
                    """,
                    platform,
                    object_type,
                    limit,
                )
        except asyncpg.PostgresError as e:
            raise StoreError(f"Failed to list objects: {e}") from e

        return [_row_to_object(row) for row in rows]

    async def search_chunks(
        self,
        query_vector: List[float],
        threshold: float,
        limit: int,
    ) -> List[ChunkResult]:
        try:
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT id, canonical_object_id, content, method, metadata,
                           1 - (embedding <=> $1) AS similarity
                    FROM chunks
                    WHERE embedding IS NOT NULL
                      AND 1 - (embedding <=> $1) >= $2
                    ORDER BY embedding <=> $1
                    LIMIT $3
                    """,
                    query_vector,
                    threshold,
                    limit,
                )
        except asyncpg.PostgresError as e:
            raise StoreError(f"Chunk search failed: {e}") from e

        return [
            ChunkResult(
                id=row["id"],
                parent_object_id=row["canonical_object_id"],
                content=row["content"],
                method=row["method"],
                metadata=row["metadata"] or {},
                similarity=float(row["similarity"]),
            )
            for row in rows
        ]

    async def get_chunk_embeddings(
        self,
        object_ids: Iterable[str],
        per_object_limit: int = 5,
    ) -> Dict[str, List[List[float]]]:
        ids = list(dict.fromkeys(object_ids))
        if not ids:
            return {}

        try:
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT canonical_object_id, embedding FROM (
                        SELECT canonical_object_id, embedding,
                               ROW_NUMBER() OVER (
                                   PARTITION BY canonical_object_id ORDER BY chunk_index
                               ) AS rn
                        FROM chunks
                        WHERE canonical_object_id = ANY($1::varchar[])
                          AND embedding IS NOT NULL
                    ) ranked
                    WHERE rn <= $2
                    """,
                    ids,
                    per_object_limit,
                )
        except asyncpg.PostgresError as e:
            raise StoreError(f"Failed to load chunk embeddings: {e}") from e

        grouped: Dict[str, List[List[float]]] = {}
        for row in rows:
            grouped.setdefault(row["canonical_object_id"], []).append(
                [float(v) for v in row["embedding"]]
            )
        return grouped

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    async def merge_relation(
        self,
        object_id: str,
        relation_name: str,
        target_id: str,
        confidence: Optional[float] = None,
    ) -> None:
        """Set-union the target id into the jsonb array; overwrite match_confidence"""
        try:
            async with self.db_pool.acquire() as conn:
                status = await conn.execute(
                    """
                    UPDATE canonical_objects
                    SET relations = COALESCE(relations, '{}'::jsonb)
                        || jsonb_build_object(
                            $2::text,
                            COALESCE(
                                (
                                    SELECT jsonb_agg(DISTINCT elem)
                                    FROM (
                                        SELECT jsonb_array_elements_text(
                                            CASE jsonb_typeof(relations->$2)
                                                WHEN 'array' THEN relations->$2
                                                WHEN 'string' THEN jsonb_build_array(relations->>$2)
                                                ELSE '[]'::jsonb
                                            END
                                        ) AS elem
                                        UNION
                                        SELECT $3::text
                                    ) sub
                                ),
                                jsonb_build_array($3::text)
                            )
                        )
                        || CASE WHEN $4::numeric IS NULL THEN '{}'::jsonb
                                ELSE jsonb_build_object($5::text, $4::numeric) END
                    WHERE id = $1
                    """,
                    object_id,
                    relation_name,
                    target_id,
                    confidence,
                    MATCH_CONFIDENCE_KEY,
                )
        except asyncpg.PostgresError as e:
            raise StoreError(f"Failed to merge relation into {object_id}: {e}") from e

        if status.endswith(" 0"):
            raise ObjectNotFoundError(object_id)

    async def close(self) -> None:
        if self._owns_pool:
            await self.db_pool.close()


class PostgresGroundTruthSource(GroundTruthSource):
    """Ground truth from the ground_truth_relations table"""

    def __init__(self, pool: asyncpg.Pool):
        self.db_pool = pool

    async def load(self, scenario: str) -> List[GroundTruthRelation]:
        try:
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT from_id, to_id, relation_type, source, confidence, scenario
                    FROM ground_truth_relations
                    WHERE scenario = $1
                    """,
                    scenario,
                )
        except asyncpg.PostgresError as e:
            raise StoreError(f"Failed to load ground truth for scenario {scenario}: {e}") from e

        return [
            GroundTruthRelation(
                from_id=row["from_id"],
                to_id=row["to_id"],
                type=row["relation_type"],
                source=row["source"],
                confidence=float(row["confidence"] if row["confidence"] is not None else 1.0),
                scenario=row["scenario"],
            )
            for row in rows
        ]


class PostgresMetricsSink(MetricsSink):
    """Metrics rows in the layer_metrics table"""

    def __init__(self, pool: asyncpg.Pool):
        self.db_pool = pool

    async def upsert(
        self,
        experiment_id: Any,
        layer: str,
        evaluation_method: str,
        metrics: Dict[str, Any],
        duration_ms: int,
    ) -> None:
        try:
            async with self.db_pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO layer_metrics
                        (experiment_id, layer, evaluation_method, metrics, duration_ms)
                    VALUES ($1, $2, $3, $4::jsonb, $5)
                    ON CONFLICT (experiment_id, layer, evaluation_method)
                    DO UPDATE SET
                        metrics = EXCLUDED.metrics,
                        duration_ms = EXCLUDED.duration_ms,
                        created_at = NOW()
                    """,
                    experiment_id,
                    layer,
                    evaluation_method,
                    metrics,
                    duration_ms,
                )
        except asyncpg.PostgresError as e:
            raise StoreError(
                f"Failed to upsert {layer}/{evaluation_method} metrics "
                f"for experiment {experiment_id}: {e}"
            ) from e
