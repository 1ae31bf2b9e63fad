"""
Unimem Schemas

Canonical objects, chunks and relations shared by every component.
"""

from .canonical import (
    CanonicalObject,
    Actors,
    Timestamps,
    Chunk,
    ChunkResult,
    Relation,
    GroundTruthRelation,
    RelationType,
    RelationSource,
    Visibility,
    create_canonical_id,
    parse_canonical_id,
    normalize_text,
    compute_content_hash,
    as_utc,
)

__all__ = [
    "CanonicalObject",
    "Actors",
    "Timestamps",
    "Chunk",
    "ChunkResult",
    "Relation",
    "GroundTruthRelation",
    "RelationType",
    "RelationSource",
    "Visibility",
    "create_canonical_id",
    "parse_canonical_id",
    "normalize_text",
    "compute_content_hash",
    "as_utc",
]
