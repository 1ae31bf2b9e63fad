"""
Unimem Graph Module

Relation inference between canonical objects:
- KeywordExtractor: domain keywords and issue identifiers
- RelationInferrer: explicit, duplicate and similarity relations
- Consolidator: content-hash deduplication
- MatchPersister: idempotent write-back of similarity matches
"""

from .keywords import KeywordExtractor
from .relation_inferrer import (
    RelationInferrer,
    SimilarityScore,
    ScoreMethod,
    RelationStats,
    deduplicate_relations,
    relations_for,
    relations_by_type,
    get_stats,
    project_similarity,
    schema_similarity,
)
from .consolidator import Consolidator, ConsolidationResult, ConsolidationStats
from .match_persistence import Match, MatchPersister, PersistResult, find_matches, summarize_matches

__all__ = [
    "KeywordExtractor",
    "RelationInferrer",
    "SimilarityScore",
    "ScoreMethod",
    "RelationStats",
    "deduplicate_relations",
    "relations_for",
    "relations_by_type",
    "get_stats",
    "project_similarity",
    "schema_similarity",
    "Consolidator",
    "ConsolidationResult",
    "ConsolidationStats",
    "Match",
    "MatchPersister",
    "PersistResult",
    "find_matches",
    "summarize_matches",
]
