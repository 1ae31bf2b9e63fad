"""
Match Persistence

Finds similarity matches from one object group (e.g. tracker issues) to
another (e.g. customer feedback pages) and writes them back into the
target objects' relations map.

Write-back is idempotent: target ids are set-unioned and the
match_confidence scalar is overwritten on every application.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..common.object_store import ObjectStore
from ..common.schemas import CanonicalObject, RelationType
from .relation_inferrer import RelationInferrer, ScoreMethod

logger = logging.getLogger("unimem.graph.match_persistence")

HIGH_CONFIDENCE = 0.7
MEDIUM_CONFIDENCE = 0.5


@dataclass
class Match:
    """A source object matched to a target object"""
    source_id: str
    target_id: str
    score: float
    method: ScoreMethod = ScoreMethod.KEYWORD
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "target_id": self.target_id,
            "score": self.score,
            "method": self.method.value,
            "reasons": list(self.reasons),
        }


@dataclass
class PersistResult:
    persisted: int = 0
    failed: int = 0

    @property
    def attempted(self) -> int:
        return self.persisted + self.failed


def _reasons(metadata: Dict[str, Any]) -> List[str]:
    reasons = []
    if metadata.get("semantic_similarity"):
        reasons.append(f"Semantic similarity: {metadata['semantic_similarity'] * 100:.1f}%")
    if metadata.get("keyword_similarity"):
        reasons.append(f"Keyword overlap: {metadata['keyword_similarity'] * 100:.1f}%")
    shared = metadata.get("shared_keywords") or []
    if shared:
        reasons.append(f"Keywords: {', '.join(shared[:3])}")
    return reasons


def find_matches(
    inferrer: RelationInferrer,
    sources: Sequence[CanonicalObject],
    targets: Sequence[CanonicalObject],
    embeddings_by_object_id: Optional[Dict[str, Any]] = None,
) -> List[Match]:
    """
    Similarity matches from sources to targets, best first.

    Uses embedding-aware scoring when embeddings are given, keyword
    overlap otherwise. Thresholds come from the inferrer's config.
    """
    source_ids = {obj.id for obj in sources}
    target_ids = {obj.id for obj in targets}
    objects = list(sources) + list(targets)

    if embeddings_by_object_id:
        relations = inferrer.infer_similarity_with_embeddings(objects, embeddings_by_object_id)
    else:
        relations = inferrer.infer_similarity(objects)

    matches = [
        Match(
            source_id=rel.from_id,
            target_id=rel.to_id,
            score=rel.confidence,
            method=ScoreMethod(rel.metadata.get("method", ScoreMethod.KEYWORD.value)),
            reasons=_reasons(rel.metadata),
        )
        for rel in relations
        if rel.type == RelationType.SIMILAR_TO.value
        and rel.from_id in source_ids
        and rel.to_id in target_ids
    ]
    matches.sort(key=lambda m: m.score, reverse=True)

    logger.info("Matched %d sources x %d targets: %d matches",
                len(source_ids), len(target_ids), len(matches))
    return matches


def summarize_matches(matches: Iterable[Match]) -> Dict[str, int]:
    """Match counts per confidence band"""
    matches = list(matches)
    return {
        "total": len(matches),
        "high_confidence": sum(1 for m in matches if m.score >= HIGH_CONFIDENCE),
        "medium_confidence": sum(
            1 for m in matches if MEDIUM_CONFIDENCE <= m.score < HIGH_CONFIDENCE
        ),
        "low_confidence": sum(1 for m in matches if m.score < MEDIUM_CONFIDENCE),
    }


class MatchPersister:
    """
    Writes matches into target objects' relations.

    Each match adds source_id to target.relations[relation_name] and
    sets target.relations["match_confidence"] to the match score.
    """

    def __init__(self, store: ObjectStore, relation_name: str = RelationType.VALIDATED_BY.value):
        self._store = store
        self.relation_name = relation_name

    async def persist(self, matches: Iterable[Match]) -> PersistResult:
        """Persist every match; failures are logged and counted, never raised"""
        result = PersistResult()
        for match in matches:
            try:
                await self._store.merge_relation(
                    match.target_id,
                    self.relation_name,
                    match.source_id,
                    confidence=match.score,
                )
                result.persisted += 1
            except Exception as e:
                result.failed += 1
                logger.warning("Failed to persist match %s -> %s: %s",
                               match.target_id, match.source_id, e)

        logger.info("Persisted %d matches (%d failed)", result.persisted, result.failed)
        return result
