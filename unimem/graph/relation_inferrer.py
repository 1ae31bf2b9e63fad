"""
Relation Inferrer

Decides which canonical objects are related.

Three derivations, merged by (from_id, to_id, type):
1. Explicit: structured fields (actors, relations map, shared project)
2. Duplicates: identical content hash
3. Similarity: keyword Jaccard, optionally blended with embedding cosine
   and with project / schema signals, then filtered per project pair

Explicit relations always win a key collision; otherwise the higher
confidence wins.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from ..common.config import InferenceConfig
from ..common.embedding_service import EmbeddingService
from ..common.schemas import CanonicalObject, Relation, RelationSource, RelationType, as_utc
from .keywords import KeywordExtractor

logger = logging.getLogger("unimem.graph.relation_inferrer")

# relations-map key -> relation type; unlisted keys keep their own name
RELATION_KEY_TYPES = {
    "triggered_by_ticket": RelationType.TRIGGERED_BY.value,
    "resulted_in_issue": RelationType.RESULTED_IN.value,
    "linked_prs": RelationType.RELATED_TO.value,
    "linked_issues": RelationType.RELATED_TO.value,
    "parent_id": RelationType.BELONGS_TO.value,
}

SKIPPED_RELATION_KEYS = {"project_id"}


class ScoreMethod(str, Enum):
    """Which components produced a similarity score"""
    KEYWORD = "keyword"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class SimilarityScore:
    """Pairwise similarity with its components"""
    score: float
    keyword: float
    semantic: Optional[float] = None
    method: ScoreMethod = ScoreMethod.KEYWORD
    shared_keywords: Tuple[str, ...] = ()
    project: Optional[float] = None
    schema: Optional[float] = None

    @property
    def has_semantic(self) -> bool:
        return self.method != ScoreMethod.KEYWORD

    @classmethod
    def from_keywords(
        cls,
        keyword: float,
        shared: Iterable[str] = (),
        semantic: Optional[float] = None,
    ) -> "SimilarityScore":
        """Keyword-only score; a semantic value, if given, is recorded but unweighted"""
        return cls(
            score=keyword,
            keyword=keyword,
            semantic=semantic,
            method=ScoreMethod.KEYWORD,
            shared_keywords=tuple(sorted(shared)),
        )

    @classmethod
    def combine(
        cls,
        semantic: float,
        keyword: float,
        weight: float,
        shared: Iterable[str] = (),
    ) -> "SimilarityScore":
        """Weighted blend: weight * semantic + (1 - weight) * keyword"""
        shared_keywords = tuple(sorted(shared))
        if weight <= 0.0:
            return cls.from_keywords(keyword, shared_keywords, semantic=semantic)
        if weight >= 1.0:
            return cls(
                score=semantic,
                keyword=keyword,
                semantic=semantic,
                method=ScoreMethod.SEMANTIC,
                shared_keywords=shared_keywords,
            )

        blended = weight * semantic + (1.0 - weight) * keyword
        # Keep float error from pushing the blend outside its components
        blended = min(max(blended, min(semantic, keyword)), max(semantic, keyword))
        return cls(
            score=blended,
            keyword=keyword,
            semantic=semantic,
            method=ScoreMethod.HYBRID,
            shared_keywords=shared_keywords,
        )

    def with_structure(
        self,
        project: Optional[float] = None,
        schema: Optional[float] = None,
        project_weight: float = 0.0,
        schema_weight: float = 0.0,
    ) -> "SimilarityScore":
        """
        Fold project and schema signals into the score.

        Each supplied signal takes its weight off the top; the text score
        (keyword, semantic or hybrid) keeps what remains:
            (1 - pw - sw) * score + pw * project + sw * schema
        """
        if project is None and schema is None:
            return self

        remaining = 1.0
        fused = 0.0
        if project is not None:
            remaining -= project_weight
            fused += project_weight * project
        if schema is not None:
            remaining -= schema_weight
            fused += schema_weight * schema

        score = min(1.0, max(0.0, remaining * self.score + fused))
        return replace(self, score=score, project=project, schema=schema)


def jaccard(a: Set[str], b: Set[str]) -> float:
    """|A ∩ B| / |A ∪ B|, 0 when either set is empty"""
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def project_similarity(a: CanonicalObject, b: CanonicalObject) -> float:
    """1.0 when both objects name the same project (case-insensitive), else 0"""
    if not a.project_id or not b.project_id:
        return 0.0
    return 1.0 if a.project_id.lower() == b.project_id.lower() else 0.0


def _assignees(obj: CanonicalObject) -> Set[str]:
    assignees = set(obj.actors.assignees)
    if obj.actors.assignee:
        assignees.add(obj.actors.assignee)
    return assignees


def _linked_ids(obj: CanonicalObject) -> Set[str]:
    linked = set()
    for key in ("linked_issues", "linked_prs"):
        linked.update(_string_targets(obj.relations.get(key)))
    return linked


def _parent_id(obj: CanonicalObject) -> Optional[str]:
    parents = _string_targets(obj.relations.get("parent_id"))
    return parents[0] if parents else None


def schema_similarity(a: CanonicalObject, b: CanonicalObject) -> float:
    """
    Average strength of the structural signals the pair carries, capped at 1.

    Shared assignee (1.0), same creator (0.7) and participant overlap
    (0.5 * overlap / smaller set) count as signals whenever both objects
    fill the field, so a mismatch pulls the average down. A link between
    the two (1.0), a parent/child edge (1.0) and a shared parent (0.8)
    count only when present.
    """
    score = 0.0
    signals = 0

    assignees_a, assignees_b = _assignees(a), _assignees(b)
    if assignees_a and assignees_b:
        if assignees_a & assignees_b:
            score += 1.0
        signals += 1

    if a.actors.created_by and b.actors.created_by:
        if a.actors.created_by == b.actors.created_by:
            score += 0.7
        signals += 1

    participants_a, participants_b = set(a.actors.participants), set(b.actors.participants)
    if participants_a and participants_b:
        overlap = len(participants_a & participants_b)
        score += 0.5 * overlap / min(len(participants_a), len(participants_b))
        signals += 1

    if b.id in _linked_ids(a) or a.id in _linked_ids(b):
        score += 1.0
        signals += 1

    parent_a, parent_b = _parent_id(a), _parent_id(b)
    if parent_a == b.id or parent_b == a.id:
        score += 1.0
        signals += 1

    if parent_a and parent_a == parent_b:
        score += 0.8
        signals += 1

    if signals == 0:
        return 0.0
    return min(score / signals, 1.0)


def _unique_objects(objects: Iterable[CanonicalObject]) -> List[CanonicalObject]:
    seen: Dict[str, CanonicalObject] = {}
    for obj in objects:
        seen.setdefault(obj.id, obj)
    return list(seen.values())


def _string_targets(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, (list, tuple)):
        return [v for v in value if isinstance(v, str) and v]
    return []


class RelationInferrer:
    """
    Relation inference over a set of canonical objects.

    Usage:
        inferrer = RelationInferrer(InferenceConfig(keyword_overlap_threshold=0.3))
        relations = inferrer.infer_all(objects)
    """

    def __init__(
        self,
        config: Optional[InferenceConfig] = None,
        keyword_extractor: Optional[KeywordExtractor] = None,
    ):
        self.config = config or InferenceConfig()
        for name in ("semantic_weight", "project_weight", "schema_weight"):
            value = getattr(self.config, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if self._structure_weight() > 1.0:
            raise ValueError(
                "project_weight + schema_weight must not exceed 1 when both signals are enabled"
            )
        self._keywords = keyword_extractor or KeywordExtractor()

    @property
    def keyword_extractor(self) -> KeywordExtractor:
        return self._keywords

    def _structure_weight(self) -> float:
        weight = 0.0
        if self.config.use_project_metadata:
            weight += self.config.project_weight
        if self.config.use_schema_signal:
            weight += self.config.schema_weight
        return weight

    # =========================================================================
    # Explicit extraction
    # =========================================================================

    def extract_explicit(self, objects: Iterable[CanonicalObject]) -> List[Relation]:
        """Relations read directly from actors, the relations map and project ids"""
        objects = _unique_objects(objects)
        relations: List[Relation] = []

        for obj in objects:
            created_at = obj.timestamps.created_at

            def edge(from_id: str, to_id: str, rel_type: str, **metadata) -> Relation:
                return Relation(
                    from_id=from_id,
                    to_id=to_id,
                    type=rel_type,
                    source=RelationSource.EXPLICIT,
                    confidence=1.0,
                    metadata=metadata,
                    created_at=created_at,
                )

            actors = obj.actors
            for field_name in ("created_by", "updated_by"):
                actor = getattr(actors, field_name)
                if actor:
                    relations.append(edge(obj.id, actor, field_name))

            assignees = list(actors.assignees)
            if actors.assignee and actors.assignee not in assignees:
                assignees.append(actors.assignee)
            for assignee in assignees:
                relations.append(edge(obj.id, assignee, RelationType.ASSIGNED_TO.value))

            if actors.decided_by:
                relations.append(edge(actors.decided_by, obj.id, RelationType.DECIDED_BY.value))

            for participant in actors.participants:
                relations.append(edge(participant, obj.id, RelationType.PARTICIPATED_IN.value))

            for key, value in obj.relations.items():
                if key in SKIPPED_RELATION_KEYS:
                    continue
                rel_type = RELATION_KEY_TYPES.get(key, key)
                for target in _string_targets(value):
                    if target != obj.id:
                        relations.append(edge(obj.id, target, rel_type, field=key))

        relations.extend(self._project_relations(objects))
        return relations

    def _project_relations(self, objects: List[CanonicalObject]) -> List[Relation]:
        by_project: Dict[str, List[CanonicalObject]] = {}
        for obj in objects:
            if obj.project_id:
                by_project.setdefault(obj.project_id, []).append(obj)

        relations = []
        for project_id, members in by_project.items():
            for i, first in enumerate(members):
                for second in members[i + 1:]:
                    relations.append(Relation(
                        from_id=first.id,
                        to_id=second.id,
                        type=RelationType.PROJECT_RELATED.value,
                        source=RelationSource.EXPLICIT,
                        confidence=1.0,
                        metadata={"project_id": project_id},
                        created_at=first.timestamps.created_at,
                    ))
        return relations

    # =========================================================================
    # Duplicate detection
    # =========================================================================

    def detect_duplicates(self, objects: Iterable[CanonicalObject]) -> List[Relation]:
        """duplicate_of edges from each later copy to the first with the same hash"""
        first_by_hash: Dict[str, CanonicalObject] = {}
        relations = []
        for obj in _unique_objects(objects):
            if not obj.content_hash:
                continue
            original = first_by_hash.setdefault(obj.content_hash, obj)
            if original.id == obj.id:
                continue
            relations.append(Relation(
                from_id=obj.id,
                to_id=original.id,
                type=RelationType.DUPLICATE_OF.value,
                source=RelationSource.COMPUTED,
                confidence=1.0,
                metadata={"content_hash": obj.content_hash},
                created_at=obj.timestamps.created_at,
            ))
        return relations

    # =========================================================================
    # Similarity
    # =========================================================================

    def keyword_score(self, a: CanonicalObject, b: CanonicalObject) -> SimilarityScore:
        ka = self._keywords.keywords_for(a)
        kb = self._keywords.keywords_for(b)
        return SimilarityScore.from_keywords(jaccard(ka, kb), ka & kb)

    def infer_similarity(self, objects: Iterable[CanonicalObject]) -> List[Relation]:
        """Keyword-overlap similar_to relations, emitted in both directions"""
        objects = _unique_objects(objects)
        keyword_sets = [self._keywords.keywords_for(obj) for obj in objects]
        threshold = self.config.keyword_overlap_threshold

        relations = []
        for i in range(len(objects)):
            for j in range(i + 1, len(objects)):
                shared = keyword_sets[i] & keyword_sets[j]
                score = self._with_structure(objects[i], objects[j], SimilarityScore.from_keywords(
                    jaccard(keyword_sets[i], keyword_sets[j]), shared
                ))
                if score.score >= threshold:
                    relations.extend(self._similarity_pair(objects[i], objects[j], score))

        logger.info(
            "Keyword similarity: %d objects, %d relations (threshold=%.2f)",
            len(objects), len(relations), threshold,
        )
        return self._apply_document_threshold(relations, objects)

    def infer_similarity_with_embeddings(
        self,
        objects: Iterable[CanonicalObject],
        embeddings_by_object_id: Dict[str, Sequence[Any]],
    ) -> List[Relation]:
        """
        Similarity blending keyword overlap with embedding cosine.

        Args:
            objects: Objects to compare pairwise
            embeddings_by_object_id: object id -> one vector or a list of
                chunk vectors (averaged per object)

        Returns:
            similar_to relations in both directions for pairs scoring at or
            above similarity_threshold, filtered per project pair when
            use_document_threshold is set
        """
        objects = _unique_objects(objects)
        vectors = self._object_vectors(objects, embeddings_by_object_id)
        keyword_sets = [self._keywords.keywords_for(obj) for obj in objects]
        threshold = self.config.similarity_threshold

        relations = []
        for i in range(len(objects)):
            for j in range(i + 1, len(objects)):
                score = self._pair_score(
                    objects[i], objects[j], keyword_sets[i], keyword_sets[j], vectors
                )
                if score.score >= threshold:
                    relations.extend(self._similarity_pair(objects[i], objects[j], score))

        logger.info(
            "Embedding similarity: %d objects (%d with vectors), %d relations (threshold=%.2f)",
            len(objects), len(vectors), len(relations), threshold,
        )
        return self._apply_document_threshold(relations, objects)

    def _object_vectors(
        self,
        objects: List[CanonicalObject],
        embeddings_by_object_id: Dict[str, Sequence[Any]],
    ) -> Dict[str, List[float]]:
        vectors = {}
        for obj in objects:
            raw = embeddings_by_object_id.get(obj.id)
            if raw is None:
                continue
            chunk_vectors = [raw] if len(raw) and not hasattr(raw[0], "__len__") else raw
            # Zero vectors have no direction to compare
            chunk_vectors = [v for v in chunk_vectors if np.any(np.asarray(v, dtype=float))]
            if not chunk_vectors:
                logger.debug("Only zero vectors for %s, keyword-only", obj.id)
                continue
            try:
                vectors[obj.id] = EmbeddingService.average_embeddings(chunk_vectors)
            except ValueError as e:
                logger.debug("No usable embedding for %s, keyword-only: %s", obj.id, e)
        return vectors

    def _pair_score(
        self,
        a: CanonicalObject,
        b: CanonicalObject,
        keywords_a: Set[str],
        keywords_b: Set[str],
        vectors: Dict[str, List[float]],
    ) -> SimilarityScore:
        shared = keywords_a & keywords_b
        keyword = jaccard(keywords_a, keywords_b)

        score = SimilarityScore.from_keywords(keyword, shared)
        if self.config.use_semantic_similarity and a.id in vectors and b.id in vectors:
            try:
                semantic = EmbeddingService.cosine_similarity(vectors[a.id], vectors[b.id])
            except ValueError as e:
                logger.debug("Cannot compare %s and %s semantically: %s", a.id, b.id, e)
            else:
                score = SimilarityScore.combine(semantic, keyword, self.config.semantic_weight, shared)

        return self._with_structure(a, b, score)

    def _with_structure(
        self,
        a: CanonicalObject,
        b: CanonicalObject,
        score: SimilarityScore,
    ) -> SimilarityScore:
        return score.with_structure(
            project=project_similarity(a, b) if self.config.use_project_metadata else None,
            schema=schema_similarity(a, b) if self.config.use_schema_signal else None,
            project_weight=self.config.project_weight,
            schema_weight=self.config.schema_weight,
        )

    def _apply_document_threshold(
        self,
        relations: List[Relation],
        objects: List[CanonicalObject],
    ) -> List[Relation]:
        """
        Second-stage filter over similarity relations grouped by project pair.

        A group of relations between two different projects is kept only if
        its average confidence reaches document_threshold and it holds at
        least min_chunk_matches relations. Relations inside one project
        always pass. Objects without a project form their own group.
        """
        if not self.config.use_document_threshold or not relations:
            return relations

        projects = {obj.id: (obj.project_id or obj.id).lower() for obj in objects}

        def project_pair(rel: Relation) -> Tuple[str, ...]:
            return tuple(sorted((projects.get(rel.from_id, rel.from_id),
                                 projects.get(rel.to_id, rel.to_id))))

        groups: Dict[Tuple[str, ...], List[float]] = {}
        for rel in relations:
            groups.setdefault(project_pair(rel), []).append(rel.confidence)

        kept_pairs = set()
        for pair, scores in groups.items():
            average = sum(scores) / len(scores)
            if pair[0] == pair[1] or (
                average >= self.config.document_threshold
                and len(scores) >= self.config.min_chunk_matches
            ):
                kept_pairs.add(pair)
            else:
                logger.debug("Dropped %s|%s: avg=%.3f over %d relations",
                             pair[0], pair[1], average, len(scores))

        logger.info(
            "Document threshold: kept %d/%d project pairs (threshold=%.2f, min matches=%d)",
            len(kept_pairs), len(groups),
            self.config.document_threshold, self.config.min_chunk_matches,
        )
        return [rel for rel in relations if project_pair(rel) in kept_pairs]

    def _similarity_pair(
        self,
        a: CanonicalObject,
        b: CanonicalObject,
        score: SimilarityScore,
    ) -> List[Relation]:
        metadata = {
            "keyword_similarity": round(score.keyword, 4),
            "shared_keywords": list(score.shared_keywords),
            "combined_similarity": round(score.score, 4),
            "method": score.method.value,
        }
        if score.semantic is not None:
            metadata["semantic_similarity"] = round(score.semantic, 4)
        if score.project is not None:
            metadata["project_similarity"] = round(score.project, 4)
        if score.schema is not None:
            metadata["schema_similarity"] = round(score.schema, 4)

        source = RelationSource.COMPUTED if score.has_semantic else RelationSource.INFERRED
        confidence = min(1.0, max(0.0, round(score.score, 2)))

        logger.debug("%s ~ %s: %.3f (%s)", a.id, b.id, score.score, score.method.value)
        return [
            Relation(
                from_id=src.id,
                to_id=dst.id,
                type=RelationType.SIMILAR_TO.value,
                source=source,
                confidence=confidence,
                metadata=dict(metadata),
                created_at=max(as_utc(a.timestamps.created_at), as_utc(b.timestamps.created_at)),
            )
            for src, dst in ((a, b), (b, a))
        ]

    # =========================================================================
    # Combined
    # =========================================================================

    def infer_all(self, objects: Iterable[CanonicalObject]) -> List[Relation]:
        """Explicit + duplicate + keyword similarity, deduplicated"""
        objects = _unique_objects(objects)
        relations = self._structural(objects)
        if self.config.include_inferred:
            relations.extend(self.infer_similarity(objects))
        return deduplicate_relations(relations)

    def infer_all_with_embeddings(
        self,
        objects: Iterable[CanonicalObject],
        embeddings_by_object_id: Dict[str, Sequence[Any]],
    ) -> List[Relation]:
        """Explicit + duplicate + embedding-aware similarity, deduplicated"""
        objects = _unique_objects(objects)
        relations = self._structural(objects)
        if self.config.include_inferred:
            relations.extend(self.infer_similarity_with_embeddings(objects, embeddings_by_object_id))
        return deduplicate_relations(relations)

    def _structural(self, objects: List[CanonicalObject]) -> List[Relation]:
        relations = self.extract_explicit(objects)
        if self.config.enable_duplicate_detection:
            relations.extend(self.detect_duplicates(objects))
        return relations


# =============================================================================
# Relation set helpers
# =============================================================================

def deduplicate_relations(relations: Iterable[Relation]) -> List[Relation]:
    """
    Collapse relations sharing (from_id, to_id, type).

    Explicit beats anything else; between non-explicit relations the
    higher confidence wins. First-seen order is kept.
    """
    kept: Dict[tuple, Relation] = {}
    for rel in relations:
        current = kept.get(rel.key)
        if current is None:
            kept[rel.key] = rel
            continue
        if current.source == RelationSource.EXPLICIT:
            continue
        if rel.source == RelationSource.EXPLICIT or rel.confidence > current.confidence:
            kept[rel.key] = rel
    return list(kept.values())


def relations_for(
    relations: Iterable[Relation],
    object_id: str,
    direction: str = "both",
) -> List[Relation]:
    """Relations touching object_id: direction is "outgoing", "incoming" or "both" """
    if direction not in ("outgoing", "incoming", "both"):
        raise ValueError(f"Unknown direction: {direction}")
    result = []
    for rel in relations:
        if direction in ("outgoing", "both") and rel.from_id == object_id:
            result.append(rel)
        elif direction in ("incoming", "both") and rel.to_id == object_id:
            result.append(rel)
    return result


def relations_by_type(relations: Iterable[Relation], rel_type: str) -> List[Relation]:
    rel_type = rel_type.value if isinstance(rel_type, RelationType) else rel_type
    return [rel for rel in relations if rel.type == rel_type]


@dataclass
class RelationStats:
    total: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    by_source: Dict[str, int] = field(default_factory=dict)
    avg_confidence: float = 0.0


def get_stats(relations: Iterable[Relation]) -> RelationStats:
    relations = list(relations)
    if not relations:
        return RelationStats()
    return RelationStats(
        total=len(relations),
        by_type=dict(Counter(rel.type for rel in relations)),
        by_source=dict(Counter(rel.source.value for rel in relations)),
        avg_confidence=sum(rel.confidence for rel in relations) / len(relations),
    )
