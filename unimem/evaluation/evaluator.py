"""
Evaluator

Scores inferred relations against ground truth.

Relations are compared by the key "from_id|to_id|type". Metrics are
computed per inference stage (explicit extraction vs similarity), overall
and per relation type, so a weak overall score can be traced to the
stage responsible.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..common.schemas import CanonicalObject, Relation, RelationSource
from ..graph.relation_inferrer import RelationInferrer, deduplicate_relations

logger = logging.getLogger("unimem.evaluation.evaluator")


def normalize_relation(rel: Relation) -> str:
    return f"{rel.from_id}|{rel.to_id}|{rel.type}"


@dataclass
class StageMetrics:
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    true_positives: int = 0
    false_positives: int = 0
    false_negatives: int = 0
    total_inferred: int = 0
    total_ground_truth: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TypeMetrics:
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0


@dataclass
class ComponentMetrics:
    """Per-stage, overall and per-type metrics for one scenario"""
    scenario: str
    explicit: StageMetrics = field(default_factory=StageMetrics)
    similarity: StageMetrics = field(default_factory=StageMetrics)
    overall: StageMetrics = field(default_factory=StageMetrics)
    by_type: Dict[str, TypeMetrics] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def calculate_stage_metrics(
    ground_truth: Sequence[Relation],
    inferred: Sequence[Relation],
) -> StageMetrics:
    """
    Precision / recall / F1 by key membership.

    Each zero denominator yields 0 instead of raising.
    """
    gt_keys = {normalize_relation(r) for r in ground_truth}
    inferred_keys = {normalize_relation(r) for r in inferred}

    tp = sum(1 for r in inferred if normalize_relation(r) in gt_keys)
    fp = len(inferred) - tp
    fn = sum(1 for r in ground_truth if normalize_relation(r) not in inferred_keys)

    precision = tp / (tp + fp) if tp + fp > 0 else 0.0
    recall = tp / (tp + fn) if tp + fn > 0 else 0.0
    f1 = 2 * precision * recall / (precision + recall) if precision + recall > 0 else 0.0

    return StageMetrics(
        precision=precision,
        recall=recall,
        f1_score=f1,
        true_positives=tp,
        false_positives=fp,
        false_negatives=fn,
        total_inferred=len(inferred),
        total_ground_truth=len(ground_truth),
    )


def calculate_component_metrics(
    ground_truth: Sequence[Relation],
    inferred_explicit: Sequence[Relation],
    inferred_similarity: Sequence[Relation],
    scenario: str,
) -> ComponentMetrics:
    all_inferred = list(inferred_explicit) + list(inferred_similarity)

    gt_explicit = [r for r in ground_truth if r.source == RelationSource.EXPLICIT]
    gt_similarity = [
        r for r in ground_truth
        if r.source in (RelationSource.INFERRED, RelationSource.COMPUTED)
    ]

    by_type = {}
    types = sorted({r.type for r in ground_truth} | {r.type for r in all_inferred})
    for rel_type in types:
        metrics = calculate_stage_metrics(
            [r for r in ground_truth if r.type == rel_type],
            [r for r in all_inferred if r.type == rel_type],
        )
        by_type[rel_type] = TypeMetrics(
            precision=metrics.precision,
            recall=metrics.recall,
            f1_score=metrics.f1_score,
        )

    return ComponentMetrics(
        scenario=scenario,
        explicit=calculate_stage_metrics(gt_explicit, inferred_explicit),
        similarity=calculate_stage_metrics(gt_similarity, inferred_similarity),
        overall=calculate_stage_metrics(ground_truth, all_inferred),
        by_type=by_type,
    )


class Evaluator:
    """
    Runs both inference stages and scores them.

    The similarity stage covers similar_to relations and, when enabled,
    duplicate_of relations (both are non-explicit sources).
    """

    def __init__(self, inferrer: Optional[RelationInferrer] = None):
        self.inferrer = inferrer or RelationInferrer()

    def infer_stages(
        self,
        objects: Iterable[CanonicalObject],
        embeddings: Optional[Dict[str, Any]] = None,
    ):
        """(explicit relations, similarity relations) for the object set"""
        objects = list(objects)
        explicit = deduplicate_relations(self.inferrer.extract_explicit(objects))

        similarity: List[Relation] = []
        if self.inferrer.config.enable_duplicate_detection:
            similarity.extend(self.inferrer.detect_duplicates(objects))
        if self.inferrer.config.include_inferred:
            if embeddings is not None:
                similarity.extend(self.inferrer.infer_similarity_with_embeddings(objects, embeddings))
            else:
                similarity.extend(self.inferrer.infer_similarity(objects))

        # A key already produced explicitly is not a similarity-stage output
        explicit_keys = {r.key for r in explicit}
        similarity = [r for r in deduplicate_relations(similarity) if r.key not in explicit_keys]
        return explicit, similarity

    def evaluate(
        self,
        objects: Iterable[CanonicalObject],
        ground_truth: Sequence[Relation],
        scenario: str = "normal",
        embeddings: Optional[Dict[str, Any]] = None,
    ) -> ComponentMetrics:
        explicit, similarity = self.infer_stages(objects, embeddings)
        metrics = calculate_component_metrics(ground_truth, explicit, similarity, scenario)

        logger.info(
            "Scenario %s: explicit F1=%.3f, similarity F1=%.3f, overall F1=%.3f",
            scenario,
            metrics.explicit.f1_score,
            metrics.similarity.f1_score,
            metrics.overall.f1_score,
        )
        return metrics
