"""
Evaluation Runner

Replays relation inference over the stored objects for one ground-truth
scenario, optionally records the metrics, and sweeps thresholds.
"""

import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..common.evaluation_store import GroundTruthSource, MetricsSink
from ..common.object_store import ObjectStore
from ..common.schemas import CanonicalObject, GroundTruthRelation
from ..graph.relation_inferrer import RelationInferrer
from .evaluator import ComponentMetrics, Evaluator

logger = logging.getLogger("unimem.evaluation.runner")

EVALUATION_METHOD = "ground_truth"
GRAPH_LAYER = "graph"
VALIDATION_LAYER = "validation"
SWEEPABLE_FIELDS = ("similarity_threshold", "keyword_overlap_threshold", "document_threshold")


@dataclass
class SweepResult:
    """Metrics per candidate threshold and the best one by overall F1"""
    threshold_field: str
    results: List[Tuple[float, ComponentMetrics]] = field(default_factory=list)
    best_threshold: Optional[float] = None
    best_f1: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threshold_field": self.threshold_field,
            "best_threshold": self.best_threshold,
            "best_f1": self.best_f1,
            "results": [
                {"threshold": t, "metrics": m.to_dict()} for t, m in self.results
            ],
        }


class EvaluationRunner:
    """
    Evaluation against a stored dataset.

    Usage:
        runner = EvaluationRunner(store, ground_truth, sink)
        metrics = await runner.run("normal", experiment_id=42)
    """

    def __init__(
        self,
        store: ObjectStore,
        ground_truth_source: GroundTruthSource,
        metrics_sink: Optional[MetricsSink] = None,
        inferrer: Optional[RelationInferrer] = None,
        object_limit: int = 10000,
        embeddings_per_object: int = 5,
    ):
        self._store = store
        self._ground_truth = ground_truth_source
        self._sink = metrics_sink
        self.inferrer = inferrer or RelationInferrer()
        self.object_limit = object_limit
        self.embeddings_per_object = embeddings_per_object

    async def _load(
        self,
        scenario: str,
        use_semantic: bool,
    ) -> Tuple[List[CanonicalObject], List[GroundTruthRelation], Optional[Dict[str, Any]]]:
        objects = await self._store.list_objects(limit=self.object_limit)
        ground_truth = await self._ground_truth.load(scenario)

        embeddings = None
        if use_semantic:
            embeddings = await self._store.get_chunk_embeddings(
                [obj.id for obj in objects],
                per_object_limit=self.embeddings_per_object,
            )
            logger.info("Loaded embeddings for %d/%d objects", len(embeddings), len(objects))

        logger.info("Scenario %s: %d objects, %d ground-truth relations",
                    scenario, len(objects), len(ground_truth))
        return objects, ground_truth, embeddings

    def _inferrer_for(self, use_semantic: bool, **overrides) -> RelationInferrer:
        config = dataclasses.replace(
            self.inferrer.config,
            use_semantic_similarity=use_semantic or self.inferrer.config.use_semantic_similarity,
            **overrides,
        )
        return RelationInferrer(config, keyword_extractor=self.inferrer.keyword_extractor)

    async def run(
        self,
        scenario: str,
        experiment_id: Any = None,
        use_semantic: bool = False,
    ) -> ComponentMetrics:
        """
        Evaluate one scenario.

        When experiment_id is given and a metrics sink is configured, two
        rows are upserted: graph/ground_truth with the full breakdown and
        validation/ground_truth with the overall figures.
        """
        start = time.perf_counter()
        objects, ground_truth, embeddings = await self._load(scenario, use_semantic)

        evaluator = Evaluator(self._inferrer_for(use_semantic))
        metrics = evaluator.evaluate(objects, ground_truth, scenario, embeddings)
        duration_ms = int((time.perf_counter() - start) * 1000)

        if experiment_id is not None and self._sink is not None:
            await self._persist(experiment_id, metrics, duration_ms, use_semantic)

        return metrics

    async def _persist(
        self,
        experiment_id: Any,
        metrics: ComponentMetrics,
        duration_ms: int,
        use_semantic: bool,
    ) -> None:
        config = self.inferrer.config
        graph_metrics = metrics.to_dict()
        graph_metrics["config"] = {
            "similarity_threshold": config.similarity_threshold,
            "keyword_overlap_threshold": config.keyword_overlap_threshold,
            "semantic_weight": config.semantic_weight,
            "use_semantic_similarity": use_semantic or config.use_semantic_similarity,
            "use_project_metadata": config.use_project_metadata,
            "project_weight": config.project_weight,
            "use_schema_signal": config.use_schema_signal,
            "schema_weight": config.schema_weight,
            "use_document_threshold": config.use_document_threshold,
            "document_threshold": config.document_threshold,
            "min_chunk_matches": config.min_chunk_matches,
        }
        await self._sink.upsert(experiment_id, GRAPH_LAYER, EVALUATION_METHOD, graph_metrics, duration_ms)

        overall = metrics.overall
        validation_metrics = {
            "scenario": metrics.scenario,
            "precision": overall.precision,
            "recall": overall.recall,
            "f1_score": overall.f1_score,
            "true_positives": overall.true_positives,
            "false_positives": overall.false_positives,
            "false_negatives": overall.false_negatives,
        }
        await self._sink.upsert(
            experiment_id, VALIDATION_LAYER, EVALUATION_METHOD, validation_metrics, duration_ms
        )
        logger.info("Stored metrics for experiment %s (%dms)", experiment_id, duration_ms)

    async def sweep_thresholds(
        self,
        scenario: str,
        thresholds: Sequence[float],
        use_semantic: bool = False,
        threshold_field: Optional[str] = None,
    ) -> SweepResult:
        """
        Re-evaluate with each candidate threshold.

        The swept field defaults to keyword_overlap_threshold for keyword
        runs and similarity_threshold for semantic runs. Sweeping
        document_threshold turns the project-pair filter on. Ties keep the
        first (in the given order) threshold.
        """
        if threshold_field is None:
            threshold_field = "similarity_threshold" if use_semantic else "keyword_overlap_threshold"
        if threshold_field not in SWEEPABLE_FIELDS:
            raise ValueError(f"Cannot sweep {threshold_field}")
        extra = {"use_document_threshold": True} if threshold_field == "document_threshold" else {}

        objects, ground_truth, embeddings = await self._load(scenario, use_semantic)

        sweep = SweepResult(threshold_field=threshold_field)
        for threshold in thresholds:
            inferrer = self._inferrer_for(use_semantic, **extra, **{threshold_field: threshold})
            metrics = Evaluator(inferrer).evaluate(objects, ground_truth, scenario, embeddings)
            sweep.results.append((threshold, metrics))

            f1 = metrics.overall.f1_score
            if sweep.best_threshold is None or f1 > sweep.best_f1:
                sweep.best_threshold = threshold
                sweep.best_f1 = f1

        logger.info("Sweep over %s: best %.2f (F1=%.3f)",
                    threshold_field, sweep.best_threshold or 0.0, sweep.best_f1)
        return sweep
