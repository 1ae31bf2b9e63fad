"""
Tests for Evaluator

Metric arithmetic, stage breakdown and end-to-end evaluation.
"""

import pytest
from datetime import datetime, timezone


def rel(from_id, to_id, rel_type, source="explicit", confidence=1.0):
    from unimem.common.schemas import Relation
    return Relation(from_id=from_id, to_id=to_id, type=rel_type, source=source, confidence=confidence)


def gt(from_id, to_id, rel_type, source="explicit", scenario="normal"):
    from unimem.common.schemas import GroundTruthRelation
    return GroundTruthRelation(from_id=from_id, to_id=to_id, type=rel_type, source=source, scenario=scenario)


class TestStageMetrics:
    def test_normalize_relation(self):
        from unimem.evaluation.evaluator import normalize_relation

        assert normalize_relation(rel("A", "B", "triggered_by")) == "A|B|triggered_by"

    def test_precision_half_recall_full(self):
        from unimem.evaluation.evaluator import calculate_stage_metrics

        metrics = calculate_stage_metrics(
            [gt("A", "B", "triggered_by")],
            [rel("A", "B", "triggered_by"), rel("A", "C", "similar_to", "inferred")],
        )

        assert metrics.true_positives == 1
        assert metrics.false_positives == 1
        assert metrics.false_negatives == 0
        assert metrics.precision == 0.5
        assert metrics.recall == 1.0
        assert metrics.f1_score == pytest.approx(0.667, abs=1e-3)

    def test_exact_match(self):
        from unimem.evaluation.evaluator import calculate_stage_metrics

        relations = [rel("A", "B", "created_by"), rel("B", "C", "belongs_to")]
        metrics = calculate_stage_metrics(relations, relations)

        assert (metrics.precision, metrics.recall, metrics.f1_score) == (1.0, 1.0, 1.0)

    def test_empty_inferred(self):
        from unimem.evaluation.evaluator import calculate_stage_metrics

        metrics = calculate_stage_metrics([gt("A", "B", "created_by")], [])

        assert metrics.precision == 0.0
        assert metrics.recall == 0.0
        assert metrics.f1_score == 0.0
        assert metrics.false_negatives == 1

    def test_both_empty(self):
        from unimem.evaluation.evaluator import calculate_stage_metrics

        metrics = calculate_stage_metrics([], [])

        assert (metrics.precision, metrics.recall, metrics.f1_score) == (0.0, 0.0, 0.0)

    def test_metrics_bounded(self):
        from unimem.evaluation.evaluator import calculate_stage_metrics

        ground_truth = [gt("A", "B", "x"), gt("B", "C", "y"), gt("C", "D", "z")]
        candidates = [
            [],
            [rel("A", "B", "x")],
            [rel("A", "B", "x"), rel("Q", "R", "x")],
            [rel("Q", "R", "x"), rel("S", "T", "y")],
            [rel("A", "B", "x"), rel("B", "C", "y"), rel("C", "D", "z"), rel("D", "E", "z")],
        ]

        for inferred in candidates:
            metrics = calculate_stage_metrics(ground_truth, inferred)
            for value in (metrics.precision, metrics.recall, metrics.f1_score):
                assert 0.0 <= value <= 1.0


class TestComponentMetrics:
    def test_stage_partition(self):
        from unimem.evaluation.evaluator import calculate_component_metrics

        ground_truth = [
            gt("A", "alice", "created_by", "explicit"),
            gt("A", "B", "similar_to", "inferred"),
            gt("B", "C", "similar_to", "computed"),
        ]
        explicit = [rel("A", "alice", "created_by")]
        similarity = [rel("A", "B", "similar_to", "inferred", 0.7), rel("A", "D", "similar_to", "inferred", 0.7)]

        metrics = calculate_component_metrics(ground_truth, explicit, similarity, "normal")

        assert metrics.scenario == "normal"
        assert metrics.explicit.f1_score == 1.0
        assert metrics.similarity.precision == 0.5
        assert metrics.similarity.recall == 0.5
        assert metrics.overall.true_positives == 2
        assert metrics.overall.total_ground_truth == 3
        assert set(metrics.by_type) == {"created_by", "similar_to"}
        assert metrics.by_type["created_by"].f1_score == 1.0

    def test_to_dict(self):
        from unimem.evaluation.evaluator import calculate_component_metrics

        data = calculate_component_metrics([gt("A", "B", "x")], [rel("A", "B", "x")], [], "edge").to_dict()

        assert data["scenario"] == "edge"
        assert data["overall"]["f1_score"] == 1.0
        assert data["by_type"]["x"]["precision"] == 1.0


class TestEvaluator:
    def test_evaluate_objects(self):
        from unimem.common.config import InferenceConfig
        from unimem.common.schemas import CanonicalObject, Timestamps
        from unimem.evaluation.evaluator import Evaluator
        from unimem.graph.relation_inferrer import RelationInferrer

        created = Timestamps(created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        issue = CanonicalObject(
            id="linear|acme|issue|ENG-1", platform="linear", object_type="issue",
            timestamps=created, actors={"created_by": "alice"},
            properties={"keywords": ["gmail", "sync"]},
        )
        feedback = CanonicalObject(
            id="notion|acme|feedback|F1", platform="notion", object_type="feedback",
            timestamps=created, properties={"keywords": ["gmail", "sync"]},
        )
        ground_truth = [
            gt(issue.id, "alice", "created_by", "explicit"),
            gt(issue.id, feedback.id, "similar_to", "inferred"),
        ]

        evaluator = Evaluator(RelationInferrer(InferenceConfig(keyword_overlap_threshold=0.5)))
        metrics = evaluator.evaluate([issue, feedback], ground_truth, "normal")

        assert metrics.explicit.f1_score == 1.0
        # both directions are emitted; only one is in the ground truth
        assert metrics.similarity.true_positives == 1
        assert metrics.similarity.false_positives == 1
        assert metrics.similarity.recall == 1.0
        assert metrics.overall.recall == 1.0
