"""
Unimem Evaluation Module

Relation-inference accuracy against curated ground truth.
"""

from .evaluator import (
    Evaluator,
    StageMetrics,
    TypeMetrics,
    ComponentMetrics,
    normalize_relation,
    calculate_stage_metrics,
    calculate_component_metrics,
)
from .runner import EvaluationRunner, SweepResult

__all__ = [
    "Evaluator",
    "StageMetrics",
    "TypeMetrics",
    "ComponentMetrics",
    "normalize_relation",
    "calculate_stage_metrics",
    "calculate_component_metrics",
    "EvaluationRunner",
    "SweepResult",
]
