"""
Evaluation Stores

Read-only ground-truth relations and the metrics sink that evaluation
runs upsert into. Metric rows are keyed by
(experiment_id, layer, evaluation_method) so re-runs overwrite.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .schemas import GroundTruthRelation


class GroundTruthSource(ABC):
    """Curated relations partitioned by scenario"""

    @abstractmethod
    async def load(self, scenario: str) -> List[GroundTruthRelation]:
        """All ground-truth relations for one scenario"""

    async def close(self) -> None:
        """Release resources"""


class InMemoryGroundTruthSource(GroundTruthSource):
    """Ground truth held in memory"""

    def __init__(self, relations: Optional[Iterable[GroundTruthRelation]] = None):
        self._relations = list(relations or [])

    def add(self, relation: GroundTruthRelation) -> None:
        self._relations.append(relation)

    async def load(self, scenario: str) -> List[GroundTruthRelation]:
        return [r for r in self._relations if r.scenario == scenario]


@dataclass
class MetricRow:
    """One stored metrics blob"""
    experiment_id: Any
    layer: str
    evaluation_method: str
    metrics: Dict[str, Any]
    duration_ms: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MetricsSink(ABC):
    """Destination for evaluation metrics"""

    @abstractmethod
    async def upsert(
        self,
        experiment_id: Any,
        layer: str,
        evaluation_method: str,
        metrics: Dict[str, Any],
        duration_ms: int,
    ) -> None:
        """Insert or overwrite the row for (experiment_id, layer, evaluation_method)"""

    async def close(self) -> None:
        """Release resources"""


class InMemoryMetricsSink(MetricsSink):
    """Metrics sink held in memory"""

    def __init__(self):
        self._rows: Dict[Tuple[Any, str, str], MetricRow] = {}

    async def upsert(
        self,
        experiment_id: Any,
        layer: str,
        evaluation_method: str,
        metrics: Dict[str, Any],
        duration_ms: int,
    ) -> None:
        self._rows[(experiment_id, layer, evaluation_method)] = MetricRow(
            experiment_id=experiment_id,
            layer=layer,
            evaluation_method=evaluation_method,
            metrics=metrics,
            duration_ms=duration_ms,
        )

    def get(self, experiment_id: Any, layer: str, evaluation_method: str = "ground_truth") -> Optional[MetricRow]:
        return self._rows.get((experiment_id, layer, evaluation_method))

    @property
    def rows(self) -> List[MetricRow]:
        return list(self._rows.values())
