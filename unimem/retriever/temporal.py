"""
Temporal Processor

Time-based helpers for retrieval: recency scores, recency-boosted
reranking, time windows and period grouping.

Decay functions share one signature, decay(age_days, max_age_days),
and return 1.0 at age 0, 0.0 at or beyond max age, non-increasing
in between.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from ..common.config import TemporalConfig
from ..common.schemas import CanonicalObject, ChunkResult, as_utc

DecayFunction = Callable[[float, float], float]

T = TypeVar("T", bound=CanonicalObject)

SECONDS_PER_DAY = 24 * 60 * 60


def linear_decay(age_days: float, max_age_days: float) -> float:
    """1 - age/max, floored at 0"""
    if max_age_days <= 0 or age_days >= max_age_days:
        return 0.0
    return max(0.0, min(1.0, 1.0 - age_days / max_age_days))


def exponential_decay(age_days: float, max_age_days: float) -> float:
    """Half-life of max_age/4, cut to 0 at max age"""
    if max_age_days <= 0 or age_days >= max_age_days:
        return 0.0
    half_life = max_age_days / 4.0
    return min(1.0, math.pow(0.5, max(0.0, age_days) / half_life))


def step_decay(age_days: float, max_age_days: float) -> float:
    """1.0 within a week, 0.5 up to max age, 0 beyond"""
    if max_age_days <= 0 or age_days >= max_age_days:
        return 0.0
    if age_days < 7.0:
        return 1.0
    return 0.5


DECAY_FUNCTIONS: Dict[str, DecayFunction] = {
    "linear": linear_decay,
    "exponential": exponential_decay,
    "step": step_decay,
}


def get_decay_function(name: str) -> DecayFunction:
    try:
        return DECAY_FUNCTIONS[name]
    except KeyError:
        raise ValueError(
            f"Unknown decay function: {name} (expected one of {sorted(DECAY_FUNCTIONS)})"
        ) from None


class TemporalProcessor:
    """
    Recency scoring over canonical objects.

    Age is measured from timestamps.created_at. Pass `now` for
    deterministic results.
    """

    def __init__(
        self,
        config: Optional[TemporalConfig] = None,
        decay: Optional[DecayFunction] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or TemporalConfig()
        self._decay = decay or get_decay_function(self.config.decay)
        self._now = now or (lambda: datetime.now(timezone.utc))

    def age_days(self, obj: CanonicalObject) -> float:
        created = as_utc(obj.timestamps.created_at)
        return (as_utc(self._now()) - created).total_seconds() / SECONDS_PER_DAY

    def recency_score(self, obj: CanonicalObject) -> float:
        """0..1, 1 for brand new objects"""
        return self._decay(max(0.0, self.age_days(obj)), self.config.max_age_days)

    def recency_scores(self, objects: Sequence[CanonicalObject]) -> List[Dict[str, float]]:
        return [
            {
                "object_id": obj.id,
                "score": self.recency_score(obj),
                "age_days": round(self.age_days(obj), 1),
            }
            for obj in objects
        ]

    def sort_by_recency(self, objects: Sequence[T]) -> List[T]:
        """Newest first"""
        return sorted(objects, key=lambda o: as_utc(o.timestamps.created_at), reverse=True)

    def apply_recency_boost(
        self,
        chunks: Sequence[ChunkResult],
        objects: Sequence[CanonicalObject],
    ) -> List[ChunkResult]:
        """
        Re-sort chunks by similarity + recency_boost * recency.

        Returns copies with the adjusted similarity; chunks whose parent
        is not in `objects` keep their score. Ties keep input order.
        """
        by_id = {obj.id: obj for obj in objects}
        boosted = []
        for chunk in chunks:
            parent = by_id.get(chunk.parent_object_id)
            if parent is None:
                boosted.append(chunk.model_copy())
                continue
            adjusted = chunk.similarity + self.config.recency_boost * self.recency_score(parent)
            boosted.append(chunk.model_copy(update={"similarity": adjusted}))

        return sorted(boosted, key=lambda c: c.similarity, reverse=True)

    def filter_by_time_window(
        self,
        objects: Sequence[T],
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
    ) -> List[T]:
        """Objects created within [after, before] (either bound optional)"""
        result = []
        for obj in objects:
            created = as_utc(obj.timestamps.created_at)
            if after is not None and created < as_utc(after):
                continue
            if before is not None and created > as_utc(before):
                continue
            result.append(obj)
        return result

    def group_by_period(self, objects: Sequence[T], period: str = "day") -> Dict[str, List[T]]:
        """
        Group by creation period.

        Keys: "2024-03-05" (day), "week-2024-03-03" (week starting Sunday),
        "2024-03" (month).
        """
        groups: Dict[str, List[T]] = {}
        for obj in objects:
            created = as_utc(obj.timestamps.created_at)
            if period == "day":
                key = created.date().isoformat()
            elif period == "week":
                # weekday(): Monday=0 ... Sunday=6
                week_start = created.date() - timedelta(days=(created.weekday() + 1) % 7)
                key = f"week-{week_start.isoformat()}"
            elif period == "month":
                key = f"{created.year:04d}-{created.month:02d}"
            else:
                raise ValueError(f"Unknown period: {period}")
            groups.setdefault(key, []).append(obj)
        return groups
