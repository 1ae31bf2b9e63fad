"""
Consolidator

Deduplicates canonical objects by content hash, keeping the most
recently updated copy.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..common.schemas import CanonicalObject, as_utc

logger = logging.getLogger("unimem.graph.consolidator")


@dataclass
class ConsolidationStats:
    total_input: int = 0
    total_output: int = 0
    duplicates_removed: int = 0


@dataclass
class ConsolidationResult:
    """Unique objects plus the ids of the copies that were dropped"""
    unique: List[CanonicalObject] = field(default_factory=list)
    duplicates: List[str] = field(default_factory=list)
    stats: ConsolidationStats = field(default_factory=ConsolidationStats)


def _updated(obj: CanonicalObject):
    return as_utc(obj.timestamps.last_modified)


class Consolidator:
    """
    Hash-based object deduplication.

    Objects without a content hash are keyed by id, so only repeated
    ids collapse for them.
    """

    def __init__(self, use_content_hash: bool = True, keep_newer: bool = True):
        self.use_content_hash = use_content_hash
        self.keep_newer = keep_newer

    def _key(self, obj: CanonicalObject) -> str:
        if self.use_content_hash and obj.content_hash:
            return obj.content_hash
        return obj.id

    def deduplicate(self, objects: Iterable[CanonicalObject]) -> ConsolidationResult:
        objects = list(objects)
        kept: Dict[str, CanonicalObject] = {}
        duplicates: List[str] = []

        for obj in objects:
            key = self._key(obj)
            existing = kept.get(key)
            if existing is None:
                kept[key] = obj
                continue

            if self.keep_newer and _updated(obj) > _updated(existing):
                duplicates.append(existing.id)
                kept[key] = obj
            else:
                duplicates.append(obj.id)

        unique = list(kept.values())
        logger.info("Consolidated %d objects into %d (%d duplicates)",
                    len(objects), len(unique), len(duplicates))
        return ConsolidationResult(
            unique=unique,
            duplicates=duplicates,
            stats=ConsolidationStats(
                total_input=len(objects),
                total_output=len(unique),
                duplicates_removed=len(duplicates),
            ),
        )

    def find_similar(self, objects: Iterable[CanonicalObject]) -> Dict[str, List[str]]:
        """Groups of object ids sharing a content hash (groups of one omitted)"""
        groups: Dict[str, List[str]] = {}
        for obj in objects:
            if obj.content_hash:
                groups.setdefault(obj.content_hash, []).append(obj.id)
        return {h: ids for h, ids in groups.items() if len(ids) > 1}

    def merge(self, objects: Iterable[CanonicalObject]) -> Optional[CanonicalObject]:
        """The most recently updated object, first one on ties"""
        newest = None
        for obj in objects:
            if newest is None or _updated(obj) > _updated(newest):
                newest = obj
        return newest
