"""
Canonical Object Schema

Core principle: every source record (Linear issue, Slack thread, Notion page,
Zendesk ticket...) is normalized into one CanonicalObject shape.
Relations between objects are derived data: they are recomputed on demand
and only written back through match persistence.
"""

import hashlib
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Enums
# ============================================================================

class RelationType(str, Enum):
    """Known relation types"""
    TRIGGERED_BY = "triggered_by"  # Slack thread triggered by Zendesk ticket
    RESULTED_IN = "resulted_in"  # Slack thread resulted in Linear issue
    BELONGS_TO = "belongs_to"  # Ticket/Issue belongs to parent
    ASSIGNED_TO = "assigned_to"  # Issue assigned to User
    CREATED_BY = "created_by"  # Object created by User
    UPDATED_BY = "updated_by"  # Object last updated by User
    DECIDED_BY = "decided_by"  # Decision made by User
    PARTICIPATED_IN = "participated_in"  # User participated in thread
    VALIDATED_BY = "validated_by"  # Feedback validated by issue
    PROJECT_RELATED = "project_related"  # Objects share a project
    SIMILAR_TO = "similar_to"  # Keyword or semantic similarity
    DUPLICATE_OF = "duplicate_of"  # Identical content hash
    RELATED_TO = "related_to"  # Generic link (PRs, issues)


class RelationSource(str, Enum):
    """
    How a relation was derived.

    explicit: read from structured fields
    inferred: keyword-only similarity
    computed: similarity with a semantic component, or hash duplicates
    """
    EXPLICIT = "explicit"
    INFERRED = "inferred"
    COMPUTED = "computed"


class Visibility(str, Enum):
    """Object visibility"""
    PRIVATE = "private"
    TEAM = "team"
    PUBLIC = "public"


# ============================================================================
# Sub-models
# ============================================================================

class Actors(BaseModel):
    """People involved with the object (role -> identity)"""
    model_config = ConfigDict(extra="allow")

    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    assignee: Optional[str] = None
    assignees: List[str] = Field(default_factory=list)
    participants: List[str] = Field(default_factory=list)
    decided_by: Optional[str] = None


class Timestamps(BaseModel):
    """Lifecycle timestamps"""
    model_config = ConfigDict(extra="allow")

    created_at: datetime
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None

    @property
    def last_modified(self) -> datetime:
        """updated_at, falling back to created_at"""
        return self.updated_at or self.created_at


# ============================================================================
# Main Schemas
# ============================================================================

class CanonicalObject(BaseModel):
    """
    Unified record for all platforms.

    ID format: platform|workspace|object_type|local_id
    """
    id: str = Field(..., description="platform|workspace|object_type|local_id")
    platform: str
    object_type: str

    title: Optional[str] = None
    body: Optional[str] = None

    actors: Actors = Field(default_factory=Actors)
    timestamps: Timestamps
    relations: Dict[str, Any] = Field(default_factory=dict)
    properties: Dict[str, Any] = Field(default_factory=dict)

    content_hash: Optional[str] = None
    visibility: Visibility = Field(default=Visibility.TEAM)

    @property
    def keywords(self) -> List[str]:
        """Explicit tag keywords (properties.keywords + properties.labels)"""
        tags = []
        for field_name in ("keywords", "labels"):
            values = self.properties.get(field_name)
            if isinstance(values, list):
                tags.extend(str(v) for v in values)
        return tags

    @property
    def project_id(self) -> Optional[str]:
        value = self.relations.get("project_id")
        return value if isinstance(value, str) and value else None


class Chunk(BaseModel):
    """A retrievable slice of a CanonicalObject's text"""
    id: str
    parent_object_id: str
    content: str
    chunk_index: int = 0
    embedding: Optional[List[float]] = None
    method: str = "fixed"
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChunkResult(BaseModel):
    """A chunk returned by vector search, with its similarity to the query"""
    id: str
    parent_object_id: str
    content: str
    method: str = "fixed"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    similarity: float = 0.0


class Relation(BaseModel):
    """A directed, typed edge between two object ids"""
    from_id: str
    to_id: str
    type: str
    source: RelationSource
    confidence: float = Field(ge=0.0, le=1.0, default=1.0)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @property
    def key(self) -> tuple:
        """Dedup key: (from_id, to_id, type)"""
        return (self.from_id, self.to_id, self.type)


class GroundTruthRelation(Relation):
    """Curated relation used only for evaluation"""
    scenario: str = "normal"


# ============================================================================
# Helpers
# ============================================================================

def create_canonical_id(platform: str, workspace: str, object_type: str, local_id: str) -> str:
    """Build a canonical object id"""
    return f"{platform}|{workspace}|{object_type}|{local_id}"


def parse_canonical_id(object_id: str) -> Optional[Dict[str, str]]:
    """Split a canonical id into its parts, or None if malformed"""
    parts = object_id.split("|")
    if len(parts) != 4 or not all(parts):
        return None
    return {
        "platform": parts[0],
        "workspace": parts[1],
        "object_type": parts[2],
        "local_id": parts[3],
    }


def normalize_text(text: str) -> str:
    """
    Normalize text for order-independent hashing.

    Lowercase, strip punctuation, drop words of two characters or fewer,
    sort the remaining words.
    """
    cleaned = re.sub(r"[^\w\s]", " ", text.lower())
    words = [w for w in cleaned.split() if len(w) > 2]
    return " ".join(sorted(words))


def compute_content_hash(
    title: Optional[str] = None,
    body: Optional[str] = None,
    keywords: Optional[List[str]] = None,
) -> str:
    """SHA256 over normalized title + first 500 chars of body + sorted keywords"""
    parts = []
    if title:
        parts.append(normalize_text(title))
    if body:
        parts.append(normalize_text(body[:500]))
    if keywords:
        parts.append(" ".join(sorted(k.lower() for k in keywords)))

    combined = " | ".join(parts)
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
