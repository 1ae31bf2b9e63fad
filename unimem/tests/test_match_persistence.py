"""
Tests for match finding and idempotent match write-back
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock

ISSUE = "linear|acme|issue|ENG-1"
FEEDBACK = "notion|acme|feedback|F1"
OTHER_FEEDBACK = "notion|acme|feedback|F2"


def make_object(object_id, keywords):
    from unimem.common.schemas import CanonicalObject, Timestamps, parse_canonical_id

    parts = parse_canonical_id(object_id)
    return CanonicalObject(
        id=object_id,
        platform=parts["platform"],
        object_type=parts["object_type"],
        timestamps=Timestamps(created_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
        properties={"keywords": keywords},
    )


@pytest.fixture
def store():
    from unimem.common.object_store import InMemoryObjectStore

    return InMemoryObjectStore(objects=[
        make_object(ISSUE, ["gmail", "sync"]),
        make_object(FEEDBACK, ["gmail", "sync", "oauth"]),
        make_object(OTHER_FEEDBACK, ["slack"]),
    ])


class TestFindMatches:
    def test_source_to_target_only(self):
        from unimem.common.config import InferenceConfig
        from unimem.graph.match_persistence import find_matches
        from unimem.graph.relation_inferrer import RelationInferrer

        issue = make_object(ISSUE, ["gmail", "sync"])
        feedback = make_object(FEEDBACK, ["gmail", "sync", "oauth"])
        other = make_object(OTHER_FEEDBACK, ["slack"])
        inferrer = RelationInferrer(InferenceConfig(keyword_overlap_threshold=0.3))

        matches = find_matches(inferrer, [issue], [feedback, other])

        assert len(matches) == 1
        match = matches[0]
        assert (match.source_id, match.target_id) == (ISSUE, FEEDBACK)
        assert match.score == 0.67
        assert match.method.value == "keyword"
        assert any(reason.startswith("Keywords: gmail, sync") for reason in match.reasons)

    def test_with_embeddings(self):
        from unimem.common.config import InferenceConfig
        from unimem.graph.match_persistence import find_matches
        from unimem.graph.relation_inferrer import RelationInferrer

        issue = make_object(ISSUE, [])
        feedback = make_object(FEEDBACK, [])
        inferrer = RelationInferrer(InferenceConfig(
            use_semantic_similarity=True, semantic_weight=1.0, similarity_threshold=0.9,
        ))

        matches = find_matches(inferrer, [issue], [feedback], {ISSUE: [[1.0, 0.0]], FEEDBACK: [[1.0, 0.0]]})

        assert len(matches) == 1
        assert matches[0].method.value == "semantic"
        assert matches[0].reasons[0].startswith("Semantic similarity")

    def test_summarize(self):
        from unimem.graph.match_persistence import Match, summarize_matches

        summary = summarize_matches([
            Match("a", "b", 0.9), Match("a", "c", 0.6), Match("a", "d", 0.3),
        ])

        assert summary == {"total": 3, "high_confidence": 1, "medium_confidence": 1, "low_confidence": 1}


class TestMatchPersister:
    @pytest.mark.asyncio
    async def test_persist_writes_validated_by(self, store):
        from unimem.graph.match_persistence import Match, MatchPersister

        result = await MatchPersister(store).persist([Match(ISSUE, FEEDBACK, 0.67)])

        assert result.persisted == 1
        assert result.failed == 0
        feedback = await store.get_object(FEEDBACK)
        assert feedback.relations["validated_by"] == [ISSUE]
        assert feedback.relations["match_confidence"] == 0.67

    @pytest.mark.asyncio
    async def test_reapplying_is_idempotent(self, store):
        from unimem.graph.match_persistence import Match, MatchPersister

        persister = MatchPersister(store)
        await persister.persist([Match(ISSUE, FEEDBACK, 0.67)])
        await persister.persist([Match(ISSUE, FEEDBACK, 0.72)])

        feedback = await store.get_object(FEEDBACK)
        assert feedback.relations["validated_by"] == [ISSUE]
        assert feedback.relations["match_confidence"] == 0.72

    @pytest.mark.asyncio
    async def test_existing_string_value_is_unioned(self, store):
        from unimem.graph.match_persistence import Match, MatchPersister

        await store.merge_relation(FEEDBACK, "validated_by", "linear|acme|issue|ENG-0")
        await MatchPersister(store).persist([Match(ISSUE, FEEDBACK, 0.5)])

        feedback = await store.get_object(FEEDBACK)
        assert feedback.relations["validated_by"] == ["linear|acme|issue|ENG-0", ISSUE]

    @pytest.mark.asyncio
    async def test_failures_counted_not_raised(self, store):
        from unimem.graph.match_persistence import Match, MatchPersister

        matches = [
            Match(ISSUE, "notion|acme|feedback|MISSING", 0.9),
            Match(ISSUE, FEEDBACK, 0.8),
        ]

        result = await MatchPersister(store).persist(matches)

        assert result.persisted == 1
        assert result.failed == 1
        assert result.attempted == 2
        feedback = await store.get_object(FEEDBACK)
        assert feedback.relations["validated_by"] == [ISSUE]

    @pytest.mark.asyncio
    async def test_store_errors_counted(self):
        from unimem.common.object_store import StoreError
        from unimem.graph.match_persistence import Match, MatchPersister

        store = AsyncMock()
        store.merge_relation.side_effect = [StoreError("timeout"), None]

        result = await MatchPersister(store, relation_name="related_to").persist([
            Match("a", "b", 0.5), Match("a", "c", 0.6),
        ])

        assert (result.persisted, result.failed) == (1, 1)
        store.merge_relation.assert_awaited_with("c", "related_to", "a", confidence=0.6)
