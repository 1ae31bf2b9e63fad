"""
Tests for RelationInferrer

Explicit extraction, keyword and embedding similarity, duplicate
detection and dedup precedence.
"""

import pytest
from datetime import datetime, timedelta, timezone

BASE_TIME = datetime(2024, 3, 1, tzinfo=timezone.utc)


def make_object(local_id, keywords=None, title=None, body=None, platform="linear",
                object_type="issue", actors=None, relations=None, days=0, content_hash=None):
    from unimem.common.schemas import CanonicalObject, Timestamps

    return CanonicalObject(
        id=f"{platform}|acme|{object_type}|{local_id}",
        platform=platform,
        object_type=object_type,
        title=title,
        body=body,
        actors=actors or {},
        timestamps=Timestamps(created_at=BASE_TIME + timedelta(days=days)),
        relations=relations or {},
        properties={"keywords": keywords or []},
        content_hash=content_hash,
    )


def make_inferrer(**overrides):
    from unimem.common.config import InferenceConfig
    from unimem.graph.relation_inferrer import RelationInferrer

    return RelationInferrer(InferenceConfig(**overrides))


def keys(relations):
    return {(r.from_id, r.to_id, r.type) for r in relations}


class TestKeywordSimilarity:
    def test_scenario_jaccard_half_emitted(self):
        x = make_object("X", ["gmail", "sync", "oauth"])
        y = make_object("Y", ["gmail", "oauth", "ui"])
        inferrer = make_inferrer(keyword_overlap_threshold=0.3)

        relations = inferrer.infer_similarity([x, y])

        assert keys(relations) == {(x.id, y.id, "similar_to"), (y.id, x.id, "similar_to")}
        for rel in relations:
            assert rel.confidence == 0.5
            assert rel.source.value == "inferred"
            assert rel.metadata["shared_keywords"] == ["gmail", "oauth"]
            assert rel.metadata["method"] == "keyword"

    def test_scenario_jaccard_half_below_threshold(self):
        x = make_object("X", ["gmail", "sync", "oauth"])
        y = make_object("Y", ["gmail", "oauth", "ui"])
        inferrer = make_inferrer(keyword_overlap_threshold=0.6)

        assert inferrer.infer_similarity([x, y]) == []

    def test_threshold_is_inclusive(self):
        x = make_object("X", ["gmail", "sync"])
        y = make_object("Y", ["gmail", "oauth"])
        inferrer = make_inferrer(keyword_overlap_threshold=1 / 3)

        assert len(inferrer.infer_similarity([x, y])) == 2

    def test_keyword_score_is_symmetric(self):
        objects = [
            make_object("A", ["gmail", "sync"]),
            make_object("B", ["sync", "oauth", "ui"]),
            make_object("C", []),
            make_object("D", ["bug"], title="ENG-5 crashes on sync"),
        ]
        inferrer = make_inferrer()

        for a in objects:
            for b in objects:
                assert inferrer.keyword_score(a, b).score == inferrer.keyword_score(b, a).score

    def test_empty_keywords_score_zero(self):
        inferrer = make_inferrer(keyword_overlap_threshold=0.0)
        a = make_object("A", [])
        b = make_object("B", ["gmail"])

        assert inferrer.keyword_score(a, b).score == 0.0

    def test_self_pairs_and_repeated_ids_excluded(self):
        x = make_object("X", ["gmail"])
        inferrer = make_inferrer(keyword_overlap_threshold=0.0)

        assert inferrer.infer_similarity([x, x, x]) == []


class TestEmbeddingSimilarity:
    def test_hybrid_score(self):
        # keyword: {gmail, sync} vs {gmail, oauth} -> 1/3; cosine of identical vectors -> 1
        a = make_object("A", ["gmail", "sync"])
        b = make_object("B", ["gmail", "oauth"])
        inferrer = make_inferrer(use_semantic_similarity=True, semantic_weight=0.7, similarity_threshold=0.5)

        relations = inferrer.infer_similarity_with_embeddings(
            [a, b], {a.id: [[1.0, 0.0]], b.id: [[1.0, 0.0]]}
        )

        assert len(relations) == 2
        rel = relations[0]
        assert rel.source.value == "computed"
        assert rel.confidence == round(0.7 * 1.0 + 0.3 * (1 / 3), 2)
        assert rel.metadata["method"] == "hybrid"
        assert rel.metadata["semantic_similarity"] == 1.0

    def test_chunk_vectors_are_averaged(self):
        a = make_object("A")
        b = make_object("B")
        inferrer = make_inferrer(use_semantic_similarity=True, semantic_weight=1.0, similarity_threshold=0.99)

        # average of A's chunks is (0.5, 0.5), parallel to B
        relations = inferrer.infer_similarity_with_embeddings(
            [a, b], {a.id: [[1.0, 0.0], [0.0, 1.0]], b.id: [2.0, 2.0]}
        )

        assert len(relations) == 2
        assert relations[0].metadata["method"] == "semantic"

    def test_missing_vectors_fall_back_to_keywords(self):
        a = make_object("A", ["gmail", "sync"])
        b = make_object("B", ["gmail", "sync"])
        inferrer = make_inferrer(use_semantic_similarity=True, similarity_threshold=0.9)

        relations = inferrer.infer_similarity_with_embeddings([a, b], {a.id: [], b.id: [[1.0, 0.0]]})

        assert len(relations) == 2
        assert relations[0].source.value == "inferred"
        assert relations[0].metadata["method"] == "keyword"
        assert "semantic_similarity" not in relations[0].metadata

    def test_dimension_mismatch_falls_back_to_keywords(self):
        a = make_object("A", ["gmail"])
        b = make_object("B", ["gmail"])
        inferrer = make_inferrer(use_semantic_similarity=True, similarity_threshold=0.9)

        relations = inferrer.infer_similarity_with_embeddings(
            [a, b], {a.id: [[1.0, 0.0]], b.id: [[1.0, 0.0, 0.0]]}
        )

        assert relations[0].source.value == "inferred"

    def test_semantic_disabled_uses_keywords(self):
        a = make_object("A", ["gmail", "sync"])
        b = make_object("B", ["oauth"])
        inferrer = make_inferrer(use_semantic_similarity=False, similarity_threshold=0.5)

        relations = inferrer.infer_similarity_with_embeddings(
            [a, b], {a.id: [[1.0, 0.0]], b.id: [[1.0, 0.0]]}
        )

        assert relations == []

    def test_weight_zero_keeps_semantic_component(self):
        a = make_object("A", ["gmail", "sync"])
        b = make_object("B", ["gmail", "sync"])
        inferrer = make_inferrer(use_semantic_similarity=True, semantic_weight=0.0, similarity_threshold=0.9)

        relations = inferrer.infer_similarity_with_embeddings(
            [a, b], {a.id: [[1.0, 0.0]], b.id: [[0.0, 1.0]]}
        )

        assert len(relations) == 2
        assert relations[0].source.value == "inferred"
        assert relations[0].metadata["method"] == "keyword"
        assert relations[0].metadata["semantic_similarity"] == 0.0

    def test_zero_vectors_fall_back_to_keywords(self):
        a = make_object("A", ["gmail", "sync"])
        b = make_object("B", ["gmail", "sync"])
        inferrer = make_inferrer(use_semantic_similarity=True, semantic_weight=0.7, similarity_threshold=0.9)

        # a zero vector would otherwise pull the blend to 0.3
        relations = inferrer.infer_similarity_with_embeddings(
            [a, b], {a.id: [[0.0, 0.0], [0.0, 0.0]], b.id: [[1.0, 0.0]]}
        )

        assert len(relations) == 2
        assert relations[0].source.value == "inferred"
        assert relations[0].confidence == 1.0
        assert "semantic_similarity" not in relations[0].metadata

    def test_invalid_semantic_weight_rejected(self):
        with pytest.raises(ValueError):
            make_inferrer(semantic_weight=1.5)


class TestSimilarityScore:
    def test_weight_one_is_semantic(self):
        from unimem.graph.relation_inferrer import ScoreMethod, SimilarityScore

        score = SimilarityScore.combine(semantic=0.8, keyword=0.2, weight=1.0)
        assert score.score == 0.8
        assert score.method == ScoreMethod.SEMANTIC

    def test_weight_zero_is_keyword(self):
        from unimem.graph.relation_inferrer import ScoreMethod, SimilarityScore

        score = SimilarityScore.combine(semantic=0.8, keyword=0.2, weight=0.0)
        assert score.score == 0.2
        assert score.method == ScoreMethod.KEYWORD
        assert not score.has_semantic
        assert score.semantic == 0.8

    @pytest.mark.parametrize("weight", [0.1, 0.3, 0.5, 0.7, 0.9])
    def test_hybrid_between_components(self, weight):
        from unimem.graph.relation_inferrer import ScoreMethod, SimilarityScore

        for semantic, keyword in [(0.9, 0.1), (0.2, 0.6), (0.5, 0.5), (1.0, 0.0)]:
            score = SimilarityScore.combine(semantic=semantic, keyword=keyword, weight=weight)
            assert min(semantic, keyword) <= score.score <= max(semantic, keyword)
            assert score.method == ScoreMethod.HYBRID

    def test_with_structure_four_signals(self):
        from unimem.graph.relation_inferrer import SimilarityScore

        score = SimilarityScore.from_keywords(0.5).with_structure(
            project=1.0, schema=0.5, project_weight=0.3, schema_weight=0.2
        )

        # 0.5 * 0.5 + 0.3 * 1.0 + 0.2 * 0.5
        assert score.score == pytest.approx(0.65)
        assert score.project == 1.0
        assert score.schema == 0.5

    def test_with_structure_keeps_text_method(self):
        from unimem.graph.relation_inferrer import ScoreMethod, SimilarityScore

        text = SimilarityScore.combine(semantic=1.0, keyword=0.0, weight=0.5)
        score = text.with_structure(project=0.0, project_weight=0.3)

        assert score.score == pytest.approx(0.35)
        assert score.method == ScoreMethod.HYBRID
        assert score.schema is None

    def test_with_structure_without_signals_is_unchanged(self):
        from unimem.graph.relation_inferrer import SimilarityScore

        score = SimilarityScore.from_keywords(0.4)
        assert score.with_structure(project_weight=0.3, schema_weight=0.2) is score


class TestStructureSignals:
    def test_project_similarity(self):
        from unimem.graph.relation_inferrer import project_similarity

        a = make_object("A", relations={"project_id": "auth-revamp"})
        b = make_object("B", relations={"project_id": "Auth-Revamp"})
        c = make_object("C", relations={"project_id": "billing"})
        d = make_object("D")

        assert project_similarity(a, b) == 1.0
        assert project_similarity(a, c) == 0.0
        assert project_similarity(a, d) == 0.0
        assert project_similarity(d, d) == 0.0

    def test_schema_shared_assignee(self):
        from unimem.graph.relation_inferrer import schema_similarity

        a = make_object("A", actors={"assignees": ["bob", "dana"]})
        b = make_object("B", actors={"assignee": "bob"})

        assert schema_similarity(a, b) == 1.0

    def test_schema_averages_available_signals(self):
        from unimem.graph.relation_inferrer import schema_similarity

        # assignee match (1.0) and creator mismatch (0.0)
        a = make_object("A", actors={"assignees": ["bob"], "created_by": "alice"})
        b = make_object("B", actors={"assignees": ["bob"], "created_by": "carol"})

        assert schema_similarity(a, b) == pytest.approx(0.5)

    def test_schema_participant_overlap(self):
        from unimem.graph.relation_inferrer import schema_similarity

        a = make_object("A", actors={"participants": ["x", "y"]})
        b = make_object("B", actors={"participants": ["y", "z", "w"]})

        # 0.5 * 1 shared / 2 in the smaller set
        assert schema_similarity(a, b) == pytest.approx(0.25)

    def test_schema_links_and_parents(self):
        from unimem.graph.relation_inferrer import schema_similarity

        parent = make_object("P")
        linked = make_object("L")
        child = make_object("C", relations={"parent_id": parent.id})
        sibling = make_object("S", relations={"parent_id": parent.id})
        linker = make_object("K", relations={"linked_prs": [linked.id]})

        assert schema_similarity(linked, linker) == 1.0
        assert schema_similarity(parent, child) == 1.0
        assert schema_similarity(child, sibling) == pytest.approx(0.8)

    def test_schema_without_signals(self):
        from unimem.graph.relation_inferrer import schema_similarity

        a = make_object("A", actors={"created_by": "alice"})
        b = make_object("B")

        assert schema_similarity(a, b) == 0.0

    def test_project_signal_lifts_keyword_pair(self):
        a = make_object("A", ["gmail", "sync"], relations={"project_id": "p1"})
        b = make_object("B", ["gmail", "oauth"], relations={"project_id": "p1"})

        plain = make_inferrer(keyword_overlap_threshold=0.5)
        with_project = make_inferrer(keyword_overlap_threshold=0.5, use_project_metadata=True, project_weight=0.3)

        assert plain.infer_similarity([a, b]) == []
        relations = with_project.infer_similarity([a, b])
        assert len(relations) == 2
        # 0.7 * 1/3 + 0.3
        assert relations[0].metadata["combined_similarity"] == pytest.approx(0.5333, abs=1e-4)
        assert relations[0].metadata["project_similarity"] == 1.0
        assert relations[0].source.value == "inferred"

    def test_four_signal_fusion_with_embeddings(self):
        a = make_object("A", ["gmail", "sync"], actors={"assignees": ["bob"]}, relations={"project_id": "p1"})
        b = make_object("B", ["gmail", "oauth"], actors={"assignees": ["bob"]}, relations={"project_id": "p1"})
        inferrer = make_inferrer(
            use_semantic_similarity=True,
            semantic_weight=0.7,
            similarity_threshold=0.85,
            use_project_metadata=True,
            project_weight=0.3,
            use_schema_signal=True,
            schema_weight=0.2,
        )

        relations = inferrer.infer_similarity_with_embeddings(
            [a, b], {a.id: [[1.0, 0.0]], b.id: [[1.0, 0.0]]}
        )

        assert len(relations) == 2
        rel = relations[0]
        # 0.5 * (0.7 * 1.0 + 0.3 * 1/3) + 0.3 * 1.0 + 0.2 * 1.0
        assert rel.metadata["combined_similarity"] == pytest.approx(0.9)
        assert rel.metadata["schema_similarity"] == 1.0
        assert rel.source.value == "computed"

    def test_weights_validated(self):
        with pytest.raises(ValueError):
            make_inferrer(project_weight=1.5)
        with pytest.raises(ValueError):
            make_inferrer(use_project_metadata=True, project_weight=0.6,
                          use_schema_signal=True, schema_weight=0.6)

        # only enabled signals count toward the total
        make_inferrer(use_project_metadata=True, project_weight=0.6, schema_weight=0.6)


class TestDocumentThreshold:
    @pytest.fixture
    def objects(self):
        return [
            make_object("A", ["gmail", "sync"], relations={"project_id": "p1"}),
            make_object("B", ["gmail", "sync"], relations={"project_id": "p2"}),
            make_object("C", ["oauth", "ui"], relations={"project_id": "p1"}),
            make_object("D", ["oauth", "ui", "bug"], relations={"project_id": "p3"}),
            make_object("G", ["oauth", "ui", "bug", "todo"], relations={"project_id": "p3"}),
        ]

    def test_weak_project_pairs_filtered(self, objects):
        a, b, c, d, g = objects
        inferrer = make_inferrer(keyword_overlap_threshold=0.5, use_document_threshold=True,
                                 document_threshold=0.8)

        relations = inferrer.infer_similarity(objects)

        # p1|p3 averages 0.58 and is dropped; p3 alone scores 0.75 but is one project
        assert keys(relations) == {
            (a.id, b.id, "similar_to"), (b.id, a.id, "similar_to"),
            (d.id, g.id, "similar_to"), (g.id, d.id, "similar_to"),
        }

    def test_disabled_keeps_everything(self, objects):
        inferrer = make_inferrer(keyword_overlap_threshold=0.5, document_threshold=0.8)

        assert len(inferrer.infer_similarity(objects)) == 8

    def test_min_chunk_matches(self):
        a = make_object("A", ["gmail", "sync"], relations={"project_id": "p1"})
        b = make_object("B", ["gmail", "sync"], relations={"project_id": "p2"})

        strict = make_inferrer(keyword_overlap_threshold=0.5, use_document_threshold=True,
                               document_threshold=0.0, min_chunk_matches=3)
        loose = make_inferrer(keyword_overlap_threshold=0.5, use_document_threshold=True,
                              document_threshold=0.0, min_chunk_matches=2)

        assert strict.infer_similarity([a, b]) == []
        assert len(loose.infer_similarity([a, b])) == 2

    def test_objects_without_project_group_alone(self):
        a = make_object("A", ["gmail", "sync"])
        b = make_object("B", ["gmail", "oauth", "sync", "ui"])
        inferrer = make_inferrer(keyword_overlap_threshold=0.5, use_document_threshold=True,
                                 document_threshold=0.8)

        assert inferrer.infer_similarity([a, b]) == []

    def test_applies_to_embedding_similarity(self):
        a = make_object("A", relations={"project_id": "p1"})
        b = make_object("B", relations={"project_id": "p2"})
        inferrer = make_inferrer(use_semantic_similarity=True, semantic_weight=1.0, similarity_threshold=0.9,
                                 use_document_threshold=True, min_chunk_matches=3)

        relations = inferrer.infer_similarity_with_embeddings(
            [a, b], {a.id: [[1.0, 0.0]], b.id: [[1.0, 0.0]]}
        )

        assert relations == []


class TestExplicitExtraction:
    def test_actor_relations(self):
        obj = make_object(
            "ENG-1",
            actors={
                "created_by": "alice",
                "updated_by": "bob",
                "assignees": ["carol"],
                "assignee": "dave",
                "participants": ["erin"],
                "decided_by": "frank",
            },
        )

        relations = make_inferrer().extract_explicit([obj])

        assert keys(relations) == {
            (obj.id, "alice", "created_by"),
            (obj.id, "bob", "updated_by"),
            (obj.id, "carol", "assigned_to"),
            (obj.id, "dave", "assigned_to"),
            ("erin", obj.id, "participated_in"),
            ("frank", obj.id, "decided_by"),
        }
        assert all(r.confidence == 1.0 and r.source.value == "explicit" for r in relations)
        assert all(r.created_at == obj.timestamps.created_at for r in relations)

    def test_relation_map_entries(self):
        obj = make_object(
            "T1",
            relations={
                "triggered_by_ticket": "zendesk|acme|ticket|9",
                "resulted_in_issue": "linear|acme|issue|ENG-2",
                "linked_prs": ["github|acme|pr|1", "github|acme|pr|2"],
                "parent_id": "linear|acme|issue|ENG-0",
                "validated_by": ["linear|acme|issue|ENG-3"],
                "match_confidence": 0.82,
                "project_id": "proj-1",
            },
        )

        relations = make_inferrer().extract_explicit([obj])

        assert keys(relations) == {
            (obj.id, "zendesk|acme|ticket|9", "triggered_by"),
            (obj.id, "linear|acme|issue|ENG-2", "resulted_in"),
            (obj.id, "github|acme|pr|1", "related_to"),
            (obj.id, "github|acme|pr|2", "related_to"),
            (obj.id, "linear|acme|issue|ENG-0", "belongs_to"),
            (obj.id, "linear|acme|issue|ENG-3", "validated_by"),
        }

    def test_project_related_pairs(self):
        a = make_object("A", relations={"project_id": "p1"})
        b = make_object("B", relations={"project_id": "p1"})
        c = make_object("C", relations={"project_id": "p1"})
        d = make_object("D", relations={"project_id": "p2"})

        relations = make_inferrer().extract_explicit([a, b, c, d])

        assert keys(relations) == {
            (a.id, b.id, "project_related"),
            (a.id, c.id, "project_related"),
            (b.id, c.id, "project_related"),
        }


class TestInferAll:
    def test_explicit_wins_over_similarity(self):
        a = make_object("A", ["gmail", "sync"], relations={"similar_to": "linear|acme|issue|B"})
        b = make_object("B", ["gmail", "sync"])
        inferrer = make_inferrer(keyword_overlap_threshold=0.5)

        relations = inferrer.infer_all([a, b])

        forward = [r for r in relations if (r.from_id, r.to_id, r.type) == (a.id, b.id, "similar_to")]
        assert len(forward) == 1
        assert forward[0].source.value == "explicit"
        backward = [r for r in relations if (r.from_id, r.to_id, r.type) == (b.id, a.id, "similar_to")]
        assert backward[0].source.value == "inferred"

    def test_include_inferred_off(self):
        a = make_object("A", ["gmail"], actors={"created_by": "alice"})
        b = make_object("B", ["gmail"])
        inferrer = make_inferrer(include_inferred=False, keyword_overlap_threshold=0.1)

        relations = inferrer.infer_all([a, b])

        assert keys(relations) == {(a.id, "alice", "created_by")}

    def test_duplicate_detection(self):
        a = make_object("A", content_hash="h1")
        b = make_object("B", content_hash="h1")
        c = make_object("C", content_hash="h2")

        relations = make_inferrer(include_inferred=False).infer_all([a, b, c])

        assert keys(relations) == {(b.id, a.id, "duplicate_of")}
        assert relations[0].source.value == "computed"

    def test_duplicate_detection_disabled(self):
        a = make_object("A", content_hash="h1")
        b = make_object("B", content_hash="h1")

        relations = make_inferrer(include_inferred=False, enable_duplicate_detection=False).infer_all([a, b])

        assert relations == []

    def test_with_embeddings_combines_stages(self):
        a = make_object("A", actors={"created_by": "alice"})
        b = make_object("B")
        inferrer = make_inferrer(use_semantic_similarity=True, semantic_weight=1.0, similarity_threshold=0.9)

        relations = inferrer.infer_all_with_embeddings(
            [a, b], {a.id: [[0.0, 1.0]], b.id: [[0.0, 1.0]]}
        )

        assert keys(relations) == {
            (a.id, "alice", "created_by"),
            (a.id, b.id, "similar_to"),
            (b.id, a.id, "similar_to"),
        }


class TestRelationHelpers:
    def test_dedup_keeps_higher_confidence(self):
        from unimem.common.schemas import Relation
        from unimem.graph.relation_inferrer import deduplicate_relations

        low = Relation(from_id="a", to_id="b", type="similar_to", source="inferred", confidence=0.4)
        high = Relation(from_id="a", to_id="b", type="similar_to", source="computed", confidence=0.9)

        assert deduplicate_relations([low, high]) == [high]
        assert deduplicate_relations([high, low]) == [high]

    def test_relations_for_and_by_type(self):
        from unimem.common.schemas import Relation
        from unimem.graph.relation_inferrer import relations_by_type, relations_for

        r1 = Relation(from_id="a", to_id="b", type="created_by", source="explicit")
        r2 = Relation(from_id="c", to_id="a", type="similar_to", source="inferred", confidence=0.5)

        assert relations_for([r1, r2], "a", "outgoing") == [r1]
        assert relations_for([r1, r2], "a", "incoming") == [r2]
        assert relations_for([r1, r2], "a") == [r1, r2]
        assert relations_by_type([r1, r2], "similar_to") == [r2]
        with pytest.raises(ValueError):
            relations_for([r1], "a", "sideways")

    def test_get_stats(self):
        from unimem.common.schemas import Relation
        from unimem.graph.relation_inferrer import get_stats

        stats = get_stats([
            Relation(from_id="a", to_id="b", type="created_by", source="explicit", confidence=1.0),
            Relation(from_id="a", to_id="c", type="similar_to", source="inferred", confidence=0.5),
        ])

        assert stats.total == 2
        assert stats.by_type == {"created_by": 1, "similar_to": 1}
        assert stats.by_source == {"explicit": 1, "inferred": 1}
        assert stats.avg_confidence == 0.75
        assert get_stats([]).total == 0
