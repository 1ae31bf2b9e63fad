"""
Tests for KeywordExtractor
"""

import pytest
from datetime import datetime, timezone


class TestKeywordExtractor:
    @pytest.fixture
    def extractor(self):
        from unimem.graph.keywords import KeywordExtractor
        return KeywordExtractor()

    def test_empty_input(self, extractor):
        assert extractor.extract() == set()
        assert extractor.extract("", "") == set()
        assert extractor.extract(None, None) == set()

    def test_vocabulary_terms(self, extractor):
        result = extractor.extract("Gmail sync broken", "OAuth token expires in the inbox view")
        assert result == {"gmail", "sync", "oauth", "inbox"}

    def test_word_boundaries(self, extractor):
        # "ui" inside "build", "cc" inside "access", "auth" inside "author"
        result = extractor.extract("Build access for author", "")
        assert result == set()

    def test_identifier_tokens(self, extractor):
        result = extractor.extract("Fix for ENG-123", "see also MOMO-42 and eng-7")
        assert {"eng-123", "momo-42", "eng-7"} <= result

    def test_lowercase_identifier_only(self, extractor):
        assert extractor.extract("fix ten-42", "") == {"ten-42"}

    def test_identifier_shape(self, extractor):
        # prefix must be 2-10 chars starting with a letter
        assert extractor.extract("x-1 1ab-2 abcdefghijk-3", "") == set()

    def test_result_is_lowercase(self, extractor):
        result = extractor.extract("SLACK Notification", "BUG in UI")
        assert result == {"slack", "notification", "bug", "ui"}

    def test_custom_vocabulary(self):
        from unimem.graph.keywords import KeywordExtractor

        extractor = KeywordExtractor(vocabulary=["Billing", "invoice"])
        assert extractor.vocabulary == {"billing", "invoice"}
        assert extractor.extract("Invoice billing issue with gmail") == {"billing", "invoice"}

    def test_keywords_for_merges_tags(self, extractor):
        from unimem.common.schemas import CanonicalObject, Timestamps

        obj = CanonicalObject(
            id="linear|acme|issue|ENG-1",
            platform="linear",
            object_type="issue",
            title="Gmail filter bug",
            body=None,
            timestamps=Timestamps(created_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
            properties={"keywords": ["Email"], "labels": ["Feature", " "]},
        )

        assert extractor.keywords_for(obj) == {"email", "feature", "gmail", "filter", "bug"}
