"""
Keyword Extractor

Pulls a normalized keyword set out of free text: terms from a curated
domain vocabulary plus issue-key identifiers (ENG-123, MOMO-42).
"""

import re
from typing import Iterable, Optional, Set

from ..common.schemas import CanonicalObject

DEFAULT_VOCABULARY = (
    "gmail",
    "slack",
    "discord",
    "email",
    "cc",
    "bcc",
    "inbox",
    "filter",
    "notification",
    "sync",
    "oauth",
    "auth",
    "ui",
    "bug",
    "feature",
    "todo",
    "task",
)

IDENTIFIER_PATTERN = re.compile(r"\b[A-Z][A-Z0-9]{1,9}-\d+\b", re.IGNORECASE)


class KeywordExtractor:
    """
    Deterministic keyword extraction.

    Vocabulary terms match on word boundaries, so "ui" does not fire
    inside "build" and "cc" does not fire inside "access".
    """

    def __init__(self, vocabulary: Optional[Iterable[str]] = None):
        terms = vocabulary if vocabulary is not None else DEFAULT_VOCABULARY
        self._vocabulary = sorted({t.lower() for t in terms if t})
        self._patterns = {
            term: re.compile(rf"\b{re.escape(term)}\b") for term in self._vocabulary
        }

    @property
    def vocabulary(self) -> Set[str]:
        return set(self._vocabulary)

    def extract(self, title: Optional[str] = None, body: Optional[str] = None) -> Set[str]:
        """Vocabulary hits plus identifier tokens, all lowercase"""
        raw = f"{title or ''} {body or ''}".strip()
        if not raw:
            return set()

        text = raw.lower()
        keywords = {term for term, pattern in self._patterns.items() if pattern.search(text)}

        keywords.update(IDENTIFIER_PATTERN.findall(text))
        return keywords

    def keywords_for(self, obj: CanonicalObject) -> Set[str]:
        """Tag keywords (properties.keywords/labels) plus extracted text keywords"""
        keywords = {k.strip().lower() for k in obj.keywords if k and k.strip()}
        keywords.update(self.extract(obj.title, obj.body))
        return keywords
