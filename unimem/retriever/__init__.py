"""
Unimem Retriever Module

Query-time retrieval: vector search over chunks, relation inference
among the matched objects, graph expansion and recency reranking.
"""

from .retriever import Retriever, RetrievalResult, RetrievalStats, RelatedObjects, RetrievalError
from .temporal import (
    TemporalProcessor,
    linear_decay,
    exponential_decay,
    step_decay,
    get_decay_function,
)

__all__ = [
    "Retriever",
    "RetrievalResult",
    "RetrievalStats",
    "RelatedObjects",
    "RetrievalError",
    "TemporalProcessor",
    "linear_decay",
    "exponential_decay",
    "step_decay",
    "get_decay_function",
]
