"""
Unimem

Unified memory over collaboration tools: canonical objects from issue
trackers, chat and documents, searched by chunk embeddings and connected
by a graph of explicit and inferred relations.

Philosophy:
- Relations are derived data, recomputed on demand
- Explicit structure beats similarity when both describe the same edge
- Every inference stage is scored independently against ground truth

Usage:
    from unimem.common import load_config, EmbeddingService, InMemoryObjectStore
    from unimem.common.schemas import CanonicalObject, Relation
    from unimem.graph import KeywordExtractor, RelationInferrer, Consolidator
    from unimem.retriever import Retriever, TemporalProcessor
    from unimem.evaluation import Evaluator, EvaluationRunner
"""

__version__ = "0.1.0"
