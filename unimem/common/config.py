"""
Configuration Management for Unimem

Loads configuration from ~/.unimem/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

logger = logging.getLogger("unimem.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".unimem"
CONFIG_PATH = CONFIG_DIR / "config.json"
LOGS_DIR = CONFIG_DIR / "logs"


@dataclass
class StoreConfig:
    """Object/chunk store configuration"""
    backend: str = "memory"  # "memory" or "postgres"
    host: str = "localhost"
    port: int = 5434
    database: str = "unified_memory"
    user: str = "unified_memory"
    password: str = ""
    min_size: int = 2
    max_size: int = 10

    def to_asyncpg_kwargs(self) -> dict:
        """Convert to asyncpg.create_pool kwargs."""
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": self.database,
            "min_size": self.min_size,
            "max_size": self.max_size,
        }


@dataclass
class EmbeddingConfig:
    """Embedding provider configuration"""
    mode: str = "femb"  # fastembed (on-device) or "openai"
    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    openai_api_key: str = ""
    dimensions: int = 0  # 0 = model default
    batch_size: int = 100


@dataclass
class InferenceConfig:
    """Relation inference configuration"""
    similarity_threshold: float = 0.85
    keyword_overlap_threshold: float = 0.65
    use_semantic_similarity: bool = False
    semantic_weight: float = 0.7  # 0 = keywords only, 1 = semantic only
    include_inferred: bool = True
    enable_duplicate_detection: bool = True
    # Structural signals folded into the similarity score
    use_project_metadata: bool = False
    project_weight: float = 0.3
    use_schema_signal: bool = False
    schema_weight: float = 0.2
    # Cross-project similarity must hold up per project pair
    use_document_threshold: bool = False
    document_threshold: float = 0.25
    min_chunk_matches: int = 1


@dataclass
class RetrieverConfig:
    """Retriever configuration"""
    similarity_threshold: float = 0.35
    chunk_limit: int = 20
    include_relations: bool = True
    relation_depth: int = 1


@dataclass
class TemporalConfig:
    """Recency reranking configuration"""
    max_age_days: float = 30.0
    recency_boost: float = 0.1
    decay: str = "linear"  # "linear", "exponential" or "step"


@dataclass
class EvaluationConfig:
    """Offline evaluation configuration"""
    scenario: str = "normal"
    persist_metrics: bool = False
    embeddings_per_object: int = 5


@dataclass
class UnimemConfig:
    """Main Unimem configuration"""
    store: StoreConfig = field(default_factory=StoreConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    retriever: RetrieverConfig = field(default_factory=RetrieverConfig)
    temporal: TemporalConfig = field(default_factory=TemporalConfig)
    evaluation: EvaluationConfig = field(default_factory=EvaluationConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_store_config(data: dict) -> StoreConfig:
    """Parse store section from config dict"""
    store_data = data.get("store", {})
    return StoreConfig(
        backend=store_data.get("backend", "memory"),
        host=store_data.get("host", "localhost"),
        port=store_data.get("port", 5434),
        database=store_data.get("database", "unified_memory"),
        user=store_data.get("user", "unified_memory"),
        password=store_data.get("password", ""),
        min_size=store_data.get("min_size", 2),
        max_size=store_data.get("max_size", 10),
    )


def _parse_embedding_config(data: dict) -> EmbeddingConfig:
    """Parse embedding section from config dict"""
    embedding_data = data.get("embedding", {})
    return EmbeddingConfig(
        mode=embedding_data.get("mode", "femb"),
        model=embedding_data.get("model", "sentence-transformers/all-MiniLM-L6-v2"),
        openai_api_key=embedding_data.get("openai_api_key", ""),
        dimensions=embedding_data.get("dimensions", 0),
        batch_size=embedding_data.get("batch_size", 100),
    )


def _parse_inference_config(data: dict) -> InferenceConfig:
    """Parse inference section from config dict"""
    inference_data = data.get("inference", {})
    return InferenceConfig(
        similarity_threshold=inference_data.get("similarity_threshold", 0.85),
        keyword_overlap_threshold=inference_data.get("keyword_overlap_threshold", 0.65),
        use_semantic_similarity=inference_data.get("use_semantic_similarity", False),
        semantic_weight=inference_data.get("semantic_weight", 0.7),
        include_inferred=inference_data.get("include_inferred", True),
        enable_duplicate_detection=inference_data.get("enable_duplicate_detection", True),
        use_project_metadata=inference_data.get("use_project_metadata", False),
        project_weight=inference_data.get("project_weight", 0.3),
        use_schema_signal=inference_data.get("use_schema_signal", False),
        schema_weight=inference_data.get("schema_weight", 0.2),
        use_document_threshold=inference_data.get("use_document_threshold", False),
        document_threshold=inference_data.get("document_threshold", 0.25),
        min_chunk_matches=inference_data.get("min_chunk_matches", 1),
    )


def _parse_retriever_config(data: dict) -> RetrieverConfig:
    """Parse retriever section from config dict"""
    retriever_data = data.get("retriever", {})
    return RetrieverConfig(
        similarity_threshold=retriever_data.get("similarity_threshold", 0.35),
        chunk_limit=retriever_data.get("chunk_limit", 20),
        include_relations=retriever_data.get("include_relations", True),
        relation_depth=retriever_data.get("relation_depth", 1),
    )


def _parse_temporal_config(data: dict) -> TemporalConfig:
    """Parse temporal section from config dict"""
    temporal_data = data.get("temporal", {})
    return TemporalConfig(
        max_age_days=temporal_data.get("max_age_days", 30.0),
        recency_boost=temporal_data.get("recency_boost", 0.1),
        decay=temporal_data.get("decay", "linear"),
    )


def _parse_evaluation_config(data: dict) -> EvaluationConfig:
    """Parse evaluation section from config dict"""
    evaluation_data = data.get("evaluation", {})
    return EvaluationConfig(
        scenario=evaluation_data.get("scenario", "normal"),
        persist_metrics=evaluation_data.get("persist_metrics", False),
        embeddings_per_object=evaluation_data.get("embeddings_per_object", 5),
    )


def _env_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def load_config() -> UnimemConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.unimem/config.json)
    3. Default values
    """
    config = UnimemConfig()

    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.store = _parse_store_config(data)
            config.embedding = _parse_embedding_config(data)
            config.inference = _parse_inference_config(data)
            config.retriever = _parse_retriever_config(data)
            config.temporal = _parse_temporal_config(data)
            config.evaluation = _parse_evaluation_config(data)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file %s: %s", CONFIG_PATH, e)

    # Store overrides (same variable names as the ingestion services)
    if os.getenv("UNIMEM_STORE_BACKEND"):
        config.store.backend = os.getenv("UNIMEM_STORE_BACKEND")
    if os.getenv("POSTGRES_HOST"):
        config.store.host = os.getenv("POSTGRES_HOST")
    if os.getenv("POSTGRES_PORT"):
        config.store.port = int(os.getenv("POSTGRES_PORT"))
    if os.getenv("POSTGRES_DB"):
        config.store.database = os.getenv("POSTGRES_DB")
    if os.getenv("POSTGRES_USER"):
        config.store.user = os.getenv("POSTGRES_USER")
    if os.getenv("POSTGRES_PASSWORD"):
        config.store.password = os.getenv("POSTGRES_PASSWORD")
        config._env_sourced_keys.add("password")
    if os.getenv("POSTGRES_MAX_CONNECTIONS"):
        config.store.max_size = int(os.getenv("POSTGRES_MAX_CONNECTIONS"))

    if os.getenv("EMBEDDING_MODE"):
        config.embedding.mode = os.getenv("EMBEDDING_MODE")
    if os.getenv("EMBEDDING_MODEL"):
        config.embedding.model = os.getenv("EMBEDDING_MODEL")
    if os.getenv("VECTOR_DIMENSIONS"):
        config.embedding.dimensions = int(os.getenv("VECTOR_DIMENSIONS"))
    if os.getenv("OPENAI_API_KEY"):
        config.embedding.openai_api_key = os.getenv("OPENAI_API_KEY")
        config._env_sourced_keys.add("openai_api_key")

    if os.getenv("UNIMEM_SIMILARITY_THRESHOLD"):
        config.inference.similarity_threshold = float(os.getenv("UNIMEM_SIMILARITY_THRESHOLD"))
    if os.getenv("UNIMEM_KEYWORD_THRESHOLD"):
        config.inference.keyword_overlap_threshold = float(os.getenv("UNIMEM_KEYWORD_THRESHOLD"))
    if os.getenv("UNIMEM_SEMANTIC_WEIGHT"):
        config.inference.semantic_weight = float(os.getenv("UNIMEM_SEMANTIC_WEIGHT"))
    if os.getenv("UNIMEM_USE_SEMANTIC"):
        config.inference.use_semantic_similarity = _env_bool(os.getenv("UNIMEM_USE_SEMANTIC"))

    if os.getenv("UNIMEM_CHUNK_THRESHOLD"):
        config.retriever.similarity_threshold = float(os.getenv("UNIMEM_CHUNK_THRESHOLD"))
    if os.getenv("UNIMEM_CHUNK_LIMIT"):
        config.retriever.chunk_limit = int(os.getenv("UNIMEM_CHUNK_LIMIT"))

    if os.getenv("UNIMEM_SCENARIO"):
        config.evaluation.scenario = os.getenv("UNIMEM_SCENARIO")

    return config


def save_config(config: UnimemConfig) -> None:
    """Save configuration to file.

    Secrets that were sourced from environment variables are written
    as empty strings so that they are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    data = {
        "store": {
            "backend": config.store.backend,
            "host": config.store.host,
            "port": config.store.port,
            "database": config.store.database,
            "user": config.store.user,
            "password": "" if "password" in env_sourced else config.store.password,
            "min_size": config.store.min_size,
            "max_size": config.store.max_size,
        },
        "embedding": {
            "mode": config.embedding.mode,
            "model": config.embedding.model,
            "openai_api_key": (
                "" if "openai_api_key" in env_sourced else config.embedding.openai_api_key
            ),
            "dimensions": config.embedding.dimensions,
            "batch_size": config.embedding.batch_size,
        },
        "inference": {
            "similarity_threshold": config.inference.similarity_threshold,
            "keyword_overlap_threshold": config.inference.keyword_overlap_threshold,
            "use_semantic_similarity": config.inference.use_semantic_similarity,
            "semantic_weight": config.inference.semantic_weight,
            "include_inferred": config.inference.include_inferred,
            "enable_duplicate_detection": config.inference.enable_duplicate_detection,
            "use_project_metadata": config.inference.use_project_metadata,
            "project_weight": config.inference.project_weight,
            "use_schema_signal": config.inference.use_schema_signal,
            "schema_weight": config.inference.schema_weight,
            "use_document_threshold": config.inference.use_document_threshold,
            "document_threshold": config.inference.document_threshold,
            "min_chunk_matches": config.inference.min_chunk_matches,
        },
        "retriever": {
            "similarity_threshold": config.retriever.similarity_threshold,
            "chunk_limit": config.retriever.chunk_limit,
            "include_relations": config.retriever.include_relations,
            "relation_depth": config.retriever.relation_depth,
        },
        "temporal": {
            "max_age_days": config.temporal.max_age_days,
            "recency_boost": config.temporal.recency_boost,
            "decay": config.temporal.decay,
        },
        "evaluation": {
            "scenario": config.evaluation.scenario,
            "persist_metrics": config.evaluation.persist_metrics,
            "embeddings_per_object": config.evaluation.embeddings_per_object,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)


def ensure_directories() -> None:
    """Ensure required directories exist"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
