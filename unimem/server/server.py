"""
Unimem MCP Server.

Transport: stdio.

Expected MCP Tool Return Format:
{
    "ok": bool,
    "results": Any,          # Present if ok is True
    "error": str            # Present if ok is False
}
"""

import argparse
import asyncio
import logging
import os
import signal
from dataclasses import dataclass, replace
from typing import Annotated, Any, Awaitable, Callable, Dict, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from ..common.config import UnimemConfig, load_config
from ..common.embedding_service import EmbeddingService
from ..common.evaluation_store import GroundTruthSource, InMemoryGroundTruthSource, MetricsSink
from ..common.object_store import InMemoryObjectStore, ObjectStore
from ..evaluation.runner import EvaluationRunner
from ..graph.relation_inferrer import RelationInferrer
from ..retriever.retriever import RetrievalError, Retriever

logger = logging.getLogger("unimem.server")

RETRIEVE_MODES = ("basic", "expand", "rerank")


@dataclass
class Backends:
    """Store handles shared by all tools"""
    store: ObjectStore
    ground_truth: Optional[GroundTruthSource] = None
    metrics_sink: Optional[MetricsSink] = None

    async def close(self) -> None:
        await self.store.close()


async def connect_postgres(config: UnimemConfig) -> Backends:
    """One asyncpg pool shared by the object store, ground truth and metrics"""
    from ..common.pg_store import (
        PostgresGroundTruthSource,
        PostgresMetricsSink,
        PostgresObjectStore,
        create_pool,
    )

    pool = await create_pool(config.store)
    logger.info("Connected to postgres at %s:%s", config.store.host, config.store.port)
    return Backends(
        store=PostgresObjectStore(pool, owns_pool=True),
        ground_truth=PostgresGroundTruthSource(pool),
        metrics_sink=PostgresMetricsSink(pool),
    )


class MCPServerApp:
    """
    Main application class for the MCP server.

    Backends are either passed in directly or created on first use by
    `backend_factory`, so connection pools live on the server's event loop.
    """

    def __init__(
        self,
        embedding_service,
        backends: Optional[Backends] = None,
        backend_factory: Optional[Callable[[], Awaitable[Backends]]] = None,
        config: Optional[UnimemConfig] = None,
        mcp_server_name: str = "unimem",
    ) -> None:
        """
        Args:
            embedding_service: Query embedder (`async embed(text)`)
            backends: Ready store handles
            backend_factory: Async factory used when `backends` is None
            config: Unimem configuration (defaults if omitted)
            mcp_server_name: Advertised MCP server name
        """
        if backends is None and backend_factory is None:
            raise ValueError("Either backends or backend_factory must be provided")

        self.config = config or UnimemConfig()
        self.embedding = embedding_service
        self._backends = backends
        self._backend_factory = backend_factory
        self._backend_lock = asyncio.Lock()
        self.mcp = FastMCP(name=mcp_server_name)

        # ---------- MCP Tools: Retrieve ---------- #
        @self.mcp.tool(
            name="retrieve",
            description=(
                "Search unified memory with a natural-language query. "
                "Returns matching chunks, their source objects and the relations between them. "
                "mode=expand also pulls in related objects; mode=rerank boosts recent objects."
            ),
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False),
        )
        async def tool_retrieve(
            query: Annotated[str, Field(description="natural-language query")],
            mode: Annotated[str, Field(description="basic, expand or rerank")] = "basic",
            chunk_limit: Annotated[Optional[int], Field(description="max chunks to return")] = None,
            similarity_threshold: Annotated[Optional[float], Field(description="min chunk similarity (0-1)")] = None,
        ) -> Dict[str, Any]:
            if mode not in RETRIEVE_MODES:
                return {"ok": False, "error": f"Unknown mode '{mode}'. Use one of: {', '.join(RETRIEVE_MODES)}"}
            if not query or not query.strip():
                return {"ok": False, "error": "`query` must not be empty"}

            try:
                retriever = await self._retriever(chunk_limit, similarity_threshold)
                if mode == "expand":
                    result = await retriever.retrieve_with_expansion(query)
                elif mode == "rerank":
                    result = await retriever.retrieve_with_reranking(query)
                else:
                    result = await retriever.retrieve(query)
                return {"ok": True, "results": result.to_dict()}
            except RetrievalError as e:
                logger.warning("Retrieval failed at %s: %s", e.stage, e)
                return {"ok": False, "error": f"Retrieval failed ({e.stage}): {e}"}
            except Exception as e:
                logger.error("Retrieve tool failed", exc_info=True)
                return {"ok": False, "error": str(e)}

        # ---------- MCP Tools: Related Objects ---------- #
        @self.mcp.tool(
            name="related_objects",
            description="Traverse explicit relations outward from one object id.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False),
        )
        async def tool_related_objects(
            object_id: Annotated[str, Field(description="canonical id: platform|workspace|type|local_id")],
            depth: Annotated[Optional[int], Field(description="hops to traverse (default from config)")] = None,
        ) -> Dict[str, Any]:
            if depth is not None and depth < 0:
                return {"ok": False, "error": "`depth` must be >= 0"}
            try:
                retriever = await self._retriever()
                related = await retriever.get_related_objects(object_id, depth)
                return {"ok": True, "results": related.to_dict()}
            except Exception as e:
                logger.error("related_objects failed for %s", object_id, exc_info=True)
                return {"ok": False, "error": str(e)}

        # ---------- MCP Tools: Evaluate Relations ---------- #
        @self.mcp.tool(
            name="evaluate_relations",
            description=(
                "Score relation inference against a ground-truth scenario. "
                "Returns precision/recall/F1 for explicit and similarity stages, overall and per type."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False),
        )
        async def tool_evaluate_relations(
            scenario: Annotated[Optional[str], Field(description="ground-truth scenario")] = None,
            use_semantic: Annotated[bool, Field(description="blend embedding similarity")] = False,
            experiment_id: Annotated[Optional[int], Field(description="store metrics under this experiment")] = None,
        ) -> Dict[str, Any]:
            try:
                backends = await self._get_backends()
                if backends.ground_truth is None:
                    return {"ok": False, "error": "No ground-truth source configured"}

                runner = EvaluationRunner(
                    backends.store,
                    backends.ground_truth,
                    backends.metrics_sink,
                    inferrer=RelationInferrer(self.config.inference),
                    embeddings_per_object=self.config.evaluation.embeddings_per_object,
                )
                metrics = await runner.run(
                    scenario or self.config.evaluation.scenario,
                    experiment_id=experiment_id,
                    use_semantic=use_semantic,
                )
                return {"ok": True, "results": metrics.to_dict()}
            except Exception as e:
                logger.error("evaluate_relations failed", exc_info=True)
                return {"ok": False, "error": str(e)}

    async def _get_backends(self) -> Backends:
        async with self._backend_lock:
            if self._backends is None:
                self._backends = await self._backend_factory()
        return self._backends

    async def _retriever(
        self,
        chunk_limit: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
    ) -> Retriever:
        backends = await self._get_backends()
        retriever_config = self.config.retriever
        if chunk_limit is not None or similarity_threshold is not None:
            retriever_config = replace(
                retriever_config,
                chunk_limit=chunk_limit if chunk_limit is not None else retriever_config.chunk_limit,
                similarity_threshold=(
                    similarity_threshold
                    if similarity_threshold is not None
                    else retriever_config.similarity_threshold
                ),
            )
        return Retriever(
            backends.store,
            self.embedding,
            inferrer=RelationInferrer(self.config.inference),
            config=retriever_config,
            temporal_config=self.config.temporal,
        )

    def run(self) -> None:
        """Runs the MCP server using stdio transport."""
        self.mcp.run(transport="stdio")


def main() -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Run the Unimem MCP server (stdio).")
    parser.add_argument(
        "--server-name",
        default=os.getenv("MCP_SERVER_NAME", "unimem"),
        help="Advertised MCP server name.",
    )
    parser.add_argument(
        "--store-backend",
        default=None,
        choices=("memory", "postgres"),
        help="Object store backend (default from config).",
    )
    parser.add_argument(
        "--embedding-mode",
        default=None,
        choices=("femb", "openai"),
        help="Embedding backend (default from config).",
    )
    parser.add_argument(
        "--embedding-model",
        default=None,
        help="Embedding model name (default from config).",
    )
    args = parser.parse_args()

    logging.basicConfig(level=os.getenv("UNIMEM_LOG_LEVEL", "INFO"))

    config = load_config()
    if args.store_backend:
        config.store.backend = args.store_backend
    if args.embedding_mode:
        config.embedding.mode = args.embedding_mode
    if args.embedding_model:
        config.embedding.model = args.embedding_model

    embedding_service = EmbeddingService(
        mode=config.embedding.mode,
        model=config.embedding.model,
        api_key=config.embedding.openai_api_key or None,
        dimensions=config.embedding.dimensions,
        batch_size=config.embedding.batch_size,
    )
    if not embedding_service.is_available:
        logger.warning("Embedding service unavailable - retrieve tool will fail")

    if config.store.backend == "postgres":
        app = MCPServerApp(
            embedding_service,
            backend_factory=lambda: connect_postgres(config),
            config=config,
            mcp_server_name=args.server_name,
        )
    else:
        logger.info("Using in-memory store (empty until populated)")
        app = MCPServerApp(
            embedding_service,
            backends=Backends(
                store=InMemoryObjectStore(),
                ground_truth=InMemoryGroundTruthSource(),
            ),
            config=config,
            mcp_server_name=args.server_name,
        )

    def _handle_shutdown(signum, frame):
        raise SystemExit(0)
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is not None:
            signal.signal(sig, _handle_shutdown)

    app.run()


if __name__ == "__main__":
    main()
