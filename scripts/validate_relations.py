#!/usr/bin/env python3
"""
Relation Validation Script

Evaluates relation inference against a ground-truth scenario and
optionally sweeps thresholds to find the best F1.

Reads objects and ground truth from Postgres by default, or from a JSON
dataset file ({"objects": [...], "chunks": [...], "ground_truth": [...]})
with --dataset.

Usage:
    python scripts/validate_relations.py --scenario normal
    python scripts/validate_relations.py --dataset data.json --sweep 0.3,0.5,0.65,0.8
    python scripts/validate_relations.py --use-semantic --experiment-id 12
"""

import sys
import json
import asyncio
import argparse
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


def _parse_thresholds(raw: str):
    try:
        return [float(t) for t in raw.split(",") if t.strip()]
    except ValueError:
        print(f"[Validate] ERROR: Invalid --sweep value: {raw}")
        sys.exit(1)


def _print_stage(name: str, stage) -> None:
    print(
        f"[Validate]   {name:<11} P={stage.precision:.3f} R={stage.recall:.3f} "
        f"F1={stage.f1_score:.3f} (tp={stage.true_positives} fp={stage.false_positives} "
        f"fn={stage.false_negatives})"
    )


def _load_dataset(path: Path):
    from unimem.common import InMemoryGroundTruthSource, InMemoryObjectStore
    from unimem.common.schemas import CanonicalObject, Chunk, GroundTruthRelation

    with open(path) as f:
        data = json.load(f)

    store = InMemoryObjectStore(
        objects=[CanonicalObject.model_validate(o) for o in data.get("objects", [])],
        chunks=[Chunk.model_validate(c) for c in data.get("chunks", [])],
    )
    ground_truth = InMemoryGroundTruthSource(
        GroundTruthRelation.model_validate(r) for r in data.get("ground_truth", [])
    )
    return store, ground_truth, None


async def _run(args) -> int:
    from unimem.common.config import load_config
    from unimem.evaluation import EvaluationRunner
    from unimem.graph import RelationInferrer

    config = load_config()
    if args.scenario is None:
        args.scenario = config.evaluation.scenario
    if args.keyword_threshold is not None:
        config.inference.keyword_overlap_threshold = args.keyword_threshold
    if args.similarity_threshold is not None:
        config.inference.similarity_threshold = args.similarity_threshold
    if args.semantic_weight is not None:
        config.inference.semantic_weight = args.semantic_weight
    if args.project_weight is not None:
        config.inference.use_project_metadata = True
        config.inference.project_weight = args.project_weight
    if args.schema_weight is not None:
        config.inference.use_schema_signal = True
        config.inference.schema_weight = args.schema_weight
    if args.document_threshold is not None:
        config.inference.use_document_threshold = True
        config.inference.document_threshold = args.document_threshold
    if args.min_chunk_matches is not None:
        config.inference.min_chunk_matches = args.min_chunk_matches

    try:
        inferrer = RelationInferrer(config.inference)
    except ValueError as e:
        print(f"[Validate] ERROR: Invalid inference settings: {e}")
        return 2

    if args.dataset:
        print(f"[Validate] Loading dataset from {args.dataset}...")
        store, ground_truth, metrics_sink = _load_dataset(Path(args.dataset))
    else:
        from unimem.server.server import connect_postgres

        print(f"[Validate] Connecting to {config.store.host}:{config.store.port}/{config.store.database}...")
        try:
            backends = await connect_postgres(config)
        except Exception as e:
            print(f"[Validate] ERROR: Could not connect to Postgres: {e}")
            return 1
        store, ground_truth, metrics_sink = backends.store, backends.ground_truth, backends.metrics_sink

    runner = EvaluationRunner(
        store,
        ground_truth,
        metrics_sink,
        inferrer=inferrer,
        embeddings_per_object=config.evaluation.embeddings_per_object,
    )

    try:
        if args.sweep:
            thresholds = _parse_thresholds(args.sweep)
            print(f"[Validate] Sweeping {len(thresholds)} thresholds on scenario '{args.scenario}'...")
            sweep = await runner.sweep_thresholds(
                args.scenario, thresholds, use_semantic=args.use_semantic, threshold_field=args.sweep_field,
            )
            for threshold, metrics in sweep.results:
                print(f"[Validate]   {sweep.threshold_field}={threshold:.2f} "
                      f"F1={metrics.overall.f1_score:.3f}")
            print(f"[Validate] Best threshold: {sweep.best_threshold} (F1={sweep.best_f1:.3f})")
            if args.output:
                Path(args.output).write_text(json.dumps(sweep.to_dict(), indent=2))
            return 0

        print(f"[Validate] Evaluating scenario '{args.scenario}' "
              f"({'hybrid' if args.use_semantic else 'keyword'} similarity)...")
        metrics = await runner.run(
            args.scenario,
            experiment_id=args.experiment_id,
            use_semantic=args.use_semantic,
        )
        _print_stage("explicit", metrics.explicit)
        _print_stage("similarity", metrics.similarity)
        _print_stage("overall", metrics.overall)
        for rel_type, type_metrics in metrics.by_type.items():
            print(f"[Validate]   - {rel_type}: F1={type_metrics.f1_score:.3f}")

        if args.experiment_id is not None:
            if metrics_sink is None:
                print("[Validate] WARNING: No metrics sink for this source, metrics not stored")
            else:
                print(f"[Validate] Stored metrics for experiment {args.experiment_id}")
        if args.output:
            Path(args.output).write_text(json.dumps(metrics.to_dict(), indent=2))
            print(f"[Validate] Wrote {args.output}")
        return 0
    finally:
        await store.close()


def main():
    from dotenv import load_dotenv

    load_dotenv()

    parser = argparse.ArgumentParser(description="Validate relation inference against ground truth")
    parser.add_argument("--scenario", type=str, default=None, help="Ground-truth scenario (default from config)")
    parser.add_argument("--dataset", type=str, default=None, help="JSON dataset instead of Postgres")
    parser.add_argument("--use-semantic", action="store_true", help="Blend chunk-embedding similarity")
    parser.add_argument("--experiment-id", type=int, default=None, help="Store metrics under this experiment")
    parser.add_argument("--keyword-threshold", type=float, default=None, help="Override keyword overlap threshold")
    parser.add_argument("--similarity-threshold", type=float, default=None, help="Override similarity threshold")
    parser.add_argument("--semantic-weight", type=float, default=None, help="Override semantic weight (0-1)")
    parser.add_argument("--project-weight", type=float, default=None,
                        help="Enable the shared-project signal with this weight (0-1)")
    parser.add_argument("--schema-weight", type=float, default=None,
                        help="Enable the schema (actors/links) signal with this weight (0-1)")
    parser.add_argument("--document-threshold", type=float, default=None,
                        help="Enable per-project-pair filtering at this average confidence")
    parser.add_argument("--min-chunk-matches", type=int, default=None,
                        help="Relations a project pair needs to pass the document threshold")
    parser.add_argument("--sweep", type=str, default=None, help="Comma-separated thresholds to sweep")
    parser.add_argument("--sweep-field", type=str, default=None,
                        choices=["similarity_threshold", "keyword_overlap_threshold", "document_threshold"],
                        help="Threshold to sweep (default depends on --use-semantic)")
    parser.add_argument("--output", type=str, default=None, help="Write metrics JSON to this path")
    args = parser.parse_args()

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
