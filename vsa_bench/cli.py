"""vsa-bench command line.

Usage:
    vsa-bench [--profile quick|full] [--seed N] [--out FILE] <command> ...

Commands:
    generate-dataset   Write a deterministic EMBR_DST dataset file
    dataset-info       Print a dataset file's header
    benchmark          Run vsa | retrieval | encode | suite and emit the JSON report
    analyse            Summarize results JSONL and write Plotly charts
"""

import argparse
import logging
import os
import sys
import time
from pathlib import Path

from vsa_bench.analysis.charts import aggregate, load_results, print_summary, write_charts
from vsa_bench.common import (
    BEAM_WIDTH,
    CANDIDATE_FACTOR,
    CHARTS_DIR,
    CHUNK_SIZE,
    DATASETS_DIR,
    DEFAULT_BATCH_SIZE,
    DEFAULT_COUNT,
    DEFAULT_DIMENSION,
    DEFAULT_SEED,
    MAX_DEPTH,
    MAX_EXPANSIONS,
    PROFILES,
    RESULTS_DIR,
    K,
)
from vsa_bench.engine import ENGINES, get_engine
from vsa_bench.harness import BenchConfig, run_suite
from vsa_bench.prep.common import dataset_path
from vsa_bench.prep.dataset import read_dataset_meta, write_dataset_streaming
from vsa_bench.prep.vectors import GenerateConfig
from vsa_bench.report import write_report
from vsa_bench.treatments.encode import EncodeTreatment
from vsa_bench.treatments.retrieval import RetrievalTreatment
from vsa_bench.treatments.vsa import VsaTreatment

log = logging.getLogger(__name__)

MB = 1024 * 1024


# ── generate-dataset / dataset-info ───────────────────────────────


def cmd_generate_dataset(args):
    config = GenerateConfig(count=args.count, dimension=args.dimension, seed=args.dataset_seed, sparsity=args.sparsity)
    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)
    filepath = dataset_path(output_dir, config.count, config.dimension, config.seed)
    tmp_path = filepath.with_name(filepath.name + ".tmp")

    log.info(
        "Generating %d vectors (dim=%d, sparsity=%d, seed=%d)...",
        config.count,
        config.dimension,
        config.sparsity,
        config.seed,
    )

    t0 = time.perf_counter()
    try:
        write_dataset_streaming(tmp_path, config, batch_size=args.batch_size, workers=args.workers)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    os.replace(tmp_path, filepath)
    elapsed = max(time.perf_counter() - t0, 1e-9)

    size_mb = filepath.stat().st_size / MB
    log.info(
        "Wrote %.2f MB in %.2fs (%.1f MB/s, %.0f vec/s)",
        size_mb,
        elapsed,
        size_mb / elapsed,
        config.count / elapsed,
    )
    log.info("")
    log.info("Dataset saved: %s", filepath)
    log.info("  Vectors: %d", config.count)
    log.info("  Dimension: %d", config.dimension)
    log.info("  Sparsity: %d per sign (~%.1f%% density)", config.sparsity, config.density * 100)
    log.info("  Seed: %d", config.seed)
    log.info("  File size: %.2f MB", size_mb)


def cmd_dataset_info(args):
    path = Path(args.file)
    meta = read_dataset_meta(path)
    print(f"Dataset: {path}")
    print(f"  Vectors: {meta.count}")
    print(f"  Dimension: {meta.dimension}")
    print(f"  Seed: {meta.seed}")
    print(f"  File size: {path.stat().st_size / MB:.2f} MB")


# ── benchmark ─────────────────────────────────────────────────────


def _engine_from_args(args, dimension=None):
    return get_engine(args.engine, dimension=args.dimension or dimension or DEFAULT_DIMENSION, sparsity=args.sparsity)


def _vsa_treatment(args):
    dataset_dim = read_dataset_meta(args.dataset).dimension if args.dataset else None
    return VsaTreatment(_engine_from_args(args, dataset_dim), dataset=args.dataset)


def _retrieval_treatment(args, engine, input_dir):
    return RetrievalTreatment(
        engine,
        input_dir,
        k=getattr(args, "k", K),
        candidate_factor=getattr(args, "candidate_factor", CANDIDATE_FACTOR),
        queries=getattr(args, "queries", None),
        workers=args.workers,
        chunk_size=args.chunk_size,
        hierarchical=not args.no_hierarchical,
        beam_width=args.beam_width,
        max_depth=args.max_depth,
        max_expansions=args.max_expansions,
    )


def _encode_treatment(args):
    return EncodeTreatment(
        _engine_from_args(args), args.input, chunk_size=args.chunk_size, prefix=args.prefix, verify=args.verify
    )


def build_treatments(args) -> list:
    """Treatments for the selected benchmark target, in run order."""
    if args.target == "vsa":
        return [_vsa_treatment(args)]
    if args.target == "retrieval":
        return [_retrieval_treatment(args, _engine_from_args(args), args.input_dir)]
    if args.target == "encode":
        return [_encode_treatment(args)]

    # suite
    treatments = [_vsa_treatment(args)]
    if args.input:
        treatments.append(_encode_treatment(args))
    if args.retrieval_input_dir:
        treatments.append(_retrieval_treatment(args, _engine_from_args(args), args.retrieval_input_dir))
    return treatments


def cmd_benchmark(args):
    cfg = BenchConfig(profile=args.profile, seed=args.seed)
    treatments = build_treatments(args)
    log.info("Profile: %s (seed=%d), %d treatment(s)", cfg.profile, cfg.seed, len(treatments))
    report = run_suite(treatments, cfg, results_dir=args.results_dir)
    write_report(report, args.out)


# ── analyse ───────────────────────────────────────────────────────


def cmd_analyse(args):
    records = load_results(args.results_dir, category=args.category)
    if not records:
        return
    agg = aggregate(records)
    log.info("Aggregated into %d groups", len(agg))
    print_summary(agg)
    write_charts(agg, args.charts_dir)


# ── Parser ────────────────────────────────────────────────────────


def _engine_parent() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument("--engine", choices=list(ENGINES), default="sparse-ternary", help="VSA engine to benchmark")
    parent.add_argument("--dimension", type=int, default=None, help=f"Engine dimension (default {DEFAULT_DIMENSION})")
    parent.add_argument("--sparsity", type=int, default=None, help="Engine nonzeros per sign (default dimension/100)")
    parent.add_argument("--chunk-size", type=int, default=CHUNK_SIZE, help="Ingest chunk size in bytes")
    return parent


def _hierarchy_parent() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument("--beam-width", type=int, default=BEAM_WIDTH, help="Directories kept per hierarchy level")
    parent.add_argument("--max-depth", type=int, default=MAX_DEPTH, help="Hierarchy levels descended")
    parent.add_argument("--max-expansions", type=int, default=MAX_EXPANSIONS, help="Hierarchy nodes scored per query")
    parent.add_argument("--no-hierarchical", action="store_true", help="Skip the hierarchical query measurement")
    return parent


def _encode_parent() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument("--prefix", default=None, help="Logical path prefix (default: each input's name)")
    parent.add_argument("--verify", action="store_true", help="Extract after each pass and compare SHA-256 hashes")
    return parent


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vsa-bench",
        description="Contract benchmarks for VSA engines",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  vsa-bench generate-dataset -n 100000 -o datasets/
  vsa-bench dataset-info datasets/sparsevec_100k_10000_seed42.embr
  vsa-bench benchmark vsa --dataset datasets/sparsevec_100k_10000_seed42.embr
  vsa-bench --profile full --out report.json benchmark retrieval --input-dir docs/
  vsa-bench benchmark encode -i src/ --prefix src --verify
  vsa-bench benchmark suite --input src/ --retrieval-input-dir docs/
  vsa-bench analyse
        """,
    )
    parser.add_argument("--profile", choices=list(PROFILES), default="quick", help="Benchmark profile")
    parser.add_argument("--seed", type=int, default=0, help="Seed recorded in the report")
    parser.add_argument("--out", type=Path, default=None, help="Write the JSON report here instead of stdout")
    parser.add_argument("--results-dir", type=Path, default=RESULTS_DIR, help="Directory for results JSONL")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command")

    gen = sub.add_parser("generate-dataset", help="Write a deterministic sparse vector dataset")
    gen.add_argument("-n", "--count", type=int, default=DEFAULT_COUNT, help="Number of vectors")
    gen.add_argument("-o", "--output", type=Path, default=DATASETS_DIR, help="Output directory")
    gen.add_argument("--seed", dest="dataset_seed", type=int, default=DEFAULT_SEED, help="Master seed")
    gen.add_argument("--dimension", type=int, default=DEFAULT_DIMENSION, help="Vector dimension")
    gen.add_argument("--sparsity", type=int, default=None, help="Nonzeros per sign (default dimension/100)")
    gen.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE, help="Vectors generated per batch")
    gen.add_argument("--workers", type=int, default=None, help="Generator processes (default: CPU count)")
    gen.set_defaults(func=cmd_generate_dataset)

    info = sub.add_parser("dataset-info", help="Print a dataset file's header")
    info.add_argument("file", type=Path, help="Dataset file (.embr)")
    info.set_defaults(func=cmd_dataset_info)

    bench = sub.add_parser("benchmark", help="Run a benchmark and emit the JSON report")
    targets = bench.add_subparsers(dest="target", required=True)
    engine_parent = _engine_parent()
    hierarchy_parent = _hierarchy_parent()
    encode_parent = _encode_parent()

    vsa = targets.add_parser("vsa", parents=[engine_parent], help="bundle/bind/cosine timings")
    vsa.add_argument("--dataset", type=Path, default=None, help="Stream pairs from this dataset file")

    retrieval = targets.add_parser(
        "retrieval", parents=[engine_parent, hierarchy_parent], help="Flat and hierarchical query latency, recall@k"
    )
    retrieval.add_argument("--input-dir", type=Path, required=True, help="Directory to ingest")
    retrieval.add_argument("--k", type=int, default=K, help="Results per query")
    retrieval.add_argument("--candidate-factor", type=int, default=CANDIDATE_FACTOR, help="Candidates = k * factor")
    retrieval.add_argument("--queries", type=int, default=None, help="Query count (default per profile)")
    retrieval.add_argument("--workers", type=int, default=1, help="Processes for the exact baseline scan")

    encode = targets.add_parser("encode", parents=[engine_parent, encode_parent], help="Ingest throughput")
    encode.add_argument("-i", "--input", type=Path, nargs="+", required=True, help="Files or directories")

    suite = targets.add_parser(
        "suite",
        parents=[engine_parent, hierarchy_parent, encode_parent],
        help="vsa, plus encode/retrieval when inputs given",
    )
    suite.add_argument("--dataset", type=Path, default=None, help="Stream pairs from this dataset file")
    suite.add_argument("-i", "--input", type=Path, nargs="+", default=[], help="Encode inputs")
    suite.add_argument("--retrieval-input-dir", type=Path, default=None, help="Directory for the retrieval benchmark")
    suite.add_argument("--workers", type=int, default=1, help="Processes for the exact baseline scan")

    bench.set_defaults(func=cmd_benchmark)

    analyse = sub.add_parser("analyse", help="Summarize results and write charts")
    analyse.add_argument("--category", choices=["vsa", "retrieval", "encode"], default=None, help="Only this category")
    analyse.add_argument("--charts-dir", type=Path, default=CHARTS_DIR, help="Output directory for charts")
    analyse.set_defaults(func=cmd_analyse)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s")

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except (ValueError, EOFError, OSError) as e:
        log.error("%s: %s", type(e).__name__, e)
        sys.exit(1)


if __name__ == "__main__":
    main()
