"""Retrieval treatment.

Ingests a directory into a codebook, builds the engine's flat index and its
hierarchical index, and runs the first N codebook vectors as queries. Each
query's approximate top-k is scored against a brute-force cosine top-k over
the whole codebook.

One measured iteration is one pass over all queries; per-query latencies
(approximate query only) give the p50/p95/p99/mean and QPS stats. The
hierarchical measurement carries the same stats plus its ratio to the flat
index, so the two search strategies compare on identical queries.
"""

import logging
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import asdict
from pathlib import Path
from typing import Any

from vsa_bench.common import (
    BEAM_WIDTH,
    CANDIDATE_FACTOR,
    CHUNK_SIZE,
    MAX_DEPTH,
    MAX_EXPANSIONS,
    MIN_CANDIDATES,
    K,
)
from vsa_bench.engine import HierarchicalQueryBounds
from vsa_bench.harness import measure
from vsa_bench.report import measurement_record
from vsa_bench.treatments.base import Treatment
from vsa_bench.treatments.metrics import (
    aggregate_recall,
    exact_top_k,
    latency_summary,
    queries_per_second,
    recall_hits,
)

log = logging.getLogger(__name__)

MAX_RETRIEVAL_WARMUP = 10


def resolve_retrieval_sizes(chunks: int, k: int, candidate_factor: int, queries: int | None, profile_queries: int):
    """Clamp (k, candidate_k, queries) to the codebook size.

    k is in [1, chunks]; candidate_k is k * candidate_factor raised to at least
    MIN_CANDIDATES and capped at chunks; queries defaults to the profile count.
    """
    if chunks <= 0:
        raise ValueError("no chunks in codebook")
    k = min(max(k, 1), chunks)
    candidate_k = min(max(k * candidate_factor, MIN_CANDIDATES), chunks)
    n_queries = profile_queries if queries is None else queries
    n_queries = min(max(n_queries, 1), chunks)
    return k, candidate_k, n_queries


class RetrievalTreatment(Treatment):
    """Approximate vs exact top-k over an ingested directory."""

    def __init__(
        self,
        engine,
        input_dir: Path,
        k: int = K,
        candidate_factor: int = CANDIDATE_FACTOR,
        queries: int | None = None,
        workers: int = 1,
        chunk_size: int = CHUNK_SIZE,
        hierarchical: bool = True,
        beam_width: int = BEAM_WIDTH,
        max_depth: int = MAX_DEPTH,
        max_expansions: int = MAX_EXPANSIONS,
    ) -> None:
        self._engine = engine
        self._input_dir = Path(input_dir)
        self._k_requested = k
        self._candidate_factor = candidate_factor
        self._queries_requested = queries
        self._workers = max(1, workers)
        self._chunk_size = chunk_size
        self._hierarchical = hierarchical
        self._beam_width = beam_width
        self._max_depth = max_depth
        self._max_expansions = max_expansions

        self._corpus = None
        self._index = None
        self._hierarchy = None
        self._bounds = None
        self._query_vecs = None
        self._k = k
        self._candidate_k = None
        self._n_queries = None
        self._last_stats: dict[str, Any] = {}

    @property
    def category(self) -> str:
        return "retrieval"

    @property
    def name(self) -> str:
        return f"retrieval_{self._engine.name}_{self._input_dir.name}"

    @property
    def label(self) -> str:
        return f"Retrieval: {self._engine.name} / {self._input_dir} / k={self._k_requested}"

    def params_dict(self) -> dict[str, Any]:
        params = {
            **self._engine.params_dict(),
            "input_dir": str(self._input_dir),
            "k": self._k,
            "candidate_factor": self._candidate_factor,
            "chunk_size": self._chunk_size,
            "workers": self._workers,
        }
        if self._hierarchical:
            params.update(beam_width=self._beam_width, max_depth=self._max_depth, max_expansions=self._max_expansions)
        return params

    def setup(self, cfg) -> dict[str, Any]:
        if not self._input_dir.is_dir():
            raise ValueError(f"--input-dir must be a directory: {self._input_dir}")

        t0 = time.perf_counter()
        codebook = self._engine.ingest_directory(self._input_dir, chunk_size=self._chunk_size)
        self._index = self._engine.build_index(codebook)
        build_s = time.perf_counter() - t0

        self._corpus = codebook.items()
        self._k, self._candidate_k, self._n_queries = resolve_retrieval_sizes(
            len(self._corpus), self._k_requested, self._candidate_factor, self._queries_requested, cfg.retrieval_queries
        )
        # Deterministic queries: the first N codebook entries
        self._query_vecs = self._corpus[: self._n_queries]

        log.info(
            "  %d chunks from %d file(s); k=%d candidate_k=%d queries=%d",
            len(self._corpus),
            len(codebook.files),
            self._k,
            self._candidate_k,
            self._n_queries,
        )
        info = {"chunks": len(self._corpus), "raw_bytes": codebook.raw_bytes, "index_build_s": round(build_s, 3)}

        if self._hierarchical:
            self._bounds = HierarchicalQueryBounds(
                k=self._k,
                candidate_k=self._candidate_k,
                beam_width=self._beam_width,
                max_depth=self._max_depth,
                max_expansions=self._max_expansions,
            )
            t0 = time.perf_counter()
            self._hierarchy = self._engine.build_hierarchy(codebook)
            info["hierarchy_build_s"] = round(time.perf_counter() - t0, 3)
        return info

    def run(self, cfg) -> list[dict[str, Any]]:
        warmup = min(cfg.warmup_iters, MAX_RETRIEVAL_WARMUP)
        executor = ProcessPoolExecutor(max_workers=self._workers) if self._workers > 1 else None
        try:
            flat_m, flat_stats = self._measure_queries(warmup, executor, self._flat_query)
            records = [
                measurement_record(
                    "retrieval.query_codebook_with_index",
                    "ns/iter",
                    flat_m,
                    extra={"input_dir": str(self._input_dir), "stats": flat_stats},
                )
            ]
            self._log_stats("flat", flat_stats)

            if self._hierarchical:
                hier_m, hier_stats = self._measure_queries(warmup, executor, self._hierarchical_query)
                hier_stats["vs_flat"] = {
                    "qps_ratio": hier_stats["qps"] / flat_stats["qps"] if flat_stats["qps"] else None,
                    "recall_delta": hier_stats["recall_at_k"] - flat_stats["recall_at_k"],
                }
                records.append(
                    measurement_record(
                        "retrieval.query_hierarchical",
                        "ns/iter",
                        hier_m,
                        extra={"input_dir": str(self._input_dir), "bounds": asdict(self._bounds), "stats": hier_stats},
                    )
                )
                self._log_stats("hierarchical", hier_stats)
        finally:
            if executor is not None:
                executor.shutdown()
        return records

    def teardown(self) -> None:
        self._corpus = None
        self._index = None
        self._hierarchy = None
        self._query_vecs = None

    def _flat_query(self, query):
        return self._index.query(query, self._candidate_k, self._k)

    def _hierarchical_query(self, query):
        return self._hierarchy.query_hierarchical(query, self._bounds)

    def _measure_queries(self, warmup: int, executor, search):
        m = measure(1, warmup, lambda: self._query_pass(executor, search))
        return m, dict(self._last_stats)

    def _log_stats(self, strategy: str, stats: dict[str, Any]) -> None:
        log.info(
            "  %s: recall@%d=%.3f qps=%.1f p50=%.3fms p99=%.3fms",
            strategy,
            self._k,
            stats["recall_at_k"],
            stats["qps"],
            stats["latency_ms"]["p50"],
            stats["latency_ms"]["p99"],
        )

    def _query_pass(self, executor, search) -> dict[str, Any]:
        assert self._index is not None
        assert self._query_vecs is not None
        latencies_ms: list[float] = []
        total_hits = 0

        for _, qv in self._query_vecs:
            start = time.perf_counter_ns()
            approx = search(qv)
            latencies_ms.append((time.perf_counter_ns() - start) / 1e6)

            exact_ids = exact_top_k(qv, self._corpus, self._k, self._engine.cosine, executor=executor)
            total_hits += recall_hits([cid for cid, _ in approx], exact_ids)

        self._last_stats = {
            "chunks": len(self._corpus),
            "queries": self._n_queries,
            "k": self._k,
            "candidate_k": self._candidate_k,
            "qps": queries_per_second(latencies_ms),
            "latency_ms": latency_summary(latencies_ms),
            "recall_at_k": aggregate_recall(total_hits, self._n_queries, self._k),
        }
        return self._last_stats
