"""Shared evaluation metrics for retrieval treatments.

Scores an approximate top-k query against a brute-force exact baseline:
recall@k, nearest-rank latency percentiles and queries per second. Stateless;
recomputed on every benchmark invocation.
"""

import logging
import math
from functools import partial

log = logging.getLogger(__name__)

LATENCY_QUANTILES = {"p50": 0.50, "p95": 0.95, "p99": 0.99}


def _rank_key(scored: tuple) -> tuple:
    # Descending score; NaN scores are equal to each other and rank last
    score = scored[1]
    if math.isnan(score):
        return (1, 0.0)
    return (0, -score)


def exact_top_k(query, corpus, k: int, score_fn, executor=None, chunksize: int = 256) -> list:
    """Brute-force top-k ids by relevance score.

    Args:
        query: Query vector passed as the first argument of score_fn.
        corpus: Sequence of (id, vector) pairs.
        k: Number of ids to keep.
        score_fn: Similarity, higher is more relevant (e.g. engine.cosine).
        executor: Optional concurrent.futures executor for a parallel scan.
        chunksize: Items per task when an executor is used.

    Returns:
        Up to k ids, best first. Ties keep corpus order.
    """
    ids = [cid for cid, _ in corpus]
    vectors = [vec for _, vec in corpus]
    score = partial(score_fn, query)
    if executor is None:
        scores = [score(v) for v in vectors]
    else:
        scores = list(executor.map(score, vectors, chunksize=chunksize))

    # sorted() is stable, so equal scores stay in corpus order
    ranked = sorted(zip(ids, scores, strict=True), key=_rank_key)
    return [cid for cid, _ in ranked[:k]]


def recall_hits(approx_ids, exact_ids) -> int:
    return len(set(approx_ids) & set(exact_ids))


def recall_at_k(approx_ids, exact_ids, k: int) -> float:
    """|approx ∩ exact| / k for a single query."""
    if k <= 0:
        raise ValueError(f"k must be positive (got {k})")
    return recall_hits(approx_ids, exact_ids) / k


def aggregate_recall(total_hits: int, queries: int, k: int) -> float:
    """Recall over Q queries: summed hit counts / (Q * k)."""
    if queries <= 0 or k <= 0:
        raise ValueError(f"queries and k must be positive (got {queries}, {k})")
    return total_hits / (queries * k)


def quantile(sorted_values: list[float], q: float) -> float:
    """Nearest-rank quantile of ascending values at rank round((n-1) * q)."""
    if not sorted_values:
        return 0.0
    # Half-up rounding; round() would round half to even
    idx = math.floor((len(sorted_values) - 1) * q + 0.5)
    return sorted_values[min(idx, len(sorted_values) - 1)]


def latency_summary(latencies_ms: list[float]) -> dict[str, float]:
    """p50/p95/p99 and arithmetic mean of per-query latencies in ms."""
    ordered = sorted(latencies_ms)
    summary = {name: quantile(ordered, q) for name, q in LATENCY_QUANTILES.items()}
    summary["mean"] = sum(ordered) / max(len(ordered), 1)
    return summary


def queries_per_second(latencies_ms: list[float]) -> float:
    total_s = sum(latencies_ms) / 1000.0
    if total_s <= 0:
        return 0.0
    return len(latencies_ms) / total_s
