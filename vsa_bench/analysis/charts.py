"""Benchmark results analysis: JSONL records -> summary table and Plotly charts.

Records are grouped by (measurement name, profile); repeated runs of the same
group are reduced to mean and sample stddev per metric.
"""

import logging
import math
from collections import defaultdict
from pathlib import Path

import plotly.graph_objects as go

from vsa_bench.common import CHARTS_DIR, RESULTS_DIR, fmt_bytes, read_jsonl

log = logging.getLogger(__name__)

METRICS = [
    "ns_per_iter",
    "throughput_bytes_per_s",
    "ops_per_s",
    "recall_at_k",
    "qps",
    "latency_p50_ms",
    "latency_p95_ms",
    "latency_p99_ms",
]

PROFILE_COLORS = {"quick": "#636EFA", "full": "#EF553B"}


# ── Data loading ──────────────────────────────────────────────────


def load_results(results_dir: Path = RESULTS_DIR, category: str | None = None) -> list[dict]:
    """Load every {category}.jsonl under results_dir (or just one category)."""
    results_dir = Path(results_dir)
    pattern = f"{category}.jsonl" if category else "*.jsonl"
    jsonl_files = sorted(results_dir.glob(pattern))
    if not jsonl_files:
        log.error("No JSONL files found in %s", results_dir)
        log.error("Run 'vsa-bench benchmark ...' first.")
        return []

    records = []
    for f in jsonl_files:
        records.extend(read_jsonl(f))
    log.info("Loaded %d records from %d file(s)", len(records), len(jsonl_files))
    return records


def metric_values(record: dict) -> dict:
    """Flatten the metrics of one record, pulling retrieval stats out of extra."""
    extra = record.get("extra") or {}
    stats = extra.get("stats") or {}
    latency = stats.get("latency_ms") or {}
    return {
        "ns_per_iter": record.get("ns_per_iter"),
        "throughput_bytes_per_s": record.get("throughput_bytes_per_s"),
        "ops_per_s": extra.get("ops_per_s"),
        "recall_at_k": stats.get("recall_at_k"),
        "qps": stats.get("qps"),
        "latency_p50_ms": latency.get("p50"),
        "latency_p95_ms": latency.get("p95"),
        "latency_p99_ms": latency.get("p99"),
    }


# ── Aggregation ───────────────────────────────────────────────────


def _mean_std(values: list[float]) -> tuple[float, float]:
    mean = sum(values) / len(values)
    if len(values) > 1:
        variance = sum((v - mean) ** 2 for v in values) / (len(values) - 1)
        return mean, math.sqrt(variance)
    return mean, 0.0


def aggregate(records: list[dict]) -> dict:
    """Group by (name, profile) and compute mean/std for each metric.

    Returns dict mapping (name, profile) -> {"count", "category", "{metric}_mean", "{metric}_std"}.
    """
    groups = defaultdict(list)
    for r in records:
        groups[(r["name"], r.get("profile", "quick"))].append(r)

    agg = {}
    for key, recs in sorted(groups.items()):
        result = {"count": len(recs), "category": recs[0].get("category")}
        flat = [metric_values(r) for r in recs]
        for metric in METRICS:
            values = [m[metric] for m in flat if m[metric] is not None]
            if values:
                result[f"{metric}_mean"], result[f"{metric}_std"] = _mean_std(values)
            else:
                result[f"{metric}_mean"] = None
                result[f"{metric}_std"] = None
        agg[key] = result
    return agg


def _fmt(val, fmt_str=".1f"):
    if val is None:
        return "n/a"
    return f"{val:{fmt_str}}"


def print_summary(agg: dict) -> None:
    """Print one line per (name, profile) group."""
    print()
    print(f"  {'measurement':<40} {'profile':>7} {'runs':>4} {'ns/iter':>14} {'± std':>12} {'throughput':>12} {'recall':>7}")
    print(f"  {'-' * 40} {'-' * 7} {'-' * 4} {'-' * 14} {'-' * 12} {'-' * 12} {'-' * 7}")
    for (name, profile), a in agg.items():
        tput = a["throughput_bytes_per_s_mean"]
        print(
            f"  {name:<40} {profile:>7} {a['count']:>4} "
            f"{_fmt(a['ns_per_iter_mean']):>14} {_fmt(a['ns_per_iter_std']):>12} "
            f"{(fmt_bytes(tput) + '/s') if tput is not None else 'n/a':>12} "
            f"{_fmt(a['recall_at_k_mean'], '.3f'):>7}"
        )
    print()


# ── Charts ────────────────────────────────────────────────────────


def _profiles(agg: dict) -> list[str]:
    return sorted({profile for _, profile in agg})


def build_op_latency_chart(agg: dict) -> go.Figure | None:
    """Grouped bars of ns per op for the vsa and vsa_dataset measurements."""
    keys = [k for k, a in agg.items() if a["category"] == "vsa"]
    if not keys:
        return None

    fig = go.Figure()
    for profile in _profiles(agg):
        names = [name for name, p in keys if p == profile]
        if not names:
            continue
        fig.add_trace(
            go.Bar(
                x=names,
                y=[agg[(n, profile)]["ns_per_iter_mean"] for n in names],
                error_y={"type": "data", "array": [agg[(n, profile)]["ns_per_iter_std"] for n in names]},
                name=profile,
                marker_color=PROFILE_COLORS.get(profile),
            )
        )
    fig.update_layout(
        title="VSA operation cost",
        xaxis_title="Operation",
        yaxis_title="ns per op",
        yaxis_type="log",
        barmode="group",
        template="plotly_white",
    )
    return fig


def build_retrieval_chart(agg: dict) -> go.Figure | None:
    """Latency percentiles per query strategy and profile, with recall@k in the legend."""
    keys = [k for k, a in agg.items() if a["category"] == "retrieval" and a["latency_p50_ms_mean"] is not None]
    if not keys:
        return None

    fig = go.Figure()
    percentiles = ["p50", "p95", "p99"]
    for name, profile in keys:
        a = agg[(name, profile)]
        strategy = name.rsplit(".", 1)[-1]
        fig.add_trace(
            go.Bar(
                x=percentiles,
                y=[a[f"latency_{p}_ms_mean"] for p in percentiles],
                name=f"{strategy} / {profile} (recall@k={_fmt(a['recall_at_k_mean'], '.3f')}, {_fmt(a['qps_mean'])} qps)",
                marker_color=PROFILE_COLORS.get(profile),
                marker_pattern_shape="/" if strategy == "query_hierarchical" else "",
            )
        )
    fig.update_layout(
        title="Retrieval query latency",
        xaxis_title="Percentile",
        yaxis_title="Latency (ms)",
        barmode="group",
        template="plotly_white",
    )
    return fig


def build_encode_chart(agg: dict) -> go.Figure | None:
    """Ingest throughput per profile in MB/s."""
    keys = [k for k, a in agg.items() if a["category"] == "encode" and a["throughput_bytes_per_s_mean"] is not None]
    if not keys:
        return None

    fig = go.Figure()
    for name, profile in keys:
        a = agg[(name, profile)]
        fig.add_trace(
            go.Bar(
                x=[profile],
                y=[a["throughput_bytes_per_s_mean"] / (1024 * 1024)],
                error_y={"type": "data", "array": [(a["throughput_bytes_per_s_std"] or 0.0) / (1024 * 1024)]},
                name=name,
                marker_color=PROFILE_COLORS.get(profile),
                showlegend=False,
            )
        )
    fig.update_layout(
        title="Encode throughput",
        xaxis_title="Profile",
        yaxis_title="MB/s",
        template="plotly_white",
    )
    return fig


CHARTS = {
    "vsa_op_latency": build_op_latency_chart,
    "retrieval_latency": build_retrieval_chart,
    "encode_throughput": build_encode_chart,
}


def save_chart(fig: go.Figure, name: str, charts_dir: Path = CHARTS_DIR) -> Path:
    """Save a Plotly figure as standalone HTML and JSON."""
    charts_dir = Path(charts_dir)
    charts_dir.mkdir(parents=True, exist_ok=True)

    fig.write_html(str(charts_dir / f"{name}.html"), include_plotlyjs=True, full_html=True)
    json_path = charts_dir / f"{name}.json"
    json_path.write_text(fig.to_json(), encoding="utf-8")

    log.info("  Chart saved: %s (.html + .json)", charts_dir / name)
    return json_path


def write_charts(agg: dict, charts_dir: Path = CHARTS_DIR) -> list[Path]:
    """Build every chart that has data and save it; returns the JSON paths."""
    written = []
    for name, build in CHARTS.items():
        fig = build(agg)
        if fig is None:
            log.info("  %s: no data, skipped", name)
            continue
        written.append(save_chart(fig, name, charts_dir))
    return written
