"""Shared constants and helpers: output paths, profiles, JSONL, platform info."""

import datetime
import json
import logging
import os
import platform
import resource
import sys
from pathlib import Path

log = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
OUTPUT_ROOT = Path(os.environ.get("VSA_BENCH_OUTPUT", PROJECT_ROOT / "bench_outputs"))
DATASETS_DIR = OUTPUT_ROOT / "datasets"
RESULTS_DIR = OUTPUT_ROOT / "results"
CHARTS_DIR = OUTPUT_ROOT / "charts"

# ── Dataset defaults ─────────────────────────────────────────────

DEFAULT_COUNT = 10_000
DEFAULT_DIMENSION = 10_000
DEFAULT_SEED = 42
DEFAULT_BATCH_SIZE = 4096
IO_BUFFER_SIZE = 64 * 1024

# ── Retrieval defaults ───────────────────────────────────────────

K = 10
CANDIDATE_FACTOR = 10
MIN_CANDIDATES = 50
CHUNK_SIZE = 4096

# Hierarchical query bounds
BEAM_WIDTH = 10
MAX_DEPTH = 3
MAX_EXPANSIONS = 1000

# ── Profiles ─────────────────────────────────────────────────────
# dataset_ops=None means every available pair/triple in the dataset file.

PROFILES = {
    "quick": {
        "warmup_iters": 32,
        "iters": 300,
        "dataset_ops": 10_000,
        "retrieval_queries": 100,
        "encode_iters": 3,
    },
    "full": {
        "warmup_iters": 200,
        "iters": 3_000,
        "dataset_ops": None,
        "retrieval_queries": 1_000,
        "encode_iters": 10,
    },
}


def fmt_bytes(size_bytes):
    """Format a byte count for tables; None renders as n/a."""
    if size_bytes is None:
        return "n/a"
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def peak_rss_mb() -> float:
    """Peak resident set size of this process in MB."""
    rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # macOS reports bytes, Linux reports kilobytes
    if sys.platform == "darwin":
        return rss / (1024 * 1024)
    return rss / 1024


def platform_info() -> dict:
    """Platform slug, interpreter version and an ISO timestamp for result records."""
    return {
        "platform": f"{sys.platform}-{platform.machine()}",
        "python_version": platform.python_version(),
        "timestamp": datetime.datetime.now(tz=datetime.timezone.utc).isoformat(),
    }


def git_sha_short():
    """Source revision from CI-provided environment, truncated to 12 chars."""
    sha = os.environ.get("GIT_SHA") or os.environ.get("GITHUB_SHA")
    return sha[:12] if sha else None


def write_jsonl(path: Path, record: dict) -> None:
    """Append one record to a JSONL file, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(record) + "\n")


def read_jsonl(path: Path) -> list[dict]:
    """Read all records from a JSONL file; a missing file yields []."""
    if not path.exists():
        return []
    records = []
    for line in path.read_text(encoding="utf-8").split("\n"):
        if line.strip():
            records.append(json.loads(line))
    return records
