"""Report schema: one measurement record per benchmark plus run metadata."""

import datetime
import json
import logging
from pathlib import Path

from vsa_bench import SCHEMA_VERSION, __version__
from vsa_bench.common import git_sha_short

log = logging.getLogger(__name__)


def measurement_record(name, unit, measured, bytes_processed=None, extra=None) -> dict:
    """Build a measurement record from a Measured timing.

    throughput_bytes_per_s is bytes_processed per second of one iteration and
    is None when no bytes were processed or the timing is zero.
    """
    throughput = None
    if bytes_processed is not None and measured.ns_per_iter > 0:
        throughput = bytes_processed / (measured.ns_per_iter / 1e9)
    return {
        "name": name,
        "unit": unit,
        "iters": measured.iters,
        "warmup_iters": measured.warmup_iters,
        "total_ns": measured.total_ns,
        "ns_per_iter": measured.ns_per_iter,
        "bytes_processed": bytes_processed,
        "throughput_bytes_per_s": throughput,
        "extra": extra or {},
    }


def run_meta(cfg) -> dict:
    return {
        "schema_version": SCHEMA_VERSION,
        "bench_version": __version__,
        "profile": cfg.profile,
        "seed": cfg.seed,
        "timestamp_utc": datetime.datetime.now(tz=datetime.timezone.utc).isoformat(),
        "git_sha": git_sha_short(),
    }


def build_report(measurements: list[dict], cfg) -> dict:
    return {"run": run_meta(cfg), "measurements": measurements}


def write_report(report: dict, out: Path | None = None) -> str:
    """Serialize the report as pretty JSON to `out`, or stdout when out is None."""
    text = json.dumps(report, indent=2)
    if out is None:
        print(text)
    else:
        out = Path(out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text + "\n", encoding="utf-8")
        log.info("Report written to %s (%d measurements)", out, len(report["measurements"]))
    return text
