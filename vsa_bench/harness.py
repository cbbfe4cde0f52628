"""Benchmark execution harness.

`measure()` is the timing protocol: run the operation `warmup_iters` times and
discard the results, then time `iters` further calls and report the mean cost
per call. It is a mean-timing model: no outlier rejection, no confidence
intervals.

`run_treatment()` drives one Treatment through setup -> run -> teardown and
appends its measurement records to `{results_dir}/{category}.jsonl`.
"""

import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path

from vsa_bench.common import PROFILES, peak_rss_mb, platform_info, write_jsonl
from vsa_bench.report import build_report

log = logging.getLogger(__name__)

# Last value handed to black_box(); keeps results referenced so a measured
# call always produces an observable value.
_sink = None


def black_box(value):
    """Opaque use of a benchmark result."""
    global _sink
    _sink = value
    return value


@dataclass(frozen=True)
class Measured:
    iters: int
    warmup_iters: int
    total_ns: int
    ns_per_iter: float

    @classmethod
    def from_elapsed(cls, iters: int, warmup_iters: int, total_ns: int) -> "Measured":
        return cls(
            iters=iters,
            warmup_iters=warmup_iters,
            total_ns=total_ns,
            ns_per_iter=total_ns / max(iters, 1),
        )

    def to_dict(self) -> dict:
        return asdict(self)


def measure(iters: int, warmup_iters: int, operation) -> Measured:
    """Warm up, then time `iters` calls of `operation()`.

    Args:
        iters: Timed calls.
        warmup_iters: Untimed calls made first.
        operation: Zero-argument callable; every result goes through black_box().

    Returns:
        Measured with ns_per_iter = total_ns / max(iters, 1).
    """
    for _ in range(warmup_iters):
        black_box(operation())

    start = time.perf_counter_ns()
    for _ in range(iters):
        black_box(operation())
    total_ns = time.perf_counter_ns() - start

    return Measured.from_elapsed(iters, warmup_iters, total_ns)


class BenchConfig:
    """Profile and seed chosen once per run and applied to every treatment."""

    def __init__(self, profile: str = "quick", seed: int = 0) -> None:
        if profile not in PROFILES:
            raise ValueError(f"Unknown profile: {profile} (choose from {', '.join(PROFILES)})")
        self.profile = profile
        self.seed = seed
        self._settings = PROFILES[profile]

    @property
    def warmup_iters(self) -> int:
        return self._settings["warmup_iters"]

    @property
    def iters(self) -> int:
        return self._settings["iters"]

    @property
    def retrieval_queries(self) -> int:
        return self._settings["retrieval_queries"]

    @property
    def encode_iters(self) -> int:
        return self._settings["encode_iters"]

    def dataset_ops(self, available: int) -> int:
        """How many pairs/triples of a dataset file to process under this profile."""
        cap = self._settings["dataset_ops"]
        return available if cap is None else min(available, cap)

    def __repr__(self):
        return f"BenchConfig(profile={self.profile!r}, seed={self.seed})"


def run_treatment(treatment, cfg: BenchConfig, results_dir: Path | None = None) -> list[dict]:
    """Run a single treatment and return its measurement records.

    Errors are not caught here: a failing setup or run aborts the session
    (teardown still runs).
    """
    log.info("Running: %s", treatment.label)

    try:
        t0 = time.perf_counter()
        setup_info = treatment.setup(cfg) or {}
        setup_ms = (time.perf_counter() - t0) * 1000

        t0 = time.perf_counter()
        measurements = treatment.run(cfg)
        run_ms = (time.perf_counter() - t0) * 1000
    finally:
        treatment.teardown()

    log.info("  %s: %d measurement(s), setup %.1f ms, run %.1f ms", treatment.name, len(measurements), setup_ms, run_ms)

    if results_dir is not None:
        jsonl_path = Path(results_dir) / f"{treatment.category}.jsonl"
        common = {
            "category": treatment.category,
            "treatment": treatment.name,
            "profile": cfg.profile,
            "seed": cfg.seed,
            "wall_time_setup_ms": round(setup_ms, 3),
            "wall_time_run_ms": round(run_ms, 3),
            "peak_rss_mb": round(peak_rss_mb(), 1),
            **treatment.params_dict(),
            **setup_info,
            **platform_info(),
        }
        for m in measurements:
            write_jsonl(jsonl_path, {**common, **m})
        log.info("  appended %d record(s) to %s", len(measurements), jsonl_path)

    return measurements


def run_suite(treatments, cfg: BenchConfig, results_dir: Path | None = None) -> dict:
    """Run treatments in order and assemble the JSON report.

    The run is one measurement session: the first failure propagates and the
    remaining treatments are not attempted.
    """
    measurements = []
    for treatment in treatments:
        measurements.extend(run_treatment(treatment, cfg, results_dir=results_dir))
    return build_report(measurements, cfg)
