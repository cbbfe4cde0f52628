"""VSA operation treatment.

Times the engine's bundle, bind and cosine on fixed content-encoded inputs,
and optionally streams a dataset file to time the same ops over consecutive
pairs (and bundles of three over triples) of real vectors.

Dataset passes reuse one DatasetReader: each op rewinds with reset() and
reads its pairs inside the timed loop, so memory stays at a few vectors no
matter how large the file is.
"""

import logging
import time
from pathlib import Path
from typing import Any

from vsa_bench.harness import Measured, black_box, measure
from vsa_bench.prep.dataset import DatasetReader
from vsa_bench.report import measurement_record
from vsa_bench.treatments.base import Treatment

log = logging.getLogger(__name__)

FIXED_INPUT_PATH = "/bench/vsa"
FIXED_INPUTS = (b"alpha", b"beta", b"gamma")


def _bundle3(engine):
    def op(a, b, c):
        return engine.bundle(engine.bundle(a, b), c)

    return op


def _timed_groups(reader: DatasetReader, ops: int, arity: int, operation) -> int:
    """Rewind, then time `ops` calls over consecutive groups of `arity` vectors."""
    reader.reset()
    start = time.perf_counter_ns()
    for _ in range(ops):
        group = [reader.next_vector() for _ in range(arity)]
        if any(v is None for v in group):
            raise EOFError(f"Dataset ended before {ops} groups of {arity} were read")
        black_box(operation(*group))
    return time.perf_counter_ns() - start


class VsaTreatment(Treatment):
    """Engine op timings, on fixed inputs or streamed from a dataset file."""

    def __init__(self, engine, dataset: Path | None = None) -> None:
        self._engine = engine
        self._dataset = Path(dataset) if dataset is not None else None
        self._inputs = None
        self._reader: DatasetReader | None = None

    @property
    def category(self) -> str:
        return "vsa"

    @property
    def name(self) -> str:
        suffix = "_dataset" if self._dataset is not None else ""
        return f"vsa_{self._engine.name}{suffix}"

    @property
    def label(self) -> str:
        source = self._dataset.name if self._dataset is not None else "fixed inputs"
        return f"VSA: {self._engine.name} / {source}"

    def params_dict(self) -> dict[str, Any]:
        params = self._engine.params_dict()
        if self._dataset is not None:
            params["dataset"] = str(self._dataset)
        return params

    def setup(self, cfg) -> dict[str, Any]:
        self._inputs = [self._engine.encode_data(data, path=FIXED_INPUT_PATH) for data in FIXED_INPUTS]
        if self._dataset is None:
            return {}

        self._reader = DatasetReader(self._dataset)
        meta = self._reader.meta
        log.info("  dataset %s: %d vectors, dim=%d, seed=%d", self._dataset.name, meta.count, meta.dimension, meta.seed)
        return {"dataset_vectors": meta.count, "dataset_dim": meta.dimension}

    def run(self, cfg) -> list[dict[str, Any]]:
        measurements = self._run_fixed(cfg)
        if self._reader is not None:
            measurements.extend(self._run_dataset(cfg))
        return measurements

    def teardown(self) -> None:
        if self._reader is not None:
            self._reader.close()
        self._reader = None
        self._inputs = None

    def _run_fixed(self, cfg) -> list[dict[str, Any]]:
        assert self._inputs is not None
        engine = self._engine
        a, b, c = self._inputs
        dim = getattr(engine, "dimension", None)
        bundle3 = _bundle3(engine)

        ops = [
            ("bundle", lambda: engine.bundle(a, b), {}),
            ("bind", lambda: engine.bind(a, b), {}),
            ("cosine", lambda: engine.cosine(a, b), {}),
            ("bundle_3", lambda: bundle3(a, b, c), {"n": 3}),
        ]
        out = []
        for op_name, operation, extra in ops:
            m = measure(cfg.iters, cfg.warmup_iters, operation)
            log.debug("  vsa.sparsevec.%s: %.1f ns/iter", op_name, m.ns_per_iter)
            out.append(measurement_record(f"vsa.sparsevec.{op_name}", "ns/iter", m, extra={"dim": dim, **extra}))
        return out

    def _run_dataset(self, cfg) -> list[dict[str, Any]]:
        assert self._reader is not None
        engine = self._engine
        meta = self._reader.meta

        # Pairs and triples are disjoint consecutive records
        pairs = cfg.dataset_ops(max(meta.count - 1, 0) // 2)
        triples = cfg.dataset_ops(max(meta.count - 2, 0) // 3)

        ops = [
            ("bundle", 2, pairs, engine.bundle, {}),
            ("bind", 2, pairs, engine.bind, {}),
            ("cosine", 2, pairs, engine.cosine, {}),
            ("bundle_3", 3, triples, _bundle3(engine), {"n": 3}),
        ]
        out = []
        for op_name, arity, n_ops, operation, extra in ops:
            total_ns = _timed_groups(self._reader, n_ops, arity, operation)
            m = Measured.from_elapsed(n_ops, 0, total_ns)
            ops_per_s = n_ops / max(total_ns / 1e9, 1e-12)
            log.info("  vsa_dataset.sparsevec.%s: %d ops, %.0f ops/s", op_name, n_ops, ops_per_s)
            out.append(
                measurement_record(
                    f"vsa_dataset.sparsevec.{op_name}",
                    "ns/op",
                    m,
                    extra={
                        "dim": meta.dimension,
                        "dataset": str(self._dataset),
                        "vectors": meta.count,
                        "ops": n_ops,
                        "ops_per_s": ops_per_s,
                        **extra,
                    },
                )
            )
        return out
