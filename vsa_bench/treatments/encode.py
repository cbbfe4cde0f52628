"""Encode treatment: time full ingest passes over files or directories.

With `verify`, every pass also extracts the codebook into a scratch directory
and compares each file's SHA-256 against the original input.
"""

import hashlib
import logging
import tempfile
from pathlib import Path
from typing import Any

from vsa_bench.common import CHUNK_SIZE, fmt_bytes
from vsa_bench.engine import collect_files, logical_path
from vsa_bench.harness import measure
from vsa_bench.prep.dataset import LEN_PREFIX
from vsa_bench.report import measurement_record
from vsa_bench.treatments.base import Treatment

log = logging.getLogger(__name__)

MAX_ENCODE_WARMUP = 5


def codebook_size_bytes(codebook) -> int:
    """Bytes the codebook takes as dataset records (two u32 lengths + u32 indices)."""
    return sum(2 * LEN_PREFIX.size + 4 * vec.nnz for _, vec in codebook.items())


def sha256_file(path: Path) -> str:
    return hashlib.sha256(Path(path).read_bytes()).hexdigest()


def count_mismatches(expected: dict[str, str], out_dir: Path) -> int:
    """Logical paths whose file under out_dir is missing or hashes differently."""
    mismatches = 0
    for logical, digest in expected.items():
        extracted = Path(out_dir) / logical
        if not extracted.is_file() or sha256_file(extracted) != digest:
            mismatches += 1
    return mismatches


class EncodeTreatment(Treatment):
    """One ingest pass over every input per measured iteration."""

    def __init__(
        self,
        engine,
        inputs: list[Path],
        chunk_size: int = CHUNK_SIZE,
        prefix: str | None = None,
        verify: bool = False,
    ) -> None:
        self._engine = engine
        self._inputs = [Path(p) for p in inputs]
        self._chunk_size = chunk_size
        self._prefix = prefix
        self._verify = verify
        self._raw_bytes = 0
        self._hashes: dict[str, str] = {}
        self._last_sizes: dict[str, Any] = {}
        self._last_verify: dict[str, Any] | None = None

    @property
    def category(self) -> str:
        return "encode"

    @property
    def name(self) -> str:
        return f"encode_{self._engine.name}_" + "+".join(p.name for p in self._inputs)

    @property
    def label(self) -> str:
        return f"Encode: {self._engine.name} / {len(self._inputs)} input(s)"

    def params_dict(self) -> dict[str, Any]:
        return {**self._engine.params_dict(), "chunk_size": self._chunk_size, "verify": self._verify}

    def setup(self, cfg) -> dict[str, Any]:
        if not self._inputs:
            raise ValueError("at least one input is required")
        for p in self._inputs:
            if not p.exists():
                raise FileNotFoundError(f"Input not found: {p}")

        files = [(p, f) for p in self._inputs for f in collect_files(p)]
        self._raw_bytes = sum(f.stat().st_size for _, f in files)
        if self._verify:
            self._hashes = {logical_path(p, f, self._prefix): sha256_file(f) for p, f in files}
        log.info("  %d file(s), %s", len(files), fmt_bytes(self._raw_bytes))
        return {"files": len(files), "raw_bytes": self._raw_bytes}

    def run(self, cfg) -> list[dict[str, Any]]:
        m = measure(cfg.encode_iters, min(cfg.warmup_iters, MAX_ENCODE_WARMUP), self._ingest_pass)
        record = measurement_record(
            "encode.ingest",
            "ns/iter",
            m,
            bytes_processed=self._raw_bytes,
            extra={
                "inputs": [str(p) for p in self._inputs],
                "prefix": self._prefix,
                "sizes": self._last_sizes,
                "verify": self._last_verify,
            },
        )
        throughput = record["throughput_bytes_per_s"]
        log.info("  %.1f ms/pass, %s/s", m.ns_per_iter / 1e6, fmt_bytes(throughput or 0))
        if self._last_verify is not None and not self._last_verify["ok"]:
            log.warning("  verify: %d file(s) did not round-trip", self._last_verify["mismatches"])
        return [record]

    def teardown(self) -> None:
        self._hashes = {}
        self._last_sizes = {}
        self._last_verify = None

    def _ingest_pass(self):
        codebook = self._engine.ingest(self._inputs, chunk_size=self._chunk_size, prefix=self._prefix)
        size = codebook_size_bytes(codebook)
        self._last_sizes = {
            "raw_bytes": codebook.raw_bytes,
            "chunks": len(codebook),
            "codebook_bytes": size,
            "effective_ratio": codebook.raw_bytes / size if size else 0.0,
        }
        if self._verify:
            with tempfile.TemporaryDirectory(prefix="vsa-bench-extract-") as out_dir:
                self._engine.extract(codebook, out_dir)
                mismatches = count_mismatches(self._hashes, Path(out_dir))
            self._last_verify = {"ok": mismatches == 0, "mismatches": mismatches}
        return codebook
