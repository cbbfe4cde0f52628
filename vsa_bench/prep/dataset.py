"""Prep module: EMBR_DST dataset files.

Binary layout, all integers little-endian:

    Header (68 bytes):
        magic      8s   b"EMBR_DST"
        version    u32  1
        count      u64  number of vectors
        dimension  u64  vector dimension
        seed       u64  master seed used for generation
        reserved   32s  zero on write, ignored on read

    Record (repeated `count` times):
        pos_len u32, pos u32[pos_len], neg_len u32, neg u32[neg_len]

Writers: `write_dataset` (already materialized vectors) and
`write_dataset_streaming` (generates in batches, memory bounded by one batch).
Readers: `read_dataset_meta` (header only), `load_dataset` (whole file) and
`DatasetReader` (forward cursor with reset).
"""

import logging
import struct
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from vsa_bench.common import DEFAULT_BATCH_SIZE, IO_BUFFER_SIZE
from vsa_bench.prep.vectors import (
    GenerateConfig,
    SparseTernaryVector,
    check_generate_params,
    generate_range,
    resolve_workers,
)

log = logging.getLogger(__name__)

MAGIC = b"EMBR_DST"
FORMAT_VERSION = 1
RESERVED_SIZE = 32

HEADER = struct.Struct(f"<8sIQQQ{RESERVED_SIZE}s")
HEADER_SIZE = HEADER.size  # 68
LEN_PREFIX = struct.Struct("<I")
INDEX_DTYPE = np.dtype("<u4")
U32_MAX = 0xFFFF_FFFF
U64_MAX = 0xFFFF_FFFF_FFFF_FFFF


class DatasetFormatError(ValueError):
    """Raised when a file is not an EMBR_DST dataset this version can read."""


@dataclass(frozen=True)
class DatasetMeta:
    count: int
    dimension: int
    seed: int


# ── Codec ────────────────────────────────────────────────────────


def _read_exact(stream, n: int, what: str) -> bytes:
    data = stream.read(n)
    if len(data) != n:
        raise EOFError(f"Truncated dataset: expected {n} bytes for {what}, got {len(data)}")
    return data


def pack_header(count: int, dimension: int, seed: int) -> bytes:
    for field_name, value in (("count", count), ("dimension", dimension), ("seed", seed)):
        if not 0 <= value <= U64_MAX:
            raise ValueError(f"{field_name} must be in [0, 2**64) (got {value})")
    if dimension > U32_MAX + 1:
        raise ValueError(f"dimension {dimension} does not fit u32 indices")
    return HEADER.pack(MAGIC, FORMAT_VERSION, count, dimension, seed, bytes(RESERVED_SIZE))


def unpack_header(raw: bytes) -> DatasetMeta:
    """Parse and validate a 68-byte header."""
    magic, version, count, dimension, seed, _reserved = HEADER.unpack(raw)
    if magic != MAGIC:
        raise DatasetFormatError(f"Invalid magic bytes: expected {MAGIC!r}, got {magic!r}")
    if version != FORMAT_VERSION:
        raise DatasetFormatError(f"Unsupported format version: {version}")
    return DatasetMeta(count=count, dimension=dimension, seed=seed)


def read_header(stream) -> DatasetMeta:
    # Validate magic before reading the rest so a foreign file fails fast
    magic = _read_exact(stream, len(MAGIC), "magic")
    if magic != MAGIC:
        raise DatasetFormatError(f"Invalid magic bytes: expected {MAGIC!r}, got {magic!r}")
    rest = _read_exact(stream, HEADER_SIZE - len(MAGIC), "header")
    return unpack_header(magic + rest)


def _pack_indices(indices: np.ndarray) -> bytes:
    if len(indices) > U32_MAX:
        raise ValueError(f"{len(indices)} indices exceed the u32 length prefix")
    return LEN_PREFIX.pack(len(indices)) + np.asarray(indices, dtype=INDEX_DTYPE).tobytes()


def pack_record(vec: SparseTernaryVector) -> bytes:
    return _pack_indices(vec.pos) + _pack_indices(vec.neg)


def _read_indices(stream, what: str) -> np.ndarray:
    (n,) = LEN_PREFIX.unpack(_read_exact(stream, LEN_PREFIX.size, f"{what}_len"))
    raw = _read_exact(stream, n * INDEX_DTYPE.itemsize, f"{what} indices")
    return np.frombuffer(raw, dtype=INDEX_DTYPE).astype(np.uint32)


def read_record(stream) -> SparseTernaryVector:
    pos = _read_indices(stream, "pos")
    neg = _read_indices(stream, "neg")
    return SparseTernaryVector(pos, neg)


def expected_file_size(count: int, sparsity: int) -> int:
    """File size of a generated dataset: header plus fixed-size records."""
    per_vector = 4 + sparsity * 4 + 4 + sparsity * 4
    return HEADER_SIZE + count * per_vector


# ── Writers ──────────────────────────────────────────────────────


def write_dataset(path, vectors: list[SparseTernaryVector], config: GenerateConfig) -> None:
    """Write already materialized vectors; the header count is len(vectors)."""
    with open(path, "wb", buffering=IO_BUFFER_SIZE) as f:
        f.write(pack_header(len(vectors), config.dimension, config.seed))
        for vec in vectors:
            f.write(pack_record(vec))


def write_dataset_streaming(path, config: GenerateConfig, batch_size: int = DEFAULT_BATCH_SIZE, workers=None) -> None:
    """Generate and write a dataset batch by batch.

    Peak memory is one batch of vectors, so counts far beyond RAM are fine.
    Within a batch, vectors are generated in parallel and written back in
    index order; the output is byte-identical to `write_dataset` for the same
    config regardless of `batch_size` or `workers`.

    Args:
        path: Output file, created or truncated.
        config: Dataset parameters.
        batch_size: Vectors per batch (values below 1 are treated as 1).
        workers: Worker processes (None = CPU count, 1 = in-process).
    """
    check_generate_params(config.dimension, config.sparsity)
    batch_size = max(1, batch_size)
    n_workers = resolve_workers(workers)

    executor = ProcessPoolExecutor(max_workers=n_workers) if n_workers > 1 else None
    try:
        with open(path, "wb", buffering=IO_BUFFER_SIZE) as f:
            f.write(pack_header(config.count, config.dimension, config.seed))
            for start in range(0, config.count, batch_size):
                end = min(start + batch_size, config.count)
                batch = generate_range(config, start, end, executor=executor, workers=n_workers)
                for vec in batch:
                    f.write(pack_record(vec))
                log.debug("  wrote vectors %d..%d of %d", start, end, config.count)
    finally:
        if executor is not None:
            executor.shutdown()


# ── Readers ──────────────────────────────────────────────────────


def read_dataset_meta(path) -> DatasetMeta:
    """Read only the header of a dataset file."""
    with open(path, "rb") as f:
        return read_header(f)


def load_dataset(path) -> tuple[DatasetMeta, list[SparseTernaryVector]]:
    """Load header and every record into memory (small/medium datasets)."""
    with open(path, "rb", buffering=IO_BUFFER_SIZE) as f:
        meta = read_header(f)
        vectors = [read_record(f) for _ in range(meta.count)]
    return meta, vectors


class DatasetReader:
    """Sequential, resettable cursor over the records of a dataset file.

    `next_vector()` returns None once `meta.count` records were read; the
    iterator protocol stops at the same point. `reset()` seeks back to the
    first record so callers can make several independent passes.
    """

    def __init__(self, path):
        self.path = Path(path)
        self._f = open(self.path, "rb", buffering=IO_BUFFER_SIZE)
        try:
            self._meta = read_header(self._f)
        except BaseException:
            self._f.close()
            raise
        self._index = 0

    @property
    def meta(self) -> DatasetMeta:
        return self._meta

    @property
    def position(self) -> int:
        """Index of the next record to be read."""
        return self._index

    def next_vector(self) -> SparseTernaryVector | None:
        if self._index >= self._meta.count:
            return None
        vec = read_record(self._f)
        self._index += 1
        return vec

    def read_batch(self, batch_size: int) -> list[SparseTernaryVector]:
        """Read up to `batch_size` vectors; fewer near the end, [] when exhausted."""
        to_read = max(0, min(batch_size, self._meta.count - self._index))
        return [self.next_vector() for _ in range(to_read)]

    def reset(self) -> None:
        self._f.seek(HEADER_SIZE)
        self._index = 0

    def close(self) -> None:
        self._f.close()

    def __iter__(self):
        return self

    def __next__(self) -> SparseTernaryVector:
        vec = self.next_vector()
        if vec is None:
            raise StopIteration
        return vec

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
