"""Prep module: deterministic sparse ternary vector generation.

Every vector is a pure function of (master_seed, index, dimension, sparsity):
the per-vector seed is derived from the index, never from a shared stream, so
the same dataset comes out regardless of batch size or worker count.
"""

import logging
import os
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from functools import partial

import numpy as np

from vsa_bench.common import DEFAULT_COUNT, DEFAULT_DIMENSION, DEFAULT_SEED

log = logging.getLogger(__name__)

# Odd 64-bit multiplier spreading low-order seed bits. Changing it changes the
# content of every dataset for a given seed.
SEED_MIX = 0x517CC1B727220A95
U64_MASK = 0xFFFF_FFFF_FFFF_FFFF


class SparseTernaryVector:
    """Vector over {-1, 0, +1} stored as its +1 (pos) and -1 (neg) coordinates."""

    def __init__(self, pos=(), neg=()):
        self.pos = np.asarray(pos, dtype=np.uint32)
        self.neg = np.asarray(neg, dtype=np.uint32)

    @property
    def nnz(self) -> int:
        return len(self.pos) + len(self.neg)

    def is_canonical(self) -> bool:
        """True when pos/neg are strictly ascending and share no coordinate."""
        if np.any(np.diff(self.pos.astype(np.int64)) <= 0):
            return False
        if np.any(np.diff(self.neg.astype(np.int64)) <= 0):
            return False
        return len(np.intersect1d(self.pos, self.neg, assume_unique=True)) == 0

    def to_dense(self, dimension: int) -> np.ndarray:
        dense = np.zeros(dimension, dtype=np.int8)
        dense[self.pos] = 1
        dense[self.neg] = -1
        return dense

    def __eq__(self, other):
        if not isinstance(other, SparseTernaryVector):
            return NotImplemented
        return np.array_equal(self.pos, other.pos) and np.array_equal(self.neg, other.neg)

    __hash__ = None

    def __repr__(self):
        return f"SparseTernaryVector(pos={len(self.pos)} idx, neg={len(self.neg)} idx)"


@dataclass(frozen=True)
class GenerateConfig:
    """Parameters of a synthetic dataset; sparsity is the count per sign."""

    count: int = DEFAULT_COUNT
    dimension: int = DEFAULT_DIMENSION
    seed: int = DEFAULT_SEED
    sparsity: int | None = None

    def __post_init__(self):
        if self.sparsity is None:
            # ~1% of coordinates per sign
            object.__setattr__(self, "sparsity", self.dimension // 100)

    @property
    def density(self) -> float:
        return 2 * self.sparsity / self.dimension if self.dimension else 0.0


def vector_seed(master_seed: int, index: int) -> int:
    """Per-vector seed: (master_seed + index) * SEED_MIX with 64-bit wraparound."""
    return (((master_seed + index) & U64_MASK) * SEED_MIX) & U64_MASK


def check_generate_params(dimension: int, sparsity: int) -> None:
    if dimension < 0 or sparsity < 0:
        raise ValueError(f"dimension and sparsity must be non-negative (got {dimension}, {sparsity})")
    if sparsity * 2 > dimension:
        raise ValueError(f"sparsity*2 ({sparsity * 2}) exceeds dimension ({dimension})")


def generate_sparse_vector(master_seed: int, index: int, dimension: int, sparsity: int) -> SparseTernaryVector:
    """Generate the vector at `index` of the dataset keyed by `master_seed`."""
    check_generate_params(dimension, sparsity)
    rng = np.random.default_rng(vector_seed(master_seed, index))
    perm = rng.permutation(dimension)
    pos = np.sort(perm[:sparsity]).astype(np.uint32)
    neg = np.sort(perm[sparsity : 2 * sparsity]).astype(np.uint32)
    return SparseTernaryVector(pos, neg)


def resolve_workers(workers):
    return max(1, workers if workers is not None else (os.cpu_count() or 1))


def generate_range(
    config: GenerateConfig, start: int, end: int, executor=None, workers: int = 1
) -> list[SparseTernaryVector]:
    """Generate vectors [start, end) in index order, optionally on an executor."""
    gen = partial(generate_sparse_vector, config.seed, dimension=config.dimension, sparsity=config.sparsity)
    if executor is None:
        return [gen(i) for i in range(start, end)]
    chunksize = max(1, (end - start) // (workers * 4))
    # Executor.map yields results in submission order
    return list(executor.map(gen, range(start, end), chunksize=chunksize))


def generate_dataset(config: GenerateConfig, workers=None) -> list[SparseTernaryVector]:
    """Materialize the whole dataset in memory.

    Args:
        config: Dataset parameters.
        workers: Worker processes (None = CPU count, 1 = in-process).

    Returns:
        `config.count` vectors ordered by index.
    """
    check_generate_params(config.dimension, config.sparsity)
    n_workers = resolve_workers(workers)
    if n_workers == 1 or config.count < 2:
        return generate_range(config, 0, config.count)

    log.debug("Generating %d vectors on %d workers", config.count, n_workers)
    with ProcessPoolExecutor(max_workers=n_workers) as executor:
        return generate_range(config, 0, config.count, executor=executor, workers=n_workers)
