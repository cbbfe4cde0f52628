"""Shared fixtures for vsa-bench tests."""

import numpy as np
import pytest

from vsa_bench.engine import SparseTernaryEngine
from vsa_bench.harness import BenchConfig
from vsa_bench.prep.dataset import write_dataset_streaming
from vsa_bench.prep.vectors import GenerateConfig


@pytest.fixture
def tmp_results_dir(tmp_path):
    """Temporary results directory for test isolation."""
    results = tmp_path / "results"
    results.mkdir()
    return results


@pytest.fixture
def small_config():
    """25 vectors of dimension 1000 with 10 nonzeros per sign."""
    return GenerateConfig(count=25, dimension=1000, seed=42, sparsity=10)


@pytest.fixture
def small_dataset(tmp_path, small_config):
    """small_config written to disk in-process."""
    path = tmp_path / "small.embr"
    write_dataset_streaming(path, small_config, batch_size=7, workers=1)
    return path


@pytest.fixture
def small_engine():
    return SparseTernaryEngine(dimension=1000, sparsity=10)


@pytest.fixture
def corpus_dir(tmp_path):
    """Directory of a few pseudo-random files, 19 chunks at chunk_size=64."""
    rng = np.random.default_rng(7)
    root = tmp_path / "corpus"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_bytes(rng.bytes(64 * 8))
    (root / "b.bin").write_bytes(rng.bytes(64 * 5 + 10))
    (root / "sub" / "c.md").write_bytes(rng.bytes(64 * 5))
    return root


@pytest.fixture
def quick_cfg():
    return BenchConfig(profile="quick", seed=0)
