"""Shared helpers for prep modules: dataset file naming."""

from pathlib import Path


def format_count(count: int) -> str:
    """Short vector-count suffix for file names: 10k, 1m, or the plain number."""
    if count >= 1_000_000 and count % 1_000_000 == 0:
        return f"{count // 1_000_000}m"
    if count >= 1_000 and count % 1_000 == 0:
        return f"{count // 1_000}k"
    return str(count)


def dataset_filename(count: int, dimension: int, seed: int) -> str:
    return f"sparsevec_{format_count(count)}_{dimension}_seed{seed}.embr"


def dataset_path(output_dir: Path, count: int, dimension: int, seed: int) -> Path:
    return Path(output_dir) / dataset_filename(count, dimension, seed)
