"""Data preparation: deterministic sparse vectors and EMBR_DST dataset files.

Exports the generator, the codec and the streaming reader/writer.
"""

from vsa_bench.prep.dataset import (
    HEADER_SIZE,
    DatasetFormatError,
    DatasetMeta,
    DatasetReader,
    expected_file_size,
    load_dataset,
    read_dataset_meta,
    write_dataset,
    write_dataset_streaming,
)
from vsa_bench.prep.vectors import GenerateConfig, SparseTernaryVector, generate_dataset, generate_sparse_vector

__all__ = [
    "HEADER_SIZE",
    "DatasetFormatError",
    "DatasetMeta",
    "DatasetReader",
    "GenerateConfig",
    "SparseTernaryVector",
    "expected_file_size",
    "generate_dataset",
    "generate_sparse_vector",
    "load_dataset",
    "read_dataset_meta",
    "write_dataset",
    "write_dataset_streaming",
]
