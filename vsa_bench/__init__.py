"""
vsa-bench: contract benchmarks for sparse ternary vector-symbolic engines.

Deterministic synthetic datasets in the EMBR_DST binary format, a streaming
reader/writer for them, and a warmup-then-measure harness that reports mean
timings, latency percentiles and recall@k as JSON.
"""

__version__ = "0.3.0"

# Report schema version, bumped when measurement record keys change.
SCHEMA_VERSION = 1
