"""Tests for the vsa-bench command line, run as a subprocess."""

import json
import os
import subprocess
import sys

import pytest

from vsa_bench.common import PROJECT_ROOT
from vsa_bench.prep.dataset import expected_file_size, load_dataset
from vsa_bench.prep.vectors import generate_sparse_vector

SMALL_ENGINE = ["--dimension", "1000", "--sparsity", "10", "--chunk-size", "64"]


def run_cli(*args, tmp_path=None):
    env = dict(os.environ)
    if tmp_path is not None:
        env["VSA_BENCH_OUTPUT"] = str(tmp_path / "outputs")
    return subprocess.run(
        [sys.executable, "-m", "vsa_bench.cli", *map(str, args)],
        capture_output=True,
        text=True,
        timeout=300,
        cwd=PROJECT_ROOT,
        env=env,
    )


class TestHelp:
    def test_help_lists_commands(self):
        result = run_cli("--help")
        assert result.returncode == 0
        for command in ("generate-dataset", "dataset-info", "benchmark", "analyse"):
            assert command in result.stdout
        assert "Examples:" in result.stdout

    def test_no_command_fails(self):
        assert run_cli().returncode != 0

    def test_benchmark_requires_target(self):
        assert run_cli("benchmark").returncode != 0

    def test_benchmark_help_lists_targets(self):
        result = run_cli("benchmark", "--help")
        assert result.returncode == 0
        for target in ("vsa", "retrieval", "encode", "suite"):
            assert target in result.stdout

    def test_retrieval_requires_input_dir(self):
        assert run_cli("benchmark", "retrieval").returncode == 2

    def test_unknown_profile_rejected(self):
        assert run_cli("--profile", "medium", "benchmark", "vsa").returncode == 2


class TestGenerateDataset:
    def test_writes_named_file(self, tmp_path):
        out_dir = tmp_path / "datasets"
        result = run_cli(
            "generate-dataset", "-n", "25", "-o", out_dir, "--dimension", "1000", "--sparsity", "10", "--workers", "1"
        )
        assert result.returncode == 0, result.stderr

        path = out_dir / "sparsevec_25_1000_seed42.embr"
        assert path.exists()
        assert path.stat().st_size == expected_file_size(25, 10)
        assert list(out_dir.glob("*.tmp")) == []
        assert "Dataset saved" in result.stderr

        meta, vectors = load_dataset(path)
        assert (meta.count, meta.dimension, meta.seed) == (25, 1000, 42)
        assert vectors[7] == generate_sparse_vector(42, 7, 1000, 10)

    def test_parallel_matches_serial(self, tmp_path):
        common = ["-n", "1000", "--dimension", "1000", "--seed", "3", "--batch-size", "64"]
        assert run_cli("generate-dataset", "-o", tmp_path / "a", "--workers", "1", *common).returncode == 0
        assert run_cli("generate-dataset", "-o", tmp_path / "b", "--workers", "2", *common).returncode == 0
        name = "sparsevec_1k_1000_seed3.embr"
        assert (tmp_path / "a" / name).read_bytes() == (tmp_path / "b" / name).read_bytes()

    def test_invalid_sparsity(self, tmp_path):
        result = run_cli("generate-dataset", "-n", "5", "-o", tmp_path, "--dimension", "10", "--sparsity", "6")
        assert result.returncode == 1
        assert "ValueError" in result.stderr
        assert list(tmp_path.glob("*.embr*")) == []

    @pytest.mark.parametrize("flag,value", [("-n", "-1"), ("--seed", "-5")])
    def test_negative_header_fields(self, tmp_path, flag, value):
        base = {"-n": "5", "--seed": "42"}
        base[flag] = value
        args = ["-n", base["-n"], "--seed", base["--seed"], "-o", tmp_path, "--dimension", "100", "--workers", "1"]
        result = run_cli("generate-dataset", *args)
        assert result.returncode == 1
        assert "ValueError" in result.stderr
        assert "Traceback" not in result.stderr
        assert list(tmp_path.glob("*.embr*")) == []


class TestDatasetInfo:
    def test_prints_meta(self, small_dataset):
        result = run_cli("dataset-info", small_dataset)
        assert result.returncode == 0, result.stderr
        assert "Vectors: 25" in result.stdout
        assert "Dimension: 1000" in result.stdout
        assert "Seed: 42" in result.stdout

    def test_rejects_foreign_file(self, tmp_path):
        path = tmp_path / "foreign.bin"
        path.write_bytes(b"NOT A DATASET" + bytes(100))
        result = run_cli("dataset-info", path)
        assert result.returncode == 1
        assert "DatasetFormatError" in result.stderr

    def test_missing_file(self, tmp_path):
        result = run_cli("dataset-info", tmp_path / "missing.embr")
        assert result.returncode == 1
        assert "FileNotFoundError" in result.stderr


class TestBenchmark:
    def test_vsa_to_stdout(self, tmp_path):
        result = run_cli("--results-dir", tmp_path / "results", "benchmark", "vsa", *SMALL_ENGINE, tmp_path=tmp_path)
        assert result.returncode == 0, result.stderr

        report = json.loads(result.stdout)
        assert report["run"]["profile"] == "quick"
        assert report["run"]["seed"] == 0
        assert len(report["measurements"]) == 4
        assert (tmp_path / "results" / "vsa.jsonl").exists()

    def test_vsa_dataset_to_file(self, tmp_path, small_dataset):
        out = tmp_path / "report.json"
        global_args = ["--seed", "7", "--out", out, "--results-dir", tmp_path / "results"]
        result = run_cli(*global_args, "benchmark", "vsa", "--dataset", small_dataset)
        assert result.returncode == 0, result.stderr
        assert result.stdout == ""

        report = json.loads(out.read_text(encoding="utf-8"))
        assert report["run"]["seed"] == 7
        names = {m["name"] for m in report["measurements"]}
        assert "vsa_dataset.sparsevec.cosine" in names
        assert all(m["extra"]["dim"] == 1000 for m in report["measurements"])

    def test_retrieval(self, tmp_path, corpus_dir):
        target_args = ["--input-dir", corpus_dir, "--k", "3", "--queries", "5", "--beam-width", "2", *SMALL_ENGINE]
        result = run_cli("--results-dir", tmp_path / "results", "benchmark", "retrieval", *target_args)
        assert result.returncode == 0, result.stderr
        flat, hierarchical = json.loads(result.stdout)["measurements"]
        assert flat["name"] == "retrieval.query_codebook_with_index"
        assert flat["extra"]["stats"]["queries"] == 5
        assert flat["extra"]["stats"]["k"] == 3
        assert hierarchical["name"] == "retrieval.query_hierarchical"
        assert hierarchical["extra"]["bounds"]["beam_width"] == 2

    def test_retrieval_flat_only(self, tmp_path, corpus_dir):
        target_args = ["--input-dir", corpus_dir, "--queries", "3", "--no-hierarchical", *SMALL_ENGINE]
        result = run_cli("--results-dir", tmp_path / "results", "benchmark", "retrieval", *target_args)
        assert result.returncode == 0, result.stderr
        (m,) = json.loads(result.stdout)["measurements"]
        assert m["name"] == "retrieval.query_codebook_with_index"

    def test_retrieval_invalid_bounds(self, tmp_path, corpus_dir):
        target_args = ["--input-dir", corpus_dir, "--max-depth", "0", *SMALL_ENGINE]
        result = run_cli("--results-dir", tmp_path / "results", "benchmark", "retrieval", *target_args)
        assert result.returncode == 1
        assert "max_depth" in result.stderr

    def test_retrieval_bad_dir(self, tmp_path, corpus_dir):
        result = run_cli("--results-dir", tmp_path, "benchmark", "retrieval", "--input-dir", corpus_dir / "a.txt")
        assert result.returncode == 1
        assert "must be a directory" in result.stderr

    def test_encode(self, tmp_path, corpus_dir):
        result = run_cli("--results-dir", tmp_path / "results", "benchmark", "encode", "-i", corpus_dir, *SMALL_ENGINE)
        assert result.returncode == 0, result.stderr
        (m,) = json.loads(result.stdout)["measurements"]
        assert m["name"] == "encode.ingest"
        assert m["bytes_processed"] == 1162

    def test_encode_verify_with_prefix(self, tmp_path, corpus_dir):
        target_args = ["-i", corpus_dir, "--prefix", "docs", "--verify", *SMALL_ENGINE]
        result = run_cli("--results-dir", tmp_path / "results", "benchmark", "encode", *target_args)
        assert result.returncode == 0, result.stderr
        (m,) = json.loads(result.stdout)["measurements"]
        assert m["extra"]["prefix"] == "docs"
        assert m["extra"]["verify"] == {"ok": True, "mismatches": 0}

    def test_suite(self, tmp_path, corpus_dir):
        results_dir = tmp_path / "results"
        target_args = ["-i", corpus_dir, "--retrieval-input-dir", corpus_dir, *SMALL_ENGINE]
        result = run_cli("--results-dir", results_dir, "benchmark", "suite", *target_args)
        assert result.returncode == 0, result.stderr
        names = [m["name"] for m in json.loads(result.stdout)["measurements"]]
        assert names[:4] == ["vsa.sparsevec.bundle", "vsa.sparsevec.bind", "vsa.sparsevec.cosine", "vsa.sparsevec.bundle_3"]
        assert names[4:] == ["encode.ingest", "retrieval.query_codebook_with_index", "retrieval.query_hierarchical"]
        assert sorted(p.name for p in results_dir.glob("*.jsonl")) == ["encode.jsonl", "retrieval.jsonl", "vsa.jsonl"]


class TestAnalyse:
    @pytest.fixture
    def results_dir(self, tmp_path):
        results = tmp_path / "results"
        assert run_cli("--results-dir", results, "benchmark", "vsa", *SMALL_ENGINE).returncode == 0
        return results

    def test_writes_charts(self, tmp_path, results_dir):
        charts_dir = tmp_path / "charts"
        result = run_cli("--results-dir", results_dir, "analyse", "--charts-dir", charts_dir)
        assert result.returncode == 0, result.stderr
        assert "vsa.sparsevec.bind" in result.stdout
        assert (charts_dir / "vsa_op_latency.json").exists()

    def test_no_results(self, tmp_path):
        result = run_cli("--results-dir", tmp_path / "none", "analyse", "--charts-dir", tmp_path / "charts")
        assert result.returncode == 0
        assert "No JSONL files" in result.stderr
