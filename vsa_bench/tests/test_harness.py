"""Tests for the benchmark execution harness."""

import json

import pytest

from vsa_bench import harness
from vsa_bench.harness import BenchConfig, Measured, black_box, measure, run_suite, run_treatment
from vsa_bench.report import measurement_record
from vsa_bench.treatments.base import Treatment


class FakeTreatment(Treatment):
    """Minimal treatment for testing the harness execution flow."""

    def __init__(self, name="fake_treatment", fail=False, fail_setup=False):
        self._name = name
        self._fail = fail
        self._fail_setup = fail_setup
        self.calls = []

    @property
    def category(self):
        return "test"

    @property
    def name(self):
        return self._name

    @property
    def label(self):
        return "Test: fake treatment"

    def params_dict(self):
        return {"n": 100, "engine": "fake"}

    def setup(self, cfg):
        self.calls.append("setup")
        if self._fail_setup:
            raise ValueError("bad input")
        return {"rows_loaded": 100}

    def run(self, cfg):
        self.calls.append("run")
        if self._fail:
            raise RuntimeError("boom")
        m = measure(3, 1, lambda: 1 + 1)
        return [measurement_record(f"{self._name}.op", "ns/iter", m)]

    def teardown(self):
        self.calls.append("teardown")


class TestMeasure:
    def test_call_counts(self):
        calls = []
        m = measure(10, 5, lambda: calls.append(1))
        assert len(calls) == 15
        assert m.iters == 10
        assert m.warmup_iters == 5

    def test_normalization(self):
        m = measure(10, 5, lambda: sum(range(100)))
        assert m.total_ns >= 0
        assert m.ns_per_iter == m.total_ns / 10

    def test_zero_iters(self):
        calls = []
        m = measure(0, 2, lambda: calls.append(1))
        assert len(calls) == 2
        assert m.iters == 0
        assert m.ns_per_iter == m.total_ns

    def test_results_reach_black_box(self):
        sentinel = object()
        measure(1, 0, lambda: sentinel)
        assert harness._sink is sentinel

    def test_black_box_returns_value(self):
        assert black_box(42) == 42


class TestMeasured:
    def test_from_elapsed(self):
        m = Measured.from_elapsed(iters=4, warmup_iters=2, total_ns=1000)
        assert m.ns_per_iter == 250.0

    def test_from_elapsed_zero_iters(self):
        assert Measured.from_elapsed(0, 0, 500).ns_per_iter == 500.0

    def test_to_dict(self):
        assert Measured(1, 0, 10, 10.0).to_dict() == {
            "iters": 1,
            "warmup_iters": 0,
            "total_ns": 10,
            "ns_per_iter": 10.0,
        }


class TestBenchConfig:
    def test_quick_profile(self):
        cfg = BenchConfig("quick")
        assert (cfg.warmup_iters, cfg.iters) == (32, 300)
        assert cfg.retrieval_queries == 100
        assert cfg.encode_iters == 3

    def test_full_profile(self):
        cfg = BenchConfig("full", seed=9)
        assert (cfg.warmup_iters, cfg.iters) == (200, 3000)
        assert cfg.retrieval_queries == 1000
        assert cfg.encode_iters == 10
        assert cfg.seed == 9

    def test_dataset_ops_cap(self):
        assert BenchConfig("quick").dataset_ops(50_000) == 10_000
        assert BenchConfig("quick").dataset_ops(12) == 12
        assert BenchConfig("full").dataset_ops(50_000) == 50_000

    def test_unknown_profile(self):
        with pytest.raises(ValueError, match="Unknown profile"):
            BenchConfig("medium")


class TestRunTreatment:
    def test_lifecycle_order(self, quick_cfg):
        treatment = FakeTreatment()
        run_treatment(treatment, quick_cfg)
        assert treatment.calls == ["setup", "run", "teardown"]

    def test_returns_measurements(self, quick_cfg):
        measurements = run_treatment(FakeTreatment(), quick_cfg)
        assert len(measurements) == 1
        assert measurements[0]["name"] == "fake_treatment.op"
        assert measurements[0]["iters"] == 3

    def test_no_results_dir_writes_nothing(self, tmp_path, quick_cfg):
        run_treatment(FakeTreatment(), quick_cfg)
        assert list(tmp_path.glob("*.jsonl")) == []

    def test_creates_jsonl_file(self, tmp_results_dir, quick_cfg):
        run_treatment(FakeTreatment(), quick_cfg, results_dir=tmp_results_dir)
        assert [p.name for p in tmp_results_dir.glob("*.jsonl")] == ["test.jsonl"]

    def test_record_fields(self, tmp_results_dir, quick_cfg):
        run_treatment(FakeTreatment(), quick_cfg, results_dir=tmp_results_dir)
        record = json.loads((tmp_results_dir / "test.jsonl").read_text(encoding="utf-8").strip())

        # Common fields
        for key in ("category", "treatment", "profile", "seed", "wall_time_setup_ms", "wall_time_run_ms"):
            assert key in record
        assert "peak_rss_mb" in record
        assert "timestamp" in record
        assert "platform" in record

        # Treatment params and setup metrics
        assert record["n"] == 100
        assert record["engine"] == "fake"
        assert record["rows_loaded"] == 100

        # Measurement
        assert record["name"] == "fake_treatment.op"
        assert record["ns_per_iter"] >= 0

    def test_appends(self, tmp_results_dir, quick_cfg):
        run_treatment(FakeTreatment("a"), quick_cfg, results_dir=tmp_results_dir)
        run_treatment(FakeTreatment("b"), quick_cfg, results_dir=tmp_results_dir)
        lines = (tmp_results_dir / "test.jsonl").read_text(encoding="utf-8").strip().split("\n")
        assert len(lines) == 2

    def test_failure_propagates_after_teardown(self, quick_cfg):
        treatment = FakeTreatment(fail=True)
        with pytest.raises(RuntimeError, match="boom"):
            run_treatment(treatment, quick_cfg)
        assert treatment.calls == ["setup", "run", "teardown"]

    def test_setup_failure_still_tears_down(self, tmp_results_dir, quick_cfg):
        treatment = FakeTreatment(fail_setup=True)
        with pytest.raises(ValueError, match="bad input"):
            run_treatment(treatment, quick_cfg, results_dir=tmp_results_dir)
        assert treatment.calls == ["setup", "teardown"]
        assert list(tmp_results_dir.glob("*.jsonl")) == []


class TestRunSuite:
    def test_report_shape(self, quick_cfg):
        report = run_suite([FakeTreatment("a"), FakeTreatment("b")], quick_cfg)
        assert report["run"]["profile"] == "quick"
        assert [m["name"] for m in report["measurements"]] == ["a.op", "b.op"]

    def test_first_failure_stops_session(self, quick_cfg):
        later = FakeTreatment("later")
        with pytest.raises(RuntimeError):
            run_suite([FakeTreatment("bad", fail=True), later], quick_cfg)
        assert later.calls == []
