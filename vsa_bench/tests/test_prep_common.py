"""Tests for prep/common.py shared helpers."""

from pathlib import Path

from vsa_bench.prep.common import dataset_filename, dataset_path, format_count


class TestFormatCount:
    def test_thousands(self):
        assert format_count(10_000) == "10k"

    def test_millions(self):
        assert format_count(1_000_000) == "1m"
        assert format_count(5_000_000) == "5m"

    def test_not_round(self):
        assert format_count(1500) == "1500"
        assert format_count(999) == "999"

    def test_thousand_multiple_of_million_prefers_m(self):
        assert format_count(2_000_000) == "2m"

    def test_large_non_million(self):
        assert format_count(1_500_000) == "1500k"


class TestDatasetFilename:
    def test_name(self):
        assert dataset_filename(10_000, 10_000, 42) == "sparsevec_10k_10000_seed42.embr"

    def test_path(self, tmp_path):
        assert dataset_path(tmp_path, 25, 1000, 1) == Path(tmp_path) / "sparsevec_25_1000_seed1.embr"
