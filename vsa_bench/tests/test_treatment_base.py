"""Tests for the Treatment ABC in treatments/base.py."""

import pytest

from vsa_bench.treatments.base import Treatment


class TestTreatmentABC:
    def test_cannot_instantiate_directly(self):
        with pytest.raises(TypeError):
            Treatment()

    def test_concrete_subclass_works(self):
        class FakeTreatment(Treatment):
            @property
            def category(self):
                return "test"

            @property
            def name(self):
                return "test_fake"

            @property
            def label(self):
                return "Test: fake"

            def setup(self, cfg):
                return {"rows_loaded": 100}

            def run(self, cfg):
                return []

            def teardown(self):
                pass

        t = FakeTreatment()
        assert t.category == "test"
        assert t.name == "test_fake"
        assert t.label == "Test: fake"
        assert t.params_dict() == {}

    def test_missing_method_raises(self):
        class IncompleteTreatment(Treatment):
            @property
            def category(self):
                return "test"

        with pytest.raises(TypeError):
            IncompleteTreatment()
