"""Treatment ABC: one benchmark family run by the harness."""

from abc import ABC, abstractmethod
from typing import Any


class Treatment(ABC):
    """A benchmark family (vsa ops, retrieval, encode).

    The harness calls setup() once, then run(), then teardown() even when
    run() raised. run() returns measurement records built with
    vsa_bench.report.measurement_record().
    """

    @property
    @abstractmethod
    def category(self) -> str:
        """Results file stem: records are appended to {category}.jsonl."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique id of this permutation, e.g. 'vsa_sparse-ternary_dataset'."""

    @property
    @abstractmethod
    def label(self) -> str:
        """Human-readable line for progress logs."""

    def params_dict(self) -> dict[str, Any]:
        return {}

    @abstractmethod
    def setup(self, cfg) -> dict[str, Any]:
        """Prepare inputs; the returned dict is merged into each results record."""

    @abstractmethod
    def run(self, cfg) -> list[dict[str, Any]]: ...

    @abstractmethod
    def teardown(self) -> None: ...
