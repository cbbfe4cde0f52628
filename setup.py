"""Packaging for vsa-bench: the harness package plus the `vsa-bench` console script."""
from setuptools import find_packages, setup

setup(
    name="vsa-bench",
    version="0.3.0",
    description="Deterministic sparse ternary datasets and contract benchmarks for VSA engines",
    python_requires=">=3.10",
    packages=find_packages(include=["vsa_bench", "vsa_bench.*"], exclude=["vsa_bench.tests", "vsa_bench.tests.*"]),
    install_requires=[
        "numpy>=1.24",
        "plotly>=5.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "vsa-bench=vsa_bench.cli:main",
        ],
    },
)
