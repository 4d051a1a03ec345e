"""
Benchmark — fund performance since inception, relative to a benchmark.

- BenchmarkEngine / compute_performance: segment-linked NAV vs benchmark
- index_returns: reference index returns over the same period
"""
from portfolio.benchmark.engine import (
    BenchmarkEngine,
    PerformanceReport,
    Segment,
    build_segments,
    compute_performance,
)
from portfolio.benchmark.indices import index_returns, load_indices

__all__ = [
    "BenchmarkEngine",
    "PerformanceReport",
    "Segment",
    "build_segments",
    "compute_performance",
    "index_returns",
    "load_indices",
]
