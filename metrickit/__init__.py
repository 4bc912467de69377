"""Metric descriptors, vectors, summaries, text exposition, linting and test helpers."""

__version__ = "0.1.0"

__all__ = [
    "exposition",
    "promlint",
    "quantile",
    "summary",
    "testutil",
    "value",
    "vec",
    "wrap",
]