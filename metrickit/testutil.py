"""Helpers for testing collectors and gatherers against expected output."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import IO, Any

from metrickit.exposition import TextParseError, format_text, parse_text
from metrickit.promlint import Linter, Problem
from metrickit.value import MetricError, MetricFamily


class ComparisonError(AssertionError):
    """Raised when gathered metrics differ from the expected ones."""

    def __init__(self, want: str, got: str) -> None:
        super().__init__(
            f"\nmetric output does not match expectation; want:\n\n{want}\ngot:\n\n{got}"
        )
        self.want = want
        self.got = got


def to_float64(collector: Any) -> float:
    """Return the value of the single gauge, counter or untyped metric collected.

    Raises MetricError if not exactly one metric is collected or if it is of
    another kind.
    """
    metrics = list(collector.collect())
    if len(metrics) != 1:
        raise MetricError(f"collected {len(metrics)} metrics instead of exactly 1")
    out = metrics[0].write()
    for value in (out.gauge, out.counter, out.untyped):
        if value is not None:
            return value
    raise MetricError(f"collected a non-gauge/counter/untyped metric: {out!r}")


def filter_metrics(
    families: Iterable[MetricFamily], names: Sequence[str]
) -> list[MetricFamily]:
    """Keep only the families whose name is among names."""
    wanted = set(names)
    return [family for family in families if family.name in wanted]


def _gather(gatherer: Any, names: Sequence[str]) -> list[MetricFamily]:
    try:
        families = list(gatherer.gather())
    except Exception as exc:
        raise MetricError(f"gathering metrics failed: {exc}") from exc
    return filter_metrics(families, names) if names else families


def _normalize(families: Iterable[MetricFamily]) -> list[MetricFamily]:
    kept = [family for family in families if family.metrics]
    for family in kept:
        family.metrics.sort(
            key=lambda m: (tuple(p.value for p in m.labels), m.timestamp_ms or 0)
        )
    return sorted(kept, key=lambda family: family.name)


def compare(got: Iterable[MetricFamily], want: Iterable[MetricFamily]) -> None:
    """Raise ComparisonError unless both render to the same exposition text."""
    try:
        got_text = format_text(got)
    except MetricError as exc:
        raise MetricError(f"encoding gathered metrics failed: {exc}") from exc
    try:
        want_text = format_text(want)
    except MetricError as exc:
        raise MetricError(f"encoding expected metrics failed: {exc}") from exc
    if want_text != got_text:
        raise ComparisonError(want_text, got_text)


def gather_and_count(gatherer: Any, *args: str) -> int:
    """Return the number of metrics gathered, only in families named by args if any."""
    return sum(len(family.metrics) for family in _gather(gatherer, args))


def gather_and_compare(gatherer: Any, expected: str | IO[str], *args: str) -> None:
    """Compare gathered metrics with expected exposition text.

    If names are given, only families with those names are compared.
    Raises ComparisonError on a mismatch and MetricError on other failures.
    """
    got = _gather(gatherer, args)
    text = expected if isinstance(expected, str) else expected.read()
    try:
        want = parse_text(text)
    except TextParseError as exc:
        raise MetricError(f"parsing expected metrics failed: {exc}") from exc
    compare(got, _normalize(want))


def gather_and_lint(gatherer: Any, *args: str) -> list[Problem]:
    """Lint gathered metrics, only families named by args if any."""
    return Linter(metric_families=_gather(gatherer, args)).lint()