"""A linter for metric names, types and metadata."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from metrickit.exposition import parse_text
from metrickit.value import MetricFamily, MetricType

_CAMEL_CASE = re.compile(r"[a-z][A-Z]")

_UNITS = {
    "amperes": "amperes",
    "bytes": "bytes",
    "celsius": "celsius",
    "grams": "grams",
    "joules": "joules",
    "kelvin": "kelvin",
    "meters": "meters",
    "metres": "metres",
    "seconds": "seconds",
    "volts": "volts",
    "minutes": "seconds",
    "hours": "seconds",
    "days": "seconds",
    "weeks": "seconds",
    "kelvins": "kelvin",
    "fahrenheit": "celsius",
    "rankine": "celsius",
    "inches": "meters",
    "yards": "meters",
    "miles": "meters",
    "bits": "bytes",
    "calories": "joules",
    "pounds": "grams",
    "ounces": "grams",
}

_UNIT_PREFIXES = (
    "pico", "nano", "micro", "milli", "centi", "deci", "deca", "hecto", "kilo",
    "kibi", "mega", "mibi", "giga", "gibi", "tera", "tebi", "peta", "pebi",
)

_UNIT_ABBREVIATIONS = (
    "s", "ms", "us", "ns", "sec", "b", "kb", "mb", "gb", "tb", "pb", "m", "h", "d",
)


@dataclass(frozen=True, order=True)
class Problem:
    """An issue found in one metric family."""

    metric: str
    text: str


def _label_names(family: MetricFamily) -> Iterable[str]:
    for metric in family.metrics:
        for pair in metric.labels:
            yield pair.name


def _contains_part(name: str, part: str) -> bool:
    return f"_{part}_" in name or name.endswith(f"_{part}")


def _metric_units(name: str) -> tuple[str, str] | None:
    parts = name.split("_")
    for unit, base in _UNITS.items():
        for prefix in (*_UNIT_PREFIXES, ""):
            if prefix + unit in parts:
                return prefix + unit, base
    return None


def _lint_texts(family: MetricFamily) -> Iterable[str]:
    name = family.name
    kind = family.type

    if family.help is None:
        yield "no help text"

    units = _metric_units(name)
    if units is not None and units[0] != units[1]:
        yield f'use base unit "{units[1]}" instead of "{units[0]}"'

    has_total = name.endswith("_total")
    if kind is MetricType.COUNTER and not has_total:
        yield 'counter metrics should have "_total" suffix'
    elif kind not in (MetricType.COUNTER, MetricType.UNTYPED) and has_total:
        yield 'non-counter metrics should not have "_total" suffix'

    if kind is not MetricType.UNTYPED:
        is_histogram = kind is MetricType.HISTOGRAM
        is_summary = kind is MetricType.SUMMARY
        if not is_histogram and name.endswith("_bucket"):
            yield 'non-histogram metrics should not have "_bucket" suffix'
        if not is_histogram and not is_summary and name.endswith("_count"):
            yield 'non-histogram and non-summary metrics should not have "_count" suffix'
        if not is_histogram and not is_summary and name.endswith("_sum"):
            yield 'non-histogram and non-summary metrics should not have "_sum" suffix'
        for label in _label_names(family):
            if not is_histogram and label == "le":
                yield 'non-histogram metrics should not have "le" label'
            if not is_summary and label == "quantile":
                yield 'non-summary metrics should not have "quantile" label'

    lower = name.lower()
    for metric_type in MetricType:
        if metric_type is MetricType.UNTYPED:
            continue
        typename = metric_type.name.lower()
        if _contains_part(lower, typename):
            yield f"metric name should not include type '{typename}'"

    if ":" in name:
        yield "metric names should not contain ':'"

    if _CAMEL_CASE.search(name):
        yield "metric names should be written in 'snake_case' not 'camelCase'"
    for label in _label_names(family):
        if _CAMEL_CASE.search(label):
            yield "label names should be written in 'snake_case' not 'camelCase'"

    for abbreviation in _UNIT_ABBREVIATIONS:
        if _contains_part(lower, abbreviation):
            yield "metric names should not contain abbreviated units"


def lint_family(family: MetricFamily) -> list[Problem]:
    """Return the problems found in one metric family, in rule order."""
    return [Problem(family.name, text) for text in _lint_texts(family)]


class Linter:
    """Lints metrics given as exposition text and/or as metric families."""

    def __init__(
        self,
        text: str | None = None,
        metric_families: Iterable[MetricFamily] | None = None,
    ) -> None:
        self.text = text
        self.metric_families = list(metric_families or ())

    def lint(self) -> list[Problem]:
        """Return all problems sorted by metric name, then description.

        Raises TextParseError if the text cannot be parsed.
        """
        families = parse_text(self.text) if self.text is not None else []
        problems = [p for family in (*families, *self.metric_families) for p in lint_family(family)]
        return sorted(problems)