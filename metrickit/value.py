"""Metric data model, descriptors and simple value metrics."""

from __future__ import annotations

import enum
import json
import re
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime

EXEMPLAR_MAX_RUNES = 64
RESERVED_LABEL_PREFIX = "__"

_LABEL_NAME_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
_METRIC_NAME_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")


class MetricError(ValueError):
    """Raised for invalid descriptors, label values or metric contents."""


class ValueType(enum.IntEnum):
    """Kinds of metrics that carry a single simple value."""

    COUNTER = 1
    GAUGE = 2
    UNTYPED = 3


class MetricType(enum.IntEnum):
    """Types of metric families in the exposition model."""

    COUNTER = 0
    GAUGE = 1
    SUMMARY = 2
    UNTYPED = 3
    HISTOGRAM = 4


@dataclass(frozen=True, order=True)
class LabelPair:
    """A label name with its value; pairs sort by name."""

    name: str
    value: str


@dataclass
class Quantile:
    """One rank estimation of a summary."""

    quantile: float
    value: float


@dataclass
class SummaryData:
    """Count, sum and quantiles of a summary."""

    sample_count: int = 0
    sample_sum: float = 0.0
    quantiles: list[Quantile] = field(default_factory=list)


@dataclass
class Bucket:
    """A cumulative histogram bucket."""

    upper_bound: float
    cumulative_count: int


@dataclass
class HistogramData:
    """Count, sum and buckets of a histogram."""

    sample_count: int = 0
    sample_sum: float = 0.0
    buckets: list[Bucket] = field(default_factory=list)


@dataclass
class Exemplar:
    """A sample value with labels and a timestamp attached to a counter."""

    value: float
    timestamp: datetime | None = None
    labels: list[LabelPair] = field(default_factory=list)


@dataclass
class Metric:
    """One written-out metric: its labels and exactly one kind of value."""

    labels: list[LabelPair] = field(default_factory=list)
    counter: float | None = None
    gauge: float | None = None
    untyped: float | None = None
    summary: SummaryData | None = None
    histogram: HistogramData | None = None
    exemplar: Exemplar | None = None
    timestamp_ms: int | None = None

    @property
    def metric_type(self) -> MetricType | None:
        """The type of value this metric carries, if any."""
        if self.counter is not None:
            return MetricType.COUNTER
        if self.gauge is not None:
            return MetricType.GAUGE
        if self.untyped is not None:
            return MetricType.UNTYPED
        if self.summary is not None:
            return MetricType.SUMMARY
        if self.histogram is not None:
            return MetricType.HISTOGRAM
        return None


@dataclass
class MetricFamily:
    """All metrics sharing one name, help string and type."""

    name: str
    help: str | None = None
    type: MetricType = MetricType.UNTYPED
    metrics: list[Metric] = field(default_factory=list)


@dataclass
class Opts:
    """Options shared by simple metrics: name parts, help and constant labels."""

    name: str = ""
    help: str = ""
    namespace: str = ""
    subsystem: str = ""
    const_labels: dict[str, str] = field(default_factory=dict)


def _is_valid_utf8(text: str) -> bool:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _quote(text: str) -> str:
    if _is_valid_utf8(text):
        return json.dumps(text, ensure_ascii=False)
    return json.dumps(text)


def check_label_name(name: str) -> bool:
    """Return whether name is a valid, non-reserved label name."""
    return bool(_LABEL_NAME_RE.fullmatch(name)) and not name.startswith(
        RESERVED_LABEL_PREFIX
    )


def check_metric_name(name: str) -> bool:
    """Return whether name is a valid metric name."""
    return bool(_METRIC_NAME_RE.fullmatch(name))


def build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    """Join the non-empty name parts with "_"; an empty name gives ""."""
    if not name:
        return ""
    return "_".join(part for part in (namespace, subsystem, name) if part)


def validate_label_values(values: Sequence[str], expected: int) -> None:
    """Raise MetricError unless there are expected values, all valid UTF-8."""
    if len(values) != expected:
        raise MetricError(
            f"inconsistent label cardinality: expected {expected} label values "
            f"but got {len(values)} in {list(values)!r}"
        )
    for value in values:
        if not _is_valid_utf8(value):
            raise MetricError(f"label value {_quote(value)} is not valid UTF-8")


class Desc:
    """Descriptor of a metric: its name, help, and constant and variable labels.

    An invalid descriptor is still built; the problem is kept in ``err``.
    """

    def __init__(
        self,
        fq_name: str,
        help: str,
        variable_labels: Iterable[str] | None = None,
        const_labels: Mapping[str, str] | None = None,
    ) -> None:
        self.fq_name = fq_name
        self.help = help
        self.variable_labels: tuple[str, ...] = tuple(variable_labels or ())
        const = dict(const_labels or {})
        self.const_label_pairs: list[LabelPair] = sorted(
            LabelPair(name, value) for name, value in const.items()
        )
        self.err: MetricError | None = None
        try:
            self._validate()
        except MetricError as exc:
            self.err = exc

    def _validate(self) -> None:
        if not check_metric_name(self.fq_name):
            raise MetricError(f"{_quote(self.fq_name)} is not a valid metric name")
        seen: set[str] = set()
        for pair in self.const_label_pairs:
            if not check_label_name(pair.name):
                raise MetricError(
                    f"{_quote(pair.name)} is not a valid label name for metric "
                    f"{_quote(self.fq_name)}"
                )
            if not _is_valid_utf8(pair.value):
                raise MetricError(
                    f"label value {_quote(pair.value)} is not valid UTF-8"
                )
            seen.add(pair.name)
        for name in self.variable_labels:
            if not check_label_name(name):
                raise MetricError(
                    f"{_quote(name)} is not a valid label name for metric "
                    f"{_quote(self.fq_name)}"
                )
            if name in seen:
                raise MetricError(
                    f"duplicate label names in constant and variable labels for "
                    f"metric {_quote(self.fq_name)}"
                )
            seen.add(name)

    @property
    def identity(self) -> tuple[str, tuple[str, ...]]:
        """Name plus constant label values: unique per registered descriptor."""
        return self.fq_name, tuple(pair.value for pair in self.const_label_pairs)

    @property
    def dimensions(self) -> tuple[str, frozenset[str]]:
        """Help plus all label names: must agree for equal metric names."""
        names = {pair.name for pair in self.const_label_pairs}
        names.update(self.variable_labels)
        return self.help, frozenset(names)

    def __repr__(self) -> str:
        const = ",".join(f"{p.name}={_quote(p.value)}" for p in self.const_label_pairs)
        return (
            f"Desc(fq_name={_quote(self.fq_name)}, help={_quote(self.help)}, "
            f"const_labels={{{const}}}, variable_labels={list(self.variable_labels)})"
        )


def make_label_pairs(desc: Desc, label_values: Sequence[str] | None) -> list[LabelPair]:
    """Combine the variable label values with the constant labels, sorted by name."""
    if not desc.variable_labels:
        return list(desc.const_label_pairs)
    values = list(label_values or ())
    pairs = [LabelPair(name, value) for name, value in zip(desc.variable_labels, values)]
    pairs.extend(desc.const_label_pairs)
    pairs.sort(key=lambda pair: pair.name)
    return pairs


def populate_metric(
    value_type: ValueType,
    value: float,
    label_pairs: Sequence[LabelPair],
    exemplar: Exemplar | None = None,
) -> Metric:
    """Build a Metric holding value as the given value type."""
    metric = Metric(labels=list(label_pairs))
    if value_type is ValueType.COUNTER:
        metric.counter = value
        metric.exemplar = exemplar
    elif value_type is ValueType.GAUGE:
        metric.gauge = value
    elif value_type is ValueType.UNTYPED:
        metric.untyped = value
    else:
        raise MetricError(f"encountered unknown type {value_type!r}")
    return metric


@dataclass(frozen=True)
class ConstMetric:
    """A metric with one fixed value."""

    desc: Desc
    value_type: ValueType
    value: float
    label_pairs: tuple[LabelPair, ...] = ()

    def write(self) -> Metric:
        """Return the metric's written-out form."""
        return populate_metric(self.value_type, self.value, self.label_pairs)


def new_const_metric(
    desc: Desc, value_type: ValueType, value: float, *args: str
) -> ConstMetric:
    """Return a fixed-value metric; raise MetricError for a bad desc or labels."""
    if desc.err is not None:
        raise desc.err
    validate_label_values(args, len(desc.variable_labels))
    return ConstMetric(desc, value_type, value, tuple(make_label_pairs(desc, args)))


class ValueFunc:
    """A metric whose value is obtained by calling a function at write time."""

    def __init__(
        self, desc: Desc, value_type: ValueType, function: Callable[[], float]
    ) -> None:
        self.desc = desc
        self.value_type = value_type
        self.function = function
        self.label_pairs = make_label_pairs(desc, ())

    def write(self) -> Metric:
        """Call the function and return the written-out metric."""
        return populate_metric(self.value_type, self.function(), self.label_pairs)

    def describe(self) -> Iterator[Desc]:
        """Yield this metric's descriptor."""
        yield self.desc

    def collect(self) -> Iterator[ValueFunc]:
        """Yield this metric itself."""
        yield self


def new_untyped_func(opts: Opts, function: Callable[[], float]) -> ValueFunc:
    """Return an untyped metric whose value comes from function."""
    desc = Desc(
        build_fq_name(opts.namespace, opts.subsystem, opts.name),
        opts.help,
        None,
        opts.const_labels,
    )
    return ValueFunc(desc, ValueType.UNTYPED, function)


def new_exemplar(
    value: float, timestamp: datetime, labels: Mapping[str, str]
) -> Exemplar:
    """Build an exemplar, checking label names, UTF-8 and the rune limit."""
    pairs = []
    runes = 0
    for name, label_value in labels.items():
        if not check_label_name(name):
            raise MetricError(f"exemplar label name {_quote(name)} is invalid")
        runes += len(name)
        if not _is_valid_utf8(label_value):
            raise MetricError(
                f"exemplar label value {_quote(label_value)} is not valid UTF-8"
            )
        runes += len(label_value)
        pairs.append(LabelPair(name, label_value))
    if runes > EXEMPLAR_MAX_RUNES:
        raise MetricError(
            f"exemplar labels have {runes} runes, exceeding the limit of "
            f"{EXEMPLAR_MAX_RUNES}"
        )
    return Exemplar(value=value, timestamp=timestamp, labels=pairs)