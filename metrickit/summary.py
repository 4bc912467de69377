"""Summaries: count, sum and sliding-window quantile estimates of observations."""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field, replace

from metrickit.quantile import TargetedStream
from metrickit.value import (
    Desc,
    LabelPair,
    Metric,
    MetricError,
    Opts,
    Quantile,
    SummaryData,
    build_fq_name,
    make_label_pairs,
    validate_label_values,
)
from metrickit.vec import MetricVec

QUANTILE_LABEL = "quantile"

DEF_MAX_AGE = 600.0
DEF_AGE_BUCKETS = 5
DEF_BUF_CAP = 500

_QUANTILE_LABEL_NOT_ALLOWED = f'"{QUANTILE_LABEL}" is not allowed as label name in summaries'


@dataclass
class SummaryOpts(Opts):
    """Options for a summary.

    ``objectives`` maps quantile ranks to their allowed absolute error; an
    empty mapping gives a summary without quantiles. ``max_age`` is in
    seconds. Zero values of ``max_age``, ``age_buckets`` and ``buf_cap``
    select the defaults.
    """

    objectives: dict[float, float] | None = None
    max_age: float = 0.0
    age_buckets: int = 0
    buf_cap: int = 0
    extra: dict[str, str] = field(default_factory=dict, repr=False)


def _check_desc(desc: Desc, label_values: Sequence[str]) -> None:
    if len(desc.variable_labels) != len(label_values):
        raise MetricError(
            f"{desc.fq_name!r}: expected {len(desc.variable_labels)} label values "
            f"but got {len(label_values)} in {list(label_values)!r}"
        )
    if QUANTILE_LABEL in desc.variable_labels or any(
        pair.name == QUANTILE_LABEL for pair in desc.const_label_pairs
    ):
        raise MetricError(_QUANTILE_LABEL_NOT_ALLOWED)


def _resolve(opts: SummaryOpts) -> SummaryOpts:
    if opts.max_age < 0:
        raise MetricError(f"illegal max age MaxAge={opts.max_age}")
    return replace(
        opts,
        objectives=dict(opts.objectives or {}),
        max_age=opts.max_age or DEF_MAX_AGE,
        age_buckets=opts.age_buckets or DEF_AGE_BUCKETS,
        buf_cap=opts.buf_cap or DEF_BUF_CAP,
    )


class Summary:
    """A summary with quantile objectives over a sliding time window.

    Every observation goes into each of ``age_buckets`` streams; the head
    stream is reset and replaced every ``max_age / age_buckets`` seconds,
    so reported quantiles cover roughly the last ``max_age`` seconds.
    ``clock`` returns monotonic time in nanoseconds.
    """

    def __init__(
        self,
        desc: Desc,
        opts: SummaryOpts,
        label_values: Sequence[str] = (),
        *,
        clock: Callable[[], int] | None = None,
    ) -> None:
        label_values = tuple(label_values)
        _check_desc(desc, label_values)
        opts = _resolve(opts)
        self.desc = desc
        self.objectives: dict[float, float] = dict(opts.objectives or {})
        self._sorted_objectives = sorted(self.objectives)
        self._label_pairs = make_label_pairs(desc, label_values)
        self._clock = clock or time.monotonic_ns
        self._lock = threading.Lock()
        self._buf_cap = opts.buf_cap
        self._hot_buf: list[float] = []
        self._count = 0
        self._sum = 0.0
        self._stream_duration = max(1, round(opts.max_age * 1e9) // opts.age_buckets)
        self._head_exp = self._clock() + self._stream_duration
        self._hot_buf_exp = self._head_exp
        self._streams = [TargetedStream(self.objectives) for _ in range(opts.age_buckets)]
        self._head_idx = 0

    def observe(self, value: float) -> None:
        """Add one observation."""
        with self._lock:
            now = self._clock()
            if now > self._hot_buf_exp:
                self._flush(now)
            self._hot_buf.append(float(value))
            if len(self._hot_buf) >= self._buf_cap:
                self._flush(now)

    def _flush(self, now: int) -> None:
        cold, self._hot_buf = self._hot_buf, []
        while now > self._hot_buf_exp:
            self._hot_buf_exp += self._stream_duration
        for stream in self._streams:
            for value in cold:
                stream.insert(value)
        for value in cold:
            self._sum += value
        self._count += len(cold)
        self._rotate_streams()

    def _rotate_streams(self) -> None:
        while self._head_exp < self._hot_buf_exp:
            self._streams[self._head_idx].reset()
            self._head_idx = (self._head_idx + 1) % len(self._streams)
            self._head_exp += self._stream_duration

    def write(self) -> Metric:
        """Return count, sum and quantiles; quantiles are NaN with no recent data."""
        with self._lock:
            self._flush(self._clock())
            head = self._streams[self._head_idx]
            quantiles = [
                Quantile(rank, head.query(rank) if len(head) else math.nan)
                for rank in self._sorted_objectives
            ]
            data = SummaryData(self._count, self._sum, quantiles)
        return Metric(labels=list(self._label_pairs), summary=data)

    def describe(self) -> Iterator[Desc]:
        """Yield this summary's descriptor."""
        yield self.desc

    def collect(self) -> Iterator[Summary]:
        """Yield this summary itself."""
        yield self


class NoObjectivesSummary:
    """A summary that tracks only count and sum."""

    def __init__(self, desc: Desc, label_values: Sequence[str] = ()) -> None:
        label_values = tuple(label_values)
        _check_desc(desc, label_values)
        self.desc = desc
        self._label_pairs = make_label_pairs(desc, label_values)
        self._lock = threading.Lock()
        self._count = 0
        self._sum = 0.0

    def observe(self, value: float) -> None:
        """Add one observation."""
        with self._lock:
            self._sum += float(value)
            self._count += 1

    def write(self) -> Metric:
        """Return count and sum, with no quantiles."""
        with self._lock:
            data = SummaryData(self._count, self._sum, [])
        return Metric(labels=list(self._label_pairs), summary=data)

    def describe(self) -> Iterator[Desc]:
        """Yield this summary's descriptor."""
        yield self.desc

    def collect(self) -> Iterator[NoObjectivesSummary]:
        """Yield this summary itself."""
        yield self


def _new_summary(
    desc: Desc, opts: SummaryOpts, label_values: Sequence[str] = ()
) -> Summary | NoObjectivesSummary:
    label_values = tuple(label_values)
    _check_desc(desc, label_values)
    resolved = _resolve(opts)
    if not resolved.objectives:
        return NoObjectivesSummary(desc, label_values)
    return Summary(desc, resolved, label_values)


def new_summary(opts: SummaryOpts) -> Summary | NoObjectivesSummary:
    """Create a summary; without objectives only count and sum are tracked."""
    desc = Desc(
        build_fq_name(opts.namespace, opts.subsystem, opts.name),
        opts.help,
        None,
        opts.const_labels,
    )
    return _new_summary(desc, opts)


class SummaryVec(MetricVec):
    """Summaries sharing one descriptor, partitioned by label values."""

    def __init__(self, opts: SummaryOpts, label_names: Sequence[str]) -> None:
        label_names = list(label_names or ())
        if QUANTILE_LABEL in label_names:
            raise MetricError(_QUANTILE_LABEL_NOT_ALLOWED)
        desc = Desc(
            build_fq_name(opts.namespace, opts.subsystem, opts.name),
            opts.help,
            label_names,
            opts.const_labels,
        )
        super().__init__(desc, lambda *values: _new_summary(desc, opts, values))

    def curry_with(self, labels: Mapping[str, str] | None) -> SummaryVec:
        """Return a summary vector with the given labels preset."""
        curried = super().curry_with(labels)
        assert isinstance(curried, SummaryVec)
        return curried


def new_summary_vec(opts: SummaryOpts, label_names: Sequence[str]) -> SummaryVec:
    """Create a summary vector partitioned by label_names."""
    return SummaryVec(opts, label_names)


@dataclass(frozen=True)
class ConstSummary:
    """A summary with fixed count, sum and quantiles."""

    desc: Desc
    count: int
    sum: float
    quantiles: Mapping[float, float]
    label_pairs: tuple[LabelPair, ...] = ()

    def write(self) -> Metric:
        """Return the summary with quantiles sorted by rank."""
        quantiles = [Quantile(rank, value) for rank, value in sorted(self.quantiles.items())]
        return Metric(
            labels=list(self.label_pairs),
            summary=SummaryData(self.count, self.sum, quantiles),
        )


def new_const_summary(
    desc: Desc,
    count: int,
    sum: float,
    quantiles: Mapping[float, float],
    *args: str,
) -> ConstSummary:
    """Return a fixed summary; raise MetricError for a bad desc or label values."""
    if desc.err is not None:
        raise desc.err
    validate_label_values(args, len(desc.variable_labels))
    return ConstSummary(
        desc, count, sum, dict(quantiles or {}), tuple(make_label_pairs(desc, args))
    )