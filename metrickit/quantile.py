"""Streaming estimation of targeted quantiles with bounded error.

Implements the biased-quantile stream of Cormode, Korn, Muthukrishnan and
Srivastava, targeted at a fixed set of ranks, each with its own allowed
absolute rank error.
"""

from __future__ import annotations

import math
import sys
from collections.abc import Mapping
from dataclasses import dataclass

BUFFER_CAPACITY = 500


@dataclass(slots=True)
class _Sample:
    value: float
    width: float
    delta: float


def _div(numerator: float, denominator: float) -> float:
    """Float division that yields inf or nan instead of raising."""
    if denominator == 0:
        if numerator == 0 or math.isnan(numerator):
            return math.nan
        return math.copysign(math.inf, numerator)
    return numerator / denominator


def _floor(x: float) -> float:
    return float(math.floor(x)) if math.isfinite(x) else x


def _ceil(x: float) -> float:
    return float(math.ceil(x)) if math.isfinite(x) else x


class TargetedStream:
    """Estimates chosen quantiles of a stream of observations.

    ``targets`` maps each quantile of interest to its allowed absolute
    error: for ``{q: e}`` the value reported for ``q`` is the φ-quantile
    for some φ between ``q - e`` and ``q + e``. Observations are buffered
    and merged into the compressed summary in batches of
    ``BUFFER_CAPACITY``; until the first merge, queries are exact.
    """

    def __init__(self, targets: Mapping[float, float]) -> None:
        self._targets: tuple[tuple[float, float], ...] = tuple(
            sorted((float(q), float(e)) for q, e in targets.items())
        )
        self._buffer: list[_Sample] = []
        self._sorted = True
        self._samples: list[_Sample] = []
        self._n = 0.0

    def _invariant(self, rank: float) -> float:
        best = sys.float_info.max
        for quantile, epsilon in self._targets:
            if quantile * self._n <= rank:
                bound = _div(2 * epsilon * rank, quantile)
            else:
                bound = _div(2 * epsilon * (self._n - rank), 1 - quantile)
            if bound < best:
                best = bound
        return best

    def insert(self, value: float) -> None:
        """Add one observation."""
        self._buffer.append(_Sample(float(value), 1.0, 0.0))
        self._sorted = False
        if len(self._buffer) >= BUFFER_CAPACITY:
            self._flush()

    def query(self, q: float) -> float:
        """Return the estimated value at quantile q; 0.0 for an empty stream."""
        if not self._samples:
            if not self._buffer:
                return 0.0
            index = int(math.ceil(len(self._buffer) * q))
            if index > 0:
                index -= 1
            self._sort_buffer()
            return self._buffer[index].value
        self._flush()
        return self._query_summary(q)

    def __len__(self) -> int:
        return len(self._buffer) + int(self._n)

    def reset(self) -> None:
        """Drop all observations."""
        self._samples.clear()
        self._n = 0.0
        self._buffer.clear()
        self._sorted = True

    def _sort_buffer(self) -> None:
        if not self._sorted:
            self._buffer.sort(key=lambda sample: sample.value)
            self._sorted = True

    def _flush(self) -> None:
        self._sort_buffer()
        self._merge(self._buffer)
        self._buffer = []
        self._sorted = True

    def _merge(self, incoming: list[_Sample]) -> None:
        samples = self._samples
        rank = 0.0
        i = 0
        for new in incoming:
            while i < len(samples) and samples[i].value <= new.value:
                rank += samples[i].width
                i += 1
            if i < len(samples):
                delta = max(new.delta, _floor(self._invariant(rank)) - 1)
            else:
                delta = 0.0
            samples.insert(i, _Sample(new.value, new.width, delta))
            i += 1
            self._n += new.width
            rank += new.width
        self._compress()

    def _compress(self) -> None:
        samples = self._samples
        if len(samples) < 2:
            return
        head = samples[-1]
        rank = self._n - 1 - head.width
        for i in range(len(samples) - 2, -1, -1):
            current = samples[i]
            if current.width + head.width + head.delta <= self._invariant(rank):
                head.width += current.width
                del samples[i]
            else:
                head = current
            rank -= current.width

    def _query_summary(self, q: float) -> float:
        target = _ceil(q * self._n)
        target += _ceil(self._invariant(target) / 2)
        previous = self._samples[0]
        rank = 0.0
        for current in self._samples[1:]:
            rank += previous.width
            if rank + current.width + current.delta > target:
                return previous.value
            previous = current
        return previous.value