"""Vectors of metrics that share a descriptor and differ in label values."""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable, Iterator, Mapping, Sequence
from typing import Any

from metrickit.value import Desc, MetricError, validate_label_values


def _validate_values_in_labels(labels: Mapping[str, str], expected: int) -> None:
    if len(labels) != expected:
        raise MetricError(
            f"inconsistent label cardinality: expected {expected} label values "
            f"but got {len(labels)} in {dict(labels)!r}"
        )
    validate_label_values(list(labels.values()), expected)


class _MetricMap:
    """Storage shared between a vector and all vectors curried from it."""

    def __init__(self, desc: Desc, new_metric: Callable[..., Any]) -> None:
        self.desc = desc
        self.new_metric = new_metric
        self.metrics: dict[tuple[str, ...], Any] = {}
        self.lock = threading.Lock()

    def get_or_create(self, values: tuple[str, ...]) -> Any:
        with self.lock:
            metric = self.metrics.get(values)
            if metric is None:
                metric = self.new_metric(*values)
                self.metrics[values] = metric
            return metric

    def delete(self, values: tuple[str, ...]) -> bool:
        with self.lock:
            return self.metrics.pop(values, None) is not None

    def snapshot(self) -> list[Any]:
        with self.lock:
            return list(self.metrics.values())

    def reset(self) -> None:
        with self.lock:
            self.metrics.clear()


class MetricVec:
    """A collector bundling metrics of one descriptor, keyed by label values.

    ``new_metric`` is called with the full label values (in the order of the
    descriptor's variable labels) whenever a new combination is first used.
    Curried vectors share their metrics with the vector they came from.
    """

    def __init__(self, desc: Desc, new_metric: Callable[..., Any]) -> None:
        self._map = _MetricMap(desc, new_metric)
        self._curry: tuple[tuple[int, str], ...] = ()

    @property
    def desc(self) -> Desc:
        """The descriptor shared by all metrics in this vector."""
        return self._map.desc

    def __len__(self) -> int:
        return len(self._map.metrics)

    def _key_from_values(self, values: Sequence[str]) -> tuple[str, ...]:
        variable = self.desc.variable_labels
        validate_label_values(values, len(variable) - len(self._curry))
        curried = dict(self._curry)
        remaining = iter(values)
        return tuple(
            curried[index] if index in curried else next(remaining)
            for index in range(len(variable))
        )

    def _key_from_labels(self, labels: Mapping[str, str] | None) -> tuple[str, ...]:
        labels = dict(labels or {})
        variable = self.desc.variable_labels
        _validate_values_in_labels(labels, len(variable) - len(self._curry))
        curried = dict(self._curry)
        key = []
        for index, name in enumerate(variable):
            if index in curried:
                if name in labels:
                    raise MetricError(f'label name "{name}" is already curried')
                key.append(curried[index])
            else:
                if name not in labels:
                    raise MetricError(f'label name "{name}" missing in label map')
                key.append(labels[name])
        return tuple(key)

    def delete_label_values(self, *args: str) -> bool:
        """Remove the metric with these label values; return whether one was removed."""
        try:
            key = self._key_from_values(args)
        except MetricError:
            return False
        return self._map.delete(key)

    def delete(self, labels: Mapping[str, str] | None) -> bool:
        """Remove the metric with these labels; return whether one was removed."""
        try:
            key = self._key_from_labels(labels)
        except MetricError:
            return False
        return self._map.delete(key)

    def describe(self) -> Iterator[Desc]:
        """Yield the single descriptor of this vector."""
        yield self.desc

    def collect(self) -> Iterator[Any]:
        """Yield every metric in the vector."""
        yield from self._map.snapshot()

    def reset(self) -> None:
        """Delete all metrics, also those reached through curried vectors."""
        self._map.reset()

    def curry_with(self, labels: Mapping[str, str] | None) -> MetricVec:
        """Return a vector with the given labels preset for all operations."""
        labels = dict(labels or {})
        old_curry = dict(self._curry)
        new_curry: list[tuple[int, str]] = []
        for index, name in enumerate(self.desc.variable_labels):
            if index in old_curry:
                if name in labels:
                    raise MetricError(f'label name "{name}" is already curried')
                new_curry.append((index, old_curry[index]))
            elif name in labels:
                new_curry.append((index, labels[name]))
        unknown = len(old_curry) + len(labels) - len(new_curry)
        if unknown > 0:
            raise MetricError(f"{unknown} unknown label(s) found during currying")
        curried = copy.copy(self)
        curried._curry = tuple(new_curry)
        return curried

    def with_label_values(self, *args: str) -> Any:
        """Return the metric for these label values, creating it if needed."""
        return self._map.get_or_create(self._key_from_values(args))

    def with_labels(self, labels: Mapping[str, str] | None) -> Any:
        """Return the metric for these labels, creating it if needed."""
        return self._map.get_or_create(self._key_from_labels(labels))