"""Registerers that add a name prefix or constant labels to what they register."""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from typing import Any

from metrickit.value import Desc, LabelPair, Metric, MetricError


def wrap_desc(desc: Desc, prefix: str, labels: Mapping[str, str] | None) -> Desc:
    """Return desc with prefix added to its name and labels added as constant labels.

    A label that the descriptor already has yields a descriptor carrying an
    error. An error of the original descriptor takes precedence.
    """
    const_labels = {pair.name: pair.value for pair in desc.const_label_pairs}
    for name, value in (labels or {}).items():
        if name in const_labels:
            failed = Desc(
                desc.fq_name,
                desc.help,
                desc.variable_labels,
                {pair.name: pair.value for pair in desc.const_label_pairs},
            )
            failed.err = MetricError(
                f"attempted wrapping with already existing label name {json.dumps(name)}"
            )
            return failed
        const_labels[name] = value
    wrapped = Desc(prefix + desc.fq_name, desc.help, desc.variable_labels, const_labels)
    if desc.err is not None:
        wrapped.err = desc.err
    return wrapped


class WrappingMetric:
    """A metric reported under a prefixed name with extra constant labels."""

    def __init__(
        self, wrapped: Any, prefix: str = "", labels: Mapping[str, str] | None = None
    ) -> None:
        self.wrapped = wrapped
        self.prefix = prefix
        self.labels = dict(labels or {})

    @property
    def desc(self) -> Desc:
        """The wrapped metric's descriptor, with prefix and labels applied."""
        return wrap_desc(self.wrapped.desc, self.prefix, self.labels)

    def write(self) -> Metric:
        """Write the wrapped metric and add the extra labels, sorted by name."""
        out = self.wrapped.write()
        if not self.labels:
            return out
        extra = [LabelPair(name, value) for name, value in self.labels.items()]
        out.labels = sorted([*out.labels, *extra], key=lambda pair: pair.name)
        return out


class WrappingCollector:
    """A collector whose descriptors and metrics get a prefix and extra labels."""

    def __init__(
        self, wrapped: Any, prefix: str = "", labels: Mapping[str, str] | None = None
    ) -> None:
        self.wrapped = wrapped
        self.prefix = prefix
        self.labels = dict(labels or {})

    def collect(self) -> Iterator[WrappingMetric]:
        """Yield the wrapped collector's metrics, wrapped."""
        for metric in self.wrapped.collect():
            yield WrappingMetric(metric, self.prefix, self.labels)

    def describe(self) -> Iterator[Desc]:
        """Yield the wrapped collector's descriptors, wrapped."""
        for desc in self.wrapped.describe():
            yield wrap_desc(desc, self.prefix, self.labels)

    def unwrap(self) -> Any:
        """Return the innermost collector that is not itself a wrapper."""
        collector = self.wrapped
        while isinstance(collector, WrappingCollector):
            collector = collector.wrapped
        return collector

    def _key(self) -> tuple[Any, str, frozenset[tuple[str, str]]]:
        return self.wrapped, self.prefix, frozenset(self.labels.items())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WrappingCollector):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())


class WrappingRegisterer:
    """Registers collectors with another registerer in wrapped form.

    Wrapping None gives a registerer that does nothing.
    """

    def __init__(
        self,
        wrapped: Any,
        prefix: str = "",
        labels: Mapping[str, str] | None = None,
    ) -> None:
        self.wrapped = wrapped
        self.prefix = prefix
        self.labels = dict(labels or {})

    def _wrap(self, collector: Any) -> WrappingCollector:
        return WrappingCollector(collector, self.prefix, self.labels)

    def register(self, collector: Any) -> None:
        """Register the collector, wrapped, with the underlying registerer."""
        if self.wrapped is None:
            return
        self.wrapped.register(self._wrap(collector))

    def must_register(self, *args: Any) -> None:
        """Register every collector given; the first failure raises."""
        if self.wrapped is None:
            return
        for collector in args:
            self.register(collector)

    def unregister(self, collector: Any) -> bool:
        """Unregister the collector; return whether it had been registered."""
        if self.wrapped is None:
            return False
        return bool(self.wrapped.unregister(self._wrap(collector)))


def wrap_registerer_with(
    labels: Mapping[str, str] | None, registerer: Any
) -> WrappingRegisterer:
    """Return a registerer that adds labels as constant labels to all metrics."""
    return WrappingRegisterer(registerer, labels=labels)


def wrap_registerer_with_prefix(prefix: str, registerer: Any) -> WrappingRegisterer:
    """Return a registerer that adds prefix to the names of all metrics."""
    return WrappingRegisterer(registerer, prefix=prefix)