# metrickit

Building blocks for exposing application metrics in the Prometheus text
format: metric descriptors, constant and function-backed metrics, labelled
metric vectors, summaries with sliding-window quantile estimates, registerer
wrappers, a text-format parser and formatter, a metric linter, and helpers
for checking metrics in tests.

It needs only the standard library.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `metrickit.value` – the data model (`Metric`, `MetricFamily`, `LabelPair`,
  `SummaryData`, `HistogramData`, ...), `Desc`, `Opts`, `ValueType`,
  `MetricType`, `new_const_metric`, `new_untyped_func`, `new_exemplar`,
  `make_label_pairs`, name checks, and `MetricError`.
- `metrickit.vec` – `MetricVec`, a collector of metrics keyed by label values,
  with currying and deletion.
- `metrickit.quantile` – `TargetedStream`, a streaming estimator for chosen
  quantiles with bounded error.
- `metrickit.summary` – `SummaryOpts`, `Summary`, `NoObjectivesSummary`,
  `SummaryVec`, `ConstSummary`, `new_summary`, `new_summary_vec`,
  `new_const_summary`.
- `metrickit.wrap` – registerers that add a name prefix or constant labels to
  everything registered through them.
- `metrickit.exposition` – `parse_text`, `format_family`, `format_text` and
  `TextParseError`.
- `metrickit.promlint` – `Linter`, `Problem`, `lint_family`.
- `metrickit.testutil` – `to_float64`, `filter_metrics`, `compare`,
  `gather_and_count`, `gather_and_compare`, `gather_and_lint` and
  `ComparisonError`.

Invalid input raises `MetricError` (a `ValueError`).

## Examples

### Summaries

```python
from metrickit.summary import SummaryOpts, new_summary

latency = new_summary(SummaryOpts(
    name="request_duration_seconds",
    help="Time spent serving requests.",
    objectives={0.5: 0.05, 0.9: 0.01, 0.99: 0.001},
))
latency.observe(0.23)
snapshot = latency.write()
print(snapshot.summary.sample_count, snapshot.summary.sample_sum)
print([(q.quantile, q.value) for q in snapshot.summary.quantiles])
```

Without `objectives`, `new_summary` returns a `NoObjectivesSummary`, which
reports only count and sum. `max_age` (seconds), `age_buckets` and `buf_cap`
default to 600, 5 and 500 when left at zero. The label name `quantile` is
reserved and rejected.

### Labelled vectors

```python
from metrickit.summary import SummaryOpts, SummaryVec

by_code = SummaryVec(SummaryOpts(name="rpc_seconds", help="RPC latency."), ["code", "method"])
by_code.with_label_values("200", "GET").observe(0.1)
by_code.with_labels({"code": "404", "method": "GET"}).observe(0.2)

get_only = by_code.curry_with({"method": "GET"})
get_only.with_label_values("500").observe(1.5)

by_code.delete_label_values("404", "GET")   # True
print(len(by_code))                          # 2
```

Curried vectors share their metrics with the vector they came from;
`reset()` on any of them removes all metrics.

### Constant and function-backed metrics

```python
from metrickit.value import Desc, Opts, ValueType, new_const_metric, new_untyped_func
from metrickit.testutil import to_float64

desc = Desc("build_info", "Build information.", ["version"], {})
metric = new_const_metric(desc, ValueType.GAUGE, 1.0, "1.2.3")
print(metric.write().labels)

queue_len = new_untyped_func(Opts(name="queue_length", help="Items queued."), lambda: 3.0)
print(to_float64(queue_len))   # 3.0
```

### Text exposition

```python
from metrickit.exposition import parse_text, format_text

families = parse_text('# TYPE some_total counter\nsome_total{label1="value1"} 1\n')
print(format_text(families))
```

### Linting

```python
from metrickit.promlint import Linter

text = """
# TYPE x_milliseconds counter
x_milliseconds 10
"""
for problem in Linter(text, None).lint():
    print(problem.metric, problem.text)
```

### Comparing gathered metrics in tests

The `gather_*` helpers work with any object whose `gather()` method returns
metric families:

```python
from metrickit.exposition import parse_text
from metrickit.testutil import gather_and_compare, gather_and_count

class StaticGatherer:
    def gather(self):
        return parse_text('# HELP up Is up.\n# TYPE up gauge\nup 1\n')

print(gather_and_count(StaticGatherer()))          # 1
gather_and_compare(StaticGatherer(), "# HELP up Is up.\n# TYPE up gauge\nup 1\n", "up")
```

A mismatch raises `ComparisonError` with both renderings in its message.

### Wrapping registerers

`wrap_registerer_with(labels, registerer)` and
`wrap_registerer_with_prefix(prefix, registerer)` return a
`WrappingRegisterer` that passes collectors on to `registerer.register` /
`registerer.unregister` wrapped in a `WrappingCollector`, whose descriptors and
metrics carry the prefix and extra constant labels. Wrapping `None` gives a
registerer that does nothing.

## What this package does not do

There is no registry, no counter, gauge or histogram metric type, no timer,
and no HTTP endpoint for scraping. The wrapping registerers and the
`gather_*` helpers need a registerer or gatherer supplied by the caller.