import math
import random
import threading

import pytest

from metrickit.summary import (
    NoObjectivesSummary,
    Summary,
    SummaryOpts,
    SummaryVec,
    new_const_summary,
    new_summary,
    new_summary_vec,
)
from metrickit.value import Desc, LabelPair, MetricError

OBJECTIVES = {0.5: 0.05, 0.9: 0.01, 0.99: 0.001}


class _FakeClock:
    def __init__(self):
        self.now_ns = 0

    def __call__(self):
        return self.now_ns


def _bounds(values, q, eps):
    n = len(values)
    lower = int((q - 2 * eps) * n)
    upper = int(math.ceil((q + 2 * eps) * n))
    low = values[lower - 1] if lower > 1 else values[0]
    high = values[upper - 1] if upper < n else values[-1]
    return low, high


def _check_quantiles(metric, values):
    quantiles = metric.summary.quantiles
    assert [q.quantile for q in quantiles] == sorted(OBJECTIVES)
    for q in quantiles:
        low, high = _bounds(values, q.quantile, OBJECTIVES[q.quantile])
        assert low <= q.value <= high


def test_summary_with_default_objectives():
    summary = new_summary(SummaryOpts(name="default_objectives", help="Test help."))
    metric = summary.write()
    assert metric.summary.quantiles == []
    assert isinstance(summary, NoObjectivesSummary)


def test_summary_without_objectives():
    summary = new_summary(
        SummaryOpts(name="empty_objectives", help="Test help.", objectives={})
    )
    summary.observe(3)
    summary.observe(0.14)
    metric = summary.write()
    assert metric.summary.sample_sum == 3.14
    assert metric.summary.sample_count == 2
    assert metric.summary.quantiles == []


def test_no_objectives_summary_is_cumulative_across_writes():
    summary = new_summary(SummaryOpts(name="s", help="h"))
    summary.observe(1)
    assert summary.write().summary.sample_count == 1
    summary.observe(2)
    data = summary.write().summary
    assert (data.sample_count, data.sample_sum) == (2, 3.0)


def test_summary_with_quantile_label():
    with pytest.raises(MetricError):
        new_summary(
            SummaryOpts(name="test_summary", help="less", const_labels={"quantile": "test"})
        )


def test_summary_vec_with_quantile_label():
    with pytest.raises(MetricError):
        new_summary_vec(SummaryOpts(name="test_summary", help="less"), ["quantile"])


def test_negative_max_age_raises():
    with pytest.raises(MetricError, match="illegal max age"):
        new_summary(SummaryOpts(name="s", help="h", objectives={0.5: 0.05}, max_age=-1))


def test_summary_with_wrong_label_count_raises():
    with pytest.raises(MetricError):
        Summary(Desc("s", "h", ["a"]), SummaryOpts(objectives={0.5: 0.05}), ())


def test_empty_summary_reports_nan_quantiles():
    summary = new_summary(SummaryOpts(name="s", help="h", objectives=OBJECTIVES))
    data = summary.write().summary
    assert data.sample_count == 0
    assert [q.quantile for q in data.quantiles] == [0.5, 0.9, 0.99]
    assert all(math.isnan(q.value) for q in data.quantiles)


def test_small_summary_median_is_exact():
    summary = new_summary(SummaryOpts(name="s", help="h", objectives={0.5: 0.05}))
    for v in range(1, 101):
        summary.observe(v)
    data = summary.write().summary
    assert data.sample_count == 100
    assert data.sample_sum == 5050.0
    assert data.quantiles[0].value == 50.0


def test_describe_and_collect():
    summary = new_summary(SummaryOpts(name="s", help="h", objectives={0.5: 0.05}))
    assert list(summary.collect()) == [summary]
    assert [d.fq_name for d in summary.describe()] == ["s"]


def test_summary_concurrency():
    rng = random.Random(42)
    mutations, conc = 2000, 4
    summary = new_summary(
        SummaryOpts(name="test_summary", help="helpless", objectives=OBJECTIVES)
    )
    batches = [[rng.gauss(0, 1) for _ in range(mutations)] for _ in range(conc)]
    barrier = threading.Barrier(conc)

    def work(values):
        barrier.wait()
        for v in values:
            summary.observe(v)

    threads = [threading.Thread(target=work, args=(b,)) for b in batches]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    all_values = sorted(v for b in batches for v in b)
    metric = summary.write()
    assert metric.summary.sample_count == mutations * conc
    assert math.isclose(
        metric.summary.sample_sum, sum(all_values), rel_tol=1e-3, abs_tol=1e-9
    )
    _check_quantiles(metric, all_values)


def test_summary_vec_concurrency():
    rng = random.Random(42)
    mutations, conc, vec_len = 1500, 3, 3
    vec = new_summary_vec(
        SummaryOpts(name="test_summary", help="helpless", objectives=OBJECTIVES),
        ["label"],
    )
    all_values = [[] for _ in range(vec_len)]
    sums = [0.0] * vec_len
    jobs = []
    for _ in range(conc):
        job = []
        for _ in range(mutations):
            v = rng.gauss(0, 1)
            pick = rng.randrange(vec_len)
            all_values[pick].append(v)
            sums[pick] += v
            job.append((pick, v))
        jobs.append(job)
    barrier = threading.Barrier(conc)

    def work(job):
        barrier.wait()
        for pick, v in job:
            vec.with_label_values(chr(ord("A") + pick)).observe(v)

    threads = [threading.Thread(target=work, args=(j,)) for j in jobs]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for i in range(vec_len):
        values = sorted(all_values[i])
        metric = vec.with_label_values(chr(ord("A") + i)).write()
        assert metric.summary.sample_count == len(values)
        assert math.isclose(metric.summary.sample_sum, sums[i], rel_tol=1e-3, abs_tol=1e-9)
        _check_quantiles(metric, values)


def test_summary_decay():
    clock = _FakeClock()
    summary = Summary(
        Desc("test_summary", "helpless"),
        SummaryOpts(max_age=0.1, objectives={0.1: 0.001}, age_buckets=10),
        clock=clock,
    )
    for i in range(1, 1001):
        clock.now_ns = i * 1_000_000
        summary.observe(float(i))
        if i % 10 == 0:
            got = summary.write().summary.quantiles[0].value
            want = max(i / 10, float(i - 90))
            assert abs(got - want) <= 20, (i, got, want)
    clock.now_ns += 100_000_000
    assert math.isnan(summary.write().summary.quantiles[0].value)


def test_summary_vec_curry_shares_metrics():
    vec = SummaryVec(SummaryOpts(name="s", help="h"), ["a", "b"])
    curried = vec.curry_with({"a": "x"})
    assert isinstance(curried, SummaryVec)
    curried.with_label_values("y").observe(1)
    metric = vec.with_label_values("x", "y").write()
    assert metric.summary.sample_count == 1
    assert metric.labels == [LabelPair("a", "x"), LabelPair("b", "y")]


def test_const_summary_sorts_quantiles():
    desc = Desc("s", "h", ["code"], {"env": "prod"})
    summary = new_const_summary(desc, 4711, 403.34, {0.99: 0.56, 0.5: 0.23}, "200")
    metric = summary.write()
    assert [(q.quantile, q.value) for q in metric.summary.quantiles] == [
        (0.5, 0.23),
        (0.99, 0.56),
    ]
    assert metric.summary.sample_count == 4711
    assert metric.summary.sample_sum == 403.34
    assert metric.labels == [LabelPair("code", "200"), LabelPair("env", "prod")]


def test_const_summary_wrong_label_count():
    with pytest.raises(MetricError):
        new_const_summary(Desc("s", "h", ["code"]), 1, 1.0, {})


def test_const_summary_invalid_desc():
    with pytest.raises(MetricError):
        new_const_summary(Desc("1bad", "h"), 1, 1.0, {})