from collections import Counter

import pytest

from metrickit.value import (
    Desc,
    MetricError,
    ValueType,
    make_label_pairs,
    populate_metric,
)
from metrickit.vec import MetricVec


class _Value:
    def __init__(self, desc, value_type, values):
        self.desc = desc
        self.value_type = value_type
        self.labels = make_label_pairs(desc, values)
        self.value = 0.0

    def inc(self):
        self.value += 1

    def add(self, amount):
        self.value += amount

    def set(self, value):
        self.value = value

    def write(self):
        return populate_metric(self.value_type, self.value, self.labels)


def _vec(value_type, label_names):
    desc = Desc("test", "helpless", label_names, None)
    return MetricVec(desc, lambda *lvs: _Value(desc, value_type, lvs))


def _gauge_vec():
    return _vec(ValueType.GAUGE, ["l1", "l2"])


def _counter_vec():
    return _vec(ValueType.COUNTER, ["one", "two", "three"])


def test_delete():
    vec = _gauge_vec()
    assert vec.delete({"l1": "v1", "l2": "v2"}) is False

    vec.with_labels({"l1": "v1", "l2": "v2"}).set(42)
    assert vec.delete({"l1": "v1", "l2": "v2"}) is True
    assert vec.delete({"l1": "v1", "l2": "v2"}) is False

    vec.with_labels({"l1": "v1", "l2": "v2"}).set(42)
    assert vec.delete({"l2": "v2", "l1": "v1"}) is True
    assert vec.delete({"l2": "v2", "l1": "v1"}) is False

    vec.with_labels({"l1": "v1", "l2": "v2"}).set(42)
    assert vec.delete({"l2": "v1", "l1": "v2"}) is False
    assert vec.delete({"l1": "v1"}) is False


def test_delete_label_values():
    vec = _gauge_vec()
    assert vec.delete_label_values("v1", "v2") is False

    vec.with_labels({"l1": "v1", "l2": "v2"}).set(42)
    vec.with_labels({"l1": "v1", "l2": "v3"}).set(42)
    assert vec.delete_label_values("v1", "v2") is True
    assert vec.delete_label_values("v1", "v2") is False
    assert vec.delete_label_values("v1", "v3") is True

    vec.with_labels({"l1": "v1", "l2": "v2"}).set(42)
    assert vec.delete_label_values("v2", "v1") is False
    assert vec.delete_label_values("v1") is False


def test_metric_vec():
    vec = _gauge_vec()
    vec.reset()
    expected = Counter()
    for i in range(1000):
        pair = (str(i % 4), str(i % 5))
        expected[pair] += 1
        vec.with_label_values(*pair).inc()
        expected[("v1", "v2")] += 1
        vec.with_label_values("v1", "v2").inc()

    total = 0
    for metric in vec.collect():
        total += 1
        out = metric.write()
        pair = tuple(label.value for label in out.labels)
        assert out.gauge == float(expected[pair])
    assert total == len(expected)
    assert len(vec) == len(expected)

    vec.reset()
    assert len(vec) == 0
    assert list(vec.collect()) == []


def test_counter_vec_end_to_end_with_collision():
    vec = _vec(ValueType.COUNTER, ["labelname"])
    vec.with_label_values("77kepQFQ8Kl").inc()
    vec.with_label_values("!0IC=VloaY").add(2)

    out = vec.with_label_values("77kepQFQ8Kl").write()
    assert out.labels[0].value == "77kepQFQ8Kl"
    assert out.counter == 1.0
    out = vec.with_label_values("!0IC=VloaY").write()
    assert out.labels[0].value == "!0IC=VloaY"
    assert out.counter == 2.0


def test_describe_yields_desc():
    vec = _gauge_vec()
    assert list(vec.describe()) == [vec.desc]


def test_same_metric_returned_for_same_values():
    vec = _gauge_vec()
    first = vec.with_label_values("a", "b")
    assert vec.with_labels({"l2": "b", "l1": "a"}) is first
    assert len(vec) == 1


def test_wrong_label_count_raises():
    vec = _gauge_vec()
    with pytest.raises(MetricError):
        vec.with_label_values("a")
    with pytest.raises(MetricError):
        vec.with_labels({"l1": "a"})


def test_missing_label_name_raises():
    vec = _gauge_vec()
    with pytest.raises(MetricError, match='label name "l2" missing in label map'):
        vec.with_labels({"l1": "a", "other": "b"})


def test_invalid_utf8_label_value_raises():
    vec = _gauge_vec()
    with pytest.raises(MetricError):
        vec.with_label_values("a", "\udcff")


def _assert_two_metrics(vec):
    assert len(vec) == 2
    assert vec.with_label_values("1", "2", "3").write().counter == 1.0
    assert vec.with_label_values("11", "22", "33").write().counter == 1.0


def test_curry_zero_labels():
    vec = _counter_vec()
    c1 = vec.curry_with(None)
    c2 = vec.curry_with(None)
    c1.with_label_values("1", "2", "3").inc()
    c2.with_labels({"one": "11", "two": "22", "three": "33"}).inc()
    _assert_two_metrics(vec)
    assert c1.delete({"one": "1", "two": "2", "three": "3"}) is True
    assert c2.delete_label_values("11", "22", "33") is True
    assert len(vec) == 0


@pytest.mark.parametrize(
    "curry1, curry2, values1, labels2, bad_labels, bad_values, good_labels, good_values",
    [
        (
            [{"one": "1"}],
            [{"one": "11"}],
            ("2", "3"),
            {"two": "22", "three": "33"},
            {"two": "22", "three": "33"},
            ("2", "3"),
            {"two": "2", "three": "3"},
            ("22", "33"),
        ),
        (
            [{"two": "2"}],
            [{"two": "22"}],
            ("1", "3"),
            {"one": "11", "three": "33"},
            {"one": "11", "three": "33"},
            ("1", "3"),
            {"one": "1", "three": "3"},
            ("11", "33"),
        ),
        (
            [{"three": "3"}],
            [{"three": "33"}],
            ("1", "2"),
            {"one": "11", "two": "22"},
            {"two": "22", "one": "11"},
            ("1", "2"),
            {"two": "2", "one": "1"},
            ("11", "22"),
        ),
        (
            [{"three": "3", "one": "1"}],
            [{"three": "33", "one": "11"}],
            ("2",),
            {"two": "22"},
            {"two": "22"},
            ("2",),
            {"two": "2"},
            ("22",),
        ),
        (
            [{"three": "3"}, {"one": "1"}],
            [{"three": "33"}, {"one": "11"}],
            ("2",),
            {"two": "22"},
            {"two": "22"},
            ("2",),
            {"two": "2"},
            ("22",),
        ),
    ],
    ids=["first label", "middle label", "last label", "two labels", "double curry"],
)
def test_curry_partial(
    curry1, curry2, values1, labels2, bad_labels, bad_values, good_labels, good_values
):
    vec = _counter_vec()
    c1 = vec
    for labels in curry1:
        c1 = c1.curry_with(labels)
    c2 = vec
    for labels in curry2:
        c2 = c2.curry_with(labels)
    c1.with_label_values(*values1).inc()
    c2.with_labels(labels2).inc()
    _assert_two_metrics(vec)
    assert c1.delete(bad_labels) is False
    assert c2.delete_label_values(*bad_values) is False
    assert c1.delete(good_labels) is True
    assert c2.delete_label_values(*good_values) is True
    assert len(vec) == 0


def test_curry_all_labels():
    vec = _counter_vec()
    c1 = vec.curry_with({"three": "3", "two": "2", "one": "1"})
    c2 = vec.curry_with({"three": "33", "one": "11", "two": "22"})
    c1.with_label_values().inc()
    c2.with_labels(None).inc()
    _assert_two_metrics(vec)
    assert c1.delete({}) is True
    assert c2.delete_label_values() is True
    assert len(vec) == 0


def test_use_already_curried_label():
    vec = _counter_vec()
    c1 = vec.curry_with({"three": "3"})
    with pytest.raises(MetricError):
        c1.with_label_values("1", "2", "3")
    with pytest.raises(MetricError):
        c1.with_labels({"one": "1", "two": "2", "three": "3"})
    assert len(vec) == 0
    c1.with_label_values("1", "2").inc()
    assert c1.delete({"one": "1", "two": "2", "three": "3"}) is False
    assert c1.delete({"one": "1", "two": "2"}) is True
    assert len(vec) == 0


def test_curry_already_curried_label():
    vec = _counter_vec()
    with pytest.raises(MetricError) as info:
        vec.curry_with({"three": "3"}).curry_with({"three": "33"})
    assert str(info.value) == 'label name "three" is already curried'


def test_curry_unknown_label():
    vec = _counter_vec()
    with pytest.raises(MetricError) as info:
        vec.curry_with({"foo": "bar"})
    assert str(info.value) == "1 unknown label(s) found during currying"


def test_reset_on_curried_vec_clears_everything():
    vec = _counter_vec()
    vec.with_label_values("1", "2", "3").inc()
    curried = vec.curry_with({"one": "x"})
    curried.with_label_values("2", "3").inc()
    assert len(vec) == 2
    curried.reset()
    assert len(vec) == 0


def test_curried_metric_has_full_labels():
    vec = _counter_vec()
    curried = vec.curry_with({"two": "b"})
    metric = curried.with_label_values("a", "c")
    names_values = [(pair.name, pair.value) for pair in metric.write().labels]
    assert names_values == [("one", "a"), ("three", "c"), ("two", "b")]
    assert vec.with_label_values("a", "b", "c") is metric