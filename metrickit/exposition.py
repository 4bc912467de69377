"""Reading and writing the plain-text metrics exposition format."""

from __future__ import annotations

import math
from collections.abc import Iterable
from decimal import Decimal

from metrickit.value import (
    Bucket,
    HistogramData,
    LabelPair,
    Metric,
    MetricError,
    MetricFamily,
    MetricType,
    Quantile,
    SummaryData,
)

_TYPES = {
    "counter": MetricType.COUNTER,
    "gauge": MetricType.GAUGE,
    "summary": MetricType.SUMMARY,
    "untyped": MetricType.UNTYPED,
    "histogram": MetricType.HISTOGRAM,
}
_NAME_START = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ_:")
_NAME_CHARS = _NAME_START | set("0123456789")


class TextParseError(ValueError):
    """Raised for input that is not valid text exposition format."""

    def __init__(self, line_number: int, message: str) -> None:
        super().__init__(f"text format parsing error in line {line_number}: {message}")
        self.line_number = line_number


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    sign, digit_tuple, exponent = Decimal(repr(float(value))).as_tuple()
    digits = "".join(map(str, digit_tuple))
    stripped = digits.rstrip("0")
    exponent += len(digits) - len(stripped)
    digits = stripped
    nd = len(digits)
    dp = nd + exponent
    x = dp - 1
    eprec = 6
    if eprec > nd and nd >= dp:
        eprec = nd
    if x < -4 or x >= eprec:
        mantissa = digits[0] + ("." + digits[1:] if nd > 1 else "")
        text = f"{mantissa}e{'+' if x >= 0 else '-'}{abs(x):02d}"
    elif dp <= 0:
        text = "0." + "0" * (-dp) + digits
    elif dp >= nd:
        text = digits + "0" * (dp - nd)
    else:
        text = digits[:dp] + "." + digits[dp:]
    return ("-" if sign else "") + text


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _escape_value(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _unescape(text: str, line_number: int) -> str:
    out = []
    chars = iter(text)
    for char in chars:
        if char != "\\":
            out.append(char)
            continue
        nxt = next(chars, None)
        if nxt == "n":
            out.append("\n")
        elif nxt in ("\\", '"'):
            out.append(nxt)
        else:
            raise TextParseError(line_number, f"invalid escape sequence in {text!r}")
    return "".join(out)


def _sample_line(
    name: str, labels: Iterable[LabelPair], value: str, extra: LabelPair | None = None
) -> str:
    pairs = list(labels)
    if extra is not None:
        pairs.append(extra)
    if pairs:
        inner = ",".join(f'{p.name}="{_escape_value(p.value)}"' for p in pairs)
        return f"{name}{{{inner}}} {value}"
    return f"{name} {value}"


def format_family(family: MetricFamily) -> str:
    """Render one metric family in the text format."""
    if not family.metrics:
        raise MetricError(f"MetricFamily has no metrics: {family.name}")
    lines = []
    name = family.name
    if family.help is not None:
        lines.append(f"# HELP {name} {_escape_help(family.help)}")
    lines.append(f"# TYPE {name} {family.type.name.lower()}")
    for metric in family.metrics:
        suffix = "" if metric.timestamp_ms is None else f" {metric.timestamp_ms}"
        kind = family.type
        if kind in (MetricType.COUNTER, MetricType.GAUGE, MetricType.UNTYPED):
            value = getattr(metric, kind.name.lower())
            if value is None:
                raise MetricError(f"expected {kind.name.lower()} in metric {metric!r}")
            lines.append(_sample_line(name, metric.labels, _format_float(value)) + suffix)
        elif kind is MetricType.SUMMARY:
            if metric.summary is None:
                raise MetricError(f"expected summary in metric {metric!r}")
            data = metric.summary
            for q in data.quantiles:
                extra = LabelPair("quantile", _format_float(q.quantile))
                lines.append(
                    _sample_line(name, metric.labels, _format_float(q.value), extra) + suffix
                )
            lines.append(_sample_line(name + "_sum", metric.labels, _format_float(data.sample_sum)) + suffix)
            lines.append(_sample_line(name + "_count", metric.labels, str(data.sample_count)) + suffix)
        else:
            if metric.histogram is None:
                raise MetricError(f"expected histogram in metric {metric!r}")
            data = metric.histogram
            has_inf = False
            for bucket in data.buckets:
                has_inf = has_inf or math.isinf(bucket.upper_bound) and bucket.upper_bound > 0
                extra = LabelPair("le", _format_float(bucket.upper_bound))
                lines.append(
                    _sample_line(name + "_bucket", metric.labels, str(bucket.cumulative_count), extra)
                    + suffix
                )
            if not has_inf:
                extra = LabelPair("le", "+Inf")
                lines.append(
                    _sample_line(name + "_bucket", metric.labels, str(data.sample_count), extra) + suffix
                )
            lines.append(_sample_line(name + "_sum", metric.labels, _format_float(data.sample_sum)) + suffix)
            lines.append(_sample_line(name + "_count", metric.labels, str(data.sample_count)) + suffix)
    return "\n".join(lines) + "\n"


def format_text(families: Iterable[MetricFamily]) -> str:
    """Render metric families one after another in the text format."""
    return "".join(format_family(family) for family in families)


def _read_name(text: str, pos: int, line_number: int) -> tuple[str, int]:
    if pos >= len(text) or text[pos] not in _NAME_START:
        raise TextParseError(line_number, f"invalid metric or label name in {text!r}")
    end = pos + 1
    while end < len(text) and text[end] in _NAME_CHARS:
        end += 1
    return text[pos:end], end


def _skip_ws(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in " \t":
        pos += 1
    return pos


def _parse_sample(line: str, line_number: int) -> tuple[str, dict[str, str], float, int | None]:
    name, pos = _read_name(line, 0, line_number)
    pos = _skip_ws(line, pos)
    labels: dict[str, str] = {}
    if pos < len(line) and line[pos] == "{":
        pos = _skip_ws(line, pos + 1)
        while True:
            if pos < len(line) and line[pos] == "}":
                pos += 1
                break
            label, pos = _read_name(line, pos, line_number)
            pos = _skip_ws(line, pos)
            if pos >= len(line) or line[pos] != "=":
                raise TextParseError(line_number, f"expected '=' after label name {label!r}")
            pos = _skip_ws(line, pos + 1)
            if pos >= len(line) or line[pos] != '"':
                raise TextParseError(line_number, f"expected '\"' for value of label {label!r}")
            end = pos + 1
            while end < len(line) and line[end] != '"':
                end += 2 if line[end] == "\\" else 1
            if end >= len(line):
                raise TextParseError(line_number, "unterminated label value")
            if label in labels:
                raise TextParseError(line_number, f"duplicate label name {label!r}")
            labels[label] = _unescape(line[pos + 1 : end], line_number)
            pos = _skip_ws(line, end + 1)
            if pos < len(line) and line[pos] == ",":
                pos = _skip_ws(line, pos + 1)
            elif pos >= len(line) or line[pos] != "}":
                raise TextParseError(line_number, "expected ',' or '}' in label set")
    fields = line[pos:].split()
    if not fields or len(fields) > 2:
        raise TextParseError(line_number, f"expected value and optional timestamp in {line!r}")
    try:
        value = float(fields[0])
    except ValueError:
        raise TextParseError(line_number, f"expected float as value, got {fields[0]!r}") from None
    timestamp = None
    if len(fields) == 2:
        try:
            timestamp = int(fields[1])
        except ValueError:
            raise TextParseError(line_number, f"expected integer as timestamp, got {fields[1]!r}") from None
    return name, labels, value, timestamp


class _Parser:
    def __init__(self) -> None:
        self.families: dict[str, MetricFamily] = {}
        self.typed: set[str] = set()
        self.with_samples: set[str] = set()
        self.helped: set[str] = set()
        self.metrics: dict[tuple[str, tuple[LabelPair, ...]], Metric] = {}

    def family(self, name: str) -> MetricFamily:
        family = self.families.get(name)
        if family is None:
            family = self.families[name] = MetricFamily(name=name)
        return family

    def comment(self, line: str, line_number: int) -> None:
        parts = line[1:].strip().split(None, 2)
        if not parts or parts[0] not in ("HELP", "TYPE"):
            return
        if len(parts) < 2:
            raise TextParseError(line_number, f"expected metric name after {parts[0]}")
        name = parts[1]
        if _read_name(name, 0, line_number)[0] != name:
            raise TextParseError(line_number, f"invalid metric name {name!r}")
        rest = parts[2] if len(parts) == 3 else ""
        family = self.family(name)
        if parts[0] == "HELP":
            if name in self.helped:
                raise TextParseError(line_number, f"second HELP line for metric name {name!r}")
            self.helped.add(name)
            family.help = _unescape(rest, line_number) if rest else None
            return
        if name in self.typed:
            raise TextParseError(line_number, f"second TYPE line for metric name {name!r}")
        if name in self.with_samples:
            raise TextParseError(line_number, f"TYPE line for {name!r} after its samples")
        kind = _TYPES.get(rest.strip())
        if kind is None:
            raise TextParseError(line_number, f"unknown metric type {rest.strip()!r}")
        self.typed.add(name)
        family.type = kind

    def resolve(self, name: str) -> tuple[MetricFamily, str]:
        for suffix in ("_sum", "_count", "_bucket"):
            if name.endswith(suffix):
                base = self.families.get(name[: -len(suffix)])
                if base is None:
                    continue
                if base.type is MetricType.HISTOGRAM or (
                    base.type is MetricType.SUMMARY and suffix != "_bucket"
                ):
                    return base, suffix
        return self.family(name), ""

    def sample(self, line: str, line_number: int) -> None:
        name, labels, value, timestamp = _parse_sample(line, line_number)
        family, suffix = self.resolve(name)
        self.with_samples.add(family.name)
        special = None
        if family.type is MetricType.SUMMARY:
            special = labels.pop("quantile", None)
        elif family.type is MetricType.HISTOGRAM:
            special = labels.pop("le", None)
        pairs = tuple(sorted(LabelPair(k, v) for k, v in labels.items()))
        key = (family.name, pairs)
        metric = self.metrics.get(key)
        if metric is None:
            metric = self.metrics[key] = Metric(labels=list(pairs))
            family.metrics.append(metric)
        if timestamp is not None:
            metric.timestamp_ms = timestamp
        kind = family.type
        if kind is MetricType.COUNTER:
            metric.counter = value
        elif kind is MetricType.GAUGE:
            metric.gauge = value
        elif kind is MetricType.UNTYPED:
            metric.untyped = value
        elif kind is MetricType.SUMMARY:
            data = metric.summary = metric.summary or SummaryData()
            if suffix == "_sum":
                data.sample_sum = value
            elif suffix == "_count":
                data.sample_count = int(value)
            elif special is not None:
                data.quantiles.append(Quantile(self.number(special, line_number), value))
        else:
            data = metric.histogram = metric.histogram or HistogramData()
            if suffix == "_sum":
                data.sample_sum = value
            elif suffix == "_count":
                data.sample_count = int(value)
            elif special is not None:
                data.buckets.append(Bucket(self.number(special, line_number), int(value)))

    @staticmethod
    def number(text: str, line_number: int) -> float:
        try:
            return float(text)
        except ValueError:
            raise TextParseError(line_number, f"expected float in label, got {text!r}") from None


def parse_text(text: str) -> list[MetricFamily]:
    """Parse text exposition format into metric families, in order of appearance.

    Families that end up without any samples are left out.
    """
    parser = _Parser()
    for line_number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        if line.startswith("#"):
            parser.comment(line, line_number)
        else:
            parser.sample(line, line_number)
    return [family for family in parser.families.values() if family.metrics]