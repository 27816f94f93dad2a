"""Parsing of Prometheus text-format metrics and lookup of parsed metrics."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable

from nodestats.metrics import MetricRepresentation, MetricsError

_METRIC_NAME = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LABEL_PAIR = re.compile(r'[ \t]*([a-zA-Z_][a-zA-Z0-9_]*)[ \t]*=[ \t]*"((?:[^"\\\n]|\\.)*)"[ \t]*')
_ESCAPE = re.compile(r"\\(.)")
_ESCAPES = {"n": "\n", "\\": "\\", '"': '"'}
_TYPES = ("counter", "gauge", "summary", "histogram", "untyped")
_SUFFIXES = ("_bucket", "_count", "_sum")


@dataclass
class _Family:
    name: str
    type: str = "untyped"
    samples: list[tuple[dict[str, str], float]] = field(default_factory=list)


def _unescape(raw: str, lineno: int) -> str:
    def replace(match: re.Match) -> str:
        char = match.group(1)
        if char not in _ESCAPES:
            raise MetricsError(f"text format parsing error in line {lineno}: invalid escape sequence")
        return _ESCAPES[char]

    return _ESCAPE.sub(replace, raw)


def _parse_float(text: str, lineno: int) -> float:
    if "_" in text:
        raise MetricsError(f"text format parsing error in line {lineno}: expected float as value")
    try:
        return float(text)
    except ValueError:
        raise MetricsError(
            f"text format parsing error in line {lineno}: expected float as value, got {text!r}"
        ) from None


def _parse_sample(line: str, lineno: int) -> tuple[str, dict[str, str], float]:
    error = f"text format parsing error in line {lineno}"
    match = _METRIC_NAME.match(line)
    if not match:
        raise MetricsError(f"{error}: invalid metric name")
    name = match.group(0)
    pos = match.end()
    labels: dict[str, str] = {}
    if pos < len(line) and line[pos] == "{":
        pos += 1
        while True:
            while pos < len(line) and line[pos] in " \t":
                pos += 1
            if pos < len(line) and line[pos] == "}":
                pos += 1
                break
            pair = _LABEL_PAIR.match(line, pos)
            if not pair:
                raise MetricsError(f"{error}: invalid label")
            key = pair.group(1)
            if key in labels:
                raise MetricsError(f"{error}: duplicate label name {key!r}")
            labels[key] = _unescape(pair.group(2), lineno)
            pos = pair.end()
            if pos < len(line) and line[pos] == ",":
                pos += 1
                continue
            if pos < len(line) and line[pos] == "}":
                pos += 1
                break
            raise MetricsError(f"{error}: unexpected end of label set")
    if pos < len(line) and line[pos] not in " \t":
        raise MetricsError(f"{error}: unexpected character after metric name")
    fields = line[pos:].split()
    if not fields or len(fields) > 2:
        raise MetricsError(f"{error}: expected value and optional timestamp")
    value = _parse_float(fields[0], lineno)
    if len(fields) == 2:
        try:
            int(fields[1])
        except ValueError:
            raise MetricsError(f"{error}: expected integer as timestamp") from None
    return name, labels, value


def _family_for(name: str, families: dict[str, _Family]) -> _Family:
    for suffix in _SUFFIXES:
        if name.endswith(suffix):
            base = families.get(name[: -len(suffix)])
            if base is not None and base.type in ("summary", "histogram"):
                return base
    family = families.get(name)
    if family is None:
        family = families[name] = _Family(name)
    return family


def _parse_families(text: str) -> Iterable[_Family]:
    families: dict[str, _Family] = {}
    for lineno, raw in enumerate(text.split("\n"), start=1):
        line = raw.lstrip(" \t")
        if not line:
            continue
        if line.startswith("#"):
            parts = line[1:].split(None, 2)
            if len(parts) < 2 or parts[0] not in ("TYPE", "HELP"):
                continue
            keyword, name = parts[0], parts[1]
            if not _METRIC_NAME.fullmatch(name):
                raise MetricsError(f"text format parsing error in line {lineno}: invalid metric name")
            if keyword == "TYPE":
                type_name = parts[2].strip() if len(parts) > 2 else ""
                if type_name not in _TYPES:
                    raise MetricsError(
                        f"text format parsing error in line {lineno}: unknown metric type {type_name!r}"
                    )
                if name in families:
                    raise MetricsError(
                        f"text format parsing error in line {lineno}: second TYPE line for metric "
                        f"name {name!r}, or TYPE reported after samples"
                    )
                families[name] = _Family(name, type_name)
            continue
        name, labels, value = _parse_sample(line, lineno)
        _family_for(name, families).samples.append((labels, value))
    return (family for family in families.values() if family.samples)


def parse_prometheus_metrics(metrics_text: str) -> list[MetricRepresentation]:
    """Parse counter and gauge metrics from Prometheus text format."""
    metrics: list[MetricRepresentation] = []
    for family in _parse_families(metrics_text.replace("\r", "")):
        if family.type not in ("counter", "gauge"):
            raise MetricsError(
                f"unexpected MetricType {family.type.upper()} for metric {family.name}"
            )
        metrics.extend(
            MetricRepresentation(family.name, labels, value) for labels, value in family.samples
        )
    return metrics


def get_float64_metric(
    metrics: Iterable[MetricRepresentation],
    name: str,
    labels: dict[str, str],
    strict_label_matching: bool,
) -> MetricRepresentation:
    """Find the first metric with this name whose labels match.

    With strict matching the labels must be identical; otherwise the metric's
    labels need only be a superset of the given ones.
    """
    for metric in metrics:
        if metric.name != name:
            continue
        if strict_label_matching and len(metric.labels) != len(labels):
            continue
        if all(metric.labels.get(key, "") == value for key, value in labels.items()):
            return metric
    raise MetricsError("no matching metric found")