"""A test double for integer metrics that keeps its data points for inspection."""

from __future__ import annotations

from typing import Optional, Union

from nodestats.metrics import Aggregation, MetricRepresentation, MetricsError


class FakeInt64Metric:
    """Records integer measurements in memory, aggregated per label set."""

    def __init__(self, name: str, aggregation: Union[Aggregation, str], tag_names: list[str]) -> None:
        self.name = name
        self.aggregation = aggregation
        self._allowed_tags = set(tag_names)
        self._metrics: list[MetricRepresentation] = []

    def record(self, tags: dict[str, str], measurement: int) -> None:
        """Record a measurement with the given tags as labels."""
        for tag_name in tags:
            if tag_name not in self._allowed_tags:
                raise MetricsError(f"tag {tag_name!r} is not allowed")
        try:
            aggregation = Aggregation(self.aggregation)
        except ValueError:
            raise MetricsError("unsupported aggregation type") from None
        labels = dict(tags)
        metric = next((m for m in self._metrics if m.labels == labels), None)
        if metric is None:
            metric = MetricRepresentation(self.name, labels, 0)
            self._metrics.append(metric)
        if aggregation is Aggregation.LAST_VALUE:
            metric.value = int(measurement)
        else:
            metric.value += int(measurement)

    def list_metrics(self) -> list[MetricRepresentation]:
        """A snapshot of the current data points."""
        return [MetricRepresentation(m.name, dict(m.labels), m.value) for m in self._metrics]


def new_fake_int64_metric(
    name: str, aggregation: Union[Aggregation, str], tag_names: list[str]
) -> Optional[FakeInt64Metric]:
    """Create a fake metric; None when the name is empty."""
    if not name:
        return None
    return FakeInt64Metric(name, aggregation, tag_names)