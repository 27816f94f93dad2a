"""In-process metric registry with views, tag keys and aggregation."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

_MAX_TAG_NAME_LENGTH = 255


class MetricsError(Exception):
    """Raised when a metric cannot be created, recorded or found."""


class Aggregation(str, Enum):
    """How measurements are aggregated into data points."""

    LAST_VALUE = "LastValue"
    SUM = "Sum"


class MetricID(str, Enum):
    """Identifiers of the metrics the monitors can report."""

    CPU_RUNNABLE_TASK_COUNT = "cpu/runnable_task_count"
    CPU_USAGE_TIME = "cpu/usage_time"
    CPU_LOAD_1M = "cpu/load_1m"
    CPU_LOAD_5M = "cpu/load_5m"
    CPU_LOAD_15M = "cpu/load_15m"
    PROBLEM_COUNTER = "problem_counter"
    PROBLEM_GAUGE = "problem_gauge"
    DISK_IO_TIME = "disk/io_time"
    DISK_WEIGHTED_IO = "disk/weighted_io"
    DISK_AVG_QUEUE_LEN = "disk/avg_queue_len"
    DISK_OPS_COUNT = "disk/operation_count"
    DISK_MERGED_OPS_COUNT = "disk/merged_operation_count"
    DISK_OPS_BYTES = "disk/operation_bytes_count"
    DISK_OPS_TIME = "disk/operation_time"
    DISK_BYTES_USED = "disk/bytes_used"
    HOST_UPTIME = "host/uptime"
    MEMORY_BYTES_USED = "memory/bytes_used"
    MEMORY_ANONYMOUS_USED = "memory/anonymous_used"
    MEMORY_PAGE_CACHE_USED = "memory/page_cache_used"
    MEMORY_UNEVICTABLE_USED = "memory/unevictable_used"
    MEMORY_DIRTY_USED = "memory/dirty_used"
    OS_FEATURE = "system/os_feature"
    SYSTEM_PROCESSES_TOTAL = "system/processes_total"
    SYSTEM_PROCS_RUNNING = "system/procs_running"
    SYSTEM_PROCS_BLOCKED = "system/procs_blocked"
    SYSTEM_INTERRUPTS_TOTAL = "system/interrupts_total"
    SYSTEM_CPU_STAT = "system/cpu_stat"
    NET_DEV_RX_BYTES = "net/rx_bytes"
    NET_DEV_RX_PACKETS = "net/rx_packets"
    NET_DEV_RX_ERRORS = "net/rx_errors"
    NET_DEV_RX_DROPPED = "net/rx_dropped"
    NET_DEV_RX_FIFO = "net/rx_fifo"
    NET_DEV_RX_FRAME = "net/rx_frame"
    NET_DEV_RX_COMPRESSED = "net/rx_compressed"
    NET_DEV_RX_MULTICAST = "net/rx_multicast"
    NET_DEV_TX_BYTES = "net/tx_bytes"
    NET_DEV_TX_PACKETS = "net/tx_packets"
    NET_DEV_TX_ERRORS = "net/tx_errors"
    NET_DEV_TX_DROPPED = "net/tx_dropped"
    NET_DEV_TX_FIFO = "net/tx_fifo"
    NET_DEV_TX_COLLISIONS = "net/tx_collisions"
    NET_DEV_TX_CARRIER = "net/tx_carrier"
    NET_DEV_TX_COMPRESSED = "net/tx_compressed"


class MetricMapping:
    """Thread-safe mapping from view names to metric IDs."""

    def __init__(self) -> None:
        self._view_name_to_metric_id: dict[str, MetricID] = {}
        self._lock = threading.RLock()

    def add_mapping(self, metric_id: MetricID, view_name: str) -> None:
        with self._lock:
            self._view_name_to_metric_id[view_name] = metric_id

    def view_name_to_metric_id(self, view_name: str) -> Optional[MetricID]:
        """The metric ID registered for a view name, or None."""
        with self._lock:
            return self._view_name_to_metric_id.get(view_name)


METRIC_MAP = MetricMapping()


@dataclass
class MetricRepresentation:
    """A snapshot of one metric data point, for inspection."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    value: Union[int, float] = 0


@dataclass
class _View:
    name: str
    description: str
    unit: str
    aggregation: Aggregation
    tag_keys: tuple[str, ...]
    rows: dict[tuple[tuple[str, str], ...], Union[int, float]] = field(default_factory=dict)


_tag_keys: set[str] = set()
_tag_lock = threading.RLock()
_views: dict[str, _View] = {}
_views_lock = threading.Lock()


def _check_tag_name(name: str) -> None:
    if not name or len(name) > _MAX_TAG_NAME_LENGTH:
        raise MetricsError(f"failed to create tag {name!r}: invalid key name")
    if not all(" " <= ch <= "~" for ch in name):
        raise MetricsError(f"failed to create tag {name!r}: invalid key name")


def _register_tag_keys(tag_names: list[str]) -> tuple[str, ...]:
    with _tag_lock:
        for tag_name in tag_names:
            if tag_name not in _tag_keys:
                _check_tag_name(tag_name)
                _tag_keys.add(tag_name)
    return tuple(tag_names)


def _record(metric_name: str, tags: dict[str, str], value: Union[int, float]) -> None:
    with _tag_lock:
        for tag_name in tags:
            if tag_name not in _tag_keys:
                raise MetricsError(
                    f"referencing none existing tag {tag_name!r} in metric {metric_name!r}"
                )
    with _views_lock:
        view = _views.get(metric_name)
        if view is None:
            return
        key = tuple((k, tags[k]) for k in view.tag_keys if k in tags)
        if view.aggregation is Aggregation.SUM:
            view.rows[key] = view.rows.get(key, 0) + value
        else:
            view.rows[key] = value


class Int64Metric:
    """A metric holding integer measurements."""

    def __init__(self, name: str) -> None:
        self.name = name

    def record(self, tags: dict[str, str], measurement: int) -> None:
        """Record a measurement with the given tags as labels."""
        _record(self.name, tags, int(measurement))


class Float64Metric:
    """A metric holding floating-point measurements."""

    def __init__(self, name: str) -> None:
        self.name = name

    def record(self, tags: dict[str, str], measurement: float) -> None:
        """Record a measurement with the given tags as labels."""
        _record(self.name, tags, float(measurement))


def _new_metric(
    cls: type,
    metric_id: MetricID,
    view_name: str,
    description: str,
    unit: str,
    aggregation: Union[Aggregation, str],
    tag_names: list[str],
):
    if not view_name:
        return None
    METRIC_MAP.add_mapping(metric_id, view_name)
    try:
        tag_keys = _register_tag_keys(list(tag_names))
    except MetricsError as exc:
        raise MetricsError(
            f"failed to create metric {view_name!r} because of tag creation failure: {exc}"
        ) from exc
    try:
        method = Aggregation(aggregation)
    except ValueError:
        raise MetricsError(f"unknown aggregation option {aggregation!r}") from None
    with _views_lock:
        if view_name not in _views:
            _views[view_name] = _View(view_name, description, unit, method, tag_keys)
    return cls(view_name)


def new_int64_metric(
    metric_id: MetricID,
    view_name: str,
    description: str,
    unit: str,
    aggregation: Union[Aggregation, str],
    tag_names: list[str],
) -> Optional[Int64Metric]:
    """Create an integer metric and its view; None when view_name is empty."""
    return _new_metric(
        Int64Metric, metric_id, view_name, description, unit, aggregation, tag_names
    )


def new_float64_metric(
    metric_id: MetricID,
    view_name: str,
    description: str,
    unit: str,
    aggregation: Union[Aggregation, str],
    tag_names: list[str],
) -> Optional[Float64Metric]:
    """Create a float metric and its view; None when view_name is empty."""
    return _new_metric(
        Float64Metric, metric_id, view_name, description, unit, aggregation, tag_names
    )


def get_view_rows(view_name: str) -> list[MetricRepresentation]:
    """Snapshot of the aggregated data points of a registered view."""
    with _views_lock:
        view = _views.get(view_name)
        if view is None:
            raise MetricsError(f"no view registered under {view_name!r}")
        return [
            MetricRepresentation(view_name, dict(key), value)
            for key, value in view.rows.items()
        ]