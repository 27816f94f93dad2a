"""Collection of per-interface network device counters."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from nodestats.config import NetStatsConfig
from nodestats.labels import INTERFACE_NAME_LABEL
from nodestats.metrics import Aggregation, Int64Metric, MetricID, new_int64_metric

log = logging.getLogger(__name__)

NET_DEV_PATH = "/proc/net/dev"


@dataclass(frozen=True)
class NetDevLine:
    """Cumulative counters of one network interface."""

    name: str
    rx_bytes: int = 0
    rx_packets: int = 0
    rx_errors: int = 0
    rx_dropped: int = 0
    rx_fifo: int = 0
    rx_frame: int = 0
    rx_compressed: int = 0
    rx_multicast: int = 0
    tx_bytes: int = 0
    tx_packets: int = 0
    tx_errors: int = 0
    tx_dropped: int = 0
    tx_fifo: int = 0
    tx_collisions: int = 0
    tx_carrier: int = 0
    tx_compressed: int = 0


_COUNTER_COUNT = 16


def parse_net_dev(text: str) -> dict[str, NetDevLine]:
    """Parse the contents of /proc/net/dev, keyed by interface name."""
    result: dict[str, NetDevLine] = {}
    for line in text.splitlines()[2:]:
        if not line.strip():
            continue
        name, sep, rest = line.partition(":")
        if not sep:
            raise ValueError(f"invalid net/dev line, missing colon: {line!r}")
        name = name.strip()
        if not name:
            raise ValueError(f"invalid net/dev line, empty interface name: {line!r}")
        fields = rest.split()
        if len(fields) < _COUNTER_COUNT:
            raise ValueError(f"invalid net/dev line, too few fields: {line!r}")
        try:
            values = [int(value) for value in fields[:_COUNTER_COUNT]]
        except ValueError:
            raise ValueError(f"invalid net/dev line, bad counter: {line!r}") from None
        result[name] = NetDevLine(name, *values)
    return result


_NET_METRICS = (
    ("rx_bytes", MetricID.NET_DEV_RX_BYTES, "Cumulative count of bytes received.", "Byte"),
    ("rx_packets", MetricID.NET_DEV_RX_PACKETS, "Cumulative count of packets received.", "1"),
    ("rx_errors", MetricID.NET_DEV_RX_ERRORS,
     "Cumulative count of receive errors encountered.", "1"),
    ("rx_dropped", MetricID.NET_DEV_RX_DROPPED,
     "Cumulative count of packets dropped while receiving.", "1"),
    ("rx_fifo", MetricID.NET_DEV_RX_FIFO, "Cumulative count of FIFO buffer errors.", "1"),
    ("rx_frame", MetricID.NET_DEV_RX_FRAME, "Cumulative count of packet framing errors.", "1"),
    ("rx_compressed", MetricID.NET_DEV_RX_COMPRESSED,
     "Cumulative count of compressed packets received by the device driver.", "1"),
    ("rx_multicast", MetricID.NET_DEV_RX_MULTICAST,
     "Cumulative count of multicast frames received by the device driver.", "1"),
    ("tx_bytes", MetricID.NET_DEV_TX_BYTES, "Cumulative count of bytes transmitted.", "Byte"),
    ("tx_packets", MetricID.NET_DEV_TX_PACKETS, "Cumulative count of packets transmitted.", "1"),
    ("tx_errors", MetricID.NET_DEV_TX_ERRORS,
     "Cumulative count of transmit errors encountered.", "1"),
    ("tx_dropped", MetricID.NET_DEV_TX_DROPPED,
     "Cumulative count of packets dropped while transmitting.", "1"),
    ("tx_fifo", MetricID.NET_DEV_TX_FIFO, "Cumulative count of FIFO buffer errors.", "1"),
    ("tx_collisions", MetricID.NET_DEV_TX_COLLISIONS,
     "Cumulative count of collisions detected on the interface.", "1"),
    ("tx_carrier", MetricID.NET_DEV_TX_CARRIER,
     "Cumulative count of carrier losses detected by the device driver.", "1"),
    ("tx_compressed", MetricID.NET_DEV_TX_COMPRESSED,
     "Cumulative count of compressed packets transmitted by the device driver.", "1"),
)


class NetCollector:
    """Records the counters of every network interface."""

    def __init__(self, config: NetStatsConfig, net_dev_path: str = NET_DEV_PATH) -> None:
        self.config = config
        self.net_dev_path = net_dev_path
        self.metrics: dict[str, Optional[Int64Metric]] = {}
        for field_name, metric_id, description, unit in _NET_METRICS:
            metric_config = config.metrics_configs.get(metric_id.value)
            display_name = metric_config.display_name if metric_config is not None else ""
            self.metrics[field_name] = new_int64_metric(
                metric_id, display_name, description, unit, Aggregation.SUM,
                [INTERFACE_NAME_LABEL])

    def record_net_dev(self) -> None:
        """Record all interface counters; only when every net metric is configured."""
        if any(metric is None for metric in self.metrics.values()):
            return
        try:
            stats = parse_net_dev(Path(self.net_dev_path).read_text())
        except (OSError, ValueError) as exc:
            log.error("Failed to retrieve net dev stat: %s", exc)
            return
        for interface, counters in stats.items():
            tags = {INTERFACE_NAME_LABEL: interface}
            for field_name, metric in self.metrics.items():
                metric.record(tags, getattr(counters, field_name))  # type: ignore[union-attr]

    def collect(self) -> None:
        """Record every configured network metric once."""
        self.record_net_dev()