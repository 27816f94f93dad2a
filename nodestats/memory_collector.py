"""Collection of memory usage statistics from the kernel's meminfo."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from nodestats.config import MemoryStatsConfig
from nodestats.labels import STATE_LABEL
from nodestats.metrics import Aggregation, Int64Metric, MetricID, new_int64_metric

log = logging.getLogger(__name__)

MEMINFO_PATH = "/proc/meminfo"


def parse_meminfo(text: str) -> dict[str, int]:
    """Parse /proc/meminfo into a mapping of field names to values (kB for sizes)."""
    result: dict[str, int] = {}
    for line in text.splitlines():
        fields = line.split()
        if not fields:
            continue
        if len(fields) not in (2, 3) or not fields[0].endswith(":"):
            raise ValueError(f"malformed meminfo line: {line!r}")
        if len(fields) == 3 and fields[2] != "kB":
            raise ValueError(f"unsupported unit in meminfo line: {line!r}")
        try:
            value = int(fields[1])
        except ValueError:
            raise ValueError(f"invalid value in meminfo line: {line!r}") from None
        result[fields[0][:-1]] = value
    return result


class MemoryCollector:
    """Records memory usage broken down by state."""

    def __init__(self, config: MemoryStatsConfig, meminfo_path: str = MEMINFO_PATH) -> None:
        self.config = config
        self.meminfo_path = meminfo_path

        self.bytes_used: Optional[Int64Metric] = self._int(
            MetricID.MEMORY_BYTES_USED,
            "Memory usage by each memory state, in Bytes. Summing values of all states "
            "yields the total memory on the node.",
            [STATE_LABEL])
        self.anonymous_used: Optional[Int64Metric] = self._int(
            MetricID.MEMORY_ANONYMOUS_USED,
            "Anonymous memory usage, in Bytes. Summing values of all states yields the total "
            "anonymous memory used.",
            [STATE_LABEL])
        self.page_cache_used: Optional[Int64Metric] = self._int(
            MetricID.MEMORY_PAGE_CACHE_USED,
            "Page cache memory usage, in Bytes. Summing values of all states yields the total "
            "anonymous memory used.",
            [STATE_LABEL])
        self.unevictable_used: Optional[Int64Metric] = self._int(
            MetricID.MEMORY_UNEVICTABLE_USED, "Unevictable memory usage, in Bytes", [])
        self.dirty_used: Optional[Int64Metric] = self._int(
            MetricID.MEMORY_DIRTY_USED,
            "Dirty pages usage, in Bytes. Dirty means the memory is waiting to be written back "
            "to disk, and writeback means the memory is actively being written back to disk.",
            [STATE_LABEL])

    def _int(self, metric_id: MetricID, description: str, tags: list[str]) -> Optional[Int64Metric]:
        metric_config = self.config.metrics_configs.get(metric_id.value)
        display_name = metric_config.display_name if metric_config is not None else ""
        return new_int64_metric(
            metric_id, display_name, description, "Byte", Aggregation.LAST_VALUE, tags)

    def collect(self) -> None:
        """Record every configured memory metric once, in bytes."""
        try:
            info = parse_meminfo(Path(self.meminfo_path).read_text())
        except (OSError, ValueError) as exc:
            log.error("Failed to retrieve memory stats: %s", exc)
            return

        def kb(key: str) -> int:
            return info.get(key, 0) * 1024

        if self.bytes_used is not None:
            used = kb("MemTotal") - kb("MemFree") - kb("Buffers") - kb("Cached") - kb("Slab")
            self.bytes_used.record({STATE_LABEL: "free"}, kb("MemFree"))
            self.bytes_used.record({STATE_LABEL: "used"}, used)
            self.bytes_used.record({STATE_LABEL: "buffered"}, kb("Buffers"))
            self.bytes_used.record({STATE_LABEL: "cached"}, kb("Cached"))
            self.bytes_used.record({STATE_LABEL: "slab"}, kb("Slab"))

        if self.dirty_used is not None:
            self.dirty_used.record({STATE_LABEL: "dirty"}, kb("Dirty"))
            self.dirty_used.record({STATE_LABEL: "writeback"}, kb("Writeback"))

        if self.anonymous_used is not None:
            self.anonymous_used.record({STATE_LABEL: "active"}, kb("Active(anon)"))
            self.anonymous_used.record({STATE_LABEL: "inactive"}, kb("Inactive(anon)"))

        if self.page_cache_used is not None:
            self.page_cache_used.record({STATE_LABEL: "active"}, kb("Active(file)"))
            self.page_cache_used.record({STATE_LABEL: "inactive"}, kb("Inactive(file)"))

        if self.unevictable_used is not None:
            self.unevictable_used.record({}, kb("Unevictable"))