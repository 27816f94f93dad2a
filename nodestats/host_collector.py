"""Collection of host uptime, tagged with kernel and OS versions."""

from __future__ import annotations

import logging
import platform
import time
from typing import Optional

import psutil

from nodestats.config import HostStatsConfig
from nodestats.helpers import OS_RELEASE_PATH, get_os_version
from nodestats.metrics import Aggregation, Int64Metric, MetricID, new_int64_metric

log = logging.getLogger(__name__)


class HostCollector:
    """Records the operating system uptime."""

    def __init__(self, config: HostStatsConfig, os_release_path: str = OS_RELEASE_PATH) -> None:
        self.tags: dict[str, str] = {}
        self.uptime: Optional[Int64Metric] = None

        kernel_version = platform.release()
        if not kernel_version:
            raise RuntimeError("Failed to retrieve kernel version")
        self.tags["kernel_version"] = kernel_version
        self.tags["os_version"] = get_os_version(os_release_path)

        metric_config = config.metrics_configs.get(MetricID.HOST_UPTIME.value)
        if metric_config is not None and metric_config.display_name:
            self.uptime = new_int64_metric(
                MetricID.HOST_UPTIME,
                metric_config.display_name,
                "The uptime of the operating system",
                "second",
                Aggregation.LAST_VALUE,
                ["kernel_version", "os_version"],
            )

    def collect(self) -> None:
        """Record the current uptime in seconds."""
        try:
            uptime = int(time.time() - psutil.boot_time())
        except (OSError, psutil.Error) as exc:
            log.error("Failed to retrieve uptime of the host: %s", exc)
            return
        if self.uptime is not None:
            self.uptime.record(self.tags, uptime)