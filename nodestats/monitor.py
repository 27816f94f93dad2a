"""The system stats monitor: periodically runs every configured collector."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional

from nodestats.config import ConfigError, SystemStatsConfig
from nodestats.cpu_collector import CPUCollector
from nodestats.disk_collector import DiskCollector
from nodestats.host_collector import HostCollector
from nodestats.memory_collector import MemoryCollector
from nodestats.net_collector import NetCollector
from nodestats.osfeature_collector import OSFeatureCollector
from nodestats.tomb import Tomb

log = logging.getLogger(__name__)

SYSTEM_STATS_MONITOR_NAME = "system-stats-monitor"


class SystemStatsMonitor:
    """Runs the configured collectors once at start and then every invoke interval."""

    def __init__(self, config_path: str, config: SystemStatsConfig) -> None:
        self.config_path = config_path
        self.config = config
        self.cpu_collector: Optional[CPUCollector] = None
        self.disk_collector: Optional[DiskCollector] = None
        self.host_collector: Optional[HostCollector] = None
        self.memory_collector: Optional[MemoryCollector] = None
        self.os_feature_collector: Optional[OSFeatureCollector] = None
        self.net_collector: Optional[NetCollector] = None
        self.tomb = Tomb()
        self._thread: Optional[threading.Thread] = None

    def _collectors(self) -> list[Any]:
        return [
            collector
            for collector in (
                self.cpu_collector,
                self.disk_collector,
                self.host_collector,
                self.memory_collector,
                self.os_feature_collector,
                self.net_collector,
            )
            if collector is not None
        ]

    def _collect_all(self) -> None:
        for collector in self._collectors():
            collector.collect()

    def _monitor_loop(self) -> None:
        stopping = self.tomb.stopping()
        interval = self.config.invoke_interval.total_seconds()
        try:
            if not stopping.is_set():
                self._collect_all()
                while not stopping.wait(interval):
                    self._collect_all()
            log.info("System stats monitor stopped: %s", self.config_path)
        finally:
            self.tomb.done()

    def start(self) -> None:
        """Start collecting in a background thread; no status is reported."""
        log.info("Start system stats monitor %s", self.config_path)
        if self._thread is not None:
            raise RuntimeError("system stats monitor is already started")
        self._thread = threading.Thread(
            target=self._monitor_loop, name=SYSTEM_STATS_MONITOR_NAME, daemon=True)
        self._thread.start()
        return None

    def stop(self) -> None:
        """Stop collecting and wait for the background thread to finish."""
        log.info("Stop system stats monitor %s", self.config_path)
        if self._thread is None:
            raise RuntimeError("system stats monitor was never started")
        self.tomb.stop()
        self._thread.join()


def new_system_stats_monitor(config_path: str) -> SystemStatsMonitor:
    """Load the configuration at config_path and build the monitor and its collectors."""
    try:
        raw = Path(config_path).read_text()
    except OSError as exc:
        raise OSError(f"Failed to read configuration file {config_path!r}: {exc}") from exc
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise ConfigError(
            f"Failed to unmarshal configuration file {config_path!r}: {exc}") from exc

    config = SystemStatsConfig.from_dict(data)
    try:
        config.apply_configuration()
    except ConfigError as exc:
        raise ConfigError(f"Failed to apply configuration for {config_path!r}: {exc}") from exc
    try:
        config.validate()
    except ConfigError as exc:
        raise ConfigError(f"Failed to validate {config_path} configuration: {exc}") from exc

    monitor = SystemStatsMonitor(config_path, config)
    if config.cpu_config.metrics_configs:
        monitor.cpu_collector = CPUCollector(config.cpu_config)
    if config.disk_config.metrics_configs:
        monitor.disk_collector = DiskCollector(config.disk_config)
    if config.host_config.metrics_configs:
        monitor.host_collector = HostCollector(config.host_config)
    if config.memory_config.metrics_configs:
        monitor.memory_collector = MemoryCollector(config.memory_config)
    if config.os_feature_config.metrics_configs:
        known_path = config.os_feature_config.known_modules_config_path
        if not os.path.isabs(known_path):
            config.os_feature_config.known_modules_config_path = os.path.normpath(
                os.path.join(os.path.dirname(config_path), known_path))
        monitor.os_feature_collector = OSFeatureCollector(config.os_feature_config)
    if config.net_config.metrics_configs:
        monitor.net_collector = NetCollector(config.net_config)
    return monitor