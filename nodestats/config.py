"""Configuration of the system stats monitor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from nodestats.helpers import format_duration, parse_duration

DEFAULT_INVOKE_INTERVAL_STRING = format_duration(timedelta(seconds=60))
DEFAULT_LSBLK_TIMEOUT_STRING = format_duration(timedelta(seconds=5))
DEFAULT_KNOWN_MODULES_CONFIG_PATH = "guestosconfig/known-modules.json"


class ConfigError(ValueError):
    """Raised when a configuration cannot be parsed or is invalid."""


def _as_dict(data: Any, what: str) -> dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{what} must be an object, got {type(data).__name__}")
    return data


@dataclass
class MetricConfig:
    """How one metric is exposed."""

    display_name: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "MetricConfig":
        return cls(display_name=str(_as_dict(data, "metric config").get("displayName", "")))


def _metrics_configs(data: dict[str, Any]) -> dict[str, MetricConfig]:
    raw = _as_dict(data.get("metricsConfigs"), "metricsConfigs")
    return {name: MetricConfig.from_dict(cfg) for name, cfg in raw.items()}


@dataclass
class CPUStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "CPUStatsConfig":
        return cls(metrics_configs=_metrics_configs(_as_dict(data, "cpu")))


@dataclass
class DiskStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)
    include_root_blk: bool = False
    include_all_attached_blk: bool = False
    lsblk_timeout_string: str = ""
    lsblk_timeout: timedelta = timedelta(0)

    @classmethod
    def from_dict(cls, data: Any) -> "DiskStatsConfig":
        data = _as_dict(data, "disk")
        return cls(
            metrics_configs=_metrics_configs(data),
            include_root_blk=bool(data.get("includeRootBlk", False)),
            include_all_attached_blk=bool(data.get("includeAllAttachedBlk", False)),
            lsblk_timeout_string=str(data.get("lsblkTimeout", "")),
        )


@dataclass
class HostStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "HostStatsConfig":
        return cls(metrics_configs=_metrics_configs(_as_dict(data, "host")))


@dataclass
class MemoryStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "MemoryStatsConfig":
        return cls(metrics_configs=_metrics_configs(_as_dict(data, "memory")))


@dataclass
class OSFeatureStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)
    known_modules_config_path: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "OSFeatureStatsConfig":
        data = _as_dict(data, "osFeature")
        return cls(
            metrics_configs=_metrics_configs(data),
            known_modules_config_path=str(data.get("knownModulesConfigPath", "")),
        )


@dataclass
class NetStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "NetStatsConfig":
        return cls(metrics_configs=_metrics_configs(_as_dict(data, "net")))


@dataclass
class SystemStatsConfig:
    """Configuration of all collectors plus the collection interval."""

    cpu_config: CPUStatsConfig = field(default_factory=CPUStatsConfig)
    disk_config: DiskStatsConfig = field(default_factory=DiskStatsConfig)
    host_config: HostStatsConfig = field(default_factory=HostStatsConfig)
    memory_config: MemoryStatsConfig = field(default_factory=MemoryStatsConfig)
    os_feature_config: OSFeatureStatsConfig = field(default_factory=OSFeatureStatsConfig)
    net_config: NetStatsConfig = field(default_factory=NetStatsConfig)
    invoke_interval_string: str = ""
    invoke_interval: timedelta = timedelta(0)

    @classmethod
    def from_dict(cls, data: Any) -> "SystemStatsConfig":
        """Build a configuration from its decoded JSON form."""
        data = _as_dict(data, "configuration")
        return cls(
            cpu_config=CPUStatsConfig.from_dict(data.get("cpu")),
            disk_config=DiskStatsConfig.from_dict(data.get("disk")),
            host_config=HostStatsConfig.from_dict(data.get("host")),
            memory_config=MemoryStatsConfig.from_dict(data.get("memory")),
            os_feature_config=OSFeatureStatsConfig.from_dict(data.get("osFeature")),
            net_config=NetStatsConfig.from_dict(data.get("net")),
            invoke_interval_string=str(data.get("invokeInterval", "")),
        )

    def apply_configuration(self) -> None:
        """Fill in defaults and parse the duration strings."""
        if not self.invoke_interval_string:
            self.invoke_interval_string = DEFAULT_INVOKE_INTERVAL_STRING
        if not self.disk_config.lsblk_timeout_string:
            self.disk_config.lsblk_timeout_string = DEFAULT_LSBLK_TIMEOUT_STRING
        if not self.os_feature_config.known_modules_config_path:
            self.os_feature_config.known_modules_config_path = DEFAULT_KNOWN_MODULES_CONFIG_PATH

        try:
            self.invoke_interval = parse_duration(self.invoke_interval_string)
        except ValueError as exc:
            raise ConfigError(
                f"error in parsing InvokeIntervalString {self.invoke_interval_string!r}: {exc}"
            ) from exc
        try:
            self.disk_config.lsblk_timeout = parse_duration(self.disk_config.lsblk_timeout_string)
        except ValueError as exc:
            raise ConfigError(
                f"error in parsing LsblkTimeoutString {self.disk_config.lsblk_timeout_string!r}: {exc}"
            ) from exc

    def validate(self) -> None:
        """Raise ConfigError unless the durations are positive and consistent."""
        invoke = self.invoke_interval
        lsblk = self.disk_config.lsblk_timeout
        if invoke <= timedelta(0):
            raise ConfigError(f"InvokeInterval {format_duration(invoke)} must be above 0s")
        if lsblk <= timedelta(0):
            raise ConfigError(f"LsblkTimeout {format_duration(lsblk)} must be above 0s")
        if lsblk > invoke:
            raise ConfigError(
                f"LsblkTimeout {format_duration(lsblk)} must be shorter than "
                f"InvokeInterval {format_duration(invoke)}"
            )