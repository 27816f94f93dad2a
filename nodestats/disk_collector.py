"""Collection of disk IO counters and disk space usage."""

from __future__ import annotations

import logging
import math
import subprocess
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

import psutil

from nodestats.config import DiskStatsConfig
from nodestats.labels import (
    DEVICE_NAME_LABEL,
    DIRECTION_LABEL,
    FS_TYPE_LABEL,
    MOUNT_OPTION_LABEL,
    STATE_LABEL,
)
from nodestats.metrics import (
    Aggregation,
    Float64Metric,
    Int64Metric,
    MetricID,
    new_float64_metric,
    new_int64_metric,
)

log = logging.getLogger(__name__)

DISKSTATS_PATH = "/proc/diskstats"
SECTOR_SIZE = 512


@dataclass(frozen=True)
class IOCountersStat:
    """Cumulative IO counters of one block device."""

    name: str = ""
    read_count: int = 0
    merged_read_count: int = 0
    write_count: int = 0
    merged_write_count: int = 0
    read_bytes: int = 0
    write_bytes: int = 0
    read_time: int = 0
    write_time: int = 0
    iops_in_progress: int = 0
    io_time: int = 0
    weighted_io: int = 0


def parse_diskstats(text: str, names: Sequence[str] = ()) -> dict[str, IOCountersStat]:
    """Parse /proc/diskstats; keep only the named devices when names are given."""
    result: dict[str, IOCountersStat] = {}
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 14:
            continue
        name = fields[2]
        if names and name not in names:
            continue
        try:
            values = [int(value) for value in fields[3:14]]
        except ValueError:
            raise ValueError(f"malformed diskstats line: {line!r}") from None
        (reads, merged_reads, read_sectors, read_time, writes, merged_writes,
         write_sectors, write_time, in_progress, io_time, weighted_io) = values
        result[name] = IOCountersStat(
            name=name,
            read_count=reads,
            merged_read_count=merged_reads,
            write_count=writes,
            merged_write_count=merged_writes,
            read_bytes=read_sectors * SECTOR_SIZE,
            write_bytes=write_sectors * SECTOR_SIZE,
            read_time=read_time,
            write_time=write_time,
            iops_in_progress=in_progress,
            io_time=io_time,
            weighted_io=weighted_io,
        )
    return result


def list_root_block_devices(timeout: Union[timedelta, float]) -> list[str]:
    """List block devices that are neither slaves nor holders, using lsblk."""
    seconds = timeout.total_seconds() if isinstance(timeout, timedelta) else float(timeout)
    stdout: Any = ""
    try:
        completed = subprocess.run(
            ["lsblk", "-d", "-n", "-o", "NAME"],
            capture_output=True,
            text=True,
            timeout=seconds,
            check=True,
        )
        stdout = completed.stdout
    except subprocess.TimeoutExpired as exc:
        log.error("Error calling lsblk")
        stdout = exc.stdout or ""
    except subprocess.CalledProcessError as exc:
        log.error("Error calling lsblk")
        stdout = exc.stdout or ""
    except OSError:
        log.error("Error calling lsblk")
    if isinstance(stdout, bytes):
        stdout = stdout.decode(errors="replace")
    return stdout.strip().split("\n")


def list_attached_block_devices(partitions: Iterable[Any]) -> list[str]:
    """List the devices of all currently attached partitions."""
    return [partition.device for partition in partitions]


_DIRECTIONS = (
    ("read", "read_count", "merged_read_count", "read_bytes", "read_time"),
    ("write", "write_count", "merged_write_count", "write_bytes", "write_time"),
)


class DiskCollector:
    """Records disk IO activity and disk space usage per device."""

    def __init__(self, config: DiskStatsConfig, diskstats_path: str = DISKSTATS_PATH) -> None:
        self.config = config
        self.diskstats_path = diskstats_path

        self.io_time: Optional[Int64Metric] = self._int(
            MetricID.DISK_IO_TIME, "The IO time spent on the disk, in ms", "ms",
            Aggregation.SUM, [DEVICE_NAME_LABEL])
        self.weighted_io: Optional[Int64Metric] = self._int(
            MetricID.DISK_WEIGHTED_IO, "The weighted IO on the disk, in ms", "ms",
            Aggregation.SUM, [DEVICE_NAME_LABEL])
        self.avg_queue_len: Optional[Float64Metric] = new_float64_metric(
            MetricID.DISK_AVG_QUEUE_LEN, self._display_name(MetricID.DISK_AVG_QUEUE_LEN),
            "The average queue length on the disk", "1", Aggregation.LAST_VALUE,
            [DEVICE_NAME_LABEL])
        self.ops_count: Optional[Int64Metric] = self._int(
            MetricID.DISK_OPS_COUNT, "Disk operations count", "1",
            Aggregation.SUM, [DEVICE_NAME_LABEL, DIRECTION_LABEL])
        self.merged_ops_count: Optional[Int64Metric] = self._int(
            MetricID.DISK_MERGED_OPS_COUNT, "Disk merged operations count", "1",
            Aggregation.SUM, [DEVICE_NAME_LABEL, DIRECTION_LABEL])
        self.ops_bytes: Optional[Int64Metric] = self._int(
            MetricID.DISK_OPS_BYTES, "Bytes transferred in disk operations", "1",
            Aggregation.SUM, [DEVICE_NAME_LABEL, DIRECTION_LABEL])
        self.ops_time: Optional[Int64Metric] = self._int(
            MetricID.DISK_OPS_TIME, "Time spent in disk operations, in ms", "ms",
            Aggregation.SUM, [DEVICE_NAME_LABEL, DIRECTION_LABEL])
        self.bytes_used: Optional[Int64Metric] = self._int(
            MetricID.DISK_BYTES_USED, "Disk bytes used, in Bytes", "Byte",
            Aggregation.LAST_VALUE,
            [DEVICE_NAME_LABEL, FS_TYPE_LABEL, MOUNT_OPTION_LABEL, STATE_LABEL])

        self.last_io_time: dict[str, int] = {}
        self.last_weighted_io: dict[str, int] = {}
        # Last seen counter per (direction, counter attribute) and device.
        self.last_counters: dict[str, dict[str, int]] = {}
        self.last_sample_time: Optional[float] = None

    def _display_name(self, metric_id: MetricID) -> str:
        metric_config = self.config.metrics_configs.get(metric_id.value)
        return metric_config.display_name if metric_config is not None else ""

    def _int(self, metric_id, description, unit, aggregation, tags) -> Optional[Int64Metric]:
        return new_int64_metric(
            metric_id, self._display_name(metric_id), description, unit, aggregation, tags)

    def _delta(self, attribute: str, device: str, current: int) -> int:
        history = self.last_counters.setdefault(attribute, {})
        delta = current - history.get(device, 0)
        history[device] = current
        return delta

    def record_io_counters(
        self, io_counters: Mapping[str, IOCountersStat], sample_time: float
    ) -> None:
        """Record the change in IO counters since the previous sample.

        sample_time is in seconds on the same clock as last_sample_time.
        """
        for device, stat in io_counters.items():
            tags = {DEVICE_NAME_LABEL: device}

            history_exists = device in self.last_io_time
            last_io_time = self.last_io_time.get(device, 0)
            last_weighted_io = self.last_weighted_io.get(device, 0)
            self.last_io_time[device] = stat.io_time
            self.last_weighted_io[device] = stat.weighted_io

            if self.io_time is not None:
                self.io_time.record(tags, stat.io_time - last_io_time)
            if self.weighted_io is not None:
                self.weighted_io.record(tags, stat.weighted_io - last_weighted_io)
            if history_exists:
                avg_queue_len = 0.0
                weighted_delta = stat.weighted_io - last_weighted_io
                if weighted_delta != 0:
                    last_sample = self.last_sample_time or 0.0
                    diff_ms = (sample_time - last_sample) * 1000
                    if diff_ms == 0:
                        avg_queue_len = math.copysign(math.inf, weighted_delta)
                    else:
                        avg_queue_len = weighted_delta / diff_ms
                if self.avg_queue_len is not None:
                    self.avg_queue_len.record(tags, avg_queue_len)

            for direction, count, merged, nbytes, optime in _DIRECTIONS:
                tags = {DEVICE_NAME_LABEL: device, DIRECTION_LABEL: direction}
                if self.ops_count is not None:
                    self.ops_count.record(tags, self._delta(count, device, getattr(stat, count)))
                if self.merged_ops_count is not None:
                    self.merged_ops_count.record(
                        tags, self._delta(merged, device, getattr(stat, merged)))
                if self.ops_bytes is not None:
                    self.ops_bytes.record(tags, self._delta(nbytes, device, getattr(stat, nbytes)))
                if self.ops_time is not None:
                    self.ops_time.record(tags, self._delta(optime, device, getattr(stat, optime)))

    def collect(self) -> None:
        """Record disk IO counters and, if configured, disk space usage."""
        devices: list[str] = []
        if self.config.include_root_blk:
            devices.extend(list_root_block_devices(self.config.lsblk_timeout))

        try:
            partitions = psutil.disk_partitions(all=False)
        except (OSError, psutil.Error) as exc:
            log.error("Failed to list disk partitions: %s", exc)
            return

        if self.config.include_all_attached_blk:
            devices.extend(list_attached_block_devices(partitions))

        try:
            io_counters = parse_diskstats(Path(self.diskstats_path).read_text(), devices)
        except (OSError, ValueError) as exc:
            log.error("Failed to retrieve disk IO counters: %s", exc)
            return
        sample_time = time.monotonic()
        try:
            self.record_io_counters(io_counters, sample_time)
            if self.bytes_used is None:
                return
            seen: set[str] = set()
            for partition in partitions:
                if partition.device in seen:
                    continue
                seen.add(partition.device)
                try:
                    usage = psutil.disk_usage(partition.mountpoint)
                except (OSError, psutil.Error) as exc:
                    log.error("Failed to retrieve disk usage for %r: %s", partition.mountpoint, exc)
                    continue
                base = {
                    DEVICE_NAME_LABEL: partition.device.removeprefix("/dev/"),
                    FS_TYPE_LABEL: partition.fstype,
                    MOUNT_OPTION_LABEL: partition.opts,
                }
                self.bytes_used.record({**base, STATE_LABEL: "free"}, int(usage.free))
                self.bytes_used.record({**base, STATE_LABEL: "used"}, int(usage.used))
        finally:
            self.last_sample_time = sample_time