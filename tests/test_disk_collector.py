import subprocess
import uuid
from collections import namedtuple
from datetime import timedelta
from types import SimpleNamespace
from unittest import mock

import pytest

from nodestats.config import DiskStatsConfig, MetricConfig
from nodestats.disk_collector import (
    DiskCollector,
    IOCountersStat,
    list_attached_block_devices,
    list_root_block_devices,
    parse_diskstats,
)
from nodestats.metrics import MetricID, get_view_rows

Partition = namedtuple("Partition", "device mountpoint fstype opts")

DISK_IDS = [
    MetricID.DISK_IO_TIME,
    MetricID.DISK_WEIGHTED_IO,
    MetricID.DISK_AVG_QUEUE_LEN,
    MetricID.DISK_OPS_COUNT,
    MetricID.DISK_MERGED_OPS_COUNT,
    MetricID.DISK_OPS_BYTES,
    MetricID.DISK_OPS_TIME,
    MetricID.DISK_BYTES_USED,
]

DISKSTATS = (
    "   8       0 sda 100 5 2000 300 50 3 1000 400 0 600 700 0 0 0 0\n"
    "   8      16 sdb 1 2 3 4 5 6 7 8 9 10 11\n"
    "   7       0 loop0 1 2\n"
)


def make_config(**kwargs):
    names = {mid: f"test/{mid.value}/{uuid.uuid4().hex}" for mid in DISK_IDS}
    config = DiskStatsConfig(
        metrics_configs={mid.value: MetricConfig(name) for mid, name in names.items()},
        **kwargs,
    )
    return config, names


def rows_by_labels(view_name):
    return {tuple(sorted(r.labels.items())): r.value for r in get_view_rows(view_name)}


def test_parse_diskstats_all_devices():
    stats = parse_diskstats(DISKSTATS)
    assert set(stats) == {"sda", "sdb"}
    sda = stats["sda"]
    assert sda.read_count == 100
    assert sda.merged_read_count == 5
    assert sda.read_bytes == 2000 * 512
    assert sda.read_time == 300
    assert sda.write_count == 50
    assert sda.merged_write_count == 3
    assert sda.write_bytes == 1000 * 512
    assert sda.write_time == 400
    assert sda.io_time == 600
    assert sda.weighted_io == 700


def test_parse_diskstats_filters_names():
    stats = parse_diskstats(DISKSTATS, ["sdb"])
    assert list(stats) == ["sdb"]
    assert stats["sdb"].weighted_io == 11


def test_parse_diskstats_malformed():
    with pytest.raises(ValueError):
        parse_diskstats("8 0 sda a b c d e f g h i j k\n")


def test_list_attached_block_devices():
    partitions = [
        Partition("/dev/sda1", "/", "ext4", "rw"),
        Partition("/dev/sdb", "/data", "xfs", "ro"),
    ]
    assert list_attached_block_devices(partitions) == ["/dev/sda1", "/dev/sdb"]


def test_list_root_block_devices_parses_output():
    completed = subprocess.CompletedProcess(args=[], returncode=0, stdout="sda\nsdb\n")
    with mock.patch("subprocess.run", return_value=completed) as run:
        assert list_root_block_devices(timedelta(seconds=5)) == ["sda", "sdb"]
    assert run.call_args.args[0] == ["lsblk", "-d", "-n", "-o", "NAME"]
    assert run.call_args.kwargs["timeout"] == 5.0


def test_list_root_block_devices_missing_command():
    with mock.patch("subprocess.run", side_effect=FileNotFoundError("lsblk")):
        assert list_root_block_devices(1.0) == [""]


def test_no_metrics_configured():
    collector = DiskCollector(DiskStatsConfig())
    assert collector.io_time is None
    assert collector.bytes_used is None
    assert collector.avg_queue_len is None


def test_record_io_counters_deltas_and_queue_length():
    config, names = make_config()
    collector = DiskCollector(config)
    first = IOCountersStat(name="sda", read_count=10, write_count=4, read_bytes=512,
                           io_time=100, weighted_io=200)
    collector.record_io_counters({"sda": first}, 0.0)
    assert get_view_rows(names[MetricID.DISK_AVG_QUEUE_LEN]) == []
    collector.last_sample_time = 0.0

    second = IOCountersStat(name="sda", read_count=15, write_count=4, read_bytes=1024,
                            io_time=150, weighted_io=300)
    collector.record_io_counters({"sda": second}, 1.0)

    assert rows_by_labels(names[MetricID.DISK_IO_TIME]) == {(("device_name", "sda"),): 150}
    assert rows_by_labels(names[MetricID.DISK_WEIGHTED_IO]) == {(("device_name", "sda"),): 300}
    queue = rows_by_labels(names[MetricID.DISK_AVG_QUEUE_LEN])
    assert queue[(("device_name", "sda"),)] == pytest.approx(0.1)
    ops = rows_by_labels(names[MetricID.DISK_OPS_COUNT])
    assert ops[(("device_name", "sda"), ("direction", "read"))] == 15
    assert ops[(("device_name", "sda"), ("direction", "write"))] == 4
    nbytes = rows_by_labels(names[MetricID.DISK_OPS_BYTES])
    assert nbytes[(("device_name", "sda"), ("direction", "read"))] == 1024


def test_queue_length_zero_when_weighted_io_unchanged():
    config, names = make_config()
    collector = DiskCollector(config)
    stat = IOCountersStat(name="sda", io_time=5, weighted_io=50)
    collector.record_io_counters({"sda": stat}, 0.0)
    collector.last_sample_time = 0.0
    collector.record_io_counters({"sda": stat}, 2.0)
    assert rows_by_labels(names[MetricID.DISK_AVG_QUEUE_LEN]) == {(("device_name", "sda"),): 0.0}


def test_collect_records_io_and_usage(tmp_path):
    diskstats = tmp_path / "diskstats"
    diskstats.write_text(DISKSTATS)
    config, names = make_config()
    collector = DiskCollector(config, diskstats_path=str(diskstats))
    partitions = [
        Partition("/dev/sda1", "/", "ext4", "rw,relatime"),
        Partition("/dev/sda1", "/var", "ext4", "rw,relatime"),
    ]
    usage = SimpleNamespace(free=1000, used=3000)
    with mock.patch("psutil.disk_partitions", return_value=partitions), \
            mock.patch("psutil.disk_usage", return_value=usage) as disk_usage:
        collector.collect()

    assert disk_usage.call_count == 1
    assert collector.last_sample_time is not None and collector.last_sample_time > 0
    io = rows_by_labels(names[MetricID.DISK_IO_TIME])
    assert io == {(("device_name", "sda"),): 600, (("device_name", "sdb"),): 10}
    used = rows_by_labels(names[MetricID.DISK_BYTES_USED])
    base = (("device_name", "sda1"), ("fs_type", "ext4"), ("mount_option", "rw,relatime"))
    assert used[tuple(sorted(base + (("state", "free"),)))] == 1000
    assert used[tuple(sorted(base + (("state", "used"),)))] == 3000


def test_collect_filters_attached_devices(tmp_path):
    diskstats = tmp_path / "diskstats"
    diskstats.write_text(DISKSTATS)
    config, names = make_config(include_all_attached_blk=True)
    collector = DiskCollector(config, diskstats_path=str(diskstats))
    partitions = [Partition("sdb", "/data", "xfs", "ro")]
    usage = SimpleNamespace(free=1, used=2)
    with mock.patch("psutil.disk_partitions", return_value=partitions), \
            mock.patch("psutil.disk_usage", return_value=usage):
        collector.collect()
    assert rows_by_labels(names[MetricID.DISK_IO_TIME]) == {(("device_name", "sdb"),): 10}


def test_collect_missing_diskstats(tmp_path):
    config, names = make_config()
    collector = DiskCollector(config, diskstats_path=str(tmp_path / "missing"))
    with mock.patch("psutil.disk_partitions", return_value=[]):
        collector.collect()
    assert collector.last_sample_time is None
    assert get_view_rows(names[MetricID.DISK_IO_TIME]) == []