"""Collection of CPU load, usage and kernel scheduler statistics."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import psutil

from nodestats.config import CPUStatsConfig
from nodestats.labels import CPU_LABEL, STAGE_LABEL, STATE_LABEL
from nodestats.metrics import (
    Aggregation,
    Float64Metric,
    Int64Metric,
    MetricID,
    new_float64_metric,
    new_int64_metric,
)

log = logging.getLogger(__name__)

# Ratio between one second and one USER_HZ clock tick; 100 on nearly all architectures.
CLOCK_TICK = 100.0

PROC_STAT_PATH = "/proc/stat"

_USAGE_STATES = (
    "user",
    "system",
    "idle",
    "nice",
    "iowait",
    "irq",
    "softirq",
    "steal",
    "guest",
    "guest_nice",
)

_CPU_STAGES = (
    ("user", "user"),
    ("nice", "nice"),
    ("system", "system"),
    ("idle", "idle"),
    ("iowait", "iowait"),
    ("iRQ", "irq"),
    ("softIRQ", "softirq"),
    ("steal", "steal"),
    ("guest", "guest"),
    ("guestNice", "guest_nice"),
)


@dataclass(frozen=True)
class CPUStat:
    """Time one CPU spent in each kernel stage, in seconds."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0
    guest_nice: float = 0.0


@dataclass
class ProcStat:
    """The parts of the kernel's /proc/stat that the collector reports."""

    boot_time: int = 0
    cpu_total: CPUStat = field(default_factory=CPUStat)
    cpu: list[CPUStat] = field(default_factory=list)
    irq_total: int = 0
    context_switches: int = 0
    process_created: int = 0
    processes_running: int = 0
    processes_blocked: int = 0


def _parse_cpu_line(fields: list[str]) -> CPUStat:
    values = [float(value) / CLOCK_TICK for value in fields[1:11]]
    if not values:
        raise ValueError(f"couldn't parse cpu line: {' '.join(fields)!r}")
    values.extend([0.0] * (10 - len(values)))
    return CPUStat(*values)


_COUNTERS = {
    "btime": "boot_time",
    "ctxt": "context_switches",
    "processes": "process_created",
    "procs_running": "processes_running",
    "procs_blocked": "processes_blocked",
}


def parse_proc_stat(text: str) -> ProcStat:
    """Parse the contents of /proc/stat; CPU times are converted to seconds."""
    stat = ProcStat()
    for line in text.splitlines():
        fields = line.split()
        if not fields:
            continue
        name = fields[0]
        if name == "cpu":
            stat.cpu_total = _parse_cpu_line(fields)
        elif name.startswith("cpu"):
            try:
                cpu_id = int(name[3:])
            except ValueError:
                raise ValueError(f"couldn't parse cpu id from {name!r}") from None
            if cpu_id < 0:
                raise ValueError(f"couldn't parse cpu id from {name!r}")
            if len(stat.cpu) <= cpu_id:
                stat.cpu.extend(CPUStat() for _ in range(cpu_id - len(stat.cpu) + 1))
            stat.cpu[cpu_id] = _parse_cpu_line(fields)
        elif name == "intr":
            if len(fields) < 2:
                raise ValueError("couldn't parse intr line")
            stat.irq_total = int(fields[1])
        elif name in _COUNTERS:
            if len(fields) < 2:
                raise ValueError(f"couldn't parse {name} line")
            setattr(stat, _COUNTERS[name], int(fields[1]))
    return stat


class CPUCollector:
    """Records CPU load averages, usage time and per-CPU kernel statistics."""

    def __init__(self, config: CPUStatsConfig, proc_stat_path: str = PROC_STAT_PATH) -> None:
        self.config = config
        self.proc_stat_path = proc_stat_path
        self.last_usage_time: dict[str, float] = {}

        self.runnable_task_count: Optional[Float64Metric] = self._float(
            MetricID.CPU_RUNNABLE_TASK_COUNT,
            "The average number of runnable tasks in the run-queue during the last minute",
            "1", Aggregation.LAST_VALUE, [])
        self.usage_time: Optional[Float64Metric] = self._float(
            MetricID.CPU_USAGE_TIME, "CPU usage, in seconds", "s", Aggregation.SUM, [STATE_LABEL])
        self.load_1m: Optional[Float64Metric] = self._float(
            MetricID.CPU_LOAD_1M, "CPU average load (1m)", "1", Aggregation.LAST_VALUE, [])
        self.load_5m: Optional[Float64Metric] = self._float(
            MetricID.CPU_LOAD_5M, "CPU average load (5m)", "1", Aggregation.LAST_VALUE, [])
        self.load_15m: Optional[Float64Metric] = self._float(
            MetricID.CPU_LOAD_15M, "CPU average load (15m)", "1", Aggregation.LAST_VALUE, [])
        self.processes_total: Optional[Int64Metric] = self._int(
            MetricID.SYSTEM_PROCESSES_TOTAL, "Number of forks since boot.", "1", Aggregation.SUM, [])
        self.procs_running: Optional[Int64Metric] = self._int(
            MetricID.SYSTEM_PROCS_RUNNING, "Number of processes currently running.", "1",
            Aggregation.LAST_VALUE, [])
        self.procs_blocked: Optional[Int64Metric] = self._int(
            MetricID.SYSTEM_PROCS_BLOCKED, "Number of processes currently blocked.", "1",
            Aggregation.LAST_VALUE, [])
        self.interrupts_total: Optional[Int64Metric] = self._int(
            MetricID.SYSTEM_INTERRUPTS_TOTAL, "Total number of interrupts serviced (cumulative).",
            "1", Aggregation.SUM, [])
        self.cpu_stat: Optional[Float64Metric] = self._float(
            MetricID.SYSTEM_CPU_STAT, "Cumulative time each cpu spent in various stages.", "ns",
            Aggregation.SUM, [CPU_LABEL, STAGE_LABEL])

    def _display_name(self, metric_id: MetricID) -> str:
        metric_config = self.config.metrics_configs.get(metric_id.value)
        return metric_config.display_name if metric_config is not None else ""

    def _float(self, metric_id, description, unit, aggregation, tags) -> Optional[Float64Metric]:
        return new_float64_metric(
            metric_id, self._display_name(metric_id), description, unit, aggregation, tags)

    def _int(self, metric_id, description, unit, aggregation, tags) -> Optional[Int64Metric]:
        return new_int64_metric(
            metric_id, self._display_name(metric_id), description, unit, aggregation, tags)

    def record_load(self) -> None:
        """Record the 1, 5 and 15 minute load averages."""
        if all(m is None for m in (self.runnable_task_count, self.load_1m,
                                   self.load_5m, self.load_15m)):
            return
        try:
            load1, load5, load15 = psutil.getloadavg()
        except (OSError, psutil.Error) as exc:
            log.error("Failed to retrieve average CPU load: %s", exc)
            return
        if self.runnable_task_count is not None:
            self.runnable_task_count.record({}, load1)
        if self.load_1m is not None:
            self.load_1m.record({}, load1)
        if self.load_5m is not None:
            self.load_5m.record({}, load5)
        if self.load_15m is not None:
            self.load_15m.record({}, load15)

    def record_usage(self) -> None:
        """Record the increase in aggregated CPU time per state since the last call."""
        if self.usage_time is None:
            return
        try:
            times = psutil.cpu_times(percpu=False)
        except (OSError, psutil.Error) as exc:
            log.error("Failed to retrieve CPU timers stat: %s", exc)
            return
        for state in _USAGE_STATES:
            current = CLOCK_TICK * float(getattr(times, state, 0.0))
            self.usage_time.record(
                {STATE_LABEL: state}, current - self.last_usage_time.get(state, 0.0))
            self.last_usage_time[state] = current

    def record_system_stats(self) -> None:
        """Record process, interrupt and per-CPU statistics from /proc/stat."""
        if all(m is None for m in (self.cpu_stat, self.interrupts_total, self.processes_total,
                                   self.procs_blocked, self.procs_running)):
            return
        try:
            stats = parse_proc_stat(Path(self.proc_stat_path).read_text())
        except (OSError, ValueError) as exc:
            log.error("Failed to retrieve cpu/process stats: %s", exc)
            return

        if self.processes_total is not None:
            self.processes_total.record({}, stats.process_created)
        if self.procs_running is not None:
            self.procs_running.record({}, stats.processes_running)
        if self.procs_blocked is not None:
            self.procs_blocked.record({}, stats.processes_blocked)
        if self.interrupts_total is not None:
            self.interrupts_total.record({}, stats.irq_total)

        if self.cpu_stat is not None:
            for index, cpu in enumerate(stats.cpu):
                for stage, attribute in _CPU_STAGES:
                    self.cpu_stat.record(
                        {CPU_LABEL: f"cpu{index}", STAGE_LABEL: stage},
                        getattr(cpu, attribute),
                    )

    def collect(self) -> None:
        """Record every configured CPU metric once."""
        self.record_load()
        self.record_usage()
        self.record_system_stats()