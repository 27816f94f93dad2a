# nodestats

`nodestats` watches the health of a Linux node. It periodically reads CPU,
disk, host, memory, network and OS-feature statistics from `/proc` (with the
help of `psutil` and, optionally, `lsblk`) and records them as labelled
metrics that are kept in-process and can be read back. It also ships a small
network health check that measures download bandwidth and verifies the
integrity of a downloaded blob.

## Installation

```
pip install nodestats
```

For running the test suite:

```
pip install "nodestats[test]"
pytest
```

## System stats monitor

The monitor is driven by a JSON configuration file. Every statistics group
that has at least one entry under `metricsConfigs` gets a collector; within a
collector a metric is only recorded when it has a non-empty `displayName`,
and its values are stored under that display name.

```json
{
  "invokeInterval": "60s",
  "cpu": {
    "metricsConfigs": {
      "cpu/load_1m": {"displayName": "cpu/load_1m"},
      "cpu/usage_time": {"displayName": "cpu/usage_time"}
    }
  },
  "disk": {
    "includeRootBlk": true,
    "includeAllAttachedBlk": true,
    "lsblkTimeout": "5s",
    "metricsConfigs": {
      "disk/io_time": {"displayName": "disk/io_time"},
      "disk/bytes_used": {"displayName": "disk/bytes_used"}
    }
  },
  "host": {
    "metricsConfigs": {
      "host/uptime": {"displayName": "host/uptime"}
    }
  },
  "memory": {
    "metricsConfigs": {
      "memory/bytes_used": {"displayName": "memory/bytes_used"}
    }
  },
  "osFeature": {
    "knownModulesConfigPath": "guestosconfig/known-modules.json",
    "metricsConfigs": {
      "system/os_feature": {"displayName": "system/os_feature"}
    }
  }
}
```

Defaults: `invokeInterval` is one minute, `lsblkTimeout` five seconds, and
`knownModulesConfigPath` is `guestosconfig/known-modules.json`. A relative
known-modules path is resolved against the directory of the configuration
file. Both durations must be positive and `lsblkTimeout` may not exceed
`invokeInterval`. Durations are written like `300ms`, `1.5h` or `2h45m`.

```python
from nodestats.monitor import new_system_stats_monitor

monitor = new_system_stats_monitor("/etc/nodestats/system-stats-monitor.json")
monitor.start()   # collects once immediately, then every invokeInterval
...
monitor.stop()    # returns once the collection loop has finished
```

Configuration can also be loaded and checked on its own:

```python
from nodestats.config import SystemStatsConfig, ConfigError

config = SystemStatsConfig.from_dict({"invokeInterval": "30s"})
config.apply_configuration()   # fills in defaults, parses durations
config.validate()              # raises ConfigError on invalid settings
```

Notes on the collectors:

- `CPUCollector` records load averages, per-state CPU usage since the last
  collection, and process, interrupt and per-CPU figures from `/proc/stat`.
- `DiskCollector` records IO counter deltas from `/proc/diskstats` and free
  and used bytes per partition. With `includeRootBlk` it runs `lsblk` to list
  root block devices.
- `HostCollector` records uptime tagged with the kernel and OS versions; it
  raises if the OS in `/etc/os-release` is not one of cos, debian, ubuntu,
  centos or rhel.
- `MemoryCollector` records usage from `/proc/meminfo`, in bytes.
- `NetCollector` records the counters of every interface from
  `/proc/net/dev`, but only when all sixteen `net/...` metrics are configured.
- `OSFeatureCollector` records KTD, UnifiedCgroupHierarchy and
  KernelModuleIntegrity from the kernel command line, and GPUSupport and
  UnknownModules from the loaded modules.

## Metrics

Metrics are created with `new_int64_metric` or `new_float64_metric` from
`nodestats.metrics`, with either `Aggregation.LAST_VALUE` (a gauge) or
`Aggregation.SUM` (a counter); both return `None` when the view name is
empty. Recorded values are kept per label set and can be read back with
`get_view_rows(view_name)`. `METRIC_MAP` maps view names back to `MetricID`s.

Text in the Prometheus exposition format can be parsed with
`nodestats.prometheus.parse_prometheus_metrics` (counters and gauges only),
and a single series looked up with `get_float64_metric`, matching labels
either exactly or as a subset.

`nodestats.fakes.FakeInt64Metric` (or `new_fake_int64_metric`) is an
inspectable stand-in for an integer metric, useful in tests of code that
records metrics.

## Other helpers

- `nodestats.system` reads the kernel command line (`cmdline_args`) and the
  loaded kernel modules (`modules`), including their taint flags.
- `nodestats.helpers` has `parse_duration`, `format_duration`,
  `get_start_time`, `get_uptime_duration`, `read_os_release` and
  `get_os_version`, which returns e.g. `ubuntu 16.04.6 LTS (Xenial Xerus)`.
- `nodestats.types` defines `Condition`, `Event`, `Status` and the abstract
  `Monitor`, `Exporter` and `CommandLineOptions` interfaces;
  `nodestats.convert` turns conditions and severities into API-level values.
- `nodestats.httputil` writes JSON or error responses from an
  `http.server` request handler.
- `nodestats.procexec.exec_command` starts a command in its own process group
  and `Command.kill` kills the whole group.
- `nodestats.tomb.Tomb` lets an owner ask a worker thread to stop and wait
  for it.

## Network health check

`nodestats-nethealth` downloads a blob over HTTP, fails if the transfer
takes longer than the timeout or runs below a minimum bandwidth, and then
compares the blob's SHA-512 with the value in a hash file of the form
`<name> <hash>`:

```
nodestats-nethealth --url http://example.com/64MB.bin \
    --hashurl http://example.com/sha512.txt \
    --length 67108864 --timeout 30 --minimum 10
```

`--url` and `--hashurl` are required. `--length` defaults to 64 MiB,
`--timeout` (seconds) to 30 and `--minimum` (MiB/s) to 10. The command exits
with status 1 when the object is missing, its length is unexpected, the
download is too slow, or the hash does not match. The same check is
available from Python as `nodestats.nethealth.run`, which raises
`NetHealthError` and otherwise returns the bandwidth in KiB/s.

## What this package does not do

The metrics are only held in memory: there is no exporter that serves them
over HTTP or sends them anywhere, and no concrete `Exporter` implementation.
There is no command that runs the system stats monitor; it is started from
Python as shown above. There are no log-watching problem daemons and nothing
that reports node conditions to a cluster.