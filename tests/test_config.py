from datetime import timedelta

import pytest

from nodestats.config import (
    ConfigError,
    DiskStatsConfig,
    MetricConfig,
    OSFeatureStatsConfig,
    SystemStatsConfig,
)


def test_apply_configuration_normal():
    config = SystemStatsConfig(
        disk_config=DiskStatsConfig(lsblk_timeout_string="5s"),
        invoke_interval_string="60s",
    )
    config.apply_configuration()
    assert config == SystemStatsConfig(
        disk_config=DiskStatsConfig(
            lsblk_timeout=timedelta(seconds=5), lsblk_timeout_string="5s"
        ),
        os_feature_config=OSFeatureStatsConfig(
            known_modules_config_path="guestosconfig/known-modules.json"
        ),
        invoke_interval_string="60s",
        invoke_interval=timedelta(seconds=60),
    )


def test_apply_configuration_empty():
    config = SystemStatsConfig(disk_config=DiskStatsConfig())
    config.apply_configuration()
    assert config == SystemStatsConfig(
        disk_config=DiskStatsConfig(
            lsblk_timeout=timedelta(seconds=5), lsblk_timeout_string="5s"
        ),
        os_feature_config=OSFeatureStatsConfig(
            known_modules_config_path="guestosconfig/known-modules.json"
        ),
        invoke_interval_string="1m0s",
        invoke_interval=timedelta(seconds=60),
    )


def test_apply_configuration_error():
    config = SystemStatsConfig(disk_config=DiskStatsConfig(lsblk_timeout_string="foo"))
    with pytest.raises(ConfigError):
        config.apply_configuration()


def test_apply_configuration_bad_invoke_interval():
    config = SystemStatsConfig(invoke_interval_string="soon")
    with pytest.raises(ConfigError, match="InvokeIntervalString"):
        config.apply_configuration()


@pytest.mark.parametrize(
    "lsblk, invoke, is_error",
    [
        ("5s", "60s", False),
        ("5s", "-1s", True),
        ("-1s", "60s", True),
        ("90s", "60s", True),
    ],
)
def test_validate(lsblk, invoke, is_error):
    config = SystemStatsConfig(
        disk_config=DiskStatsConfig(lsblk_timeout_string=lsblk),
        invoke_interval_string=invoke,
    )
    config.apply_configuration()
    if is_error:
        with pytest.raises(ConfigError):
            config.validate()
    else:
        config.validate()
        assert config.disk_config.lsblk_timeout < config.invoke_interval


def test_from_dict():
    config = SystemStatsConfig.from_dict(
        {
            "cpu": {"metricsConfigs": {"cpu/load_1m": {"displayName": "cpu/load_1m"}}},
            "disk": {
                "metricsConfigs": {"disk/io_time": {"displayName": "disk/io_time"}},
                "includeRootBlk": True,
                "includeAllAttachedBlk": True,
                "lsblkTimeout": "2s",
            },
            "osFeature": {"knownModulesConfigPath": "modules.json"},
            "invokeInterval": "30s",
        }
    )
    assert config.cpu_config.metrics_configs == {"cpu/load_1m": MetricConfig("cpu/load_1m")}
    assert config.disk_config.include_root_blk is True
    assert config.disk_config.include_all_attached_blk is True
    assert config.disk_config.lsblk_timeout_string == "2s"
    assert config.os_feature_config.known_modules_config_path == "modules.json"
    assert config.host_config.metrics_configs == {}
    config.apply_configuration()
    assert config.invoke_interval == timedelta(seconds=30)
    assert config.disk_config.lsblk_timeout == timedelta(seconds=2)


def test_from_dict_rejects_non_object():
    with pytest.raises(ConfigError):
        SystemStatsConfig.from_dict({"cpu": [1, 2]})