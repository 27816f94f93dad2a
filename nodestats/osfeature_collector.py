"""Collection of guest operating system features."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterable, Optional

from nodestats import system
from nodestats.config import OSFeatureStatsConfig
from nodestats.labels import FEATURE_LABEL, VALUE_LABEL
from nodestats.metrics import Aggregation, Int64Metric, MetricID, new_int64_metric
from nodestats.system import CmdlineArg, Module

log = logging.getLogger(__name__)

_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MAX = 2**63 - 1
_INT64_MIN = -(2**63)

_CMDLINE_FEATURES = {
    "csm.enabled": "KTD",
    "systemd.unified_cgroup_hierarchy": "UnifiedCgroupHierarchy",
    "module.sig_enforce": "ModuleSigned",
    "loadpin.enabled": "LoadPinEnabled",
}


def _parse_int64(text: str) -> int:
    """Parse a base-10 integer; 0 when invalid, clamped to the int64 range."""
    if not _INT_RE.fullmatch(text):
        return 0
    return max(_INT64_MIN, min(_INT64_MAX, int(text)))


def _load_known_modules(path: str) -> list[Module]:
    try:
        content = Path(path).read_bytes()
    except OSError as exc:
        log.warning("Failed to read configuration file %s: %s", path, exc)
        return []
    try:
        data = json.loads(content)
    except ValueError as exc:
        log.warning("Failed to retrieve known modules %s", exc)
        return []
    if data is None:
        return []
    if not isinstance(data, list):
        log.warning("Failed to retrieve known modules: expected a list")
        return []
    try:
        return [Module.from_dict(item) for item in data]
    except (AttributeError, TypeError, ValueError) as exc:
        log.warning("Failed to retrieve known modules %s", exc)
        return []


class OSFeatureCollector:
    """Records OS features derived from the kernel command line and modules."""

    def __init__(
        self,
        config: OSFeatureStatsConfig,
        cmdline_path: str = system.CMDLINE_FILE_PATH,
        modules_path: str = system.MODULES_FILE_PATH,
    ) -> None:
        self.config = config
        self.cmdline_path = cmdline_path
        self.modules_path = modules_path
        self.os_feature: Optional[Int64Metric] = None
        metric_config = config.metrics_configs.get(MetricID.OS_FEATURE.value)
        if metric_config is not None and metric_config.display_name:
            self.os_feature = new_int64_metric(
                MetricID.OS_FEATURE,
                metric_config.display_name,
                "OS Features like GPU support, KTD kernel, third party modules as unknown "
                "modules. 1 if the feature is enabled and 0, if disabled.",
                "1",
                Aggregation.LAST_VALUE,
                [FEATURE_LABEL, VALUE_LABEL],
            )

    def record_features_from_cmdline(self, cmdline_args: Iterable[CmdlineArg]) -> None:
        """Record KTD, UnifiedCgroupHierarchy and KernelModuleIntegrity."""
        if self.os_feature is None:
            return
        features = dict.fromkeys(_CMDLINE_FEATURES.values(), 0)
        for arg in cmdline_args:
            feature = _CMDLINE_FEATURES.get(arg.key)
            if feature is not None:
                features[feature] = _parse_int64(arg.value)
        self.os_feature.record({FEATURE_LABEL: "KTD"}, features["KTD"])
        self.os_feature.record(
            {FEATURE_LABEL: "UnifiedCgroupHierarchy"}, features["UnifiedCgroupHierarchy"])
        integrity = int(features["ModuleSigned"] == 1 and features["LoadPinEnabled"] == 1)
        self.os_feature.record({FEATURE_LABEL: "KernelModuleIntegrity"}, integrity)

    def record_features_from_modules(self, modules: Iterable[Module]) -> None:
        """Record GPUSupport and any third-party modules not listed as known."""
        if self.os_feature is None:
            return
        known_modules = _load_known_modules(self.config.known_modules_config_path)
        has_gpu_support = 0
        unknown_modules: list[str] = []
        for module in modules:
            if "nvidia" in module.module_name:
                has_gpu_support = 1
            elif module.out_of_tree or module.proprietary:
                if not system.contains_module(module.module_name, known_modules):
                    unknown_modules.append(module.module_name)
        if unknown_modules:
            self.os_feature.record(
                {FEATURE_LABEL: "UnknownModules", VALUE_LABEL: ",".join(unknown_modules)}, 1)
        else:
            self.os_feature.record({FEATURE_LABEL: "UnknownModules"}, 0)
        self.os_feature.record({FEATURE_LABEL: "GPUSupport"}, has_gpu_support)

    def collect(self) -> None:
        """Read the command line and module list and record the features."""
        if self.os_feature is None:
            return
        self.record_features_from_cmdline(system.cmdline_args(self.cmdline_path))
        self.record_features_from_modules(system.modules(self.modules_path))