"""Time, duration and operating-system helpers."""

from __future__ import annotations

import re
import time
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Callable, Union

import psutil

from nodestats.types import ConditionStatus, Event, Severity

OS_RELEASE_PATH = "/etc/os-release"

_UNIT_NS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_NUMBER = r"(?:\d+\.?\d*|\.\d+)"
_UNIT = r"(?:ns|us|\u00b5s|\u03bcs|ms|s|m|h)"
_DURATION = re.compile(rf"[-+]?(?:{_NUMBER}{_UNIT})+")
_COMPONENT = re.compile(rf"({_NUMBER})({_UNIT})")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as "300ms", "-1.5h" or "2h45m"."""
    if text in ("0", "+0", "-0"):
        return timedelta(0)
    if not _DURATION.fullmatch(text):
        raise ValueError(f"time: invalid duration {text!r}")
    negative = text.startswith("-")
    total = Decimal(0)
    for number, unit in _COMPONENT.findall(text):
        total += Decimal(number) * _UNIT_NS[unit]
    micros = int(total) // 1000
    return timedelta(microseconds=-micros if negative else micros)


def _fraction(value: int, precision: int) -> str:
    whole, frac = divmod(value, 10**precision)
    digits = str(frac).zfill(precision).rstrip("0")
    return f"{whole}.{digits}" if digits else str(whole)


def format_duration(duration: timedelta) -> str:
    """Format a duration the way "1h2m3.5s" durations are written."""
    ns = (duration // timedelta(microseconds=1)) * 1000
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    ns = abs(ns)
    if ns < 1_000:
        return f"{sign}{ns}ns"
    if ns < 1_000_000:
        return f"{sign}{_fraction(ns, 3)}\u00b5s"
    if ns < 1_000_000_000:
        return f"{sign}{_fraction(ns, 6)}ms"
    seconds, frac = divmod(ns, 1_000_000_000)
    text = _fraction((seconds % 60) * 1_000_000_000 + frac, 9) + "s"
    minutes = seconds // 60
    if minutes:
        text = f"{minutes % 60}m{text}"
        hours = minutes // 60
        if hours:
            text = f"{hours}h{text}"
    return sign + text


def generate_condition_change_event(
    condition_type: str,
    status: Union[ConditionStatus, str],
    reason: str,
    timestamp: datetime,
) -> Event:
    """Build the informational event emitted when a condition changes."""
    status_text = ConditionStatus(status).value
    return Event(
        severity=Severity.INFO,
        timestamp=timestamp,
        reason=reason,
        message=f"Node condition {condition_type} is now: {status_text}, reason: {reason}",
    )


def get_start_time(now: datetime, uptime: timedelta, lookback: str, delay: str) -> datetime:
    """Compute where log watching should start, given uptime, lookback and delay."""
    start = now - uptime
    if delay:
        try:
            start += parse_duration(delay)
        except ValueError as exc:
            raise ValueError(f"failed to parse delay duration {delay!r}: {exc}") from exc
    lookback_start = now
    if lookback:
        try:
            lookback_start = now - parse_duration(lookback)
        except ValueError as exc:
            raise ValueError(f"failed to parse lookback duration {lookback!r}: {exc}") from exc
    return max(start, lookback_start)


def get_uptime_duration() -> timedelta:
    """Time elapsed since the last boot, in whole seconds."""
    try:
        seconds = int(float(Path("/proc/uptime").read_text().split()[0]))
    except (OSError, ValueError, IndexError):
        try:
            seconds = int(time.time() - psutil.boot_time())
        except (OSError, psutil.Error) as exc:
            raise RuntimeError(f"failed to get system info: {exc}") from exc
    return timedelta(seconds=seconds)


def read_os_release(path: str) -> dict[str, str]:
    """Read an os-release file into a mapping of keys to unquoted values."""
    result: dict[str, str] = {}
    for raw in Path(path).read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        result[key.strip()] = value
    return result


def _cos_version(info: dict[str, str]) -> str:
    return f"{info.get('ID', '')} {info.get('VERSION', '')}-{info.get('BUILD_ID', '')}"


def _debian_version(info: dict[str, str]) -> str:
    return f"{info.get('ID', '')} {info.get('VERSION', '')}"


_VERSION_FORMATS: dict[str, Callable[[dict[str, str]], str]] = {
    "cos": _cos_version,
    "debian": _debian_version,
    "ubuntu": _debian_version,
    "centos": _debian_version,
    "rhel": _debian_version,
}


def get_os_version(os_release_path: str = OS_RELEASE_PATH) -> str:
    """Describe the operating system, e.g. "ubuntu 16.04.6 LTS (Xenial Xerus)"."""
    info = read_os_release(os_release_path)
    os_id = info.get("ID", "")
    formatter = _VERSION_FORMATS.get(os_id)
    if formatter is None:
        raise ValueError(f"Unsupported ID in /etc/os-release: {os_id!r}")
    return formatter(info)