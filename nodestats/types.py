"""Core data types shared by problem daemons, exporters and monitors."""

from __future__ import annotations

import argparse
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Optional


class Severity(str, Enum):
    """Severity of a problem event."""

    INFO = "info"
    WARN = "warn"


class ConditionStatus(str, Enum):
    """Status of a node condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ProblemType(str, Enum):
    """Whether a problem is temporary (event only) or permanent (condition change)."""

    TEMP = "temporary"
    PERM = "permanent"


@dataclass
class Condition:
    """A node condition as tracked internally by the detector."""

    type: str
    status: ConditionStatus
    transition: datetime
    reason: str = ""
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "status": ConditionStatus(self.status).value,
            "transition": self.transition.isoformat(),
            "reason": self.reason,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Condition":
        return cls(
            type=data["type"],
            status=ConditionStatus(data["status"]),
            transition=datetime.fromisoformat(data["transition"]),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
        )


@dataclass
class Event:
    """A temporary problem event."""

    severity: Severity
    timestamp: datetime
    reason: str = ""
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": Severity(self.severity).value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        return cls(
            severity=Severity(data["severity"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
        )


@dataclass
class Status:
    """What a problem daemon reports: events (oldest first) and current conditions."""

    source: str
    events: list[Event] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "events": [event.to_dict() for event in self.events],
            "conditions": [condition.to_dict() for condition in self.conditions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Status":
        return cls(
            source=data["source"],
            events=[Event.from_dict(e) for e in data.get("events") or []],
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
        )


class Monitor(ABC):
    """Monitors the system and reports problems and metrics."""

    @abstractmethod
    def start(self) -> Optional[Iterable[Status]]:
        """Start the monitor; return a source of statuses, or None for metrics-only monitors."""

    @abstractmethod
    def stop(self) -> None:
        """Stop the monitor."""


class Exporter(ABC):
    """Exports machine health data to a control plane."""

    @abstractmethod
    def export_problems(self, status: Status) -> None:
        """Export the problems held in a status."""


class CommandLineOptions(ABC):
    """Options that register themselves on a command-line parser."""

    @abstractmethod
    def set_flags(self, parser: argparse.ArgumentParser) -> None:
        """Add this object's flags to the parser."""


@dataclass
class ProblemDaemonHandler:
    """How to create one type of problem daemon."""

    create_problem_daemon_or_die: Callable[[str], Monitor]
    cmd_option_description: str = ""


@dataclass
class ExporterHandler:
    """How to create one type of exporter."""

    create_exporter_or_die: Callable[[CommandLineOptions], Exporter]
    options: Optional[CommandLineOptions] = None