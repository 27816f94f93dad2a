"""Readers for kernel command-line arguments and loaded kernel modules."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

CMDLINE_FILE_PATH = "/proc/cmdline"
MODULES_FILE_PATH = "/proc/modules"


@dataclass(frozen=True)
class CmdlineArg:
    """One kernel command-line parameter; value is empty for bare flags."""

    key: str
    value: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "value": self.value}

    def __str__(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


@dataclass(frozen=True)
class Module:
    """A loaded kernel module and its taint flags."""

    module_name: str
    instances: int = 0
    proprietary: bool = False
    out_of_tree: bool = False
    unsigned: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "moduleName": self.module_name,
            "instances": self.instances,
            "proprietary": self.proprietary,
            "outOfTree": self.out_of_tree,
            "unsigned": self.unsigned,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Module":
        return cls(
            module_name=data.get("moduleName", ""),
            instances=int(data.get("instances", 0)),
            proprietary=bool(data.get("proprietary", False)),
            out_of_tree=bool(data.get("outOfTree", False)),
            unsigned=bool(data.get("unsigned", False)),
        )

    def __str__(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


def read_file_into_lines(filename: str) -> list[str]:
    """Read a file and return its lines without line terminators."""
    text = Path(filename).read_text()
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def contains_module(key: str, values: Iterable[Module]) -> bool:
    """Whether a module with this name is among the given modules."""
    return any(module.module_name == key for module in values)


def _split_outside_quotes(line: str) -> list[str]:
    fields: list[str] = []
    current: list[str] = []
    within_quotes = False
    for char in line:
        if char == '"':
            within_quotes = not within_quotes
            current.append(char)
        elif char == " " and not within_quotes:
            if current:
                fields.append("".join(current))
                current = []
        else:
            current.append(char)
    if current:
        fields.append("".join(current))
    return fields


def cmdline_args(path: str = CMDLINE_FILE_PATH) -> list[CmdlineArg]:
    """Parse the kernel command line; quoted spans are kept as one word."""
    try:
        lines = read_file_into_lines(path)
    except OSError as exc:
        raise OSError(f"error reading the file {path}, {exc}") from exc
    if not lines:
        raise ValueError("no lines are returned")
    result: list[CmdlineArg] = []
    for word in _split_outside_quotes(lines[0]):
        if word.startswith('"'):
            continue
        tokens = word.split("=")
        if len(tokens) < 2:
            result.append(CmdlineArg(key=tokens[0]))
        else:
            result.append(CmdlineArg(key=tokens[0], value=tokens[1].strip("\"'")))
    return result


def modules(path: str = MODULES_FILE_PATH) -> list[Module]:
    """Parse the list of loaded kernel modules."""
    try:
        lines = read_file_into_lines(path)
    except OSError as exc:
        raise OSError(f"error reading the contents of {path}: {exc}") from exc
    result: list[Module] = []
    for line in lines:
        fields = line.split()
        if len(fields) < 3:
            raise ValueError(f"malformed module line in {path}: {line!r}")
        instances = int(fields[2]) if fields[2].isdigit() else 0
        taint = fields[6] if len(fields) > 6 else ""
        result.append(
            Module(
                module_name=fields[0],
                instances=instances,
                proprietary="P" in taint,
                out_of_tree="O" in taint,
                unsigned="E" in taint,
            )
        )
    return result