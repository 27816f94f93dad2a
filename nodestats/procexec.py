"""Starting commands in their own process group and killing the whole group."""

from __future__ import annotations

import os
import signal
import subprocess
from typing import Optional


class ProcessError(Exception):
    """Raised when a command cannot be started, waited on or killed."""


class Command:
    """A command that runs in a new process group."""

    def __init__(self, name: str, *args: str) -> None:
        self.name = name
        self.args = tuple(args)
        self.process: Optional[subprocess.Popen] = None

    def __str__(self) -> str:
        return " ".join((self.name, *self.args))

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    def start(self) -> None:
        """Start the command in a new session and process group."""
        if self.process is not None:
            raise ProcessError("exec: already started")
        try:
            self.process = subprocess.Popen(
                [self.name, *self.args],
                stdin=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            raise ProcessError(f"failed to start {self}: {exc}") from exc

    def kill(self) -> None:
        """Send SIGKILL to the process and every process in its group."""
        if self.process is None:
            raise ProcessError(f"{self} does not have a process handle")
        try:
            os.killpg(self.process.pid, signal.SIGKILL)
        except OSError as exc:
            raise ProcessError(f"failed to kill {self}: {exc}") from exc

    def wait(self) -> int:
        """Wait for the process to exit and return its exit status."""
        if self.process is None:
            raise ProcessError(f"{self} has not been started")
        return self.process.wait()


def exec_command(name: str, *args: str) -> Command:
    """Create a command that will run in its own process group."""
    return Command(name, *args)