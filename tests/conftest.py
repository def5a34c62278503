"""Shared fixtures: a controllable clock and a recording command executor."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from jumpchain import ExternalCommandError


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingExecutor:
    """Records every command; fails those matching ``fail_on``."""

    def __init__(self):
        self.commands: list[list[str]] = []
        self.fail_on = lambda argv: False

    async def run(self, argv):
        argv = list(argv)
        self.commands.append(argv)
        if self.fail_on(argv):
            raise ExternalCommandError(argv, 1, "iptables: simulated failure")

    def fail_flush(self):
        self.fail_on = lambda argv: argv[1] == "-F"

    def flushes(self) -> list[list[str]]:
        return [c for c in self.commands if c[1] == "-F"]

    def appends(self) -> list[list[str]]:
        return [c for c in self.commands if c[1] == "-A"]

    def reset(self):
        self.commands.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def executor():
    return RecordingExecutor()
