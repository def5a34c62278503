"""Running the rule-table tool.

The controller only builds argument vectors and hands them to a
``CommandExecutor``. The default executor spawns the tool directly
(no shell) and turns any failure into ``ExternalCommandError``.
"""

import asyncio
import logging
from typing import Protocol, Sequence

from .exceptions import ExternalCommandError

logger = logging.getLogger(__name__)


def flush_command(binary: str, chain: str) -> list[str]:
    """Flush all rules in a chain."""
    return [binary, "-F", chain]


def append_host_command(binary: str, chain: str, host: str, target: str) -> list[str]:
    """Append a rule jumping to target for packets from host."""
    return [binary, "-A", chain, "-s", host, "-j", target]


def append_interface_command(
    binary: str, chain: str, iface: str, target: str
) -> list[str]:
    """Append a rule jumping to target for packets arriving on iface."""
    return [binary, "-A", chain, "-i", iface, "-j", target]


class CommandExecutor(Protocol):
    async def run(self, argv: Sequence[str]) -> None:
        """Run a command, raising ExternalCommandError if it fails."""
        ...


class SubprocessExecutor:
    """Run commands as child processes with asyncio."""

    def __init__(self, timeout: float | None = None):
        """
        Args:
            timeout: Seconds to wait for a command before killing it
                (None waits forever)
        """
        self.timeout = timeout

    async def run(self, argv: Sequence[str]) -> None:
        argv = list(argv)
        logger.debug(f"Running: {' '.join(argv)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExternalCommandError(argv, reason=str(e)) from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ExternalCommandError(
                argv, proc.returncode, reason=f"timed out after {self.timeout}s"
            )

        if proc.returncode != 0:
            raise ExternalCommandError(
                argv, proc.returncode, stderr.decode(errors="replace")
            )
