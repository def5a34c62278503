"""Exception types raised by jumpchain."""

from typing import Sequence


class JumpChainError(Exception):
    """Base class for all jumpchain errors."""


class ConfigurationError(JumpChainError):
    """Invalid controller configuration (raised at construction time)."""


class ExternalCommandError(JumpChainError):
    """The rule-table tool could not be run or exited non-zero."""

    def __init__(
        self,
        argv: Sequence[str],
        returncode: int | None = None,
        stderr: str = "",
        reason: str | None = None,
    ):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr.strip()
        self.reason = reason

        cmd = " ".join(self.argv)
        if reason:
            message = f"{cmd}: {reason}"
        else:
            message = f"{cmd}: exited with status {returncode}"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)


class StoreFault(JumpChainError):
    """Fault raised inside an expiring store's background sweep.

    Never raised into caller code; delivered through the store's error
    listeners with the original exception as ``__cause__``.
    """
