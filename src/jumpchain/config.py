"""Controller configuration and defaults.

These are facts about the rule-table tool and the chain being managed,
fixed when the controller is constructed:
- Which chain we own (INPUT, FORWARD, or a custom chain)
- Which address family, and so which binary (iptables vs ip6tables)
- How long host entries live before they expire
"""

import math
import shutil
from dataclasses import dataclass

from .exceptions import ConfigurationError

# Well-known jump targets; any other string is treated as a chain name
ACCEPT = "ACCEPT"
DROP = "DROP"
REJECT = "REJECT"
RETURN = "RETURN"

DEFAULT_TARGET = ACCEPT

# Lease for host entries, in seconds (0 disables expiry)
DEFAULT_TTL = 300

DEFAULT_FAMILY = 4

# Binary name looked up on PATH, and the absolute fallback, per family
BINARIES = {
    4: ("iptables", "/usr/sbin/iptables"),
    6: ("ip6tables", "/usr/sbin/ip6tables"),
}


def check_family(family: int) -> int:
    """Validate an address family, returning it unchanged."""
    if family not in BINARIES:
        raise ConfigurationError(
            f"unsupported address family {family!r} (expected 4 or 6)"
        )
    return family


def resolve_binary(family: int = DEFAULT_FAMILY) -> str:
    """Find the rule-table tool for an address family.

    Searches PATH first and falls back to the usual sbin location.
    """
    name, fallback = BINARIES[check_family(family)]
    return shutil.which(name) or fallback


def check_period_for(ttl: float) -> int:
    """Sweep period for a TTL: a tenth of it, but at least one second."""
    return max(1, math.ceil(ttl / 10))


@dataclass(frozen=True)
class ChainConfig:
    """Immutable settings for one managed chain."""

    chain: str
    family: int = DEFAULT_FAMILY
    binary: str | None = None
    ttl: float = DEFAULT_TTL
    check_period: float | None = None  # seconds between sweeps, derived from ttl

    def __post_init__(self):
        if not isinstance(self.chain, str) or not self.chain.strip():
            raise ConfigurationError("chain name must be a non-empty string")
        check_family(self.family)

        ttl = DEFAULT_TTL if self.ttl is None else self.ttl
        if ttl < 0:
            raise ConfigurationError(f"ttl must be >= 0, got {ttl!r}")

        # frozen dataclass: fill in derived values via object.__setattr__
        object.__setattr__(self, "ttl", ttl)
        if self.check_period is None:
            object.__setattr__(self, "check_period", check_period_for(ttl))
        elif self.check_period <= 0:
            raise ConfigurationError(
                f"check_period must be > 0, got {self.check_period!r}"
            )
        if not self.binary:
            object.__setattr__(self, "binary", resolve_binary(self.family))

    @property
    def expires(self) -> bool:
        return self.ttl > 0
