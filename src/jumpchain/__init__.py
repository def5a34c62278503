"""Cached front-end for iptables jump rules on hosts and interfaces."""

from .config import (
    ACCEPT,
    DEFAULT_TARGET,
    DEFAULT_TTL,
    DROP,
    REJECT,
    RETURN,
    ChainConfig,
    resolve_binary,
)
from .controller import RuleTableController
from .exceptions import (
    ConfigurationError,
    ExternalCommandError,
    JumpChainError,
    StoreFault,
)
from .executor import (
    CommandExecutor,
    SubprocessExecutor,
    append_host_command,
    append_interface_command,
    flush_command,
)
from .expiring_store import ExpiringStore, StoreEntry

__all__ = [
    # Config
    "ChainConfig",
    "resolve_binary",
    "ACCEPT",
    "DROP",
    "REJECT",
    "RETURN",
    "DEFAULT_TARGET",
    "DEFAULT_TTL",
    # Errors
    "JumpChainError",
    "ConfigurationError",
    "ExternalCommandError",
    "StoreFault",
    # Store
    "ExpiringStore",
    "StoreEntry",
    # Commands
    "CommandExecutor",
    "SubprocessExecutor",
    "flush_command",
    "append_host_command",
    "append_interface_command",
    # Controller
    "RuleTableController",
]
