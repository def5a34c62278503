"""Rule-table controller.

Keeps a chain of "jump to target" rules in sync with two stores of
desired state:

- hosts: source address -> target, with a lease that expires
- interfaces: incoming interface -> target, never expiring

Adds are applied incrementally with a single append. Anything that
removes a rule (delete, lease expiry) flushes the chain and re-appends
everything still in the stores, because we track desired state only and
never read rules back from the kernel.

Example:
    config = ChainConfig(chain="INPUT", ttl=300)

    async with RuleTableController(config) as controller:
        await controller.add("8.8.8.8", DROP)
        await controller.add_interface("eth2", DROP)
        await controller.delete("8.8.8.8")  # flush + re-append eth2
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable

from .config import DEFAULT_TARGET, DEFAULT_TTL, ChainConfig
from .executor import (
    CommandExecutor,
    SubprocessExecutor,
    append_host_command,
    append_interface_command,
    flush_command,
)
from .exceptions import ExternalCommandError, StoreFault
from .expiring_store import ExpiringStore

logger = logging.getLogger(__name__)


class RuleTableController:
    """Front-end over one iptables/ip6tables chain.

    The controller assumes it is the only writer of the chain. Rules added
    or removed by anyone else are not noticed and are wiped by the next
    rebuild.
    """

    def __init__(
        self,
        config: ChainConfig,
        executor: CommandExecutor | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.executor = executor if executor is not None else SubprocessExecutor()

        self._hosts = ExpiringStore(
            ttl=config.ttl, check_period=config.check_period, clock=clock
        )
        self._interfaces = ExpiringStore(ttl=0, clock=clock)

        self._error_listeners: list[Callable[[StoreFault], Any]] = []
        self._expired_listeners: list[Callable[[str], Any]] = []
        self._rebuild_lock = asyncio.Lock()

        self._hosts.on_error(self._emit_error)
        self._hosts.on_expired(self._host_expired)
        self._interfaces.on_error(self._emit_error)

    @classmethod
    def create(
        cls,
        chain: str,
        family: int = 4,
        binary: str | None = None,
        ttl: float = DEFAULT_TTL,
        executor: CommandExecutor | None = None,
    ) -> "RuleTableController":
        """Build a controller from keyword settings."""
        config = ChainConfig(chain=chain, family=family, binary=binary, ttl=ttl)
        return cls(config, executor=executor)

    @property
    def chain(self) -> str:
        return self.config.chain

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def on_error(self, listener: Callable[[StoreFault], Any]) -> Callable:
        """Register a callback for background faults (sweep, expiry rebuild)."""
        self._error_listeners.append(listener)
        return listener

    def on_expired(self, listener: Callable[[str], Any]) -> Callable:
        """Register a callback for hosts removed because their lease lapsed.

        Called after the chain has been rebuilt without the host.
        """
        self._expired_listeners.append(listener)
        return listener

    def remove_listener(self, listener: Callable) -> None:
        for listeners in (self._error_listeners, self._expired_listeners):
            while listener in listeners:
                listeners.remove(listener)

    async def _emit_error(self, fault: StoreFault) -> None:
        if not self._error_listeners:
            logger.error(f"Unhandled fault on chain {self.chain}: {fault}")
            return
        for listener in list(self._error_listeners):
            try:
                result = listener(fault)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Error listener failed")

    async def _host_expired(self, host: str) -> None:
        logger.info(f"Lease for {host} on {self.chain} expired, rebuilding")

        try:
            rebuilt = await self.rebuild()
        except ExternalCommandError as e:
            fault = StoreFault(f"chain {self.chain} partially rebuilt after {host} expired: {e}")
            fault.__cause__ = e
            await self._emit_error(fault)
        else:
            if not rebuilt:
                await self._emit_error(
                    StoreFault(f"chain {self.chain} not rebuilt after {host} expired")
                )

        for listener in list(self._expired_listeners):
            result = listener(host)
            if inspect.isawaitable(result):
                await result

    # -------------------------------------------------------------------------
    # Desired state
    # -------------------------------------------------------------------------

    def has_host(self, host: str) -> bool:
        return self._hosts.has(host)

    def has_interface(self, iface: str) -> bool:
        return self._interfaces.has(iface)

    def hosts(self) -> dict[str, str]:
        """Known hosts and their targets, in chain order."""
        return dict(self._hosts.list())

    def interfaces(self) -> dict[str, str]:
        """Known interfaces and their targets, in chain order."""
        return dict(self._interfaces.list())

    def rules(self) -> list[list[str]]:
        """Append commands that render the desired chain, in order.

        Host rules come first, then interface rules.
        """
        binary, chain = self.config.binary, self.chain
        commands = [
            append_host_command(binary, chain, host, target)
            for host, target in self._hosts.list()
        ]
        commands.extend(
            append_interface_command(binary, chain, iface, target)
            for iface, target in self._interfaces.list()
        )
        return commands

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def add(self, host: str, target: str = DEFAULT_TARGET) -> None:
        """Jump packets from host to target, refreshing the host's lease.

        A host that is already known is not appended again; only its
        bookkeeping is updated. Changing the target of a known host does
        not replace its live rule (delete and re-add to do that).

        Raises:
            ExternalCommandError: the append failed (host stays unknown)
        """
        if self._hosts.lapsed(host):
            # old rule is still in the chain until the expiry rebuild runs
            await self.sweep()

        if not self._hosts.has(host):
            await self._run(append_host_command(self.config.binary, self.chain, host, target))
            logger.info(f"Added {host} -> {target} to {self.chain}")

        self._hosts.set(host, target)

    async def add_interface(self, iface: str, target: str = DEFAULT_TARGET) -> None:
        """Jump packets arriving on iface to target.

        Raises:
            ExternalCommandError: the append failed (interface stays unknown)
        """
        if not self._interfaces.has(iface):
            await self._run(
                append_interface_command(self.config.binary, self.chain, iface, target)
            )
            logger.info(f"Added interface {iface} -> {target} to {self.chain}")

        self._interfaces.set(iface, target)

    async def keep_alive(self, host: str, target: str | None = None) -> None:
        """Refresh a host's lease, adding it if it is not known.

        Without an explicit target the stored one is kept, or the default
        target is used for a fresh host.
        """
        if target is None:
            target = self._hosts.get(host, DEFAULT_TARGET)
        await self.add(host, target)

    async def delete(self, host: str) -> bool:
        """Forget a host and rebuild the chain without it.

        Returns:
            False if the host was unknown or the chain flush failed. The
            host is forgotten either way.
        """
        if not self._hosts.has(host):
            return False

        self._hosts.delete(host)
        logger.info(f"Deleted {host} from {self.chain}")

        return await self.rebuild()

    async def delete_interface(self, iface: str) -> bool:
        """Forget an interface and rebuild the chain without it.

        Returns:
            False if the interface was unknown or the chain flush failed
        """
        if not self._interfaces.has(iface):
            return False

        self._interfaces.delete(iface)
        logger.info(f"Deleted interface {iface} from {self.chain}")

        return await self.rebuild()

    async def flush(self, nothrow: bool = False) -> bool:
        """Flush every rule in the chain. The stores are left alone.

        Returns:
            True on success, False if the flush failed and nothrow is set

        Raises:
            ExternalCommandError: the flush failed and nothrow is not set
        """
        try:
            await self._run(flush_command(self.config.binary, self.chain))
        except ExternalCommandError as e:
            if not nothrow:
                raise
            logger.warning(f"Ignoring failed flush of {self.chain}: {e}")
            return False
        return True

    async def flush_all(self) -> None:
        """Flush the chain and forget every host.

        Interfaces are kept; they are treated as static and come back on
        the next rebuild.
        """
        await self.flush()
        self._hosts.clear()
        logger.info(f"Flushed {self.chain} and cleared all hosts")

    async def rebuild(self) -> bool:
        """Replace the live chain with a rendering of the stores.

        Appends are issued one at a time so the chain ends up in store
        order. An append failure propagates and leaves the chain partially
        rebuilt.

        Returns:
            False if the flush failed (nothing was appended)
        """
        async with self._rebuild_lock:
            try:
                await self.flush()
            except ExternalCommandError as e:
                logger.warning(f"Rebuild of {self.chain} aborted, flush failed: {e}")
                return False

            commands = self.rules()
            for argv in commands:
                await self._run(argv)

            logger.info(f"Rebuilt {self.chain} with {len(commands)} rules")
            return True

    async def sweep(self) -> list[str]:
        """Expire lapsed host leases now instead of waiting for the timer.

        Returns:
            Hosts that expired
        """
        return await self._hosts.sweep()

    async def _run(self, argv: list[str]) -> None:
        logger.debug(f"{self.chain}: {' '.join(argv)}")
        await self.executor.run(argv)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start lease expiry. Must be called from a running event loop."""
        self._hosts.start()
        self._interfaces.start()

    async def close(self) -> None:
        """Stop lease expiry and drop all listeners."""
        await self._hosts.close()
        await self._interfaces.close()
        self._error_listeners.clear()
        self._expired_listeners.clear()

    async def __aenter__(self) -> "RuleTableController":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
