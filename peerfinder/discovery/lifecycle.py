"""
Discovery Lifecycle

Every discovery mode hands back a DiscoveryHandle carrying three signals:

- ready:      set once the first synchronous probe has finished
- shutdown:   fan-out; one send() wakes every loop of the mode
- terminated: set once every loop of the mode has exited

Loops wait on shutdown and their timer/socket at the same time. If both are
ready, shutdown wins.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from .registry import NodeRegistry

logger = logging.getLogger(__name__)


class ShutdownSignal:
    """Fan-out shutdown request shared by all loops of one discovery mode."""

    def __init__(self):
        self._event = asyncio.Event()

    def send(self):
        """Ask every subscribed loop to stop. Safe to call more than once."""
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()

    async def wait_or_timeout(self, seconds: float) -> bool:
        """
        Sleep for `seconds` unless shutdown arrives first.

        Returns:
            True if shutdown was requested
        """
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return self._event.is_set()
        return True


async def race_shutdown(shutdown: ShutdownSignal, aw: Awaitable) -> Tuple[bool, Any]:
    """
    Wait for either shutdown or `aw`, preferring shutdown.

    Returns:
        (True, None) if shutdown won (aw is cancelled), else (False, result)
    """
    work = asyncio.ensure_future(aw)
    if shutdown.is_set():
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        return True, None

    stop = asyncio.ensure_future(shutdown.wait())
    try:
        await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        stop.cancel()
        raise

    if stop.done():
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        return True, None

    stop.cancel()
    await asyncio.gather(stop, return_exceptions=True)
    return False, work.result()


@dataclass
class DiscoveryHandle:
    """What dns_discover() and lan_discover() hand back to the caller."""
    registry: NodeRegistry
    ready: asyncio.Event = field(default_factory=asyncio.Event)
    terminated: asyncio.Event = field(default_factory=asyncio.Event)
    shutdown: ShutdownSignal = field(default_factory=ShutdownSignal)
    name: str = "discovery"
    local_address: Optional[Tuple[str, int]] = None

    _tasks: List[asyncio.Task] = field(default_factory=list, repr=False)
    _supervisor: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_running(self) -> bool:
        return not self.terminated.is_set()

    def supervise(self, loops: List[Awaitable], cleanup: Optional[Callable[[], None]] = None):
        """
        Spawn the mode's loops and fire terminated after all of them exit.

        Args:
            loops: Loop coroutines, each returning once shutdown is observed
            cleanup: Called after the last loop exits (closes sockets)
        """
        self._tasks = [asyncio.create_task(loop) for loop in loops]
        self._supervisor = asyncio.create_task(self._join(cleanup))

    async def _join(self, cleanup: Optional[Callable[[], None]]):
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                logger.error(f"{self.name} loop exited with error: {result!r}")
        try:
            if cleanup:
                cleanup()
        finally:
            logger.info(f"{self.name} terminated")
            self.terminated.set()

    async def aclose(self):
        """Request shutdown and wait for every loop to exit."""
        self.shutdown.send()
        await self.terminated.wait()
