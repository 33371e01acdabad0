"""
Node Registry

Design Decision: Shared Membership Table
========================================

Options Considered:
1. Readers-writer guarded map
   - Simple, obvious ordering
   - Snapshot is a copy taken under the lock

2. Single-owner task fed by a command channel
   - No locks at all
   - Every query becomes a round trip through a queue

3. Lock-free map plus atomic snapshot pointer
   - Not expressible without a lot of machinery in Python

Decision: Lock-guarded map
- Registry operations never await, so the lock is never held across a
  suspension point and a plain mutex behaves like a readers-writer lock
  from the event loop's point of view
- A threading lock keeps the table consistent if a caller touches the
  registry from a worker thread; events raised off the loop thread are
  handed to the subscriber's loop with call_soon_threadsafe

Change Channel:
- Bounded, lossy fan-out (capacity 16) of "new peer arrived" events
- A slow subscriber loses its oldest pending events, never blocks writers
- snapshot() stays authoritative, so lost events are not a correctness issue
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, replace
from ipaddress import IPv4Address
from typing import Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

BROADCAST_INTERVAL = 5.0  # seconds
MAX_SILENT_INTERVALS = 10
CHANGE_CHANNEL_CAPACITY = 16

AddressLike = Union[IPv4Address, str]


def as_ipv4(ip: AddressLike) -> IPv4Address:
    """Coerce a dotted string (or IPv4Address) into an IPv4Address."""
    if isinstance(ip, IPv4Address):
        return ip
    return IPv4Address(ip)


@dataclass(frozen=True)
class NodeRecord:
    """
    A peer known to the registry.

    tag/seq are only set for peers found through DNS enumeration: tag names
    the region bucket and seq the position that answered.
    """
    ip: IPv4Address
    tag: Optional[str] = None
    seq: Optional[int] = None
    last_seen: float = 0.0

    def __post_init__(self):
        if (self.tag is None) != (self.seq is None):
            raise ValueError("tag and seq must be given together")
        if self.seq is not None and self.seq < 0:
            raise ValueError(f"seq must be non-negative, got {self.seq}")

    @property
    def source(self) -> str:
        """Which discovery mechanism produced this record."""
        return "dns" if self.tag is not None else "lan"

    def age(self, now: float) -> float:
        return now - self.last_seen


class ChangeStream:
    """
    One subscriber's view of the change channel.

    Holds at most `capacity` pending addresses. When full, the oldest one is
    dropped and `lagged` counts the loss.
    """

    def __init__(self, registry: 'NodeRegistry', capacity: int = CHANGE_CHANNEL_CAPACITY):
        self._registry = registry
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self.lagged = 0
        self.closed = False

        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    def _publish(self, ip: IPv4Address):
        if self._loop is not None and not self._loop.is_closed() and not self._on_loop_thread():
            self._loop.call_soon_threadsafe(self._deliver, ip)
        else:
            self._deliver(ip)

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _deliver(self, ip: IPv4Address):
        if self._queue.full():
            self._queue.get_nowait()
            self.lagged += 1
        self._queue.put_nowait(ip)

    async def recv(self) -> IPv4Address:
        """Wait for the next newly discovered address."""
        return await self._queue.get()

    def get_nowait(self) -> IPv4Address:
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self):
        """Stop receiving events."""
        if not self.closed:
            self.closed = True
            self._registry._unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> IPv4Address:
        if self.closed:
            raise StopAsyncIteration
        return await self.recv()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class NodeRegistry:
    """
    Live table of peers keyed by IPv4 address.

    Writers are the DNS prober, the LAN receiver and the LAN reaper; readers
    are anyone holding the registry.
    """

    def __init__(self, max_age: float = MAX_SILENT_INTERVALS * BROADCAST_INTERVAL,
                 capacity: int = CHANGE_CHANNEL_CAPACITY,
                 clock: Callable[[], float] = time.monotonic):
        """
        Args:
            max_age: Seconds of silence after which reap() evicts a record
            capacity: Pending events each subscriber may buffer
            clock: Monotonic time source (injectable for tests)
        """
        self.max_age = max_age
        self.capacity = capacity
        self._clock = clock

        self._lock = threading.Lock()
        self._nodes: Dict[IPv4Address, NodeRecord] = {}
        self._subscribers: List[ChangeStream] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def contains(self, ip: AddressLike) -> bool:
        """Check membership without refreshing the record."""
        ip = as_ipv4(ip)
        with self._lock:
            return ip in self._nodes

    def get(self, ip: AddressLike) -> Optional[NodeRecord]:
        ip = as_ipv4(ip)
        with self._lock:
            return self._nodes.get(ip)

    def record(self, ip: AddressLike, tag: Optional[str] = None,
               seq: Optional[int] = None, is_self: bool = False) -> bool:
        """
        Insert or refresh a peer.

        Args:
            ip: Observed address
            tag: DNS tag the address came from (None for LAN)
            seq: Enumeration index within the tag (None for LAN)
            is_self: The address belongs to this host; nothing is recorded

        Returns:
            True if this call inserted a new record
        """
        if is_self:
            return False

        ip = as_ipv4(ip)

        with self._lock:
            now = self._clock()
            existing = self._nodes.get(ip)

            if existing is not None:
                self._nodes[ip] = replace(
                    existing,
                    tag=tag,
                    seq=seq,
                    last_seen=max(existing.last_seen, now),
                )
                return False

            self._nodes[ip] = NodeRecord(ip=ip, tag=tag, seq=seq, last_seen=now)

            # Published under the lock so event order is insertion order
            for stream in self._subscribers:
                stream._publish(ip)

            return True

    def snapshot(self) -> List[NodeRecord]:
        """Copy of every current record, in no particular order."""
        with self._lock:
            return list(self._nodes.values())

    def subscribe(self) -> ChangeStream:
        """Receive addresses inserted from now on."""
        stream = ChangeStream(self, self.capacity)
        with self._lock:
            self._subscribers.append(stream)
        return stream

    def _unsubscribe(self, stream: ChangeStream):
        with self._lock:
            if stream in self._subscribers:
                self._subscribers.remove(stream)

    def reap(self) -> List[NodeRecord]:
        """
        Evict records silent for longer than max_age.

        No change event is published for evictions.

        Returns:
            The evicted records
        """
        with self._lock:
            now = self._clock()
            stale = [
                node for node in self._nodes.values()
                if node.age(now) > self.max_age
            ]
            for node in stale:
                del self._nodes[node.ip]

        for node in stale:
            logger.info(f"Evicted silent node {node.ip} ({node.source})")

        return stale
