"""
LAN Broadcast Discovery

Design Decision: Broadcast Target
=================================

Options Considered:
1. Global broadcast (255.255.255.255)
   - Works without knowing the subnet
   - Leaks onto every attached segment

2. Directed broadcast of the host's /24
   - One segment only
   - Assumes /24 LAN segmentation

Decision: Directed /24 broadcast on port 12345
- The deployment runs inside 10.0.0.0/8 carved into /24 segments
- Target is {o1}.{o2}.{o3}.255 of our own 10/8 address

Protocol:
- Payload is our own IPv4 address, 4 bytes, network order
- Receivers never trust the payload: the UDP source address is the identity
- Sources outside 10/8 are dropped, so announcements relayed from other
  private ranges are rejected

Both the broadcaster and the receiver share one socket bound to
0.0.0.0:12345. Eviction of silent peers runs on the broadcast tick.
"""

import asyncio
import logging
import socket
from ipaddress import IPv4Address
from typing import Optional, Tuple

from .interfaces import LOOPBACK, broadcast_target, is_lan_private, own_private_ipv4
from .lifecycle import DiscoveryHandle, ShutdownSignal, race_shutdown
from .registry import BROADCAST_INTERVAL, NodeRegistry

logger = logging.getLogger(__name__)

BROADCAST_PORT = 12345
RECV_BUFFER_SIZE = 1024


def open_broadcast_socket(port: int = BROADCAST_PORT) -> socket.socket:
    """
    Create the shared UDP socket for sending and receiving announcements.

    Raises:
        OSError: The port could not be bound
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.bind(('0.0.0.0', port))
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


def extract_private_ip(addr: Tuple) -> Optional[IPv4Address]:
    """Get the source address if it is a 10/8 private IPv4, else None."""
    try:
        ip = IPv4Address(addr[0])
    except (ValueError, IndexError, TypeError):
        return None
    return ip if is_lan_private(ip) else None


class LanBroadcaster:
    """Announces our address on the LAN and reaps silent peers."""

    def __init__(self, sock: socket.socket, registry: NodeRegistry,
                 own_ip: IPv4Address, target: IPv4Address,
                 port: int = BROADCAST_PORT,
                 interval: float = BROADCAST_INTERVAL):
        self.sock = sock
        self.registry = registry
        self.own_ip = own_ip
        self.target = target
        self.port = port
        self.interval = interval

    async def tick(self):
        """Reap, then announce. Send failures are retried on the next tick."""
        self.registry.reap()

        loop = asyncio.get_running_loop()
        try:
            await loop.sock_sendto(self.sock, self.own_ip.packed, (str(self.target), self.port))
        except OSError as e:
            logger.error(f"Failed to send broadcast: {e}")

    async def run(self, shutdown: ShutdownSignal):
        while True:
            if await shutdown.wait_or_timeout(self.interval):
                logger.info("Shutdown signal received, stopping broadcast task")
                break
            await self.tick()


class LanReceiver:
    """Records the source address of every announcement heard on the LAN."""

    def __init__(self, sock: socket.socket, registry: NodeRegistry, own_ip: IPv4Address):
        self.sock = sock
        self.registry = registry
        self.own_ip = own_ip

    def handle(self, data: bytes, addr: Tuple) -> bool:
        """
        Process one announcement. The payload is ignored.

        Returns:
            True if the sender is a newly discovered peer
        """
        discovered_ip = extract_private_ip(addr)
        if discovered_ip is None:
            logger.warning(f"Received broadcast from non-private IP: {addr[0]}")
            return False

        if discovered_ip == self.own_ip:
            return False

        if not self.registry.contains(discovered_ip):
            logger.info(f"Discovered new node: {discovered_ip}")

        # Always record to refresh last_seen
        return self.registry.record(discovered_ip)

    async def run(self, shutdown: ShutdownSignal):
        loop = asyncio.get_running_loop()

        while True:
            try:
                stopped, result = await race_shutdown(
                    shutdown, loop.sock_recvfrom(self.sock, RECV_BUFFER_SIZE)
                )
            except OSError as e:
                logger.warning(f"Error receiving broadcast: {e}")
                # Yield so a persistently failing socket cannot starve the loop
                if await shutdown.wait_or_timeout(0.1):
                    stopped = True
                else:
                    continue

            if stopped:
                logger.info("Shutdown signal received, stopping receive task")
                break

            data, addr = result
            self.handle(data, addr)


async def lan_discover(registry: Optional[NodeRegistry] = None,
                       port: int = BROADCAST_PORT,
                       interval: float = BROADCAST_INTERVAL,
                       own_ip: Optional[IPv4Address] = None,
                       target: Optional[IPv4Address] = None) -> DiscoveryHandle:
    """
    Start LAN broadcast discovery.

    Args:
        registry: Registry to feed (a new one is created if omitted)
        port: UDP port to bind and broadcast to
        interval: Seconds between announcements (and reaps)
        own_ip: Our announced address (detected from interfaces if omitted)
        target: Broadcast destination (the /24 broadcast of own_ip if omitted)

    Raises:
        OSError: The broadcast socket could not be bound
    """
    registry = registry if registry is not None else NodeRegistry()

    if own_ip is None:
        own_ip = own_private_ipv4() or LOOPBACK
    logger.info(f"Own IP address: {own_ip}")

    if target is None:
        target = broadcast_target(own_ip)

    sock = open_broadcast_socket(port)
    bound_port = sock.getsockname()[1]

    broadcaster = LanBroadcaster(sock, registry, own_ip, target, port=port or bound_port, interval=interval)
    receiver = LanReceiver(sock, registry, own_ip)

    handle = DiscoveryHandle(registry=registry, name="LAN discovery", local_address=sock.getsockname())
    handle.ready.set()
    handle.supervise(
        [broadcaster.run(handle.shutdown), receiver.run(handle.shutdown)],
        cleanup=sock.close,
    )

    logger.info(f"LAN discovery started on port {bound_port} (target {target})")
    return handle
