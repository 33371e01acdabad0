"""
DNS Enumeration Discovery

Design Decision: Sequential Name Enumeration
============================================

Peers register A-records under a synthesized pattern:

    {prefix}-{tag}-{seq}.{domain}      e.g. live-uk-lon-1.wavey.io

Each tag is probed with seq = 1, 2, ... until the first name that has no
usable A-record. A gap ends the run for that tag; the hard cap of 100 only
guards against a misconfigured zone.

Options Considered for transport:
1. System resolver (getaddrinfo)
   - No control over the server, timeouts or EDNS
2. One connected UDP socket to a chosen resolver
   - Plain request/response, one query at a time
   - Timeout per query is ours to choose

Decision: Connected UDP socket + dnspython for the wire format
- Queries within a tag are strictly sequential, so a single socket is enough
- Errors (timeout, transport, parse) end the tag; no retries within a sweep
"""

import asyncio
import logging
import socket
from ipaddress import IPv4Address
from typing import FrozenSet, Iterable, Optional, Tuple

import dns.exception
import dns.message
import dns.rdataclass
import dns.rdatatype

from .interfaces import LOOPBACK, build_ignore_set
from .lifecycle import DiscoveryHandle, ShutdownSignal, race_shutdown
from .registry import NodeRegistry

logger = logging.getLogger(__name__)

DNS_CHECK_INTERVAL = 3600.0  # seconds
DNS_QUERY_TIMEOUT = 5.0  # seconds
DNS_BUFFER_SIZE = 4096
EDNS_PAYLOAD_SIZE = 4096
MAX_SEQ = 100

DnsServer = Tuple[str, int]


class DnsProber:
    """
    Periodically enumerates peer A-records and feeds them into a registry.
    """

    def __init__(self, dns_server: DnsServer, domain: str, prefix: str,
                 tags: Iterable[str], registry: NodeRegistry,
                 ignore: FrozenSet[IPv4Address] = frozenset({LOOPBACK}),
                 interval: float = DNS_CHECK_INTERVAL,
                 timeout: float = DNS_QUERY_TIMEOUT,
                 max_seq: int = MAX_SEQ):
        """
        Args:
            dns_server: (host, port) of the resolver to query
            domain: Zone holding the peer records
            prefix: First label component (e.g. "live")
            tags: Region tags, swept in order
            registry: Where discovered peers are recorded
            ignore: Addresses belonging to this host
            interval: Seconds between sweeps
            timeout: Seconds to wait for each response
            max_seq: Highest sequence number probed per tag
        """
        self.dns_server = dns_server
        self.domain = domain.strip('.')
        self.prefix = prefix
        self.tags = list(tags)
        self.registry = registry
        self.ignore = ignore
        self.interval = interval
        self.timeout = timeout
        self.max_seq = max_seq

        self._socket: Optional[socket.socket] = None

    def open(self):
        """Bind an ephemeral UDP socket and connect it to the resolver."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind(('0.0.0.0', 0))
            sock.connect(self.dns_server)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        self._socket = sock
        logger.debug(f"DNS socket {sock.getsockname()} -> {self.dns_server}")

    @property
    def local_address(self) -> Optional[Tuple[str, int]]:
        return self._socket.getsockname() if self._socket else None

    def close(self):
        if self._socket:
            self._socket.close()
            self._socket = None

    def hostname(self, tag: str, seq: int) -> str:
        return f"{self.prefix}-{tag}-{seq}.{self.domain}"

    async def query(self, name: str) -> Optional[IPv4Address]:
        """
        Resolve the first non-loopback A-record for a name.

        Raises:
            asyncio.TimeoutError: No matching response within the timeout
            OSError: Send or receive failed
            dns.exception.DNSException: Response could not be parsed
        """
        if not self._socket:
            raise OSError("DNS socket is not open")

        request = dns.message.make_query(
            name, dns.rdatatype.A, dns.rdataclass.IN,
            use_edns=0, payload=EDNS_PAYLOAD_SIZE,
        )

        loop = asyncio.get_running_loop()
        await loop.sock_sendall(self._socket, request.to_wire())

        deadline = loop.time() + self.timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError(f"no response for {name}")

            data = await asyncio.wait_for(
                loop.sock_recv(self._socket, DNS_BUFFER_SIZE), timeout=remaining
            )
            response = dns.message.from_wire(data)

            if request.is_response(response):
                break

            # Late answer to an earlier query that timed out
            logger.debug(f"Discarding unrelated DNS response id={response.id}")

        for rrset in response.answer:
            if rrset.rdtype != dns.rdatatype.A:
                continue
            for rdata in rrset:
                ip = IPv4Address(rdata.address)
                if not ip.is_loopback:
                    return ip

        return None

    async def enumerate_tag(self, tag: str, shutdown: Optional[ShutdownSignal] = None) -> int:
        """
        Probe {prefix}-{tag}-1, -2, ... until the first gap or error.

        Returns:
            Number of sequence numbers that answered
        """
        answered = 0

        for seq in range(1, self.max_seq + 1):
            name = self.hostname(tag, seq)

            try:
                if shutdown is not None:
                    stopped, ip = await race_shutdown(shutdown, self.query(name))
                    if stopped:
                        break
                else:
                    ip = await self.query(name)
            except asyncio.TimeoutError:
                logger.warning(f"Timed out querying {name}")
                break
            except (OSError, dns.exception.DNSException) as e:
                logger.error(f"Error querying {name}: {e}")
                break

            if ip is None:
                logger.info(f"No DNS results for {name}")
                break

            is_self = ip in self.ignore
            if not is_self and not self.registry.contains(ip):
                logger.info(f"Discovered new node via DNS: {ip} (tag={tag}, seq={seq})")

            # Always record so last_seen is refreshed
            self.registry.record(ip, tag, seq, is_self=is_self)
            answered += 1

        return answered

    async def sweep(self, shutdown: Optional[ShutdownSignal] = None) -> int:
        """
        Enumerate every tag once, in order.

        Returns:
            Total number of answered names
        """
        total = 0
        for tag in self.tags:
            if shutdown is not None and shutdown.is_set():
                break
            total += await self.enumerate_tag(tag, shutdown)
        logger.debug(f"DNS sweep complete: {total} answers, {len(self.registry)} nodes")
        return total

    async def run(self, shutdown: ShutdownSignal):
        """Sweep every `interval` seconds until shutdown."""
        while True:
            if await shutdown.wait_or_timeout(self.interval):
                logger.info("Shutdown signal received, stopping DNS task")
                break
            await self.sweep(shutdown)


async def dns_discover(dns_server: DnsServer, domain: str, prefix: str,
                       tags: Iterable[str], interfaces: Iterable[str] = (),
                       registry: Optional[NodeRegistry] = None,
                       ignore: Optional[Iterable[IPv4Address]] = None,
                       interval: float = DNS_CHECK_INTERVAL,
                       timeout: float = DNS_QUERY_TIMEOUT,
                       max_seq: int = MAX_SEQ) -> DiscoveryHandle:
    """
    Start DNS discovery.

    Runs one sweep before returning, so the registry already holds the
    first results when ready fires.

    Args:
        interfaces: Interface names whose addresses are ignored as peers
        registry: Registry to feed (a new one is created if omitted)
        ignore: Explicit addresses to ignore, instead of resolving interfaces

    Raises:
        OSError: The socket could not be bound or connected
    """
    registry = registry if registry is not None else NodeRegistry()

    if ignore is not None:
        own_ips = frozenset(ignore) | {LOOPBACK}
    else:
        own_ips = build_ignore_set(interfaces)

    prober = DnsProber(
        dns_server, domain, prefix, tags, registry,
        ignore=own_ips, interval=interval, timeout=timeout, max_seq=max_seq,
    )
    prober.open()

    handle = DiscoveryHandle(registry=registry, name="DNS discovery", local_address=prober.local_address)

    try:
        await prober.sweep()
    except BaseException:
        prober.close()
        raise

    handle.ready.set()
    handle.supervise([prober.run(handle.shutdown)], cleanup=prober.close)

    logger.info(f"DNS discovery started ({len(registry)} nodes, tags={prober.tags})")
    return handle
