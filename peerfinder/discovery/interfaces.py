"""
Interface Resolution

Looks up the IPv4 addresses this host owns, so discovery can tell its own
announcements and DNS entries apart from real peers.

The LAN deployment is assumed to live in 10.0.0.0/8; other private ranges
are ignored when picking our own address.
"""

import logging
from ipaddress import IPv4Address
from typing import FrozenSet, Iterable, Iterator, Optional, Tuple

import netifaces

logger = logging.getLogger(__name__)

LOOPBACK = IPv4Address('127.0.0.1')


def _iter_ipv4(interface: Optional[str] = None) -> Iterator[Tuple[str, IPv4Address]]:
    """Yield (interface, address) for every IPv4 bound on the host."""
    names = [interface] if interface is not None else netifaces.interfaces()

    for name in names:
        try:
            addrs = netifaces.ifaddresses(name)
        except (OSError, ValueError) as e:
            # Interfaces can vanish between interfaces() and ifaddresses()
            logger.warning(f"Failed to read addresses of {name}: {e}")
            continue
        for addr_info in addrs.get(netifaces.AF_INET, []):
            addr = addr_info.get('addr')
            if not addr:
                continue
            try:
                yield name, IPv4Address(addr)
            except ValueError:
                logger.debug(f"Skipping unparsable address {addr!r} on {name}")


def ipv4_of(interface: str) -> Optional[IPv4Address]:
    """
    Get the first IPv4 address bound to a named interface.

    Returns None if the interface does not exist or the lookup fails.
    """
    try:
        if interface not in netifaces.interfaces():
            return None
        for _, ip in _iter_ipv4(interface):
            return ip
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to get network interfaces: {e}")
    return None


def is_lan_private(ip: IPv4Address) -> bool:
    """True for private addresses inside 10.0.0.0/8."""
    return ip.is_private and ip.packed[0] == 10


def own_private_ipv4() -> Optional[IPv4Address]:
    """Get the first 10/8 private address on any interface."""
    try:
        for _, ip in _iter_ipv4():
            if is_lan_private(ip):
                return ip
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to get network interfaces: {e}")
    return None


def build_ignore_set(interfaces: Iterable[str]) -> FrozenSet[IPv4Address]:
    """
    Build the set of addresses that must never be treated as peers.

    Contains the addresses of the named interfaces plus 127.0.0.1.
    """
    own_ips = set()
    for interface in interfaces:
        ip = ipv4_of(interface)
        if ip is not None:
            own_ips.add(ip)
            logger.info(f"Added own ip {ip} ({interface}) to ignore list")
        else:
            logger.warning(f"No IPv4 address found for interface {interface}")
    own_ips.add(LOOPBACK)
    return frozenset(own_ips)


def broadcast_target(ip: IPv4Address) -> IPv4Address:
    """Directed broadcast address of the /24 containing ip."""
    o1, o2, o3, _ = ip.packed
    return IPv4Address(f"{o1}.{o2}.{o3}.255")
