"""
Discovery Module - Peer Discovery via DNS and LAN

Provides two independent ways to find peer nodes, both feeding one registry:
- DNS enumeration - {prefix}-{tag}-{seq}.{domain} A-records
- UDP Broadcast - directed /24 announcements inside 10.0.0.0/8
"""

from .registry import NodeRecord, NodeRegistry, ChangeStream
from .interfaces import ipv4_of, own_private_ipv4, build_ignore_set
from .lifecycle import DiscoveryHandle, ShutdownSignal
from .dns import DnsProber, dns_discover
from .lan import LanBroadcaster, LanReceiver, lan_discover

__all__ = [
    'NodeRecord',
    'NodeRegistry',
    'ChangeStream',
    'ipv4_of',
    'own_private_ipv4',
    'build_ignore_set',
    'DiscoveryHandle',
    'ShutdownSignal',
    'DnsProber',
    'dns_discover',
    'LanBroadcaster',
    'LanReceiver',
    'lan_discover',
]
