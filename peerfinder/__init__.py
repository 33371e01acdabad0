"""
peerfinder - keeps a live registry of peer nodes found through DNS
enumeration and LAN broadcast.
"""

from .discovery import (
    NodeRecord,
    NodeRegistry,
    DiscoveryHandle,
    dns_discover,
    lan_discover,
)

__version__ = '0.1.0'

__all__ = [
    'NodeRecord',
    'NodeRegistry',
    'DiscoveryHandle',
    'dns_discover',
    'lan_discover',
]
