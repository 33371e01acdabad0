from ipaddress import IPv4Address

import netifaces
import pytest

from peerfinder.discovery import interfaces
from peerfinder.discovery.interfaces import (
    LOOPBACK,
    broadcast_target,
    build_ignore_set,
    ipv4_of,
    own_private_ipv4,
)

HOST = {
    'lo': {netifaces.AF_INET: [{'addr': '127.0.0.1', 'netmask': '255.0.0.0'}]},
    'wlan0': {netifaces.AF_INET: [{'addr': '192.168.1.20', 'netmask': '255.255.255.0'}]},
    'eth0': {
        netifaces.AF_INET: [
            {'addr': '10.0.0.5', 'netmask': '255.255.255.0', 'broadcast': '10.0.0.255'},
            {'addr': '10.0.0.6', 'netmask': '255.255.255.0'},
        ],
    },
    'tun0': {},
}


@pytest.fixture
def host(monkeypatch):
    def ifaddresses(name):
        if name not in HOST:
            raise ValueError("You must specify a valid interface name.")
        return HOST[name]

    monkeypatch.setattr(interfaces.netifaces, 'interfaces', lambda: list(HOST))
    monkeypatch.setattr(interfaces.netifaces, 'ifaddresses', ifaddresses)


def test_ipv4_of_named_interface(host):
    assert ipv4_of('eth0') == IPv4Address('10.0.0.5')
    assert ipv4_of('wlan0') == IPv4Address('192.168.1.20')


def test_ipv4_of_unknown_or_bare_interface(host):
    assert ipv4_of('eth9') is None
    assert ipv4_of('tun0') is None


def test_ipv4_of_logs_and_returns_none_on_os_failure(monkeypatch, caplog):
    def broken():
        raise OSError("no interfaces for you")

    monkeypatch.setattr(interfaces.netifaces, 'interfaces', broken)

    assert ipv4_of('eth0') is None
    assert "Failed to get network interfaces" in caplog.text


def test_own_private_ipv4_prefers_ten_slash_eight(host):
    assert own_private_ipv4() == IPv4Address('10.0.0.5')


def test_own_private_ipv4_ignores_other_private_ranges(monkeypatch):
    monkeypatch.setattr(interfaces.netifaces, 'interfaces', lambda: ['lo', 'wlan0'])
    monkeypatch.setattr(interfaces.netifaces, 'ifaddresses', lambda name: HOST[name])
    assert own_private_ipv4() is None


def test_own_private_ipv4_skips_vanished_interface(monkeypatch, caplog):
    def ifaddresses(name):
        if name == 'gone0':
            raise ValueError("You must specify a valid interface name.")
        return HOST[name]

    monkeypatch.setattr(interfaces.netifaces, 'interfaces', lambda: ['gone0', 'eth0'])
    monkeypatch.setattr(interfaces.netifaces, 'ifaddresses', ifaddresses)

    assert own_private_ipv4() == IPv4Address('10.0.0.5')
    assert "Failed to read addresses of gone0" in caplog.text


def test_build_ignore_set(host):
    ignore = build_ignore_set(['eth0', 'missing'])
    assert ignore == frozenset({IPv4Address('10.0.0.5'), LOOPBACK})


def test_build_ignore_set_always_has_loopback(host):
    assert build_ignore_set([]) == frozenset({LOOPBACK})


def test_broadcast_target_is_slash_24():
    assert broadcast_target(IPv4Address('10.1.2.3')) == IPv4Address('10.1.2.255')
    assert broadcast_target(LOOPBACK) == IPv4Address('127.0.0.255')
