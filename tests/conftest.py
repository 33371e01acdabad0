"""Shared fixtures: a controllable clock and an in-process DNS resolver."""

import asyncio
import logging
from typing import Dict, List, Set

import dns.message
import dns.rcode
import dns.rrset
import pytest
import pytest_asyncio


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeResolver(asyncio.DatagramProtocol):
    """
    Answers A queries from a static zone.

    Names missing from the zone get NXDOMAIN; names in `silent` get no
    response at all.
    """

    def __init__(self):
        self.zone: Dict[str, List[str]] = {}
        self.silent: Set[str] = set()
        self.queries: List[str] = []
        self.transport = None

    @property
    def address(self):
        return self.transport.get_extra_info('sockname')[:2]

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        query = dns.message.from_wire(data)
        question = query.question[0]
        name = question.name.to_text(omit_final_dot=True)
        self.queries.append(name)

        if name in self.silent:
            return

        response = dns.message.make_response(query)
        ips = self.zone.get(name)
        if ips:
            response.answer.append(dns.rrset.from_text(question.name, 300, 'IN', 'A', *ips))
        else:
            response.set_rcode(dns.rcode.NXDOMAIN)

        self.transport.sendto(response.to_wire(), addr)


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def resolver():
    loop = asyncio.get_running_loop()
    protocol = FakeResolver()
    transport, _ = await loop.create_datagram_endpoint(
        lambda: protocol, local_addr=('127.0.0.1', 0)
    )
    yield protocol
    transport.close()


@pytest.fixture(autouse=True)
def _debug_logging(caplog):
    caplog.set_level(logging.DEBUG, logger='peerfinder')
