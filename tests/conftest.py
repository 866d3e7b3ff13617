import ipaddress

import pytest

from tpc.engine import TpcEngine
from tpc.entries import AttackEntry
from tpc.host import InMemoryHost


class FakeSleep:
    """Records requested sleeps instead of sleeping."""

    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


def attack_entry(device_id="device:leaf1", src="10.0.0.1", dst="10.0.0.2",
                 src_rw="10.0.0.3", dst_rw="10.0.0.4"):
    return AttackEntry(
        device_id=device_id,
        src_address=ipaddress.IPv4Address(src),
        dst_address=ipaddress.IPv4Address(dst),
        src_address_rewritten=ipaddress.IPv4Address(src_rw),
        dst_address_rewritten=ipaddress.IPv4Address(dst_rw),
    )


def calls_of(service, op):
    return [payload for name, payload in service.calls if name == op]


@pytest.fixture
def sleeper():
    return FakeSleep()


@pytest.fixture
def make_engine(sleeper):
    def _make(host, **kwargs):
        kwargs.setdefault("sleep", sleeper)
        return TpcEngine(**host.services(), **kwargs)

    return _make


@pytest.fixture
def host():
    return InMemoryHost(["d1", "d2"])


@pytest.fixture
def engine(host, make_engine):
    eng = make_engine(host)
    eng.activate()
    return eng
