# tpc/host.py

"""
Host services the engine runs against, and an in-memory host.

The engine never talks to switches directly. It goes through the service
interfaces below, which mirror what an SDN controller runtime offers:
application registration, device inventory, mastership, the flow-rule and
meter stores, and packet-in dispatch.

InMemoryHost implements all of them in-process. It is used:
  - by the standalone runner (python -m tpc),
  - by the Ryu app for the flow-rule / meter stores,
  - by the tests, where its keying rules make idempotence observable.

Store keying (must match the descriptors in tpc.pipeline):
  - flow rules: (device, table, selector, priority); re-apply replaces.
  - meters:     (device, scope, index); re-submit updates in place.
"""

from __future__ import annotations

import abc
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from tpc.entries import PacketInEvent
from tpc.errors import HostUnavailable, StaleDevice
from tpc.pipeline import ApplicationId, FlowRule, MeterRequest

LOG = logging.getLogger(__name__)

# Packet processor priority classes. Lower value runs first.
ADVISOR_MAX = (2 ** 31 - 1) // 3
DIRECTOR_MAX = 2 * ADVISOR_MAX
OBSERVER_MAX = 3 * ADVISOR_MAX


def advisor(priority: int) -> int:
    assert 0 <= priority < ADVISOR_MAX, f"advisor priority out of range: {priority}"
    return priority


def director(priority: int) -> int:
    assert 0 <= priority < ADVISOR_MAX, f"director priority out of range: {priority}"
    return ADVISOR_MAX + priority


def observer(priority: int) -> int:
    assert 0 <= priority < ADVISOR_MAX, f"observer priority out of range: {priority}"
    return DIRECTOR_MAX + priority


@dataclass(frozen=True)
class Device:
    id: str


# -------------------------------------------------------------------
# Packet context
# -------------------------------------------------------------------
class PacketContext:
    """
    One received packet as seen by packet processors.

    Processors read `in_packet`, and call block() to stop the host from
    handing the packet to later processors or sending it back out.
    """

    def __init__(self, in_packet: PacketInEvent):
        self.in_packet = in_packet
        self._blocked = False

    @property
    def received_from(self) -> Tuple[str, int]:
        return self.in_packet.device_id, self.in_packet.port

    def block(self) -> bool:
        was_blocked = self._blocked
        self._blocked = True
        return not was_blocked

    @property
    def is_handled(self) -> bool:
        return self._blocked


class PacketProcessor(abc.ABC):
    @abc.abstractmethod
    def process(self, context: PacketContext):
        ...


# -------------------------------------------------------------------
# Service interfaces
# -------------------------------------------------------------------
class CoreService(abc.ABC):
    @abc.abstractmethod
    def register_application(self, name: str) -> ApplicationId:
        ...


class DeviceService(abc.ABC):
    @abc.abstractmethod
    def get_available_devices(self) -> List[Device]:
        ...


class MastershipService(abc.ABC):
    @abc.abstractmethod
    def is_local_master(self, device_id: str) -> bool:
        ...


class FlowRuleService(abc.ABC):
    @abc.abstractmethod
    def apply_flow_rules(self, *rules: FlowRule):
        ...

    @abc.abstractmethod
    def remove_flow_rules(self, *rules: FlowRule):
        ...

    @abc.abstractmethod
    def remove_flow_rules_by_id(self, app_id: ApplicationId):
        ...

    @abc.abstractmethod
    def get_flow_entries_by_id(self, app_id: ApplicationId) -> List[FlowRule]:
        ...


class MeterService(abc.ABC):
    @abc.abstractmethod
    def submit(self, request: MeterRequest):
        ...

    @abc.abstractmethod
    def purge_meters(self, device_id: str, app_id: ApplicationId):
        ...


class PacketService(abc.ABC):
    @abc.abstractmethod
    def add_processor(self, processor: PacketProcessor, priority: int):
        ...

    @abc.abstractmethod
    def remove_processor(self, processor: PacketProcessor):
        ...


# -------------------------------------------------------------------
# In-memory implementations
# -------------------------------------------------------------------
class InMemoryCoreService(CoreService):
    def __init__(self):
        self._apps: Dict[str, ApplicationId] = {}
        self._lock = threading.Lock()
        self.available = True

    def register_application(self, name: str) -> ApplicationId:
        if not self.available:
            raise HostUnavailable(f"core service unavailable, cannot register {name}")
        with self._lock:
            app_id = self._apps.get(name)
            if app_id is None:
                app_id = ApplicationId(id=len(self._apps) + 1, name=name)
                self._apps[name] = app_id
            return app_id


class InMemoryDeviceService(DeviceService):
    def __init__(self, device_ids: Iterable[str] = ()):
        self._devices: Dict[str, Device] = {}
        self._lock = threading.Lock()
        for d in device_ids:
            self.add_device(d)

    def add_device(self, device_id: str):
        with self._lock:
            self._devices[str(device_id)] = Device(str(device_id))

    def remove_device(self, device_id: str):
        with self._lock:
            self._devices.pop(str(device_id), None)

    def is_available(self, device_id: str) -> bool:
        with self._lock:
            return str(device_id) in self._devices

    def get_available_devices(self) -> List[Device]:
        with self._lock:
            return list(self._devices.values())


class InMemoryMastershipService(MastershipService):
    """
    Local mastership per device.

    Devices not listed in `remote_masters` are mastered locally, which is
    the single-instance case.
    """

    def __init__(self, remote_masters: Iterable[str] = ()):
        self.remote_masters = set(remote_masters)

    def is_local_master(self, device_id: str) -> bool:
        return device_id not in self.remote_masters


class InMemoryFlowRuleService(FlowRuleService):
    """
    Flow-rule store keyed by FlowRule.key.

    removal_lag > 0 keeps removed entries listed by get_flow_entries_by_id()
    for that many enumerations, the way a distributed store reports entries
    still pending removal.
    """

    def __init__(self, removal_lag: int = 0):
        self._entries: Dict[tuple, FlowRule] = {}
        self._pending_remove: Dict[tuple, Tuple[FlowRule, int]] = {}
        self._lock = threading.Lock()
        self.removal_lag = int(removal_lag)
        self.available = True

        # Call log, in order: (op, payload)
        self.calls: List[Tuple[str, object]] = []

    def _check_available(self, op: str):
        if not self.available:
            raise HostUnavailable(f"flow rule service unavailable ({op})")

    def apply_flow_rules(self, *rules: FlowRule):
        self._check_available("apply")
        with self._lock:
            self.calls.append(("apply", tuple(rules)))
            for r in rules:
                self._pending_remove.pop(r.key, None)
                self._entries[r.key] = r
        LOG.debug("Applied %d flow rules", len(rules))

    def remove_flow_rules(self, *rules: FlowRule):
        self._check_available("remove")
        with self._lock:
            self.calls.append(("remove", tuple(rules)))
            for r in rules:
                self._remove_key(r.key)

    def remove_flow_rules_by_id(self, app_id: ApplicationId):
        self._check_available("remove_by_id")
        with self._lock:
            self.calls.append(("remove_by_id", app_id))
            for key in [k for k, r in self._entries.items() if r.app_id == app_id]:
                self._remove_key(key)

    def get_flow_entries_by_id(self, app_id: ApplicationId) -> List[FlowRule]:
        self._check_available("get_by_id")
        with self._lock:
            out = [r for r in self._entries.values() if r.app_id == app_id]
            for key, (rule, left) in list(self._pending_remove.items()):
                if rule.app_id != app_id:
                    continue
                out.append(rule)
                if left <= 1:
                    del self._pending_remove[key]
                else:
                    self._pending_remove[key] = (rule, left - 1)
            return out

    def _remove_key(self, key):
        rule = self._entries.pop(key, None)
        if rule is not None and self.removal_lag > 0:
            self._pending_remove[key] = (rule, self.removal_lag)

    # Test / inspection helpers
    def installed(self, device_id: Optional[str] = None) -> List[FlowRule]:
        with self._lock:
            rules = list(self._entries.values())
        if device_id is not None:
            rules = [r for r in rules if r.device_id == device_id]
        return rules

    def seed(self, *rules: FlowRule):
        """Load entries without recording a call (residue from a previous run)."""
        with self._lock:
            for r in rules:
                self._entries[r.key] = r


class InMemoryMeterService(MeterService):
    def __init__(self, device_service: DeviceService):
        self.device_service = device_service
        self._meters: Dict[tuple, MeterRequest] = {}
        self._lock = threading.Lock()
        self.available = True

        self.calls: List[Tuple[str, object]] = []

    def submit(self, request: MeterRequest):
        if not self.available:
            raise HostUnavailable("meter service unavailable (submit)")
        if request.device_id not in {d.id for d in self.device_service.get_available_devices()}:
            raise StaleDevice(request.device_id)
        with self._lock:
            self.calls.append(("submit", request))
            self._meters[request.key] = request

    def purge_meters(self, device_id: str, app_id: ApplicationId):
        if not self.available:
            raise HostUnavailable("meter service unavailable (purge)")
        with self._lock:
            self.calls.append(("purge", (device_id, app_id)))
            for key in [k for k, m in self._meters.items()
                        if m.device_id == device_id and m.app_id == app_id]:
                del self._meters[key]

    def get_meters(self, device_id: Optional[str] = None) -> List[MeterRequest]:
        with self._lock:
            meters = list(self._meters.values())
        if device_id is not None:
            meters = [m for m in meters if m.device_id == device_id]
        return meters


class InMemoryPacketService(PacketService):
    def __init__(self):
        self._processors: List[Tuple[int, PacketProcessor]] = []
        self._lock = threading.Lock()

    def add_processor(self, processor: PacketProcessor, priority: int):
        with self._lock:
            self._processors.append((int(priority), processor))
            self._processors.sort(key=lambda p: p[0])

    def remove_processor(self, processor: PacketProcessor):
        with self._lock:
            self._processors = [p for p in self._processors if p[1] is not processor]

    @property
    def processors(self) -> List[PacketProcessor]:
        with self._lock:
            return [p for _, p in self._processors]

    def process(self, event: PacketInEvent) -> PacketContext:
        """Run one packet through the processors, stopping once it is blocked."""
        context = PacketContext(event)
        for processor in self.processors:
            processor.process(context)
            if context.is_handled:
                break
        return context


class InMemoryHost:
    """All in-memory services wired together."""

    def __init__(self, device_ids: Iterable[str] = (), *, remote_masters: Iterable[str] = (),
                 removal_lag: int = 0):
        self.core_service = InMemoryCoreService()
        self.device_service = InMemoryDeviceService(device_ids)
        self.mastership_service = InMemoryMastershipService(remote_masters)
        self.flow_rule_service = InMemoryFlowRuleService(removal_lag=removal_lag)
        self.meter_service = InMemoryMeterService(self.device_service)
        self.packet_service = InMemoryPacketService()

    def services(self) -> dict:
        return dict(
            core_service=self.core_service,
            device_service=self.device_service,
            mastership_service=self.mastership_service,
            flow_rule_service=self.flow_rule_service,
            meter_service=self.meter_service,
            packet_service=self.packet_service,
        )
