# tpc/engine.py

"""
TpcEngine: turns policy entries into table entries and meters on the host.

Responsibilities:
- Own the application identity every rule and meter is scoped to.
- Register the checker-report packet processor.
- Serve the policy operations (attack, slice id, slice QoS, checker on/off,
  flush) by building descriptors and handing them to the host services.
- On activation, remove residue left by a previous instance (poll + retry).
- On deactivation, purge everything scoped to the application identity.

State:
- app_id is set once in activate() and never changes afterwards.
- No other mutable state: operations only depend on what the host holds.
- The engine takes no locks; concurrent calls become concurrent host calls.

Mastership:
- The ACL punt rule goes only to devices this instance masters.
- Checker rules and slice meters go to every available device, unless
  mastership_filter_all=True, in which case they are master-filtered too.
- Attack and slice-id rules target the device named in the entry.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Sequence

from tpc.constants import APP_NAME, CLEAN_UP_DELAY, DEFAULT_CLEAN_UP_RETRY_TIMES
from tpc.entries import AttackEntry, SliceIdEntry, SliceQoSEntry
from tpc.errors import HostUnavailable, ShutdownDuringCleanup, StaleDevice
from tpc.fanout import DeviceFanout
from tpc.host import (
    CoreService,
    DeviceService,
    FlowRuleService,
    MastershipService,
    MeterService,
    PacketService,
    advisor,
)
from tpc.packet_processor import CheckerReportProcessor
from tpc.pipeline import ApplicationId, FlowRule, MeterRequest
from tpc.rule_builder import (
    build_acl_punt_rule,
    build_attack_rules,
    build_checker_rules,
    build_slice_id_rules,
    build_slice_qos_meter,
)


class TpcEngine:
    def __init__(
        self,
        *,
        core_service: CoreService,
        device_service: DeviceService,
        mastership_service: MastershipService,
        flow_rule_service: FlowRuleService,
        meter_service: MeterService,
        packet_service: PacketService,
        logger=None,
        app_name: str = APP_NAME,
        cleanup_retry_times: int = DEFAULT_CLEAN_UP_RETRY_TIMES,
        cleanup_delay_ms: int = CLEAN_UP_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        mastership_filter_all: bool = False,
    ):
        self.core_service = core_service
        self.flow_rule_service = flow_rule_service
        self.meter_service = meter_service
        self.packet_service = packet_service
        self.fanout = DeviceFanout(device_service, mastership_service)

        self.logger = logger or logging.getLogger(__name__)
        self.app_name = str(app_name)
        self.cleanup_retry_times = int(cleanup_retry_times)
        self.cleanup_delay_ms = int(cleanup_delay_ms)
        self.sleep = sleep
        self.mastership_filter_all = bool(mastership_filter_all)

        assert self.cleanup_retry_times >= 0, "cleanup_retry_times must be >= 0"
        assert self.cleanup_delay_ms >= 0, "cleanup_delay_ms must be >= 0"

        self.app_id: Optional[ApplicationId] = None
        self.packet_processor = CheckerReportProcessor(logger=self.logger)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def activate(self):
        """
        Register the application, the packet processor, then clean up what a
        previous instance may have left behind. Returns when both are done.
        """
        self.app_id = self._host_call("register application", self.core_service.register_application,
                                      self.app_name)
        self.packet_service.add_processor(self.packet_processor, advisor(0))

        self._wait_previous_cleanup()
        self.logger.info("Started (app=%s)", self.app_id)

    def deactivate(self):
        """
        Remove the packet processor, every flow rule of this application, and
        this application's meters on every available device.

        Safe to call more than once. Per-device meter purge failures are
        logged and skipped.
        """
        if self.app_id is None:
            return

        self.packet_service.remove_processor(self.packet_processor)
        self._purge(tolerant=True)
        self.logger.info("Stopped (app=%s)", self.app_id)

    def _clean_up(self) -> bool:
        """
        Request removal of every flow entry of this application.

        Returns False if there was nothing to remove, True otherwise.
        """
        flows = list(self._host_call("list flow entries", self.flow_rule_service.get_flow_entries_by_id,
                                     self.app_id))
        if not flows:
            return False

        self._host_call("remove flow rules", self.flow_rule_service.remove_flow_rules, *flows)
        return True

    def _wait_previous_cleanup(self) -> bool:
        """
        Poll-and-remove until the host reports no entries for this application,
        sleeping cleanup_delay_ms between attempts.

        Returns True if the host converged, False if it gave up after cleanup_retry_times attempts.
        """
        if self.cleanup_retry_times == 0:
            self.logger.info("Startup cleanup disabled (cleanup_retry_times=0)")
            return True

        for _ in range(self.cleanup_retry_times):
            try:
                if not self._clean_up():
                    return True
            except HostUnavailable as e:
                self.logger.warning("Startup cleanup aborted: %s", e)
                return False

            self.logger.info("Waiting to remove flows from previous execution of %s...", self.app_name)
            self.sleep(self.cleanup_delay_ms / 1000.0)

        err = ShutdownDuringCleanup(
            f"flow entries of {self.app_name} still present after {self.cleanup_retry_times} cleanup attempts"
        )
        self.logger.warning("%s; continuing activation", err)
        return False

    # ------------------------------------------------------------------
    # Policy operations
    # ------------------------------------------------------------------
    def post_attack_entries(self, entries: Sequence[AttackEntry]):
        self.logger.info("Received attack entries: %s", [str(e) for e in entries])
        app_id = self._require_app_id()

        rules: List[FlowRule] = []
        for entry in entries:
            rules.extend(build_attack_rules(entry, app_id))
        self._apply(rules, "attack entries")

    def post_slice_id_entries(self, entries: Sequence[SliceIdEntry]):
        self.logger.info("Received slice id entries: %s", [str(e) for e in entries])
        app_id = self._require_app_id()

        rules: List[FlowRule] = []
        for entry in entries:
            rules.extend(build_slice_id_rules(entry, app_id))
        self._apply(rules, "slice id entries")

    def post_slice_qos_entries(self, entries: Sequence[SliceQoSEntry]):
        """
        One meter request per (entry, available device), submitted one by one.

        All requests are built before the first submission, so a malformed
        entry fails the call without touching the host.
        """
        self.logger.info("Received slice QoS entries: %s", [str(e) for e in entries])
        app_id = self._require_app_id()

        devices = self.fanout.devices(master_only=self.mastership_filter_all)
        requests: List[MeterRequest] = []
        for entry in entries:
            for device_id in devices:
                requests.append(build_slice_qos_meter(entry, device_id, app_id))

        for request in requests:
            try:
                self._host_call("submit meter", self.meter_service.submit, request)
            except StaleDevice as e:
                self.logger.warning("Skipping meter for slice %s: %s", request.index, e)

    def turn_on_checking(self):
        self.logger.info("Received turnOnChecking request")
        app_id = self._require_app_id()

        devices = self.fanout.devices()
        masters = self.fanout.local_masters(devices)

        self._apply([build_acl_punt_rule(d, app_id) for d in masters], "ACL punt rules")
        self._apply(self._checker_rules(devices, masters, app_id), "checker rules")

    def turn_off_checking(self):
        """Remove the checker rules. The ACL punt rule stays installed."""
        self.logger.info("Received turnOffChecking request")
        app_id = self._require_app_id()

        devices = self.fanout.devices()
        masters = self.fanout.local_masters(devices)

        rules = self._checker_rules(devices, masters, app_id)
        if rules:
            self._host_call("remove checker rules", self.flow_rule_service.remove_flow_rules, *rules)

    def flush_flow_rules(self):
        self.logger.info("Received flush request")
        self._require_app_id()
        self._purge(tolerant=False)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _require_app_id(self) -> ApplicationId:
        assert self.app_id is not None, "TpcEngine: activate() must run before policy operations"
        return self.app_id

    def _checker_rules(self, devices: List[str], masters: List[str], app_id: ApplicationId) -> List[FlowRule]:
        targets = masters if self.mastership_filter_all else devices
        rules: List[FlowRule] = []
        for device_id in targets:
            rules.extend(build_checker_rules(device_id, app_id))
        return rules

    def _apply(self, rules: List[FlowRule], what: str):
        if not rules:
            self.logger.debug("No %s to apply", what)
            return
        self.logger.debug("Applying %d rules for %s", len(rules), what)
        self._host_call(f"apply {what}", self.flow_rule_service.apply_flow_rules, *rules)

    def _purge(self, tolerant: bool):
        """
        Remove all flow rules and meters of this application.

        tolerant=True: host failures are logged and skipped so the remaining
        purge requests still go out (shutdown path). Stale devices are always skipped.
        """
        try:
            self._host_call("remove flow rules by app", self.flow_rule_service.remove_flow_rules_by_id, self.app_id)
        except HostUnavailable:
            if not tolerant:
                raise

        for device_id in self.fanout.devices():
            try:
                self._host_call("purge meters", self.meter_service.purge_meters, device_id, self.app_id)
            except StaleDevice as e:
                self.logger.warning("Skipping meter purge: %s", e)
            except HostUnavailable:
                if not tolerant:
                    raise

    def _host_call(self, what: str, fn, *args):
        try:
            return fn(*args)
        except StaleDevice:
            raise
        except HostUnavailable as e:
            self.logger.warning("Host call failed: %s (%s)", what, e)
            raise
        except Exception as e:
            self.logger.warning("Host call failed: %s (%s)", what, e)
            raise HostUnavailable(f"{what}: {e}") from e
