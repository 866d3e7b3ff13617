# tpc/tpc_app.py

"""
TpcApp: Ryu host for the flow/meter programming engine.

This is the only RyuApp loaded by ryu-manager:

    ryu-manager tpc.tpc_app

Responsibilities:
- Device inventory: datapaths that reached MAIN_DISPATCHER are available.
- Mastership: OpenFlow controller role per datapath (role request on connect,
  role reply tracked).
- Packet-in: EventOFPPacketIn frames are parsed with ryu.lib.packet and run
  through the registered packet processors.
- Flow rules: kept in a store keyed by the descriptor identity. Entries with
  an OpenFlow form (the ACL punt rule) are also written to the datapath under
  the app cookie; removal by application deletes that cookie on every
  datapath. A datapath that (re)connects first loses every flow carrying the
  cookie, then gets this instance's entries for it again.
- Slice, checker and attack tables and the slice meters belong to the P4
  pipeline and have no OpenFlow form: they are held in this process only.
- Lifecycle: engine activation (with startup cleanup) runs on a hub thread so
  the Ryu event loop is not held; the REST API starts once it completes.
  close() deactivates the engine and stops the REST server.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from ryu.base import app_manager
from ryu.controller import ofp_event
from ryu.controller.handler import DEAD_DISPATCHER, MAIN_DISPATCHER, set_ev_cls
from ryu.lib import hub
from ryu.lib.packet import ethernet, packet
from ryu.ofproto import ofproto_v1_3

from tpc.config import TPC_CONFIG, validate_config
from tpc.constants import OF_APP_COOKIE
from tpc.engine import TpcEngine
from tpc.entries import PacketInEvent
from tpc.flow_utils import add_flow, build_punt_actions, delete_flow_strict, delete_flows_for_cookie, openflow_match
from tpc.host import (
    Device,
    DeviceService,
    InMemoryCoreService,
    InMemoryFlowRuleService,
    InMemoryMeterService,
    InMemoryPacketService,
    MastershipService,
)
from tpc.pipeline import ApplicationId, FlowRule
from tpc.rest import start_rest_server


def device_id_for(dpid: int) -> str:
    return "of:%016x" % dpid


def dpid_for(device_id: str) -> Optional[int]:
    if not device_id.startswith("of:"):
        return None
    try:
        return int(device_id[3:], 16)
    except ValueError:
        return None


class DatapathDeviceService(DeviceService):
    def __init__(self, datapaths: Dict[int, object]):
        self.datapaths = datapaths

    def get_available_devices(self) -> List[Device]:
        return [Device(device_id_for(dpid)) for dpid in sorted(self.datapaths)]


class DatapathMastershipService(MastershipService):
    """
    Local mastership from the OpenFlow controller role.

    MASTER and EQUAL both count as local master: EQUAL is what a single
    controller instance holds by default.
    """

    LOCAL_ROLES = (ofproto_v1_3.OFPCR_ROLE_MASTER, ofproto_v1_3.OFPCR_ROLE_EQUAL)

    def __init__(self):
        self.roles: Dict[str, int] = {}  # device_id -> OFPCR_ROLE_*

    def is_local_master(self, device_id: str) -> bool:
        return self.roles.get(device_id, ofproto_v1_3.OFPCR_ROLE_EQUAL) in self.LOCAL_ROLES


class DatapathFlowRuleService(InMemoryFlowRuleService):
    """
    Flow-rule store mirrored to connected datapaths.

    Enumeration reads the store; OpenFlow writes are not acknowledged.
    """

    def __init__(self, datapaths: Dict[int, object], cookie: int = OF_APP_COOKIE):
        super(DatapathFlowRuleService, self).__init__()
        self.datapaths = datapaths
        self.cookie = int(cookie)

    def apply_flow_rules(self, *rules: FlowRule):
        super(DatapathFlowRuleService, self).apply_flow_rules(*rules)
        for rule in rules:
            self._write(rule)

    def remove_flow_rules(self, *rules: FlowRule):
        super(DatapathFlowRuleService, self).remove_flow_rules(*rules)
        for rule in rules:
            dp = self._datapath(rule.device_id)
            if dp is None:
                continue
            match = openflow_match(dp.ofproto_parser, rule)
            if match is not None:
                delete_flow_strict(dp, rule.priority, match, cookie=self.cookie)

    def remove_flow_rules_by_id(self, app_id: ApplicationId):
        super(DatapathFlowRuleService, self).remove_flow_rules_by_id(app_id)
        for dp in list(self.datapaths.values()):
            delete_flows_for_cookie(dp, cookie=self.cookie)

    def resync(self, datapath):
        """Clear the cookie on a (re)connected datapath, then rewrite the stored entries for it."""
        delete_flows_for_cookie(datapath, cookie=self.cookie)
        for rule in self.installed(device_id_for(datapath.id)):
            self._write(rule, datapath)

    def _datapath(self, device_id: str):
        dpid = dpid_for(device_id)
        return None if dpid is None else self.datapaths.get(dpid)

    def _write(self, rule: FlowRule, datapath=None):
        dp = datapath or self._datapath(rule.device_id)
        if dp is None:
            return
        match = openflow_match(dp.ofproto_parser, rule)
        if match is None:
            return
        add_flow(dp, rule.priority, match, build_punt_actions(dp), cookie=self.cookie)


class TpcApp(app_manager.RyuApp):
    OFP_VERSIONS = [ofproto_v1_3.OFP_VERSION]

    def __init__(self, *args, **kwargs):
        super(TpcApp, self).__init__(*args, **kwargs)

        self.logger.setLevel(logging.INFO)

        self.conf = validate_config(TPC_CONFIG)

        # Host state
        self.datapaths = {}
        self.device_service = DatapathDeviceService(self.datapaths)
        self.mastership_service = DatapathMastershipService()
        self.flow_rule_service = DatapathFlowRuleService(self.datapaths)
        self.meter_service = InMemoryMeterService(self.device_service)
        self.packet_service = InMemoryPacketService()

        self.engine = TpcEngine(
            core_service=InMemoryCoreService(),
            device_service=self.device_service,
            mastership_service=self.mastership_service,
            flow_rule_service=self.flow_rule_service,
            meter_service=self.meter_service,
            packet_service=self.packet_service,
            logger=self.logger,
            app_name=self.conf["app_name"],
            cleanup_retry_times=self.conf["cleanup"]["retry_times"],
            cleanup_delay_ms=self.conf["cleanup"]["delay_ms"],
            sleep=hub.sleep,
            mastership_filter_all=self.conf["mastership_filter_all"],
        )

        self.httpd = None
        self.activate_thread = hub.spawn(self._activate)

        self.logger.info(
            "TpcApp initialized. slice_checker=%s mastership_filter_all=%s",
            self.conf["enable_slice_checker"], self.conf["mastership_filter_all"],
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def _activate(self):
        self.engine.activate()

        rest = self.conf["rest"]
        self.httpd = start_rest_server(
            self.engine,
            host=rest["host"],
            port=rest["port"],
            mount=rest["mount"],
            enable_slice_checker=self.conf["enable_slice_checker"],
        )

    def close(self):
        if self.httpd is not None:
            self.httpd.shutdown()
            self.httpd = None
        self.engine.deactivate()

    # ------------------------------------------------------------------
    # Datapath state tracking
    # ------------------------------------------------------------------
    @set_ev_cls(ofp_event.EventOFPStateChange, [MAIN_DISPATCHER, DEAD_DISPATCHER])
    def _state_change_handler(self, ev):
        dp = ev.datapath
        dpid = dp.id

        if ev.state == MAIN_DISPATCHER:
            if dpid not in self.datapaths:
                self.datapaths[dpid] = dp
                self.logger.info("Register datapath: %s", device_id_for(dpid))
                self._request_role(dp)
                self.flow_rule_service.resync(dp)

        elif ev.state == DEAD_DISPATCHER:
            if dpid in self.datapaths:
                self.logger.warning("Unregister datapath: %s", device_id_for(dpid))
                del self.datapaths[dpid]
                self.mastership_service.roles.pop(device_id_for(dpid), None)

    def _request_role(self, datapath):
        ofproto = datapath.ofproto
        parser = datapath.ofproto_parser
        req = parser.OFPRoleRequest(datapath, ofproto.OFPCR_ROLE_NOCHANGE, 0)
        datapath.send_msg(req)

    @set_ev_cls(ofp_event.EventOFPRoleReply, MAIN_DISPATCHER)
    def _role_reply_handler(self, ev):
        msg = ev.msg
        device_id = device_id_for(msg.datapath.id)
        self.mastership_service.roles[device_id] = msg.role
        self.logger.info("Role for %s: %s", device_id, msg.role)

    # ------------------------------------------------------------------
    # Packet-in
    # ------------------------------------------------------------------
    @set_ev_cls(ofp_event.EventOFPPacketIn, MAIN_DISPATCHER)
    def _packet_in_handler(self, ev):
        msg = ev.msg
        pkt = packet.Packet(msg.data)
        eth = pkt.get_protocol(ethernet.ethernet)
        if eth is None:
            return

        event = PacketInEvent(
            device_id=device_id_for(msg.datapath.id),
            port=msg.match["in_port"],
            eth_type=eth.ethertype,
            data=msg.data,
        )
        self.packet_service.process(event)
