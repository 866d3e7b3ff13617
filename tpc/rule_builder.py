# tpc/rule_builder.py

"""
Pure builders: policy entry -> pipeline table entries / meter requests.

No I/O happens here. Every builder returns a deterministic, ordered result
for a given input, so callers can build the same descriptors twice (e.g.
checker on/off) and get exact-match deletes.

Constraint violations raise MalformedEntry:
  - slice id outside 0..255
  - pir negative or wider than 64 bits
  - address that is not a 4-octet IPv4 address
  - port number outside 0..2^32-1
"""

from __future__ import annotations

import ipaddress
from typing import List

from tpc import constants as c
from tpc.entries import AttackEntry, SliceIdEntry, SliceQoSEntry
from tpc.errors import MalformedEntry
from tpc.pipeline import (
    BAND_MARK_RED,
    BAND_MARK_YELLOW,
    UNIT_BYTES_PER_SEC,
    ApplicationId,
    Band,
    FlowRule,
    MeterRequest,
    PiAction,
    PiCriterion,
    to_bytes,
)

# Encoded widths (bytes) of the values written into the pipeline.
PORT_WIDTH = 4
SLICE_ID_WIDTH = 1
ETH_IS_VALID_WIDTH = 1
ETH_TYPE_WIDTH = 2


# -------------------------------------------------------------------
# Constraint checks
# -------------------------------------------------------------------
def _ipv4_octets(addr, what: str) -> bytes:
    if isinstance(addr, ipaddress.IPv4Address):
        return addr.packed
    if isinstance(addr, (bytes, bytearray)) and len(addr) == 4:
        return bytes(addr)
    raise MalformedEntry(f"{what}: not an IPv4 address: {addr!r}")


def _slice_id(value: int) -> bytes:
    if not isinstance(value, int) or not 0 <= value <= 0xFF:
        raise MalformedEntry(f"slice id must be in 0..255, got {value!r}")
    return to_bytes(value, SLICE_ID_WIDTH)


def _port(value: int) -> bytes:
    if not isinstance(value, int) or not 0 <= value <= 0xFFFFFFFF:
        raise MalformedEntry(f"port number must be in 0..2^32-1, got {value!r}")
    return to_bytes(value, PORT_WIDTH)


def _pir(value: int) -> int:
    if not isinstance(value, int) or not 0 <= value < 2 ** 64:
        raise MalformedEntry(f"pir must be a non-negative 64-bit integer, got {value!r}")
    return value


# -------------------------------------------------------------------
# Flow rule builders
# -------------------------------------------------------------------
def build_flow_rule(device_id: str, app_id: ApplicationId, table_id: str,
                    selector: PiCriterion, treatment: PiAction, priority: int) -> FlowRule:
    assert app_id is not None, "build_flow_rule: app_id must be provided"
    return FlowRule(
        device_id=str(device_id),
        app_id=app_id,
        table_id=table_id,
        selector=selector,
        treatment=treatment,
        priority=int(priority),
    )


def build_attack_rules(entry: AttackEntry, app_id: ApplicationId) -> List[FlowRule]:
    """
    One rule on entry.device_id: exact match on (ipv4_src, ipv4_dst),
    rewrite-and-duplicate with the rewritten addresses.
    """
    selector = (
        PiCriterion()
        .exact(c.FIELD_IPV4_SRC, _ipv4_octets(entry.src_address, "srcAddress"))
        .exact(c.FIELD_IPV4_DST, _ipv4_octets(entry.dst_address, "dstAddress"))
    )
    treatment = (
        PiAction(c.ACTION_ADD_METADATA_AND_DUPLICATE)
        .with_param(c.PARAM_IPV4_SRC_ADDR, _ipv4_octets(entry.src_address_rewritten, "srcAddressRewritten"))
        .with_param(c.PARAM_IPV4_DST_ADDR, _ipv4_octets(entry.dst_address_rewritten, "dstAddressRewritten"))
    )
    return [build_flow_rule(entry.device_id, app_id, c.TABLE_ATTACK, selector, treatment, c.MEDIUM_PRIORITY)]


def build_slice_id_rules(entry: SliceIdEntry, app_id: ApplicationId) -> List[FlowRule]:
    """
    Four rules on entry.device_id, always in this order:
      1. ingress slice lookup   (ig_port -> ig_slice_id)
      2. egress slice lookup    (eg_port -> eg_slice_id)
      3. first-hop mark         (ig_port)
      4. last-hop mark          (eg_port)
    """
    port = _port(entry.port_number)
    slice_id = _slice_id(entry.slice_id)
    prio = c.MEDIUM_PRIORITY

    ig_match = PiCriterion().exact(c.FIELD_IG_PORT, port)
    eg_match = PiCriterion().exact(c.FIELD_EG_PORT, port)

    return [
        build_flow_rule(entry.device_id, app_id, c.TABLE_INGRESS_SLICE_LOOKUP, ig_match,
                        PiAction(c.ACTION_INGRESS_SLICE_LOOKUP).with_param(c.PARAM_IG_SLICE_ID, slice_id), prio),
        build_flow_rule(entry.device_id, app_id, c.TABLE_EGRESS_SLICE_LOOKUP, eg_match,
                        PiAction(c.ACTION_EGRESS_SLICE_LOOKUP).with_param(c.PARAM_EG_SLICE_ID, slice_id), prio),
        build_flow_rule(entry.device_id, app_id, c.TABLE_CHECK_FIRST_HOP, ig_match,
                        PiAction(c.ACTION_SET_FIRST_HOP), prio),
        build_flow_rule(entry.device_id, app_id, c.TABLE_CHECK_LAST_HOP, eg_match,
                        PiAction(c.ACTION_SET_LAST_HOP), prio),
    ]


def build_checker_rules(device_id: str, app_id: ApplicationId) -> List[FlowRule]:
    """
    Isolation and QoS checker switches for one device.

    Used both to turn checking on (install) and off (remove).
    """
    match = PiCriterion().exact(c.FIELD_ETH_IS_VALID, to_bytes(1, ETH_IS_VALID_WIDTH))
    return [
        build_flow_rule(device_id, app_id, c.TABLE_SHOULD_CHECK_ISO, match,
                        PiAction(c.ACTION_CHECK_ISO), c.MEDIUM_PRIORITY),
        build_flow_rule(device_id, app_id, c.TABLE_SHOULD_CHECK_QOS, match,
                        PiAction(c.ACTION_CHECK_QOS), c.MEDIUM_PRIORITY),
    ]


def build_acl_punt_rule(device_id: str, app_id: ApplicationId) -> FlowRule:
    """ACL rule punting checker reports (EtherType 0x5678) to the CPU."""
    match = PiCriterion().ternary(
        c.FIELD_ETH_TYPE,
        to_bytes(c.CHECKER_REPORT_ETH_TYPE, ETH_TYPE_WIDTH),
        to_bytes(c.CHECKER_REPORT_ETH_MASK, ETH_TYPE_WIDTH),
    )
    return build_flow_rule(device_id, app_id, c.TABLE_ACL, match, PiAction(c.ACTION_PUNT_TO_CPU), c.HIGH_PRIORITY)


# -------------------------------------------------------------------
# Meter builders
# -------------------------------------------------------------------
def build_slice_qos_meter(entry: SliceQoSEntry, device_id: str, app_id: ApplicationId) -> MeterRequest:
    """
    Two-band slice meter, indexed by slice id.

    pir is in bits/s while the meter unit is bytes/s, hence pir // 8 on the
    red band. The yellow band is left at zero rate and burst.
    """
    _slice_id(entry.slice_id)
    pir = _pir(entry.pir)

    bands = (
        Band(type=BAND_MARK_YELLOW, rate=0, burst=0),
        Band(type=BAND_MARK_RED, rate=pir // 8, burst=c.METER_RED_BURST_BYTES),
    )
    return MeterRequest(
        device_id=str(device_id),
        app_id=app_id,
        scope=c.METER_SCOPE_SLICE,
        index=int(entry.slice_id),
        unit=UNIT_BYTES_PER_SEC,
        bands=bands,
    )
