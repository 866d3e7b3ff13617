import ipaddress

import pytest

from tpc import constants as c
from tpc.entries import SliceIdEntry, SliceQoSEntry
from tpc.errors import MalformedEntry
from tpc.pipeline import BAND_MARK_RED, BAND_MARK_YELLOW, MATCH_TERNARY, UNIT_BYTES_PER_SEC, ApplicationId
from tpc.rule_builder import (
    build_acl_punt_rule,
    build_attack_rules,
    build_checker_rules,
    build_slice_id_rules,
    build_slice_qos_meter,
)

from conftest import attack_entry

APP = ApplicationId(1, c.APP_NAME)


def test_attack_rule_matches_and_rewrites():
    rules = build_attack_rules(attack_entry(), APP)

    assert len(rules) == 1
    rule = rules[0]
    assert rule.device_id == "device:leaf1"
    assert rule.table_id == c.TABLE_ATTACK
    assert rule.priority == c.MEDIUM_PRIORITY
    assert rule.app_id == APP
    assert rule.permanent

    assert rule.selector.get(c.FIELD_IPV4_SRC).value == bytes([10, 0, 0, 1])
    assert rule.selector.get(c.FIELD_IPV4_DST).as_int() == 0x0A000002
    assert rule.treatment.action_id == c.ACTION_ADD_METADATA_AND_DUPLICATE
    assert rule.treatment.param(c.PARAM_IPV4_SRC_ADDR).as_int() == 0x0A000003
    assert rule.treatment.param(c.PARAM_IPV4_DST_ADDR).as_int() == 0x0A000004


def test_slice_id_rules_order_and_encoding():
    rules = build_slice_id_rules(SliceIdEntry("device:leaf1", 5, 2), APP)

    assert [r.table_id for r in rules] == [
        c.TABLE_INGRESS_SLICE_LOOKUP,
        c.TABLE_EGRESS_SLICE_LOOKUP,
        c.TABLE_CHECK_FIRST_HOP,
        c.TABLE_CHECK_LAST_HOP,
    ]
    assert all(r.device_id == "device:leaf1" for r in rules)
    assert all(r.priority == c.MEDIUM_PRIORITY for r in rules)

    ig_lookup, eg_lookup, first_hop, last_hop = rules
    assert ig_lookup.selector.get(c.FIELD_IG_PORT).value == b"\x00\x00\x00\x05"
    assert ig_lookup.treatment.param(c.PARAM_IG_SLICE_ID).value == b"\x02"
    assert eg_lookup.selector.get(c.FIELD_EG_PORT).value == b"\x00\x00\x00\x05"
    assert eg_lookup.treatment.param(c.PARAM_EG_SLICE_ID).value == b"\x02"
    assert first_hop.selector.get(c.FIELD_IG_PORT).as_int() == 5
    assert first_hop.treatment.action_id == c.ACTION_SET_FIRST_HOP
    assert first_hop.treatment.params == ()
    assert last_hop.selector.get(c.FIELD_EG_PORT).as_int() == 5
    assert last_hop.treatment.action_id == c.ACTION_SET_LAST_HOP


def test_builders_are_deterministic():
    entry = SliceIdEntry("device:leaf1", 7, 9)
    assert build_slice_id_rules(entry, APP) == build_slice_id_rules(entry, APP)
    assert build_checker_rules("d1", APP) == build_checker_rules("d1", APP)


def test_checker_rules():
    iso, qos = build_checker_rules("d1", APP)

    assert iso.table_id == c.TABLE_SHOULD_CHECK_ISO
    assert iso.treatment.action_id == c.ACTION_CHECK_ISO
    assert qos.table_id == c.TABLE_SHOULD_CHECK_QOS
    assert qos.treatment.action_id == c.ACTION_CHECK_QOS
    for rule in (iso, qos):
        assert rule.selector.get(c.FIELD_ETH_IS_VALID).value == b"\x01"
        assert rule.priority == c.MEDIUM_PRIORITY


def test_acl_punt_rule():
    rule = build_acl_punt_rule("d1", APP)

    match = rule.selector.get(c.FIELD_ETH_TYPE)
    assert match.kind == MATCH_TERNARY
    assert match.value == b"\x56\x78"
    assert match.mask == b"\xff\xff"
    assert rule.table_id == c.TABLE_ACL
    assert rule.treatment.action_id == c.ACTION_PUNT_TO_CPU
    assert rule.priority == c.HIGH_PRIORITY


def test_slice_qos_meter_bands():
    meter = build_slice_qos_meter(SliceQoSEntry(3, 8000), "d1", APP)

    assert meter.device_id == "d1"
    assert meter.scope == c.METER_SCOPE_SLICE
    assert meter.index == 3
    assert meter.unit == UNIT_BYTES_PER_SEC
    yellow, red = meter.bands
    assert (yellow.type, yellow.rate, yellow.burst) == (BAND_MARK_YELLOW, 0, 0)
    assert (red.type, red.rate, red.burst) == (BAND_MARK_RED, 1000, 1500)


def test_slice_qos_meter_rate_truncates():
    meter = build_slice_qos_meter(SliceQoSEntry(0, 15), "d1", APP)
    assert meter.bands[1].rate == 1


def test_slice_id_bounds():
    assert build_slice_id_rules(SliceIdEntry("d1", 1, 255), APP)[0].treatment.params[0].value == b"\xff"
    with pytest.raises(MalformedEntry):
        build_slice_id_rules(SliceIdEntry("d1", 1, 256), APP)
    with pytest.raises(MalformedEntry):
        build_slice_id_rules(SliceIdEntry("d1", 1, -1), APP)
    with pytest.raises(MalformedEntry):
        build_slice_qos_meter(SliceQoSEntry(300, 8000), "d1", APP)


def test_port_bounds():
    rules = build_slice_id_rules(SliceIdEntry("d1", 0xFFFFFFFF, 1), APP)
    assert rules[0].selector.get(c.FIELD_IG_PORT).value == b"\xff\xff\xff\xff"
    with pytest.raises(MalformedEntry):
        build_slice_id_rules(SliceIdEntry("d1", 2 ** 32, 1), APP)


def test_pir_bounds():
    with pytest.raises(MalformedEntry):
        build_slice_qos_meter(SliceQoSEntry(1, -8), "d1", APP)
    with pytest.raises(MalformedEntry):
        build_slice_qos_meter(SliceQoSEntry(1, 2 ** 64), "d1", APP)


def test_attack_rejects_non_ipv4():
    entry = attack_entry()
    bad = type(entry)(
        device_id=entry.device_id,
        src_address=ipaddress.IPv6Address("::1"),
        dst_address=entry.dst_address,
        src_address_rewritten=entry.src_address_rewritten,
        dst_address_rewritten=entry.dst_address_rewritten,
    )
    with pytest.raises(MalformedEntry):
        build_attack_rules(bad, APP)
