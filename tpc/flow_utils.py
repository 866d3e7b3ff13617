# tpc/flow_utils.py

"""
OpenFlow rendering of pipeline table entries, and flow programming helpers.

Only entries with an OpenFlow counterpart are written to a datapath: the ACL
punt rule (eth_type match, output to CONTROLLER). The slice, checker and
attack tables belong to the P4 program; openflow_match() returns None for
them.

Cookie policy:
- every flow written by the app carries the app cookie,
- deletes are always cookie-scoped, so flows of other apps are never touched.
"""

from typing import Optional

from tpc import constants as c
from tpc.pipeline import FlowRule

COOKIE_MASK_ALL = 0xFFFFFFFFFFFFFFFF


# -------------------------------------------------------------------
# Match / action builders
# -------------------------------------------------------------------
def openflow_match(parser, rule: FlowRule):
    """
    OFPMatch for a table entry, or None when the entry has no OpenFlow form.

    eth_type is not maskable in OpenFlow 1.3, so only a full mask is accepted.
    """
    if rule.table_id != c.TABLE_ACL:
        return None
    m = rule.selector.get(c.FIELD_ETH_TYPE)
    if m is None:
        return None
    if m.mask is not None:
        assert int.from_bytes(m.mask, "big") == c.CHECKER_REPORT_ETH_MASK, \
            f"eth_type mask {m.mask!r} cannot be expressed in OpenFlow 1.3"
    return parser.OFPMatch(eth_type=m.as_int())


def build_punt_actions(datapath):
    ofproto = datapath.ofproto
    parser = datapath.ofproto_parser
    return [parser.OFPActionOutput(ofproto.OFPP_CONTROLLER, ofproto.OFPCML_NO_BUFFER)]


# -------------------------------------------------------------------
# Flow programming helpers
# -------------------------------------------------------------------
def add_flow(datapath, priority: int, match, actions, cookie: Optional[int] = None):
    """Add a permanent flow entry with an APPLY_ACTIONS instruction."""
    assert cookie is not None, "add_flow: cookie must be provided (do not rely on cookie=0)"

    ofproto = datapath.ofproto
    parser = datapath.ofproto_parser

    inst = [parser.OFPInstructionActions(ofproto.OFPIT_APPLY_ACTIONS, actions)]

    mod = parser.OFPFlowMod(
        datapath=datapath,
        cookie=int(cookie),
        priority=int(priority),
        match=match,
        instructions=inst,
        idle_timeout=0,
        hard_timeout=0,
    )
    datapath.send_msg(mod)


def delete_flow_strict(datapath, priority: int, match, cookie: int):
    """Delete the one flow with exactly this (match, priority), if it carries the cookie."""
    ofproto = datapath.ofproto
    parser = datapath.ofproto_parser

    mod = parser.OFPFlowMod(
        datapath=datapath,
        command=ofproto.OFPFC_DELETE_STRICT,
        out_port=ofproto.OFPP_ANY,
        out_group=ofproto.OFPG_ANY,
        cookie=int(cookie),
        cookie_mask=COOKIE_MASK_ALL,
        priority=int(priority),
        match=match,
    )
    datapath.send_msg(mod)


def delete_flows_for_cookie(datapath, cookie: int, cookie_mask: int = COOKIE_MASK_ALL):
    """Delete every flow, in all tables, that matches the given cookie (masked)."""
    ofproto = datapath.ofproto
    parser = datapath.ofproto_parser

    mod = parser.OFPFlowMod(
        datapath=datapath,
        command=ofproto.OFPFC_DELETE,
        table_id=ofproto.OFPTT_ALL,
        out_port=ofproto.OFPP_ANY,
        out_group=ofproto.OFPG_ANY,
        cookie=int(cookie),
        cookie_mask=int(cookie_mask),
        match=parser.OFPMatch(),
    )
    datapath.send_msg(mod)
