# tpc/constants.py

"""
Identifier catalog.

Priorities, cleanup timing, the checker report EtherType and every pipeline
identifier the engine references. Pipeline names are opaque strings owned by
the P4 program; they are never parsed here.
"""

APP_NAME = "org.onosproject.tpc-app"

# -------------------------------------------------------------------
# Flow priorities
# -------------------------------------------------------------------
HIGH_PRIORITY = 3000
MEDIUM_PRIORITY = 7000
DEFAULT_PRIORITY = 10000

# -------------------------------------------------------------------
# Startup cleanup
# -------------------------------------------------------------------
CLEAN_UP_DELAY = 2000  # milliseconds
DEFAULT_CLEAN_UP_RETRY_TIMES = 10

# -------------------------------------------------------------------
# Checker reports punted to the controller
# -------------------------------------------------------------------
CHECKER_REPORT_ETH_TYPE = 0x5678
CHECKER_REPORT_ETH_MASK = 0xFFFF

# -------------------------------------------------------------------
# Tables
# -------------------------------------------------------------------
TABLE_INGRESS_SLICE_LOOKUP = "FabricIngress.init_control.tb_lookup_static_slices"
TABLE_EGRESS_SLICE_LOOKUP = "FabricEgress.checker_control.tb_lookup_static_slices"
TABLE_CHECK_FIRST_HOP = "FabricIngress.init_control.tb_check_first_hop"
TABLE_CHECK_LAST_HOP = "FabricEgress.checker_control.tb_check_last_hop"
TABLE_SHOULD_CHECK_ISO = "FabricEgress.checker_control.tb_should_check_iso"
TABLE_SHOULD_CHECK_QOS = "FabricEgress.checker_control.tb_should_check_qos"
TABLE_ATTACK = "FabricIngress.attack_ingress.attack"
TABLE_ACL = "FabricIngress.acl.acl"

# -------------------------------------------------------------------
# Match fields
# -------------------------------------------------------------------
FIELD_IG_PORT = "ig_port"
FIELD_EG_PORT = "eg_port"
FIELD_ETH_IS_VALID = "eth_is_valid"
FIELD_IPV4_SRC = "ipv4_src"
FIELD_IPV4_DST = "ipv4_dst"
FIELD_ETH_TYPE = "eth_type"

# -------------------------------------------------------------------
# Actions
# -------------------------------------------------------------------
ACTION_INGRESS_SLICE_LOOKUP = "FabricIngress.init_control.lookup_key_in_port_in_slices"
ACTION_EGRESS_SLICE_LOOKUP = "FabricEgress.checker_control.lookup_key_eg_port_in_slices"
ACTION_SET_FIRST_HOP = "FabricIngress.init_control.set_first_hop"
ACTION_SET_LAST_HOP = "FabricEgress.checker_control.set_last_hop"
ACTION_CHECK_ISO = "FabricEgress.checker_control.check_iso"
ACTION_CHECK_QOS = "FabricEgress.checker_control.check_qos"
ACTION_ADD_METADATA_AND_DUPLICATE = "FabricIngress.attack_ingress.add_metadata_and_duplicate"
ACTION_PUNT_TO_CPU = "FabricIngress.acl.punt_to_cpu"

# -------------------------------------------------------------------
# Action parameters
# -------------------------------------------------------------------
PARAM_IG_SLICE_ID = "ig_slice_id"
PARAM_EG_SLICE_ID = "eg_slice_id"
PARAM_IPV4_SRC_ADDR = "ipv4_src_addr"
PARAM_IPV4_DST_ADDR = "ipv4_dst_addr"

# -------------------------------------------------------------------
# Meters
# -------------------------------------------------------------------
METER_SCOPE_SLICE = "FabricEgress.checker_control.slice_meter"
METER_RED_BURST_BYTES = 1500

# -------------------------------------------------------------------
# OpenFlow
# -------------------------------------------------------------------
# Cookie on every flow the app writes to an OpenFlow datapath ("TPC").
OF_APP_COOKIE = 0x0000000000545043
