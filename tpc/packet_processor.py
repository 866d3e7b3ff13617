# tpc/packet_processor.py

"""
Packet-in processor for checker reports.

Checker reports are Ethernet frames with EtherType 0x5678, punted to the
controller by the ACL rule. They are logged and blocked; nothing else in
the frame is parsed.
"""

from __future__ import annotations

import logging

from tpc.constants import CHECKER_REPORT_ETH_TYPE
from tpc.host import PacketContext, PacketProcessor


class CheckerReportProcessor(PacketProcessor):
    def __init__(self, logger=None):
        self.logger = logger or logging.getLogger(__name__)

    def process(self, context: PacketContext):
        if context.in_packet.eth_type != CHECKER_REPORT_ETH_TYPE:
            return

        device_id, port = context.received_from
        self.logger.info("Packet received from checker on device %s/%s!", device_id, port)
        self.logger.debug("Checker report from %s/%s: %d bytes", device_id, port, len(context.in_packet.data))
        context.block()
