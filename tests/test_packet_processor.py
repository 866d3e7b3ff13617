import logging

from tpc.entries import PacketInEvent
from tpc.host import PacketContext, PacketProcessor, advisor, director, observer
from tpc.packet_processor import CheckerReportProcessor


class Recorder(PacketProcessor):
    def __init__(self):
        self.seen = []

    def process(self, context):
        self.seen.append(context.in_packet)


def test_checker_report_is_logged_and_blocked(host, engine, caplog):
    with caplog.at_level(logging.INFO):
        context = host.packet_service.process(PacketInEvent("d1", 5, 0x5678))

    assert context.is_handled
    assert "Packet received from checker on device d1/5!" in caplog.text


def test_other_ethertypes_pass_through(host, engine, caplog):
    with caplog.at_level(logging.INFO):
        context = host.packet_service.process(PacketInEvent("d1", 5, 0x0800))

    assert not context.is_handled
    assert "Packet received from checker" not in caplog.text


def test_blocked_packet_skips_later_processors(host, engine):
    later = Recorder()
    host.packet_service.add_processor(later, director(0))

    host.packet_service.process(PacketInEvent("d1", 1, 0x5678))
    host.packet_service.process(PacketInEvent("d1", 1, 0x86DD))

    assert [e.eth_type for e in later.seen] == [0x86DD]


def test_processors_run_in_priority_order(host):
    order = []

    class Tagged(PacketProcessor):
        def __init__(self, tag):
            self.tag = tag

        def process(self, context):
            order.append(self.tag)

    host.packet_service.add_processor(Tagged("observer"), observer(1))
    host.packet_service.add_processor(Tagged("advisor"), advisor(5))
    host.packet_service.add_processor(Tagged("director"), director(0))

    host.packet_service.process(PacketInEvent("d1", 1, 0x0800))

    assert order == ["advisor", "director", "observer"]


def test_deactivated_engine_no_longer_blocks(host, engine):
    engine.deactivate()
    context = host.packet_service.process(PacketInEvent("d1", 5, 0x5678))
    assert not context.is_handled


def test_processor_uses_given_logger(caplog):
    logger = logging.getLogger("tpc.test.checker")
    processor = CheckerReportProcessor(logger=logger)
    context = PacketContext(PacketInEvent("device:leaf2", 3, 0x5678))

    with caplog.at_level(logging.INFO, logger="tpc.test.checker"):
        processor.process(context)

    assert context.is_handled
    assert caplog.records[0].name == "tpc.test.checker"
    # blocking twice reports no change
    assert context.block() is False


def test_checker_report_size_is_logged_at_debug(host, engine, caplog):
    with caplog.at_level(logging.DEBUG):
        host.packet_service.process(PacketInEvent("d1", 2, 0x5678, b"\x00" * 14))

    assert "Checker report from d1/2: 14 bytes" in caplog.text
