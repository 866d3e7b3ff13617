#!/usr/bin/env python3

"""
Standalone dry run: the engine on the in-memory host, behind the REST API.

No switches are programmed. Useful to exercise the REST surface and watch
which table entries and meters a request produces.

Usage:
  python -m tpc --device device:leaf1 --device device:leaf2 --port 9090
  curl -X POST http://127.0.0.1:9090/tpc/add_slice_qos -d '{"q":{"sliceId":"3","pir":"8000"}}'
"""

from __future__ import annotations

import argparse
import logging
import time

from tpc.config import TPC_CONFIG, validate_config
from tpc.engine import TpcEngine
from tpc.host import InMemoryHost
from tpc.rest import start_rest_server


def run(devices, host: str, port: int, remote_masters, conf):
    logger = logging.getLogger("tpc")

    mem = InMemoryHost(devices, remote_masters=remote_masters)
    engine = TpcEngine(
        **mem.services(),
        logger=logger,
        app_name=conf["app_name"],
        cleanup_retry_times=conf["cleanup"]["retry_times"],
        cleanup_delay_ms=conf["cleanup"]["delay_ms"],
        mastership_filter_all=conf["mastership_filter_all"],
    )
    engine.activate()

    httpd = start_rest_server(
        engine,
        host=host,
        port=port,
        mount=conf["rest"]["mount"],
        enable_slice_checker=conf["enable_slice_checker"],
    )

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        httpd.shutdown()
        logger.info("Installed flow rules: %d, meters: %d",
                    len(mem.flow_rule_service.installed()), len(mem.meter_service.get_meters()))
        engine.deactivate()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="TPC flow/meter engine on an in-memory host (dry run)."
    )
    parser.add_argument(
        "--device",
        action="append",
        default=[],
        help="Available device id (repeatable), e.g. device:leaf1",
    )
    parser.add_argument(
        "--remote-master",
        action="append",
        default=[],
        help="Device id mastered by another instance (repeatable)",
    )
    parser.add_argument(
        "--host",
        default=TPC_CONFIG["rest"]["host"],
        help="REST bind address",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=TPC_CONFIG["rest"]["port"],
        help="REST port",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level",
    )

    args = parser.parse_args()
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    run(args.device, args.host, args.port, args.remote_master, validate_config(TPC_CONFIG))
