# tpc/rest.py

"""
REST surface for the engine.

API (relative to the mount point, default /tpc):
  GET  /flush                 -> flush_flow_rules
  GET  /turn_on_checking      -> turn_on_checking
  GET  /turn_off_checking     -> turn_off_checking
  POST /add_attack            -> post_attack_entries
  POST /add_slice_id          -> post_slice_id_entries
  POST /add_slice_qos         -> post_slice_qos_entries

Bodies are one JSON object; its keys are row names (ignored), its values are
entry objects. Rows with a missing field or an unparseable value are dropped
and the rest of the batch is processed.

Responses:
  204 on success, 400 on malformed JSON, 404 on unknown or disabled routes,
  500 when a host service call fails.
"""

from __future__ import annotations

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, List, Optional
from urllib.parse import urlparse

from tpc.entries import (
    AttackEntry,
    SliceIdEntry,
    SliceQoSEntry,
    ipv4_from_string,
    pir_from_string,
    port_number_from_string,
    slice_id_from_string,
)
from tpc.errors import HostUnavailable, MalformedEntry

LOG = logging.getLogger(__name__)


# -------------------------------------------------------------------
# JSON decoding
# -------------------------------------------------------------------
def parse_body(raw: bytes) -> dict:
    """Decode the request body; raises ValueError when it is not a JSON object."""
    try:
        node = json.loads(raw.decode("utf-8") if raw else "")
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Unable to parse add request: {e}") from e
    if not isinstance(node, dict):
        raise ValueError("Unable to parse add request: body must be a JSON object")
    return node


def _text(row: Any, name: str) -> Optional[str]:
    if not isinstance(row, dict):
        return None
    value = row.get(name)
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)


def _decode_rows(node: dict, fields: List[str], make: Callable[..., Any], what: str) -> list:
    entries = []
    for row_name, row in node.items():
        values = [_text(row, f) for f in fields]
        if any(v is None for v in values):
            LOG.info("Dropping %s row %r: missing field", what, row_name)
            continue
        try:
            entries.append(make(*values))
        except MalformedEntry as e:
            LOG.info("Dropping %s row %r: %s", what, row_name, e)
    return entries


def decode_attack_entries(node: dict) -> List[AttackEntry]:
    def make(device_id, src, dst, src_rw, dst_rw):
        return AttackEntry(
            device_id=device_id,
            src_address=ipv4_from_string(src),
            dst_address=ipv4_from_string(dst),
            src_address_rewritten=ipv4_from_string(src_rw),
            dst_address_rewritten=ipv4_from_string(dst_rw),
        )

    return _decode_rows(
        node,
        ["deviceId", "srcAddress", "dstAddress", "srcAddressRewritten", "dstAddressRewritten"],
        make,
        "attack",
    )


def decode_slice_id_entries(node: dict) -> List[SliceIdEntry]:
    def make(device_id, port, slice_id):
        return SliceIdEntry(
            device_id=device_id,
            port_number=port_number_from_string(port),
            slice_id=slice_id_from_string(slice_id),
        )

    return _decode_rows(node, ["deviceId", "portNumber", "sliceId"], make, "slice id")


def decode_slice_qos_entries(node: dict) -> List[SliceQoSEntry]:
    def make(slice_id, pir):
        return SliceQoSEntry(slice_id=slice_id_from_string(slice_id), pir=pir_from_string(pir))

    return _decode_rows(node, ["sliceId", "pir"], make, "slice QoS")


# -------------------------------------------------------------------
# REST server
# -------------------------------------------------------------------
def make_rest_handler(engine, *, mount: str = "/tpc", enable_slice_checker: bool = True):
    mount = "/" + mount.strip("/") if mount.strip("/") else ""

    get_routes = {"/flush": engine.flush_flow_rules}
    post_routes = {"/add_attack": (decode_attack_entries, engine.post_attack_entries)}

    if enable_slice_checker:
        get_routes["/turn_on_checking"] = engine.turn_on_checking
        get_routes["/turn_off_checking"] = engine.turn_off_checking
        post_routes["/add_slice_id"] = (decode_slice_id_entries, engine.post_slice_id_entries)
        post_routes["/add_slice_qos"] = (decode_slice_qos_entries, engine.post_slice_qos_entries)

    class Handler(BaseHTTPRequestHandler):
        def _send(self, code: int, body: str = ""):
            self.send_response(code)
            if body:
                data = body.encode("utf-8")
                self.send_header("Content-Type", "text/plain; charset=utf-8")
                self.send_header("Content-Length", str(len(data)))
                self.end_headers()
                self.wfile.write(data)
            else:
                self.send_header("Content-Length", "0")
                self.end_headers()

        def _route(self) -> Optional[str]:
            path = urlparse(self.path).path.rstrip("/")
            if not path.startswith(mount + "/"):
                return None
            return path[len(mount):]

        def _run(self, op, *args):
            try:
                op(*args)
            except HostUnavailable as e:
                self._send(500, f"ERROR {e}\n")
                return
            except Exception as e:
                LOG.exception("Request %s failed", self.path)
                self._send(500, f"ERROR {e}\n")
                return
            self._send(204)

        def do_GET(self):
            op = get_routes.get(self._route())
            if op is None:
                self._send(404, "Not found\n")
                return
            self._run(op)

        def do_POST(self):
            route = post_routes.get(self._route())
            try:
                length = int(self.headers.get("Content-Length") or 0)
            except ValueError:
                self._send(400, "ERROR invalid Content-Length\n")
                return
            raw = self.rfile.read(length) if length > 0 else b""

            if route is None:
                self._send(404, "Not found\n")
                return

            decode, op = route
            try:
                node = parse_body(raw)
            except ValueError as e:
                self._send(400, f"ERROR {e}\n")
                return
            self._run(op, decode(node))

        def log_message(self, fmt, *args):
            LOG.debug("REST %s - %s", self.address_string(), fmt % args)

    return Handler


def start_rest_server(engine, *, host: str = "127.0.0.1", port: int = 9090, mount: str = "/tpc",
                      enable_slice_checker: bool = True) -> HTTPServer:
    """
    Start the REST server in a background thread.

    port=0 binds an ephemeral port; read it back from server_address.
    """
    handler = make_rest_handler(engine, mount=mount, enable_slice_checker=enable_slice_checker)
    httpd = HTTPServer((host, int(port)), handler)

    t = threading.Thread(target=httpd.serve_forever, daemon=True)
    t.start()

    LOG.info("REST API listening on http://%s:%s%s", host, httpd.server_address[1], mount)
    return httpd
