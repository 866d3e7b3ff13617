import http.client
import json
import urllib.error
import urllib.request

import pytest

from tpc import constants as c
from tpc.entries import SliceQoSEntry
from tpc.host import InMemoryHost
from tpc.rest import decode_attack_entries, decode_slice_id_entries, parse_body, start_rest_server

from conftest import calls_of

ATTACK_ROW = {
    "deviceId": "device:leaf1",
    "srcAddress": "10.0.0.1",
    "dstAddress": "10.0.0.2",
    "srcAddressRewritten": "10.0.0.3",
    "dstAddressRewritten": "10.0.0.4",
}


def request(url, method="GET", body=None):
    if isinstance(body, dict):
        body = json.dumps(body).encode("utf-8")
    req = urllib.request.Request(url, data=body, method=method,
                                 headers={"Content-Type": "application/json"})
    try:
        with urllib.request.urlopen(req, timeout=5) as resp:
            return resp.status
    except urllib.error.HTTPError as e:
        return e.code


@pytest.fixture
def rest_host():
    return InMemoryHost(["device:leaf1", "device:leaf2"])


@pytest.fixture
def rest_engine(rest_host, make_engine):
    engine = make_engine(rest_host)
    engine.activate()
    return engine


@pytest.fixture
def serve():
    servers = []

    def _serve(engine, **kwargs):
        httpd = start_rest_server(engine, port=0, **kwargs)
        servers.append(httpd)
        host, port = httpd.server_address[:2]
        return f"http://{host}:{port}"

    yield _serve

    for httpd in servers:
        httpd.shutdown()
        httpd.server_close()


@pytest.fixture
def base_url(rest_engine, serve):
    return serve(rest_engine) + "/tpc"


def test_add_attack(rest_host, base_url):
    assert request(base_url + "/add_attack", "POST", {"a": ATTACK_ROW}) == 204

    (batch,) = calls_of(rest_host.flow_rule_service, "apply")
    assert len(batch) == 1
    assert batch[0].table_id == c.TABLE_ATTACK
    assert batch[0].selector.get(c.FIELD_IPV4_SRC).as_int() == 0x0A000001


def test_add_slice_id(rest_host, base_url):
    body = {"p": {"deviceId": "device:leaf1", "portNumber": "5", "sliceId": "2"}}
    assert request(base_url + "/add_slice_id", "POST", body) == 204

    (batch,) = calls_of(rest_host.flow_rule_service, "apply")
    assert len(batch) == 4
    assert batch[0].selector.get(c.FIELD_IG_PORT).as_int() == 5
    assert batch[0].treatment.param(c.PARAM_IG_SLICE_ID).as_int() == 2


def test_add_slice_id_with_logical_port(rest_host, base_url):
    body = {"p": {"deviceId": "device:leaf1", "portNumber": "CONTROLLER", "sliceId": "1"}}
    assert request(base_url + "/add_slice_id", "POST", body) == 204

    (batch,) = calls_of(rest_host.flow_rule_service, "apply")
    assert batch[0].selector.get(c.FIELD_IG_PORT).value == b"\xff\xff\xff\xfd"


def test_add_slice_qos(rest_host, base_url):
    assert request(base_url + "/add_slice_qos", "POST", {"q": {"sliceId": "3", "pir": "8000"}}) == 204

    submits = calls_of(rest_host.meter_service, "submit")
    assert sorted(m.device_id for m in submits) == ["device:leaf1", "device:leaf2"]
    assert all(m.index == 3 and m.bands[1].rate == 1000 for m in submits)


def test_checking_on_off(rest_host, base_url):
    assert request(base_url + "/turn_on_checking") == 204
    installed = {r.table_id for r in rest_host.flow_rule_service.installed()}
    assert installed == {c.TABLE_ACL, c.TABLE_SHOULD_CHECK_ISO, c.TABLE_SHOULD_CHECK_QOS}

    assert request(base_url + "/turn_off_checking") == 204
    installed = {r.table_id for r in rest_host.flow_rule_service.installed()}
    assert installed == {c.TABLE_ACL}


def test_flush(rest_host, rest_engine, base_url):
    rest_engine.post_slice_qos_entries([SliceQoSEntry(3, 8000)])
    assert request(base_url + "/add_attack", "POST", {"a": ATTACK_ROW}) == 204

    assert request(base_url + "/flush") == 204

    assert rest_host.flow_rule_service.installed() == []
    assert rest_host.meter_service.get_meters() == []


def test_bad_rows_are_dropped(rest_host, base_url):
    body = {
        "good": ATTACK_ROW,
        "missing": {k: v for k, v in ATTACK_ROW.items() if k != "dstAddress"},
        "bad_ip": dict(ATTACK_ROW, srcAddress="10.0.0.300"),
        "not_an_object": "x",
    }
    assert request(base_url + "/add_attack", "POST", body) == 204

    (batch,) = calls_of(rest_host.flow_rule_service, "apply")
    assert len(batch) == 1


def test_out_of_range_slice_id_row_is_dropped(rest_host, base_url):
    body = {"q": {"sliceId": "256", "pir": "8000"}}
    assert request(base_url + "/add_slice_qos", "POST", body) == 204
    assert rest_host.meter_service.calls == []


def test_malformed_json_is_rejected(rest_host, base_url):
    assert request(base_url + "/add_attack", "POST", b"{not json") == 400
    assert request(base_url + "/add_attack", "POST", b"[1, 2]") == 400
    assert rest_host.flow_rule_service.calls == []


def test_unknown_route(base_url):
    assert request(base_url + "/nope") == 404
    assert request(base_url + "/add_attack") == 404
    assert request(base_url + "/flush", "POST", {}) == 404


def test_host_failure_maps_to_500(rest_host, base_url):
    rest_host.flow_rule_service.available = False
    assert request(base_url + "/flush") == 500
    assert request(base_url + "/add_attack", "POST", {"a": ATTACK_ROW}) == 500


def test_slice_checker_routes_can_be_disabled(rest_engine, serve):
    base = serve(rest_engine, enable_slice_checker=False) + "/tpc"

    assert request(base + "/turn_on_checking") == 404
    assert request(base + "/turn_off_checking") == 404
    assert request(base + "/add_slice_id", "POST", {}) == 404
    assert request(base + "/add_slice_qos", "POST", {}) == 404
    assert request(base + "/add_attack", "POST", {}) == 204
    assert request(base + "/flush") == 204


def test_parse_body():
    assert parse_body(b'{"a": {}}') == {"a": {}}
    for raw in (b"", b"nope", b'"text"', b"\xff\xfe"):
        with pytest.raises(ValueError):
            parse_body(raw)


def test_decoders_accept_numbers():
    node = {"p": {"deviceId": "d1", "portNumber": 7, "sliceId": 4}}
    (entry,) = decode_slice_id_entries(node)
    assert (entry.device_id, entry.port_number, entry.slice_id) == ("d1", 7, 4)

    assert decode_attack_entries({}) == []


def test_bad_content_length_is_rejected(rest_host, rest_engine, serve):
    base = serve(rest_engine)
    host, port = base[len("http://"):].split(":")

    conn = http.client.HTTPConnection(host, int(port), timeout=5)
    try:
        conn.request("POST", "/tpc/add_attack", body=None,
                     headers={"Content-Type": "application/json", "Content-Length": "abc"})
        resp = conn.getresponse()
        resp.read()
    finally:
        conn.close()

    assert resp.status == 400
    assert rest_host.flow_rule_service.calls == []
