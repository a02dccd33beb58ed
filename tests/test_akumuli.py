import json
import socket
import threading

import pytest

from TsdbBenchFramework.adapters.base import (
    FAILURE, SUCCESS, AggregationKind, AggregationSpec, BackendQuery, BackendResponse, MetricPoint, Outcome,
    TimeRange, TimeUnit,
)
from TsdbBenchFramework.adapters.tsdb.akumuli_adapter import AkumuliCodec, insert_frame
from TsdbBenchFramework.adapters.tsdb.client import TsdbClient
from TsdbBenchFramework.adapters.tsdb.config import BackendConfig

from conftest import T, FakeTransport, client_with

TS = "20231114T221320.123456789"


@pytest.fixture
def codec():
    return AkumuliCodec(BackendConfig(ip="db", tcp_port=8282, http_port=8181))


def test_read_query_omits_where_without_tags(codec):
    q = codec.encode_read("cpu", T, {})
    assert q.method == "POST" and q.path == "/api/query" and q.channel == "http"
    assert json.loads(q.body) == {
        "metric": "cpu",
        "range": {"from": TS, "to": TS},
        "output": {"format": "csv"},
    }
    assert q.expected == TS


def test_read_query_tag_encoding_is_order_independent(codec):
    a = codec.encode_read("cpu", T, {"host": ["b", "a"], "dc": ["eu"]})
    b = codec.encode_read("cpu", T, {"dc": ["eu"], "host": ["a", "b"]})
    assert a.body == b.body
    assert json.loads(a.body)["where"] == {"dc": ["eu"], "host": ["a", "b"]}


def test_scan_query_shape(codec):
    q = codec.encode_scan("cpu", TimeRange(T, T + 10 * TimeUnit.MINUTES.nanos), {"host": ["a"]},
                          AggregationSpec(AggregationKind.AVG, (30, TimeUnit.SECONDS)))
    doc = json.loads(q.body)
    assert doc["sample"] == [{"name": "paa"}]
    assert doc["group-by"] == {"time": "30s"}
    assert doc["where"] == {"host": ["a"]}
    assert doc["range"]["from"] == TS


def test_scan_without_bucket_synthesizes_single_bucket(codec):
    q = codec.encode_scan("cpu", TimeRange(T, T + 2 * TimeUnit.DAYS.nanos), {}, AggregationSpec())
    doc = json.loads(q.body)
    assert doc["group-by"] == {"time": "3d"}
    assert doc["sample"] == [{"name": "max-paa"}]
    assert "where" not in doc


@pytest.mark.parametrize("kind", [AggregationKind.COUNT, AggregationKind.SUM])
def test_count_and_sum_fall_back_to_default_sampler(codec, kind):
    window = TimeRange(T, T + TimeUnit.HOURS.nanos)
    fallback = codec.encode_scan("cpu", window, {"host": ["a"]}, AggregationSpec(kind, (1, TimeUnit.MINUTES)))
    default = codec.encode_scan("cpu", window, {"host": ["a"]},
                                AggregationSpec(AggregationKind.NONE, (1, TimeUnit.MINUTES)))
    assert fallback == default


def test_insert_frame():
    point = MetricPoint("cpu", T, 42.0, {"rack": "r1", "host": "a"})
    assert insert_frame(point) == "+cpu host=a rack=r1\r\n:1700000000123456789\r\n+42.0\r\n"
    assert insert_frame(MetricPoint("cpu", T, 1)) == "+cpu\r\n:1700000000123456789\r\n+1.0\r\n"


def _read_response(codec, body):
    q = codec.encode_read("cpu", T, {})
    return codec.verify(q, BackendResponse(200, body))


def test_read_verifier(codec):
    assert _read_response(codec, f"cpu host=a,{TS},42\r\n") is Outcome.FOUND
    assert _read_response(codec, f" cpu host=a , {TS} , 42 ") is Outcome.FOUND
    assert _read_response(codec, "") is Outcome.NOT_FOUND
    assert _read_response(codec, f"cpu host=a,{TS},42\r\ncpu host=b,{TS},43\r\n") is Outcome.MISMATCH
    assert _read_response(codec, "cpu host=a,20231114T221320.000000000,42\r\n") is Outcome.MISMATCH
    assert _read_response(codec, "-not found\r\n") is Outcome.MALFORMED
    assert _read_response(codec, "<html>oops</html>") is Outcome.MALFORMED


def test_scan_verifier_needs_one_row(codec, caplog):
    q = codec.encode_scan("cpu", TimeRange(T, T + TimeUnit.HOURS.nanos), {}, AggregationSpec())
    assert codec.verify(q, BackendResponse(200, f"cpu,{TS},1.5\r\n")) is Outcome.FOUND
    assert codec.verify(q, BackendResponse(200, "")) is Outcome.NOT_FOUND
    assert not [r for r in caplog.records if r.levelname == "ERROR"]


def test_client_read_and_scan_over_fake_http():
    http = FakeTransport(lambda q: BackendResponse(200, f"cpu host=a,{TS},42.0\r\n"))
    line = FakeTransport()
    client = client_with("akumuli", {"http": http, "line": line})
    assert client.read("cpu", T, {"host": ["a"]}) == SUCCESS
    assert client.scan("cpu", T, T + TimeUnit.HOURS.nanos, {}, AggregationKind.SUM, 1, TimeUnit.MINUTES) == SUCCESS
    assert len(http.sent) == 2 and not line.sent
    client.cleanup()
    assert http.closed and line.closed


def test_client_insert_is_fire_and_forget():
    line = FakeTransport(lambda q: BackendResponse(0))
    client = client_with("akumuli", {"http": FakeTransport(), "line": line})
    assert client.insert("cpu", T, 42.0, {"host": "a"}) == SUCCESS
    assert line.sent[0].body.startswith("+cpu host=a\r\n")


def test_insert_writes_frame_to_ingestion_socket():
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    received = []

    def accept():
        conn, _ = listener.accept()
        with conn:
            while True:
                chunk = conn.recv(4096)
                if not chunk:
                    break
                received.append(chunk)

    thread = threading.Thread(target=accept, daemon=True)
    thread.start()
    client = TsdbClient("akumuli")
    client.init({"ip": "127.0.0.1", "tcpPort": listener.getsockname()[1], "httpPort": 1})
    try:
        assert client.insert("cpu", T, 42.0, {"host": "a"}) == SUCCESS
        assert client.insert("cpu", T + 1, 43.0, {"host": "a"}) == SUCCESS
    finally:
        client.cleanup()
        thread.join(timeout=5.0)
        listener.close()
    assert b"".join(received) == (
        b"+cpu host=a\r\n:1700000000123456789\r\n+42.0\r\n"
        b"+cpu host=a\r\n:1700000000123456790\r\n+43.0\r\n"
    )


def test_end_to_end_tag_mismatch_depends_on_backend_answer():
    # akumuli filters server side; an empty csv for host=b is a miss
    def respond(q: BackendQuery):
        where = json.loads(q.body).get("where", {})
        return BackendResponse(200, "" if where.get("host") == ["b"] else f"cpu host=a,{TS},42.0\r\n")

    client = client_with("akumuli", {"http": FakeTransport(respond), "line": FakeTransport()})
    assert client.insert("cpu", T, 42.0, {"host": "a"}) == SUCCESS
    assert client.read("cpu", T, {"host": ["a"]}) == SUCCESS
    assert client.read("cpu", T, {"host": ["b"]}) == FAILURE
