import pytest

from TsdbBenchFramework.adapters.base import (
    FAILURE, SUCCESS, AggregationKind, BackendResponse, ConfigError, TimeUnit,
)
from TsdbBenchFramework.adapters.tsdb.client import BACKENDS, TsdbClient
from TsdbBenchFramework.adapters.tsdb.config import BackendConfig, load_properties

from conftest import T, FakeTransport, client_with


@pytest.mark.parametrize("backend, props, missing", [
    ("akumuli", {"ip": "h", "tcpPort": 8282}, "httpPort"),
    ("akumuli", {"ip": "h", "httpPort": 8181}, "tcpPort"),
    ("akumuli", {"tcpPort": 8282, "httpPort": 8181}, "ip"),
    ("seriesly", {"port": 3133}, "ip"),
    ("victoriametrics", {"ip": "h"}, "port"),
])
def test_missing_required_option_is_fatal(backend, props, missing):
    with pytest.raises(ConfigError, match=missing):
        TsdbClient(backend).init(props)


@pytest.mark.parametrize("backend", sorted(BACKENDS))
def test_test_mode_skips_required_options(backend):
    client = TsdbClient(backend)
    client.init({"test": True})
    assert client.test
    assert client.insert("cpu", T, 1.0, {"host": "a"}) == SUCCESS
    assert client.read("cpu", T, {"host": ["a"]}) == SUCCESS
    assert client.scan("cpu", T, T + TimeUnit.HOURS.nanos, {}, AggregationKind.COUNT, 1, TimeUnit.MINUTES) == SUCCESS
    client.cleanup()


def test_unknown_backend():
    with pytest.raises(ConfigError):
        TsdbClient("influxdb")


def test_invalid_calls_fail_without_io():
    http = FakeTransport()
    client = client_with("akumuli", {"http": http, "line": FakeTransport()})
    assert client.read("", T, {}) == FAILURE
    assert client.read("cpu", None, {}) == FAILURE
    assert client.scan("cpu", T, None, {}) == FAILURE
    assert client.insert("", T, 1.0, {}) == FAILURE
    assert client.scan("cpu", T, T + 1, {}, "median") == FAILURE
    assert client.scan("cpu", T, T + 1, {}, AggregationKind.AVG, 5, "fortnights") == FAILURE
    assert not http.sent


def test_operations_before_init_raise():
    with pytest.raises(RuntimeError):
        TsdbClient("seriesly").read("cpu", T, {})


def test_cleanup_is_idempotent():
    http = FakeTransport(lambda q: BackendResponse(201))
    client = client_with("seriesly", {"http": http})
    client.cleanup()
    client.cleanup()
    assert http.closed


def test_config_parsing(tmp_path):
    path = tmp_path / "backend.yaml"
    path.write_text("ip: db.local\nport: '3133'\ndbName: Bench\nretries: 5\ntimeout: 2.5\ndebug: yes\n")
    props = load_properties(str(path))
    config = BackendConfig.from_properties(props, ("ip", "port"))
    assert (config.ip, config.port, config.db_name) == ("db.local", 3133, "Bench")
    assert (config.retries, config.timeout, config.debug, config.test) == (5, 2.5, True, False)


def test_config_rejects_bad_values(tmp_path):
    with pytest.raises(ConfigError, match="port"):
        BackendConfig.from_properties({"ip": "h", "port": "abc"})
    with pytest.raises(ConfigError, match="retries"):
        BackendConfig.from_properties({"retries": -1})
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigError):
        load_properties(str(path))
    with pytest.raises(ConfigError):
        BackendConfig.from_file(str(tmp_path / "missing.yaml"))


def test_debug_logs_requests(caplog):
    http = FakeTransport(lambda q: BackendResponse(200, '{"status": "success", "data": {"result": [1]}}'))
    client = client_with("victoriametrics", {"http": http}, debug=True)
    with caplog.at_level("INFO"):
        assert client.read("cpu", T, {"host": ["a"]}) == SUCCESS
    assert 'cpu_value{host=~"a"}' in caplog.text


def test_unconvertible_insert_arguments_fail_without_io():
    line = FakeTransport()
    client = client_with("akumuli", {"http": FakeTransport(), "line": line})
    assert client.insert("cpu", T, "not a number", {"host": "a"}) == FAILURE
    assert client.insert("cpu", T, 1.0, 5) == FAILURE
    assert not line.sent
    assert client.insert("cpu", T, "1.5", {"host": "a"}) == SUCCESS
    assert line.sent[0].body.endswith("+1.5\r\n")
