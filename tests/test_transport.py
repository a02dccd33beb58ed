import pytest
import requests

from TsdbBenchFramework.adapters.base import FAILURE, SUCCESS, BackendQuery, TransportError
from TsdbBenchFramework.adapters.tsdb.transport import HttpTransport, LineTransport, RetryPolicy

from conftest import T, client_with


class FlakySession:
    """requests.Session stand-in failing the first ``failures`` calls with ``error``."""

    def __init__(self, failures, error=requests.ConnectionError("connection refused")):
        self.failures = failures
        self.error = error
        self.calls = []
        self.closed_responses = 0

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if len(self.calls) <= self.failures:
            raise self.error
        session = self

        class _Response:
            status_code = 200
            text = '{"ok": true}'

            def close(self):
                session.closed_responses += 1

        return _Response()

    def close(self):
        pass


QUERY = BackendQuery(operation="read", path="/q", params=[("a", "1")])


@pytest.mark.parametrize("retries", [0, 1, 3, 5])
def test_retry_exhaustion_makes_retries_plus_one_attempts(retries):
    session = FlakySession(failures=100)
    transport = HttpTransport("http://db:1", RetryPolicy(retries), session=session)
    with pytest.raises(TransportError):
        transport.send(QUERY)
    assert len(session.calls) == retries + 1


def test_transient_failure_recovers_within_budget():
    session = FlakySession(failures=2, error=requests.Timeout("slow"))
    transport = HttpTransport("http://db:1/", RetryPolicy(3), session=session)
    response = transport.send(QUERY)
    assert response.status_code == 200 and response.body == '{"ok": true}'
    assert len(session.calls) == 3
    assert session.calls[-1][1] == "http://db:1/q"
    assert session.closed_responses == 1


def test_non_io_errors_are_not_retried():
    session = FlakySession(failures=100, error=requests.exceptions.InvalidURL("bad url"))
    transport = HttpTransport("http://db:1", RetryPolicy(3), session=session)
    with pytest.raises(TransportError):
        transport.send(QUERY)
    assert len(session.calls) == 1


@pytest.mark.parametrize("error", [
    requests.TooManyRedirects("Exceeded 30 redirects."),
    requests.exceptions.ContentDecodingError("bad gzip"),
    requests.exceptions.RetryError("pool exhausted"),
])
def test_client_reports_failure_on_non_io_request_errors(error):
    session = FlakySession(failures=100, error=error)
    http = HttpTransport("http://db:1", RetryPolicy(3), session=session)
    client = client_with("victoriametrics", {"http": http})
    assert client.read("cpu", T, {}) == FAILURE
    assert client.scan("cpu", T, T + 1, {}) == FAILURE
    assert len(session.calls) == 2


def test_client_reports_failure_after_exhaustion():
    session = FlakySession(failures=100)
    http = HttpTransport("http://db:1", RetryPolicy(2), session=session)
    client = client_with("victoriametrics", {"http": http})
    assert client.read("cpu", T, {}) == FAILURE
    assert len(session.calls) == 3


def test_default_policy():
    assert RetryPolicy().retries == 3
    assert RetryPolicy().attempts == 4


def test_line_transport_refused_connection():
    # port 1 on loopback is not listening in any sane test environment
    with pytest.raises(TransportError):
        LineTransport("127.0.0.1", 1)


def test_client_test_mode_does_no_io():
    client = client_with("akumuli", {}, test=True)
    assert client.insert("cpu", T, 1.0, {}) == SUCCESS
    assert client.read("cpu", T, {}) == SUCCESS
    assert client.scan("cpu", T, T + 1, {}) == SUCCESS
