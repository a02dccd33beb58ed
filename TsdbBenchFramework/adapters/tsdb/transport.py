#execute encoded backend queries over http, a raw tcp ingestion socket or the influxdb client
import logging
import socket
from dataclasses import dataclass
from typing import Optional

import requests
from influxdb import InfluxDBClient
from influxdb.exceptions import InfluxDBClientError, InfluxDBServerError

from TsdbBenchFramework.adapters.base import BackendQuery, BackendResponse, TransportError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry on transient I/O errors, no backoff between attempts."""

    retries: int = 3

    @property
    def attempts(self) -> int:
        return self.retries + 1


class HttpTransport:
    RETRYABLE = (
        requests.ConnectionError,
        requests.Timeout,
        requests.exceptions.ChunkedEncodingError,
    )

    def __init__(self, base_url: str, retry: RetryPolicy = RetryPolicy(), timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.base = base_url.rstrip("/")
        self.retry = retry
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, query: BackendQuery) -> BackendResponse:
        url = f"{self.base}{query.path}"
        last_error: Optional[Exception] = None
        for attempt in range(1, self.retry.attempts + 1):
            r = None
            try:
                r = self.session.request(
                    query.method,
                    url,
                    params=query.params or None,
                    data=query.body.encode("utf-8") if query.body is not None else None,
                    headers=query.headers or None,
                    timeout=self.timeout,
                )
                return BackendResponse(status_code=r.status_code, body=r.text)
            except self.RETRYABLE as e:
                last_error = e
                log.warning("attempt %d/%d to %s failed: %s", attempt, self.retry.attempts, url, e)
            except requests.RequestException as e:
                log.error("%s %s failed, not retrying: %s", query.method, url, e)
                raise TransportError(f"{query.method} {url} failed: {e}") from e
            finally:
                if r is not None:
                    r.close()
        log.error("connection to %s failed %d times", url, self.retry.attempts)
        raise TransportError(f"{query.method} {url} failed after {self.retry.attempts} attempts") from last_error

    def close(self) -> None:
        self.session.close()


class LineTransport:
    """Long-lived tcp connection for fire-and-forget ingestion frames; nothing is read back."""

    def __init__(self, host: str, port: int, timeout: Optional[float] = None):
        self.address = (host, port)
        try:
            self._sock: Optional[socket.socket] = socket.create_connection(self.address, timeout=timeout)
        except OSError as e:
            raise TransportError(f"can't connect to {host}:{port}: {e}") from e
        self._sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

    def send(self, query: BackendQuery) -> BackendResponse:
        if self._sock is None:
            raise TransportError(f"connection to {self.address[0]}:{self.address[1]} already closed")
        try:
            self._sock.sendall((query.body or "").encode("utf-8"))
        except OSError as e:
            log.error("write to %s:%s failed: %s", self.address[0], self.address[1], e)
            raise TransportError(str(e)) from e
        return BackendResponse(status_code=0)

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None


class InfluxTransport:
    """Line protocol writes through the native influxdb client."""

    def __init__(self, host: str, port: int, database: str, retention_policy: Optional[str] = None,
                 retry: RetryPolicy = RetryPolicy(), timeout: Optional[float] = None,
                 client: Optional[InfluxDBClient] = None):
        self.database = database
        self.retention_policy = retention_policy
        # influxdb counts attempts, 0 would mean retry forever
        self.client = client or InfluxDBClient(host=host, port=port, username="root", password="root",
                                               database=database, timeout=timeout, retries=retry.attempts)

    def send(self, query: BackendQuery) -> BackendResponse:
        try:
            self.client.write_points([query.point], time_precision="ms", database=self.database,
                                     retention_policy=self.retention_policy)
        except (InfluxDBClientError, InfluxDBServerError, requests.RequestException) as e:
            log.error("influx write to %s failed: %s", self.database, e)
            raise TransportError(str(e)) from e
        return BackendResponse(status_code=204)

    def close(self) -> None:
        self.client.close()
