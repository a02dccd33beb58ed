#harness facing tsdb adapter: validate, encode, send and verify one operation, collapse the result to a status code
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from TsdbBenchFramework.adapters.base import (
    FAILURE, SUCCESS, AggregationKind, AggregationSpec, BackendCodec, BackendQuery, ConfigError, MetricPoint,
    TagFilter, TimeRange, TimeUnit, Transport, TransportError,
)
from TsdbBenchFramework.adapters.tsdb.akumuli_adapter import AkumuliCodec
from TsdbBenchFramework.adapters.tsdb.config import BackendConfig
from TsdbBenchFramework.adapters.tsdb.seriesly_adapter import SerieslyCodec
from TsdbBenchFramework.adapters.tsdb.victoria_adapter import VictoriaMetricsCodec

log = logging.getLogger(__name__)

BACKENDS: Dict[str, Callable[[BackendConfig], BackendCodec]] = {
    "akumuli": AkumuliCodec,
    "seriesly": SerieslyCodec,
    "victoriametrics": VictoriaMetricsCodec,
}


class TsdbClient:
    """One adapter instance per worker thread; calls block until done or retries run out."""

    def __init__(self, backend: str, codec_factory: Optional[Callable[[BackendConfig], BackendCodec]] = None):
        if codec_factory is None:
            if backend not in BACKENDS:
                raise ConfigError(f"unknown backend {backend!r}, expected one of {sorted(BACKENDS)}")
            codec_factory = BACKENDS[backend]
        self.backend = backend
        self._codec_factory = codec_factory
        self.codec: Optional[BackendCodec] = None
        self.config: Optional[BackendConfig] = None
        self._transports: Dict[str, Transport] = {}

    @property
    def test(self) -> bool:
        return bool(self.config and self.config.test)

    @property
    def debug(self) -> bool:
        return bool(self.config and self.config.debug)

    def init(self, properties: Mapping[str, Any]) -> None:
        required = getattr(self._codec_factory, "required", ())
        self.config = BackendConfig.from_properties(properties, required)
        self.codec = self._codec_factory(self.config)
        if self.debug:
            log.info("%s properties: %s", self.backend, self.config.raw)
        if self.test:
            return
        try:
            self._transports = self.codec.open_transports()
        except TransportError as e:
            raise ConfigError(f"can't connect to {self.backend}: {e}") from e
        setup = self.codec.encode_setup()
        if setup is not None:
            try:
                outcome = self.codec.verify(setup, self._transports[setup.channel].send(setup))
            except TransportError as e:
                self.cleanup()
                raise ConfigError(f"{self.backend} setup failed: {e}") from e
            if outcome.status != SUCCESS:
                self.cleanup()
                raise ConfigError(f"{self.backend} refused setup {setup.method} {setup.path}")

    def cleanup(self) -> None:
        transports, self._transports = self._transports, {}
        for name, transport in transports.items():
            try:
                transport.close()
            except OSError as e:
                log.warning("closing %s transport of %s failed: %s", name, self.backend, e)

    def _execute(self, encode: Callable[[], BackendQuery]) -> int:
        if self.codec is None:
            raise RuntimeError("init() must be called before issuing operations")
        try:
            query = encode()
        except (TypeError, ValueError) as e:
            log.error("%s can't encode request: %s", self.backend, e)
            return FAILURE
        if self.debug:
            log.info("%s %s request: %s %s %s", self.backend, query.operation, query.path, query.params,
                     query.body if query.body is not None else query.point)
        if self.test:
            return SUCCESS
        transport = self._transports.get(query.channel)
        if transport is None:
            log.error("%s has no open %s transport", self.backend, query.channel)
            return FAILURE
        try:
            response = transport.send(query)
        except (TransportError, ValueError) as e:
            log.error("%s %s failed: %s", self.backend, query.operation, e)
            return FAILURE
        if self.debug:
            log.info("%s %s response (%d): %.500s", self.backend, query.operation, response.status_code,
                     response.body)
        return self.codec.verify(query, response).status

    def insert(self, metric: str, timestamp: int, value: float, tags: Mapping[str, str]) -> int:
        if not metric or timestamp is None:
            return FAILURE
        return self._execute(lambda: self.codec.encode_insert(
            MetricPoint(metric, timestamp, float(value), dict(tags or {}))))

    def read(self, metric: str, timestamp: int, tags: TagFilter) -> int:
        if not metric or timestamp is None:
            return FAILURE
        return self._execute(lambda: self.codec.encode_read(metric, timestamp, tags or {}))

    def scan(self, metric: str, start: int, end: int, tags: TagFilter,
             aggregation=AggregationKind.NONE, bucket_value: int = 0,
             bucket_unit: Optional[TimeUnit] = None) -> int:
        if not metric or start is None or end is None:
            return FAILURE
        window = TimeRange(start, end)
        return self._execute(lambda: self.codec.encode_scan(
            metric, window, tags or {}, AggregationSpec.of(aggregation, bucket_value, bucket_unit)))


def create_client(backend: str, properties: Mapping[str, Any]) -> TsdbClient:
    client = TsdbClient(backend)
    client.init(properties)
    return client
