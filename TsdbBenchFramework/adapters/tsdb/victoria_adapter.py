#victoriametrics: promql instant queries for read/scan, influx line protocol writes for insert
"""VictoriaMetrics codec.

Mix of an InfluxDB writer (inserts) and a Prometheus query client (read and
scan). A point written as measurement ``cpu`` with field ``value`` is queried
back as the series ``cpu_value``.

Buckets can't be applied: ``query_range`` returns interpolated samples only,
so a scan is a single ``<fn>_over_time`` over the whole requested range.
"""
import json
import logging
import re
from typing import Dict, Optional

from TsdbBenchFramework.adapters.base import (
    AggregationSpec, BackendQuery, BackendResponse, MetricPoint, Outcome, TagFilter, TimeRange, Transport,
)
from TsdbBenchFramework.adapters.tsdb.aggregation import PROMQL_FUNCTIONS, map_aggregation
from TsdbBenchFramework.adapters.tsdb.config import BackendConfig
from TsdbBenchFramework.adapters.tsdb.time_model import now_nanos, promql_window, rfc3339, to_millis
from TsdbBenchFramework.adapters.tsdb.transport import HttpTransport, InfluxTransport, RetryPolicy

log = logging.getLogger(__name__)

METRIC_NAME = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
VALUE_FIELD = "value"
QUERY_PATH = "/api/v1/query"


def series_name(metric: str) -> str:
    if not METRIC_NAME.fullmatch(metric):
        raise ValueError(f"{metric!r} is not a valid prometheus metric name")
    return f"{metric}_{VALUE_FIELD}"


def promql_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def label_matchers(tags: TagFilter) -> str:
    """Regex matchers matching each tag value literally, alternatives joined by |."""
    matchers = []
    for name in sorted(tags):
        alternation = "|".join(re.escape(v) for v in sorted(str(v) for v in tags[name]))
        matchers.append(f'{name}=~"{promql_string(alternation)}"')
    return "{" + ",".join(matchers) + "}"


class VictoriaMetricsCodec:
    name = "victoriametrics"
    required = ("ip", "port")

    def __init__(self, config: BackendConfig, clock=now_nanos):
        self.config = config
        self.port = config.port or 8086
        self.db_name = config.db_name or "testdb"
        self.retention_policy = config.retention_policy or "default"
        self.base_url = f"http://{config.ip}:{self.port}"
        self.clock = clock

    def open_transports(self) -> Dict[str, Transport]:
        retry = RetryPolicy(self.config.retries)
        return {
            "http": HttpTransport(self.base_url, retry, timeout=self.config.timeout),
            "influx": InfluxTransport(self.config.ip, self.port, self.db_name, self.retention_policy,
                                      retry, timeout=self.config.timeout),
        }

    def encode_setup(self) -> Optional[BackendQuery]:
        return None

    def encode_read(self, metric: str, timestamp: int, tags: TagFilter) -> BackendQuery:
        expr = series_name(metric) + label_matchers(tags)
        return BackendQuery(
            operation="read",
            path=QUERY_PATH,
            params=[("query", expr), ("time", rfc3339(timestamp))],
        )

    def encode_scan(self, metric: str, window: TimeRange, tags: TagFilter,
                    aggregation: AggregationSpec) -> BackendQuery:
        if aggregation.bucket:
            log.debug("buckets not applicable on victoriametrics, ignoring %s", aggregation.bucket)
        fn = map_aggregation(aggregation.kind, PROMQL_FUNCTIONS, backend=self.name)
        duration, offset = promql_window(window.start, window.end, self.clock())
        expr = f"{fn}({series_name(metric)}{label_matchers(tags)}[{duration}s] offset {offset}s)"
        return BackendQuery(operation="scan", path=QUERY_PATH, params=[("query", expr)])

    def encode_insert(self, point: MetricPoint) -> BackendQuery:
        series_name(point.metric)
        return BackendQuery(
            operation="insert",
            channel="influx",
            point={
                "measurement": point.metric,
                "tags": {k: str(point.tags[k]) for k in sorted(point.tags)},
                "time": to_millis(point.timestamp),
                "fields": {VALUE_FIELD: float(point.value)},
            },
        )

    def verify(self, query: BackendQuery, response: BackendResponse) -> Outcome:
        if query.operation == "insert":
            return Outcome.FOUND
        try:
            data = json.loads(response.body)
            status = data["status"]
            result = data["data"]["result"] if status == "success" else None
        except (ValueError, KeyError, TypeError):
            log.error("unreadable answer (%d) for %s: %.200s", response.status_code, query.params, response.body)
            return Outcome.MALFORMED
        if status != "success":
            log.error("query %s failed: %s", query.params, data.get("error", status))
            return Outcome.MALFORMED
        if not isinstance(result, list):
            return Outcome.MALFORMED
        if not result:
            log.debug("no data in response to %s", query.params)
            return Outcome.NOT_FOUND
        log.debug("found %d data sets", len(result))
        return Outcome.FOUND
