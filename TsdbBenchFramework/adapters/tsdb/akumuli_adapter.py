#akumuli: json queries over http with csv output, inserts as RESP-like frames over the tcp ingestion port
"""Akumuli codec.

Timestamps are kept in nanosecond precision. Akumuli has no count or sum
sampler, ``max-paa`` is requested instead for both.
"""
import json
import logging
from typing import Any, Dict, Optional

from TsdbBenchFramework.adapters.base import (
    AggregationSpec, BackendQuery, BackendResponse, MetricPoint, Outcome, TagFilter, TimeRange, TimeUnit,
    Transport,
)
from TsdbBenchFramework.adapters.tsdb.aggregation import AKUMULI_SAMPLERS, AKUMULI_UNSUPPORTED, map_aggregation
from TsdbBenchFramework.adapters.tsdb.config import BackendConfig
from TsdbBenchFramework.adapters.tsdb.time_model import (
    akumuli_timestamp, bucket_string, synthesize_bucket,
)
from TsdbBenchFramework.adapters.tsdb.transport import HttpTransport, LineTransport, RetryPolicy

log = logging.getLogger(__name__)

GROUP_BY_SUFFIXES = {
    TimeUnit.NANOSECONDS: "n",
    TimeUnit.MICROSECONDS: "us",
    TimeUnit.MILLISECONDS: "ms",
    TimeUnit.SECONDS: "s",
    TimeUnit.MINUTES: "m",
    TimeUnit.HOURS: "h",
    TimeUnit.DAYS: "d",
}


def where_clause(tags: TagFilter) -> Dict[str, Any]:
    return {name: sorted(str(v) for v in tags[name]) for name in sorted(tags)}


def insert_frame(point: MetricPoint) -> str:
    series = point.metric + "".join(f" {k}={point.tags[k]}" for k in sorted(point.tags))
    return f"+{series}\r\n:{int(point.timestamp)}\r\n+{float(point.value)!r}\r\n"


class AkumuliCodec:
    name = "akumuli"
    required = ("ip", "tcpPort", "httpPort")

    def __init__(self, config: BackendConfig):
        self.config = config
        self.http_url = f"http://{config.ip}:{config.http_port or 8181}"
        self.query_path = config.query_path if config.query_path is not None else "/api/query"

    def open_transports(self) -> Dict[str, Transport]:
        line = LineTransport(self.config.ip, self.config.tcp_port or 8282, timeout=self.config.timeout)
        http = HttpTransport(self.http_url, RetryPolicy(self.config.retries), timeout=self.config.timeout)
        return {"line": line, "http": http}

    def encode_setup(self) -> Optional[BackendQuery]:
        return None

    def _query(self, operation: str, doc: Dict[str, Any], expected: Optional[str] = None) -> BackendQuery:
        return BackendQuery(
            operation=operation,
            method="POST",
            path=self.query_path,
            body=json.dumps(doc),
            headers={"Content-Type": "application/json"},
            expected=expected,
        )

    def encode_read(self, metric: str, timestamp: int, tags: TagFilter) -> BackendQuery:
        ts = akumuli_timestamp(timestamp)
        doc: Dict[str, Any] = {"metric": metric, "range": {"from": ts, "to": ts}}
        if tags:
            doc["where"] = where_clause(tags)
        doc["output"] = {"format": "csv"}
        return self._query("read", doc, expected=ts)

    def encode_scan(self, metric: str, window: TimeRange, tags: TagFilter,
                    aggregation: AggregationSpec) -> BackendQuery:
        sampler = map_aggregation(aggregation.kind, AKUMULI_SAMPLERS, AKUMULI_UNSUPPORTED, self.name)
        value, unit = aggregation.bucket or synthesize_bucket(window.start, window.end)
        doc: Dict[str, Any] = {
            "metric": metric,
            "range": {"from": akumuli_timestamp(window.start), "to": akumuli_timestamp(window.end)},
        }
        if tags:
            doc["where"] = where_clause(tags)
        doc["sample"] = [{"name": sampler}]
        doc["group-by"] = {"time": bucket_string(value, unit, GROUP_BY_SUFFIXES)}
        doc["output"] = {"format": "csv"}
        return self._query("scan", doc)

    def encode_insert(self, point: MetricPoint) -> BackendQuery:
        return BackendQuery(operation="insert", channel="line", body=insert_frame(point))

    def verify(self, query: BackendQuery, response: BackendResponse) -> Outcome:
        if query.operation == "insert":
            # no acknowledgement on the ingestion port
            return Outcome.FOUND
        if query.operation == "scan":
            if len(response.body.split(",")) < 3:
                return Outcome.NOT_FOUND
            return Outcome.FOUND
        return self._verify_read(query, response)

    def _verify_read(self, query: BackendQuery, response: BackendResponse) -> Outcome:
        rows = [line.strip() for line in response.body.strip().splitlines() if line.strip()]
        if not rows:
            log.error("no value found for %s at %s", query.body, query.expected)
            return Outcome.NOT_FOUND
        if rows[0].startswith("-"):
            log.error("akumuli refused query %s: %s", query.body, rows[0][1:])
            return Outcome.MALFORMED
        if len(rows) > 1:
            log.info("found %d values instead of one for %s", len(rows), query.body)
            return Outcome.MISMATCH
        fields = [f.strip() for f in rows[0].split(",")]
        if len(fields) != 3:
            log.error("unexpected row %r for %s", rows[0], query.body)
            return Outcome.MALFORMED
        if fields[1] != query.expected:
            log.info("found value with timestamp %s, expected %s", fields[1], query.expected)
            return Outcome.MISMATCH
        return Outcome.FOUND
