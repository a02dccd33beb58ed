#seriesly: schemaless json documents in one database, queried through the _query reducer endpoint
"""Seriesly codec.

Tags are stored with every document, but the query language can only filter
on a single field. Only the metric name is filtered; tag filters are dropped.
"""
import json
import logging
from typing import Any, Dict, Optional

from TsdbBenchFramework.adapters.base import (
    AggregationKind, AggregationSpec, BackendQuery, BackendResponse, MetricPoint, Outcome, TagFilter, TimeRange,
    Transport,
)
from TsdbBenchFramework.adapters.tsdb.aggregation import SERIESLY_REDUCERS, map_aggregation
from TsdbBenchFramework.adapters.tsdb.config import BackendConfig
from TsdbBenchFramework.adapters.tsdb.time_model import bucket_millis, synthesize_bucket, to_millis
from TsdbBenchFramework.adapters.tsdb.transport import HttpTransport, RetryPolicy

log = logging.getLogger(__name__)

METRIC_FIELD = "metric"
VALUE_FIELD = "value"
TAGS_FIELD = "tags"


class SerieslyCodec:
    name = "seriesly"
    required = ("ip", "port")

    def __init__(self, config: BackendConfig):
        self.config = config
        self.db_name = config.db_name or "TestDB"
        self.base_url = f"http://{config.ip}:{config.port or 3133}"

    def open_transports(self) -> Dict[str, Transport]:
        return {"http": HttpTransport(self.base_url, RetryPolicy(self.config.retries), timeout=self.config.timeout)}

    def encode_setup(self) -> Optional[BackendQuery]:
        return BackendQuery(operation="setup", method="PUT", path=f"/{self.db_name}")

    def _query(self, operation: str, metric: str, start_ms: int, end_ms: int, group: int, reducer: str,
               expected: Optional[str] = None) -> BackendQuery:
        return BackendQuery(
            operation=operation,
            path=f"/{self.db_name}/_query",
            params=[
                ("from", str(start_ms)),
                ("to", str(end_ms)),
                ("group", str(group)),
                ("ptr", f"/{VALUE_FIELD}"),
                ("reducer", reducer),
                ("f", f"/{METRIC_FIELD}"),
                ("fv", metric),
            ],
            headers={"Accept": "application/json"},
            expected=expected,
        )

    def encode_read(self, metric: str, timestamp: int, tags: TagFilter) -> BackendQuery:
        if tags:
            log.debug("seriesly can't filter by tags, ignoring %s", sorted(tags))
        ts = to_millis(timestamp)
        return self._query("read", metric, ts, ts, 1, SERIESLY_REDUCERS[AggregationKind.NONE], expected=str(ts))

    def encode_scan(self, metric: str, window: TimeRange, tags: TagFilter,
                    aggregation: AggregationSpec) -> BackendQuery:
        if tags:
            log.debug("seriesly can't filter by tags, ignoring %s", sorted(tags))
        reducer = map_aggregation(aggregation.kind, SERIESLY_REDUCERS, backend=self.name)
        value, unit = aggregation.bucket or synthesize_bucket(window.start, window.end)
        return self._query("scan", metric, to_millis(window.start), to_millis(window.end),
                           bucket_millis(value, unit), reducer)

    def encode_insert(self, point: MetricPoint) -> BackendQuery:
        doc: Dict[str, Any] = {METRIC_FIELD: point.metric, VALUE_FIELD: float(point.value)}
        if point.tags:
            doc[TAGS_FIELD] = {k: str(point.tags[k]) for k in sorted(point.tags)}
        return BackendQuery(
            operation="insert",
            method="POST",
            path=f"/{self.db_name}",
            params=[("ts", str(to_millis(point.timestamp)))],
            body=json.dumps(doc),
            headers={"Content-Type": "application/json"},
        )

    def verify(self, query: BackendQuery, response: BackendResponse) -> Outcome:
        if query.operation in ("insert", "setup"):
            if response.status_code != 201:
                log.error("%s to %s answered %d", query.operation, query.path, response.status_code)
                return Outcome.MALFORMED
            return Outcome.FOUND
        if response.status_code != 200 or not response.body.strip():
            return Outcome.NOT_FOUND
        try:
            data = json.loads(response.body)
        except ValueError:
            log.error("invalid json from %s: %.200s", query.path, response.body)
            return Outcome.MALFORMED
        if not isinstance(data, dict):
            return Outcome.MALFORMED
        if query.operation == "read":
            values = data.get(query.expected)
        else:
            # key depends on the group size, take whichever bucket came back first
            values = data[next(iter(data))] if data else None
        if not isinstance(values, list) or not values:
            log.error("found no values for %s", dict(query.params).get("fv"))
            return Outcome.NOT_FOUND
        return Outcome.FOUND
