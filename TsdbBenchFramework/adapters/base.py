#define minimal contracts for run load, encode/verify backend requests and drive a tsdb adapter

import enum
from dataclasses import dataclass, field
from typing import Protocol, Dict, Any, Iterable, List, Mapping, Optional, Sequence, Tuple

SUCCESS = 0
FAILURE = -1

TagFilter = Mapping[str, Sequence[str]]


class TsdbBenchError(Exception):
    pass


class ConfigError(TsdbBenchError):
    """Required backend option missing or backend setup refused; fatal at init."""


class TransportError(TsdbBenchError):
    """Connection level failure, or retry budget exhausted."""


class AggregationKind(enum.Enum):
    NONE = "none"
    AVG = "avg"
    COUNT = "count"
    SUM = "sum"

    @classmethod
    def parse(cls, value) -> "AggregationKind":
        if isinstance(value, cls):
            return value
        if value is None or value == "":
            return cls.NONE
        return cls(str(value).lower())


class TimeUnit(enum.IntEnum):
    # value is the unit length in nanoseconds
    NANOSECONDS = 1
    MICROSECONDS = 1_000
    MILLISECONDS = 1_000_000
    SECONDS = 1_000_000_000
    MINUTES = 60 * 1_000_000_000
    HOURS = 3_600 * 1_000_000_000
    DAYS = 86_400 * 1_000_000_000

    @property
    def nanos(self) -> int:
        return int(self.value)

    @classmethod
    def parse(cls, value) -> "TimeUnit":
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        if key in _UNIT_ALIASES:
            return _UNIT_ALIASES[key]
        try:
            return cls[key.upper()]
        except KeyError:
            raise ValueError(f"unknown time unit {value!r}") from None


_UNIT_ALIASES = {
    "n": TimeUnit.NANOSECONDS, "ns": TimeUnit.NANOSECONDS,
    "us": TimeUnit.MICROSECONDS,
    "ms": TimeUnit.MILLISECONDS,
    "s": TimeUnit.SECONDS,
    "m": TimeUnit.MINUTES,
    "h": TimeUnit.HOURS,
    "d": TimeUnit.DAYS,
}


@dataclass(frozen=True)
class MetricPoint:
    metric: str
    timestamp: int  # nanoseconds since epoch
    value: float
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TimeRange:
    start: int
    end: int

    @property
    def span(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class AggregationSpec:
    kind: AggregationKind = AggregationKind.NONE
    bucket: Optional[Tuple[int, TimeUnit]] = None

    @classmethod
    def of(cls, kind, bucket_value: int = 0, bucket_unit=None) -> "AggregationSpec":
        if not bucket_value or bucket_unit is None:
            return cls(AggregationKind.parse(kind), None)
        return cls(AggregationKind.parse(kind), (int(bucket_value), TimeUnit.parse(bucket_unit)))


@dataclass(frozen=True)
class BackendQuery:
    operation: str  # read | scan | insert | setup
    channel: str = "http"  # http | line | influx
    method: str = "GET"
    path: str = ""
    params: List[Tuple[str, str]] = field(default_factory=list)
    body: Optional[str] = None
    point: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    expected: Optional[str] = None


@dataclass(frozen=True)
class BackendResponse:
    status_code: int
    body: str = ""


class Outcome(enum.Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    MISMATCH = "mismatch"
    MALFORMED = "malformed"

    @property
    def status(self) -> int:
        return SUCCESS if self is Outcome.FOUND else FAILURE


class LoadAdapter(Protocol):
    def run(self, *, locustfile: str, host: str, users: int, spawn_rate: int,
            run_time: str, out_dir: str, extra_args: Optional[Iterable[str]] = None,
            env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        ...

class Transport(Protocol):
    def send(self, query: BackendQuery) -> BackendResponse:
        ...
    def close(self) -> None:
        ...

class BackendCodec(Protocol):
    name: str
    required: Tuple[str, ...]

    def open_transports(self) -> Dict[str, Transport]:
        ...
    def encode_setup(self) -> Optional[BackendQuery]:
        ...
    def encode_read(self, metric: str, timestamp: int, tags: TagFilter) -> BackendQuery:
        ...
    def encode_scan(self, metric: str, window: TimeRange, tags: TagFilter,
                    aggregation: AggregationSpec) -> BackendQuery:
        ...
    def encode_insert(self, point: MetricPoint) -> BackendQuery:
        ...
    def verify(self, query: BackendQuery, response: BackendResponse) -> Outcome:
        ...

class TsdbAdapter(Protocol):
    def init(self, properties: Mapping[str, Any]) -> None:
        ...
    def insert(self, metric: str, timestamp: int, value: float, tags: Mapping[str, str]) -> int:
        ...
    def read(self, metric: str, timestamp: int, tags: TagFilter) -> int:
        ...
    def scan(self, metric: str, start: int, end: int, tags: TagFilter,
             aggregation=AggregationKind.NONE, bucket_value: int = 0,
             bucket_unit: Optional[TimeUnit] = None) -> int:
        ...
    def cleanup(self) -> None:
        ...
