#normalize instants and bucket granularities into the string/number form each backend expects
import logging
import math
import time
from datetime import datetime, timezone
from typing import Iterable, Mapping, Tuple

from TsdbBenchFramework.adapters.base import TimeUnit

log = logging.getLogger(__name__)

NANOS_PER_SECOND = TimeUnit.SECONDS.nanos
NANOS_PER_MILLI = TimeUnit.MILLISECONDS.nanos

# coarsest first; candidates for a synthesized single bucket
_SYNTH_UNITS = (TimeUnit.DAYS, TimeUnit.HOURS, TimeUnit.MINUTES, TimeUnit.SECONDS, TimeUnit.MILLISECONDS)


def now_nanos() -> int:
    return time.time_ns()


def from_datetime(dt: datetime) -> int:
    if dt.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")
    delta = dt - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400 + delta.seconds) * NANOS_PER_SECOND + delta.microseconds * 1_000


def _utc(ns: int) -> datetime:
    return datetime.fromtimestamp(ns // NANOS_PER_SECOND, tz=timezone.utc)


def akumuli_timestamp(ns: int) -> str:
    """Fixed width basic ISO form with nine nanosecond digits, e.g. 20240102T030405.000000042."""
    return f"{_utc(ns):%Y%m%dT%H%M%S}.{ns % NANOS_PER_SECOND:09d}"


def to_millis(ns: int) -> int:
    return ns // NANOS_PER_MILLI


def rfc3339(ns: int) -> str:
    dt = _utc(ns).replace(microsecond=(ns % NANOS_PER_SECOND) // NANOS_PER_MILLI * 1_000)
    return dt.isoformat(timespec="milliseconds")


def convert_bucket(value: int, unit: TimeUnit, supported: Iterable[TimeUnit]) -> Tuple[int, TimeUnit]:
    """Express (value, unit) in a unit the backend understands.

    Exact when a supported unit no coarser than ``unit`` exists, otherwise the
    finest supported unit is used and the value is truncated (at least 1).
    """
    supported = sorted(set(supported))
    if unit in supported:
        return value, unit
    total = value * unit.nanos
    finer = [u for u in supported if u.nanos <= unit.nanos]
    if finer:
        target = finer[-1]
        converted = total // target.nanos
    else:
        target = supported[0]
        converted = max(1, total // target.nanos)
    log.warning("bucket unit %s not supported, using %d%s instead of %d%s (precision may be lost)",
                unit.name.lower(), converted, target.name.lower(), value, unit.name.lower())
    return converted, target


def bucket_string(value: int, unit: TimeUnit, suffixes: Mapping[TimeUnit, str]) -> str:
    value, unit = convert_bucket(value, unit, suffixes.keys())
    return f"{value}{suffixes[unit]}"


def bucket_millis(value: int, unit: TimeUnit) -> int:
    value, unit = convert_bucket(value, unit, [u for u in TimeUnit if u >= TimeUnit.MILLISECONDS])
    return value * unit.nanos // NANOS_PER_MILLI


def synthesize_bucket(start: int, end: int) -> Tuple[int, TimeUnit]:
    """One bucket spanning [start, end]: the span plus 10% in the coarsest unit that fits."""
    span = max(0, end - start)
    inflated = span + span // 10
    for unit in _SYNTH_UNITS:
        if unit.nanos <= inflated:
            return max(1, math.ceil(inflated / unit.nanos)), unit
    return 1, TimeUnit.MILLISECONDS


def promql_window(start: int, end: int, now: int) -> Tuple[int, int]:
    """Whole-second lookback duration and offset so that [start, end] is covered when evaluated at now."""
    duration = math.ceil((end - start) / NANOS_PER_SECOND)
    offset = max(0, (now - end) // NANOS_PER_SECOND)
    if (now / NANOS_PER_SECOND) - offset - duration > start / NANOS_PER_SECOND:
        duration += 1
    return duration, offset
