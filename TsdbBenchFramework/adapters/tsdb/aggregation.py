#map the requested aggregation kind onto the primitive each backend supports
import logging
from typing import Dict, FrozenSet, Mapping

from TsdbBenchFramework.adapters.base import AggregationKind

log = logging.getLogger(__name__)

# akumuli has no count/sum sampler, max-paa stands in for both
AKUMULI_SAMPLERS: Dict[AggregationKind, str] = {
    AggregationKind.NONE: "max-paa",
    AggregationKind.AVG: "paa",
    AggregationKind.COUNT: "max-paa",
    AggregationKind.SUM: "max-paa",
}
AKUMULI_UNSUPPORTED: FrozenSet[AggregationKind] = frozenset({AggregationKind.COUNT, AggregationKind.SUM})

SERIESLY_REDUCERS: Dict[AggregationKind, str] = {
    AggregationKind.NONE: "any",
    AggregationKind.AVG: "avg",
    AggregationKind.COUNT: "count",
    AggregationKind.SUM: "sum",
}

PROMQL_FUNCTIONS: Dict[AggregationKind, str] = {
    AggregationKind.NONE: "min_over_time",
    AggregationKind.AVG: "avg_over_time",
    AggregationKind.COUNT: "count_over_time",
    AggregationKind.SUM: "sum_over_time",
}


def map_aggregation(kind: AggregationKind, table: Mapping[AggregationKind, str],
                    unsupported: FrozenSet[AggregationKind] = frozenset(), backend: str = "") -> str:
    primitive = table[kind]
    if kind in unsupported:
        log.debug("%s cannot aggregate by %s, substituting %s", backend, kind.value, primitive)
    return primitive
