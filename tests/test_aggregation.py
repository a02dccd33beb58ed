import pytest

from TsdbBenchFramework.adapters.base import AggregationKind
from TsdbBenchFramework.adapters.tsdb.aggregation import (
    AKUMULI_SAMPLERS, AKUMULI_UNSUPPORTED, PROMQL_FUNCTIONS, SERIESLY_REDUCERS, map_aggregation,
)


@pytest.mark.parametrize("kind, akumuli, seriesly, promql", [
    (AggregationKind.NONE, "max-paa", "any", "min_over_time"),
    (AggregationKind.AVG, "paa", "avg", "avg_over_time"),
    (AggregationKind.COUNT, "max-paa", "count", "count_over_time"),
    (AggregationKind.SUM, "max-paa", "sum", "sum_over_time"),
])
def test_aggregation_table(kind, akumuli, seriesly, promql):
    assert map_aggregation(kind, AKUMULI_SAMPLERS, AKUMULI_UNSUPPORTED, "akumuli") == akumuli
    assert map_aggregation(kind, SERIESLY_REDUCERS, backend="seriesly") == seriesly
    assert map_aggregation(kind, PROMQL_FUNCTIONS, backend="victoriametrics") == promql


def test_aggregation_kind_parse():
    assert AggregationKind.parse("AVG") is AggregationKind.AVG
    assert AggregationKind.parse(None) is AggregationKind.NONE
    assert AggregationKind.parse(AggregationKind.SUM) is AggregationKind.SUM
    with pytest.raises(ValueError):
        AggregationKind.parse("median")
