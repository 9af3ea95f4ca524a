"""
Aggregation - homomorphic per service-type statistics and derived analytics.
"""

from .accumulator import (
    AGGREGATE_FIELDS,
    AggregateAccumulator,
    ServiceAggregate,
    ServiceTypeRegistry,
)
from . import analytics

__all__ = [
    'AGGREGATE_FIELDS',
    'AggregateAccumulator',
    'ServiceAggregate',
    'ServiceTypeRegistry',
    'analytics',
]
