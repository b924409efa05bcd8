"""Context building and reference resolution."""

from .temporal import TemporalResolver, ResolvedDate
from .entity_resolver import EntityResolver, ResolvedMatch, calculate_similarity
from .aggregator import ContextAggregator

__all__ = [
    "TemporalResolver",
    "ResolvedDate",
    "EntityResolver",
    "ResolvedMatch",
    "calculate_similarity",
    "ContextAggregator",
]
