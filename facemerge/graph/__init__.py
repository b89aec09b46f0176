"""Relationship graph analytics."""

from .analyzer import (
    RelationshipGraphAnalyzer,
    ConnectionSummary,
    NetworkStats,
    build_graph,
)

__all__ = [
    'RelationshipGraphAnalyzer',
    'ConnectionSummary',
    'NetworkStats',
    'build_graph',
]
