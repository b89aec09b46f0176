"""Merge planning and execution."""

from .conflict_resolver import (
    ConflictAnalyzer,
    ConnectionPlan,
    FieldChoice,
    MergeConflict,
    MergePreview,
    parse_field_choices,
    plan_connection_rewiring,
)
from .merger import PersonMerger, MergeResult

__all__ = [
    'ConflictAnalyzer',
    'ConnectionPlan',
    'FieldChoice',
    'MergeConflict',
    'MergePreview',
    'parse_field_choices',
    'plan_connection_rewiring',
    'PersonMerger',
    'MergeResult',
]
