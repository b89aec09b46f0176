"""
Duplicate detection engine.

Scores person records on textual and structural similarity (name, company,
shared rosters, birthday) and ranks candidate pairs for merging.
"""

from .matcher import PersonMatcher, MergeSuggestion
from .scorer import SimilarityScorer, ScoreResult, name_similarity

__all__ = [
    'PersonMatcher',
    'MergeSuggestion',
    'SimilarityScorer',
    'ScoreResult',
    'name_similarity',
]
