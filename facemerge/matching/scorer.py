"""
Similarity scoring engine with confidence-based buckets.

Scores a pair of person records on name, company, shared rosters and
birthday, and maps the integer score onto a coarse confidence level.
"""

from typing import List, Dict, Optional, Any
from dataclasses import dataclass, field
from rapidfuzz.distance import Levenshtein

from ..core.person import Person
from ..utils.config import EngineConfig


CONFIDENCE_ORDER = {'high': 3, 'medium': 2, 'low': 1}


@dataclass
class ScoreResult:
    """Result of scoring two person records."""

    score: int = 0
    reasons: List[str] = field(default_factory=list)

    # Normalized name similarity (0-1)
    name_similarity: float = 0.0

    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Human-readable description."""
        lines = [f"Score: {self.score} (name similarity {self.name_similarity:.2f})"]
        lines.extend(f"  - {reason}" for reason in self.reasons)
        return "\n".join(lines)


def name_similarity(name1: Optional[str], name2: Optional[str]) -> float:
    """
    Normalized Levenshtein similarity of two names, ignoring case.

    Returns 1.0 for identical names and for two empty names.
    """
    s1 = (name1 or '').lower()
    s2 = (name2 or '').lower()

    if s1 == s2:
        return 1.0

    max_len = max(len(s1), len(s2))
    if max_len == 0:
        return 1.0

    distance = Levenshtein.distance(s1, s2)
    return 1.0 - (distance / max_len)


class SimilarityScorer:
    """
    Calculates duplicate scores between person records.

    Scoring:
    - Name similarity > 0.9: +3, > 0.7: +2
    - Same company (case-insensitive): +2
    - Shared rosters: +1 each
    - Same birthday (exact string): +2

    Every comparison is symmetric, so ``score(a, b) == score(b, a)``.
    """

    NAME_VERY_SIMILAR_POINTS = 3
    NAME_SOMEWHAT_SIMILAR_POINTS = 2
    COMPANY_POINTS = 2
    ROSTER_POINTS = 1
    BIRTHDAY_POINTS = 2

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def score(self, person1: Person, person2: Person) -> ScoreResult:
        """
        Calculate the duplicate score between two persons.

        Args:
            person1: First person
            person2: Second person

        Returns:
            ScoreResult with integer score and reasons
        """
        result = ScoreResult()

        result.score += self._score_name(person1, person2, result)
        result.score += self._score_company(person1, person2, result)
        result.score += self._score_rosters(person1, person2, result)
        result.score += self._score_birthday(person1, person2, result)

        return result

    def confidence(self, score: int) -> str:
        """Map an integer score onto 'high', 'medium' or 'low'."""
        if score >= self.config.high_confidence_score:
            return 'high'
        if score >= self.config.medium_confidence_score:
            return 'medium'
        return 'low'

    def _score_name(self, person1: Person, person2: Person, result: ScoreResult) -> int:
        similarity = name_similarity(person1.name, person2.name)
        result.name_similarity = similarity
        result.details['name_similarity'] = similarity

        if similarity > self.config.very_similar_name:
            result.reasons.append('Names are very similar')
            return self.NAME_VERY_SIMILAR_POINTS

        if similarity > self.config.somewhat_similar_name:
            result.reasons.append('Names are somewhat similar')
            return self.NAME_SOMEWHAT_SIMILAR_POINTS

        return 0

    def _score_company(self, person1: Person, person2: Person, result: ScoreResult) -> int:
        company1 = self._clean(person1.company)
        company2 = self._clean(person2.company)

        if company1 and company2 and company1.lower() == company2.lower():
            result.reasons.append('Same company')
            return self.COMPANY_POINTS

        return 0

    def _score_rosters(self, person1: Person, person2: Person, result: ScoreResult) -> int:
        shared = set(person1.roster_ids or []) & set(person2.roster_ids or [])
        if not shared:
            return 0

        result.details['shared_rosters'] = sorted(shared)
        result.reasons.append(f"Appear in {len(shared)} same roster(s)")
        return len(shared) * self.ROSTER_POINTS

    def _score_birthday(self, person1: Person, person2: Person, result: ScoreResult) -> int:
        birthday1 = self._clean(person1.birthday)
        birthday2 = self._clean(person2.birthday)

        if birthday1 and birthday2 and birthday1 == birthday2:
            result.reasons.append('Same birthday')
            return self.BIRTHDAY_POINTS

        return 0

    @staticmethod
    def _clean(value: Any) -> str:
        """Coerce an optional field to a string, treating junk as empty."""
        if not isinstance(value, str):
            return ''
        return value
