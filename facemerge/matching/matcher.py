"""
Duplicate suggestion engine.

Scores candidate pairs with the similarity scorer and ranks the resulting
suggestions by confidence.
"""

import logging
from typing import List, Dict, Tuple, Optional, Set, Iterable
from dataclasses import dataclass
import phonetics

from ..core.person import Person
from ..utils.config import EngineConfig
from .scorer import SimilarityScorer, ScoreResult, CONFIDENCE_ORDER

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MergeSuggestion:
    """Represents a potential duplicate pair."""
    person1: Person
    person2: Person
    result: ScoreResult
    confidence: str

    @property
    def score(self) -> int:
        return self.result.score

    @property
    def reasons(self) -> List[str]:
        return self.result.reasons

    @property
    def is_high_confidence(self) -> bool:
        return self.confidence == 'high'


class PersonMatcher:
    """
    Generates merge suggestions over a candidate set.

    Full scoring compares every unordered pair and is O(n^2); callers bound
    the candidate set or use ``score_pairs_blocked``, which only scores pairs
    sharing a phonetic name key, a roster, a company or a birthday.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.scorer = SimilarityScorer(self.config)

    def score_pairs(self, persons: List[Person]) -> List[MergeSuggestion]:
        """
        Score all unordered pairs of persons.

        Args:
            persons: Candidate persons

        Returns:
            Suggestions with score > 0, highest confidence first
        """
        pairs = (
            (persons[i], persons[j])
            for i in range(len(persons))
            for j in range(i + 1, len(persons))
        )
        return self._rank(self._score(pairs))

    def score_pairs_blocked(self, persons: List[Person]) -> List[MergeSuggestion]:
        """
        Score only pairs that share at least one blocking key.

        Args:
            persons: Candidate persons

        Returns:
            Suggestions with score > 0, highest confidence first
        """
        blocks = self.build_blocks(persons)
        index = {id(person): i for i, person in enumerate(persons)}

        seen: Set[Tuple[int, int]] = set()
        pairs: List[Tuple[int, int]] = []

        for members in blocks.values():
            for a in range(len(members)):
                for b in range(a + 1, len(members)):
                    i, j = index[id(members[a])], index[id(members[b])]
                    key = (min(i, j), max(i, j))
                    if key in seen:
                        continue
                    seen.add(key)
                    pairs.append(key)

        # Keep input order so ties rank the same way as full scoring
        pairs.sort()
        ordered = ((persons[i], persons[j]) for i, j in pairs)

        logger.debug(f"Blocking reduced {len(persons)} persons to {len(pairs)} pairs")
        return self._rank(self._score(ordered))

    def suggestions_for_person(
        self,
        person: Person,
        others: List[Person],
        limit: int = 10
    ) -> List[MergeSuggestion]:
        """
        Find potential duplicates for a specific person.

        Args:
            person: The person to find duplicates for
            others: Candidate persons
            limit: Maximum number of suggestions to return

        Returns:
            Suggestions sorted by confidence
        """
        pairs = ((person, other) for other in others if other.id != person.id)
        return self._rank(self._score(pairs))[:limit]

    def build_blocks(self, persons: List[Person]) -> Dict[str, List[Person]]:
        """Group persons by blocking key; a person may sit in several blocks."""
        blocks: Dict[str, List[Person]] = {}
        for person in persons:
            for key in self.blocking_keys(person):
                blocks.setdefault(key, []).append(person)
        return blocks

    @classmethod
    def blocking_keys(cls, person: Person) -> Set[str]:
        """Blocking keys for a person: name phonetics, rosters, company, birthday."""
        keys = set()

        tokens = (person.name or '').split()
        for token in tokens:
            code = cls.get_metaphone(token)
            keys.add(f"name:{code}" if code else f"name:{token.lower()}")
        if not tokens:
            # Nameless persons all score as very similar names
            keys.add("name:")

        for roster_id in person.roster_ids or []:
            keys.add(f"roster:{roster_id}")

        if isinstance(person.company, str) and person.company.strip():
            keys.add(f"company:{person.company.strip().lower()}")

        if isinstance(person.birthday, str) and person.birthday:
            keys.add(f"birthday:{person.birthday}")

        return keys

    @staticmethod
    def get_metaphone(text: str) -> str:
        """
        Get Metaphone phonetic encoding of text.

        Returns an empty string for text Metaphone cannot encode.
        """
        if not text or not text.isascii():
            return ""
        try:
            return phonetics.metaphone(text)
        except (IndexError, ValueError, TypeError):
            return ""

    def _score(self, pairs: Iterable[Tuple[Person, Person]]) -> List[MergeSuggestion]:
        suggestions = []
        compared = 0

        for person1, person2 in pairs:
            compared += 1
            result = self.scorer.score(person1, person2)
            if result.score <= 0:
                continue

            suggestions.append(MergeSuggestion(
                person1=person1,
                person2=person2,
                result=result,
                confidence=self.scorer.confidence(result.score),
            ))

        logger.info(f"Scored {compared} pairs, {len(suggestions)} suggestions")
        return suggestions

    @staticmethod
    def _rank(suggestions: List[MergeSuggestion]) -> List[MergeSuggestion]:
        suggestions.sort(
            key=lambda s: (CONFIDENCE_ORDER[s.confidence], s.score),
            reverse=True
        )
        return suggestions
