"""
Engine facade.

Wires the scorer, conflict analyzer, merger and graph analyzer to one store,
one image storage and one config, constructed once and passed explicitly.
"""

import logging
from typing import List, Dict, Optional, Tuple

from .core.person import Person
from .core.connection import Connection
from .matching.matcher import PersonMatcher, MergeSuggestion
from .merge.conflict_resolver import ConflictAnalyzer, FieldChoice, MergePreview
from .merge.merger import PersonMerger, MergeResult
from .graph.analyzer import RelationshipGraphAnalyzer, ConnectionSummary, NetworkStats
from .store.database import PeopleDatabase
from .store.audit_trail import MergeAuditTrail
from .store.images import ImageStorage
from .utils.config import EngineConfig
from .utils.errors import NotFoundError, InvalidOperationError

logger = logging.getLogger(__name__)


class FaceMergeEngine:
    """Entry point used by the CLI and UI layers."""

    def __init__(
        self,
        db: PeopleDatabase,
        storage: Optional[ImageStorage] = None,
        config: Optional[EngineConfig] = None
    ):
        self.db = db
        self.storage = storage
        self.config = config or EngineConfig()

        self.audit = MergeAuditTrail(db)
        self.matcher = PersonMatcher(self.config)
        self.analyzer = ConflictAnalyzer()
        self.merger = PersonMerger(db, storage=storage, config=self.config, audit=self.audit)
        self.graph = RelationshipGraphAnalyzer(self.config)

    def snapshot(self, owner_id: str) -> Tuple[List[Person], List[Connection]]:
        """Read all persons and connections of an owner."""
        return self.db.get_people_by_owner(owner_id), self.db.get_connections_by_owner(owner_id)

    # ========== Duplicate detection ==========

    def score_pairs(self, persons: List[Person]) -> List[MergeSuggestion]:
        """
        Rank likely duplicate pairs, scoring every pair.

        Above ``max_pairwise_candidates`` persons a warning is logged; callers
        that accept missing pairs can use ``score_pairs_blocked`` instead.
        """
        if len(persons) > self.config.max_pairwise_candidates:
            logger.warning(
                f"{len(persons)} candidates exceeds {self.config.max_pairwise_candidates}; "
                f"full pairwise scoring may be slow, consider blocked scoring"
            )
        return self.matcher.score_pairs(persons)

    def score_pairs_blocked(self, persons: List[Person]) -> List[MergeSuggestion]:
        """Rank only pairs sharing a name key, roster, company or birthday."""
        return self.matcher.score_pairs_blocked(persons)

    def suggest_duplicates(self, owner_id: str, blocked: bool = False) -> List[MergeSuggestion]:
        persons = self.db.get_people_by_owner(owner_id)
        if blocked:
            return self.score_pairs_blocked(persons)
        return self.score_pairs(persons)

    # ========== Merge ==========

    def preview_merge(self, target_id: str, source_id: str) -> MergePreview:
        """
        Preview merging ``source_id`` into ``target_id``.

        Raises:
            NotFoundError: A person is missing
            InvalidOperationError: Self-merge or cross-owner merge
        """
        target = self._get_person(target_id)
        source = self._get_person(source_id)

        can_merge, reason = target.can_be_merged_with(source)
        if not can_merge:
            raise InvalidOperationError(reason, {'target_id': target_id, 'source_id': source_id})

        connections = self.db.get_connections_by_owner(target.owner_id)
        return self.analyzer.preview_merge(target, source, connections)

    def merge(
        self,
        target_id: str,
        source_id: str,
        field_choices: Optional[Dict[str, FieldChoice]] = None,
        primary_photo: Optional[str] = None
    ) -> MergeResult:
        """Merge ``source_id`` into ``target_id``; see ``PersonMerger.merge``."""
        return self.merger.merge(
            target_id, source_id,
            field_choices=field_choices,
            primary_photo=primary_photo,
        )

    # ========== Graph ==========

    def analyze_person(self, person_id: str, connections: List[Connection]) -> ConnectionSummary:
        return self.graph.analyze_person(person_id, connections)

    def analyze_network(self, persons: List[Person], connections: List[Connection]) -> NetworkStats:
        return self.graph.analyze_network(persons, connections)

    def find_path(
        self,
        from_id: str,
        to_id: str,
        connections: List[Connection],
        max_degrees: Optional[int] = None
    ) -> Optional[List[str]]:
        return self.graph.find_path(from_id, to_id, connections, max_degrees)

    def _get_person(self, person_id: str) -> Person:
        person = self.db.get_person(person_id)
        if person is None:
            raise NotFoundError('Person', person_id)
        return person
