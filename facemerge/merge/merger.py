"""
Person record merger.

Applies a user-approved merge as one atomic transaction: updates the target,
rewires or deletes the source's connections and deletes the source. Image
cleanup runs afterwards, outside the transaction.
"""

import logging
from typing import List, Dict, Optional, Tuple
from dataclasses import dataclass, field

from ..core.person import Person, FaceAppearance
from ..core.connection import Connection
from ..store.database import PeopleDatabase
from ..store.audit_trail import MergeAuditTrail, OperationType
from ..store.images import ImageStorage
from ..utils.config import EngineConfig
from ..utils.errors import (
    NotFoundError,
    InvalidOperationError,
    ValidationError,
    StoreConflictError,
)
from .conflict_resolver import ConflictAnalyzer, FieldChoice, plan_connection_rewiring

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    """Result of a committed merge."""
    merged_person: Person
    deleted_person_id: str
    rewritten_connection_ids: List[str]
    deleted_connection_ids: List[str] = field(default_factory=list)
    merge_id: Optional[str] = None
    attempts: int = 1
    failed_image_cleanups: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        """Human-readable result."""
        return (
            f"Merged person {self.deleted_person_id} into {self.merged_person.id}\n"
            f"  Connections rewritten: {len(self.rewritten_connection_ids)}\n"
            f"  Connections deleted: {len(self.deleted_connection_ids)}\n"
            f"  Face appearances: {len(self.merged_person.face_appearances)}"
        )


class PersonMerger:
    """
    Merges a source person into a target person.

    Merge Process (all inside one transaction):
    1. Load both records; check they exist, differ and share an owner
    2. Apply per-field choices (required choices must be present)
    3. Concatenate face appearances and settle the primary photo
    4. Union roster ids
    5. Rewrite or delete every connection incident to the source
    6. Delete the source record
    7. Commit
    """

    def __init__(
        self,
        db: PeopleDatabase,
        storage: Optional[ImageStorage] = None,
        config: Optional[EngineConfig] = None,
        audit: Optional[MergeAuditTrail] = None
    ):
        """
        Initialize the merger.

        Args:
            db: Person/connection store
            storage: Object storage for best-effort image cleanup
            config: Engine configuration
            audit: Audit trail written inside the merge transaction
        """
        self.db = db
        self.storage = storage
        self.config = config or EngineConfig()
        self.audit = audit
        self.analyzer = ConflictAnalyzer()

    def merge(
        self,
        target_id: str,
        source_id: str,
        field_choices: Optional[Dict[str, FieldChoice]] = None,
        primary_photo: Optional[str] = None,
        max_attempts: Optional[int] = None
    ) -> MergeResult:
        """
        Merge source into target.

        The transaction is re-run from scratch when the store reports a
        concurrent write, up to ``max_attempts`` times.

        Args:
            target_id: Person that survives
            source_id: Person that is merged away and deleted
            field_choices: Per-field choices for conflicting fields
            primary_photo: Appearance id or image path to make primary
            max_attempts: Transaction attempts (defaults to config)

        Returns:
            MergeResult

        Raises:
            NotFoundError: A person is missing
            InvalidOperationError: Self-merge or cross-owner merge
            ValidationError: A required choice is missing or invalid
            StoreConflictError: Conflicts persisted through every attempt
        """
        if target_id == source_id:
            raise InvalidOperationError(
                'Cannot merge a person with themselves', {'person_id': target_id}
            )

        attempts = max_attempts or self.config.merge_max_attempts

        attempt = 1
        while True:
            try:
                result, orphaned_images = self._merge_once(
                    target_id, source_id, field_choices, primary_photo
                )
                break
            except StoreConflictError as e:
                if attempt >= attempts:
                    logger.error(
                        f"Merge of {source_id} into {target_id} failed after {attempt} attempts: {e}"
                    )
                    raise
                logger.warning(f"Merge attempt {attempt} hit a store conflict, retrying: {e}")
                attempt += 1

        result.attempts = attempt
        logger.info(
            f"Merged {source_id} into {target_id}: "
            f"{len(result.rewritten_connection_ids)} connections rewritten, "
            f"{len(result.deleted_connection_ids)} deleted"
        )

        result.failed_image_cleanups = self.cleanup_images(orphaned_images)
        return result

    def _merge_once(
        self,
        target_id: str,
        source_id: str,
        field_choices: Optional[Dict[str, FieldChoice]],
        primary_photo: Optional[str]
    ) -> Tuple[MergeResult, List[str]]:
        """Run one merge transaction; returns the result and orphaned image paths."""
        merge_id = MergeAuditTrail.new_merge_id()

        with self.db.transaction():
            target = self._load(target_id)
            source = self._load(source_id)

            can_merge, reason = target.can_be_merged_with(source)
            if not can_merge:
                raise InvalidOperationError(
                    reason, {'target_id': target_id, 'source_id': source_id}
                )

            conflicts = self.analyzer.analyze_conflicts(target, source)
            decisions = self.analyzer.resolve_choices(conflicts, field_choices)

            self._apply_field_choices(target, source, decisions, merge_id)
            self._merge_notes(target, source, merge_id)
            self._merge_appearances(target, source, primary_photo)
            self._merge_rosters(target, source)

            self.db.update_person(target)

            rewritten, deleted = self._rewire_connections(target, source, merge_id)

            self.db.delete_person(source.id, expected_version=source.version)
            self._log(
                merge_id, target.owner_id, OperationType.PERSON_DELETE, 'people',
                source.id, reason=f"Merged into {target.id}",
                metadata={'target_id': target.id, 'name': source.name}
            )

        kept_paths = set(target.image_paths())
        orphaned = [p for p in source.image_paths() if p not in kept_paths]

        result = MergeResult(
            merged_person=target,
            deleted_person_id=source.id,
            rewritten_connection_ids=rewritten,
            deleted_connection_ids=deleted,
            merge_id=merge_id,
        )
        return result, orphaned

    def _load(self, person_id: str) -> Person:
        person = self.db.get_person(person_id)
        if person is None:
            raise NotFoundError('Person', person_id)
        return person

    def _apply_field_choices(
        self,
        target: Person,
        source: Person,
        decisions: Dict[str, FieldChoice],
        merge_id: str
    ) -> None:
        """Copy every field decided as TAKE_SOURCE onto the target."""
        for field_name, choice in decisions.items():
            if choice is not FieldChoice.TAKE_SOURCE:
                continue

            old_value = target.get_field(field_name)
            new_value = source.get_field(field_name)
            if field_name == 'name':
                new_value = new_value or ''
            target.set_field(field_name, new_value)

            self._log(
                merge_id, target.owner_id, OperationType.FIELD_CHANGE, 'people',
                target.id, field_name=field_name,
                old_value=old_value, new_value=new_value,
                reason=f"Taken from {source.id}"
            )

    def _merge_notes(self, target: Person, source: Person, merge_id: str) -> None:
        """Append the source's notes under a separator naming the source."""
        if not source.notes:
            return

        old_notes = target.notes
        if target.notes:
            target.notes = (
                f"{target.notes}\n\n--- Merged from {source.name} ---\n{source.notes}"
            )
        else:
            target.notes = source.notes

        self._log(
            merge_id, target.owner_id, OperationType.NOTES_APPEND, 'people',
            target.id, field_name='notes',
            old_value=old_notes, new_value=target.notes
        )

    def _merge_appearances(
        self,
        target: Person,
        source: Person,
        primary_photo: Optional[str]
    ) -> None:
        """
        Concatenate appearances (target first) and settle the primary photo.

        Source appearances whose id already exists on the target are skipped
        so appearance ids stay unique.

        Raises:
            ValidationError: If ``primary_photo`` matches no appearance
        """
        target_primary = target.get_primary_appearance()
        source_primary = source.get_primary_appearance()

        existing_ids = {a.id for a in target.face_appearances}
        for appearance in source.face_appearances:
            if appearance.id in existing_ids:
                logger.debug(f"Skipping duplicate appearance {appearance.id} from {source.id}")
                continue
            existing_ids.add(appearance.id)
            target.face_appearances.append(appearance)

        if primary_photo:
            if not target.set_primary_appearance(primary_photo):
                raise ValidationError(
                    f"Primary photo {primary_photo} is not an appearance of either person",
                    ['primary_photo']
                )
            return

        if target_primary is not None:
            target.set_primary_appearance(target_primary.id)
        elif source_primary is not None and self._appearance_kept(target, source_primary):
            target.set_primary_appearance(source_primary.id)
        else:
            for appearance in target.face_appearances:
                appearance.is_primary = False

    @staticmethod
    def _appearance_kept(person: Person, appearance: FaceAppearance) -> bool:
        return any(a is appearance for a in person.face_appearances)

    @staticmethod
    def _merge_rosters(target: Person, source: Person) -> None:
        """Union roster ids, dropping duplicates."""
        target.roster_ids = list(dict.fromkeys(
            list(target.roster_ids or []) + list(source.roster_ids or [])
        ))

    def _rewire_connections(
        self,
        target: Person,
        source: Person,
        merge_id: str
    ) -> Tuple[List[str], List[str]]:
        """
        Move the source's connections onto the target.

        Returns:
            (rewritten ids, deleted ids)
        """
        target_connections = self.db.get_connections_for_person(target.id)
        known = {c.id for c in target_connections}
        connections: List[Connection] = target_connections + [
            c for c in self.db.get_connections_for_person(source.id)
            if c.id not in known
        ]

        plan = plan_connection_rewiring(target.id, source.id, connections)

        rewritten = []
        for conn in plan.rewrites:
            old_from, old_to = conn.from_person_id, conn.to_person_id
            conn.replace_endpoint(source.id, target.id)
            self.db.update_connection(conn)
            rewritten.append(conn.id)

            logger.debug(f"Rewrote connection {conn.id}: {old_from}->{old_to} to "
                         f"{conn.from_person_id}->{conn.to_person_id}")
            self._log(
                merge_id, target.owner_id, OperationType.CONNECTION_REWRITE,
                'connections', conn.id,
                old_value=f"{old_from}->{old_to}",
                new_value=f"{conn.from_person_id}->{conn.to_person_id}"
            )

        deleted = []
        for conn, reason in (
            [(c, 'Duplicate of an existing target connection') for c in plan.duplicates] +
            [(c, 'Would link the target to itself') for c in plan.self_loops]
        ):
            self.db.delete_connection(conn.id, expected_version=conn.version)
            deleted.append(conn.id)

            logger.debug(f"Deleted connection {conn.id}: {reason}")
            self._log(
                merge_id, target.owner_id, OperationType.CONNECTION_DELETE,
                'connections', conn.id, reason=reason,
                metadata=conn.to_dict()
            )

        return rewritten, deleted

    def cleanup_images(self, paths: List[str]) -> List[str]:
        """
        Delete images no longer referenced after a merge, best-effort.

        Each image is attempted independently; failures are logged and never
        raised.

        Returns:
            Paths whose deletion failed
        """
        if not paths or self.storage is None:
            return []

        failed = []
        for path in paths:
            try:
                self.storage.delete(path)
            except Exception as e:
                logger.warning(f"Failed to delete orphaned image {path}: {e}")
                failed.append(path)

        return failed

    def _log(self, merge_id: str, owner_id: str, operation_type: OperationType,
             table_name: str, record_id: str, **kwargs) -> None:
        if self.audit is not None:
            self.audit.log_change(
                merge_id, owner_id, operation_type, table_name, record_id, **kwargs
            )
