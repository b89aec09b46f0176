"""
Conflict analysis for merging duplicate person records.

Diffs two records field by field, previews the impact of a merge on
connections, rosters and face appearances, and turns user choices into a
complete per-field decision.
"""

from typing import Optional, Any, List, Dict, Set
from dataclasses import dataclass, field
from enum import Enum

from ..core.person import Person, MERGEABLE_FIELDS
from ..core.connection import Connection
from ..utils.errors import ValidationError


class FieldChoice(Enum):
    """Decision on which record a merged field comes from."""
    KEEP_TARGET = "target"
    TAKE_SOURCE = "source"


@dataclass
class MergeConflict:
    """A field where the two records disagree."""
    field: str
    target_value: Any
    source_value: Any
    requires_choice: bool

    def __str__(self) -> str:
        """Human-readable description."""
        marker = " (choice required)" if self.requires_choice else ""
        return (
            f"Field: {self.field}{marker}\n"
            f"  Target: {self.target_value}\n"
            f"  Source: {self.source_value}"
        )


@dataclass
class ConnectionPlan:
    """How each connection incident to the source will be handled."""
    rewrites: List[Connection] = field(default_factory=list)
    duplicates: List[Connection] = field(default_factory=list)
    self_loops: List[Connection] = field(default_factory=list)

    @property
    def deletions(self) -> List[Connection]:
        return self.duplicates + self.self_loops


@dataclass
class MergePreview:
    """Impact of merging source into target, computed before committing."""
    conflicts: List[MergeConflict]
    source_connections: List[Connection]
    will_be_rewritten: int
    will_be_deleted: int
    will_be_dropped_as_self_loop: int
    affected_roster_ids: List[str]
    merged_face_appearance_count: int

    @property
    def fields_requiring_choice(self) -> List[str]:
        return [c.field for c in self.conflicts if c.requires_choice]

    def __str__(self) -> str:
        """Human-readable summary."""
        return (
            f"Conflicts: {len(self.conflicts)} "
            f"({len(self.fields_requiring_choice)} need a choice)\n"
            f"  Connections rewritten: {self.will_be_rewritten}\n"
            f"  Connections deleted as duplicates: {self.will_be_deleted}\n"
            f"  Connections dropped as self-loops: {self.will_be_dropped_as_self_loop}\n"
            f"  Affected rosters: {len(self.affected_roster_ids)}\n"
            f"  Face appearances after merge: {self.merged_face_appearance_count}"
        )


def parse_field_choices(raw: Dict[str, str]) -> Dict[str, FieldChoice]:
    """
    Convert ``{'field': 'target'|'source'}`` into FieldChoice values.

    Raises:
        ValidationError: If a value is neither 'target' nor 'source'
    """
    choices = {}
    for field_name, value in raw.items():
        if isinstance(value, FieldChoice):
            choices[field_name] = value
            continue
        try:
            choices[field_name] = FieldChoice(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Choice for {field_name} must be 'target' or 'source', got {value!r}",
                [field_name]
            ) from None
    return choices


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ''
    return False


def plan_connection_rewiring(
    target_id: str,
    source_id: str,
    connections: List[Connection]
) -> ConnectionPlan:
    """
    Classify every connection incident to the source.

    A connection is a duplicate when its counterpart is already linked to
    the target, including links produced by an earlier rewrite in the same
    plan; it is a self-loop when its counterpart is the target itself;
    otherwise it is rewritten.

    Args:
        target_id: Person that survives the merge
        source_id: Person being merged away
        connections: All connections of the owner

    Returns:
        ConnectionPlan in connection order
    """
    linked_to_target: Set[str] = set()
    for conn in connections:
        if conn.involves(target_id) and not conn.involves(source_id):
            linked_to_target.add(conn.other_person_id(target_id))

    plan = ConnectionPlan()
    for conn in connections:
        if not conn.involves(source_id):
            continue

        counterpart = conn.other_person_id(source_id)

        if counterpart == target_id or counterpart == source_id:
            plan.self_loops.append(conn)
        elif counterpart in linked_to_target:
            plan.duplicates.append(conn)
        else:
            plan.rewrites.append(conn)
            linked_to_target.add(counterpart)

    return plan


class ConflictAnalyzer:
    """
    Analyzes merge conflicts between a target and a source record.

    Resolution rules:
    1. Equal values - no conflict
    2. One side empty - conflict that auto-resolves to the non-empty side
    3. Both non-empty and different - the user must choose
    """

    FIELDS = MERGEABLE_FIELDS

    def analyze_conflicts(self, target: Person, source: Person) -> List[MergeConflict]:
        """
        Diff the mergeable fields of two records.

        None and '' are both treated as empty and never conflict with each
        other.

        Args:
            target: Person that survives the merge
            source: Person being merged away

        Returns:
            List of conflicts in field order
        """
        conflicts = []

        for field_name in self.FIELDS:
            target_value = target.get_field(field_name)
            source_value = source.get_field(field_name)

            if _is_empty(target_value) and _is_empty(source_value):
                continue
            if target_value == source_value:
                continue

            conflicts.append(MergeConflict(
                field=field_name,
                target_value=target_value,
                source_value=source_value,
                requires_choice=not _is_empty(target_value) and not _is_empty(source_value),
            ))

        return conflicts

    def preview_merge(
        self,
        target: Person,
        source: Person,
        connections: List[Connection]
    ) -> MergePreview:
        """
        Preview the impact of merging source into target.

        Args:
            target: Person that survives the merge
            source: Person being merged away
            connections: All connections of the owner

        Returns:
            MergePreview
        """
        plan = plan_connection_rewiring(target.id, source.id, connections)

        affected_rosters = list(dict.fromkeys(
            list(target.roster_ids or []) + list(source.roster_ids or [])
        ))

        return MergePreview(
            conflicts=self.analyze_conflicts(target, source),
            source_connections=[c for c in connections if c.involves(source.id)],
            will_be_rewritten=len(plan.rewrites),
            will_be_deleted=len(plan.duplicates),
            will_be_dropped_as_self_loop=len(plan.self_loops),
            affected_roster_ids=affected_rosters,
            merged_face_appearance_count=(
                len(target.face_appearances) + len(source.face_appearances)
            ),
        )

    def resolve_choices(
        self,
        conflicts: List[MergeConflict],
        field_choices: Optional[Dict[str, FieldChoice]] = None
    ) -> Dict[str, FieldChoice]:
        """
        Produce a decision for every conflicting field.

        Explicit choices win. Fields without a choice auto-resolve to the
        non-empty side; a field that requires a choice and has none is an
        error.

        Args:
            conflicts: Output of ``analyze_conflicts``
            field_choices: User choices keyed by field name

        Returns:
            Mapping of field name to FieldChoice

        Raises:
            ValidationError: If choices are unknown or required ones are missing
        """
        field_choices = dict(field_choices or {})

        unknown = sorted(set(field_choices) - set(self.FIELDS))
        if unknown:
            raise ValidationError(f"Unknown merge fields: {', '.join(unknown)}", unknown)

        bad = sorted(f for f, c in field_choices.items() if not isinstance(c, FieldChoice))
        if bad:
            raise ValidationError(f"Invalid merge choice for: {', '.join(bad)}", bad)

        missing = [
            c.field for c in conflicts
            if c.requires_choice and c.field not in field_choices
        ]
        if missing:
            raise ValidationError(
                f"A choice is required for: {', '.join(missing)}", missing
            )

        resolved: Dict[str, FieldChoice] = {}
        for conflict in conflicts:
            choice = field_choices.get(conflict.field)
            if choice is None:
                choice = (
                    FieldChoice.TAKE_SOURCE
                    if _is_empty(conflict.target_value)
                    else FieldChoice.KEEP_TARGET
                )
            resolved[conflict.field] = choice

        return resolved
