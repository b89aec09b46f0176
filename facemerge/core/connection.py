"""Directed relationship records between two persons."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any, FrozenSet, Tuple

from .person import utcnow, _parse_timestamp


MIN_STRENGTH = 1
MAX_STRENGTH = 5

# Type pairs that cannot both describe the same connection
MUTUALLY_EXCLUSIVE_TYPES: Tuple[Tuple[str, str], ...] = (
    ('parent', 'child'),
    ('manager', 'reports_to'),
    ('mentor', 'mentee'),
    ('spouse', 'partner'),
)

# Types whose meaning depends on direction
DIRECTED_TYPES = frozenset({
    'manager', 'reports_to', 'mentor', 'mentee', 'parent', 'child',
})


@dataclass
class Connection:
    """A directed relationship between two persons of the same owner.

    Attributes:
        id: Unique identifier
        owner_id: Id of the user who owns the record
        from_person_id: Person the relationship is viewed from
        to_person_id: Person the relationship points to
        types: Relationship type tags (e.g. 'colleague', 'friend')
        reasons: Free-text reasons for the relationship
        strength: Optional strength 1-5; None means unset
        notes: Optional private notes
        created_at: Creation time
        updated_at: Last update time
        version: Store revision, bumped on every write
    """

    id: str
    owner_id: str
    from_person_id: str
    to_person_id: str
    types: List[str] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)
    strength: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0

    def __repr__(self) -> str:
        return (
            f"Connection(id={self.id!r}, {self.from_person_id!r} -> "
            f"{self.to_person_id!r}, types={self.types!r})"
        )

    def involves(self, person_id: str) -> bool:
        return self.from_person_id == person_id or self.to_person_id == person_id

    def other_person_id(self, person_id: str) -> Optional[str]:
        """Get the endpoint opposite ``person_id``, or None if not involved."""
        if self.from_person_id == person_id:
            return self.to_person_id
        if self.to_person_id == person_id:
            return self.from_person_id
        return None

    def endpoint_key(self) -> FrozenSet[str]:
        """Unordered endpoint pair; equal keys mean duplicate connections."""
        return frozenset((self.from_person_id, self.to_person_id))

    def is_self_loop(self) -> bool:
        return self.from_person_id == self.to_person_id

    def replace_endpoint(self, old_id: str, new_id: str) -> None:
        """Rewrite every endpoint equal to ``old_id`` to ``new_id``."""
        if self.from_person_id == old_id:
            self.from_person_id = new_id
        if self.to_person_id == old_id:
            self.to_person_id = new_id

    def has_type(self, type_key: str) -> bool:
        return type_key in self.types

    def add_type(self, type_key: str) -> None:
        if not self.has_type(type_key):
            self.types.append(type_key)

    def add_reason(self, reason: str) -> None:
        if reason not in self.reasons:
            self.reasons.append(reason)

    def is_bidirectional(self) -> bool:
        """True unless any type tag only makes sense in one direction."""
        return not any(t in DIRECTED_TYPES for t in self.types)

    def has_mutually_exclusive_types(self) -> bool:
        return any(
            a in self.types and b in self.types
            for a, b in MUTUALLY_EXCLUSIVE_TYPES
        )

    def strength_bucket(self, strong_at: int = 4, weak_below: int = 2) -> str:
        """Classify strength as 'strong', 'medium' or 'weak'.

        Unset strength counts as medium. A stored value outside 1-5 (for
        example a legacy 0) is treated as unset.
        """
        strength = self.strength
        if strength is None or not (MIN_STRENGTH <= strength <= MAX_STRENGTH):
            return 'medium'
        if strength >= strong_at:
            return 'strong'
        if strength < weak_below:
            return 'weak'
        return 'medium'

    def validate(self) -> List[str]:
        """Check business rules.

        Returns:
            List of problems (empty if valid)
        """
        problems = []

        if not self.types:
            problems.append("Connection must have at least one type")

        if self.is_self_loop():
            problems.append("Connection cannot link a person to themselves")

        if self.strength is not None and not (MIN_STRENGTH <= self.strength <= MAX_STRENGTH):
            problems.append(
                f"Strength must be between {MIN_STRENGTH} and {MAX_STRENGTH}, got {self.strength}"
            )

        if self.has_mutually_exclusive_types():
            problems.append("Connection has mutually exclusive types")

        return problems

    def is_valid(self) -> bool:
        return not self.validate()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'from_person_id': self.from_person_id,
            'to_person_id': self.to_person_id,
            'types': list(self.types),
            'reasons': list(self.reasons),
            'strength': self.strength,
            'notes': self.notes,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Connection':
        """Deserialize from a dict produced by ``to_dict``."""
        strength = data.get('strength')
        return cls(
            id=data['id'],
            owner_id=data['owner_id'],
            from_person_id=data['from_person_id'],
            to_person_id=data['to_person_id'],
            types=list(data.get('types') or []),
            reasons=list(data.get('reasons') or []),
            strength=int(strength) if strength is not None else None,
            notes=data.get('notes'),
            created_at=_parse_timestamp(data.get('created_at')) or utcnow(),
            updated_at=_parse_timestamp(data.get('updated_at')) or utcnow(),
            version=int(data.get('version') or 0),
        )
