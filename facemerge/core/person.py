"""Person records and their face appearances."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Tuple


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp, returning None for missing or malformed input."""
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


@dataclass(slots=True)
class Region:
    """Rectangular region in original-image coordinates."""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {'x': self.x, 'y': self.y, 'width': self.width, 'height': self.height}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Region':
        data = data or {}
        return cls(
            x=data.get('x', 0.0),
            y=data.get('y', 0.0),
            width=data.get('width', 0.0),
            height=data.get('height', 0.0),
        )


@dataclass(slots=True)
class FaceAppearance:
    """One recorded instance of a person's face within a roster image.

    Attributes:
        id: Appearance id, unique within its person
        roster_id: Id of the source image (roster) the face was cropped from
        image_path: Storage path of the cropped face image
        region: Region of the face in the original image
        is_primary: Whether this is the person's primary photo
    """
    id: str
    roster_id: str
    image_path: str
    region: Region = field(default_factory=Region)
    is_primary: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'roster_id': self.roster_id,
            'image_path': self.image_path,
            'region': self.region.to_dict(),
            'is_primary': self.is_primary,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FaceAppearance':
        return cls(
            id=data['id'],
            roster_id=data.get('roster_id', ''),
            image_path=data.get('image_path', ''),
            region=Region.from_dict(data.get('region')),
            is_primary=bool(data.get('is_primary', False)),
        )


# Fields a user can resolve during a merge, in display order
MERGEABLE_FIELDS: Tuple[str, ...] = (
    'name',
    'company',
    'hobbies',
    'birthday',
    'first_met',
    'first_met_context',
)


@dataclass
class Person:
    """A person record owned by a single user.

    Attributes:
        id: Unique identifier
        owner_id: Id of the user who owns the record
        name: Display name
        company: Optional company
        hobbies: Optional free-text hobbies
        birthday: Optional birthday string (kept as entered)
        first_met: Optional first-met date string
        first_met_context: Optional description of where/how they met
        notes: Optional free-text notes
        face_appearances: Ordered face appearances
        roster_ids: Ids of roster images the person appears in
        primary_appearance_path: Image path of the primary appearance
        created_at: Creation time
        updated_at: Last update time
        version: Store revision, bumped on every write
    """

    id: str
    owner_id: str
    name: str = ''
    company: Optional[str] = None
    hobbies: Optional[str] = None
    birthday: Optional[str] = None
    first_met: Optional[str] = None
    first_met_context: Optional[str] = None
    notes: Optional[str] = None
    face_appearances: List[FaceAppearance] = field(default_factory=list)
    roster_ids: List[str] = field(default_factory=list)
    primary_appearance_path: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0

    def __str__(self) -> str:
        """Return a human-readable string representation."""
        if self.company:
            return f"{self.name or 'Unknown'} ({self.company})"
        return self.name or 'Unknown'

    def __repr__(self) -> str:
        return f"Person(id={self.id!r}, name={self.name!r})"

    def get_field(self, field_name: str) -> Optional[str]:
        """Get one of the mergeable fields by name."""
        if field_name not in MERGEABLE_FIELDS:
            raise KeyError(f"Not a mergeable field: {field_name}")
        return getattr(self, field_name)

    def set_field(self, field_name: str, value: Optional[str]) -> None:
        """Set one of the mergeable fields by name."""
        if field_name not in MERGEABLE_FIELDS:
            raise KeyError(f"Not a mergeable field: {field_name}")
        setattr(self, field_name, value)

    def has_face_appearances(self) -> bool:
        return len(self.face_appearances) > 0

    def get_primary_appearance(self) -> Optional[FaceAppearance]:
        """Get the primary face appearance.

        The primary flag wins; otherwise the appearance whose image path
        matches ``primary_appearance_path``.

        Returns:
            FaceAppearance or None
        """
        for appearance in self.face_appearances:
            if appearance.is_primary:
                return appearance

        if not self.primary_appearance_path:
            return None

        for appearance in self.face_appearances:
            if appearance.image_path == self.primary_appearance_path:
                return appearance

        return None

    def get_appearance_in_roster(self, roster_id: str) -> Optional[FaceAppearance]:
        """Get the first appearance recorded in a roster."""
        for appearance in self.face_appearances:
            if appearance.roster_id == roster_id:
                return appearance
        return None

    def find_appearance(self, reference: str) -> Optional[FaceAppearance]:
        """Find an appearance by id or by image path."""
        for appearance in self.face_appearances:
            if appearance.id == reference or appearance.image_path == reference:
                return appearance
        return None

    def belongs_to_roster(self, roster_id: str) -> bool:
        return roster_id in self.roster_ids

    def add_to_roster(self, roster_id: str) -> None:
        if not self.belongs_to_roster(roster_id):
            self.roster_ids.append(roster_id)

    def add_face_appearance(self, appearance: FaceAppearance) -> bool:
        """Add an appearance unless one with the same id already exists.

        The first appearance becomes primary when no primary is set.

        Returns:
            True if the appearance was added
        """
        if any(existing.id == appearance.id for existing in self.face_appearances):
            return False

        self.face_appearances.append(appearance)

        if len(self.face_appearances) == 1 and not self.primary_appearance_path:
            self.set_primary_appearance(appearance.id)

        return True

    def set_primary_appearance(self, reference: str) -> bool:
        """Mark one appearance primary and clear every other primary flag.

        Args:
            reference: Appearance id or image path

        Returns:
            True if a matching appearance was found
        """
        chosen = self.find_appearance(reference)
        if chosen is None:
            return False

        for appearance in self.face_appearances:
            appearance.is_primary = appearance is chosen
        self.primary_appearance_path = chosen.image_path
        return True

    def image_paths(self) -> List[str]:
        """Storage paths of all face images."""
        return [a.image_path for a in self.face_appearances if a.image_path]

    def can_be_merged_with(self, other: 'Person') -> Tuple[bool, Optional[str]]:
        """Check whether ``other`` may be merged into this person.

        Returns:
            (can_merge, reason) tuple; reason is None when merging is allowed
        """
        if self.id == other.id:
            return False, 'Cannot merge a person with themselves'
        if self.owner_id != other.owner_id:
            return False, 'Can only merge people from the same owner'
        return True, None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'name': self.name,
            'company': self.company,
            'hobbies': self.hobbies,
            'birthday': self.birthday,
            'first_met': self.first_met,
            'first_met_context': self.first_met_context,
            'notes': self.notes,
            'face_appearances': [a.to_dict() for a in self.face_appearances],
            'roster_ids': list(self.roster_ids),
            'primary_appearance_path': self.primary_appearance_path,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Person':
        """Deserialize from a dict produced by ``to_dict``."""
        return cls(
            id=data['id'],
            owner_id=data['owner_id'],
            name=data.get('name') or '',
            company=data.get('company'),
            hobbies=data.get('hobbies'),
            birthday=data.get('birthday'),
            first_met=data.get('first_met'),
            first_met_context=data.get('first_met_context'),
            notes=data.get('notes'),
            face_appearances=[
                FaceAppearance.from_dict(a) for a in data.get('face_appearances') or []
            ],
            roster_ids=list(data.get('roster_ids') or []),
            primary_appearance_path=data.get('primary_appearance_path'),
            created_at=_parse_timestamp(data.get('created_at')) or utcnow(),
            updated_at=_parse_timestamp(data.get('updated_at')) or utcnow(),
            version=int(data.get('version') or 0),
        )
