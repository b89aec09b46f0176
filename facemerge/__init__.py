"""FaceMerge - duplicate detection, merging and relationship analysis for face-tagged contacts."""

__version__ = "0.1.0"

from .core.person import Person, FaceAppearance, Region
from .core.connection import Connection
from .engine import FaceMergeEngine
from .merge.conflict_resolver import FieldChoice
from .store.database import PeopleDatabase
from .utils.config import EngineConfig

__all__ = [
    'Person',
    'FaceAppearance',
    'Region',
    'Connection',
    'FaceMergeEngine',
    'FieldChoice',
    'PeopleDatabase',
    'EngineConfig',
]
