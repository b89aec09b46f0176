"""Core data model: persons, face appearances and connections."""

from .person import Person, FaceAppearance, Region, MERGEABLE_FIELDS
from .connection import Connection

__all__ = ['Person', 'FaceAppearance', 'Region', 'Connection', 'MERGEABLE_FIELDS']
