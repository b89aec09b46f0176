"""Storage collaborators: the SQLite document store, audit trail and images."""

from .database import PeopleDatabase
from .audit_trail import MergeAuditTrail, AuditEntry, OperationType
from .images import ImageStorage, ImageUrlCache, LocalImageStorage

__all__ = [
    'PeopleDatabase',
    'MergeAuditTrail',
    'AuditEntry',
    'OperationType',
    'ImageStorage',
    'ImageUrlCache',
    'LocalImageStorage',
]
