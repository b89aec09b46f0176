"""Shared utilities: configuration and errors."""

from .config import EngineConfig
from .errors import (
    FaceMergeError,
    NotFoundError,
    InvalidOperationError,
    ValidationError,
    StoreConflictError,
)

__all__ = [
    'EngineConfig',
    'FaceMergeError',
    'NotFoundError',
    'InvalidOperationError',
    'ValidationError',
    'StoreConflictError',
]
