"""
Audit trail for merge operations.

Entries are written through the store's own connection, so they commit or
roll back together with the merge that produced them.
"""

import json
import sqlite3
import uuid
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, asdict
from enum import Enum

from .database import PeopleDatabase


class OperationType(Enum):
    """Types of changes a merge makes."""
    FIELD_CHANGE = "field_change"
    NOTES_APPEND = "notes_append"
    CONNECTION_REWRITE = "connection_rewrite"
    CONNECTION_DELETE = "connection_delete"
    PERSON_DELETE = "person_delete"


@dataclass
class AuditEntry:
    """Single audit log entry."""
    id: Optional[int] = None
    merge_id: str = ""
    timestamp: Optional[str] = None
    owner_id: str = ""
    operation_type: str = ""
    table_name: str = ""
    record_id: str = ""
    field_name: str = ""
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    reason: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = asdict(self)
        if self.metadata:
            result['metadata'] = json.dumps(self.metadata)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEntry':
        """Create from dictionary."""
        if 'metadata' in data and isinstance(data['metadata'], str):
            data['metadata'] = json.loads(data['metadata'])
        return cls(**data)


class MergeAuditTrail:
    """Records every change made by a merge, grouped by merge id."""

    def __init__(self, db: PeopleDatabase):
        """Initialize the audit trail on an open store.

        Args:
            db: Store whose connection the entries are written through
        """
        self.db = db
        self._create_schema()

    def _create_schema(self):
        """Create audit trail tables."""
        self.db.conn.executescript("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                merge_id TEXT NOT NULL,
                timestamp TEXT NOT NULL DEFAULT (datetime('now')),
                owner_id TEXT NOT NULL,
                operation_type TEXT NOT NULL,
                table_name TEXT NOT NULL,
                record_id TEXT NOT NULL,
                field_name TEXT NOT NULL DEFAULT '',
                old_value TEXT,
                new_value TEXT,
                reason TEXT,
                metadata TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_audit_merge ON audit_log(merge_id);
            CREATE INDEX IF NOT EXISTS idx_audit_record ON audit_log(table_name, record_id);
        """)

    @staticmethod
    def new_merge_id() -> str:
        return uuid.uuid4().hex

    def log_change(
        self,
        merge_id: str,
        owner_id: str,
        operation_type: OperationType | str,
        table_name: str,
        record_id: str,
        field_name: str = '',
        old_value: Any = None,
        new_value: Any = None,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> int:
        """Log a single change.

        Returns:
            Audit entry ID
        """
        if isinstance(operation_type, OperationType):
            operation_type = operation_type.value

        old_str = str(old_value) if old_value is not None else None
        new_str = str(new_value) if new_value is not None else None
        metadata_json = json.dumps(metadata) if metadata else None

        cursor = self.db.conn.execute("""
            INSERT INTO audit_log (
                merge_id, owner_id, operation_type, table_name, record_id,
                field_name, old_value, new_value, reason, metadata
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (merge_id, owner_id, operation_type, table_name, record_id,
              field_name, old_str, new_str, reason, metadata_json))

        return cursor.lastrowid

    def get_merge_changes(self, merge_id: str) -> List[AuditEntry]:
        """Get all changes made by one merge."""
        rows = self.db.conn.execute("""
            SELECT * FROM audit_log WHERE merge_id = ? ORDER BY id
        """, (merge_id,)).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_record_history(self, table_name: str, record_id: str) -> List[AuditEntry]:
        """Get change history for a specific record."""
        rows = self.db.conn.execute("""
            SELECT * FROM audit_log
            WHERE table_name = ? AND record_id = ?
            ORDER BY id
        """, (table_name, record_id)).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_recent_changes(self, owner_id: Optional[str] = None, limit: int = 100) -> List[AuditEntry]:
        """Get recent changes, newest first."""
        if owner_id is None:
            rows = self.db.conn.execute(
                "SELECT * FROM audit_log ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        else:
            rows = self.db.conn.execute(
                "SELECT * FROM audit_log WHERE owner_id = ? ORDER BY id DESC LIMIT ?",
                (owner_id, limit)
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def _row_to_entry(self, row: sqlite3.Row) -> AuditEntry:
        """Convert database row to AuditEntry."""
        return AuditEntry.from_dict(dict(row))
