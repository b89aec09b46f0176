"""Transactional document store for persons and connections on SQLite."""

import json
import logging
import sqlite3
from pathlib import Path
from typing import List, Optional, Dict, Iterator
from contextlib import contextmanager

from ..core.person import Person, utcnow
from ..core.connection import Connection
from ..utils.errors import (
    NotFoundError,
    InvalidOperationError,
    ValidationError,
    StoreConflictError,
)

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS people (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    data TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_people_owner ON people(owner_id);

CREATE TABLE IF NOT EXISTS connections (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    from_person_id TEXT NOT NULL,
    to_person_id TEXT NOT NULL,
    data TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_connections_owner ON connections(owner_id);
CREATE INDEX IF NOT EXISTS idx_connections_from ON connections(from_person_id);
CREATE INDEX IF NOT EXISTS idx_connections_to ON connections(to_person_id);
"""


def _is_lock_error(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return 'locked' in message or 'busy' in message


class PeopleDatabase:
    """Adapter for the person/connection SQLite store.

    This class handles:
    - SQLite connection management (autocommit outside ``transaction()``)
    - Schema creation
    - CRUD operations for persons and connections
    - Optimistic concurrency through per-record version counters
    - Transaction management
    """

    def __init__(self, db_path: str | Path, timeout: float = 5.0):
        """Open (and create if needed) a database.

        Args:
            db_path: Path to the SQLite file, or ':memory:'
            timeout: Seconds to wait for a competing writer before giving up
        """
        self.db_path = db_path if str(db_path) == ':memory:' else Path(db_path)

        # isolation_level=None: transactions are opened explicitly
        self.conn = sqlite3.connect(str(self.db_path), timeout=timeout, isolation_level=None)
        self.conn.row_factory = sqlite3.Row

        self.conn.executescript(SCHEMA)
        self._in_transaction = False

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for an atomic, isolated write transaction.

        Raises:
            StoreConflictError: If another writer holds the database or a
                conditional write detects a concurrent modification
        """
        if self._in_transaction:
            raise InvalidOperationError("Nested transactions are not supported")

        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            if _is_lock_error(e):
                raise StoreConflictError(f"Database busy: {e}") from e
            raise

        self._in_transaction = True
        try:
            yield self.conn
            self.conn.execute("COMMIT")
        except sqlite3.OperationalError as e:
            self._rollback()
            if _is_lock_error(e):
                raise StoreConflictError(f"Database busy: {e}") from e
            raise
        except BaseException:
            self._rollback()
            raise
        finally:
            self._in_transaction = False

    def _rollback(self) -> None:
        if self.conn.in_transaction:
            self.conn.execute("ROLLBACK")

    # ========== Statistics Methods ==========

    def get_stats(self, owner_id: Optional[str] = None) -> Dict[str, int]:
        """Get record counts.

        Args:
            owner_id: Restrict counts to one owner

        Returns:
            Dictionary with counts of persons and connections
        """
        stats = {}
        for name, table in (('persons', 'people'), ('connections', 'connections')):
            if owner_id is None:
                row = self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
            else:
                row = self.conn.execute(
                    f"SELECT COUNT(*) FROM {table} WHERE owner_id = ?", (owner_id,)
                ).fetchone()
            stats[name] = row[0]
        return stats

    def get_owner_ids(self) -> List[str]:
        rows = self.conn.execute(
            "SELECT DISTINCT owner_id FROM people ORDER BY owner_id"
        ).fetchall()
        return [row[0] for row in rows]

    # ========== Person Methods ==========

    def get_person(self, person_id: str) -> Optional[Person]:
        """Get a person by ID.

        Returns:
            Person or None if not found
        """
        row = self.conn.execute(
            "SELECT * FROM people WHERE id = ?", (person_id,)
        ).fetchone()
        return self._row_to_person(row) if row else None

    def get_people_by_owner(self, owner_id: str) -> List[Person]:
        """Get all persons of an owner in insertion order."""
        rows = self.conn.execute(
            "SELECT * FROM people WHERE owner_id = ? ORDER BY rowid", (owner_id,)
        ).fetchall()
        return [self._row_to_person(row) for row in rows]

    def save_person(self, person: Person) -> Person:
        """Insert a new person.

        Raises:
            InvalidOperationError: If the id already exists
        """
        person.version = 0
        try:
            self.conn.execute(
                "INSERT INTO people (id, owner_id, data, version) VALUES (?, ?, ?, 0)",
                (person.id, person.owner_id, self._person_json(person))
            )
        except sqlite3.IntegrityError as e:
            raise InvalidOperationError(f"Person already exists: {person.id}") from e
        return person

    def update_person(self, person: Person) -> Person:
        """Write a person back, conditional on its version being unchanged.

        Raises:
            NotFoundError: If the person no longer exists
            StoreConflictError: If the stored version differs
        """
        person.updated_at = utcnow()
        cursor = self.conn.execute(
            """
            UPDATE people
            SET owner_id = ?, data = ?, version = version + 1
            WHERE id = ? AND version = ?
            """,
            (person.owner_id, self._person_json(person), person.id, person.version)
        )
        self._check_write(cursor, 'people', 'Person', person.id)
        person.version += 1
        return person

    def delete_person(self, person_id: str, expected_version: Optional[int] = None) -> None:
        """Delete a person, optionally conditional on its version.

        Raises:
            NotFoundError: If the person does not exist
            StoreConflictError: If ``expected_version`` no longer matches
        """
        if expected_version is None:
            cursor = self.conn.execute("DELETE FROM people WHERE id = ?", (person_id,))
        else:
            cursor = self.conn.execute(
                "DELETE FROM people WHERE id = ? AND version = ?",
                (person_id, expected_version)
            )
        self._check_write(cursor, 'people', 'Person', person_id)

    # ========== Connection Methods ==========

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        row = self.conn.execute(
            "SELECT * FROM connections WHERE id = ?", (connection_id,)
        ).fetchone()
        return self._row_to_connection(row) if row else None

    def get_connections_by_owner(self, owner_id: str) -> List[Connection]:
        """Get all connections of an owner in insertion order."""
        rows = self.conn.execute(
            "SELECT * FROM connections WHERE owner_id = ? ORDER BY rowid", (owner_id,)
        ).fetchall()
        return [self._row_to_connection(row) for row in rows]

    def get_connections_for_person(self, person_id: str) -> List[Connection]:
        """Get every connection with the person at either end."""
        rows = self.conn.execute(
            """
            SELECT * FROM connections
            WHERE from_person_id = ? OR to_person_id = ?
            ORDER BY rowid
            """,
            (person_id, person_id)
        ).fetchall()
        return [self._row_to_connection(row) for row in rows]

    def save_connection(self, connection: Connection) -> Connection:
        """Insert a new connection after checking its endpoints and rules.

        Raises:
            InvalidOperationError: Self-loop, cross-owner endpoint or duplicate id
            NotFoundError: If an endpoint person does not exist
            ValidationError: If the connection breaks other business rules
        """
        self._check_connection(connection)
        connection.version = 0
        try:
            self.conn.execute(
                """
                INSERT INTO connections
                    (id, owner_id, from_person_id, to_person_id, data, version)
                VALUES (?, ?, ?, ?, ?, 0)
                """,
                (
                    connection.id, connection.owner_id,
                    connection.from_person_id, connection.to_person_id,
                    self._connection_json(connection)
                )
            )
        except sqlite3.IntegrityError as e:
            raise InvalidOperationError(f"Connection already exists: {connection.id}") from e
        return connection

    def update_connection(self, connection: Connection) -> Connection:
        """Write a connection back, conditional on its version being unchanged.

        Raises:
            InvalidOperationError: If the update would create a self-loop
            NotFoundError: If the connection no longer exists
            StoreConflictError: If the stored version differs
        """
        if connection.is_self_loop():
            raise InvalidOperationError(
                f"Connection {connection.id} would link {connection.from_person_id} to itself"
            )

        connection.updated_at = utcnow()
        cursor = self.conn.execute(
            """
            UPDATE connections
            SET from_person_id = ?, to_person_id = ?, data = ?, version = version + 1
            WHERE id = ? AND version = ?
            """,
            (
                connection.from_person_id, connection.to_person_id,
                self._connection_json(connection),
                connection.id, connection.version
            )
        )
        self._check_write(cursor, 'connections', 'Connection', connection.id)
        connection.version += 1
        return connection

    def delete_connection(self, connection_id: str, expected_version: Optional[int] = None) -> None:
        """Delete a connection, optionally conditional on its version."""
        if expected_version is None:
            cursor = self.conn.execute("DELETE FROM connections WHERE id = ?", (connection_id,))
        else:
            cursor = self.conn.execute(
                "DELETE FROM connections WHERE id = ? AND version = ?",
                (connection_id, expected_version)
            )
        self._check_write(cursor, 'connections', 'Connection', connection_id)

    # ========== Helper Methods ==========

    def _check_write(self, cursor: sqlite3.Cursor, table: str, kind: str, record_id: str) -> None:
        """Turn a zero-row conditional write into NotFound or a conflict."""
        if cursor.rowcount > 0:
            return

        exists = self.conn.execute(
            f"SELECT 1 FROM {table} WHERE id = ?", (record_id,)
        ).fetchone()
        if not exists:
            raise NotFoundError(kind, record_id)

        logger.warning(f"{kind} {record_id} was modified concurrently")
        raise StoreConflictError(
            f"{kind} {record_id} was modified concurrently",
            {"id": record_id}
        )

    def _check_connection(self, connection: Connection) -> None:
        if connection.is_self_loop():
            raise InvalidOperationError(
                f"Connection cannot link {connection.from_person_id} to itself"
            )

        problems = connection.validate()
        if problems:
            raise ValidationError("; ".join(problems))

        for person_id in (connection.from_person_id, connection.to_person_id):
            row = self.conn.execute(
                "SELECT owner_id FROM people WHERE id = ?", (person_id,)
            ).fetchone()
            if not row:
                raise NotFoundError('Person', person_id)
            if row['owner_id'] != connection.owner_id:
                raise InvalidOperationError(
                    f"Person {person_id} belongs to a different owner"
                )

    @staticmethod
    def _person_json(person: Person) -> str:
        data = person.to_dict()
        data.pop('version', None)
        return json.dumps(data, ensure_ascii=False)

    @staticmethod
    def _connection_json(connection: Connection) -> str:
        data = connection.to_dict()
        data.pop('version', None)
        return json.dumps(data, ensure_ascii=False)

    def _row_to_person(self, row: sqlite3.Row) -> Person:
        """Convert database row to Person object."""
        data = json.loads(row['data'])
        data['id'] = row['id']
        data['owner_id'] = row['owner_id']
        data['version'] = row['version']
        return Person.from_dict(data)

    def _row_to_connection(self, row: sqlite3.Row) -> Connection:
        """Convert database row to Connection object."""
        data = json.loads(row['data'])
        data['id'] = row['id']
        data['owner_id'] = row['owner_id']
        data['from_person_id'] = row['from_person_id']
        data['to_person_id'] = row['to_person_id']
        data['version'] = row['version']
        return Connection.from_dict(data)
