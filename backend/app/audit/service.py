"""DuckDB-based audit log storage service.

This module provides persistent storage for audit log entries using DuckDB,
a fast embedded analytical database. The service implements the singleton
pattern to ensure only one database connection exists at a time.

Database Schema:
    audit_logs table:
        - id: Auto-incrementing primary key
        - entity_type: Kind of entity ("Task")
        - entity_id: Entity identifier
        - action: CREATE, UPDATE, STATUS_CHANGE, ASSIGNMENT_CHANGE, DELETE
        - user_id: Acting user
        - changes: JSON field diff
        - timestamp: When the action happened (UTC)

Usage:
    service = AuditLogService.get_instance()
    entry = service.log(create_entry)
    history = service.get_entity_history("Task", task_id)
"""
import json
from datetime import datetime
from typing import List, Optional

import duckdb

from .schemas import AuditAction, AuditLogCreate, AuditLogEntry


class AuditLogService:
    """Singleton service for managing audit logs in DuckDB.

    Attributes:
        _instance: Singleton instance of the service.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["AuditLogService"] = None
    _db_path: str = "audit_logs.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Initialize the audit log service.

        Creates the database file and schema if they don't exist.

        Args:
            db_path: Path to DuckDB file. Defaults to "audit_logs.duckdb".
        """
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "AuditLogService":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close the connection and clear the singleton (tests, shutdown)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create the audit_logs table and sequence if they don't exist."""
        conn = self._get_connection()
        conn.execute("""
            CREATE SEQUENCE IF NOT EXISTS audit_logs_seq START 1;
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_logs (
                id INTEGER DEFAULT nextval('audit_logs_seq') PRIMARY KEY,
                entity_type VARCHAR NOT NULL,
                entity_id VARCHAR NOT NULL,
                action VARCHAR NOT NULL,
                user_id VARCHAR NOT NULL,
                changes VARCHAR NOT NULL,
                timestamp TIMESTAMP NOT NULL
            )
        """)

    def log(self, entry: AuditLogCreate) -> AuditLogEntry:
        """Record an action.

        Args:
            entry: The audit log entry to create.

        Returns:
            The stored entry with its timestamp.
        """
        timestamp = datetime.utcnow()
        conn = self._get_connection()
        conn.execute(
            """
            INSERT INTO audit_logs (entity_type, entity_id, action, user_id, changes, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                entry.entity_type,
                entry.entity_id,
                entry.action.value,
                entry.user_id,
                json.dumps(entry.changes, default=str),
                timestamp,
            ]
        )

        return AuditLogEntry(
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            action=entry.action,
            user_id=entry.user_id,
            changes=entry.changes,
            timestamp=timestamp,
        )

    def get_entity_history(
        self,
        entity_type: str,
        entity_id: str,
        limit: int = 100,
    ) -> List[AuditLogEntry]:
        """Get the audit trail of one entity, newest first."""
        rows = self._get_connection().execute(
            """
            SELECT entity_type, entity_id, action, user_id, changes, timestamp
            FROM audit_logs
            WHERE entity_type = ? AND entity_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            [entity_type, entity_id, limit]
        ).fetchall()

        return [
            AuditLogEntry(
                entity_type=row[0],
                entity_id=row[1],
                action=AuditAction(row[2]),
                user_id=row[3],
                changes=json.loads(row[4]),
                timestamp=row[5],
            )
            for row in rows
        ]

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
