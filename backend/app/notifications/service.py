"""NotificationService: DuckDB-backed per-user notification inbox."""
import logging
import uuid
from datetime import datetime
from typing import List, Optional

import duckdb

from .schemas import NotificationCreate

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS notifications (
    id          VARCHAR PRIMARY KEY,
    user_id     VARCHAR NOT NULL,
    type        VARCHAR NOT NULL,
    title       VARCHAR NOT NULL,
    message     VARCHAR NOT NULL,
    task_id     VARCHAR,
    is_read     BOOLEAN NOT NULL DEFAULT FALSE,
    created_at  TIMESTAMP NOT NULL
)
"""

_INDEX = "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id)"


class NotificationService:
    """Singleton service for storing notifications in DuckDB.

    Every read and write is scoped to the owning user: a notification id that
    belongs to someone else behaves exactly like a missing one.
    """

    _instance: Optional["NotificationService"] = None
    _default_db_path: str = "notifications.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        self._db_path = db_path or self._default_db_path
        self._conn = duckdb.connect(self._db_path)
        self._conn.execute(_CREATE_TABLE)
        self._conn.execute(_INDEX)
        logger.info("[NotificationService] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "NotificationService":
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def create(self, data: NotificationCreate) -> dict:
        notification_id = str(uuid.uuid4())
        self._conn.execute(
            """
            INSERT INTO notifications
              (id, user_id, type, title, message, task_id, is_read, created_at)
            VALUES (?, ?, ?, ?, ?, ?, FALSE, ?)
            """,
            [
                notification_id, data.user_id, data.type.value, data.title,
                data.message, data.task_id, datetime.utcnow(),
            ],
        )
        return self.get(notification_id, data.user_id)

    def mark_read(self, notification_id: str, user_id: str) -> Optional[dict]:
        result = self._conn.execute(
            "UPDATE notifications SET is_read = TRUE WHERE id = ? AND user_id = ? RETURNING id",
            [notification_id, user_id],
        ).fetchone()
        if result is None:
            return None
        return self.get(notification_id, user_id)

    def mark_all_read(self, user_id: str) -> int:
        rows = self._conn.execute(
            "UPDATE notifications SET is_read = TRUE WHERE user_id = ? AND NOT is_read RETURNING id",
            [user_id],
        ).fetchall()
        return len(rows)

    def delete(self, notification_id: str, user_id: str) -> bool:
        result = self._conn.execute(
            "DELETE FROM notifications WHERE id = ? AND user_id = ? RETURNING id",
            [notification_id, user_id],
        ).fetchone()
        return result is not None

    def delete_all(self, user_id: str) -> int:
        rows = self._conn.execute(
            "DELETE FROM notifications WHERE user_id = ? RETURNING id", [user_id]
        ).fetchall()
        return len(rows)

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get(self, notification_id: str, user_id: str) -> Optional[dict]:
        row = self._conn.execute(
            f"SELECT {', '.join(self._COLUMNS)} FROM notifications WHERE id = ? AND user_id = ?",
            [notification_id, user_id],
        ).fetchone()
        return self._row_to_dict(row) if row else None

    def list_for_user(self, user_id: str, limit: int = 20) -> List[dict]:
        """Newest first."""
        rows = self._conn.execute(
            f"""
            SELECT {', '.join(self._COLUMNS)} FROM notifications
            WHERE user_id = ?
            ORDER BY created_at DESC, id
            LIMIT ?
            """,
            [user_id, limit],
        ).fetchall()
        return [self._row_to_dict(r) for r in rows]

    def unread_count(self, user_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM notifications WHERE user_id = ? AND NOT is_read",
            [user_id],
        ).fetchone()[0]

    def close(self) -> None:
        self._conn.close()

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    _COLUMNS = [
        "id", "user_id", "type", "title", "message", "task_id", "is_read", "created_at",
    ]

    def _row_to_dict(self, row) -> dict:
        d = dict(zip(self._COLUMNS, row))
        if isinstance(d.get("created_at"), datetime):
            d["created_at"] = d["created_at"].isoformat()
        return d
