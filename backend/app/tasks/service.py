"""TaskService: DuckDB-backed task storage."""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import duckdb

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS tasks (
    id              VARCHAR PRIMARY KEY,
    title           VARCHAR NOT NULL,
    description     VARCHAR NOT NULL DEFAULT '',
    status          VARCHAR NOT NULL DEFAULT 'To Do',
    priority        VARCHAR NOT NULL DEFAULT 'Medium',
    due_date        VARCHAR,
    creator_id      VARCHAR NOT NULL,
    assigned_to_id  VARCHAR,
    created_at      TIMESTAMP NOT NULL,
    updated_at      TIMESTAMP NOT NULL
)
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_tasks_creator ON tasks(creator_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_assignee ON tasks(assigned_to_id)",
)

# Fields whose changes are tracked in the audit log and in task:updated events.
TRACKED_FIELDS = ("status", "priority", "title", "description", "due_date", "assigned_to_id")

# sortBy value -> ORDER BY expression
SORT_COLUMNS = {
    "dueDate": "due_date",
    "createdAt": "created_at",
    "priority": (
        "CASE priority WHEN 'Low' THEN 0 WHEN 'Medium' THEN 1 "
        "WHEN 'High' THEN 2 WHEN 'Urgent' THEN 3 END"
    ),
    "status": (
        "CASE status WHEN 'To Do' THEN 0 WHEN 'In Progress' THEN 1 "
        "WHEN 'Review' THEN 2 WHEN 'Completed' THEN 3 END"
    ),
}

# due_date is an ISO date string, so string comparison is date order.
_OVERDUE = "(due_date IS NOT NULL AND due_date < ? AND status <> 'Completed')"


def _today() -> str:
    return datetime.utcnow().date().isoformat()


def diff_fields(existing: dict, updates: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Return ``{field: {"old": ..., "new": ...}}`` for every tracked field that changes."""
    changes: Dict[str, Dict[str, Any]] = {}
    for field in TRACKED_FIELDS:
        if field not in updates:
            continue
        old, new = existing.get(field), updates[field]
        if old != new:
            changes[field] = {"old": old, "new": new}
    return changes


class TaskService:
    """Singleton service for managing tasks in DuckDB.

    Dates are stored as ISO strings so that rows round-trip to JSON unchanged.
    """

    _instance: Optional["TaskService"] = None
    _default_db_path: str = "tasks.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        self._db_path = db_path or self._default_db_path
        self._conn = duckdb.connect(self._db_path)
        self._conn.execute(_CREATE_TABLE)
        for index in _INDEXES:
            self._conn.execute(index)
        logger.info("[TaskService] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "TaskService":
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    # -----------------------------------------------------------------------
    # CRUD
    # -----------------------------------------------------------------------

    def create(
        self,
        title: str,
        creator_id: str,
        description: str = "",
        priority: str = "Medium",
        due_date: Optional[str] = None,
        assigned_to_id: Optional[str] = None,
    ) -> dict:
        task_id = str(uuid.uuid4())
        now = datetime.utcnow()
        self._conn.execute(
            """
            INSERT INTO tasks
              (id, title, description, status, priority, due_date,
               creator_id, assigned_to_id, created_at, updated_at)
            VALUES (?, ?, ?, 'To Do', ?, ?, ?, ?, ?, ?)
            """,
            [
                task_id, title, description, priority, due_date,
                creator_id, assigned_to_id, now, now,
            ],
        )
        return self.get(task_id)

    def get(self, task_id: str) -> Optional[dict]:
        row = self._conn.execute(
            f"SELECT {', '.join(self._COLUMNS)} FROM tasks WHERE id = ?", [task_id]
        ).fetchone()
        return self._row_to_dict(row) if row else None

    def list_tasks(
        self,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        assigned_to_id: Optional[str] = None,
        creator_id: Optional[str] = None,
        search: Optional[str] = None,
        overdue: bool = False,
        sort_by: str = "dueDate",
        sort_order: str = "asc",
    ) -> List[dict]:
        """List tasks matching every given filter.

        Args:
            overdue: Only tasks due before today that are not completed.
            sort_by: One of ``SORT_COLUMNS``. Priority and status sort by
                rank (Low..Urgent, To Do..Completed), not alphabetically.
            sort_order: ``asc`` or ``desc``. Tasks without a due date always
                sort last.

        Raises:
            ValueError: Unknown ``sort_by`` or ``sort_order``.
        """
        if sort_by not in SORT_COLUMNS:
            raise ValueError(f"Unknown sort field: {sort_by}")
        if sort_order not in ("asc", "desc"):
            raise ValueError(f"Unknown sort order: {sort_order}")

        clauses: List[str] = []
        params: List[Any] = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if priority:
            clauses.append("priority = ?")
            params.append(priority)
        if assigned_to_id:
            clauses.append("assigned_to_id = ?")
            params.append(assigned_to_id)
        if creator_id:
            clauses.append("creator_id = ?")
            params.append(creator_id)
        if overdue:
            clauses.append(_OVERDUE)
            params.append(_today())
        if search:
            clauses.append("(title ILIKE ? OR description ILIKE ?)")
            params.extend([f"%{search}%", f"%{search}%"])

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        direction = sort_order.upper()
        rows = self._conn.execute(
            f"""
            SELECT {', '.join(self._COLUMNS)} FROM tasks
            {where}
            ORDER BY {SORT_COLUMNS[sort_by]} {direction} NULLS LAST, created_at ASC
            """,
            params,
        ).fetchall()
        return [self._row_to_dict(r) for r in rows]

    def update(self, task_id: str, fields: Dict[str, Any]) -> Optional[dict]:
        """Apply ``fields`` (None values are written, so they clear the column)."""
        allowed = {k: v for k, v in fields.items() if k in TRACKED_FIELDS}
        if not allowed:
            return self.get(task_id)

        allowed["updated_at"] = datetime.utcnow()
        set_clause = ", ".join(f"{k} = ?" for k in allowed)
        values = list(allowed.values()) + [task_id]
        result = self._conn.execute(
            f"UPDATE tasks SET {set_clause} WHERE id = ? RETURNING id", values
        ).fetchone()
        if result is None:
            return None
        return self.get(task_id)

    def delete(self, task_id: str) -> bool:
        result = self._conn.execute(
            "DELETE FROM tasks WHERE id = ? RETURNING id", [task_id]
        ).fetchone()
        return result is not None

    # -----------------------------------------------------------------------
    # Dashboard
    # -----------------------------------------------------------------------

    def dashboard(self, user_id: str, limit: int = 50) -> dict:
        """Tasks and counts for one user's dashboard.

        ``stats`` and ``overdue_tasks`` cover every task the user created or
        is assigned to.
        """
        involved = "(assigned_to_id = ? OR creator_id = ?)"
        today = _today()

        def fetch(where: str, params: List[Any], order: str) -> List[dict]:
            rows = self._conn.execute(
                f"SELECT {', '.join(self._COLUMNS)} FROM tasks WHERE {where} "
                f"ORDER BY {order} LIMIT ?",
                params + [limit],
            ).fetchall()
            return [self._row_to_dict(r) for r in rows]

        def group_by(column: str) -> Dict[str, int]:
            rows = self._conn.execute(
                f"SELECT {column}, COUNT(*) FROM tasks WHERE {involved} GROUP BY {column}",
                [user_id, user_id],
            ).fetchall()
            return {key: count for key, count in rows}

        total = self._conn.execute(
            f"SELECT COUNT(*) FROM tasks WHERE {involved}", [user_id, user_id]
        ).fetchone()[0]
        overdue_count = self._conn.execute(
            f"SELECT COUNT(*) FROM tasks WHERE {involved} AND {_OVERDUE}",
            [user_id, user_id, today],
        ).fetchone()[0]

        return {
            "assigned_tasks": fetch(
                "assigned_to_id = ?", [user_id], "due_date ASC NULLS LAST, created_at ASC"
            ),
            "created_tasks": fetch("creator_id = ?", [user_id], "created_at DESC"),
            "overdue_tasks": fetch(
                f"{involved} AND {_OVERDUE}", [user_id, user_id, today], "due_date ASC"
            ),
            "stats": {
                "total": total,
                "by_status": group_by("status"),
                "by_priority": group_by("priority"),
                "overdue": overdue_count,
            },
        }

    def close(self) -> None:
        self._conn.close()

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    _COLUMNS = [
        "id", "title", "description", "status", "priority", "due_date",
        "creator_id", "assigned_to_id", "created_at", "updated_at",
    ]

    def _row_to_dict(self, row) -> dict:
        d = dict(zip(self._COLUMNS, row))
        for key in ("created_at", "updated_at"):
            if isinstance(d.get(key), datetime):
                d[key] = d[key].isoformat()
        return d
