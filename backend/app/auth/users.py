"""UserService: DuckDB-backed user accounts.

Records returned by this service never include the password hash.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import duckdb

from .passwords import hash_password, verify_password

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    id              VARCHAR PRIMARY KEY,
    email           VARCHAR NOT NULL UNIQUE,
    name            VARCHAR NOT NULL,
    password_hash   VARCHAR NOT NULL,
    avatar          VARCHAR,
    created_at      TIMESTAMP NOT NULL,
    updated_at      TIMESTAMP NOT NULL
)
"""

_PROFILE_FIELDS = ("name", "avatar")


class UserService:
    """Singleton service for user accounts in DuckDB."""

    _instance: Optional["UserService"] = None
    _default_db_path: str = "users.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        self._db_path = db_path or self._default_db_path
        self._conn = duckdb.connect(self._db_path)
        self._conn.execute(_CREATE_TABLE)
        logger.info("[UserService] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "UserService":
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    # -----------------------------------------------------------------------
    # Accounts
    # -----------------------------------------------------------------------

    def create(
        self,
        email: str,
        name: str,
        password: str,
        user_id: Optional[str] = None,
    ) -> dict:
        """Store a new account.

        Args:
            email: Normalized (lower-case) email; must be unused.
            name: Display name.
            password: Plaintext password, stored as an Argon2id hash.
            user_id: Explicit id, for seeding; a UUID is generated otherwise.

        Raises:
            duckdb.ConstraintException: The email or id is already taken.
        """
        user_id = user_id or str(uuid.uuid4())
        now = datetime.utcnow()
        self._conn.execute(
            """
            INSERT INTO users (id, email, name, password_hash, avatar, created_at, updated_at)
            VALUES (?, ?, ?, ?, NULL, ?, ?)
            """,
            [user_id, email, name, hash_password(password), now, now],
        )
        logger.info("[UserService] Registered %s (%s)", user_id, email)
        return self.get(user_id)

    def get(self, user_id: str) -> Optional[dict]:
        row = self._conn.execute(
            f"SELECT {', '.join(self._COLUMNS)} FROM users WHERE id = ?", [user_id]
        ).fetchone()
        return self._row_to_dict(row) if row else None

    def get_by_email(self, email: str) -> Optional[dict]:
        row = self._conn.execute(
            f"SELECT {', '.join(self._COLUMNS)} FROM users WHERE email = ?", [email.lower()]
        ).fetchone()
        return self._row_to_dict(row) if row else None

    def exists(self, user_id: str) -> bool:
        row = self._conn.execute("SELECT 1 FROM users WHERE id = ?", [user_id]).fetchone()
        return row is not None

    def list_users(self) -> List[dict]:
        """Every account, ordered by name (for the assignment picker)."""
        rows = self._conn.execute(
            f"SELECT {', '.join(self._COLUMNS)} FROM users ORDER BY name ASC, email ASC"
        ).fetchall()
        return [self._row_to_dict(r) for r in rows]

    # -----------------------------------------------------------------------
    # Credentials
    # -----------------------------------------------------------------------

    def authenticate(self, email: str, password: str) -> Optional[dict]:
        """Return the account if ``password`` matches, else None."""
        row = self._conn.execute(
            "SELECT id, password_hash FROM users WHERE email = ?", [email.lower()]
        ).fetchone()
        if row is None or not verify_password(password, row[1]):
            return None
        return self.get(row[0])

    def check_password(self, user_id: str, password: str) -> bool:
        row = self._conn.execute(
            "SELECT password_hash FROM users WHERE id = ?", [user_id]
        ).fetchone()
        return row is not None and verify_password(password, row[0])

    def set_password(self, user_id: str, password: str) -> bool:
        result = self._conn.execute(
            "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ? RETURNING id",
            [hash_password(password), datetime.utcnow(), user_id],
        ).fetchone()
        return result is not None

    def update_profile(self, user_id: str, fields: Dict[str, Any]) -> Optional[dict]:
        """Apply name/avatar changes. Returns None if the user does not exist."""
        allowed = {k: v for k, v in fields.items() if k in _PROFILE_FIELDS}
        if not allowed:
            return self.get(user_id)

        allowed["updated_at"] = datetime.utcnow()
        set_clause = ", ".join(f"{k} = ?" for k in allowed)
        result = self._conn.execute(
            f"UPDATE users SET {set_clause} WHERE id = ? RETURNING id",
            list(allowed.values()) + [user_id],
        ).fetchone()
        if result is None:
            return None
        return self.get(user_id)

    def close(self) -> None:
        self._conn.close()

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    _COLUMNS = ["id", "email", "name", "avatar", "created_at", "updated_at"]

    def _row_to_dict(self, row) -> dict:
        d = dict(zip(self._COLUMNS, row))
        for key in ("created_at", "updated_at"):
            if isinstance(d.get(key), datetime):
                d[key] = d[key].isoformat()
        return d
