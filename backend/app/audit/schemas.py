"""Pydantic schemas for audit logging.

Every task mutation (create, update, status/assignment change, delete)
leaves an audit entry so a task's history can be reconstructed.

These schemas are used by:
    - GET /api/v1/tasks/{task_id}/history
    - AuditLogService: DuckDB storage layer
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class AuditAction(str, Enum):
    """What happened to the entity.

    Attributes:
        CREATE: Entity was created.
        UPDATE: Fields other than status/assignee changed.
        STATUS_CHANGE: Status changed (possibly along with other fields).
        ASSIGNMENT_CHANGE: Assignee changed.
        DELETE: Entity was deleted.
    """
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    STATUS_CHANGE = "STATUS_CHANGE"
    ASSIGNMENT_CHANGE = "ASSIGNMENT_CHANGE"
    DELETE = "DELETE"


class AuditLogEntry(BaseModel):
    """A single audit log entry.

    Attributes:
        entity_type: Kind of entity (e.g. "Task").
        entity_id: Identifier of the entity.
        action: What happened.
        user_id: Who did it.
        changes: Field diff as {field: {"old": ..., "new": ...}}.
        timestamp: When it happened (UTC).
    """
    entity_type: str = Field(..., description="Entity kind")
    entity_id: str = Field(..., description="Entity identifier")
    action: AuditAction = Field(..., description="Action performed")
    user_id: str = Field(..., description="Acting user")
    changes: Dict[str, Any] = Field(default_factory=dict, description="Field diff")
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When it happened (UTC)"
    )


class AuditLogCreate(BaseModel):
    """Input schema for creating a new audit log entry.

    The timestamp is set by the service.
    """
    entity_type: str = Field(..., min_length=1)
    entity_id: str = Field(..., min_length=1)
    action: AuditAction
    user_id: str = Field(..., min_length=1)
    changes: Dict[str, Any] = Field(default_factory=dict)
