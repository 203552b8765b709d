"""Tasks router: CRUD endpoints that feed the realtime layer.

Every successful mutation is persisted (task row, audit entry, notification)
before anything is published, then pushed to connected clients:

    POST   /api/v1/tasks        -> task:created (everyone)
                                   notification:new (assignee, if not the creator)
    PATCH  /api/v1/tasks/{id}   -> task:updated (everyone)
                                   notification:new (new assignee)
    DELETE /api/v1/tasks/{id}   -> task:deleted (everyone)

Publishing never fails a request: the event router logs and drops anything it
cannot deliver.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response

from app.audit import AuditAction, AuditLogCreate, AuditLogService
from app.auth.dependencies import get_current_identity
from app.auth.tokens import Identity
from app.auth.users import UserService
from app.errors import BadRequestError, ForbiddenError, NotFoundError
from app.notifications.schemas import NotificationCreate, NotificationType
from app.notifications.service import NotificationService
from app.realtime.events import (
    EventName,
    NotificationPayload,
    TaskCreatedPayload,
    TaskDeletedPayload,
    TaskUpdatedPayload,
)
from app.realtime.hub import hub

from .schemas import SortOrder, TaskCreate, TaskPriority, TaskSortField, TaskStatus, TaskUpdate
from .service import TaskService, diff_fields

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])

ENTITY_TYPE = "Task"


def _service() -> TaskService:
    return TaskService.get_instance()


def _audit(task_id: str, action: AuditAction, user_id: str, changes: Optional[dict] = None) -> None:
    AuditLogService.get_instance().log(AuditLogCreate(
        entity_type=ENTITY_TYPE,
        entity_id=task_id,
        action=action,
        user_id=user_id,
        changes=changes or {},
    ))


def _get_or_404(task_id: str) -> dict:
    task = _service().get(task_id)
    if task is None:
        raise NotFoundError("Task not found")
    return task


def _check_assignee(user_id: Optional[str]) -> None:
    if user_id and not UserService.get_instance().exists(user_id):
        raise BadRequestError("Assigned user not found")


def _notify_assignee(task: dict, assignee_id: str, actor: Identity, title: str) -> None:
    """Persist a TASK_ASSIGNED notification, then push it to the assignee's connections."""
    creator = UserService.get_instance().get(actor.id)
    actor_name = creator["name"] if creator else (actor.email or "Someone")
    notification = NotificationService.get_instance().create(NotificationCreate(
        user_id=assignee_id,
        type=NotificationType.TASK_ASSIGNED,
        title=title,
        message=f'{actor_name} assigned you a task: "{task["title"]}"',
        task_id=task["id"],
    ))
    delivered = hub.events.publish_to_identity(
        assignee_id,
        EventName.NOTIFICATION_NEW,
        NotificationPayload(
            type=NotificationType.TASK_ASSIGNED.value,
            notification=notification,
            task=task,
        ),
        entity_id=task["id"],
    )
    logger.info(
        "[tasks] Notified %s of assignment to %s (%d connection(s))",
        assignee_id, task["id"], delivered,
    )


@router.post("", status_code=201)
async def create_task(
    body: TaskCreate,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Create a task owned by the caller.

    The assignee, if any, must be a registered user (400 otherwise).

    Args:
        body: Task creation payload.
        identity: The authenticated caller (becomes the creator).

    Returns:
        The created task (201 Created).
    """
    data = body.model_dump(mode="json")
    _check_assignee(data["assigned_to_id"])
    task = _service().create(
        title=data["title"],
        creator_id=identity.id,
        description=data["description"],
        priority=data["priority"],
        due_date=data["due_date"],
        assigned_to_id=data["assigned_to_id"],
    )
    _audit(task["id"], AuditAction.CREATE, identity.id)
    logger.info("[tasks] Created %s by %s: %s", task["id"], identity.id, task["title"])

    hub.events.publish_broadcast(
        EventName.TASK_CREATED, TaskCreatedPayload.model_validate(task), entity_id=task["id"]
    )
    assignee = task["assigned_to_id"]
    if assignee and assignee != identity.id:
        _notify_assignee(task, assignee, identity, "New Task Assigned")

    return JSONResponse(task, status_code=201)


@router.get("")
async def list_tasks(
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    assigned_to_me: bool = Query(default=False, alias="assignedToMe"),
    created_by_me: bool = Query(default=False, alias="createdByMe"),
    search: Optional[str] = Query(default=None, max_length=100),
    overdue: bool = False,
    sort_by: TaskSortField = Query(default="dueDate", alias="sortBy"),
    sort_order: SortOrder = Query(default="asc", alias="sortOrder"),
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """List tasks, optionally filtered and sorted. All filters combine with AND.

    ``overdue=true`` keeps tasks due before today that are not Completed.
    """
    tasks = _service().list_tasks(
        status=status,
        priority=priority,
        assigned_to_id=identity.id if assigned_to_me else None,
        creator_id=identity.id if created_by_me else None,
        search=search,
        overdue=overdue,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return JSONResponse(tasks)


@router.get("/dashboard")
async def get_dashboard(identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    """The caller's assigned, created and overdue tasks plus summary counts."""
    return JSONResponse(_service().dashboard(identity.id))


@router.get("/{task_id}")
async def get_task(task_id: str, identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    return JSONResponse(_get_or_404(task_id))


@router.get("/{task_id}/history")
async def get_task_history(
    task_id: str,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Audit trail of a task, newest first. Still available after deletion."""
    entries = AuditLogService.get_instance().get_entity_history(ENTITY_TYPE, task_id)
    return JSONResponse([entry.model_dump(mode="json") for entry in entries])


@router.patch("/{task_id}")
async def update_task(
    task_id: str,
    body: TaskUpdate,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Update a task's fields.

    Only the creator or the current assignee may update a task.

    Raises:
        NotFoundError: No such task.
        ForbiddenError: Caller is neither creator nor assignee.
        BadRequestError: The new assignee is not a registered user.
    """
    existing = _get_or_404(task_id)
    if identity.id not in (existing["creator_id"], existing["assigned_to_id"]):
        raise ForbiddenError("You do not have permission to update this task")

    updates = body.model_dump(mode="json", exclude_unset=True)
    # Only due_date and assigned_to_id can be cleared
    for field in ("title", "description", "status", "priority"):
        if updates.get(field, "") is None:
            del updates[field]
    _check_assignee(updates.get("assigned_to_id"))

    changes = diff_fields(existing, updates)
    task = _service().update(task_id, updates)
    if task is None:
        raise NotFoundError("Task not found")

    if changes:
        if "status" in changes:
            action = AuditAction.STATUS_CHANGE
        elif "assigned_to_id" in changes:
            action = AuditAction.ASSIGNMENT_CHANGE
        else:
            action = AuditAction.UPDATE
        _audit(task_id, action, identity.id, changes)
    logger.info("[tasks] Updated %s by %s: %s", task_id, identity.id, sorted(changes))

    hub.events.publish_broadcast(
        EventName.TASK_UPDATED,
        TaskUpdatedPayload(task=task, changes=changes, updatedBy=identity.id),
        entity_id=task_id,
    )
    new_assignee = changes.get("assigned_to_id", {}).get("new")
    if new_assignee:
        _notify_assignee(task, new_assignee, identity, "Task Assigned to You")

    return JSONResponse(task)


@router.delete("/{task_id}", status_code=204)
async def delete_task(task_id: str, identity: Identity = Depends(get_current_identity)) -> Response:
    """Delete a task. Only its creator may do so.

    Raises:
        NotFoundError: No such task.
        ForbiddenError: Caller is not the creator.
    """
    existing = _get_or_404(task_id)
    if existing["creator_id"] != identity.id:
        raise ForbiddenError("Only the task creator can delete this task")

    if not _service().delete(task_id):
        raise NotFoundError("Task not found")
    _audit(task_id, AuditAction.DELETE, identity.id)
    logger.info("[tasks] Deleted %s by %s", task_id, identity.id)

    hub.events.publish_broadcast(
        EventName.TASK_DELETED,
        TaskDeletedPayload(taskId=task_id, deletedBy=identity.id),
        entity_id=task_id,
    )
    return Response(status_code=204)
