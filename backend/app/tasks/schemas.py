"""Pydantic schemas for the tasks module."""
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, Field


TaskStatus = Literal["To Do", "In Progress", "Review", "Completed"]
TaskPriority = Literal["Low", "Medium", "High", "Urgent"]
TaskSortField = Literal["dueDate", "createdAt", "priority", "status"]
SortOrder = Literal["asc", "desc"]


class TaskCreate(BaseModel):
    """Request body for creating a task. The creator is the caller."""
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=5000)
    due_date: Optional[date] = None
    priority: TaskPriority = Field(default="Medium")
    assigned_to_id: Optional[str] = Field(default=None, min_length=1)


class TaskUpdate(BaseModel):
    """Request body for updating a task (all fields optional).

    ``assigned_to_id`` and ``due_date`` may be sent as ``null`` to clear them;
    a field that is not sent at all is left unchanged.
    """
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=5000)
    due_date: Optional[date] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    assigned_to_id: Optional[str] = Field(default=None, min_length=1)
