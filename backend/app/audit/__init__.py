"""Audit log module for tracking task mutations."""

from .schemas import AuditAction, AuditLogCreate, AuditLogEntry
from .service import AuditLogService

__all__ = [
    "AuditAction",
    "AuditLogCreate",
    "AuditLogEntry",
    "AuditLogService",
]
