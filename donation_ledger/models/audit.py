"""Audit log model for the append-only audit trail."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from donation_ledger.core.clock import utcnow
from donation_ledger.models.common import Pagination
from donation_ledger.models.user import UserRole


class AuditAction(str, Enum):
    """Audited actions."""

    DONATION_CREATED = "DONATION_CREATED"
    DONATION_UPDATED = "DONATION_UPDATED"
    DONATION_DELETED = "DONATION_DELETED"
    DONATION_RESTORED = "DONATION_RESTORED"
    CATEGORY_CREATED = "CATEGORY_CREATED"
    CATEGORY_UPDATED = "CATEGORY_UPDATED"
    CATEGORY_TOGGLED = "CATEGORY_TOGGLED"
    CATEGORY_DELETED = "CATEGORY_DELETED"
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_LOGIN = "USER_LOGIN"
    EMAIL_CHANGED = "EMAIL_CHANGED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    EMAIL_RESENT = "EMAIL_RESENT"
    REPORT_EXPORTED = "REPORT_EXPORTED"
    PDF_EXPORTED = "PDF_EXPORTED"
    DATA_EXPORTED = "DATA_EXPORTED"
    NOTIFICATION_SENT = "NOTIFICATION_SENT"
    NOTIFICATION_FAILED = "NOTIFICATION_FAILED"


class EntityType(str, Enum):
    DONATION = "DONATION"
    DONATION_CATEGORY = "DONATION_CATEGORY"
    USER = "USER"
    REPORT = "REPORT"
    SYSTEM = "SYSTEM"


class AuditLog(SQLModel, table=True):
    """Immutable audit log entry. Inserted, never updated or deleted."""

    __tablename__ = "audit_logs"

    id: int | None = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime)
    action: str = Field(index=True, max_length=50)
    entity_type: str = Field(default=EntityType.SYSTEM.value, index=True, max_length=50)
    entity_id: int | None = Field(default=None, index=True)
    description: str
    user_id: int | None = Field(default=None, foreign_key="users.id", index=True)
    user_role: UserRole | None = Field(default=None)
    ip_address: str | None = Field(default=None, max_length=64)
    user_agent: str | None = Field(default=None, max_length=512)
    # "metadata" is reserved on declarative classes, so the attribute differs
    details: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=False),
    )


class AuditLogRead(SQLModel):
    """Schema for reading audit log entries."""

    id: int
    timestamp: datetime
    action: str
    entity_type: str
    entity_id: int | None
    description: str
    user_id: int | None
    user_role: UserRole | None
    ip_address: str | None
    user_agent: str | None
    details: dict[str, Any]


class AuditPage(SQLModel):
    entries: list[AuditLogRead]
    pagination: Pagination


class ActionCount(SQLModel):
    action: str
    count: int
