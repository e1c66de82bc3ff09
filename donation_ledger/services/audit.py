"""Append-only audit trail store."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import ColumnElement, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import func, select

from donation_ledger.core.database import Database
from donation_ledger.models import (
    ActionCount,
    AuditAction,
    AuditLog,
    AuditLogRead,
    AuditPage,
    EntityType,
    Pagination,
)
from donation_ledger.services.access import Actor

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


@dataclass
class AuditSpec:
    """Description of one audit entry to emit."""

    action: AuditAction
    description: str
    actor: Actor
    entity_type: EntityType = EntityType.SYSTEM
    entity_id: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class AuditFilters:
    action: AuditAction | str | None = None
    user_id: int | None = None
    entity_type: str | None = None
    entity_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    search: str | None = None
    page: int = 1
    limit: int = 50


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _filter_clauses(filters: AuditFilters) -> list[ColumnElement[bool]]:
    clauses: list[ColumnElement[bool]] = []
    if filters.action:
        action = filters.action.value if isinstance(filters.action, AuditAction) else filters.action
        clauses.append(AuditLog.action == action)
    if filters.user_id is not None:
        clauses.append(AuditLog.user_id == filters.user_id)
    if filters.entity_type:
        clauses.append(AuditLog.entity_type == filters.entity_type)
    if filters.entity_id is not None:
        clauses.append(AuditLog.entity_id == filters.entity_id)
    if filters.start_date is not None:
        clauses.append(AuditLog.timestamp >= filters.start_date)
    if filters.end_date is not None:
        clauses.append(AuditLog.timestamp <= filters.end_date)
    if filters.search:
        pattern = f"%{filters.search.strip()}%"
        clauses.append(
            or_(AuditLog.description.ilike(pattern), AuditLog.entity_type.ilike(pattern))
        )
    return clauses


class AuditTrailStore:
    """Insert-only write path and filtered read path over audit entries."""

    def __init__(self, database: Database):
        self.database = database

    def build_entry(self, spec: AuditSpec) -> AuditLog:
        """Build an AuditLog row from a spec.

        Metadata is normalized to plain JSON; Decimal values become strings.

        Raises:
            TypeError: If the metadata holds a value that cannot be serialized
        """
        details = json.loads(json.dumps(spec.metadata, default=_json_default))
        return AuditLog(
            action=spec.action.value,
            entity_type=spec.entity_type.value,
            entity_id=spec.entity_id,
            description=spec.description,
            user_id=spec.actor.user_id,
            user_role=spec.actor.role,
            ip_address=spec.actor.ip_address,
            user_agent=spec.actor.user_agent,
            details=details,
        )

    async def append(self, session: AsyncSession, spec: AuditSpec) -> AuditLog:
        """Insert an entry on the caller's transaction.

        Any failure propagates so the surrounding transaction aborts.
        """
        entry = self.build_entry(spec)
        session.add(entry)
        await session.flush()
        return entry

    async def record(self, spec: AuditSpec) -> AuditLog | None:
        """Insert an entry in its own transaction, outside any mutation.

        Used for read-triggered events such as logins and exports. Failures
        are logged and None is returned.
        """
        try:
            async with self.database.transaction() as session:
                entry = await self.append(session, spec)
        except Exception:
            logger.exception(f"Audit logging failed for {spec.action.value}")
            return None
        return entry

    async def _count(self, clauses: list[ColumnElement[bool]]) -> int:
        async with self.database.session() as session:
            result = await session.execute(
                select(func.count()).select_from(AuditLog).where(*clauses)
            )
            return result.scalar_one()

    async def _fetch(
        self,
        clauses: list[ColumnElement[bool]],
        offset: int,
        limit: int,
    ) -> list[AuditLog]:
        async with self.database.session() as session:
            result = await session.execute(
                select(AuditLog)
                .where(*clauses)
                .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def query(self, filters: AuditFilters) -> AuditPage:
        """Query entries, newest first.

        Args:
            filters: Action, actor, entity, time range, free-text search
                over description and entity type, and pagination

        Returns:
            AuditPage with the entries and pagination metadata
        """
        page = max(filters.page, 1)
        limit = min(max(filters.limit, 1), MAX_PAGE_SIZE)
        clauses = _filter_clauses(filters)

        total, entries = await asyncio.gather(
            self._count(clauses),
            self._fetch(clauses, (page - 1) * limit, limit),
        )
        return AuditPage(
            entries=[AuditLogRead.model_validate(e) for e in entries],
            pagination=Pagination.build(page, limit, total),
        )

    async def export(self, filters: AuditFilters, limit: int = 10000) -> list[AuditLog]:
        """All entries matching the filters, newest first, up to ``limit``."""
        return await self._fetch(_filter_clauses(filters), 0, limit)

    async def stats(
        self,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> list[ActionCount]:
        """Entry counts grouped by action, most frequent first."""
        clauses = _filter_clauses(AuditFilters(start_date=start_date, end_date=end_date))
        count = func.count(AuditLog.id)
        async with self.database.session() as session:
            result = await session.execute(
                select(AuditLog.action, count)
                .where(*clauses)
                .group_by(AuditLog.action)
                .order_by(count.desc(), AuditLog.action)
            )
            return [ActionCount(action=action, count=n) for action, n in result.all()]

    async def entity_history(
        self,
        entity_type: EntityType,
        entity_id: int,
        actions: list[AuditAction] | None = None,
    ) -> list[AuditLog]:
        """Entries referring to one entity, newest first."""
        query = select(AuditLog).where(
            AuditLog.entity_type == entity_type.value,
            AuditLog.entity_id == entity_id,
        )
        if actions:
            query = query.where(AuditLog.action.in_([a.value for a in actions]))
        query = query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())

        async with self.database.session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def distinct_actions(self) -> list[str]:
        """Actions that occur in the trail."""
        async with self.database.session() as session:
            result = await session.execute(
                select(AuditLog.action).distinct().order_by(AuditLog.action)
            )
            return [row[0] for row in result.all()]
