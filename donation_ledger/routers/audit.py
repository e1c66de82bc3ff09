"""Audit log endpoints (Admin only)."""

import csv
import io
import json
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

from donation_ledger.core.clock import utcnow
from donation_ledger.core.deps import AdminIdentity, AuditStoreDep, RequestActor
from donation_ledger.models import (
    ActionCount,
    AuditAction,
    AuditLog,
    AuditLogRead,
    AuditPage,
    EntityType,
)
from donation_ledger.services.audit import AuditFilters, AuditSpec

router = APIRouter(prefix="/audit")


@router.get("", response_model=AuditPage)
async def list_audit_logs(
    identity: AdminIdentity,
    audit_store: AuditStoreDep,
    action: str | None = None,
    user_id: int | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    search: str | None = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
) -> AuditPage:
    """Query the audit trail, newest first."""
    return await audit_store.query(
        AuditFilters(
            action=action,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            start_date=start_date,
            end_date=end_date,
            search=search,
            page=page,
            limit=limit,
        )
    )


@router.get("/stats", response_model=list[ActionCount])
async def get_audit_stats(
    identity: AdminIdentity,
    audit_store: AuditStoreDep,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[ActionCount]:
    """Entry counts grouped by action."""
    return await audit_store.stats(start_date, end_date)


@router.get("/actions", response_model=list[str])
async def list_action_types(identity: AdminIdentity, audit_store: AuditStoreDep) -> list[str]:
    """List all distinct action types in the audit log."""
    return await audit_store.distinct_actions()


@router.get("/entity/{entity_type}/{entity_id}", response_model=list[AuditLogRead])
async def get_entity_audit(
    entity_type: EntityType,
    entity_id: int,
    identity: AdminIdentity,
    audit_store: AuditStoreDep,
) -> list[AuditLogRead]:
    """Audit entries referring to one entity."""
    entries = await audit_store.entity_history(entity_type, entity_id)
    return [AuditLogRead.model_validate(e) for e in entries]


@router.get("/export")
async def export_audit_logs(
    identity: AdminIdentity,
    actor: RequestActor,
    audit_store: AuditStoreDep,
    format: Literal["csv", "json"] = "csv",
    action: str | None = None,
    user_id: int | None = None,
    entity_type: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = Query(10000, ge=1, le=100000),
):
    """Export audit logs.

    Returns CSV or JSON file download.
    """
    filters = AuditFilters(
        action=action,
        user_id=user_id,
        entity_type=entity_type,
        start_date=start_date,
        end_date=end_date,
    )
    logs = await audit_store.export(filters, limit=limit)

    await audit_store.record(
        AuditSpec(
            action=AuditAction.DATA_EXPORTED,
            description=f"Audit log exported as {format} with {len(logs)} records",
            actor=actor,
            entity_type=EntityType.SYSTEM,
            metadata={"export_type": "audit", "format": format, "record_count": len(logs)},
        )
    )

    if format == "csv":
        return _export_csv(logs)
    else:
        return _export_json(logs)


def _export_csv(logs: list[AuditLog]) -> StreamingResponse:
    """Export logs as CSV."""
    output = io.StringIO()
    writer = csv.writer(output)

    writer.writerow([
        "id",
        "timestamp",
        "action",
        "entity_type",
        "entity_id",
        "description",
        "user_id",
        "user_role",
        "ip_address",
        "metadata",
    ])

    for log in logs:
        writer.writerow([
            log.id,
            log.timestamp.isoformat(),
            log.action,
            log.entity_type,
            log.entity_id,
            log.description,
            log.user_id,
            log.user_role.value if log.user_role else "",
            log.ip_address,
            json.dumps(log.details),
        ])

    timestamp = utcnow().strftime("%Y%m%d_%H%M%S")

    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename=audit_export_{timestamp}.csv"
        },
    )


def _export_json(logs: list[AuditLog]) -> StreamingResponse:
    """Export logs as JSON."""
    data = [AuditLogRead.model_validate(log).model_dump(mode="json") for log in logs]

    output = json.dumps(data, indent=2)
    timestamp = utcnow().strftime("%Y%m%d_%H%M%S")

    return StreamingResponse(
        iter([output]),
        media_type="application/json",
        headers={
            "Content-Disposition": f"attachment; filename=audit_export_{timestamp}.json"
        },
    )
