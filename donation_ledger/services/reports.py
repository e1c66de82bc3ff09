"""CSV report exports.

Reports are read-side consumers: they never write domain rows. Each export is
recorded in the audit trail outside any transaction.
"""

import csv
import io
import logging
from dataclasses import asdict
from datetime import datetime
from enum import Enum

from sqlalchemy import and_
from sqlmodel import func, select

from donation_ledger.core.clock import utcnow
from donation_ledger.core.database import Database
from donation_ledger.models import AuditAction, Donation, DonationRead, EntityType, User, UserRole
from donation_ledger.services.access import (
    AccessScopeFilter,
    Actor,
    DonationFilters,
    ResourceKind,
    donation_predicates,
)
from donation_ledger.services.audit import AuditSpec, AuditTrailStore
from donation_ledger.services.donations import joined_donations, to_read
from donation_ledger.services.soft_delete import visibility

logger = logging.getLogger(__name__)

MAX_REPORT_ROWS = 10000

DONATION_COLUMNS = [
    "id",
    "date",
    "donor_name",
    "donor_phone",
    "donor_email",
    "amount",
    "purpose",
    "category",
    "payment_method",
    "operator",
    "receipt_number",
    "notes",
]


class CsvReportRenderer:
    """Renders donation rows and a filter summary as a UTF-8 CSV document."""

    def render(self, donations: list[DonationRead], filters: DonationFilters) -> bytes:
        output = io.StringIO()
        writer = csv.writer(output)

        applied = {k: v for k, v in asdict(filters).items() if v is not None}
        if applied:
            writer.writerow(["# filters"] + [f"{k}={_cell(v)}" for k, v in applied.items()])
        writer.writerow(DONATION_COLUMNS)

        total = sum((d.amount for d in donations), start=0)
        for d in donations:
            writer.writerow([
                d.id,
                d.date.isoformat(),
                d.donor_name,
                d.donor_phone,
                d.donor_email or "",
                f"{d.amount:.2f}",
                d.purpose,
                d.category.name if d.category else "",
                d.payment_method.value,
                d.operator.name if d.operator else "",
                d.receipt_number or "",
                d.notes or "",
            ])
        writer.writerow(["# total", len(donations), f"{total:.2f}"])
        return output.getvalue().encode("utf-8")


def _cell(value) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


class ReportService:
    """Scoped data exports with an audit entry per export."""

    def __init__(
        self,
        database: Database,
        audit_store: AuditTrailStore,
        access: AccessScopeFilter,
        renderer: CsvReportRenderer | None = None,
    ):
        self.database = database
        self.audit_store = audit_store
        self.access = access
        self.renderer = renderer or CsvReportRenderer()

    async def export_donations(self, actor: Actor, filters: DonationFilters) -> tuple[str, bytes]:
        """Render the caller's visible donations as CSV.

        Returns:
            Tuple of (filename, document bytes)
        """
        identity = actor.identity
        filters = self.access.narrow(identity, filters)
        clauses = [
            visibility(),
            *self.access.scope_for(identity, ResourceKind.DONATION),
            *donation_predicates(filters),
        ]
        async with self.database.session() as session:
            result = await session.execute(
                joined_donations()
                .where(*clauses)
                .order_by(Donation.date.desc(), Donation.id.desc())
                .limit(MAX_REPORT_ROWS)
            )
            donations = [to_read(*row) for row in result.all()]

        document = self.renderer.render(donations, filters)
        filename = f"donations_{utcnow().strftime('%Y%m%d_%H%M%S')}.csv"

        await self.audit_store.record(
            AuditSpec(
                action=AuditAction.REPORT_EXPORTED,
                description=f"Donation report exported with {len(donations)} records",
                actor=actor,
                entity_type=EntityType.REPORT,
                metadata={
                    "format": "csv",
                    "record_count": len(donations),
                    "filters": {k: v for k, v in asdict(filters).items() if v is not None},
                },
            )
        )
        logger.info(f"User {actor.user_id} exported {len(donations)} donations")
        return filename, document

    async def export_operators(self, actor: Actor) -> tuple[str, bytes]:
        """Admin-only CSV of operator accounts with their donation counts."""
        self.access.require_admin(actor.identity)
        donation_count = func.count(Donation.id)
        async with self.database.session() as session:
            result = await session.execute(
                select(User, donation_count)
                .outerjoin(Donation, and_(Donation.operator_id == User.id, visibility()))
                .where(User.role == UserRole.OPERATOR)
                .group_by(User.id)
                .order_by(User.created_at.desc())
            )
            rows = result.all()

        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(
            ["id", "name", "email", "phone", "is_active", "last_login", "created_at", "donations"]
        )
        for user, count in rows:
            writer.writerow([
                user.id,
                user.name,
                user.email,
                user.phone or "",
                user.is_active,
                user.last_login.isoformat() if user.last_login else "",
                user.created_at.isoformat(),
                count,
            ])

        await self.audit_store.record(
            AuditSpec(
                action=AuditAction.DATA_EXPORTED,
                description=f"Operator data exported with {len(rows)} records",
                actor=actor,
                entity_type=EntityType.USER,
                metadata={"export_type": "operators", "record_count": len(rows)},
            )
        )
        filename = f"operators_{utcnow().strftime('%Y%m%d_%H%M%S')}.csv"
        return filename, output.getvalue().encode("utf-8")
