"""Donation recording, updates and scoped reads."""

import asyncio
import logging
from typing import Any

from sqlalchemy import ColumnElement, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import func, select

from donation_ledger.core.clock import utcnow
from donation_ledger.core.database import Database
from donation_ledger.core.errors import (
    FieldViolation,
    NotFoundError,
    ValidationError,
    donation_not_found,
)
from donation_ledger.core.money import to_money
from donation_ledger.models import (
    AuditAction,
    AuditLogRead,
    CategorySummary,
    DeletionRead,
    Donation,
    DonationCategory,
    DonationCreate,
    DonationPage,
    DonationRead,
    DonationUpdate,
    DonorProfile,
    DonorSummary,
    EntityType,
    OperatorSummary,
    Pagination,
    RecentDonation,
    User,
    UserRole,
)
from donation_ledger.services.access import (
    AccessScopeFilter,
    Actor,
    DonationFilters,
    Identity,
    ResourceKind,
    donation_predicates,
)
from donation_ledger.services.audit import AuditSpec
from donation_ledger.services.notifications import Notification, NotificationOutcome, OutcomeStatus
from donation_ledger.services.soft_delete import (
    Active,
    Deleted,
    DonationView,
    deletion_state,
    ensure_active,
    visibility,
)
from donation_ledger.services.transactions import TransactionCoordinator

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
MIN_DONOR_QUERY = 2
RECENT_DONOR_DONATIONS = 5

HISTORY_ACTIONS = [
    AuditAction.DONATION_CREATED,
    AuditAction.DONATION_UPDATED,
    AuditAction.DONATION_DELETED,
    AuditAction.DONATION_RESTORED,
    AuditAction.NOTIFICATION_SENT,
    AuditAction.NOTIFICATION_FAILED,
    AuditAction.EMAIL_RESENT,
]

# Fields that may be cleared by sending null in an update
_NULLABLE_FIELDS = {"donor_email", "notes", "receipt_number"}

_SNAPSHOT_FIELDS = [
    "donor_name",
    "donor_phone",
    "donor_email",
    "amount",
    "purpose",
    "payment_method",
    "notes",
    "receipt_number",
]

_READ_FIELDS = [name for name in DonationRead.model_fields if name not in ("operator", "category", "deletion")]


class _NothingToUpdate(Exception):
    """Raised inside an update to roll back without an audit entry."""


def to_read(
    donation: Donation,
    operator: User | Identity | None = None,
    category: DonationCategory | None = None,
) -> DonationRead:
    """Build the fixed read shape; absent relations are None."""
    match deletion_state(donation):
        case Deleted(at=at, by=by, reason=reason):
            deletion = DeletionRead(deleted_at=at, deleted_by=by, reason=reason)
        case Active():
            deletion = None
    return DonationRead(
        **{name: getattr(donation, name) for name in _READ_FIELDS},
        operator=(
            OperatorSummary(id=operator.id, name=operator.name, email=operator.email)
            if operator is not None
            else None
        ),
        category=CategorySummary(id=category.id, name=category.name) if category is not None else None,
        deletion=deletion,
    )


def joined_donations():
    """Donations with their operator and category, outer-joined."""
    return (
        select(Donation, User, DonationCategory)
        .outerjoin(User, User.id == Donation.operator_id)
        .outerjoin(DonationCategory, DonationCategory.id == Donation.category_id)
    )


async def category_for_purpose(
    session: AsyncSession, purpose: str
) -> tuple[DonationCategory, bool]:
    """Find the category named after a purpose, creating it when missing.

    Returns:
        Tuple of (category, whether it was created by this call)
    """
    result = await session.execute(select(DonationCategory).where(DonationCategory.name == purpose))
    category = result.scalar_one_or_none()
    if category is not None:
        return category, False
    category = DonationCategory(name=purpose, description=f"Donations for {purpose}")
    session.add(category)
    await session.flush()
    logger.info(f"Created category '{purpose}' for new purpose")
    return category, True


def _snapshot(donation: Donation) -> dict[str, Any]:
    return {name: getattr(donation, name) for name in _SNAPSHOT_FIELDS}


class DonationService:
    """Donation mutations through the coordinator plus role-scoped reads."""

    def __init__(
        self,
        database: Database,
        coordinator: TransactionCoordinator,
        access: AccessScopeFilter,
    ):
        self.database = database
        self.coordinator = coordinator
        self.access = access

    async def create(self, actor: Actor, data: DonationCreate) -> DonationRead:
        """Record a donation by the calling operator.

        The category named after the purpose is found or created in the same
        transaction as the donation and its DONATION_CREATED entry.
        """
        identity = actor.identity

        async def operation(session: AsyncSession) -> tuple[Donation, DonationCategory, bool]:
            category, category_created = await category_for_purpose(session, data.purpose)
            donation = Donation(
                donor_name=data.donor_name,
                donor_phone=data.donor_phone,
                donor_email=data.donor_email,
                amount=data.amount,
                purpose=data.purpose,
                payment_method=data.payment_method,
                notes=data.notes,
                category_id=category.id,
                operator_id=identity.id,
            )
            session.add(donation)
            await session.flush()
            return donation, category, category_created

        def audit(value: tuple[Donation, DonationCategory, bool]) -> AuditSpec:
            donation, category, category_created = value
            return AuditSpec(
                action=AuditAction.DONATION_CREATED,
                description=f"Donation of {donation.amount} created for {donation.donor_name}",
                actor=actor,
                entity_type=EntityType.DONATION,
                entity_id=donation.id,
                metadata={
                    "amount": donation.amount,
                    "purpose": donation.purpose,
                    "category_id": category.id,
                    "category_created": category_created,
                    "payment_method": donation.payment_method,
                    "donor_name": donation.donor_name,
                    "donor_phone": donation.donor_phone,
                    "donor_email": donation.donor_email,
                    "send_notification": data.send_notification,
                },
            )

        def receipt(value: tuple[Donation, DonationCategory, bool]) -> Notification | None:
            donation = value[0]
            if not data.send_notification:
                return None
            return Notification(
                channel="donation_receipt",
                payload=_receipt_payload(donation),
                entity_type=EntityType.DONATION,
                entity_id=donation.id,
            )

        def receipt_email(value: tuple[Donation, DonationCategory, bool]) -> Notification | None:
            donation = value[0]
            return self._receipt_email(donation)

        result = await self.coordinator.execute(operation, audit, [receipt, receipt_email])
        donation, category, _ = result.value
        return to_read(donation, identity, category)

    async def update(self, actor: Actor, donation_id: int, data: DonationUpdate) -> DonationRead:
        """Update an active donation.

        Operators may only update their own donations. A purpose change moves
        the donation to the matching category; an email change resets the
        delivery bookkeeping. When nothing changes no entry is written.

        Raises:
            NotFoundError: No such donation
            ForbiddenError: Operator updating another operator's donation
            InvalidTransitionError: Donation is deleted
        """
        identity = actor.identity
        changes = data.model_dump(exclude_unset=True)
        # Filled when a purpose change creates its category
        created_category: dict[str, int] = {}

        async def operation(session: AsyncSession) -> tuple[Donation, dict, dict]:
            donation = await session.get(Donation, donation_id)
            if donation is None:
                raise NotFoundError(donation_not_found(donation_id))
            self.access.ensure_can_modify(identity, donation)
            ensure_active(donation)

            previous = _snapshot(donation)
            applied: dict[str, Any] = {}
            for field, value in changes.items():
                if value is None and field not in _NULLABLE_FIELDS:
                    continue
                if value != getattr(donation, field):
                    applied[field] = value
            if not applied:
                raise _NothingToUpdate(donation_id)

            if "purpose" in applied:
                category, category_created = await category_for_purpose(session, applied["purpose"])
                applied["category_id"] = category.id
                if category_created:
                    created_category["id"] = category.id
            for field, value in applied.items():
                setattr(donation, field, value)
            if "donor_email" in applied:
                donation.email_sent = False
                donation.email_sent_at = None
                donation.email_error = None

            session.add(donation)
            await session.flush()
            return donation, previous, applied

        def audit(value: tuple[Donation, dict, dict]) -> AuditSpec:
            donation, previous, applied = value
            return AuditSpec(
                action=AuditAction.DONATION_UPDATED,
                description=f"Donation updated for {donation.donor_name}",
                actor=actor,
                entity_type=EntityType.DONATION,
                entity_id=donation.id,
                metadata={
                    "previous_values": previous,
                    "new_values": applied,
                    "operator_id": donation.operator_id,
                    "category_created": bool(created_category),
                },
            )

        def receipt_email(value: tuple[Donation, dict, dict]) -> Notification | None:
            donation, _, applied = value
            if not applied.get("donor_email"):
                return None
            return self._receipt_email(donation)

        try:
            await self.coordinator.execute(operation, audit, [receipt_email])
        except _NothingToUpdate:
            logger.info(f"Update of donation {donation_id} changed nothing")
        return await self.get(actor, donation_id)

    async def get(self, actor: Actor, donation_id: int) -> DonationRead:
        """Fetch one donation.

        Operators get ForbiddenError for another operator's donation and
        NotFoundError for their own deleted ones; admins also see deleted
        donations along with their deletion details.
        """
        async with self.database.session() as session:
            result = await session.execute(joined_donations().where(Donation.id == donation_id))
            row = result.first()
        if row is None:
            raise NotFoundError(donation_not_found(donation_id))
        donation, operator, category = row
        self.access.ensure_can_view(actor.identity, donation)
        if actor.role is UserRole.OPERATOR and donation.is_deleted:
            raise NotFoundError(donation_not_found(donation_id))
        return to_read(donation, operator, category)

    async def list_donations(
        self,
        actor: Actor,
        filters: DonationFilters,
        page: int = 1,
        limit: int = 20,
        view: DonationView = DonationView.ACTIVE,
    ) -> DonationPage:
        """Paginated listing, newest first, narrowed to the caller's scope."""
        identity = actor.identity
        if view is not DonationView.ACTIVE:
            self.access.require_admin(identity)
        filters = self.access.narrow(identity, filters)
        clauses = [
            visibility(view),
            *self.access.scope_for(identity, ResourceKind.DONATION),
            *donation_predicates(filters),
        ]
        return await self._page(clauses, page, limit, deleted_first=view is DonationView.DELETED)

    async def list_own(
        self,
        actor: Actor,
        filters: DonationFilters,
        page: int = 1,
        limit: int = 20,
    ) -> DonationPage:
        """The caller's own active donations, whatever their role."""
        filters = DonationFilters(
            start_date=filters.start_date,
            end_date=filters.end_date,
            purpose=filters.purpose,
            payment_method=filters.payment_method,
            operator_id=actor.user_id,
        )
        clauses = [visibility(DonationView.ACTIVE), *donation_predicates(filters)]
        return await self._page(clauses, page, limit)

    async def list_deleted(
        self,
        actor: Actor,
        filters: DonationFilters,
        page: int = 1,
        limit: int = 20,
    ) -> DonationPage:
        """Admin-only view of soft-deleted donations, most recently deleted first."""
        return await self.list_donations(actor, filters, page, limit, view=DonationView.DELETED)

    async def _page(
        self,
        clauses: list[ColumnElement[bool]],
        page: int,
        limit: int,
        deleted_first: bool = False,
    ) -> DonationPage:
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        async def count() -> int:
            async with self.database.session() as session:
                result = await session.execute(
                    select(func.count()).select_from(Donation).where(*clauses)
                )
                return result.scalar_one()

        async def fetch() -> list[DonationRead]:
            order = [Donation.date.desc(), Donation.id.desc()]
            if deleted_first:
                order.insert(0, Donation.deleted_at.desc())
            async with self.database.session() as session:
                result = await session.execute(
                    joined_donations()
                    .where(*clauses)
                    .order_by(*order)
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
                return [to_read(*row) for row in result.all()]

        total, donations = await asyncio.gather(count(), fetch())
        return DonationPage(donations=donations, pagination=Pagination.build(page, limit, total))

    async def history(self, actor: Actor, donation_id: int) -> list[AuditLogRead]:
        """Audit entries about one donation, newest first."""
        async with self.database.session() as session:
            donation = await session.get(Donation, donation_id)
        if donation is None:
            raise NotFoundError(donation_not_found(donation_id))
        self.access.ensure_can_view(actor.identity, donation)
        if actor.role is UserRole.OPERATOR and donation.is_deleted:
            raise NotFoundError(donation_not_found(donation_id))

        entries = await self.coordinator.audit_store.entity_history(
            EntityType.DONATION, donation_id, actions=HISTORY_ACTIONS
        )
        return [AuditLogRead.model_validate(e) for e in entries]

    async def resend_receipt(
        self, actor: Actor, donation_id: int, custom_message: str | None = None
    ) -> DonationRead:
        """Send the receipt email for an active donation again.

        The EMAIL_RESENT entry commits first; delivery and its bookkeeping
        follow after commit like any other notification.

        Raises:
            ForbiddenError: Caller is not an admin
            NotFoundError: No such donation
            InvalidTransitionError: Donation is deleted
            ValidationError: The donor has no email address
        """
        self.access.require_admin(actor.identity)

        async def operation(session: AsyncSession) -> Donation:
            donation = await session.get(Donation, donation_id)
            if donation is None:
                raise NotFoundError(donation_not_found(donation_id))
            ensure_active(donation)
            if not donation.donor_email:
                raise ValidationError(
                    "No email address provided for this donor",
                    [FieldViolation("donor_email", "Donation has no donor email")],
                )
            return donation

        def audit(donation: Donation) -> AuditSpec:
            return AuditSpec(
                action=AuditAction.EMAIL_RESENT,
                description=f"Receipt email re-sent to {donation.donor_email}",
                actor=actor,
                entity_type=EntityType.DONATION,
                entity_id=donation.id,
                metadata={
                    "recipient": donation.donor_email,
                    "donor_name": donation.donor_name,
                    "custom_message": custom_message,
                },
            )

        def receipt_email(donation: Donation) -> Notification | None:
            notification = self._receipt_email(donation)
            if notification is not None and custom_message:
                notification.payload["custom_message"] = custom_message
            return notification

        await self.coordinator.execute(operation, audit, [receipt_email])
        return await self.get(actor, donation_id)

    async def search_donors(self, actor: Actor, query: str, limit: int = 10) -> list[DonorSummary]:
        """Donors matching a name or phone fragment, most recent donor first."""
        search = (query or "").strip()
        if len(search) < MIN_DONOR_QUERY:
            return []

        pattern = f"%{search}%"
        last_date = func.max(Donation.date)
        statement = (
            select(
                Donation.donor_name,
                Donation.donor_phone,
                func.count(Donation.id),
                func.sum(Donation.amount),
                last_date,
            )
            .where(
                visibility(DonationView.ACTIVE),
                *self.access.scope_for(actor.identity, ResourceKind.DONATION),
                or_(Donation.donor_name.ilike(pattern), Donation.donor_phone.ilike(pattern)),
            )
            .group_by(Donation.donor_phone, Donation.donor_name)
            .order_by(last_date.desc())
            .limit(limit)
        )
        async with self.database.session() as session:
            result = await session.execute(statement)
            rows = result.all()

        return [
            DonorSummary(
                donor_name=name,
                donor_phone=phone,
                total_donations=count,
                total_amount=to_money(amount),
                last_donation_date=last,
            )
            for name, phone, count, amount, last in rows
        ]

    async def donor_by_phone(self, actor: Actor, phone: str) -> DonorProfile | None:
        """Latest details, totals and recent donations for a phone number."""
        phone = (phone or "").strip()
        if not phone:
            return None

        clauses = [
            Donation.donor_phone == phone,
            visibility(DonationView.ACTIVE),
            *self.access.scope_for(actor.identity, ResourceKind.DONATION),
        ]

        async def totals() -> tuple[int, Any]:
            async with self.database.session() as session:
                result = await session.execute(
                    select(func.count(Donation.id), func.sum(Donation.amount)).where(*clauses)
                )
                return result.one()

        async def recent() -> list[Donation]:
            async with self.database.session() as session:
                result = await session.execute(
                    select(Donation)
                    .where(*clauses)
                    .order_by(Donation.date.desc(), Donation.id.desc())
                    .limit(RECENT_DONOR_DONATIONS)
                )
                return list(result.scalars().all())

        (count, amount), donations = await asyncio.gather(totals(), recent())
        if not donations:
            return None

        latest = donations[0]
        return DonorProfile(
            donor_name=latest.donor_name,
            donor_phone=latest.donor_phone,
            donor_email=latest.donor_email,
            last_purpose=latest.purpose,
            last_payment_method=latest.payment_method,
            total_donations=count,
            total_amount=to_money(amount),
            recent_donations=[
                RecentDonation(
                    id=d.id,
                    amount=d.amount,
                    purpose=d.purpose,
                    payment_method=d.payment_method,
                    date=d.date,
                )
                for d in donations
            ],
        )

    def _receipt_email(self, donation: Donation) -> Notification | None:
        if not donation.donor_email:
            return None
        return Notification(
            channel="receipt_email",
            payload={**_receipt_payload(donation), "recipient": donation.donor_email},
            entity_type=EntityType.DONATION,
            entity_id=donation.id,
            on_outcome=self._email_bookkeeping(donation.id),
        )

    def _email_bookkeeping(self, donation_id: int):
        async def on_outcome(outcome: NotificationOutcome) -> None:
            async with self.database.transaction() as session:
                donation = await session.get(Donation, donation_id)
                if donation is None:
                    return
                if outcome.status is OutcomeStatus.SENT:
                    donation.email_sent = True
                    donation.email_sent_at = utcnow()
                    donation.email_error = None
                else:
                    donation.email_sent = False
                    donation.email_error = outcome.error
                session.add(donation)

        return on_outcome


def _receipt_payload(donation: Donation) -> dict[str, Any]:
    return {
        "donation_id": donation.id,
        "donor_name": donation.donor_name,
        "donor_phone": donation.donor_phone,
        "amount": str(donation.amount),
        "purpose": donation.purpose,
        "payment_method": donation.payment_method.value,
        "date": donation.date.isoformat(),
        "receipt_number": donation.receipt_number or f"DN{donation.id:08d}",
    }
