"""Soft-delete lifecycle for donations: ACTIVE -> DELETED -> ACTIVE."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import ColumnElement, true
from sqlalchemy.ext.asyncio import AsyncSession

from donation_ledger.core.clock import utcnow
from donation_ledger.core.errors import InvalidTransitionError, NotFoundError, donation_not_found
from donation_ledger.models import AuditAction, Donation, EntityType
from donation_ledger.services.access import AccessScopeFilter, Actor
from donation_ledger.services.audit import AuditSpec
from donation_ledger.services.transactions import MutationResult, TransactionCoordinator

logger = logging.getLogger(__name__)

DEFAULT_DELETION_REASON = "No reason provided"


@dataclass(frozen=True)
class Active:
    """Donation is visible in default listings and aggregates."""


@dataclass(frozen=True)
class Deleted:
    """Donation is hidden; who removed it, when and why."""

    at: datetime
    by: int
    reason: str


DeletionState = Active | Deleted


def deletion_state(donation: Donation) -> DeletionState:
    """Read the deletion columns of a row as a tagged variant."""
    if not donation.is_deleted:
        return Active()
    return Deleted(
        at=donation.deleted_at,
        by=donation.deleted_by,
        reason=donation.deletion_reason or DEFAULT_DELETION_REASON,
    )


def apply_state(donation: Donation, state: DeletionState) -> None:
    """Write a deletion state back. All four columns change together."""
    match state:
        case Active():
            donation.is_deleted = False
            donation.deleted_at = None
            donation.deleted_by = None
            donation.deletion_reason = None
        case Deleted(at=at, by=by, reason=reason):
            donation.is_deleted = True
            donation.deleted_at = at
            donation.deleted_by = by
            donation.deletion_reason = reason


def ensure_active(donation: Donation) -> None:
    """Reject changes to a soft-deleted donation."""
    if isinstance(deletion_state(donation), Deleted):
        raise InvalidTransitionError(f"Donation {donation.id} is deleted and cannot be changed")


class DonationView(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"
    ALL = "all"


def visibility(view: DonationView = DonationView.ACTIVE) -> ColumnElement[bool]:
    """Predicate selecting donations for a view. ACTIVE is the default everywhere."""
    match view:
        case DonationView.ACTIVE:
            return Donation.is_deleted == False  # noqa: E712
        case DonationView.DELETED:
            return Donation.is_deleted == True  # noqa: E712
        case DonationView.ALL:
            return true()


class SoftDeleteLifecycle:
    """Admin-only delete and restore transitions, each with one audit entry."""

    def __init__(self, coordinator: TransactionCoordinator, access: AccessScopeFilter):
        self.coordinator = coordinator
        self.access = access

    async def delete(
        self,
        actor: Actor,
        donation_id: int,
        reason: str | None = None,
    ) -> MutationResult[Donation]:
        """Soft-delete an active donation.

        Raises:
            ForbiddenError: Caller is not an admin
            NotFoundError: No such donation
            InvalidTransitionError: Donation is already deleted
        """
        self.access.require_admin(actor.identity)
        reason = (reason or "").strip() or DEFAULT_DELETION_REASON

        async def operation(session: AsyncSession) -> Donation:
            donation = await _load(session, donation_id)
            if isinstance(deletion_state(donation), Deleted):
                raise InvalidTransitionError(f"Donation {donation_id} is already deleted")
            apply_state(donation, Deleted(at=utcnow(), by=actor.user_id, reason=reason))
            session.add(donation)
            await session.flush()
            return donation

        def audit(donation: Donation) -> AuditSpec:
            return AuditSpec(
                action=AuditAction.DONATION_DELETED,
                description=(
                    f"Deleted donation of {donation.amount} from {donation.donor_name}: {reason}"
                ),
                actor=actor,
                entity_type=EntityType.DONATION,
                entity_id=donation.id,
                metadata={
                    "donor_name": donation.donor_name,
                    "amount": donation.amount,
                    "purpose": donation.purpose,
                    "reason": reason,
                },
            )

        result = await self.coordinator.execute(operation, audit)
        logger.info(f"Donation {donation_id} soft-deleted by user {actor.user_id}")
        return result

    async def restore(self, actor: Actor, donation_id: int) -> MutationResult[Donation]:
        """Bring a deleted donation back, clearing its deletion details.

        Raises:
            ForbiddenError: Caller is not an admin
            NotFoundError: No such donation
            InvalidTransitionError: Donation is not deleted
        """
        self.access.require_admin(actor.identity)

        async def operation(session: AsyncSession) -> tuple[Donation, Deleted]:
            donation = await _load(session, donation_id)
            previous = deletion_state(donation)
            if not isinstance(previous, Deleted):
                raise InvalidTransitionError(f"Donation {donation_id} is not deleted")
            apply_state(donation, Active())
            session.add(donation)
            await session.flush()
            return donation, previous

        def audit(value: tuple[Donation, Deleted]) -> AuditSpec:
            donation, previous = value
            return AuditSpec(
                action=AuditAction.DONATION_RESTORED,
                description=f"Restored donation of {donation.amount} from {donation.donor_name}",
                actor=actor,
                entity_type=EntityType.DONATION,
                entity_id=donation.id,
                metadata={
                    "donor_name": donation.donor_name,
                    "amount": donation.amount,
                    "deleted_at": previous.at,
                    "deleted_by": previous.by,
                    "deletion_reason": previous.reason,
                },
            )

        result = await self.coordinator.execute(operation, audit)
        logger.info(f"Donation {donation_id} restored by user {actor.user_id}")
        donation, _ = result.value
        return MutationResult(value=donation, audit_entry=result.audit_entry)


async def _load(session: AsyncSession, donation_id: int) -> Donation:
    donation = await session.get(Donation, donation_id)
    if donation is None:
        raise NotFoundError(donation_not_found(donation_id))
    return donation
