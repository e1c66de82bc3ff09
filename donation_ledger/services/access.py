"""Role-scoped access rules for donations and admin-only operations."""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import ColumnElement, or_

from donation_ledger.core.errors import ForbiddenError
from donation_ledger.models import Donation, PaymentMethod, User, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller, re-read from the store on every request."""

    id: int
    role: UserRole
    email: str
    name: str

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(id=user.id, role=user.role, email=user.email, name=user.name)


@dataclass(frozen=True)
class Actor:
    """Who performed an action and where the request came from.

    ``identity`` is None for anonymous events such as a failed login.
    """

    identity: Identity | None
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def user_id(self) -> int | None:
        return self.identity.id if self.identity else None

    @property
    def role(self) -> UserRole | None:
        return self.identity.role if self.identity else None


class ResourceKind(str, Enum):
    DONATION = "donation"
    CATEGORY = "category"
    USER = "user"
    AUDIT = "audit"


@dataclass(frozen=True)
class DonationFilters:
    """Caller-supplied donation listing filters."""

    operator_id: int | None = None
    category_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    purpose: str | None = None
    payment_method: PaymentMethod | None = None
    search: str | None = None


class AccessScopeFilter:
    """Builds query predicates and ownership checks from the caller's role."""

    def scope_for(self, identity: Identity, kind: ResourceKind) -> list[ColumnElement[bool]]:
        """Implicit predicates every query on ``kind`` must carry for this caller."""
        match identity.role:
            case UserRole.ADMIN:
                return []
            case UserRole.OPERATOR:
                if kind is ResourceKind.DONATION:
                    return [Donation.operator_id == identity.id]
                return []

    def narrow(self, identity: Identity, filters: DonationFilters) -> DonationFilters:
        """Apply the caller's scope to listing filters.

        An operator's own id always replaces any operator id they supplied.
        """
        match identity.role:
            case UserRole.ADMIN:
                return filters
            case UserRole.OPERATOR:
                return replace(filters, operator_id=identity.id)

    def ensure_can_view(self, identity: Identity, donation: Donation) -> None:
        """Raise ForbiddenError when an operator reads someone else's donation."""
        match identity.role:
            case UserRole.ADMIN:
                return
            case UserRole.OPERATOR:
                if donation.operator_id != identity.id:
                    logger.warning(
                        f"Operator {identity.id} denied access to donation {donation.id}"
                    )
                    raise ForbiddenError("You can only access your own donations")

    def ensure_can_modify(self, identity: Identity, donation: Donation) -> None:
        """Raise ForbiddenError when an operator updates someone else's donation."""
        match identity.role:
            case UserRole.ADMIN:
                return
            case UserRole.OPERATOR:
                if donation.operator_id != identity.id:
                    logger.warning(
                        f"Operator {identity.id} denied update of donation {donation.id}"
                    )
                    raise ForbiddenError("You can only update your own donations")

    def require_admin(self, identity: Identity) -> None:
        match identity.role:
            case UserRole.ADMIN:
                return
            case UserRole.OPERATOR:
                logger.warning(f"Operator {identity.id} denied admin-only operation")
                raise ForbiddenError("Admin access required")


def donation_predicates(filters: DonationFilters) -> list[ColumnElement[bool]]:
    """Translate listing filters into SQL predicates."""
    clauses: list[ColumnElement[bool]] = []
    if filters.operator_id is not None:
        clauses.append(Donation.operator_id == filters.operator_id)
    if filters.category_id is not None:
        clauses.append(Donation.category_id == filters.category_id)
    if filters.start_date is not None:
        clauses.append(Donation.date >= filters.start_date)
    if filters.end_date is not None:
        clauses.append(Donation.date <= filters.end_date)
    if filters.min_amount is not None:
        clauses.append(Donation.amount >= filters.min_amount)
    if filters.max_amount is not None:
        clauses.append(Donation.amount <= filters.max_amount)
    if filters.purpose:
        clauses.append(Donation.purpose.ilike(f"%{filters.purpose}%"))
    if filters.payment_method is not None:
        clauses.append(Donation.payment_method == filters.payment_method)
    if filters.search:
        pattern = f"%{filters.search.strip()}%"
        clauses.append(
            or_(
                Donation.donor_name.ilike(pattern),
                Donation.donor_phone.ilike(pattern),
                Donation.donor_email.ilike(pattern),
            )
        )
    return clauses
