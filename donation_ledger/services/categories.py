"""Donation category management."""

import asyncio
import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import ColumnElement, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import func, select

from donation_ledger.core.database import Database
from donation_ledger.core.errors import (
    ConflictError,
    NotFoundError,
    category_delete_blocked,
    category_not_found,
    duplicate_category_name,
)
from donation_ledger.core.money import CENTS, to_money
from donation_ledger.models import (
    AuditAction,
    CategoryCreate,
    CategoryPage,
    CategoryRead,
    CategoryStats,
    CategoryUpdate,
    CategoryWithStats,
    Donation,
    DonationCategory,
    EntityType,
    Pagination,
)
from donation_ledger.services.access import AccessScopeFilter, Actor
from donation_ledger.services.audit import AuditSpec
from donation_ledger.services.soft_delete import visibility
from donation_ledger.services.transactions import TransactionCoordinator

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _average(total: Decimal, count: int) -> Decimal:
    if not count:
        return Decimal("0.00")
    return (total / count).quantize(CENTS)


def _with_stats(category: DonationCategory, count: int | None, total: Any) -> CategoryWithStats:
    count = count or 0
    total = to_money(total)
    return CategoryWithStats(
        **CategoryRead.model_validate(category).model_dump(),
        donation_count=count,
        total_amount=total,
        average_amount=_average(total, count),
    )


def _stats_query():
    """Categories joined with aggregates over their active donations."""
    totals = (
        select(
            Donation.category_id,
            func.count(Donation.id).label("donation_count"),
            func.sum(Donation.amount).label("total_amount"),
        )
        .where(visibility())
        .group_by(Donation.category_id)
        .subquery()
    )
    return select(DonationCategory, totals.c.donation_count, totals.c.total_amount).outerjoin(
        totals, totals.c.category_id == DonationCategory.id
    )


async def _load(session: AsyncSession, category_id: int) -> DonationCategory:
    category = await session.get(DonationCategory, category_id)
    if category is None:
        raise NotFoundError(category_not_found(category_id))
    return category


async def _ensure_name_free(session: AsyncSession, name: str) -> None:
    result = await session.execute(select(DonationCategory.id).where(DonationCategory.name == name))
    if result.first() is not None:
        raise ConflictError(duplicate_category_name(name))


class CategoryService:
    """Admin-managed categories. Reads are open to every signed-in user."""

    def __init__(
        self,
        database: Database,
        coordinator: TransactionCoordinator,
        access: AccessScopeFilter,
    ):
        self.database = database
        self.coordinator = coordinator
        self.access = access

    async def create(self, actor: Actor, data: CategoryCreate) -> CategoryRead:
        """Create a category.

        The name check runs inside the write transaction; the unique
        constraint on the name settles any remaining race.

        Raises:
            ForbiddenError: Caller is not an admin
            ConflictError: Name already taken
        """
        self.access.require_admin(actor.identity)
        name = data.name.strip()

        async def operation(session: AsyncSession) -> DonationCategory:
            await _ensure_name_free(session, name)
            category = DonationCategory(
                name=name,
                description=data.description,
                icon=data.icon or "Tag",
                color=data.color or "#3b82f6",
                is_active=data.is_active,
            )
            session.add(category)
            await session.flush()
            return category

        def audit(category: DonationCategory) -> AuditSpec:
            return AuditSpec(
                action=AuditAction.CATEGORY_CREATED,
                description=f'Donation category "{category.name}" created',
                actor=actor,
                entity_type=EntityType.DONATION_CATEGORY,
                entity_id=category.id,
                metadata={
                    "name": category.name,
                    "description": category.description,
                    "icon": category.icon,
                    "color": category.color,
                },
            )

        result = await self.coordinator.execute(operation, audit)
        return CategoryRead.model_validate(result.value)

    async def update(self, actor: Actor, category_id: int, data: CategoryUpdate) -> CategoryRead:
        """Update a category. Renaming checks the new name is free."""
        self.access.require_admin(actor.identity)
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        if "name" in changes:
            changes["name"] = changes["name"].strip()

        async def operation(session: AsyncSession) -> tuple[DonationCategory, dict]:
            category = await _load(session, category_id)
            previous = {
                "name": category.name,
                "description": category.description,
                "icon": category.icon,
                "color": category.color,
                "is_active": category.is_active,
            }
            if "name" in changes and changes["name"] != category.name:
                await _ensure_name_free(session, changes["name"])
            for field, value in changes.items():
                setattr(category, field, value)
            session.add(category)
            await session.flush()
            return category, previous

        def audit(value: tuple[DonationCategory, dict]) -> AuditSpec:
            category, previous = value
            return AuditSpec(
                action=AuditAction.CATEGORY_UPDATED,
                description=f'Donation category "{category.name}" updated',
                actor=actor,
                entity_type=EntityType.DONATION_CATEGORY,
                entity_id=category.id,
                metadata={"updates": changes, "previous_values": previous},
            )

        result = await self.coordinator.execute(operation, audit)
        category, _ = result.value
        return CategoryRead.model_validate(category)

    async def toggle(self, actor: Actor, category_id: int) -> CategoryRead:
        """Flip a category between active and inactive."""
        self.access.require_admin(actor.identity)

        async def operation(session: AsyncSession) -> DonationCategory:
            category = await _load(session, category_id)
            category.is_active = not category.is_active
            session.add(category)
            await session.flush()
            return category

        def audit(category: DonationCategory) -> AuditSpec:
            state = "activated" if category.is_active else "deactivated"
            return AuditSpec(
                action=AuditAction.CATEGORY_TOGGLED,
                description=f'Donation category "{category.name}" {state}',
                actor=actor,
                entity_type=EntityType.DONATION_CATEGORY,
                entity_id=category.id,
                metadata={"is_active": category.is_active},
            )

        result = await self.coordinator.execute(operation, audit)
        return CategoryRead.model_validate(result.value)

    async def delete(self, actor: Actor, category_id: int) -> CategoryRead:
        """Physically delete a category that has no donations.

        Soft-deleted donations still reference the category and also block
        deletion.

        Raises:
            ConflictError: The category has donations; deactivate it instead
        """
        self.access.require_admin(actor.identity)

        async def operation(session: AsyncSession) -> DonationCategory:
            category = await _load(session, category_id)
            result = await session.execute(
                select(func.count(Donation.id)).where(Donation.category_id == category_id)
            )
            donation_count = result.scalar_one()
            if donation_count > 0:
                logger.info(f"Refused delete of category {category_id} with {donation_count} donations")
                raise ConflictError(category_delete_blocked(category_id, donation_count))
            await session.delete(category)
            await session.flush()
            return category

        def audit(category: DonationCategory) -> AuditSpec:
            return AuditSpec(
                action=AuditAction.CATEGORY_DELETED,
                description=f'Donation category "{category.name}" deleted',
                actor=actor,
                entity_type=EntityType.DONATION_CATEGORY,
                entity_id=category_id,
                metadata={"name": category.name, "description": category.description},
            )

        result = await self.coordinator.execute(operation, audit)
        return CategoryRead.model_validate(result.value)

    async def list_with_stats(
        self,
        search: str | None = None,
        is_active: bool | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> CategoryPage:
        """Categories by name with donation count, total and average."""
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        clauses: list[ColumnElement[bool]] = []
        if is_active is not None:
            clauses.append(DonationCategory.is_active == is_active)
        if search:
            pattern = f"%{search.strip()}%"
            clauses.append(
                or_(DonationCategory.name.ilike(pattern), DonationCategory.description.ilike(pattern))
            )

        async def count() -> int:
            async with self.database.session() as session:
                result = await session.execute(
                    select(func.count()).select_from(DonationCategory).where(*clauses)
                )
                return result.scalar_one()

        async def fetch() -> list[CategoryWithStats]:
            async with self.database.session() as session:
                result = await session.execute(
                    _stats_query()
                    .where(*clauses)
                    .order_by(DonationCategory.name)
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
                return [_with_stats(*row) for row in result.all()]

        total, categories = await asyncio.gather(count(), fetch())
        return CategoryPage(categories=categories, pagination=Pagination.build(page, limit, total))

    async def active(self) -> list[CategoryWithStats]:
        """Active categories for donation entry, by name."""
        async with self.database.session() as session:
            result = await session.execute(
                _stats_query()
                .where(DonationCategory.is_active == True)  # noqa: E712
                .order_by(DonationCategory.name)
            )
            return [_with_stats(*row) for row in result.all()]

    async def get(self, category_id: int) -> CategoryWithStats:
        async with self.database.session() as session:
            result = await session.execute(_stats_query().where(DonationCategory.id == category_id))
            row = result.first()
        if row is None:
            raise NotFoundError(category_not_found(category_id))
        return _with_stats(*row)

    async def stats(self, category_id: int) -> CategoryStats:
        """Count, total, average, max and min over a category's active donations."""
        async with self.database.session() as session:
            if await session.get(DonationCategory, category_id) is None:
                raise NotFoundError(category_not_found(category_id))
            result = await session.execute(
                select(
                    func.count(Donation.id),
                    func.sum(Donation.amount),
                    func.max(Donation.amount),
                    func.min(Donation.amount),
                ).where(Donation.category_id == category_id, visibility())
            )
            count, total, highest, lowest = result.one()

        total = to_money(total)
        return CategoryStats(
            category_id=category_id,
            total_count=count,
            total_amount=total,
            average_amount=_average(total, count),
            max_amount=to_money(highest),
            min_amount=to_money(lowest),
        )
