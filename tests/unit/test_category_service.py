"""Unit tests for category management."""

import asyncio
from decimal import Decimal

import pytest
from sqlmodel import select

from donation_ledger.core.errors import ConflictError, ForbiddenError, NotFoundError
from donation_ledger.models import (
    AuditAction,
    AuditLog,
    CategoryCreate,
    CategoryUpdate,
    DonationCategory,
)
from donation_ledger.services.categories import CategoryService
from donation_ledger.services.soft_delete import SoftDeleteLifecycle
from tests.conftest import create_donation


@pytest.fixture
def service(database, coordinator, access) -> CategoryService:
    return CategoryService(database, coordinator, access)


async def all_categories(database) -> list[DonationCategory]:
    async with database.session() as session:
        result = await session.execute(select(DonationCategory))
        return list(result.scalars().all())


@pytest.mark.asyncio
class TestCreate:
    async def test_create_with_defaults(self, database, service, admin_actor):
        category = await service.create(admin_actor, CategoryCreate(name="  Zakat "))

        assert category.name == "Zakat"
        assert category.icon == "Tag"
        assert category.color == "#3b82f6"
        async with database.session() as session:
            result = await session.execute(
                select(AuditLog).where(AuditLog.action == AuditAction.CATEGORY_CREATED.value)
            )
            assert result.scalar_one().entity_id == category.id

    async def test_duplicate_name_is_conflict(self, database, service, admin_actor):
        await service.create(admin_actor, CategoryCreate(name="Zakat"))

        with pytest.raises(ConflictError):
            await service.create(admin_actor, CategoryCreate(name="Zakat"))

        assert len(await all_categories(database)) == 1

    async def test_concurrent_duplicates_admit_one(self, database, service, admin_actor):
        results = await asyncio.gather(
            service.create(admin_actor, CategoryCreate(name="Relief")),
            service.create(admin_actor, CategoryCreate(name="Relief")),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, ConflictError)]
        created = [r for r in results if not isinstance(r, Exception)]
        assert len(created) == 1
        assert len(conflicts) == 1
        assert len(await all_categories(database)) == 1

    async def test_operator_cannot_create(self, service, operator_actor):
        with pytest.raises(ForbiddenError):
            await service.create(operator_actor, CategoryCreate(name="Zakat"))


@pytest.mark.asyncio
class TestUpdateAndToggle:
    async def test_rename_to_taken_name(self, service, admin_actor):
        await service.create(admin_actor, CategoryCreate(name="Zakat"))
        other = await service.create(admin_actor, CategoryCreate(name="Sadaqah"))

        with pytest.raises(ConflictError):
            await service.update(admin_actor, other.id, CategoryUpdate(name="Zakat"))

    async def test_update_keeps_unset_fields(self, service, admin_actor):
        category = await service.create(
            admin_actor, CategoryCreate(name="Zakat", description="Annual alms")
        )

        updated = await service.update(admin_actor, category.id, CategoryUpdate(color="#000000"))

        assert updated.color == "#000000"
        assert updated.description == "Annual alms"

    async def test_toggle_flips_active(self, service, admin_actor):
        category = await service.create(admin_actor, CategoryCreate(name="Zakat"))

        toggled = await service.toggle(admin_actor, category.id)
        active = await service.active()

        assert toggled.is_active is False
        assert [c.id for c in active] == []


@pytest.mark.asyncio
class TestDelete:
    async def test_delete_empty_category(self, database, service, admin_actor):
        category = await service.create(admin_actor, CategoryCreate(name="Zakat"))

        await service.delete(admin_actor, category.id)

        assert await all_categories(database) == []
        with pytest.raises(NotFoundError):
            await service.get(category.id)

    async def test_delete_with_donations_is_blocked(
        self, database, service, admin_actor, operator_user
    ):
        category = await service.create(admin_actor, CategoryCreate(name="Zakat"))
        await create_donation(database, operator_user.id, category_id=category.id)

        with pytest.raises(ConflictError):
            await service.delete(admin_actor, category.id)

        remaining = await all_categories(database)
        assert [c.name for c in remaining] == ["Zakat"]
        assert remaining[0].is_active is True

    async def test_soft_deleted_donations_still_block(
        self, database, coordinator, access, service, admin_actor, operator_user
    ):
        category = await service.create(admin_actor, CategoryCreate(name="Zakat"))
        donation = await create_donation(database, operator_user.id, category_id=category.id)
        await SoftDeleteLifecycle(coordinator, access).delete(admin_actor, donation.id)

        with pytest.raises(ConflictError):
            await service.delete(admin_actor, category.id)


@pytest.mark.asyncio
class TestStats:
    async def test_stats_exclude_deleted_donations(
        self, database, coordinator, access, service, admin_actor, operator_user
    ):
        category = await service.create(admin_actor, CategoryCreate(name="Zakat"))
        for amount in ("10.00", "20.00", "40.00"):
            await create_donation(
                database, operator_user.id, category_id=category.id, amount=Decimal(amount)
            )
        hidden = await create_donation(
            database, operator_user.id, category_id=category.id, amount=Decimal("1000.00")
        )
        await SoftDeleteLifecycle(coordinator, access).delete(admin_actor, hidden.id)

        stats = await service.stats(category.id)
        listed = await service.get(category.id)

        assert stats.total_count == 3
        assert stats.total_amount == Decimal("70.00")
        assert stats.average_amount == Decimal("23.33")
        assert stats.max_amount == Decimal("40.00")
        assert stats.min_amount == Decimal("10.00")
        assert listed.donation_count == 3
        assert listed.total_amount == Decimal("70.00")

    async def test_listing_with_search(self, service, admin_actor):
        await service.create(admin_actor, CategoryCreate(name="Zakat"))
        await service.create(admin_actor, CategoryCreate(name="Education"))

        page = await service.list_with_stats(search="zak")

        assert [c.name for c in page.categories] == ["Zakat"]
        assert page.categories[0].donation_count == 0
        assert page.categories[0].average_amount == Decimal("0.00")
        assert page.pagination.total == 1
