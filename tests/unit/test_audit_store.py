"""Unit tests for the audit trail store."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from donation_ledger.models import AuditAction, AuditLog, EntityType, UserRole
from donation_ledger.services.audit import AuditFilters, AuditSpec


def spec(actor, action=AuditAction.DONATION_CREATED, entity_id=1, description="entry", **metadata):
    return AuditSpec(
        action=action,
        description=description,
        actor=actor,
        entity_type=EntityType.DONATION,
        entity_id=entity_id,
        metadata=metadata,
    )


async def insert_at(database, timestamp: datetime, action: AuditAction, entity_id: int = 1):
    async with database.transaction() as session:
        session.add(
            AuditLog(
                timestamp=timestamp,
                action=action.value,
                entity_type=EntityType.DONATION.value,
                entity_id=entity_id,
                description=f"{action.value} at {timestamp.isoformat()}",
            )
        )


class TestBuildEntry:
    def test_actor_and_metadata_are_copied(self, audit_store, admin_actor):
        entry = audit_store.build_entry(
            spec(admin_actor, amount=Decimal("12.50"), method=UserRole.ADMIN)
        )

        assert entry.user_id == admin_actor.user_id
        assert entry.user_role is UserRole.ADMIN
        assert entry.ip_address == "127.0.0.1"
        assert entry.details == {"amount": "12.50", "method": "ADMIN"}

    def test_unserializable_metadata_raises(self, audit_store, admin_actor):
        with pytest.raises(TypeError):
            audit_store.build_entry(spec(admin_actor, bad=object()))


@pytest.mark.asyncio
class TestQuery:
    async def test_newest_first(self, database, audit_store):
        base = datetime(2026, 5, 1, 12, 0)
        await insert_at(database, base, AuditAction.DONATION_CREATED, 1)
        await insert_at(database, base + timedelta(minutes=5), AuditAction.DONATION_UPDATED, 1)
        await insert_at(database, base + timedelta(minutes=1), AuditAction.DONATION_CREATED, 2)

        page = await audit_store.query(AuditFilters())

        assert [e.action for e in page.entries] == [
            "DONATION_UPDATED",
            "DONATION_CREATED",
            "DONATION_CREATED",
        ]
        assert page.entries[1].entity_id == 2
        assert page.pagination.total == 3

    async def test_filters(self, database, audit_store):
        base = datetime(2026, 5, 1, 12, 0)
        await insert_at(database, base, AuditAction.DONATION_CREATED, 1)
        await insert_at(database, base + timedelta(days=1), AuditAction.DONATION_DELETED, 1)
        await insert_at(database, base + timedelta(days=2), AuditAction.DONATION_CREATED, 2)

        by_action = await audit_store.query(AuditFilters(action=AuditAction.DONATION_CREATED))
        by_range = await audit_store.query(
            AuditFilters(start_date=base + timedelta(hours=1), end_date=base + timedelta(days=1))
        )
        by_search = await audit_store.query(AuditFilters(search="deleted"))

        assert by_action.pagination.total == 2
        assert [e.action for e in by_range.entries] == ["DONATION_DELETED"]
        assert [e.action for e in by_search.entries] == ["DONATION_DELETED"]

    async def test_pagination_is_bounded(self, database, audit_store):
        base = datetime(2026, 5, 1, 12, 0)
        for minute in range(3):
            await insert_at(database, base + timedelta(minutes=minute), AuditAction.USER_LOGIN)

        page = await audit_store.query(AuditFilters(page=2, limit=2))

        assert len(page.entries) == 1
        assert page.pagination.pages == 2


@pytest.mark.asyncio
class TestRecord:
    async def test_record_commits_on_its_own(self, audit_store, admin_actor):
        entry = await audit_store.record(spec(admin_actor, AuditAction.REPORT_EXPORTED))

        assert entry.id is not None
        page = await audit_store.query(AuditFilters(action=AuditAction.REPORT_EXPORTED))
        assert page.pagination.total == 1

    async def test_record_failure_returns_none(self, audit_store, admin_actor):
        entry = await audit_store.record(spec(admin_actor, bad=object()))

        assert entry is None
        page = await audit_store.query(AuditFilters())
        assert page.entries == []


@pytest.mark.asyncio
class TestRollups:
    async def test_stats_and_distinct_actions(self, database, audit_store):
        base = datetime(2026, 5, 1, 12, 0)
        await insert_at(database, base, AuditAction.DONATION_CREATED)
        await insert_at(database, base, AuditAction.DONATION_CREATED)
        await insert_at(database, base, AuditAction.USER_LOGIN)

        stats = await audit_store.stats()
        actions = await audit_store.distinct_actions()

        assert [(s.action, s.count) for s in stats] == [("DONATION_CREATED", 2), ("USER_LOGIN", 1)]
        assert actions == ["DONATION_CREATED", "USER_LOGIN"]

    async def test_entity_history(self, database, audit_store):
        base = datetime(2026, 5, 1, 12, 0)
        await insert_at(database, base, AuditAction.DONATION_CREATED, 7)
        await insert_at(database, base + timedelta(hours=1), AuditAction.DONATION_DELETED, 7)
        await insert_at(database, base, AuditAction.DONATION_CREATED, 8)

        history = await audit_store.entity_history(EntityType.DONATION, 7)
        deletions = await audit_store.entity_history(
            EntityType.DONATION, 7, actions=[AuditAction.DONATION_DELETED]
        )

        assert [e.action for e in history] == ["DONATION_DELETED", "DONATION_CREATED"]
        assert len(deletions) == 1
