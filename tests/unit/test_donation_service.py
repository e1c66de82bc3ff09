"""Unit tests for donation recording and scoped reads."""

from decimal import Decimal

import httpx
import pytest
from sqlmodel import select

from donation_ledger.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from donation_ledger.models import (
    AuditAction,
    AuditLog,
    Donation,
    DonationCategory,
    DonationCreate,
    DonationUpdate,
    PaymentMethod,
)
from donation_ledger.services import donations as donations_module
from donation_ledger.services.access import DonationFilters
from donation_ledger.services.donations import DonationService
from donation_ledger.services.notifications import NotificationDispatcher
from donation_ledger.services.soft_delete import SoftDeleteLifecycle
from donation_ledger.services.transactions import TransactionCoordinator
from tests.conftest import create_donation


@pytest.fixture
def service(database, coordinator, access) -> DonationService:
    return DonationService(database, coordinator, access)


def new_donation(**overrides) -> DonationCreate:
    values = {
        "donor_name": "Amina Khan",
        "donor_phone": "5559876543",
        "amount": Decimal("500.00"),
        "purpose": "Relief",
        "payment_method": PaymentMethod.CASH,
        "send_notification": False,
    }
    values.update(overrides)
    return DonationCreate(**values)


async def audit_entries(database, action: AuditAction) -> list[AuditLog]:
    async with database.session() as session:
        result = await session.execute(
            select(AuditLog).where(AuditLog.action == action.value).order_by(AuditLog.id)
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
class TestCreate:
    """Tests for recording donations."""

    async def test_create_writes_one_entry(self, database, service, operator_actor):
        donation = await service.create(operator_actor, new_donation())

        created = await audit_entries(database, AuditAction.DONATION_CREATED)
        assert len(created) == 1
        assert created[0].entity_id == donation.id
        assert created[0].details["amount"] == "500.00"
        assert donation.operator.id == operator_actor.user_id
        assert donation.category.name == "Relief"
        assert donation.deletion is None

    async def test_purpose_reuses_existing_category(self, database, service, operator_actor):
        first = await service.create(operator_actor, new_donation())
        second = await service.create(operator_actor, new_donation(amount=Decimal("20")))

        assert first.category_id == second.category_id
        entries = await audit_entries(database, AuditAction.DONATION_CREATED)
        assert [e.details["category_created"] for e in entries] == [True, False]
        async with database.session() as session:
            result = await session.execute(select(DonationCategory))
            assert len(result.scalars().all()) == 1

    async def test_failed_create_writes_nothing(
        self, database, service, operator_actor, monkeypatch
    ):
        async def refuse(session, purpose):
            raise ConflictError("category unavailable")

        monkeypatch.setattr(donations_module, "category_for_purpose", refuse)

        with pytest.raises(ConflictError):
            await service.create(operator_actor, new_donation())

        assert await audit_entries(database, AuditAction.DONATION_CREATED) == []
        async with database.session() as session:
            result = await session.execute(select(Donation))
            assert result.scalars().all() == []

    async def test_receipt_email_bookkeeping(self, database, audit_store, access, operator_actor):
        notifier = NotificationDispatcher(
            "http://hooks.example.com/notify",
            transport=httpx.MockTransport(lambda request: httpx.Response(200)),
        )
        coordinator = TransactionCoordinator(database, audit_store, notifier=notifier)
        service = DonationService(database, coordinator, access)

        created = await service.create(
            operator_actor, new_donation(donor_email="amina@example.com", send_notification=True)
        )

        stored = await service.get(operator_actor, created.id)
        assert stored.email_sent is True
        assert stored.email_sent_at is not None
        sent = await audit_entries(database, AuditAction.NOTIFICATION_SENT)
        assert sorted(e.details["channel"] for e in sent) == ["donation_receipt", "receipt_email"]

    async def test_failed_receipt_email_is_recorded(
        self, database, audit_store, access, operator_actor
    ):
        notifier = NotificationDispatcher(
            "http://hooks.example.com/notify",
            transport=httpx.MockTransport(lambda request: httpx.Response(502)),
        )
        coordinator = TransactionCoordinator(database, audit_store, notifier=notifier)
        service = DonationService(database, coordinator, access)

        created = await service.create(operator_actor, new_donation(donor_email="amina@example.com"))

        stored = await service.get(operator_actor, created.id)
        assert stored.email_sent is False
        assert stored.email_error is not None
        assert len(await audit_entries(database, AuditAction.NOTIFICATION_FAILED)) == 1


@pytest.mark.asyncio
class TestUpdate:
    """Tests for updating donations."""

    async def test_update_records_previous_and_new_values(
        self, database, service, operator_actor
    ):
        created = await service.create(operator_actor, new_donation())

        updated = await service.update(
            operator_actor, created.id, DonationUpdate(amount=Decimal("750"), notes="pledge")
        )

        assert updated.amount == Decimal("750.00")
        (entry,) = await audit_entries(database, AuditAction.DONATION_UPDATED)
        assert entry.details["previous_values"]["amount"] == "500.00"
        assert entry.details["new_values"] == {"amount": "750", "notes": "pledge"}

    async def test_noop_update_writes_no_entry(self, database, service, operator_actor):
        created = await service.create(operator_actor, new_donation())

        await service.update(operator_actor, created.id, DonationUpdate(donor_name="Amina Khan"))

        assert await audit_entries(database, AuditAction.DONATION_UPDATED) == []

    async def test_purpose_change_moves_category(self, database, service, operator_actor):
        created = await service.create(operator_actor, new_donation())

        updated = await service.update(operator_actor, created.id, DonationUpdate(purpose="Education"))

        assert updated.category.name == "Education"
        assert updated.category_id != created.category_id
        (entry,) = await audit_entries(database, AuditAction.DONATION_UPDATED)
        assert entry.details["new_values"]["category_id"] == updated.category_id
        assert entry.details["category_created"] is True

    async def test_operator_cannot_update_others(self, service, operator_actor, other_actor):
        created = await service.create(operator_actor, new_donation())

        with pytest.raises(ForbiddenError):
            await service.update(other_actor, created.id, DonationUpdate(notes="mine now"))


@pytest.mark.asyncio
class TestScopedReads:
    """Operators only see their own donations."""

    async def test_get_other_operator_is_forbidden(
        self, database, service, operator_actor, other_operator
    ):
        theirs = await create_donation(database, other_operator.id)

        with pytest.raises(ForbiddenError):
            await service.get(operator_actor, theirs.id)

    async def test_get_own_donation(self, database, service, operator_actor, operator_user):
        mine = await create_donation(database, operator_user.id)

        fetched = await service.get(operator_actor, mine.id)

        assert fetched.id == mine.id
        assert fetched.operator.name == "Operator One"
        assert fetched.category is None

    async def test_missing_donation(self, service, operator_actor):
        with pytest.raises(NotFoundError):
            await service.get(operator_actor, 12345)

    async def test_own_deleted_donation_is_hidden_from_operator(
        self, database, coordinator, access, service, admin_actor, operator_actor, operator_user
    ):
        mine = await create_donation(database, operator_user.id)
        await SoftDeleteLifecycle(coordinator, access).delete(admin_actor, mine.id, "Duplicate")

        with pytest.raises(NotFoundError):
            await service.get(operator_actor, mine.id)
        seen_by_admin = await service.get(admin_actor, mine.id)
        assert seen_by_admin.deletion.reason == "Duplicate"
        assert seen_by_admin.deletion.deleted_by == admin_actor.user_id

    async def test_own_deleted_donation_history_is_hidden_from_operator(
        self, database, coordinator, access, service, admin_actor, operator_actor
    ):
        created = await service.create(operator_actor, new_donation())
        await SoftDeleteLifecycle(coordinator, access).delete(admin_actor, created.id)

        with pytest.raises(NotFoundError):
            await service.history(operator_actor, created.id)
        history = await service.history(admin_actor, created.id)
        assert [e.action for e in history] == ["DONATION_DELETED", "DONATION_CREATED"]

    async def test_listing_is_narrowed_for_operators(
        self, database, service, operator_actor, admin_actor, operator_user, other_operator
    ):
        mine = await create_donation(database, operator_user.id)
        await create_donation(database, other_operator.id)

        own_page = await service.list_donations(
            operator_actor, DonationFilters(operator_id=other_operator.id)
        )
        admin_page = await service.list_donations(admin_actor, DonationFilters())

        assert [d.id for d in own_page.donations] == [mine.id]
        assert own_page.pagination.total == 1
        assert admin_page.pagination.total == 2

    async def test_deleted_view_requires_admin(self, service, operator_actor):
        with pytest.raises(ForbiddenError):
            await service.list_deleted(operator_actor, DonationFilters())

    async def test_pagination(self, database, service, admin_actor, operator_user):
        for _ in range(5):
            await create_donation(database, operator_user.id)

        page = await service.list_donations(admin_actor, DonationFilters(), page=2, limit=2)

        assert len(page.donations) == 2
        assert page.pagination.total == 5
        assert page.pagination.pages == 3


@pytest.mark.asyncio
class TestDonors:
    async def test_search_groups_by_donor(self, database, service, admin_actor, operator_user):
        await create_donation(database, operator_user.id, donor_name="Bilal", donor_phone="5550000001")
        await create_donation(
            database, operator_user.id, donor_name="Bilal", donor_phone="5550000001", amount=Decimal("5")
        )
        await create_donation(database, operator_user.id, donor_name="Sara", donor_phone="5550000002")

        results = await service.search_donors(admin_actor, "Bil")

        assert len(results) == 1
        assert results[0].total_donations == 2
        assert results[0].total_amount == Decimal("105.00")

    async def test_short_query_returns_nothing(self, service, admin_actor):
        assert await service.search_donors(admin_actor, "B") == []

    async def test_donor_by_phone(self, database, service, admin_actor, operator_user):
        await create_donation(database, operator_user.id, donor_phone="5550000003", purpose="Zakat")

        profile = await service.donor_by_phone(admin_actor, "5550000003")

        assert profile.last_purpose == "Zakat"
        assert profile.total_donations == 1
        assert len(profile.recent_donations) == 1
        assert await service.donor_by_phone(admin_actor, "0000000000") is None

    async def test_history_lists_donation_entries(self, service, operator_actor):
        created = await service.create(operator_actor, new_donation())
        await service.update(operator_actor, created.id, DonationUpdate(notes="updated"))

        history = await service.history(operator_actor, created.id)

        assert [e.action for e in history] == ["DONATION_UPDATED", "DONATION_CREATED"]


@pytest.mark.asyncio
class TestResendReceipt:
    async def test_resend_is_recorded_and_delivered(
        self, database, audit_store, access, operator_actor, admin_actor
    ):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200)

        notifier = NotificationDispatcher(
            "http://hooks.example.com/notify", transport=httpx.MockTransport(handler)
        )
        coordinator = TransactionCoordinator(database, audit_store, notifier=notifier)
        service = DonationService(database, coordinator, access)
        created = await service.create(
            operator_actor, new_donation(donor_email="amina@example.com")
        )
        requests.clear()

        resent = await service.resend_receipt(admin_actor, created.id, "Thank you again")

        assert resent.email_sent is True
        assert len(requests) == 1
        (entry,) = await audit_entries(database, AuditAction.EMAIL_RESENT)
        assert entry.details["recipient"] == "amina@example.com"
        assert entry.details["custom_message"] == "Thank you again"
        history = await service.history(admin_actor, created.id)
        assert AuditAction.EMAIL_RESENT.value in [e.action for e in history]

    async def test_resend_without_email(self, database, service, operator_actor, admin_actor):
        created = await service.create(operator_actor, new_donation())

        with pytest.raises(ValidationError):
            await service.resend_receipt(admin_actor, created.id)

        assert await audit_entries(database, AuditAction.EMAIL_RESENT) == []

    async def test_resend_is_admin_only(self, service, operator_actor):
        created = await service.create(operator_actor, new_donation(donor_email="amina@example.com"))

        with pytest.raises(ForbiddenError):
            await service.resend_receipt(operator_actor, created.id)
