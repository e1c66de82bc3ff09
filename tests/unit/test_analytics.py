"""Unit tests for analytics rollups."""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from donation_ledger.core.clock import local_midnight, utcnow
from donation_ledger.models import AuditAction, DonationCreate, PaymentMethod, Timeframe
from donation_ledger.services.analytics import AnalyticsAggregator, resolve_window
from donation_ledger.services.audit import AuditFilters
from donation_ledger.services.donations import DonationService
from donation_ledger.services.soft_delete import SoftDeleteLifecycle
from tests.conftest import create_donation


@pytest.fixture
def analytics(database) -> AnalyticsAggregator:
    return AnalyticsAggregator(database)


class TestWindows:
    def test_today_starts_at_local_midnight(self):
        now = datetime(2026, 3, 10, 15, 30)

        assert resolve_window(Timeframe.TODAY, now) == datetime(2026, 3, 10)

    def test_today_in_other_timezone(self):
        # 02:00 UTC is still the previous evening in New York (UTC-4 in summer)
        now = datetime(2026, 7, 10, 2, 0)

        assert local_midnight(now, "America/New_York") == datetime(2026, 7, 9, 4, 0)

    def test_month_and_year_are_calendar_based(self):
        now = datetime(2026, 3, 31, 12, 0)

        assert resolve_window(Timeframe.MONTH, now) == datetime(2026, 2, 28, 12, 0)
        assert resolve_window(Timeframe.YEAR, now) == datetime(2025, 3, 31, 12, 0)
        assert resolve_window(Timeframe.WEEK, now) == datetime(2026, 3, 24, 12, 0)


@pytest.mark.asyncio
class TestInsights:
    async def test_today_windows_are_disjoint_across_midnight(
        self, database, analytics, operator_user
    ):
        await create_donation(
            database, operator_user.id, amount=Decimal("10.00"), date=datetime(2026, 4, 1, 23, 59, 0)
        )
        await create_donation(
            database, operator_user.id, amount=Decimal("20.00"), date=datetime(2026, 4, 2, 0, 0, 0)
        )

        before = await analytics.insights(Timeframe.TODAY, now=datetime(2026, 4, 1, 23, 59, 59))
        after = await analytics.insights(Timeframe.TODAY, now=datetime(2026, 4, 2, 0, 0, 1))

        assert before.overview.donation_count == 1
        assert before.overview.total_amount == Decimal("10.00")
        assert after.overview.donation_count == 1
        assert after.overview.total_amount == Decimal("20.00")

    async def test_overview_and_distribution(self, database, analytics, operator_user):
        now = datetime(2026, 4, 10, 18, 0)
        await create_donation(
            database, operator_user.id, amount=Decimal("10.00"), purpose="Zakat",
            payment_method=PaymentMethod.UPI, date=datetime(2026, 4, 10, 9, 15),
        )
        await create_donation(
            database, operator_user.id, amount=Decimal("25.00"), purpose="Zakat",
            date=datetime(2026, 4, 9, 9, 45),
        )
        await create_donation(
            database, operator_user.id, amount=Decimal("5.00"), purpose="Relief",
            date=datetime(2026, 4, 8, 14, 0),
        )

        insights = await analytics.insights(Timeframe.WEEK, now=now)

        overview = insights.overview
        assert overview.donation_count == 3
        assert overview.total_amount == Decimal("40.00")
        assert overview.avg_donation == Decimal("13.33")
        assert overview.max_donation == Decimal("25.00")
        assert overview.min_donation == Decimal("5.00")
        assert isinstance(overview.total_amount, Decimal)

        distribution = insights.distribution
        assert [(b.purpose, b.count) for b in distribution.by_purpose] == [("Zakat", 2), ("Relief", 1)]
        assert {b.method for b in distribution.by_payment_method} == {
            PaymentMethod.UPI,
            PaymentMethod.CASH,
        }
        assert [(b.hour, b.donation_count) for b in distribution.by_hour] == [(9, 2), (14, 1)]

    async def test_empty_window_is_zero(self, analytics):
        insights = await analytics.insights(Timeframe.TODAY, now=datetime(2026, 4, 10, 18, 0))

        assert insights.overview.donation_count == 0
        assert insights.overview.total_amount == Decimal("0.00")
        assert insights.overview.avg_donation == Decimal("0.00")


@pytest.mark.asyncio
class TestDashboard:
    async def test_new_donation_moves_today_by_its_amount(
        self, database, coordinator, access, analytics, operator_actor
    ):
        service = DonationService(database, coordinator, access)
        before = await analytics.dashboard_metrics()

        created = await service.create(
            operator_actor,
            DonationCreate(
                donor_name="Yusuf Ali",
                donor_phone="5551112222",
                amount=Decimal("500"),
                purpose="Relief",
                payment_method=PaymentMethod.CASH,
                send_notification=False,
            ),
        )
        after = await analytics.dashboard_metrics()

        assert after.today.donations - before.today.donations == 1
        assert after.today.amount - before.today.amount == Decimal("500.00")
        assert after.recent_donations[0].id == created.id

        page = await coordinator.audit_store.query(
            AuditFilters(action=AuditAction.DONATION_CREATED)
        )
        assert page.entries[0].entity_id == created.id

    async def test_deleted_donations_are_excluded(
        self, database, coordinator, access, analytics, admin_actor, operator_user
    ):
        kept = await create_donation(database, operator_user.id, amount=Decimal("30.00"))
        dropped = await create_donation(database, operator_user.id, amount=Decimal("70.00"))
        await SoftDeleteLifecycle(coordinator, access).delete(admin_actor, dropped.id)

        metrics = await analytics.dashboard_metrics()

        assert metrics.totals.donations == 1
        assert metrics.totals.amount == Decimal("30.00")
        assert [d.id for d in metrics.recent_donations] == [kept.id]

    async def test_fixed_week_and_month_spans(self, database, analytics, operator_user):
        now = datetime(2026, 4, 30, 12, 0)
        await create_donation(database, operator_user.id, date=now - timedelta(days=3))
        await create_donation(database, operator_user.id, date=now - timedelta(days=20))
        await create_donation(database, operator_user.id, date=now - timedelta(days=45))

        metrics = await analytics.dashboard_metrics(now=now)

        assert metrics.week.donations == 1
        assert metrics.month.donations == 2
        assert metrics.totals.donations == 3
        assert metrics.today.donations == 0

    async def test_active_operators_logged_in_recently(self, database, analytics, operator_user):
        metrics = await analytics.dashboard_metrics()

        assert metrics.active_operators == 0


@pytest.mark.asyncio
class TestRollups:
    async def test_time_series_buckets_by_day(self, database, analytics, operator_user):
        await create_donation(database, operator_user.id, date=datetime(2026, 4, 1, 8, 0))
        await create_donation(database, operator_user.id, date=datetime(2026, 4, 1, 20, 0))
        await create_donation(database, operator_user.id, date=datetime(2026, 4, 3, 8, 0))

        series = await analytics.time_series(datetime(2026, 4, 1), datetime(2026, 4, 5))

        assert [(b.day, b.donations_count) for b in series] == [
            (date(2026, 4, 1), 2),
            (date(2026, 4, 3), 1),
        ]
        assert series[0].total_amount == Decimal("200.00")

    async def test_operator_performance_includes_idle_operators(
        self, database, analytics, operator_user, other_operator
    ):
        await create_donation(database, operator_user.id, amount=Decimal("80.00"), date=utcnow())

        performance = await analytics.operator_performance()

        assert [(p.id, p.donation_count) for p in performance] == [
            (operator_user.id, 1),
            (other_operator.id, 0),
        ]
        assert performance[1].total_amount == Decimal("0.00")

    async def test_top_donors_and_by_operator(self, database, analytics, operator_user, other_operator):
        await create_donation(database, operator_user.id, donor_name="Big", donor_phone="5550000009",
                              amount=Decimal("900.00"))
        await create_donation(database, other_operator.id, donor_name="Small", donor_phone="5550000008",
                              amount=Decimal("9.00"))

        donors = await analytics.top_donors(limit=1)
        by_operator = await analytics.donations_by_operator()
        breakdown = await analytics.category_breakdown()

        assert [d.name for d in donors] == ["Big"]
        assert [b.operator_name for b in by_operator] == ["Operator One", "Operator Two"]
        assert breakdown[0].purpose == "General"
        assert breakdown[0].amount == Decimal("909.00")
