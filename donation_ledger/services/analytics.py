"""Read-only rollups over active donations.

Every aggregate excludes soft-deleted donations. A window includes both of
its ends: ``start <= date <= now``. Independent queries run concurrently,
each on its own session.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Any

from dateutil.relativedelta import relativedelta
from sqlalchemy import ColumnElement, Select, and_, extract
from sqlmodel import func, select

from donation_ledger.core.clock import local_midnight, utcnow
from donation_ledger.core.database import Database
from donation_ledger.core.money import CENTS, to_money
from donation_ledger.models import (
    DashboardMetrics,
    DayBucket,
    Donation,
    HourBucket,
    Insights,
    InsightsDistribution,
    InsightsOverview,
    OperatorBucket,
    OperatorPerformance,
    PaymentMethodBucket,
    PeriodTotals,
    PurposeBucket,
    Timeframe,
    TopDonor,
    User,
    UserRole,
)
from donation_ledger.services.donations import joined_donations, to_read
from donation_ledger.services.soft_delete import visibility

logger = logging.getLogger(__name__)

# Fixed spans used by the dashboard, distinct from the calendar-based
# insight windows
DASHBOARD_WEEK = timedelta(days=7)
DASHBOARD_MONTH = timedelta(days=30)
ACTIVE_OPERATOR_WINDOW = timedelta(days=7)
OPERATOR_PERFORMANCE_WINDOW = timedelta(days=30)
HOURLY_WINDOW = timedelta(days=7)

RECENT_DONATIONS = 10
TOP_PURPOSES = 5
TOP_BREAKDOWN = 8
TOP_OPERATORS = 10


def resolve_window(timeframe: Timeframe, now: datetime, tz_name: str = "UTC") -> datetime:
    """Start of a timeframe ending at ``now``.

    ``today`` starts at local midnight, ``week`` is seven days back, and
    ``month`` and ``year`` subtract one calendar month or year.
    """
    match timeframe:
        case Timeframe.TODAY:
            return local_midnight(now, tz_name)
        case Timeframe.WEEK:
            return now - timedelta(days=7)
        case Timeframe.MONTH:
            return now - relativedelta(months=1)
        case Timeframe.YEAR:
            return now - relativedelta(years=1)


def _between(start: datetime | None, end: datetime) -> list[ColumnElement[bool]]:
    clauses = [visibility(), Donation.date <= end]
    if start is not None:
        clauses.append(Donation.date >= start)
    return clauses


def _as_date(value: Any) -> date:
    # SQLite returns DATE() as text
    if isinstance(value, str):
        return date.fromisoformat(value)
    if isinstance(value, datetime):
        return value.date()
    return value


class AnalyticsAggregator:
    """Dashboard metrics, insights and grouped rollups."""

    def __init__(self, database: Database, timezone: str = "UTC"):
        self.database = database
        self.timezone = timezone

    async def _one(self, statement: Select) -> Any:
        async with self.database.session() as session:
            result = await session.execute(statement)
            return result.one()

    async def _all(self, statement: Select) -> list[Any]:
        async with self.database.session() as session:
            result = await session.execute(statement)
            return list(result.all())

    async def _totals(self, start: datetime | None, end: datetime) -> PeriodTotals:
        count, amount = await self._one(
            select(func.count(Donation.id), func.sum(Donation.amount)).where(*_between(start, end))
        )
        return PeriodTotals(donations=count, amount=to_money(amount))

    async def dashboard_metrics(self, now: datetime | None = None) -> DashboardMetrics:
        """Headline totals for all time, today, the last 7 days and the last 30 days."""
        now = now or utcnow()

        async def active_operators() -> int:
            (count,) = await self._one(
                select(func.count(User.id)).where(
                    User.role == UserRole.OPERATOR,
                    User.is_active == True,  # noqa: E712
                    User.last_login >= now - ACTIVE_OPERATOR_WINDOW,
                )
            )
            return count

        async def recent():
            rows = await self._all(
                joined_donations()
                .where(visibility())
                .order_by(Donation.date.desc(), Donation.id.desc())
                .limit(RECENT_DONATIONS)
            )
            return [to_read(*row) for row in rows]

        totals, today, week, month, operators, recent_donations = await asyncio.gather(
            self._totals(None, now),
            self._totals(local_midnight(now, self.timezone), now),
            self._totals(now - DASHBOARD_WEEK, now),
            self._totals(now - DASHBOARD_MONTH, now),
            active_operators(),
            recent(),
        )
        return DashboardMetrics(
            totals=totals,
            today=today,
            week=week,
            month=month,
            active_operators=operators,
            recent_donations=recent_donations,
        )

    async def insights(self, timeframe: Timeframe, now: datetime | None = None) -> Insights:
        """Overview and distributions for one timeframe.

        The hourly distribution always covers the last seven days.
        """
        now = now or utcnow()
        since = resolve_window(timeframe, now, self.timezone)
        window = _between(since, now)

        amount = func.sum(Donation.amount)
        overview_q = select(
            func.count(Donation.id),
            amount,
            func.max(Donation.amount),
            func.min(Donation.amount),
        ).where(*window)
        purposes_q = (
            select(Donation.purpose, func.count(Donation.id), amount)
            .where(*window)
            .group_by(Donation.purpose)
            .order_by(amount.desc())
            .limit(TOP_PURPOSES)
        )
        methods_q = (
            select(Donation.payment_method, func.count(Donation.id), amount)
            .where(*window)
            .group_by(Donation.payment_method)
            .order_by(amount.desc())
        )
        hour = extract("hour", Donation.date)
        hours_q = (
            select(hour, func.count(Donation.id), amount)
            .where(*_between(now - HOURLY_WINDOW, now))
            .group_by(hour)
            .order_by(hour)
        )

        overview_row, purposes, methods, hours = await asyncio.gather(
            self._one(overview_q),
            self._all(purposes_q),
            self._all(methods_q),
            self._all(hours_q),
        )

        count, total, highest, lowest = overview_row
        total = to_money(total)
        overview = InsightsOverview(
            total_amount=total,
            donation_count=count,
            avg_donation=(total / count).quantize(CENTS) if count else to_money(None),
            max_donation=to_money(highest),
            min_donation=to_money(lowest),
        )
        distribution = InsightsDistribution(
            by_purpose=[
                PurposeBucket(purpose=p, count=c, amount=to_money(a)) for p, c, a in purposes
            ],
            by_payment_method=[
                PaymentMethodBucket(method=m, count=c, amount=to_money(a)) for m, c, a in methods
            ],
            by_hour=[
                HourBucket(hour=int(h), donation_count=c, total_amount=to_money(a))
                for h, c, a in hours
            ],
        )
        return Insights(timeframe=timeframe, since=since, overview=overview, distribution=distribution)

    async def time_series(self, start: datetime, end: datetime) -> list[DayBucket]:
        """One bucket per UTC day with activity, oldest first. Empty days are absent."""
        day = func.date(Donation.date)
        rows = await self._all(
            select(day, func.count(Donation.id), func.sum(Donation.amount))
            .where(*_between(start, end))
            .group_by(day)
            .order_by(day)
        )
        return [
            DayBucket(day=_as_date(d), donations_count=c, total_amount=to_money(a))
            for d, c, a in rows
        ]

    async def category_breakdown(
        self,
        timeframe: Timeframe | None = None,
        now: datetime | None = None,
    ) -> list[PurposeBucket]:
        """Top purposes by amount, over all time or one timeframe."""
        now = now or utcnow()
        since = resolve_window(timeframe, now, self.timezone) if timeframe else None
        amount = func.sum(Donation.amount)
        rows = await self._all(
            select(Donation.purpose, func.count(Donation.id), amount)
            .where(*_between(since, now))
            .group_by(Donation.purpose)
            .order_by(amount.desc())
            .limit(TOP_BREAKDOWN)
        )
        return [PurposeBucket(purpose=p, count=c, amount=to_money(a)) for p, c, a in rows]

    async def operator_performance(self, now: datetime | None = None) -> list[OperatorPerformance]:
        """Active operators with their donations over the last 30 days, best first."""
        now = now or utcnow()
        amount = func.coalesce(func.sum(Donation.amount), 0)
        rows = await self._all(
            select(User.id, User.name, User.email, User.last_login, func.count(Donation.id), amount)
            .outerjoin(
                Donation,
                and_(
                    Donation.operator_id == User.id,
                    *_between(now - OPERATOR_PERFORMANCE_WINDOW, now),
                ),
            )
            .where(User.role == UserRole.OPERATOR, User.is_active == True)  # noqa: E712
            .group_by(User.id, User.name, User.email, User.last_login)
            .order_by(amount.desc(), User.name)
        )
        return [
            OperatorPerformance(
                id=uid,
                name=name,
                email=email,
                last_login=last_login,
                donation_count=c,
                total_amount=to_money(a),
            )
            for uid, name, email, last_login, c, a in rows
        ]

    async def top_donors(
        self,
        limit: int = 10,
        timeframe: Timeframe | None = None,
        now: datetime | None = None,
    ) -> list[TopDonor]:
        """Donors grouped by phone and name, by total amount."""
        now = now or utcnow()
        since = resolve_window(timeframe, now, self.timezone) if timeframe else None
        amount = func.sum(Donation.amount)
        rows = await self._all(
            select(Donation.donor_name, Donation.donor_phone, func.count(Donation.id), amount)
            .where(*_between(since, now))
            .group_by(Donation.donor_phone, Donation.donor_name)
            .order_by(amount.desc())
            .limit(limit)
        )
        return [
            TopDonor(name=n, phone=p, donation_count=c, total_amount=to_money(a))
            for n, p, c, a in rows
        ]

    async def donations_by_operator(
        self,
        timeframe: Timeframe | None = None,
        now: datetime | None = None,
    ) -> list[OperatorBucket]:
        """Operators by amount recorded, top ten."""
        now = now or utcnow()
        since = resolve_window(timeframe, now, self.timezone) if timeframe else None
        amount = func.sum(Donation.amount)
        rows = await self._all(
            select(Donation.operator_id, User.name, func.count(Donation.id), amount)
            .outerjoin(User, User.id == Donation.operator_id)
            .where(*_between(since, now))
            .group_by(Donation.operator_id, User.name)
            .order_by(amount.desc())
            .limit(TOP_OPERATORS)
        )
        return [
            OperatorBucket(operator_id=oid, operator_name=name, count=c, amount=to_money(a))
            for oid, name, c, a in rows
        ]
