"""Analytics result schemas. Monetary values are Decimal."""

from datetime import date as date_type, datetime
from decimal import Decimal
from enum import Enum

from sqlmodel import SQLModel

from donation_ledger.models.donation import DonationRead, PaymentMethod


class Timeframe(str, Enum):
    """Reporting windows for insights."""

    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class PeriodTotals(SQLModel):
    donations: int
    amount: Decimal


class DashboardMetrics(SQLModel):
    """Headline numbers for the admin dashboard.

    ``week`` and ``month`` are fixed 7-day and 30-day spans ending now.
    """

    totals: PeriodTotals
    today: PeriodTotals
    week: PeriodTotals
    month: PeriodTotals
    active_operators: int
    recent_donations: list[DonationRead]


class InsightsOverview(SQLModel):
    total_amount: Decimal
    donation_count: int
    avg_donation: Decimal
    max_donation: Decimal
    min_donation: Decimal


class PurposeBucket(SQLModel):
    purpose: str
    count: int
    amount: Decimal


class PaymentMethodBucket(SQLModel):
    method: PaymentMethod
    count: int
    amount: Decimal


class HourBucket(SQLModel):
    hour: int
    donation_count: int
    total_amount: Decimal


class InsightsDistribution(SQLModel):
    by_purpose: list[PurposeBucket]
    by_payment_method: list[PaymentMethodBucket]
    by_hour: list[HourBucket]


class Insights(SQLModel):
    timeframe: Timeframe
    since: datetime
    overview: InsightsOverview
    distribution: InsightsDistribution


class DayBucket(SQLModel):
    day: date_type
    donations_count: int
    total_amount: Decimal


class OperatorBucket(SQLModel):
    operator_id: int
    operator_name: str | None
    count: int
    amount: Decimal


class OperatorPerformance(SQLModel):
    id: int
    name: str
    email: str
    last_login: datetime | None
    donation_count: int
    total_amount: Decimal


class TopDonor(SQLModel):
    name: str
    phone: str
    donation_count: int
    total_amount: Decimal
