"""Analytics endpoints (Admin only)."""

from datetime import datetime, timedelta

from fastapi import APIRouter, Query

from donation_ledger.core.clock import utcnow
from donation_ledger.core.deps import AdminIdentity, AnalyticsDep
from donation_ledger.core.errors import FieldViolation, ValidationError
from donation_ledger.models import (
    DashboardMetrics,
    DayBucket,
    Insights,
    OperatorBucket,
    OperatorPerformance,
    PurposeBucket,
    Timeframe,
    TopDonor,
)

router = APIRouter(prefix="/analytics")


@router.get("/dashboard", response_model=DashboardMetrics)
async def get_dashboard(identity: AdminIdentity, analytics: AnalyticsDep) -> DashboardMetrics:
    """Headline totals, active operators and the latest donations."""
    return await analytics.dashboard_metrics()


@router.get("/insights", response_model=Insights)
async def get_insights(
    identity: AdminIdentity,
    analytics: AnalyticsDep,
    timeframe: Timeframe = Timeframe.MONTH,
) -> Insights:
    return await analytics.insights(timeframe)


@router.get("/time-series", response_model=list[DayBucket])
async def get_time_series(
    identity: AdminIdentity,
    analytics: AnalyticsDep,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[DayBucket]:
    """Daily totals between two instants; defaults to the last 30 days."""
    end = end_date or utcnow()
    start = start_date or end - timedelta(days=30)
    if start > end:
        raise ValidationError(
            "Invalid date range",
            [FieldViolation(field="start_date", message="must not be after end_date")],
        )
    return await analytics.time_series(start, end)


@router.get("/categories", response_model=list[PurposeBucket])
async def get_category_breakdown(
    identity: AdminIdentity,
    analytics: AnalyticsDep,
    timeframe: Timeframe | None = None,
) -> list[PurposeBucket]:
    return await analytics.category_breakdown(timeframe)


@router.get("/operators", response_model=list[OperatorPerformance])
async def get_operator_performance(
    identity: AdminIdentity,
    analytics: AnalyticsDep,
) -> list[OperatorPerformance]:
    """Active operators ranked by amount over the last 30 days."""
    return await analytics.operator_performance()


@router.get("/by-operator", response_model=list[OperatorBucket])
async def get_donations_by_operator(
    identity: AdminIdentity,
    analytics: AnalyticsDep,
    timeframe: Timeframe | None = None,
) -> list[OperatorBucket]:
    return await analytics.donations_by_operator(timeframe)


@router.get("/top-donors", response_model=list[TopDonor])
async def get_top_donors(
    identity: AdminIdentity,
    analytics: AnalyticsDep,
    limit: int = Query(10, ge=1, le=100),
    timeframe: Timeframe | None = None,
) -> list[TopDonor]:
    return await analytics.top_donors(limit, timeframe)
