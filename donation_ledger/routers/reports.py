"""Report export endpoints."""

from fastapi import APIRouter
from fastapi.responses import Response

from donation_ledger.core.deps import ReportServiceDep, RequestActor
from donation_ledger.routers.donations import Filters

router = APIRouter(prefix="/reports")


def _attachment(filename: str, document: bytes) -> Response:
    return Response(
        content=document,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/donations.csv")
async def export_donations(
    actor: RequestActor,
    reports: ReportServiceDep,
    filters: Filters,
) -> Response:
    """Donations visible to the caller as a CSV download."""
    filename, document = await reports.export_donations(actor, filters)
    return _attachment(filename, document)


@router.get("/operators.csv")
async def export_operators(actor: RequestActor, reports: ReportServiceDep) -> Response:
    """Operator accounts as a CSV download (Admin only)."""
    filename, document = await reports.export_operators(actor)
    return _attachment(filename, document)
