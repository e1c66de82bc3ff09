"""Health check endpoint."""

from fastapi import APIRouter
from sqlalchemy import text

from donation_ledger.core.deps import DatabaseDep

router = APIRouter()


@router.get("/health")
async def health_check(database: DatabaseDep) -> dict:
    """Return service health status, including store reachability."""
    async with database.session() as session:
        await session.execute(text("SELECT 1"))
    return {
        "status": "healthy",
        "service": "donation-ledger",
        "version": "0.1.0",
    }
