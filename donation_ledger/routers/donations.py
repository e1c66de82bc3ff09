"""Donation endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from donation_ledger.core.deps import DonationServiceDep, LifecycleDep, RequestActor
from donation_ledger.core.errors import NotFoundError
from donation_ledger.models import (
    AuditLogRead,
    DonationCreate,
    DonationDelete,
    DonationPage,
    DonationRead,
    DonationUpdate,
    DonorProfile,
    DonorSummary,
    PaymentMethod,
    ReceiptResend,
)
from donation_ledger.services.access import DonationFilters

router = APIRouter(prefix="/donations")


def donation_filters(
    operator_id: int | None = None,
    category_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    min_amount: Decimal | None = Query(None, ge=0),
    max_amount: Decimal | None = Query(None, ge=0),
    purpose: str | None = None,
    payment_method: PaymentMethod | None = None,
    search: str | None = Query(None, max_length=100),
) -> DonationFilters:
    """Listing filters from query parameters."""
    return DonationFilters(
        operator_id=operator_id,
        category_id=category_id,
        start_date=start_date,
        end_date=end_date,
        min_amount=min_amount,
        max_amount=max_amount,
        purpose=purpose,
        payment_method=payment_method,
        search=search,
    )


Filters = Annotated[DonationFilters, Depends(donation_filters)]


@router.post("", response_model=DonationRead, status_code=status.HTTP_201_CREATED)
async def create_donation(
    data: DonationCreate,
    actor: RequestActor,
    donations: DonationServiceDep,
) -> DonationRead:
    """Record a donation for the calling operator."""
    return await donations.create(actor, data)


@router.get("", response_model=DonationPage)
async def list_donations(
    actor: RequestActor,
    donations: DonationServiceDep,
    filters: Filters,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> DonationPage:
    """List active donations. Operators only ever see their own."""
    return await donations.list_donations(actor, filters, page, limit)


@router.get("/mine", response_model=DonationPage)
async def list_my_donations(
    actor: RequestActor,
    donations: DonationServiceDep,
    filters: Filters,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> DonationPage:
    """List donations recorded by the caller."""
    return await donations.list_own(actor, filters, page, limit)


@router.get("/deleted", response_model=DonationPage)
async def list_deleted_donations(
    actor: RequestActor,
    donations: DonationServiceDep,
    filters: Filters,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> DonationPage:
    """List soft-deleted donations (Admin only)."""
    return await donations.list_deleted(actor, filters, page, limit)


@router.get("/donors/search", response_model=list[DonorSummary])
async def search_donors(
    actor: RequestActor,
    donations: DonationServiceDep,
    q: str = Query(..., max_length=100),
    limit: int = Query(10, ge=1, le=50),
) -> list[DonorSummary]:
    """Search donors by name or phone fragment."""
    return await donations.search_donors(actor, q, limit)


@router.get("/donors/{phone}", response_model=DonorProfile)
async def get_donor_by_phone(
    phone: str,
    actor: RequestActor,
    donations: DonationServiceDep,
) -> DonorProfile:
    """Latest details and totals for a donor phone number."""
    profile = await donations.donor_by_phone(actor, phone)
    if profile is None:
        raise NotFoundError(f"No donations found for phone {phone}")
    return profile


@router.get("/{donation_id}", response_model=DonationRead)
async def get_donation(
    donation_id: int,
    actor: RequestActor,
    donations: DonationServiceDep,
) -> DonationRead:
    """Get a donation. Another operator's donation is forbidden, not missing."""
    return await donations.get(actor, donation_id)


@router.put("/{donation_id}", response_model=DonationRead)
async def update_donation(
    donation_id: int,
    data: DonationUpdate,
    actor: RequestActor,
    donations: DonationServiceDep,
) -> DonationRead:
    """Update an active donation."""
    return await donations.update(actor, donation_id, data)


@router.delete("/{donation_id}", response_model=DonationRead)
async def delete_donation(
    donation_id: int,
    actor: RequestActor,
    lifecycle: LifecycleDep,
    donations: DonationServiceDep,
    data: DonationDelete | None = None,
) -> DonationRead:
    """Soft-delete a donation (Admin only)."""
    await lifecycle.delete(actor, donation_id, data.reason if data else None)
    return await donations.get(actor, donation_id)


@router.post("/{donation_id}/restore", response_model=DonationRead)
async def restore_donation(
    donation_id: int,
    actor: RequestActor,
    lifecycle: LifecycleDep,
    donations: DonationServiceDep,
) -> DonationRead:
    """Restore a soft-deleted donation (Admin only)."""
    await lifecycle.restore(actor, donation_id)
    return await donations.get(actor, donation_id)


@router.get("/{donation_id}/history", response_model=list[AuditLogRead])
async def get_donation_history(
    donation_id: int,
    actor: RequestActor,
    donations: DonationServiceDep,
) -> list[AuditLogRead]:
    """Audit entries about a donation, newest first."""
    return await donations.history(actor, donation_id)


@router.post("/{donation_id}/resend-receipt", response_model=DonationRead)
async def resend_receipt(
    donation_id: int,
    actor: RequestActor,
    donations: DonationServiceDep,
    data: ReceiptResend | None = None,
) -> DonationRead:
    """Send the donor's receipt email again (Admin only)."""
    return await donations.resend_receipt(
        actor, donation_id, data.custom_message if data else None
    )
