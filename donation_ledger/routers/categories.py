"""Donation category endpoints."""

from fastapi import APIRouter, Query, status

from donation_ledger.core.deps import CategoryServiceDep, CurrentIdentity, RequestActor
from donation_ledger.models import (
    CategoryCreate,
    CategoryPage,
    CategoryRead,
    CategoryStats,
    CategoryUpdate,
    CategoryWithStats,
)

router = APIRouter(prefix="/categories")


@router.post("", response_model=CategoryRead, status_code=status.HTTP_201_CREATED)
async def create_category(
    data: CategoryCreate,
    actor: RequestActor,
    categories: CategoryServiceDep,
) -> CategoryRead:
    """Create a category (Admin only)."""
    return await categories.create(actor, data)


@router.get("", response_model=CategoryPage)
async def list_categories(
    identity: CurrentIdentity,
    categories: CategoryServiceDep,
    search: str | None = Query(None, max_length=100),
    is_active: bool | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
) -> CategoryPage:
    """List categories with donation statistics."""
    return await categories.list_with_stats(search, is_active, page, limit)


@router.get("/active", response_model=list[CategoryWithStats])
async def list_active_categories(
    identity: CurrentIdentity,
    categories: CategoryServiceDep,
) -> list[CategoryWithStats]:
    """Active categories for donation entry."""
    return await categories.active()


@router.get("/{category_id}", response_model=CategoryWithStats)
async def get_category(
    category_id: int,
    identity: CurrentIdentity,
    categories: CategoryServiceDep,
) -> CategoryWithStats:
    return await categories.get(category_id)


@router.get("/{category_id}/stats", response_model=CategoryStats)
async def get_category_stats(
    category_id: int,
    identity: CurrentIdentity,
    categories: CategoryServiceDep,
) -> CategoryStats:
    """Aggregates over a category's active donations."""
    return await categories.stats(category_id)


@router.put("/{category_id}", response_model=CategoryRead)
async def update_category(
    category_id: int,
    data: CategoryUpdate,
    actor: RequestActor,
    categories: CategoryServiceDep,
) -> CategoryRead:
    """Update a category (Admin only)."""
    return await categories.update(actor, category_id, data)


@router.patch("/{category_id}/toggle", response_model=CategoryRead)
async def toggle_category(
    category_id: int,
    actor: RequestActor,
    categories: CategoryServiceDep,
) -> CategoryRead:
    """Activate or deactivate a category (Admin only)."""
    return await categories.toggle(actor, category_id)


@router.delete("/{category_id}", response_model=CategoryRead)
async def delete_category(
    category_id: int,
    actor: RequestActor,
    categories: CategoryServiceDep,
) -> CategoryRead:
    """Delete a category without donations (Admin only)."""
    return await categories.delete(actor, category_id)
