"""Operator account endpoints (Admin only)."""

from fastapi import APIRouter, Query, status

from donation_ledger.core.deps import AdminIdentity, RequestActor, UserServiceDep
from donation_ledger.models import OperatorPage, OperatorStats, UserCreate, UserRead, UserUpdate

router = APIRouter(prefix="/users")


@router.post("/operators", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_operator(
    data: UserCreate,
    actor: RequestActor,
    users: UserServiceDep,
) -> UserRead:
    """Create an operator account."""
    return await users.create_operator(actor, data)


@router.get("/operators", response_model=OperatorPage)
async def list_operators(
    actor: RequestActor,
    users: UserServiceDep,
    search: str | None = Query(None, max_length=100),
    is_active: bool | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> OperatorPage:
    """Operator accounts with their donation counts."""
    return await users.list_operators(actor, search=search, is_active=is_active, page=page, limit=limit)


@router.get("/operators/stats", response_model=OperatorStats)
async def operator_stats(actor: RequestActor, users: UserServiceDep) -> OperatorStats:
    return await users.operator_stats(actor)


@router.get("/{user_id}", response_model=UserRead)
async def get_user(user_id: int, identity: AdminIdentity, users: UserServiceDep) -> UserRead:
    return await users.get_user(user_id)


@router.put("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: int,
    data: UserUpdate,
    actor: RequestActor,
    users: UserServiceDep,
) -> UserRead:
    """Update an account's name, phone or active flag."""
    return await users.update_user(actor, user_id, data)
