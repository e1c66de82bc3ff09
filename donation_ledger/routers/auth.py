"""Authentication endpoints."""

from fastapi import APIRouter, Request

from donation_ledger.core.deps import AnonymousActor, CurrentIdentity, RequestActor, UserServiceDep
from donation_ledger.core.limiter import limiter
from donation_ledger.models import EmailChange, PasswordChange, ProfileUpdate, UserRead
from donation_ledger.schemas.auth import (
    IdentityResponse,
    LoginRequest,
    MessageResponse,
    TokenResponse,
)

router = APIRouter(prefix="/auth")


@router.post("/login", response_model=TokenResponse)
@limiter.limit("10/minute")
async def login(
    request: Request,
    credentials: LoginRequest,
    actor: AnonymousActor,
    users: UserServiceDep,
) -> TokenResponse:
    """Authenticate and return an access token."""
    result = await users.login(credentials.email, credentials.password, actor)
    return TokenResponse(access_token=result.access_token, user=result.user)


@router.get("/me", response_model=IdentityResponse)
async def get_current_user_info(identity: CurrentIdentity) -> IdentityResponse:
    """Get current user information."""
    return IdentityResponse(
        id=identity.id,
        email=identity.email,
        name=identity.name,
        role=identity.role,
    )


@router.patch("/profile", response_model=UserRead)
async def update_profile(
    data: ProfileUpdate,
    actor: RequestActor,
    users: UserServiceDep,
) -> UserRead:
    """Update the caller's own name or phone."""
    return await users.update_profile(actor, data)


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    data: PasswordChange,
    actor: RequestActor,
    users: UserServiceDep,
) -> MessageResponse:
    await users.change_password(actor, data)
    return MessageResponse(message="Password changed successfully")


@router.post("/change-email", response_model=UserRead)
async def change_email(
    data: EmailChange,
    actor: RequestActor,
    users: UserServiceDep,
) -> UserRead:
    """Change the calling admin's email. The existing token stays valid."""
    return await users.change_email(actor, data)
