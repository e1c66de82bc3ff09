"""FastAPI dependencies: store handle, caller identity and services."""

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from donation_ledger.core.config import Settings, get_settings
from donation_ledger.core.database import Database
from donation_ledger.core.errors import AuthenticationError
from donation_ledger.core.security import decode_token
from donation_ledger.models import User, UserRole
from donation_ledger.services.access import AccessScopeFilter, Actor, Identity
from donation_ledger.services.analytics import AnalyticsAggregator
from donation_ledger.services.audit import AuditTrailStore
from donation_ledger.services.categories import CategoryService
from donation_ledger.services.donations import DonationService
from donation_ledger.services.notifications import NotificationDispatcher
from donation_ledger.services.reports import ReportService
from donation_ledger.services.soft_delete import SoftDeleteLifecycle
from donation_ledger.services.transactions import TransactionCoordinator
from donation_ledger.services.users import UserService

bearer_scheme = HTTPBearer(auto_error=False)

SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_database(request: Request) -> Database:
    """The process-wide store client created in the application lifespan."""
    return request.app.state.database


def get_notifier(request: Request) -> NotificationDispatcher:
    return request.app.state.notifier


DatabaseDep = Annotated[Database, Depends(get_database)]
NotifierDep = Annotated[NotificationDispatcher, Depends(get_notifier)]


async def get_current_identity(
    database: DatabaseDep,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> Identity:
    """Validate the bearer token and re-read the user it names.

    The role claim is taken from the token; the account's active flag is
    checked against the store on every request.
    """
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    payload = decode_token(credentials.credentials)
    if payload is None or payload.get("type") != "access":
        raise AuthenticationError("Could not validate credentials")

    try:
        user_id = int(payload.get("sub"))
        role = UserRole(payload.get("role"))
    except (TypeError, ValueError):
        raise AuthenticationError("Could not validate credentials")

    async with database.session() as session:
        user = await session.get(User, user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("User not found or inactive")

    return Identity(id=user.id, role=role, email=user.email, name=user.name)


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]


def get_access() -> AccessScopeFilter:
    return AccessScopeFilter()


AccessDep = Annotated[AccessScopeFilter, Depends(get_access)]


async def get_admin_identity(identity: CurrentIdentity, access: AccessDep) -> Identity:
    """Require the caller to be an admin."""
    access.require_admin(identity)
    return identity


AdminIdentity = Annotated[Identity, Depends(get_admin_identity)]


def _origin(request: Request) -> tuple[str | None, str | None]:
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


async def get_actor(request: Request, identity: CurrentIdentity) -> Actor:
    ip_address, user_agent = _origin(request)
    return Actor(identity=identity, ip_address=ip_address, user_agent=user_agent)


async def get_anonymous_actor(request: Request) -> Actor:
    ip_address, user_agent = _origin(request)
    return Actor(identity=None, ip_address=ip_address, user_agent=user_agent)


RequestActor = Annotated[Actor, Depends(get_actor)]
AnonymousActor = Annotated[Actor, Depends(get_anonymous_actor)]


def get_audit_store(database: DatabaseDep) -> AuditTrailStore:
    return AuditTrailStore(database)


AuditStoreDep = Annotated[AuditTrailStore, Depends(get_audit_store)]


def get_coordinator(
    database: DatabaseDep,
    audit_store: AuditStoreDep,
    notifier: NotifierDep,
    settings: SettingsDep,
) -> TransactionCoordinator:
    return TransactionCoordinator(
        database,
        audit_store,
        notifier=notifier,
        timeout=settings.transaction_timeout,
    )


CoordinatorDep = Annotated[TransactionCoordinator, Depends(get_coordinator)]


def get_donation_service(
    database: DatabaseDep, coordinator: CoordinatorDep, access: AccessDep
) -> DonationService:
    return DonationService(database, coordinator, access)


def get_lifecycle(coordinator: CoordinatorDep, access: AccessDep) -> SoftDeleteLifecycle:
    return SoftDeleteLifecycle(coordinator, access)


def get_category_service(
    database: DatabaseDep, coordinator: CoordinatorDep, access: AccessDep
) -> CategoryService:
    return CategoryService(database, coordinator, access)


def get_user_service(
    database: DatabaseDep, coordinator: CoordinatorDep, access: AccessDep
) -> UserService:
    return UserService(database, coordinator, access)


def get_analytics(database: DatabaseDep, settings: SettingsDep) -> AnalyticsAggregator:
    return AnalyticsAggregator(database, timezone=settings.timezone)


def get_report_service(
    database: DatabaseDep, audit_store: AuditStoreDep, access: AccessDep
) -> ReportService:
    return ReportService(database, audit_store, access)


DonationServiceDep = Annotated[DonationService, Depends(get_donation_service)]
LifecycleDep = Annotated[SoftDeleteLifecycle, Depends(get_lifecycle)]
CategoryServiceDep = Annotated[CategoryService, Depends(get_category_service)]
UserServiceDep = Annotated[UserService, Depends(get_user_service)]
AnalyticsDep = Annotated[AnalyticsAggregator, Depends(get_analytics)]
ReportServiceDep = Annotated[ReportService, Depends(get_report_service)]
