"""Operator accounts and login."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import ColumnElement, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import func, select

from donation_ledger.core.clock import utcnow
from donation_ledger.core.database import Database
from donation_ledger.core.errors import (
    AuthenticationError,
    ConflictError,
    FieldViolation,
    NotFoundError,
    ValidationError,
    duplicate_email,
    user_not_found,
)
from donation_ledger.core.security import create_access_token, get_password_hash, verify_password
from donation_ledger.models import (
    AuditAction,
    Donation,
    EmailChange,
    EntityType,
    OperatorActivity,
    OperatorPage,
    OperatorRead,
    OperatorStats,
    Pagination,
    PasswordChange,
    ProfileUpdate,
    User,
    UserCreate,
    UserRead,
    UserRole,
    UserUpdate,
)
from donation_ledger.services.access import AccessScopeFilter, Actor, Identity
from donation_ledger.services.audit import AuditSpec
from donation_ledger.services.notifications import Notification
from donation_ledger.services.soft_delete import visibility
from donation_ledger.services.transactions import TransactionCoordinator

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
ACTIVE_OPERATOR_WINDOW = timedelta(days=7)
TOP_ACTIVE_OPERATORS = 10


@dataclass
class LoginResult:
    access_token: str
    user: UserRead


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class UserService:
    """Account creation, updates and authentication."""

    def __init__(
        self,
        database: Database,
        coordinator: TransactionCoordinator,
        access: AccessScopeFilter,
    ):
        self.database = database
        self.coordinator = coordinator
        self.access = access

    async def create_operator(self, actor: Actor, data: UserCreate) -> UserRead:
        """Create an operator account and send a welcome notification.

        Raises:
            ForbiddenError: Caller is not an admin
            ConflictError: Email already registered
        """
        self.access.require_admin(actor.identity)
        email = _normalize_email(data.email)
        # Hash before the write lock is taken; bcrypt is slow
        hashed_password = get_password_hash(data.password)

        async def operation(session: AsyncSession) -> User:
            result = await session.execute(select(User.id).where(User.email == email))
            if result.first() is not None:
                raise ConflictError(duplicate_email(email))
            user = User(
                email=email,
                name=data.name,
                phone=data.phone,
                role=UserRole.OPERATOR,
                hashed_password=hashed_password,
            )
            session.add(user)
            await session.flush()
            return user

        def audit(user: User) -> AuditSpec:
            return AuditSpec(
                action=AuditAction.USER_CREATED,
                description=f"Operator account created for {user.name}",
                actor=actor,
                entity_type=EntityType.USER,
                entity_id=user.id,
                metadata={"email": user.email, "name": user.name, "role": user.role},
            )

        def welcome(user: User) -> Notification:
            return Notification(
                channel="operator_welcome",
                payload={"user_id": user.id, "name": user.name, "email": user.email},
                entity_type=EntityType.USER,
                entity_id=user.id,
            )

        result = await self.coordinator.execute(operation, audit, [welcome])
        logger.info(f"Operator {result.value.id} created by user {actor.user_id}")
        return UserRead.model_validate(result.value)

    async def update_user(self, actor: Actor, user_id: int, data: UserUpdate) -> UserRead:
        """Change an account's name, phone or active flag."""
        self.access.require_admin(actor.identity)
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}

        async def operation(session: AsyncSession) -> tuple[User, dict]:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError(user_not_found(user_id))
            previous = {"name": user.name, "phone": user.phone, "is_active": user.is_active}
            for field, value in changes.items():
                setattr(user, field, value)
            session.add(user)
            await session.flush()
            return user, previous

        def audit(value: tuple[User, dict]) -> AuditSpec:
            user, previous = value
            return AuditSpec(
                action=AuditAction.USER_UPDATED,
                description=f"User {user.name} updated",
                actor=actor,
                entity_type=EntityType.USER,
                entity_id=user.id,
                metadata={"updates": changes, "previous_values": previous},
            )

        result = await self.coordinator.execute(operation, audit)
        user, _ = result.value
        return UserRead.model_validate(user)

    async def list_operators(
        self,
        actor: Actor,
        search: str | None = None,
        is_active: bool | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> OperatorPage:
        """Operator accounts, newest first, with their active donation counts.

        Args:
            actor: Calling admin
            search: Case-insensitive fragment of the name or email
            is_active: Only active or only deactivated accounts
            page: 1-based page number
            limit: Page size, capped at MAX_PAGE_SIZE
        """
        self.access.require_admin(actor.identity)
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        clauses: list[ColumnElement[bool]] = [User.role == UserRole.OPERATOR]
        if is_active is not None:
            clauses.append(User.is_active == is_active)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            clauses.append(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

        async def count() -> int:
            async with self.database.session() as session:
                result = await session.execute(
                    select(func.count()).select_from(User).where(*clauses)
                )
                return result.scalar_one()

        async def fetch() -> list[OperatorRead]:
            donation_count = func.count(Donation.id)
            async with self.database.session() as session:
                result = await session.execute(
                    select(User, donation_count)
                    .outerjoin(Donation, and_(Donation.operator_id == User.id, visibility()))
                    .where(*clauses)
                    .group_by(User.id)
                    .order_by(User.created_at.desc(), User.id.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
                rows = result.all()
            return [
                OperatorRead(**UserRead.model_validate(user).model_dump(), donation_count=count)
                for user, count in rows
            ]

        total, operators = await asyncio.gather(count(), fetch())
        return OperatorPage(operators=operators, pagination=Pagination.build(page, limit, total))

    async def operator_stats(self, actor: Actor, now: datetime | None = None) -> OperatorStats:
        """Operator headcount, recently active operators and the busiest ten."""
        self.access.require_admin(actor.identity)
        now = now or utcnow()

        async def total() -> int:
            async with self.database.session() as session:
                result = await session.execute(
                    select(func.count(User.id)).where(User.role == UserRole.OPERATOR)
                )
                return result.scalar_one()

        async def active() -> int:
            async with self.database.session() as session:
                result = await session.execute(
                    select(func.count(User.id)).where(
                        User.role == UserRole.OPERATOR,
                        User.is_active == True,  # noqa: E712
                        User.last_login >= now - ACTIVE_OPERATOR_WINDOW,
                    )
                )
                return result.scalar_one()

        async def busiest() -> list[OperatorActivity]:
            donation_count = func.count(Donation.id)
            async with self.database.session() as session:
                result = await session.execute(
                    select(User.id, User.name, User.last_login, donation_count)
                    .outerjoin(Donation, and_(Donation.operator_id == User.id, visibility()))
                    .where(User.role == UserRole.OPERATOR, User.is_active == True)  # noqa: E712
                    .group_by(User.id)
                    .order_by(donation_count.desc(), User.id)
                    .limit(TOP_ACTIVE_OPERATORS)
                )
                rows = result.all()
            return [
                OperatorActivity(id=user_id, name=name, last_login=last_login, donation_count=count)
                for user_id, name, last_login, count in rows
            ]

        total_operators, active_operators, by_activity = await asyncio.gather(
            total(), active(), busiest()
        )
        return OperatorStats(
            total_operators=total_operators,
            active_operators=active_operators,
            operators_by_activity=by_activity,
        )

    async def login(self, email: str, password: str, actor: Actor) -> LoginResult:
        """Verify credentials, stamp last_login and issue an access token.

        A successful login is recorded atomically with the last_login update;
        a failed one is recorded on a best-effort basis.

        Raises:
            AuthenticationError: Unknown email, wrong password or inactive account
        """
        email = _normalize_email(email)
        async with self.database.session() as session:
            result = await session.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()

        if user is None or not verify_password(password, user.hashed_password):
            await self._record_failed_login(email, actor, "invalid_credentials")
            raise AuthenticationError("Invalid credentials")
        if not user.is_active:
            await self._record_failed_login(email, actor, "inactive_account")
            raise AuthenticationError("Account is disabled")

        identity = Identity.from_user(user)
        signed_in = Actor(identity=identity, ip_address=actor.ip_address, user_agent=actor.user_agent)

        async def operation(session: AsyncSession) -> User:
            stored = await session.get(User, user.id)
            stored.last_login = utcnow()
            session.add(stored)
            await session.flush()
            return stored

        def audit(stored: User) -> AuditSpec:
            return AuditSpec(
                action=AuditAction.USER_LOGIN,
                description=f"{stored.name} logged in",
                actor=signed_in,
                entity_type=EntityType.USER,
                entity_id=stored.id,
                metadata={"success": True},
            )

        result = await self.coordinator.execute(operation, audit)
        token = create_access_token(subject=user.id, role=user.role.value)
        return LoginResult(access_token=token, user=UserRead.model_validate(result.value))

    async def _record_failed_login(self, email: str, actor: Actor, reason: str) -> None:
        logger.warning(f"Failed login for {email}: {reason}")
        await self.coordinator.audit_store.record(
            AuditSpec(
                action=AuditAction.USER_LOGIN,
                description=f"Failed login attempt for {email}",
                actor=actor,
                entity_type=EntityType.USER,
                metadata={"success": False, "email": email, "reason": reason},
            )
        )

    async def ensure_admin(self, email: str, password: str, name: str = "Administrator") -> UserRead:
        """Create the bootstrap admin account unless the email is already registered.

        An existing account is left untouched, whatever its role.
        """
        email = _normalize_email(email)
        async with self.database.session() as session:
            result = await session.execute(select(User).where(User.email == email))
            existing = result.scalar_one_or_none()
        if existing is not None:
            return UserRead.model_validate(existing)

        hashed_password = get_password_hash(password)
        system = Actor(identity=None)

        async def operation(session: AsyncSession) -> User:
            user = User(
                email=email,
                name=name,
                role=UserRole.ADMIN,
                hashed_password=hashed_password,
            )
            session.add(user)
            await session.flush()
            return user

        def audit(user: User) -> AuditSpec:
            return AuditSpec(
                action=AuditAction.USER_CREATED,
                description=f"Bootstrap admin account created for {user.email}",
                actor=system,
                entity_type=EntityType.USER,
                entity_id=user.id,
                metadata={"email": user.email, "role": user.role, "created_via": "startup"},
            )

        result = await self.coordinator.execute(operation, audit)
        logger.info(f"Bootstrap admin {email} created")
        return UserRead.model_validate(result.value)

    async def get_user(self, user_id: int) -> UserRead:
        async with self.database.session() as session:
            user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError(user_not_found(user_id))
        return UserRead.model_validate(user)

    async def update_profile(self, actor: Actor, data: ProfileUpdate) -> UserRead:
        """Change the caller's own name or phone.

        Raises:
            ValidationError: No field supplied
            AuthenticationError: The account was deactivated meanwhile
        """
        changes = {
            field: value.strip()
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None
        }
        if not changes:
            raise ValidationError(
                "No valid fields to update",
                [FieldViolation("name", "Provide a name or phone to update")],
            )

        async def operation(session: AsyncSession) -> tuple[User, dict]:
            user = await self._active_account(session, actor)
            previous = {field: getattr(user, field) for field in changes}
            for field, value in changes.items():
                setattr(user, field, value)
            session.add(user)
            await session.flush()
            return user, previous

        def audit(value: tuple[User, dict]) -> AuditSpec:
            user, previous = value
            return AuditSpec(
                action=AuditAction.USER_UPDATED,
                description="User updated their profile",
                actor=actor,
                entity_type=EntityType.USER,
                entity_id=user.id,
                metadata={"changes": changes, "previous_values": previous},
            )

        result = await self.coordinator.execute(operation, audit)
        user, _ = result.value
        return UserRead.model_validate(user)

    async def change_password(self, actor: Actor, data: PasswordChange) -> None:
        """Replace the caller's password after checking the current one.

        Raises:
            ValidationError: Wrong current password, or the new one is unchanged
        """
        if data.new_password == data.current_password:
            raise ValidationError(
                "New password must be different from current password",
                [FieldViolation("new_password", "Must differ from the current password")],
            )
        await self._check_password(actor, data.current_password)
        hashed_password = get_password_hash(data.new_password)

        async def operation(session: AsyncSession) -> User:
            user = await self._active_account(session, actor)
            user.hashed_password = hashed_password
            session.add(user)
            await session.flush()
            return user

        def audit(user: User) -> AuditSpec:
            return AuditSpec(
                action=AuditAction.PASSWORD_CHANGED,
                description="User changed their password",
                actor=actor,
                entity_type=EntityType.USER,
                entity_id=user.id,
                metadata={"email": user.email},
            )

        def notice(user: User) -> Notification:
            return Notification(
                channel="password_changed",
                payload={"user_id": user.id, "name": user.name, "recipient": user.email},
                entity_type=EntityType.USER,
                entity_id=user.id,
            )

        await self.coordinator.execute(operation, audit, [notice])
        logger.info(f"User {actor.user_id} changed their password")

    async def change_email(self, actor: Actor, data: EmailChange) -> UserRead:
        """Move an admin's own account to a new email address.

        Both the old and the new address are notified once the change commits.

        Raises:
            ForbiddenError: Caller is not an admin
            ValidationError: Same address, or wrong current password
            ConflictError: The new address is already registered
        """
        self.access.require_admin(actor.identity)
        new_email = _normalize_email(data.new_email)
        if new_email == actor.identity.email:
            raise ValidationError(
                "New email must be different from current email",
                [FieldViolation("new_email", "Must differ from the current email")],
            )
        await self._check_password(actor, data.current_password)

        async def operation(session: AsyncSession) -> tuple[User, str]:
            user = await self._active_account(session, actor)
            result = await session.execute(select(User.id).where(User.email == new_email))
            if result.first() is not None:
                raise ConflictError(duplicate_email(new_email))
            old_email = user.email
            user.email = new_email
            session.add(user)
            await session.flush()
            return user, old_email

        def audit(value: tuple[User, str]) -> AuditSpec:
            user, old_email = value
            return AuditSpec(
                action=AuditAction.EMAIL_CHANGED,
                description="User changed their email address",
                actor=actor,
                entity_type=EntityType.USER,
                entity_id=user.id,
                metadata={"old_email": old_email, "new_email": user.email},
            )

        def notify_address(which: str):
            def build(value: tuple[User, str]) -> Notification:
                user, old_email = value
                return Notification(
                    channel="email_changed",
                    payload={
                        "user_id": user.id,
                        "recipient": old_email if which == "old" else user.email,
                        "old_email": old_email,
                        "new_email": user.email,
                    },
                    entity_type=EntityType.USER,
                    entity_id=user.id,
                )

            return build

        result = await self.coordinator.execute(
            operation, audit, [notify_address("old"), notify_address("new")]
        )
        user, old_email = result.value
        logger.info(f"User {user.id} changed email from {old_email} to {user.email}")
        return UserRead.model_validate(user)

    async def _check_password(self, actor: Actor, password: str) -> None:
        async with self.database.session() as session:
            user = await session.get(User, actor.user_id)
        if user is None or not user.is_active:
            raise AuthenticationError("User not found or inactive")
        if not verify_password(password, user.hashed_password):
            raise ValidationError(
                "Current password is incorrect",
                [FieldViolation("current_password", "Current password is incorrect")],
            )

    @staticmethod
    async def _active_account(session: AsyncSession, actor: Actor) -> User:
        user = await session.get(User, actor.user_id)
        if user is None or not user.is_active:
            raise AuthenticationError("User not found or inactive")
        return user
