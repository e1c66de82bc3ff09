"""Unit-of-work execution: a domain write and its audit entry, atomically."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy.exc import DisconnectionError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from donation_ledger.core.database import Database
from donation_ledger.core.errors import ConflictError, TransientStoreError
from donation_ledger.models import AuditAction, AuditLog
from donation_ledger.services.access import Actor
from donation_ledger.services.audit import AuditSpec, AuditTrailStore
from donation_ledger.services.notifications import (
    Notification,
    NotificationDispatcher,
    OutcomeStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

UnitOfWork = Callable[[AsyncSession], Awaitable[T]]
AuditSource = AuditSpec | Callable[[T], AuditSpec]
NotificationSource = Callable[[T], Notification | None]


@dataclass
class MutationResult(Generic[T]):
    """Committed result of a unit of work and the audit entry it produced."""

    value: T
    audit_entry: AuditLog


class TransactionCoordinator:
    """Runs a unit of work and its audit entry in one transaction.

    The unit of work receives the transactional session, performs any
    pre-checks and the domain write, and returns a value. The audit spec (or
    a callable building it from that value) is then appended on the same
    session. Either both commit or neither does.

    Notifications run only after commit. Their failures are logged and
    recorded but never affect the mutation's outcome.
    """

    def __init__(
        self,
        database: Database,
        audit_store: AuditTrailStore,
        notifier: NotificationDispatcher | None = None,
        timeout: float | None = None,
    ):
        self.database = database
        self.audit_store = audit_store
        self.notifier = notifier
        self.timeout = timeout

    async def execute(
        self,
        operation: UnitOfWork[T],
        audit: AuditSource,
        notifications: Sequence[NotificationSource] = (),
    ) -> MutationResult[T]:
        """Execute a unit of work atomically with its audit entry.

        Args:
            operation: Domain write taking the transactional session
            audit: AuditSpec, or a callable building one from the result
            notifications: Callables building post-commit notifications

        Returns:
            MutationResult with the operation's value and the audit entry

        Raises:
            DomainError: Raised by the unit of work; the transaction is rolled back
            ConflictError: A store uniqueness constraint rejected the write
            TransientStoreError: Connection, pool or transaction timeout
        """
        try:
            value, spec, entry = await asyncio.wait_for(
                self._run(operation, audit), timeout=self.timeout
            )
        except IntegrityError as e:
            logger.warning(f"Mutation rejected by store constraint: {e.orig}")
            raise ConflictError("The change conflicts with an existing record") from e
        except (OperationalError, DisconnectionError, PoolTimeoutError, TimeoutError) as e:
            logger.error(f"Mutation aborted by store failure: {type(e).__name__}: {e}")
            raise TransientStoreError(
                "The data store is temporarily unavailable, retry the operation"
            ) from e

        logger.info(f"Committed {entry.action} for {entry.entity_type} {entry.entity_id}")
        await self._dispatch(value, spec.actor, notifications)
        return MutationResult(value=value, audit_entry=entry)

    async def _run(
        self,
        operation: UnitOfWork[T],
        audit: AuditSource,
    ) -> tuple[T, AuditSpec, AuditLog]:
        async with self.database.transaction() as session:
            value = await operation(session)
            spec = audit(value) if callable(audit) else audit
            entry = await self.audit_store.append(session, spec)
        return value, spec, entry

    async def _dispatch(
        self,
        value: T,
        actor: Actor,
        notifications: Sequence[NotificationSource],
    ) -> None:
        if self.notifier is None:
            return
        for build in notifications:
            try:
                notification = build(value)
                if notification is None:
                    continue
                outcome = await self.notifier.notify(notification.channel, notification.payload)
            except Exception as e:
                logger.error(f"Post-commit notification failed: {type(e).__name__}: {e}")
                continue
            if outcome.status is OutcomeStatus.SKIPPED:
                continue
            sent = outcome.status is OutcomeStatus.SENT
            await self.audit_store.record(
                AuditSpec(
                    action=AuditAction.NOTIFICATION_SENT if sent else AuditAction.NOTIFICATION_FAILED,
                    description=f"Notification on '{notification.channel}' {outcome.status.value}",
                    actor=actor,
                    entity_type=notification.entity_type,
                    entity_id=notification.entity_id,
                    metadata={
                        "channel": notification.channel,
                        "error": outcome.error,
                        **outcome.details,
                    },
                )
            )
            if notification.on_outcome is not None:
                try:
                    await notification.on_outcome(outcome)
                except Exception as e:
                    logger.error(f"Notification bookkeeping on '{notification.channel}' failed: {e}")
