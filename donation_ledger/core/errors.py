"""Domain error taxonomy.

Every error that crosses the service boundary is one of these. Each carries a
stable ``kind`` string and an HTTP status so the API layer can render a
structured outcome without leaking store internals.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldViolation:
    """A single field-level validation failure."""

    field: str
    message: str


class DomainError(Exception):
    """Base class for domain-level errors."""

    kind = "domain_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(DomainError):
    """Malformed or out-of-range input. Never reaches the store."""

    kind = "validation_error"
    status_code = 422

    def __init__(self, message: str, violations: list[FieldViolation] | None = None):
        super().__init__(message)
        self.violations = violations or []

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["violations"] = [
            {"field": v.field, "message": v.message} for v in self.violations
        ]
        return data


class ConflictError(DomainError):
    """Uniqueness violation or a rejected state change."""

    kind = "conflict"
    status_code = 409


class InvalidTransitionError(ConflictError):
    """Lifecycle transition not allowed from the current state."""

    kind = "invalid_transition"


class NotFoundError(DomainError):
    """Referenced entity does not exist."""

    kind = "not_found"
    status_code = 404


class AuthenticationError(DomainError):
    """Missing, invalid or expired credentials."""

    kind = "unauthorized"
    status_code = 401


class ForbiddenError(DomainError):
    """Authenticated but not authorized for the scoped resource."""

    kind = "forbidden"
    status_code = 403


class TransientStoreError(DomainError):
    """Connection or timeout failure. The whole mutation may be retried."""

    kind = "transient_store_error"
    status_code = 503


class NotificationError(DomainError):
    """Outbound notification failed. Recorded at dispatch, never escalated."""

    kind = "notification_error"
    status_code = 502


def donation_not_found(donation_id: int) -> str:
    return f"Donation {donation_id} not found"


def category_not_found(category_id: int) -> str:
    return f"Category {category_id} not found"


def user_not_found(user_id: int) -> str:
    return f"User {user_id} not found"


def duplicate_category_name(name: str) -> str:
    return f"Category with name '{name}' already exists"


def duplicate_email(email: str) -> str:
    return f"Email '{email}' is already registered"


def category_delete_blocked(category_id: int, donation_count: int) -> str:
    """Return message when a category still has donations."""
    noun = "donation" if donation_count == 1 else "donations"
    return (
        f"Cannot delete category {category_id}: it has {donation_count} associated {noun}. "
        "Deactivate it instead."
    )
