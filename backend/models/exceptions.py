"""
Custom domain exceptions for the fraud engine.

These exceptions are raised by the service layer and carry a stable `kind`
so the calling layer (HTTP, CLI, background job) can map them without
inspecting messages. Storage and collaborator failures are never surfaced
verbatim: they are wrapped in DependencyException with a generic message and
the original kept as the exception cause for internal logging only.

Every exception carries a correlation ID for Sentry and user error reports.
"""

from datetime import datetime
from typing import Any

from core.correlation import generate_correlation_id, get_correlation_id


class DomainException(Exception):
    """
    Base class for all domain exceptions.

    Attributes:
        message: Human-readable error message.
        correlation_id: Unique ID for error tracking (auto-generated if not provided).
    """

    kind = "domain_error"

    def __init__(self, message: str, correlation_id: str | None = None):
        self.message = message
        self.correlation_id = (
            correlation_id or get_correlation_id() or generate_correlation_id()
        )
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """User-visible error payload."""
        return {
            "kind": self.kind,
            "message": self.message,
            "correlation_id": self.correlation_id,
        }


class ValidationException(DomainException):
    """Raised when a required field is missing or malformed."""

    kind = "validation_error"


class PermissionDeniedException(DomainException):
    """Raised when the caller's role is insufficient for the operation."""

    kind = "authorization_error"


class NotFoundException(DomainException):
    """Raised when a referenced entity does not exist."""

    kind = "not_found"


class ConflictException(DomainException):
    """Raised when an exclusivity rule is violated."""

    kind = "conflict"


class InvalidTransitionException(DomainException):
    """Raised when the current status does not allow the requested transition."""

    kind = "invalid_transition"

    def __init__(
        self,
        entity_type: str,
        entity_id: int,
        current_status: str,
        target_status: str,
    ):
        super().__init__(
            f"Cannot move {entity_type} {entity_id} from "
            f"'{current_status}' to '{target_status}'"
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.target_status = target_status


class DependencyException(DomainException):
    """Raised when storage or an external collaborator fails."""

    kind = "dependency_error"

    def __init__(
        self,
        message: str = "A required service is temporarily unavailable",
        dependency: str = "storage",
    ):
        super().__init__(message)
        self.dependency = dependency


# ============================================================================
# Authorization
# ============================================================================


class InvalidRoleException(PermissionDeniedException):
    """Raised when the caller lacks the minimum role for an action."""

    def __init__(self, action: str, required_role: str):
        super().__init__(f"The '{required_role}' role is required to {action}")
        self.action = action
        self.required_role = required_role


class SuspendedReporterException(PermissionDeniedException):
    """Raised when a suspended user tries to submit a fraud report."""

    def __init__(self, message: str = "Suspended users cannot submit fraud reports"):
        super().__init__(message)


# ============================================================================
# Not found
# ============================================================================


class FraudReportNotFoundException(NotFoundException):
    """Fraud report not found."""

    def __init__(self, report_id: int):
        super().__init__(f"Fraud report with ID {report_id} not found")
        self.report_id = report_id


class SuspiciousActivityNotFoundException(NotFoundException):
    """Suspicious activity not found."""

    def __init__(self, activity_id: int):
        super().__init__(f"Suspicious activity with ID {activity_id} not found")
        self.activity_id = activity_id


class VerificationNotFoundException(NotFoundException):
    """Ticket verification not found."""

    def __init__(self, verification_id: int):
        super().__init__(f"Ticket verification with ID {verification_id} not found")
        self.verification_id = verification_id


class SuspensionNotFoundException(NotFoundException):
    """User suspension not found."""

    def __init__(self, suspension_id: int):
        super().__init__(f"Suspension with ID {suspension_id} not found")
        self.suspension_id = suspension_id


class ListingNotFoundException(NotFoundException):
    """Listing unknown to the marketplace collaborator."""

    def __init__(self, listing_id: int):
        super().__init__(f"Listing with ID {listing_id} not found")
        self.listing_id = listing_id


# ============================================================================
# Validation
# ============================================================================


class InvalidAssigneeException(ValidationException):
    """Raised when the assignee is not a moderator or admin account."""

    def __init__(self, moderator_id: int):
        super().__init__(
            f"User {moderator_id} is not a moderator or admin and cannot be assigned"
        )
        self.moderator_id = moderator_id


# ============================================================================
# Conflicts
# ============================================================================


class UserAlreadySuspendedException(ConflictException):
    """Raised when an exclusive suspension is already active for the user."""

    def __init__(self, user_id: int, existing_id: int, end_date: datetime | None):
        until = f"until {end_date.isoformat()}" if end_date else "indefinitely"
        super().__init__(
            f"User {user_id} already has active suspension {existing_id} ({until}); "
            "lift it before issuing a new one"
        )
        self.user_id = user_id
        self.existing_id = existing_id


class DuplicateFraudReportException(ConflictException):
    """Raised when the reporter already has an unresolved report for the same target."""

    def __init__(
        self, message: str = "You already have an open report for this target"
    ):
        super().__init__(message)
