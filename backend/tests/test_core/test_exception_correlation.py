"""Tests for domain exception kinds and correlation IDs."""

from datetime import datetime, timezone

import pytest

from core.correlation import set_correlation_id
from models.exceptions import (
    ConflictException,
    DependencyException,
    DomainException,
    DuplicateFraudReportException,
    FraudReportNotFoundException,
    InvalidAssigneeException,
    InvalidRoleException,
    InvalidTransitionException,
    NotFoundException,
    PermissionDeniedException,
    SuspendedReporterException,
    UserAlreadySuspendedException,
    ValidationException,
)


class TestDomainExceptionCorrelationId:
    """Tests for correlation ID in DomainException."""

    def setup_method(self) -> None:
        set_correlation_id("")

    def test_uses_context_correlation_id(self) -> None:
        set_correlation_id("context1")

        assert DomainException("Test error").correlation_id == "context1"

    def test_generates_id_when_no_context(self) -> None:
        exc = DomainException("Test error")

        assert len(exc.correlation_id) == 8
        assert all(c in "0123456789abcdef" for c in exc.correlation_id)

    def test_explicit_overrides_context(self) -> None:
        set_correlation_id("context1")

        exc = DomainException("Test error", correlation_id="override")
        assert exc.correlation_id == "override"


class TestExceptionKinds:
    """Every exception maps to one stable kind."""

    @pytest.mark.parametrize(
        "exc,kind",
        [
            (ValidationException("bad"), "validation_error"),
            (InvalidAssigneeException(5), "validation_error"),
            (InvalidRoleException("assign fraud reports", "admin"), "authorization_error"),
            (SuspendedReporterException(), "authorization_error"),
            (FraudReportNotFoundException(7), "not_found"),
            (DuplicateFraudReportException(), "conflict"),
            (UserAlreadySuspendedException(5, 9, None), "conflict"),
            (InvalidTransitionException("fraud_report", 7, "resolved", "assigned"), "invalid_transition"),
            (DependencyException(), "dependency_error"),
        ],
    )
    def test_kind(self, exc: DomainException, kind: str) -> None:
        assert exc.kind == kind

    def test_hierarchy(self) -> None:
        assert issubclass(InvalidRoleException, PermissionDeniedException)
        assert issubclass(FraudReportNotFoundException, NotFoundException)
        assert issubclass(UserAlreadySuspendedException, ConflictException)

    def test_to_dict(self) -> None:
        exc = FraudReportNotFoundException(7)

        payload = exc.to_dict()

        assert payload == {
            "kind": "not_found",
            "message": "Fraud report with ID 7 not found",
            "correlation_id": exc.correlation_id,
        }

    def test_invalid_transition_names_both_statuses(self) -> None:
        exc = InvalidTransitionException("suspicious_activity", 3, "reviewed", "dismissed")

        assert "'reviewed'" in exc.message
        assert "'dismissed'" in exc.message
        assert exc.current_status == "reviewed"

    def test_already_suspended_mentions_end_date(self) -> None:
        end = datetime(2026, 6, 1, tzinfo=timezone.utc)

        exc = UserAlreadySuspendedException(5, 9, end)

        assert "2026-06-01" in exc.message
        assert exc.existing_id == 9

    def test_dependency_message_is_generic(self) -> None:
        exc = DependencyException(dependency="marketplace")

        assert exc.message == "A required service is temporarily unavailable"
        assert exc.dependency == "marketplace"
