"""
Unit tests for FraudReportService.
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from models.exceptions import (
    DependencyException,
    DuplicateFraudReportException,
    FraudReportNotFoundException,
    InvalidAssigneeException,
    InvalidRoleException,
    InvalidTransitionException,
    SuspendedReporterException,
    ValidationException,
)
from models.schemas import Actor, FraudReportCreate, ReportFilter, Role
from repositories.case_transition_repository import CaseTransitionRepository
from repositories.db_models import (
    CaseEntityType,
    FraudReportStatus,
    FraudReportType,
    SuspensionType,
    UserSuspension,
)
from repositories.fraud_report_repository import FraudReportRepository
from services.fraud_report_service import FraudReportService
from services.suspension_service import SuspensionService

MODERATOR_ID = 900
SECOND_MODERATOR_ID = 901
ADMIN_ID = 1000


def _report_data(**overrides) -> FraudReportCreate:
    fields = dict(
        type=FraudReportType.NON_DELIVERY,
        reason="Tickets never arrived",
        description="Paid two weeks ago, seller stopped answering messages.",
        reported_user_id=3,
    )
    fields.update(overrides)
    return FraudReportCreate(**fields)


def _submit(db, reporter_id: int = 1, identity=None, sink=None, **overrides):
    return FraudReportService.submit_fraud_report(
        db,
        Actor(user_id=reporter_id, role=Role.USER),
        _report_data(**overrides),
        identity=identity,
        sink=sink,
    )


class TestSubmitFraudReport:
    """Tests for FraudReportService.submit_fraud_report"""

    def test_submit_success(self, db_session, user_actor, sink):
        """Test submitting a report creates an open case."""
        report = FraudReportService.submit_fraud_report(
            db_session, user_actor, _report_data(evidence=["chat.png"]), sink=sink
        )

        assert report.id is not None
        assert report.status == FraudReportStatus.OPEN
        assert report.reporter_id == user_actor.user_id
        assert report.evidence == ["chat.png"]
        assert report.assigned_to is None
        assert len(sink.events) == 1
        assert sink.events[0].to_status == "open"
        assert sink.events[0].subject_user_id == 3

    def test_text_is_trimmed(self, db_session, user_actor):
        report = FraudReportService.submit_fraud_report(
            db_session,
            user_actor,
            _report_data(reason="  Never delivered  "),
        )

        assert report.reason == "Never delivered"

    def test_requires_a_target(self, db_session, user_actor):
        with pytest.raises(ValidationException):
            FraudReportService.submit_fraud_report(
                db_session, user_actor, _report_data(reported_user_id=None)
            )

    def test_listing_only_target_is_enough(self, db_session, user_actor):
        report = FraudReportService.submit_fraud_report(
            db_session,
            user_actor,
            _report_data(reported_user_id=None, listing_id=42),
        )

        assert report.listing_id == 42

    def test_blank_description_rejected(self, db_session, user_actor):
        with pytest.raises(ValidationException):
            FraudReportService.submit_fraud_report(
                db_session, user_actor, _report_data(description="   ")
            )

    def test_cannot_report_self(self, db_session, user_actor):
        with pytest.raises(ValidationException):
            FraudReportService.submit_fraud_report(
                db_session,
                user_actor,
                _report_data(reported_user_id=user_actor.user_id),
            )

    def test_suspended_reporter_rejected(self, db_session, admin_actor, user_actor):
        SuspensionService.suspend_user(
            db_session,
            admin_actor,
            user_id=user_actor.user_id,
            reason="Abuse",
            suspension_type=SuspensionType.PERMANENT,
        )

        with pytest.raises(SuspendedReporterException):
            FraudReportService.submit_fraud_report(db_session, user_actor, _report_data())

    def test_warned_reporter_allowed(self, db_session, admin_actor, user_actor):
        SuspensionService.suspend_user(
            db_session,
            admin_actor,
            user_id=user_actor.user_id,
            reason="Be nice",
            suspension_type=SuspensionType.WARNING,
        )

        report = FraudReportService.submit_fraud_report(
            db_session, user_actor, _report_data()
        )
        assert report.id is not None

    def test_duplicate_open_report_rejected(self, db_session, user_actor):
        _submit(db_session)

        with pytest.raises(DuplicateFraudReportException):
            _submit(db_session)

    def test_duplicate_allowed_after_dismissal(self, db_session, moderator_actor):
        first = _submit(db_session)
        FraudReportService.dismiss_report(
            db_session, moderator_actor, first.id, "Not enough evidence"
        )

        second = _submit(db_session)

        assert second.id != first.id

    def test_different_reporters_may_report_same_target(self, db_session):
        _submit(db_session, reporter_id=1)
        second = _submit(db_session, reporter_id=2)

        assert second.reporter_id == 2


class TestAutoAssignment:
    """Tests for automatic assignment of high-priority reports."""

    def test_high_priority_report_assigned_to_least_loaded(
        self, db_session, identity, sink
    ):
        """Ties go to the lowest moderator ID, then load spreads out."""
        first = _submit(
            db_session, reporter_id=1, identity=identity, sink=sink,
            type=FraudReportType.PAYMENT_FRAUD,
        )
        second = _submit(
            db_session, reporter_id=2, identity=identity,
            type=FraudReportType.FAKE_LISTING,
        )

        assert first.status == FraudReportStatus.ASSIGNED
        assert first.assigned_to == MODERATOR_ID
        assert first.assigned_at is not None
        assert second.assigned_to == SECOND_MODERATOR_ID

        assignment = sink.events[-1]
        assert assignment.from_status == "open"
        assert assignment.to_status == "assigned"
        assert assignment.actor_id == 0
        assert assignment.note == "auto-assigned"

    def test_admins_are_in_the_rotation(self, db_session, identity):
        assignees = [
            _submit(
                db_session, reporter_id=reporter, identity=identity,
                type=FraudReportType.PAYMENT_FRAUD,
            ).assigned_to
            for reporter in (1, 2, 4)
        ]

        assert assignees == [MODERATOR_ID, SECOND_MODERATOR_ID, ADMIN_ID]

    def test_normal_priority_report_stays_open(self, db_session, identity):
        report = _submit(db_session, identity=identity)

        assert report.status == FraudReportStatus.OPEN
        assert report.assigned_to is None

    def test_identity_failure_leaves_report_open(self, db_session, identity):
        identity.fail = True

        report = _submit(
            db_session, identity=identity, type=FraudReportType.PAYMENT_FRAUD
        )

        assert report.status == FraudReportStatus.OPEN

    def test_storage_failure_during_assignment_leaves_report_open(
        self, db_session, identity
    ):
        with patch.object(
            FraudReportRepository,
            "count_open_assignments",
            side_effect=OperationalError("SELECT", {}, Exception("database is locked")),
        ), patch("services.case_transitions.capture_internal_error") as capture:
            report = _submit(
                db_session, identity=identity, type=FraudReportType.PAYMENT_FRAUD
            )

        assert report.status == FraudReportStatus.OPEN
        assert report.assigned_to is None
        capture.assert_called_once()


class TestAssignReport:
    """Tests for FraudReportService.assign_report"""

    def test_admin_assigns_report(self, db_session, admin_actor, identity, sink):
        report = _submit(db_session)

        assigned = FraudReportService.assign_report(
            db_session, admin_actor, report.id, MODERATOR_ID, identity, sink=sink
        )

        assert assigned.status == FraudReportStatus.ASSIGNED
        assert assigned.assigned_to == MODERATOR_ID
        assert sink.events[-1].actor_id == admin_actor.user_id

    def test_reassign_assigned_report(self, db_session, admin_actor, identity):
        report = _submit(db_session)
        FraudReportService.assign_report(
            db_session, admin_actor, report.id, MODERATOR_ID, identity
        )

        reassigned = FraudReportService.assign_report(
            db_session, admin_actor, report.id, SECOND_MODERATOR_ID, identity
        )

        assert reassigned.assigned_to == SECOND_MODERATOR_ID

    def test_non_admin_cannot_assign(self, db_session, moderator_actor, identity):
        """A rejected assignment leaves the report untouched."""
        report = _submit(db_session)

        with pytest.raises(InvalidRoleException):
            FraudReportService.assign_report(
                db_session, moderator_actor, report.id, MODERATOR_ID, identity
            )

        db_session.refresh(report)
        assert report.status == FraudReportStatus.OPEN
        assert report.assigned_to is None

    def test_assignee_must_be_moderator(self, db_session, admin_actor, identity):
        report = _submit(db_session)

        with pytest.raises(InvalidAssigneeException):
            FraudReportService.assign_report(db_session, admin_actor, report.id, 2, identity)

    def test_unknown_assignee_rejected(self, db_session, admin_actor, identity):
        report = _submit(db_session)

        with pytest.raises(InvalidAssigneeException):
            FraudReportService.assign_report(
                db_session, admin_actor, report.id, 4242, identity
            )

    def test_identity_failure_is_dependency_error(
        self, db_session, admin_actor, identity
    ):
        report = _submit(db_session)
        identity.fail = True

        with pytest.raises(DependencyException) as exc_info:
            FraudReportService.assign_report(
                db_session, admin_actor, report.id, MODERATOR_ID, identity
            )

        assert exc_info.value.dependency == "identity"
        assert "unreachable" not in exc_info.value.message

    def test_cannot_assign_closed_report(
        self, db_session, admin_actor, moderator_actor, identity
    ):
        report = _submit(db_session)
        FraudReportService.dismiss_report(db_session, moderator_actor, report.id, "Spam")

        with pytest.raises(InvalidTransitionException):
            FraudReportService.assign_report(
                db_session, admin_actor, report.id, MODERATOR_ID, identity
            )

    def test_assign_not_found(self, db_session, admin_actor, identity):
        with pytest.raises(FraudReportNotFoundException):
            FraudReportService.assign_report(
                db_session, admin_actor, 99999, MODERATOR_ID, identity
            )


class TestResolveAndDismiss:
    """Tests for FraudReportService.resolve_report and dismiss_report"""

    def test_resolve_open_report(self, db_session, moderator_actor, sink):
        report = _submit(db_session)

        resolved = FraudReportService.resolve_report(
            db_session, moderator_actor, report.id, "Seller confirmed no tickets", sink=sink
        )

        assert resolved.status == FraudReportStatus.RESOLVED
        assert resolved.resolved_by == moderator_actor.user_id
        assert resolved.resolved_at is not None
        assert resolved.resolution == "Seller confirmed no tickets"
        # Resolver becomes the assignee of a never-assigned report
        assert resolved.assigned_to == moderator_actor.user_id
        assert sink.events[-1].from_status == "open"
        assert sink.events[-1].to_status == "resolved"

    def test_resolve_keeps_existing_assignee(
        self, db_session, admin_actor, moderator_actor, identity
    ):
        report = _submit(db_session)
        FraudReportService.assign_report(
            db_session, admin_actor, report.id, SECOND_MODERATOR_ID, identity
        )

        resolved = FraudReportService.resolve_report(
            db_session, moderator_actor, report.id, "Upheld"
        )

        assert resolved.assigned_to == SECOND_MODERATOR_ID
        assert resolved.resolved_by == moderator_actor.user_id

    def test_resolve_twice_fails(self, db_session, moderator_actor):
        report = _submit(db_session)
        FraudReportService.resolve_report(db_session, moderator_actor, report.id, "Upheld")

        with pytest.raises(InvalidTransitionException) as exc_info:
            FraudReportService.resolve_report(
                db_session, moderator_actor, report.id, "Again"
            )

        assert exc_info.value.current_status == "resolved"

    def test_dismiss_resolved_report_fails(self, db_session, moderator_actor):
        report = _submit(db_session)
        FraudReportService.resolve_report(db_session, moderator_actor, report.id, "Upheld")

        with pytest.raises(InvalidTransitionException):
            FraudReportService.dismiss_report(
                db_session, moderator_actor, report.id, "Changed my mind"
            )

    def test_dismiss_records_reason(self, db_session, moderator_actor):
        report = _submit(db_session)

        dismissed = FraudReportService.dismiss_report(
            db_session, moderator_actor, report.id, "Buyer received tickets"
        )

        assert dismissed.status == FraudReportStatus.DISMISSED
        assert dismissed.resolution == "Buyer received tickets"

    def test_empty_resolution_rejected(self, db_session, moderator_actor):
        report = _submit(db_session)

        with pytest.raises(ValidationException):
            FraudReportService.resolve_report(db_session, moderator_actor, report.id, " ")

    def test_user_cannot_resolve(self, db_session, other_user_actor):
        report = _submit(db_session)

        with pytest.raises(InvalidRoleException):
            FraudReportService.resolve_report(
                db_session, other_user_actor, report.id, "Upheld"
            )

    def test_resolve_not_found(self, db_session, moderator_actor):
        with pytest.raises(FraudReportNotFoundException):
            FraudReportService.resolve_report(db_session, moderator_actor, 99999, "x")

    def test_full_lifecycle_audit_trail(
        self, db_session, admin_actor, moderator_actor, identity
    ):
        report = _submit(db_session)
        FraudReportService.assign_report(
            db_session, admin_actor, report.id, MODERATOR_ID, identity
        )
        FraudReportService.resolve_report(db_session, moderator_actor, report.id, "Upheld")

        history = CaseTransitionRepository(db_session).get_history(
            CaseEntityType.FRAUD_REPORT, report.id
        )
        assert [(h.from_status, h.to_status) for h in history] == [
            (None, "open"),
            ("open", "assigned"),
            ("assigned", "resolved"),
        ]


class TestAutomaticEnforcement:
    """Tests for the suspension issued when upheld reports pile up."""

    def test_third_upheld_report_suspends_user(self, db_session, moderator_actor, sink):
        reports = [_submit(db_session, reporter_id=reporter) for reporter in (1, 2, 4)]

        for report in reports[:2]:
            FraudReportService.resolve_report(
                db_session, moderator_actor, report.id, "Upheld"
            )
        assert SuspensionService.is_user_suspended(db_session, 3) is False

        FraudReportService.resolve_report(
            db_session, moderator_actor, reports[2].id, "Upheld", sink=sink
        )

        suspension = SuspensionService.get_active_suspension(db_session, 3)
        assert suspension is not None
        assert suspension.suspension_type == SuspensionType.TEMPORARY
        assert suspension.suspended_by == 0
        assert suspension.end_date is not None
        assert any(
            e.entity_type == CaseEntityType.USER_SUSPENSION for e in sink.events
        )

    def test_dismissals_do_not_count(self, db_session, moderator_actor):
        reports = [_submit(db_session, reporter_id=reporter) for reporter in (1, 2, 4)]

        for report in reports:
            FraudReportService.dismiss_report(
                db_session, moderator_actor, report.id, "Unfounded"
            )

        assert db_session.query(UserSuspension).count() == 0

    def test_enforcement_failure_returns_resolved_report(
        self, db_session, moderator_actor, sink
    ):
        report = _submit(db_session)

        with patch(
            "services.fraud_report_service.RiskService.compute_risk_profile",
            side_effect=DependencyException(),
        ), patch("services.case_transitions.capture_internal_error") as capture:
            resolved = FraudReportService.resolve_report(
                db_session, moderator_actor, report.id, "Upheld", sink=sink
            )

        assert resolved.status == FraudReportStatus.RESOLVED
        assert resolved.resolution == "Upheld"
        assert sink.events[-1].to_status == "resolved"
        capture.assert_called_once()
        assert capture.call_args.kwargs["operation"] == "report_enforcement"

        with pytest.raises(InvalidTransitionException):
            FraudReportService.resolve_report(
                db_session, moderator_actor, report.id, "Upheld again"
            )


class TestListFraudReports:
    """Tests for FraudReportService.list_fraud_reports"""

    def test_default_queue_puts_high_priority_first(self, db_session, moderator_actor):
        normal = _submit(db_session, reporter_id=1)
        urgent = _submit(
            db_session, reporter_id=2, type=FraudReportType.PAYMENT_FRAUD
        )

        queue = FraudReportService.list_fraud_reports(db_session, moderator_actor)

        assert [r.id for r in queue] == [urgent.id, normal.id]

    def test_queue_excludes_closed_reports(self, db_session, moderator_actor):
        report = _submit(db_session)
        FraudReportService.dismiss_report(db_session, moderator_actor, report.id, "No")

        assert FraudReportService.list_fraud_reports(db_session, moderator_actor) == []

    def test_filter_by_status_wins_over_type(self, db_session, moderator_actor):
        open_report = _submit(db_session, reporter_id=1)
        dismissed = _submit(db_session, reporter_id=2)
        FraudReportService.dismiss_report(db_session, moderator_actor, dismissed.id, "No")

        result = FraudReportService.list_fraud_reports(
            db_session,
            moderator_actor,
            ReportFilter(status=FraudReportStatus.OPEN, type=FraudReportType.OTHER),
        )

        assert [r.id for r in result] == [open_report.id]

    def test_filter_by_reported_user(self, db_session, moderator_actor):
        mine = _submit(db_session, reporter_id=1, reported_user_id=7)
        _submit(db_session, reporter_id=1, reported_user_id=8)

        result = FraudReportService.list_fraud_reports(
            db_session, moderator_actor, ReportFilter(reported_user_id=7)
        )

        assert [r.id for r in result] == [mine.id]

    def test_user_cannot_list(self, db_session, user_actor):
        with pytest.raises(InvalidRoleException):
            FraudReportService.list_fraud_reports(db_session, user_actor)

    def test_get_report(self, db_session, moderator_actor):
        report = _submit(db_session)

        assert FraudReportService.get_report(db_session, moderator_actor, report.id).id == report.id

        with pytest.raises(FraudReportNotFoundException):
            FraudReportService.get_report(db_session, moderator_actor, 99999)
