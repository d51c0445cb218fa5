"""
Service for fraud report business logic.
"""

from datetime import timedelta
from typing import Optional

from loguru import logger
from sqlalchemy.orm import Session

from helpers.time_utils import utc_now
from models.config import settings
from models.exceptions import (
    DependencyException,
    DuplicateFraudReportException,
    FraudReportNotFoundException,
    InvalidAssigneeException,
    SuspendedReporterException,
    ValidationException,
)
from models.schemas import Actor, FraudReportCreate, ReportFilter, Role
from repositories.base import storage_guard
from repositories.db_models import (
    CaseEntityType,
    FraudReport,
    FraudReportStatus,
)
from repositories.fraud_report_repository import (
    HIGH_PRIORITY_TYPES,
    UNRESOLVED_STATUSES,
    FraudReportRepository,
)
from repositories.user_suspension_repository import UserSuspensionRepository
from services.authorization import (
    require_admin,
    require_moderator,
    require_role,
    system_actor,
)
from services.case_transitions import (
    CaseTransitionService,
    after_commit,
    review_stamp,
)
from services.collaborators import (
    IdentityDirectory,
    MarketplaceReader,
    TransitionSink,
)
from services.risk_service import RiskService
from services.suspension_service import SuspensionService


class FraudReportService:
    """Service for fraud report operations."""

    @staticmethod
    def submit_fraud_report(
        db: Session,
        actor: Actor,
        data: FraudReportCreate,
        identity: Optional[IdentityDirectory] = None,
        sink: Optional[TransitionSink] = None,
    ) -> FraudReport:
        """
        Submit a fraud report on behalf of the caller.

        High-priority types (fake_listing, payment_fraud) are assigned to the
        moderator with the fewest open assignments when one is available.

        Args:
            db: Database session
            actor: Reporting user
            data: Report content
            identity: Identity directory used for auto-assignment
            sink: Transition sink

        Returns:
            Created report

        Raises:
            ValidationException: If no target is given or text is empty
            SuspendedReporterException: If the reporter is suspended
            DuplicateFraudReportException: If the same report is already open
        """
        require_role(actor, Role.USER, "submit fraud reports")

        if (
            data.reported_user_id is None
            and data.listing_id is None
            and data.transaction_id is None
        ):
            raise ValidationException(
                "A report must name a user, a listing or a transaction"
            )
        if not data.reason:
            raise ValidationException("A report reason is required")
        if not data.description:
            raise ValidationException("A report description is required")
        if data.reported_user_id == actor.user_id:
            raise ValidationException("You cannot report yourself")

        reports = FraudReportRepository(db)
        with storage_guard(db, "submit_fraud_report_checks"):
            if UserSuspensionRepository(db).get_active_exclusive(actor.user_id):
                raise SuspendedReporterException()

            if reports.find_unresolved_duplicate(
                actor.user_id,
                data.type,
                data.reported_user_id,
                data.listing_id,
                data.transaction_id,
            ):
                raise DuplicateFraudReportException()

        report = FraudReport(
            reporter_id=actor.user_id,
            reported_user_id=data.reported_user_id,
            listing_id=data.listing_id,
            transaction_id=data.transaction_id,
            type=data.type,
            reason=data.reason,
            description=data.description,
            evidence=list(data.evidence),
            status=FraudReportStatus.OPEN,
        )
        report = CaseTransitionService.record_creation(
            db, CaseEntityType.FRAUD_REPORT, report, actor.user_id, sink=sink
        )
        logger.info(
            f"Fraud report {report.id} ({report.type.value}) submitted by {actor.user_id}"
        )

        if report.type in HIGH_PRIORITY_TYPES:
            report = FraudReportService._auto_assign(db, report, identity, sink)
        return report

    @staticmethod
    def _auto_assign(
        db: Session,
        report: FraudReport,
        identity: Optional[IdentityDirectory],
        sink: Optional[TransitionSink],
    ) -> FraudReport:
        """
        Assign a new high-priority report to the least-loaded moderator.

        Best effort: any failure leaves the report open.
        """
        if identity is None:
            return report

        try:
            moderator_ids = identity.list_moderators()
        except Exception as e:
            logger.warning(f"Auto-assignment skipped for report {report.id}: {e}")
            return report
        if not moderator_ids:
            logger.info(f"No moderators available to auto-assign report {report.id}")
            return report

        with after_commit("auto_assign_report", report_id=report.id):
            with storage_guard(db, "auto_assign_load"):
                load = FraudReportRepository(db).count_open_assignments(moderator_ids)
            moderator_id = min(moderator_ids, key=lambda m: (load[m], m))

            return CaseTransitionService.transition(
                db,
                FraudReportRepository(db),
                CaseEntityType.FRAUD_REPORT,
                report.id,
                (FraudReportStatus.OPEN,),
                FraudReportStatus.ASSIGNED,
                system_actor(),
                FraudReportNotFoundException,
                values={"assigned_to": moderator_id, "assigned_at": utc_now()},
                sink=sink,
                note="auto-assigned",
            )
        return report

    @staticmethod
    def assign_report(
        db: Session,
        actor: Actor,
        report_id: int,
        moderator_id: int,
        identity: IdentityDirectory,
        sink: Optional[TransitionSink] = None,
    ) -> FraudReport:
        """
        Assign (or reassign) a report to a moderator.

        Raises:
            InvalidRoleException: If the caller is not an admin
            InvalidAssigneeException: If moderator_id is not a moderator/admin
            FraudReportNotFoundException: If the report does not exist
            InvalidTransitionException: If the report is resolved or dismissed
        """
        require_admin(actor, "assign fraud reports")

        try:
            role = identity.get_role(moderator_id)
        except Exception as e:
            logger.error(f"Identity lookup failed for moderator {moderator_id}: {e}")
            raise DependencyException(dependency="identity") from e
        if role is None or not role.at_least(Role.MODERATOR):
            raise InvalidAssigneeException(moderator_id)

        return CaseTransitionService.transition(
            db,
            FraudReportRepository(db),
            CaseEntityType.FRAUD_REPORT,
            report_id,
            UNRESOLVED_STATUSES,
            FraudReportStatus.ASSIGNED,
            actor,
            FraudReportNotFoundException,
            values={"assigned_to": moderator_id, "assigned_at": utc_now()},
            sink=sink,
        )

    @staticmethod
    def _close(
        db: Session,
        actor: Actor,
        report_id: int,
        target: FraudReportStatus,
        text: str,
        sink: Optional[TransitionSink],
    ) -> FraudReport:
        """Resolve or dismiss; the resolving moderator becomes the assignee if none."""
        now = utc_now()

        def assignee(report: FraudReport) -> dict:
            values = {"assigned_to": report.assigned_to or actor.user_id}
            if report.assigned_at is None:
                values["assigned_at"] = now
            return values

        return CaseTransitionService.transition(
            db,
            FraudReportRepository(db),
            CaseEntityType.FRAUD_REPORT,
            report_id,
            UNRESOLVED_STATUSES,
            target,
            actor,
            FraudReportNotFoundException,
            values=review_stamp(actor, text, now),
            sink=sink,
            build_values=assignee,
        )

    @staticmethod
    def resolve_report(
        db: Session,
        actor: Actor,
        report_id: int,
        resolution: str,
        marketplace: Optional[MarketplaceReader] = None,
        sink: Optional[TransitionSink] = None,
    ) -> FraudReport:
        """
        Resolve a report as upheld and evaluate enforcement for the reported user.

        Raises:
            InvalidRoleException: If the caller is not a moderator
            ValidationException: If the resolution is empty
            FraudReportNotFoundException: If the report does not exist
            InvalidTransitionException: If the report is already closed
        """
        require_moderator(actor, "resolve fraud reports")
        resolution = (resolution or "").strip()
        if not resolution:
            raise ValidationException("A resolution is required")

        report = FraudReportService._close(
            db, actor, report_id, FraudReportStatus.RESOLVED, resolution, sink
        )
        if report.reported_user_id is not None:
            with after_commit(
                "report_enforcement", report_id=report.id, user_id=report.reported_user_id
            ):
                FraudReportService._evaluate_enforcement(
                    db, report.reported_user_id, marketplace, sink
                )
        return report

    @staticmethod
    def dismiss_report(
        db: Session,
        actor: Actor,
        report_id: int,
        reason: str,
        sink: Optional[TransitionSink] = None,
    ) -> FraudReport:
        """
        Dismiss a report. No enforcement follows.

        Raises:
            InvalidRoleException: If the caller is not a moderator
            ValidationException: If the reason is empty
            FraudReportNotFoundException: If the report does not exist
            InvalidTransitionException: If the report is already closed
        """
        require_moderator(actor, "dismiss fraud reports")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationException("A dismissal reason is required")

        return FraudReportService._close(
            db, actor, report_id, FraudReportStatus.DISMISSED, reason, sink
        )

    @staticmethod
    def _evaluate_enforcement(
        db: Session,
        user_id: int,
        marketplace: Optional[MarketplaceReader],
        sink: Optional[TransitionSink],
    ) -> None:
        """Suspend the reported user when upheld reports or risk cross the thresholds."""
        with storage_guard(db, "enforcement_count"):
            resolved = FraudReportRepository(db).count_resolved_against_user(user_id)
        profile = RiskService.compute_risk_profile(db, user_id, marketplace)

        if (
            resolved < settings.AUTO_SUSPEND_RESOLVED_REPORTS
            and profile.score < settings.AUTO_SUSPEND_RISK_SCORE
        ):
            return

        logger.warning(
            f"Enforcement threshold reached for user {user_id}: "
            f"{resolved} resolved reports, risk score {profile.score}"
        )
        SuspensionService.issue_system_suspension(
            db,
            user_id,
            f"High risk score ({profile.score}) or multiple upheld fraud reports ({resolved})",
            timedelta(days=settings.AUTO_SUSPEND_REPORT_DAYS),
            sink=sink,
        )

    @staticmethod
    def list_fraud_reports(
        db: Session, actor: Actor, filters: Optional[ReportFilter] = None
    ) -> list[FraudReport]:
        """
        List reports by the first filter key given
        (status, assigned_to, reported_user_id, type).

        Without a key, returns the moderation queue.
        """
        require_moderator(actor, "list fraud reports")
        filters = filters or ReportFilter()
        repo = FraudReportRepository(db)
        key, value = filters.selected()
        skip, limit = filters.skip, filters.limit

        with storage_guard(db, "list_fraud_reports"):
            if key == "status":
                return repo.list_by_status(value, skip, limit)
            if key == "assigned_to":
                return repo.list_by_assignee(value, skip, limit)
            if key == "reported_user_id":
                return repo.list_by_reported_user(value, skip, limit)
            if key == "type":
                return repo.list_by_type(value, skip, limit)
            return repo.list_review_queue(skip, limit)

    @staticmethod
    def get_report(db: Session, actor: Actor, report_id: int) -> FraudReport:
        """
        Get a single report (moderator or admin).

        Raises:
            FraudReportNotFoundException: If the report does not exist
        """
        require_moderator(actor, "view fraud reports")
        with storage_guard(db, "get_fraud_report"):
            report = FraudReportRepository(db).get_by_id(report_id)
        if report is None:
            raise FraudReportNotFoundException(report_id)
        return report
