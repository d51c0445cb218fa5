"""
Public operation surface of the trust & safety engine.

FraudEngine binds the collaborators (identity directory, marketplace reader,
transition sink) once and exposes one method per capability. Every method
takes the caller's database session and authenticated Actor; stores are never
handed out.
"""

from datetime import datetime
from typing import Callable, Optional

from loguru import logger
from sqlalchemy.orm import Session

from core.logging_config import configure_logging
from core.scheduler import dispatch_detection, setup_scheduler, shutdown_scheduler
from core.sentry_config import init_sentry
from models.config import settings
from models.schemas import (
    Actor,
    ActivityFilter,
    FraudReportCreate,
    ReportFilter,
    RiskProfile,
    SuspensionFilter,
    SystemStatistics,
    VerificationFilter,
)
from repositories.db_models import (
    ActivityStatus,
    FraudReport,
    SuspensionType,
    SuspiciousActivity,
    TicketVerification,
    UserSuspension,
    VerificationStatus,
)
from repositories.database import SessionLocal
from services.activity_service import ActivityService
from services.authorization import require_moderator
from services.collaborators import IdentityDirectory, MarketplaceReader, TransitionSink
from services.detection_service import DetectionService
from services.fraud_report_service import FraudReportService
from services.risk_service import RiskService
from services.suspension_service import SuspensionService
from services.verification_service import VerificationService


class FraudEngine:
    """Facade over the fraud report, detection, verification, suspension and risk services."""

    def __init__(
        self,
        identity: IdentityDirectory,
        marketplace: MarketplaceReader,
        sink: Optional[TransitionSink] = None,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        """
        Args:
            identity: Role lookups for assignment
            marketplace: Listing and seller lookups for detection and verification
            sink: Receives every committed transition
            session_factory: Session factory for background detection jobs,
                defaults to the application SessionLocal
        """
        self.identity = identity
        self.marketplace = marketplace
        self.sink = sink
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Configure logging and Sentry, then start the detection scheduler."""
        configure_logging(settings.ENVIRONMENT, settings.LOG_DIR)
        init_sentry()
        if settings.DETECTION_SCHEDULER_ENABLED:
            setup_scheduler()
        logger.info("Fraud engine started")

    def shutdown(self) -> None:
        """Stop the detection scheduler, waiting for queued rules."""
        shutdown_scheduler()
        logger.info("Fraud engine stopped")

    def session(self) -> Session:
        """Open a session from the engine's session factory."""
        return (self.session_factory or SessionLocal)()

    # ------------------------------------------------------------------
    # Fraud reports
    # ------------------------------------------------------------------

    def submit_fraud_report(
        self, db: Session, actor: Actor, data: FraudReportCreate
    ) -> FraudReport:
        return FraudReportService.submit_fraud_report(
            db, actor, data, identity=self.identity, sink=self.sink
        )

    def list_fraud_reports(
        self, db: Session, actor: Actor, filters: Optional[ReportFilter] = None
    ) -> list[FraudReport]:
        return FraudReportService.list_fraud_reports(db, actor, filters)

    def get_fraud_report(self, db: Session, actor: Actor, report_id: int) -> FraudReport:
        return FraudReportService.get_report(db, actor, report_id)

    def assign_report(
        self, db: Session, actor: Actor, report_id: int, moderator_id: int
    ) -> FraudReport:
        return FraudReportService.assign_report(
            db, actor, report_id, moderator_id, self.identity, sink=self.sink
        )

    def resolve_report(
        self, db: Session, actor: Actor, report_id: int, resolution: str
    ) -> FraudReport:
        return FraudReportService.resolve_report(
            db, actor, report_id, resolution, marketplace=self.marketplace, sink=self.sink
        )

    def dismiss_report(
        self, db: Session, actor: Actor, report_id: int, reason: str
    ) -> FraudReport:
        return FraudReportService.dismiss_report(db, actor, report_id, reason, sink=self.sink)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def run_rapid_listing_check(
        self, db: Session, actor: Actor, user_id: int
    ) -> Optional[SuspiciousActivity]:
        require_moderator(actor, "run detection rules")
        return DetectionService.detect_rapid_listing(db, user_id, self.marketplace, self.sink)

    def run_price_manipulation_check(
        self, db: Session, actor: Actor, listing_id: int
    ) -> Optional[SuspiciousActivity]:
        require_moderator(actor, "run detection rules")
        return DetectionService.detect_price_manipulation(
            db, listing_id, self.marketplace, self.sink
        )

    def run_duplicate_image_check(
        self, db: Session, actor: Actor, listing_id: int
    ) -> Optional[SuspiciousActivity]:
        require_moderator(actor, "run detection rules")
        return DetectionService.detect_duplicate_images(
            db, listing_id, self.marketplace, self.sink
        )

    def _dispatch(self, rule_name: str, subject_id: int) -> None:
        dispatch_detection(
            rule_name,
            subject_id,
            self.marketplace,
            self.sink,
            session_factory=self.session_factory,
        )

    def on_listing_created(self, seller_id: int, listing_id: int) -> None:
        """Marketplace hook: a listing was published. Never raises."""
        self._dispatch("rapid_listing", seller_id)
        self._dispatch("price_manipulation", listing_id)

    def on_price_changed(self, listing_id: int) -> None:
        """Marketplace hook: an asking price was edited. Never raises."""
        self._dispatch("price_manipulation", listing_id)

    def on_images_uploaded(self, listing_id: int) -> None:
        """Marketplace hook: listing images were (re)fingerprinted. Never raises."""
        self._dispatch("duplicate_images", listing_id)

    # ------------------------------------------------------------------
    # Suspicious activity
    # ------------------------------------------------------------------

    def list_suspicious_activities(
        self, db: Session, actor: Actor, filters: Optional[ActivityFilter] = None
    ) -> list[SuspiciousActivity]:
        return ActivityService.list_suspicious_activities(db, actor, filters)

    def review_activity(
        self,
        db: Session,
        actor: Actor,
        activity_id: int,
        status: ActivityStatus,
        notes: Optional[str] = None,
    ) -> SuspiciousActivity:
        return ActivityService.review_activity(
            db, actor, activity_id, status, notes, sink=self.sink
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def run_automated_verification(
        self, db: Session, actor: Actor, listing_id: int
    ) -> TicketVerification:
        return VerificationService.perform_automated_verification(
            db, actor, listing_id, self.marketplace, sink=self.sink
        )

    def request_manual_verification(
        self, db: Session, actor: Actor, listing_id: int, notes: Optional[str] = None
    ) -> TicketVerification:
        return VerificationService.request_manual_verification(
            db, actor, listing_id, self.marketplace, notes=notes, sink=self.sink
        )

    def list_verifications(
        self, db: Session, actor: Actor, filters: Optional[VerificationFilter] = None
    ) -> list[TicketVerification]:
        return VerificationService.list_verifications(db, actor, filters)

    def perform_manual_review(
        self,
        db: Session,
        actor: Actor,
        verification_id: int,
        status: VerificationStatus,
        notes: Optional[str] = None,
    ) -> TicketVerification:
        return VerificationService.perform_manual_review(
            db, actor, verification_id, status, notes, sink=self.sink
        )

    # ------------------------------------------------------------------
    # Suspensions
    # ------------------------------------------------------------------

    def suspend_user(
        self,
        db: Session,
        actor: Actor,
        user_id: int,
        reason: str,
        suspension_type: SuspensionType,
        end_date: Optional[datetime] = None,
    ) -> UserSuspension:
        return SuspensionService.suspend_user(
            db, actor, user_id, reason, suspension_type, end_date, sink=self.sink
        )

    def lift_suspension(
        self, db: Session, actor: Actor, suspension_id: int
    ) -> UserSuspension:
        return SuspensionService.lift_suspension(db, actor, suspension_id, sink=self.sink)

    def list_suspensions(
        self, db: Session, actor: Actor, filters: Optional[SuspensionFilter] = None
    ) -> list[UserSuspension]:
        return SuspensionService.list_suspensions(db, actor, filters)

    def is_user_suspended(self, db: Session, user_id: int) -> bool:
        return SuspensionService.is_user_suspended(db, user_id)

    def get_active_suspension(
        self, db: Session, user_id: int
    ) -> Optional[UserSuspension]:
        return SuspensionService.get_active_suspension(db, user_id)

    # ------------------------------------------------------------------
    # Risk
    # ------------------------------------------------------------------

    def get_user_risk_profile(
        self, db: Session, actor: Actor, user_id: int
    ) -> RiskProfile:
        return RiskService.get_user_risk_profile(db, actor, user_id, self.marketplace)

    def get_system_statistics(self, db: Session, actor: Actor) -> SystemStatistics:
        return RiskService.get_system_statistics(db, actor)
