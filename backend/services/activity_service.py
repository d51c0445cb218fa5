"""
Service for suspicious activity review.

Findings are created only by the detection rules (services.detection_service);
moderators can only review or dismiss them, once.
"""

from typing import Optional

from sqlalchemy.orm import Session

from helpers.time_utils import utc_now
from models.exceptions import SuspiciousActivityNotFoundException, ValidationException
from models.schemas import Actor, ActivityFilter
from repositories.base import storage_guard
from repositories.db_models import ActivityStatus, CaseEntityType, SuspiciousActivity
from repositories.suspicious_activity_repository import SuspiciousActivityRepository
from services.authorization import require_moderator
from services.case_transitions import CaseTransitionService, review_stamp
from services.collaborators import TransitionSink

REVIEW_OUTCOMES = (ActivityStatus.REVIEWED, ActivityStatus.DISMISSED)


class ActivityService:
    """Service for suspicious activity operations."""

    @staticmethod
    def review_activity(
        db: Session,
        actor: Actor,
        activity_id: int,
        status: ActivityStatus,
        notes: Optional[str] = None,
        sink: Optional[TransitionSink] = None,
    ) -> SuspiciousActivity:
        """
        Review or dismiss a pending finding.

        Args:
            db: Database session
            actor: Moderator or admin
            activity_id: Finding to review
            status: reviewed or dismissed
            notes: Optional reviewer notes
            sink: Transition sink

        Returns:
            Updated finding

        Raises:
            InvalidRoleException: If the caller is not a moderator
            ValidationException: If status is not reviewed/dismissed
            SuspiciousActivityNotFoundException: If the finding does not exist
            InvalidTransitionException: If the finding was already reviewed
        """
        require_moderator(actor, "review suspicious activity")
        if status not in REVIEW_OUTCOMES:
            raise ValidationException(
                "Review status must be one of: reviewed, dismissed"
            )

        notes = notes.strip() if notes else None
        return CaseTransitionService.transition(
            db,
            SuspiciousActivityRepository(db),
            CaseEntityType.SUSPICIOUS_ACTIVITY,
            activity_id,
            (ActivityStatus.PENDING,),
            status,
            actor,
            SuspiciousActivityNotFoundException,
            values=review_stamp(actor, notes, utc_now()),
            sink=sink,
        )

    @staticmethod
    def list_suspicious_activities(
        db: Session, actor: Actor, filters: Optional[ActivityFilter] = None
    ) -> list[SuspiciousActivity]:
        """
        List findings by the first filter key given (user_id, severity, status, type).

        Without a key, returns pending high and critical findings.
        """
        require_moderator(actor, "list suspicious activity")
        filters = filters or ActivityFilter()
        repo = SuspiciousActivityRepository(db)
        key, value = filters.selected()
        skip, limit = filters.skip, filters.limit

        with storage_guard(db, "list_suspicious_activities"):
            if key == "user_id":
                return repo.list_by_user(value, skip, limit)
            if key == "severity":
                return repo.list_by_severity(value, skip, limit)
            if key == "status":
                return repo.list_by_status(value, skip, limit)
            if key == "type":
                return repo.list_by_type(value, skip, limit)
            return repo.list_high_priority(skip, limit)
