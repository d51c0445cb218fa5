"""
Unit tests for ActivityService.
"""

import pytest

from models.exceptions import (
    InvalidRoleException,
    InvalidTransitionException,
    SuspiciousActivityNotFoundException,
    ValidationException,
)
from models.schemas import ActivityFilter
from repositories.db_models import (
    ActivitySeverity,
    ActivityStatus,
    ActivityType,
    SuspiciousActivity,
)
from services.activity_service import ActivityService


def _finding(
    db,
    user_id: int = 3,
    severity: ActivitySeverity = ActivitySeverity.HIGH,
    activity_type: ActivityType = ActivityType.RAPID_LISTING,
    status: ActivityStatus = ActivityStatus.PENDING,
) -> SuspiciousActivity:
    activity = SuspiciousActivity(
        user_id=user_id,
        activity_type=activity_type,
        severity=severity,
        description="User created 25 listings in the past 24 hours",
        evidence={"listing_count": 25},
        status=status,
    )
    db.add(activity)
    db.commit()
    db.refresh(activity)
    return activity


class TestReviewActivity:
    """Tests for ActivityService.review_activity"""

    def test_review_pending_finding(self, db_session, moderator_actor, sink):
        activity = _finding(db_session)

        reviewed = ActivityService.review_activity(
            db_session,
            moderator_actor,
            activity.id,
            ActivityStatus.REVIEWED,
            notes="  Confirmed bot account  ",
            sink=sink,
        )

        assert reviewed.status == ActivityStatus.REVIEWED
        assert reviewed.reviewed_by == moderator_actor.user_id
        assert reviewed.reviewed_at is not None
        assert reviewed.review_notes == "Confirmed bot account"
        assert sink.events[-1].from_status == "pending"
        assert sink.events[-1].to_status == "reviewed"
        assert sink.events[-1].severity == ActivitySeverity.HIGH

    def test_dismiss_pending_finding(self, db_session, moderator_actor):
        activity = _finding(db_session)

        dismissed = ActivityService.review_activity(
            db_session, moderator_actor, activity.id, ActivityStatus.DISMISSED
        )

        assert dismissed.status == ActivityStatus.DISMISSED
        assert dismissed.review_notes is None

    def test_second_review_rejected_and_first_stamp_kept(
        self, db_session, moderator_actor, admin_actor
    ):
        """A finding can be reviewed once."""
        activity = _finding(db_session)
        first = ActivityService.review_activity(
            db_session, moderator_actor, activity.id, ActivityStatus.REVIEWED
        )
        first_reviewed_at = first.reviewed_at

        with pytest.raises(InvalidTransitionException) as exc_info:
            ActivityService.review_activity(
                db_session, admin_actor, activity.id, ActivityStatus.DISMISSED
            )

        assert exc_info.value.current_status == "reviewed"
        db_session.refresh(activity)
        assert activity.status == ActivityStatus.REVIEWED
        assert activity.reviewed_by == moderator_actor.user_id
        assert activity.reviewed_at == first_reviewed_at

    def test_pending_is_not_a_review_outcome(self, db_session, moderator_actor):
        activity = _finding(db_session)

        with pytest.raises(ValidationException):
            ActivityService.review_activity(
                db_session, moderator_actor, activity.id, ActivityStatus.PENDING
            )

    def test_user_cannot_review(self, db_session, user_actor):
        activity = _finding(db_session)

        with pytest.raises(InvalidRoleException):
            ActivityService.review_activity(
                db_session, user_actor, activity.id, ActivityStatus.REVIEWED
            )

    def test_role_checked_before_existence(self, db_session, user_actor):
        """An under-privileged caller learns nothing about missing findings."""
        with pytest.raises(InvalidRoleException):
            ActivityService.review_activity(
                db_session, user_actor, 99999, ActivityStatus.REVIEWED
            )

    def test_review_not_found(self, db_session, moderator_actor):
        with pytest.raises(SuspiciousActivityNotFoundException):
            ActivityService.review_activity(
                db_session, moderator_actor, 99999, ActivityStatus.REVIEWED
            )


class TestListSuspiciousActivities:
    """Tests for ActivityService.list_suspicious_activities"""

    def test_default_lists_pending_high_and_critical(self, db_session, moderator_actor):
        _finding(db_session, severity=ActivitySeverity.LOW)
        high = _finding(db_session, severity=ActivitySeverity.HIGH)
        critical = _finding(db_session, severity=ActivitySeverity.CRITICAL)
        _finding(
            db_session,
            severity=ActivitySeverity.CRITICAL,
            status=ActivityStatus.DISMISSED,
        )

        result = ActivityService.list_suspicious_activities(db_session, moderator_actor)

        assert [a.id for a in result] == [critical.id, high.id]

    def test_filter_by_user(self, db_session, moderator_actor):
        mine = _finding(db_session, user_id=7)
        _finding(db_session, user_id=8)

        result = ActivityService.list_suspicious_activities(
            db_session, moderator_actor, ActivityFilter(user_id=7)
        )

        assert [a.id for a in result] == [mine.id]

    def test_filter_by_type(self, db_session, moderator_actor):
        _finding(db_session, activity_type=ActivityType.RAPID_LISTING)
        images = _finding(db_session, activity_type=ActivityType.DUPLICATE_IMAGES)

        result = ActivityService.list_suspicious_activities(
            db_session,
            moderator_actor,
            ActivityFilter(type=ActivityType.DUPLICATE_IMAGES),
        )

        assert [a.id for a in result] == [images.id]

    def test_first_key_wins(self, db_session, moderator_actor):
        """severity is declared before status, so status is ignored."""
        low = _finding(db_session, severity=ActivitySeverity.LOW)
        _finding(db_session, severity=ActivitySeverity.HIGH)

        result = ActivityService.list_suspicious_activities(
            db_session,
            moderator_actor,
            ActivityFilter(
                severity=ActivitySeverity.LOW, status=ActivityStatus.DISMISSED
            ),
        )

        assert [a.id for a in result] == [low.id]

    def test_pagination(self, db_session, moderator_actor):
        ids = [_finding(db_session, user_id=7).id for _ in range(5)]

        page = ActivityService.list_suspicious_activities(
            db_session, moderator_actor, ActivityFilter(user_id=7, skip=1, limit=2)
        )

        assert [a.id for a in page] == list(reversed(ids))[1:3]

    def test_user_cannot_list(self, db_session, user_actor):
        with pytest.raises(InvalidRoleException):
            ActivityService.list_suspicious_activities(db_session, user_actor)
