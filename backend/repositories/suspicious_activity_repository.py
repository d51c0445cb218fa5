"""
Repository for suspicious activity operations.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import case
from sqlalchemy.orm import Session

from repositories.base import BaseRepository, clamp_page
from repositories.db_models import (
    ActivitySeverity,
    ActivityStatus,
    ActivityType,
    SuspiciousActivity,
)

ESCALATED_SEVERITIES = (ActivitySeverity.HIGH, ActivitySeverity.CRITICAL)


class SuspiciousActivityRepository(BaseRepository[SuspiciousActivity]):
    """Repository for suspicious activity data access."""

    def __init__(self, db: Session):
        super().__init__(SuspiciousActivity, db)

    def find_pending_for_user(
        self, user_id: int, activity_type: ActivityType, since: datetime
    ) -> Optional[SuspiciousActivity]:
        """
        Find a pending finding of the given rule for a user created since `since`.

        Args:
            user_id: Flagged user
            activity_type: Rule that produced the finding
            since: Start of the de-duplication window

        Returns:
            The pending finding, or None
        """
        return (
            self.db.query(SuspiciousActivity)
            .filter(
                SuspiciousActivity.user_id == user_id,
                SuspiciousActivity.activity_type == activity_type,
                SuspiciousActivity.status == ActivityStatus.PENDING,
                SuspiciousActivity.created_at >= since,
            )
            .first()
        )

    def find_pending_for_listing(
        self, listing_id: int, activity_type: ActivityType
    ) -> Optional[SuspiciousActivity]:
        """Find a pending finding of the given rule for a listing."""
        return (
            self.db.query(SuspiciousActivity)
            .filter(
                SuspiciousActivity.listing_id == listing_id,
                SuspiciousActivity.activity_type == activity_type,
                SuspiciousActivity.status == ActivityStatus.PENDING,
            )
            .first()
        )

    def get_pending_for_user(self, user_id: int) -> list[SuspiciousActivity]:
        """Get all pending findings about a user."""
        return (
            self.db.query(SuspiciousActivity)
            .filter(
                SuspiciousActivity.user_id == user_id,
                SuspiciousActivity.status == ActivityStatus.PENDING,
            )
            .all()
        )

    def count_pending(self) -> int:
        """Count findings awaiting review."""
        return (
            self.db.query(SuspiciousActivity)
            .filter(SuspiciousActivity.status == ActivityStatus.PENDING)
            .count()
        )

    # ------------------------------------------------------------------
    # Listing views
    # ------------------------------------------------------------------

    def _page(self, query, skip: int, limit: int) -> list[SuspiciousActivity]:
        skip, limit = clamp_page(skip, limit)
        return (
            query.order_by(
                SuspiciousActivity.created_at.desc(), SuspiciousActivity.id.desc()
            )
            .offset(skip)
            .limit(limit)
            .all()
        )

    def list_by_user(
        self, user_id: int, skip: int = 0, limit: int = 100
    ) -> list[SuspiciousActivity]:
        """List findings about a user, newest first."""
        return self._page(
            self.db.query(SuspiciousActivity).filter(
                SuspiciousActivity.user_id == user_id
            ),
            skip,
            limit,
        )

    def list_by_severity(
        self, severity: ActivitySeverity, skip: int = 0, limit: int = 100
    ) -> list[SuspiciousActivity]:
        """List findings of a severity, newest first."""
        return self._page(
            self.db.query(SuspiciousActivity).filter(
                SuspiciousActivity.severity == severity
            ),
            skip,
            limit,
        )

    def list_by_status(
        self, status: ActivityStatus, skip: int = 0, limit: int = 100
    ) -> list[SuspiciousActivity]:
        """List findings in a status, newest first."""
        return self._page(
            self.db.query(SuspiciousActivity).filter(
                SuspiciousActivity.status == status
            ),
            skip,
            limit,
        )

    def list_by_type(
        self, activity_type: ActivityType, skip: int = 0, limit: int = 100
    ) -> list[SuspiciousActivity]:
        """List findings of a rule, newest first."""
        return self._page(
            self.db.query(SuspiciousActivity).filter(
                SuspiciousActivity.activity_type == activity_type
            ),
            skip,
            limit,
        )

    def list_high_priority(
        self, skip: int = 0, limit: int = 100
    ) -> list[SuspiciousActivity]:
        """Pending high/critical findings, critical first, newest first."""
        skip, limit = clamp_page(skip, limit)
        critical_first = case(
            (SuspiciousActivity.severity == ActivitySeverity.CRITICAL, 0), else_=1
        )
        return (
            self.db.query(SuspiciousActivity)
            .filter(
                SuspiciousActivity.status == ActivityStatus.PENDING,
                SuspiciousActivity.severity.in_(ESCALATED_SEVERITIES),
            )
            .order_by(
                critical_first,
                SuspiciousActivity.created_at.desc(),
                SuspiciousActivity.id.desc(),
            )
            .offset(skip)
            .limit(limit)
            .all()
        )
