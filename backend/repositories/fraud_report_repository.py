"""
Repository for fraud report operations.
"""

from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from repositories.base import BaseRepository, clamp_page
from repositories.db_models import (
    FraudReport,
    FraudReportStatus,
    FraudReportType,
)

# Reports that still need a moderator
UNRESOLVED_STATUSES = (FraudReportStatus.OPEN, FraudReportStatus.ASSIGNED)

# Types routed to a moderator immediately on submission
HIGH_PRIORITY_TYPES = (FraudReportType.FAKE_LISTING, FraudReportType.PAYMENT_FRAUD)


class FraudReportRepository(BaseRepository[FraudReport]):
    """Repository for fraud report data access."""

    def __init__(self, db: Session):
        super().__init__(FraudReport, db)

    def find_unresolved_duplicate(
        self,
        reporter_id: int,
        report_type: FraudReportType,
        reported_user_id: Optional[int],
        listing_id: Optional[int],
        transaction_id: Optional[int],
    ) -> Optional[FraudReport]:
        """
        Find an open or assigned report by the same reporter for the same target.

        Args:
            reporter_id: Reporting user
            report_type: Report type
            reported_user_id: Target user, if any
            listing_id: Target listing, if any
            transaction_id: Target transaction, if any

        Returns:
            The existing report, or None
        """
        query = self.db.query(FraudReport).filter(
            FraudReport.reporter_id == reporter_id,
            FraudReport.type == report_type,
            FraudReport.status.in_(UNRESOLVED_STATUSES),
        )
        for column, value in (
            (FraudReport.reported_user_id, reported_user_id),
            (FraudReport.listing_id, listing_id),
            (FraudReport.transaction_id, transaction_id),
        ):
            query = query.filter(column.is_(None) if value is None else column == value)
        return query.first()

    def count_open_assignments(self, moderator_ids: list[int]) -> dict[int, int]:
        """
        Count assigned, unresolved reports per moderator.

        Moderators with no assignments are included with a count of 0.
        """
        counts = {moderator_id: 0 for moderator_id in moderator_ids}
        if not moderator_ids:
            return counts

        rows = (
            self.db.query(FraudReport.assigned_to, func.count(FraudReport.id))
            .filter(
                FraudReport.assigned_to.in_(moderator_ids),
                FraudReport.status == FraudReportStatus.ASSIGNED,
            )
            .group_by(FraudReport.assigned_to)
            .all()
        )
        for moderator_id, count in rows:
            counts[moderator_id] = count
        return counts

    def get_unresolved_against_user(self, user_id: int) -> list[FraudReport]:
        """Get open or assigned reports naming the user."""
        return (
            self.db.query(FraudReport)
            .filter(
                FraudReport.reported_user_id == user_id,
                FraudReport.status.in_(UNRESOLVED_STATUSES),
            )
            .all()
        )

    def count_resolved_against_user(self, user_id: int) -> int:
        """Count reports against the user that a moderator upheld."""
        return (
            self.db.query(FraudReport)
            .filter(
                FraudReport.reported_user_id == user_id,
                FraudReport.status == FraudReportStatus.RESOLVED,
            )
            .count()
        )

    def count_by_status(self, status: FraudReportStatus) -> int:
        """Count reports in a given status."""
        return self.db.query(FraudReport).filter(FraudReport.status == status).count()

    # ------------------------------------------------------------------
    # Listing views
    # ------------------------------------------------------------------

    def _page(self, query, skip: int, limit: int) -> list[FraudReport]:
        skip, limit = clamp_page(skip, limit)
        return (
            query.order_by(FraudReport.created_at.desc(), FraudReport.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def list_by_status(
        self, status: FraudReportStatus, skip: int = 0, limit: int = 100
    ) -> list[FraudReport]:
        """List reports in a status, newest first."""
        return self._page(
            self.db.query(FraudReport).filter(FraudReport.status == status),
            skip,
            limit,
        )

    def list_by_assignee(
        self, moderator_id: int, skip: int = 0, limit: int = 100
    ) -> list[FraudReport]:
        """List reports assigned to a moderator, newest first."""
        return self._page(
            self.db.query(FraudReport).filter(FraudReport.assigned_to == moderator_id),
            skip,
            limit,
        )

    def list_by_reported_user(
        self, user_id: int, skip: int = 0, limit: int = 100
    ) -> list[FraudReport]:
        """List reports naming a user, newest first."""
        return self._page(
            self.db.query(FraudReport).filter(FraudReport.reported_user_id == user_id),
            skip,
            limit,
        )

    def list_by_type(
        self, report_type: FraudReportType, skip: int = 0, limit: int = 100
    ) -> list[FraudReport]:
        """List reports of a type, newest first."""
        return self._page(
            self.db.query(FraudReport).filter(FraudReport.type == report_type),
            skip,
            limit,
        )

    def list_review_queue(self, skip: int = 0, limit: int = 100) -> list[FraudReport]:
        """
        Moderation queue: unresolved reports, high-priority types first, oldest first.
        """
        skip, limit = clamp_page(skip, limit)
        priority = case((FraudReport.type.in_(HIGH_PRIORITY_TYPES), 0), else_=1)
        return (
            self.db.query(FraudReport)
            .filter(FraudReport.status.in_(UNRESOLVED_STATUSES))
            .order_by(priority, FraudReport.created_at.asc(), FraudReport.id.asc())
            .offset(skip)
            .limit(limit)
            .all()
        )
