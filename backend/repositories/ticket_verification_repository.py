"""
Repository for ticket verification operations.
"""

from sqlalchemy.orm import Session

from repositories.base import BaseRepository, clamp_page
from repositories.db_models import (
    TicketVerification,
    VerificationMethod,
    VerificationStatus,
)

AWAITING_REVIEW_STATUSES = (
    VerificationStatus.PENDING,
    VerificationStatus.REQUIRES_MANUAL_REVIEW,
)


class TicketVerificationRepository(BaseRepository[TicketVerification]):
    """Repository for ticket verification data access."""

    def __init__(self, db: Session):
        super().__init__(TicketVerification, db)

    def count_rejected_for_listings(self, listing_ids: list[int]) -> int:
        """Count rejected verification records across the given listings."""
        if not listing_ids:
            return 0
        return (
            self.db.query(TicketVerification)
            .filter(
                TicketVerification.listing_id.in_(listing_ids),
                TicketVerification.status == VerificationStatus.REJECTED,
            )
            .count()
        )

    def count_awaiting_review(self) -> int:
        """Count records a moderator still has to decide."""
        return (
            self.db.query(TicketVerification)
            .filter(TicketVerification.status.in_(AWAITING_REVIEW_STATUSES))
            .count()
        )

    # ------------------------------------------------------------------
    # Listing views
    # ------------------------------------------------------------------

    def _page(self, query, skip: int, limit: int) -> list[TicketVerification]:
        skip, limit = clamp_page(skip, limit)
        return (
            query.order_by(
                TicketVerification.created_at.desc(), TicketVerification.id.desc()
            )
            .offset(skip)
            .limit(limit)
            .all()
        )

    def list_by_listing(
        self, listing_id: int, skip: int = 0, limit: int = 100
    ) -> list[TicketVerification]:
        """Verification history of a listing, newest first."""
        return self._page(
            self.db.query(TicketVerification).filter(
                TicketVerification.listing_id == listing_id
            ),
            skip,
            limit,
        )

    def list_by_status(
        self, status: VerificationStatus, skip: int = 0, limit: int = 100
    ) -> list[TicketVerification]:
        """List records in a status, newest first."""
        return self._page(
            self.db.query(TicketVerification).filter(
                TicketVerification.status == status
            ),
            skip,
            limit,
        )

    def list_by_method(
        self, method: VerificationMethod, skip: int = 0, limit: int = 100
    ) -> list[TicketVerification]:
        """List records produced by a method, newest first."""
        return self._page(
            self.db.query(TicketVerification).filter(
                TicketVerification.method == method
            ),
            skip,
            limit,
        )

    def list_review_queue(
        self, skip: int = 0, limit: int = 100
    ) -> list[TicketVerification]:
        """Records awaiting a moderator decision, oldest first."""
        skip, limit = clamp_page(skip, limit)
        return (
            self.db.query(TicketVerification)
            .filter(TicketVerification.status.in_(AWAITING_REVIEW_STATUSES))
            .order_by(TicketVerification.created_at.asc(), TicketVerification.id.asc())
            .offset(skip)
            .limit(limit)
            .all()
        )
