"""
Repository for user suspension operations.

Activity is never stored; every query here filters with
UserSuspension.active_clause(now).
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from helpers.time_utils import utc_now
from repositories.base import BaseRepository, clamp_page
from repositories.db_models import (
    EXCLUSIVE_SUSPENSION_TYPES,
    SuspensionType,
    UserSuspension,
)


class UserSuspensionRepository(BaseRepository[UserSuspension]):
    """Repository for user suspension data access."""

    def __init__(self, db: Session):
        super().__init__(UserSuspension, db)

    def get_active_exclusive(
        self, user_id: int, now: Optional[datetime] = None
    ) -> Optional[UserSuspension]:
        """
        Get the user's active temporary or permanent suspension.

        Args:
            user_id: User to check
            now: Evaluation time, defaults to the current time

        Returns:
            Active suspension if exists, None otherwise
        """
        moment = now or utc_now()
        return (
            self.db.query(UserSuspension)
            .filter(
                UserSuspension.user_id == user_id,
                UserSuspension.suspension_type.in_(EXCLUSIVE_SUSPENSION_TYPES),
                UserSuspension.active_clause(moment),
            )
            .order_by(UserSuspension.start_date.desc())
            .first()
        )

    def mark_lifted(self, suspension_id: int, lifted_by: int, now: datetime) -> bool:
        """
        Stamp lifted_at/lifted_by unless already lifted, without committing.

        Returns:
            True if this call lifted the suspension
        """
        updated = (
            self.db.query(UserSuspension)
            .filter(
                UserSuspension.id == suspension_id,
                UserSuspension.lifted_at.is_(None),
            )
            .update(
                {"lifted_at": now, "lifted_by": lifted_by},
                synchronize_session=False,
            )
        )
        return updated == 1

    def get_user_suspensions(self, user_id: int) -> list[UserSuspension]:
        """Full suspension history of a user, newest first."""
        return (
            self.db.query(UserSuspension)
            .filter(UserSuspension.user_id == user_id)
            .order_by(UserSuspension.start_date.desc(), UserSuspension.id.desc())
            .all()
        )

    def count_active(
        self, types: tuple[SuspensionType, ...], now: Optional[datetime] = None
    ) -> int:
        """Count suspensions of the given types that are active at `now`."""
        moment = now or utc_now()
        return (
            self.db.query(UserSuspension)
            .filter(
                UserSuspension.suspension_type.in_(types),
                UserSuspension.active_clause(moment),
            )
            .count()
        )

    # ------------------------------------------------------------------
    # Listing views
    # ------------------------------------------------------------------

    def _page(self, query, skip: int, limit: int) -> list[UserSuspension]:
        skip, limit = clamp_page(skip, limit)
        return (
            query.order_by(UserSuspension.start_date.desc(), UserSuspension.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def list_by_user(
        self, user_id: int, skip: int = 0, limit: int = 100
    ) -> list[UserSuspension]:
        """List a user's suspensions, newest first."""
        return self._page(
            self.db.query(UserSuspension).filter(UserSuspension.user_id == user_id),
            skip,
            limit,
        )

    def list_by_activity(
        self,
        active: bool,
        skip: int = 0,
        limit: int = 100,
        now: Optional[datetime] = None,
    ) -> list[UserSuspension]:
        """List suspensions that are (or are no longer) active at `now`."""
        clause = UserSuspension.active_clause(now or utc_now())
        return self._page(
            self.db.query(UserSuspension).filter(clause if active else ~clause),
            skip,
            limit,
        )

    def list_by_type(
        self, suspension_type: SuspensionType, skip: int = 0, limit: int = 100
    ) -> list[UserSuspension]:
        """List suspensions of a type, newest first."""
        return self._page(
            self.db.query(UserSuspension).filter(
                UserSuspension.suspension_type == suspension_type
            ),
            skip,
            limit,
        )
