"""
Service for user suspension business logic.
"""

from datetime import datetime, timedelta
from typing import Optional

from loguru import logger
from sqlalchemy.orm import Session

from helpers.keyed_lock import suspension_locks
from helpers.time_utils import ensure_utc, utc_now
from models.exceptions import (
    SuspensionNotFoundException,
    UserAlreadySuspendedException,
    ValidationException,
)
from models.schemas import Actor, SuspensionFilter
from repositories.base import storage_guard
from repositories.case_transition_repository import CaseTransitionRepository
from repositories.db_models import (
    CaseEntityType,
    SuspensionType,
    UserSuspension,
)
from repositories.user_suspension_repository import UserSuspensionRepository
from services.authorization import require_admin, require_moderator, system_actor
from services.case_transitions import CaseTransitionService, build_event
from services.collaborators import TransitionSink

# Audit trail statuses; suspensions have no stored status column
SUSPENSION_ACTIVE = "active"
SUSPENSION_EXPIRED = "expired"
SUSPENSION_LIFTED = "lifted"


class SuspensionService:
    """Service for suspension operations."""

    @staticmethod
    def _resolve_end_date(
        suspension_type: SuspensionType,
        end_date: Optional[datetime],
        now: datetime,
    ) -> Optional[datetime]:
        """
        Validate and normalize the end date for a suspension type.

        Raises:
            ValidationException: If a temporary suspension has no future end
                date, or a warning carries a past one
        """
        if suspension_type == SuspensionType.PERMANENT:
            return None

        if end_date is None:
            if suspension_type == SuspensionType.TEMPORARY:
                raise ValidationException(
                    "A temporary suspension requires an end date"
                )
            return None

        end_date = ensure_utc(end_date)
        if end_date <= now:
            raise ValidationException("Suspension end date must be in the future")
        return end_date

    @staticmethod
    def suspend_user(
        db: Session,
        actor: Actor,
        user_id: int,
        reason: str,
        suspension_type: SuspensionType,
        end_date: Optional[datetime] = None,
        sink: Optional[TransitionSink] = None,
    ) -> UserSuspension:
        """
        Suspend or warn a user.

        Args:
            db: Database session
            actor: Caller, must be an admin
            user_id: User to suspend
            reason: Reason shown to the user
            suspension_type: temporary, permanent or warning
            end_date: Required for temporary, ignored for permanent
            sink: Transition sink notified of the enforcement intent

        Returns:
            Created suspension

        Raises:
            InvalidRoleException: If the caller is not an admin
            ValidationException: If the reason or end date is invalid
            UserAlreadySuspendedException: If an exclusive suspension is active
        """
        require_admin(actor, "suspend users")

        reason = (reason or "").strip()
        if not reason:
            raise ValidationException("A suspension reason is required")

        now = utc_now()
        end_date = SuspensionService._resolve_end_date(suspension_type, end_date, now)

        suspension = UserSuspension(
            user_id=user_id,
            reason=reason,
            suspended_by=actor.user_id,
            suspension_type=suspension_type,
            start_date=now,
            end_date=end_date,
        )

        if not suspension_type.is_exclusive:
            created = CaseTransitionService.record_creation(
                db,
                CaseEntityType.USER_SUSPENSION,
                suspension,
                actor.user_id,
                sink=sink,
                note=suspension_type.value,
                status=SUSPENSION_ACTIVE,
            )
            logger.info(f"Warning {created.id} issued to user {user_id}")
            return created

        repo = UserSuspensionRepository(db)
        with suspension_locks.hold(user_id):
            with storage_guard(db, "check_active_suspension"):
                existing = repo.get_active_exclusive(user_id, now)
            if existing is not None:
                raise UserAlreadySuspendedException(
                    user_id, existing.id, existing.end_date
                )

            created = CaseTransitionService.record_creation(
                db,
                CaseEntityType.USER_SUSPENSION,
                suspension,
                actor.user_id,
                sink=sink,
                note=suspension_type.value,
                status=SUSPENSION_ACTIVE,
            )

        logger.info(
            f"User {user_id} suspended ({suspension_type.value}) by {actor.user_id}, "
            f"suspension {created.id}"
        )
        return created

    @staticmethod
    def issue_system_suspension(
        db: Session,
        user_id: int,
        reason: str,
        duration: timedelta,
        sink: Optional[TransitionSink] = None,
    ) -> Optional[UserSuspension]:
        """
        Temporary suspension issued by automatic enforcement.

        An existing active suspension makes this a logged no-op.

        Returns:
            The created suspension, or None if the user was already suspended
        """
        try:
            return SuspensionService.suspend_user(
                db,
                system_actor(),
                user_id,
                reason,
                SuspensionType.TEMPORARY,
                end_date=utc_now() + duration,
                sink=sink,
            )
        except UserAlreadySuspendedException as e:
            logger.info(f"Automatic suspension skipped for user {user_id}: {e.message}")
            return None

    @staticmethod
    def lift_suspension(
        db: Session,
        actor: Actor,
        suspension_id: int,
        sink: Optional[TransitionSink] = None,
    ) -> UserSuspension:
        """
        Lift a suspension. Lifting twice keeps the first lifted_at.

        Raises:
            InvalidRoleException: If the caller is not an admin
            SuspensionNotFoundException: If the suspension does not exist
        """
        require_admin(actor, "lift suspensions")

        repo = UserSuspensionRepository(db)
        transitions = CaseTransitionRepository(db)
        now = utc_now()

        with storage_guard(db, "lift_suspension"):
            suspension = repo.get_by_id(suspension_id)
            if suspension is None:
                raise SuspensionNotFoundException(suspension_id)
            if suspension.lifted_at is not None:
                return suspension

            from_status = (
                SUSPENSION_ACTIVE if suspension.is_active_at(now) else SUSPENSION_EXPIRED
            )
            if not repo.mark_lifted(suspension_id, actor.user_id, now):
                db.rollback()
                db.refresh(suspension)
                return suspension

            row = transitions.record(
                CaseEntityType.USER_SUSPENSION,
                suspension_id,
                from_status,
                SUSPENSION_LIFTED,
                actor.user_id,
            )
            db.commit()
            db.refresh(suspension)
            occurred_at = row.occurred_at

        logger.info(f"Suspension {suspension_id} lifted by {actor.user_id}")
        CaseTransitionService.publish(
            sink,
            build_event(
                CaseEntityType.USER_SUSPENSION,
                suspension,
                from_status,
                SUSPENSION_LIFTED,
                actor.user_id,
                occurred_at,
            ),
        )
        return suspension

    @staticmethod
    def get_active_suspension(
        db: Session, user_id: int
    ) -> Optional[UserSuspension]:
        """
        Get the user's active temporary or permanent suspension.

        This is the query consumed by session enforcement.
        """
        with storage_guard(db, "get_active_suspension"):
            return UserSuspensionRepository(db).get_active_exclusive(user_id)

    @staticmethod
    def is_user_suspended(db: Session, user_id: int) -> bool:
        """Whether the user is currently blocked. Warnings do not block."""
        return SuspensionService.get_active_suspension(db, user_id) is not None

    @staticmethod
    def list_suspensions(
        db: Session, actor: Actor, filters: Optional[SuspensionFilter] = None
    ) -> list[UserSuspension]:
        """
        List suspensions by the first filter key given (user_id, active, type).

        Without a key, returns the currently active suspensions.
        """
        require_moderator(actor, "list suspensions")
        filters = filters or SuspensionFilter()
        repo = UserSuspensionRepository(db)
        key, value = filters.selected()
        skip, limit = filters.skip, filters.limit

        with storage_guard(db, "list_suspensions"):
            if key == "user_id":
                return repo.list_by_user(value, skip, limit)
            if key == "active":
                return repo.list_by_activity(value, skip, limit)
            if key == "type":
                return repo.list_by_type(value, skip, limit)
            return repo.list_by_activity(True, skip, limit)
