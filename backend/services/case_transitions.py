"""
Shared state machine for reviewable cases.

Fraud reports, suspicious activities and ticket verifications all move
through a status column under the same rules:

- the precondition read raises NotFound or InvalidTransition,
- the write is a compare-and-set on the status and row version that were
  read, so of two racing callers at most one wins, including two
  reassignments that leave the status unchanged,
- the status change and its case_transitions row commit together,
- the committed transition is published to the sink; sink failures are
  logged and never undo or fail the transition.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from loguru import logger
from sqlalchemy.orm import Session

from core.sentry_config import capture_internal_error
from helpers.time_utils import utc_now
from models.exceptions import (
    DomainException,
    InvalidTransitionException,
    NotFoundException,
)
from models.schemas import Actor, TransitionEvent
from repositories.base import BaseRepository, storage_guard
from repositories.case_transition_repository import CaseTransitionRepository
from repositories.db_models import (
    CaseEntityType,
    FraudReport,
    SuspiciousActivity,
    TicketVerification,
    UserSuspension,
)
from services.collaborators import TransitionSink


def _status_value(status: Any) -> Optional[str]:
    if status is None:
        return None
    return status.value if isinstance(status, Enum) else str(status)


def review_stamp(actor: Actor, notes: Optional[str], now: datetime) -> dict[str, Any]:
    """Reviewer columns written by every terminal review."""
    return {"reviewed_by": actor.user_id, "reviewed_at": now, "review_notes": notes}


@contextmanager
def after_commit(operation: str, **context: Any) -> Iterator[None]:
    """
    Run follow-up work of a change that is already committed.

    Domain failures inside the block are logged and reported to Sentry but
    not raised: the caller's change stands and must be reported as done.

    Args:
        operation: Short name used in logs and Sentry tags
        context: Extra Sentry tags (IDs only)
    """
    try:
        yield
    except DomainException as e:
        logger.error(f"{operation} failed after commit ({e.kind}): {e.message}")
        capture_internal_error(e, operation=operation, **context)


def build_event(
    entity_type: CaseEntityType,
    entity: Any,
    from_status: Optional[str],
    to_status: str,
    actor_id: int,
    occurred_at: datetime,
    note: Optional[str] = None,
) -> TransitionEvent:
    """Describe a committed change of `entity` for the transition sink."""
    subject_user_id = None
    listing_id = None
    severity = None
    if isinstance(entity, FraudReport):
        subject_user_id = entity.reported_user_id
        listing_id = entity.listing_id
    elif isinstance(entity, SuspiciousActivity):
        subject_user_id = entity.user_id
        listing_id = entity.listing_id
        severity = entity.severity
    elif isinstance(entity, TicketVerification):
        listing_id = entity.listing_id
    elif isinstance(entity, UserSuspension):
        subject_user_id = entity.user_id

    return TransitionEvent(
        entity_type=entity_type,
        entity_id=entity.id,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor_id,
        occurred_at=occurred_at,
        subject_user_id=subject_user_id,
        listing_id=listing_id,
        severity=severity,
        note=note,
    )


class CaseTransitionService:
    """Shared transition and creation routines for every case kind."""

    @staticmethod
    def publish(sink: Optional[TransitionSink], event: TransitionEvent) -> None:
        """
        Hand a committed event to the sink.

        Sink failures are logged and swallowed.
        """
        if sink is None:
            return
        try:
            sink.publish(event)
        except Exception as e:
            logger.warning(
                f"Transition sink failed for {event.entity_type.value} "
                f"{event.entity_id} ({event.to_status}): {e}"
            )

    @staticmethod
    def record_creation(
        db: Session,
        entity_type: CaseEntityType,
        entity: Any,
        actor_id: int,
        sink: Optional[TransitionSink] = None,
        note: Optional[str] = None,
        status: Any = None,
    ) -> Any:
        """
        Persist a new case together with its creation transition row.

        Args:
            db: Database session
            entity_type: Kind of case
            entity: Unsaved ORM instance
            actor_id: Creator recorded in the audit trail
            sink: Transition sink notified after commit
            note: Optional audit note
            status: Status recorded for cases without a status column

        Returns:
            The persisted entity
        """
        transitions = CaseTransitionRepository(db)
        with storage_guard(db, f"create_{entity_type.value}"):
            db.add(entity)
            db.flush()
            to_status = _status_value(
                status if status is not None else getattr(entity, "status", None)
            )
            row = transitions.record(
                entity_type, entity.id, None, to_status, actor_id, note
            )
            db.commit()
            db.refresh(entity)
            occurred_at = row.occurred_at

        CaseTransitionService.publish(
            sink,
            build_event(entity_type, entity, None, to_status, actor_id, occurred_at, note),
        )
        return entity

    @staticmethod
    def transition(
        db: Session,
        repo: BaseRepository,
        entity_type: CaseEntityType,
        entity_id: int,
        allowed_from: Iterable[Any],
        target: Any,
        actor: Actor,
        not_found: Callable[[int], NotFoundException],
        values: Optional[dict[str, Any]] = None,
        sink: Optional[TransitionSink] = None,
        note: Optional[str] = None,
        build_values: Optional[Callable[[Any], dict[str, Any]]] = None,
    ) -> Any:
        """
        Move a case to `target` if its current status allows it.

        Args:
            db: Database session
            repo: Repository of the case kind
            entity_type: Kind of case
            entity_id: Case ID
            allowed_from: Statuses the transition may start from
            target: New status
            actor: Caller recorded in the audit trail
            not_found: Builds the NotFound exception for the case kind
            values: Extra columns written with the status
            sink: Transition sink notified after commit
            note: Optional audit note
            build_values: Derives extra columns from the row read for the
                compare-and-set, for values that depend on current state

        Returns:
            The refreshed entity

        Raises:
            NotFoundException: If the case does not exist
            InvalidTransitionException: If the current status does not allow
                the move, including when a concurrent caller moved it first
        """
        allowed = tuple(allowed_from)
        target_value = _status_value(target)
        transitions = CaseTransitionRepository(db)

        with storage_guard(db, f"transition_{entity_type.value}"):
            entity = repo.get_by_id(entity_id)
            if entity is None:
                raise not_found(entity_id)

            current = entity.status
            if current not in allowed:
                raise InvalidTransitionException(
                    entity_type.value, entity_id, _status_value(current), target_value
                )

            payload = {"status": target, **(values or {})}
            if build_values is not None:
                payload.update(build_values(entity))
            read_version = entity.version
            if not repo.update_where_status(
                entity_id, (current,), payload, expected_version=read_version
            ):
                db.rollback()
                db.refresh(entity)
                logger.info(
                    f"Stale transition rejected for {entity_type.value} {entity_id}: "
                    f"read {_status_value(current)} v{read_version}, found "
                    f"{_status_value(entity.status)} v{entity.version}"
                )
                raise InvalidTransitionException(
                    entity_type.value,
                    entity_id,
                    _status_value(entity.status),
                    target_value,
                )

            row = transitions.record(
                entity_type,
                entity_id,
                _status_value(current),
                target_value,
                actor.user_id,
                note,
            )
            db.commit()
            db.refresh(entity)
            occurred_at = row.occurred_at

        logger.info(
            f"{entity_type.value} {entity_id}: {_status_value(current)} -> "
            f"{target_value} by user {actor.user_id}"
        )
        CaseTransitionService.publish(
            sink,
            build_event(
                entity_type,
                entity,
                _status_value(current),
                target_value,
                actor.user_id,
                occurred_at or utc_now(),
                note,
            ),
        )
        return entity
