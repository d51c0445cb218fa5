"""Service for audit logging of case transitions."""

import json
from typing import Any, Optional

from loguru import logger

from helpers.time_utils import format_iso8601, utc_now
from models.schemas import TransitionEvent
from services.collaborators import TransitionSink


class AuditService:
    """Service for audit logging."""

    @staticmethod
    def log(
        user_id: int,
        action: str,
        target_type: Optional[str] = None,
        target_id: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Log an audit event.

        Audit lines are bound with `audit=True` so a dedicated sink can
        route them; the durable trail lives in the case_transitions table.

        Args:
            user_id: ID of the user performing the action.
            action: Type of action performed.
            target_type: Type of entity being acted upon.
            target_id: ID of the entity being acted upon.
            details: Additional details about the action.
        """
        log_entry = {
            "timestamp": format_iso8601(utc_now()),
            "user_id": user_id,
            "action": action,
            "target_type": target_type,
            "target_id": target_id,
            "details": details,
        }

        logger.bind(audit=True).info(f"AUDIT: {json.dumps(log_entry, default=str)}")


class AuditTransitionSink(TransitionSink):
    """Writes every transition as a structured audit line."""

    def publish(self, event: TransitionEvent) -> None:
        AuditService.log(
            user_id=event.actor_id,
            action=f"{event.entity_type.value}.{event.to_status}",
            target_type=event.entity_type.value,
            target_id=event.entity_id,
            details={
                "from_status": event.from_status,
                "subject_user_id": event.subject_user_id,
                "listing_id": event.listing_id,
                "occurred_at": format_iso8601(event.occurred_at),
            },
        )
