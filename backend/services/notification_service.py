"""
Case transition notifications using self-hosted ntfy.

Pushes case transitions to moderator devices and to the session-enforcement
service. Uses fire-and-forget pattern - failures are logged but don't block
the transition that produced them.
"""

import asyncio

import httpx
from loguru import logger

from models.config import settings
from models.notification_types import NotificationType
from models.schemas import TransitionEvent
from repositories.db_models import ActivitySeverity, CaseEntityType
from services.collaborators import TransitionSink


class NotificationService:
    """
    Ntfy push for case transitions.

    Nothing here raises: delivery problems are logged at warning level and
    the caller carries on.
    """

    @classmethod
    def _get_topic(cls, notification_type: NotificationType) -> str:
        prefix = settings.NTFY_TOPIC_PREFIX or "trust-safety"
        return f"{prefix}-{notification_type.topic_suffix}"

    @classmethod
    def _headers(
        cls, notification_type: NotificationType, title: str, priority: str | None
    ) -> dict[str, str]:
        """ntfy publish headers; the bearer token is added when configured."""
        headers = {
            "Title": title,
            "Priority": priority or notification_type.default_priority,
            "Tags": notification_type.tags,
        }
        if settings.NTFY_AUTH_TOKEN:
            headers["Authorization"] = f"Bearer {settings.NTFY_AUTH_TOKEN}"
        return headers

    @classmethod
    async def _send_async(
        cls,
        notification_type: NotificationType,
        title: str,
        message: str,
        priority_override: str | None = None,
    ) -> bool:
        """
        Publish one message to the topic of `notification_type`.

        Args:
            notification_type: Selects topic, default priority and tags
            title: Shown as the notification headline
            message: Plain-text body
            priority_override: One of min/low/default/high/max/urgent

        Returns:
            Whether ntfy accepted the message
        """
        if not (settings.NTFY_ENABLED and settings.NTFY_URL):
            logger.debug("Ntfy disabled, dropping transition notification")
            return False

        topic = cls._get_topic(notification_type)
        endpoint = f"{settings.NTFY_URL.rstrip('/')}/{topic}"
        headers = cls._headers(notification_type, title, priority_override)

        try:
            async with httpx.AsyncClient(
                timeout=settings.NTFY_TIMEOUT_SECONDS
            ) as client:
                response = await client.post(endpoint, headers=headers, content=message)
                response.raise_for_status()
        except httpx.TimeoutException:
            logger.warning(f"Ntfy publish to {topic} timed out ({title})")
            return False
        except httpx.HTTPStatusError as e:
            logger.warning(
                f"Ntfy rejected publish to {topic} with {e.response.status_code} ({title})"
            )
            return False
        except httpx.HTTPError as e:
            logger.warning(f"Ntfy publish to {topic} failed: {e}")
            return False

        logger.info(f"Transition pushed to {topic}: {title}")
        return True

    @classmethod
    def send_fire_and_forget(
        cls,
        notification_type: NotificationType,
        title: str,
        message: str,
        priority_override: str | None = None,
    ) -> None:
        """
        Send without waiting on the result.

        Inside a running event loop the send becomes a background task; from a
        worker thread it runs to completion, bounded by NTFY_TIMEOUT_SECONDS.
        """
        coro = cls._send_async(notification_type, title, message, priority_override)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(coro)
            return
        loop.create_task(coro)

    # =========================================================================
    # Transition formatting
    # =========================================================================

    @classmethod
    def describe(cls, event: TransitionEvent) -> tuple[str, str]:
        """
        Build the (title, message) pair for a transition.

        Messages carry IDs and statuses only; free text written by reporters
        or moderators never leaves the engine.
        """
        label = event.entity_type.value.replace("_", " ").title()
        if event.from_status is None:
            title = f"New {label} ({event.to_status})"
        else:
            title = f"{label} {event.from_status} -> {event.to_status}"

        lines = [f"ID: {event.entity_id}", f"Actor: {event.actor_id}"]
        if event.subject_user_id is not None:
            lines.append(f"User: {event.subject_user_id}")
        if event.listing_id is not None:
            lines.append(f"Listing: {event.listing_id}")
        return title, "\n".join(lines)

    @classmethod
    def notify_transition(cls, event: TransitionEvent) -> None:
        """
        Push a transition to the topic of its case kind.

        New critical findings go to the critical topic as well.

        Args:
            event: The committed transition
        """
        title, message = cls.describe(event)
        cls.send_fire_and_forget(
            NotificationType.for_entity(event.entity_type), title, message
        )
        if (
            event.entity_type == CaseEntityType.SUSPICIOUS_ACTIVITY
            and event.from_status is None
            and event.severity == ActivitySeverity.CRITICAL
        ):
            cls.send_fire_and_forget(NotificationType.CRITICAL, title, message)


class NtfyTransitionSink(TransitionSink):
    """Transition sink backed by ntfy push notifications."""

    def publish(self, event: TransitionEvent) -> None:
        NotificationService.notify_transition(event)
