"""
Sentry SDK configuration with privacy-compliant settings.

Implements:
- Environment-based initialization
- PII scrubbing (reporters and suspended users are identified by ID only)
- Loguru and SQLAlchemy integrations
- Explicit capture of wrapped storage/collaborator failures
"""

from typing import Any

import sentry_sdk
from sentry_sdk.integrations.loguru import LoguruIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.types import Event, Hint

from models.config import settings

# Evidence payloads may carry free text written by reporters
_SCRUBBED_EXTRA_KEYS = ("description", "reason", "evidence", "review_notes")


def _before_send(event: Event, hint: Hint) -> Event | None:
    """
    Scrub PII before sending to Sentry.

    Args:
        event: Sentry event.
        hint: Additional context about the event.

    Returns:
        Modified event with PII removed.
    """
    user = event.get("user")
    if user:
        user.pop("email", None)
        user.pop("username", None)
        if "ip_address" in user:
            user["ip_address"] = "{{auto}}"

    extra = event.get("extra")
    if isinstance(extra, dict):
        for key in _SCRUBBED_EXTRA_KEYS:
            if key in extra:
                extra[key] = "[Filtered]"

    return event


def init_sentry() -> bool:
    """
    Initialize Sentry SDK.

    Sentry is disabled when SENTRY_DSN is not configured.

    Returns:
        True if Sentry was initialized.
    """
    if not settings.SENTRY_DSN:
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        release=settings.SENTRY_RELEASE,
        send_default_pii=False,
        integrations=[
            SqlalchemyIntegration(),
            LoguruIntegration(),
        ],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        sample_rate=1.0,
        before_send=_before_send,
        attach_stacktrace=True,
        max_breadcrumbs=50,
        ignore_errors=[
            KeyboardInterrupt,
            SystemExit,
        ],
    )
    return True


def capture_internal_error(error: BaseException, **context: Any) -> None:
    """
    Report an internal error that was wrapped before reaching the caller.

    Args:
        error: Original exception.
        **context: Extra tags (operation name, collaborator, entity id).
    """
    with sentry_sdk.new_scope() as scope:
        for key, value in context.items():
            scope.set_tag(key, str(value))
        sentry_sdk.capture_exception(error)
