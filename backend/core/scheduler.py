"""
Background scheduler for detection rules.

Uses APScheduler to run detection rules triggered by marketplace events off
the request path. Each job opens its own database session and runs under its
own correlation ID. Without a running scheduler, jobs run on a short-lived
worker thread; either way a job never raises into the code that triggered it.
"""

import threading
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from loguru import logger
from sqlalchemy.orm import Session

from core.correlation import correlation_scope, get_correlation_id
from models.config import settings
from repositories.database import SessionLocal


# Global scheduler instance
scheduler: BackgroundScheduler | None = None

DETECTION_RULES = ("rapid_listing", "price_manipulation", "duplicate_images")


def _rule(rule_name: str) -> Callable[..., Any]:
    from services.detection_service import DetectionService

    return {
        "rapid_listing": DetectionService.detect_rapid_listing,
        "price_manipulation": DetectionService.detect_price_manipulation,
        "duplicate_images": DetectionService.detect_duplicate_images,
    }[rule_name]


def detection_job(
    rule_name: str,
    subject_id: int,
    marketplace: Any,
    sink: Any = None,
    correlation_id: str | None = None,
    session_factory: Callable[[], Session] | None = None,
) -> Optional[Any]:
    """
    Run one detection rule with its own session.

    Creates its own database session for isolation. Failures are logged
    and swallowed.

    Returns:
        The created finding, or None
    """
    factory = session_factory or SessionLocal
    with correlation_scope(correlation_id):
        db: Session | None = None
        try:
            db = factory()
            return _rule(rule_name)(db, subject_id, marketplace, sink)
        except Exception:
            logger.exception(f"Detection rule {rule_name} failed for {subject_id}")
            return None
        finally:
            if db is not None:
                db.close()


def dispatch_detection(
    rule_name: str,
    subject_id: int,
    marketplace: Any,
    sink: Any = None,
    session_factory: Callable[[], Session] | None = None,
) -> None:
    """
    Fire-and-continue: hand a detection rule to the background scheduler.

    When the scheduler is not running (or refuses the job) the rule runs on a
    short-lived daemon thread, so the caller never waits on it. With
    DETECTION_SCHEDULER_ENABLED off, rules run synchronously; that mode is
    meant for tests and one-off scripts.

    The job inherits the caller's correlation ID when there is one.
    """
    if rule_name not in DETECTION_RULES:
        logger.error(f"Unknown detection rule {rule_name}")
        return

    args = [
        rule_name,
        subject_id,
        marketplace,
        sink,
        get_correlation_id() or None,
        session_factory,
    ]

    if not settings.DETECTION_SCHEDULER_ENABLED:
        detection_job(*args)
        return

    if scheduler is not None and scheduler.running:
        try:
            scheduler.add_job(
                detection_job,
                args=args,
                name=f"Detection {rule_name} for {subject_id}",
                misfire_grace_time=300,
            )
            return
        except Exception as e:
            logger.warning(f"Could not queue detection {rule_name}, using a worker thread: {e}")

    threading.Thread(
        target=detection_job,
        args=args,
        name=f"detection-{rule_name}-{subject_id}",
        daemon=True,
    ).start()


def setup_scheduler() -> None:
    """Configure and start the background scheduler."""
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return

    scheduler = BackgroundScheduler(
        job_defaults={"coalesce": False, "max_instances": 10}
    )
    scheduler.start()
    logger.info("Background scheduler started for detection rules")


def shutdown_scheduler() -> None:
    """Gracefully shutdown the scheduler."""
    global scheduler

    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")
    scheduler = None
