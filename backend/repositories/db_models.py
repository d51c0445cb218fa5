"""
Database models using SQLAlchemy 2.0 style with Mapped type hints.

Users, listings and transactions live in external services; their IDs are
stored here as plain integers without foreign keys.
"""

import enum
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
    and_,
    or_,
)
from sqlalchemy.orm import Mapped, mapped_column, synonym

from helpers.time_utils import ensure_utc, utc_now
from repositories.database import Base


# ============================================================================
# Enums
# ============================================================================


class FraudReportType(str, enum.Enum):
    """What a reporter accuses the target of."""

    FAKE_LISTING = "fake_listing"
    NON_DELIVERY = "non_delivery"
    PAYMENT_FRAUD = "payment_fraud"
    COUNTERFEIT = "counterfeit"
    OTHER = "other"


class FraudReportStatus(str, enum.Enum):
    """Status of a fraud report."""

    OPEN = "open"
    ASSIGNED = "assigned"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class ActivityType(str, enum.Enum):
    """Detection rule that produced a suspicious activity."""

    RAPID_LISTING = "rapid_listing"
    PRICE_MANIPULATION = "price_manipulation"
    DUPLICATE_IMAGES = "duplicate_images"
    OTHER = "other"


class ActivitySeverity(str, enum.Enum):
    """Severity of a suspicious activity, ordered low to critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Position in the severity order (low = 0)."""
        return list(ActivitySeverity).index(self)


class ActivityStatus(str, enum.Enum):
    """Status of a suspicious activity."""

    PENDING = "pending"
    REVIEWED = "reviewed"
    DISMISSED = "dismissed"


class VerificationMethod(str, enum.Enum):
    """How a ticket verification was produced."""

    AUTOMATED = "automated"
    MANUAL = "manual"


class VerificationStatus(str, enum.Enum):
    """Status of a ticket verification."""

    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    REQUIRES_MANUAL_REVIEW = "requires_manual_review"


class SuspensionType(str, enum.Enum):
    """Kind of enforcement action on an account."""

    TEMPORARY = "temporary"
    PERMANENT = "permanent"
    WARNING = "warning"

    @property
    def is_exclusive(self) -> bool:
        """Only one active temporary/permanent suspension may exist per user."""
        return self is not SuspensionType.WARNING


class CaseEntityType(str, enum.Enum):
    """Entity kinds recorded in the transition audit trail."""

    FRAUD_REPORT = "fraud_report"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    TICKET_VERIFICATION = "ticket_verification"
    USER_SUSPENSION = "user_suspension"


EXCLUSIVE_SUSPENSION_TYPES = (SuspensionType.TEMPORARY, SuspensionType.PERMANENT)


# ============================================================================
# Shared reviewable-case columns
# ============================================================================


class ReviewableCase:
    """
    Identity, creation time, reviewer stamp and row version shared by every
    case kind.

    Each concrete case adds its own `status` column; the transition rules
    that move it live in services.case_transitions. `version` is bumped by
    every transition and guards the compare-and-set write.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    reviewed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )


# ============================================================================
# Case models
# ============================================================================


class FraudReport(ReviewableCase, Base):
    """
    A user-submitted accusation against a listing, user or transaction.

    Lifecycle: open -> assigned -> resolved | dismissed.
    The reviewer stamp is exposed as resolved_by / resolved_at / resolution.
    """

    __tablename__ = "fraud_reports"
    __table_args__ = (
        Index("ix_fraud_reports_status", "status"),
        Index("ix_fraud_reports_reported_user", "reported_user_id"),
        Index("ix_fraud_reports_listing", "listing_id"),
        Index("ix_fraud_reports_assigned_to", "assigned_to"),
        Index("ix_fraud_reports_reporter", "reporter_id"),
    )

    reporter_id: Mapped[int] = mapped_column(Integer, nullable=False)
    reported_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    listing_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    transaction_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    type: Mapped[FraudReportType] = mapped_column(
        Enum(FraudReportType), nullable=False
    )
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[FraudReportStatus] = mapped_column(
        Enum(FraudReportStatus), default=FraudReportStatus.OPEN, nullable=False
    )
    assigned_to: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    resolved_by = synonym("reviewed_by")
    resolved_at = synonym("reviewed_at")
    resolution = synonym("review_notes")


class SuspiciousActivity(ReviewableCase, Base):
    """
    A system-generated finding from an automated detection rule.

    Lifecycle: pending -> reviewed | dismissed (one-shot).
    """

    __tablename__ = "suspicious_activities"
    __table_args__ = (
        Index("ix_suspicious_activities_user_type", "user_id", "activity_type"),
        Index("ix_suspicious_activities_listing", "listing_id"),
        Index("ix_suspicious_activities_status", "status"),
        Index("ix_suspicious_activities_severity", "severity"),
    )

    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    listing_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    activity_type: Mapped[ActivityType] = mapped_column(
        Enum(ActivityType), nullable=False
    )
    severity: Mapped[ActivitySeverity] = mapped_column(
        Enum(ActivitySeverity), nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[dict[str, Any]] = mapped_column(
        JSON, default=dict, nullable=False
    )
    status: Mapped[ActivityStatus] = mapped_column(
        Enum(ActivityStatus), default=ActivityStatus.PENDING, nullable=False
    )


class TicketVerification(ReviewableCase, Base):
    """
    Assessment of a listing's authenticity.

    Automated runs keep every check outcome in `automated_checks`; a manual
    review changes the status and reviewer stamp but never the checks.
    """

    __tablename__ = "ticket_verifications"
    __table_args__ = (
        Index("ix_ticket_verifications_listing", "listing_id"),
        Index("ix_ticket_verifications_status", "status"),
        Index("ix_ticket_verifications_method", "method"),
    )

    listing_id: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[VerificationMethod] = mapped_column(
        Enum(VerificationMethod), nullable=False
    )
    status: Mapped[VerificationStatus] = mapped_column(
        Enum(VerificationStatus), default=VerificationStatus.PENDING, nullable=False
    )
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    automated_checks: Mapped[dict[str, Any]] = mapped_column(
        JSON, default=dict, nullable=False
    )
    requested_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class UserSuspension(Base):
    """
    Warnings, temporary and permanent suspensions.

    `active` is derived from lifted_at/end_date and the current time; it is
    never stored. end_date NULL means indefinite.
    """

    __tablename__ = "user_suspensions"
    __table_args__ = (
        Index("ix_user_suspensions_user_type", "user_id", "suspension_type"),
        Index("ix_user_suspensions_end_date", "end_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    suspended_by: Mapped[int] = mapped_column(Integer, nullable=False)
    suspension_type: Mapped[SuspensionType] = mapped_column(
        Enum(SuspensionType), nullable=False
    )
    start_date: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    lifted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    lifted_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    def is_active_at(self, moment: datetime) -> bool:
        """Whether the suspension is in force at `moment` (end_date == moment is not)."""
        if self.lifted_at is not None:
            return False
        if self.end_date is None:
            return True
        return ensure_utc(self.end_date) > ensure_utc(moment)

    @property
    def active(self) -> bool:
        """Whether the suspension is in force right now."""
        return self.is_active_at(utc_now())

    @classmethod
    def active_clause(cls, moment: datetime):
        """SQL expression equivalent of `is_active_at`."""
        return and_(
            cls.lifted_at.is_(None),
            or_(cls.end_date.is_(None), cls.end_date > moment),
        )


class CaseTransition(Base):
    """
    Audit trail: one row per creation and per status change of any case.
    """

    __tablename__ = "case_transitions"
    __table_args__ = (
        Index("ix_case_transitions_entity", "entity_type", "entity_id"),
        Index("ix_case_transitions_actor", "actor_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    entity_type: Mapped[CaseEntityType] = mapped_column(
        Enum(CaseEntityType), nullable=False
    )
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    to_status: Mapped[str] = mapped_column(String(40), nullable=False)
    actor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
