"""
Risk aggregation service.

A user's risk profile is recomputed on every call from the four case stores.
The score is a capped sum of explainable contributions:

    Fraud reports (open/assigned, by type):
        payment_fraud 20, counterfeit 20, fake_listing 15, non_delivery 12, other 5
    Suspicious activities (pending, by severity):
        low 2, medium 5, high 15, critical 30
    Rejected verifications of the user's listings: 10 each
    Suspensions:
        active temporary 50, active permanent 70 (replaces suspension history)
        past temporary/permanent: 20, halving every RISK_SUSPENSION_HALF_LIFE_DAYS
        warnings: 5, halving the same way

Levels: <25 low, <50 medium, <75 high, otherwise critical.
"""

from collections import Counter
from typing import Optional

from loguru import logger
from sqlalchemy.orm import Session

from helpers.time_utils import age_in_days, utc_now
from models.config import settings
from models.schemas import (
    Actor,
    RiskContribution,
    RiskLevel,
    RiskProfile,
    SystemStatistics,
)
from repositories.base import storage_guard
from repositories.db_models import (
    EXCLUSIVE_SUSPENSION_TYPES,
    ActivitySeverity,
    FraudReportStatus,
    FraudReportType,
    SuspensionType,
    UserSuspension,
)
from repositories.fraud_report_repository import FraudReportRepository
from repositories.suspicious_activity_repository import SuspiciousActivityRepository
from repositories.ticket_verification_repository import TicketVerificationRepository
from repositories.user_suspension_repository import UserSuspensionRepository
from services.authorization import require_admin, require_moderator
from services.collaborators import MarketplaceReader

MAX_RISK_SCORE = 100.0

REPORT_TYPE_WEIGHTS: dict[FraudReportType, float] = {
    FraudReportType.PAYMENT_FRAUD: 20,
    FraudReportType.COUNTERFEIT: 20,
    FraudReportType.FAKE_LISTING: 15,
    FraudReportType.NON_DELIVERY: 12,
    FraudReportType.OTHER: 5,
}

ACTIVITY_SEVERITY_WEIGHTS: dict[ActivitySeverity, float] = {
    ActivitySeverity.LOW: 2,
    ActivitySeverity.MEDIUM: 5,
    ActivitySeverity.HIGH: 15,
    ActivitySeverity.CRITICAL: 30,
}

REJECTED_VERIFICATION_WEIGHT = 10.0

ACTIVE_SUSPENSION_WEIGHTS: dict[SuspensionType, float] = {
    SuspensionType.TEMPORARY: 50,
    SuspensionType.PERMANENT: 70,
}
PAST_SUSPENSION_WEIGHT = 20.0
WARNING_WEIGHT = 5.0

# (upper bound exclusive, level)
RISK_LEVELS = [
    (25.0, RiskLevel.LOW),
    (50.0, RiskLevel.MEDIUM),
    (75.0, RiskLevel.HIGH),
]


def risk_level_for(score: float) -> RiskLevel:
    """Map a score to its level label."""
    for upper, level in RISK_LEVELS:
        if score < upper:
            return level
    return RiskLevel.CRITICAL


def decayed_weight(base: float, days: float, half_life_days: float) -> float:
    """Exponential decay: `base` halves every `half_life_days`."""
    return base * 0.5 ** (days / half_life_days)


class RiskService:
    """Read-only service composing risk profiles and dashboard counts."""

    @staticmethod
    def _report_contributions(db: Session, user_id: int) -> list[RiskContribution]:
        reports = FraudReportRepository(db).get_unresolved_against_user(user_id)
        by_type = Counter(report.type for report in reports)
        return [
            RiskContribution(
                source="fraud_reports",
                label=report_type.value,
                count=count,
                points=REPORT_TYPE_WEIGHTS[report_type] * count,
            )
            for report_type, count in sorted(by_type.items(), key=lambda i: i[0].value)
        ]

    @staticmethod
    def _activity_contributions(db: Session, user_id: int) -> list[RiskContribution]:
        activities = SuspiciousActivityRepository(db).get_pending_for_user(user_id)
        by_severity = Counter(activity.severity for activity in activities)
        return [
            RiskContribution(
                source="suspicious_activities",
                label=severity.value,
                count=by_severity[severity],
                points=ACTIVITY_SEVERITY_WEIGHTS[severity] * by_severity[severity],
            )
            for severity in ActivitySeverity
            if by_severity[severity]
        ]

    @staticmethod
    def _suspension_contributions(
        suspensions: list[UserSuspension],
    ) -> list[RiskContribution]:
        now = utc_now()
        half_life = settings.RISK_SUSPENSION_HALF_LIFE_DAYS

        active = next(
            (
                s
                for s in suspensions
                if s.suspension_type in EXCLUSIVE_SUSPENSION_TYPES
                and s.is_active_at(now)
            ),
            None,
        )

        contributions: list[RiskContribution] = []
        if active is not None:
            contributions.append(
                RiskContribution(
                    source="suspensions",
                    label=f"active_{active.suspension_type.value}",
                    count=1,
                    points=ACTIVE_SUSPENSION_WEIGHTS[active.suspension_type],
                )
            )
        else:
            past = [
                s for s in suspensions if s.suspension_type in EXCLUSIVE_SUSPENSION_TYPES
            ]
            if past:
                points = sum(
                    decayed_weight(
                        PAST_SUSPENSION_WEIGHT,
                        age_in_days(s.lifted_at or s.end_date or s.start_date, now),
                        half_life,
                    )
                    for s in past
                )
                contributions.append(
                    RiskContribution(
                        source="suspensions",
                        label="past_suspensions",
                        count=len(past),
                        points=round(points, 2),
                    )
                )

        warnings = [
            s for s in suspensions if s.suspension_type == SuspensionType.WARNING
        ]
        if warnings:
            points = sum(
                decayed_weight(WARNING_WEIGHT, age_in_days(s.start_date, now), half_life)
                for s in warnings
            )
            contributions.append(
                RiskContribution(
                    source="suspensions",
                    label="warnings",
                    count=len(warnings),
                    points=round(points, 2),
                )
            )
        return contributions

    @staticmethod
    def _verification_contribution(
        db: Session, listing_ids: list[int]
    ) -> Optional[RiskContribution]:
        """Rejected verifications across the user's listings."""
        rejected = TicketVerificationRepository(db).count_rejected_for_listings(
            listing_ids
        )
        if not rejected:
            return None
        return RiskContribution(
            source="verifications",
            label="rejected",
            count=rejected,
            points=REJECTED_VERIFICATION_WEIGHT * rejected,
        )

    @staticmethod
    def compute_risk_profile(
        db: Session,
        user_id: int,
        marketplace: Optional[MarketplaceReader] = None,
    ) -> RiskProfile:
        """
        Compute a user's risk profile without an authorization check.

        Used by automatic enforcement; moderators go through
        `get_user_risk_profile`. If the marketplace collaborator is missing
        or fails, the verification contribution is skipped and named in
        `degraded_sources`.
        """
        contributions: list[RiskContribution] = []
        degraded: list[str] = []

        listing_ids: Optional[list[int]] = None
        try:
            if marketplace is None:
                raise LookupError("no marketplace reader configured")
            listing_ids = [
                listing.id for listing in marketplace.list_seller_listings(user_id)
            ]
        except Exception as e:
            logger.warning(
                f"Verification history unavailable for risk profile of user {user_id}: {e}"
            )
            degraded.append("verifications")

        with storage_guard(db, "risk_profile"):
            contributions += RiskService._report_contributions(db, user_id)
            contributions += RiskService._activity_contributions(db, user_id)
            if listing_ids is not None:
                verification = RiskService._verification_contribution(db, listing_ids)
                if verification is not None:
                    contributions.append(verification)
            suspensions = UserSuspensionRepository(db).get_user_suspensions(user_id)

        contributions += RiskService._suspension_contributions(suspensions)

        score = min(MAX_RISK_SCORE, round(sum(c.points for c in contributions), 2))
        return RiskProfile(
            user_id=user_id,
            score=score,
            level=risk_level_for(score),
            contributions=contributions,
            degraded_sources=degraded,
            computed_at=utc_now(),
        )

    @staticmethod
    def get_user_risk_profile(
        db: Session,
        actor: Actor,
        user_id: int,
        marketplace: Optional[MarketplaceReader] = None,
    ) -> RiskProfile:
        """
        Explainable risk profile for a user (moderator or admin).

        Raises:
            InvalidRoleException: If the caller is not a moderator
        """
        require_moderator(actor, "view risk profiles")
        return RiskService.compute_risk_profile(db, user_id, marketplace)

    @staticmethod
    def get_system_statistics(db: Session, actor: Actor) -> SystemStatistics:
        """
        Aggregate counts for the trust & safety dashboard (admin only).

        Raises:
            InvalidRoleException: If the caller is not an admin
        """
        require_admin(actor, "view system statistics")
        now = utc_now()

        with storage_guard(db, "system_statistics"):
            reports = FraudReportRepository(db)
            suspensions = UserSuspensionRepository(db)
            return SystemStatistics(
                open_reports=reports.count_by_status(FraudReportStatus.OPEN),
                assigned_reports=reports.count_by_status(FraudReportStatus.ASSIGNED),
                pending_activities=SuspiciousActivityRepository(db).count_pending(),
                active_suspensions=suspensions.count_active(
                    EXCLUSIVE_SUSPENSION_TYPES, now
                ),
                active_warnings=suspensions.count_active(
                    (SuspensionType.WARNING,), now
                ),
                pending_manual_reviews=TicketVerificationRepository(
                    db
                ).count_awaiting_review(),
                computed_at=now,
            )
