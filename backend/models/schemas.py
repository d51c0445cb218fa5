from enum import Enum

from pydantic import BaseModel, Field, ConfigDict, field_validator
from datetime import datetime
from typing import Any, Optional, List
from repositories.db_models import (
    ActivitySeverity,
    ActivityStatus,
    ActivityType,
    CaseEntityType,
    FraudReportStatus,
    FraudReportType,
    SuspensionType,
    VerificationMethod,
    VerificationStatus,
)


# Roles, ordered by privilege
class Role(str, Enum):
    """Caller roles known to the identity directory."""

    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return list(Role).index(self)

    def at_least(self, minimum: "Role") -> bool:
        """Whether this role grants everything `minimum` grants."""
        return self.rank >= minimum.rank


# Caller identity
class Actor(BaseModel):
    """An authenticated caller, resolved before the engine is invoked."""

    user_id: int
    role: Role

    model_config = ConfigDict(frozen=True)


# Marketplace snapshots supplied by the listing service
class ListingSnapshot(BaseModel):
    id: int
    seller_id: int
    price: float
    original_price: Optional[float] = None
    event_id: Optional[int] = None
    venue_id: Optional[int] = None
    event_date: Optional[datetime] = None
    title: str = ""
    description: str = ""
    quantity: int = 1
    image_fingerprints: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: Optional[datetime] = None


class SellerSnapshot(BaseModel):
    id: int
    created_at: datetime
    completed_sales: int = 0
    email_verified: bool = False


# Transition events
class TransitionEvent(BaseModel):
    """
    A case creation or status change, published to the transition sink.

    `subject_user_id` is the user the case is about (reported user,
    flagged seller, suspended user); consumers enforce suspensions and
    update listing state from it.
    """

    entity_type: CaseEntityType
    entity_id: int
    from_status: Optional[str] = None
    to_status: str
    actor_id: int
    occurred_at: datetime
    subject_user_id: Optional[int] = None
    listing_id: Optional[int] = None
    severity: Optional[ActivitySeverity] = None  # suspicious activities only
    note: Optional[str] = None


# Verification checks
class CheckResult(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    INCONCLUSIVE = "inconclusive"


class CheckOutcome(BaseModel):
    """Outcome of one automated verification check."""

    result: CheckResult
    confidence: float = Field(ge=0.0, le=1.0)
    detail: str = ""


# List filters
class _ExclusiveFilter(BaseModel):
    """
    Filter whose keys are mutually exclusive.

    The first key (in declaration order) with a value is applied; the
    rest are ignored.
    """

    skip: int = Field(default=0, ge=0)
    limit: int = Field(default=100, ge=1, le=100)

    def selected(self) -> tuple[Optional[str], Any]:
        """Return the (key, value) pair that applies, or (None, None)."""
        for name in type(self).model_fields:
            if name in ("skip", "limit"):
                continue
            value = getattr(self, name)
            if value is not None:
                return name, value
        return None, None


class ReportFilter(_ExclusiveFilter):
    status: Optional[FraudReportStatus] = None
    assigned_to: Optional[int] = None
    reported_user_id: Optional[int] = None
    type: Optional[FraudReportType] = None


class ActivityFilter(_ExclusiveFilter):
    user_id: Optional[int] = None
    severity: Optional[ActivitySeverity] = None
    status: Optional[ActivityStatus] = None
    type: Optional[ActivityType] = None


class VerificationFilter(_ExclusiveFilter):
    listing_id: Optional[int] = None
    status: Optional[VerificationStatus] = None
    method: Optional[VerificationMethod] = None


class SuspensionFilter(_ExclusiveFilter):
    user_id: Optional[int] = None
    active: Optional[bool] = None
    type: Optional[SuspensionType] = None


# Fraud report submission
class FraudReportCreate(BaseModel):
    type: FraudReportType
    reason: str = Field(..., max_length=255)
    description: str
    reported_user_id: Optional[int] = None
    listing_id: Optional[int] = None
    transaction_id: Optional[int] = None
    evidence: List[str] = Field(default_factory=list)

    @field_validator("reason", "description")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()


# Risk
class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskContribution(BaseModel):
    """One line of the risk score breakdown."""

    source: str  # fraud_reports, suspicious_activities, verifications, suspensions
    label: str
    count: int
    points: float


class RiskProfile(BaseModel):
    user_id: int
    score: float = Field(ge=0.0, le=100.0)
    level: RiskLevel
    contributions: List[RiskContribution] = Field(default_factory=list)
    degraded_sources: List[str] = Field(default_factory=list)
    computed_at: datetime


class SystemStatistics(BaseModel):
    open_reports: int
    assigned_reports: int
    pending_activities: int
    active_suspensions: int
    active_warnings: int
    pending_manual_reviews: int
    computed_at: datetime
