"""
Ticket verification service.

An automated run scores a listing with four checks, each returning
pass/fail/inconclusive with a confidence in [0, 1]:

    seller_history         account age, sales, verified email, enforcement record
    price_sanity           deviation of the asking price from the face value
    duplicate_images       fingerprint matches against other active listings
    listing_completeness   required listing fields present, event not over

Aggregation:
    any fail with confidence >= VERIFICATION_REJECT_CONFIDENCE  -> rejected
    all pass with confidence >= VERIFICATION_TRUST_CONFIDENCE   -> verified
    otherwise                                                   -> requires_manual_review

A check whose marketplace lookup fails is inconclusive with confidence 0.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional

from loguru import logger
from sqlalchemy.orm import Session

from helpers.time_utils import age_in_days, ensure_utc, utc_now
from models.config import settings
from models.exceptions import (
    DependencyException,
    ListingNotFoundException,
    ValidationException,
    VerificationNotFoundException,
)
from models.schemas import (
    Actor,
    CheckOutcome,
    CheckResult,
    ListingSnapshot,
    SellerSnapshot,
    VerificationFilter,
)
from repositories.base import storage_guard
from repositories.db_models import (
    CaseEntityType,
    TicketVerification,
    VerificationMethod,
    VerificationStatus,
)
from repositories.fraud_report_repository import FraudReportRepository
from repositories.ticket_verification_repository import (
    AWAITING_REVIEW_STATUSES,
    TicketVerificationRepository,
)
from repositories.user_suspension_repository import UserSuspensionRepository
from services.authorization import require_moderator
from services.case_transitions import CaseTransitionService, review_stamp
from services.collaborators import MarketplaceReader, TransitionSink
from services.detection_service import find_image_matches, price_deviation

MANUAL_OUTCOMES = (VerificationStatus.VERIFIED, VerificationStatus.REJECTED)

MIN_DESCRIPTION_LENGTH = 20


class _LookupFailed(Exception):
    """A marketplace lookup needed by a check failed."""


@dataclass
class VerificationContext:
    """Inputs shared by the checks of one automated run."""

    db: Session
    listing: ListingSnapshot
    marketplace: MarketplaceReader
    _seller: Optional[SellerSnapshot] = field(default=None, init=False)
    _seller_loaded: bool = field(default=False, init=False)

    def seller(self) -> Optional[SellerSnapshot]:
        if not self._seller_loaded:
            try:
                self._seller = self.marketplace.get_seller(self.listing.seller_id)
            except Exception as e:
                raise _LookupFailed(f"seller {self.listing.seller_id}: {e}") from e
            self._seller_loaded = True
        return self._seller

    def active_listings(self) -> list[ListingSnapshot]:
        try:
            return self.marketplace.list_active_listings(
                exclude_listing_id=self.listing.id
            )
        except Exception as e:
            raise _LookupFailed(f"active listings: {e}") from e


# ============================================================================
# Checks
# ============================================================================


def check_seller_history(ctx: VerificationContext) -> CheckOutcome:
    seller = ctx.seller()
    if seller is None:
        return CheckOutcome(
            result=CheckResult.FAIL, confidence=0.9, detail="Seller account not found"
        )

    with storage_guard(ctx.db, "verification_seller_history"):
        suspended = UserSuspensionRepository(ctx.db).get_active_exclusive(seller.id)
        upheld = FraudReportRepository(ctx.db).count_resolved_against_user(seller.id)

    if suspended is not None:
        return CheckOutcome(
            result=CheckResult.FAIL, confidence=0.95, detail="Seller is suspended"
        )
    if upheld >= settings.AUTO_SUSPEND_RESOLVED_REPORTS:
        return CheckOutcome(
            result=CheckResult.FAIL,
            confidence=0.85,
            detail=f"{upheld} upheld fraud reports against seller",
        )
    if upheld:
        return CheckOutcome(
            result=CheckResult.INCONCLUSIVE,
            confidence=0.6,
            detail=f"{upheld} upheld fraud report(s) against seller",
        )

    age = age_in_days(seller.created_at)
    if age < settings.VERIFICATION_MIN_ACCOUNT_AGE_DAYS and not seller.completed_sales:
        return CheckOutcome(
            result=CheckResult.INCONCLUSIVE,
            confidence=0.5,
            detail=f"New seller ({age:.0f} days) without completed sales",
        )

    confidence = 0.7
    if seller.email_verified:
        confidence += 0.1
    confidence += min(0.2, seller.completed_sales * 0.02)
    return CheckOutcome(
        result=CheckResult.PASS,
        confidence=round(min(confidence, 1.0), 2),
        detail=f"Account {age:.0f} days old, {seller.completed_sales} completed sales",
    )


def check_price_sanity(ctx: VerificationContext) -> CheckOutcome:
    listing = ctx.listing
    if listing.original_price is None:
        return CheckOutcome(
            result=CheckResult.INCONCLUSIVE,
            confidence=0.4,
            detail="No face value to compare against",
        )

    ratio = price_deviation(listing.price, listing.original_price)
    if ratio is None:
        return CheckOutcome(
            result=CheckResult.FAIL, confidence=0.8, detail="Non-positive price"
        )
    if ratio < settings.PRICE_RATIO_LOW:
        return CheckOutcome(
            result=CheckResult.PASS,
            confidence=0.9,
            detail=f"Price within {ratio:.2f}x of face value",
        )
    if ratio < settings.PRICE_RATIO_CRITICAL:
        return CheckOutcome(
            result=CheckResult.INCONCLUSIVE,
            confidence=0.5,
            detail=f"Price {ratio:.2f}x away from face value",
        )
    return CheckOutcome(
        result=CheckResult.FAIL,
        confidence=0.85,
        detail=f"Price {ratio:.2f}x away from face value",
    )


def check_duplicate_images(ctx: VerificationContext) -> CheckOutcome:
    listing = ctx.listing
    if not listing.image_fingerprints:
        return CheckOutcome(
            result=CheckResult.INCONCLUSIVE,
            confidence=0.3,
            detail="Listing has no images",
        )

    matches = find_image_matches(
        listing, ctx.active_listings(), settings.IMAGE_MATCH_MAX_DISTANCE
    )
    cross_seller = [m for m in matches if m["seller_id"] != listing.seller_id]
    if cross_seller:
        return CheckOutcome(
            result=CheckResult.FAIL,
            confidence=0.9,
            detail=f"Images match {len(cross_seller)} listing(s) of other sellers",
        )
    if matches:
        return CheckOutcome(
            result=CheckResult.PASS,
            confidence=0.75,
            detail=f"Images reused from {len(matches)} of the seller's own listings",
        )
    return CheckOutcome(
        result=CheckResult.PASS, confidence=0.9, detail="Images are unique"
    )


def check_listing_completeness(ctx: VerificationContext) -> CheckOutcome:
    listing = ctx.listing
    if listing.event_date is not None and ensure_utc(listing.event_date) < utc_now():
        return CheckOutcome(
            result=CheckResult.FAIL, confidence=1.0, detail="Event date is in the past"
        )

    missing = [
        name
        for name, present in (
            ("title", bool(listing.title.strip())),
            ("description", len(listing.description.strip()) >= MIN_DESCRIPTION_LENGTH),
            ("event_or_venue", listing.event_id is not None or listing.venue_id is not None),
            ("quantity", listing.quantity >= 1),
            ("images", bool(listing.image_fingerprints)),
        )
        if not present
    ]
    if not missing:
        return CheckOutcome(
            result=CheckResult.PASS, confidence=0.95, detail="All listing fields present"
        )
    if len(missing) <= 2:
        return CheckOutcome(
            result=CheckResult.INCONCLUSIVE,
            confidence=0.5,
            detail=f"Missing: {', '.join(missing)}",
        )
    return CheckOutcome(
        result=CheckResult.FAIL,
        confidence=0.8,
        detail=f"Missing: {', '.join(missing)}",
    )


VERIFICATION_CHECKS: dict[str, Callable[[VerificationContext], CheckOutcome]] = {
    "seller_history": check_seller_history,
    "price_sanity": check_price_sanity,
    "duplicate_images": check_duplicate_images,
    "listing_completeness": check_listing_completeness,
}


def aggregate_outcomes(
    outcomes: dict[str, CheckOutcome],
) -> tuple[VerificationStatus, float]:
    """
    Combine check outcomes into an overall status and confidence.

    Returns:
        (status, confidence): the strongest failing confidence when rejected,
        the weakest passing confidence when verified, the mean otherwise
    """
    reject_at = settings.VERIFICATION_REJECT_CONFIDENCE
    trust_at = settings.VERIFICATION_TRUST_CONFIDENCE
    values = list(outcomes.values())

    hard_fails = [
        o.confidence
        for o in values
        if o.result == CheckResult.FAIL and o.confidence >= reject_at
    ]
    if hard_fails:
        return VerificationStatus.REJECTED, max(hard_fails)

    if values and all(
        o.result == CheckResult.PASS and o.confidence >= trust_at for o in values
    ):
        return VerificationStatus.VERIFIED, min(o.confidence for o in values)

    mean = sum(o.confidence for o in values) / len(values) if values else 0.0
    return VerificationStatus.REQUIRES_MANUAL_REVIEW, round(mean, 2)


class VerificationService:
    """Service for ticket verification operations."""

    @staticmethod
    def _get_listing(marketplace: MarketplaceReader, listing_id: int) -> ListingSnapshot:
        try:
            listing = marketplace.get_listing(listing_id)
        except Exception as e:
            logger.error(f"Listing lookup failed for {listing_id}: {e}")
            raise DependencyException(dependency="marketplace") from e
        if listing is None:
            raise ListingNotFoundException(listing_id)
        return listing

    @staticmethod
    def run_checks(
        db: Session, listing: ListingSnapshot, marketplace: MarketplaceReader
    ) -> dict[str, CheckOutcome]:
        """Run every check; lookup failures become inconclusive with confidence 0."""
        ctx = VerificationContext(db=db, listing=listing, marketplace=marketplace)
        outcomes: dict[str, CheckOutcome] = {}
        for name, check in VERIFICATION_CHECKS.items():
            try:
                outcomes[name] = check(ctx)
            except _LookupFailed as e:
                logger.warning(f"Verification check {name} for listing {listing.id}: {e}")
                outcomes[name] = CheckOutcome(
                    result=CheckResult.INCONCLUSIVE,
                    confidence=0.0,
                    detail="Lookup failed",
                )
        return outcomes

    @staticmethod
    def perform_automated_verification(
        db: Session,
        actor: Actor,
        listing_id: int,
        marketplace: MarketplaceReader,
        sink: Optional[TransitionSink] = None,
    ) -> TicketVerification:
        """
        Run the automated check battery on a listing and record the result.

        Raises:
            InvalidRoleException: If the caller is not a moderator
            ListingNotFoundException: If the listing does not exist
            DependencyException: If the listing lookup itself fails
        """
        require_moderator(actor, "run automated verification")
        listing = VerificationService._get_listing(marketplace, listing_id)

        outcomes = VerificationService.run_checks(db, listing, marketplace)
        status, confidence = aggregate_outcomes(outcomes)

        verification = TicketVerification(
            listing_id=listing.id,
            method=VerificationMethod.AUTOMATED,
            status=status,
            confidence=confidence,
            automated_checks={
                name: outcome.model_dump(mode="json") for name, outcome in outcomes.items()
            },
            requested_by=actor.user_id,
        )
        verification = CaseTransitionService.record_creation(
            db,
            CaseEntityType.TICKET_VERIFICATION,
            verification,
            actor.user_id,
            sink=sink,
        )
        logger.info(
            f"Automated verification {verification.id} for listing {listing.id}: "
            f"{status.value} ({confidence:.2f})"
        )
        return verification

    @staticmethod
    def request_manual_verification(
        db: Session,
        actor: Actor,
        listing_id: int,
        marketplace: MarketplaceReader,
        notes: Optional[str] = None,
        sink: Optional[TransitionSink] = None,
    ) -> TicketVerification:
        """
        Open a pending manual verification for a listing.

        Raises:
            InvalidRoleException: If the caller is not a moderator
            ListingNotFoundException: If the listing does not exist
        """
        require_moderator(actor, "request manual verification")
        listing = VerificationService._get_listing(marketplace, listing_id)

        verification = TicketVerification(
            listing_id=listing.id,
            method=VerificationMethod.MANUAL,
            status=VerificationStatus.PENDING,
            automated_checks={},
            requested_by=actor.user_id,
        )
        return CaseTransitionService.record_creation(
            db,
            CaseEntityType.TICKET_VERIFICATION,
            verification,
            actor.user_id,
            sink=sink,
            note=notes.strip() if notes else None,
        )

    @staticmethod
    def perform_manual_review(
        db: Session,
        actor: Actor,
        verification_id: int,
        status: VerificationStatus,
        notes: Optional[str] = None,
        sink: Optional[TransitionSink] = None,
    ) -> TicketVerification:
        """
        Decide a pending or flagged verification. The automated checks are kept.

        Raises:
            InvalidRoleException: If the caller is not a moderator
            ValidationException: If status is not verified/rejected
            VerificationNotFoundException: If the record does not exist
            InvalidTransitionException: If the record is already decided
        """
        require_moderator(actor, "review ticket verifications")
        if status not in MANUAL_OUTCOMES:
            raise ValidationException(
                "Manual review status must be one of: verified, rejected"
            )

        notes = notes.strip() if notes else None
        return CaseTransitionService.transition(
            db,
            TicketVerificationRepository(db),
            CaseEntityType.TICKET_VERIFICATION,
            verification_id,
            AWAITING_REVIEW_STATUSES,
            status,
            actor,
            VerificationNotFoundException,
            values=review_stamp(actor, notes, utc_now()),
            sink=sink,
        )

    @staticmethod
    def list_verifications(
        db: Session, actor: Actor, filters: Optional[VerificationFilter] = None
    ) -> list[TicketVerification]:
        """
        List records by the first filter key given (listing_id, status, method).

        Without a key, returns the manual review queue.
        """
        require_moderator(actor, "list ticket verifications")
        filters = filters or VerificationFilter()
        repo = TicketVerificationRepository(db)
        key, value = filters.selected()
        skip, limit = filters.skip, filters.limit

        with storage_guard(db, "list_verifications"):
            if key == "listing_id":
                return repo.list_by_listing(value, skip, limit)
            if key == "status":
                return repo.list_by_status(value, skip, limit)
            if key == "method":
                return repo.list_by_method(value, skip, limit)
            return repo.list_review_queue(skip, limit)
