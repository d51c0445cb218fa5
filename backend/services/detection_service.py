"""
Automated detection rules.

Each rule inspects marketplace data through the MarketplaceReader and either
records one SuspiciousActivity or does nothing. Rules are idempotent: a
pending finding for the same scope suppresses a new one. Marketplace lookup
failures are logged and treated as "no finding".

Severity bands:

    rapid_listing       count > T: low, >= 2T: medium, >= 3T: high
                        (T = RAPID_LISTING_THRESHOLD per RAPID_LISTING_WINDOW_HOURS)
    price_manipulation  deviation >= 3x low, 5x medium, 10x high, 20x critical,
                        against the original price and against the median of the
                        seller's other prices for the same event or venue
    duplicate_images    fingerprint within IMAGE_MATCH_MAX_DISTANCE of another
                        active listing: other seller high, same seller low

A critical finding also suspends the user for AUTO_SUSPEND_CRITICAL_HOURS.
"""

from datetime import timedelta
from statistics import median
from typing import Any, Callable, Hashable, Optional

from loguru import logger
from sqlalchemy.orm import Session

from helpers.image_fingerprint import hamming_distance, parse_fingerprint
from helpers.keyed_lock import detection_locks
from helpers.time_utils import format_iso8601, utc_now
from models.config import settings
from models.schemas import ListingSnapshot
from repositories.base import storage_guard
from repositories.db_models import (
    ActivitySeverity,
    ActivityType,
    CaseEntityType,
    SuspiciousActivity,
)
from repositories.suspicious_activity_repository import SuspiciousActivityRepository
from services.case_transitions import CaseTransitionService, after_commit
from services.collaborators import MarketplaceReader, TransitionSink
from services.suspension_service import SuspensionService


def rapid_listing_severity(count: int, threshold: int) -> Optional[ActivitySeverity]:
    """Severity for `count` listings in the window, None if the rule does not fire."""
    if count <= threshold:
        return None
    if count >= 3 * threshold:
        return ActivitySeverity.HIGH
    if count >= 2 * threshold:
        return ActivitySeverity.MEDIUM
    return ActivitySeverity.LOW


def price_deviation(price: float, reference: float) -> Optional[float]:
    """Symmetric deviation ratio (>= 1), None when either price is not positive."""
    if price <= 0 or reference <= 0:
        return None
    return max(price / reference, reference / price)


def price_severity(ratio: float) -> Optional[ActivitySeverity]:
    """Severity band for a deviation ratio, None below the lowest band."""
    bands = [
        (settings.PRICE_RATIO_CRITICAL, ActivitySeverity.CRITICAL),
        (settings.PRICE_RATIO_HIGH, ActivitySeverity.HIGH),
        (settings.PRICE_RATIO_MEDIUM, ActivitySeverity.MEDIUM),
        (settings.PRICE_RATIO_LOW, ActivitySeverity.LOW),
    ]
    for floor, severity in bands:
        if ratio >= floor:
            return severity
    return None


def comparable_prices(listing: ListingSnapshot, history: list[ListingSnapshot]) -> list[float]:
    """Prices of the seller's other listings for the same event or venue."""
    prices = []
    for other in history:
        if other.id == listing.id or other.price <= 0:
            continue
        same_event = listing.event_id is not None and other.event_id == listing.event_id
        same_venue = listing.venue_id is not None and other.venue_id == listing.venue_id
        if same_event or same_venue:
            prices.append(other.price)
    return prices


def find_image_matches(
    listing: ListingSnapshot,
    candidates: list[ListingSnapshot],
    max_distance: int,
) -> list[dict[str, Any]]:
    """
    Compare a listing's fingerprints against other listings.

    Returns:
        One entry per matching listing with the closest distance found
    """
    own = [fp for fp in map(parse_fingerprint, listing.image_fingerprints) if fp is not None]
    if not own:
        return []

    matches = []
    for other in candidates:
        if other.id == listing.id:
            continue
        best: Optional[int] = None
        for raw in other.image_fingerprints:
            theirs = parse_fingerprint(raw)
            if theirs is None:
                continue
            for mine in own:
                distance = hamming_distance(mine, theirs)
                if distance <= max_distance and (best is None or distance < best):
                    best = distance
        if best is not None:
            matches.append(
                {"listing_id": other.id, "seller_id": other.seller_id, "distance": best}
            )
    return matches


class DetectionService:
    """Detection rules producing suspicious activity findings."""

    @staticmethod
    def _lookup(description: str, call: Callable[[], Any]) -> tuple[bool, Any]:
        """Run a marketplace lookup; failures are logged and reported as (False, None)."""
        try:
            return True, call()
        except Exception as e:
            logger.warning(f"Detection lookup failed ({description}): {e}")
            return False, None

    @staticmethod
    def _record_finding(
        db: Session,
        scope: Hashable,
        find_existing: Callable[[SuspiciousActivityRepository], Optional[SuspiciousActivity]],
        activity: SuspiciousActivity,
        sink: Optional[TransitionSink],
    ) -> Optional[SuspiciousActivity]:
        """
        Insert a finding unless a pending one already covers the same scope.

        The check and the insert run under one lock per scope.
        """
        repo = SuspiciousActivityRepository(db)
        with detection_locks.hold(scope):
            with storage_guard(db, "detection_dedupe"):
                existing = find_existing(repo)
            if existing is not None:
                logger.debug(
                    f"Skipping {activity.activity_type.value} finding for user "
                    f"{activity.user_id}: pending activity {existing.id} exists"
                )
                return None

            created = CaseTransitionService.record_creation(
                db,
                CaseEntityType.SUSPICIOUS_ACTIVITY,
                activity,
                settings.SYSTEM_ACTOR_ID,
                sink=sink,
                note=activity.severity.value,
            )

        logger.warning(
            f"Suspicious activity {created.id}: {created.activity_type.value} "
            f"({created.severity.value}) for user {created.user_id}"
        )
        if created.severity == ActivitySeverity.CRITICAL:
            with after_commit(
                "critical_finding_enforcement",
                activity_id=created.id,
                user_id=created.user_id,
            ):
                SuspensionService.issue_system_suspension(
                    db,
                    created.user_id,
                    f"Automatic suspension: critical {created.activity_type.value} "
                    f"finding {created.id}",
                    timedelta(hours=settings.AUTO_SUSPEND_CRITICAL_HOURS),
                    sink=sink,
                )
        return created

    @staticmethod
    def detect_rapid_listing(
        db: Session,
        user_id: int,
        marketplace: MarketplaceReader,
        sink: Optional[TransitionSink] = None,
    ) -> Optional[SuspiciousActivity]:
        """
        Flag a seller creating more listings than the threshold in the window.

        Returns:
            The created finding, or None
        """
        window = timedelta(hours=settings.RAPID_LISTING_WINDOW_HOURS)
        threshold = settings.RAPID_LISTING_THRESHOLD
        since = utc_now() - window

        ok, count = DetectionService._lookup(
            f"listing count for user {user_id}",
            lambda: marketplace.count_listings_since(user_id, since),
        )
        if not ok:
            return None

        severity = rapid_listing_severity(count, threshold)
        if severity is None:
            return None

        activity = SuspiciousActivity(
            user_id=user_id,
            activity_type=ActivityType.RAPID_LISTING,
            severity=severity,
            description=(
                f"User created {count} listings in the past "
                f"{settings.RAPID_LISTING_WINDOW_HOURS} hours"
            ),
            evidence={
                "listing_count": count,
                "threshold": threshold,
                "window_hours": settings.RAPID_LISTING_WINDOW_HOURS,
                "window_start": format_iso8601(since),
            },
        )
        return DetectionService._record_finding(
            db,
            ("user", user_id, ActivityType.RAPID_LISTING),
            lambda repo: repo.find_pending_for_user(
                user_id, ActivityType.RAPID_LISTING, since
            ),
            activity,
            sink,
        )

    @staticmethod
    def detect_price_manipulation(
        db: Session,
        listing_id: int,
        marketplace: MarketplaceReader,
        sink: Optional[TransitionSink] = None,
    ) -> Optional[SuspiciousActivity]:
        """
        Flag a listing priced far from its original price or the seller's own prices.

        Returns:
            The created finding, or None
        """
        ok, listing = DetectionService._lookup(
            f"listing {listing_id}", lambda: marketplace.get_listing(listing_id)
        )
        if not ok or listing is None:
            return None

        ok, history = DetectionService._lookup(
            f"listings of seller {listing.seller_id}",
            lambda: marketplace.list_seller_listings(listing.seller_id),
        )
        if not ok:
            return None

        references: dict[str, float] = {}
        evidence: dict[str, Any] = {"listing_id": listing.id, "asking_price": listing.price}

        if listing.original_price is not None and listing.original_price > 0:
            references["original_price"] = listing.original_price
            evidence["original_price"] = listing.original_price

        prices = comparable_prices(listing, history or [])
        if prices:
            references["seller_history"] = median(prices)
            evidence["seller_median_price"] = references["seller_history"]
            evidence["seller_sample_size"] = len(prices)

        deviations: dict[str, float] = {}
        for name, reference in references.items():
            deviation = price_deviation(listing.price, reference)
            if deviation is not None:
                deviations[name] = deviation
        if not deviations:
            return None

        basis, ratio = max(deviations.items(), key=lambda item: item[1])
        severity = price_severity(ratio)
        if severity is None:
            return None

        evidence.update({"basis": basis, "deviation_ratio": round(ratio, 2)})
        direction = "above" if listing.price > references[basis] else "below"
        activity = SuspiciousActivity(
            user_id=listing.seller_id,
            listing_id=listing.id,
            activity_type=ActivityType.PRICE_MANIPULATION,
            severity=severity,
            description=(
                f"Listing priced {ratio:.2f}x {direction} the "
                f"{basis.replace('_', ' ')}"
            ),
            evidence=evidence,
        )
        return DetectionService._record_finding(
            db,
            ("listing", listing.id, ActivityType.PRICE_MANIPULATION),
            lambda repo: repo.find_pending_for_listing(
                listing.id, ActivityType.PRICE_MANIPULATION
            ),
            activity,
            sink,
        )

    @staticmethod
    def detect_duplicate_images(
        db: Session,
        listing_id: int,
        marketplace: MarketplaceReader,
        sink: Optional[TransitionSink] = None,
    ) -> Optional[SuspiciousActivity]:
        """
        Flag a listing whose images match other active listings.

        Returns:
            The created finding, or None
        """
        ok, listing = DetectionService._lookup(
            f"listing {listing_id}", lambda: marketplace.get_listing(listing_id)
        )
        if not ok or listing is None or not listing.image_fingerprints:
            return None

        ok, candidates = DetectionService._lookup(
            "active listings",
            lambda: marketplace.list_active_listings(exclude_listing_id=listing.id),
        )
        if not ok:
            return None

        matches = find_image_matches(
            listing, candidates or [], settings.IMAGE_MATCH_MAX_DISTANCE
        )
        if not matches:
            return None

        cross_seller = [m for m in matches if m["seller_id"] != listing.seller_id]
        severity = ActivitySeverity.HIGH if cross_seller else ActivitySeverity.LOW
        if cross_seller:
            description = (
                f"Listing images match {len(cross_seller)} listing(s) of other sellers"
            )
        else:
            description = f"Seller reuses images across {len(matches)} listing(s)"

        activity = SuspiciousActivity(
            user_id=listing.seller_id,
            listing_id=listing.id,
            activity_type=ActivityType.DUPLICATE_IMAGES,
            severity=severity,
            description=description,
            evidence={
                "listing_id": listing.id,
                "matches": matches,
                "cross_seller_matches": len(cross_seller),
                "max_distance": settings.IMAGE_MATCH_MAX_DISTANCE,
            },
        )
        return DetectionService._record_finding(
            db,
            ("listing", listing.id, ActivityType.DUPLICATE_IMAGES),
            lambda repo: repo.find_pending_for_listing(
                listing.id, ActivityType.DUPLICATE_IMAGES
            ),
            activity,
            sink,
        )
