"""
Pytest configuration and fixtures for backend tests.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Set test environment variables before importing config
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["LOG_DIR"] = ""
os.environ["SENTRY_DSN"] = ""
os.environ["NTFY_ENABLED"] = "false"
os.environ["DETECTION_SCHEDULER_ENABLED"] = "false"

from models.schemas import (  # noqa: E402
    Actor,
    ListingSnapshot,
    Role,
    SellerSnapshot,
    TransitionEvent,
)
from repositories.database import Base  # noqa: E402
import repositories.db_models  # noqa: E402,F401
from services.collaborators import (  # noqa: E402
    IdentityDirectory,
    MarketplaceReader,
    TransitionSink,
)
from services.fraud_engine import FraudEngine  # noqa: E402

# Test database engine (in-memory SQLite)
TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# ============================================================================
# Collaborator fakes
# ============================================================================


class FakeIdentityDirectory(IdentityDirectory):
    """In-memory role table."""

    def __init__(self, roles: Optional[dict[int, Role]] = None):
        self.roles = dict(roles or {})
        self.fail = False

    def get_role(self, user_id: int) -> Optional[Role]:
        if self.fail:
            raise ConnectionError("identity service unreachable")
        return self.roles.get(user_id)

    def list_moderators(self) -> list[int]:
        if self.fail:
            raise ConnectionError("identity service unreachable")
        return sorted(
            user_id
            for user_id, role in self.roles.items()
            if role.at_least(Role.MODERATOR)
        )


class FakeMarketplace(MarketplaceReader):
    """In-memory listings and sellers; `fail` makes every lookup raise."""

    def __init__(self):
        self.listings: dict[int, ListingSnapshot] = {}
        self.sellers: dict[int, SellerSnapshot] = {}
        self.listing_counts: dict[int, int] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise TimeoutError("marketplace timed out")

    def add_listing(self, **fields) -> ListingSnapshot:
        listing = ListingSnapshot(**fields)
        self.listings[listing.id] = listing
        return listing

    def add_seller(self, seller_id: int, age_days: float = 365, **fields) -> SellerSnapshot:
        seller = SellerSnapshot(
            id=seller_id,
            created_at=datetime.now(timezone.utc) - timedelta(days=age_days),
            **fields,
        )
        self.sellers[seller_id] = seller
        return seller

    def get_listing(self, listing_id: int) -> Optional[ListingSnapshot]:
        self._check()
        return self.listings.get(listing_id)

    def count_listings_since(self, seller_id: int, since: datetime) -> int:
        self._check()
        return self.listing_counts.get(seller_id, 0)

    def list_seller_listings(self, seller_id: int) -> list[ListingSnapshot]:
        self._check()
        return [l for l in self.listings.values() if l.seller_id == seller_id]

    def list_active_listings(
        self, exclude_listing_id: Optional[int] = None
    ) -> list[ListingSnapshot]:
        self._check()
        return [
            l
            for l in self.listings.values()
            if l.is_active and l.id != exclude_listing_id
        ]

    def get_seller(self, seller_id: int) -> Optional[SellerSnapshot]:
        self._check()
        return self.sellers.get(seller_id)


class RecordingSink(TransitionSink):
    """Keeps every published event."""

    def __init__(self):
        self.events: list[TransitionEvent] = []

    def publish(self, event: TransitionEvent) -> None:
        self.events.append(event)


class FailingSink(TransitionSink):
    """Raises on every publish."""

    def __init__(self):
        self.calls = 0

    def publish(self, event: TransitionEvent) -> None:
        self.calls += 1
        raise RuntimeError("sink is down")


# ============================================================================
# Fixtures
# ============================================================================


MODERATOR_ID = 900
SECOND_MODERATOR_ID = 901
ADMIN_ID = 1000


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh in-memory database session for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db(db_session):
    """Alias for db_session for backward compatibility."""
    return db_session


@pytest.fixture
def user_actor() -> Actor:
    """A regular marketplace user."""
    return Actor(user_id=1, role=Role.USER)


@pytest.fixture
def other_user_actor() -> Actor:
    """A second regular user."""
    return Actor(user_id=2, role=Role.USER)


@pytest.fixture
def moderator_actor() -> Actor:
    return Actor(user_id=MODERATOR_ID, role=Role.MODERATOR)


@pytest.fixture
def admin_actor() -> Actor:
    return Actor(user_id=ADMIN_ID, role=Role.ADMIN)


@pytest.fixture
def identity() -> FakeIdentityDirectory:
    """Identity directory with two moderators and one admin."""
    return FakeIdentityDirectory(
        {
            1: Role.USER,
            2: Role.USER,
            3: Role.USER,
            MODERATOR_ID: Role.MODERATOR,
            SECOND_MODERATOR_ID: Role.MODERATOR,
            ADMIN_ID: Role.ADMIN,
        }
    )


@pytest.fixture
def marketplace() -> FakeMarketplace:
    return FakeMarketplace()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def failing_sink() -> FailingSink:
    return FailingSink()


@pytest.fixture
def fraud_engine(
    db_session, identity, marketplace, sink, session_factory
) -> FraudEngine:
    """Engine wired to the fakes; background jobs use the test database."""
    return FraudEngine(
        identity,
        marketplace,
        sink=sink,
        session_factory=session_factory,
    )


@pytest.fixture
def session_factory():
    """Session factory bound to the test database, for background jobs."""
    return TestingSessionLocal
