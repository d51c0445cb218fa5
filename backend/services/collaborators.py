"""Abstract interfaces for the services the engine depends on."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from loguru import logger

from models.schemas import ListingSnapshot, Role, SellerSnapshot, TransitionEvent


class IdentityDirectory(ABC):
    """Read-only view of user roles, owned by the account service."""

    @abstractmethod
    def get_role(self, user_id: int) -> Optional[Role]:
        """
        Look up a user's role.

        Args:
            user_id: User to look up

        Returns:
            The user's role, or None if the account does not exist
        """

    @abstractmethod
    def list_moderators(self) -> list[int]:
        """Return IDs of every moderator and admin account."""


class MarketplaceReader(ABC):
    """Read-only view of listings and sellers, owned by the listing service."""

    @abstractmethod
    def get_listing(self, listing_id: int) -> Optional[ListingSnapshot]:
        """Return the listing, or None if it does not exist."""

    @abstractmethod
    def count_listings_since(self, seller_id: int, since: datetime) -> int:
        """
        Count listings a seller created at or after `since`.

        Args:
            seller_id: Seller to count for
            since: Start of the window

        Returns:
            Number of listings created in the window
        """

    @abstractmethod
    def list_seller_listings(self, seller_id: int) -> list[ListingSnapshot]:
        """Return every listing of a seller, active or not."""

    @abstractmethod
    def list_active_listings(
        self, exclude_listing_id: Optional[int] = None
    ) -> list[ListingSnapshot]:
        """Return active listings, optionally excluding one."""

    @abstractmethod
    def get_seller(self, seller_id: int) -> Optional[SellerSnapshot]:
        """Return the seller account, or None if it does not exist."""


class TransitionSink(ABC):
    """Receives case creations and status changes after they commit."""

    @abstractmethod
    def publish(self, event: TransitionEvent) -> None:
        """
        Deliver one event.

        Implementations may raise; the engine logs and ignores sink failures.
        """


class CompositeTransitionSink(TransitionSink):
    """Fans an event out to several sinks; one failing sink does not stop the rest."""

    def __init__(self, sinks: list[TransitionSink]):
        self.sinks = list(sinks)

    def publish(self, event: TransitionEvent) -> None:
        for sink in self.sinks:
            try:
                sink.publish(event)
            except Exception as e:
                logger.warning(
                    f"Transition sink {type(sink).__name__} failed for "
                    f"{event.entity_type.value} {event.entity_id}: {e}"
                )
