"""
Base repository class providing common database operations.
"""

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any, Generic, TypeVar

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.sentry_config import capture_internal_error
from models.exceptions import DependencyException
from repositories.database import Base

T = TypeVar("T", bound=Base)  # type: ignore[type-arg]

MAX_PAGE_SIZE = 100


def clamp_page(skip: int, limit: int) -> tuple[int, int]:
    """Normalize pagination arguments (limit capped at MAX_PAGE_SIZE)."""
    return max(0, skip), max(1, min(limit, MAX_PAGE_SIZE))


@contextmanager
def storage_guard(db: Session, operation: str) -> Iterator[None]:
    """
    Wrap a unit of storage work.

    A SQLAlchemyError rolls the session back, is logged and reported to
    Sentry, and is re-raised as a DependencyException with a generic message.
    Domain exceptions pass through untouched.

    Args:
        db: Session the work runs on
        operation: Short name used in logs and Sentry tags
    """
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"Storage failure during {operation}")
        capture_internal_error(e, operation=operation)
        raise DependencyException() from e


class BaseRepository(Generic[T]):
    """
    Base repository for the case stores: lookup by ID and compare-and-set
    status updates.

    Type parameter T should be a SQLAlchemy model class.
    """

    def __init__(self, model: type[T], db: Session):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            db: Database session
        """
        self.model = model
        self.db = db

    def get_by_id(self, id: int) -> T | None:
        """
        Get entity by ID.

        Args:
            id: Entity ID

        Returns:
            Entity if found, None otherwise
        """
        return self.db.query(self.model).filter(self.model.id == id).first()

    def update_where_status(
        self,
        entity_id: int,
        allowed_statuses: Iterable[Any],
        values: dict[str, Any],
        expected_version: int | None = None,
    ) -> bool:
        """
        Compare-and-set update, without committing.

        Applies `values` only if the row still has one of `allowed_statuses`
        and, when given, still carries `expected_version`. The row version is
        bumped on success, so of two concurrent callers that read the same
        row at most one sees True, even when both keep the status unchanged.

        Args:
            entity_id: Entity ID
            allowed_statuses: Statuses the row must currently be in
            values: Column values to write
            expected_version: Version the caller read

        Returns:
            True if exactly one row was updated
        """
        query = self.db.query(self.model).filter(
            self.model.id == entity_id,
            self.model.status.in_(list(allowed_statuses)),
        )
        if expected_version is not None:
            query = query.filter(self.model.version == expected_version)
        updated = query.update(
            {**values, "version": self.model.version + 1},
            synchronize_session=False,
        )
        return updated == 1
