"""
Repository for the case transition audit trail.
"""

from typing import Optional

from sqlalchemy.orm import Session

from repositories.base import BaseRepository
from repositories.db_models import CaseEntityType, CaseTransition


class CaseTransitionRepository(BaseRepository[CaseTransition]):
    """Append-only store of case status changes."""

    def __init__(self, db: Session):
        super().__init__(CaseTransition, db)

    def record(
        self,
        entity_type: CaseEntityType,
        entity_id: int,
        from_status: Optional[str],
        to_status: str,
        actor_id: int,
        note: Optional[str] = None,
    ) -> CaseTransition:
        """
        Add a transition row to the session without committing.

        The row commits together with the status change it describes.
        """
        transition = CaseTransition(
            entity_type=entity_type,
            entity_id=entity_id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            note=note,
        )
        self.db.add(transition)
        return transition

    def get_history(
        self, entity_type: CaseEntityType, entity_id: int
    ) -> list[CaseTransition]:
        """All transitions of one case, oldest first."""
        return (
            self.db.query(CaseTransition)
            .filter(
                CaseTransition.entity_type == entity_type,
                CaseTransition.entity_id == entity_id,
            )
            .order_by(CaseTransition.id.asc())
            .all()
        )
