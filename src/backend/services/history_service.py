"""
Activity log of interventions.
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.decorators import log_database_operation
from db import InterventionHistory

logger = logging.getLogger(__name__)


def _value(status: Any) -> Optional[str]:
    return getattr(status, "value", status)


class HistoryService:
    """Writes and reads intervention_history rows."""

    @staticmethod
    def record(
        db: AsyncSession,
        intervention_id: UUID,
        action: str,
        actor_id: Optional[UUID],
        from_status: Any = None,
        to_status: Any = None,
        comment: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> InterventionHistory:
        """Stage a history row in the caller's transaction."""
        entry = InterventionHistory(
            intervention_id=intervention_id,
            action=_value(action),
            from_status=_value(from_status),
            to_status=_value(to_status),
            actor_id=actor_id,
            comment=comment,
            details=details or {},
        )
        db.add(entry)
        return entry

    @staticmethod
    @log_database_operation("intervention history retrieval", level="debug")
    async def list_for_intervention(
        db: AsyncSession, intervention_id: UUID
    ) -> List[InterventionHistory]:
        result = await db.execute(
            select(InterventionHistory)
            .where(InterventionHistory.intervention_id == intervention_id)
            .order_by(InterventionHistory.created_at, InterventionHistory.id)
        )
        return list(result.scalars().all())
