"""
Progression record queries.

Status reads go through column selects (or `populate_existing`) rather than
the identity map: compare-and-set UPDATEs run with
`synchronize_session=False`, so a cached ORM instance may hold a status the
database has already moved past.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from missionflow.database.models import ProgressionRecord, ProgressionStatus
from missionflow.modules.shared.base_repository import BaseRepository


class ProgressionRepository(BaseRepository[ProgressionRecord]):
    async def status_of(
        self, session: AsyncSession, participant_id: str, mission_id: str
    ) -> Optional[ProgressionStatus]:
        result = await session.execute(
            select(ProgressionRecord.status).where(
                ProgressionRecord.participant_id == participant_id,
                ProgressionRecord.mission_id == mission_id,
            )
        )
        return result.scalar_one_or_none()

    async def statuses(
        self,
        session: AsyncSession,
        participant_id: str,
        mission_ids: Iterable[str],
    ) -> Dict[str, ProgressionStatus]:
        ids = list(mission_ids)
        if not ids:
            return {}
        result = await session.execute(
            select(ProgressionRecord.mission_id, ProgressionRecord.status).where(
                ProgressionRecord.participant_id == participant_id,
                ProgressionRecord.mission_id.in_(ids),
            )
        )
        return {mission_id: status for mission_id, status in result.all()}

    async def for_campaign(
        self, session: AsyncSession, participant_id: str, campaign_id: str
    ) -> List[ProgressionRecord]:
        result = await session.execute(
            select(ProgressionRecord)
            .where(
                ProgressionRecord.participant_id == participant_id,
                ProgressionRecord.campaign_id == campaign_id,
            )
            .order_by(ProgressionRecord.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def compare_and_set(
        self,
        session: AsyncSession,
        participant_id: str,
        mission_id: str,
        expected: ProgressionStatus,
        values: Dict[str, Any],
    ) -> bool:
        """UPDATE guarded on the expected status; False when the guard failed."""
        updated = await self.update_where(
            session,
            ProgressionRecord.participant_id == participant_id,
            ProgressionRecord.mission_id == mission_id,
            ProgressionRecord.status == expected,
            values=values,
        )
        return updated == 1
