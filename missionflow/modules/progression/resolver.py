"""
Dependency Resolver - unlock propagation and bootstrap
======================================================

Purpose
-------
When a mission reaches COMPLETED, promotes each dependent mission of the
same participant to AVAILABLE once every one of its required sources is
COMPLETED. Also lays out the initial records of a participant in a
campaign (bootstrap).

Rules
-----
- No partial unlock: a target with N sources stays LOCKED until all N
  source records of that participant are COMPLETED.
- One-way ratchet: only LOCKED or absent records are promoted. AVAILABLE,
  IN_PROGRESS, PENDING_REVIEW and COMPLETED records are left untouched.
- Dangling edges are outside the snapshot's adjacency lists. They are
  logged as `IntegrityWarning` and never block a sibling unlock.
- Each target's check-then-write is a compare-and-set guarded on LOCKED,
  so two completions racing to unlock the same target unlock it once.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from missionflow.core.database.base import utcnow
from missionflow.core.logging.logger import get_logger
from missionflow.database.models import (
    GrantSource,
    NotificationKind,
    ProgressionRecord,
    ProgressionStatus,
    RewardGrant,
)
from missionflow.modules.graph.snapshot import CampaignGraph
from missionflow.modules.progression.repository import ProgressionRepository
from missionflow.modules.shared.base_service import BaseService
from missionflow.modules.shared.exceptions import IntegrityWarning

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.config.manager import ConfigManager
    from missionflow.core.event.bus import EventBus
    from missionflow.modules.notifications.sink import NotificationSink


class DependencyResolver(BaseService):
    """
    Public Methods
    --------------
    - unlock_dependents() -> Propagate one completion to its targets
    - bootstrap() -> Create a participant's missing records for a campaign
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._records = ProgressionRepository(
            ProgressionRecord, get_logger(f"{__name__}.ProgressionRepository")
        )

    # ========================================================================
    # Unlock propagation
    # ========================================================================

    async def unlock_dependents(
        self,
        session: AsyncSession,
        participant_id: str,
        graph: CampaignGraph,
        completed_mission_id: str,
        sink: NotificationSink,
    ) -> List[str]:
        """
        Unlock every target of `completed_mission_id` whose sources are all
        COMPLETED for this participant.

        Returns the ids of missions actually moved to AVAILABLE.
        """
        self._warn_dangling(graph, completed_mission_id, participant_id)

        unlocked: List[str] = []
        for target_id in dict.fromkeys(graph.successors(completed_mission_id)):
            if await self._unlock_if_ready(session, participant_id, graph, target_id):
                unlocked.append(target_id)
                node = graph.node(target_id)
                await sink.notify(
                    participant_id,
                    NotificationKind.NEW_MISSION_AVAILABLE,
                    {
                        "mission_id": target_id,
                        "mission_title": node.title,
                        "campaign_id": graph.campaign_id,
                        "unlocked_by": completed_mission_id,
                    },
                )

        if unlocked:
            self.log.info(
                "Dependent missions unlocked",
                extra={
                    "participant_id": participant_id,
                    "campaign_id": graph.campaign_id,
                    "completed_mission_id": completed_mission_id,
                    "unlocked": unlocked,
                },
            )
        return unlocked

    async def _unlock_if_ready(
        self,
        session: AsyncSession,
        participant_id: str,
        graph: CampaignGraph,
        target_id: str,
    ) -> bool:
        sources = graph.predecessors(target_id)
        statuses = await self._records.statuses(session, participant_id, [*sources, target_id])

        if any(statuses.get(source) is not ProgressionStatus.COMPLETED for source in sources):
            return False

        current = statuses.get(target_id)
        if current is None:
            self._records.add(
                session,
                ProgressionRecord(
                    participant_id=participant_id,
                    mission_id=target_id,
                    campaign_id=graph.campaign_id,
                    status=ProgressionStatus.AVAILABLE,
                ),
            )
            await self._records.flush(session)
            return True

        if current is not ProgressionStatus.LOCKED:
            return False

        return await self._records.compare_and_set(
            session,
            participant_id,
            target_id,
            expected=ProgressionStatus.LOCKED,
            values={"status": ProgressionStatus.AVAILABLE, "updated_at": utcnow()},
        )

    def _warn_dangling(self, graph: CampaignGraph, mission_id: str, participant_id: str) -> None:
        for edge in graph.dangling_edges_touching(mission_id):
            warning = IntegrityWarning(
                "dangling_edge",
                "Dependency edge points at a mission outside the campaign; skipped",
                source_mission_id=edge.source_id,
                target_mission_id=edge.target_id,
                campaign_id=graph.campaign_id,
            )
            self.log.warning(
                str(warning),
                extra={"participant_id": participant_id, **warning.to_dict()},
            )

    # ========================================================================
    # Bootstrap
    # ========================================================================

    async def bootstrap(
        self,
        session: AsyncSession,
        participant_id: str,
        graph: CampaignGraph,
    ) -> Dict[str, int]:
        """
        Create the participant's missing records for the campaign.

        A mission the participant was already paid for (a `mission:<id>`
        ledger row survives `remove_participant`) comes back COMPLETED, so
        rejoining neither blocks on ALREADY_REWARDED nor pays twice. A new
        or LOCKED record whose sources are all COMPLETED starts AVAILABLE;
        everything else keeps its status.
        """
        existing = await self._records.statuses(session, participant_id, graph.mission_ids)
        rewarded = await self._rewarded_missions(session, participant_id, graph)

        completed = {m for m, s in existing.items() if s is ProgressionStatus.COMPLETED}
        completed |= {m for m in rewarded if m not in existing}

        def ready(mission_id: str) -> bool:
            return all(source in completed for source in graph.predecessors(mission_id))

        counts = {"created": 0, "promoted": 0, "restored": 0}
        for mission_id in graph.mission_ids:
            current = existing.get(mission_id)

            if current is None:
                record = ProgressionRecord(
                    participant_id=participant_id,
                    mission_id=mission_id,
                    campaign_id=graph.campaign_id,
                    status=ProgressionStatus.LOCKED,
                )
                if mission_id in rewarded:
                    record.status = ProgressionStatus.COMPLETED
                    record.completed_at = rewarded[mission_id]
                    counts["restored"] += 1
                elif ready(mission_id):
                    record.status = ProgressionStatus.AVAILABLE
                self._records.add(session, record)
                counts["created"] += 1
            elif current is ProgressionStatus.LOCKED and ready(mission_id):
                if await self._records.compare_and_set(
                    session,
                    participant_id,
                    mission_id,
                    expected=ProgressionStatus.LOCKED,
                    values={"status": ProgressionStatus.AVAILABLE, "updated_at": utcnow()},
                ):
                    counts["promoted"] += 1

        if counts["created"]:
            await self._records.flush(session)

        for edge in graph.dangling_edges:
            self.log.warning(
                "Dangling dependency edge ignored at bootstrap",
                extra={
                    "participant_id": participant_id,
                    "campaign_id": graph.campaign_id,
                    "source_mission_id": edge.source_id,
                    "target_mission_id": edge.target_id,
                },
            )

        self.log.debug(
            "Progression bootstrap",
            extra={"participant_id": participant_id, "campaign_id": graph.campaign_id, **counts},
        )
        return counts

    async def _rewarded_missions(
        self, session: AsyncSession, participant_id: str, graph: CampaignGraph
    ) -> Dict[str, datetime]:
        result = await session.execute(
            select(RewardGrant.mission_id, RewardGrant.granted_at).where(
                RewardGrant.participant_id == participant_id,
                RewardGrant.source == GrantSource.MISSION,
                RewardGrant.mission_id.in_(graph.mission_ids),
            )
        )
        return dict(result.all())
