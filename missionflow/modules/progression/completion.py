"""
Mission completion unit of work.

Reaching COMPLETED is one logical operation executed inside the caller's
transaction:

    1. compare-and-set the record's status to COMPLETED
    2. pay the mission reward through the ledger (exactly once)
    3. unlock dependent missions whose sources are now all COMPLETED
    4. evaluate rank promotion (cascading)
    5. queue the completion notification in the outbox

Any failure raises and rolls the whole unit back; there is no state in
which the status moved but the reward, unlocks or promotion did not.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from missionflow.core.database.base import utcnow
from missionflow.core.logging.logger import get_logger
from missionflow.database.models import NotificationKind, ProgressionRecord, ProgressionStatus
from missionflow.modules.progression.repository import ProgressionRepository
from missionflow.modules.progression.transitions import Action, Transition
from missionflow.modules.shared.base_service import BaseService

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.config.manager import ConfigManager
    from missionflow.core.event.bus import EventBus
    from missionflow.modules.graph.snapshot import CampaignGraph, MissionNode
    from missionflow.modules.notifications.sink import NotificationSink
    from missionflow.modules.progression.resolver import DependencyResolver
    from missionflow.modules.ranks.service import PromotionResult, RankService
    from missionflow.modules.rewards.service import RewardDelta, RewardLedgerService


@dataclass
class TransitionOutcome:
    """What one applied command did to a record."""

    participant_id: str
    mission_id: str
    campaign_id: str
    action: Action
    previous_status: Optional[ProgressionStatus]
    status: ProgressionStatus
    reward: Optional[RewardDelta] = None
    unlocked: List[str] = field(default_factory=list)
    promotion: Optional[PromotionResult] = None

    @property
    def changed(self) -> bool:
        return self.previous_status is not self.status

    @property
    def completed(self) -> bool:
        return self.changed and self.status is ProgressionStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "mission_id": self.mission_id,
            "campaign_id": self.campaign_id,
            "action": self.action.value,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "status": self.status.value,
            "reward": self.reward.to_dict() if self.reward else None,
            "unlocked": list(self.unlocked),
            "promotion": self.promotion.to_dict() if self.promotion else None,
        }


class CompletionUnit(BaseService):
    """Runs steps 1-5 above against one (participant, mission)."""

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        ledger: RewardLedgerService,
        resolver: DependencyResolver,
        ranks: RankService,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._ledger = ledger
        self._resolver = resolver
        self._ranks = ranks
        self._records = ProgressionRepository(
            ProgressionRecord, get_logger(f"{__name__}.ProgressionRepository")
        )

    async def complete(
        self,
        session: AsyncSession,
        participant_id: str,
        graph: CampaignGraph,
        node: MissionNode,
        plan: Transition,
        sink: NotificationSink,
        values: Optional[Dict[str, Any]] = None,
        notification_kind: NotificationKind = NotificationKind.MISSION_COMPLETED,
    ) -> Optional[TransitionOutcome]:
        """
        Apply a completing transition.

        Returns None when the status guard failed (the record moved since it
        was read); the caller re-reads and re-plans.
        """
        now = utcnow()
        moved = await self._records.compare_and_set(
            session,
            participant_id,
            node.id,
            expected=plan.source,
            values={
                **(values or {}),
                "status": ProgressionStatus.COMPLETED,
                "completed_at": now,
                "updated_at": now,
            },
        )
        if not moved:
            return None

        reward = await self._ledger.grant_mission_reward(
            session, participant_id, node, graph.campaign_id, sink
        )
        unlocked = await self._resolver.unlock_dependents(
            session, participant_id, graph, node.id, sink
        )
        promotion = await self._ranks.evaluate_in_session(
            session, participant_id, graph.campaign_id, sink
        )

        await sink.notify(
            participant_id,
            notification_kind,
            {
                "mission_id": node.id,
                "mission_title": node.title,
                "campaign_id": graph.campaign_id,
                "experience": reward.experience,
                "currency": reward.currency,
                "unlocked": list(unlocked),
            },
        )

        self.log.info(
            "Mission completed",
            extra={
                "participant_id": participant_id,
                "mission_id": node.id,
                "campaign_id": graph.campaign_id,
                "action": plan.action.value,
                "previous_status": plan.source.value,
                "unlocked_count": len(unlocked),
                "promoted": promotion.promoted,
            },
        )

        return TransitionOutcome(
            participant_id=participant_id,
            mission_id=node.id,
            campaign_id=graph.campaign_id,
            action=plan.action,
            previous_status=plan.source,
            status=ProgressionStatus.COMPLETED,
            reward=reward,
            unlocked=unlocked,
            promotion=promotion,
        )
