"""
Rank Service - multi-criteria promotion evaluator
==================================================

Purpose
-------
Advances a participant's rank when experience, completed-mission count and
competency thresholds of the next level are all met, pays the promotion
reward through the Reward Ledger, and notifies the participant.

Domain
------
- Ladder resolution: a campaign that owns ranks uses its own ladder
  exclusively; otherwise the global ladder (`campaign_id IS NULL`) applies.
  Ladders are never mixed level by level.
- Cascading promotion: after a promotion the next level is re-checked in
  the same call, up to `ranks.max_promotions_per_evaluation`.
- "Almost there": when only the competency criterion is unmet, a single
  RANK_UP notification with `ready_to_promote = true` is queued, unless an
  unread one already exists.
- Rank progress report and ladder cloning for campaign authors.

Design Notes
------------
- Every loop iteration re-reads the participant's numbers with column
  selects, so promotion rewards paid in the previous iteration count.
- `current_rank_level` moves with a compare-and-set UPDATE guarded on the
  level that was read; a concurrent promotion surfaces as
  `ConflictError(ALREADY_PROMOTED)` instead of a double reward.
- The completed-mission count spans every campaign of the participant.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from missionflow.core.database.base import utcnow
from missionflow.core.database.service import DatabaseService
from missionflow.core.logging.logger import get_logger
from missionflow.database.models import (
    Campaign,
    Competency,
    NotificationKind,
    Participant,
    ParticipantCompetency,
    ProgressionRecord,
    ProgressionStatus,
    Rank,
)
from missionflow.modules.ranks.eligibility import (
    RankSpec,
    Standing,
    check,
    next_rank,
    percent,
)
from missionflow.modules.shared.base_repository import BaseRepository
from missionflow.modules.shared.base_service import BaseService
from missionflow.modules.shared.exceptions import (
    ConflictError,
    ConflictReason,
    NotFoundError,
)
from missionflow.modules.shared.permissions import Permission

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.cache.service import CacheService
    from missionflow.core.config.manager import ConfigManager
    from missionflow.core.event.bus import EventBus
    from missionflow.modules.notifications.service import NotificationService
    from missionflow.modules.notifications.sink import NotificationSink
    from missionflow.modules.rewards.service import RewardLedgerService
    from missionflow.modules.shared.permissions import RequestContext

GLOBAL_SCOPE = "global"


@dataclass
class PromotionResult:
    promoted: bool = False
    new_rank: Optional[RankSpec] = None
    unmet_requirements: List[str] = field(default_factory=list)
    promotions: List[int] = field(default_factory=list)
    almost_there_notified: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "promoted": self.promoted,
            "new_rank": self.new_rank.to_dict() if self.new_rank else None,
            "unmet_requirements": list(self.unmet_requirements),
            "promotions": list(self.promotions),
        }


def rank_to_spec(rank: Rank) -> RankSpec:
    return RankSpec(
        level=rank.level,
        name=rank.name,
        min_experience=rank.min_experience,
        min_missions=rank.min_missions,
        required_competencies=dict(rank.required_competencies or {}),
        reward_experience=rank.reward_experience,
        reward_currency=rank.reward_currency,
        description=rank.description,
        campaign_id=rank.campaign_id,
    )


class RankRepository(BaseRepository[Rank]):
    async def ladder(self, session: AsyncSession, campaign_id: Optional[str]) -> List[Rank]:
        scope = Rank.campaign_id.is_(None) if campaign_id is None else Rank.campaign_id == campaign_id
        return await self.find_many_where(session, scope, order_by=[Rank.level])


class RankService(BaseService):
    """
    Rank promotion evaluator.

    Public Methods
    --------------
    - load_ladder() -> Effective ladder for a campaign (cached)
    - evaluate() -> Own transaction; cascading promotion
    - evaluate_in_session() -> Same, inside a caller's completion unit
    - get_rank_progress() -> Current/next rank and per-criterion progress
    - clone_default_ranks() -> Copy the global ladder into a campaign
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        cache: CacheService,
        ledger: RewardLedgerService,
        notifications: NotificationService,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._cache = cache
        self._ledger = ledger
        self._notifications = notifications
        self._ranks = RankRepository(Rank, get_logger(f"{__name__}.RankRepository"))
        self._participants = BaseRepository(
            Participant, get_logger(f"{__name__}.ParticipantRepository")
        )
        self._records = BaseRepository(
            ProgressionRecord, get_logger(f"{__name__}.ProgressionRepository")
        )
        self._campaigns = BaseRepository(Campaign, get_logger(f"{__name__}.CampaignRepository"))

    # ========================================================================
    # Ladder
    # ========================================================================

    async def _scope_ladder(
        self, session: AsyncSession, campaign_id: Optional[str]
    ) -> List[RankSpec]:
        async def loader() -> List[Dict[str, Any]]:
            rows = await self._ranks.ladder(session, campaign_id)
            return [rank_to_spec(row).to_dict() for row in rows]

        data = await self._cache.get_or_load(
            self._cache.key("rank_ladder", campaign_id=campaign_id or GLOBAL_SCOPE),
            loader,
            cache_type="rank_ladder",
        )
        return [RankSpec.from_dict(item) for item in data]

    async def load_ladder(
        self, session: AsyncSession, campaign_id: Optional[str] = None
    ) -> List[RankSpec]:
        """Campaign ladder when the campaign owns ranks, else the global one."""
        if campaign_id is not None:
            own = await self._scope_ladder(session, campaign_id)
            if own:
                return own
        return await self._scope_ladder(session, None)

    # ========================================================================
    # Standing
    # ========================================================================

    async def _standing(self, session: AsyncSession, participant_id: str) -> tuple[int, Standing]:
        row = (
            await session.execute(
                select(Participant.experience, Participant.current_rank_level).where(
                    Participant.id == participant_id
                )
            )
        ).one_or_none()
        if row is None:
            raise NotFoundError("Participant", participant_id)

        missions_completed = await self._records.count(
            session,
            ProgressionRecord.participant_id == participant_id,
            ProgressionRecord.status == ProgressionStatus.COMPLETED,
        )

        competency_rows = await session.execute(
            select(Competency.name, ParticipantCompetency.points)
            .join(Competency, Competency.id == ParticipantCompetency.competency_id)
            .where(ParticipantCompetency.participant_id == participant_id)
        )
        competencies = {name: int(points) for name, points in competency_rows.all()}

        return int(row.current_rank_level), Standing(
            experience=int(row.experience),
            missions_completed=missions_completed,
            competencies=competencies,
        )

    # ========================================================================
    # Evaluation
    # ========================================================================

    async def evaluate_in_session(
        self,
        session: AsyncSession,
        participant_id: str,
        campaign_id: Optional[str],
        sink: NotificationSink,
    ) -> PromotionResult:
        """
        Promote as far as the participant's numbers allow.

        Raises:
            NotFoundError: If the participant does not exist
            ConflictError: ALREADY_PROMOTED if the level moved concurrently
        """
        ladder = await self.load_ladder(session, campaign_id)
        max_promotions = int(self.get_config("ranks.max_promotions_per_evaluation", 10))
        almost_there_enabled = bool(self.get_config("ranks.almost_there_enabled", True))

        result = PromotionResult()

        for _ in range(max_promotions):
            level, standing = await self._standing(session, participant_id)
            candidate = next_rank(ladder, level)
            if candidate is None:
                result.unmet_requirements = []
                break

            verdict = check(candidate, standing)

            if not verdict.eligible:
                result.unmet_requirements = list(verdict.unmet_requirements)
                if verdict.almost_there and almost_there_enabled:
                    result.almost_there_notified = await self._notify_almost_there(
                        session, participant_id, candidate, verdict.missing_competencies, sink
                    )
                break

            await self._promote(session, participant_id, level, candidate, sink)
            result.promoted = True
            result.new_rank = candidate
            result.promotions.append(candidate.level)
            result.unmet_requirements = []
        else:
            self.log.warning(
                "Promotion cascade cap reached",
                extra={
                    "participant_id": participant_id,
                    "max_promotions": max_promotions,
                },
            )

        if result.promoted:
            self.log_operation(
                "rank_promoted",
                participant_id=participant_id,
                campaign_id=campaign_id,
                levels=result.promotions,
            )
        return result

    async def _promote(
        self,
        session: AsyncSession,
        participant_id: str,
        current_level: int,
        candidate: RankSpec,
        sink: NotificationSink,
    ) -> None:
        updated = await self._participants.update_where(
            session,
            Participant.id == participant_id,
            Participant.current_rank_level == current_level,
            values={"current_rank_level": candidate.level, "updated_at": utcnow()},
        )
        if not updated:
            raise ConflictError(
                ConflictReason.ALREADY_PROMOTED,
                f"Participant rank moved away from level {current_level}",
                participant_id=participant_id,
                rank_level=candidate.level,
            )

        await self._ledger.grant_rank_reward(
            session,
            participant_id,
            level=candidate.level,
            experience=candidate.reward_experience,
            currency=candidate.reward_currency,
            campaign_id=candidate.campaign_id,
            sink=sink,
        )
        await sink.notify(
            participant_id,
            NotificationKind.RANK_UP,
            {
                "rank_level": candidate.level,
                "rank_name": candidate.name,
                "previous_level": current_level,
                "reward_experience": candidate.reward_experience,
                "reward_currency": candidate.reward_currency,
            },
        )

    async def _notify_almost_there(
        self,
        session: AsyncSession,
        participant_id: str,
        candidate: RankSpec,
        missing: Mapping[str, int],
        sink: NotificationSink,
    ) -> bool:
        if await self._notifications.has_unread(
            session, participant_id, NotificationKind.RANK_UP, flag="ready_to_promote"
        ):
            return False

        await sink.notify(
            participant_id,
            NotificationKind.RANK_UP,
            {
                "rank_level": candidate.level,
                "rank_name": candidate.name,
                "ready_to_promote": True,
                "missing_competencies": dict(missing),
            },
        )
        return True

    async def evaluate(
        self, participant_id: str, campaign_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Standalone evaluation in its own transaction (manual re-check)."""
        self.validate_identifier(participant_id, "participant_id")

        async with DatabaseService.get_transaction() as session:
            sink = self._notifications.open_outbox(session)
            result = await self.evaluate_in_session(session, participant_id, campaign_id, sink)

        await self._notifications.publish(sink.pending)
        if result.promoted:
            await self.emit_event(
                "progression.rank.promoted",
                {
                    "participant_id": participant_id,
                    "campaign_id": campaign_id,
                    "levels": result.promotions,
                },
            )
        return result.to_dict()

    # ========================================================================
    # Progress report
    # ========================================================================

    async def get_rank_progress(
        self, participant_id: str, campaign_id: Optional[str] = None
    ) -> Dict[str, Any]:
        async with DatabaseService.get_session() as session:
            level, standing = await self._standing(session, participant_id)
            ladder = await self.load_ladder(session, campaign_id)

        current = next((rank for rank in ladder if rank.level == level), None)
        upcoming = next_rank(ladder, level)

        criteria: Dict[str, Any] = {}
        missing: List[str] = []
        ready = False
        overall = 100.0

        if upcoming is not None:
            verdict = check(upcoming, standing)
            missing = list(verdict.unmet_requirements)
            ready = verdict.eligible
            criteria = {
                "experience": {
                    "current": standing.experience,
                    "required": upcoming.min_experience,
                    "met": verdict.experience_met,
                    "percent": percent(standing.experience, upcoming.min_experience),
                },
                "missions": {
                    "current": standing.missions_completed,
                    "required": upcoming.min_missions,
                    "met": verdict.missions_met,
                    "percent": percent(standing.missions_completed, upcoming.min_missions),
                },
                "competencies": {
                    name: {
                        "current": int(standing.competencies.get(name, 0)),
                        "required": required,
                        "met": standing.competencies.get(name, 0) >= required,
                        "percent": percent(int(standing.competencies.get(name, 0)), required),
                    }
                    for name, required in upcoming.required_competencies.items()
                },
            }
            percents = [criteria["experience"]["percent"], criteria["missions"]["percent"]]
            percents.extend(item["percent"] for item in criteria["competencies"].values())
            overall = round(sum(percents) / len(percents), 1)

        return {
            "participant_id": participant_id,
            "campaign_id": campaign_id,
            "current_rank": current.to_dict() if current else {"level": level},
            "next_rank": upcoming.to_dict() if upcoming else None,
            "standing": {
                "experience": standing.experience,
                "missions_completed": standing.missions_completed,
                "competencies": dict(standing.competencies),
            },
            "criteria": criteria,
            "overall_percent": overall,
            "is_ready_for_promotion": ready,
            "missing_requirements": missing,
            "is_custom_ladder": bool(ladder) and ladder[0].campaign_id is not None,
        }

    # ========================================================================
    # Ladder administration
    # ========================================================================

    async def clone_default_ranks(self, ctx: RequestContext, campaign_id: str) -> int:
        """
        Copy the global ladder into `campaign_id`.

        Raises:
            PermissionDeniedError: Without EDIT_CAMPAIGN
            NotFoundError: If the campaign does not exist
            ConflictError: RANKS_EXIST if the campaign already has a ladder
        """
        ctx.require(Permission.EDIT_CAMPAIGN)

        async with DatabaseService.get_transaction() as session:
            if await self._campaigns.get(session, campaign_id) is None:
                raise NotFoundError("Campaign", campaign_id)
            if await self._ranks.exists(session, Rank.campaign_id == campaign_id):
                raise ConflictError(
                    ConflictReason.RANKS_EXIST,
                    "Campaign already has its own rank ladder",
                    campaign_id=campaign_id,
                )

            defaults = await self._ranks.ladder(session, None)
            self._ranks.add_many(
                session,
                [
                    Rank(
                        campaign_id=campaign_id,
                        level=rank.level,
                        name=rank.name,
                        description=rank.description,
                        min_experience=rank.min_experience,
                        min_missions=rank.min_missions,
                        required_competencies=dict(rank.required_competencies or {}),
                        reward_experience=rank.reward_experience,
                        reward_currency=rank.reward_currency,
                    )
                    for rank in defaults
                ],
            )

        await self._cache.invalidate_campaign(campaign_id)
        self.log_operation(
            "clone_default_ranks",
            campaign_id=campaign_id,
            actor_id=ctx.actor_id,
            count=len(defaults),
        )
        return len(defaults)
