"""
Campaign Service - authoring surface for mission graphs
========================================================

Purpose
-------
Creates and edits the read-mostly side of the engine: campaigns, missions,
competencies, dependency edges, rank ladders and A/B variants. Every write
invalidates the cached snapshot (and ladder) of the campaigns it touches,
so the progression engine never works from a stale graph.

Domain
------
- Missions carry their rewards, rank gate, type-specific settings and
  competency grants (by competency name).
- Dependency edges may form cycles or too many entry points while a
  campaign is being drafted; publish() refuses a graph the validator marks
  invalid.
- create_variant() deep-copies missions, competency grants, edges and the
  campaign's own rank ladder into a new campaign linked to its base.

All commands require `Permission.EDIT_CAMPAIGN`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from missionflow.core.database.service import DatabaseService
from missionflow.core.logging.logger import get_logger
from missionflow.database.models import (
    Campaign,
    Competency,
    ConfirmationType,
    Mission,
    MissionCompetencyGrant,
    MissionDependency,
    MissionType,
    Rank,
)
from missionflow.modules.graph.service import DependencyRepository, MissionRepository
from missionflow.modules.graph.validator import IssueSeverity
from missionflow.modules.ranks.service import GLOBAL_SCOPE, RankRepository
from missionflow.modules.shared.base_repository import BaseRepository
from missionflow.modules.shared.base_service import BaseService
from missionflow.modules.shared.exceptions import (
    ConflictError,
    ConflictReason,
    NotFoundError,
    ValidationError,
)
from missionflow.modules.shared.permissions import Permission

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.config.manager import ConfigManager
    from missionflow.core.event.bus import EventBus
    from missionflow.modules.graph.service import GraphService
    from missionflow.modules.shared.permissions import RequestContext


def _campaign_to_dict(campaign: Campaign) -> Dict[str, Any]:
    return {
        "id": campaign.id,
        "name": campaign.name,
        "description": campaign.description,
        "is_active": campaign.is_active,
        "parent_campaign_id": campaign.parent_campaign_id,
        "variant_label": campaign.variant_label,
    }


class CampaignService(BaseService):
    """
    Public Methods
    --------------
    - create_campaign() / set_active() / publish()
    - add_competency()
    - add_mission() / remove_mission()
    - add_dependency() / remove_dependency()
    - add_rank()
    - create_variant()
    - validate() -> ValidationReport dict
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        graphs: GraphService,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._graphs = graphs
        self._campaigns: BaseRepository[Campaign] = BaseRepository(
            Campaign, get_logger(f"{__name__}.CampaignRepository")
        )
        self._competencies: BaseRepository[Competency] = BaseRepository(
            Competency, get_logger(f"{__name__}.CompetencyRepository")
        )
        self._missions = MissionRepository(Mission, get_logger(f"{__name__}.MissionRepository"))
        self._edges = DependencyRepository(
            MissionDependency, get_logger(f"{__name__}.DependencyRepository")
        )
        self._ranks = RankRepository(Rank, get_logger(f"{__name__}.RankRepository"))

    # ========================================================================
    # Campaigns
    # ========================================================================

    async def create_campaign(
        self,
        ctx: RequestContext,
        name: str,
        description: Optional[str] = None,
        is_active: bool = True,
        campaign_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        ctx.require(Permission.EDIT_CAMPAIGN)
        self.validate_identifier(name, "name")

        async with DatabaseService.get_transaction() as session:
            if campaign_id is not None and await self._campaigns.get(session, campaign_id):
                raise ConflictError(
                    ConflictReason.ALREADY_EXISTS,
                    "Campaign id already in use",
                    campaign_id=campaign_id,
                )
            fields: Dict[str, Any] = {
                "name": name,
                "description": description,
                "is_active": is_active,
            }
            if campaign_id is not None:
                fields["id"] = campaign_id
            campaign = self._campaigns.add(session, Campaign(**fields))
            await self._campaigns.flush(session)
            result = _campaign_to_dict(campaign)

        self.log_operation("create_campaign", campaign_id=result["id"], actor_id=ctx.actor_id)
        return result

    async def set_active(self, ctx: RequestContext, campaign_id: str, active: bool) -> None:
        """Activate or deactivate a campaign; inactive variants get no new participants."""
        ctx.require(Permission.EDIT_CAMPAIGN)

        async with DatabaseService.get_transaction() as session:
            updated = await self._campaigns.update_where(
                session, Campaign.id == campaign_id, values={"is_active": active}
            )
            if not updated:
                raise NotFoundError("Campaign", campaign_id)

        self.log_operation("set_active", campaign_id=campaign_id, active=active)

    async def validate(self, ctx: RequestContext, campaign_id: str) -> Dict[str, Any]:
        ctx.require(Permission.EDIT_CAMPAIGN)
        report = await self._graphs.validate_campaign(campaign_id)
        return report.to_dict()

    async def publish(self, ctx: RequestContext, campaign_id: str) -> Dict[str, Any]:
        """
        Validate the graph and mark the campaign active.

        Raises:
            ValidationError: If the validator reports a critical or high issue
        """
        ctx.require(Permission.EDIT_CAMPAIGN)
        await self._graphs.invalidate(campaign_id)
        report = await self._graphs.validate_campaign(campaign_id)
        if not report.is_valid:
            raise ValidationError(
                "campaign",
                "Campaign graph is not publishable",
                [
                    issue.message
                    for issue in report.issues
                    if issue.severity in (IssueSeverity.CRITICAL, IssueSeverity.HIGH)
                ],
            )

        await self.set_active(ctx, campaign_id, True)
        await self.emit_event(
            "campaigns.published",
            {"campaign_id": campaign_id, "health_score": report.health_score},
            context={"actor_id": ctx.actor_id},
        )
        return report.to_dict()

    # ========================================================================
    # Competencies
    # ========================================================================

    async def add_competency(
        self, ctx: RequestContext, name: str, description: Optional[str] = None
    ) -> Dict[str, Any]:
        ctx.require(Permission.EDIT_CAMPAIGN)
        self.validate_identifier(name, "name")

        async with DatabaseService.get_transaction() as session:
            if await self._competencies.exists(session, Competency.name == name):
                raise ConflictError(
                    ConflictReason.ALREADY_EXISTS, "Competency already exists", name=name
                )
            competency = self._competencies.add(
                session, Competency(name=name, description=description)
            )
            await self._competencies.flush(session)
            return {"id": competency.id, "name": competency.name}

    # ========================================================================
    # Missions
    # ========================================================================

    async def add_mission(
        self,
        ctx: RequestContext,
        campaign_id: str,
        title: str,
        mission_type: MissionType = MissionType.CUSTOM,
        confirmation_type: ConfirmationType = ConfirmationType.AUTO,
        experience_reward: int = 0,
        currency_reward: int = 0,
        min_rank: int = 1,
        settings: Optional[Mapping[str, Any]] = None,
        description: Optional[str] = None,
        position: int = 0,
        competencies: Optional[Mapping[str, int]] = None,
        mission_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Add a mission to a campaign.

        Args:
            competencies: {competency name: points granted on completion}

        Raises:
            NotFoundError: Unknown campaign or competency name
            ValidationError: Negative rewards or a rank gate below 1
        """
        ctx.require(Permission.EDIT_CAMPAIGN)
        self.validate_identifier(title, "title")
        self.validate_non_negative_int(experience_reward, "experience_reward")
        self.validate_non_negative_int(currency_reward, "currency_reward")
        if not isinstance(min_rank, int) or min_rank < 1:
            raise ValidationError("min_rank", "min_rank must be an integer >= 1")
        for name, points in (competencies or {}).items():
            self.validate_non_negative_int(points, f"competencies.{name}")

        async with DatabaseService.get_transaction() as session:
            await self._require_campaign(session, campaign_id)

            fields = dict(
                campaign_id=campaign_id,
                title=title,
                description=description,
                position=position,
                mission_type=MissionType(mission_type),
                confirmation_type=ConfirmationType(confirmation_type),
                experience_reward=experience_reward,
                currency_reward=currency_reward,
                min_rank=min_rank,
                settings=dict(settings or {}),
            )
            if mission_id is not None:
                fields["id"] = mission_id
            mission = self._missions.add(session, Mission(**fields))
            await self._missions.flush(session)

            for name, points in (competencies or {}).items():
                competency = await self._competencies.find_one_where(
                    session, Competency.name == name
                )
                if competency is None:
                    raise NotFoundError("Competency", name)
                session.add(
                    MissionCompetencyGrant(
                        mission_id=mission.id, competency_id=competency.id, points=points
                    )
                )
            await self._missions.flush(session)
            result = {"id": mission.id, "campaign_id": campaign_id, "title": title}

        await self._graphs.invalidate(campaign_id)
        self.log_operation("add_mission", campaign_id=campaign_id, mission_id=result["id"])
        return result

    async def remove_mission(self, ctx: RequestContext, mission_id: str) -> None:
        """
        Delete a mission and its progression records.

        Edges that referenced it stay behind as dangling edges, which the
        engine ignores; the validator reports them.
        """
        ctx.require(Permission.EDIT_CAMPAIGN)

        async with DatabaseService.get_transaction() as session:
            mission = await self._missions.get(session, mission_id)
            if mission is None:
                raise NotFoundError("Mission", mission_id)
            campaign_id = mission.campaign_id
            await self._missions.delete_where(session, Mission.id == mission_id)

        await self._graphs.invalidate(campaign_id)
        self.log_operation("remove_mission", campaign_id=campaign_id, mission_id=mission_id)

    # ========================================================================
    # Dependencies
    # ========================================================================

    async def add_dependency(
        self, ctx: RequestContext, campaign_id: str, source_id: str, target_id: str
    ) -> Dict[str, Any]:
        """
        Add the edge "target requires source completed".

        Raises:
            ValidationError: Self-loop
            NotFoundError: Either mission is not part of the campaign
            ConflictError: ALREADY_EXISTS for a duplicate edge
        """
        ctx.require(Permission.EDIT_CAMPAIGN)
        if source_id == target_id:
            raise ValidationError("target_id", "A mission cannot depend on itself")

        async with DatabaseService.get_transaction() as session:
            await self._require_campaign(session, campaign_id)
            for mission_id in (source_id, target_id):
                if not await self._missions.exists(
                    session, Mission.id == mission_id, Mission.campaign_id == campaign_id
                ):
                    raise NotFoundError("Mission", mission_id)

            if await self._edges.exists(
                session,
                MissionDependency.source_mission_id == source_id,
                MissionDependency.target_mission_id == target_id,
            ):
                raise ConflictError(
                    ConflictReason.ALREADY_EXISTS,
                    "Dependency already exists",
                    source_id=source_id,
                    target_id=target_id,
                )

            self._edges.add(
                session,
                MissionDependency(
                    campaign_id=campaign_id,
                    source_mission_id=source_id,
                    target_mission_id=target_id,
                ),
            )

        await self._graphs.invalidate(campaign_id)
        self.log_operation(
            "add_dependency", campaign_id=campaign_id, source_id=source_id, target_id=target_id
        )
        return {"campaign_id": campaign_id, "source_id": source_id, "target_id": target_id}

    async def remove_dependency(
        self, ctx: RequestContext, campaign_id: str, source_id: str, target_id: str
    ) -> bool:
        ctx.require(Permission.EDIT_CAMPAIGN)

        async with DatabaseService.get_transaction() as session:
            removed = await self._edges.delete_where(
                session,
                MissionDependency.campaign_id == campaign_id,
                MissionDependency.source_mission_id == source_id,
                MissionDependency.target_mission_id == target_id,
            )

        await self._graphs.invalidate(campaign_id)
        return removed > 0

    # ========================================================================
    # Ranks
    # ========================================================================

    async def add_rank(
        self,
        ctx: RequestContext,
        level: int,
        name: str,
        min_experience: int = 0,
        min_missions: int = 0,
        required_competencies: Optional[Mapping[str, int]] = None,
        reward_experience: int = 0,
        reward_currency: int = 0,
        campaign_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Add one level to the global ladder (campaign_id=None) or to a
        campaign's own ladder.

        Raises:
            ConflictError: ALREADY_EXISTS if the level is taken in that ladder
        """
        ctx.require(Permission.EDIT_CAMPAIGN)
        if not isinstance(level, int) or level < 1:
            raise ValidationError("level", "level must be an integer >= 1")
        self.validate_identifier(name, "name")
        for key, value in (
            ("min_experience", min_experience),
            ("min_missions", min_missions),
            ("reward_experience", reward_experience),
            ("reward_currency", reward_currency),
        ):
            self.validate_non_negative_int(value, key)

        scope = Rank.campaign_id.is_(None) if campaign_id is None else Rank.campaign_id == campaign_id
        async with DatabaseService.get_transaction() as session:
            if campaign_id is not None:
                await self._require_campaign(session, campaign_id)
            if await self._ranks.exists(session, scope, Rank.level == level):
                raise ConflictError(
                    ConflictReason.ALREADY_EXISTS,
                    "Rank level already exists in this ladder",
                    level=level,
                    campaign_id=campaign_id,
                )
            self._ranks.add(
                session,
                Rank(
                    campaign_id=campaign_id,
                    level=level,
                    name=name,
                    description=description,
                    min_experience=min_experience,
                    min_missions=min_missions,
                    required_competencies=dict(required_competencies or {}),
                    reward_experience=reward_experience,
                    reward_currency=reward_currency,
                ),
            )

        await self._graphs.invalidate(campaign_id or GLOBAL_SCOPE)
        self.log_operation("add_rank", level=level, campaign_id=campaign_id)
        return {"level": level, "name": name, "campaign_id": campaign_id}

    # ========================================================================
    # Variants
    # ========================================================================

    async def create_variant(
        self,
        ctx: RequestContext,
        campaign_id: str,
        variant_label: str,
        name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Deep-copy a base campaign into a new variant.

        Returns:
            Campaign dict plus `mission_map` {base mission id: variant mission id}

        Raises:
            NotFoundError: Unknown campaign
            ValidationError: If `campaign_id` is itself a variant
        """
        ctx.require(Permission.EDIT_CAMPAIGN)
        self.validate_identifier(variant_label, "variant_label")

        async with DatabaseService.get_transaction() as session:
            base = await self._require_campaign(session, campaign_id)
            if base.parent_campaign_id is not None:
                raise ValidationError("campaign_id", "Variants are created from a base campaign")

            variant = self._campaigns.add(
                session,
                Campaign(
                    name=name or f"{base.name} - {variant_label}",
                    description=base.description,
                    is_active=base.is_active,
                    parent_campaign_id=base.id,
                    variant_label=variant_label,
                ),
            )
            await self._campaigns.flush(session)

            mission_map = await self._copy_missions(session, base.id, variant.id)
            skipped = await self._copy_edges(session, base.id, variant.id, mission_map)
            ranks = await self._copy_ranks(session, base.id, variant.id)
            result = {**_campaign_to_dict(variant), "mission_map": mission_map, "ranks": ranks}

        self.log_operation(
            "create_variant",
            campaign_id=campaign_id,
            variant_id=result["id"],
            missions=len(mission_map),
            skipped_edges=skipped,
            ranks=ranks,
        )
        await self.emit_event(
            "campaigns.variant.created",
            {"campaign_id": campaign_id, "variant_id": result["id"], "label": variant_label},
        )
        return result

    # ========================================================================
    # Internals
    # ========================================================================

    async def _require_campaign(self, session: AsyncSession, campaign_id: str) -> Campaign:
        campaign = await self._campaigns.get(session, campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign", campaign_id)
        return campaign

    async def _copy_missions(
        self, session: AsyncSession, base_id: str, variant_id: str
    ) -> Dict[str, str]:
        mission_map: Dict[str, str] = {}
        for mission in await self._missions.for_campaign(session, base_id):
            copy = self._missions.add(
                session,
                Mission(
                    campaign_id=variant_id,
                    title=mission.title,
                    description=mission.description,
                    position=mission.position,
                    mission_type=mission.mission_type,
                    confirmation_type=mission.confirmation_type,
                    experience_reward=mission.experience_reward,
                    currency_reward=mission.currency_reward,
                    min_rank=mission.min_rank,
                    settings=dict(mission.settings or {}),
                ),
            )
            await self._missions.flush(session)
            mission_map[mission.id] = copy.id

            for grant in mission.competency_grants:
                session.add(
                    MissionCompetencyGrant(
                        mission_id=copy.id,
                        competency_id=grant.competency_id,
                        points=grant.points,
                    )
                )
        await self._missions.flush(session)
        return mission_map

    async def _copy_edges(
        self,
        session: AsyncSession,
        base_id: str,
        variant_id: str,
        mission_map: Mapping[str, str],
    ) -> int:
        copies: List[MissionDependency] = []
        skipped = 0
        for edge in await self._edges.for_campaign(session, base_id):
            source = mission_map.get(edge.source_mission_id)
            target = mission_map.get(edge.target_mission_id)
            if source is None or target is None:
                skipped += 1
                continue
            copies.append(
                MissionDependency(
                    campaign_id=variant_id, source_mission_id=source, target_mission_id=target
                )
            )
        self._edges.add_many(session, copies)
        return skipped

    async def _copy_ranks(self, session: AsyncSession, base_id: str, variant_id: str) -> int:
        own = await self._ranks.ladder(session, base_id)
        self._ranks.add_many(
            session,
            [
                Rank(
                    campaign_id=variant_id,
                    level=rank.level,
                    name=rank.name,
                    description=rank.description,
                    min_experience=rank.min_experience,
                    min_missions=rank.min_missions,
                    required_competencies=dict(rank.required_competencies or {}),
                    reward_experience=rank.reward_experience,
                    reward_currency=rank.reward_currency,
                )
                for rank in own
            ],
        )
        return len(own)
