"""
Graph Service - campaign snapshot loading and structural validation
===================================================================

Purpose
-------
Reads a campaign's missions and dependency edges into an immutable
`CampaignGraph` snapshot, memoized through the injected `CacheService`, and
exposes the `GraphValidator` report to authoring tools.

Domain
------
- Snapshot loading (one read per operation; never mutated afterwards)
- Snapshot cache invalidation after authoring edits
- Validation reports with issues, health score and summary counts

Design Notes
------------
- Editing a campaign after participants are in flight never revokes an
  already-unlocked record: progression reads a snapshot, and unlocks are
  one-way.
- The snapshot is cached as a plain dict so that the Redis backend can hold
  it as JSON; `CampaignGraph.from_dict` rebuilds the arena on every read.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from missionflow.core.database.service import DatabaseService
from missionflow.core.logging.logger import get_logger
from missionflow.database.models import Campaign, Mission, MissionDependency
from missionflow.modules.graph.snapshot import (
    CampaignGraph,
    CompetencyGrant,
    DependencyEdge,
    MissionNode,
)
from missionflow.modules.graph.validator import GraphValidator, ValidationReport
from missionflow.modules.shared.base_repository import BaseRepository
from missionflow.modules.shared.base_service import BaseService
from missionflow.modules.shared.exceptions import NotFoundError

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.cache.service import CacheService
    from missionflow.core.config.manager import ConfigManager
    from missionflow.core.event.bus import EventBus


# ============================================================================
# Repositories
# ============================================================================


class MissionRepository(BaseRepository[Mission]):
    async def for_campaign(self, session: AsyncSession, campaign_id: str) -> List[Mission]:
        return await self.find_many_where(
            session,
            Mission.campaign_id == campaign_id,
            order_by=[Mission.position, Mission.id],
        )


class DependencyRepository(BaseRepository[MissionDependency]):
    async def for_campaign(
        self, session: AsyncSession, campaign_id: str
    ) -> List[MissionDependency]:
        return await self.find_many_where(
            session,
            MissionDependency.campaign_id == campaign_id,
            order_by=[MissionDependency.id],
        )


def mission_to_node(mission: Mission) -> MissionNode:
    return MissionNode(
        id=mission.id,
        title=mission.title,
        mission_type=mission.mission_type,
        confirmation_type=mission.confirmation_type,
        experience_reward=mission.experience_reward,
        currency_reward=mission.currency_reward,
        min_rank=mission.min_rank,
        position=mission.position,
        description=mission.description,
        settings=dict(mission.settings or {}),
        competency_grants=tuple(
            CompetencyGrant(
                competency_id=grant.competency_id,
                competency_name=grant.competency.name,
                points=grant.points,
            )
            for grant in mission.competency_grants
        ),
    )


# ============================================================================
# GraphService
# ============================================================================


class GraphService(BaseService):
    """
    Snapshot loader and validator front-end.

    Public Methods
    --------------
    - load_snapshot() -> CampaignGraph inside a caller's session
    - get_snapshot() -> CampaignGraph in a read-only session
    - invalidate() -> Drop cached snapshot and ladder for a campaign
    - validate_campaign() -> ValidationReport for a stored campaign
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        cache: CacheService,
        validator: Optional[GraphValidator] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._cache = cache
        self._validator = validator or GraphValidator(config_manager)
        self._campaigns = BaseRepository(Campaign, get_logger(f"{__name__}.CampaignRepository"))
        self._missions = MissionRepository(Mission, get_logger(f"{__name__}.MissionRepository"))
        self._edges = DependencyRepository(
            MissionDependency, get_logger(f"{__name__}.DependencyRepository")
        )

    @property
    def validator(self) -> GraphValidator:
        return self._validator

    # ========================================================================
    # Snapshots
    # ========================================================================

    async def load_snapshot(self, session: AsyncSession, campaign_id: str) -> CampaignGraph:
        """
        Return the campaign's graph snapshot, reading through the cache.

        Raises:
            NotFoundError: If the campaign does not exist
        """

        async def loader() -> Dict[str, Any]:
            campaign = await self._campaigns.get(session, campaign_id)
            if campaign is None:
                raise NotFoundError("Campaign", campaign_id)

            missions = await self._missions.for_campaign(session, campaign_id)
            edges = await self._edges.for_campaign(session, campaign_id)

            graph = CampaignGraph(
                campaign_id,
                nodes=[mission_to_node(mission) for mission in missions],
                edges=[
                    DependencyEdge(edge.source_mission_id, edge.target_mission_id)
                    for edge in edges
                ],
            )
            self.log.debug(
                "Campaign snapshot loaded",
                extra={
                    "campaign_id": campaign_id,
                    "mission_count": len(graph),
                    "edge_count": len(graph.edges),
                    "dangling_count": len(graph.dangling_edges),
                },
            )
            return graph.to_dict()

        data = await self._cache.get_or_load(
            self._cache.key("campaign_snapshot", campaign_id=campaign_id),
            loader,
            cache_type="campaign_snapshot",
        )
        return CampaignGraph.from_dict(data)

    async def get_snapshot(self, campaign_id: str) -> CampaignGraph:
        async with DatabaseService.get_session() as session:
            return await self.load_snapshot(session, campaign_id)

    async def invalidate(self, campaign_id: str) -> None:
        removed = await self._cache.invalidate_campaign(campaign_id)
        self.log.debug(
            "Campaign cache invalidated",
            extra={"campaign_id": campaign_id, "cleared": removed},
        )

    # ========================================================================
    # Validation
    # ========================================================================

    async def validate_campaign(self, campaign_id: str) -> ValidationReport:
        """
        Run every structural check against the stored campaign.

        Never raises for an unhealthy graph; inspect `report.is_valid`.
        """
        self.validate_identifier(campaign_id, "campaign_id")
        graph = await self.get_snapshot(campaign_id)
        report = self._validator.validate(graph)

        self.log_operation(
            "validate_campaign",
            campaign_id=campaign_id,
            is_valid=report.is_valid,
            health_score=report.health_score,
            issue_count=len(report.issues),
        )
        for edge in graph.dangling_edges:
            self.log.warning(
                "Dangling dependency edge in campaign",
                extra={
                    "campaign_id": campaign_id,
                    "source_mission_id": edge.source_id,
                    "target_mission_id": edge.target_id,
                },
            )
        return report
