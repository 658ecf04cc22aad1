"""
Participant Service - identities and profile read model.

Participants are created here; their aggregate columns (experience,
currency, rank) are only ever changed by the reward ledger, the rank
evaluator and admin resets.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import func, select

from missionflow.core.database.service import DatabaseService
from missionflow.core.logging.logger import get_logger
from missionflow.database.models import (
    Competency,
    Participant,
    ParticipantCompetency,
    ProgressionRecord,
    ProgressionStatus,
)
from missionflow.modules.shared.base_repository import BaseRepository
from missionflow.modules.shared.base_service import BaseService
from missionflow.modules.shared.exceptions import (
    ConflictError,
    ConflictReason,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from missionflow.modules.shared.permissions import Permission

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.config.manager import ConfigManager
    from missionflow.core.event.bus import EventBus
    from missionflow.modules.shared.permissions import RequestContext


class ParticipantService(BaseService):
    """
    Public Methods
    --------------
    - register() -> Create a participant (self-registration or manager)
    - get_profile() -> Totals, rank, competencies and completed count
    - get_leaderboard() -> Participants ranked by experience
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._participants: BaseRepository[Participant] = BaseRepository(
            Participant, get_logger(f"{__name__}.ParticipantRepository")
        )

    async def register(
        self,
        ctx: RequestContext,
        participant_id: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Raises:
            PermissionDeniedError: Registering someone else without MANAGE_PARTICIPANTS
            ConflictError: ALREADY_EXISTS for a taken id
        """
        if participant_id != ctx.actor_id:
            ctx.require(Permission.MANAGE_PARTICIPANTS)

        async with DatabaseService.get_transaction() as session:
            if participant_id is not None and await self._participants.get(session, participant_id):
                raise ConflictError(
                    ConflictReason.ALREADY_EXISTS,
                    "Participant already exists",
                    participant_id=participant_id,
                )
            participant = Participant(display_name=display_name)
            if participant_id is not None:
                participant.id = participant_id
            self._participants.add(session, participant)
            await self._participants.flush(session)
            created_id = participant.id

        self.log_operation("register_participant", participant_id=created_id)
        await self.emit_event("participants.registered", {"participant_id": created_id})
        return {
            "id": created_id,
            "display_name": display_name,
            "experience": 0,
            "currency": 0,
            "current_rank_level": 1,
        }

    async def get_profile(self, ctx: RequestContext, participant_id: str) -> Dict[str, Any]:
        if ctx.actor_id != participant_id and not ctx.can(Permission.VIEW_ANALYTICS):
            raise PermissionDeniedError(Permission.VIEW_ANALYTICS.value, ctx.role.value)

        async with DatabaseService.get_session() as session:
            participant = await self._participants.get(session, participant_id)
            if participant is None:
                raise NotFoundError("Participant", participant_id)

            competencies = await session.execute(
                select(Competency.name, ParticipantCompetency.points)
                .join(Competency, Competency.id == ParticipantCompetency.competency_id)
                .where(ParticipantCompetency.participant_id == participant_id)
                .order_by(Competency.name)
            )
            completed = await session.execute(
                select(func.count()).where(
                    ProgressionRecord.participant_id == participant_id,
                    ProgressionRecord.status == ProgressionStatus.COMPLETED,
                )
            )

            return {
                "id": participant.id,
                "display_name": participant.display_name,
                "experience": participant.experience,
                "currency": participant.currency,
                "current_rank_level": participant.current_rank_level,
                "is_sandbox": participant.is_sandbox,
                "competencies": {name: int(points) for name, points in competencies.all()},
                "missions_completed": int(completed.scalar_one()),
            }

    async def get_leaderboard(
        self, limit: Optional[int] = None, campaign_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Participants ranked by experience (ties by id), sandboxes excluded.

        With `campaign_id`, only participants holding a record in that
        campaign are listed; `missions_completed` counts every campaign.
        """
        default = self.get_config("leaderboard.default_limit", 50)
        ceiling = self.get_config("leaderboard.max_limit", 200)
        limit = default if limit is None else limit
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= ceiling:
            raise ValidationError("limit", f"limit must be between 1 and {ceiling}")

        completed = (
            select(func.count(ProgressionRecord.id))
            .where(
                ProgressionRecord.participant_id == Participant.id,
                ProgressionRecord.status == ProgressionStatus.COMPLETED,
            )
            .correlate(Participant)
            .scalar_subquery()
        )
        stmt = (
            select(
                Participant.id,
                Participant.display_name,
                Participant.experience,
                Participant.current_rank_level,
                completed.label("missions_completed"),
            )
            .where(Participant.is_sandbox.is_(False))
            .order_by(Participant.experience.desc(), Participant.id)
            .limit(limit)
        )
        if campaign_id is not None:
            stmt = stmt.where(
                select(ProgressionRecord.id)
                .where(
                    ProgressionRecord.participant_id == Participant.id,
                    ProgressionRecord.campaign_id == campaign_id,
                )
                .exists()
            )

        async with DatabaseService.get_session() as session:
            rows = (await session.execute(stmt)).all()

        return [
            {
                "position": position,
                "id": row.id,
                "display_name": row.display_name,
                "experience": row.experience,
                "current_rank_level": row.current_rank_level,
                "missions_completed": int(row.missions_completed),
            }
            for position, row in enumerate(rows, start=1)
        ]
