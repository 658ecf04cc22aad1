"""
Reward Ledger Service - exactly-once reward application
========================================================

Purpose
-------
Applies experience, currency and competency-point deltas to a participant
once per completed mission and once per rank promotion, recording every
payout in the `reward_grants` ledger.

Domain
------
- Mission completion rewards (grant key "mission:<mission_id>")
- Rank promotion rewards (grant key "rank:<level>")
- Ledger history and campaign-scoped revocation for admin resets
- Guarded currency debits for store purchases

Exactly-Once Design
-------------------
1. Before touching any aggregate the ledger looks up the grant key for the
   participant and raises `ConflictError(ALREADY_REWARDED)` when present.
   It never trusts the caller to invoke it only once.
2. The unique constraint on (participant_id, grant_key) is the backstop for
   two transactions racing past step 1; the loser's `IntegrityError` is
   re-raised as the same `ConflictError` and its transaction rolls back.
3. Aggregates change with increment-style statements
   (`experience = experience + :delta`, competency upserts adding
   `excluded.points`), never read-modify-write, so concurrent completions
   of different missions cannot lose an update.

The ledger works inside the caller's transaction and never commits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from missionflow.core.database.base import utcnow
from missionflow.core.database.service import DatabaseService
from missionflow.core.logging.logger import get_logger
from missionflow.database.models import (
    GrantSource,
    NotificationKind,
    Participant,
    ParticipantCompetency,
    RewardGrant,
)
from missionflow.modules.graph.snapshot import CompetencyGrant, MissionNode
from missionflow.modules.shared.base_repository import BaseRepository
from missionflow.modules.shared.base_service import BaseService
from missionflow.modules.shared.exceptions import (
    ConflictError,
    ConflictReason,
    NotFoundError,
)

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.config.manager import ConfigManager
    from missionflow.core.event.bus import EventBus
    from missionflow.modules.notifications.sink import NotificationSink


def mission_grant_key(mission_id: str) -> str:
    return f"mission:{mission_id}"


def rank_grant_key(level: int) -> str:
    return f"rank:{level}"


@dataclass(frozen=True)
class RewardDelta:
    """What one ledger entry paid out."""

    grant_key: str
    experience: int = 0
    currency: int = 0
    competency_points: Dict[str, int] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.experience or self.currency or any(self.competency_points.values()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grant_key": self.grant_key,
            "experience": self.experience,
            "currency": self.currency,
            "competency_points": dict(self.competency_points),
        }


class RewardGrantRepository(BaseRepository[RewardGrant]):
    async def has_key(self, session: AsyncSession, participant_id: str, grant_key: str) -> bool:
        return await self.exists(
            session,
            RewardGrant.participant_id == participant_id,
            RewardGrant.grant_key == grant_key,
        )


class RewardLedgerService(BaseService):
    """
    Exactly-once reward ledger.

    Public Methods
    --------------
    - grant_mission_reward() -> Pay a mission's rewards once
    - grant_rank_reward() -> Pay a promotion reward once
    - revoke_campaign_grants() -> Drop ledger rows for an admin reset
    - spend_currency() -> Guarded debit, never below zero
    - get_history() -> Ledger rows of one participant
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._grants = RewardGrantRepository(
            RewardGrant, get_logger(f"{__name__}.RewardGrantRepository")
        )
        self._participants = BaseRepository(
            Participant, get_logger(f"{__name__}.ParticipantRepository")
        )

    # ========================================================================
    # PUBLIC API - Grants
    # ========================================================================

    async def grant_mission_reward(
        self,
        session: AsyncSession,
        participant_id: str,
        mission: MissionNode,
        campaign_id: str,
        sink: NotificationSink,
    ) -> RewardDelta:
        """
        Apply a mission's rewards to the participant exactly once.

        Raises:
            ConflictError: ALREADY_REWARDED if this mission was already paid
            NotFoundError: If the participant does not exist
        """
        delta = RewardDelta(
            grant_key=mission_grant_key(mission.id),
            experience=mission.experience_reward,
            currency=mission.currency_reward,
            competency_points={
                grant.competency_name: grant.points for grant in mission.competency_grants
            },
        )
        await self._apply(
            session,
            participant_id,
            delta,
            grants=mission.competency_grants,
            row=RewardGrant(
                participant_id=participant_id,
                grant_key=delta.grant_key,
                source=GrantSource.MISSION,
                campaign_id=campaign_id,
                mission_id=mission.id,
                experience=delta.experience,
                currency=delta.currency,
                competency_points=dict(delta.competency_points),
            ),
        )

        if not delta.is_empty:
            await sink.notify(
                participant_id,
                NotificationKind.REWARD_GRANTED,
                {
                    "source": GrantSource.MISSION.value,
                    "mission_id": mission.id,
                    "mission_title": mission.title,
                    **delta.to_dict(),
                },
            )
        return delta

    async def grant_rank_reward(
        self,
        session: AsyncSession,
        participant_id: str,
        level: int,
        experience: int,
        currency: int,
        campaign_id: Optional[str],
        sink: NotificationSink,
    ) -> RewardDelta:
        """
        Apply a rank's promotion reward exactly once.

        Raises:
            ConflictError: ALREADY_REWARDED if this level was already paid
        """
        delta = RewardDelta(
            grant_key=rank_grant_key(level),
            experience=experience,
            currency=currency,
        )
        await self._apply(
            session,
            participant_id,
            delta,
            grants=(),
            row=RewardGrant(
                participant_id=participant_id,
                grant_key=delta.grant_key,
                source=GrantSource.RANK_PROMOTION,
                campaign_id=campaign_id,
                rank_level=level,
                experience=experience,
                currency=currency,
                competency_points={},
            ),
        )

        if not delta.is_empty:
            await sink.notify(
                participant_id,
                NotificationKind.REWARD_GRANTED,
                {
                    "source": GrantSource.RANK_PROMOTION.value,
                    "rank_level": level,
                    **delta.to_dict(),
                },
            )
        return delta

    async def revoke_campaign_grants(
        self,
        session: AsyncSession,
        participant_id: str,
        campaign_id: str,
        include_rank_grants: bool = True,
    ) -> int:
        """
        Delete ledger rows so that a reset participant can earn them again.

        Only used by reset flows, which also zero the aggregates; the ledger
        never subtracts deltas on its own.
        """
        removed = await self._grants.delete_where(
            session,
            RewardGrant.participant_id == participant_id,
            RewardGrant.source == GrantSource.MISSION,
            RewardGrant.campaign_id == campaign_id,
        )
        if include_rank_grants:
            removed += await self._grants.delete_where(
                session,
                RewardGrant.participant_id == participant_id,
                RewardGrant.source == GrantSource.RANK_PROMOTION,
            )

        self.log_operation(
            "revoke_campaign_grants",
            participant_id=participant_id,
            campaign_id=campaign_id,
            removed=removed,
        )
        return removed

    async def spend_currency(
        self, session: AsyncSession, participant_id: str, amount: int, reason: str
    ) -> int:
        """
        Debit `amount` with `currency = currency - amount WHERE currency >= amount`
        and return the new balance. Runs in the caller's transaction.

        Raises:
            ConflictError: INSUFFICIENT_FUNDS when the balance is below `amount`
            NotFoundError: If the participant does not exist
        """
        self.validate_non_negative_int(amount, "amount")
        debited = await self._participants.update_where(
            session,
            Participant.id == participant_id,
            Participant.currency >= amount,
            values={"currency": Participant.currency - amount, "updated_at": utcnow()},
        )
        balance = await session.scalar(
            select(Participant.currency).where(Participant.id == participant_id)
        )
        if balance is None:
            raise NotFoundError("Participant", participant_id)
        if not debited:
            raise ConflictError(
                ConflictReason.INSUFFICIENT_FUNDS,
                f"Balance {balance} does not cover {amount}",
                participant_id=participant_id,
                required=amount,
                available=balance,
            )

        self.log.info(
            "Currency spent",
            extra={
                "participant_id": participant_id,
                "amount": amount,
                "reason": reason,
                "balance": balance,
            },
        )
        return int(balance)

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_history(
        self, participant_id: str, campaign_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        conditions = [RewardGrant.participant_id == participant_id]
        if campaign_id is not None:
            conditions.append(RewardGrant.campaign_id == campaign_id)

        async with DatabaseService.get_session() as session:
            rows = await self._grants.find_many_where(
                session, *conditions, order_by=[RewardGrant.id]
            )

        return [
            {
                "grant_key": row.grant_key,
                "source": row.source.value,
                "campaign_id": row.campaign_id,
                "mission_id": row.mission_id,
                "rank_level": row.rank_level,
                "experience": row.experience,
                "currency": row.currency,
                "competency_points": dict(row.competency_points or {}),
                "granted_at": row.granted_at.isoformat() if row.granted_at else None,
            }
            for row in rows
        ]

    # ========================================================================
    # Internals
    # ========================================================================

    async def _apply(
        self,
        session: AsyncSession,
        participant_id: str,
        delta: RewardDelta,
        grants: Sequence[CompetencyGrant],
        row: RewardGrant,
    ) -> None:
        if await self._grants.has_key(session, participant_id, delta.grant_key):
            raise ConflictError(
                ConflictReason.ALREADY_REWARDED,
                f"Reward {delta.grant_key} was already granted",
                participant_id=participant_id,
                grant_key=delta.grant_key,
            )

        self._grants.add(session, row)
        try:
            await self._grants.flush(session)
        except IntegrityError as exc:
            raise ConflictError(
                ConflictReason.ALREADY_REWARDED,
                f"Reward {delta.grant_key} was already granted",
                participant_id=participant_id,
                grant_key=delta.grant_key,
            ) from exc

        if delta.experience or delta.currency:
            updated = await self._participants.update_where(
                session,
                Participant.id == participant_id,
                values={
                    "experience": Participant.experience + delta.experience,
                    "currency": Participant.currency + delta.currency,
                    "updated_at": utcnow(),
                },
            )
            if not updated:
                raise NotFoundError("Participant", participant_id)

        for grant in grants:
            if grant.points:
                await self._add_competency_points(
                    session, participant_id, grant.competency_id, grant.points
                )

        self.log.info(
            "Reward granted",
            extra={
                "participant_id": participant_id,
                "grant_key": delta.grant_key,
                "experience": delta.experience,
                "currency": delta.currency,
                "competency_points": delta.competency_points,
            },
        )

    async def _add_competency_points(
        self,
        session: AsyncSession,
        participant_id: str,
        competency_id: str,
        points: int,
    ) -> None:
        """Upsert-add competency points in one statement."""
        dialect = session.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

        now = utcnow()
        stmt = insert(ParticipantCompetency).values(
            participant_id=participant_id,
            competency_id=competency_id,
            points=points,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["participant_id", "competency_id"],
            set_={
                "points": ParticipantCompetency.points + stmt.excluded.points,
                "updated_at": now,
            },
        )
        await session.execute(stmt)
