"""
Progression admin actions - bulk operations for campaign managers
==================================================================

Purpose
-------
Destructive or campaign-wide operations on one participant's records,
consumed by the management layer:

- reset_progress: re-bootstrap every record and zero the participant's
  experience, currency, competencies and rank (requires confirm=True)
- unlock_all: LOCKED -> AVAILABLE for every record in the campaign
- complete_all: force-complete every mission in dependency order through
  the same completion unit as a normal approval
- remove_participant: drop the participant's records and variant
  assignment for the campaign

Every action requires `Permission.MANAGE_PARTICIPANTS`, locks the
participant row for its whole transaction, and writes an audit event after
commit.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession

from missionflow.core.database.base import utcnow
from missionflow.core.database.service import DatabaseService
from missionflow.core.logging.logger import LogContext, get_logger
from missionflow.database.models import (
    Participant,
    ParticipantCompetency,
    ProgressionRecord,
    ProgressionStatus,
    VariantAssignment,
)
from missionflow.modules.progression.completion import TransitionOutcome
from missionflow.modules.progression.repository import ProgressionRepository
from missionflow.modules.progression.service import TransitionRequest
from missionflow.modules.progression.transitions import Action
from missionflow.modules.shared.base_repository import BaseRepository
from missionflow.modules.shared.base_service import BaseService
from missionflow.modules.shared.exceptions import ConflictError, ConflictReason
from missionflow.modules.shared.permissions import Permission

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.config.manager import ConfigManager
    from missionflow.core.database.retry_policy import DatabaseRetryPolicy
    from missionflow.core.event.bus import EventBus
    from missionflow.core.infra.audit_logger import AuditLogger
    from missionflow.modules.graph.service import GraphService
    from missionflow.modules.notifications.service import NotificationService
    from missionflow.modules.progression.service import ProgressionService
    from missionflow.modules.rewards.service import RewardLedgerService
    from missionflow.modules.shared.permissions import RequestContext


class ProgressionAdminService(BaseService):
    """
    Public Methods
    --------------
    - reset_progress() -> Destructive re-bootstrap (confirm=True required)
    - unlock_all() -> Open every locked mission of a campaign
    - complete_all() -> Force-complete the campaign in dependency order
    - remove_participant() -> Delete records and variant assignment
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        progression: ProgressionService,
        graphs: GraphService,
        ledger: RewardLedgerService,
        notifications: NotificationService,
        audit: AuditLogger,
        retry_policy: DatabaseRetryPolicy,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._progression = progression
        self._graphs = graphs
        self._ledger = ledger
        self._notifications = notifications
        self._audit = audit
        self._retry = retry_policy
        self._records = ProgressionRepository(
            ProgressionRecord, get_logger(f"{__name__}.ProgressionRepository")
        )
        self._participants: BaseRepository[Participant] = BaseRepository(
            Participant, get_logger(f"{__name__}.ParticipantRepository")
        )
        self._competencies: BaseRepository[ParticipantCompetency] = BaseRepository(
            ParticipantCompetency, get_logger(f"{__name__}.ParticipantCompetencyRepository")
        )
        self._assignments: BaseRepository[VariantAssignment] = BaseRepository(
            VariantAssignment, get_logger(f"{__name__}.VariantAssignmentRepository")
        )

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def reset_progress(
        self,
        ctx: RequestContext,
        participant_id: str,
        campaign_id: str,
        confirm: bool = False,
    ) -> Dict[str, Any]:
        """
        Re-bootstrap every record of the campaign and zero the participant.

        Experience, currency and competency points go to zero, the rank goes
        back to level 1, and the ledger rows for the campaign (and all rank
        rewards) are removed so they can be earned again.

        Raises:
            ConflictError: CONFIRMATION_REQUIRED unless confirm=True
        """
        ctx.require(Permission.MANAGE_PARTICIPANTS)
        if not confirm:
            raise ConflictError(
                ConflictReason.CONFIRMATION_REQUIRED,
                "Resetting progress is destructive and must be confirmed",
                participant_id=participant_id,
                campaign_id=campaign_id,
            )

        async def operation() -> Dict[str, Any]:
            async with DatabaseService.get_transaction() as session:
                await self._progression.lock_participant(session, participant_id)
                return await self.reset_in_session(session, participant_id, campaign_id)

        result = await self._run(ctx, "admin.reset_progress", participant_id, campaign_id, operation)
        await self._audit_action(ctx, "progress_reset", result)
        return result

    async def reset_in_session(
        self, session: AsyncSession, participant_id: str, campaign_id: str
    ) -> Dict[str, Any]:
        """Reset body shared with the simulation engine; caller holds the lock."""
        deleted = await self._records.delete_where(
            session,
            ProgressionRecord.participant_id == participant_id,
            ProgressionRecord.campaign_id == campaign_id,
        )
        revoked = await self._ledger.revoke_campaign_grants(
            session, participant_id, campaign_id, include_rank_grants=True
        )
        await self._competencies.delete_where(
            session, ParticipantCompetency.participant_id == participant_id
        )
        await self._participants.update_where(
            session,
            Participant.id == participant_id,
            values={
                "experience": 0,
                "currency": 0,
                "current_rank_level": 1,
                "updated_at": utcnow(),
            },
        )
        bootstrap = await self._progression.bootstrap_in_session(
            session, participant_id, campaign_id
        )
        return {
            "participant_id": participant_id,
            "campaign_id": campaign_id,
            "records_deleted": deleted,
            "grants_revoked": revoked,
            "records_created": bootstrap["created"],
        }

    async def unlock_all(
        self, ctx: RequestContext, participant_id: str, campaign_id: str
    ) -> Dict[str, Any]:
        """Move every LOCKED record of the campaign to AVAILABLE."""
        ctx.require(Permission.MANAGE_PARTICIPANTS)

        async def operation() -> Dict[str, Any]:
            async with DatabaseService.get_transaction() as session:
                await self._progression.lock_participant(session, participant_id)
                await self._progression.bootstrap_in_session(session, participant_id, campaign_id)
                unlocked = await self._records.update_where(
                    session,
                    ProgressionRecord.participant_id == participant_id,
                    ProgressionRecord.campaign_id == campaign_id,
                    ProgressionRecord.status == ProgressionStatus.LOCKED,
                    values={"status": ProgressionStatus.AVAILABLE, "updated_at": utcnow()},
                )
            return {
                "participant_id": participant_id,
                "campaign_id": campaign_id,
                "unlocked": unlocked,
            }

        result = await self._run(ctx, "admin.unlock_all", participant_id, campaign_id, operation)
        await self._audit_action(ctx, "missions_unlocked", result)
        return result

    async def complete_all(
        self, ctx: RequestContext, participant_id: str, campaign_id: str
    ) -> Dict[str, Any]:
        """
        Force-complete every mission of the campaign.

        Missions are visited in topological order and already-completed ones
        are skipped; each completion pays its reward once, unlocks its
        dependents and re-evaluates the rank, exactly like an approval.
        """
        ctx.require(Permission.MANAGE_PARTICIPANTS)
        sinks: List[Any] = []

        async def operation() -> List[TransitionOutcome]:
            sinks.clear()
            async with DatabaseService.get_transaction() as session:
                sink = self._notifications.open_outbox(session)
                sinks.append(sink)
                participant = await self._progression.lock_participant(session, participant_id)
                graph = await self._graphs.load_snapshot(session, campaign_id)
                await self._progression.bootstrap_in_session(session, participant_id, campaign_id)

                statuses = await self._records.statuses(session, participant_id, graph.mission_ids)
                outcomes: List[TransitionOutcome] = []
                for mission_id in graph.topological_order():
                    if statuses.get(mission_id) is ProgressionStatus.COMPLETED:
                        continue
                    outcome = await self._progression.transition_in_session(
                        session,
                        participant,
                        graph,
                        graph.node(mission_id),
                        TransitionRequest(
                            Action.FORCE_COMPLETE,
                            participant_id,
                            mission_id,
                            values={"reviewed_by": ctx.actor_id},
                        ),
                        sink,
                    )
                    outcomes.append(outcome)
            return outcomes

        outcomes = await self._run(ctx, "admin.complete_all", participant_id, campaign_id, operation)
        await self._progression.after_commit(ctx, "admin.complete_all", outcomes, sinks[-1])

        completed = [outcome.mission_id for outcome in outcomes if outcome.completed]
        experience = sum(outcome.reward.experience for outcome in outcomes if outcome.reward)
        currency = sum(outcome.reward.currency for outcome in outcomes if outcome.reward)
        promotions = [
            level
            for outcome in outcomes
            if outcome.promotion is not None
            for level in outcome.promotion.promotions
        ]
        return {
            "participant_id": participant_id,
            "campaign_id": campaign_id,
            "completed": completed,
            "experience": experience,
            "currency": currency,
            "promotions": promotions,
        }

    async def remove_participant(
        self, ctx: RequestContext, participant_id: str, campaign_id: str
    ) -> Dict[str, Any]:
        """
        Delete the participant's records in the campaign and the variant
        assignment that routed them there. Earned rewards are kept; a later
        bootstrap restores the paid missions as COMPLETED.
        """
        ctx.require(Permission.MANAGE_PARTICIPANTS)

        async def operation() -> Dict[str, Any]:
            async with DatabaseService.get_transaction() as session:
                await self._progression.lock_participant(session, participant_id)
                deleted = await self._records.delete_where(
                    session,
                    ProgressionRecord.participant_id == participant_id,
                    ProgressionRecord.campaign_id == campaign_id,
                )
                assignments = await self._assignments.delete_where(
                    session,
                    VariantAssignment.participant_id == participant_id,
                    or_(
                        VariantAssignment.campaign_id == campaign_id,
                        VariantAssignment.base_campaign_id == campaign_id,
                    ),
                )
            return {
                "participant_id": participant_id,
                "campaign_id": campaign_id,
                "records_deleted": deleted,
                "assignments_deleted": assignments,
            }

        result = await self._run(
            ctx, "admin.remove_participant", participant_id, campaign_id, operation
        )
        await self._audit_action(ctx, "participant_removed", result)
        return result

    # ========================================================================
    # Internals
    # ========================================================================

    async def _run(self, ctx, operation_name, participant_id, campaign_id, operation):
        self.validate_identifier(participant_id, "participant_id")
        self.validate_identifier(campaign_id, "campaign_id")

        async with LogContext(
            participant_id=participant_id,
            campaign_id=campaign_id,
            actor_id=ctx.actor_id,
            operation=operation_name,
            correlation_id=ctx.correlation_id,
        ):
            try:
                result = await self._retry.execute(
                    operation,
                    operation_name=operation_name,
                    context={"participant_id": participant_id, "campaign_id": campaign_id},
                )
            except Exception as exc:
                self.log_error(operation_name, exc)
                raise

            self.log_operation(operation_name)
            return result

    async def _audit_action(
        self, ctx: RequestContext, transaction_type: str, details: Dict[str, Any]
    ) -> None:
        await self._audit.log(
            participant_id=details["participant_id"],
            transaction_type=transaction_type,
            details=details,
            context="progression.admin",
            meta={"actor_id": ctx.actor_id, "correlation_id": ctx.correlation_id},
        )
        await self.emit_event(f"progression.admin.{transaction_type}", details)
