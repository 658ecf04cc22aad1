"""
Simulation Service - shadow run of the progression engine
==========================================================

Purpose
-------
Lets campaign authors dry-run a funnel as a fixed sandbox participant.
Nothing here re-implements progression: bootstrap, quick-complete and
reset delegate to the same resolver, completion unit, ledger and rank
evaluator that real participants go through, so the sandbox cannot drift
from production behavior.

Domain
------
- The sandbox identity (`simulation.sandbox_participant_id`) is created on
  first use and flagged `is_sandbox`, which keeps it out of variant
  analytics.
- quick_complete() completes any mission regardless of its confirmation
  type and still pays rewards, unlocks dependents and evaluates ranks.
- reset() wipes the sandbox's progress in a campaign but keeps the
  identity row.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from missionflow.core.database.service import DatabaseService
from missionflow.core.logging.logger import LogContext
from missionflow.database.models import Participant
from missionflow.modules.shared.base_service import BaseService
from missionflow.modules.shared.permissions import Permission, RequestContext

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.config.manager import ConfigManager
    from missionflow.core.database.retry_policy import DatabaseRetryPolicy
    from missionflow.core.event.bus import EventBus
    from missionflow.modules.progression.admin import ProgressionAdminService
    from missionflow.modules.progression.service import ProgressionService


class SimulationService(BaseService):
    """
    Public Methods
    --------------
    - sandbox_id -> Configured sandbox participant id
    - ensure_sandbox() -> Create the sandbox identity if absent
    - init() -> Bootstrap the sandbox in a campaign (keeps existing statuses)
    - quick_complete() -> Complete a mission bypassing its confirmation type
    - reset() -> Wipe sandbox progress, keep the identity
    - get_state() -> Sandbox totals plus per-mission progress
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        progression: ProgressionService,
        admin: ProgressionAdminService,
        retry_policy: DatabaseRetryPolicy,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._progression = progression
        self._admin = admin
        self._retry = retry_policy

    @property
    def sandbox_id(self) -> str:
        return str(self.get_config("simulation.sandbox_participant_id", "sandbox-architect"))

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def ensure_sandbox(self) -> bool:
        """Create the sandbox participant if absent; True when created."""

        async def operation() -> bool:
            async with DatabaseService.get_transaction() as session:
                return await self._ensure_sandbox_in_session(session)

        try:
            created = await self._retry.execute(
                operation, operation_name="simulation.ensure_sandbox"
            )
        except IntegrityError:
            # created concurrently by another request
            return False

        if created:
            self.log_operation("simulation.sandbox_created", participant_id=self.sandbox_id)
        return created

    async def init(self, ctx: RequestContext, campaign_id: str) -> Dict[str, Any]:
        """
        Bootstrap the sandbox's records in a campaign.

        Existing records keep their status, so calling init again after some
        quick-completions does not lose the dry-run.
        """
        ctx.require(Permission.RUN_SIMULATION)
        self.validate_identifier(campaign_id, "campaign_id")
        await self.ensure_sandbox()

        async def operation() -> Dict[str, int]:
            async with DatabaseService.get_transaction() as session:
                await self._progression.lock_participant(session, self.sandbox_id)
                return await self._progression.bootstrap_in_session(
                    session, self.sandbox_id, campaign_id
                )

        async with LogContext(
            participant_id=self.sandbox_id,
            campaign_id=campaign_id,
            actor_id=ctx.actor_id,
            operation="simulation.init",
            correlation_id=ctx.correlation_id,
        ):
            bootstrap = await self._retry.execute(
                operation,
                operation_name="simulation.init",
                context={"campaign_id": campaign_id},
            )
            self.log_operation(
                "simulation.init",
                records_created=bootstrap["created"],
                records_promoted=bootstrap["promoted"],
            )

        return {"participant_id": self.sandbox_id, "campaign_id": campaign_id, **bootstrap}

    async def quick_complete(self, ctx: RequestContext, mission_id: str) -> Dict[str, Any]:
        """
        Complete one mission for the sandbox.

        The sandbox is created and bootstrapped in the mission's campaign on
        demand; the dependency gate still applies, so a LOCKED mission raises
        `ConflictError(DEPENDENCIES_UNMET)` just as it would in production.
        """
        ctx.require(Permission.RUN_SIMULATION)
        self.validate_identifier(mission_id, "mission_id")
        await self.ensure_sandbox()

        async def bootstrap() -> None:
            async with DatabaseService.get_transaction() as session:
                await self._progression.lock_participant(session, self.sandbox_id)
                campaign_id = await self._progression.mission_campaign(session, mission_id)
                await self._progression.bootstrap_in_session(session, self.sandbox_id, campaign_id)

        await self._retry.execute(
            bootstrap,
            operation_name="simulation.bootstrap",
            context={"mission_id": mission_id},
        )
        return await self._progression.quick_complete(ctx, self.sandbox_id, mission_id)

    async def reset(self, ctx: RequestContext, campaign_id: str) -> Dict[str, Any]:
        """Reset the sandbox's progress in a campaign; the identity survives."""
        ctx.require(Permission.RUN_SIMULATION)
        self.validate_identifier(campaign_id, "campaign_id")
        await self.ensure_sandbox()

        async def operation() -> Dict[str, Any]:
            async with DatabaseService.get_transaction() as session:
                await self._progression.lock_participant(session, self.sandbox_id)
                return await self._admin.reset_in_session(session, self.sandbox_id, campaign_id)

        async with LogContext(
            participant_id=self.sandbox_id,
            campaign_id=campaign_id,
            actor_id=ctx.actor_id,
            operation="simulation.reset",
            correlation_id=ctx.correlation_id,
        ):
            result = await self._retry.execute(
                operation,
                operation_name="simulation.reset",
                context={"campaign_id": campaign_id},
            )
            self.log_operation("simulation.reset", records_created=result["records_created"])

        await self.emit_event("simulation.reset", result)
        return result

    async def get_state(self, ctx: RequestContext, campaign_id: str) -> Dict[str, Any]:
        ctx.require(Permission.RUN_SIMULATION)
        await self.ensure_sandbox()

        async with DatabaseService.get_session() as session:
            sandbox = await session.get(Participant, self.sandbox_id)

        progress = await self._progression.get_progress(
            RequestContext.system(ctx.actor_id), self.sandbox_id, campaign_id
        )
        return {
            "participant_id": self.sandbox_id,
            "campaign_id": campaign_id,
            "experience": sandbox.experience if sandbox else 0,
            "currency": sandbox.currency if sandbox else 0,
            "current_rank_level": sandbox.current_rank_level if sandbox else 1,
            "missions": progress,
        }

    # ========================================================================
    # Internals
    # ========================================================================

    async def _ensure_sandbox_in_session(self, session: AsyncSession) -> bool:
        if await session.get(Participant, self.sandbox_id) is not None:
            return False

        session.add(
            Participant(
                id=self.sandbox_id,
                display_name=self.get_config(
                    "simulation.sandbox_display_name", "Sandbox Architect"
                ),
                is_sandbox=True,
            )
        )
        await session.flush()
        return True
