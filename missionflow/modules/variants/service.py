"""
Variant Service - A/B campaign assignment and comparison
=========================================================

Purpose
-------
Routes a participant who joins a campaign to one of its branches (the base
campaign or an active variant), bootstraps their progression records in
that branch, and reports per-branch analytics for A/B comparison.

Domain
------
- assign(): idempotent per (participant, base campaign). The first request
  picks the least-populated branch; every later request returns the stored
  assignment instead of re-rolling.
- get_variant_analytics() / compare_variants(): completion metrics per
  branch and a two-proportion significance test between the two best.

Design Notes
------------
- The participant row is locked for the assignment transaction; the unique
  constraint on (participant_id, base_campaign_id) is the backstop when two
  requests for the same participant still race. The loser re-reads and
  returns the winner's assignment.
- Branch counts are read live from `variant_assignments` at decision time.
  Concurrent assignments of different participants can both see the same
  counts; the split stays approximately balanced, which is all the
  heuristic promises.
- Sandbox participants are excluded from analytics.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from missionflow.core.database.service import DatabaseService
from missionflow.core.logging.logger import LogContext, get_logger
from missionflow.database.models import (
    Campaign,
    Participant,
    ProgressionRecord,
    ProgressionStatus,
    VariantAssignment,
)
from missionflow.modules.shared.base_repository import BaseRepository
from missionflow.modules.shared.base_service import BaseService
from missionflow.modules.shared.exceptions import NotFoundError, PermissionDeniedError
from missionflow.modules.shared.permissions import Permission
from missionflow.modules.variants.balancer import choose_branch
from missionflow.modules.variants.statistics import NOT_SIGNIFICANT, two_proportion_test

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.config.manager import ConfigManager
    from missionflow.core.database.retry_policy import DatabaseRetryPolicy
    from missionflow.core.event.bus import EventBus
    from missionflow.core.infra.audit_logger import AuditLogger
    from missionflow.modules.progression.service import ProgressionService
    from missionflow.modules.shared.permissions import RequestContext


class VariantAssignmentRepository(BaseRepository[VariantAssignment]):
    async def for_base(
        self, session: AsyncSession, participant_id: str, base_campaign_id: str
    ) -> Optional[VariantAssignment]:
        return await self.find_one_where(
            session,
            VariantAssignment.participant_id == participant_id,
            VariantAssignment.base_campaign_id == base_campaign_id,
        )

    async def branch_counts(
        self, session: AsyncSession, campaign_ids: List[str]
    ) -> Dict[str, int]:
        result = await session.execute(
            select(VariantAssignment.campaign_id, func.count())
            .where(VariantAssignment.campaign_id.in_(campaign_ids))
            .group_by(VariantAssignment.campaign_id)
        )
        return {campaign_id: int(count) for campaign_id, count in result.all()}


class CampaignRepository(BaseRepository[Campaign]):
    async def variants_of(
        self, session: AsyncSession, campaign_id: str, active_only: bool = True
    ) -> List[Campaign]:
        conditions = [Campaign.parent_campaign_id == campaign_id]
        if active_only:
            conditions.append(Campaign.is_active.is_(True))
        return await self.find_many_where(
            session, *conditions, order_by=[Campaign.created_at, Campaign.id]
        )


def _assignment_to_dict(assignment: VariantAssignment, created: bool) -> Dict[str, Any]:
    return {
        "participant_id": assignment.participant_id,
        "base_campaign_id": assignment.base_campaign_id,
        "campaign_id": assignment.campaign_id,
        "assigned_at": assignment.assigned_at.isoformat() if assignment.assigned_at else None,
        "created": created,
    }


class VariantService(BaseService):
    """
    Public Methods
    --------------
    - assign() -> Route a participant to a branch and bootstrap its records
    - get_assignment() -> Stored assignment for (participant, base campaign)
    - get_variant_analytics() -> Completion metrics for one branch
    - compare_variants() -> Rank branches and test the top two for significance
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        progression: ProgressionService,
        audit: AuditLogger,
        retry_policy: DatabaseRetryPolicy,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._progression = progression
        self._audit = audit
        self._retry = retry_policy
        self._assignments = VariantAssignmentRepository(
            VariantAssignment, get_logger(f"{__name__}.VariantAssignmentRepository")
        )
        self._campaigns = CampaignRepository(
            Campaign, get_logger(f"{__name__}.CampaignRepository")
        )

    # ========================================================================
    # PUBLIC API - Assignment
    # ========================================================================

    async def assign(
        self, ctx: RequestContext, participant_id: str, campaign_id: str
    ) -> Dict[str, Any]:
        """
        Assign a participant to a branch of `campaign_id`.

        A campaign id that names a variant is resolved to its base campaign
        first, so the participant is balanced across the whole experiment.

        Returns:
            Assignment dict; `created` is False when it already existed.

        Raises:
            NotFoundError: Unknown participant or campaign
        """
        if not (ctx.acts_for(participant_id) or ctx.can(Permission.MANAGE_PARTICIPANTS)):
            raise PermissionDeniedError(Permission.MANAGE_PARTICIPANTS.value, ctx.role.value)
        self.validate_identifier(participant_id, "participant_id")
        self.validate_identifier(campaign_id, "campaign_id")

        async def operation() -> Dict[str, Any]:
            async with DatabaseService.get_transaction() as session:
                await self._progression.lock_participant(session, participant_id)
                base = await self._resolve_base(session, campaign_id)

                existing = await self._assignments.for_base(session, participant_id, base.id)
                if existing is not None:
                    return _assignment_to_dict(existing, created=False)

                target_id = await self._pick_branch(session, base)
                assignment = self._assignments.add(
                    session,
                    VariantAssignment(
                        participant_id=participant_id,
                        base_campaign_id=base.id,
                        campaign_id=target_id,
                    ),
                )
                await self._assignments.flush(session)
                bootstrap = await self._progression.bootstrap_in_session(
                    session, participant_id, target_id
                )
                return {
                    **_assignment_to_dict(assignment, created=True),
                    "records_created": bootstrap["created"],
                }

        async with LogContext(
            participant_id=participant_id,
            campaign_id=campaign_id,
            actor_id=ctx.actor_id,
            operation="variants.assign",
            correlation_id=ctx.correlation_id,
        ):
            try:
                result = await self._retry.execute(
                    operation,
                    operation_name="variants.assign",
                    context={"participant_id": participant_id, "campaign_id": campaign_id},
                )
            except IntegrityError:
                # a concurrent request for the same participant won the insert
                self.log.info(
                    "Variant assignment race lost; returning stored assignment",
                    extra={"participant_id": participant_id, "campaign_id": campaign_id},
                )
                return await self.get_assignment(participant_id, campaign_id)

            if not result["created"]:
                return result

            self.log_operation(
                "variants.assign",
                assigned_campaign_id=result["campaign_id"],
                base_campaign_id=result["base_campaign_id"],
            )
            await self._audit.log(
                participant_id=participant_id,
                transaction_type="variant_assigned",
                details=result,
                context="variants.assign",
            )
            await self.emit_event("variants.participant.assigned", result)
            return result

    async def get_assignment(self, participant_id: str, campaign_id: str) -> Dict[str, Any]:
        async with DatabaseService.get_session() as session:
            base = await self._resolve_base(session, campaign_id)
            assignment = await self._assignments.for_base(session, participant_id, base.id)
        if assignment is None:
            raise NotFoundError("VariantAssignment", f"{participant_id}/{campaign_id}")
        return _assignment_to_dict(assignment, created=False)

    # ========================================================================
    # PUBLIC API - Analytics
    # ========================================================================

    async def get_variant_analytics(self, campaign_id: str) -> Dict[str, Any]:
        """Completion metrics of one branch, excluding sandbox participants."""
        async with DatabaseService.get_session() as session:
            campaign = await self._campaigns.get(session, campaign_id)
            if campaign is None:
                raise NotFoundError("Campaign", campaign_id)
            return await self._branch_analytics(session, campaign)

    async def compare_variants(self, ctx: RequestContext, campaign_id: str) -> Dict[str, Any]:
        """
        Rank the base campaign and all of its variants by completion rate.

        The best branch is tested against the runner-up with a two-proportion
        z-test at `variants.significance_level`.
        """
        ctx.require(Permission.VIEW_ANALYTICS)

        async with DatabaseService.get_session() as session:
            base = await self._resolve_base(session, campaign_id)
            branches = [base, *await self._campaigns.variants_of(session, base.id, active_only=False)]
            analytics = [await self._branch_analytics(session, branch) for branch in branches]

        analytics.sort(key=lambda item: item["completion_rate"], reverse=True)
        winner = analytics[0]
        runner_up = analytics[1] if len(analytics) > 1 else None

        improvement: Optional[float] = None
        significance = NOT_SIGNIFICANT
        if runner_up is not None:
            if runner_up["completion_rate"] > 0:
                improvement = round(
                    (winner["completion_rate"] - runner_up["completion_rate"])
                    / runner_up["completion_rate"]
                    * 100,
                    2,
                )
            significance = two_proportion_test(
                winner["completed_missions"],
                winner["total_missions"],
                runner_up["completed_missions"],
                runner_up["total_missions"],
                alpha=float(self.get_config("variants.significance_level", 0.05)),
            )

        return {
            "base_campaign_id": base.id,
            "winner": winner,
            "improvement_percent": improvement,
            "significance": significance.to_dict(),
            "branches": analytics,
        }

    # ========================================================================
    # Internals
    # ========================================================================

    async def _resolve_base(self, session: AsyncSession, campaign_id: str) -> Campaign:
        campaign = await self._campaigns.get(session, campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign", campaign_id)
        if campaign.parent_campaign_id is None:
            return campaign

        base = await self._campaigns.get(session, campaign.parent_campaign_id)
        if base is None:
            raise NotFoundError("Campaign", campaign.parent_campaign_id)
        return base

    async def _pick_branch(self, session: AsyncSession, base: Campaign) -> str:
        variants = await self._campaigns.variants_of(session, base.id)
        if not variants:
            return base.id

        branch_ids = [base.id, *(variant.id for variant in variants)]
        counts = await self._assignments.branch_counts(session, branch_ids)
        target = choose_branch((branch_id, counts.get(branch_id, 0)) for branch_id in branch_ids)

        self.log.debug(
            "Variant branch chosen",
            extra={
                "base_campaign_id": base.id,
                "chosen_campaign_id": target,
                "branch_counts": {branch_id: counts.get(branch_id, 0) for branch_id in branch_ids},
            },
        )
        return target

    async def _branch_analytics(self, session: AsyncSession, campaign: Campaign) -> Dict[str, Any]:
        real_participant = Participant.is_sandbox.is_(False)

        result = await session.execute(
            select(
                ProgressionRecord.participant_id,
                ProgressionRecord.status,
                ProgressionRecord.started_at,
                ProgressionRecord.completed_at,
            )
            .join(Participant, Participant.id == ProgressionRecord.participant_id)
            .where(ProgressionRecord.campaign_id == campaign.id, real_participant)
        )
        rows = result.all()

        participants = {row.participant_id for row in rows}
        completed = [row for row in rows if row.status is ProgressionStatus.COMPLETED]
        durations = [
            _hours_between(row.started_at, row.completed_at)
            for row in completed
            if row.started_at is not None and row.completed_at is not None
        ]

        assigned = await session.execute(
            select(func.count())
            .select_from(VariantAssignment)
            .join(Participant, Participant.id == VariantAssignment.participant_id)
            .where(VariantAssignment.campaign_id == campaign.id, real_participant)
        )

        avg_experience = None
        if participants:
            avg_result = await session.execute(
                select(func.avg(Participant.experience)).where(
                    Participant.id.in_(
                        select(distinct(ProgressionRecord.participant_id)).where(
                            ProgressionRecord.campaign_id == campaign.id
                        )
                    ),
                    real_participant,
                )
            )
            value = avg_result.scalar_one_or_none()
            avg_experience = round(float(value), 2) if value is not None else None

        total = len(rows)
        return {
            "campaign_id": campaign.id,
            "variant_label": campaign.variant_label,
            "is_variant": campaign.is_variant,
            "assigned_participants": int(assigned.scalar_one()),
            "unique_participants": len(participants),
            "total_missions": total,
            "completed_missions": len(completed),
            "completion_rate": round(len(completed) / total * 100, 2) if total else 0.0,
            "average_experience": avg_experience,
            "avg_time_to_complete_hours": (
                round(sum(durations) / len(durations), 2) if durations else None
            ),
        }


def _hours_between(start: datetime, end: datetime) -> float:
    # SQLite hands back naive datetimes; compare like with like
    if (start.tzinfo is None) != (end.tzinfo is None):
        start, end = start.replace(tzinfo=None), end.replace(tzinfo=None)
    return max(0.0, (end - start).total_seconds() / 3600.0)
