"""
Progression Service - per-participant mission state machine
============================================================

Purpose
-------
The authoritative command surface for moving a participant's mission
records through LOCKED -> AVAILABLE -> IN_PROGRESS -> PENDING_REVIEW ->
COMPLETED, including review, QR check-in and sandbox quick-complete.

Domain
------
- start / submit / approve / reject / check_in / quick_complete
- bootstrap of a participant's records in a campaign
- progress and summary queries

Command Pipeline
----------------
Every command runs the same pipeline inside one transaction:

1. lock the participant row (SELECT ... FOR UPDATE) so concurrent commands
   for the same participant serialize on PostgreSQL
2. load the campaign snapshot of the mission
3. read the record's status with a column select and ask the transition
   table for a plan (conflicts raise here)
4. run command-specific checks (rank gate, submission validator, check-in
   verifier)
5. apply the plan with a compare-and-set UPDATE guarded on the planned
   status; a completing plan runs the full `CompletionUnit`
6. when the guard fails, re-read and re-plan (bounded)

After commit: outbox notifications are published, the audit event is
logged, and a `progression.mission.<outcome>` domain event is emitted.
The whole command is wrapped in `DatabaseRetryPolicy`, which is safe
because a retried command that already applied surfaces as a
`ConflictError`, never as a second reward.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from missionflow.core.database.base import utcnow
from missionflow.core.database.service import DatabaseService
from missionflow.core.exceptions import ConfigurationError
from missionflow.core.logging.logger import LogContext, get_logger
from missionflow.database.models import (
    ConfirmationType,
    Mission,
    MissionType,
    NotificationKind,
    Participant,
    ProgressionRecord,
    ProgressionStatus,
)
from missionflow.modules.progression.completion import TransitionOutcome
from missionflow.modules.progression.repository import ProgressionRepository
from missionflow.modules.progression.transitions import Action, Transition, plan_transition
from missionflow.modules.shared.base_repository import BaseRepository
from missionflow.modules.shared.base_service import BaseService
from missionflow.modules.shared.exceptions import (
    ConflictError,
    ConflictReason,
    NotFoundError,
    PermissionDeniedError,
    TransientError,
    ValidationError,
)
from missionflow.modules.shared.permissions import Permission

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.config.manager import ConfigManager
    from missionflow.core.database.retry_policy import DatabaseRetryPolicy
    from missionflow.core.event.bus import EventBus
    from missionflow.core.infra.audit_logger import AuditLogger
    from missionflow.modules.graph.service import GraphService
    from missionflow.modules.graph.snapshot import CampaignGraph, MissionNode
    from missionflow.modules.notifications.service import NotificationService
    from missionflow.modules.notifications.sink import NotificationSink
    from missionflow.modules.progression.completion import CompletionUnit
    from missionflow.modules.progression.resolver import DependencyResolver
    from missionflow.modules.shared.permissions import RequestContext
    from missionflow.modules.submissions.checkin import CheckInVerifier
    from missionflow.modules.submissions.validator import SubmissionValidator

# Extra column values for the UPDATE, computed once the plan is known.
Precheck = Callable[
    [AsyncSession, Participant, "MissionNode", Transition], Awaitable[Dict[str, Any]]
]

STATUS_EVENTS = {
    ProgressionStatus.COMPLETED: "progression.mission.completed",
    ProgressionStatus.PENDING_REVIEW: "progression.mission.submitted",
    ProgressionStatus.IN_PROGRESS: "progression.mission.started",
    ProgressionStatus.AVAILABLE: "progression.mission.unlocked",
}

AUDIT_TYPES = {
    Action.START: "mission_started",
    Action.SUBMIT: "mission_submitted",
    Action.APPROVE: "mission_approved",
    Action.REJECT: "mission_rejected",
    Action.CHECK_IN: "mission_checked_in",
    Action.QUICK_COMPLETE: "mission_quick_completed",
    Action.FORCE_COMPLETE: "mission_force_completed",
    Action.UNLOCK: "mission_unlocked",
}


@dataclass
class TransitionRequest:
    """One command against one (participant, mission) record."""

    action: Action
    participant_id: str
    mission_id: str
    values: Dict[str, Any] = field(default_factory=dict)
    precheck: Optional[Precheck] = None
    completion_kind: NotificationKind = NotificationKind.MISSION_COMPLETED
    # notification for non-completing transitions (rejection)
    transition_kind: Optional[NotificationKind] = None


class ParticipantRepository(BaseRepository[Participant]):
    pass


class ProgressionService(BaseService):
    """
    Public Methods
    --------------
    - start_mission() -> AVAILABLE to IN_PROGRESS
    - submit() -> Validate and submit; AUTO missions complete immediately
    - approve() -> PENDING_REVIEW to COMPLETED
    - reject() -> PENDING_REVIEW to AVAILABLE with reviewer comment
    - check_in() -> QR check-in completion for offline events
    - quick_complete() -> Sandbox-only completion bypassing confirmation
    - bootstrap() -> Create a participant's records for a campaign
    - get_progress() / get_summary() -> Read models
    """

    MAX_PLAN_ATTEMPTS = 3

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        graphs: GraphService,
        resolver: DependencyResolver,
        completion: CompletionUnit,
        notifications: NotificationService,
        audit: AuditLogger,
        retry_policy: DatabaseRetryPolicy,
        submission_validator: SubmissionValidator,
        checkin_verifier: Optional[CheckInVerifier] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._graphs = graphs
        self._resolver = resolver
        self._completion = completion
        self._notifications = notifications
        self._audit = audit
        self._retry = retry_policy
        self._validator = submission_validator
        self._verifier = checkin_verifier
        self._records = ProgressionRepository(
            ProgressionRecord, get_logger(f"{__name__}.ProgressionRepository")
        )
        self._participants = ParticipantRepository(
            Participant, get_logger(f"{__name__}.ParticipantRepository")
        )

    # ========================================================================
    # PUBLIC API - Participant commands
    # ========================================================================

    async def start_mission(
        self, ctx: RequestContext, participant_id: str, mission_id: str
    ) -> Dict[str, Any]:
        """
        Mark an AVAILABLE mission as started.

        Raises:
            ConflictError: DEPENDENCIES_UNMET, ALREADY_STARTED, ALREADY_SUBMITTED,
                ALREADY_COMPLETED, RANK_TOO_LOW
        """
        self._require_actor(ctx, participant_id, Permission.SUBMIT_MISSION)

        async def precheck(session, participant, node, plan) -> Dict[str, Any]:
            self._require_rank(participant, node)
            return {"started_at": func.coalesce(ProgressionRecord.started_at, utcnow())}

        return await self._execute(
            ctx,
            "progression.start",
            TransitionRequest(Action.START, participant_id, mission_id, precheck=precheck),
        )

    async def submit(
        self,
        ctx: RequestContext,
        participant_id: str,
        mission_id: str,
        submission: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Submit a mission.

        AUTO missions complete immediately (reward, unlocks, rank evaluation);
        MANUAL_REVIEW and QR_SCAN missions move to PENDING_REVIEW.

        Raises:
            ValidationError: If the submission fails the mission type's rules
            ConflictError: DEPENDENCIES_UNMET, ALREADY_SUBMITTED,
                ALREADY_COMPLETED, RANK_TOO_LOW
        """
        self._require_actor(ctx, participant_id, Permission.SUBMIT_MISSION)
        payload = dict(submission or {})

        async def precheck(session, participant, node, plan) -> Dict[str, Any]:
            self._require_rank(participant, node)
            verdict = self._validator.validate(node.mission_type, node.settings, payload)
            if not verdict.ok:
                raise ValidationError(
                    "submission",
                    "Submission does not satisfy the mission requirements",
                    verdict.errors,
                )
            return {
                "submission": payload,
                "started_at": func.coalesce(ProgressionRecord.started_at, utcnow()),
            }

        return await self._execute(
            ctx,
            "progression.submit",
            TransitionRequest(Action.SUBMIT, participant_id, mission_id, precheck=precheck),
        )

    async def check_in(
        self,
        ctx: RequestContext,
        participant_id: str,
        mission_id: str,
        signed_payload: str,
    ) -> Dict[str, Any]:
        """
        Complete an offline event mission from a scanned QR payload.

        Raises:
            ConfigurationError: If no check-in verifier is configured
            ConflictError: WRONG_CONFIRMATION_TYPE, DEPENDENCIES_UNMET,
                ALREADY_COMPLETED
            ValidationError: If the payload is invalid, expired, or issued
                for another mission
        """
        self._require_actor(ctx, participant_id, Permission.SUBMIT_MISSION)
        if self._verifier is None:
            raise ConfigurationError("checkin.verifier", "No check-in verifier is configured")
        verifier = self._verifier

        async def precheck(session, participant, node, plan) -> Dict[str, Any]:
            if (
                node.mission_type is not MissionType.ATTEND_OFFLINE
                or node.confirmation_type is not ConfirmationType.QR_SCAN
            ):
                raise ConflictError(
                    ConflictReason.WRONG_CONFIRMATION_TYPE,
                    "Mission does not accept QR check-in",
                    mission_id=node.id,
                    mission_type=node.mission_type.value,
                    confirmation_type=node.confirmation_type.value,
                )

            hours = node.settings.get("check_in_window_hours") or self.get_config(
                "checkin.default_max_age_hours", 24
            )
            verdict = verifier.verify(signed_payload, timedelta(hours=float(hours)))
            if not verdict.valid:
                raise ValidationError("check_in", verdict.error or "Check-in payload is invalid")
            if verdict.mission_id != node.id:
                raise ValidationError("check_in", "Check-in payload was issued for another mission")

            return {"submission": {"check_in_at": utcnow().isoformat()}}

        return await self._execute(
            ctx,
            "progression.check_in",
            TransitionRequest(Action.CHECK_IN, participant_id, mission_id, precheck=precheck),
        )

    # ========================================================================
    # PUBLIC API - Review
    # ========================================================================

    async def approve(
        self,
        ctx: RequestContext,
        participant_id: str,
        mission_id: str,
        comment: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Approve a pending submission; runs the completion unit.

        Raises:
            ConflictError: ALREADY_COMPLETED on a repeated approval,
                NOT_PENDING_REVIEW when nothing is awaiting review
        """
        ctx.require(Permission.REVIEW_SUBMISSION)
        values: Dict[str, Any] = {"reviewed_by": ctx.actor_id}
        if comment is not None:
            values["reviewer_comment"] = comment

        return await self._execute(
            ctx,
            "progression.approve",
            TransitionRequest(
                Action.APPROVE,
                participant_id,
                mission_id,
                values=values,
                completion_kind=NotificationKind.MISSION_APPROVED,
            ),
        )

    async def reject(
        self,
        ctx: RequestContext,
        participant_id: str,
        mission_id: str,
        comment: str,
    ) -> Dict[str, Any]:
        """
        Send a pending submission back to AVAILABLE.

        The submission payload is kept and the reviewer comment attached;
        no reward is granted and resubmission is unlimited.
        """
        ctx.require(Permission.REVIEW_SUBMISSION)
        self.validate_identifier(comment, "comment")

        return await self._execute(
            ctx,
            "progression.reject",
            TransitionRequest(
                Action.REJECT,
                participant_id,
                mission_id,
                values={"reviewer_comment": comment, "reviewed_by": ctx.actor_id},
                transition_kind=NotificationKind.MISSION_REJECTED,
            ),
        )

    # ========================================================================
    # PUBLIC API - Sandbox
    # ========================================================================

    async def quick_complete(
        self, ctx: RequestContext, participant_id: str, mission_id: str
    ) -> Dict[str, Any]:
        """
        Complete a mission for the sandbox participant regardless of its
        confirmation type, through the same completion unit as production.

        Raises:
            PermissionDeniedError: Without RUN_SIMULATION
            ValidationError: If the participant is not a sandbox identity
        """
        ctx.require(Permission.RUN_SIMULATION)

        async def precheck(session, participant, node, plan) -> Dict[str, Any]:
            if not participant.is_sandbox:
                raise ValidationError(
                    "participant_id", "Quick-complete is limited to the sandbox participant"
                )
            return {"submission": {"quick_complete": True}}

        return await self._execute(
            ctx,
            "simulation.quick_complete",
            TransitionRequest(Action.QUICK_COMPLETE, participant_id, mission_id, precheck=precheck),
        )

    # ========================================================================
    # PUBLIC API - Bootstrap & queries
    # ========================================================================

    async def bootstrap_in_session(
        self, session: AsyncSession, participant_id: str, campaign_id: str
    ) -> Dict[str, int]:
        graph = await self._graphs.load_snapshot(session, campaign_id)
        return await self._resolver.bootstrap(session, participant_id, graph)

    async def bootstrap(
        self, ctx: RequestContext, participant_id: str, campaign_id: str
    ) -> Dict[str, int]:
        """Create the participant's missing records for a campaign."""
        ctx.require(Permission.MANAGE_PARTICIPANTS)

        async def operation() -> Dict[str, int]:
            async with DatabaseService.get_transaction() as session:
                await self.lock_participant(session, participant_id)
                return await self.bootstrap_in_session(session, participant_id, campaign_id)

        return await self._retry.execute(
            operation,
            operation_name="progression.bootstrap",
            context={"participant_id": participant_id, "campaign_id": campaign_id},
        )

    async def get_progress(
        self, ctx: RequestContext, participant_id: str, campaign_id: str
    ) -> List[Dict[str, Any]]:
        """Records of a participant in a campaign, in authoring order."""
        self._require_viewer(ctx, participant_id)

        async with DatabaseService.get_session() as session:
            graph = await self._graphs.load_snapshot(session, campaign_id)
            records = {
                record.mission_id: record
                for record in await self._records.for_campaign(session, participant_id, campaign_id)
            }

        progress = []
        for node in graph:
            record = records.get(node.id)
            if record is None:
                continue
            progress.append(
                {
                    "mission_id": node.id,
                    "title": node.title,
                    "mission_type": node.mission_type.value,
                    "confirmation_type": node.confirmation_type.value,
                    "status": record.status.value,
                    "started_at": record.started_at.isoformat() if record.started_at else None,
                    "completed_at": (
                        record.completed_at.isoformat() if record.completed_at else None
                    ),
                    "submission": record.submission,
                    "reviewer_comment": record.reviewer_comment,
                    "experience_reward": node.experience_reward,
                    "currency_reward": node.currency_reward,
                }
            )
        return progress

    async def get_summary(
        self, ctx: RequestContext, participant_id: str, campaign_id: str
    ) -> Dict[str, Any]:
        self._require_viewer(ctx, participant_id)

        async with DatabaseService.get_session() as session:
            result = await session.execute(
                select(ProgressionRecord.status, func.count())
                .where(
                    ProgressionRecord.participant_id == participant_id,
                    ProgressionRecord.campaign_id == campaign_id,
                )
                .group_by(ProgressionRecord.status)
            )
            counts = {status: int(count) for status, count in result.all()}

        total = sum(counts.values())
        completed = counts.get(ProgressionStatus.COMPLETED, 0)
        return {
            "participant_id": participant_id,
            "campaign_id": campaign_id,
            "total": total,
            "completed": completed,
            "available": counts.get(ProgressionStatus.AVAILABLE, 0),
            "in_progress": counts.get(ProgressionStatus.IN_PROGRESS, 0),
            "pending_review": counts.get(ProgressionStatus.PENDING_REVIEW, 0),
            "locked": counts.get(ProgressionStatus.LOCKED, 0),
            "completion_percent": round(completed / total * 100, 1) if total else 0.0,
        }

    # ========================================================================
    # Shared pipeline (also used by admin bulk actions)
    # ========================================================================

    async def transition_in_session(
        self,
        session: AsyncSession,
        participant: Participant,
        graph: CampaignGraph,
        node: MissionNode,
        request: TransitionRequest,
        sink: NotificationSink,
    ) -> TransitionOutcome:
        """
        Plan and apply one action inside an open transaction.

        Raises:
            NotFoundError: If the participant has no record for the mission
            ConflictError: When the transition table rejects the action
            TransientError: If the record keeps changing under the guard
        """
        for _ in range(self.MAX_PLAN_ATTEMPTS):
            current = await self._records.status_of(session, participant.id, node.id)
            if current is None:
                raise NotFoundError("ProgressionRecord", f"{participant.id}/{node.id}")

            plan = plan_transition(current, request.action, node.confirmation_type)
            if plan is None:
                return TransitionOutcome(
                    participant_id=participant.id,
                    mission_id=node.id,
                    campaign_id=graph.campaign_id,
                    action=request.action,
                    previous_status=current,
                    status=current,
                )

            values = dict(request.values)
            if request.precheck is not None:
                values.update(await request.precheck(session, participant, node, plan))

            if plan.completes:
                outcome = await self._completion.complete(
                    session,
                    participant.id,
                    graph,
                    node,
                    plan,
                    sink,
                    values=values,
                    notification_kind=request.completion_kind,
                )
                if outcome is not None:
                    return outcome
                continue

            moved = await self._records.compare_and_set(
                session,
                participant.id,
                node.id,
                expected=plan.source,
                values={**values, "status": plan.target, "updated_at": utcnow()},
            )
            if not moved:
                continue

            if request.transition_kind is not None:
                await sink.notify(
                    participant.id,
                    request.transition_kind,
                    {
                        "mission_id": node.id,
                        "mission_title": node.title,
                        "campaign_id": graph.campaign_id,
                        "comment": values.get("reviewer_comment"),
                    },
                )
            return TransitionOutcome(
                participant_id=participant.id,
                mission_id=node.id,
                campaign_id=graph.campaign_id,
                action=request.action,
                previous_status=plan.source,
                status=plan.target,
            )

        raise TransientError(
            "progression.transition",
            RuntimeError(f"record {participant.id}/{node.id} kept changing"),
        )

    async def after_commit(
        self,
        ctx: RequestContext,
        operation: str,
        outcomes: List[TransitionOutcome],
        sink: NotificationSink,
    ) -> None:
        """Publish the outbox, then audit and emit domain events."""
        await self._notifications.publish(getattr(sink, "pending", []))

        for outcome in outcomes:
            if not outcome.changed:
                continue
            await self._audit.log(
                participant_id=outcome.participant_id,
                transaction_type=AUDIT_TYPES[outcome.action],
                details=outcome.to_dict(),
                context=operation,
                meta={"actor_id": ctx.actor_id, "correlation_id": ctx.correlation_id},
            )

            event_name = STATUS_EVENTS[outcome.status]
            if outcome.action is Action.REJECT:
                event_name = "progression.mission.rejected"
            await self.emit_event(
                event_name,
                outcome.to_dict(),
                context={"actor_id": ctx.actor_id},
            )

            if outcome.promotion is not None and outcome.promotion.promoted:
                await self._audit.log(
                    participant_id=outcome.participant_id,
                    transaction_type="rank_promoted",
                    details=outcome.promotion.to_dict(),
                    context=operation,
                )
                await self.emit_event(
                    "progression.rank.promoted",
                    {
                        "participant_id": outcome.participant_id,
                        "campaign_id": outcome.campaign_id,
                        "levels": list(outcome.promotion.promotions),
                    },
                )

    async def lock_participant(self, session: AsyncSession, participant_id: str) -> Participant:
        """Row-lock the participant; serializes that participant's commands."""
        participant = await self._participants.get_for_update(session, participant_id)
        if participant is None:
            raise NotFoundError("Participant", participant_id)
        return participant

    async def mission_campaign(self, session: AsyncSession, mission_id: str) -> str:
        result = await session.execute(select(Mission.campaign_id).where(Mission.id == mission_id))
        campaign_id = result.scalar_one_or_none()
        if campaign_id is None:
            raise NotFoundError("Mission", mission_id)
        return campaign_id

    # ========================================================================
    # Internals
    # ========================================================================

    async def _execute(
        self, ctx: RequestContext, operation: str, request: TransitionRequest
    ) -> Dict[str, Any]:
        self.validate_identifier(request.participant_id, "participant_id")
        self.validate_identifier(request.mission_id, "mission_id")

        async def attempt() -> tuple[TransitionOutcome, NotificationSink]:
            async with DatabaseService.get_transaction() as session:
                sink = self._notifications.open_outbox(session)
                participant = await self.lock_participant(session, request.participant_id)
                campaign_id = await self.mission_campaign(session, request.mission_id)
                graph = await self._graphs.load_snapshot(session, campaign_id)
                node = graph.node(request.mission_id)
                outcome = await self.transition_in_session(
                    session, participant, graph, node, request, sink
                )
            return outcome, sink

        async with LogContext(
            participant_id=request.participant_id,
            actor_id=ctx.actor_id,
            operation=operation,
            correlation_id=ctx.correlation_id,
        ):
            try:
                outcome, sink = await self._retry.execute(
                    attempt,
                    operation_name=operation,
                    context={
                        "participant_id": request.participant_id,
                        "mission_id": request.mission_id,
                    },
                )
            except (ConflictError, ValidationError, NotFoundError) as exc:
                self.log.info(
                    f"{operation} refused",
                    extra={
                        "mission_id": request.mission_id,
                        "error_code": exc.error_code,
                    },
                )
                raise
            except Exception as exc:
                self.log_error(operation, exc, mission_id=request.mission_id)
                raise

            self.log_operation(
                operation,
                mission_id=request.mission_id,
                previous_status=outcome.previous_status.value if outcome.previous_status else None,
                status=outcome.status.value,
            )
            await self.after_commit(ctx, operation, [outcome], sink)

        return outcome.to_dict()

    def _require_actor(
        self, ctx: RequestContext, participant_id: str, permission: Permission
    ) -> None:
        ctx.require(permission)
        if not ctx.acts_for(participant_id):
            raise PermissionDeniedError("act_for_participant", ctx.role.value)

    def _require_viewer(self, ctx: RequestContext, participant_id: str) -> None:
        if ctx.actor_id != participant_id and not ctx.can(Permission.VIEW_ANALYTICS):
            raise PermissionDeniedError(Permission.VIEW_ANALYTICS.value, ctx.role.value)

    @staticmethod
    def _require_rank(participant: Participant, node: MissionNode) -> None:
        if participant.current_rank_level < node.min_rank:
            raise ConflictError(
                ConflictReason.RANK_TOO_LOW,
                f"Mission requires rank {node.min_rank}",
                participant_id=participant.id,
                mission_id=node.id,
                current_rank_level=participant.current_rank_level,
                min_rank=node.min_rank,
            )
