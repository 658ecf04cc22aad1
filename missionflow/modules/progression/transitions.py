"""
Progression transition table.

`plan_transition()` is the single place that decides what an action does to
a record in a given status. It is pure: services read the current status,
ask for a plan, then apply it with a compare-and-set UPDATE guarded on the
status they planned from.

    LOCKED          UNLOCK -> AVAILABLE, FORCE_COMPLETE -> COMPLETED,
                    anything else: DEPENDENCIES_UNMET
    AVAILABLE       START -> IN_PROGRESS
                    SUBMIT -> COMPLETED (AUTO) | PENDING_REVIEW (otherwise)
                    CHECK_IN, QUICK_COMPLETE, FORCE_COMPLETE -> COMPLETED
    IN_PROGRESS     as AVAILABLE, but START: ALREADY_STARTED
    PENDING_REVIEW  APPROVE -> COMPLETED, REJECT -> AVAILABLE
                    CHECK_IN, QUICK_COMPLETE, FORCE_COMPLETE -> COMPLETED
                    START / SUBMIT: ALREADY_SUBMITTED
    COMPLETED       any action: ALREADY_COMPLETED

APPROVE/REJECT outside PENDING_REVIEW is NOT_PENDING_REVIEW. UNLOCK on a
record that is already past LOCKED is a no-op (returns None): unlocking is
a one-way ratchet.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from missionflow.database.models import ConfirmationType, ProgressionStatus
from missionflow.modules.shared.exceptions import ConflictError, ConflictReason

S = ProgressionStatus


class Action(str, enum.Enum):
    START = "start"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    CHECK_IN = "check_in"
    # synthetic sandbox action, bypasses the confirmation gate
    QUICK_COMPLETE = "quick_complete"
    # admin bulk completion
    FORCE_COMPLETE = "force_complete"
    UNLOCK = "unlock"


@dataclass(frozen=True)
class Transition:
    source: ProgressionStatus
    target: ProgressionStatus
    action: Action

    @property
    def completes(self) -> bool:
        return self.target is S.COMPLETED


_COMPLETING = (Action.CHECK_IN, Action.QUICK_COMPLETE, Action.FORCE_COMPLETE)


def _conflict(reason: ConflictReason, current: ProgressionStatus, action: Action) -> ConflictError:
    messages = {
        ConflictReason.ALREADY_COMPLETED: "Mission is already completed",
        ConflictReason.DEPENDENCIES_UNMET: "Mission is locked until its dependencies are completed",
        ConflictReason.NOT_PENDING_REVIEW: "Mission is not awaiting review",
        ConflictReason.ALREADY_STARTED: "Mission is already in progress",
        ConflictReason.ALREADY_SUBMITTED: "Mission is already submitted for review",
    }
    return ConflictError(
        reason,
        messages[reason],
        status=current.value,
        action=action.value,
    )


def plan_transition(
    current: ProgressionStatus,
    action: Action,
    confirmation_type: ConfirmationType = ConfirmationType.AUTO,
) -> Optional[Transition]:
    """
    Return the transition `action` causes from `current`.

    Returns None only for UNLOCK on a record already past LOCKED.

    Raises:
        ConflictError: When the action is not allowed from `current`
    """
    current = ProgressionStatus(current)
    action = Action(action)
    confirmation_type = ConfirmationType(confirmation_type)

    if current is S.COMPLETED:
        raise _conflict(ConflictReason.ALREADY_COMPLETED, current, action)

    if current is S.LOCKED:
        if action is Action.UNLOCK:
            return Transition(current, S.AVAILABLE, action)
        if action is Action.FORCE_COMPLETE:
            return Transition(current, S.COMPLETED, action)
        raise _conflict(ConflictReason.DEPENDENCIES_UNMET, current, action)

    if action is Action.UNLOCK:
        return None

    if action in _COMPLETING:
        return Transition(current, S.COMPLETED, action)

    if current is S.PENDING_REVIEW:
        if action is Action.APPROVE:
            return Transition(current, S.COMPLETED, action)
        if action is Action.REJECT:
            return Transition(current, S.AVAILABLE, action)
        raise _conflict(ConflictReason.ALREADY_SUBMITTED, current, action)

    # AVAILABLE or IN_PROGRESS
    if action in (Action.APPROVE, Action.REJECT):
        raise _conflict(ConflictReason.NOT_PENDING_REVIEW, current, action)

    if action is Action.START:
        if current is S.IN_PROGRESS:
            raise _conflict(ConflictReason.ALREADY_STARTED, current, action)
        return Transition(current, S.IN_PROGRESS, action)

    if action is Action.SUBMIT:
        target = S.COMPLETED if confirmation_type is ConfirmationType.AUTO else S.PENDING_REVIEW
        return Transition(current, target, action)

    raise ValueError(f"Unhandled action {action!r}")
