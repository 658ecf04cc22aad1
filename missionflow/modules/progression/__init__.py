"""Per-participant mission state machine, dependency resolver and admin actions."""

from missionflow.modules.progression.admin import ProgressionAdminService
from missionflow.modules.progression.completion import CompletionUnit, TransitionOutcome
from missionflow.modules.progression.resolver import DependencyResolver
from missionflow.modules.progression.service import ProgressionService, TransitionRequest
from missionflow.modules.progression.transitions import Action, Transition, plan_transition

__all__ = [
    "Action",
    "CompletionUnit",
    "DependencyResolver",
    "ProgressionAdminService",
    "ProgressionService",
    "Transition",
    "TransitionOutcome",
    "TransitionRequest",
    "plan_transition",
]
