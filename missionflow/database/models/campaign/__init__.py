"""
Campaign authoring models.

Exports:
- Campaign
- Competency
- Mission
- MissionCompetencyGrant
- MissionDependency
- Rank
"""

from .campaign import Campaign
from .competency import Competency
from .mission import Mission
from .mission_competency_grant import MissionCompetencyGrant
from .mission_dependency import MissionDependency
from .rank import Rank

__all__ = [
    "Campaign",
    "Competency",
    "Mission",
    "MissionCompetencyGrant",
    "MissionDependency",
    "Rank",
]
