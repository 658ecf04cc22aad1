"""
Participant models.

Exports:
- Participant
- ParticipantCompetency
- VariantAssignment
"""

from .participant import Participant
from .participant_competency import ParticipantCompetency
from .variant_assignment import VariantAssignment

__all__ = ["Participant", "ParticipantCompetency", "VariantAssignment"]
