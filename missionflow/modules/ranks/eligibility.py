"""
Pure rank eligibility rules.

A participant is eligible for the rank at `current_level + 1` when all of
the following hold:

- experience >= rank.min_experience
- completed missions >= rank.min_missions
- for every competency named in rank.required_competencies, the
  participant's points >= the required points

Unmet criteria are reported as human-readable strings, in that order:
"experience: 80/100", "missions: 1/2", "communication: 15/20 points".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple


@dataclass(frozen=True)
class RankSpec:
    level: int
    name: str
    min_experience: int = 0
    min_missions: int = 0
    required_competencies: Mapping[str, int] = field(default_factory=dict)
    reward_experience: int = 0
    reward_currency: int = 0
    description: Optional[str] = None
    campaign_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "name": self.name,
            "min_experience": self.min_experience,
            "min_missions": self.min_missions,
            "required_competencies": dict(self.required_competencies),
            "reward_experience": self.reward_experience,
            "reward_currency": self.reward_currency,
            "description": self.description,
            "campaign_id": self.campaign_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RankSpec:
        return cls(
            level=int(data["level"]),
            name=data["name"],
            min_experience=int(data.get("min_experience", 0)),
            min_missions=int(data.get("min_missions", 0)),
            required_competencies={
                str(name): int(points)
                for name, points in (data.get("required_competencies") or {}).items()
            },
            reward_experience=int(data.get("reward_experience", 0)),
            reward_currency=int(data.get("reward_currency", 0)),
            description=data.get("description"),
            campaign_id=data.get("campaign_id"),
        )


@dataclass(frozen=True)
class Standing:
    """A participant's numbers as seen by the evaluator."""

    experience: int
    missions_completed: int
    competencies: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class Eligibility:
    rank: RankSpec
    experience_met: bool
    missions_met: bool
    competencies_met: bool
    unmet_requirements: Tuple[str, ...] = ()
    missing_competencies: Mapping[str, int] = field(default_factory=dict)

    @property
    def eligible(self) -> bool:
        return self.experience_met and self.missions_met and self.competencies_met

    @property
    def almost_there(self) -> bool:
        """Only the competency criterion stands between the participant and the rank."""
        return self.experience_met and self.missions_met and not self.competencies_met


def next_rank(ladder: Sequence[RankSpec], current_level: int) -> Optional[RankSpec]:
    for rank in ladder:
        if rank.level == current_level + 1:
            return rank
    return None


def check(rank: RankSpec, standing: Standing) -> Eligibility:
    unmet: List[str] = []
    missing: Dict[str, int] = {}

    experience_met = standing.experience >= rank.min_experience
    if not experience_met:
        unmet.append(f"experience: {standing.experience}/{rank.min_experience}")

    missions_met = standing.missions_completed >= rank.min_missions
    if not missions_met:
        unmet.append(f"missions: {standing.missions_completed}/{rank.min_missions}")

    for name, required in rank.required_competencies.items():
        have = int(standing.competencies.get(name, 0))
        if have < required:
            missing[name] = required - have
            unmet.append(f"{name}: {have}/{required} points")

    return Eligibility(
        rank=rank,
        experience_met=experience_met,
        missions_met=missions_met,
        competencies_met=not missing,
        unmet_requirements=tuple(unmet),
        missing_competencies=missing,
    )


def percent(current: int, required: int) -> float:
    if required <= 0:
        return 100.0
    return round(min(100.0, current / required * 100), 1)
