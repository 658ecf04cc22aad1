"""
Unit tests for pure rank eligibility rules.
"""

import pytest

from missionflow.modules.ranks.eligibility import RankSpec, Standing, check, next_rank, percent

LADDER = [
    RankSpec(level=1, name="Recruit"),
    RankSpec(level=2, name="Scout", min_experience=100, min_missions=2),
    RankSpec(
        level=3,
        name="Ranger",
        min_experience=300,
        min_missions=5,
        required_competencies={"communication": 20},
    ),
]


@pytest.mark.unit
@pytest.mark.domain
class TestNextRank:
    def test_returns_following_level(self):
        assert next_rank(LADDER, 1).name == "Scout"

    def test_top_of_ladder(self):
        assert next_rank(LADDER, 3) is None

    def test_gap_in_ladder_stops_promotion(self):
        assert next_rank([LADDER[0], LADDER[2]], 1) is None


@pytest.mark.unit
@pytest.mark.domain
class TestCheck:
    def test_all_criteria_met(self):
        verdict = check(LADDER[1], Standing(experience=120, missions_completed=2))

        assert verdict.eligible is True
        assert verdict.unmet_requirements == ()

    def test_unmet_criteria_are_reported_in_order(self):
        verdict = check(
            LADDER[2],
            Standing(experience=80, missions_completed=1, competencies={"communication": 15}),
        )

        assert verdict.eligible is False
        assert verdict.unmet_requirements == (
            "experience: 80/300",
            "missions: 1/5",
            "communication: 15/20 points",
        )
        assert verdict.missing_competencies == {"communication": 5}

    def test_almost_there_when_only_competencies_missing(self):
        verdict = check(LADDER[2], Standing(experience=300, missions_completed=5))

        assert verdict.almost_there is True
        assert verdict.eligible is False
        assert verdict.missing_competencies == {"communication": 20}

    def test_not_almost_there_when_experience_missing(self):
        verdict = check(LADDER[2], Standing(experience=10, missions_completed=5))

        assert verdict.almost_there is False

    def test_exact_threshold_is_enough(self):
        verdict = check(
            LADDER[2],
            Standing(experience=300, missions_completed=5, competencies={"communication": 20}),
        )

        assert verdict.eligible is True


@pytest.mark.unit
@pytest.mark.domain
class TestRankSpecSerialization:
    def test_round_trip(self):
        assert RankSpec.from_dict(LADDER[2].to_dict()) == LADDER[2]


@pytest.mark.unit
@pytest.mark.domain
@pytest.mark.parametrize(
    "current, required, expected",
    [
        (50, 100, 50.0),
        (150, 100, 100.0),
        (1, 3, 33.3),
        (0, 0, 100.0),
    ],
)
def test_percent(current, required, expected):
    assert percent(current, required) == expected
