"""
Unit tests for GraphValidator and the graph algorithms behind it.
"""

import pytest

from missionflow.database.models import ConfirmationType, MissionType
from missionflow.modules.graph import (
    CampaignGraph,
    DependencyEdge,
    GraphValidator,
    IssueSeverity,
    MissionNode,
    detect_cycles,
    find_dead_ends,
    find_entry_points,
    find_orphans,
)


def healthy_node(mission_id: str, position: int = 0) -> MissionNode:
    return MissionNode(
        id=mission_id,
        title=f"Mission {mission_id}",
        mission_type=MissionType.CUSTOM,
        confirmation_type=ConfirmationType.AUTO,
        experience_reward=10,
        description="Do the thing",
        position=position,
    )


def graph(ids, edges) -> CampaignGraph:
    return CampaignGraph(
        "c-1",
        nodes=[healthy_node(mid, index) for index, mid in enumerate(ids)],
        edges=[DependencyEdge(source, target) for source, target in edges],
    )


def codes(report):
    return [issue.code for issue in report.issues]


@pytest.mark.unit
@pytest.mark.domain
class TestGraphAlgorithms:
    def test_acyclic_graph_has_no_cycles(self):
        assert detect_cycles(graph(["a", "b", "c"], [("a", "b"), ("b", "c")])) == []

    def test_two_node_cycle(self):
        cycles = detect_cycles(graph(["a", "b"], [("a", "b"), ("b", "a")]))

        assert cycles == [["a", "b"]]

    def test_cycle_behind_an_entry_point(self):
        cycles = detect_cycles(
            graph(["a", "b", "c", "d"], [("a", "b"), ("b", "c"), ("c", "d"), ("d", "b")])
        )

        assert cycles == [["b", "c", "d"]]

    def test_entry_points_dead_ends_and_orphans(self):
        g = graph(["a", "b", "c", "lonely"], [("a", "b"), ("a", "c")])

        assert find_entry_points(g) == ["a", "lonely"]
        assert find_dead_ends(g) == ["b", "c", "lonely"]
        assert find_orphans(g) == ["lonely"]

    def test_single_mission_is_never_an_orphan(self):
        assert find_orphans(graph(["solo"], [])) == []


@pytest.mark.unit
@pytest.mark.domain
class TestGraphValidator:
    def test_healthy_chain_scores_100(self):
        report = GraphValidator().validate(graph(["a", "b", "c"], [("a", "b"), ("b", "c")]))

        assert report.is_valid is True
        assert report.health_score == 100
        assert report.issues == []
        assert report.summary["missions"] == 3
        assert report.summary["dependencies"] == 2
        assert report.summary["entry_points"] == 1

    def test_empty_campaign_is_high(self):
        report = GraphValidator().validate(graph([], []))

        assert codes(report) == ["EMPTY_CAMPAIGN"]
        assert report.is_valid is False
        assert report.health_score == 85

    def test_cycle_is_critical_and_invalid(self):
        # Arrange: every mission has an incoming edge
        g = graph(["a", "b"], [("a", "b"), ("b", "a")])

        # Act
        report = GraphValidator().validate(g)

        # Assert
        assert report.is_valid is False
        assert codes(report) == ["CYCLE", "NO_ENTRY_POINT"]
        assert report.issues[0].severity is IssueSeverity.CRITICAL
        assert "Mission a -> Mission b" in report.issues[0].message
        assert report.health_score == 40
        assert report.summary["cycles"] == 1
        assert report.summary["critical"] == 2

    def test_too_many_entry_points(self):
        ids = [f"m{i}" for i in range(6)]
        edges = [(ids[i], "end") for i in range(6)]
        report = GraphValidator().validate(graph([*ids, "end"], edges))

        assert "TOO_MANY_ENTRY_POINTS" in codes(report)
        assert report.is_valid is False

    def test_orphan_is_medium_and_still_valid(self):
        report = GraphValidator().validate(graph(["a", "b", "lonely"], [("a", "b")]))

        assert codes(report) == ["ORPHAN_MISSION"]
        assert report.is_valid is True
        assert report.health_score == 95

    def test_missing_reward_and_description_are_low(self):
        bare = MissionNode(
            id="a",
            title="Bare",
            mission_type=MissionType.CUSTOM,
            confirmation_type=ConfirmationType.AUTO,
        )
        report = GraphValidator().validate(CampaignGraph("c-1", [bare], []))

        assert codes(report) == ["MISSING_REWARD", "MISSING_DESCRIPTION"]
        assert report.health_score == 96
        assert report.is_valid is True

    def test_too_many_dead_ends(self):
        leaves = ["l1", "l2", "l3", "l4"]
        report = GraphValidator().validate(
            graph(["root", *leaves], [("root", leaf) for leaf in leaves])
        )

        assert codes(report) == ["TOO_MANY_DEAD_ENDS"]
        assert report.summary["dead_ends"] == 4

    def test_issues_sorted_by_severity(self):
        g = CampaignGraph(
            "c-1",
            nodes=[
                MissionNode("a", "A", MissionType.CUSTOM, ConfirmationType.AUTO),
                MissionNode("b", "B", MissionType.CUSTOM, ConfirmationType.AUTO, position=1),
            ],
            edges=[DependencyEdge("a", "b"), DependencyEdge("b", "a")],
        )

        report = GraphValidator().validate(g)
        severities = [issue.severity for issue in report.issues]

        assert severities == sorted(severities, key=["critical", "high", "medium", "low"].index)

    def test_health_score_floors_at_zero(self):
        ids = [f"m{i}" for i in range(4)]
        cycle_edges = [(ids[i], ids[(i + 1) % 4]) for i in range(4)]
        extra = [("m0", "m2"), ("m2", "m0"), ("m1", "m3"), ("m3", "m1")]

        report = GraphValidator().validate(graph(ids, cycle_edges + extra))

        assert report.health_score == 0

    def test_dangling_edges_are_counted(self):
        g = CampaignGraph(
            "c-1",
            nodes=[healthy_node("a")],
            edges=[DependencyEdge("a", "ghost")],
        )

        report = GraphValidator().validate(g)

        assert report.summary["dangling_dependencies"] == 1
        assert report.is_valid is True

    def test_thresholds_come_from_config(self, config_manager):
        config_manager.set("graph.max_dead_ends", 1)
        g = graph(["root", "l1", "l2"], [("root", "l1"), ("root", "l2")])

        report = GraphValidator(config_manager).validate(g)

        assert "TOO_MANY_DEAD_ENDS" in codes(report)
