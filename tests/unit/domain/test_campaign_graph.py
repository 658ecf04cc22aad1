"""
Unit tests for the CampaignGraph snapshot arena.

Covers adjacency, dangling edges, topological order and dict round-trip
through the cache representation.
"""

import pytest

from missionflow.database.models import ConfirmationType, MissionType
from missionflow.modules.graph import CampaignGraph, CompetencyGrant, DependencyEdge, MissionNode
from missionflow.modules.shared.exceptions import NotFoundError


def node(mission_id: str, position: int = 0, **kwargs) -> MissionNode:
    return MissionNode(
        id=mission_id,
        title=f"Mission {mission_id}",
        mission_type=kwargs.pop("mission_type", MissionType.CUSTOM),
        confirmation_type=kwargs.pop("confirmation_type", ConfirmationType.AUTO),
        position=position,
        **kwargs,
    )


def graph(ids, edges, campaign_id="c-1") -> CampaignGraph:
    return CampaignGraph(
        campaign_id,
        nodes=[node(mid, position=index) for index, mid in enumerate(ids)],
        edges=[DependencyEdge(source, target) for source, target in edges],
    )


@pytest.mark.unit
@pytest.mark.domain
class TestAdjacency:
    def test_successors_and_predecessors(self):
        g = graph(["a", "b", "c"], [("a", "c"), ("b", "c")])

        assert g.successors("a") == ["c"]
        assert g.predecessors("c") == ["a", "b"]
        assert g.in_degree("c") == 2
        assert g.out_degree("c") == 0

    def test_duplicate_edges_are_collapsed(self):
        g = graph(["a", "b"], [("a", "b"), ("a", "b")])

        assert len(g.edges) == 1
        assert g.predecessors("b") == ["a"]

    def test_unknown_mission_has_no_neighbours(self):
        g = graph(["a"], [])

        assert g.successors("missing") == []
        assert g.in_degree("missing") == 0

    def test_node_lookup_raises_not_found(self):
        g = graph(["a"], [])

        with pytest.raises(NotFoundError) as exc_info:
            g.node("missing")

        assert exc_info.value.error_code == "MISSION_NOT_FOUND"

    def test_nodes_iterate_in_authoring_order(self):
        g = CampaignGraph(
            "c-1",
            nodes=[node("z", position=0), node("b", position=2), node("a", position=2)],
            edges=[],
        )

        assert g.mission_ids == ["z", "a", "b"]
        assert "a" in g
        assert len(g) == 3


@pytest.mark.unit
@pytest.mark.domain
class TestDanglingEdges:
    def test_edge_to_missing_mission_is_set_aside(self):
        g = graph(["a", "b"], [("a", "b"), ("a", "ghost"), ("ghost", "b")])

        assert len(g.edges) == 1
        assert len(g.dangling_edges) == 2
        # the dangling source never blocks b
        assert g.predecessors("b") == ["a"]

    def test_dangling_edges_touching(self):
        g = graph(["a", "b"], [("a", "ghost"), ("ghost", "b")])

        touching = g.dangling_edges_touching("a")

        assert touching == [DependencyEdge("a", "ghost")]


@pytest.mark.unit
@pytest.mark.domain
class TestTopologicalOrder:
    def test_diamond(self):
        g = graph(["a", "b", "c", "d"], [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")])

        order = g.topological_order()

        assert order[0] == "a"
        assert order[-1] == "d"
        assert set(order) == {"a", "b", "c", "d"}

    def test_cycle_members_are_appended(self):
        g = graph(["a", "b", "c"], [("b", "c"), ("c", "b")])

        order = g.topological_order()

        assert order == ["a", "b", "c"]


@pytest.mark.unit
@pytest.mark.domain
class TestSerialization:
    def test_round_trip_keeps_nodes_and_edges(self):
        original = CampaignGraph(
            "c-9",
            nodes=[
                node(
                    "a",
                    experience_reward=50,
                    currency_reward=5,
                    settings={"passing_score": 80},
                    competency_grants=(CompetencyGrant("k-1", "communication", 10),),
                ),
                node("b", position=1),
            ],
            edges=[DependencyEdge("a", "b"), DependencyEdge("a", "ghost")],
        )

        restored = CampaignGraph.from_dict(original.to_dict())

        assert restored.campaign_id == "c-9"
        assert restored.node("a") == original.node("a")
        assert restored.successors("a") == ["b"]
        assert restored.dangling_edges == original.dangling_edges

    def test_has_reward(self):
        assert node("a", experience_reward=1).has_reward
        assert node("b", currency_reward=1).has_reward
        assert not node("c").has_reward
