"""
Immutable campaign graph snapshot.

Missions are held in an arena keyed by opaque mission id, with successor
and predecessor adjacency lists keyed the same way. Nothing in the engine
follows object references between missions: every traversal goes through
these id-keyed lists.

An edge whose source or target is not a mission of the snapshot is
*dangling*. Dangling edges are kept aside (`dangling_edges`) and never take
part in adjacency, so they cannot block an unlock or a bootstrap.

Snapshots round-trip through plain dicts (`to_dict` / `from_dict`) so that
the cache backend can store them as JSON.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from missionflow.database.models.enums import ConfirmationType, MissionType
from missionflow.modules.shared.exceptions import NotFoundError


@dataclass(frozen=True)
class CompetencyGrant:
    competency_id: str
    competency_name: str
    points: int


@dataclass(frozen=True)
class MissionNode:
    """Read-only view of one mission, as needed by the progression engine."""

    id: str
    title: str
    mission_type: MissionType
    confirmation_type: ConfirmationType
    experience_reward: int = 0
    currency_reward: int = 0
    min_rank: int = 1
    position: int = 0
    description: Optional[str] = None
    settings: Mapping[str, Any] = field(default_factory=dict)
    competency_grants: Tuple[CompetencyGrant, ...] = ()

    @property
    def has_reward(self) -> bool:
        return self.experience_reward > 0 or self.currency_reward > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "mission_type": self.mission_type.value,
            "confirmation_type": self.confirmation_type.value,
            "experience_reward": self.experience_reward,
            "currency_reward": self.currency_reward,
            "min_rank": self.min_rank,
            "position": self.position,
            "description": self.description,
            "settings": dict(self.settings),
            "competency_grants": [
                {
                    "competency_id": grant.competency_id,
                    "competency_name": grant.competency_name,
                    "points": grant.points,
                }
                for grant in self.competency_grants
            ],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MissionNode:
        return cls(
            id=data["id"],
            title=data["title"],
            mission_type=MissionType(data["mission_type"]),
            confirmation_type=ConfirmationType(data["confirmation_type"]),
            experience_reward=int(data.get("experience_reward", 0)),
            currency_reward=int(data.get("currency_reward", 0)),
            min_rank=int(data.get("min_rank", 1)),
            position=int(data.get("position", 0)),
            description=data.get("description"),
            settings=dict(data.get("settings") or {}),
            competency_grants=tuple(
                CompetencyGrant(
                    competency_id=grant["competency_id"],
                    competency_name=grant["competency_name"],
                    points=int(grant["points"]),
                )
                for grant in data.get("competency_grants", [])
            ),
        )


@dataclass(frozen=True)
class DependencyEdge:
    """Directed edge: `target_id` requires `source_id` completed."""

    source_id: str
    target_id: str


class CampaignGraph:
    """
    Arena of mission nodes plus id-keyed adjacency lists.

    Node iteration order is the authoring order (position, then id), which
    also fixes the order of traversal results.
    """

    def __init__(
        self,
        campaign_id: str,
        nodes: Iterable[MissionNode],
        edges: Iterable[DependencyEdge],
    ) -> None:
        self.campaign_id = campaign_id
        ordered = sorted(nodes, key=lambda node: (node.position, node.id))
        self._nodes: Dict[str, MissionNode] = {node.id: node for node in ordered}
        self._successors: Dict[str, List[str]] = {mid: [] for mid in self._nodes}
        self._predecessors: Dict[str, List[str]] = {mid: [] for mid in self._nodes}

        valid: List[DependencyEdge] = []
        dangling: List[DependencyEdge] = []
        seen: set[Tuple[str, str]] = set()

        for edge in edges:
            if edge.source_id not in self._nodes or edge.target_id not in self._nodes:
                dangling.append(edge)
                continue
            key = (edge.source_id, edge.target_id)
            if key in seen:
                continue
            seen.add(key)
            valid.append(edge)
            self._successors[edge.source_id].append(edge.target_id)
            self._predecessors[edge.target_id].append(edge.source_id)

        self.edges: Tuple[DependencyEdge, ...] = tuple(valid)
        self.dangling_edges: Tuple[DependencyEdge, ...] = tuple(dangling)

    # ------------------------------------------------------------------ #
    # Arena access
    # ------------------------------------------------------------------ #

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, mission_id: object) -> bool:
        return mission_id in self._nodes

    def __iter__(self) -> Iterator[MissionNode]:
        return iter(self._nodes.values())

    @property
    def mission_ids(self) -> List[str]:
        return list(self._nodes)

    def node(self, mission_id: str) -> MissionNode:
        try:
            return self._nodes[mission_id]
        except KeyError:
            raise NotFoundError("Mission", mission_id) from None

    # ------------------------------------------------------------------ #
    # Adjacency
    # ------------------------------------------------------------------ #

    def successors(self, mission_id: str) -> List[str]:
        return list(self._successors.get(mission_id, ()))

    def predecessors(self, mission_id: str) -> List[str]:
        return list(self._predecessors.get(mission_id, ()))

    def in_degree(self, mission_id: str) -> int:
        return len(self._predecessors.get(mission_id, ()))

    def out_degree(self, mission_id: str) -> int:
        return len(self._successors.get(mission_id, ()))

    def dangling_edges_touching(self, mission_id: str) -> List[DependencyEdge]:
        return [
            edge
            for edge in self.dangling_edges
            if mission_id in (edge.source_id, edge.target_id)
        ]

    def topological_order(self) -> List[str]:
        """
        Kahn ordering of the missions.

        Missions caught in a cycle never reach in-degree zero; they are
        appended afterwards in authoring order so callers still see every
        mission exactly once.
        """
        remaining = {mid: self.in_degree(mid) for mid in self._nodes}
        queue = deque(mid for mid, degree in remaining.items() if degree == 0)
        order: List[str] = []

        while queue:
            current = queue.popleft()
            order.append(current)
            for child in self._successors[current]:
                remaining[child] -= 1
                if remaining[child] == 0:
                    queue.append(child)

        if len(order) < len(self._nodes):
            placed = set(order)
            order.extend(mid for mid in self._nodes if mid not in placed)
        return order

    # ------------------------------------------------------------------ #
    # Serialization
    # ------------------------------------------------------------------ #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "missions": [node.to_dict() for node in self._nodes.values()],
            "edges": [
                [edge.source_id, edge.target_id]
                for edge in (*self.edges, *self.dangling_edges)
            ],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CampaignGraph:
        return cls(
            campaign_id=data["campaign_id"],
            nodes=[MissionNode.from_dict(item) for item in data.get("missions", [])],
            edges=[DependencyEdge(source, target) for source, target in data.get("edges", [])],
        )
