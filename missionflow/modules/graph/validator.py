"""
Structural health checks for a campaign's mission dependency graph.

Purpose
-------
Give campaign authors feedback before publishing: cycles, missing or
excessive entry points, disconnected missions, dead ends, and content gaps
(no reward, no description).

The validator never raises on a bad graph. It returns a `ValidationReport`
with an ordered issue list so authoring tools decide whether to block
publishing; `CampaignService.publish` is the caller that blocks.

Severity Taxonomy
-----------------
- critical: any cycle; zero entry points in a non-empty graph
- high: empty campaign; more entry points than `graph.max_entry_points`
- medium: orphan mission (no edges at all, only when >1 mission exists)
- low: missing reward, missing description, more dead ends than
  `graph.max_dead_ends`

Health score is `max(0, 100 - sum(weight per issue))` with weights from
`graph.severity_weights` (critical 30, high 15, medium 5, low 2).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from missionflow.modules.graph.snapshot import CampaignGraph

if TYPE_CHECKING:
    from missionflow.core.config.manager import ConfigManager


class IssueSeverity(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_ORDER = {
    IssueSeverity.CRITICAL: 0,
    IssueSeverity.HIGH: 1,
    IssueSeverity.MEDIUM: 2,
    IssueSeverity.LOW: 3,
}

DEFAULT_WEIGHTS = {"critical": 30, "high": 15, "medium": 5, "low": 2}


@dataclass(frozen=True)
class GraphIssue:
    severity: IssueSeverity
    code: str
    message: str
    remediation: str
    mission_ids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "code": self.code,
            "message": self.message,
            "remediation": self.remediation,
            "mission_ids": list(self.mission_ids),
        }


@dataclass
class ValidationReport:
    campaign_id: str
    issues: List[GraphIssue]
    is_valid: bool
    health_score: int
    summary: Dict[str, int] = field(default_factory=dict)

    def count(self, severity: IssueSeverity) -> int:
        return sum(1 for issue in self.issues if issue.severity is severity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "is_valid": self.is_valid,
            "health_score": self.health_score,
            "issues": [issue.to_dict() for issue in self.issues],
            "summary": dict(self.summary),
        }


# ============================================================================
# Graph algorithms
# ============================================================================

_WHITE, _GRAY, _BLACK = 0, 1, 2


def detect_cycles(graph: CampaignGraph) -> List[List[str]]:
    """
    Find cycles with an iterative three-color DFS.

    A back edge into a gray node closes a cycle, reported as the slice of
    the current DFS path from that node onward. Returns an empty list iff
    the graph is acyclic.
    """
    color = {mission_id: _WHITE for mission_id in graph.mission_ids}
    cycles: List[List[str]] = []

    for root in graph.mission_ids:
        if color[root] != _WHITE:
            continue

        color[root] = _GRAY
        path = [root]
        stack = [(root, iter(graph.successors(root)))]

        while stack:
            node, children = stack[-1]
            descended = False

            for child in children:
                if color[child] == _GRAY:
                    cycles.append(path[path.index(child):])
                elif color[child] == _WHITE:
                    color[child] = _GRAY
                    path.append(child)
                    stack.append((child, iter(graph.successors(child))))
                    descended = True
                    break

            if not descended:
                color[node] = _BLACK
                path.pop()
                stack.pop()

    return cycles


def find_entry_points(graph: CampaignGraph) -> List[str]:
    """Missions with no incoming edges."""
    return [mid for mid in graph.mission_ids if graph.in_degree(mid) == 0]


def find_orphans(graph: CampaignGraph) -> List[str]:
    """Missions with no edges at all; only meaningful with more than one mission."""
    if len(graph) <= 1:
        return []
    return [
        mid
        for mid in graph.mission_ids
        if graph.in_degree(mid) == 0 and graph.out_degree(mid) == 0
    ]


def find_dead_ends(graph: CampaignGraph) -> List[str]:
    """Missions with no outgoing edges."""
    return [mid for mid in graph.mission_ids if graph.out_degree(mid) == 0]


# ============================================================================
# Validator
# ============================================================================


class GraphValidator:
    """
    Runs every structural check and scores the result.

    Thresholds and weights come from ConfigManager when one is given;
    otherwise the documented defaults apply.
    """

    def __init__(self, config_manager: Optional[type[ConfigManager]] = None) -> None:
        self._config = config_manager

    def _setting(self, key: str, default: Any) -> Any:
        if self._config is None:
            return default
        return self._config.get(key, default)

    def _weights(self) -> Mapping[str, int]:
        configured = self._setting("graph.severity_weights", None) or {}
        return {**DEFAULT_WEIGHTS, **configured}

    def validate(self, graph: CampaignGraph) -> ValidationReport:
        max_entry_points = int(self._setting("graph.max_entry_points", 5))
        max_dead_ends = int(self._setting("graph.max_dead_ends", 3))

        issues: List[GraphIssue] = []
        titles = {node.id: node.title for node in graph}

        cycles = detect_cycles(graph)
        entry_points = find_entry_points(graph)
        orphans = find_orphans(graph)
        dead_ends = find_dead_ends(graph)

        if len(graph) == 0:
            issues.append(
                GraphIssue(
                    IssueSeverity.HIGH,
                    "EMPTY_CAMPAIGN",
                    "Campaign contains no missions",
                    "Add at least one mission before publishing",
                )
            )

        for cycle in cycles:
            chain = " -> ".join(titles.get(mid, mid) for mid in cycle)
            issues.append(
                GraphIssue(
                    IssueSeverity.CRITICAL,
                    "CYCLE",
                    f"Circular dependency detected: {chain}",
                    "Remove one of the dependencies to break the cycle",
                    tuple(cycle),
                )
            )

        if len(graph) > 0 and not entry_points:
            issues.append(
                GraphIssue(
                    IssueSeverity.CRITICAL,
                    "NO_ENTRY_POINT",
                    "No starting mission: every mission has dependencies",
                    "Create at least one mission without incoming dependencies",
                )
            )
        elif len(entry_points) > max_entry_points:
            issues.append(
                GraphIssue(
                    IssueSeverity.HIGH,
                    "TOO_MANY_ENTRY_POINTS",
                    f"Too many starting missions ({len(entry_points)})",
                    "Merge some of the starting paths into a shared first mission",
                    tuple(entry_points),
                )
            )

        for mission_id in orphans:
            issues.append(
                GraphIssue(
                    IssueSeverity.MEDIUM,
                    "ORPHAN_MISSION",
                    f'Mission "{titles[mission_id]}" is not connected to any other mission',
                    "Add dependencies so the mission becomes part of the funnel",
                    (mission_id,),
                )
            )

        for node in graph:
            if not node.has_reward:
                issues.append(
                    GraphIssue(
                        IssueSeverity.LOW,
                        "MISSING_REWARD",
                        f'Mission "{node.title}" grants no reward',
                        "Add experience or currency to motivate participants",
                        (node.id,),
                    )
                )
            if not (node.description or "").strip():
                issues.append(
                    GraphIssue(
                        IssueSeverity.LOW,
                        "MISSING_DESCRIPTION",
                        f'Mission "{node.title}" has no description',
                        "Describe what the participant is expected to do",
                        (node.id,),
                    )
                )

        if len(graph) > 1 and len(dead_ends) > max_dead_ends:
            issues.append(
                GraphIssue(
                    IssueSeverity.LOW,
                    "TOO_MANY_DEAD_ENDS",
                    f"Too many final missions ({len(dead_ends)})",
                    "Consider converging the paths into a single final mission",
                    tuple(dead_ends),
                )
            )

        issues.sort(key=lambda issue: SEVERITY_ORDER[issue.severity])

        weights = self._weights()
        penalty = sum(int(weights[issue.severity.value]) for issue in issues)
        health_score = max(0, 100 - penalty)

        is_valid = not any(
            issue.severity in (IssueSeverity.CRITICAL, IssueSeverity.HIGH)
            for issue in issues
        )

        summary = {
            "missions": len(graph),
            "dependencies": len(graph.edges),
            "dangling_dependencies": len(graph.dangling_edges),
            "entry_points": len(entry_points),
            "dead_ends": len(dead_ends),
            "orphans": len(orphans),
            "cycles": len(cycles),
            "issues": len(issues),
            **{severity.value: 0 for severity in IssueSeverity},
        }
        for issue in issues:
            summary[issue.severity.value] += 1

        return ValidationReport(
            campaign_id=graph.campaign_id,
            issues=issues,
            is_valid=is_valid,
            health_score=health_score,
            summary=summary,
        )
