"""
Campaign dependency graph: id-keyed snapshot arena, structural validator,
and the service that loads snapshots through the cache.
"""

from missionflow.modules.graph.snapshot import (
    CampaignGraph,
    CompetencyGrant,
    DependencyEdge,
    MissionNode,
)
from missionflow.modules.graph.validator import (
    GraphIssue,
    GraphValidator,
    IssueSeverity,
    ValidationReport,
    detect_cycles,
    find_dead_ends,
    find_entry_points,
    find_orphans,
)

__all__ = [
    "CampaignGraph",
    "CompetencyGrant",
    "DependencyEdge",
    "MissionNode",
    "GraphIssue",
    "GraphValidator",
    "IssueSeverity",
    "ValidationReport",
    "detect_cycles",
    "find_dead_ends",
    "find_entry_points",
    "find_orphans",
]
