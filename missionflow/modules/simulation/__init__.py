"""Sandbox dry-run of the progression engine for campaign authors."""

from missionflow.modules.simulation.service import SimulationService

__all__ = ["SimulationService"]
