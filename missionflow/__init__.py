"""MissionFlow: campaign progression engine for HR gamification."""

__version__ = "1.0.0"
