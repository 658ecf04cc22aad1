"""Domain modules of the MissionFlow progression engine."""
