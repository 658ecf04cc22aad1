"""Persistence schema for MissionFlow."""
