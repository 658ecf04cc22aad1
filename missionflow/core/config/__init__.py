"""
MissionFlow configuration.

- `Config`: static settings from environment variables (.env aware).
- `ConfigManager` (in `missionflow.core.config.manager`): dot-notation
  engine tunables backed by YAML defaults.

`ConfigManager` is not re-exported here because it depends on the logging
subsystem, which itself reads `Config`.
"""

from missionflow.core.config.config import Config

__all__ = ["Config"]
