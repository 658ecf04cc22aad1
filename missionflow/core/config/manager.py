"""
Engine tunables: graph thresholds, rank cascade cap, sandbox identity,
cache TTLs, listener timeouts.

Every `*.yaml` under `config/` is deep-merged in path order into one tree
read with dotted keys (`ranks.max_promotions_per_evaluation`). `set()`
overrides a key for the life of the process (admin tooling, tests);
`reset()` drops overrides and reloads on next read. Secrets and
connection strings live in `Config`, not here.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from missionflow.core.config.config import Config
from missionflow.core.logging.logger import get_logger

logger = get_logger(__name__)

__all__ = ["ConfigManager"]


def _merge(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class ConfigManager:
    _tree: Dict[str, Any] = {}
    _initialized: bool = False

    @classmethod
    def initialize(cls, config_dir: Optional[Path] = None) -> None:
        """Load `config_dir` (default `Config.CONFIG_DIR`); no-op once loaded."""
        if cls._initialized:
            return
        directory = Path(config_dir) if config_dir else Config.CONFIG_DIR
        cls._tree = {}
        cls._initialized = True

        if not directory.exists():
            logger.warning("Config directory not found", extra={"config_dir": str(directory)})
            return

        files = sorted([*directory.rglob("*.yaml"), *directory.rglob("*.yml")])
        for path in files:
            try:
                data = yaml.safe_load(path.read_text(encoding="utf-8"))
            except (OSError, yaml.YAMLError) as exc:
                logger.warning(
                    "Skipping unreadable config file",
                    extra={"file": str(path), "error_type": type(exc).__name__},
                )
                continue
            if isinstance(data, dict):
                _merge(cls._tree, data)
            elif data is not None:
                logger.warning("Skipping config file without a mapping root", extra={"file": str(path)})

        logger.info(
            "Engine configuration loaded",
            extra={"config_dir": str(directory), "files": len(files), "sections": sorted(cls._tree)},
        )

    @classmethod
    def reset(cls) -> None:
        cls._initialized = False
        cls._tree = {}

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        >>> ConfigManager.get("graph.max_entry_points", 5)
        5
        """
        cls.initialize()
        node: Any = cls._tree
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return default if node is None else node

    @classmethod
    def get_all_keys(cls) -> List[str]:
        cls.initialize()
        return list(cls._tree)

    @classmethod
    def set(cls, key: str, value: Any) -> None:
        cls.initialize()
        *parents, leaf = key.split(".")
        node = cls._tree
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = value
        logger.info("Configuration override applied", extra={"config_key": key})
