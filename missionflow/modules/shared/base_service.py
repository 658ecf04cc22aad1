"""
Common plumbing for engine services.

A service gets the tunables (ConfigManager), the event bus and a logger at
construction. It opens its own transactions through DatabaseService, or
works inside a session handed to it by the command that owns the
transaction (the ledger, rank evaluator and resolver all do the latter).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from .exceptions import ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.config.manager import ConfigManager
    from missionflow.core.event.bus import EventBus


class BaseService:
    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger

    def get_config(self, key: str, default: Optional[Any] = None, required: bool = False) -> Any:
        """
        Look up a tunable such as `ranks.max_promotions_per_evaluation`.

        Raises:
            ConfigurationError: `required` is set and the key has no value
        """
        from missionflow.core.exceptions import ConfigurationError

        value = self._config.get(key, default)
        if value is None and required:
            raise ConfigurationError(key, "no value in config/*.yaml and no default")
        return value

    async def emit_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Publish `data` merged with `context` (actor, campaign) on the bus."""
        await self._events.publish(event_type, {**data, **(context or {})})

    def log_operation(self, operation: str, **fields: Any) -> None:
        self.log.info(operation, extra={"operation": operation, **fields})

    def log_error(self, operation: str, error: Exception, **fields: Any) -> None:
        self.log.error(
            f"{operation} failed: {error}",
            extra={"operation": operation, "error_type": type(error).__name__, **fields},
        )

    def validate_identifier(self, value: Any, name: str) -> None:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(name, f"{name} must be a non-empty string")

    def validate_non_negative_int(self, value: int, name: str) -> None:
        """Rewards, prices and thresholds: ints >= 0 (bools rejected)."""
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(name, f"{name} must be a non-negative integer, got {value!r}")
