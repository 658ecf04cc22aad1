"""
Builds the engine's services once, in dependency order, and hands out the
shared instances.

Every domain service takes `(config_manager, event_bus, logger)` followed
by its collaborators. The database engine is started and stopped by
`DatabaseService`, not here. Cache, retry policy, submission validator and
check-in verifier can be injected, which is how tests swap them.

    container = ServiceContainer(ConfigManager, EventBus(config_manager=ConfigManager), logger)
    await container.initialize()
    await container.progression.submit(ctx, participant_id, mission_id, payload)
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Dict, Optional

from missionflow.core.cache.service import CacheService
from missionflow.core.config.config import Config
from missionflow.core.config.manager import ConfigManager
from missionflow.core.database.retry_policy import DatabaseRetryPolicy
from missionflow.core.infra.audit_logger import AuditLogger
from missionflow.core.logging.logger import get_logger
from missionflow.modules.campaigns import CampaignService
from missionflow.modules.graph.service import GraphService
from missionflow.modules.notifications import NotificationService
from missionflow.modules.participants import ParticipantService
from missionflow.modules.progression import (
    CompletionUnit,
    DependencyResolver,
    ProgressionAdminService,
    ProgressionService,
)
from missionflow.modules.ranks import RankService
from missionflow.modules.rewards import RewardLedgerService
from missionflow.modules.simulation import SimulationService
from missionflow.modules.store import StoreService
from missionflow.modules.submissions import DefaultSubmissionValidator
from missionflow.modules.variants import VariantService

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.event.bus import EventBus
    from missionflow.modules.submissions import CheckInVerifier, SubmissionValidator


class ServiceContainer:
    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        *,
        cache: Optional[CacheService] = None,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
        submission_validator: Optional[SubmissionValidator] = None,
        checkin_verifier: Optional[CheckInVerifier] = None,
    ) -> None:
        self._config_manager = config_manager
        self._event_bus = event_bus
        self._logger = logger
        self._cache = cache
        self._retry_policy = retry_policy
        self._submission_validator = submission_validator
        self._checkin_verifier = checkin_verifier
        self._services: Dict[str, Any] = {}

    @property
    def is_initialized(self) -> bool:
        return bool(self._services)

    async def initialize(self) -> None:
        """Build every service; ConfigManager and DatabaseService must be ready."""
        if self._services:
            self._logger.warning("ServiceContainer already initialized")
            return

        started = time.perf_counter()
        self._cache = cache = self._cache or CacheService.from_config()
        self._retry_policy = retry = self._retry_policy or DatabaseRetryPolicy.from_config()
        services: Dict[str, Any] = {"cache": cache, "audit": AuditLogger(self._event_bus)}
        audit = services["audit"]

        def build(name: str, cls: type, **collaborators: Any) -> Any:
            services[name] = cls(
                config_manager=self._config_manager,
                event_bus=self._event_bus,
                logger=get_logger(f"{cls.__module__}.{cls.__name__}"),
                **collaborators,
            )
            return services[name]

        try:
            notifications = build("notifications", NotificationService)
            graphs = build("graphs", GraphService, cache=cache)
            ledger = build("ledger", RewardLedgerService)
            ranks = build("ranks", RankService, cache=cache, ledger=ledger, notifications=notifications)
            resolver = build("resolver", DependencyResolver)
            completion = build(
                "completion", CompletionUnit, ledger=ledger, resolver=resolver, ranks=ranks
            )
            progression = build(
                "progression",
                ProgressionService,
                graphs=graphs,
                resolver=resolver,
                completion=completion,
                notifications=notifications,
                audit=audit,
                retry_policy=retry,
                submission_validator=self._submission_validator or DefaultSubmissionValidator(),
                checkin_verifier=self._checkin_verifier,
            )
            admin = build(
                "admin",
                ProgressionAdminService,
                progression=progression,
                graphs=graphs,
                ledger=ledger,
                notifications=notifications,
                audit=audit,
                retry_policy=retry,
            )
            build("simulation", SimulationService, progression=progression, admin=admin, retry_policy=retry)
            build("variants", VariantService, progression=progression, audit=audit, retry_policy=retry)
            build("campaigns", CampaignService, graphs=graphs)
            build("participants", ParticipantService)
            build(
                "store",
                StoreService,
                ledger=ledger,
                notifications=notifications,
                audit=audit,
                retry_policy=retry,
            )
        except Exception:
            self._logger.critical("Service container failed to build", exc_info=True)
            raise

        self._services = services
        self._logger.info(
            "Service container ready",
            extra={
                "services": sorted(services),
                "build_seconds": round(time.perf_counter() - started, 3),
                "config": Config.get_config_summary(),
            },
        )

    async def shutdown(self) -> None:
        if self._cache is not None:
            await self._cache.close()
        await self._event_bus.drain()
        self._services = {}
        self._logger.info("Service container shut down")

    def _get(self, name: str) -> Any:
        try:
            return self._services[name]
        except KeyError:
            raise RuntimeError("ServiceContainer not initialized; call initialize() first") from None

    @property
    def cache(self) -> CacheService:
        return self._get("cache")

    @property
    def audit(self) -> AuditLogger:
        return self._get("audit")

    @property
    def notifications(self) -> NotificationService:
        return self._get("notifications")

    @property
    def graphs(self) -> GraphService:
        return self._get("graphs")

    @property
    def ledger(self) -> RewardLedgerService:
        return self._get("ledger")

    @property
    def ranks(self) -> RankService:
        return self._get("ranks")

    @property
    def resolver(self) -> DependencyResolver:
        return self._get("resolver")

    @property
    def progression(self) -> ProgressionService:
        return self._get("progression")

    @property
    def admin(self) -> ProgressionAdminService:
        return self._get("admin")

    @property
    def simulation(self) -> SimulationService:
        return self._get("simulation")

    @property
    def variants(self) -> VariantService:
        return self._get("variants")

    @property
    def campaigns(self) -> CampaignService:
        return self._get("campaigns")

    @property
    def participants(self) -> ParticipantService:
        return self._get("participants")

    @property
    def store(self) -> StoreService:
        return self._get("store")
