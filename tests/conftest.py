"""
Pytest Configuration and Fixtures for MissionFlow Tests
=======================================================

Purpose
-------
Centralized fixtures for the MissionFlow test suite: a throwaway database,
a fully wired service container, acting contexts for each role, and small
builders for campaigns, missions and participants.

Responsibilities
----------------
- File-backed SQLite database per test (aiosqlite), schema created fresh
- ConfigManager reset around every test so overrides never leak
- Service container with an in-memory cache and a fast retry policy
- Event recorder for asserting on published domain events
- Campaign / participant builders for integration scenarios

Non-Responsibilities
--------------------
- Test implementation (delegated to test files)
- Production configuration (test-specific only)

Architecture Notes
------------------
- Unit tests touch no database and need none of the async fixtures
- Integration tests run against a real SQLite file, so transactions,
  unique constraints and foreign keys behave as they do in production
- The optional PostgreSQL check lives in tests/integration and uses
  testcontainers; it skips when Docker is unavailable
"""

from __future__ import annotations

import os
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from missionflow.core.cache.backends import MemoryCacheBackend
from missionflow.core.cache.service import CacheService
from missionflow.core.config.config import Config
from missionflow.core.config.manager import ConfigManager
from missionflow.core.database.retry_policy import DatabaseRetryPolicy
from missionflow.core.database.service import DatabaseService
from missionflow.core.event.bus import EventBus
from missionflow.core.event.types import ListenerPriority
from missionflow.core.logging.logger import get_logger
from missionflow.core.services.container import ServiceContainer
from missionflow.database.models import ConfirmationType, MissionType
from missionflow.modules.shared.permissions import RequestContext, Role

logger = get_logger(__name__)


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


def pytest_configure(config):
    """Configure pytest environment."""
    os.environ.setdefault("ENVIRONMENT", "testing")
    os.environ.setdefault("LOG_LEVEL", "DEBUG")


# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================


@pytest.fixture
def config_manager():
    """
    ConfigManager loaded from the repository's config/ directory.

    Overrides applied with ConfigManager.set() are dropped after the test.
    """
    ConfigManager.reset()
    ConfigManager.initialize()
    yield ConfigManager
    ConfigManager.reset()


# ============================================================================
# EVENT FIXTURES
# ============================================================================


class EventRecorder:
    """Collects (event_name, payload) pairs for the event names it watches."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def watch(self, *event_names: str) -> None:
        for name in event_names:
            self._bus.subscribe(
                name,
                self._recorder_for(name),
                priority=ListenerPriority.CRITICAL,
                identifier=f"recorder:{name}",
            )

    def _recorder_for(self, event_name: str):
        async def record(payload: Dict[str, Any]) -> None:
            self.events.append((event_name, payload))

        return record

    def named(self, event_name: str) -> List[Dict[str, Any]]:
        return [payload for name, payload in self.events if name == event_name]


@pytest.fixture
def event_bus(config_manager) -> EventBus:
    """Fresh EventBus per test; listeners never leak between tests."""
    return EventBus(config_manager=config_manager)


@pytest.fixture
def recorder(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus)


# ============================================================================
# DATABASE FIXTURES (Integration Tests)
# ============================================================================


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch) -> AsyncGenerator[None, None]:
    """
    Initialize DatabaseService against a fresh SQLite file.

    Scope: function (clean slate per test)
    """
    await DatabaseService.shutdown()
    monkeypatch.setattr(Config, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/missionflow.db")
    monkeypatch.setattr(Config, "ENVIRONMENT", "testing")

    await DatabaseService.initialize()
    await DatabaseService.create_all()

    yield

    await DatabaseService.shutdown()


@pytest.fixture
def retry_policy() -> DatabaseRetryPolicy:
    """Retry policy with short backoff so lock contention resolves quickly."""
    return DatabaseRetryPolicy(max_attempts=10, max_wait=0.2)


# ============================================================================
# SERVICE CONTAINER
# ============================================================================


@pytest_asyncio.fixture
async def container(
    database, config_manager, event_bus, retry_policy
) -> AsyncGenerator[ServiceContainer, None]:
    services = ServiceContainer(
        config_manager,
        event_bus,
        get_logger("tests.container"),
        cache=CacheService(MemoryCacheBackend(), config_manager),
        retry_policy=retry_policy,
    )
    await services.initialize()

    yield services

    await services.shutdown()


# ============================================================================
# ACTING CONTEXTS
# ============================================================================


@pytest.fixture
def architect() -> RequestContext:
    return RequestContext(actor_id="architect-1", role=Role.ARCHITECT)


@pytest.fixture
def officer() -> RequestContext:
    return RequestContext(actor_id="officer-1", role=Role.OFFICER)


@pytest.fixture
def as_cadet():
    """Factory for the context of a participant acting for themself."""

    def _as_cadet(participant_id: str) -> RequestContext:
        return RequestContext(actor_id=participant_id, role=Role.CADET)

    return _as_cadet


# ============================================================================
# BUILDERS
# ============================================================================


class CampaignBuilder:
    """
    Authoring helper for integration scenarios.

    Missions are addressed by short keys ("a", "b", ...); `ids` maps each key
    to the stored mission id.
    """

    def __init__(self, services: ServiceContainer, ctx: RequestContext) -> None:
        self._services = services
        self._ctx = ctx
        self.campaign_id: Optional[str] = None
        self.ids: Dict[str, str] = {}

    async def campaign(self, name: str = "Onboarding", **kwargs: Any) -> str:
        created = await self._services.campaigns.create_campaign(self._ctx, name, **kwargs)
        self.campaign_id = created["id"]
        return self.campaign_id

    async def mission(
        self,
        key: str,
        experience: int = 0,
        currency: int = 0,
        mission_type: MissionType = MissionType.CUSTOM,
        confirmation_type: ConfirmationType = ConfirmationType.AUTO,
        **kwargs: Any,
    ) -> str:
        kwargs.setdefault("settings", {"submission_format": "none"})
        kwargs.setdefault("position", len(self.ids))
        kwargs.setdefault("description", f"Mission {key}")
        created = await self._services.campaigns.add_mission(
            self._ctx,
            self.campaign_id,
            title=f"Mission {key.upper()}",
            mission_type=mission_type,
            confirmation_type=confirmation_type,
            experience_reward=experience,
            currency_reward=currency,
            **kwargs,
        )
        self.ids[key] = created["id"]
        return created["id"]

    async def edge(self, source: str, target: str) -> None:
        await self._services.campaigns.add_dependency(
            self._ctx, self.campaign_id, self.ids[source], self.ids[target]
        )


@pytest.fixture
def builder(container: ServiceContainer, architect: RequestContext) -> CampaignBuilder:
    return CampaignBuilder(container, architect)


@pytest.fixture
def new_builder(container: ServiceContainer, architect: RequestContext):
    """Factory for extra builders when a test authors more than one campaign."""
    return lambda: CampaignBuilder(container, architect)


@pytest.fixture
def register(container: ServiceContainer, architect: RequestContext):
    """Register a participant and bootstrap them into a campaign."""

    async def _register(participant_id: str, campaign_id: Optional[str] = None) -> str:
        await container.participants.register(architect, participant_id, participant_id.title())
        if campaign_id is not None:
            await container.progression.bootstrap(architect, participant_id, campaign_id)
        return participant_id

    return _register
