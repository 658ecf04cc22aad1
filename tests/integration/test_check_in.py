"""
Integration tests for QR check-in.

The verifier is a fake: signature checking is not the engine's job, only
honoring the verifier's verdict and the mission it names.
"""

from datetime import timedelta

import pytest
import pytest_asyncio

from missionflow.core.cache import CacheService, MemoryCacheBackend
from missionflow.core.exceptions import ConfigurationError
from missionflow.core.logging.logger import get_logger
from missionflow.core.services.container import ServiceContainer
from missionflow.database.models import ConfirmationType, MissionType
from missionflow.modules.shared.exceptions import ConflictError, ConflictReason, ValidationError
from missionflow.modules.submissions import VerificationResult

pytestmark = pytest.mark.integration


class FakeVerifier:
    """Answers from a table of known payloads; anything else is forged."""

    def __init__(self) -> None:
        self.verdicts = {}
        self.calls = []

    def issue(self, payload: str, mission_id: str) -> str:
        self.verdicts[payload] = VerificationResult(valid=True, mission_id=mission_id)
        return payload

    def verify(self, signed_payload: str, max_age: timedelta) -> VerificationResult:
        self.calls.append((signed_payload, max_age))
        return self.verdicts.get(
            signed_payload, VerificationResult(valid=False, error="signature mismatch")
        )


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest_asyncio.fixture
async def container(database, config_manager, event_bus, retry_policy, verifier):
    services = ServiceContainer(
        config_manager,
        event_bus,
        get_logger("tests.container"),
        cache=CacheService(MemoryCacheBackend(), config_manager),
        retry_policy=retry_policy,
        checkin_verifier=verifier,
    )
    await services.initialize()
    yield services
    await services.shutdown()


async def offline_event(builder, **settings):
    return await builder.mission(
        "meetup",
        experience=15,
        mission_type=MissionType.ATTEND_OFFLINE,
        confirmation_type=ConfirmationType.QR_SCAN,
        settings=settings,
    )


class TestCheckIn:
    async def test_valid_payload_completes(self, container, builder, register, as_cadet, verifier):
        # Arrange
        campaign_id = await builder.campaign()
        mission_id = await offline_event(builder)
        await register("p-1", campaign_id)
        payload = verifier.issue("qr-good", mission_id)

        # Act
        result = await container.progression.check_in(as_cadet("p-1"), "p-1", mission_id, payload)

        # Assert
        assert result["status"] == "COMPLETED"
        assert result["reward"]["experience"] == 15
        assert verifier.calls == [("qr-good", timedelta(hours=24))]

    async def test_mission_window_overrides_default(
        self, container, builder, register, as_cadet, verifier
    ):
        campaign_id = await builder.campaign()
        mission_id = await offline_event(builder, check_in_window_hours=2)
        await register("p-1", campaign_id)

        await container.progression.check_in(
            as_cadet("p-1"), "p-1", mission_id, verifier.issue("qr", mission_id)
        )

        assert verifier.calls[0][1] == timedelta(hours=2)

    async def test_forged_payload_is_rejected(self, container, builder, register, as_cadet):
        campaign_id = await builder.campaign()
        mission_id = await offline_event(builder)
        await register("p-1", campaign_id)

        with pytest.raises(ValidationError) as exc_info:
            await container.progression.check_in(as_cadet("p-1"), "p-1", mission_id, "forged")

        assert "signature mismatch" in exc_info.value.message

    async def test_payload_for_another_mission(
        self, container, builder, register, as_cadet, verifier
    ):
        campaign_id = await builder.campaign()
        mission_id = await offline_event(builder)
        await register("p-1", campaign_id)

        with pytest.raises(ValidationError):
            await container.progression.check_in(
                as_cadet("p-1"), "p-1", mission_id, verifier.issue("qr", "some-other-mission")
            )

    async def test_mission_without_qr_confirmation(
        self, container, builder, register, as_cadet, verifier
    ):
        campaign_id = await builder.campaign()
        mission_id = await builder.mission("quiz", mission_type=MissionType.COMPLETE_QUIZ)
        await register("p-1", campaign_id)

        with pytest.raises(ConflictError) as exc_info:
            await container.progression.check_in(
                as_cadet("p-1"), "p-1", mission_id, verifier.issue("qr", mission_id)
            )

        assert exc_info.value.reason is ConflictReason.WRONG_CONFIRMATION_TYPE
        assert verifier.calls == []

    async def test_second_check_in_conflicts(
        self, container, builder, register, as_cadet, verifier
    ):
        campaign_id = await builder.campaign()
        mission_id = await offline_event(builder)
        await register("p-1", campaign_id)
        payload = verifier.issue("qr", mission_id)
        await container.progression.check_in(as_cadet("p-1"), "p-1", mission_id, payload)

        with pytest.raises(ConflictError) as exc_info:
            await container.progression.check_in(as_cadet("p-1"), "p-1", mission_id, payload)

        assert exc_info.value.reason is ConflictReason.ALREADY_COMPLETED
        assert len(await container.ledger.get_history("p-1")) == 1


class TestWithoutVerifier:
    async def test_check_in_needs_a_verifier(self, database, config_manager, event_bus, as_cadet):
        services = ServiceContainer(
            config_manager,
            event_bus,
            get_logger("tests.container"),
            cache=CacheService(MemoryCacheBackend(), config_manager),
        )
        await services.initialize()
        try:
            with pytest.raises(ConfigurationError):
                await services.progression.check_in(as_cadet("p-1"), "p-1", "m-1", "qr")
        finally:
            await services.shutdown()
