"""
Unit tests for AuditLogger.
"""

import pytest

from missionflow.core.event import EventBus
from missionflow.core.infra.audit_logger import AuditLogger
from missionflow.core.logging.logger import LogContext
from missionflow.modules.shared.exceptions import ValidationError


@pytest.mark.unit
class TestAuditLogger:
    async def test_publishes_canonical_payload(self, event_bus, recorder):
        # Arrange
        recorder.watch(AuditLogger.EVENT_NAME)
        audit = AuditLogger(event_bus)

        # Act
        async with LogContext(actor_id="officer-1", correlation_id="corr-1"):
            await audit.log(
                participant_id="p-1",
                transaction_type="mission_completed",
                details={"mission_id": "m-1", "experience": 30},
                context="progression.approve",
                meta={"campaign_id": "c-1"},
            )

        # Assert
        (payload,) = recorder.named(AuditLogger.EVENT_NAME)
        assert payload["participant_id"] == "p-1"
        assert payload["transaction_type"] == "mission_completed"
        assert payload["details"] == {"mission_id": "m-1", "experience": 30}
        assert payload["context"] == "progression.approve"
        assert payload["meta"] == {
            "actor_id": "officer-1",
            "correlation_id": "corr-1",
            "campaign_id": "c-1",
        }
        assert audit.get_metrics()["events_emitted"] == 1

    async def test_context_defaults_to_unknown(self, event_bus, recorder):
        recorder.watch(AuditLogger.EVENT_NAME)

        await AuditLogger(event_bus).log(
            participant_id="p-1", transaction_type="rank_promoted", details={}
        )

        assert recorder.named(AuditLogger.EVENT_NAME)[0]["context"] == "unknown"

    @pytest.mark.parametrize(
        "participant_id, transaction_type",
        [("", "mission_completed"), ("p-1", ""), ("p-1", "x" * 65)],
    )
    async def test_validation_errors_are_raised(self, event_bus, participant_id, transaction_type):
        audit = AuditLogger(event_bus)

        with pytest.raises(ValidationError):
            await audit.log(
                participant_id=participant_id,
                transaction_type=transaction_type,
                details={},
            )

        assert audit.get_metrics()["validation_errors"] == 1
        assert audit.get_metrics()["events_emitted"] == 0

    async def test_publish_failure_is_counted_not_raised(self, mocker):
        bus = EventBus()
        mocker.patch.object(bus, "publish", side_effect=RuntimeError("bus down"))
        audit = AuditLogger(bus)

        await audit.log(participant_id="p-1", transaction_type="progress_reset", details={})

        assert audit.get_metrics()["publish_errors"] == 1
