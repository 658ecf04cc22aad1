"""
Unit tests for the domain and infrastructure exception hierarchies.
"""

import pytest

from missionflow.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
)
from missionflow.core.exceptions import (
    CacheError,
    ConfigurationError,
    MissionFlowInfrastructureException,
)
from missionflow.modules.shared.exceptions import (
    ConflictError,
    ConflictReason,
    ErrorSeverity,
    IntegrityWarning,
    MissionFlowDomainException,
    MissionFlowError,
    NotFoundError,
    PermissionDeniedError,
    TransientError,
    ValidationError,
    get_error_severity,
    is_transient_error,
    should_alert,
)


@pytest.mark.unit
class TestDomainExceptions:
    def test_not_found_code(self):
        exc = NotFoundError("Mission", "m-1")

        assert exc.error_code == "MISSION_NOT_FOUND"
        assert exc.message == "Mission not found: m-1"
        assert exc.severity is ErrorSeverity.INFO

    def test_validation_error_keeps_every_problem(self):
        exc = ValidationError("submission", "rejected", ["score is required", "too short"])

        assert exc.error_code == "VALIDATION_SUBMISSION"
        assert exc.errors == ["score is required", "too short"]
        assert exc.details["errors"] == exc.errors

    def test_conflict_carries_reason_and_context(self):
        exc = ConflictError(
            ConflictReason.ALREADY_COMPLETED, "already done", mission_id="m-1"
        )

        assert exc.reason is ConflictReason.ALREADY_COMPLETED
        assert exc.details == {"reason": "ALREADY_COMPLETED", "mission_id": "m-1"}
        assert exc.error_code == "CONFLICT_ALREADY_COMPLETED"
        assert exc.is_retryable is False

    def test_permission_denied(self):
        exc = PermissionDeniedError("review_submission", "cadet")

        assert exc.error_code == "PERMISSION_DENIED"
        assert exc.severity is ErrorSeverity.WARNING

    def test_transient_is_retryable(self):
        exc = TransientError("approve", ConnectionError("gone"))

        assert is_transient_error(exc) is True
        assert exc.details["error_type"] == "ConnectionError"

    def test_to_dict_and_str(self):
        exc = NotFoundError("Campaign", "c-9")

        assert exc.to_dict()["error_code"] == "CAMPAIGN_NOT_FOUND"
        assert str(exc).startswith("[CAMPAIGN_NOT_FOUND] Campaign not found: c-9")


@pytest.mark.unit
class TestHelpers:
    @pytest.mark.parametrize(
        "exc, alert",
        [
            (NotFoundError("Mission"), False),
            (PermissionDeniedError("x", "cadet"), False),
            (RuntimeError("boom"), True),
        ],
    )
    def test_should_alert(self, exc, alert):
        assert should_alert(exc) is alert

    def test_unknown_exceptions_are_errors(self):
        assert get_error_severity(KeyError("k")) is ErrorSeverity.ERROR
        assert is_transient_error(KeyError("k")) is False


@pytest.mark.unit
class TestIntegrityWarning:
    def test_to_dict(self):
        warning = IntegrityWarning("dangling_edge", "edge points nowhere", source_id="a")

        assert warning.to_dict() == {
            "warning_kind": "dangling_edge",
            "warning": "edge points nowhere",
            "source_id": "a",
        }

    def test_is_a_warning(self):
        assert issubclass(IntegrityWarning, Warning)


@pytest.mark.unit
class TestInfrastructureExceptions:
    def test_configuration_error(self):
        exc = ConfigurationError("checkin.verifier", "no verifier configured")

        assert exc.error_code == "CONFIG_ERROR"
        assert exc.severity is ErrorSeverity.CRITICAL

    def test_cache_error_wraps_original(self):
        exc = CacheError("get", "k", ConnectionError("down"))

        assert exc.error_code == "CACHE_ERROR"
        assert exc.is_retryable is True
        assert exc.details["error_type"] == "ConnectionError"

    @pytest.mark.parametrize("exc_type", [ConfigurationError, CacheError])
    def test_infrastructure_errors_share_the_engine_base(self, exc_type):
        assert issubclass(exc_type, MissionFlowInfrastructureException)
        assert issubclass(exc_type, MissionFlowError)
        assert not issubclass(exc_type, MissionFlowDomainException)

    @pytest.mark.parametrize(
        "exc_type", [DatabaseInitializationError, DatabaseNotInitializedError]
    )
    def test_database_lifecycle_errors_are_runtime_errors(self, exc_type):
        assert issubclass(exc_type, RuntimeError)
