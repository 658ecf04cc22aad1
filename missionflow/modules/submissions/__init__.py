"""Submission validators and the check-in verifier interface."""

from missionflow.modules.submissions.checkin import CheckInVerifier, VerificationResult
from missionflow.modules.submissions.validator import (
    DefaultSubmissionValidator,
    SubmissionValidator,
    ValidationResult,
)

__all__ = [
    "CheckInVerifier",
    "VerificationResult",
    "DefaultSubmissionValidator",
    "SubmissionValidator",
    "ValidationResult",
]
