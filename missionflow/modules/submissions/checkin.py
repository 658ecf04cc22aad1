"""
Check-in verifier interface for QR-gated missions.

The engine never parses or checks signatures. A verifier is plugged in
through the service container and answers whether a signed payload is
authentic, fresh enough, and which mission it was issued for.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Protocol


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    error: Optional[str] = None
    mission_id: Optional[str] = None


class CheckInVerifier(Protocol):
    def verify(self, signed_payload: str, max_age: timedelta) -> VerificationResult: ...
