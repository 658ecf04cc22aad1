"""
Audit trail for progression changes: approvals, resets, bulk completions,
participant removals, variant assignments, store purchases.

Services call `log()` after their transaction commits, so an entry never
describes work that was rolled back. Each entry goes out on the bus as
`audit.transaction.logged`:

    {
        "timestamp": "2026-01-01T09:00:00+00:00",
        "participant_id": "p-1",
        "transaction_type": "mission_completed",
        "details": {"mission_id": "m-1", "experience": 30},
        "context": "progression.approve",
        "meta": {"actor_id": "officer-1", "correlation_id": "..."},
    }

Whatever persists the trail subscribes to that event.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from missionflow.core.logging.logger import get_log_context, get_logger
from missionflow.modules.shared.exceptions import ValidationError

if TYPE_CHECKING:
    from missionflow.core.event.bus import EventBus

logger = get_logger(__name__)


class AuditLogger:
    EVENT_NAME = "audit.transaction.logged"
    MAX_TYPE_LENGTH = 64

    def __init__(self, event_bus: EventBus) -> None:
        self._events = event_bus
        self.counts: Counter[str] = Counter()

    async def log(
        self,
        *,
        participant_id: str,
        transaction_type: str,
        details: Mapping[str, Any],
        context: Optional[str] = None,
        meta: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """
        Raises:
            ValidationError: empty participant id, or a transaction type that
                is empty or longer than MAX_TYPE_LENGTH

        A failed publish is logged and counted; the command already committed.
        """
        if not participant_id:
            self.counts["validation_errors"] += 1
            raise ValidationError("participant_id", "must not be empty")
        if not 0 < len(transaction_type or "") <= self.MAX_TYPE_LENGTH:
            self.counts["validation_errors"] += 1
            raise ValidationError("transaction_type", f"must be 1-{self.MAX_TYPE_LENGTH} characters")

        scope = get_log_context()
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "participant_id": str(participant_id),
            "transaction_type": transaction_type,
            "details": dict(details),
            "context": context or "unknown",
            "meta": {
                "actor_id": scope.get("actor_id"),
                "correlation_id": scope.get("correlation_id"),
                **(meta or {}),
            },
        }

        try:
            await self._events.publish(self.EVENT_NAME, entry)
        except Exception:
            self.counts["publish_errors"] += 1
            logger.error(
                "Audit entry not published",
                extra={"transaction_type": transaction_type, "audit_context": context},
                exc_info=True,
            )
            return

        self.counts["events_emitted"] += 1
        logger.info(
            "Audit entry published",
            extra={"transaction_type": transaction_type, "participant_id": participant_id},
        )

    def get_metrics(self) -> Dict[str, int]:
        return {
            "events_emitted": self.counts["events_emitted"],
            "validation_errors": self.counts["validation_errors"],
            "publish_errors": self.counts["publish_errors"],
        }
