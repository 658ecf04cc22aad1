"""
Notification sinks for the progression engine.

The engine only ever calls `notify(participant_id, kind, payload)`; how a
notification is stored or delivered belongs to whatever sink is plugged in.

`OutboxNotificationSink` is the default: rows are added to the
`notifications` table in the command's own transaction (so a rolled-back
completion never notifies), and `NotificationService.publish()` hands them
to the event bus as `notification.<kind>` once the transaction commits.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Protocol, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncSession

from missionflow.core.logging.logger import get_logger
from missionflow.database.models import Notification, NotificationKind

logger = get_logger(__name__)


@runtime_checkable
class NotificationSink(Protocol):
    async def notify(
        self,
        participant_id: str,
        kind: NotificationKind,
        payload: Mapping[str, Any],
    ) -> None: ...


class OutboxNotificationSink:
    """Transactional outbox bound to one session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.pending: List[Notification] = []

    async def notify(
        self,
        participant_id: str,
        kind: NotificationKind,
        payload: Mapping[str, Any],
    ) -> None:
        row = Notification(
            participant_id=participant_id,
            kind=kind,
            payload=dict(payload),
            is_read=False,
        )
        self._session.add(row)
        # flushed right away so unread-lookups in the same transaction see it
        await self._session.flush()
        self.pending.append(row)

        logger.debug(
            "Notification queued in outbox",
            extra={"participant_id": participant_id, "kind": kind.value},
        )

    def __len__(self) -> int:
        return len(self.pending)

