"""
Notification Service - outbox publishing and read state
=======================================================

Purpose
-------
Owns the `notifications` outbox: opens a sink per transaction, publishes
committed rows on the event bus, answers "is there an unread X" for
notification suppression, and marks rows read.

Design Notes
------------
- `publish()` runs after the command's transaction has committed. Bus
  failures are logged and never re-raised: the participant's state change
  already happened, and unpublished rows keep `published_at = NULL` so a
  relay can pick them up later (`publish_pending`).
- Event names are `notification.<kind lowercased>`, e.g.
  `notification.rank_up`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from missionflow.core.database.base import utcnow
from missionflow.core.database.service import DatabaseService
from missionflow.core.logging.logger import get_logger
from missionflow.database.models import Notification, NotificationKind
from missionflow.modules.notifications.sink import OutboxNotificationSink
from missionflow.modules.shared.base_repository import BaseRepository
from missionflow.modules.shared.base_service import BaseService
from missionflow.modules.shared.exceptions import NotFoundError

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.config.manager import ConfigManager
    from missionflow.core.event.bus import EventBus


def event_name_for(kind: NotificationKind) -> str:
    return f"notification.{kind.value.lower()}"


class NotificationRepository(BaseRepository[Notification]):
    async def unread(
        self,
        session: AsyncSession,
        participant_id: str,
        kind: NotificationKind,
    ) -> List[Notification]:
        return await self.find_many_where(
            session,
            Notification.participant_id == participant_id,
            Notification.kind == kind,
            Notification.is_read.is_(False),
            order_by=[Notification.id],
        )


class NotificationService(BaseService):
    """
    Public Methods
    --------------
    - open_outbox() -> OutboxNotificationSink bound to a session
    - publish() -> Hand committed outbox rows to the event bus
    - publish_pending() -> Relay rows left unpublished by an earlier failure
    - has_unread() -> Unread lookup used for suppression
    - mark_read() -> Flag a notification as read
    - list_for() -> Notifications of one participant, newest first
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._repo = NotificationRepository(
            Notification, get_logger(f"{__name__}.NotificationRepository")
        )

    def open_outbox(self, session: AsyncSession) -> OutboxNotificationSink:
        return OutboxNotificationSink(session)

    # ========================================================================
    # Publishing
    # ========================================================================

    async def publish(self, rows: Iterable[Notification]) -> int:
        """
        Publish committed notifications and stamp `published_at`.

        Returns the number of rows handed to the bus.
        """
        published_ids: List[int] = []

        for row in rows:
            try:
                await self.emit_event(
                    event_name_for(row.kind),
                    {
                        "notification_id": row.id,
                        "participant_id": row.participant_id,
                        "kind": row.kind.value,
                        "payload": dict(row.payload or {}),
                    },
                )
            except Exception as exc:
                self.log_error(
                    "publish_notification",
                    exc,
                    notification_id=row.id,
                    kind=row.kind.value,
                )
                continue
            published_ids.append(row.id)

        if not published_ids:
            return 0

        try:
            async with DatabaseService.get_transaction() as session:
                await self._repo.update_where(
                    session,
                    Notification.id.in_(published_ids),
                    values={"published_at": utcnow()},
                )
        except Exception as exc:
            # rows stay unstamped and are re-sent by publish_pending
            self.log_error("stamp_published", exc, count=len(published_ids))

        return len(published_ids)

    async def publish_pending(self, limit: int = 100) -> int:
        async with DatabaseService.get_session() as session:
            rows = await self._repo.find_many_where(
                session,
                Notification.published_at.is_(None),
                order_by=[Notification.id],
                limit=limit,
            )
        return await self.publish(rows)

    # ========================================================================
    # Read state
    # ========================================================================

    async def has_unread(
        self,
        session: AsyncSession,
        participant_id: str,
        kind: NotificationKind,
        flag: Optional[str] = None,
    ) -> bool:
        """
        True when an unread notification of `kind` exists.

        With `flag`, only rows whose payload has that key set truthy count.
        """
        rows = await self._repo.unread(session, participant_id, kind)
        if flag is None:
            return bool(rows)
        return any((row.payload or {}).get(flag) for row in rows)

    async def mark_read(self, notification_id: int) -> None:
        async with DatabaseService.get_transaction() as session:
            updated = await self._repo.update_where(
                session,
                Notification.id == notification_id,
                values={"is_read": True},
            )
            if not updated:
                raise NotFoundError("Notification", notification_id)

    async def list_for(
        self,
        participant_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        conditions = [Notification.participant_id == participant_id]
        if unread_only:
            conditions.append(Notification.is_read.is_(False))

        async with DatabaseService.get_session() as session:
            rows = await self._repo.find_many_where(
                session,
                *conditions,
                order_by=[Notification.id.desc()],
                limit=limit,
            )

        return [
            {
                "id": row.id,
                "kind": row.kind.value,
                "payload": dict(row.payload or {}),
                "is_read": row.is_read,
                "created_at": row.created_at.isoformat() if row.created_at else None,
                "published_at": (
                    row.published_at.isoformat() if row.published_at else None
                ),
            }
            for row in rows
        ]
