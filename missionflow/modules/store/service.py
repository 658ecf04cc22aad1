"""
Store Service - spending earned currency
=========================================

Purpose
-------
Architects stock a catalogue of items; participants buy them with the
currency their missions and promotions paid out.

Purchase Design
---------------
One transaction, in order:

1. Item lookup: unknown items are NotFound, disabled ones ITEM_UNAVAILABLE.
2. Stock: `stock = stock - 1 WHERE stock > 0` for limited items
   (OUT_OF_STOCK when nothing is left).
3. Debit through the ledger: `currency = currency - price WHERE
   currency >= price` (INSUFFICIENT_FUNDS otherwise).
4. Purchase row. Badges and avatars carry an ownership key under a unique
   constraint, so a second copy fails with ALREADY_OWNED even when two
   purchases race.
5. PURCHASE_SUCCESS notification in the outbox.

Any failure rolls the whole purchase back. After commit the outbox is
published, an audit entry is written and `store.purchased` is emitted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from missionflow.core.database.base import utcnow
from missionflow.core.database.service import DatabaseService
from missionflow.core.logging.logger import LogContext, get_logger
from missionflow.database.models import NotificationKind, Purchase, StoreCategory, StoreItem
from missionflow.modules.shared.base_repository import BaseRepository
from missionflow.modules.shared.base_service import BaseService
from missionflow.modules.shared.exceptions import (
    ConflictError,
    ConflictReason,
    NotFoundError,
    PermissionDeniedError,
)
from missionflow.modules.shared.permissions import Permission

if TYPE_CHECKING:
    from logging import Logger

    from missionflow.core.config.manager import ConfigManager
    from missionflow.core.database.retry_policy import DatabaseRetryPolicy
    from missionflow.core.event.bus import EventBus
    from missionflow.core.infra.audit_logger import AuditLogger
    from missionflow.modules.notifications import NotificationService
    from missionflow.modules.rewards import RewardLedgerService
    from missionflow.modules.shared.permissions import RequestContext

DEFAULT_UNIQUE_CATEGORIES = ("BADGE", "AVATAR")


def item_to_dict(item: StoreItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "category": item.category.value,
        "price": item.price,
        "stock": item.stock,
        "is_available": item.is_available,
    }


class StoreService(BaseService):
    """
    Public Methods
    --------------
    - create_item() -> Add an item to the catalogue
    - set_availability() -> Enable or withdraw an item
    - list_items() -> Catalogue ordered by category, then price
    - purchase() -> Buy one item for the acting participant
    - list_purchases() -> Items a participant bought, newest first
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        ledger: RewardLedgerService,
        notifications: NotificationService,
        audit: AuditLogger,
        retry_policy: DatabaseRetryPolicy,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._ledger = ledger
        self._notifications = notifications
        self._audit = audit
        self._retry = retry_policy
        self._items: BaseRepository[StoreItem] = BaseRepository(
            StoreItem, get_logger(f"{__name__}.StoreItemRepository")
        )
        self._purchases: BaseRepository[Purchase] = BaseRepository(
            Purchase, get_logger(f"{__name__}.PurchaseRepository")
        )

    # ========================================================================
    # Catalogue
    # ========================================================================

    async def create_item(
        self,
        ctx: RequestContext,
        name: str,
        price: int,
        category: StoreCategory,
        description: Optional[str] = None,
        stock: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Raises:
            PermissionDeniedError: Without MANAGE_STORE
            ValidationError: Empty name, negative price or stock
        """
        ctx.require(Permission.MANAGE_STORE)
        self.validate_identifier(name, "name")
        self.validate_non_negative_int(price, "price")
        if stock is not None:
            self.validate_non_negative_int(stock, "stock")

        async with DatabaseService.get_transaction() as session:
            item = self._items.add(
                session,
                StoreItem(
                    name=name.strip(),
                    description=description,
                    category=StoreCategory(category),
                    price=price,
                    stock=stock,
                    is_available=True,
                ),
            )
            await self._items.flush(session)
            created = item_to_dict(item)

        self.log_operation("store.create_item", item_id=created["id"], price=price)
        return created

    async def set_availability(
        self, ctx: RequestContext, item_id: str, is_available: bool
    ) -> Dict[str, Any]:
        ctx.require(Permission.MANAGE_STORE)

        async with DatabaseService.get_transaction() as session:
            updated = await self._items.update_where(
                session,
                StoreItem.id == item_id,
                values={"is_available": is_available, "updated_at": utcnow()},
            )
            if not updated:
                raise NotFoundError("StoreItem", item_id)

        self.log_operation("store.set_availability", item_id=item_id, is_available=is_available)
        return {"id": item_id, "is_available": is_available}

    async def list_items(
        self, category: Optional[StoreCategory] = None, available_only: bool = False
    ) -> List[Dict[str, Any]]:
        conditions = []
        if category is not None:
            conditions.append(StoreItem.category == StoreCategory(category))
        if available_only:
            conditions.append(StoreItem.is_available.is_(True))

        async with DatabaseService.get_session() as session:
            items = await self._items.find_many_where(
                session, *conditions, order_by=[StoreItem.category, StoreItem.price, StoreItem.id]
            )
            return [item_to_dict(item) for item in items]

    # ========================================================================
    # Purchases
    # ========================================================================

    async def purchase(
        self, ctx: RequestContext, participant_id: str, item_id: str
    ) -> Dict[str, Any]:
        """
        Buy one `item_id` for `participant_id`, who must be the actor.

        Raises:
            PermissionDeniedError: Without PURCHASE_ITEM, or buying for someone else
            NotFoundError: Unknown item or participant
            ConflictError: ITEM_UNAVAILABLE, OUT_OF_STOCK, INSUFFICIENT_FUNDS
                or ALREADY_OWNED
        """
        ctx.require(Permission.PURCHASE_ITEM)
        if ctx.actor_id != participant_id:
            raise PermissionDeniedError("act_for_participant", ctx.role.value)
        self.validate_identifier(participant_id, "participant_id")
        self.validate_identifier(item_id, "item_id")

        async def operation():
            async with DatabaseService.get_transaction() as session:
                item = await self._items.get(session, item_id)
                if item is None:
                    raise NotFoundError("StoreItem", item_id)
                if not item.is_available:
                    raise ConflictError(
                        ConflictReason.ITEM_UNAVAILABLE,
                        f"Item {item.name!r} is not for sale",
                        item_id=item_id,
                    )
                snapshot = item_to_dict(item)

                if item.stock is not None:
                    taken = await self._items.update_where(
                        session,
                        StoreItem.id == item_id,
                        StoreItem.stock > 0,
                        values={"stock": StoreItem.stock - 1, "updated_at": utcnow()},
                    )
                    if not taken:
                        raise ConflictError(
                            ConflictReason.OUT_OF_STOCK,
                            f"Item {item.name!r} is sold out",
                            item_id=item_id,
                        )

                balance = await self._ledger.spend_currency(
                    session, participant_id, item.price, reason=f"store:{item_id}"
                )

                row = self._purchases.add(
                    session,
                    Purchase(
                        participant_id=participant_id,
                        item_id=item_id,
                        price=item.price,
                        ownership_key=item_id if self._is_unique(item.category) else None,
                    ),
                )
                try:
                    await self._purchases.flush(session)
                except IntegrityError as exc:
                    raise ConflictError(
                        ConflictReason.ALREADY_OWNED,
                        f"Participant already owns {item.name!r}",
                        participant_id=participant_id,
                        item_id=item_id,
                    ) from exc

                sink = self._notifications.open_outbox(session)
                await sink.notify(
                    participant_id,
                    NotificationKind.PURCHASE_SUCCESS,
                    {"item_id": item_id, "item_name": item.name, "price": item.price},
                )
                result = {
                    "purchase_id": row.id,
                    "participant_id": participant_id,
                    "item": snapshot,
                    "price": item.price,
                    "remaining_currency": balance,
                }
            return result, sink

        async with LogContext(
            participant_id=participant_id,
            actor_id=ctx.actor_id,
            operation="store.purchase",
            correlation_id=ctx.correlation_id,
        ):
            try:
                result, sink = await self._retry.execute(
                    operation,
                    operation_name="store.purchase",
                    context={"participant_id": participant_id, "item_id": item_id},
                )
            except Exception as exc:
                self.log_error("store.purchase", exc, item_id=item_id)
                raise

            self.log_operation("store.purchase", item_id=item_id, price=result["price"])

        await self._notifications.publish(sink.pending)
        await self._audit.log(
            participant_id=participant_id,
            transaction_type="item_purchased",
            details={"item_id": item_id, "price": result["price"]},
            context="store.purchase",
            meta={"actor_id": ctx.actor_id, "correlation_id": ctx.correlation_id},
        )
        await self.emit_event(
            "store.purchased",
            {
                "participant_id": participant_id,
                "item_id": item_id,
                "price": result["price"],
                "remaining_currency": result["remaining_currency"],
            },
        )
        return result

    async def list_purchases(self, ctx: RequestContext, participant_id: str) -> List[Dict[str, Any]]:
        if ctx.actor_id != participant_id and not ctx.can(Permission.VIEW_ANALYTICS):
            raise PermissionDeniedError(Permission.VIEW_ANALYTICS.value, ctx.role.value)

        async with DatabaseService.get_session() as session:
            rows = await self._purchases.find_many_where(
                session,
                Purchase.participant_id == participant_id,
                order_by=[Purchase.id.desc()],
            )
            return [
                {
                    "purchase_id": row.id,
                    "item_id": row.item_id,
                    "price": row.price,
                    "purchased_at": row.purchased_at.isoformat(),
                }
                for row in rows
            ]

    def _is_unique(self, category: StoreCategory) -> bool:
        unique = self.get_config("store.unique_categories", DEFAULT_UNIQUE_CATEGORIES)
        return category.value in unique
