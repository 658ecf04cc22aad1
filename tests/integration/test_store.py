"""
Integration tests for the currency store and the leaderboard.
"""

import asyncio

import pytest

from missionflow.database.models import StoreCategory
from missionflow.modules.shared.exceptions import (
    ConflictError,
    ConflictReason,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

pytestmark = pytest.mark.integration


@pytest.fixture
def earn(container, builder, register, as_cadet):
    """Register a participant who has completed one mission paying `currency`."""

    async def _earn(participant_id: str, currency: int, experience: int = 0) -> str:
        campaign_id = await builder.campaign(name=f"Earn {participant_id}")
        await builder.mission(f"pay-{participant_id}", experience=experience, currency=currency)
        await register(participant_id, campaign_id)
        await container.progression.submit(
            as_cadet(participant_id), participant_id, builder.ids[f"pay-{participant_id}"]
        )
        return participant_id

    return _earn


@pytest.fixture
def stock_item(container, architect):
    async def _stock_item(name="Mug", price=30, category=StoreCategory.MERCH, stock=None):
        item = await container.store.create_item(architect, name, price, category, stock=stock)
        return item["id"]

    return _stock_item


class TestPurchase:
    async def test_purchase_debits_records_and_notifies(
        self, container, earn, stock_item, as_cadet, architect, recorder
    ):
        # Arrange
        await earn("p-1", currency=100)
        item_id = await stock_item(price=30)
        recorder.watch("store.purchased", "notification.purchase_success", "audit.transaction.logged")

        # Act
        result = await container.store.purchase(as_cadet("p-1"), "p-1", item_id)

        # Assert
        assert result["price"] == 30
        assert result["remaining_currency"] == 70
        profile = await container.participants.get_profile(architect, "p-1")
        assert profile["currency"] == 70

        (purchase,) = await container.store.list_purchases(as_cadet("p-1"), "p-1")
        assert purchase["item_id"] == item_id

        (notice,) = recorder.named("notification.purchase_success")
        assert notice["payload"] == {"item_id": item_id, "item_name": "Mug", "price": 30}
        assert len(recorder.named("store.purchased")) == 1
        audit_types = [p["transaction_type"] for p in recorder.named("audit.transaction.logged")]
        assert audit_types[-1] == "item_purchased"

    async def test_insufficient_funds_changes_nothing(
        self, container, earn, stock_item, as_cadet, architect
    ):
        await earn("p-1", currency=20)
        item_id = await stock_item(price=30, stock=5)

        with pytest.raises(ConflictError) as exc_info:
            await container.store.purchase(as_cadet("p-1"), "p-1", item_id)

        assert exc_info.value.reason is ConflictReason.INSUFFICIENT_FUNDS
        assert exc_info.value.context["available"] == 20
        profile = await container.participants.get_profile(architect, "p-1")
        assert profile["currency"] == 20
        (item,) = await container.store.list_items()
        assert item["stock"] == 5
        assert await container.store.list_purchases(as_cadet("p-1"), "p-1") == []

    async def test_exact_balance_can_be_spent(self, container, earn, stock_item, as_cadet):
        await earn("p-1", currency=30)
        item_id = await stock_item(price=30)

        result = await container.store.purchase(as_cadet("p-1"), "p-1", item_id)

        assert result["remaining_currency"] == 0

    async def test_badge_is_owned_once_but_merch_repeats(
        self, container, earn, stock_item, as_cadet
    ):
        await earn("p-1", currency=100)
        badge = await stock_item(name="Pioneer", price=10, category=StoreCategory.BADGE)
        mug = await stock_item(name="Mug", price=10)
        cadet = as_cadet("p-1")

        await container.store.purchase(cadet, "p-1", badge)
        await container.store.purchase(cadet, "p-1", mug)
        await container.store.purchase(cadet, "p-1", mug)
        with pytest.raises(ConflictError) as exc_info:
            await container.store.purchase(cadet, "p-1", badge)

        assert exc_info.value.reason is ConflictReason.ALREADY_OWNED
        purchases = await container.store.list_purchases(cadet, "p-1")
        assert len(purchases) == 3
        assert sum(p["price"] for p in purchases) == 30

    async def test_last_unit_sells_once(self, container, earn, stock_item, as_cadet):
        for participant_id in ("p-1", "p-2"):
            await earn(participant_id, currency=50)
        item_id = await stock_item(price=10, stock=1)

        results = await asyncio.gather(
            container.store.purchase(as_cadet("p-1"), "p-1", item_id),
            container.store.purchase(as_cadet("p-2"), "p-2", item_id),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert errors[0].reason is ConflictReason.OUT_OF_STOCK
        (item,) = await container.store.list_items()
        assert item["stock"] == 0

    async def test_withdrawn_item_cannot_be_bought(
        self, container, earn, stock_item, as_cadet, architect
    ):
        await earn("p-1", currency=50)
        item_id = await stock_item(price=10)
        await container.store.set_availability(architect, item_id, False)

        with pytest.raises(ConflictError) as exc_info:
            await container.store.purchase(as_cadet("p-1"), "p-1", item_id)

        assert exc_info.value.reason is ConflictReason.ITEM_UNAVAILABLE
        assert await container.store.list_items(available_only=True) == []

    async def test_unknown_item(self, container, earn, as_cadet):
        await earn("p-1", currency=50)

        with pytest.raises(NotFoundError):
            await container.store.purchase(as_cadet("p-1"), "p-1", "no-such-item")

    async def test_cannot_spend_someone_elses_currency(
        self, container, earn, stock_item, as_cadet, officer
    ):
        await earn("p-1", currency=50)
        item_id = await stock_item(price=10)

        with pytest.raises(PermissionDeniedError):
            await container.store.purchase(as_cadet("p-2"), "p-1", item_id)
        with pytest.raises(PermissionDeniedError):
            await container.store.purchase(officer, "p-1", item_id)

    async def test_only_architects_stock_the_store(self, container, officer):
        with pytest.raises(PermissionDeniedError):
            await container.store.create_item(officer, "Mug", 10, StoreCategory.MERCH)


class TestCatalogue:
    async def test_items_sorted_by_category_then_price(self, container, stock_item):
        await stock_item(name="Hoodie", price=80)
        await stock_item(name="Pioneer", price=20, category=StoreCategory.BADGE)
        await stock_item(name="Mug", price=30)

        names = [item["name"] for item in await container.store.list_items()]
        merch = await container.store.list_items(category=StoreCategory.MERCH)

        assert names == ["Pioneer", "Mug", "Hoodie"]
        assert [item["name"] for item in merch] == ["Mug", "Hoodie"]


class TestLeaderboard:
    async def test_ranked_by_experience_without_sandbox(
        self, container, earn, architect, builder
    ):
        await earn("p-1", currency=0, experience=10)
        await earn("p-2", currency=0, experience=40)
        await container.participants.register(architect, "p-3", "Idle")
        sandbox_campaign = await builder.campaign(name="Sandbox run")
        await builder.mission("sandbox")
        await container.simulation.init(architect, sandbox_campaign)

        board = await container.participants.get_leaderboard()

        assert [(row["position"], row["id"]) for row in board] == [
            (1, "p-2"),
            (2, "p-1"),
            (3, "p-3"),
        ]
        assert board[0]["missions_completed"] == 1
        assert board[2]["missions_completed"] == 0

    async def test_campaign_filter_and_limit(self, container, earn, register, builder):
        await earn("p-1", currency=0, experience=10)
        await earn("p-2", currency=0, experience=40)
        campaign_id = await builder.campaign(name="Side quest")
        await builder.mission("side")
        await register("p-3", campaign_id)

        only_side = await container.participants.get_leaderboard(campaign_id=campaign_id)
        top = await container.participants.get_leaderboard(limit=1)

        assert [row["id"] for row in only_side] == ["p-3"]
        assert [row["id"] for row in top] == ["p-2"]

    @pytest.mark.parametrize("limit", [0, 201, True])
    async def test_limit_is_bounded(self, container, limit):
        with pytest.raises(ValidationError):
            await container.participants.get_leaderboard(limit=limit)


class TestWiring:
    async def test_store_shares_the_ledger_and_outbox(self, container):
        assert container.is_initialized
        assert container.store._ledger is container.ledger
        assert container.store._notifications is container.notifications
