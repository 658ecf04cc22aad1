"""
Unit tests for the EventBus.

Tests priority ordering, wildcard routing, error isolation and
fire-and-forget delivery.
"""

import asyncio

import pytest

from missionflow.core.event import EventBus, ListenerPriority


@pytest.fixture
def bus() -> EventBus:
    return EventBus(critical_timeout_seconds=0.5, high_timeout_seconds=0.5)


@pytest.mark.unit
class TestSubscription:
    def test_callback_must_take_one_parameter(self, bus):
        async def two(payload, extra):
            return None

        with pytest.raises(ValueError):
            bus.subscribe("x", two)

    def test_duplicate_identifier_is_ignored(self, bus):
        async def listener(payload):
            return None

        bus.subscribe("x", listener, identifier="same")
        bus.subscribe("x", listener, identifier="same")

        assert bus.get_listener_count("x") == 1

    def test_unsubscribe(self, bus):
        async def listener(payload):
            return None

        listener_id = bus.subscribe("x", listener)

        assert bus.unsubscribe("x", listener_id) is True
        assert bus.unsubscribe("x", listener_id) is False
        assert bus.get_listener_count() == 0

    def test_wildcard_counts(self, bus):
        async def listener(payload):
            return None

        bus.subscribe("notification.*", listener)
        bus.subscribe("notification.rank_up", listener, identifier="exact")

        assert bus.get_listener_count("notification.rank_up") == 2
        assert bus.get_listener_count("progression.mission.completed") == 0


@pytest.mark.unit
class TestPublish:
    async def test_priorities_run_in_order(self, bus):
        # Arrange
        order = []

        def make(label):
            async def listener(payload):
                order.append(label)
                return label

            return listener

        bus.subscribe("e", make("normal"), priority=ListenerPriority.NORMAL, identifier="n")
        bus.subscribe("e", make("high"), priority=ListenerPriority.HIGH, identifier="h")
        bus.subscribe("e", make("critical"), priority=ListenerPriority.CRITICAL, identifier="c")

        # Act
        results = await bus.publish("e", {})

        # Assert
        assert order == ["critical", "high", "normal"]
        assert results == ["critical", "high", "normal"]

    async def test_failing_listener_is_isolated(self, bus):
        async def broken(payload):
            raise RuntimeError("boom")

        async def healthy(payload):
            return payload["value"]

        bus.subscribe("e", broken, priority=ListenerPriority.HIGH)
        bus.subscribe("e", healthy, priority=ListenerPriority.HIGH)

        results = await bus.publish("e", {"value": 3})

        assert results == [None, 3]
        assert bus.get_metrics_summary()["listener_errors"] == 1

    async def test_slow_listener_times_out(self, bus):
        async def slow(payload):
            await asyncio.sleep(5)

        bus.subscribe("e", slow, priority=ListenerPriority.CRITICAL)

        assert await bus.publish("e", {}) == [None]
        assert bus.get_metrics_summary()["listener_errors"] == 1

    async def test_sync_listener_runs(self, bus):
        seen = []

        def sync_listener(payload):
            seen.append(payload["n"])
            return "ok"

        bus.subscribe("e", sync_listener)

        assert await bus.publish("e", {"n": 1}) == ["ok"]
        assert seen == [1]

    async def test_low_priority_is_fire_and_forget(self, bus):
        delivered = []

        async def sink(payload):
            delivered.append(payload["id"])

        bus.subscribe("notification.*", sink, priority=ListenerPriority.LOW)

        results = await bus.publish("notification.rank_up", {"id": "n-1"})
        await bus.drain()

        assert results == []
        assert delivered == ["n-1"]

    async def test_once_listener_fires_once(self, bus):
        calls = []

        async def listener(payload):
            calls.append(payload)

        bus.subscribe("e", listener, once=True)
        await bus.publish("e", {"n": 1})
        await bus.publish("e", {"n": 2})

        assert calls == [{"n": 1}]
        assert bus.get_listener_count("e") == 0

    async def test_publish_counters(self, bus):
        await bus.publish("a", {})
        await bus.publish("a", {})
        await bus.publish("b", {})

        summary = bus.get_metrics_summary()
        assert summary["total_events_published"] == 3
        assert summary["events_by_type"] == {"a": 2, "b": 1}

    def test_timeouts_from_config(self, config_manager):
        config_manager.set("events.listener_timeout.high_seconds", 1.5)

        bus = EventBus(config_manager=config_manager)

        assert bus._high_timeout == 1.5
        assert bus._critical_timeout == 5.0
