"""
Death Claim Workflow System - Event Bus Tests
"""

import pytest

from claimflow.integrations.event_bus import EventBus, EventTypes, topic_matches


class TestTopicMatching:
    """Test topic pattern matching"""

    def test_exact_topic(self):
        assert topic_matches("claim.created", "claim.created")
        assert not topic_matches("claim.created", "claim.updated")

    def test_prefix_wildcard(self):
        assert topic_matches("claim.*", "claim.created")
        assert topic_matches("claim.*", "claim.requirements.complete")
        assert not topic_matches("claim.*", "claimant.created")
        assert not topic_matches("claim.*", "case.created")

    def test_global_wildcard(self):
        assert topic_matches("*", "workflow.step.failed")


class TestEventBus:
    """Test publish/subscribe delivery"""

    async def test_publish_builds_envelope(self, event_bus):
        event = await event_bus.publish(EventTypes.CLAIM_CREATED, {"claim_id": "CLM-1"})

        assert event["type"] == "claim.created"
        assert event["data"] == {"claim_id": "CLM-1"}
        assert event["id"]
        assert event["timestamp"]

    async def test_exact_handlers_run_before_wildcard_handlers(self, event_bus):
        calls = []
        event_bus.subscribe("claim.*", lambda e: calls.append("wildcard"))
        event_bus.subscribe("claim.created", lambda e: calls.append("exact"))

        await event_bus.publish("claim.created", {})

        assert calls == ["exact", "wildcard"]

    async def test_other_prefix_wildcard_not_invoked(self, event_bus):
        claim_events = []
        policy_events = []
        event_bus.subscribe("claim.created", claim_events.append)
        event_bus.subscribe("claim.*", claim_events.append)
        event_bus.subscribe("policy.*", policy_events.append)

        await event_bus.publish(EventTypes.CLAIM_CREATED, {"claim_id": "CLM-1"})

        assert len(claim_events) == 2
        assert policy_events == []

    async def test_async_handlers_are_awaited(self, event_bus):
        received = []

        async def handler(event):
            received.append(event["data"]["n"])

        event_bus.subscribe("task.created", handler)
        await event_bus.publish("task.created", {"n": 1})
        await event_bus.publish("task.created", {"n": 2})

        assert received == [1, 2]

    async def test_failing_handler_does_not_stop_siblings(self, event_bus):
        delivered = []

        def broken(event):
            raise RuntimeError("handler exploded")

        event_bus.subscribe("case.created", broken)
        event_bus.subscribe("case.created", delivered.append)

        event = await event_bus.publish("case.created", {"case_id": "CASE-1"})

        assert delivered == [event]

    async def test_duplicate_subscription_is_noop(self, event_bus):
        received = []
        event_bus.subscribe("claim.created", received.append)
        event_bus.subscribe("claim.created", received.append)

        await event_bus.publish("claim.created", {})

        assert len(received) == 1
        assert event_bus.get_subscriptions() == {"claim.created": 1}

    async def test_unsubscribe_callable(self, event_bus):
        received = []
        unsubscribe = event_bus.subscribe("claim.created", received.append)
        unsubscribe()

        await event_bus.publish("claim.created", {})

        assert received == []
        assert event_bus.get_subscriptions() == {}
        assert event_bus.unsubscribe("claim.created", received.append) is False

    async def test_history_is_bounded(self):
        bus = EventBus(history_size=3)
        for n in range(5):
            await bus.publish("task.created", {"n": n})

        history = bus.get_history()
        assert [e["data"]["n"] for e in history] == [2, 3, 4]

    async def test_history_filter_and_limit(self, event_bus):
        await event_bus.publish("claim.created", {"n": 1})
        await event_bus.publish("case.created", {"n": 2})
        await event_bus.publish("claim.created", {"n": 3})

        assert [e["data"]["n"] for e in event_bus.get_history("claim.created")] == [1, 3]
        assert [e["data"]["n"] for e in event_bus.get_history(limit=1)] == [3]
        assert event_bus.get_history(limit=0) == []

        event_bus.clear_history()
        assert event_bus.get_history() == []

    async def test_publish_without_subscribers(self, event_bus):
        event = await event_bus.publish("policy.suspended")

        assert event["data"] == {}
        assert len(event_bus.get_history()) == 1

    def test_clear_subscriptions(self, event_bus):
        event_bus.subscribe("a", print)
        event_bus.subscribe("b", print)

        event_bus.clear_subscriptions("a")
        assert event_bus.get_subscriptions() == {"b": 1}

        event_bus.clear_subscriptions()
        assert event_bus.get_subscriptions() == {}
