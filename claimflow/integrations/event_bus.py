"""
Death Claim Workflow System - Event Bus
In-process publish/subscribe hub with wildcard topics and bounded history
"""

import asyncio
import uuid
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

import structlog

from claimflow.shared.monitoring import metrics
from claimflow.shared.utils import DateTimeUtils

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Dict[str, Any]], Any]


class EventTypes:
    """Topics published by the orchestration core"""

    CLAIM_CREATED = "claim.created"
    CLAIM_UPDATED = "claim.updated"
    CLAIM_ASSIGNED = "claim.assigned"
    CLAIM_REQUIREMENTS_COMPLETE = "claim.requirements.complete"
    POLICY_SUSPENDED = "policy.suspended"
    CASE_CREATED = "case.created"
    TASK_CREATED = "task.created"
    TASK_COMPLETED = "task.completed"
    DECISION_EVALUATED = "decision.evaluated"
    REQUIREMENT_GENERATED = "requirement.generated"
    REQUIREMENT_SATISFIED = "requirement.satisfied"
    REQUIREMENT_NIGO = "requirement.nigo"
    REQUIREMENT_WAIVED = "requirement.waived"
    REQUIREMENT_OVERRIDDEN = "requirement.overridden"
    DOCUMENT_LINKED = "document.linked"
    WORKFLOW_STARTED = "workflow.started"
    WORKFLOW_STEP_COMPLETED = "workflow.step.completed"
    WORKFLOW_STEP_FAILED = "workflow.step.failed"
    WORKFLOW_SUSPENDED = "workflow.suspended"
    WORKFLOW_RESUMED = "workflow.resumed"
    WORKFLOW_COMPLETED = "workflow.completed"
    WORKFLOW_FAILED = "workflow.failed"
    WORKFLOW_CANCELLED = "workflow.cancelled"
    PAYMENT_EXECUTED = "payment.executed"
    ORCHESTRATION_CLAIM_INITIATED = "orchestration.claim.initiated"


def topic_matches(pattern: str, topic: str) -> bool:
    """Exact match, or a trailing ``.*`` wildcard matching anything below the prefix"""
    if pattern == topic or pattern == "*":
        return True
    if pattern.endswith(".*"):
        return topic.startswith(pattern[:-1])
    return False


class EventBus:
    """
    Publish/subscribe hub for one event loop.

    Handlers for a publish run one after another in subscription order, exact
    subscribers first and then wildcard subscribers. A failing handler is logged
    and counted; it never reaches the publisher or its sibling handlers.
    """

    def __init__(self, history_size: int = 100):
        self._subscriptions: Dict[str, List[EventHandler]] = {}
        self._history: Deque[Dict[str, Any]] = deque(maxlen=history_size)
        self.logger = structlog.get_logger("event_bus")

    def subscribe(self, topic: str, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` for ``topic``; returns a callable that unsubscribes it.

        Subscribing the same handler twice to one topic is a no-op.
        """
        handlers = self._subscriptions.setdefault(topic, [])
        if handler not in handlers:
            handlers.append(handler)
            self.logger.debug("Subscribed", topic=topic, handler=getattr(handler, "__name__", repr(handler)))

        def unsubscribe():
            self.unsubscribe(topic, handler)

        return unsubscribe

    def unsubscribe(self, topic: str, handler: EventHandler) -> bool:
        handlers = self._subscriptions.get(topic)
        if not handlers or handler not in handlers:
            return False

        handlers.remove(handler)
        if not handlers:
            del self._subscriptions[topic]
        return True

    def _matching_handlers(self, topic: str) -> List[EventHandler]:
        exact = list(self._subscriptions.get(topic, []))
        wildcard = []
        for pattern, handlers in self._subscriptions.items():
            if pattern != topic and topic_matches(pattern, topic):
                wildcard.extend(handlers)
        return exact + wildcard

    async def publish(self, topic: str, data: Dict[str, Any] = None) -> Dict[str, Any]:
        """Deliver an event to every matching subscriber and record it in history"""
        event = {
            "type": topic,
            "data": data or {},
            "timestamp": DateTimeUtils.now_iso(),
            "id": str(uuid.uuid4())
        }
        self._history.append(event)

        failures = 0
        for handler in self._matching_handlers(topic):
            try:
                outcome = handler(event)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception as e:
                failures += 1
                self.logger.error(
                    "Event handler failed",
                    event_type=topic,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e)
                )

        metrics.record_event(topic, failures)
        self.logger.debug("Published event", event_type=topic, event_id=event["id"])
        return event

    def get_history(self, topic: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Recent events, oldest first, optionally filtered by exact topic"""
        events = [e for e in self._history if topic is None or e["type"] == topic]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def clear_history(self):
        self._history.clear()

    def get_subscriptions(self) -> Dict[str, int]:
        return {topic: len(handlers) for topic, handlers in self._subscriptions.items()}

    def clear_subscriptions(self, topic: Optional[str] = None):
        if topic is None:
            self._subscriptions.clear()
        else:
            self._subscriptions.pop(topic, None)
