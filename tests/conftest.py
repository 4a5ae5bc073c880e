"""
Death Claim Workflow System - Test Fixtures
Shared event bus, collaborator doubles and Redis fixtures
"""

from datetime import timedelta
from itertools import count
from typing import Any, Dict, List
from unittest.mock import AsyncMock

import pytest
import fakeredis.aioredis

from claimflow.integrations.collaborators import (
    CaseTracker, ClaimsLedger, DocumentService, PolicyRegistry, VerificationService
)
from claimflow.integrations.event_bus import EventBus
from claimflow.orchestrators.claim_orchestrator import ClaimOrchestrator
from claimflow.orchestrators.routing_engine import RoutingEngine
from claimflow.orchestrators.workflow_engine import WorkflowEngine
from claimflow.requirements.decision_table import DecisionTableEngine
from claimflow.requirements.requirement_processor import RequirementProcessor
from claimflow.shared.config import Settings
from claimflow.shared.utils import DateTimeUtils


class EventRecorder:
    """Collects every event published on a bus"""

    def __init__(self, bus: EventBus):
        self.events: List[Dict[str, Any]] = []
        bus.subscribe("*", self.events.append)

    def topics(self) -> List[str]:
        return [e["type"] for e in self.events]

    def of(self, topic: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["type"] == topic]


@pytest.fixture
def event_bus():
    return EventBus(history_size=100)


@pytest.fixture
def recorder(event_bus):
    return EventRecorder(event_bus)


@pytest.fixture
def case_tracker():
    """Case tracker double handing out sequential task ids"""
    tracker = AsyncMock(spec=CaseTracker)
    task_ids = count(1)

    async def create_task(data):
        return {"id": f"TASK-{next(task_ids)}", **data}

    tracker.create_task.side_effect = create_task
    tracker.create_case.return_value = {"id": "CASE-1", "case_number": "FSO-0001"}
    tracker.complete_task.return_value = {"status": "completed"}
    return tracker


@pytest.fixture
def document_service():
    service = AsyncMock(spec=DocumentService)
    service.classify_document.return_value = {"document_type": "death_certificate", "confidence": 0.95}
    service.get_extraction_results.return_value = {"confidence": 0.95, "fields": {}}
    service.link_document_to_requirement.return_value = {"linked": True}
    return service


@pytest.fixture
def policy_registry():
    issue_date = (DateTimeUtils.now() - timedelta(days=365 * 5)).date().isoformat()
    registry = AsyncMock(spec=PolicyRegistry)
    registry.lookup_policy.return_value = {
        "policy_number": "POL-1001",
        "policy_type": "term_life",
        "status": "in_force",
        "issue_date": issue_date,
        "coverage": {"face_amount": 250000},
    }
    registry.suspend_policy.return_value = {"suspended": True}
    registry.calculate_death_benefit.return_value = {
        "death_benefit": 250000,
        "interest": 1200,
        "total_amount": 251200,
    }
    return registry


@pytest.fixture
def claims_ledger():
    ledger = AsyncMock(spec=ClaimsLedger)

    async def create_claim(data):
        return {"id": "CLM-1", **data}

    ledger.create_claim.side_effect = create_claim
    ledger.update_claim.return_value = {"updated": True}
    ledger.get_claim.return_value = {
        "id": "CLM-1",
        "financial": {"claim_amount": 251200},
        "insured": {"state": "NY"},
    }
    ledger.calculate_tax_withholding.return_value = {"withholding_amount": 1200}
    ledger.create_payment.return_value = {"id": "PAY-1", "amount": 250000}
    ledger.execute_payment.return_value = {"id": "PAY-1", "status": "executed"}
    ledger.post_ledger_entry.return_value = {"posted": True}
    ledger.generate_tax_form.return_value = {"form": "1099-INT"}
    return ledger


@pytest.fixture
def verification_service():
    service = AsyncMock(spec=VerificationService)
    service.verify_death.return_value = {
        "verified": True,
        "confidence": 98,
        "three_point_match": {"confidence": 98},
    }
    return service


@pytest.fixture
def decision_engine(event_bus):
    return DecisionTableEngine(event_bus)


@pytest.fixture
def requirement_processor(decision_engine, case_tracker, document_service, event_bus):
    return RequirementProcessor(decision_engine, case_tracker, document_service, event_bus)


@pytest.fixture
def workflow_engine(case_tracker, event_bus):
    return WorkflowEngine(case_tracker, event_bus)


@pytest.fixture
def settings():
    return Settings(redis_url=None)


@pytest.fixture
def orchestrator(
    policy_registry, claims_ledger, case_tracker, document_service, verification_service,
    requirement_processor, event_bus, workflow_engine, settings
):
    return ClaimOrchestrator(
        policy_registry=policy_registry,
        claims_ledger=claims_ledger,
        case_tracker=case_tracker,
        document_service=document_service,
        verification_service=verification_service,
        requirement_processor=requirement_processor,
        routing_engine=RoutingEngine(),
        event_bus=event_bus,
        workflow_engine=workflow_engine,
        settings=settings
    )


@pytest.fixture
async def test_redis():
    """Create test Redis client"""
    redis_client = fakeredis.aioredis.FakeRedis()
    yield redis_client
    await redis_client.flushall()
    await redis_client.aclose()


@pytest.fixture
def fnol():
    return {
        "policy_number": "POL-1001",
        "insured": {"name": "Jane Doe", "ssn_last4": "1234", "date_of_birth": "1950-02-01"},
        "date_of_death": "2026-09-30",
        "claim_type": "death",
        "submitted_by": "agent-7",
        "claimant": {"is_beneficiary": True, "type": "individual"},
    }
