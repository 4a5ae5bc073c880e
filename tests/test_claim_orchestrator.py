"""
Death Claim Workflow System - Claim Orchestrator Tests
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from claimflow.integrations.collaborators import CaseTracker, ClaimsLedger, DocumentService, PolicyRegistry
from claimflow.integrations.event_bus import EventTypes
from claimflow.orchestrators.claim_orchestrator import ClaimOrchestrator, build_orchestrator
from claimflow.shared.config import Settings
from claimflow.shared.exceptions import CollaboratorException, ConfigurationException, NotFoundException
from claimflow.shared.schemas import OrchestrationStep, PlaybookType, RequirementType, WorkflowState
from claimflow.shared.store import InMemoryWorkflowStateStore, RedisWorkflowStateStore
from claimflow.shared.utils import DateTimeUtils

SAGA_STEPS = [
    "fnol_received",
    "policy_lookup",
    "death_verification",
    "policy_suspension",
    "death_benefit_calculation",
    "case_creation",
    "claim_creation",
    "requirements_generation",
    "routing_evaluation",
    "assignment",
    "complete",
]


class TestClaimInitiation:
    """Test the claim initiation saga"""

    async def test_happy_path(self, orchestrator, fnol, claims_ledger, recorder):
        result = await orchestrator.initiate_claim(fnol)

        assert result.success
        assert [s["step"] for s in result.steps] == SAGA_STEPS
        assert all(s["status"] == "success" for s in result.steps)
        assert result.errors == []
        assert result.case["id"] == "CASE-1"
        assert result.claim["id"] == "CLM-1"
        assert result.claim["financial"]["claim_amount"] == 251200
        assert result.claim["workflow"]["case_id"] == "CASE-1"
        assert result.metadata["routing"]["routing"] == "fasttrack"

        claims_ledger.update_claim.assert_any_await("CLM-1", {"workflow.routing": "fasttrack"})
        claims_ledger.update_claim.assert_any_await("CLM-1", {"assigned_to": "FastTrack Queue"})

        topics = recorder.topics()
        for topic in (
            EventTypes.POLICY_SUSPENDED,
            EventTypes.CASE_CREATED,
            EventTypes.CLAIM_CREATED,
            EventTypes.REQUIREMENT_GENERATED,
            EventTypes.CLAIM_ASSIGNED,
        ):
            assert topic in topics
        assert topics[-1] == EventTypes.ORCHESTRATION_CLAIM_INITIATED
        assert recorder.events[-1]["data"]["routing"] == "fasttrack"

    async def test_requirements_use_default_beneficiary_verification(self, orchestrator, fnol, requirement_processor):
        result = await orchestrator.initiate_claim(fnol)

        types = {r.type for r in requirement_processor.get_requirements("CLM-1")}
        assert types == {
            RequirementType.DEATH_CERTIFICATE,
            RequirementType.CLAIMANT_STATEMENT,
            RequirementType.PROOF_OF_IDENTITY,
            RequirementType.BENEFICIARY_DESIGNATION,
            RequirementType.TAX_FORMS,
            RequirementType.BANKING_INFORMATION,
        }
        assert len(result.metadata["requirements"]) == 6

    async def test_critical_policy_lookup_failure(self, orchestrator, fnol, policy_registry, case_tracker, recorder):
        policy_registry.lookup_policy.side_effect = RuntimeError("policy not found")

        result = await orchestrator.initiate_claim(fnol)

        assert not result.success
        assert result.steps[-1]["step"] == "policy_lookup"
        assert result.steps[-1]["status"] == "failed"
        assert result.errors[0]["step"] == "policy_lookup"
        assert result.errors[0]["error"] == "policy not found"
        case_tracker.create_case.assert_not_awaited()
        assert EventTypes.ORCHESTRATION_CLAIM_INITIATED not in recorder.topics()

    async def test_critical_case_creation_failure(self, orchestrator, fnol, case_tracker, claims_ledger):
        case_tracker.create_case.side_effect = CollaboratorException("case_tracker", "create_case", "timeout")

        result = await orchestrator.initiate_claim(fnol)

        assert not result.success
        assert result.case is None
        assert result.step_status(OrchestrationStep.CASE_CREATION) == "failed"
        assert result.errors[0]["error"] == "case_tracker.create_case failed: timeout"
        claims_ledger.create_claim.assert_not_awaited()

    async def test_death_verification_failure_degrades(self, orchestrator, fnol, verification_service):
        verification_service.verify_death.side_effect = RuntimeError("vital records timeout")

        result = await orchestrator.initiate_claim(fnol)

        assert result.success
        assert result.metadata["death_verification"] == {
            "verified": False, "confidence": 0, "manual_review_required": True,
        }
        assert result.warnings[0]["step"] == "death_verification"
        assert result.warnings[0]["warning"] == "Automatic verification failed, manual verification required"
        # Unverified death cannot reach FastTrack: 0 + 20 + 13 + 15 + 10 + 10 = 68
        assert result.metadata["routing"]["routing"] == "standard"

    async def test_low_confidence_verification_warns(self, orchestrator, fnol, verification_service):
        verification_service.verify_death.return_value = {
            "verified": True, "confidence": 90, "three_point_match": {"confidence": 90},
        }

        result = await orchestrator.initiate_claim(fnol)

        assert result.success
        assert any("below 95% threshold" in w["warning"] for w in result.warnings)

    async def test_non_critical_failures_collect_warnings(self, orchestrator, fnol, policy_registry, claims_ledger):
        policy_registry.suspend_policy.side_effect = RuntimeError("admin system locked")
        claims_ledger.update_claim.side_effect = RuntimeError("ledger busy")

        result = await orchestrator.initiate_claim(fnol)

        assert result.success
        warnings = [w["warning"] for w in result.warnings]
        assert "Policy suspension failed, manual suspension required" in warnings
        assert "Routing evaluation failed, defaulting to standard routing" in warnings
        assert "Claim assignment failed, manual assignment required" in warnings
        assert result.metadata["routing"]["routing"] == "standard"
        assert result.steps[-1]["step"] == "complete"

    async def test_lapsed_policy_warns(self, orchestrator, fnol, policy_registry):
        policy_registry.lookup_policy.return_value = {
            **policy_registry.lookup_policy.return_value, "status": "lapsed",
        }

        result = await orchestrator.initiate_claim(fnol)

        assert result.success
        assert result.warnings[0]["warning"] == "Policy status is lapsed, not in-force"
        assert result.metadata["routing"]["routing"] == "standard"

    async def test_contestability_derived_from_issue_date(self, orchestrator, fnol, policy_registry, requirement_processor):
        policy_registry.lookup_policy.return_value = {
            **policy_registry.lookup_policy.return_value, "issue_date": (DateTimeUtils.now() - timedelta(days=200)).date().isoformat(),
        }

        result = await orchestrator.initiate_claim(fnol)

        assert result.policy["contestable"] is True
        types = {r.type for r in requirement_processor.get_requirements("CLM-1")}
        assert RequirementType.MEDICAL_RECORDS in types

    async def test_requirement_generation_failure_degrades(self, orchestrator, fnol, requirement_processor):
        requirement_processor.generate_requirements = AsyncMock(side_effect=RuntimeError("rules unavailable"))

        result = await orchestrator.initiate_claim(fnol)

        assert result.success
        assert any(w["warning"] == "Requirements generation failed, manual entry required" for w in result.warnings)


class TestRequirementProcessing:
    """Test document-driven requirement processing"""

    async def test_all_requirements_complete(self, orchestrator, fnol, requirement_processor, claims_ledger, recorder):
        await orchestrator.initiate_claim(fnol)
        requirements = requirement_processor.get_requirements("CLM-1")
        death_cert = next(r for r in requirements if r.type == RequirementType.DEATH_CERTIFICATE)
        for requirement in requirements:
            if requirement.is_mandatory() and requirement is not death_cert:
                await requirement_processor.waive_requirement("CLM-1", requirement.id, "examiner-1", "test")

        outcome = await orchestrator.process_requirement("CLM-1", death_cert.id, "DOC-1")

        assert outcome["status"] == "igo"
        assert outcome["all_requirements_satisfied"]
        claims_ledger.update_claim.assert_any_await("CLM-1", {"status": "requirements_complete"})
        assert recorder.topics()[-1] == EventTypes.CLAIM_REQUIREMENTS_COMPLETE

    async def test_extraction_grading(self, orchestrator, fnol, requirement_processor, document_service):
        await orchestrator.initiate_claim(fnol)
        tax = next(r for r in requirement_processor.get_requirements("CLM-1") if r.type == RequirementType.TAX_FORMS)

        document_service.get_extraction_results.return_value = {"confidence": 0.75}
        review = await orchestrator.process_requirement("CLM-1", tax.id, "DOC-2")
        document_service.get_extraction_results.return_value = {"confidence": 0.4}
        nigo = await orchestrator.process_requirement("CLM-1", tax.id, "DOC-3")

        assert review["status"] == "review"
        assert nigo["status"] == "nigo"
        assert not nigo["all_requirements_satisfied"]

    async def test_unknown_requirement_propagates(self, orchestrator):
        with pytest.raises(NotFoundException):
            await orchestrator.process_requirement("CLM-1", "REQ-NOPE", "DOC-1")


class TestSettlementAndPayment:
    """Test settlement calculation and payment execution"""

    async def test_calculate_settlement(self, orchestrator, claims_ledger):
        settlement = await orchestrator.calculate_settlement("CLM-1")

        assert settlement["gross_amount"] == 251200
        assert settlement["tax_withholding"] == 1200
        assert settlement["net_amount"] == 250000
        claims_ledger.calculate_tax_withholding.assert_awaited_once_with({"amount": 251200.0, "state": "NY"})

    async def test_execute_payment(self, orchestrator, claims_ledger, recorder):
        outcome = await orchestrator.execute_payment("CLM-1", {"amount": 250000, "payee": "Jane Doe Estate"})

        assert outcome["status"] == "executed"
        claims_ledger.create_payment.assert_awaited_once_with(
            {"claim_id": "CLM-1", "amount": 250000, "payee": "Jane Doe Estate"}
        )
        claims_ledger.execute_payment.assert_awaited_once_with("PAY-1")
        claims_ledger.post_ledger_entry.assert_awaited_once()
        claims_ledger.generate_tax_form.assert_awaited_once_with("CLM-1")
        assert recorder.of(EventTypes.PAYMENT_EXECUTED)[0]["data"]["amount"] == 250000

    async def test_small_payment_skips_tax_form(self, orchestrator, claims_ledger):
        claims_ledger.create_payment.return_value = {"id": "PAY-2", "amount": 250}

        await orchestrator.execute_payment("CLM-1", {"amount": 250})

        claims_ledger.generate_tax_form.assert_not_awaited()

    async def test_payment_failure_propagates(self, orchestrator, claims_ledger, recorder):
        claims_ledger.execute_payment.side_effect = RuntimeError("bank rejected transfer")

        with pytest.raises(RuntimeError):
            await orchestrator.execute_payment("CLM-1", {"amount": 250000})

        claims_ledger.post_ledger_entry.assert_not_awaited()
        assert not recorder.of(EventTypes.PAYMENT_EXECUTED)


class TestPlaybookDispatch:
    """Test playbook selection from routing decisions"""

    async def test_fasttrack_claim_runs_fasttrack_playbook(self, orchestrator, fnol):
        result = await orchestrator.initiate_claim(fnol)

        execution = await orchestrator.execute_claim_playbook(result)

        assert execution.playbook_type == PlaybookType.DEATH_CLAIM_FASTTRACK.value
        assert execution.case_id == "CASE-1"
        assert execution.state == WorkflowState.COMPLETED
        assert execution.step("process_payment").output["amount"] == 251200

    async def test_routing_selects_playbook(self, orchestrator):
        siu = await orchestrator.execute_claim_playbook("CASE-2", routing="siu")
        expedited = await orchestrator.execute_claim_playbook("CASE-3", routing="expedited")

        assert siu.playbook_type == PlaybookType.SIU_INVESTIGATION.value
        assert expedited.playbook_type == PlaybookType.DEATH_CLAIM_STANDARD.value

    async def test_requires_workflow_engine(self, orchestrator):
        orchestrator.workflow_engine = None

        with pytest.raises(ConfigurationException):
            await orchestrator.execute_claim_playbook("CASE-1")


class TestWiring:
    """Test orchestrator assembly from settings"""

    def _collaborators(self):
        return {
            "policy_registry": AsyncMock(spec=PolicyRegistry),
            "claims_ledger": AsyncMock(spec=ClaimsLedger),
            "case_tracker": AsyncMock(spec=CaseTracker),
            "document_service": AsyncMock(spec=DocumentService),
        }

    def test_build_without_redis(self):
        orchestrator = build_orchestrator(**self._collaborators(), settings=Settings(redis_url=None))

        assert isinstance(orchestrator, ClaimOrchestrator)
        assert isinstance(orchestrator.workflow_engine.state_store, InMemoryWorkflowStateStore)
        assert orchestrator.requirement_processor.event_bus is orchestrator.event_bus
        assert orchestrator.workflow_engine.event_bus is orchestrator.event_bus

    def test_build_with_redis(self):
        settings = Settings(redis_url="redis://localhost:6379/15", workflow_state_ttl_hours=6)

        orchestrator = build_orchestrator(**self._collaborators(), settings=settings)

        store = orchestrator.workflow_engine.state_store
        assert isinstance(store, RedisWorkflowStateStore)
        assert store.ttl.total_seconds() == 6 * 3600

    async def test_missing_verification_service_degrades(self, fnol, policy_registry, claims_ledger, case_tracker, document_service):
        orchestrator = build_orchestrator(
            policy_registry, claims_ledger, case_tracker, document_service,
            settings=Settings(redis_url=None)
        )

        result = await orchestrator.initiate_claim(fnol)

        assert result.success
        assert result.warnings[0]["warning"] == "Automatic verification failed, manual verification required"
