"""
Death Claim Workflow System - Claim Orchestrator
Claim initiation saga across the systems of record, plus requirement,
settlement, payment and playbook entry points
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import structlog

from claimflow.integrations.collaborators import (
    CaseTracker, ClaimsLedger, DocumentService, PolicyRegistry, VerificationService
)
from claimflow.integrations.event_bus import EventBus, EventTypes
from claimflow.requirements.decision_table import DecisionTableEngine
from claimflow.requirements.requirement_processor import RequirementProcessor
from claimflow.shared.config import Settings, get_settings
from claimflow.shared.exceptions import ConfigurationException, StepExecutionException
from claimflow.shared.monitoring import audit_logger, metrics, setup_logging
from claimflow.shared.schemas import (
    ClaimStatus, OrchestrationStep, PlaybookType, RoutingType
)
from claimflow.shared.store import RedisWorkflowStateStore, RequirementStore
from claimflow.shared.utils import DataUtils, DateTimeUtils
from .routing_engine import RoutingEngine
from .workflow_engine import WorkflowEngine, WorkflowExecution

logger = structlog.get_logger(__name__)

QUEUE_BY_ROUTING = {
    RoutingType.FASTTRACK: "FastTrack Queue",
    RoutingType.STANDARD: "Standard Queue",
    RoutingType.EXPEDITED: "Standard Queue",
    RoutingType.SIU: "SIU Queue",
}

PLAYBOOK_BY_ROUTING = {
    RoutingType.FASTTRACK: PlaybookType.DEATH_CLAIM_FASTTRACK,
    RoutingType.STANDARD: PlaybookType.DEATH_CLAIM_STANDARD,
    RoutingType.EXPEDITED: PlaybookType.DEATH_CLAIM_STANDARD,
    RoutingType.SIU: PlaybookType.SIU_INVESTIGATION,
}


@dataclass
class OrchestrationResult:
    """Audit trail of one claim initiation"""
    success: bool = False
    claim: Optional[Dict[str, Any]] = None
    case: Optional[Dict[str, Any]] = None
    policy: Optional[Dict[str, Any]] = None
    steps: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_step(self, step: OrchestrationStep, status: str, data: Dict[str, Any] = None):
        self.steps.append({
            "step": step.value,
            "status": status,
            "timestamp": DateTimeUtils.now_iso(),
            "data": data or {}
        })
        metrics.record_orchestration_step(step.value, status)

    def add_error(self, step: Union[OrchestrationStep, str], error: BaseException):
        self.errors.append({
            "step": getattr(step, "value", step),
            "error": str(error),
            "timestamp": DateTimeUtils.now_iso()
        })

    def add_warning(self, step: OrchestrationStep, warning: str):
        self.warnings.append({
            "step": step.value,
            "warning": warning,
            "timestamp": DateTimeUtils.now_iso()
        })

    def step_status(self, step: OrchestrationStep) -> Optional[str]:
        entry = next((s for s in reversed(self.steps) if s["step"] == step.value), None)
        return entry["status"] if entry else None


class ClaimOrchestrator:
    """
    Coordinates the claim lifecycle across the policy registry, claims ledger,
    case tracker and document services.

    Policy lookup, benefit calculation, case creation and claim creation are
    critical: a failure ends the saga with ``success=False``. Every other step
    records a warning naming the manual follow-up and the saga continues.
    """

    def __init__(
        self,
        policy_registry: PolicyRegistry,
        claims_ledger: ClaimsLedger,
        case_tracker: CaseTracker,
        document_service: DocumentService,
        verification_service: Optional[VerificationService],
        requirement_processor: RequirementProcessor,
        routing_engine: RoutingEngine,
        event_bus: EventBus,
        workflow_engine: Optional[WorkflowEngine] = None,
        settings: Optional[Settings] = None
    ):
        self.policy_registry = policy_registry
        self.claims_ledger = claims_ledger
        self.case_tracker = case_tracker
        self.document_service = document_service
        self.verification_service = verification_service
        self.requirement_processor = requirement_processor
        self.routing_engine = routing_engine
        self.event_bus = event_bus
        self.workflow_engine = workflow_engine
        self.settings = settings or get_settings()
        self.logger = structlog.get_logger("claim_orchestrator")

    # =========================================================================
    # CLAIM INITIATION SAGA
    # =========================================================================

    async def initiate_claim(self, fnol: Dict[str, Any]) -> OrchestrationResult:
        """Run the nine-step initiation saga for a first notice of loss"""
        result = OrchestrationResult()
        policy_number = fnol.get("policy_number")
        self.logger.info("Starting claim initiation", policy_number=policy_number)
        result.add_step(OrchestrationStep.FNOL_RECEIVED, "success", {"policy_number": policy_number})

        try:
            policy = await self.lookup_policy(policy_number, result)
            result.policy = policy

            death_verification = await self.verify_death(fnol.get("insured") or {}, result)
            result.metadata["death_verification"] = death_verification

            await self.suspend_policy(policy_number, fnol.get("date_of_death"), "Death claim filed", result)

            death_benefit = await self.calculate_death_benefit(policy_number, fnol.get("date_of_death"), result)
            result.metadata["death_benefit"] = death_benefit

            case = await self.create_case(fnol, policy, result)
            result.case = case

            claim = await self.create_claim(fnol, policy, case, death_benefit, result)
            result.claim = claim

            await self.generate_requirements(
                fnol, claim, policy, case, death_verification,
                fnol.get("beneficiary_verification"), fnol.get("anomalies"), result
            )

            routing = await self.evaluate_routing(
                claim, policy, death_verification,
                fnol.get("beneficiary_verification"), fnol.get("anomalies"), result
            )
            result.metadata["routing"] = routing

            await self.assign_claim(claim, routing, result)

            result.add_step(OrchestrationStep.COMPLETE, "success")
            result.success = True

            await self.event_bus.publish(EventTypes.ORCHESTRATION_CLAIM_INITIATED, {
                "claim_id": claim.get("id"),
                "claim": claim,
                "case": case,
                "routing": routing["routing"]
            })
            self.logger.info(
                "Claim initiation complete",
                claim_id=claim.get("id"),
                routing=routing["routing"],
                warnings=len(result.warnings)
            )

        except StepExecutionException as e:
            self.logger.error("Claim initiation aborted", step=e.step, error=str(e.cause))
            audit_logger.log_system_event(
                "claim.initiation.aborted",
                f"Claim initiation stopped at {e.step}",
                severity="error",
                details={"policy_number": policy_number, "error": str(e.cause)}
            )
            result.success = False

        except Exception as e:
            self.logger.error("Claim initiation failed", error=str(e))
            result.add_error("initiation", e)
            result.success = False

        metrics.record_orchestration(result.success)
        return result

    async def _critical_failure(self, step: OrchestrationStep, error: Exception, result: OrchestrationResult):
        result.add_step(step, "failed")
        result.add_error(step, error)
        raise StepExecutionException(step.value, error) from error

    def _non_critical_failure(self, step: OrchestrationStep, error: Exception, warning: str, result: OrchestrationResult):
        self.logger.warning("Saga step failed", step=step.value, error=str(error))
        result.add_step(step, "failed")
        result.add_error(step, error)
        result.add_warning(step, warning)

    async def lookup_policy(self, policy_number: str, result: OrchestrationResult) -> Dict[str, Any]:
        try:
            policy = dict(await self.policy_registry.lookup_policy(policy_number))
            policy.setdefault("policy_number", policy_number)
        except Exception as e:
            await self._critical_failure(OrchestrationStep.POLICY_LOOKUP, e, result)

        if policy.get("contestable") is None:
            years = DateTimeUtils.years_since(policy.get("issue_date"))
            if years is not None:
                policy["contestable"] = years < self.routing_engine.config.contestability_period_years

        result.add_step(OrchestrationStep.POLICY_LOOKUP, "success", {
            "policy_number": policy_number,
            "policy_type": policy.get("policy_type"),
            "status": policy.get("status")
        })

        required_status = self.routing_engine.config.required_policy_status
        if policy.get("status") != required_status:
            result.add_warning(
                OrchestrationStep.POLICY_LOOKUP,
                f"Policy status is {policy.get('status')}, not in-force"
            )
        return policy

    async def verify_death(self, insured: Dict[str, Any], result: OrchestrationResult) -> Dict[str, Any]:
        try:
            if self.verification_service is None:
                raise RuntimeError("No death verification service configured")
            verification = await self.verification_service.verify_death(insured)
        except Exception as e:
            self._non_critical_failure(
                OrchestrationStep.DEATH_VERIFICATION, e,
                "Automatic verification failed, manual verification required", result
            )
            return {"verified": False, "confidence": 0, "manual_review_required": True}

        match = verification.get("three_point_match") or {}
        confidence = verification.get("confidence", match.get("confidence", 0))
        result.add_step(OrchestrationStep.DEATH_VERIFICATION, "success", {
            "verified": verification.get("verified"),
            "confidence": confidence,
            "three_point_match": match.get("confidence")
        })

        threshold = self.routing_engine.config.death_verification_threshold
        if confidence is not None and confidence < threshold:
            result.add_warning(
                OrchestrationStep.DEATH_VERIFICATION,
                f"Death verification confidence is {confidence}%, below {threshold:g}% threshold"
            )
        return verification

    async def suspend_policy(self, policy_number: str, date_of_death: Optional[str], reason: str, result: OrchestrationResult):
        try:
            await self.policy_registry.suspend_policy(policy_number, date_of_death, reason)
        except Exception as e:
            self._non_critical_failure(
                OrchestrationStep.POLICY_SUSPENSION, e,
                "Policy suspension failed, manual suspension required", result
            )
            return

        result.add_step(OrchestrationStep.POLICY_SUSPENSION, "success", {
            "policy_number": policy_number,
            "suspension_date": date_of_death
        })
        await self.event_bus.publish(EventTypes.POLICY_SUSPENDED, {
            "policy_number": policy_number,
            "suspension_date": date_of_death,
            "reason": reason
        })

    async def calculate_death_benefit(self, policy_number: str, date_of_death: Optional[str], result: OrchestrationResult) -> Dict[str, Any]:
        try:
            calculation = await self.policy_registry.calculate_death_benefit(policy_number, date_of_death)
        except Exception as e:
            await self._critical_failure(OrchestrationStep.DEATH_BENEFIT_CALC, e, result)

        result.add_step(OrchestrationStep.DEATH_BENEFIT_CALC, "success", {
            "death_benefit": calculation.get("death_benefit"),
            "interest": calculation.get("interest"),
            "total_amount": calculation.get("total_amount")
        })
        return calculation

    async def create_case(self, fnol: Dict[str, Any], policy: Dict[str, Any], result: OrchestrationResult) -> Dict[str, Any]:
        insured = fnol.get("insured") or {}
        try:
            case = await self.case_tracker.create_case({
                "title": f"Death Claim - {policy.get('policy_number')}",
                "description": f"Death claim for insured: {insured.get('name')}",
                "priority": "medium",
                "claim_type": fnol.get("claim_type", "death"),
                "policy_number": policy.get("policy_number"),
                "insured_name": insured.get("name"),
                "date_of_death": fnol.get("date_of_death"),
                "submitted_by": fnol.get("submitted_by")
            })
        except Exception as e:
            await self._critical_failure(OrchestrationStep.CASE_CREATION, e, result)

        result.add_step(OrchestrationStep.CASE_CREATION, "success", {
            "case_id": case.get("id"),
            "case_number": case.get("case_number")
        })
        await self.event_bus.publish(EventTypes.CASE_CREATED, {"case_id": case.get("id")})
        return case

    async def create_claim(
        self,
        fnol: Dict[str, Any],
        policy: Dict[str, Any],
        case: Dict[str, Any],
        death_benefit: Dict[str, Any],
        result: OrchestrationResult
    ) -> Dict[str, Any]:
        try:
            claim = await self.claims_ledger.create_claim({
                "claim_number": DataUtils.generate_id("CLM"),
                "claim_type": fnol.get("claim_type", "death"),
                "status": ClaimStatus.SUBMITTED.value,
                "policy_number": policy.get("policy_number"),
                "insured": fnol.get("insured"),
                "policy": {
                    "policy_number": policy.get("policy_number"),
                    "policy_type": policy.get("policy_type"),
                    "coverage": policy.get("coverage")
                },
                "financial": {
                    "claim_amount": death_benefit.get("total_amount"),
                    "death_benefit": death_benefit.get("death_benefit"),
                    "interest_amount": death_benefit.get("interest")
                },
                "workflow": {
                    "case_id": case.get("id"),
                    "case_number": case.get("case_number"),
                    "routing": None,
                    "days_open": 0
                },
                "submitted_by": fnol.get("submitted_by"),
                "submitted_at": DateTimeUtils.now_iso()
            })
        except Exception as e:
            await self._critical_failure(OrchestrationStep.CLAIM_CREATION, e, result)

        result.add_step(OrchestrationStep.CLAIM_CREATION, "success", {
            "claim_id": claim.get("id"),
            "claim_number": claim.get("claim_number"),
            "claim_amount": DataUtils.get_nested_value(claim, "financial.claim_amount")
        })
        await self.event_bus.publish(EventTypes.CLAIM_CREATED, {"claim_id": claim.get("id")})
        return claim

    def build_decision_context(
        self,
        fnol: Dict[str, Any],
        claim: Dict[str, Any],
        policy: Dict[str, Any],
        case: Dict[str, Any],
        death_verification: Optional[Dict[str, Any]],
        beneficiary_verification: Optional[Dict[str, Any]],
        anomalies: Optional[List[Dict[str, Any]]]
    ) -> Dict[str, Any]:
        claimant = fnol.get("claimant") or {}
        return {
            "claim": {
                "id": claim.get("id"),
                "type": claim.get("claim_type") or fnol.get("claim_type", "death"),
                "amount": DataUtils.get_nested_value(claim, "financial.claim_amount") or 0,
                "status": claim.get("status")
            },
            "policy": {
                "policy_number": policy.get("policy_number"),
                "status": policy.get("status"),
                "issue_date": policy.get("issue_date"),
                "contestable": policy.get("contestable"),
                "found": True
            },
            "death_verification": death_verification or {"verified": False, "confidence": 0},
            "beneficiary_verification": beneficiary_verification or {"verified": False, "confidence": 0},
            "anomalies": (anomalies.get("anomalies") if isinstance(anomalies, dict) else anomalies) or [],
            "claimant": {
                "is_beneficiary": claimant.get("is_beneficiary", True),
                "type": claimant.get("type", "individual")
            },
            "case": {"id": case.get("id")}
        }

    async def generate_requirements(
        self,
        fnol: Dict[str, Any],
        claim: Dict[str, Any],
        policy: Dict[str, Any],
        case: Dict[str, Any],
        death_verification: Optional[Dict[str, Any]],
        beneficiary_verification: Optional[Dict[str, Any]],
        anomalies: Optional[List[Dict[str, Any]]],
        result: OrchestrationResult
    ):
        step = OrchestrationStep.REQUIREMENTS_GENERATION
        try:
            context = self.build_decision_context(
                fnol, claim, policy, case, death_verification, beneficiary_verification, anomalies
            )
            processing = await self.requirement_processor.generate_requirements(claim.get("id"), context)
            if not processing.success:
                raise RuntimeError("Requirement generation failed: " + ", ".join(processing.errors))
        except Exception as e:
            self._non_critical_failure(step, e, "Requirements generation failed, manual entry required", result)
            return None

        result.add_step(step, "success", {
            "requirements_count": len(processing.requirements),
            "mandatory_count": processing.metadata["mandatory_requirements"],
            "optional_count": processing.metadata["optional_requirements"],
            "rules_matched": processing.metadata["rules_matched"]
        })
        for warning in processing.warnings:
            result.add_warning(step, warning)

        result.metadata["requirements"] = [
            {
                "id": r.id,
                "type": r.type.value,
                "level": r.level.value,
                "status": r.status.value,
                "due_date": r.due_date.isoformat() if r.due_date else None
            }
            for r in processing.requirements
        ]
        return processing.requirements

    async def evaluate_routing(
        self,
        claim: Dict[str, Any],
        policy: Dict[str, Any],
        death_verification: Optional[Dict[str, Any]],
        beneficiary_verification: Optional[Dict[str, Any]],
        anomalies: Optional[List[Dict[str, Any]]],
        result: OrchestrationResult
    ) -> Dict[str, Any]:
        step = OrchestrationStep.ROUTING_EVALUATION
        try:
            eligibility = self.routing_engine.evaluate_eligibility(
                claim=claim,
                policy=policy,
                death_verification=death_verification,
                beneficiary_verification=beneficiary_verification,
                anomaly_signals=anomalies
            )
            routing = self.routing_engine.route_for(eligibility)
            await self.claims_ledger.update_claim(claim.get("id"), {"workflow.routing": routing.value})
        except Exception as e:
            self._non_critical_failure(step, e, "Routing evaluation failed, defaulting to standard routing", result)
            return {"routing": RoutingType.STANDARD.value, "eligibility": {"eligible": False}}

        result.add_step(step, "success", {
            "routing": routing.value,
            "eligible": eligibility.eligible,
            "score": eligibility.score,
            "reason": eligibility.reason
        })
        return {"routing": routing.value, "eligibility": eligibility.to_dict()}

    async def assign_claim(self, claim: Dict[str, Any], routing: Dict[str, Any], result: OrchestrationResult):
        step = OrchestrationStep.ASSIGNMENT
        queue_name = QUEUE_BY_ROUTING[RoutingType(routing["routing"])]
        try:
            await self.claims_ledger.update_claim(claim.get("id"), {"assigned_to": queue_name})
        except Exception as e:
            self._non_critical_failure(step, e, "Claim assignment failed, manual assignment required", result)
            return

        result.add_step(step, "success", {"assigned_to": queue_name, "routing": routing["routing"]})
        await self.event_bus.publish(EventTypes.CLAIM_ASSIGNED, {
            "claim_id": claim.get("id"),
            "assigned_to": queue_name
        })

    # =========================================================================
    # SUPPLEMENTARY SAGAS
    # =========================================================================

    async def process_requirement(self, claim_id: str, requirement_id: str, document_id: str) -> Dict[str, Any]:
        """Link a document, grade it IGO/NIGO and check claim completeness.

        Failures propagate to the caller.
        """
        try:
            linked = await self.requirement_processor.link_document(claim_id, requirement_id, document_id, True)
            extraction = await self.document_service.get_extraction_results(document_id) or {}

            confidence = float(extraction.get("confidence") or 0)
            if confidence >= 0.9:
                disposition = "igo"
            elif confidence >= 0.7:
                disposition = "review"
            else:
                disposition = "nigo"

            all_satisfied = self.requirement_processor.all_mandatory_satisfied(claim_id)
            if all_satisfied:
                self.logger.info("All mandatory requirements satisfied", claim_id=claim_id)
                await self.claims_ledger.update_claim(claim_id, {"status": ClaimStatus.REQUIREMENTS_COMPLETE.value})
                await self.event_bus.publish(EventTypes.CLAIM_REQUIREMENTS_COMPLETE, {"claim_id": claim_id})

            return {
                "status": disposition,
                "extraction": extraction,
                "requirement": linked["requirement"],
                "all_requirements_satisfied": all_satisfied
            }

        except Exception as e:
            self.logger.error(
                "Requirement processing failed",
                claim_id=claim_id,
                requirement_id=requirement_id,
                error=str(e)
            )
            raise

    async def calculate_settlement(self, claim_id: str) -> Dict[str, Any]:
        try:
            claim = await self.claims_ledger.get_claim(claim_id)
            gross = float(DataUtils.get_nested_value(claim, "financial.claim_amount") or 0)

            tax = await self.claims_ledger.calculate_tax_withholding({
                "amount": gross,
                "state": DataUtils.get_nested_value(claim, "insured.state")
            })
            withholding = float(tax.get("withholding_amount") or 0)

            return {
                "claim_id": claim_id,
                "gross_amount": gross,
                "tax_withholding": withholding,
                "net_amount": gross - withholding,
                "calculated_at": DateTimeUtils.now_iso()
            }

        except Exception as e:
            self.logger.error("Settlement calculation failed", claim_id=claim_id, error=str(e))
            raise

    async def execute_payment(self, claim_id: str, payment_request: Dict[str, Any]) -> Dict[str, Any]:
        """Create, execute and book a payment; a tax form follows at the reporting threshold.

        Failures propagate to the caller.
        """
        try:
            payment = await self.claims_ledger.create_payment({"claim_id": claim_id, **payment_request})
            outcome = await self.claims_ledger.execute_payment(payment["id"])

            amount = float(payment.get("amount") or 0)
            await self.claims_ledger.post_ledger_entry({
                "claim_id": claim_id,
                "payment_id": payment["id"],
                "amount": amount,
                "transaction_type": "payment"
            })

            if amount >= self.settings.tax_reporting_threshold:
                await self.claims_ledger.generate_tax_form(claim_id)

            await self.event_bus.publish(EventTypes.PAYMENT_EXECUTED, {
                "claim_id": claim_id,
                "payment_id": payment["id"],
                "amount": amount
            })
            return outcome

        except Exception as e:
            self.logger.error("Payment execution failed", claim_id=claim_id, error=str(e))
            raise

    async def execute_claim_playbook(
        self,
        target: Union[OrchestrationResult, str],
        routing: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> WorkflowExecution:
        """Start the playbook matching a routing decision"""
        if self.workflow_engine is None:
            raise ConfigurationException("No workflow engine configured")

        run_context: Dict[str, Any] = {}
        if isinstance(target, OrchestrationResult):
            if not target.case:
                raise ConfigurationException("Orchestration result has no case")
            case_id = target.case.get("id")
            routing = routing or (target.metadata.get("routing") or {}).get("routing")
            claim = target.claim or {}
            run_context.update({
                "claim_id": claim.get("id"),
                "claim_amount": DataUtils.get_nested_value(claim, "financial.claim_amount"),
                "death_verification": target.metadata.get("death_verification"),
                "all_requirements_satisfied": self.requirement_processor.all_mandatory_satisfied(claim.get("id"))
            })
        else:
            case_id = target

        run_context.update(context or {})
        playbook_type = PLAYBOOK_BY_ROUTING[RoutingType(routing or RoutingType.STANDARD.value)]
        return await self.workflow_engine.execute_playbook(case_id, playbook_type, run_context)


def build_orchestrator(
    policy_registry: PolicyRegistry,
    claims_ledger: ClaimsLedger,
    case_tracker: CaseTracker,
    document_service: DocumentService,
    verification_service: Optional[VerificationService] = None,
    settings: Optional[Settings] = None,
    configure_logging: bool = False
) -> ClaimOrchestrator:
    """Wire the orchestration core around a set of system-of-record adapters"""
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(settings.log_level, settings.log_format)

    event_bus = EventBus(history_size=settings.event_history_size)
    decision_engine = DecisionTableEngine(event_bus)
    requirement_processor = RequirementProcessor(
        decision_engine,
        case_tracker,
        document_service,
        event_bus,
        store=RequirementStore(),
        auto_satisfy_confidence=settings.auto_satisfy_confidence
    )

    state_store = None
    if settings.redis_url:
        state_store = RedisWorkflowStateStore.from_url(settings.redis_url, settings.workflow_state_ttl_hours)
    workflow_engine = WorkflowEngine(case_tracker, event_bus, state_store=state_store)

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
