"""
Death Claim Workflow System - Requirement Processor
Requirement lifecycle: generation, document linkage, automatic satisfaction,
examiner decisions and completion queries
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from claimflow.integrations.collaborators import CaseTracker, DocumentService
from claimflow.integrations.event_bus import EventBus, EventTypes
from claimflow.shared.exceptions import NotFoundException
from claimflow.shared.monitoring import audit_logger, metrics
from claimflow.shared.schemas import (
    DecisionContext, Requirement, RequirementStatus, RequirementType, TaskType
)
from claimflow.shared.store import RequirementStore
from claimflow.shared.utils import DataUtils, DateTimeUtils
from .decision_table import DecisionTableEngine

logger = structlog.get_logger(__name__)

# Classifier labels accepted as evidence for each requirement type
DOCUMENT_TYPE_MAPPING: Dict[RequirementType, frozenset] = {
    RequirementType.DEATH_CERTIFICATE: frozenset({"death_certificate"}),
    RequirementType.CLAIMANT_STATEMENT: frozenset({"claimant_statement", "claim_form"}),
    RequirementType.PROOF_OF_IDENTITY: frozenset({"drivers_license", "passport", "government_id"}),
    RequirementType.POLICY_DOCUMENTS: frozenset({"policy", "policy_document"}),
    RequirementType.MEDICAL_RECORDS: frozenset({"medical_record", "medical_report"}),
    RequirementType.ATTENDING_PHYSICIAN_STATEMENT: frozenset({"aps", "physician_statement"}),
    RequirementType.AUTOPSY_REPORT: frozenset({"autopsy", "autopsy_report"}),
    RequirementType.BENEFICIARY_DESIGNATION: frozenset({"beneficiary_form", "beneficiary_designation"}),
    RequirementType.TAX_FORMS: frozenset({"w9", "tax_form"}),
    RequirementType.BANKING_INFORMATION: frozenset({"direct_deposit_form", "bank_form"}),
    RequirementType.POWER_OF_ATTORNEY: frozenset({"poa", "power_of_attorney"}),
    RequirementType.COURT_DOCUMENTS: frozenset({"court_order", "letters_testamentary", "letters_administration"}),
}


@dataclass
class ProcessingResult:
    """Outcome of a requirement generation pass"""
    success: bool = False
    requirements: List[Requirement] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


class RequirementProcessor:
    """
    Owns the requirements of each claim.

    State machine: pending -> {in_review, satisfied, rejected, waived, overridden};
    in_review -> {satisfied, rejected}; rejected -> {in_review}. Satisfied, waived
    and overridden are terminal. Illegal moves raise InvalidTransitionException.
    """

    def __init__(
        self,
        decision_engine: DecisionTableEngine,
        case_tracker: CaseTracker,
        document_service: DocumentService,
        event_bus: EventBus,
        store: Optional[RequirementStore] = None,
        auto_satisfy_confidence: float = 0.85
    ):
        self.decision_engine = decision_engine
        self.case_tracker = case_tracker
        self.document_service = document_service
        self.event_bus = event_bus
        self.store = store or RequirementStore()
        self.auto_satisfy_confidence = auto_satisfy_confidence
        self.logger = structlog.get_logger("requirement_processor")

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    async def generate_requirements(self, claim_id: str, context: Any) -> ProcessingResult:
        """Run the decision table and track each resulting requirement under the claim.

        Types already tracked for the claim are kept as they are. A task is opened
        in the case tracker for every new mandatory requirement; a task failure is
        a warning and the requirement is still tracked.
        """
        result = ProcessingResult()
        self.logger.info("Generating requirements", claim_id=claim_id)

        try:
            ctx = DecisionContext.coerce(context)
            decision = await self.decision_engine.evaluate(ctx)
            matched_rule_ids = [r["id"] for r in decision.rules_matched]

            created: List[Requirement] = []
            for requirement in decision.requirements:
                existing = self.store.find_by_type(claim_id, requirement.type)
                if existing:
                    result.warnings.append(f"Requirement {requirement.type.value} already tracked as {existing.id}")
                    continue

                requirement.metadata.update({
                    "claim_id": claim_id,
                    "generated_by": "decision_table",
                    "rules_matched": matched_rule_ids
                })
                self.store.add(claim_id, requirement)
                created.append(requirement)
                metrics.record_requirement(requirement.type.value, requirement.level.value)

            for requirement in created:
                if not requirement.is_mandatory():
                    continue
                try:
                    task = await self._create_requirement_task(claim_id, requirement, ctx)
                    requirement.task_id = task.get("id")
                except Exception as e:
                    self.logger.warning(
                        "Failed to create requirement task",
                        claim_id=claim_id,
                        requirement_id=requirement.id,
                        error=str(e)
                    )
                    result.warnings.append(f"Failed to create task for {requirement.type.value}")

            result.success = True
            result.requirements = created
            result.metadata = {
                "rules_matched": len(decision.rules_matched),
                "total_requirements": len(created),
                "mandatory_requirements": sum(1 for r in created if r.is_mandatory()),
                "optional_requirements": sum(1 for r in created if not r.is_mandatory()),
                "escalated": decision.metadata["escalated"],
                "auto_approve": decision.metadata["auto_approve"],
                "rule_errors": decision.metadata["rule_errors"],
            }

            await self.event_bus.publish(EventTypes.REQUIREMENT_GENERATED, {
                "claim_id": claim_id,
                "requirement_count": len(created),
                "requirements": [
                    {"id": r.id, "type": r.type.value, "level": r.level.value} for r in created
                ]
            })

            self.logger.info("Requirements generated", claim_id=claim_id, count=len(created))

        except Exception as e:
            self.logger.error("Requirement generation failed", claim_id=claim_id, error=str(e))
            result.success = False
            result.errors.append(str(e))

        return result

    async def _create_requirement_task(
        self,
        claim_id: str,
        requirement: Requirement,
        context: DecisionContext
    ) -> Dict[str, Any]:
        case_id = context.case_id
        if not case_id:
            raise ValueError("Case id not found in context")

        task = await self.case_tracker.create_task({
            "case_id": case_id,
            "name": f"Requirement: {requirement.type.value}",
            "description": requirement.description,
            "type": TaskType.DOCUMENT_REVIEW.value,
            "priority": "high" if requirement.is_mandatory() else "normal",
            "due_date": requirement.due_date.isoformat() if requirement.due_date else None,
            "metadata": {
                "requirement_id": requirement.id,
                "requirement_type": requirement.type.value,
                "requirement_level": requirement.level.value,
                "claim_id": claim_id
            }
        })

        await self.event_bus.publish(EventTypes.TASK_CREATED, {
            "case_id": case_id,
            "task_id": task.get("id"),
            "requirement_id": requirement.id
        })
        return task

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    async def link_document(
        self,
        claim_id: str,
        requirement_id: str,
        document_id: str,
        auto_evaluate: bool = True
    ) -> Dict[str, Any]:
        """Attach a document to a requirement; linking the same document twice is a no-op.

        A rejected requirement returns to in_review when a new document arrives.
        """
        requirement = self._require(claim_id, requirement_id)

        newly_linked = requirement.link_document(document_id)

        if newly_linked and requirement.status == RequirementStatus.REJECTED:
            requirement.transition(RequirementStatus.IN_REVIEW)
            metrics.record_requirement_transition(RequirementStatus.IN_REVIEW.value)

        try:
            await self.document_service.link_document_to_requirement(document_id, requirement_id)
        except Exception as e:
            self.logger.warning(
                "Failed to mirror document link",
                requirement_id=requirement_id,
                document_id=document_id,
                error=str(e)
            )

        satisfied = requirement.is_satisfied()
        if auto_evaluate:
            satisfied = await self.evaluate_satisfaction(claim_id, requirement_id)

        await self.event_bus.publish(EventTypes.DOCUMENT_LINKED, {
            "claim_id": claim_id,
            "requirement_id": requirement_id,
            "document_id": document_id
        })

        return {"requirement": requirement, "document_id": document_id, "satisfied": satisfied}

    def document_matches_requirement(self, requirement: Requirement, classification: Optional[Dict[str, Any]]) -> bool:
        if not classification:
            return False

        document_type = DataUtils.normalize_label(
            classification.get("document_type", classification.get("documentType"))
        )
        confidence = classification.get("confidence")
        if not document_type or confidence is None:
            return False

        expected = DOCUMENT_TYPE_MAPPING.get(requirement.type, frozenset())
        return document_type in expected and float(confidence) >= self.auto_satisfy_confidence

    async def evaluate_satisfaction(self, claim_id: str, requirement_id: str) -> bool:
        """Try to satisfy a requirement from its linked documents' classifications"""
        requirement = self._require(claim_id, requirement_id)

        if requirement.is_satisfied():
            return True
        if not requirement.documents:
            return False
        if not requirement.can_transition(RequirementStatus.SATISFIED):
            return False

        matched_document = None
        for document_id in requirement.documents:
            try:
                classification = await self.document_service.classify_document(document_id)
            except Exception as e:
                self.logger.warning(
                    "Document classification failed",
                    requirement_id=requirement_id,
                    document_id=document_id,
                    error=str(e)
                )
                continue

            if self.document_matches_requirement(requirement, classification):
                matched_document = document_id
                break

        if matched_document is None:
            return False

        await self.satisfy_requirement(
            claim_id,
            requirement_id,
            method="automatic",
            reason="Document verified via classification",
            document_id=matched_document
        )
        return True

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def satisfy_requirement(
        self,
        claim_id: str,
        requirement_id: str,
        satisfied_by: str = "system",
        method: str = "manual",
        reason: str = "",
        document_id: Optional[str] = None
    ) -> Requirement:
        requirement = self._require(claim_id, requirement_id)
        requirement.transition(RequirementStatus.SATISFIED)
        requirement.metadata.update({
            "satisfied_by": satisfied_by,
            "satisfaction_method": method,
            "satisfaction_reason": reason,
        })
        if document_id:
            requirement.metadata["satisfying_document_id"] = document_id

        if method != "automatic":
            audit_logger.log_user_action(
                satisfied_by, "requirement.satisfy", "requirement", requirement_id,
                {"claim_id": claim_id, "reason": reason}
            )

        await self._complete_task(requirement, f"Requirement satisfied: {reason or 'Document verified'}")
        await self._announce(EventTypes.REQUIREMENT_SATISFIED, claim_id, requirement, {"method": method})
        return requirement

    async def waive_requirement(self, claim_id: str, requirement_id: str, user_id: str, reason: str) -> Requirement:
        requirement = self._require(claim_id, requirement_id)
        requirement.transition(RequirementStatus.WAIVED)
        requirement.waived = True
        requirement.waived_by = user_id
        requirement.waived_reason = reason
        requirement.waived_at = requirement.updated_at

        audit_logger.log_user_action(
            user_id, "requirement.waive", "requirement", requirement_id,
            {"claim_id": claim_id, "reason": reason}
        )
        await self._complete_task(requirement, f"Requirement waived: {reason}")
        await self._announce(EventTypes.REQUIREMENT_WAIVED, claim_id, requirement, {
            "waived_by": user_id, "reason": reason
        })
        return requirement

    async def override_requirement(self, claim_id: str, requirement_id: str, user_id: str, reason: str) -> Requirement:
        requirement = self._require(claim_id, requirement_id)
        requirement.transition(RequirementStatus.OVERRIDDEN)
        requirement.overridden = True
        requirement.overridden_by = user_id
        requirement.overridden_reason = reason
        requirement.overridden_at = requirement.updated_at

        audit_logger.log_user_action(
            user_id, "requirement.override", "requirement", requirement_id,
            {"claim_id": claim_id, "reason": reason}
        )
        await self._complete_task(requirement, f"Requirement overridden: {reason}")
        await self._announce(EventTypes.REQUIREMENT_OVERRIDDEN, claim_id, requirement, {
            "overridden_by": user_id, "reason": reason
        })
        return requirement

    async def reject_requirement(self, claim_id: str, requirement_id: str, user_id: str, reason: str) -> Requirement:
        """Mark the submitted evidence not in good order; the task stays open"""
        requirement = self._require(claim_id, requirement_id)
        requirement.transition(RequirementStatus.REJECTED)
        requirement.rejected_reason = reason
        requirement.metadata["rejected_by"] = user_id

        audit_logger.log_user_action(
            user_id, "requirement.reject", "requirement", requirement_id,
            {"claim_id": claim_id, "reason": reason}
        )
        await self._announce(EventTypes.REQUIREMENT_NIGO, claim_id, requirement, {
            "rejected_by": user_id, "reason": reason
        })
        return requirement

    async def mark_in_review(self, claim_id: str, requirement_id: str) -> Requirement:
        requirement = self._require(claim_id, requirement_id)
        requirement.transition(RequirementStatus.IN_REVIEW)
        metrics.record_requirement_transition(RequirementStatus.IN_REVIEW.value)
        return requirement

    async def _complete_task(self, requirement: Requirement, notes: str):
        if not requirement.task_id:
            return
        try:
            await self.case_tracker.complete_task(requirement.task_id, notes)
            await self.event_bus.publish(EventTypes.TASK_COMPLETED, {
                "task_id": requirement.task_id,
                "requirement_id": requirement.id
            })
        except Exception as e:
            self.logger.warning(
                "Failed to complete requirement task",
                requirement_id=requirement.id,
                task_id=requirement.task_id,
                error=str(e)
            )

    async def _announce(self, topic: str, claim_id: str, requirement: Requirement, extra: Dict[str, Any]):
        metrics.record_requirement_transition(requirement.status.value)
        await self.event_bus.publish(topic, {
            "claim_id": claim_id,
            "requirement_id": requirement.id,
            "requirement_type": requirement.type.value,
            **extra
        })

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_requirements(self, claim_id: str) -> List[Requirement]:
        return self.store.list(claim_id)

    def get_requirement(self, claim_id: str, requirement_id: str) -> Optional[Requirement]:
        return self.store.get(claim_id, requirement_id)

    def _require(self, claim_id: str, requirement_id: str) -> Requirement:
        requirement = self.store.get(claim_id, requirement_id)
        if requirement is None:
            raise NotFoundException("Requirement", requirement_id)
        return requirement

    def all_mandatory_satisfied(self, claim_id: str) -> bool:
        """False when the claim has no mandatory requirements at all"""
        mandatory = [r for r in self.store.list(claim_id) if r.is_mandatory()]
        if not mandatory:
            return False
        return all(r.is_satisfied() for r in mandatory)

    def get_stats(self, claim_id: str) -> Dict[str, Any]:
        requirements = self.store.list(claim_id)
        now = DateTimeUtils.now()

        def count(status: RequirementStatus) -> int:
            return sum(1 for r in requirements if r.status == status)

        satisfied_total = sum(1 for r in requirements if r.is_satisfied())
        return {
            "total": len(requirements),
            "mandatory": sum(1 for r in requirements if r.is_mandatory()),
            "optional": sum(1 for r in requirements if not r.is_mandatory()),
            "pending": count(RequirementStatus.PENDING),
            "in_review": count(RequirementStatus.IN_REVIEW),
            "satisfied": count(RequirementStatus.SATISFIED),
            "rejected": count(RequirementStatus.REJECTED),
            "waived": count(RequirementStatus.WAIVED),
            "overridden": count(RequirementStatus.OVERRIDDEN),
            "overdue": sum(1 for r in requirements if r.is_overdue(now)),
            "completion_percentage": DataUtils.round_half_up(satisfied_total / len(requirements) * 100)
            if requirements else 0,
        }

    def clear_requirements(self, claim_id: str):
        self.store.clear(claim_id)
