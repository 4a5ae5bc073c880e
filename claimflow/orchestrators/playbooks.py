"""
Death Claim Workflow System - Playbook Definitions
Static step graphs executed by the workflow engine
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from claimflow.shared.schemas import PlaybookType, TaskType

StepCondition = Callable[[Dict[str, Any]], bool]


@dataclass(frozen=True)
class PlaybookStep:
    """One step of a playbook.

    ``parallel`` marks steps that could run beside their siblings; the engine
    records it but runs steps one at a time in declaration order.
    """
    id: str
    name: str
    task_type: TaskType
    dependencies: Tuple[str, ...] = ()
    condition: Optional[StepCondition] = None
    condition_description: Optional[str] = None
    parallel: bool = False
    critical: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "task_type": self.task_type.value,
            "dependencies": list(self.dependencies),
            "condition": self.condition_description,
            "parallel": self.parallel,
            "critical": self.critical,
        }


@dataclass(frozen=True)
class Playbook:
    type: str
    name: str
    description: str
    steps: Tuple[PlaybookStep, ...] = field(default_factory=tuple)

    def step_ids(self) -> List[str]:
        return [s.id for s in self.steps]

    def summary(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "step_count": len(self.steps),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {**self.summary(), "steps": [s.to_dict() for s in self.steps]}


def _amount(context: Dict[str, Any]) -> float:
    return float(context.get("claim_amount") or 0)


PLAYBOOKS: Dict[str, Playbook] = {
    PlaybookType.DEATH_CLAIM_STANDARD.value: Playbook(
        type=PlaybookType.DEATH_CLAIM_STANDARD.value,
        name="Death Claim - Standard Processing",
        description="Standard workflow for death claim processing",
        steps=(
            PlaybookStep("verify_death", "Verify Death", TaskType.VERIFICATION),
            PlaybookStep("validate_policy", "Validate Policy", TaskType.VERIFICATION,
                         dependencies=("verify_death",)),
            PlaybookStep("verify_beneficiary", "Verify Beneficiary", TaskType.VERIFICATION,
                         dependencies=("validate_policy",)),
            PlaybookStep("review_documents", "Review Documents", TaskType.DOCUMENT_REVIEW,
                         dependencies=("verify_beneficiary",)),
            PlaybookStep("calculate_benefit", "Calculate Death Benefit", TaskType.CALCULATION,
                         dependencies=("review_documents",),
                         condition=lambda ctx: bool(ctx.get("all_requirements_satisfied")),
                         condition_description="all_requirements_satisfied"),
            PlaybookStep("senior_review", "Senior Examiner Review", TaskType.REVIEW,
                         dependencies=("calculate_benefit",),
                         condition=lambda ctx: _amount(ctx) > 100000,
                         condition_description="claim_amount > 100000",
                         critical=False),
            PlaybookStep("approve_payment", "Approve Payment", TaskType.APPROVAL,
                         dependencies=("calculate_benefit",)),
            PlaybookStep("process_payment", "Process Payment", TaskType.PAYMENT,
                         dependencies=("approve_payment",)),
        ),
    ),
    PlaybookType.DEATH_CLAIM_FASTTRACK.value: Playbook(
        type=PlaybookType.DEATH_CLAIM_FASTTRACK.value,
        name="Death Claim - FastTrack",
        description="Accelerated workflow for FastTrack-eligible claims",
        steps=(
            PlaybookStep("auto_verify_death", "Auto-Verify Death", TaskType.VERIFICATION),
            PlaybookStep("auto_validate_policy", "Auto-Validate Policy", TaskType.VERIFICATION,
                         parallel=True),
            PlaybookStep("auto_verify_beneficiary", "Auto-Verify Beneficiary", TaskType.VERIFICATION,
                         dependencies=("auto_verify_death", "auto_validate_policy")),
            PlaybookStep("auto_calculate_benefit", "Auto-Calculate Benefit", TaskType.CALCULATION,
                         dependencies=("auto_verify_beneficiary",)),
            PlaybookStep("auto_approve_payment", "Auto-Approve Payment", TaskType.APPROVAL,
                         dependencies=("auto_calculate_benefit",),
                         condition=lambda ctx: _amount(ctx) <= 500000,
                         condition_description="claim_amount <= 500000"),
            PlaybookStep("process_payment", "Process Payment", TaskType.PAYMENT,
                         dependencies=("auto_approve_payment",)),
        ),
    ),
    PlaybookType.CONTESTABILITY_REVIEW.value: Playbook(
        type=PlaybookType.CONTESTABILITY_REVIEW.value,
        name="Contestability Review",
        description="Enhanced review for claims within contestability period",
        steps=(
            PlaybookStep("full_underwriting_review", "Full Underwriting Review", TaskType.REVIEW),
            PlaybookStep("medical_records_request", "Medical Records Request", TaskType.DOCUMENT_REVIEW,
                         dependencies=("full_underwriting_review",)),
            PlaybookStep("fraud_screening", "Fraud Screening", TaskType.VERIFICATION,
                         dependencies=("full_underwriting_review",), parallel=True),
            PlaybookStep("management_review", "Management Review", TaskType.REVIEW,
                         dependencies=("medical_records_request", "fraud_screening")),
            PlaybookStep("decision", "Contestability Decision", TaskType.APPROVAL,
                         dependencies=("management_review",)),
        ),
    ),
    PlaybookType.SIU_INVESTIGATION.value: Playbook(
        type=PlaybookType.SIU_INVESTIGATION.value,
        name="SIU Investigation",
        description="Special Investigation Unit workflow for suspected fraud",
        steps=(
            PlaybookStep("siu_assignment", "Assign to SIU Investigator", TaskType.INVESTIGATION),
            PlaybookStep("evidence_collection", "Evidence Collection", TaskType.INVESTIGATION,
                         dependencies=("siu_assignment",)),
            PlaybookStep("witness_interviews", "Witness Interviews", TaskType.INVESTIGATION,
                         dependencies=("evidence_collection",), critical=False),
            PlaybookStep("database_searches", "Database Searches", TaskType.INVESTIGATION,
                         dependencies=("evidence_collection",), parallel=True, critical=False),
            PlaybookStep("siu_report", "SIU Investigation Report", TaskType.INVESTIGATION,
                         dependencies=("witness_interviews", "database_searches")),
            PlaybookStep("legal_review", "Legal Review", TaskType.REVIEW,
                         dependencies=("siu_report",),
                         condition=lambda ctx: ctx.get("fraud_indicators") == "high",
                         condition_description="fraud_indicators == 'high'",
                         critical=False),
            PlaybookStep("final_decision", "Final Decision", TaskType.APPROVAL,
                         dependencies=("siu_report",)),
        ),
    ),
}
