"""
Death Claim Workflow System - Shared Schemas
Enumerations, the requirement model and the versioned decision context
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .exceptions import InvalidTransitionException
from .utils import DataUtils, DateTimeUtils

# =============================================================================
# ENUMS
# =============================================================================

class RequirementType(str, Enum):
    DEATH_CERTIFICATE = "death_certificate"
    CLAIMANT_STATEMENT = "claimant_statement"
    PROOF_OF_IDENTITY = "proof_of_identity"
    POLICY_DOCUMENTS = "policy_documents"
    MEDICAL_RECORDS = "medical_records"
    ATTENDING_PHYSICIAN_STATEMENT = "attending_physician_statement"
    AUTOPSY_REPORT = "autopsy_report"
    BENEFICIARY_DESIGNATION = "beneficiary_designation"
    TAX_FORMS = "tax_forms"
    BANKING_INFORMATION = "banking_information"
    POWER_OF_ATTORNEY = "power_of_attorney"
    COURT_DOCUMENTS = "court_documents"
    OTHER = "other"


class RequirementLevel(str, Enum):
    MANDATORY = "mandatory"
    OPTIONAL = "optional"


class RequirementStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    SATISFIED = "satisfied"
    REJECTED = "rejected"
    WAIVED = "waived"
    OVERRIDDEN = "overridden"


class RoutingType(str, Enum):
    FASTTRACK = "fasttrack"
    STANDARD = "standard"
    EXPEDITED = "expedited"
    SIU = "siu"


class TaskType(str, Enum):
    VERIFICATION = "verification"
    DOCUMENT_REVIEW = "document_review"
    CALCULATION = "calculation"
    APPROVAL = "approval"
    PAYMENT = "payment"
    REVIEW = "review"
    INVESTIGATION = "investigation"


class PlaybookType(str, Enum):
    DEATH_CLAIM_STANDARD = "death_claim_standard"
    DEATH_CLAIM_FASTTRACK = "death_claim_fasttrack"
    CONTESTABILITY_REVIEW = "contestability_review"
    SIU_INVESTIGATION = "siu_investigation"


class WorkflowState(str, Enum):
    INITIATED = "initiated"
    IN_PROGRESS = "in_progress"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    RETRYING = "retrying"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ClaimStatus(str, Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    REQUIREMENTS_COMPLETE = "requirements_complete"
    APPROVED = "approved"
    PAID = "paid"
    CLOSED = "closed"


class OrchestrationStep(str, Enum):
    FNOL_RECEIVED = "fnol_received"
    POLICY_LOOKUP = "policy_lookup"
    DEATH_VERIFICATION = "death_verification"
    POLICY_SUSPENSION = "policy_suspension"
    DEATH_BENEFIT_CALC = "death_benefit_calculation"
    CASE_CREATION = "case_creation"
    CLAIM_CREATION = "claim_creation"
    REQUIREMENTS_GENERATION = "requirements_generation"
    ROUTING_EVALUATION = "routing_evaluation"
    ASSIGNMENT = "assignment"
    COMPLETE = "complete"

# =============================================================================
# REQUIREMENTS
# =============================================================================

REQUIREMENT_TRANSITIONS = {
    RequirementStatus.PENDING: {
        RequirementStatus.IN_REVIEW,
        RequirementStatus.SATISFIED,
        RequirementStatus.REJECTED,
        RequirementStatus.WAIVED,
        RequirementStatus.OVERRIDDEN,
    },
    RequirementStatus.IN_REVIEW: {RequirementStatus.SATISFIED, RequirementStatus.REJECTED},
    RequirementStatus.REJECTED: {RequirementStatus.IN_REVIEW},
    RequirementStatus.SATISFIED: set(),
    RequirementStatus.WAIVED: set(),
    RequirementStatus.OVERRIDDEN: set(),
}


@dataclass
class Requirement:
    """A unit of evidence or action needed to adjudicate a claim"""
    type: RequirementType
    level: RequirementLevel = RequirementLevel.MANDATORY
    id: str = field(default_factory=lambda: DataUtils.generate_id("REQ"))
    status: RequirementStatus = RequirementStatus.PENDING
    description: str = ""
    due_date: Optional[datetime] = None
    documents: List[str] = field(default_factory=list)
    task_id: Optional[str] = None
    source_rule_id: Optional[str] = None
    waived: bool = False
    waived_by: Optional[str] = None
    waived_reason: Optional[str] = None
    waived_at: Optional[datetime] = None
    overridden: bool = False
    overridden_by: Optional[str] = None
    overridden_reason: Optional[str] = None
    overridden_at: Optional[datetime] = None
    rejected_reason: Optional[str] = None
    satisfied_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=DateTimeUtils.now)
    updated_at: datetime = field(default_factory=DateTimeUtils.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def can_transition(self, target: RequirementStatus) -> bool:
        return target in REQUIREMENT_TRANSITIONS[self.status]

    def transition(self, target: RequirementStatus):
        """Move to ``target``, enforcing the requirement state machine"""
        if not self.can_transition(target):
            raise InvalidTransitionException(self.id, self.status.value, target.value)

        self.status = target
        self.updated_at = DateTimeUtils.now()
        if target == RequirementStatus.SATISFIED:
            self.satisfied_at = self.updated_at

    def link_document(self, document_id: str) -> bool:
        """Append a document reference; returns False when it was already linked"""
        if document_id in self.documents:
            return False
        self.documents.append(document_id)
        self.updated_at = DateTimeUtils.now()
        return True

    def is_satisfied(self) -> bool:
        return self.status == RequirementStatus.SATISFIED or self.waived or self.overridden

    def is_mandatory(self) -> bool:
        return self.level == RequirementLevel.MANDATORY

    def is_terminal(self) -> bool:
        return not REQUIREMENT_TRANSITIONS[self.status]

    def is_overdue(self, now: datetime = None) -> bool:
        if self.due_date is None or self.is_satisfied():
            return False
        return self.due_date < (now or DateTimeUtils.now())

    def to_dict(self) -> Dict[str, Any]:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "type": self.type.value,
            "level": self.level.value,
            "status": self.status.value,
            "description": self.description,
            "due_date": _iso(self.due_date),
            "documents": list(self.documents),
            "task_id": self.task_id,
            "source_rule_id": self.source_rule_id,
            "waived": self.waived,
            "waived_by": self.waived_by,
            "waived_reason": self.waived_reason,
            "waived_at": _iso(self.waived_at),
            "overridden": self.overridden,
            "overridden_by": self.overridden_by,
            "overridden_reason": self.overridden_reason,
            "overridden_at": _iso(self.overridden_at),
            "rejected_reason": self.rejected_reason,
            "satisfied_at": _iso(self.satisfied_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "metadata": dict(self.metadata),
        }

# =============================================================================
# DECISION CONTEXT
# =============================================================================

# Accepted spellings from upstream payloads
_CONTEXT_ALIASES = {
    "deathVerification": "death_verification",
    "beneficiaryVerification": "beneficiary_verification",
    "anomalySignals": "anomalies",
    "anomaly_signals": "anomalies",
    "fsoCase": "case",
}

_REQUIRED_SECTIONS = ("claim", "policy", "claimant", "anomalies")


class DecisionContext(BaseModel):
    """Versioned evaluation context for the decision table.

    Known sections are typed; anything else passed at the top level is kept in
    ``extra`` and stays reachable through :meth:`lookup`.
    """

    model_config = ConfigDict(extra='forbid')

    version: int = 1
    claim: Dict[str, Any] = Field(default_factory=dict)
    policy: Dict[str, Any] = Field(default_factory=dict)
    death_verification: Optional[Dict[str, Any]] = None
    beneficiary_verification: Optional[Dict[str, Any]] = None
    anomalies: List[Dict[str, Any]] = Field(default_factory=list)
    claimant: Dict[str, Any] = Field(default_factory=dict)
    case: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='before')
    @classmethod
    def _collect_extra(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        known = set(cls.model_fields)
        normalized: Dict[str, Any] = {"extra": dict(data.get("extra") or {})}
        for key, value in data.items():
            if key == "extra":
                continue
            key = _CONTEXT_ALIASES.get(key, key)
            if DataUtils.snake_case(key) in known:
                # Section payloads use the same snake_case keys the rules reference
                normalized[DataUtils.snake_case(key)] = DataUtils.snake_case_keys(value)
            else:
                normalized["extra"][key] = value

        # A null section reads the same as an absent one
        for section in _REQUIRED_SECTIONS:
            if normalized.get(section) is None:
                normalized.pop(section, None)
        return normalized

    @classmethod
    def coerce(cls, value: Any) -> "DecisionContext":
        if isinstance(value, cls):
            return value
        return cls.model_validate(value or {})

    @property
    def claim_id(self) -> Optional[str]:
        return self.claim.get("id")

    @property
    def case_id(self) -> Optional[str]:
        return (self.case or {}).get("id")

    def lookup(self, path: str) -> Any:
        """Resolve a dot path such as ``policy.status``; missing values resolve to None"""
        head = path.split('.', 1)[0]
        if head in type(self).model_fields and head != "extra":
            return DataUtils.get_nested_value(self, path)
        return DataUtils.get_nested_value(self.extra, path)
