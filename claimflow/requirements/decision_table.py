"""
Death Claim Workflow System - Decision Table Engine
Prioritized condition/action rules that determine claim requirements
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union
from collections.abc import Sized

import structlog

from claimflow.integrations.event_bus import EventBus, EventTypes
from claimflow.shared.exceptions import ConfigurationException
from claimflow.shared.monitoring import metrics
from claimflow.shared.schemas import (
    DecisionContext, Requirement, RequirementLevel, RequirementType
)
from claimflow.shared.utils import DateTimeUtils

logger = structlog.get_logger(__name__)


class Operator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class LogicalOperator(str, Enum):
    AND = "and"
    OR = "or"
    NOT = "not"


class ActionType(str, Enum):
    ADD_REQUIREMENT = "add_requirement"
    REMOVE_REQUIREMENT = "remove_requirement"
    ESCALATE = "escalate"
    AUTO_APPROVE = "auto_approve"


# camelCase spellings used by rule authoring tools
_OPERATOR_ALIASES = {
    "notEquals": Operator.NOT_EQUALS,
    "greaterThan": Operator.GREATER_THAN,
    "greaterThanOrEqual": Operator.GREATER_THAN_OR_EQUAL,
    "lessThan": Operator.LESS_THAN,
    "lessThanOrEqual": Operator.LESS_THAN_OR_EQUAL,
    "notContains": Operator.NOT_CONTAINS,
    "notIn": Operator.NOT_IN,
    "notExists": Operator.NOT_EXISTS,
    "isEmpty": Operator.IS_EMPTY,
    "isNotEmpty": Operator.IS_NOT_EMPTY,
}

_ACTION_ALIASES = {
    "addRequirement": ActionType.ADD_REQUIREMENT,
    "removeRequirement": ActionType.REMOVE_REQUIREMENT,
    "autoApprove": ActionType.AUTO_APPROVE,
}

# Operators that take a value to compare against
_VALUE_OPERATORS = {
    Operator.EQUALS, Operator.NOT_EQUALS,
    Operator.GREATER_THAN, Operator.GREATER_THAN_OR_EQUAL,
    Operator.LESS_THAN, Operator.LESS_THAN_OR_EQUAL,
    Operator.CONTAINS, Operator.NOT_CONTAINS,
    Operator.IN, Operator.NOT_IN,
}


def parse_operator(name: Any) -> Operator:
    if isinstance(name, Operator):
        return name
    if name in _OPERATOR_ALIASES:
        return _OPERATOR_ALIASES[name]
    return Operator(name)


def parse_action_type(name: Any) -> ActionType:
    if isinstance(name, ActionType):
        return name
    if name in _ACTION_ALIASES:
        return _ACTION_ALIASES[name]
    return ActionType(name)

# =============================================================================
# CONDITION TREE
# =============================================================================

@dataclass(frozen=True)
class Leaf:
    """Single field comparison"""
    field: str
    operator: Operator
    value: Any = None


@dataclass(frozen=True)
class AllOf:
    conditions: Tuple["Condition", ...]


@dataclass(frozen=True)
class AnyOf:
    conditions: Tuple["Condition", ...]


@dataclass(frozen=True)
class Not:
    inner: "Condition"


Condition = Union[Leaf, AllOf, AnyOf, Not]


def _same_kind_equals(actual: Any, expected: Any) -> bool:
    # bool is an int subclass; False must not equal 0
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


def _is_empty(actual: Any) -> bool:
    if actual is None:
        return True
    if isinstance(actual, Sized):
        return len(actual) == 0
    return False


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return str(expected).lower() in actual.lower()
    if isinstance(actual, (list, tuple, set, frozenset)):
        return expected in actual
    if isinstance(actual, dict):
        return expected in actual
    return str(expected).lower() in str(actual).lower()


def evaluate_leaf(leaf: Leaf, context: DecisionContext) -> bool:
    actual = context.lookup(leaf.field)
    op = leaf.operator

    if op == Operator.EXISTS:
        return actual is not None
    if op == Operator.NOT_EXISTS:
        return actual is None
    if op == Operator.IS_EMPTY:
        return _is_empty(actual)

    # Missing values fail every remaining operator
    if actual is None:
        return False

    expected = leaf.value
    try:
        if op == Operator.EQUALS:
            return _same_kind_equals(actual, expected)
        if op == Operator.NOT_EQUALS:
            return not _same_kind_equals(actual, expected)
        if op == Operator.GREATER_THAN:
            return actual > expected
        if op == Operator.GREATER_THAN_OR_EQUAL:
            return actual >= expected
        if op == Operator.LESS_THAN:
            return actual < expected
        if op == Operator.LESS_THAN_OR_EQUAL:
            return actual <= expected
        if op == Operator.CONTAINS:
            return _contains(actual, expected)
        if op == Operator.NOT_CONTAINS:
            return not _contains(actual, expected)
        if op == Operator.IN:
            return isinstance(expected, (list, tuple, set, frozenset)) and actual in expected
        if op == Operator.NOT_IN:
            return isinstance(expected, (list, tuple, set, frozenset)) and actual not in expected
        if op == Operator.IS_NOT_EMPTY:
            return not _is_empty(actual)
    except TypeError:
        # Incomparable types (e.g. "abc" > 5)
        return False

    return False


def evaluate_condition(condition: Condition, context: DecisionContext) -> bool:
    """Evaluate a condition tree by structural recursion"""
    if isinstance(condition, Leaf):
        return evaluate_leaf(condition, context)
    if isinstance(condition, AllOf):
        return all(evaluate_condition(c, context) for c in condition.conditions)
    if isinstance(condition, AnyOf):
        return any(evaluate_condition(c, context) for c in condition.conditions)
    if isinstance(condition, Not):
        return not evaluate_condition(condition.inner, context)
    raise TypeError(f"Unsupported condition node: {type(condition).__name__}")


def condition_from_dict(data: Dict[str, Any]) -> Condition:
    """Build a condition tree from its dictionary form.

    Groups are ``{"operator": "and" | "or" | "not", "conditions": [...]}``;
    leaves are ``{"field", "operator", "value"}``.
    """
    if "conditions" in data:
        logical = LogicalOperator(str(data.get("operator", "and")).lower())
        children = tuple(condition_from_dict(c) for c in data["conditions"])
        if logical == LogicalOperator.NOT:
            if len(children) != 1:
                raise ValueError("NOT group takes exactly one condition")
            return Not(children[0])
        if logical == LogicalOperator.OR:
            return AnyOf(children)
        return AllOf(children)

    return Leaf(field=data["field"], operator=parse_operator(data["operator"]), value=data.get("value"))


def condition_to_dict(condition: Condition) -> Dict[str, Any]:
    if isinstance(condition, Leaf):
        return {"field": condition.field, "operator": condition.operator.value, "value": condition.value}
    if isinstance(condition, Not):
        return {"operator": "not", "conditions": [condition_to_dict(condition.inner)]}
    logical = "or" if isinstance(condition, AnyOf) else "and"
    return {"operator": logical, "conditions": [condition_to_dict(c) for c in condition.conditions]}

# =============================================================================
# RULES AND RESULTS
# =============================================================================

@dataclass
class RuleAction:
    """Action executed when a rule matches"""
    action_type: ActionType
    requirement_type: Optional[RequirementType] = None
    level: RequirementLevel = RequirementLevel.MANDATORY
    description: str = ""
    due_in_days: int = 30
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleAction":
        requirement_type = data.get("requirement_type")
        return cls(
            action_type=parse_action_type(data.get("action_type", data.get("type"))),
            requirement_type=RequirementType(requirement_type) if requirement_type else None,
            level=RequirementLevel(data.get("level", RequirementLevel.MANDATORY)),
            description=data.get("description", ""),
            due_in_days=int(data.get("due_in_days", 30)),
            reason=data.get("reason"),
            metadata=dict(data.get("metadata") or {})
        )


@dataclass
class DecisionRule:
    """Named, prioritized condition to action mapping; lower priority runs first"""
    id: str
    name: str
    condition: Optional[Condition]
    actions: List[RuleAction]
    priority: int = 100
    enabled: bool = True
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def matches(self, context: DecisionContext) -> bool:
        if self.condition is None:
            return False
        return evaluate_condition(self.condition, context)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DecisionRule":
        """Build a rule from its dictionary form.

        ``conditions`` is a list combined with ``logical_operator`` (default AND).
        A single ``condition`` tree is also accepted.
        """
        if "condition" in data:
            condition = condition_from_dict(data["condition"]) if data["condition"] else None
        else:
            raw = data.get("conditions") or []
            if not raw:
                condition = None
            else:
                condition = condition_from_dict({
                    "operator": data.get("logical_operator", "and"),
                    "conditions": raw
                })
                # A single-leaf AND group is just the leaf
                if isinstance(condition, AllOf) and len(condition.conditions) == 1:
                    condition = condition.conditions[0]

        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            description=data.get("description", ""),
            priority=int(data.get("priority", 100)),
            enabled=data.get("enabled", True) is not False,
            condition=condition,
            actions=[RuleAction.from_dict(a) for a in data.get("actions", [])],
            metadata=dict(data.get("metadata") or {})
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "priority": self.priority,
            "enabled": self.enabled,
            "condition": condition_to_dict(self.condition) if self.condition else None,
            "actions": [
                {
                    "action_type": a.action_type.value,
                    "requirement_type": a.requirement_type.value if a.requirement_type else None,
                    "level": a.level.value,
                    "description": a.description,
                    "due_in_days": a.due_in_days,
                    "reason": a.reason,
                }
                for a in self.actions
            ],
        }


@dataclass
class DecisionResult:
    """Outcome of one decision table evaluation"""
    requirements: List[Requirement] = field(default_factory=list)
    rules_matched: List[Dict[str, Any]] = field(default_factory=list)
    rules_evaluated: int = 0
    timestamp: str = field(default_factory=DateTimeUtils.now_iso)
    metadata: Dict[str, Any] = field(default_factory=lambda: {
        "escalated": False,
        "escalation_reason": None,
        "auto_approve": False,
        "auto_approve_reason": None,
        "rule_errors": [],
    })

    def has_requirement(self, requirement_type: RequirementType) -> bool:
        return any(r.type == requirement_type for r in self.requirements)

    def requirement_types(self) -> List[str]:
        return [r.type.value for r in self.requirements]

# =============================================================================
# DEFAULT RULES
# =============================================================================

DEFAULT_RULES: List[Dict[str, Any]] = [
    {
        "id": "REQ_DEATH_CERT",
        "name": "Death Certificate Required",
        "description": "Death certificate is mandatory for all death claims",
        "priority": 1,
        "conditions": [{"field": "claim.type", "operator": "equals", "value": "death"}],
        "actions": [{
            "action_type": "add_requirement",
            "requirement_type": "death_certificate",
            "level": "mandatory",
            "description": "Official death certificate from vital records",
            "due_in_days": 30,
        }],
    },
    {
        "id": "REQ_CLAIMANT_STMT",
        "name": "Claimant Statement Required",
        "description": "Claimant statement required for all claims",
        "priority": 2,
        "conditions": [{"field": "claim.type", "operator": "exists"}],
        "actions": [{
            "action_type": "add_requirement",
            "requirement_type": "claimant_statement",
            "level": "mandatory",
            "description": "Completed and signed claimant statement form",
            "due_in_days": 30,
        }],
    },
    {
        "id": "REQ_PROOF_ID",
        "name": "Proof of Identity Required",
        "description": "Valid photo ID required for beneficiary verification",
        "priority": 3,
        "conditions": [{"field": "claim.type", "operator": "exists"}],
        "actions": [{
            "action_type": "add_requirement",
            "requirement_type": "proof_of_identity",
            "level": "mandatory",
            "description": "Valid government-issued photo ID",
            "due_in_days": 30,
        }],
    },
    {
        "id": "REQ_POLICY_DOCS",
        "name": "Policy Documents Required",
        "description": "Original policy documents needed when policy lookup fails",
        "priority": 10,
        "conditions": [{"field": "policy.found", "operator": "equals", "value": False}],
        "actions": [{
            "action_type": "add_requirement",
            "requirement_type": "policy_documents",
            "level": "mandatory",
            "description": "Original policy documents or certified copy",
            "due_in_days": 45,
        }],
    },
    {
        "id": "REQ_MEDICAL_RECORDS",
        "name": "Medical Records Required",
        "description": "Medical records required within contestability period",
        "priority": 15,
        "conditions": [
            {"field": "claim.type", "operator": "equals", "value": "death"},
            {"field": "policy.contestable", "operator": "equals", "value": True},
        ],
        "actions": [{
            "action_type": "add_requirement",
            "requirement_type": "medical_records",
            "level": "mandatory",
            "description": "Complete medical records from treating physician",
            "due_in_days": 60,
        }],
    },
    {
        "id": "REQ_APS",
        "name": "Attending Physician Statement",
        "description": "APS required for high-value claims",
        "priority": 20,
        "conditions": [
            {"field": "claim.type", "operator": "equals", "value": "death"},
            {"field": "claim.amount", "operator": "greater_than", "value": 500000},
        ],
        "actions": [{
            "action_type": "add_requirement",
            "requirement_type": "attending_physician_statement",
            "level": "mandatory",
            "description": "Attending Physician Statement (APS)",
            "due_in_days": 45,
        }],
    },
    {
        "id": "REQ_AUTOPSY",
        "name": "Autopsy Report Required",
        "description": "Autopsy report required for suspicious deaths",
        "priority": 25,
        "logical_operator": "or",
        "conditions": [
            {"field": "death_verification.cause_of_death", "operator": "contains", "value": "homicide"},
            {"field": "death_verification.cause_of_death", "operator": "contains", "value": "suicide"},
            {"field": "death_verification.cause_of_death", "operator": "contains", "value": "accident"},
            {"field": "anomalies", "operator": "is_not_empty"},
        ],
        "actions": [{
            "action_type": "add_requirement",
            "requirement_type": "autopsy_report",
            "level": "mandatory",
            "description": "Official autopsy report from medical examiner",
            "due_in_days": 90,
        }],
    },
    {
        "id": "REQ_BENE_FORM",
        "name": "Beneficiary Designation Form",
        "description": "Beneficiary form required when verification fails",
        "priority": 30,
        "logical_operator": "or",
        "conditions": [
            {"field": "beneficiary_verification.verified", "operator": "equals", "value": False},
            {"field": "beneficiary_verification.confidence", "operator": "less_than", "value": 80},
        ],
        "actions": [{
            "action_type": "add_requirement",
            "requirement_type": "beneficiary_designation",
            "level": "mandatory",
            "description": "Most recent beneficiary designation form on file",
            "due_in_days": 30,
        }],
    },
    {
        "id": "REQ_TAX_FORMS",
        "name": "Tax Forms Required",
        "description": "W-9 required for tax reporting",
        "priority": 50,
        "conditions": [{"field": "claim.amount", "operator": "greater_than_or_equal", "value": 600}],
        "actions": [{
            "action_type": "add_requirement",
            "requirement_type": "tax_forms",
            "level": "mandatory",
            "description": "Completed IRS Form W-9",
            "due_in_days": 30,
        }],
    },
    {
        "id": "REQ_BANK_INFO",
        "name": "Banking Information",
        "description": "Banking information for electronic payment",
        "priority": 60,
        "conditions": [{"field": "claim.type", "operator": "exists"}],
        "actions": [{
            "action_type": "add_requirement",
            "requirement_type": "banking_information",
            "level": "optional",
            "description": "Banking information for direct deposit (optional)",
            "due_in_days": 30,
        }],
    },
    {
        "id": "REQ_POA",
        "name": "Power of Attorney",
        "description": "POA required when claimant is not beneficiary",
        "priority": 35,
        "conditions": [{"field": "claimant.is_beneficiary", "operator": "equals", "value": False}],
        "actions": [{
            "action_type": "add_requirement",
            "requirement_type": "power_of_attorney",
            "level": "mandatory",
            "description": "Valid Power of Attorney document",
            "due_in_days": 30,
        }],
    },
    {
        "id": "REQ_COURT_DOCS",
        "name": "Court Documents Required",
        "description": "Court documents required for estate claims",
        "priority": 40,
        "conditions": [{"field": "claimant.type", "operator": "equals", "value": "estate"}],
        "actions": [{
            "action_type": "add_requirement",
            "requirement_type": "court_documents",
            "level": "mandatory",
            "description": "Letters of administration or testamentary",
            "due_in_days": 60,
        }],
    },
]

# =============================================================================
# ENGINE
# =============================================================================

class DecisionTableEngine:
    """
    Evaluates enabled rules in ascending priority order against a DecisionContext.

    Requirement types are de-duplicated while results accumulate: the first
    matching rule to add a type owns it. A rule that raises is logged and
    recorded in the result metadata without stopping the remaining rules.
    """

    def __init__(self, event_bus: Optional[EventBus] = None, load_defaults: bool = True):
        self.event_bus = event_bus
        self.rules: List[DecisionRule] = []
        self.logger = structlog.get_logger("decision_table")

        if load_defaults:
            self._load_default_rules()

    def _load_default_rules(self):
        for rule_data in DEFAULT_RULES:
            self.add_rule(rule_data)
        self.logger.info("Loaded default rules", count=len(DEFAULT_RULES))

    # -------------------------------------------------------------------------
    # Rule management
    # -------------------------------------------------------------------------

    def validate_rule(self, rule_data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate a rule definition without adding it"""
        validation_result = {"valid": True, "errors": [], "warnings": []}
        errors = validation_result["errors"]

        for required in ("id", "actions"):
            if required not in rule_data:
                errors.append(f"Missing required field: {required}")

        if "priority" in rule_data and not isinstance(rule_data["priority"], int):
            errors.append("priority must be an integer")

        def check_condition(node: Any, path: str):
            if not isinstance(node, dict):
                errors.append(f"{path} must be a dictionary")
                return
            if "conditions" in node:
                operator = str(node.get("operator", "and")).lower()
                if operator not in {op.value for op in LogicalOperator}:
                    errors.append(f"{path} invalid logical operator: {node.get('operator')}")
                if operator == "not" and len(node["conditions"]) != 1:
                    errors.append(f"{path} NOT group takes exactly one condition")
                for i, child in enumerate(node["conditions"]):
                    check_condition(child, f"{path}.{i}")
                return
            if "field" not in node:
                errors.append(f"{path} missing field: field")
            if "operator" not in node:
                errors.append(f"{path} missing field: operator")
                return
            try:
                operator = parse_operator(node["operator"])
            except ValueError:
                errors.append(f"{path} invalid operator: {node['operator']}")
                return
            if operator in _VALUE_OPERATORS and "value" not in node:
                errors.append(f"{path} missing field: value")

        conditions = rule_data.get("conditions")
        if "condition" in rule_data and rule_data["condition"]:
            check_condition(rule_data["condition"], "condition")
        elif conditions:
            if rule_data.get("logical_operator", "and") not in {op.value for op in LogicalOperator}:
                errors.append(f"Invalid logical_operator: {rule_data.get('logical_operator')}")
            for i, condition in enumerate(conditions):
                check_condition(condition, f"conditions.{i}")
        else:
            validation_result["warnings"].append("Rule has no conditions and will never match")

        for i, action in enumerate(rule_data.get("actions") or []):
            if not isinstance(action, dict):
                errors.append(f"Action {i} must be a dictionary")
                continue
            try:
                action_type = parse_action_type(action.get("action_type", action.get("type")))
            except ValueError:
                errors.append(f"Action {i} invalid action_type: {action.get('action_type', action.get('type'))}")
                continue
            if action_type in (ActionType.ADD_REQUIREMENT, ActionType.REMOVE_REQUIREMENT):
                try:
                    RequirementType(action.get("requirement_type"))
                except ValueError:
                    errors.append(f"Action {i} invalid requirement_type: {action.get('requirement_type')}")
            if "level" in action:
                try:
                    RequirementLevel(action["level"])
                except ValueError:
                    errors.append(f"Action {i} invalid level: {action['level']}")

        if rule_data.get("id") and self.get_rule(rule_data["id"]):
            errors.append(f"Duplicate rule id: {rule_data['id']}")

        validation_result["valid"] = len(errors) == 0
        return validation_result

    def add_rule(self, rule: Union[DecisionRule, Dict[str, Any]]) -> DecisionRule:
        if isinstance(rule, dict):
            validation = self.validate_rule(rule)
            if not validation["valid"]:
                raise ConfigurationException(
                    f"Invalid rule definition: {rule.get('id')}",
                    {"errors": validation["errors"]}
                )
            rule = DecisionRule.from_dict(rule)
        elif self.get_rule(rule.id):
            raise ConfigurationException(f"Duplicate rule id: {rule.id}")

        self.rules.append(rule)
        return rule

    def get_rules(self) -> List[DecisionRule]:
        return list(self.rules)

    def get_rule(self, rule_id: str) -> Optional[DecisionRule]:
        return next((r for r in self.rules if r.id == rule_id), None)

    def _require_rule(self, rule_id: str) -> DecisionRule:
        rule = self.get_rule(rule_id)
        if rule is None:
            raise ConfigurationException(f"Unknown rule: {rule_id}", {"rule_id": rule_id})
        return rule

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> DecisionRule:
        rule = self._require_rule(rule_id)
        rule.enabled = enabled
        self.logger.info("Rule toggled", rule_id=rule_id, enabled=enabled)
        return rule

    def remove_rule(self, rule_id: str) -> DecisionRule:
        rule = self._require_rule(rule_id)
        self.rules.remove(rule)
        return rule

    def clear_rules(self):
        self.rules = []

    def reload_default_rules(self):
        self.clear_rules()
        self._load_default_rules()

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def evaluate_rules(self, context: Any) -> DecisionResult:
        """Pure evaluation; identical context and rule set give identical requirement types"""
        ctx = DecisionContext.coerce(context)
        result = DecisionResult()

        ordered = sorted((r for r in self.rules if r.enabled), key=lambda r: r.priority)

        for rule in ordered:
            result.rules_evaluated += 1
            try:
                if not rule.matches(ctx):
                    metrics.record_rule(rule.id, "unmatched")
                    continue

                result.rules_matched.append({
                    "id": rule.id,
                    "name": rule.name,
                    "priority": rule.priority,
                    "actions": len(rule.actions)
                })
                for action in rule.actions:
                    self._execute_action(rule, action, result)
                metrics.record_rule(rule.id, "matched")

            except Exception as e:
                metrics.record_rule(rule.id, "error")
                result.metadata["rule_errors"].append({"rule_id": rule.id, "error": str(e)})
                self.logger.error("Rule evaluation failed", rule_id=rule.id, error=str(e))

        return result

    async def evaluate(self, context: Any) -> DecisionResult:
        """Evaluate the table and announce the outcome on the event bus"""
        ctx = DecisionContext.coerce(context)
        result = self.evaluate_rules(ctx)

        self.logger.info(
            "Decision table evaluated",
            claim_id=ctx.claim_id,
            requirements=len(result.requirements),
            rules_matched=len(result.rules_matched),
            rules_evaluated=result.rules_evaluated
        )

        if self.event_bus:
            await self.event_bus.publish(EventTypes.DECISION_EVALUATED, {
                "claim_id": ctx.claim_id,
                "requirements_generated": len(result.requirements),
                "rules_matched": len(result.rules_matched),
                "timestamp": result.timestamp
            })

        return result

    def _execute_action(self, rule: DecisionRule, action: RuleAction, result: DecisionResult):
        if action.action_type == ActionType.ADD_REQUIREMENT:
            if result.has_requirement(action.requirement_type):
                return
            result.requirements.append(Requirement(
                type=action.requirement_type,
                level=action.level,
                description=action.description,
                due_date=DateTimeUtils.add_days(action.due_in_days),
                source_rule_id=rule.id,
                metadata=dict(action.metadata)
            ))

        elif action.action_type == ActionType.REMOVE_REQUIREMENT:
            result.requirements = [r for r in result.requirements if r.type != action.requirement_type]

        elif action.action_type == ActionType.ESCALATE:
            result.metadata["escalated"] = True
            result.metadata["escalation_reason"] = action.reason or "Rule-based escalation"

        elif action.action_type == ActionType.AUTO_APPROVE:
            result.metadata["auto_approve"] = True
            result.metadata["auto_approve_reason"] = action.reason or "Rule-based auto-approval"
