"""
Death Claim Workflow System - Decision Table Tests
"""

import pytest

from claimflow.integrations.event_bus import EventTypes
from claimflow.requirements.decision_table import (
    AllOf, AnyOf, DEFAULT_RULES, DecisionRule, DecisionTableEngine, Leaf, Not, Operator,
    condition_from_dict, condition_to_dict, evaluate_condition, evaluate_leaf
)
from claimflow.shared.exceptions import ConfigurationException
from claimflow.shared.schemas import DecisionContext, RequirementLevel, RequirementType


def ctx(**sections):
    return DecisionContext.coerce(sections)


class TestOperators:
    """Test leaf operator semantics"""

    def test_equals_is_bool_aware(self):
        context = ctx(policy={"found": 0, "contestable": False})

        assert not evaluate_leaf(Leaf("policy.found", Operator.EQUALS, False), context)
        assert evaluate_leaf(Leaf("policy.contestable", Operator.EQUALS, False), context)
        assert not evaluate_leaf(Leaf("policy.contestable", Operator.EQUALS, 0), context)

    def test_missing_field_only_matches_existence_checks(self):
        context = ctx(claim={})

        assert evaluate_leaf(Leaf("claim.amount", Operator.NOT_EXISTS), context)
        assert evaluate_leaf(Leaf("claim.amount", Operator.IS_EMPTY), context)
        assert not evaluate_leaf(Leaf("claim.amount", Operator.EXISTS), context)
        assert not evaluate_leaf(Leaf("claim.amount", Operator.NOT_EQUALS, 5), context)
        assert not evaluate_leaf(Leaf("claim.amount", Operator.LESS_THAN, 5), context)

    def test_contains_is_case_insensitive(self):
        context = ctx(death_verification={"cause_of_death": "Motor vehicle ACCIDENT"})

        assert evaluate_leaf(Leaf("death_verification.cause_of_death", Operator.CONTAINS, "accident"), context)
        assert evaluate_leaf(Leaf("death_verification.cause_of_death", Operator.NOT_CONTAINS, "homicide"), context)

    def test_incomparable_types_are_false(self):
        context = ctx(claim={"amount": "a lot"})

        assert not evaluate_leaf(Leaf("claim.amount", Operator.GREATER_THAN, 500000), context)

    def test_in_requires_collection(self):
        context = ctx(claimant={"type": "estate"})

        assert evaluate_leaf(Leaf("claimant.type", Operator.IN, ["estate", "trust"]), context)
        assert evaluate_leaf(Leaf("claimant.type", Operator.NOT_IN, ["individual"]), context)
        assert not evaluate_leaf(Leaf("claimant.type", Operator.IN, "estate"), context)

    def test_is_not_empty_on_lists(self):
        assert evaluate_leaf(Leaf("anomalies", Operator.IS_NOT_EMPTY), ctx(anomalies=[{"severity": "low"}]))
        assert not evaluate_leaf(Leaf("anomalies", Operator.IS_NOT_EMPTY), ctx())

    def test_camel_case_operator_alias(self):
        condition = condition_from_dict({"field": "claim.amount", "operator": "greaterThan", "value": 10})
        assert condition.operator == Operator.GREATER_THAN


class TestConditionTree:
    """Test nested condition groups"""

    def test_nested_groups(self):
        tree = AllOf((
            Leaf("claim.type", Operator.EQUALS, "death"),
            AnyOf((
                Leaf("claim.amount", Operator.GREATER_THAN, 500000),
                Not(Leaf("policy.status", Operator.EQUALS, "in_force")),
            )),
        ))

        assert evaluate_condition(tree, ctx(claim={"type": "death", "amount": 10}, policy={"status": "lapsed"}))
        assert not evaluate_condition(tree, ctx(claim={"type": "death", "amount": 10}, policy={"status": "in_force"}))

    def test_dict_form_round_trip(self):
        data = {
            "operator": "or",
            "conditions": [
                {"field": "claim.amount", "operator": "greater_than", "value": 1},
                {"operator": "not", "conditions": [{"field": "policy.found", "operator": "exists", "value": None}]},
            ],
        }
        assert condition_to_dict(condition_from_dict(data)) == data

    def test_not_group_takes_one_condition(self):
        with pytest.raises(ValueError):
            condition_from_dict({"operator": "not", "conditions": []})

    def test_single_condition_collapses_to_leaf(self):
        rule = DecisionRule.from_dict({
            "id": "R1",
            "conditions": [{"field": "claim.type", "operator": "exists"}],
            "actions": [],
        })
        assert isinstance(rule.condition, Leaf)

    def test_rule_without_condition_never_matches(self):
        rule = DecisionRule.from_dict({"id": "R1", "actions": []})
        assert rule.condition is None
        assert not rule.matches(ctx(claim={"type": "death"}))


class TestDefaultRules:
    """Test the stock death claim rule set"""

    @pytest.fixture
    def engine(self):
        return DecisionTableEngine()

    def test_minimal_death_claim_with_missing_policy(self, engine):
        result = engine.evaluate_rules({"claim": {"type": "death"}, "policy": {"found": False}})

        mandatory = [r.type for r in result.requirements if r.level == RequirementLevel.MANDATORY]
        optional = [r.type for r in result.requirements if r.level == RequirementLevel.OPTIONAL]

        assert mandatory == [
            RequirementType.DEATH_CERTIFICATE,
            RequirementType.CLAIMANT_STATEMENT,
            RequirementType.PROOF_OF_IDENTITY,
            RequirementType.POLICY_DOCUMENTS,
        ]
        assert optional == [RequirementType.BANKING_INFORMATION]
        assert result.rules_evaluated == len(DEFAULT_RULES)

    def test_contestable_high_value_suspicious_claim(self, engine):
        result = engine.evaluate_rules({
            "claim": {"type": "death", "amount": 750000},
            "policy": {"found": True, "contestable": True},
            "death_verification": {"cause_of_death": "Suicide"},
            "beneficiary_verification": {"verified": True, "confidence": 60},
            "claimant": {"is_beneficiary": False, "type": "estate"},
        })
        types = set(result.requirement_types())

        assert {
            "medical_records",
            "attending_physician_statement",
            "autopsy_report",
            "beneficiary_designation",
            "tax_forms",
            "power_of_attorney",
            "court_documents",
        } <= types
        assert "policy_documents" not in types

    def test_rules_fire_in_priority_order(self, engine):
        result = engine.evaluate_rules({
            "claim": {"type": "death", "amount": 1000},
            "claimant": {"is_beneficiary": False},
        })
        priorities = [m["priority"] for m in result.rules_matched]

        assert priorities == sorted(priorities)
        assert result.requirements[0].source_rule_id == "REQ_DEATH_CERT"

    def test_camel_case_context_keys(self, engine):
        result = engine.evaluate_rules({
            "claim": {"type": "death"},
            "deathVerification": {"causeOfDeath": "Homicide"},
            "beneficiaryVerification": {"verified": True, "confidence": 99},
            "claimant": {"isBeneficiary": False},
            "anomalySignals": [],
        })

        assert result.has_requirement(RequirementType.AUTOPSY_REPORT)
        assert result.has_requirement(RequirementType.POWER_OF_ATTORNEY)
        assert not result.has_requirement(RequirementType.BENEFICIARY_DESIGNATION)

    def test_snake_case_key_wins_over_camel_case(self):
        context = ctx(claimant={"is_beneficiary": True, "isBeneficiary": False})

        assert context.lookup("claimant.is_beneficiary") is True

    @pytest.mark.parametrize("section", ["claim", "policy", "claimant", "anomalies"])
    def test_null_section_reads_as_missing(self, section):
        context = DecisionContext.coerce({"claim": {"type": "death"}, section: None})

        assert context.lookup(f"{section}.status") is None

    async def test_null_policy_still_yields_mandatory_set(self, engine):
        result = await engine.evaluate({"claim": {"type": "death"}, "policy": None})

        assert result.requirement_types()[:3] == [
            "death_certificate", "claimant_statement", "proof_of_identity",
        ]

    def test_evaluation_is_deterministic(self, engine):
        context = {"claim": {"type": "death", "amount": 900000}, "policy": {"contestable": True}}
        first = engine.evaluate_rules(context).requirement_types()
        second = engine.evaluate_rules(context).requirement_types()
        assert first == second

    def test_due_dates_follow_action(self, engine):
        result = engine.evaluate_rules({"claim": {"type": "death"}, "policy": {"found": False}})
        by_type = {r.type: r for r in result.requirements}

        delta = by_type[RequirementType.POLICY_DOCUMENTS].due_date - by_type[RequirementType.DEATH_CERTIFICATE].due_date
        assert 14 <= delta.days <= 15


class TestRuleActions:
    """Test remove, escalate and auto-approve actions"""

    def test_remove_escalate_and_auto_approve(self):
        engine = DecisionTableEngine(load_defaults=False)
        engine.add_rule({
            "id": "ADD",
            "priority": 1,
            "conditions": [{"field": "claim.type", "operator": "exists"}],
            "actions": [
                {"action_type": "add_requirement", "requirement_type": "tax_forms"},
                {"action_type": "add_requirement", "requirement_type": "death_certificate"},
            ],
        })
        engine.add_rule({
            "id": "DROP",
            "priority": 2,
            "conditions": [{"field": "claim.amount", "operator": "less_than", "value": 600}],
            "actions": [
                {"type": "removeRequirement", "requirement_type": "tax_forms"},
                {"action_type": "escalate", "reason": "Small claim review"},
                {"action_type": "autoApprove"},
            ],
        })

        result = engine.evaluate_rules({"claim": {"type": "death", "amount": 100}})

        assert result.requirement_types() == ["death_certificate"]
        assert result.metadata["escalated"] is True
        assert result.metadata["escalation_reason"] == "Small claim review"
        assert result.metadata["auto_approve"] is True
        assert result.metadata["auto_approve_reason"] == "Rule-based auto-approval"

    def test_first_rule_owns_requirement_type(self):
        engine = DecisionTableEngine(load_defaults=False)
        for rule_id, priority, level in (("LATE", 20, "optional"), ("EARLY", 10, "mandatory")):
            engine.add_rule({
                "id": rule_id,
                "priority": priority,
                "conditions": [{"field": "claim.type", "operator": "exists"}],
                "actions": [{"action_type": "add_requirement", "requirement_type": "tax_forms", "level": level}],
            })

        result = engine.evaluate_rules({"claim": {"type": "death"}})

        assert len(result.requirements) == 1
        assert result.requirements[0].source_rule_id == "EARLY"
        assert result.requirements[0].level == RequirementLevel.MANDATORY

    def test_failing_rule_is_recorded_and_skipped(self):
        engine = DecisionTableEngine(load_defaults=False)
        engine.add_rule({
            "id": "OK",
            "conditions": [{"field": "claim.type", "operator": "exists"}],
            "actions": [{"action_type": "add_requirement", "requirement_type": "death_certificate"}],
        })
        broken = DecisionRule(id="BROKEN", name="Broken", condition=object(), actions=[], priority=1)
        engine.add_rule(broken)

        result = engine.evaluate_rules({"claim": {"type": "death"}})

        assert result.requirement_types() == ["death_certificate"]
        assert result.metadata["rule_errors"][0]["rule_id"] == "BROKEN"


class TestRuleManagement:
    """Test rule validation and runtime management"""

    @pytest.fixture
    def engine(self):
        return DecisionTableEngine(load_defaults=False)

    def test_validate_rule_reports_errors(self, engine):
        validation = engine.validate_rule({
            "id": "BAD",
            "conditions": [
                {"field": "claim.amount", "operator": "greater_than"},
                {"field": "claim.type", "operator": "resembles", "value": "x"},
            ],
            "actions": [{"action_type": "add_requirement", "requirement_type": "horoscope"}],
        })

        assert not validation["valid"]
        assert any("missing field: value" in e for e in validation["errors"])
        assert any("invalid operator" in e for e in validation["errors"])
        assert any("invalid requirement_type" in e for e in validation["errors"])

    def test_rule_without_conditions_warns(self, engine):
        validation = engine.validate_rule({"id": "EMPTY", "actions": []})

        assert validation["valid"]
        assert validation["warnings"]

    def test_add_invalid_rule_raises(self, engine):
        with pytest.raises(ConfigurationException):
            engine.add_rule({"id": "NO_ACTIONS"})

    def test_duplicate_rule_id_rejected(self, engine):
        rule = {"id": "R1", "conditions": [{"field": "claim.type", "operator": "exists"}], "actions": []}
        engine.add_rule(rule)

        with pytest.raises(ConfigurationException):
            engine.add_rule(dict(rule))

    def test_disable_and_remove_rules(self):
        engine = DecisionTableEngine()
        engine.set_rule_enabled("REQ_BANK_INFO", False)

        result = engine.evaluate_rules({"claim": {"type": "death"}})
        assert not result.has_requirement(RequirementType.BANKING_INFORMATION)

        engine.remove_rule("REQ_DEATH_CERT")
        assert engine.get_rule("REQ_DEATH_CERT") is None

        with pytest.raises(ConfigurationException):
            engine.remove_rule("REQ_DEATH_CERT")
        with pytest.raises(ConfigurationException):
            engine.set_rule_enabled("UNKNOWN", True)

        engine.reload_default_rules()
        assert len(engine.get_rules()) == len(DEFAULT_RULES)

    async def test_evaluate_publishes_decision_event(self, event_bus, recorder):
        engine = DecisionTableEngine(event_bus)

        result = await engine.evaluate({"claim": {"id": "CLM-9", "type": "death"}})

        events = recorder.of(EventTypes.DECISION_EVALUATED)
        assert len(events) == 1
        assert events[0]["data"]["claim_id"] == "CLM-9"
        assert events[0]["data"]["requirements_generated"] == len(result.requirements)
