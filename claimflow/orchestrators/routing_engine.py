"""
Death Claim Workflow System - Routing Engine
Weighted FastTrack eligibility scoring across six criteria
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from claimflow.shared.config import RoutingConfig
from claimflow.shared.monitoring import metrics
from claimflow.shared.schemas import RoutingType
from claimflow.shared.utils import DataUtils, DateTimeUtils

logger = structlog.get_logger(__name__)

CRITERIA = (
    "death_verification",
    "policy_status",
    "beneficiary_match",
    "contestability",
    "claim_amount",
    "anomaly_absence",
)


def _pick(data: Optional[Dict[str, Any]], *keys: str) -> Any:
    """First non-None value among alternative key spellings"""
    if not data:
        return None
    for key in keys:
        value = DataUtils.get_nested_value(data, key)
        if value is not None:
            return value
    return None


@dataclass
class CriterionResult:
    name: str
    weight: int
    passed: bool = False
    score: int = 0
    detail: Dict[str, Any] = field(default_factory=dict)

    def award_full(self, **detail):
        self.passed = True
        self.score = self.weight
        self.detail.update(detail)

    def award_partial(self, score: int, **detail):
        self.passed = False
        self.score = max(0, min(self.weight, score))
        self.detail.update(detail)

    def award_none(self, **detail):
        self.passed = False
        self.score = 0
        self.detail.update(detail)


@dataclass
class EligibilityResult:
    """FastTrack eligibility for one evaluation; never persisted here"""
    criteria: Dict[str, CriterionResult]
    threshold: float
    score: int = 0
    eligible: bool = False
    reason: str = ""
    error: Optional[str] = None
    evaluated_at: datetime = field(default_factory=DateTimeUtils.now)

    @property
    def failed_criteria(self) -> List[str]:
        return [name for name, criterion in self.criteria.items() if not criterion.passed]

    @property
    def routing(self) -> RoutingType:
        return RoutingType.FASTTRACK if self.eligible else RoutingType.STANDARD

    def finalize(self):
        self.score = sum(c.score for c in self.criteria.values())
        self.eligible = self.error is None and self.score >= self.threshold
        if self.error is not None:
            self.reason = "Evaluation error: defaulting to standard routing"
        elif self.eligible:
            self.reason = "all criteria met"
        else:
            self.reason = "criteria not met: " + ", ".join(self.failed_criteria)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eligible": self.eligible,
            "score": self.score,
            "threshold": self.threshold,
            "reason": self.reason,
            "failed_criteria": self.failed_criteria,
            "routing": self.routing.value,
            "error": self.error,
            "evaluated_at": self.evaluated_at.isoformat(),
            "criteria": {
                name: {
                    "passed": c.passed,
                    "score": c.score,
                    "weight": c.weight,
                    "detail": c.detail,
                }
                for name, c in self.criteria.items()
            },
        }


class RoutingEngine:
    """
    Classifies claims into the FastTrack or standard path.

    Each criterion awards its full weight, a partial score, or zero; the claim is
    eligible when the total reaches the configured threshold.
    """

    def __init__(self, config: Optional[RoutingConfig] = None):
        self.config = config or RoutingConfig()
        self.logger = structlog.get_logger("routing_engine")

    def get_config(self) -> RoutingConfig:
        return self.config.model_copy(deep=True)

    def update_config(self, **changes) -> RoutingConfig:
        """Apply validated configuration changes at runtime"""
        self.config = self.config.updated(changes)
        self.logger.info("Routing configuration updated", changes=list(changes))
        return self.get_config()

    def _new_result(self) -> EligibilityResult:
        weights = self.config.weights.model_dump()
        return EligibilityResult(
            criteria={name: CriterionResult(name=name, weight=weights[name]) for name in CRITERIA},
            threshold=self.config.eligibility_threshold
        )

    def evaluate_eligibility(
        self,
        claim: Optional[Dict[str, Any]],
        policy: Optional[Dict[str, Any]],
        death_verification: Optional[Dict[str, Any]],
        beneficiary_verification: Optional[Dict[str, Any]] = None,
        anomaly_signals: Any = None,
        now: datetime = None
    ) -> EligibilityResult:
        result = self._new_result()
        criteria = result.criteria

        try:
            self._evaluate_death_verification(death_verification, criteria["death_verification"])
            self._evaluate_policy_status(policy, criteria["policy_status"])
            self._evaluate_beneficiary_match(beneficiary_verification, criteria["beneficiary_match"])
            self._evaluate_contestability(policy, criteria["contestability"], now)
            self._evaluate_claim_amount(claim, criteria["claim_amount"])
            self._evaluate_anomalies(anomaly_signals, criteria["anomaly_absence"])
        except Exception as e:
            self.logger.error("Eligibility evaluation failed", error=str(e))
            result.error = str(e)

        result.finalize()
        metrics.record_routing(result.routing.value, result.score)

        self.logger.info(
            "Eligibility evaluated",
            claim_id=_pick(claim, "id"),
            eligible=result.eligible,
            score=result.score,
            failed=result.failed_criteria
        )
        return result

    def route_for(self, result: EligibilityResult) -> RoutingType:
        return result.routing

    def reevaluate_routing(self, claim_id: str, data: Dict[str, Any]) -> EligibilityResult:
        """Re-run eligibility after the claim's evidence has changed"""
        self.logger.info("Re-evaluating routing", claim_id=claim_id)
        return self.evaluate_eligibility(
            claim=data.get("claim"),
            policy=data.get("policy"),
            death_verification=_pick(data, "death_verification", "deathVerification"),
            beneficiary_verification=_pick(data, "beneficiary_verification", "beneficiaryVerification"),
            anomaly_signals=_pick(data, "anomaly_signals", "anomalySignals", "anomalies")
        )

    # -------------------------------------------------------------------------
    # Criteria
    # -------------------------------------------------------------------------

    def _confidence_score(self, confidence: float, threshold: float, criterion: CriterionResult):
        if confidence >= threshold:
            criterion.award_full(confidence=confidence)
        elif confidence >= self.config.partial_credit_floor:
            criterion.award_partial(
                math.floor(confidence / threshold * criterion.weight),
                confidence=confidence
            )
        else:
            criterion.award_none(confidence=confidence)

    def _evaluate_death_verification(self, verification: Optional[Dict[str, Any]], criterion: CriterionResult):
        if not verification or not verification.get("verified"):
            criterion.award_none(reason="not verified")
            return

        match = _pick(verification, "three_point_match", "threePointMatch")
        if not match:
            criterion.award_none(reason="no three-point match")
            return

        confidence = _pick(match, "confidence")
        if confidence is None:
            confidence = verification.get("confidence")
        if confidence is None:
            criterion.award_none(reason="no match confidence")
            return

        self._confidence_score(float(confidence), self.config.death_verification_threshold, criterion)

    def _evaluate_policy_status(self, policy: Optional[Dict[str, Any]], criterion: CriterionResult):
        status = _pick(policy, "status")
        if status == self.config.required_policy_status:
            criterion.award_full(status=status)
        else:
            criterion.award_none(status=status)

    def _evaluate_beneficiary_match(self, verification: Optional[Dict[str, Any]], criterion: CriterionResult):
        if not verification:
            # Not yet evaluated: neutral credit rather than failure
            criterion.award_partial(
                DataUtils.round_half_up(criterion.weight * self.config.neutral_beneficiary_ratio),
                reason="pending verification"
            )
            return

        confidence = _pick(verification, "confidence", "match_confidence", "matchConfidence")
        if confidence is None:
            criterion.award_none(reason="no match confidence")
            return

        self._confidence_score(float(confidence), self.config.beneficiary_match_threshold, criterion)

    def _evaluate_contestability(self, policy: Optional[Dict[str, Any]], criterion: CriterionResult, now: datetime = None):
        years = DateTimeUtils.years_since(_pick(policy, "issue_date", "issueDate"), now)
        if years is None:
            criterion.award_none(reason="issue date unknown")
            return

        if years >= self.config.contestability_period_years:
            criterion.award_full(years_since_issue=round(years, 2))
        else:
            criterion.award_none(years_since_issue=round(years, 2))

    def _evaluate_claim_amount(self, claim: Optional[Dict[str, Any]], criterion: CriterionResult):
        amount = _pick(claim, "amount", "financial.claim_amount", "financial.claimAmount")
        if amount is None:
            criterion.award_none(reason="claim amount unknown")
            return

        if float(amount) <= self.config.max_claim_amount:
            criterion.award_full(amount=amount)
        else:
            criterion.award_none(amount=amount, ceiling=self.config.max_claim_amount)

    def _evaluate_anomalies(self, signals: Any, criterion: CriterionResult):
        if isinstance(signals, dict):
            signals = signals.get("anomalies")

        if not signals:
            criterion.award_full(reason="no anomalies reported")
            return

        severities = [str(s.get("severity", "")).lower() for s in signals if isinstance(s, dict)]
        high = severities.count("high")
        medium = severities.count("medium")

        if high:
            criterion.award_none(high=high, medium=medium)
        elif medium:
            criterion.award_partial(
                DataUtils.round_half_up(criterion.weight * self.config.medium_anomaly_ratio),
                high=high,
                medium=medium
            )
        else:
            criterion.award_full(high=0, medium=0)
