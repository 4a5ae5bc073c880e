"""
Death Claim Workflow System - Configuration
Environment-driven settings and runtime-adjustable routing configuration
"""

import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
import structlog

from .exceptions import ConfigurationException

logger = structlog.get_logger(__name__)


def _env(name: str, default: str) -> str:
    return os.getenv(f"CLAIMFLOW_{name}", default)


class Settings(BaseModel):
    """Process-level settings, defaults read from CLAIMFLOW_* environment variables"""

    model_config = ConfigDict(frozen=True)

    log_level: str = Field(default_factory=lambda: _env('LOG_LEVEL', 'INFO'))
    log_format: str = Field(default_factory=lambda: _env('LOG_FORMAT', 'json'))
    event_history_size: int = Field(
        default_factory=lambda: int(_env('EVENT_HISTORY_SIZE', '100')), ge=1
    )
    auto_satisfy_confidence: float = Field(
        default_factory=lambda: float(_env('AUTO_SATISFY_CONFIDENCE', '0.85')), ge=0, le=1
    )
    tax_reporting_threshold: float = Field(
        default_factory=lambda: float(_env('TAX_REPORTING_THRESHOLD', '600')), ge=0
    )
    redis_url: Optional[str] = Field(default_factory=lambda: os.getenv('CLAIMFLOW_REDIS_URL'))
    workflow_state_ttl_hours: int = Field(
        default_factory=lambda: int(_env('WORKFLOW_STATE_TTL_HOURS', '24')), ge=1
    )

    @property
    def workflow_state_ttl_seconds(self) -> int:
        return self.workflow_state_ttl_hours * 3600


class CriterionWeights(BaseModel):
    """Points awarded per eligibility criterion"""

    model_config = ConfigDict(validate_assignment=True, extra='forbid')

    death_verification: int = Field(30, ge=0)
    policy_status: int = Field(20, ge=0)
    beneficiary_match: int = Field(25, ge=0)
    contestability: int = Field(15, ge=0)
    claim_amount: int = Field(10, ge=0)
    anomaly_absence: int = Field(10, ge=0)

    @property
    def total(self) -> int:
        return sum(self.model_dump().values())


class RoutingConfig(BaseModel):
    """FastTrack eligibility thresholds and weights"""

    model_config = ConfigDict(validate_assignment=True, extra='forbid')

    death_verification_threshold: float = Field(95, ge=0, le=100)
    partial_credit_floor: float = Field(70, ge=0, le=100)
    beneficiary_match_threshold: float = Field(95, ge=0, le=100)
    required_policy_status: str = 'in_force'
    contestability_period_years: float = Field(2, ge=0)
    max_claim_amount: float = Field(500000, ge=0)
    eligibility_threshold: float = Field(85, ge=0)
    neutral_beneficiary_ratio: float = Field(0.5, ge=0, le=1)
    medium_anomaly_ratio: float = Field(0.5, ge=0, le=1)
    weights: CriterionWeights = Field(default_factory=CriterionWeights)

    @model_validator(mode='after')
    def _check_partial_band(self):
        if self.partial_credit_floor > self.death_verification_threshold:
            raise ValueError("partial_credit_floor must not exceed death_verification_threshold")
        if self.partial_credit_floor > self.beneficiary_match_threshold:
            raise ValueError("partial_credit_floor must not exceed beneficiary_match_threshold")
        return self

    def updated(self, changes: Dict[str, Any]) -> "RoutingConfig":
        """Return a validated copy with ``changes`` applied.

        ``weights`` may be given as a partial mapping; unknown keys raise ConfigurationException.
        """
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise ConfigurationException(
                f"Unknown routing configuration keys: {', '.join(sorted(unknown))}",
                {"unknown_keys": sorted(unknown)}
            )

        data = self.model_dump()
        for key, value in changes.items():
            if key == 'weights' and isinstance(value, dict):
                data['weights'].update(value)
            elif key == 'weights' and isinstance(value, CriterionWeights):
                data['weights'] = value.model_dump()
            else:
                data[key] = value

        try:
            return RoutingConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigurationException("Invalid routing configuration", {"errors": e.errors()}) from e


def get_settings() -> Settings:
    """Build settings from the current environment"""
    return Settings()
