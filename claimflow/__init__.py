"""
Death Claim Workflow System
Event-driven orchestration core for life insurance death claims
"""

from .integrations.event_bus import EventBus, EventTypes
from .orchestrators.claim_orchestrator import ClaimOrchestrator, OrchestrationResult, build_orchestrator
from .orchestrators.routing_engine import RoutingEngine
from .orchestrators.workflow_engine import WorkflowEngine
from .requirements.decision_table import DecisionTableEngine
from .requirements.requirement_processor import RequirementProcessor
from .shared.config import RoutingConfig, Settings, get_settings

__version__ = "1.0.0"

__all__ = [
    'EventBus',
    'EventTypes',
    'ClaimOrchestrator',
    'OrchestrationResult',
    'build_orchestrator',
    'RoutingEngine',
    'WorkflowEngine',
    'DecisionTableEngine',
    'RequirementProcessor',
    'RoutingConfig',
    'Settings',
    'get_settings',
]
