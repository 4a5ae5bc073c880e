"""
Death Claim Workflow System - Orchestrators
Claim initiation saga, FastTrack routing and playbook execution
"""

from .claim_orchestrator import ClaimOrchestrator, OrchestrationResult, build_orchestrator
from .playbooks import PLAYBOOKS, Playbook, PlaybookStep
from .routing_engine import EligibilityResult, RoutingEngine
from .workflow_engine import StepResult, WorkflowEngine, WorkflowExecution

__all__ = [
    'ClaimOrchestrator',
    'OrchestrationResult',
    'build_orchestrator',
    'PLAYBOOKS',
    'Playbook',
    'PlaybookStep',
    'EligibilityResult',
    'RoutingEngine',
    'StepResult',
    'WorkflowEngine',
    'WorkflowExecution',
]
