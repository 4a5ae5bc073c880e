"""
Death Claim Workflow System - Requirements
Decision table rules and the requirement lifecycle
"""

from .decision_table import DEFAULT_RULES, DecisionResult, DecisionRule, DecisionTableEngine
from .requirement_processor import DOCUMENT_TYPE_MAPPING, ProcessingResult, RequirementProcessor

__all__ = [
    'DEFAULT_RULES',
    'DecisionResult',
    'DecisionRule',
    'DecisionTableEngine',
    'DOCUMENT_TYPE_MAPPING',
    'ProcessingResult',
    'RequirementProcessor',
]
