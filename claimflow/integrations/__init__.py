"""
Death Claim Workflow System - Integrations
Event bus and system-of-record contracts
"""

from .collaborators import (
    CaseTracker, ClaimsLedger, DocumentService, PolicyRegistry, VerificationService
)
from .event_bus import EventBus, EventTypes, topic_matches

__all__ = [
    'CaseTracker',
    'ClaimsLedger',
    'DocumentService',
    'PolicyRegistry',
    'VerificationService',
    'EventBus',
    'EventTypes',
    'topic_matches',
]
