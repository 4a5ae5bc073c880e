"""
Death Claim Workflow System - Systems of Record
Abstract contracts for the policy registry, claims ledger, case tracker,
document services and death verification
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class PolicyRegistry(ABC):
    """Policy administration system"""

    @abstractmethod
    async def lookup_policy(self, policy_number: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def suspend_policy(self, policy_number: str, suspension_date: str, reason: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def calculate_death_benefit(self, policy_number: str, date_of_death: str) -> Dict[str, Any]:
        """Returns ``{"death_benefit", "interest", "total_amount"}``"""


class ClaimsLedger(ABC):
    """Claims system of record"""

    @abstractmethod
    async def create_claim(self, data: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_claim(self, claim_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def update_claim(self, claim_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def create_payment(self, data: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def execute_payment(self, payment_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def post_ledger_entry(self, transaction: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def generate_tax_form(self, claim_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def calculate_tax_withholding(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Returns at least ``{"withholding_amount"}``"""


class CaseTracker(ABC):
    """Case and task tracking system"""

    @abstractmethod
    async def create_case(self, data: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def update_case(self, case_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def create_task(self, data: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def complete_task(self, task_id: str, notes: Optional[str] = None) -> Dict[str, Any]:
        pass


class DocumentService(ABC):
    """Document store with classification and extraction"""

    @abstractmethod
    async def classify_document(self, document_id: str) -> Dict[str, Any]:
        """Returns ``{"document_type", "confidence"}`` with confidence in [0, 1]"""

    @abstractmethod
    async def get_extraction_results(self, document_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def link_document_to_requirement(self, document_id: str, requirement_id: str) -> Dict[str, Any]:
        pass


class VerificationService(ABC):
    """External death and beneficiary verification"""

    @abstractmethod
    async def verify_death(self, insured: Dict[str, Any]) -> Dict[str, Any]:
        """Returns ``{"verified", "confidence", "three_point_match": {...}}``"""
