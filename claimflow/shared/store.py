"""
Death Claim Workflow System - State Stores
Per-claim requirement registry and workflow run snapshots
"""

import json
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import timedelta
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
import structlog

from .schemas import Requirement

logger = structlog.get_logger(__name__)


class RequirementStore:
    """Requirements keyed by claim id, insertion-ordered per claim"""

    def __init__(self):
        self._by_claim: Dict[str, "OrderedDict[str, Requirement]"] = {}

    def list(self, claim_id: str) -> List[Requirement]:
        return list(self._by_claim.get(claim_id, {}).values())

    def get(self, claim_id: str, requirement_id: str) -> Optional[Requirement]:
        return self._by_claim.get(claim_id, {}).get(requirement_id)

    def find_by_type(self, claim_id: str, requirement_type) -> Optional[Requirement]:
        for requirement in self._by_claim.get(claim_id, {}).values():
            if requirement.type == requirement_type:
                return requirement
        return None

    def add(self, claim_id: str, requirement: Requirement):
        self._by_claim.setdefault(claim_id, OrderedDict())[requirement.id] = requirement

    def clear(self, claim_id: str):
        self._by_claim.pop(claim_id, None)

    def claim_ids(self) -> List[str]:
        return list(self._by_claim)


class WorkflowStateStore(ABC):
    """Latest playbook run snapshot per case"""

    @abstractmethod
    async def save(self, case_id: str, snapshot: Dict[str, Any]):
        pass

    @abstractmethod
    async def load(self, case_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def delete(self, case_id: str):
        pass


class InMemoryWorkflowStateStore(WorkflowStateStore):

    def __init__(self):
        self._snapshots: Dict[str, str] = {}

    async def save(self, case_id: str, snapshot: Dict[str, Any]):
        self._snapshots[case_id] = json.dumps(snapshot, default=str)

    async def load(self, case_id: str) -> Optional[Dict[str, Any]]:
        raw = self._snapshots.get(case_id)
        return json.loads(raw) if raw else None

    async def delete(self, case_id: str):
        self._snapshots.pop(case_id, None)


class RedisWorkflowStateStore(WorkflowStateStore):
    """Snapshots stored as JSON under ``workflow_state:{case_id}`` with a TTL"""

    def __init__(self, redis_client: redis.Redis, ttl_hours: int = 24, key_prefix: str = "workflow_state"):
        self.redis_client = redis_client
        self.ttl = timedelta(hours=ttl_hours)
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, redis_url: str, ttl_hours: int = 24) -> "RedisWorkflowStateStore":
        return cls(redis.from_url(redis_url, decode_responses=True), ttl_hours=ttl_hours)

    def _key(self, case_id: str) -> str:
        return f"{self.key_prefix}:{case_id}"

    async def save(self, case_id: str, snapshot: Dict[str, Any]):
        try:
            await self.redis_client.setex(
                self._key(case_id),
                self.ttl,
                json.dumps(snapshot, default=str)
            )
        except Exception as e:
            logger.error("Failed to save workflow state", case_id=case_id, error=str(e))

    async def load(self, case_id: str) -> Optional[Dict[str, Any]]:
        try:
            raw = await self.redis_client.get(self._key(case_id))
        except Exception as e:
            logger.error("Failed to get workflow state", case_id=case_id, error=str(e))
            return None

        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    async def delete(self, case_id: str):
        await self.redis_client.delete(self._key(case_id))
