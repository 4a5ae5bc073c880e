"""
Death Claim Workflow System - Exception Hierarchy
Service exceptions shared by the orchestration core
"""

from typing import Any, Dict, Optional


class ServiceException(Exception):
    """Base service exception"""
    def __init__(self, message: str, code: str = "SERVICE_ERROR", details: Dict[str, Any] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ValidationException(ServiceException):
    """Validation exception"""
    def __init__(self, message: str, field: str = None, details: Dict[str, Any] = None):
        super().__init__(message, "VALIDATION_ERROR", details)
        self.field = field


class ConfigurationException(ServiceException):
    """Unknown playbook, unknown rule or invalid engine configuration.

    Configuration errors are fatal and never retried.
    """
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class NotFoundException(ServiceException):
    """Not found exception"""
    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} not found: {identifier}", "NOT_FOUND")
        self.resource = resource
        self.identifier = identifier


class InvalidTransitionException(ServiceException):
    """Requirement state machine violation"""
    def __init__(self, requirement_id: str, current: str, target: str):
        super().__init__(
            f"Requirement {requirement_id} cannot move from {current} to {target}",
            "INVALID_TRANSITION",
            {"requirement_id": requirement_id, "current": current, "target": target}
        )
        self.requirement_id = requirement_id
        self.current = current
        self.target = target


class StepExecutionException(ServiceException):
    """Critical saga or playbook step failure"""
    def __init__(self, step: str, cause: Optional[BaseException] = None, message: str = None):
        super().__init__(
            message or f"Step {step} failed: {cause}",
            "STEP_FAILED",
            {"step": step, "cause": str(cause) if cause else None}
        )
        self.step = step
        self.cause = cause


class CollaboratorException(ServiceException):
    """Raised by system-of-record adapters"""
    def __init__(self, system: str, operation: str, message: str, details: Dict[str, Any] = None):
        super().__init__(f"{system}.{operation} failed: {message}", "COLLABORATOR_ERROR", details)
        self.system = system
        self.operation = operation
