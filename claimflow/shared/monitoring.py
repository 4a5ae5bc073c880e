"""
Death Claim Workflow System - Logging and Monitoring Utilities
Structured logging, Prometheus metrics and examiner audit trail
"""

import sys
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from structlog.stdlib import LoggerFactory
from prometheus_client import Counter, Histogram, CollectorRegistry

# =============================================================================
# STRUCTURED LOGGING SETUP
# =============================================================================

class CustomJSONRenderer:
    """JSON renderer stamping every entry with the service name"""

    def __call__(self, logger, method_name, event_dict):
        if 'timestamp' not in event_dict:
            event_dict['timestamp'] = datetime.now(timezone.utc).isoformat()

        event_dict['level'] = method_name.upper()
        event_dict['service'] = 'claimflow'

        return json.dumps(event_dict, default=str, ensure_ascii=False)


def setup_logging(log_level: str = "INFO", log_format: str = "json"):
    """Setup structured logging configuration"""

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="ISO"),
    ]

    if log_format == "json":
        processors.append(CustomJSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    logging.getLogger("redis").setLevel(logging.WARNING)

# =============================================================================
# PROMETHEUS METRICS
# =============================================================================

class MetricsCollector:
    """Centralized metrics collector"""

    def __init__(self, registry: CollectorRegistry = None):
        self.registry = registry or CollectorRegistry()

        # Event bus metrics
        self.events_published_total = Counter(
            'claimflow_events_published_total',
            'Total events published',
            ['topic'],
            registry=self.registry
        )

        self.event_handler_errors_total = Counter(
            'claimflow_event_handler_errors_total',
            'Event handler failures',
            ['topic'],
            registry=self.registry
        )

        # Decision table metrics
        self.rules_evaluated_total = Counter(
            'claimflow_rules_evaluated_total',
            'Decision rules evaluated',
            ['rule_id', 'outcome'],
            registry=self.registry
        )

        # Requirement metrics
        self.requirements_generated_total = Counter(
            'claimflow_requirements_generated_total',
            'Requirements generated',
            ['type', 'level'],
            registry=self.registry
        )

        self.requirement_transitions_total = Counter(
            'claimflow_requirement_transitions_total',
            'Requirement status transitions',
            ['status'],
            registry=self.registry
        )

        # Routing metrics
        self.routing_decisions_total = Counter(
            'claimflow_routing_decisions_total',
            'Routing decisions',
            ['routing'],
            registry=self.registry
        )

        self.routing_score = Histogram(
            'claimflow_routing_score',
            'FastTrack eligibility scores',
            buckets=(10, 20, 30, 40, 50, 60, 70, 80, 85, 90, 100, 110),
            registry=self.registry
        )

        # Workflow metrics
        self.workflows_total = Counter(
            'claimflow_workflows_total',
            'Total playbook runs',
            ['type', 'status'],
            registry=self.registry
        )

        self.workflow_duration = Histogram(
            'claimflow_workflow_duration_seconds',
            'Playbook run duration',
            ['type'],
            registry=self.registry
        )

        self.workflow_steps_total = Counter(
            'claimflow_workflow_steps_total',
            'Playbook step outcomes',
            ['task_type', 'status'],
            registry=self.registry
        )

        self.workflow_step_duration = Histogram(
            'claimflow_workflow_step_duration_seconds',
            'Playbook step duration',
            ['task_type'],
            registry=self.registry
        )

        # Orchestration metrics
        self.orchestration_steps_total = Counter(
            'claimflow_orchestration_steps_total',
            'Claim initiation saga step outcomes',
            ['step', 'status'],
            registry=self.registry
        )

        self.orchestrations_total = Counter(
            'claimflow_orchestrations_total',
            'Claim initiation sagas',
            ['status'],
            registry=self.registry
        )

    def record_event(self, topic: str, handler_errors: int = 0):
        self.events_published_total.labels(topic=topic).inc()
        if handler_errors:
            self.event_handler_errors_total.labels(topic=topic).inc(handler_errors)

    def record_rule(self, rule_id: str, outcome: str):
        """Record a rule evaluation outcome (matched, unmatched, error)"""
        self.rules_evaluated_total.labels(rule_id=rule_id, outcome=outcome).inc()

    def record_requirement(self, requirement_type: str, level: str):
        self.requirements_generated_total.labels(type=requirement_type, level=level).inc()

    def record_requirement_transition(self, status: str):
        self.requirement_transitions_total.labels(status=status).inc()

    def record_routing(self, routing: str, score: float):
        self.routing_decisions_total.labels(routing=routing).inc()
        self.routing_score.observe(score)

    def record_workflow(self, workflow_type: str, status: str, duration: float = None):
        """Record workflow metrics"""
        self.workflows_total.labels(
            type=workflow_type,
            status=status
        ).inc()

        if duration is not None:
            self.workflow_duration.labels(type=workflow_type).observe(duration)

    def record_workflow_step(self, task_type: str, status: str, duration: float = None):
        self.workflow_steps_total.labels(task_type=task_type, status=status).inc()
        if duration is not None:
            self.workflow_step_duration.labels(task_type=task_type).observe(duration)

    def record_orchestration_step(self, step: str, status: str):
        self.orchestration_steps_total.labels(step=step, status=status).inc()

    def record_orchestration(self, success: bool):
        self.orchestrations_total.labels(status='success' if success else 'failed').inc()


# Global metrics collector
metrics = MetricsCollector()

# =============================================================================
# AUDIT LOGGING
# =============================================================================

class AuditLogger:
    """Audit logging for examiner decisions"""

    def __init__(self):
        self.logger = structlog.get_logger("audit")

    def log_user_action(
        self,
        user_id: str,
        action: str,
        resource_type: str = None,
        resource_id: str = None,
        details: Dict[str, Any] = None
    ):
        """Log user action for audit trail"""
        audit_data = {
            "audit_type": "user_action",
            "user_id": user_id,
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        if details:
            audit_data["details"] = details

        self.logger.info("User action", **audit_data)

    def log_system_event(
        self,
        event_type: str,
        description: str,
        severity: str = "info",
        details: Dict[str, Any] = None
    ):
        """Log system event"""
        audit_data = {
            "audit_type": "system_event",
            "event_type": event_type,
            "description": description,
            "severity": severity,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        if details:
            audit_data["details"] = details

        if severity == "error":
            self.logger.error("System event", **audit_data)
        elif severity == "warning":
            self.logger.warning("System event", **audit_data)
        else:
            self.logger.info("System event", **audit_data)


# Global audit logger
audit_logger = AuditLogger()
