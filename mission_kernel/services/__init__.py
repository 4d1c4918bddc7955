"""Services for the mission kernel (write side and monitoring reads)."""

from mission_kernel.services.idempotency_service import IdempotencyService
from mission_kernel.services.monitoring_service import MonitoringService
from mission_kernel.services.notification_service import NotificationQueue
from mission_kernel.services.sequence_service import SequenceService
from mission_kernel.services.transition_engine import TransitionEngine, mission_snapshot
from mission_kernel.services.workflow_log_service import WorkflowLogService

__all__ = [
    "IdempotencyService",
    "MonitoringService",
    "NotificationQueue",
    "SequenceService",
    "TransitionEngine",
    "WorkflowLogService",
    "mission_snapshot",
]
