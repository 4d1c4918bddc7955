"""ORM models.  Importing this package registers every table on Base.metadata."""

from mission_kernel.models.idempotency import IdempotencyRecord
from mission_kernel.models.mission import Mission
from mission_kernel.models.notification import NotificationQueueItem, NotificationStatus
from mission_kernel.models.sequence import SequenceCounter
from mission_kernel.models.workflow_log import WorkflowLogEntry

__all__ = [
    "Mission",
    "WorkflowLogEntry",
    "IdempotencyRecord",
    "NotificationQueueItem",
    "NotificationStatus",
    "SequenceCounter",
]
