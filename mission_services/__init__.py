"""
mission_services -- Package init and public API.

Responsibility:
    Outer orchestration layer.  Wires mission_kernel services from the
    active mission_config and exposes the typed procedure surface used by
    the dispatch and mobile clients.  This is the only layer that opens
    and commits database sessions.

Architecture position:
    Services -- orchestration over mission_config + mission_kernel.

    Dependency direction:
        mission_services/ -> mission_config/  (allowed)
        mission_services/ -> mission_kernel/  (allowed)
        mission_config/   -> mission_services/ (FORBIDDEN)
        mission_kernel/   -> mission_services/ (FORBIDDEN)

Invariants enforced:
    - DI transparency: all kernel service wiring is centralised in
      WorkflowOrchestrator; no service self-constructs configured
      dependencies.
"""

from mission_services.orchestrator import WorkflowOrchestrator
from mission_services.procedures import WorkflowProcedures

__all__ = [
    "WorkflowOrchestrator",
    "WorkflowProcedures",
]
