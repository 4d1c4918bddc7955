"""Shared actors, parameters and action paths for the mission workflow tests."""

from uuid import UUID

ADMIN_ID = UUID("00000000-0000-4000-8000-000000000001")
DISPATCH_ID = UUID("00000000-0000-4000-8000-000000000002")
TECH_ID = UUID("00000000-0000-4000-8000-000000000003")

# Wednesday 2025-11-12 09:00 Paris wall time (naive = Paris)
SCHEDULED_START = "2025-11-12T09:00:00"
SCHEDULED_END = "2025-11-12T11:00:00"

# action -> (role, actor, params) used by the drive_mission fixture
ACTION_DEFAULTS = {
    "publish": ("ADMIN", ADMIN_ID, {}),
    "unpublish": ("ADMIN", ADMIN_ID, {}),
    "accept": ("TECH", TECH_ID, {}),
    "release": ("TECH", TECH_ID, {}),
    "schedule": (
        "TECH",
        TECH_ID,
        {"scheduled_start": SCHEDULED_START, "scheduled_end": SCHEDULED_END},
    ),
    "reschedule": ("DISPATCH", DISPATCH_ID, {"scheduled_start": "2025-11-13T10:00:00"}),
    "start_travel": ("TECH", TECH_ID, {}),
    "start_intervention": ("TECH", TECH_ID, {}),
    "pause": ("TECH", TECH_ID, {"pause_reason": "client_absent"}),
    "resume": ("TECH", TECH_ID, {}),
    "complete": ("TECH", TECH_ID, {}),
    "validate_report": ("DISPATCH", DISPATCH_ID, {}),
    "reject_report": (
        "DISPATCH",
        DISPATCH_ID,
        {"rejection_reason": "photos_insuffisantes", "details": "groupe extérieur non photographié"},
    ),
    "invoice": ("SAL", ADMIN_ID, {"invoice_number": "F-2025-0001"}),
    "record_payment": ("SAL", ADMIN_ID, {}),
    "close": ("ADMIN", ADMIN_ID, {}),
    "cancel": ("ADMIN", ADMIN_ID, {"cancel_reason": "client request"}),
}

# Happy path from BROUILLON to the end of the intervention
TO_TERMINEE = (
    "publish",
    "accept",
    "schedule",
    "start_travel",
    "start_intervention",
    "complete",
)

# Remaining path from TERMINEE to the archive
TO_CLOTUREE = ("validate_report", "invoice", "record_payment", "close")
