"""Scheduling subsystem: recurrence, dispatch and acknowledgments.

Public API:
- compute_next: Next occurrence of a schedule after a reference instant
- SqlJobStore: SQLAlchemy-backed job store (JobStore interface)
- LockManager: Per-job claim/release with a TTL
- JobDispatcher: Polling loop that delivers due jobs of one family
- AcknowledgmentHandler: Done / snooze / delete / log actions and replies

Types:
- Job, JobFamily: A stored reminder or habit and its status policy
- Schedule: Union of the recurrence variants
- Delivery, DeliveryGateway: What is sent and who sends it
"""

from chime.scheduling.acks import (
    AckReply,
    AcknowledgmentHandler,
    parse_amount,
    parse_duration_to_minutes,
)
from chime.scheduling.delivery import (
    Delivery,
    DeliveryGateway,
    InteractiveControl,
    build_controls,
    build_delivery,
)
from chime.scheduling.dispatcher import JobDispatcher
from chime.scheduling.locks import LockManager, make_instance_id
from chime.scheduling.prompts import PendingPromptStore
from chime.scheduling.recurrence import compute_next, describe_schedule, format_local
from chime.scheduling.store import JobStore, SqlJobStore
from chime.scheduling.types import (
    HabitPayload,
    Job,
    JobFamily,
    ReminderPayload,
    Schedule,
    parse_schedule,
    schedule_to_dict,
)

__all__ = [
    "AckReply",
    "AcknowledgmentHandler",
    "Delivery",
    "DeliveryGateway",
    "HabitPayload",
    "InteractiveControl",
    "Job",
    "JobDispatcher",
    "JobFamily",
    "JobStore",
    "LockManager",
    "PendingPromptStore",
    "ReminderPayload",
    "Schedule",
    "SqlJobStore",
    "build_controls",
    "build_delivery",
    "compute_next",
    "describe_schedule",
    "format_local",
    "make_instance_id",
    "parse_amount",
    "parse_duration_to_minutes",
    "parse_schedule",
    "schedule_to_dict",
]
