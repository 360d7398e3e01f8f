"""Delivery gateway interface and message building.

The gateway is the only thing the dispatcher knows about the messaging
platform: it sends text (plus optional formatting entities) and rows of
interactive controls to a destination conversation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from chime.scheduling.actions import (
    DELETE,
    DONE,
    LOG,
    SNOOZE,
    SNOOZE_CUSTOM,
    ActionToken,
)
from chime.scheduling.types import HabitPayload, Job, JobFamily, ReminderPayload

REMINDER_SNOOZE_PRESETS = (10, 60)
HABIT_SNOOZE_PRESETS = (15,)


@dataclass(frozen=True)
class InteractiveControl:
    """A button; ``token`` is routed back to the acknowledgment handlers."""

    label: str
    token: str


@dataclass
class Delivery:
    destination_id: int
    text: str
    entities: list[dict[str, Any]] = field(default_factory=list)
    controls: list[list[InteractiveControl]] = field(default_factory=list)


class DeliveryGateway(ABC):
    """Sends deliveries to a messaging platform."""

    @abstractmethod
    async def send(self, delivery: Delivery) -> str:
        """Send a delivery.

        Returns:
            The platform message id.

        Raises:
            Exception: Any failure; the dispatcher treats it as transient.
        """
        ...


def _snooze_label(minutes: int) -> str:
    if minutes % 60 == 0:
        return f"Snooze {minutes // 60}h"
    return f"Snooze {minutes}m"


def _control(label: str, verb: str, job_id: str, param: str | None = None) -> InteractiveControl:
    return InteractiveControl(label=label, token=ActionToken(verb, job_id, param).encode())


def build_controls(job: Job) -> list[list[InteractiveControl]]:
    """Buttons attached to a delivered job."""
    assert job.id is not None
    if job.family is JobFamily.HABIT:
        row = [_control("Log", LOG, job.id)]
        row += [
            _control(_snooze_label(m), SNOOZE, job.id, str(m))
            for m in HABIT_SNOOZE_PRESETS
        ]
        row.append(_control("Custom", SNOOZE_CUSTOM, job.id))
        return [row]

    first = [_control("Done", DONE, job.id)]
    first += [
        _control(_snooze_label(m), SNOOZE, job.id, str(m))
        for m in REMINDER_SNOOZE_PRESETS
    ]
    second = [
        _control("Snooze…", SNOOZE_CUSTOM, job.id),
        _control("Delete", DELETE, job.id),
    ]
    return [first, second]


def format_habit(payload: HabitPayload) -> str:
    if payload.target_amount and payload.unit:
        amount = (
            int(payload.target_amount)
            if float(payload.target_amount).is_integer()
            else payload.target_amount
        )
        target = (
            f"Target: {payload.target_count} × {amount} {payload.unit} "
            f"({payload.cadence})"
        )
    else:
        plural = "" if payload.target_count == 1 else "s"
        target = f"Target: {payload.target_count} session{plural} ({payload.cadence})"
    return f"Habit: {payload.name}\n{target}\nTap Log when you complete a session."


def build_delivery(job: Job) -> Delivery:
    """Render a job into a delivery.

    Raises:
        ValueError: If the job has no usable destination.
    """
    # Group chats have negative ids, so only a missing/zero id is invalid
    if not job.destination_id:
        raise ValueError(f"Job {job.id} has no destination")

    if isinstance(job.payload, ReminderPayload):
        return Delivery(
            destination_id=job.destination_id,
            text=job.payload.text,
            entities=list(job.payload.entities),
            controls=build_controls(job),
        )
    return Delivery(
        destination_id=job.destination_id,
        text=format_habit(job.payload),
        controls=build_controls(job),
    )
