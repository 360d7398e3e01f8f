"""Database layer."""

from chime.db.engine import Database
from chime.db.models import (
    Base,
    HabitLog,
    JobRecord,
    PendingPrompt,
    UTCDateTime,
    utc_now,
)

__all__ = [
    # Engine
    "Database",
    # Models
    "Base",
    "HabitLog",
    "JobRecord",
    "PendingPrompt",
    "UTCDateTime",
    "utc_now",
]
