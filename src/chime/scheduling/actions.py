"""Action tokens carried by interactive controls.

Format: ``<verb>:<job_id>[:<param>]``, e.g. ``done:3f2a...`` or
``snooze:3f2a...:15``. Tokens travel as Telegram callback data, which is
limited to 64 bytes.
"""

from dataclasses import dataclass

MAX_TOKEN_LEN = 64

DONE = "done"
SNOOZE = "snooze"
SNOOZE_CUSTOM = "snooze_custom"
DELETE = "delete"
LOG = "log"

VERBS = frozenset({DONE, SNOOZE, SNOOZE_CUSTOM, DELETE, LOG})


@dataclass(frozen=True)
class ActionToken:
    verb: str
    job_id: str
    param: str | None = None

    def encode(self) -> str:
        parts = [self.verb, self.job_id]
        if self.param is not None:
            parts.append(self.param)
        token = ":".join(parts)
        if len(token.encode()) > MAX_TOKEN_LEN:
            raise ValueError(f"Action token too long ({len(token)} chars): {token}")
        return token


def parse_token(data: str | None) -> ActionToken | None:
    """Parse callback data into a token, or None if it isn't one of ours."""
    if not data:
        return None
    parts = data.split(":")
    if len(parts) not in (2, 3):
        return None
    verb, job_id = parts[0], parts[1]
    if verb not in VERBS or not job_id:
        return None
    param = parts[2] if len(parts) == 3 else None
    if verb == SNOOZE and not param:
        return None
    return ActionToken(verb=verb, job_id=job_id, param=param)
