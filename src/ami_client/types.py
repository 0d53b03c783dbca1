"""Message shapes and correlation id helpers shared by the session components.

AMI messages are flat mappings of field name to string value. An action always
carries an ``Action`` field, an event an ``Event`` field, and a response is tied
to the action that caused it through the shared ``ActionID`` field.
"""

import time
from typing import Any

Message = dict[str, Any]

ACTION_FIELD = "Action"
ACTION_ID_FIELD = "ActionID"
EVENT_FIELD = "Event"
TIME_FIELD = "$time"

SPEC_ACTION_ID_PREFIX = "--spec_"
"""Prefix marking correlation ids generated by the client itself."""

KEEP_ALIVE_ACTION = "Ping"

_last_action_id_suffix = 0


def new_action_id() -> str:
    """Generate a reserved-prefix correlation id.

    The suffix is a nanosecond timestamp forced to be strictly increasing, so two
    ids generated on the same clock tick still differ.
    """
    global _last_action_id_suffix
    suffix = max(time.time_ns(), _last_action_id_suffix + 1)
    _last_action_id_suffix = suffix
    return f"{SPEC_ACTION_ID_PREFIX}{suffix}"


def is_spec_action_id(action_id: Any) -> bool:
    return isinstance(action_id, str) and action_id.startswith(SPEC_ACTION_ID_PREFIX)


def capture_time() -> int:
    """Milliseconds since the epoch, as stamped into ``$time``."""
    return time.time_ns() // 1_000_000
