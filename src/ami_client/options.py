"""Client options with a fixed schema and a normalized event filter."""

from collections.abc import Mapping, Set
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ami_client.transport import RetryPolicy


class ClientOptions(BaseModel):
    """Settings recognized by the AMI client.

    Fields are declared in snake_case and accept their camelCase alias as well,
    e.g. ``max_attempts_count`` or ``maxAttemptsCount``. Unknown keys are rejected.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
        extra="forbid",
    )

    reconnect: bool = False
    """Reconnect automatically after a closure the user did not ask for."""

    max_attempts_count: int | None = Field(default=30, ge=1)
    """Connection attempts the connector may make. None means unlimited."""

    attempts_delay: float = Field(default=1.0, ge=0)
    """Seconds between two connection attempts."""

    keep_alive: bool = False
    """Run the self-paced heartbeat probe."""

    keep_alive_delay: float = Field(default=1.0, gt=0)
    """Seconds between an acknowledged probe and the next one."""

    emit_events_by_types: bool = True
    """Also publish each event on a channel keyed by its type."""

    event_type_to_lower_case: bool = False
    """Lower-case the key of the event-type channel."""

    emit_responses_by_id: bool = True
    """Also publish each response on a channel keyed by its ActionID."""

    dont_delete_spec_action_id: bool = False
    """Keep generated ActionIDs on responses instead of stripping them."""

    add_time: bool = False
    """Stamp events and responses with a ``$time`` field."""

    event_filter: frozenset[str] | None = None
    """Lower-cased event types that are never published."""

    @field_validator("event_filter", mode="before")
    @classmethod
    def _normalize_event_filter(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            raise ValueError("event filter must be a collection of event names, not a string")
        if isinstance(value, Mapping):
            names = value.keys()
        elif isinstance(value, (Set, list, tuple)):
            names = value
        else:
            raise ValueError(f"unsupported event filter type: {type(value).__name__}")
        return frozenset(str(name).lower() for name in names)


_FIELD_NAMES: dict[str, str] = {}
for _name, _field in ClientOptions.model_fields.items():
    _FIELD_NAMES[_name] = _name
    _FIELD_NAMES[_field.alias or _name] = _name


class OptionsStore:
    """Holds the live ``ClientOptions`` of a client.

    ``set`` reports unknown names by returning False instead of raising, and
    ``set_all`` ignores them, so callers can pass loosely built mappings.
    """

    def __init__(self, options: ClientOptions | Mapping[str, Any] | None = None) -> None:
        if options is None:
            options = ClientOptions()
        elif not isinstance(options, ClientOptions):
            options = ClientOptions.model_validate(options)
        self._options = options

    @property
    def current(self) -> ClientOptions:
        return self._options

    def get(self, name: str) -> Any:
        field_name = _FIELD_NAMES.get(name)
        if field_name is None:
            return None
        return getattr(self._options, field_name)

    def set(self, name: str, value: Any) -> bool:
        field_name = _FIELD_NAMES.get(name)
        if field_name is None:
            return False
        setattr(self._options, field_name, value)
        return True

    def set_all(self, partial: Mapping[str, Any]) -> None:
        """Merge the recognized keys of ``partial`` and re-validate everything."""
        merged = self._options.model_dump()
        for name, value in partial.items():
            field_name = _FIELD_NAMES.get(name)
            if field_name is not None:
                merged[field_name] = value
        self._options = ClientOptions.model_validate(merged)

    def as_dict(self, by_alias: bool = True) -> dict[str, Any]:
        return self._options.model_dump(by_alias=by_alias)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            reconnect=self._options.reconnect,
            max_attempts_count=self._options.max_attempts_count,
            attempts_delay=self._options.attempts_delay,
        )
