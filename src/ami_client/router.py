"""Classification, filtering and fan-out of inbound events and responses."""

import logging

from ami_client.channels import Channel, EventBus
from ami_client.options import OptionsStore
from ami_client.types import ACTION_ID_FIELD, EVENT_FIELD, TIME_FIELD, Message, capture_time, is_spec_action_id

logger = logging.getLogger(__name__)


class EventRouter:
    """Publishes inbound messages according to the client options.

    ``last_event`` and ``last_response`` hold the most recent message of each kind
    as published, i.e. after filtering, stamping and id stripping.
    """

    def __init__(self, options: OptionsStore, bus: EventBus) -> None:
        self._options = options
        self._bus = bus
        self._last_event: Message | None = None
        self._last_response: Message | None = None

    @property
    def last_event(self) -> Message | None:
        return self._last_event

    @property
    def last_response(self) -> Message | None:
        return self._last_response

    def route_event(self, event: Message) -> Message | None:
        """Publish ``event`` unless its type is filtered out.

        Returns the published event, or None when it was suppressed.
        """
        options = self._options.current
        event = dict(event)
        if options.add_time:
            event[TIME_FIELD] = capture_time()

        event_type = event.get(EVENT_FIELD)
        if event_type and options.event_filter and str(event_type).lower() in options.event_filter:
            logger.debug("Event %s suppressed by filter", event_type)
            return None

        self._last_event = event
        self._bus.emit(Channel.EVENT, event)
        if event_type and options.emit_events_by_types:
            channel_name = str(event_type)
            if options.event_type_to_lower_case:
                channel_name = channel_name.lower()
            self._bus.emit(Channel.EVENT_TYPE, event, name=channel_name)
        return event

    def prepare_response(self, response: Message) -> Message:
        """Stamp ``response`` and strip a generated ActionID from it."""
        options = self._options.current
        response = dict(response)
        if options.add_time:
            response[TIME_FIELD] = capture_time()
        if not options.dont_delete_spec_action_id and is_spec_action_id(response.get(ACTION_ID_FIELD)):
            del response[ACTION_ID_FIELD]
        return response

    def publish_response(self, response: Message, action_id: str | None = None) -> None:
        """Publish a prepared response.

        ``action_id`` is the id the response carried on the wire; it keys the
        by-id channel even when it was stripped from the payload.
        """
        if action_id and self._options.current.emit_responses_by_id:
            self._bus.emit(Channel.RESPONSE_BY_ID, response, name=str(action_id))
        self._last_response = response
        self._bus.emit(Channel.RESPONSE, response)
