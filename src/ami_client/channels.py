"""Typed publish/subscribe over the fixed set of client channels.

Two channels are keyed: ``EVENT_TYPE`` by the event type name and
``RESPONSE_BY_ID`` by the correlation id. Subscriptions are stored under
``(channel, name)`` pairs, ``name`` being None for the plain channels.
"""

import inspect
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

import anyio.abc

logger = logging.getLogger(__name__)


class Channel(str, Enum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    RECONNECTION = "reconnection"
    EVENT = "event"
    EVENT_TYPE = "event_type"
    RESPONSE = "response"
    RESPONSE_BY_ID = "response_by_id"
    ACTION = "action"
    DATA = "data"
    ERROR = "error"
    INTERNAL_ERROR = "internal_error"


KEYED_CHANNELS = frozenset({Channel.EVENT_TYPE, Channel.RESPONSE_BY_ID})

Handler = Callable[..., Any]
ChannelKey = tuple[Channel, str | None]


def _channel_key(channel: Channel | str, name: str | None) -> ChannelKey:
    channel = Channel(channel)
    if channel in KEYED_CHANNELS:
        if name is None:
            raise ValueError(f"Channel '{channel.value}' requires a name")
    elif name is not None:
        raise ValueError(f"Channel '{channel.value}' does not take a name")
    return channel, name


class _Subscription:
    __slots__ = ("handler", "once")

    def __init__(self, handler: Handler, once: bool) -> None:
        self.handler = handler
        self.once = once


class EventBus:
    """Fans client notifications out to subscribed handlers.

    Handlers may be plain callables or coroutine functions. Coroutines are
    started on the task group attached with ``start``. A handler that raises does
    not stop delivery to the others; its exception is logged and published on
    ``INTERNAL_ERROR``.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[ChannelKey, list[_Subscription]] = {}
        self._task_group: anyio.abc.TaskGroup | None = None

    def start(self, task_group: anyio.abc.TaskGroup) -> None:
        self._task_group = task_group

    def stop(self) -> None:
        self._task_group = None

    def on(self, channel: Channel | str, handler: Handler, *, name: str | None = None) -> Handler:
        key = _channel_key(channel, name)
        self._subscriptions.setdefault(key, []).append(_Subscription(handler, once=False))
        return handler

    def once(self, channel: Channel | str, handler: Handler, *, name: str | None = None) -> Handler:
        key = _channel_key(channel, name)
        self._subscriptions.setdefault(key, []).append(_Subscription(handler, once=True))
        return handler

    def off(self, channel: Channel | str, handler: Handler, *, name: str | None = None) -> bool:
        key = _channel_key(channel, name)
        subscriptions = self._subscriptions.get(key, [])
        for subscription in subscriptions:
            if subscription.handler == handler:
                subscriptions.remove(subscription)
                if not subscriptions:
                    del self._subscriptions[key]
                return True
        return False

    def listener_count(self, channel: Channel | str, *, name: str | None = None) -> int:
        return len(self._subscriptions.get(_channel_key(channel, name), []))

    def emit(self, channel: Channel | str, *args: Any, name: str | None = None) -> int:
        """Deliver ``args`` to every handler of the channel.

        Returns the number of handlers invoked.
        """
        key = _channel_key(channel, name)
        subscriptions = self._subscriptions.get(key)
        if not subscriptions:
            if key[0] is Channel.ERROR and args:
                logger.error("Unobserved session error: %r", args[0])
            return 0

        snapshot = list(subscriptions)
        for subscription in snapshot:
            if subscription.once:
                subscriptions.remove(subscription)
        if not subscriptions:
            del self._subscriptions[key]

        for subscription in snapshot:
            self._invoke(key, subscription.handler, args)
        return len(snapshot)

    def _invoke(self, key: ChannelKey, handler: Handler, args: tuple[Any, ...]) -> None:
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                if self._task_group is None:
                    if inspect.iscoroutine(result):
                        result.close()
                    raise RuntimeError("Coroutine handlers need a running client")
                self._task_group.start_soon(self._await_handler, key, result)
        except Exception as exc:
            self._report_handler_error(key, exc)

    async def _await_handler(self, key: ChannelKey, awaitable: Any) -> None:
        try:
            await awaitable
        except Exception as exc:
            self._report_handler_error(key, exc)

    def _report_handler_error(self, key: ChannelKey, exc: Exception) -> None:
        channel, name = key
        logger.exception("Handler for channel '%s' (%s) failed", channel.value, name, exc_info=exc)
        if channel is not Channel.INTERNAL_ERROR:
            self.emit(Channel.INTERNAL_ERROR, exc)
