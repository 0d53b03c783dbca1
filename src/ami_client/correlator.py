"""Correlation of outgoing actions with the responses that answer them."""

import logging
from collections.abc import Generator
from typing import Any, cast

import anyio
import anyio.abc

from ami_client.channels import Channel, EventBus
from ami_client.exceptions import ActionTimeoutError, NotConnectedError, SessionDisconnectedError
from ami_client.transport import Connection
from ami_client.types import ACTION_ID_FIELD, Message, new_action_id

logger = logging.getLogger(__name__)

DEFAULT_ACTION_TIMEOUT = 10.0
"""Seconds a promise-based action may wait for its response."""


class PendingAction:
    """Single-use completion handle of a promise-based action.

    Await the instance (or ``wait()``) to get the response. Exactly one of
    ``resolve``/``reject`` takes effect; later calls return False.
    """

    def __init__(self, action_id: str) -> None:
        self.action_id = action_id
        self.timer = anyio.CancelScope()
        self._settled = anyio.Event()
        self._response: Message | None = None
        self._error: Exception | None = None

    @property
    def settled(self) -> bool:
        return self._settled.is_set()

    def resolve(self, response: Message) -> bool:
        if self.settled:
            return False
        self._response = response
        self._settled.set()
        return True

    def reject(self, error: Exception) -> bool:
        if self.settled:
            return False
        self._error = error
        self._settled.set()
        return True

    async def wait(self) -> Message:
        await self._settled.wait()
        if self._error is not None:
            raise self._error
        return cast(Message, self._response)

    def __await__(self) -> Generator[Any, None, Message]:
        return self.wait().__await__()

    def __repr__(self) -> str:
        return f"PendingAction(action_id={self.action_id!r}, settled={self.settled})"


class ActionCorrelator:
    """Sends actions and keeps the arena of actions waiting for a response.

    Responses are matched purely by ``ActionID``; two promise-based actions may
    settle in any order.
    """

    def __init__(self, bus: EventBus, timeout: float = DEFAULT_ACTION_TIMEOUT) -> None:
        self._bus = bus
        self._timeout = timeout
        self._pending: dict[str, PendingAction] = {}
        self._last_action: Message | None = None
        self._task_group: anyio.abc.TaskGroup | None = None

    def start(self, task_group: anyio.abc.TaskGroup) -> None:
        self._task_group = task_group

    def stop(self) -> None:
        self._task_group = None

    @property
    def last_action(self) -> Message | None:
        return self._last_action

    @property
    def pending_action_ids(self) -> list[str]:
        return list(self._pending)

    def send(self, connection: Connection | None, action: Message, promisable: bool = False) -> PendingAction | None:
        """Write ``action`` to ``connection``.

        An ``ActionID`` is generated into ``action`` when it has none. With
        ``promisable`` the returned ``PendingAction`` settles with the matching
        response, or fails with ``ActionTimeoutError`` or
        ``SessionDisconnectedError``.

        Raises:
            NotConnectedError: there is no live connection; nothing is written
        """
        if connection is None or not connection.is_connected:
            raise NotConnectedError("Call 'connect' method before.")

        if not action.get(ACTION_ID_FIELD):
            action[ACTION_ID_FIELD] = new_action_id()
        action_id = str(action[ACTION_ID_FIELD])

        pending: PendingAction | None = None
        if promisable:
            if self._task_group is None:
                raise RuntimeError("Promise-based actions need a running client")
            if action_id in self._pending:
                raise ValueError(f"Action {action_id} is already waiting for a response")
            pending = PendingAction(action_id)
            self._pending[action_id] = pending
            self._task_group.start_soon(self._expire, pending)

        try:
            connection.write(action)
        except Exception:
            if pending is not None:
                self._discard(pending)
            raise
        self._last_action = action
        self._bus.emit(Channel.ACTION, action)
        return pending

    def resolve(self, action_id: Any, response: Message) -> bool:
        """Settle the pending action ``action_id`` with ``response``, if any."""
        if action_id is None:
            return False
        pending = self._pending.pop(str(action_id), None)
        if pending is None:
            return False
        pending.timer.cancel()
        logger.debug("Action %s resolved", pending.action_id)
        return pending.resolve(response)

    def fail_all(self, error: SessionDisconnectedError) -> int:
        """Reject every pending action with ``error`` and clear the arena."""
        pending_actions = list(self._pending.values())
        self._pending.clear()
        for pending in pending_actions:
            pending.timer.cancel()
            pending.reject(error)
        if pending_actions:
            logger.debug("Rejected %d pending actions: %s", len(pending_actions), error)
        return len(pending_actions)

    async def _expire(self, pending: PendingAction) -> None:
        with pending.timer:
            await anyio.sleep(self._timeout)
            if self._pending.get(pending.action_id) is pending:
                del self._pending[pending.action_id]
                logger.debug("Action %s timed out after %s seconds", pending.action_id, self._timeout)
                pending.reject(ActionTimeoutError(pending.action_id, self._timeout))

    def _discard(self, pending: PendingAction) -> None:
        if self._pending.get(pending.action_id) is pending:
            del self._pending[pending.action_id]
        pending.timer.cancel()
