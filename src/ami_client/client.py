from __future__ import annotations

from collections.abc import Mapping
from types import TracebackType
from typing import Any, Literal, overload

import anyio
import anyio.abc
from typing_extensions import Self

from ami_client.channels import Channel, EventBus, Handler
from ami_client.correlator import DEFAULT_ACTION_TIMEOUT, ActionCorrelator, PendingAction
from ami_client.heartbeat import HeartbeatMonitor
from ami_client.options import ClientOptions, OptionsStore
from ami_client.router import EventRouter
from ami_client.supervisor import ConnectionSupervisor, SessionState
from ami_client.transport import Connection, Connector, ConnectTarget
from ami_client.types import Message

_UNSET: Any = object()


class AmiClient:
    """
    An AMI session on top of a transport connector.

    The client is an async context manager: entering it starts the task group
    that runs receive loops, action timers, the heartbeat and reconnections;
    leaving it disconnects and cancels them.

    Example:
        async with AmiClient(connector, {"reconnect": True}) as client:
            await client.connect("admin", "secret", ConnectTarget(host="pbx"))
            response = await client.action({"Action": "Ping"}, promisable=True)
    """

    def __init__(
        self,
        connector: Connector,
        options: ClientOptions | Mapping[str, Any] | None = None,
        action_timeout: float = DEFAULT_ACTION_TIMEOUT,
    ) -> None:
        self._options = OptionsStore(options)
        self._bus = EventBus()
        self._correlator = ActionCorrelator(self._bus, timeout=action_timeout)
        self._heartbeat = HeartbeatMonitor(self._options, self._bus)
        self._router = EventRouter(self._options, self._bus)
        self._supervisor = ConnectionSupervisor(
            connector,
            self._options,
            self._bus,
            self._correlator,
            self._heartbeat,
            self._router,
        )
        self._task_group: anyio.abc.TaskGroup | None = None

    async def __aenter__(self) -> Self:
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        self._bus.start(self._task_group)
        self._correlator.start(self._task_group)
        self._heartbeat.start(self._task_group)
        self._supervisor.start(self._task_group)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        assert self._task_group is not None
        task_group, self._task_group = self._task_group, None
        try:
            if self._supervisor.connection is not None or self._supervisor.state is not SessionState.DISCONNECTED:
                with anyio.CancelScope(shield=True):
                    await self._supervisor.disconnect()
        finally:
            # Leaving the client must not wait for timers or the heartbeat.
            task_group.cancel_scope.cancel()
            result = await task_group.__aexit__(exc_type, exc_val, exc_tb)
            self._bus.stop()
            self._correlator.stop()
        return result

    @property
    def options_store(self) -> OptionsStore:
        return self._options

    @overload
    def options(self) -> dict[str, Any]: ...

    @overload
    def options(self, new_options: Mapping[str, Any]) -> None: ...

    def options(self, new_options: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        """Return all options, or merge ``new_options`` into them."""
        if new_options is None:
            return self._options.as_dict()
        self._options.set_all(new_options)
        return None

    def option(self, name: str, value: Any = _UNSET) -> Any:
        """Return the option ``name``, or set it and report whether it exists."""
        if value is _UNSET:
            return self._options.get(name)
        return self._options.set(name, value)

    @property
    def state(self) -> SessionState:
        return self._supervisor.state

    @property
    def connection(self) -> Connection | None:
        return self._supervisor.connection

    @property
    def is_connected(self) -> bool:
        connection = self._supervisor.connection
        return connection is not None and connection.is_connected

    @property
    def last_event(self) -> Message | None:
        return self._router.last_event

    @property
    def last_response(self) -> Message | None:
        return self._router.last_response

    @property
    def last_action(self) -> Message | None:
        return self._correlator.last_action

    @property
    def pending_action_ids(self) -> list[str]:
        return self._correlator.pending_action_ids

    async def connect(
        self,
        user: str,
        secret: str,
        target: ConnectTarget | Mapping[str, Any] | None = None,
    ) -> Connection:
        if target is None:
            target = ConnectTarget()
        elif not isinstance(target, ConnectTarget):
            target = ConnectTarget.model_validate(target)
        return await self._supervisor.connect(user, secret, target)

    async def disconnect(self) -> None:
        await self._supervisor.disconnect()

    @overload
    def action(self, message: Message, promisable: Literal[False] = False) -> None: ...

    @overload
    def action(self, message: Message, promisable: Literal[True]) -> PendingAction: ...

    @overload
    def action(self, message: Message, promisable: bool) -> PendingAction | None: ...

    def action(self, message: Message, promisable: bool = False) -> PendingAction | None:
        """
        Sends an action.

        ``message`` gets a generated ActionID when it has none. With
        ``promisable`` the returned ``PendingAction`` can be awaited for the
        matching response.

        Raises:
            NotConnectedError: no live connection; raised before anything is sent
        """
        return self._correlator.send(self._supervisor.connection, message, promisable)

    def write(self, message: Message, promisable: bool = False) -> PendingAction | None:
        return self.action(message, promisable)

    def send(self, message: Message, promisable: bool = False) -> PendingAction | None:
        return self.action(message, promisable)

    def on(self, channel: Channel | str, handler: Handler, *, name: str | None = None) -> Handler:
        return self._bus.on(channel, handler, name=name)

    def once(self, channel: Channel | str, handler: Handler, *, name: str | None = None) -> Handler:
        return self._bus.once(channel, handler, name=name)

    def off(self, channel: Channel | str, handler: Handler, *, name: str | None = None) -> bool:
        return self._bus.off(channel, handler, name=name)
