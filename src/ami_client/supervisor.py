"""Connection lifecycle of an AMI session.

The supervisor is the only owner of the live connection. It runs one receive
loop per connection and, when the peer closes a connection the user did not ask
to close, reconnects through the connector if the options allow it.
"""

import logging
from enum import Enum

import anyio
import anyio.abc

from ami_client.channels import Channel, EventBus
from ami_client.correlator import ActionCorrelator
from ami_client.exceptions import AmiConnectionError, SessionDisconnectedError
from ami_client.heartbeat import HeartbeatMonitor
from ami_client.options import OptionsStore
from ami_client.router import EventRouter
from ami_client.transport import (
    Connection,
    Connector,
    ConnectTarget,
    IncomingData,
    IncomingError,
    IncomingEvent,
    IncomingResponse,
    TransportSignal,
)
from ami_client.types import ACTION_ID_FIELD, Message

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionSupervisor:
    def __init__(
        self,
        connector: Connector,
        options: OptionsStore,
        bus: EventBus,
        correlator: ActionCorrelator,
        heartbeat: HeartbeatMonitor,
        router: EventRouter,
    ) -> None:
        self._connector = connector
        self._options = options
        self._bus = bus
        self._correlator = correlator
        self._heartbeat = heartbeat
        self._router = router

        self._state = SessionState.DISCONNECTED
        self._connection: Connection | None = None
        self._credentials: tuple[str, str, ConnectTarget] | None = None
        self._user_initiated_disconnect = False
        self._connect_scope: anyio.CancelScope | None = None
        self._reconnect_scope: anyio.CancelScope | None = None
        self._task_group: anyio.abc.TaskGroup | None = None

    def start(self, task_group: anyio.abc.TaskGroup) -> None:
        self._task_group = task_group

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connection(self) -> Connection | None:
        return self._connection

    @property
    def user_initiated_disconnect(self) -> bool:
        return self._user_initiated_disconnect

    async def connect(self, user: str, secret: str, target: ConnectTarget) -> Connection:
        """Open a connection and start serving it.

        Raises:
            AmiConnectionError: the connector failed to connect or log in
            RuntimeError: the session already has a live connection or attempt
            SessionDisconnectedError: ``disconnect`` was called before the attempt finished
        """
        if self._task_group is None:
            raise RuntimeError("AmiClient must be used as an async context manager")
        if self._connection is not None:
            raise RuntimeError("Session is already connected; call 'disconnect' first")
        if self._connect_scope is not None:
            raise RuntimeError("A connection attempt is already in progress")
        if self._reconnect_scope is not None:
            self._reconnect_scope.cancel()
            self._reconnect_scope = None

        self._credentials = (user, secret, target)
        self._state = SessionState.CONNECTING
        logger.info("Connecting to %s as %s", target, user)
        connection: Connection | None = None
        scope = self._connect_scope = anyio.CancelScope()
        try:
            with scope:
                connection = await self._open(user, secret, target)
        except BaseException:
            self._state = SessionState.DISCONNECTED
            raise
        finally:
            if self._connect_scope is scope:
                self._connect_scope = None

        # disconnect() ran while the connector was still working
        if connection is None or scope.cancel_called:
            if connection is not None:
                await connection.aclose()
            if self._connection is None and self._connect_scope is None:
                self._state = SessionState.DISCONNECTED
            raise SessionDisconnectedError("Connection attempt cancelled by disconnect")

        self._user_initiated_disconnect = False
        self._attach(connection)
        self._bus.emit(Channel.CONNECT, connection)
        return connection

    async def disconnect(self) -> None:
        """Close the session on the user's behalf.

        Always publishes ``disconnect``, even when no connection was open.
        """
        self._user_initiated_disconnect = True
        self._heartbeat.stop()
        if self._connect_scope is not None:
            self._connect_scope.cancel()
            self._connect_scope = None
        if self._reconnect_scope is not None:
            self._reconnect_scope.cancel()
            self._reconnect_scope = None

        connection, self._connection = self._connection, None
        self._state = SessionState.DISCONNECTED
        self._correlator.fail_all(SessionDisconnectedError("Session disconnected by the user"))
        if connection is not None:
            logger.info("Disconnecting")
            await connection.aclose()
        self._bus.emit(Channel.DISCONNECT)

    async def _open(self, user: str, secret: str, target: ConnectTarget) -> Connection:
        try:
            return await self._connector.connect(user, secret, target, self._options.retry_policy())
        except OSError as exc:
            raise AmiConnectionError(str(exc)) from exc

    def _attach(self, connection: Connection) -> None:
        assert self._task_group is not None
        self._connection = connection
        self._state = SessionState.CONNECTED
        logger.info("Connected")
        self._task_group.start_soon(self._receive_loop, connection)
        self._heartbeat.begin(connection)

    async def _receive_loop(self, connection: Connection) -> None:
        try:
            async with connection.signals:
                async for signal in connection.signals:
                    if connection is not self._connection:
                        break
                    self._dispatch(signal)
        except anyio.ClosedResourceError:
            logger.debug("Signal stream closed locally")
        except Exception as exc:
            logger.exception(f"Unhandled exception in receive loop: {exc}")
        self._handle_close(connection)

    def _dispatch(self, signal: TransportSignal) -> None:
        if isinstance(signal, IncomingEvent):
            self._router.route_event(signal.message)
        elif isinstance(signal, IncomingResponse):
            self._handle_response(signal.message)
        elif isinstance(signal, IncomingData):
            self._bus.emit(Channel.DATA, signal.chunk)
        elif isinstance(signal, IncomingError):
            logger.warning("Transport error: %s", signal.error)
            self._bus.emit(Channel.ERROR, signal.error)
        else:
            logger.warning("Ignoring unknown transport signal: %r", signal)

    def _handle_response(self, response: Message) -> None:
        if self._heartbeat.consume(response):
            return
        action_id = response.get(ACTION_ID_FIELD)
        prepared = self._router.prepare_response(response)
        self._correlator.resolve(action_id, prepared)
        self._router.publish_response(prepared, action_id)

    def _handle_close(self, connection: Connection) -> None:
        if connection is not self._connection:
            return

        self._connection = None
        self._state = SessionState.DISCONNECTED
        self._heartbeat.stop()
        self._correlator.fail_all(SessionDisconnectedError("Connection closed by the peer"))
        logger.info("Connection closed by the peer")
        self._bus.emit(Channel.DISCONNECT)

        if self._options.current.reconnect and not self._user_initiated_disconnect:
            assert self._task_group is not None
            self._reconnect_scope = anyio.CancelScope()
            self._task_group.start_soon(self._reconnect, self._reconnect_scope)

    async def _reconnect(self, scope: anyio.CancelScope) -> None:
        assert self._credentials is not None
        user, secret, target = self._credentials
        with scope:
            self._state = SessionState.CONNECTING
            logger.info("Reconnecting to %s", target)
            try:
                connection = await self._open(user, secret, target)
            except AmiConnectionError as exc:
                self._end_reconnect(scope)
                logger.error("Reconnection to %s failed: %s", target, exc)
                self._bus.emit(Channel.ERROR, exc)
                return
            except Exception as exc:
                self._end_reconnect(scope)
                logger.exception(f"Unexpected error while reconnecting to {target}: {exc}")
                self._bus.emit(Channel.ERROR, exc)
                return

            if self._reconnect_scope is scope:
                self._reconnect_scope = None
            if self._user_initiated_disconnect or self._connection is not None:
                await connection.aclose()
                return
            self._attach(connection)
            self._bus.emit(Channel.RECONNECTION, connection)
            self._bus.emit(Channel.CONNECT, connection)

    def _end_reconnect(self, scope: anyio.CancelScope) -> None:
        if self._reconnect_scope is scope:
            self._reconnect_scope = None
        if self._connection is None:
            self._state = SessionState.DISCONNECTED
