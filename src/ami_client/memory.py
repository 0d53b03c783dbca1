"""In-memory AMI peer and connector for exercising sessions without a socket."""

from __future__ import annotations

import logging
import math

import anyio
import anyio.lowlevel
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from ami_client.exceptions import AuthenticationError, ReconnectLimitError
from ami_client.transport import (
    ConnectTarget,
    IncomingData,
    IncomingError,
    IncomingEvent,
    IncomingResponse,
    RetryPolicy,
    TransportSignal,
)
from ami_client.types import ACTION_FIELD, ACTION_ID_FIELD, EVENT_FIELD, Message, capture_time

logger = logging.getLogger(__name__)


class MemoryConnection:
    """Client end of an in-memory AMI connection."""

    def __init__(self, server: MemoryAmiServer, user: str) -> None:
        self.user = user
        self._server = server
        self._send_stream: MemoryObjectSendStream[TransportSignal]
        self._receive_stream: MemoryObjectReceiveStream[TransportSignal]
        self._send_stream, self._receive_stream = anyio.create_memory_object_stream[TransportSignal](math.inf)
        self._connected = True
        self._last_event: Message | None = None
        self._last_response: Message | None = None

    @property
    def signals(self) -> MemoryObjectReceiveStream[TransportSignal]:
        return self._receive_stream

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def last_event(self) -> Message | None:
        return self._last_event

    @property
    def last_response(self) -> Message | None:
        return self._last_response

    def write(self, message: Message) -> None:
        if not self._connected:
            raise anyio.ClosedResourceError("Connection is closed")
        self._server.handle_action(self, dict(message))

    async def aclose(self) -> None:
        self.drop()
        await anyio.lowlevel.checkpoint()

    def deliver(self, payload: Message | bytes | Exception) -> None:
        """Push a message, raw chunk or transport error to the client."""
        if not self._connected:
            return
        signal: TransportSignal
        if isinstance(payload, Exception):
            signal = IncomingError(payload)
        elif isinstance(payload, bytes | bytearray):
            signal = IncomingData(bytes(payload))
        elif EVENT_FIELD in payload:
            self._last_event = dict(payload)
            signal = IncomingEvent(dict(payload))
        else:
            self._last_response = dict(payload)
            signal = IncomingResponse(dict(payload))
        try:
            self._send_stream.send_nowait(signal)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug("Client end went away, dropping connection")
            self.drop()

    def drop(self) -> None:
        """Close the connection; the client sees the end of its signal stream."""
        if not self._connected:
            return
        self._connected = False
        self._send_stream.close()
        self._server.forget(self)


class MemoryAmiServer:
    """A scripted AMI peer.

    ``Ping`` is answered with ``Pong`` and ``Logoff`` with ``Goodbye``; any other
    action gets an error response. With ``auto_respond`` off, actions are only
    recorded and the test answers them with ``reply``.
    """

    def __init__(self, username: str = "test", secret: str = "test", auto_respond: bool = True) -> None:
        self.username = username
        self.secret = secret
        self.auto_respond = auto_respond
        self.listening = False
        self.actions: list[Message] = []
        self._connections: list[MemoryConnection] = []
        self._senders: dict[str, MemoryConnection] = {}

    @property
    def connections(self) -> list[MemoryConnection]:
        return list(self._connections)

    def listen(self) -> None:
        self.listening = True

    def close(self) -> None:
        """Stop listening and drop every open connection."""
        self.listening = False
        for connection in list(self._connections):
            connection.drop()

    def accept(self, user: str, secret: str) -> MemoryConnection:
        if user != self.username or secret != self.secret:
            raise AuthenticationError("AMI message: Authentication failed")
        connection = MemoryConnection(self, user)
        self._connections.append(connection)
        return connection

    def forget(self, connection: MemoryConnection) -> None:
        if connection in self._connections:
            self._connections.remove(connection)

    def broadcast(self, payload: Message | bytes | Exception) -> None:
        for connection in list(self._connections):
            connection.deliver(payload)

    def handle_action(self, connection: MemoryConnection, action: Message) -> None:
        self.actions.append(action)
        action_id = action.get(ACTION_ID_FIELD)
        if action_id is not None:
            self._senders[str(action_id)] = connection
        if self.auto_respond:
            self.reply(action)

    def reply(self, action: Message, response: Message | None = None) -> None:
        """Answer ``action`` on the connection that sent it."""
        if response is None:
            response = self.default_response(action)
        response = dict(response)
        action_id = action.get(ACTION_ID_FIELD)
        if action_id is not None:
            response[ACTION_ID_FIELD] = action_id
        connection = self._senders.pop(str(action_id), None) if action_id is not None else None
        if connection is None:
            self.broadcast(response)
        else:
            connection.deliver(response)

    def default_response(self, action: Message) -> Message:
        name = str(action.get(ACTION_FIELD, "")).lower()
        if name == "ping":
            return {"Response": "Success", "Ping": "Pong", "Timestamp": f"{capture_time() / 1000:.6f}"}
        if name == "logoff":
            return {"Response": "Goodbye", "Message": "Thanks for all the fish."}
        return {"Response": "Error", "Message": "Invalid/unknown command"}


class MemoryConnector:
    """Connector to a ``MemoryAmiServer`` honoring the retry policy.

    While the server is not listening each attempt is refused; with
    ``policy.reconnect`` the connector waits ``attempts_delay`` and tries again
    until ``max_attempts_count`` attempts were made.
    """

    def __init__(self, server: MemoryAmiServer) -> None:
        self.server = server
        self.attempts = 0

    async def connect(self, user: str, secret: str, target: ConnectTarget, policy: RetryPolicy) -> MemoryConnection:
        attempt = 0
        while True:
            attempt += 1
            self.attempts += 1
            await anyio.lowlevel.checkpoint()
            if self.server.listening:
                return self.server.accept(user, secret)
            if not policy.reconnect:
                raise ConnectionRefusedError(f"connect ECONNREFUSED {target}")
            if policy.max_attempts_count is not None and attempt >= policy.max_attempts_count:
                raise ReconnectLimitError("Reconnection error after max count attempts.")
            logger.debug("Connection to %s refused, attempt %d", target, attempt)
            await anyio.sleep(policy.attempts_delay)
