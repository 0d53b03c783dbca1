"""Transport contract the session layer is built on.

A connector opens a socket, performs the AMI login and hands back a
``Connection``. The connection decodes the wire protocol into messages and
publishes them on ``signals``; the end of that stream is the ``close`` signal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from anyio.streams.memory import MemoryObjectReceiveStream
from pydantic import BaseModel, Field

from ami_client.types import Message


class ConnectTarget(BaseModel):
    """Where a connector should open its socket."""

    host: str = "127.0.0.1"
    port: int = Field(default=5038, ge=0, le=65535)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class RetryPolicy(BaseModel):
    """Retry bounds applied by a connector while establishing a connection."""

    reconnect: bool = False
    """Keep retrying refused connections instead of failing on the first one."""

    max_attempts_count: int | None = Field(default=30, ge=1)
    """Upper bound on attempts when retrying. None means unlimited."""

    attempts_delay: float = Field(default=1.0, ge=0)
    """Pause between two attempts, in seconds."""


@dataclass(frozen=True)
class IncomingEvent:
    message: Message


@dataclass(frozen=True)
class IncomingResponse:
    message: Message


@dataclass(frozen=True)
class IncomingData:
    chunk: bytes


@dataclass(frozen=True)
class IncomingError:
    error: Exception


TransportSignal = IncomingEvent | IncomingResponse | IncomingData | IncomingError


class Connection(Protocol):
    """A live, authenticated transport session."""

    @property
    def signals(self) -> MemoryObjectReceiveStream[TransportSignal]: ...

    @property
    def is_connected(self) -> bool: ...

    @property
    def last_event(self) -> Message | None: ...

    @property
    def last_response(self) -> Message | None: ...

    def write(self, message: Message) -> None:
        """Encode and queue ``message`` for transmission."""
        ...

    async def aclose(self) -> None: ...


class Connector(Protocol):
    """Opens authenticated connections, retrying according to ``policy``."""

    async def connect(
        self,
        user: str,
        secret: str,
        target: ConnectTarget,
        policy: RetryPolicy,
    ) -> Connection: ...
