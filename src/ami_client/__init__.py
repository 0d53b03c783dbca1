"""A session layer for Asterisk Manager Interface (AMI) clients.

The package keeps an AMI session alive on top of a transport connector:
reconnection, correlation of actions with their responses, a self-paced
keep-alive probe, and filtered fan-out of events.

## Example

```python
from ami_client import AmiClient, Channel, ConnectTarget

async with AmiClient(connector, {"reconnect": True, "keepAlive": True}) as client:
    client.on(Channel.EVENT, print)
    await client.connect("admin", "secret", ConnectTarget(host="127.0.0.1", port=5038))
    response = await client.action({"Action": "Ping"}, promisable=True)
```
"""

from .channels import Channel, EventBus
from .client import AmiClient
from .correlator import DEFAULT_ACTION_TIMEOUT, ActionCorrelator, PendingAction
from .exceptions import (
    ActionTimeoutError,
    AmiConnectionError,
    AmiError,
    AuthenticationError,
    NotConnectedError,
    ReconnectLimitError,
    SessionDisconnectedError,
)
from .heartbeat import HeartbeatMonitor, HeartbeatPhase
from .options import ClientOptions, OptionsStore
from .router import EventRouter
from .supervisor import ConnectionSupervisor, SessionState
from .transport import (
    Connection,
    Connector,
    ConnectTarget,
    IncomingData,
    IncomingError,
    IncomingEvent,
    IncomingResponse,
    RetryPolicy,
    TransportSignal,
)
from .types import Message

__all__ = [
    "ActionCorrelator",
    "ActionTimeoutError",
    "AmiClient",
    "AmiConnectionError",
    "AmiError",
    "AuthenticationError",
    "Channel",
    "ConnectTarget",
    "Connection",
    "ConnectionSupervisor",
    "Connector",
    "DEFAULT_ACTION_TIMEOUT",
    "EventBus",
    "EventRouter",
    "HeartbeatMonitor",
    "HeartbeatPhase",
    "IncomingData",
    "IncomingError",
    "IncomingEvent",
    "IncomingResponse",
    "ClientOptions",
    "Message",
    "NotConnectedError",
    "OptionsStore",
    "PendingAction",
    "ReconnectLimitError",
    "RetryPolicy",
    "SessionDisconnectedError",
    "SessionState",
    "TransportSignal",
]
