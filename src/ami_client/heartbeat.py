"""Self-paced keep-alive probing of a live connection.

The monitor alternates between two phases. While AWAITING_SCHEDULE a timer runs
for ``keep_alive_delay``; when it fires a ``Ping`` carrying a fresh
reserved-prefix id is written and the monitor moves to AWAITING_ACK. Only the
response to that probe schedules the next one, so a peer that stops answering
stops being probed. Dead peers are detected by the transport closing.
"""

import logging
from enum import Enum

import anyio
import anyio.abc

from ami_client.channels import Channel, EventBus
from ami_client.options import OptionsStore
from ami_client.transport import Connection
from ami_client.types import ACTION_FIELD, ACTION_ID_FIELD, KEEP_ALIVE_ACTION, Message, new_action_id

logger = logging.getLogger(__name__)


class HeartbeatPhase(str, Enum):
    IDLE = "idle"
    AWAITING_SCHEDULE = "awaiting_schedule"
    AWAITING_ACK = "awaiting_ack"


class HeartbeatMonitor:
    def __init__(self, options: OptionsStore, bus: EventBus) -> None:
        self._options = options
        self._bus = bus
        self._phase = HeartbeatPhase.IDLE
        self._connection: Connection | None = None
        self._timer: anyio.CancelScope | None = None
        self._probe_id: str | None = None
        self._task_group: anyio.abc.TaskGroup | None = None

    def start(self, task_group: anyio.abc.TaskGroup) -> None:
        self._task_group = task_group

    @property
    def phase(self) -> HeartbeatPhase:
        return self._phase

    @property
    def probe_id(self) -> str | None:
        """Correlation id of the last probe written."""
        return self._probe_id

    def begin(self, connection: Connection) -> None:
        """Start the cycle on a freshly established connection."""
        self.stop()
        self._connection = connection
        if self._options.current.keep_alive:
            self._schedule()

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._connection = None
        self._phase = HeartbeatPhase.IDLE

    def consume(self, response: Message) -> bool:
        """Absorb the acknowledgement of the last probe.

        Returns True when ``response`` answers a probe and must not be published.
        """
        if self._probe_id is None or response.get(ACTION_ID_FIELD) != self._probe_id:
            return False
        logger.debug("Keep-alive probe %s acknowledged", self._probe_id)
        if self._phase is HeartbeatPhase.AWAITING_ACK:
            self._schedule()
        return True

    def _schedule(self) -> None:
        if self._task_group is None:
            raise RuntimeError("Heartbeat needs a running client")
        self._phase = HeartbeatPhase.AWAITING_SCHEDULE
        self._timer = anyio.CancelScope()
        self._task_group.start_soon(self._fire, self._timer)

    async def _fire(self, timer: anyio.CancelScope) -> None:
        with timer:
            await anyio.sleep(self._options.current.keep_alive_delay)
            if timer is not self._timer:
                return
            self._timer = None
            connection = self._connection
            if not self._options.current.keep_alive or connection is None or not connection.is_connected:
                self._phase = HeartbeatPhase.IDLE
                return

            self._probe_id = new_action_id()
            self._phase = HeartbeatPhase.AWAITING_ACK
            try:
                connection.write({ACTION_FIELD: KEEP_ALIVE_ACTION, ACTION_ID_FIELD: self._probe_id})
            except Exception as exc:
                logger.warning("Keep-alive probe could not be written: %s", exc)
                self._phase = HeartbeatPhase.IDLE
                self._bus.emit(Channel.ERROR, exc)
