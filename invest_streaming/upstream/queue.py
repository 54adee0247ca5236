"""
Outbound command queue for the streaming socket.
"""
import json
from collections import deque
from functools import partial
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from invest_streaming.models import ConnectionState
from invest_streaming.utils.logging import get_logger

logger = get_logger("upstream.queue")

Command = Dict[str, Any]


class OutboundQueue:
    """
    FIFO of JSON commands, sent one at a time while the socket is open.

    The next command is only handed to the transport after the previous
    send completed. Commands wait here while the socket is connecting or
    gone; ``replace()`` swaps the backlog wholesale on reconnect.
    """

    def __init__(self, on_idle: Optional[Callable[[], None]] = None):
        self._pending: Deque[Command] = deque()
        self._transport = None
        self._in_flight = False
        self._on_idle = on_idle

        # Stats
        self.sent_count = 0
        self.failed_count = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def busy(self) -> bool:
        """True while anything is queued or being written."""
        return self._in_flight or bool(self._pending)

    def attach(self, transport) -> None:
        """Point the queue at a new socket. Completions from older ones are ignored."""
        self._transport = transport
        self._in_flight = False

    def detach(self) -> None:
        self._transport = None
        self._in_flight = False

    def enqueue(self, command: Command) -> None:
        """Append a command and try to send."""
        self._pending.append(command)
        logger.debug(f"Queued {command.get('event')} ({len(self._pending)} pending)")
        self.drain()

    def replace(self, commands: Iterable[Command]) -> None:
        """Discard the backlog and queue ``commands`` in its place."""
        dropped = len(self._pending)
        self._pending.clear()
        self._pending.extend(commands)
        if dropped:
            logger.debug(f"Dropped {dropped} stale commands")

    def clear(self) -> None:
        self._pending.clear()

    def drain(self) -> None:
        """Send the head command if the socket is open and nothing is in flight."""
        transport = self._transport
        if transport is None or transport.state is not ConnectionState.OPEN:
            return
        if self._in_flight:
            return
        if not self._pending:
            if self._on_idle is not None:
                self._on_idle()
            return

        command = self._pending.popleft()
        self._in_flight = True
        transport.send(json.dumps(command), partial(self._sent, transport, command))

    def _sent(self, transport, command: Command, error: Optional[BaseException]) -> None:
        if transport is not self._transport:
            return
        self._in_flight = False
        if error is not None:
            self.failed_count += 1
            logger.warning(f"Failed to send {command.get('event')}: {error!r}")
        else:
            self.sent_count += 1
            logger.debug(f"Sent {command.get('event')}")
        self.drain()

    def snapshot(self) -> List[Command]:
        """Pending commands, head first."""
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)
