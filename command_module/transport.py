"""
Delivery of command output to the event pipeline.

Output lines are written to the pipeline's local queue, a unix datagram
socket, framed as ``<category>:<location>:<message>``. All tasks share one
EventRateLimiter so the combined send rate never exceeds the configured
events-per-second budget.
"""

import logging
import socket
import threading
import time
from typing import Callable, Optional

from command_module.errors import ConnectError

logger = logging.getLogger(__name__)

# Queue category used for log-collector style events
LOCALFILE_MQ = '1'

DEFAULT_QUEUE_PATH = '/var/ossec/queue/sockets/queue'
DEFAULT_MAX_EPS = 100
MAX_MESSAGE_SIZE = 65536


class EventRateLimiter:
    """
    Paces sends to at most max_eps events per second across all callers.

    Callers are serialized by a lock; each acquire() reserves the next slot,
    spaced 1,000,000 / max_eps microseconds after the previous one, and
    sleeps until it arrives.
    """

    def __init__(
        self,
        max_eps: int = DEFAULT_MAX_EPS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        if max_eps < 1:
            raise ValueError(f"max_eps must be positive, got {max_eps}")

        self.max_eps = max_eps
        self.spacing_usec = 1000000 // max_eps
        self._spacing = self.spacing_usec / 1000000.0
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot = None

    def acquire(self):
        """Block until the caller may send one event."""
        with self._lock:
            now = self._clock()
            if self._next_slot is not None and self._next_slot > now:
                self._sleep(self._next_slot - now)
                now = self._next_slot
            self._next_slot = now + self._spacing


class QueueTransport:
    """Unix datagram connection to the event pipeline's local queue."""

    def __init__(self, queue_path: str = DEFAULT_QUEUE_PATH):
        self.queue_path = queue_path
        self._sock: Optional[socket.socket] = None

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self):
        """
        Open the queue socket.

        Raises:
            OSError: If the queue is not reachable
        """
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        try:
            sock.connect(self.queue_path)
        except OSError:
            sock.close()
            raise
        self._sock = sock
        logger.debug(f"Connected to queue: {self.queue_path}")

    def send(self, message: str, location: str, category: str = LOCALFILE_MQ):
        """
        Send one event.

        Raises:
            OSError: If the queue is not connected or the write fails
        """
        if self._sock is None:
            raise OSError(f"Not connected to queue: {self.queue_path}")

        payload = f"{category}:{location}:{message}".encode('utf-8', errors='replace')
        self._sock.send(payload[:MAX_MESSAGE_SIZE])

    def close(self):
        if self._sock is not None:
            self._sock.close()
            self._sock = None


def connect_with_retry(
    transport,
    attempts: int = 3,
    wait_seconds: float = 1.0,
    sleep: Callable[[float], None] = time.sleep
):
    """
    Connect a transport, retrying with a fixed backoff.

    Args:
        transport: Object with a connect() method raising OSError on failure
        attempts: Number of connection attempts
        wait_seconds: Delay between failed attempts
        sleep: Sleep function (injectable for tests)

    Raises:
        ConnectError: If every attempt failed
    """
    last_error = None

    for attempt in range(1, attempts + 1):
        try:
            transport.connect()
            return transport
        except OSError as e:
            last_error = e
            logger.debug(f"Queue connection attempt {attempt}/{attempts} failed: {e}")
            if attempt < attempts:
                sleep(wait_seconds)

    raise ConnectError(f"Can't connect to queue: {last_error}")
