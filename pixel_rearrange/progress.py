"""Progress messages and the bounded channel that carries them.

A run publishes a stream of messages from its worker thread to a single
consumer. Exactly one terminal message (``Done``, ``Error`` or
``Cancelled``) ends the stream. Cancellation travels the other way, out
of band, through a ``threading.Event``.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

import numpy as np

if TYPE_CHECKING:
    from pixel_rearrange.preset import Preset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Progress:
    fraction: float


@dataclass(frozen=True)
class PreviewUpdate:
    """Intermediate rendering of the current best candidate."""

    image: np.ndarray


@dataclass(frozen=True)
class AssignmentUpdate:
    """Current best candidate. Not a usable final result."""

    assignment: np.ndarray


@dataclass(frozen=True)
class Done:
    preset: Preset


@dataclass(frozen=True)
class Error:
    message: str


@dataclass(frozen=True)
class Cancelled:
    pass


ProgressMsg = Union[Progress, PreviewUpdate, AssignmentUpdate, Done, Error, Cancelled]

TERMINAL_TYPES = (Done, Error, Cancelled)


def is_terminal(msg: ProgressMsg) -> bool:
    return isinstance(msg, TERMINAL_TYPES)


class CancelFlag:
    """Cooperative cancellation flag shared by a controller and a worker."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()


class ProgressChannel:
    """Bounded single-producer, single-consumer message stream.

    Intermediate messages wait at most *send_timeout* seconds for room and
    are dropped if the consumer is not keeping up, so a stalled consumer
    slows the producer down without blocking it forever. The terminal
    message never waits: when the queue is full the oldest pending message
    is discarded to make room.
    """

    def __init__(self, maxsize: int = 16, send_timeout: float = 0.05) -> None:
        if maxsize < 1:
            raise ValueError(f"maxsize must be >= 1, got {maxsize}")
        self._queue: queue.Queue[ProgressMsg] = queue.Queue(maxsize=maxsize)
        self._send_timeout = send_timeout
        self._closed = threading.Event()
        self._terminal: ProgressMsg | None = None
        self._terminal_received = False
        self._last_fraction = 0.0
        self.dropped = 0

    # -- producer side -------------------------------------------------

    @property
    def terminal_sent(self) -> bool:
        return self._terminal is not None

    @property
    def terminal(self) -> ProgressMsg | None:
        """The terminal message once sent, whether or not it was consumed."""
        return self._terminal

    def send(self, msg: ProgressMsg) -> bool:
        """Publish *msg*; return False if it was discarded."""
        if self._terminal is not None:
            raise RuntimeError(f"message {type(msg).__name__} sent after the terminal message")
        if is_terminal(msg):
            return self._send_terminal(msg)

        if isinstance(msg, Progress):
            fraction = min(1.0, max(self._last_fraction, float(msg.fraction)))
            self._last_fraction = fraction
            msg = Progress(fraction)

        if self._closed.is_set():
            return False
        try:
            self._queue.put(msg, timeout=self._send_timeout)
        except queue.Full:
            self.dropped += 1
            logger.debug("Channel full, dropped %s", type(msg).__name__)
            return False
        return True

    def _send_terminal(self, msg: ProgressMsg) -> bool:
        self._terminal = msg
        if self._closed.is_set():
            return False
        while True:
            try:
                self._queue.put_nowait(msg)
                return True
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    # -- consumer side -------------------------------------------------

    def recv(self, timeout: float | None = None) -> ProgressMsg:
        """Block for the next message; raises ``queue.Empty`` on timeout."""
        msg = self._queue.get(timeout=timeout)
        if is_terminal(msg):
            self._terminal_received = True
        return msg

    def close(self) -> None:
        """Stop consuming; pending and future messages are discarded."""
        self._closed.set()
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __iter__(self) -> Iterator[ProgressMsg]:
        """Yield messages up to and including the terminal one."""
        while not self._terminal_received:
            yield self.recv()
