"""
Shutdown signalling for the scheduler.

A ``ShutdownSource`` is a single-slot notification: the first ``trigger`` stores a ``ShutdownEvent`` and wakes anyone
waiting, every later ``trigger`` is dropped. Triggering never blocks, so it is safe to call from any thread, including
from a signal handler.

``SignalListener`` binds operating system signals to a callback for as long as it is active. It is used as a context
manager, and restores the previous signal handlers on exit:

.. code-block:: python

    with SignalListener(lambda signum: source.trigger(ShutdownEvent.from_signal(signum))):
        source.wait()
"""

import logging
import signal
from dataclasses import dataclass, field
from enum import Enum
from threading import RLock
from types import FrameType, TracebackType
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Type

from intervalcron.threading import CancellationToken

__all__ = ["DEFAULT_SIGNALS", "ShutdownEvent", "ShutdownReason", "ShutdownSource", "SignalListener"]

DEFAULT_SIGNALS: Tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class ShutdownReason(Enum):
    stop = "stop"
    signal = "signal"


@dataclass(frozen=True)
class ShutdownEvent:
    reason: ShutdownReason
    payload: Tuple[Any, ...] = field(default_factory=tuple)

    @classmethod
    def from_stop(cls, *payload: Any) -> "ShutdownEvent":
        return cls(reason=ShutdownReason.stop, payload=payload)

    @classmethod
    def from_signal(cls, signum: int) -> "ShutdownEvent":
        return cls(reason=ShutdownReason.signal, payload=(f"signal_received:{_signal_name(signum)}",))

    def __str__(self) -> str:
        return f"{self.reason.value}:{list(self.payload)}"


class ShutdownSource:
    """
    Single-slot, non-blocking shutdown notification.

    Args:
        cancellation_token: Token to cancel when the source is triggered. A new token is created if omitted.
    """

    def __init__(self, cancellation_token: Optional[CancellationToken] = None) -> None:
        self._cancellation_token = cancellation_token or CancellationToken()
        self._lock = RLock()
        self._event: Optional[ShutdownEvent] = None

    @property
    def cancellation_token(self) -> CancellationToken:
        return self._cancellation_token

    @property
    def is_triggered(self) -> bool:
        return self._cancellation_token.is_cancelled

    @property
    def event(self) -> Optional[ShutdownEvent]:
        with self._lock:
            return self._event

    def trigger(self, event: ShutdownEvent) -> bool:
        """
        Store a shutdown event and wake every waiter.

        Returns:
            ``True`` if this call stored the event, ``False`` if the slot was already taken and the event was dropped.
        """
        with self._lock:
            if self._event is not None:
                logging.getLogger(__name__).debug("Shutdown already requested, dropping %s", event)
                return False
            self._event = event
        self._cancellation_token.cancel()
        return True

    def wait(self, timeout: Optional[float] = None) -> Optional[ShutdownEvent]:
        """
        Block until the source is triggered or the timeout expires.

        Returns:
            The stored event, or ``None`` if the timeout expired first.
        """
        if not self._cancellation_token.wait(timeout):
            return None
        return self.event


class SignalListener:
    """
    Translate operating system signals into a callback while active.

    Only the first signal received is forwarded, any later ones are ignored until the listener is uninstalled. Python
    only allows signal handlers to be installed from the main thread of the main interpreter. If installing fails the
    listener logs a warning and stays inert, and signals are handled as they would have been without it.

    Args:
        callback: Called with the signal number of the first signal received.
        signals: Signals to listen for. Defaults to SIGINT and SIGTERM.
    """

    def __init__(self, callback: Callable[[int], None], signals: Iterable[int] = DEFAULT_SIGNALS) -> None:
        self._callback = callback
        self._signals = tuple(signals)
        self._previous: Dict[int, Any] = {}
        self._lock = RLock()
        self._received: Optional[int] = None
        self._logger = logging.getLogger(__name__)

    @property
    def installed(self) -> bool:
        return bool(self._previous)

    @property
    def received(self) -> Optional[int]:
        return self._received

    def _handler(self, signum: int, frame: Optional[FrameType]) -> None:
        with self._lock:
            if self._received is not None:
                return
            self._received = signum
        self._callback(signum)

    def install(self) -> bool:
        """
        Install handlers for the configured signals.

        Returns:
            ``True`` if the handlers were installed.
        """
        if self.installed:
            return True
        try:
            for signum in self._signals:
                self._previous[signum] = signal.signal(signum, self._handler)
        except ValueError as e:
            self.uninstall()
            self._logger.warning(f"Could not register handler for termination signals: {str(e)}")
            return False
        return True

    def uninstall(self) -> None:
        """
        Restore the signal handlers that were active before ``install``.
        """
        previous, self._previous = self._previous, {}
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)

    def __enter__(self) -> "SignalListener":
        self.install()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.uninstall()


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)
