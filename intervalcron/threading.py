import logging
from threading import Condition, RLock
from time import time
from typing import Optional


class CancellationToken:
    """
    Abstraction for a hierarchical cancellation token.

    Using this you can create hierarchies of cancellation tokens, to cancel a part of the work without cancelling
    everything. Use ``create_child_token`` to create a token that will be cancelled if the parent is cancelled, but can
    be canceled alone without affecting the parent token.

    The underlying condition is backed by a reentrant lock, so a token can be cancelled from a signal handler that
    interrupts a thread currently waiting on the same token.
    """

    def __init__(self, condition: Optional[Condition] = None) -> None:
        self._cv: Condition = condition or Condition(RLock())
        self._is_cancelled_int: bool = False
        self._parent: Optional["CancellationToken"] = None

    def __repr__(self) -> str:
        cls = self.__class__
        status = "cancelled" if self.is_cancelled else "not cancelled"
        return f"<{cls.__module__}.{cls.__qualname__} at {id(self):#x}: {status}>"

    @property
    def is_cancelled(self) -> bool:
        """
        ``True`` if the token has been cancelled, or if some parent token has been cancelled.
        """
        return self._is_cancelled_int or self._parent is not None and self._parent.is_cancelled

    def cancel(self) -> None:
        """
        Cancel the token, notifying any waiting threads.
        """
        # No point in cancelling if a parent token is already canceled.
        if self.is_cancelled:
            return

        with self._cv:
            self._is_cancelled_int = True
            self._cv.notify_all()
        logging.getLogger(__name__).debug("Cancelled %r", self)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the token is cancelled, or until the timeout expires.

        Args:
            timeout: Seconds to wait. Waits forever if ``None``.

        Returns:
            ``True`` if the token was cancelled, ``False`` if the timeout expired first.
        """
        endtime = None
        if timeout is not None:
            endtime = time() + timeout

        with self._cv:
            while not self.is_cancelled:
                if endtime is not None:
                    remaining_time = endtime - time()
                    if remaining_time <= 0.0:
                        return False
                    self._cv.wait(remaining_time)
                else:
                    self._cv.wait()
        return True

    def create_child_token(self) -> "CancellationToken":
        child = CancellationToken(self._cv)
        child._parent = self
        return child
