"""
Execution contexts handed to tasks.

A ``Context`` carries two things down from the scheduler to each task: a cancellation token and a chain of
request-scoped values, such as trace IDs. Contexts are immutable; every ``with_*`` method returns a new child context
that shares its parent's values and cancellation.

The scheduler derives one context per tick from ``background()``, and one context per task from the tick context, by
calling its ``NewContextFunc`` hook. The default hook, ``identity_context``, returns its input unchanged. A custom hook
can attach values or deadlines:

.. code-block:: python

    def traced(ctx: Context) -> Context:
        return ctx.with_value("trace_id", uuid4().hex).with_timeout(10)

    cron = Cron()
    cron.set_new_context_func(traced)
"""

from threading import Timer
from typing import Any, Callable, Optional

from intervalcron.threading import CancellationToken

__all__ = ["Context", "NewContextFunc", "background", "identity_context"]


class Context:
    def __init__(
        self,
        parent: Optional["Context"] = None,
        cancellation_token: Optional[CancellationToken] = None,
        key: Any = None,
        value: Any = None,
    ) -> None:
        self._parent = parent
        if cancellation_token is not None:
            self._cancellation_token = cancellation_token
        elif parent is not None:
            self._cancellation_token = parent.cancellation_token
        else:
            self._cancellation_token = CancellationToken()
        self._key = key
        self._value = value

    def __repr__(self) -> str:
        cls = self.__class__
        status = "cancelled" if self.is_cancelled else "active"
        return f"<{cls.__module__}.{cls.__qualname__} at {id(self):#x}: {status}>"

    @property
    def cancellation_token(self) -> CancellationToken:
        return self._cancellation_token

    @property
    def is_cancelled(self) -> bool:
        return self._cancellation_token.is_cancelled

    def cancel(self) -> None:
        """
        Cancel this context and every context derived from it.
        """
        self._cancellation_token.cancel()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the context is cancelled or the timeout expires. Returns ``True`` if cancelled.
        """
        return self._cancellation_token.wait(timeout)

    def value(self, key: Any, default: Any = None) -> Any:
        """
        Look up a value stored with ``with_value``, searching from this context up through its parents.
        """
        ctx: Optional[Context] = self
        while ctx is not None:
            if ctx._key is not None and ctx._key == key:
                return ctx._value
            ctx = ctx._parent
        return default

    def with_value(self, key: Any, value: Any) -> "Context":
        if key is None:
            raise ValueError("Context keys can not be None")
        return Context(parent=self, key=key, value=value)

    def with_cancel(self) -> "Context":
        """
        Create a child context that can be cancelled without cancelling this one.
        """
        return Context(parent=self, cancellation_token=self._cancellation_token.create_child_token())

    def with_timeout(self, seconds: float) -> "Context":
        """
        Create a child context that is cancelled automatically after the given number of seconds.
        """
        child = self.with_cancel()
        timer = Timer(seconds, child.cancel)
        timer.daemon = True
        timer.start()
        return child


NewContextFunc = Callable[[Context], Context]


def background() -> Context:
    """
    Create a new, empty root context that is never cancelled unless explicitly told to.
    """
    return Context()


def identity_context(ctx: Context) -> Context:
    return ctx
