"""
Fire-and-forget execution of tasks behind an isolation boundary.

Every task launched by ``IsolatedTaskRunner`` gets its own thread. Whatever the task does, whether it returns a failure
value or raises, is converted into a log line, and never reaches the scheduler or any other task.
"""

import traceback
from dataclasses import dataclass
from threading import Thread
from types import TracebackType
from typing import Any, Callable, Optional

import arrow
from humps import pascalize

from intervalcron.context import Context
from intervalcron.logger import LogFunc, call_log_hook
from intervalcron.metrics import CronMetrics

__all__ = ["TIME_FORMAT", "IsolatedTaskRunner", "TaskFunc", "Tick", "clean_traceback"]

TaskFunc = Callable[[Context], Any]

TIME_FORMAT = "YYYY-MM-DD HH:mm:ss.SSSSSS"


@dataclass(frozen=True)
class Tick:
    """
    Timing of one iteration of the run loop.

    Args:
        start: When the wait for this tick started.
        next: When the tick was scheduled to fire.
        interval: Interval in seconds the tick was armed with.
    """

    start: arrow.Arrow
    next: arrow.Arrow
    interval: float

    @classmethod
    def starting_now(cls, interval: float) -> "Tick":
        start = arrow.now()
        return cls(start=start, next=start.shift(seconds=interval), interval=interval)

    @property
    def start_str(self) -> str:
        return self.start.format(TIME_FORMAT)

    @property
    def next_str(self) -> str:
        return self.next.format(TIME_FORMAT)


def _is_runner_frame(tb: TracebackType) -> bool:
    return tb.tb_frame.f_globals.get("__name__") == __name__


def clean_traceback(exception: BaseException) -> str:
    """
    Format the traceback of an exception raised inside a task, leaving out the frames belonging to this module.

    Args:
        exception: Exception caught at the isolation boundary.

    Returns:
        The formatted traceback, starting at the task's own code.
    """
    tb = exception.__traceback__
    while tb is not None and _is_runner_frame(tb):
        tb = tb.tb_next
    return "".join(traceback.format_exception(type(exception), exception, tb))


class IsolatedTaskRunner:
    """
    Launches tasks on independent daemon threads, and reports their outcome through logging hooks.

    The runner does not keep track of the threads it starts. A task that never returns keeps its thread busy forever,
    but does not affect any other task or the scheduler.

    Args:
        log: Hook for information logging.
        log_error: Hook for error logging.
        metrics: Optional metrics collection to report runs to.
    """

    def __init__(self, log: LogFunc, log_error: LogFunc, metrics: Optional[CronMetrics] = None) -> None:
        self.log = log
        self.log_error = log_error
        self.metrics = metrics

    def launch(self, name: str, task: TaskFunc, ctx: Context, tick: Tick) -> Thread:
        """
        Start a task on a new thread and return immediately.

        Args:
            name: Name the task is registered under.
            task: The task to run.
            ctx: Context to pass to the task.
            tick: The tick the task is run for.

        Returns:
            The thread running the task.
        """
        thread = Thread(
            target=self._run,
            args=(name, task, ctx, tick),
            name=f"Run{pascalize(name)}",
            daemon=True,
        )
        thread.start()
        return thread

    def _run(self, name: str, task: TaskFunc, ctx: Context, tick: Tick) -> None:
        call_log_hook(
            self.log,
            ctx,
            "_cron_task_run||task_name=%s||startTime=%s||next=%s||interval=%s",
            name,
            tick.start_str,
            tick.next_str,
            tick.interval,
        )
        if self.metrics:
            self.metrics.in_flight_tasks.inc()

        try:
            result = task(ctx)
        except Exception as e:
            self._report_panic(name, ctx, e)
            return
        finally:
            if self.metrics:
                self.metrics.in_flight_tasks.dec()

        if self.metrics:
            self.metrics.task_runs.labels(name, "success" if result is None else "failure").inc()
        call_log_hook(
            self.log,
            ctx,
            "_cron_task_done||task_name=%s||startTime=%s||next=%s||interval=%s||error=%s",
            name,
            tick.start_str,
            tick.next_str,
            tick.interval,
            result,
        )

    def _report_panic(self, name: str, ctx: Context, exception: Exception) -> None:
        if self.metrics:
            self.metrics.task_runs.labels(name, "panic").inc()
        call_log_hook(
            self.log_error,
            ctx,
            "_cron_task_panic||task_name=%s||error=%r||stack:\n%s",
            name,
            exception,
            clean_traceback(exception),
        )
