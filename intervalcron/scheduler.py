"""
This module provides ``Cron``, a scheduler that runs a set of named tasks at a fixed interval.

Every tick, all registered tasks are launched concurrently, each on its own thread. The scheduler does not wait for
them to finish: a slow task may still be running when the next tick launches it again, and tasks still running when
the scheduler stops are left to finish on their own.

.. code-block:: python

    def refresh_cache(ctx: Context) -> Optional[Exception]:
        ...

    cron = Cron()
    cron.set_interval(5)
    cron.add_task("refresh-cache", refresh_cache)

    Thread(target=cron.run, name="Cron").start()
    ...
    cron.stop("shutting down")

A task returns ``None`` on success, and anything else to report a failure. Failures are logged and otherwise ignored.
Exceptions raised by a task are caught at the isolation boundary and logged as errors with their traceback. Neither
ever stops the scheduler, which only stops when ``stop`` is called or the process receives SIGINT or SIGTERM.
"""

from threading import RLock
from typing import Any, Dict, Iterable, List, Optional

from intervalcron.configtools.elements import CronConfig, MetricsConfig
from intervalcron.context import Context, NewContextFunc, background, identity_context
from intervalcron.exceptions import CronIsRunningError
from intervalcron.logger import CronLogger, LogFunc, call_log_hook
from intervalcron.metrics import CronMetrics, safe_get
from intervalcron.runner import IsolatedTaskRunner, TaskFunc, Tick
from intervalcron.shutdown import DEFAULT_SIGNALS, ShutdownEvent, ShutdownSource, SignalListener

__all__ = ["DEFAULT_INTERVAL", "Cron"]

DEFAULT_INTERVAL = 0.5


class Cron:
    """
    Fixed-interval task scheduler.

    A ``Cron`` instance can only be run once. Create a new instance to run again.

    Args:
        interval: Seconds between each tick. Defaults to 0.5.
        logger: Logger providing the default info and error hooks. A ``CronLogger`` writing to the ``intervalcron``
            logger is used if omitted.
        new_context: Hook deriving tick and task contexts from their parent. Defaults to the identity function.
        metrics: Optional metrics collection to report ticks and task runs to.
        signals: Signals that stop the scheduler while it runs. Pass an empty tuple to leave signals alone.
        metrics_config: Metrics destinations to start when the scheduler starts running, and stop when it returns.
    """

    def __init__(
        self,
        interval: float = DEFAULT_INTERVAL,
        logger: Optional[CronLogger] = None,
        new_context: Optional[NewContextFunc] = None,
        metrics: Optional[CronMetrics] = None,
        signals: Iterable[int] = DEFAULT_SIGNALS,
        metrics_config: Optional[MetricsConfig] = None,
    ) -> None:
        self._interval = DEFAULT_INTERVAL
        self.set_interval(interval)

        logger = logger or CronLogger()
        self._log: LogFunc = logger.info
        self._log_error: LogFunc = logger.error
        self._new_context: NewContextFunc = new_context or identity_context

        self._tasks: Dict[str, TaskFunc] = {}
        self._shutdown = ShutdownSource()
        self._signals = tuple(signals)
        self._metrics = metrics
        self._metrics_config = metrics_config

        self._running_lock = RLock()
        self._running = False

    @classmethod
    def from_config(
        cls,
        config: CronConfig,
        logger: Optional[CronLogger] = None,
        new_context: Optional[NewContextFunc] = None,
        metrics: Optional[CronMetrics] = None,
    ) -> "Cron":
        """
        Create a scheduler from a loaded config, setting up logging as configured.

        If the config has a ``metrics`` section, the scheduler reports to ``metrics``, or to the shared ``CronMetrics``
        collection if none is given. The configured push gateways and HTTP server are started by ``run``.
        """
        if config.logger:
            config.logger.setup_logging()
        if config.metrics and metrics is None:
            metrics = safe_get(CronMetrics)
        return cls(
            interval=config.interval.seconds,
            logger=logger,
            new_context=new_context,
            metrics=metrics,
            metrics_config=config.metrics,
        )

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def metrics(self) -> Optional[CronMetrics]:
        return self._metrics

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tasks(self) -> List[str]:
        """
        Names of the registered tasks.
        """
        return list(self._tasks.keys())

    def set_interval(self, interval: float) -> None:
        """
        Set the number of seconds between each tick.

        A change made while the scheduler runs takes effect from the next tick.
        """
        if interval <= 0:
            raise ValueError("Interval must be positive")
        self._interval = float(interval)

    def set_log_func(self, log_func: LogFunc) -> None:
        self._log = log_func

    def set_error_log_func(self, log_func: LogFunc) -> None:
        self._log_error = log_func

    def set_new_context_func(self, new_context: NewContextFunc) -> None:
        self._new_context = new_context

    def add_task(self, name: str, task: TaskFunc) -> None:
        """
        Register a task, replacing any task already registered under the same name.

        Tasks should be added before ``run`` is called, or from the thread owning the scheduler between ticks.
        """
        self._tasks[name] = task

    def remove_task(self, name: str) -> bool:
        """
        Unregister a task. Runs already started are not affected.

        Returns:
            ``True`` if a task was registered under the name.
        """
        return self._tasks.pop(name, None) is not None

    def stop(self, *reason: Any) -> bool:
        """
        Ask the scheduler to stop. Never blocks, and can be called from any thread.

        Only the first call has any effect. If the scheduler isn't running yet, it will stop as soon as it is started.

        Args:
            reason: Free-form values describing why the scheduler is stopped, included in the log.

        Returns:
            ``True`` if this call requested the stop, ``False`` if a stop was already requested.
        """
        return self._shutdown.trigger(ShutdownEvent.from_stop(*reason))

    def listen_for_signals(self) -> SignalListener:
        """
        Create a listener stopping this scheduler on the configured signals.

        ``run`` installs such a listener itself, but that only works when ``run`` is called from the main thread. When
        running the scheduler on another thread, use this from the main thread instead:

        .. code-block:: python

            with cron.listen_for_signals():
                thread = Thread(target=cron.run)
                thread.start()
                thread.join()
        """
        return SignalListener(self._on_signal, self._signals)

    def _on_signal(self, signum: int) -> None:
        event = ShutdownEvent.from_signal(signum)
        self._info(background(), "_cron_signal_received||interval=%s||signal=%s", self._interval, event.payload[0])
        self._shutdown.trigger(event)

    def _info(self, ctx: Context, *args: Any) -> None:
        call_log_hook(self._log, ctx, *args)

    def _claim(self) -> None:
        with self._running_lock:
            if self._running:
                raise CronIsRunningError()
            self._running = True

    def run(self) -> None:
        """
        Run the scheduler. Blocks until ``stop`` is called or a termination signal is received.

        Raises:
            CronIsRunningError: If the scheduler is already running, or has already been run.
        """
        self._claim()

        runner = IsolatedTaskRunner(self._log, self._log_error, self._metrics)
        if self._metrics:
            self._metrics.startup.set_to_current_time()

        listener = self.listen_for_signals()
        if self._signals:
            listener.install()
        try:
            if self._metrics_config:
                self._metrics_config.start_pushers(self._shutdown.cancellation_token)
            self._loop(runner)
        finally:
            listener.uninstall()
            if self._metrics:
                self._metrics.finish.set_to_current_time()
            if self._metrics_config:
                self._metrics_config.stop_pushers()

    def _loop(self, runner: IsolatedTaskRunner) -> None:
        while True:
            tick = Tick.starting_now(self._interval)
            ctx = self._new_context(background())

            self._info(
                ctx,
                "_cron_start_run||startTime=%s||next=%s||interval=%s",
                tick.start_str,
                tick.next_str,
                tick.interval,
            )

            event = self._shutdown.wait(tick.interval)
            if event is not None:
                self._info(
                    ctx,
                    "_cron_stop_run||startTime=%s||next=%s||interval=%s||stop_chan_output=%s",
                    tick.start_str,
                    tick.next_str,
                    tick.interval,
                    list(event.payload),
                )
                return

            self._info(
                ctx,
                "_cron_time_over||startTime=%s||next=%s||interval=%s",
                tick.start_str,
                tick.next_str,
                tick.interval,
            )
            self._dispatch(runner, ctx, tick)

    def _dispatch(self, runner: IsolatedTaskRunner, ctx: Context, tick: Tick) -> None:
        if self._metrics:
            self._metrics.ticks.inc()
        tasks = list(self._tasks.items())
        for name, task in tasks:
            runner.launch(name, task, self._new_context(ctx), tick)

        self._info(
            ctx,
            "_cron_tick_done||startTime=%s||next=%s||interval=%s||tasks=%d",
            tick.start_str,
            tick.next_str,
            tick.interval,
            len(tasks),
        )
