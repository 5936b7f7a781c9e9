#  Copyright 2020 Cognite AS
#
#  Licensed under the Apache License, Version 2.0 (the "License");
#  you may not use this file except in compliance with the License.
#  You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
#  Unless required by applicable law or agreed to in writing, software
#  distributed under the License is distributed on an "AS IS" BASIS,
#  WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#  See the License for the specific language governing permissions and
#  limitations under the License.

"""
Module containing Prometheus metrics for the scheduler, and tools for pushing them.

The ``BaseMetrics`` class forms the basis for a metrics collection, containing some general process metrics.
``CronMetrics`` extends it with metrics for ticks and task runs, and is what ``Cron`` reports to when given a metrics
collection:

.. code-block:: python

    metrics = safe_get(CronMetrics)
    cron = Cron(metrics=metrics)

To add your own metrics, subclass ``CronMetrics`` and populate it:

.. code-block:: python

    class MyMetrics(CronMetrics):
        def __init__(self):
            super().__init__(name="my_cron", version=__version__)

            self.a_counter = Counter("my_cron_example_counter", "An example counter")
            ...

The module also contains a ``PrometheusPusher`` that routinely sends the default registry to a push gateway. When a
scheduler is created with ``Cron.from_config``, one pusher is started for each gateway in the ``metrics`` section for as
long as the scheduler runs.
"""

import logging
import os
import threading
from time import sleep
from types import TracebackType
from typing import Any, Callable, Dict, Optional, Type, TypeVar

import psutil
from prometheus_client import Counter, Gauge, Info
from prometheus_client.core import REGISTRY
from prometheus_client.exposition import basic_auth_handler, delete_from_gateway, pushadd_to_gateway

from intervalcron.threading import CancellationToken

_metrics_singularities: Dict[Any, Any] = {}


T = TypeVar("T")


def safe_get(cls: Type[T], *args: Any, **kwargs: Any) -> T:
    """
    A factory for instances of metrics collections.

    Since Prometheus doesn't allow multiple metrics with the same name, any subclass of BaseMetrics must never be
    created more than once. This function creates an instance of the given class on the first call and stores it, any
    subsequent calls with the same class as argument will return the same instance.

    .. code-block:: python

        >>> a = safe_get(MyMetrics)  # This will create a new instance of MyMetrics
        >>> b = safe_get(MyMetrics)  # This will return the same instance
        >>> a is b
        True


    Args:
        cls: Metrics class to either create or get a cached version of

    Returns:
        An instance of given class
    """
    global _metrics_singularities

    if cls not in _metrics_singularities:
        _metrics_singularities[cls] = cls(*args, **kwargs)

    return _metrics_singularities[cls]


class BaseMetrics:
    """
    Base collection of process metrics. The class also spawns a collector thread on init that regularly fetches
    process information and update the ``process_*`` gauges.

    **Note that only one instance of this class (or any subclass) can exist simultaneously**

    The collection includes the following metrics:
     * startup:                     Startup time (unix epoch)
     * finish:                      Finish time (unix epoch)
     * process_num_threads          Number of active threads. Set automatically.
     * process_memory_bytes         Memory usage of the process. Set automatically.
     * process_cpu_percent          CPU usage of the process. Set automatically.

    Args:
        name: Name of the application, used to prefix metric names
        version: Version of the application
        process_scrape_interval: Interval (in seconds) between each fetch of data for the ``process_*`` gauges
    """

    def __init__(self, name: str, version: str, process_scrape_interval: float = 15):
        name = name.strip().replace(" ", "_")
        self.prefix = name

        self.startup = Gauge(f"{name}_start_time", "Timestamp (seconds) of when the scheduler last started")
        self.finish = Gauge(f"{name}_finish_time", "Timestamp (seconds) of when the scheduler last stopped")

        self._process = psutil.Process(os.getpid())

        self.process_num_threads = Gauge(f"{name}_num_threads", "Number of threads")
        self.process_memory_bytes = Gauge(f"{name}_memory_bytes", "Memory usage in bytes")
        self.process_cpu_percent = Gauge(f"{name}_cpu_percent", "CPU usage percent")

        self.info = Info(f"{name}_info", "Information about the running scheduler")
        self.info.info({"version": version, "name": name})

        self.process_scrape_interval = process_scrape_interval
        self._start_proc_collector()

    def _proc_collect(self) -> None:
        """
        Collect values for process metrics
        """
        while True:
            self.process_num_threads.set(self._process.num_threads())
            self.process_memory_bytes.set(self._process.memory_info().rss)
            self.process_cpu_percent.set(self._process.cpu_percent())

            sleep(self.process_scrape_interval)

    def _start_proc_collector(self) -> None:
        """
        Start a thread that collects process metrics at a regular interval
        """
        thread = threading.Thread(target=self._proc_collect, name="ProcessMetricsCollector", daemon=True)
        thread.start()


class CronMetrics(BaseMetrics):
    """
    Metrics reported by the scheduler.

    In addition to the metrics from ``BaseMetrics``, the collection includes:
     * ticks:                       Number of ticks that have fired
     * task_runs:                   Number of finished task runs, labelled by task name and outcome (success, failure
                                    or panic)
     * in_flight_tasks:             Number of task runs currently executing
    """

    def __init__(self, name: str = "intervalcron", version: str = "", process_scrape_interval: float = 15):
        if not version:
            from intervalcron import __version__

            version = __version__
        super().__init__(name=name, version=version, process_scrape_interval=process_scrape_interval)

        self.ticks = Counter(f"{self.prefix}_ticks", "Number of ticks that have fired")
        self.task_runs = Counter(f"{self.prefix}_task_runs", "Number of finished task runs", ["task", "outcome"])
        self.in_flight_tasks = Gauge(f"{self.prefix}_in_flight_tasks", "Number of task runs currently executing")


class PrometheusPusher:
    """
    Routinely pushes the default registry to a Prometheus push gateway from a background thread.

    The push loop stops when ``stop`` is called, or when the given cancellation token is cancelled. A ``Cron`` started
    from config passes its shutdown token, so pushing ends together with the scheduler.

    Args:
        job_name: Prometheus job name
        url: URL (with port) of the push gateway
        push_interval: Seconds between each push
        username: Push gateway credentials
        password: Push gateway credentials
        thread_name: Name of the pushing thread
        cancellation_token: Token ending the push loop when cancelled
    """

    def __init__(
        self,
        job_name: str,
        url: str,
        push_interval: float,
        username: Optional[str] = None,
        password: Optional[str] = None,
        thread_name: Optional[str] = None,
        cancellation_token: Optional[CancellationToken] = None,
    ):
        self.job_name = job_name
        self.url = url
        self.push_interval = push_interval
        self.username = username
        self.password = password
        self.thread_name = thread_name

        self.thread: Optional[threading.Thread] = None
        self.cancellation_token = cancellation_token.create_child_token() if cancellation_token else CancellationToken()
        self.logger = logging.getLogger(__name__)

    def _auth_handler(
        self, url: str, method: str, timeout: Optional[float], headers: list, data: Any
    ) -> Callable[[], None]:
        return basic_auth_handler(url, method, timeout, headers, data, self.username, self.password)

    def push(self) -> None:
        """
        Push the default registry once. Failures are logged, never raised.
        """
        if not self.url or not self.job_name:
            return

        try:
            pushadd_to_gateway(self.url, job=self.job_name, registry=REGISTRY, handler=self._auth_handler)
        except OSError as e:
            self.logger.warning("Failed to push metrics to %s: %s", self.url, str(e))
            return
        except Exception:
            self.logger.exception("Failed to push metrics to %s", self.url)
            return

        self.logger.debug("Pushed metrics to %s", self.url)

    def _run(self) -> None:
        while not self.cancellation_token.is_cancelled:
            self.push()
            self.cancellation_token.wait(self.push_interval)

    def start(self) -> None:
        self.thread = threading.Thread(target=self._run, daemon=True, name=self.thread_name)
        self.thread.start()

    def stop(self) -> None:
        """
        End the push loop after a final push, so the last values of the run reach the gateway.
        """
        self.cancellation_token.cancel()
        self.push()

    def clear_gateway(self) -> None:
        """
        Delete the metrics stored at the gateway for this job.
        """
        delete_from_gateway(self.url, job=self.job_name, handler=self._auth_handler)
        self.logger.debug("Deleted metrics from push gateway %s", self.url)

    def __enter__(self) -> "PrometheusPusher":
        self.start()
        return self

    def __exit__(
        self, exc_type: Optional[Type[BaseException]], exc_val: Optional[BaseException], exc_tb: Optional[TracebackType]
    ) -> None:
        self.stop()
