import socket
from collections.abc import Generator
from threading import Event, RLock, Thread
from time import sleep, time
from typing import Any, List, Optional, Tuple

import pytest

from intervalcron import Context, Cron
from intervalcron.logger import format_log_args


class MockTask:
    def __init__(self, sleep_time: float = 0, result: Any = None, raises: Optional[Exception] = None) -> None:
        self.called_times: List[float] = []
        self.contexts: List[Context] = []
        self.finished = 0
        self.sleep_time = sleep_time
        self.result = result
        self.raises = raises
        self.lock = RLock()

    def __call__(self, ctx: Context) -> Any:
        with self.lock:
            self.called_times.append(time())
            self.contexts.append(ctx)
        sleep(self.sleep_time)
        if self.raises is not None:
            raise self.raises
        with self.lock:
            self.finished += 1
        return self.result


class BlockingTask:
    def __init__(self) -> None:
        self.release = Event()
        self.started = 0
        self.finished = 0
        self.lock = RLock()

    def __call__(self, ctx: Context) -> None:
        with self.lock:
            self.started += 1
        self.release.wait()
        with self.lock:
            self.finished += 1


class LogCollector:
    def __init__(self) -> None:
        self.lines: List[str] = []
        self.contexts: List[Context] = []
        self.lock = RLock()

    def __call__(self, ctx: Context, *args: Any) -> None:
        with self.lock:
            self.lines.append(format_log_args(*args))
            self.contexts.append(ctx)

    def tagged(self, tag: str) -> List[str]:
        with self.lock:
            return [line for line in self.lines if line.startswith(tag)]


def metric_value(metric: Any, labels: Optional[Tuple[str, ...]] = None) -> float:
    child = metric.labels(*labels) if labels else metric
    return child._value.get()


def free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def start_in_thread(cron: Cron) -> Thread:
    thread = Thread(target=cron.run, name="CronUnderTest", daemon=True)
    thread.start()
    return thread


@pytest.fixture
def info_log() -> LogCollector:
    return LogCollector()


@pytest.fixture
def error_log() -> LogCollector:
    return LogCollector()


@pytest.fixture
def cron(info_log: LogCollector, error_log: LogCollector) -> Generator[Cron, None, None]:
    c = Cron(interval=0.2, signals=())
    c.set_log_func(info_log)
    c.set_error_log_func(error_log)
    yield c
    c.stop("teardown")
