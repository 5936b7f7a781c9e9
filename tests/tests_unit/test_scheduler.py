import os
import signal
import threading
from threading import Thread
from time import sleep, time

import pytest
from pytest import approx

from intervalcron import Context, Cron, CronIsRunningError
from intervalcron.configtools import CronConfig, TimeIntervalConfig

from .conftest import BlockingTask, LogCollector, MockTask, start_in_thread


def test_ticks_follow_interval(cron: Cron) -> None:
    mock = MockTask()
    cron.set_interval(0.3)
    cron.add_task("mock", mock)

    start = time()
    thread = start_in_thread(cron)
    sleep(1.05)
    cron.stop("done")
    thread.join(1)

    assert not thread.is_alive()
    assert len(mock.called_times) == 3
    assert mock.called_times[0] == approx(start + 0.3, abs=0.1)
    assert mock.called_times[1] == approx(mock.called_times[0] + 0.3, abs=0.1)
    assert mock.called_times[2] == approx(mock.called_times[1] + 0.3, abs=0.1)


def test_all_tasks_launched_each_tick(cron: Cron, info_log: LogCollector) -> None:
    mocks = {f"task_{i}": MockTask() for i in range(3)}
    for name, mock in mocks.items():
        cron.add_task(name, mock)

    thread = start_in_thread(cron)
    sleep(0.5)
    cron.stop("done")
    thread.join(1)

    for mock in mocks.values():
        assert len(mock.called_times) == 2

    done = info_log.tagged("_cron_tick_done")
    assert len(done) == 2
    assert all(line.endswith("||tasks=3") for line in done)


def test_stop_returns_promptly(cron: Cron, info_log: LogCollector) -> None:
    cron.set_interval(10)
    cron.add_task("never", MockTask())

    thread = start_in_thread(cron)
    sleep(0.1)

    stopped_at = time()
    assert cron.stop("requested", 42)
    thread.join(1)

    assert not thread.is_alive()
    assert time() - stopped_at < 0.5

    stop_lines = info_log.tagged("_cron_stop_run")
    assert len(stop_lines) == 1
    assert stop_lines[0].endswith("stop_chan_output=['requested', 42]")


def test_second_stop_does_not_block(cron: Cron) -> None:
    assert cron.stop("first")
    assert not cron.stop("second")
    assert not cron.stop("third")


def test_stop_before_run(info_log: LogCollector) -> None:
    cron = Cron(interval=10)
    cron.set_log_func(info_log)
    handler_before = signal.getsignal(signal.SIGTERM)

    cron.stop("early")
    started = time()
    cron.run()

    assert time() - started < 0.5
    assert info_log.tagged("_cron_stop_run")[0].endswith("stop_chan_output=['early']")
    assert signal.getsignal(signal.SIGTERM) is handler_before


def test_stop_does_not_wait_for_tasks(cron: Cron) -> None:
    blocking = BlockingTask()
    cron.set_interval(0.1)
    cron.add_task("blocking", blocking)

    thread = start_in_thread(cron)
    sleep(0.35)
    cron.stop("done")
    thread.join(1)

    assert not thread.is_alive()
    assert blocking.started >= 1
    assert blocking.finished == 0

    blocking.release.set()


def test_blocking_task_does_not_delay_ticks(cron: Cron) -> None:
    blocking = BlockingTask()
    counter = MockTask()
    cron.add_task("blocking", blocking)
    cron.add_task("counter", counter)

    thread = start_in_thread(cron)
    sleep(0.9)
    cron.stop("done")
    thread.join(1)

    assert not thread.is_alive()
    assert len(counter.called_times) >= 3
    # Overlapping runs of the same task are allowed
    assert blocking.started == len(counter.called_times)
    assert blocking.finished == 0

    blocking.release.set()


def test_panicking_tasks_do_not_stop_scheduler(cron: Cron, error_log: LogCollector) -> None:
    healthy = MockTask()
    for i in range(3):
        cron.add_task(f"broken_{i}", MockTask(raises=RuntimeError(f"broken {i}")))
    cron.add_task("healthy", healthy)

    thread = start_in_thread(cron)
    sleep(0.7)

    assert thread.is_alive()
    cron.stop("done")
    thread.join(1)

    assert not thread.is_alive()
    assert len(healthy.called_times) >= 3

    panics = error_log.tagged("_cron_task_panic")
    for i in range(3):
        assert any(f"task_name=broken_{i}||" in line and f"broken {i}" in line for line in panics)


def test_panic_stack_points_at_task(cron: Cron, error_log: LogCollector) -> None:
    def explode(ctx: Context) -> None:
        raise ValueError("kaboom")

    cron.add_task("explode", explode)

    thread = start_in_thread(cron)
    sleep(0.3)
    cron.stop("done")
    thread.join(1)

    panics = error_log.tagged("_cron_task_panic")
    assert len(panics) >= 1
    assert "in explode" in panics[0]
    assert "ValueError: kaboom" in panics[0]
    assert "runner.py" not in panics[0]


def test_failure_outcome_logged_at_info(cron: Cron, info_log: LogCollector, error_log: LogCollector) -> None:
    cron.add_task("failing", MockTask(result=ValueError("no data")))
    cron.add_task("fine", MockTask())

    thread = start_in_thread(cron)
    sleep(0.3)
    cron.stop("done")
    thread.join(1)

    done = info_log.tagged("_cron_task_done")
    assert any("task_name=failing||" in line and line.endswith("error=no data") for line in done)
    assert any("task_name=fine||" in line and line.endswith("error=None") for line in done)
    assert error_log.lines == []


def test_failing_info_hook_does_not_stop_loop(cron: Cron, info_log: LogCollector) -> None:
    def flaky_hook(ctx: Context, *args: object) -> None:
        info_log(ctx, *args)
        if str(args[0]).startswith(("_cron_tick_done", "_cron_time_over")):
            raise RuntimeError("hook is broken")

    mock = MockTask()
    cron.set_log_func(flaky_hook)
    cron.add_task("mock", mock)

    thread = start_in_thread(cron)
    sleep(0.7)

    assert thread.is_alive()
    cron.stop("done")
    thread.join(1)

    assert not thread.is_alive()
    assert len(mock.called_times) >= 3
    assert len(info_log.tagged("_cron_tick_done")) >= 3
    assert info_log.tagged("_cron_stop_run")[0].endswith("stop_chan_output=['done']")


def test_add_task_replaces_existing(cron: Cron) -> None:
    first = MockTask()
    second = MockTask()
    cron.add_task("task", first)
    cron.add_task("task", second)

    assert cron.tasks == ["task"]

    thread = start_in_thread(cron)
    sleep(0.3)
    cron.stop("done")
    thread.join(1)

    assert first.called_times == []
    assert len(second.called_times) == 1


def test_remove_task(cron: Cron) -> None:
    mock = MockTask()
    cron.add_task("task", mock)

    assert cron.remove_task("task")
    assert not cron.remove_task("task")
    assert cron.tasks == []

    thread = start_in_thread(cron)
    sleep(0.3)
    cron.stop("done")
    thread.join(1)

    assert mock.called_times == []


def test_second_run_raises(cron: Cron) -> None:
    thread = start_in_thread(cron)
    sleep(0.1)

    assert cron.is_running
    with pytest.raises(CronIsRunningError):
        cron.run()

    # The first loop keeps running
    assert thread.is_alive()
    cron.stop("done")
    thread.join(1)
    assert not thread.is_alive()


def test_run_after_stop_raises(cron: Cron) -> None:
    cron.stop("done")
    cron.run()

    with pytest.raises(CronIsRunningError):
        cron.run()


def test_set_interval_rejects_non_positive(cron: Cron) -> None:
    with pytest.raises(ValueError):
        cron.set_interval(0)
    with pytest.raises(ValueError):
        Cron(interval=-1)
    assert cron.interval == 0.2


def test_new_context_func(cron: Cron, info_log: LogCollector) -> None:
    def deeper(ctx: Context) -> Context:
        return ctx.with_value("depth", ctx.value("depth", 0) + 1)

    mock = MockTask()
    cron.set_new_context_func(deeper)
    cron.add_task("mock", mock)

    thread = start_in_thread(cron)
    sleep(0.3)
    cron.stop("done")
    thread.join(1)

    assert len(mock.contexts) == 1
    assert mock.contexts[0].value("depth") == 2
    # Loop level log lines get the tick context
    assert info_log.contexts[0].value("depth") == 1


def test_scenario_slow_and_failing_tasks(info_log: LogCollector) -> None:
    a = MockTask(result=ValueError("A done"))
    b = MockTask(sleep_time=3, result=ValueError("B done"))

    cron = Cron(interval=1, signals=())
    cron.set_log_func(info_log)
    cron.add_task("A", a)
    cron.add_task("B", b)

    thread = start_in_thread(cron)
    sleep(2)
    cron.stop("timeout")
    thread.join(1)

    assert not thread.is_alive()
    assert len(info_log.tagged("_cron_time_over")) >= 1
    assert len(a.called_times) >= 1
    assert len(b.called_times) >= 1

    done = info_log.tagged("_cron_task_done")
    assert any("task_name=A||" in line and line.endswith("error=A done") for line in done)
    assert b.finished == 0

    assert info_log.tagged("_cron_stop_run")[-1].endswith("stop_chan_output=['timeout']")


@pytest.mark.skipif(threading.current_thread() is not threading.main_thread(), reason="Needs the main thread")
def test_termination_signal_stops_run(info_log: LogCollector) -> None:
    cron = Cron(interval=10)
    cron.set_log_func(info_log)
    handler_before = signal.getsignal(signal.SIGTERM)

    def send_signal() -> None:
        sleep(0.3)
        os.kill(os.getpid(), signal.SIGTERM)

    Thread(target=send_signal, daemon=True).start()
    started = time()
    cron.run()

    assert time() - started < 2
    assert len(info_log.tagged("_cron_signal_received")) == 1
    assert info_log.tagged("_cron_stop_run")[0].endswith("stop_chan_output=['signal_received:SIGTERM']")
    assert signal.getsignal(signal.SIGTERM) is handler_before


def test_from_config() -> None:
    config = CronConfig(interval=TimeIntervalConfig("250ms"))
    cron = Cron.from_config(config)

    assert cron.interval == approx(0.25)
    assert cron.tasks == []
