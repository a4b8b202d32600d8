"""
Shared fixtures.

Workers run in-process: ``connect_worker()`` hands back the worker end of a
Pipe and a WorkerRuntime services it on its own listener thread, exactly as
it would in a child process.
"""

import time

import pytest

from timberline.console import CONSOLE_HOOK
from timberline.coordinator import Coordinator
from timberline.worker import ObserverRuntime, WorkerRuntime


def wait_for(predicate, timeout=5.0, interval=0.01):
    """Poll ``predicate`` until it is truthy; fail the test on timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(interval)
    pytest.fail("condition not met within %.1fs" % timeout)


@pytest.fixture(autouse=True)
def reset_console_hook():
    """The console hook is process-wide; never leak it between tests."""
    CONSOLE_HOOK.unhook()
    yield
    CONSOLE_HOOK.unhook()


@pytest.fixture
def make_coordinator():
    created = []

    def factory(defaults=None, logger_filter=None):
        coordinator = Coordinator(defaults=defaults or {}, logger_filter=logger_filter)
        created.append(coordinator)
        return coordinator

    yield factory
    for coordinator in created:
        coordinator.shutdown()


@pytest.fixture
def coordinator(make_coordinator):
    return make_coordinator()


@pytest.fixture
def collected(coordinator):
    """Records that reached the coordinator through collector redirection."""
    records = []
    coordinator.collector_sink = lambda priority, record: records.append(record)
    return records


@pytest.fixture
def make_worker():
    runtimes = []

    def factory(coordinator, logger_filter=None):
        worker_id, conn = coordinator.connect_worker()
        runtime = WorkerRuntime(conn, worker_id, logger_filter).start()
        runtimes.append(runtime)
        return runtime

    yield factory
    for runtime in runtimes:
        runtime.close()


@pytest.fixture
def worker(coordinator, make_worker):
    return make_worker(coordinator)


@pytest.fixture
def make_observer():
    runtimes = []

    def factory(coordinator):
        runtime = ObserverRuntime(coordinator.attach_observer(), logger_filter=None).start()
        runtimes.append(runtime)
        return runtime

    yield factory
    for runtime in runtimes:
        runtime.close()
