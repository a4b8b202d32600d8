"""
Tests for cross-process synchronization, with workers attached in-process.

Covers:
- Settings lookup: coordinator snapshot, relay to another worker, fallback
- Convergence of log level, colors and padding across sides
- Rebuild broadcasts (defaults, levels, padding)
- Collector redirection
- Deregistration
- Worker console hooking and observers
"""

import pytest

from conftest import wait_for
from timberline.console import CONSOLE_HOOK
from timberline.constants import IdentityState, Topic
from timberline.errors import ConfigurationError, CoordinatorOnlyError
from timberline.levels import DEFAULT_LEVELS

TABLE = {
    "fatal": {"priority": 0, "color": "#AA0000"},
    "info": {"priority": 2, "color": "#0000AA"},
    "trace": {"priority": 6, "color": "#555555"},
}

NARROW = {
    "fatal": {"priority": 0, "color": "#AA0000"},
    "info": {"priority": 2, "color": "#0000AA"},
}


def settle(runtime):
    """Round trip through the worker listener so earlier notices are applied."""
    runtime.get_defaults()


def name_column(logger):
    """Offset of the logger name inside its context prefix."""
    return logger.context.plain.index(logger.name)


# ═══════════════════════════════════════════════════════════════════
#  Lookup and convergence
# ═══════════════════════════════════════════════════════════════════

class TestLookup:
    def test_worker_registers(self, coordinator, worker):
        log = worker.create("job")
        assert log.identity_state is IdentityState.CONVERGED
        assert coordinator.registry.get("job").worker_ids() == [worker.worker_id]
        assert log.context.plain.startswith("job [worker 01]")

    def test_coordinator_first(self, coordinator, worker):
        main = coordinator.create("main", log_level="debug")
        remote = worker.create("main")
        assert remote.log_level == main.log_level == 4
        assert remote.colors == main.colors
        assert name_column(remote) == name_column(main)

    def test_worker_first_then_coordinator(self, coordinator, worker):
        remote = worker.create("svc", log_level="verbose")
        main = coordinator.create("svc")
        assert main.log_level == remote.log_level == 3
        assert main.colors == remote.colors

    def test_relay_between_workers(self, coordinator, make_worker):
        first, second = make_worker(coordinator), make_worker(coordinator)
        a = first.create("svc", log_level="silly")
        b = second.create("svc")
        assert b.log_level == a.log_level == 5
        assert b.colors == a.colors
        assert coordinator.registry.get("svc").worker_ids() == [first.worker_id, second.worker_id]

    def test_first_registered_wins(self, coordinator, make_worker):
        first, second, third = (make_worker(coordinator) for _ in range(3))
        first.create("svc", log_level="silly")
        second.create("svc", log_level="error")
        assert third.create("svc").log_level == 5

    def test_dead_relay_target_falls_back(self, coordinator, make_worker):
        first, second = make_worker(coordinator), make_worker(coordinator)
        first.create("svc", log_level="silly")
        first.channel.close()
        wait_for(lambda: first.worker_id not in coordinator.workers)
        assert second.create("svc").log_level == 2

    def test_worker_seeds_from_own_instance(self, coordinator, worker):
        worker.create("dup", log_level="debug")
        assert worker.create("dup").log_level == 4

    def test_get_logger_on_worker(self, coordinator, worker):
        log = worker.create("job")
        assert worker.get_logger("job") is log
        assert log.get_logger("job") is log

    def test_unknown_level_leaves_registry_untouched(self, coordinator, worker):
        a = coordinator.create("a")
        with pytest.raises(ConfigurationError, match="Unknown log level"):
            worker.create("averyveryverylongname", log_level="bogus")
        assert "averyveryverylongname" not in coordinator.registry
        assert coordinator.max_name_length == 1
        assert a.context.plain.startswith("a [coordinator]")


class TestPadding:
    def test_longer_worker_name_repads_coordinator(self, coordinator, worker):
        a = coordinator.create("a")
        worker.create("bbbbbb")
        assert coordinator.max_name_length == 6
        assert a.context.plain.startswith("     a [coordinator]")

    def test_longer_coordinator_name_repads_workers(self, coordinator, worker):
        c = worker.create("c")
        coordinator.create("dddddddd")
        wait_for(lambda: c.context.plain.startswith(" " * 7 + "c [worker"))

    def test_new_worker_gets_current_width(self, coordinator, worker):
        coordinator.create("longname")
        assert worker.create("x").context.plain.startswith(" " * 7 + "x")


# ═══════════════════════════════════════════════════════════════════
#  Rebuild broadcasts
# ═══════════════════════════════════════════════════════════════════

class TestDefaultsBroadcast:
    def test_log_level_reaches_worker(self, coordinator, worker, collected):
        remote = worker.create("job")
        coordinator.create("main").set_defaults(log_level="error")
        settle(worker)
        assert remote.log_level == 0
        remote.log("x")
        remote.error("y")
        wait_for(lambda: len(collected) == 1)
        assert [r.message for r in collected] == ["y"]

    def test_ignore_reaches_worker(self, coordinator, worker, collected):
        remote = worker.create("job")
        coordinator.create("main").set_defaults(ignore=["password"])
        settle(worker)
        assert remote.options["ignore"] == ["password"]
        remote.info("password=hunter2")
        remote.info("done")
        wait_for(lambda: len(collected) == 1)
        assert collected[0].message == "done"

    def test_separator_reaches_worker(self, coordinator, worker):
        remote = worker.create("job")
        coordinator.create("main").set_defaults(separator="|")
        assert worker.get_defaults()["separator"] == "|"
        assert remote.options["separator"] == "|"

    def test_worker_cannot_set_defaults(self, coordinator, worker):
        with pytest.raises(CoordinatorOnlyError):
            worker.create("job").set_defaults(log_level="debug")

    def test_collector_worker_resolves_to_lowest_id(self, coordinator, make_worker):
        first, second = make_worker(coordinator), make_worker(coordinator)
        coordinator.create("main").set_defaults(collector="worker")
        assert coordinator.get_defaults()["collector"] == min(first.worker_id, second.worker_id)


class TestLevelsBroadcast:
    def test_from_coordinator(self, coordinator, worker):
        main = coordinator.create("lv")
        remote = worker.create("lv")
        main.set_levels(TABLE)
        settle(worker)
        assert remote.get_levels() == TABLE
        assert hasattr(remote, "fatal")

    def test_from_worker(self, coordinator, make_worker):
        first, second = make_worker(coordinator), make_worker(coordinator)
        main = coordinator.create("lv")
        a, b = first.create("lv"), second.create("lv")
        a.set_levels(TABLE)
        assert a.get_levels() == TABLE
        wait_for(lambda: main.get_levels() == TABLE and b.get_levels() == TABLE)

    def test_other_names_untouched(self, coordinator, worker):
        main = coordinator.create("lv")
        other = worker.create("other")
        main.set_levels(TABLE)
        assert other.get_levels() != TABLE

    def test_from_worker_reaches_instance_with_own_level(self, coordinator, make_worker):
        first, second = make_worker(coordinator), make_worker(coordinator)
        a, b = first.create("svc"), second.create("svc")
        main = coordinator.create("svc", log_level="debug")
        a.set_levels(NARROW)
        assert main.get_levels() == a.get_levels() == NARROW
        assert main.log_level == 4
        wait_for(lambda: b.get_levels() == NARROW)

    def test_invalid_table_from_worker_changes_nothing(self, coordinator, worker):
        remote = worker.create("svc")
        main = coordinator.create("svc")
        with pytest.raises(ConfigurationError):
            remote.set_levels({"x": {"priority": 0, "color": "red"}})
        assert remote.get_levels() == main.get_levels() == DEFAULT_LEVELS


# ═══════════════════════════════════════════════════════════════════
#  Collector
# ═══════════════════════════════════════════════════════════════════

class TestCollector:
    def test_worker_log_reaches_coordinator_once(self, coordinator, worker, collected, capsys):
        worker.create("job").log("hi")
        wait_for(lambda: len(collected) == 1)
        record = collected[0]
        assert record.message == "hi"
        assert record.side == "worker"
        assert record.worker_id == worker.worker_id
        assert "hi" not in capsys.readouterr().out

    def test_collected_record_printed_by_coordinator(self, make_coordinator, make_worker, capsys):
        coordinator = make_coordinator({"prettify": "none"})
        worker = make_worker(coordinator)
        worker.create("job").warn("careful")
        wait_for(lambda: "careful" in capsys.readouterr().err)

    def test_collector_false_prints_locally(self, coordinator, worker, collected, monkeypatch):
        printed = []
        monkeypatch.setattr("timberline.transports.print_record", lambda p, r: printed.append(r))
        remote = worker.create("job")
        coordinator.create("main").set_defaults(collector=False)
        wait_for(lambda: not remote.get_transport("console").redirects)
        remote.info("local")
        assert [r.message for r in printed] == ["local"]
        assert collected == []

    def test_collector_worker(self, coordinator, make_worker, monkeypatch):
        received = []
        monkeypatch.setattr("timberline.worker.print_record", lambda p, r: received.append(r.message))
        collector = make_worker(coordinator)
        main = coordinator.create("main")
        main.set_defaults(collector="worker")
        main.info("from coordinator")
        other = make_worker(coordinator)
        other.create("other").info("from other worker")
        wait_for(lambda: sorted(received) == ["from coordinator", "from other worker"])
        assert collector.worker_id == coordinator.get_defaults()["collector"]

    def test_collector_worker_from_initial_defaults(self, make_coordinator, make_worker, monkeypatch):
        received = []
        monkeypatch.setattr("timberline.worker.print_record", lambda p, r: received.append(r.message))
        coordinator = make_coordinator({"collector": "worker"})
        main = coordinator.create("main")
        assert not main.get_transport("console").redirects
        collector = make_worker(coordinator)
        assert coordinator.get_defaults()["collector"] == collector.worker_id
        assert main.get_transport("console").redirects
        main.info("to the collector")
        wait_for(lambda: received == ["to the collector"])

    def test_one_collector_listener(self, coordinator, worker):
        worker.create("job")
        coordinator.create("main").set_defaults(collector=False)
        coordinator.create("main").set_defaults(collector="coordinator")
        settle(worker)
        assert worker.defaults()["collector"] == "coordinator"
        assert worker.channel.listener_count(Topic.COLLECTOR) == 1


# ═══════════════════════════════════════════════════════════════════
#  Deregistration
# ═══════════════════════════════════════════════════════════════════

class TestDeregistration:
    def test_close_removes_worker(self, coordinator, make_worker):
        runtime = make_worker(coordinator)
        runtime.create("gone")
        runtime.close()
        wait_for(lambda: "gone" not in coordinator.registry)
        assert runtime.worker_id not in coordinator.workers

    def test_shared_entry_survives(self, coordinator, make_worker):
        first, second = make_worker(coordinator), make_worker(coordinator)
        first.create("svc")
        second.create("svc")
        first.close()
        wait_for(lambda: coordinator.registry.get("svc").worker_ids() == [second.worker_id])


# ═══════════════════════════════════════════════════════════════════
#  Hooks and observers
# ═══════════════════════════════════════════════════════════════════

class TestWorkerHooks:
    def test_worker_cannot_hook_coordinator(self, coordinator, worker):
        with pytest.raises(CoordinatorOnlyError):
            worker.default_logger.hook_console(coordinator=True)

    def test_only_default_logger(self, coordinator, worker):
        with pytest.raises(ConfigurationError):
            worker.create("job").hook_console()

    def test_worker_hooks_itself(self, coordinator, worker):
        unhook = worker.default_logger.hook_console()
        assert CONSOLE_HOOK.logger is worker.default_logger
        unhook()
        assert not CONSOLE_HOOK.is_hooked

    def test_coordinator_asks_workers_to_hook(self, coordinator, worker):
        unhook = coordinator.default_logger.hook_console(coordinator=False, worker=True)
        wait_for(lambda: CONSOLE_HOOK.is_hooked and CONSOLE_HOOK.logger is worker.default_logger)
        unhook()
        wait_for(lambda: not CONSOLE_HOOK.is_hooked)

    def test_hook_console_default_at_start(self, make_coordinator, make_worker):
        coordinator = make_coordinator({"hook_console": True})
        worker = make_worker(coordinator)
        assert CONSOLE_HOOK.is_hooked
        assert CONSOLE_HOOK.logger is worker.default_logger


class TestObservers:
    def test_observer_not_registered(self, coordinator, make_observer):
        observer = make_observer(coordinator)
        observer.create("main")
        assert "main" not in coordinator.registry

    def test_update_relayed_through_worker(self, coordinator, worker, make_observer):
        observer = make_observer(coordinator)
        seen = observer.create("main")
        coordinator.create("main").set_defaults(separator="»")
        wait_for(lambda: seen.options["separator"] == "»")

    def test_update_without_workers(self, coordinator, make_observer):
        observer = make_observer(coordinator)
        seen = observer.create("main")
        coordinator.create("main").set_defaults(log_level="warn")
        wait_for(lambda: seen.log_level == 1)

    def test_observer_records_collected(self, coordinator, make_observer, collected):
        observer = make_observer(coordinator)
        observer.create("inspector").info("from observer")
        wait_for(lambda: [r.message for r in collected] == ["from observer"])
        assert collected[0].worker_id is None

    def test_mute_inspector(self, coordinator, make_observer):
        observer = make_observer(coordinator)
        muted = observer.console_mute(observer.create("main"))
        assert not muted("log")
        coordinator.create("main").set_defaults(mute_inspector=1)
        wait_for(lambda: observer.defaults()["mute_inspector"] == 1)
        assert muted("log") and muted("warn")
        assert not muted("error")
        coordinator.create("main").set_defaults(mute_inspector=True)
        wait_for(lambda: muted("error"))
