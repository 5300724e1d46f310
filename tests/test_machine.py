"""
tests/test_machine.py
=====================
Machine lifecycle, the per-topology registry and the one-thread-per-machine
runner.

Run with:
    pytest tests/test_machine.py -v
"""

from __future__ import annotations

import threading
import time

import pytest

from intcode.errors import UnknownOpcode
from intcode.ports import Port
from intcode.vm import ExecState
from runtime.machine import (
    Machine,
    MachineAlreadyExistsError,
    MachineNotFoundError,
    MachineRegistry,
    MachineThread,
)

ECHO = [3, 9, 4, 9, 1105, 1, 0, 99, 0, 0]   # IN [9]; OUT [9]; JMP 0
DOUBLE = [3, 9, 1002, 9, 2, 9, 4, 9, 99, 0] # IN [9]; MUL [9]*2; OUT [9]


def _machine(program, name="m", address=None):
    return Machine.spawn(program, name, Port(name=f"{name}.in"), Port(name=f"{name}.out"),
                         address=address)


@pytest.fixture
def registry() -> MachineRegistry:
    return MachineRegistry()


class TestMachine:

    def test_spawn_wires_endpoints(self) -> None:
        m = _machine(DOUBLE)
        assert m.vm.inputs.port is m.inbox
        assert m.vm.outputs.port is m.outbox
        assert m.vm.name == "m"
        assert m.state is ExecState.RUNNING
        assert m.is_alive

    def test_finish_closes_outbox_on_halt(self) -> None:
        m = _machine(DOUBLE)
        m.inbox.put(21)
        assert m.vm.run() is ExecState.HALTED
        m.finish()
        assert m.outbox.get() == 42
        assert m.outbox.drained
        assert not m.is_alive
        assert m.died_at is not None

    def test_finish_is_idempotent(self) -> None:
        m = _machine([99])
        m.vm.run()
        m.finish()
        died = m.died_at
        m.finish()
        assert m.died_at == died

    def test_failed_machine_keeps_outbox_open(self) -> None:
        m = _machine([42])
        m.vm.run()
        m.finish()
        assert isinstance(m.error, UnknownOpcode)
        assert not m.outbox.closed

    def test_lifetime_ms(self) -> None:
        m = _machine([99])
        assert m.lifetime_ms >= 0.0


class TestRegistry:

    def test_register_and_get(self, registry: MachineRegistry) -> None:
        m = registry.register(_machine([99], "a"))
        assert registry.get("a") is m
        assert "a" in registry
        assert len(registry) == 1

    def test_duplicate_name(self, registry: MachineRegistry) -> None:
        registry.register(_machine([99], "a"))
        with pytest.raises(MachineAlreadyExistsError):
            registry.register(_machine([99], "a"))

    def test_duplicate_address(self, registry: MachineRegistry) -> None:
        registry.register(_machine([99], "a", address=3))
        with pytest.raises(MachineAlreadyExistsError):
            registry.register(_machine([99], "b", address=3))

    def test_missing(self, registry: MachineRegistry) -> None:
        with pytest.raises(MachineNotFoundError):
            registry.get("ghost")
        assert registry.by_address(7) is None

    def test_by_address(self, registry: MachineRegistry) -> None:
        m = registry.register(_machine([99], "n7", address=7))
        assert registry.by_address(7) is m

    def test_notify_records_failure(self, registry: MachineRegistry) -> None:
        ok = registry.register(_machine([99], "ok"))
        bad = registry.register(_machine([42], "bad"))
        for m in (ok, bad):
            m.vm.run()
            m.finish()
            registry.notify(m)
        assert registry.first_failure() is bad
        assert registry.all_terminal()
        assert registry.alive_count() == 0

    def test_wait_all_times_out(self, registry: MachineRegistry) -> None:
        registry.register(_machine(ECHO))
        assert registry.wait_all(timeout=0.05) is False


@pytest.mark.timeout(10)
class TestMachineThread:

    def test_runs_to_halt(self, registry: MachineRegistry) -> None:
        m = registry.register(_machine(DOUBLE))
        t = MachineThread(m, registry).start()
        m.inbox.put(5)
        assert t.join(timeout=5.0)
        assert m.state is ExecState.HALTED
        assert m.outbox.get() == 10
        assert registry.wait_all(timeout=1.0)

    def test_blocks_on_empty_input(self, registry: MachineRegistry) -> None:
        m = registry.register(_machine(ECHO))
        t = MachineThread(m, registry, poll=0.05).start()
        m.inbox.put(1)
        assert m.outbox.get(timeout=2.0) == 1
        time.sleep(0.05)
        assert m.state is ExecState.AWAITING_INPUT
        m.inbox.close()
        assert t.join(timeout=5.0)
        assert m.state is ExecState.HALTED

    def test_kill_stops_waiting_thread(self, registry: MachineRegistry) -> None:
        m = registry.register(_machine(ECHO))
        cancel = threading.Event()
        t = MachineThread(m, registry, cancel=cancel, poll=0.05).start()
        t.kill(timeout=2.0)
        assert t.is_cancelled
        assert t.join(timeout=2.0)
        assert m.is_alive                 # cancelled, not terminated

    def test_failure_reported(self, registry: MachineRegistry) -> None:
        m = registry.register(_machine([42]))
        MachineThread(m, registry).start().join(timeout=5.0)
        assert registry.wait_all(timeout=1.0)
        assert registry.first_failure() is m

    def test_start_twice(self, registry: MachineRegistry) -> None:
        m = registry.register(_machine([99]))
        t = MachineThread(m, registry).start()
        with pytest.raises(RuntimeError):
            t.start()
        t.join(timeout=5.0)
