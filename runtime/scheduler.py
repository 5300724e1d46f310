"""
runtime.scheduler
=================
Cooperative round-robin driver for a set of machines on the calling thread.

Each round gives every live machine one ``vm.run(max_steps=quantum)`` slice;
a machine only stops early when it suspends on a port or terminates.  The
scheduler returns when

*  every machine is terminal                         → ``True``
*  a whole round changed nothing (quiescence)        → ``False``
   e.g. the host has not fed enough input yet; feed more and run again.

and raises

*  ``TopologyFailed``     as soon as any machine fails
*  ``StepLimitExceeded``  once ``max_steps`` instructions ran in this call
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional

from intcode.errors import StepLimitExceeded, TopologyFailed
from intcode.vm import ExecState

from runtime.machine import Machine, MachineRegistry

logger = logging.getLogger(__name__)

DEFAULT_QUANTUM = 1_000


class Scheduler:
    def __init__(
        self,
        machines: Iterable[Machine],
        *,
        registry: Optional[MachineRegistry] = None,
        quantum: int = DEFAULT_QUANTUM,
        max_steps: Optional[int] = None,
        after_slice: Optional[Callable[[Machine], None]] = None,
    ) -> None:
        if quantum < 1:
            raise ValueError(f"quantum must be >= 1, got {quantum!r}")
        self.machines: List[Machine] = list(machines)
        self.registry = registry
        self.quantum = quantum
        self.max_steps = max_steps
        self.after_slice = after_slice
        self.rounds = 0
        self.executed = 0

    def run_slice(self, machine: Machine) -> bool:
        """Give one machine one slice.  Returns True if anything changed."""
        vm = machine.vm
        before = (vm.steps, vm.state)
        state = vm.run(max_steps=self.quantum)
        delta = vm.steps - before[0]
        self.executed += delta

        if state.is_terminal:
            machine.finish()
            if self.registry is not None:
                self.registry.notify(machine)
        if state is ExecState.FAILED:
            raise TopologyFailed(machine.name, vm.error) from vm.error
        if self.after_slice is not None:
            self.after_slice(machine)
        return delta > 0 or state is not before[1]

    def run_round(self) -> bool:
        progressed = False
        for machine in self.machines:
            if not machine.is_alive:
                continue
            progressed |= self.run_slice(machine)
        self.rounds += 1
        if self.max_steps is not None and self.executed > self.max_steps:
            raise StepLimitExceeded(self.max_steps)
        return progressed

    def all_terminal(self) -> bool:
        return all(not m.is_alive for m in self.machines)

    def run(self) -> bool:
        while True:
            progressed = self.run_round()
            if self.all_terminal():
                logger.debug("all %d machines terminal after %d rounds, %d steps",
                             len(self.machines), self.rounds, self.executed)
                return True
            if not progressed:
                logger.debug("quiescent after %d rounds: %s", self.rounds,
                             ", ".join(f"{m.name}={m.state.value}" for m in self.machines))
                return False
