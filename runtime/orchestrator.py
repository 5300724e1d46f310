"""
runtime/orchestrator.py — wiring VM instances into topologies.

Topologies:
  Pipeline      — instance i's output feeds instance i+1's input; the host
                  feeds instance 0 and reads instance N-1.
  FeedbackLoop  — a pipeline whose last output also feeds instance 0; each
                  instance gets its phase setting first, instance 0 then the
                  initial signal; runs until every instance has halted.
  Network       — address-routed star, see runtime/network.py.

Ownership:
  The topology creates and owns every Port and every Machine.  Machines hold
  only endpoint views of the ports, so a cycle of VMs is never a cycle of
  owners.  Ports are torn down when the topology fails or is closed.

Failure:
  The first machine to fail aborts the whole topology: every port is torn
  down, no further slices are scheduled (threads are cancelled), and
  TopologyFailed is raised to the host chained to the original error.

Phase search (amplifier chains):
  amplify()     — run one chain / loop for a given phase sequence
  max_signal()  — best (phases, signal) over every permutation
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from intcode.errors import TopologyFailed, VMError
from intcode.ports import Port
from intcode.vm import ExecState

from runtime.machine import Machine, MachineRegistry, MachineThread
from runtime.scheduler import DEFAULT_QUANTUM, Scheduler

log = logging.getLogger(__name__)

Program = Sequence[int]

# Seconds a threaded run waits for its machines before giving up.
DEFAULT_THREAD_TIMEOUT = 30.0


# ─────────────────────────────────────────────────────────────────────────────
# Base topology
# ─────────────────────────────────────────────────────────────────────────────

class Topology:
    """
    Common plumbing: port / machine ownership, host I/O, run + teardown.

    Subclasses build their wiring in ``__init__`` via ``_port()`` and
    ``_spawn()`` and set ``entry`` (host → first instance) and ``exit``
    (last instance → host).
    """

    kind = "topology"

    def __init__(self, *, name: Optional[str] = None) -> None:
        self.name = name or self.kind
        self.ports: List[Port] = []
        self.machines: List[Machine] = []
        self.registry = MachineRegistry()
        self.entry: Optional[Port] = None
        self.exit: Optional[Port] = None
        self._threads: List[MachineThread] = []
        self._cancel = threading.Event()
        self._closed = False

    # ── construction helpers ─────────────────────────────────────────────────

    def _port(self, name: str, capacity: Optional[int] = None) -> Port:
        port = Port(capacity, name=f"{self.name}.{name}")
        self.ports.append(port)
        return port

    def _spawn(self, program: Program, name: str, inbox: Port, outbox: Port,
               **kwargs: Any) -> Machine:
        machine = Machine.spawn(program, name, inbox, outbox, **kwargs)
        self.registry.register(machine)
        self.machines.append(machine)
        return machine

    # ── host I/O ─────────────────────────────────────────────────────────────

    def feed(self, *values: int) -> "Topology":
        """
        Push values into the entry port without blocking.

        Raises ``queue.Full`` when a bounded entry port has no room; run()
        the topology so the first instance drains it, then feed again.
        Values queued before the error stay queued.
        """
        for v in values:
            self.entry.put_nowait(v)
        return self

    def close_input(self) -> None:
        """Tell the first instance no more host input will come."""
        self.entry.close()

    def collect(self) -> List[int]:
        """Drain and return everything queued on the exit port."""
        return self.exit.drain()

    # ── state ────────────────────────────────────────────────────────────────

    @property
    def states(self) -> Dict[str, ExecState]:
        return {m.name: m.state for m in self.machines}

    @property
    def done(self) -> bool:
        return all(m.state.is_terminal for m in self.machines)

    # ── running ──────────────────────────────────────────────────────────────

    def run(
        self,
        *,
        threaded: bool = False,
        quantum: int = DEFAULT_QUANTUM,
        max_steps: Optional[int] = None,
        timeout: Optional[float] = DEFAULT_THREAD_TIMEOUT,
    ) -> bool:
        """
        Drive every machine.

        Cooperative (default): returns ``True`` once all machines are
        terminal, ``False`` when nothing can make progress (feed more input
        and call run() again).

        Threaded: one OS thread per machine; blocks until all are terminal.
        Raises ``TimeoutError`` if that takes longer than ``timeout``.
        """
        if self._closed:
            raise VMError(f"{self.name}: topology already torn down")
        if threaded:
            return self._run_threaded(timeout)
        scheduler = Scheduler(self.machines, registry=self.registry,
                              quantum=quantum, max_steps=max_steps)
        try:
            return scheduler.run()
        except TopologyFailed as exc:
            log.error("%s aborted: %s", self.name, exc)
            self.teardown()
            raise

    def _run_threaded(self, timeout: Optional[float]) -> bool:
        if self._threads:
            raise RuntimeError(f"{self.name}: threaded run can only be started once")
        self._threads = [
            MachineThread(m, self.registry, cancel=self._cancel).start()
            for m in self.machines
        ]
        finished = self.registry.wait_all(timeout)
        failed = self.registry.first_failure()
        if failed is not None or not finished:
            self._cancel.set()
            self.teardown()
            for t in self._threads:
                t.join(timeout=2.0)
            if failed is not None:
                log.error("%s aborted: %s failed: %s", self.name, failed.name, failed.error)
                raise TopologyFailed(failed.name, failed.error) from failed.error
            raise TimeoutError(f"{self.name}: machines still running after {timeout} s")
        for t in self._threads:
            t.join()
        return True

    def teardown(self) -> None:
        """Close every port and wake every waiter.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._cancel.set()
        for port in self.ports:
            port.teardown()
        log.debug("%s torn down (%d ports)", self.name, len(self.ports))

    def __enter__(self) -> "Topology":
        return self

    def __exit__(self, *exc_info) -> None:
        self.teardown()

    def __repr__(self) -> str:  # pragma: no cover
        states = ", ".join(f"{n}={s.value}" for n, s in self.states.items())
        return f"{type(self).__name__}({self.name!r}, {states})"


# ─────────────────────────────────────────────────────────────────────────────
# Pipeline / feedback loop
# ─────────────────────────────────────────────────────────────────────────────

def _programs(programs: Union[Program, Sequence[Program]], count: Optional[int]) -> List[Program]:
    """Accept one program (replicated ``count`` times) or a list of programs."""
    if programs and isinstance(programs[0], int):
        if count is None:
            raise ValueError("count is required when a single program is given")
        return [programs] * count
    programs = list(programs)
    if count is not None and count != len(programs):
        raise ValueError(f"count={count} but {len(programs)} programs given")
    return programs


class Pipeline(Topology):
    """
    ``count`` instances in a line.  ``seeds`` (one value or ``None`` per
    instance) are queued on each instance's input before anything runs.
    """

    kind = "pipeline"

    def __init__(
        self,
        programs: Union[Program, Sequence[Program]],
        count: Optional[int] = None,
        *,
        seeds: Optional[Sequence[Optional[int]]] = None,
        capacity: Optional[int] = None,
        name: Optional[str] = None,
        **vm_kwargs: Any,
    ) -> None:
        super().__init__(name=name)
        progs = _programs(programs, count)
        if not progs:
            raise ValueError("a pipeline needs at least one instance")
        if seeds is not None and len(seeds) != len(progs):
            raise ValueError(f"{len(seeds)} seeds for {len(progs)} instances")

        links = [self._port(f"link{i}", capacity) for i in range(len(progs) + 1)]
        for i, program in enumerate(progs):
            self._spawn(program, f"{self.name}{i}", links[i], links[i + 1], **vm_kwargs)
        if seeds is not None:
            for port, seed in zip(links, seeds):
                if seed is not None:
                    port.put_nowait(seed)
        self.entry = links[0]
        self.exit = links[-1]


class FeedbackLoop(Topology):
    """
    Pipeline closed into a ring.  The ring port written by the last instance
    is the first instance's input, so ``exit is entry``; ``signal`` is the
    last value the last instance produced.
    """

    kind = "loop"

    def __init__(
        self,
        programs: Union[Program, Sequence[Program]],
        phases: Sequence[int],
        signal: Optional[int] = 0,
        *,
        capacity: Optional[int] = None,
        name: Optional[str] = None,
        **vm_kwargs: Any,
    ) -> None:
        super().__init__(name=name)
        progs = _programs(programs, len(phases))
        n = len(progs)
        if n == 0:
            raise ValueError("a feedback loop needs at least one instance")
        if capacity is not None and capacity < 2:
            # instance 0's port must hold its phase and the initial signal
            raise ValueError("feedback loop ports need capacity >= 2")

        ring = [self._port(f"ring{i}", capacity) for i in range(n)]
        for i, program in enumerate(progs):
            self._spawn(program, f"{self.name}{i}", ring[i], ring[(i + 1) % n], **vm_kwargs)
        for port, phase in zip(ring, phases):
            port.put_nowait(phase)
        if signal is not None:
            ring[0].put_nowait(signal)
        self.entry = ring[0]
        self.exit = ring[0]

    @property
    def signal(self) -> Optional[int]:
        return self.machines[-1].vm.last_output


# ─────────────────────────────────────────────────────────────────────────────
# Phase search
# ─────────────────────────────────────────────────────────────────────────────

def amplify(
    program: Program,
    phases: Sequence[int],
    signal: int = 0,
    *,
    feedback: bool = False,
    threaded: bool = False,
    max_steps: Optional[int] = None,
) -> int:
    """Run an amplifier chain (or feedback loop) and return the final signal."""
    if feedback:
        topo: Topology = FeedbackLoop(program, phases, signal)
    else:
        topo = Pipeline(program, len(phases), seeds=phases)
        topo.feed(signal)
    with topo:
        topo.run(threaded=threaded, max_steps=max_steps)
        result = topo.machines[-1].vm.last_output
    if result is None:
        raise VMError(f"{topo.name} produced no output for phases {tuple(phases)}")
    return result


def max_signal(
    program: Program,
    phase_values: Iterable[int],
    *,
    feedback: bool = False,
    max_steps: Optional[int] = None,
) -> Tuple[Tuple[int, ...], int]:
    """
    Try every permutation of ``phase_values``; return ``(phases, signal)`` for
    the highest signal.  Ties keep the later permutation.
    """
    best: Optional[Tuple[Tuple[int, ...], int]] = None
    for phases in itertools.permutations(phase_values):
        value = amplify(program, phases, feedback=feedback, max_steps=max_steps)
        if best is None or value >= best[1]:
            best = (phases, value)
    if best is None:
        raise ValueError("phase_values must not be empty")
    log.debug("best phases %s → %d", best[0], best[1])
    return best
