"""
runtime/network.py — address-routed star of VM instances.

Every instance owns one network address (0 .. size-1) and is seeded with it
as its first input.  Its output stream is cut into fixed-size packets

    (address, payload_0, ..., payload_{packet_size-2})

and the payload values are queued on the input port of the instance owning
``address``.  Packets for addresses nobody owns go to ``on_unrouted``; with
no hook they fail the topology with RoutingError.

Idle detection
--------------
The network is idle when every input queue is empty, no machine holds a
partial packet, and every live machine is AWAITING_INPUT at the same time.

With ``idle_value`` set (classically -1) an instance that reads an empty
queue is handed that value instead of blocking, so machines never really
block; an instance then counts as idle once it has polled an empty queue
twice in a row without sending or receiving anything in between.

On idle, ``on_idle(network)`` is called.  It may inject packets with
``send()`` and returns truthy to stop the run.  Without a hook an idle
network stops the run.

The network always runs on the cooperative scheduler: routing happens
between slices, on the calling thread.

Bounded inboxes
---------------
With ``capacity`` set, routing never blocks the scheduler.  Payload values
that do not fit are parked in a per-address backlog and moved into the
inbox with ``put_nowait`` after every slice, as the destination drains it.
A non-empty backlog counts as traffic in flight, so the network is never
idle while one exists.
"""

from __future__ import annotations

import logging
import queue
from collections import defaultdict, deque
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from intcode.errors import RoutingError, TopologyFailed
from intcode.vm import ExecState

from runtime.machine import Machine
from runtime.orchestrator import Program, Topology
from runtime.scheduler import DEFAULT_QUANTUM, Scheduler

log = logging.getLogger(__name__)

IDLE_POLLS = 2

IdleHook = Callable[["Network"], Any]
UnroutedHook = Callable[["Network", int, Tuple[int, ...]], Any]


class _StopNetwork(Exception):
    """Raised from inside a slice callback when a hook asked to stop."""


class Network(Topology):
    kind = "net"

    def __init__(
        self,
        program: Program,
        size: int,
        *,
        packet_size: int = 3,
        idle_value: Optional[int] = None,
        on_idle: Optional[IdleHook] = None,
        on_unrouted: Optional[UnroutedHook] = None,
        capacity: Optional[int] = None,
        name: Optional[str] = None,
        **vm_kwargs: Any,
    ) -> None:
        super().__init__(name=name)
        if size < 1:
            raise ValueError(f"network size must be >= 1, got {size}")
        if packet_size < 2:
            raise ValueError("packets need an address and at least one payload value")
        self.size = size
        self.packet_size = packet_size
        self.idle_value = idle_value
        self.on_idle = on_idle
        self.on_unrouted = on_unrouted

        self._partial: Dict[int, List[int]] = defaultdict(list)
        self._backlog: Dict[int, Deque[int]] = defaultdict(deque)
        self._empty_polls: Dict[int, int] = defaultdict(int)
        self._moved = 0
        self.delivered = 0
        self.idle_count = 0

        for addr in range(size):
            inbox = self._port(f"in{addr}", capacity)
            outbox = self._port(f"out{addr}")
            inbox.put_nowait(addr)
            self._spawn(program, f"{self.name}{addr}", inbox, outbox,
                        address=addr, **vm_kwargs)

    # ── packet delivery ──────────────────────────────────────────────────────

    def send(self, address: int, *payload: int) -> None:
        """
        Queue ``payload`` on the input of the machine owning ``address``.
        Values a bounded inbox cannot take yet wait in its backlog.
        """
        if len(payload) != self.packet_size - 1:
            raise ValueError(f"payload must have {self.packet_size - 1} values, got {len(payload)}")
        machine = self.registry.by_address(address)
        if machine is None:
            raise RoutingError(address, payload)
        self._backlog[address].extend(payload)
        self._flush(machine)
        self._empty_polls[address] = 0
        self.delivered += 1

    def _flush(self, machine: Machine) -> None:
        """Move parked payload values into the inbox until it is full."""
        backlog = self._backlog[machine.address]
        while backlog:
            try:
                machine.inbox.put_nowait(backlog[0])
            except queue.Full:
                return
            backlog.popleft()
            self._moved += 1

    def _flush_all(self) -> None:
        for m in self.machines:
            if self._backlog[m.address] and m.is_alive:
                self._flush(m)

    def _route(self, packet: Tuple[int, ...]) -> bool:
        address, payload = packet[0], packet[1:]
        if self.registry.by_address(address) is not None:
            log.debug("%s: packet → %d %s", self.name, address, payload)
            self.send(address, *payload)
            return False
        if self.on_unrouted is None:
            raise RoutingError(address, payload)
        log.debug("%s: unrouted packet → %d %s", self.name, address, payload)
        return bool(self.on_unrouted(self, address, payload))

    def _collect_packets(self, machine: Machine) -> None:
        """Slice callback: cut the machine's output into packets and route them."""
        addr = machine.address
        for value in machine.outbox.drain():
            self._empty_polls[addr] = 0
            buf = self._partial[addr]
            buf.append(value)
            if len(buf) == self.packet_size:
                packet = tuple(buf)
                buf.clear()
                if self._route(packet):
                    raise _StopNetwork
        self._flush_all()

    def _poll(self, machine: Machine) -> None:
        """Hand ``idle_value`` to a machine blocked on an empty queue."""
        if (self.idle_value is not None
                and machine.state is ExecState.AWAITING_INPUT
                and machine.inbox.empty()
                and not self._backlog[machine.address]):
            machine.inbox.put_nowait(self.idle_value)
            self._empty_polls[machine.address] += 1

    # ── idle detection ───────────────────────────────────────────────────────

    def is_idle(self) -> bool:
        live = [m for m in self.machines if m.is_alive]
        if not live:
            return False
        if any(self._partial[m.address] or self._backlog[m.address] for m in live):
            return False
        for m in live:
            if m.state is not ExecState.AWAITING_INPUT or not m.inbox.empty():
                return False
            if self.idle_value is not None and self._empty_polls[m.address] < IDLE_POLLS:
                return False
        return True

    # ── running ──────────────────────────────────────────────────────────────

    def run(
        self,
        *,
        threaded: bool = False,
        quantum: int = DEFAULT_QUANTUM,
        max_steps: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Returns ``True`` when a hook stopped the run, the network went idle
        with no ``on_idle`` hook, or every machine terminated; ``False`` when
        it is stuck (idle and the hook injected nothing, or quiescent).
        """
        if threaded:
            raise ValueError("routed networks run on the cooperative scheduler only")
        scheduler = Scheduler(self.machines, registry=self.registry, quantum=quantum,
                              max_steps=max_steps, after_slice=self._collect_packets)
        try:
            while True:
                moved = self._moved
                self._flush_all()
                for m in self.machines:
                    if m.is_alive:
                        self._poll(m)
                progressed = scheduler.run_round() or self._moved != moved
                if scheduler.all_terminal():
                    return True
                if self.is_idle():
                    self.idle_count += 1
                    log.debug("%s idle (#%d)", self.name, self.idle_count)
                    if self.on_idle is None:
                        return True
                    delivered = self.delivered
                    if self.on_idle(self):
                        return True
                    if self.delivered == delivered:
                        return False
                    continue
                if not progressed:
                    return False
        except _StopNetwork:
            return True
        except RoutingError as exc:
            self.teardown()
            raise TopologyFailed(self.name, exc) from exc
        except TopologyFailed as exc:
            log.error("%s aborted: %s", self.name, exc)
            self.teardown()
            raise

    def packets_pending(self) -> Sequence[int]:
        """Addresses with a partial outgoing packet or a parked incoming payload."""
        return [m.address for m in self.machines
                if self._partial[m.address] or self._backlog[m.address]]
