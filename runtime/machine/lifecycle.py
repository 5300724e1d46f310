"""
runtime.machine.lifecycle
=========================
The VM Instance: one ``IntcodeVM`` coupled to one input and one output port.

Imported by both the registry and the thread runner, so it lives on its own
to avoid circular imports.

State machine (delegated to the executor)::

    RUNNING ──► AWAITING_INPUT ──► RUNNING
       │    └─► AWAITING_OUTPUT ─► RUNNING
       ├──► HALTED   (terminal — output port closed by finish())
       └──► FAILED   (terminal — topology aborted by the orchestrator)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from intcode.ports import Port
from intcode.vm import ExecState, IntcodeVM

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Machine:
    """
    A VM instance wired into a topology.

    Fields
    ------
    name : str
        Unique within its topology, e.g. ``"amp2"`` or ``"net17"``.
    vm : IntcodeVM
        Exclusively owned executor (memory, ip, relative base, state).
    inbox, outbox : Port
        Non-owning references to the ports the orchestrator created; the VM
        itself only sees their consumer / producer endpoints.
    address : int | None
        Network address for routed topologies.
    born_at, died_at : float
        ``time.monotonic()`` stamps; ``died_at`` is set by finish().
    """
    name      : str
    vm        : IntcodeVM
    inbox     : Port            = field(repr=False)
    outbox    : Port            = field(repr=False)
    address   : Optional[int]   = None
    born_at   : float           = field(default_factory=time.monotonic)
    died_at   : Optional[float] = None
    crash     : Optional[BaseException] = field(default=None, repr=False)

    @classmethod
    def spawn(
        cls,
        program: Iterable[int],
        name: str,
        inbox: Port,
        outbox: Port,
        *,
        address: Optional[int] = None,
        **vm_kwargs: Any,
    ) -> "Machine":
        """Load a fresh VM from ``program`` and wire it between two ports."""
        vm = IntcodeVM(
            program,
            inputs=inbox.consumer,
            outputs=outbox.producer,
            name=name,
            **vm_kwargs,
        )
        logger.debug("SPAWN %s in=%s out=%s addr=%s", name, inbox.name, outbox.name, address)
        return cls(name=name, vm=vm, inbox=inbox, outbox=outbox, address=address)

    # ── convenience ──────────────────────────────────────────────────────

    @property
    def state(self) -> ExecState:
        return self.vm.state

    @property
    def is_alive(self) -> bool:
        return not self.vm.state.is_terminal and self.died_at is None

    @property
    def error(self) -> Optional[BaseException]:
        return self.vm.error or self.crash

    @property
    def lifetime_ms(self) -> float:
        end = self.died_at if self.died_at else time.monotonic()
        return (end - self.born_at) * 1_000

    def finish(self) -> None:
        """
        Record the end of a terminal VM.  A clean halt closes the output port
        so whoever reads it drains the remaining values and then sees closure.
        Idempotent.
        """
        if self.died_at is not None:
            return
        self.died_at = time.monotonic()
        if self.vm.state is ExecState.HALTED:
            self.outbox.close()
        logger.debug(
            "%s finished state=%s steps=%d lifetime=%.2f ms",
            self.name, self.vm.state.value, self.vm.steps, self.lifetime_ms,
        )
