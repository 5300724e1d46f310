"""Intcode Virtual Machine — executes a loaded program against growable memory.

Execution model:
  - step() runs exactly one instruction (or one attempt to resume a
    suspended IN / OUT) and never blocks.
  - IN with nothing queued suspends in AWAITING_INPUT; the write address is
    resolved once, and the resume completes exactly that pending write.
  - OUT against a full bounded port suspends in AWAITING_OUTPUT holding the
    already-fetched value.
  - Any VMError raised while executing turns the VM FAILED with the error
    kept on ``vm.error``; nothing is raised to the caller of step()/run().
  - run_blocking() drives the same state machine from a dedicated thread by
    waiting on the ports between run() calls.
"""
from __future__ import annotations

import logging
import queue
import sys
import threading
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from intcode.disasm import format_instruction
from intcode.errors import (
    InputClosed, InvalidWriteTarget, PortClosed, StepLimitExceeded, ValueOverflow, VMError,
)
from intcode.isa import IMMEDIATE, POSITION, RELATIVE, OPCODES, Instruction, decode, fits_word
from intcode.memory import DEFAULT_MAX_MEMORY, Memory
from intcode.ports import Consumer, Port, Producer

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 10_000_000

ON_INPUT_CLOSED = ("halt", "fail")


class ExecState(Enum):
    RUNNING         = "running"
    AWAITING_INPUT  = "awaiting_input"
    AWAITING_OUTPUT = "awaiting_output"
    HALTED          = "halted"
    FAILED          = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecState.HALTED, ExecState.FAILED)

    @property
    def is_suspended(self) -> bool:
        return self in (ExecState.AWAITING_INPUT, ExecState.AWAITING_OUTPUT)


class IntcodeVM:
    """
    One executor: memory, instruction pointer, relative base, lifecycle flag.

    ``inputs`` / ``outputs`` are port endpoints owned by someone else.  When
    omitted the VM creates private unbounded ports, which makes the VM usable
    on its own through feed() / take_output() / run_and_collect().
    """

    def __init__(
        self,
        program: Iterable[int],
        *,
        inputs: Optional[Consumer] = None,
        outputs: Optional[Producer] = None,
        name: str = "vm",
        max_memory: int = DEFAULT_MAX_MEMORY,
        on_input_closed: str = "halt",
        trace: bool = False,
    ):
        if on_input_closed not in ON_INPUT_CLOSED:
            raise ValueError(f"on_input_closed must be one of {ON_INPUT_CLOSED}")
        self.name = name
        self.memory = Memory(program, max_size=max_memory)
        self.ip = 0
        self.relative_base = 0
        self.state = ExecState.RUNNING
        self.error: Optional[VMError] = None
        self.steps = 0
        self.last_output: Optional[int] = None
        self.on_input_closed = on_input_closed
        self.trace = trace

        self.inputs = inputs if inputs is not None else Port(name=f"{name}.in").consumer
        self.outputs = outputs if outputs is not None else Port(name=f"{name}.out").producer

        # IN: resolved write address; OUT: fetched value.
        self._pending: Optional[int] = None

    # ── host conveniences ─────────────────────────────────────────────────────

    def noun(self, value: int) -> "IntcodeVM":
        """Set memory address 1."""
        if not 0 <= value <= 99:
            raise ValueError(f"noun must be 0–99, got {value}")
        self.memory.write(1, value)
        return self

    def verb(self, value: int) -> "IntcodeVM":
        """Set memory address 2."""
        if not 0 <= value <= 99:
            raise ValueError(f"verb must be 0–99, got {value}")
        self.memory.write(2, value)
        return self

    @property
    def result(self) -> int:
        return self.memory.read(0)

    def feed(self, *values: int) -> "IntcodeVM":
        for v in values:
            self.inputs.port.put(v)
        return self

    def close_input(self) -> None:
        self.inputs.port.close()

    def take_output(self) -> List[int]:
        return self.outputs.port.drain()

    @property
    def halted(self) -> bool:
        return self.state is ExecState.HALTED

    @property
    def failed(self) -> bool:
        return self.state is ExecState.FAILED

    def raise_for_state(self) -> None:
        if self.state is ExecState.FAILED and self.error is not None:
            raise self.error

    # ── parameter resolution ─────────────────────────────────────────────────

    def _address(self, ins: Instruction, args: Sequence[int], n: int) -> int:
        mode = ins.modes[n]
        if mode == POSITION:
            return args[n]
        if mode == RELATIVE:
            return self.relative_base + args[n]
        raise InvalidWriteTarget(
            f"{ins.mnemonic} at ip={self.ip}: parameter {n} is immediate-mode and cannot be written"
        )

    def _fetch(self, ins: Instruction, args: Sequence[int], n: int) -> int:
        if ins.modes[n] == IMMEDIATE:
            return args[n]
        return self.memory.read(self._address(ins, args, n))

    def _store(self, ins: Instruction, args: Sequence[int], n: int, value: int) -> None:
        self.memory.write(self._address(ins, args, n), value)

    # ── opcode handlers ──────────────────────────────────────────────────────
    #   Fixed signature: (ins, args) -> new ip, or None to fall through.

    def _op_add(self, ins, args):
        self._store(ins, args, 2, self._fetch(ins, args, 0) + self._fetch(ins, args, 1))

    def _op_mul(self, ins, args):
        self._store(ins, args, 2, self._fetch(ins, args, 0) * self._fetch(ins, args, 1))

    def _op_in(self, ins, args):
        self._pending = self._address(ins, args, 0)
        self.state = ExecState.AWAITING_INPUT

    def _op_out(self, ins, args):
        self._pending = self._fetch(ins, args, 0)
        self.state = ExecState.AWAITING_OUTPUT

    def _op_jnz(self, ins, args):
        if self._fetch(ins, args, 0) != 0:
            return self._fetch(ins, args, 1)

    def _op_jz(self, ins, args):
        if self._fetch(ins, args, 0) == 0:
            return self._fetch(ins, args, 1)

    def _op_lt(self, ins, args):
        self._store(ins, args, 2, int(self._fetch(ins, args, 0) < self._fetch(ins, args, 1)))

    def _op_eq(self, ins, args):
        self._store(ins, args, 2, int(self._fetch(ins, args, 0) == self._fetch(ins, args, 1)))

    def _op_arb(self, ins, args):
        base = self.relative_base + self._fetch(ins, args, 0)
        if not fits_word(base):
            raise ValueOverflow(base)
        self.relative_base = base

    def _op_halt(self, ins, args):
        self._halt()

    _HANDLERS: Dict[int, Callable] = {
        OPCODES["ADD"]:  _op_add,
        OPCODES["MUL"]:  _op_mul,
        OPCODES["IN"]:   _op_in,
        OPCODES["OUT"]:  _op_out,
        OPCODES["JNZ"]:  _op_jnz,
        OPCODES["JZ"]:   _op_jz,
        OPCODES["LT"]:   _op_lt,
        OPCODES["EQ"]:   _op_eq,
        OPCODES["ARB"]:  _op_arb,
        OPCODES["HALT"]: _op_halt,
    }

    # ── state transitions ────────────────────────────────────────────────────

    def _halt(self, reason: str = "halt") -> None:
        self.state = ExecState.HALTED
        self._pending = None
        logger.debug("VM %s halted (%s) after %d steps", self.name, reason, self.steps)

    def _fail(self, exc: VMError) -> None:
        self.state = ExecState.FAILED
        self.error = exc
        self._pending = None
        logger.error("VM %s failed at ip=%d: %s", self.name, self.ip, exc)

    def _finish_instruction(self, ins: Instruction, target: Optional[int]) -> None:
        self.ip = target if target is not None else self.ip + ins.length
        self.steps += 1

    def _resume_input(self) -> None:
        try:
            value = self.inputs.get_nowait()
        except queue.Empty:
            return
        except PortClosed:
            if self.on_input_closed == "fail":
                raise InputClosed(f"VM {self.name}: input closed while awaiting a value at ip={self.ip}")
            self._halt("input closed")
            return
        self.memory.write(self._pending, value)
        self._pending = None
        self.state = ExecState.RUNNING
        self.ip += 2
        self.steps += 1

    def _resume_output(self) -> None:
        try:
            self.outputs.put_nowait(self._pending)
        except queue.Full:
            return
        self.last_output = self._pending
        self._pending = None
        self.state = ExecState.RUNNING
        self.ip += 2
        self.steps += 1

    # ── execution ────────────────────────────────────────────────────────────

    def step(self) -> ExecState:
        """Execute one instruction, or retry the suspended one.  Never raises VMError."""
        state = self.state
        if state.is_terminal:
            return state
        try:
            if state is ExecState.AWAITING_INPUT:
                self._resume_input()
            elif state is ExecState.AWAITING_OUTPUT:
                self._resume_output()
            else:
                self._execute()
        except VMError as exc:
            self._fail(exc)
        return self.state

    def _execute(self) -> None:
        ins = decode(self.memory.read(self.ip), self.ip)
        args = self.memory.read_slice(self.ip + 1, len(ins.modes))
        if self.trace:
            print(f"  [{self.name}] ip={self.ip:05d} rb={self.relative_base:<6d} "
                  f"{format_instruction(ins, args)}", file=sys.stderr)
        target = self._HANDLERS[ins.opcode](self, ins, args)
        if self.state is ExecState.RUNNING:
            self._finish_instruction(ins, target)
        elif self.state is ExecState.HALTED:
            self.steps += 1
        elif self.state is ExecState.AWAITING_INPUT:
            self._resume_input()
        elif self.state is ExecState.AWAITING_OUTPUT:
            self._resume_output()

    def run(self, max_steps: Optional[int] = None) -> ExecState:
        """
        Step until the VM suspends or terminates.

        ``max_steps`` bounds the number of step() calls made here; when it is
        used up the VM is left RUNNING and can simply be run again.
        """
        budget = max_steps
        while True:
            state = self.step()
            if state is not ExecState.RUNNING:
                return state
            if budget is not None:
                budget -= 1
                if budget <= 0:
                    return state

    def run_blocking(
        self,
        cancel: Optional[threading.Event] = None,
        poll: Optional[float] = None,
    ) -> ExecState:
        """
        Run to a terminal state, waiting on the ports whenever suspended.

        Meant for one-thread-per-VM execution.  Returns early (non-terminal)
        once ``cancel`` is set.
        """
        while True:
            if cancel is not None and cancel.is_set():
                return self.state
            state = self.run()
            if state is ExecState.AWAITING_INPUT:
                self.inputs.wait_readable(timeout=poll)
            elif state is ExecState.AWAITING_OUTPUT:
                self.outputs.wait_writable(timeout=poll)
            else:
                return state

    def run_and_collect(
        self,
        inputs: Iterable[int] = (),
        *,
        max_steps: int = DEFAULT_MAX_STEPS,
    ) -> List[int]:
        """
        Feed ``inputs``, run to completion and return every output value.

        Raises the VM's error if it fails, InputClosed if the program asks
        for more input than was supplied, and StepLimitExceeded past
        ``max_steps`` instructions.
        """
        self.feed(*inputs)
        outputs: List[int] = []
        start = self.steps
        while True:
            state = self.run(max_steps=max_steps)
            outputs.extend(self.take_output())
            if state is ExecState.HALTED:
                return outputs
            if state is ExecState.FAILED:
                self.raise_for_state()
            if state is ExecState.AWAITING_INPUT:
                raise InputClosed(f"VM {self.name} needs more input at ip={self.ip}")
            if self.steps - start >= max_steps:
                raise StepLimitExceeded(max_steps)

    def __repr__(self) -> str:  # pragma: no cover
        return (f"IntcodeVM({self.name!r}, state={self.state.value}, ip={self.ip}, "
                f"rb={self.relative_base}, steps={self.steps})")
