"""
intcode.errors
==============
Exception taxonomy shared by the executor, the ports and the orchestrator.

Kept in its own module so ``memory``, ``ports``, ``vm`` and the runtime layer
can all import it without circular imports.

    VMError
    ├── ParseError            malformed program text (also a ValueError)
    ├── AddressError          negative / oversized address  (alias InvalidAddress)
    ├── UnknownOpcode         opcode outside the fixed table
    ├── InvalidParameterMode  mode digit other than 0, 1, 2
    ├── InvalidWriteTarget    write through an immediate-mode parameter
    ├── ValueOverflow         result outside signed 64-bit range
    ├── PortClosed            port closed or torn down
    │   └── InputClosed       input requested after the input port closed
    ├── TopologyFailed        one instance failed; carries .instance / .error
    ├── RoutingError          network packet for an address nobody owns
    └── StepLimitExceeded     host safety cap hit
"""

from __future__ import annotations

from typing import Optional


class VMError(Exception):
    """Base class of every error raised by this package."""


class ParseError(VMError, ValueError):
    """Program text contains a token that is not a signed decimal integer."""

    def __init__(self, token: str, index: int, reason: str = "not an integer") -> None:
        self.token = token
        self.index = index
        super().__init__(f"Invalid program token {token!r} at position {index}: {reason}")


class AddressError(VMError):
    """A negative (or unreasonably large) memory address was computed or requested."""

    def __init__(self, addr: int, reason: str = "negative address") -> None:
        self.addr = addr
        super().__init__(f"Invalid memory address {addr}: {reason}")


InvalidAddress = AddressError


class UnknownOpcode(VMError):
    def __init__(self, opcode: int, ip: Optional[int] = None) -> None:
        self.opcode = opcode
        self.ip = ip
        where = f" at ip={ip}" if ip is not None else ""
        super().__init__(f"Unknown opcode {opcode}{where}")


class InvalidParameterMode(VMError):
    def __init__(self, mode: int, param: int, word: int) -> None:
        self.mode = mode
        self.param = param
        self.word = word
        super().__init__(
            f"Unknown parameter mode {mode} for parameter {param} in instruction {word}"
        )


class InvalidWriteTarget(VMError):
    """Instruction tried to store through an immediate-mode parameter."""


class ValueOverflow(VMError, OverflowError):
    def __init__(self, value: int) -> None:
        self.value = value
        super().__init__(f"Value {value} does not fit in a signed 64-bit word")


class PortClosed(VMError):
    """Port has been closed by its producer or torn down by its owner."""


class InputClosed(PortClosed):
    """Input was requested but the input port is closed and empty."""


class TopologyFailed(VMError):
    """
    Raised by the orchestrator when any instance enters the Failed state.

    ``instance`` is the name of the first instance that failed and ``error``
    the original exception (also set as ``__cause__``).
    """

    def __init__(self, instance: str, error: BaseException) -> None:
        self.instance = instance
        self.error = error
        super().__init__(f"Instance {instance} failed: {error}")


class RoutingError(VMError):
    def __init__(self, address: int, payload: tuple) -> None:
        self.address = address
        self.payload = payload
        super().__init__(f"No instance owns network address {address} (payload={payload})")


class StepLimitExceeded(VMError):
    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Execution exceeded the limit of {limit} steps")
