"""Intcode memory — a zero-extended list arena addressed from 0."""
from __future__ import annotations

from typing import Iterable, List, Sequence

from intcode.errors import AddressError, ValueOverflow
from intcode.isa import fits_word

# 16 Mi cells; writes past this are treated as a runaway address.
DEFAULT_MAX_MEMORY = 2 ** 24


class Memory:
    """
    Growable memory of signed 64-bit values.

    Reads beyond the high-water mark return 0 without materializing anything;
    writes beyond it extend the arena with zeros.  Negative addresses are
    always an AddressError.
    """

    __slots__ = ("_cells", "max_size")

    def __init__(self, program: Iterable[int] = (), *, max_size: int = DEFAULT_MAX_MEMORY):
        self._cells: List[int] = list(program)
        self.max_size = max_size
        for value in self._cells:
            if not fits_word(value):
                raise ValueOverflow(value)

    def read(self, addr: int) -> int:
        if addr < 0:
            raise AddressError(addr)
        if addr >= len(self._cells):
            return 0
        return self._cells[addr]

    def write(self, addr: int, value: int) -> None:
        if addr < 0:
            raise AddressError(addr)
        if addr >= self.max_size:
            raise AddressError(addr, f"beyond memory limit of {self.max_size} cells")
        if not fits_word(value):
            raise ValueOverflow(value)
        cells = self._cells
        if addr >= len(cells):
            cells.extend([0] * (addr + 1 - len(cells)))
        cells[addr] = value

    def read_slice(self, addr: int, length: int) -> List[int]:
        """Values at ``addr .. addr+length-1`` (zero-filled past the end)."""
        return [self.read(a) for a in range(addr, addr + length)]

    def snapshot(self) -> List[int]:
        return list(self._cells)

    def __len__(self) -> int:
        return len(self._cells)

    def __getitem__(self, addr: int) -> int:
        return self.read(addr)

    def __setitem__(self, addr: int, value: int) -> None:
        self.write(addr, value)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Memory):
            return self._cells == other._cells
        if isinstance(other, Sequence):
            return self._cells == list(other)
        return NotImplemented

    def __repr__(self) -> str:  # pragma: no cover
        head = ",".join(str(v) for v in self._cells[:8])
        more = ",..." if len(self._cells) > 8 else ""
        return f"Memory(size={len(self._cells)}, [{head}{more}])"
