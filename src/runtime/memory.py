"""Runtime storage: variable cells, the cell arena and call-stack frames.

Cells live in a single CellArena and frames refer to them by integer
handle. A CALL ... USING binds the callee's Linkage names to the caller's
handles, so both frames see the same storage. Frames record the arena
watermark when they are pushed; popping a frame releases every cell
allocated above it.
"""

import re
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Dict, Iterator, List, Optional, Tuple, Union

from cobol_ast.nodes import CobolProgram, PicType, VariableDeclaration
from .errors import RuntimeAbend, RuntimeStateError

Value = Union[str, Decimal]

NUMERIC_TEXT = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")


def plain_text(value: Value) -> str:
    """Render a value the way DISPLAY shows it: numbers without leading zeros."""
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return str(int(value))
        return format(value.normalize(), "f")
    return value


def parse_number(text: str) -> Optional[Decimal]:
    """Parse numeric text; returns None when the text is not a number."""
    stripped = text.strip()
    if not NUMERIC_TEXT.match(stripped):
        return None
    try:
        return Decimal(stripped)
    except InvalidOperation:
        return None


def to_number(value: Value) -> Decimal:
    """Convert a value for arithmetic. Blank text is zero.

    Raises:
        RuntimeAbend: IGZ0020S when the text is not numeric
    """
    if isinstance(value, Decimal):
        return value
    if not value.strip():
        return Decimal(0)
    number = parse_number(value)
    if number is None:
        raise RuntimeAbend("IGZ0020S", f"INVALID NUMERIC DATA '{value}'.")
    return number


def fit_numeric(value: Decimal, length: int) -> Decimal:
    """Truncate toward zero and keep the low-order ``length`` digits, sign preserved."""
    integral = value.to_integral_value(rounding=ROUND_DOWN)
    magnitude = abs(integral) % (Decimal(10) ** length)
    result = -magnitude if integral < 0 else magnitude
    # avoid a negative zero
    return result + 0


def fit_alphanumeric(text: str, length: int) -> str:
    """Right-pad with spaces or truncate to exactly ``length`` characters."""
    return text[:length].ljust(length)


@dataclass
class VariableCell:
    """One mutable unit of storage."""

    name: str
    pic_type: PicType
    length: int
    value: Value

    @property
    def is_numeric(self) -> bool:
        return self.pic_type == PicType.NUMERIC

    @property
    def text(self) -> str:
        return plain_text(self.value)

    def store(self, value: Value, figurative: Optional[str] = None) -> None:
        """Assign with PICTURE rules applied.

        Numeric cells truncate and wrap; Alphanumeric cells pad or
        truncate. ZERO fills an Alphanumeric cell with zeros and SPACE
        stores zero into a Numeric cell.
        """
        if self.is_numeric:
            if figurative == "SPACE":
                self.value = Decimal(0)
            else:
                self.value = fit_numeric(to_number(value), self.length)
        elif figurative == "ZERO":
            self.value = "0" * self.length
        elif figurative == "SPACE":
            self.value = " " * self.length
        else:
            self.value = fit_alphanumeric(plain_text(value), self.length)

    def store_slice(self, value: Value, start: int, length: int) -> None:
        """Overwrite ``length`` characters from 1-based ``start`` in place."""
        if self.is_numeric:
            raise RuntimeAbend(
                "IGZ0014S", f"REFERENCE MODIFICATION OF NUMERIC ITEM '{self.name}'."
            )
        current = self.value
        begin = start - 1
        piece = fit_alphanumeric(plain_text(value), length)
        self.value = fit_alphanumeric(current[:begin].ljust(begin) + piece + current[begin + length :], self.length)


def initial_cell(declaration: VariableDeclaration) -> VariableCell:
    """Create a cell holding the declared VALUE or the type default."""
    if declaration.is_numeric:
        cell = VariableCell(declaration.name, declaration.pic_type, declaration.length, Decimal(0))
    else:
        cell = VariableCell(declaration.name, declaration.pic_type, declaration.length, " " * declaration.length)
    if declaration.default_value is not None or declaration.figurative is not None:
        default = declaration.default_value if declaration.default_value is not None else ""
        cell.store(default, declaration.figurative)
    return cell


class CellArena:
    """Flat storage for every live cell; frames hold handles into it."""

    def __init__(self):
        self._cells: List[VariableCell] = []

    def __len__(self) -> int:
        return len(self._cells)

    @property
    def watermark(self) -> int:
        return len(self._cells)

    def allocate(self, cell: VariableCell) -> int:
        self._cells.append(cell)
        return len(self._cells) - 1

    def get(self, handle: int) -> VariableCell:
        if handle < 0 or handle >= len(self._cells):
            raise RuntimeStateError(f"Dangling cell handle {handle}")
        return self._cells[handle]

    def release_to(self, watermark: int) -> None:
        """Free every cell allocated at or above ``watermark``."""
        del self._cells[watermark:]

    def clear(self) -> None:
        self._cells.clear()


@dataclass
class StackFrame:
    """Activation record of one program invocation.

    ``locals`` holds handles allocated by this frame (Working-Storage, file
    records and unbound Linkage items); ``linkage`` holds handles borrowed
    from the caller.
    """

    program: CobolProgram
    watermark: int
    locals: Dict[str, int] = field(default_factory=dict)
    linkage: Dict[str, int] = field(default_factory=dict)
    linked: bool = False

    @property
    def program_id(self) -> str:
        return self.program.program_id

    def resolve(self, name: str) -> Optional[int]:
        handle = self.locals.get(name)
        if handle is None:
            handle = self.linkage.get(name)
        return handle

    def names(self) -> Iterator[Tuple[str, int]]:
        yield from self.locals.items()
        yield from self.linkage.items()


def snapshot(arena: CellArena, frame: StackFrame) -> Dict[str, VariableCell]:
    """Copy the cells visible in ``frame`` for host-side inspection."""
    return {name: replace(arena.get(handle)) for name, handle in frame.names()}
