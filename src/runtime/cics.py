"""Pseudo-conversational CICS state: the 3270 screen and task context."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from cobol_ast.nodes import BMSMapDefinition, MapField

SCREEN_ROWS = 24
SCREEN_COLUMNS = 80

# EIBRESP values for the conditions the simulator raises
RESP_CODES = {"NORMAL": 0, "NOTFND": 13, "DUPREC": 14, "MAPFAIL": 36}

# Abend codes for conditions nobody handled
CONDITION_ABENDS = {"NOTFND": "AEIM", "DUPREC": "AEIN", "MAPFAIL": "AEI9"}


@dataclass
class ScreenChar:
    """One screen position."""

    char: str = " "
    attr: str = "NORMAL"


class ScreenBuffer:
    """A 24x80 character screen. Rows and columns are 1-based."""

    def __init__(self, rows: int = SCREEN_ROWS, columns: int = SCREEN_COLUMNS):
        self.rows = rows
        self.columns = columns
        self.cells: List[List[ScreenChar]] = []
        self.clear()

    def clear(self) -> None:
        self.cells = [[ScreenChar() for _ in range(self.columns)] for _ in range(self.rows)]

    def write(self, row: int, column: int, text: str, attr: str = "NORMAL") -> None:
        """Write text starting at (row, column); anything past the row end is clipped."""
        if not 1 <= row <= self.rows:
            return
        line = self.cells[row - 1]
        for offset, char in enumerate(text):
            index = column - 1 + offset
            if 0 <= index < self.columns:
                line[index] = ScreenChar(char, attr)

    def read(self, row: int, column: int, length: int) -> str:
        if not 1 <= row <= self.rows:
            return " " * length
        line = self.cells[row - 1]
        start = column - 1
        return "".join(
            line[i].char if 0 <= i < self.columns else " " for i in range(start, start + length)
        )

    def lines(self) -> List[str]:
        return ["".join(cell.char for cell in row) for row in self.cells]

    def __str__(self) -> str:
        return "\n".join(self.lines())


@dataclass
class NextTransaction:
    """Transaction chained by EXEC CICS RETURN TRANSID(...)."""

    trans_id: str
    commarea: str = ""


@dataclass
class CicsContext:
    """Per-task CICS state owned by the runtime."""

    screen: ScreenBuffer = field(default_factory=ScreenBuffer)
    trans_id: Optional[str] = None
    commarea: str = ""
    handlers: Dict[str, str] = field(default_factory=dict)
    receiving_map: Optional[BMSMapDefinition] = None
    next_transaction: Optional[NextTransaction] = None
    last_resp: int = 0

    def reset(self) -> None:
        self.screen.clear()
        self.handlers.clear()
        self.receiving_map = None
        self.next_transaction = None
        self.last_resp = 0

    def field_at(self, map_field: MapField) -> str:
        return self.screen.read(map_field.row, map_field.column, map_field.length)

    def key_in(self, map_field: MapField, text: str) -> None:
        """Simulate the operator typing into a map field."""
        self.screen.write(map_field.row, map_field.column, text[: map_field.length].ljust(map_field.length), "INPUT")

