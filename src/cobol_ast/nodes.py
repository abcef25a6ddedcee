"""AST node definitions for COBOL programs.

This module defines the executable AST produced by the parser: data
declarations, file and map descriptors, expressions, conditions and the
closed set of statement kinds the runtime knows how to execute. Every
node that maps to source text carries a SourceSpan; the debug tree is
derived from those spans.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, Union


class PicType(Enum):
    """Logical type of an elementary data item."""

    ALPHANUMERIC = "X"
    NUMERIC = "9"


@dataclass
class SourceSpan:
    """Source location of a construct: first token position and last line."""

    line: int = 0
    column: int = 0
    end_line: int = 0


# --- Operands and expressions ---


@dataclass
class Literal:
    """A literal operand. ``figurative`` is ZERO or SPACE for figurative constants."""

    value: Union[str, Decimal]
    figurative: Optional[str] = None

    @property
    def is_numeric(self) -> bool:
        return isinstance(self.value, Decimal)


@dataclass
class VariableRef:
    """A reference to a data item, resolved only at evaluation time."""

    name: str


Operand = Union[Literal, VariableRef]


class BinaryOperator(Enum):
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"
    POWER = "**"


@dataclass
class UnaryExpression:
    """Arithmetic negation."""

    operand: "Expression"


@dataclass
class BinaryExpression:
    operator: BinaryOperator
    left: "Expression"
    right: "Expression"


Expression = Union[Literal, VariableRef, UnaryExpression, BinaryExpression]


class RelationalOperator(Enum):
    EQUAL = "="
    GREATER = ">"
    LESS = "<"


@dataclass
class Condition:
    """A simple relation condition: left operand, operator, right operand."""

    left: Operand
    operator: RelationalOperator
    right: Operand


# --- Data division ---


@dataclass
class VariableDeclaration:
    """An elementary data item declared in the DATA DIVISION."""

    level: int
    name: str
    pic_type: PicType
    length: int
    picture: str = ""
    default_value: Optional[Union[str, Decimal]] = None
    figurative: Optional[str] = None
    span: SourceSpan = field(default_factory=SourceSpan)

    @property
    def is_numeric(self) -> bool:
        return self.pic_type == PicType.NUMERIC


class FileOrganization(Enum):
    SEQUENTIAL = "SEQUENTIAL"
    INDEXED = "INDEXED"


class AccessMode(Enum):
    SEQUENTIAL = "SEQUENTIAL"
    RANDOM = "RANDOM"
    DYNAMIC = "DYNAMIC"


@dataclass
class FileControlEntry:
    """A SELECT entry of the FILE-CONTROL paragraph."""

    file_name: str
    external_name: str
    organization: FileOrganization = FileOrganization.SEQUENTIAL
    access_mode: AccessMode = AccessMode.SEQUENTIAL
    record_key: Optional[str] = None
    file_status: Optional[str] = None
    span: SourceSpan = field(default_factory=SourceSpan)


@dataclass
class FileDescription:
    """An FD entry and the record descriptions that follow it."""

    file_name: str
    records: List[VariableDeclaration] = field(default_factory=list)
    span: SourceSpan = field(default_factory=SourceSpan)


@dataclass
class MapField:
    """A named field of a BMS map, positioned on the 24x80 screen."""

    name: str
    row: int
    column: int
    length: int
    initial: Optional[str] = None
    span: SourceSpan = field(default_factory=SourceSpan)


@dataclass
class BMSMapDefinition:
    """A screen map used by EXEC CICS SEND MAP / RECEIVE MAP."""

    map_name: str
    mapset_name: Optional[str] = None
    fields: List[MapField] = field(default_factory=list)
    span: SourceSpan = field(default_factory=SourceSpan)


@dataclass
class DataDivision:
    working_storage: List[VariableDeclaration] = field(default_factory=list)
    linkage: List[VariableDeclaration] = field(default_factory=list)
    file_section: List[FileDescription] = field(default_factory=list)
    map_section: List[BMSMapDefinition] = field(default_factory=list)
    span: SourceSpan = field(default_factory=SourceSpan)

    @property
    def file_records(self) -> List[VariableDeclaration]:
        return [record for fd in self.file_section for record in fd.records]


# --- Statements ---


class Statement:
    """Base class of all executable statements (a closed set, see STATEMENT_TYPES)."""

    span: SourceSpan

    def children(self) -> Iterator[Tuple[str, List["Statement"]]]:
        """Yield (role, statements) pairs for nested statement lists."""
        return iter(())


@dataclass
class ReferenceModification:
    """``name(start:length)``; start is 1-based."""

    start: int
    length: int


@dataclass
class MoveStatement(Statement):
    source: Operand
    target: str
    ref_mod: Optional[ReferenceModification] = None
    span: SourceSpan = field(default_factory=SourceSpan)


@dataclass
class ArithmeticStatement(Statement):
    """Shared shape of ADD/SUBTRACT/MULTIPLY/DIVIDE.

    ``operand`` is the first operand, ``target`` the second one (the
    receiving item when there is no GIVING phrase).
    """

    operand: Operand
    target: Operand
    giving: Optional[str] = None
    span: SourceSpan = field(default_factory=SourceSpan)

    @property
    def verb(self) -> str:
        return type(self).__name__.replace("Statement", "").upper()

    @property
    def receiving_item(self) -> Optional[str]:
        if self.giving:
            return self.giving
        if isinstance(self.target, VariableRef):
            return self.target.name
        return None


@dataclass
class AddStatement(ArithmeticStatement):
    """ADD operand TO target [GIVING name]."""


@dataclass
class SubtractStatement(ArithmeticStatement):
    """SUBTRACT operand FROM target [GIVING name]."""


@dataclass
class MultiplyStatement(ArithmeticStatement):
    """MULTIPLY operand BY target [GIVING name]."""


@dataclass
class DivideStatement(ArithmeticStatement):
    """DIVIDE operand INTO target [GIVING name] or DIVIDE operand BY target GIVING name."""

    by_form: bool = False


@dataclass
class ComputeStatement(Statement):
    target: str
    expression: Expression
    rounded: bool = False
    span: SourceSpan = field(default_factory=SourceSpan)


@dataclass
class IfStatement(Statement):
    condition: Condition
    then_body: List[Statement] = field(default_factory=list)
    else_body: Optional[List[Statement]] = None
    span: SourceSpan = field(default_factory=SourceSpan)

    def children(self):
        yield ("THEN", self.then_body)
        if self.else_body is not None:
            yield ("ELSE", self.else_body)


@dataclass
class PerformStatement(Statement):
    """Inline PERFORM (body) or out-of-line PERFORM of a paragraph.

    At most one of ``until`` and ``times`` is set; with neither, the body
    (or paragraph) runs exactly once.
    """

    body: List[Statement] = field(default_factory=list)
    until: Optional[Condition] = None
    times: Optional[Operand] = None
    paragraph: Optional[str] = None
    span: SourceSpan = field(default_factory=SourceSpan)

    def children(self):
        if self.paragraph is None:
            yield ("BODY", self.body)


@dataclass
class DisplayStatement(Statement):
    values: List[Operand] = field(default_factory=list)
    span: SourceSpan = field(default_factory=SourceSpan)


@dataclass
class AcceptStatement(Statement):
    target: str
    span: SourceSpan = field(default_factory=SourceSpan)


@dataclass
class CallStatement(Statement):
    program: Operand
    using: List[str] = field(default_factory=list)
    span: SourceSpan = field(default_factory=SourceSpan)


@dataclass
class ExitProgramStatement(Statement):
    span: SourceSpan = field(default_factory=SourceSpan)


@dataclass
class GobackStatement(Statement):
    span: SourceSpan = field(default_factory=SourceSpan)


@dataclass
class StopRunStatement(Statement):
    span: SourceSpan = field(default_factory=SourceSpan)


class OpenMode(Enum):
    INPUT = "INPUT"
    OUTPUT = "OUTPUT"
    I_O = "I-O"
    EXTEND = "EXTEND"


@dataclass
class OpenStatement(Statement):
    files: List[Tuple[OpenMode, str]] = field(default_factory=list)
    span: SourceSpan = field(default_factory=SourceSpan)


@dataclass
class CloseStatement(Statement):
    files: List[str] = field(default_factory=list)
    span: SourceSpan = field(default_factory=SourceSpan)


@dataclass
class ReadStatement(Statement):
    file_name: str
    into: Optional[str] = None
    at_end: Optional[List[Statement]] = None
    span: SourceSpan = field(default_factory=SourceSpan)

    def children(self):
        if self.at_end is not None:
            yield ("AT END", self.at_end)


@dataclass
class WriteStatement(Statement):
    record: str
    from_name: Optional[str] = None
    span: SourceSpan = field(default_factory=SourceSpan)


class CicsCommand(Enum):
    SEND_MAP = "SEND MAP"
    RECEIVE_MAP = "RECEIVE MAP"
    READ = "READ"
    WRITE = "WRITE"
    REWRITE = "REWRITE"
    DELETE = "DELETE"
    RETURN = "RETURN"
    LINK = "LINK"
    HANDLE_CONDITION = "HANDLE CONDITION"


@dataclass
class ExecCicsStatement(Statement):
    """EXEC CICS command KEYWORD(value)... END-EXEC.

    Parameters without a parenthesized value (e.g. ERASE) map to None.
    """

    command: CicsCommand
    params: Dict[str, Optional[Operand]] = field(default_factory=dict)
    span: SourceSpan = field(default_factory=SourceSpan)


STATEMENT_TYPES = (
    MoveStatement,
    AddStatement,
    SubtractStatement,
    MultiplyStatement,
    DivideStatement,
    ComputeStatement,
    IfStatement,
    PerformStatement,
    DisplayStatement,
    AcceptStatement,
    CallStatement,
    ExitProgramStatement,
    GobackStatement,
    StopRunStatement,
    OpenStatement,
    CloseStatement,
    ReadStatement,
    WriteStatement,
    ExecCicsStatement,
)


def walk_statements(statements: List[Statement]) -> Iterator[Statement]:
    """Yield every statement depth-first, including nested bodies."""
    for stmt in statements:
        yield stmt
        for _role, body in stmt.children():
            yield from walk_statements(body)


# --- Procedure division and program ---


@dataclass
class Paragraph:
    """A paragraph (or section) label over the flat statement sequence.

    The paragraph covers ``statements[start:end]`` of its procedure division.
    """

    name: str
    start: int
    end: int
    is_section: bool = False
    span: SourceSpan = field(default_factory=SourceSpan)


@dataclass
class ProcedureDivision:
    statements: List[Statement] = field(default_factory=list)
    using: List[str] = field(default_factory=list)
    paragraphs: Dict[str, Paragraph] = field(default_factory=dict)
    span: SourceSpan = field(default_factory=SourceSpan)

    def paragraph_statements(self, name: str) -> Optional[List[Statement]]:
        paragraph = self.paragraphs.get(name.upper())
        if paragraph is None:
            return None
        return self.statements[paragraph.start : paragraph.end]


@dataclass
class CobolProgram:
    """Complete parsed COBOL program.

    This is the top-level AST node. It is immutable in practice: runtime
    state lives in the interpreter's frames, never in the AST.
    """

    program_id: str
    data_division: DataDivision = field(default_factory=DataDivision)
    procedure_division: ProcedureDivision = field(default_factory=ProcedureDivision)
    file_control: List[FileControlEntry] = field(default_factory=list)
    span: SourceSpan = field(default_factory=SourceSpan)

    def get_file_control(self, file_name: str) -> Optional[FileControlEntry]:
        name_upper = file_name.upper()
        for entry in self.file_control:
            if entry.file_name == name_upper:
                return entry
        return None

    def get_file_for_record(self, record_name: str) -> Optional[FileDescription]:
        name_upper = record_name.upper()
        for fd in self.data_division.file_section:
            if any(record.name == name_upper for record in fd.records):
                return fd
        return None

    def find_map(self, map_name: str, mapset_name: Optional[str] = None) -> Optional[BMSMapDefinition]:
        for bms_map in self.data_division.map_section:
            if bms_map.map_name != map_name.upper():
                continue
            if mapset_name and bms_map.mapset_name and bms_map.mapset_name != mapset_name.upper():
                continue
            return bms_map
        return None
