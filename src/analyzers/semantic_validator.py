"""Semantic validator for parsed COBOL programs.

Two passes over the AST: the first builds the symbol table from the DATA
DIVISION and flags duplicate names, the second walks every statement
(including nested IF/PERFORM/READ bodies) checking declarations, type
compatibility and static loop conditions.

All checks are structural. The validator holds no state between calls
and never raises; it always returns the complete diagnostic list.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from cobol_ast.nodes import (
    AcceptStatement,
    AddStatement,
    ArithmeticStatement,
    BinaryExpression,
    BinaryOperator,
    CallStatement,
    CicsCommand,
    CloseStatement,
    CobolProgram,
    ComputeStatement,
    Condition,
    DisplayStatement,
    DivideStatement,
    ExecCicsStatement,
    Expression,
    IfStatement,
    Literal,
    MoveStatement,
    MultiplyStatement,
    OpenStatement,
    Operand,
    PerformStatement,
    PicType,
    ReadStatement,
    SourceSpan,
    Statement,
    SubtractStatement,
    UnaryExpression,
    VariableRef,
    WriteStatement,
)
from .diagnostics import Diagnostic, Severity, sort_diagnostics

logger = logging.getLogger(__name__)

NUMERIC_TEXT = re.compile(r"^\s*[+-]?\d+(\.\d+)?\s*$")

# CICS options whose value names a data area of the program
CICS_DATA_AREAS = ("INTO", "FROM", "RIDFLD", "RESP", "RESP2", "COMMAREA")


@dataclass
class SymbolInfo:
    """Analysis-time view of a declared data item."""

    name: str
    pic_type: PicType
    length: int
    section: str
    line: int
    column: int

    @property
    def is_numeric(self) -> bool:
        return self.pic_type == PicType.NUMERIC


def is_numeric_text(value: str) -> bool:
    return bool(NUMERIC_TEXT.match(value))


class SemanticAnalyzer:
    """Runs both semantic passes over one program.

    A new instance is used for every validation, so concurrent compiles
    never share symbol tables.
    """

    def __init__(self, program: CobolProgram):
        self.program = program
        self.symbols: Dict[str, SymbolInfo] = {}
        self.diagnostics: List[Diagnostic] = []
        self._file_names = {entry.file_name for entry in program.file_control}
        self._record_names = {record.name for record in program.data_division.file_records}

    def analyze(self) -> List[Diagnostic]:
        """Run the symbol pass and the statement pass.

        Returns:
            Diagnostics sorted by (line, column)
        """
        self._build_symbol_table()
        self._check_file_control()
        self._check_procedure_using()
        for statement in self.program.procedure_division.statements:
            self._check_statement(statement)
        logger.debug(
            f"Semantic validation of {self.program.program_id}: "
            f"{len(self.symbols)} symbols, {len(self.diagnostics)} diagnostics"
        )
        return sort_diagnostics(self.diagnostics)

    # --- Pass 1 ---

    def _build_symbol_table(self) -> None:
        data = self.program.data_division
        sections = [
            ("FILE", data.file_records),
            ("WORKING-STORAGE", data.working_storage),
            ("LINKAGE", data.linkage),
        ]
        for section, declarations in sections:
            for declaration in declarations:
                if declaration.name in self.symbols:
                    self._error(
                        declaration.span,
                        "IGYPS2112-S",
                        f"SYMBOL '{declaration.name}' WAS ALREADY DEFINED IN THIS PROGRAM.",
                    )
                    continue
                self.symbols[declaration.name] = SymbolInfo(
                    name=declaration.name,
                    pic_type=declaration.pic_type,
                    length=declaration.length,
                    section=section,
                    line=declaration.span.line,
                    column=declaration.span.column,
                )

    def _check_file_control(self) -> None:
        for entry in self.program.file_control:
            for name in (entry.record_key, entry.file_status):
                if name and name not in self.symbols:
                    self._undeclared(entry.span, name)

    def _check_procedure_using(self) -> None:
        procedure = self.program.procedure_division
        for name in procedure.using:
            symbol = self.symbols.get(name)
            if symbol is None or symbol.section != "LINKAGE":
                self._error(
                    procedure.span,
                    "IGYPS2122-E",
                    f"USING ITEM '{name}' IS NOT DEFINED IN THE LINKAGE SECTION.",
                )

    # --- Pass 2 ---

    def _check_statement(self, statement: Statement) -> None:
        checker = self._checkers().get(type(statement))
        if checker is not None:
            checker(statement)
        for _role, body in statement.children():
            for child in body:
                self._check_statement(child)

    def _checkers(self):
        return {
            MoveStatement: self._check_move,
            AddStatement: self._check_arithmetic,
            SubtractStatement: self._check_arithmetic,
            MultiplyStatement: self._check_arithmetic,
            DivideStatement: self._check_arithmetic,
            ComputeStatement: self._check_compute,
            IfStatement: lambda stmt: self._check_condition(stmt.condition, stmt.span),
            PerformStatement: self._check_perform,
            DisplayStatement: self._check_display,
            AcceptStatement: self._check_accept,
            CallStatement: self._check_call,
            OpenStatement: lambda stmt: self._check_files([name for _mode, name in stmt.files], stmt.span),
            CloseStatement: lambda stmt: self._check_files(stmt.files, stmt.span),
            ReadStatement: self._check_read,
            WriteStatement: self._check_write,
            ExecCicsStatement: self._check_cics,
        }

    def _check_move(self, stmt: MoveStatement) -> None:
        target = self._lookup(stmt.target, stmt.span)
        source = stmt.source
        source_symbol = None
        if isinstance(source, VariableRef):
            source_symbol = self._lookup(source.name, stmt.span)
        if target is None:
            return

        if stmt.ref_mod is not None:
            if target.is_numeric:
                self._error(
                    stmt.span,
                    "IGYPS2113-E",
                    f"REFERENCE MODIFICATION REQUIRES AN ALPHANUMERIC ITEM, '{target.name}' IS NUMERIC.",
                )
            elif stmt.ref_mod.start + stmt.ref_mod.length - 1 > target.length:
                self._error(
                    stmt.span,
                    "IGYPS2160-E",
                    f"REFERENCE MODIFICATION ({stmt.ref_mod.start}:{stmt.ref_mod.length}) "
                    f"IS OUTSIDE '{target.name}' (LENGTH {target.length}).",
                )

        if isinstance(source, Literal) and source.figurative is None:
            if source.is_numeric and not target.is_numeric:
                self._error(
                    stmt.span,
                    "IGYPS2104-E",
                    f"INVALID MOVE: NUMERIC LITERAL TO ALPHANUMERIC ITEM '{target.name}'.",
                )
            elif not source.is_numeric and target.is_numeric and not is_numeric_text(source.value):
                self._error(
                    stmt.span,
                    "IGYPS2104-E",
                    f"INVALID MOVE: ALPHANUMERIC LITERAL '{source.value}' TO NUMERIC ITEM '{target.name}'.",
                )
        elif source_symbol is not None and not source_symbol.is_numeric and target.is_numeric:
            self._warning(
                stmt.span,
                "IGYPS4006-W",
                f"MOVE OF ALPHANUMERIC ITEM '{source_symbol.name}' TO NUMERIC ITEM "
                f"'{target.name}' MAY CAUSE RUNTIME CONVERSION ERROR.",
            )

    def _check_arithmetic(self, stmt: ArithmeticStatement) -> None:
        verb = stmt.verb
        self._check_numeric_operand(stmt.operand, verb, stmt.span)
        self._check_numeric_operand(stmt.target, verb, stmt.span)
        if stmt.giving:
            self._check_numeric_target(stmt.giving, verb, stmt.span)

        if isinstance(stmt, DivideStatement):
            divisor = stmt.target if stmt.by_form else stmt.operand
            if _is_zero_literal(divisor):
                self._error(stmt.span, "IGYPS2146-E", "DIVISION BY ZERO LITERAL.")

    def _check_compute(self, stmt: ComputeStatement) -> None:
        self._check_numeric_target(stmt.target, "COMPUTE", stmt.span)
        self._check_expression(stmt.expression, stmt.span)

    def _check_expression(self, expression: Expression, span: SourceSpan) -> None:
        if isinstance(expression, VariableRef):
            symbol = self.symbols.get(expression.name)
            if symbol is None:
                self._error(span, "IGYPS2001-E", f"VARIABLE '{expression.name}' NOT DEFINED.")
            elif not symbol.is_numeric:
                self._error(
                    span,
                    "IGYPS2113-E",
                    f"VARIABLE '{expression.name}' IN EXPRESSION MUST BE NUMERIC.",
                )
        elif isinstance(expression, UnaryExpression):
            self._check_expression(expression.operand, span)
        elif isinstance(expression, BinaryExpression):
            self._check_expression(expression.left, span)
            self._check_expression(expression.right, span)
            if expression.operator == BinaryOperator.DIVIDE and _is_zero_literal(expression.right):
                self._error(span, "IGYPS2146-E", "DIVISION BY ZERO LITERAL.")

    def _check_condition(self, condition: Condition, span: SourceSpan) -> None:
        for operand in (condition.left, condition.right):
            if isinstance(operand, VariableRef):
                self._lookup(operand.name, span)

        pairs = ((condition.left, condition.right), (condition.right, condition.left))
        for variable, other in pairs:
            if not isinstance(variable, VariableRef) or not isinstance(other, Literal):
                continue
            symbol = self.symbols.get(variable.name)
            if (
                symbol is not None
                and symbol.is_numeric
                and not other.is_numeric
                and other.figurative is None
                and not is_numeric_text(other.value)
            ):
                self._warning(
                    span,
                    "IGYPS4002-W",
                    f"NUMERIC ITEM '{symbol.name}' COMPARED WITH NONNUMERIC LITERAL '{other.value}'.",
                )

    def _check_perform(self, stmt: PerformStatement) -> None:
        if stmt.paragraph is not None and stmt.paragraph not in self.program.procedure_division.paragraphs:
            self._error(
                stmt.span,
                "IGYPS2121-E",
                f"PROCEDURE NAME '{stmt.paragraph}' WAS NOT DEFINED.",
            )

        if isinstance(stmt.times, Literal):
            value = stmt.times.value
            if not stmt.times.is_numeric or value <= 0 or value != value.to_integral_value():
                self._error(
                    stmt.span,
                    "IGYPS2135-E",
                    f"INVALID TIMES VALUE '{value}'. MUST BE A POSITIVE INTEGER.",
                )
        elif isinstance(stmt.times, VariableRef):
            symbol = self._lookup(stmt.times.name, stmt.span)
            if symbol is not None and not symbol.is_numeric:
                self._error(
                    stmt.span,
                    "IGYPS2113-E",
                    f"TIMES IDENTIFIER '{symbol.name}' MUST BE NUMERIC.",
                )

        if stmt.until is not None:
            self._check_condition(stmt.until, stmt.span)
            if isinstance(stmt.until.left, Literal) and isinstance(stmt.until.right, Literal):
                self._warning(
                    stmt.span,
                    "IGYPS4001-W",
                    "PERFORM UNTIL CONDITION MAY RESULT IN INFINITE LOOP (STATIC OPERANDS).",
                )

    def _check_display(self, stmt: DisplayStatement) -> None:
        if not stmt.values:
            self._error(stmt.span, "IGYPS2142-E", "DISPLAY STATEMENT REQUIRES AT LEAST ONE OPERAND.")
        for value in stmt.values:
            if isinstance(value, VariableRef):
                self._lookup(value.name, stmt.span)

    def _check_accept(self, stmt: AcceptStatement) -> None:
        symbol = self._lookup(stmt.target, stmt.span)
        if symbol is not None and symbol.is_numeric:
            self._warning(
                stmt.span,
                "IGYPS4005-W",
                f"ACCEPT INTO NUMERIC FIELD '{symbol.name}' MAY CAUSE RUNTIME CONVERSION ERROR.",
            )

    def _check_call(self, stmt: CallStatement) -> None:
        if isinstance(stmt.program, VariableRef):
            self._lookup(stmt.program.name, stmt.span)
        for name in stmt.using:
            self._lookup(name, stmt.span)

    def _check_files(self, names: List[str], span: SourceSpan) -> None:
        for name in names:
            if name not in self._file_names:
                self._error(span, "IGYPS2123-E", f"FILE '{name}' IS NOT DEFINED IN FILE-CONTROL.")

    def _check_read(self, stmt: ReadStatement) -> None:
        self._check_files([stmt.file_name], stmt.span)
        if stmt.into:
            self._lookup(stmt.into, stmt.span)

    def _check_write(self, stmt: WriteStatement) -> None:
        if stmt.record not in self._record_names:
            self._error(stmt.span, "IGYPS2124-E", f"'{stmt.record}' IS NOT A RECORD OF ANY FD.")
        if stmt.from_name:
            self._lookup(stmt.from_name, stmt.span)

    def _check_cics(self, stmt: ExecCicsStatement) -> None:
        if stmt.command in (CicsCommand.SEND_MAP, CicsCommand.RECEIVE_MAP):
            map_param = stmt.params.get("MAP")
            mapset_param = stmt.params.get("MAPSET")
            map_name = _param_text(map_param)
            mapset_name = _param_text(mapset_param)
            if map_name is None:
                self._error(stmt.span, "IGYPS2125-E", f"{stmt.command.value} REQUIRES A MAP NAME.")
            elif isinstance(map_param, Literal) and self.program.find_map(map_name, mapset_name) is None:
                self._error(
                    stmt.span,
                    "IGYPS2125-E",
                    f"MAP '{map_name.upper()}' IS NOT DEFINED IN THE MAP SECTION.",
                )

        if stmt.command == CicsCommand.HANDLE_CONDITION:
            paragraphs = self.program.procedure_division.paragraphs
            for condition, label in stmt.params.items():
                label_name = _param_text(label)
                if label_name is not None and label_name.upper() not in paragraphs:
                    self._warning(
                        stmt.span,
                        "IGYPS4010-W",
                        f"HANDLE CONDITION {condition} LABEL '{label_name.upper()}' IS NOT A PARAGRAPH.",
                    )
            return

        for key in CICS_DATA_AREAS:
            value = stmt.params.get(key)
            if isinstance(value, VariableRef):
                self._lookup(value.name, stmt.span)

    # --- Helpers ---

    def _check_numeric_operand(self, operand: Operand, verb: str, span: SourceSpan) -> None:
        if isinstance(operand, Literal):
            if not operand.is_numeric:
                self._error(span, "IGYPS2113-E", f"OPERAND '{operand.value}' MUST BE NUMERIC FOR {verb}.")
            return
        symbol = self._lookup(operand.name, span)
        if symbol is not None and not symbol.is_numeric:
            self._error(span, "IGYPS2113-E", f"OPERAND '{operand.name}' MUST BE NUMERIC FOR {verb}.")

    def _check_numeric_target(self, name: str, verb: str, span: SourceSpan) -> None:
        symbol = self._lookup(name, span)
        if symbol is not None and not symbol.is_numeric:
            self._error(span, "IGYPS2113-E", f"DATA ITEM '{name}' MUST BE NUMERIC FOR {verb}.")

    def _lookup(self, name: str, span: SourceSpan) -> Optional[SymbolInfo]:
        symbol = self.symbols.get(name)
        if symbol is None:
            self._undeclared(span, name)
        return symbol

    def _undeclared(self, span: SourceSpan, name: str) -> None:
        self._error(span, "IGYPS2001-E", f"IDENTIFIER '{name}' WAS NOT DECLARED.")

    def _error(self, span: SourceSpan, code: str, message: str) -> None:
        self.diagnostics.append(Diagnostic(span.line, span.column, code, message, Severity.ERROR))

    def _warning(self, span: SourceSpan, code: str, message: str) -> None:
        self.diagnostics.append(Diagnostic(span.line, span.column, code, message, Severity.WARNING))


def _is_zero_literal(operand) -> bool:
    return isinstance(operand, Literal) and operand.is_numeric and operand.value == Decimal(0)


def _param_text(value: Optional[Operand]) -> Optional[str]:
    if isinstance(value, Literal):
        return str(value.value).strip()
    if isinstance(value, VariableRef):
        return value.name
    return None


def validate_semantics(program: CobolProgram) -> List[Diagnostic]:
    """Validate a parsed program.

    Args:
        program: Parsed program; it is never modified

    Returns:
        Every diagnostic found, sorted by (line, column)
    """
    return SemanticAnalyzer(program).analyze()
