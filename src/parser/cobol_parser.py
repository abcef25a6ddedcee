"""Recursive-descent parser producing the executable COBOL AST.

The parser works on the flat token list from the lexer with one token of
lookahead. Divisions are parsed in their fixed order; any syntax error
raises ParseError immediately, there is no resynchronisation.

Scope closure follows COBOL's period rule: a period ends the statement
that consumed it and every enclosing IF/PERFORM/READ body. The parser
records this in ``_period_closed`` so that enclosing rules stop
collecting statements and never reopen an ELSE branch.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from cobol_ast.nodes import (
    AcceptStatement,
    AccessMode,
    AddStatement,
    BinaryExpression,
    BinaryOperator,
    BMSMapDefinition,
    CallStatement,
    CicsCommand,
    CloseStatement,
    CobolProgram,
    ComputeStatement,
    Condition,
    DataDivision,
    DisplayStatement,
    DivideStatement,
    ExecCicsStatement,
    ExitProgramStatement,
    Expression,
    FileControlEntry,
    FileDescription,
    FileOrganization,
    GobackStatement,
    IfStatement,
    Literal,
    MapField,
    MoveStatement,
    MultiplyStatement,
    OpenMode,
    OpenStatement,
    Operand,
    Paragraph,
    PerformStatement,
    PicType,
    ProcedureDivision,
    ReadStatement,
    ReferenceModification,
    RelationalOperator,
    SourceSpan,
    Statement,
    StopRunStatement,
    SubtractStatement,
    UnaryExpression,
    VariableDeclaration,
    VariableRef,
    WriteStatement,
)
from preprocessor.fixed_format import AREA_A_END
from .lexer import CompileError, tokenize
from .tokens import Token, TokenType

logger = logging.getLogger(__name__)

PARSE_ERROR_CODE = "IGYPS2120-S"

OPERAND_START = (
    TokenType.LITERAL_NUMBER,
    TokenType.LITERAL_STRING,
    TokenType.IDENTIFIER,
    TokenType.ZERO,
    TokenType.SPACE,
)

OPEN_MODES = {
    TokenType.INPUT: OpenMode.INPUT,
    TokenType.OUTPUT: OpenMode.OUTPUT,
    TokenType.I_O: OpenMode.I_O,
    TokenType.EXTEND: OpenMode.EXTEND,
}

RELATIONAL_WORDS = {
    "EQUAL": (RelationalOperator.EQUAL, "TO"),
    "GREATER": (RelationalOperator.GREATER, "THAN"),
    "LESS": (RelationalOperator.LESS, "THAN"),
}

STRAY_TERMINATORS = {
    TokenType.ELSE: ("_if_depth", "ELSE without matching IF"),
    TokenType.END_IF: ("_if_depth", "END-IF without matching IF"),
    TokenType.END_PERFORM: ("_perform_depth", "END-PERFORM without matching PERFORM"),
    TokenType.END_READ: ("_read_depth", "END-READ without matching READ"),
}

DIVISION_STARTS = (
    TokenType.IDENTIFICATION,
    TokenType.ENVIRONMENT,
    TokenType.DATA,
    TokenType.PROCEDURE,
)


class ParseError(CompileError):
    """Raised on the first syntax error; carries line and column."""

    def __init__(self, message: str, token: Token):
        self.found = token.value
        super().__init__(
            PARSE_ERROR_CODE,
            f"Syntax Error: {message}. Found '{token.value}'",
            token.line,
            token.column,
        )


class Parser:
    """Builds a CobolProgram from a token list.

    Example:
        parser = Parser(tokenize(source))
        program = parser.parse()
    """

    def __init__(self, tokens: List[Token]):
        if not tokens or tokens[-1].type != TokenType.EOF:
            raise ValueError("Token list must end with an EOF token")
        self.tokens = tokens
        self.pos = 0
        self._period_closed = False
        self._if_depth = 0
        self._perform_depth = 0
        self._read_depth = 0

    # --- Token helpers ---

    def peek(self, offset: int = 0) -> Token:
        index = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def previous(self) -> Token:
        return self.tokens[max(self.pos - 1, 0)]

    def advance(self) -> Token:
        token = self.peek()
        if token.type != TokenType.EOF:
            self.pos += 1
        return token

    def check(self, *types: TokenType) -> bool:
        return self.peek().type in types

    def match(self, *types: TokenType) -> bool:
        if self.check(*types):
            self.advance()
            return True
        return False

    def check_word(self, word: str, offset: int = 0) -> bool:
        token = self.peek(offset)
        return token.is_word() and token.value == word

    def match_word(self, *words: str) -> bool:
        for word in words:
            if self.check_word(word):
                self.advance()
                return True
        return False

    def consume(self, token_type: TokenType, message: str) -> Token:
        if self.check(token_type):
            return self.advance()
        self.error(f"Expected {token_type.name.replace('_', '-')} ({message})")

    def consume_word(self, word: str, message: str) -> Token:
        if self.check_word(word):
            return self.advance()
        self.error(f"Expected {word} ({message})")

    def consume_name(self, message: str) -> str:
        """Consume a user-defined word (identifier) and return its value."""
        return self.consume(TokenType.IDENTIFIER, message).value

    def consume_integer(self, message: str) -> int:
        token = self.consume(TokenType.LITERAL_NUMBER, message)
        try:
            return int(token.value)
        except ValueError:
            raise ParseError(f"Expected an integer ({message})", token)

    def error(self, message: str, token: Optional[Token] = None):
        raise ParseError(message, token or self.peek())

    def _span_from(self, start: Token) -> SourceSpan:
        return SourceSpan(line=start.line, column=start.column, end_line=self.previous().line)

    def _at_division(self, *types: TokenType) -> bool:
        return self.check(*types) and self.peek(1).type == TokenType.DIVISION

    def _at_label(self) -> bool:
        """True when the next tokens form a paragraph or section header in Area A."""
        token = self.peek()
        if token.type != TokenType.IDENTIFIER or token.column > AREA_A_END:
            return False
        following = self.peek(1).type
        return following == TokenType.DOT or (
            following == TokenType.SECTION and self.peek(2).type == TokenType.DOT
        )

    # --- Program structure ---

    def parse(self) -> CobolProgram:
        """Parse a complete program.

        Returns:
            CobolProgram

        Raises:
            ParseError: On the first syntax error
        """
        start = self.peek()
        program_id = self._parse_identification_division()
        program = CobolProgram(program_id=program_id)

        if self._at_division(TokenType.ENVIRONMENT):
            program.file_control = self._parse_environment_division()

        if self._at_division(TokenType.DATA):
            program.data_division = self._parse_data_division()

        if not self._at_division(TokenType.PROCEDURE):
            self.error("Expected PROCEDURE DIVISION")
        program.procedure_division = self._parse_procedure_division()

        if not self.check(TokenType.EOF):
            self.error("Unexpected text after end of program")

        program.span = self._span_from(start)
        logger.info(
            f"Parsed program {program_id}: "
            f"{len(program.procedure_division.statements)} statements, "
            f"{len(program.procedure_division.paragraphs)} paragraphs"
        )
        return program

    def _parse_identification_division(self) -> str:
        self.consume(TokenType.IDENTIFICATION, "Division Header")
        self.consume(TokenType.DIVISION, "Division Header")
        self.consume(TokenType.DOT, "End of header")
        self.consume(TokenType.PROGRAM_ID, "PROGRAM-ID paragraph")
        self.consume(TokenType.DOT, "After PROGRAM-ID")

        if self.check(TokenType.LITERAL_STRING):
            program_id = self.advance().value.strip().upper()
        else:
            program_id = self.consume_name("Program name")
        self.match(TokenType.DOT)

        # AUTHOR, DATE-WRITTEN and friends are free text
        while not self.check(TokenType.EOF) and not self._at_division(*DIVISION_STARTS):
            self.advance()
        return program_id

    def _parse_environment_division(self) -> List[FileControlEntry]:
        self.advance()
        self.advance()
        self.consume(TokenType.DOT, "End of header")
        entries: List[FileControlEntry] = []

        if self.match(TokenType.CONFIGURATION):
            self.consume(TokenType.SECTION, "Section Header")
            self.consume(TokenType.DOT, "End of header")
            while not self.check(TokenType.EOF, TokenType.INPUT_OUTPUT) and not self._at_division(
                *DIVISION_STARTS
            ):
                self.advance()

        if self.match(TokenType.INPUT_OUTPUT):
            self.consume(TokenType.SECTION, "Section Header")
            self.consume(TokenType.DOT, "End of header")
            if self.match(TokenType.FILE_CONTROL):
                self.consume(TokenType.DOT, "After FILE-CONTROL")
                while self.check(TokenType.SELECT):
                    entries.append(self._parse_select())

        return entries

    def _parse_select(self) -> FileControlEntry:
        start = self.advance()
        self.match_word("OPTIONAL")
        entry = FileControlEntry(file_name=self.consume_name("File name"), external_name="")
        entry.external_name = entry.file_name

        while not self.match(TokenType.DOT):
            if self.match_word("ASSIGN"):
                self.match(TokenType.TO)
                if self.check(TokenType.LITERAL_STRING):
                    entry.external_name = self.advance().value
                else:
                    entry.external_name = self.consume_name("Assignment name")
            elif self.match_word("ORGANIZATION"):
                self.match_word("IS")
                value = self.advance()
                try:
                    entry.organization = FileOrganization(value.value)
                except ValueError:
                    self.error("Expected SEQUENTIAL or INDEXED", value)
            elif self.match_word("ACCESS"):
                self.match_word("MODE")
                self.match_word("IS")
                value = self.advance()
                try:
                    entry.access_mode = AccessMode(value.value)
                except ValueError:
                    self.error("Expected SEQUENTIAL, RANDOM or DYNAMIC", value)
            elif self.match_word("RECORD"):
                self.consume_word("KEY", "RECORD KEY clause")
                self.match_word("IS")
                entry.record_key = self.consume_name("Record key")
            elif self.match(TokenType.FILE):
                self.consume_word("STATUS", "FILE STATUS clause")
                self.match_word("IS")
                entry.file_status = self.consume_name("File status item")
            else:
                self.error("Unknown SELECT clause")

        entry.span = self._span_from(start)
        return entry

    def _parse_data_division(self) -> DataDivision:
        start = self.advance()
        self.advance()
        self.consume(TokenType.DOT, "End of header")
        division = DataDivision()

        if self.check(TokenType.FILE) and self.peek(1).type == TokenType.SECTION:
            self._parse_section_header()
            while self.check(TokenType.FD):
                division.file_section.append(self._parse_file_description())

        if self.check(TokenType.WORKING_STORAGE):
            self._parse_section_header()
            division.working_storage = self._parse_declarations()

        if self.check(TokenType.LINKAGE):
            self._parse_section_header()
            division.linkage = self._parse_declarations()

        if self.check(TokenType.MAP):
            self._parse_section_header()
            while self.check(TokenType.MAP):
                division.map_section.append(self._parse_map_definition())

        if not self._at_division(TokenType.PROCEDURE):
            if self.check(TokenType.FILE, TokenType.WORKING_STORAGE, TokenType.LINKAGE, TokenType.MAP):
                self.error("Section out of order in DATA DIVISION")
            self.error("Expected section header or PROCEDURE DIVISION")

        division.span = self._span_from(start)
        return division

    def _parse_section_header(self) -> None:
        self.advance()
        self.consume(TokenType.SECTION, "Section Header")
        self.consume(TokenType.DOT, "End of header")

    def _parse_file_description(self) -> FileDescription:
        start = self.advance()
        fd = FileDescription(file_name=self.consume_name("File name"))
        # RECORD CONTAINS, LABEL RECORDS and similar clauses carry no semantics here
        while not self.match(TokenType.DOT):
            if self.check(TokenType.EOF):
                self.error("Unterminated FD entry")
            self.advance()
        fd.records = self._parse_declarations()
        fd.span = self._span_from(start)
        return fd

    def _parse_declarations(self) -> List[VariableDeclaration]:
        declarations: List[VariableDeclaration] = []
        while self.check(TokenType.LITERAL_NUMBER):
            declaration = self._parse_variable_declaration()
            if declaration is not None:
                declarations.append(declaration)
        return declarations

    def _parse_variable_declaration(self) -> Optional[VariableDeclaration]:
        start = self.peek()
        level = self.consume_integer("Level number")
        name = self.consume_name("Data name")

        if self.match(TokenType.DOT):
            logger.debug(f"Group item {name} at line {start.line} has no storage of its own")
            return None

        self.consume(TokenType.PIC, "PIC clause")
        self.match_word("IS")
        picture, pic_type, length = self._parse_picture()

        declaration = VariableDeclaration(
            level=level, name=name, pic_type=pic_type, length=length, picture=picture
        )

        if self.match(TokenType.VALUE):
            self.match_word("IS")
            value = self._parse_operand()
            if isinstance(value, VariableRef):
                self.error("Expected Literal, ZERO, or SPACE after VALUE", self.previous())
            declaration.default_value = value.value
            declaration.figurative = value.figurative

        self.consume(TokenType.DOT, "End of variable declaration")
        declaration.span = self._span_from(start)
        return declaration

    def _parse_picture(self) -> Tuple[str, PicType, int]:
        """Parse a PICTURE string and compute its type and storage length."""
        text = ""
        length = 0
        last_symbol: Optional[str] = None

        while self.check(TokenType.IDENTIFIER, TokenType.LITERAL_NUMBER, TokenType.LPAREN):
            if self.match(TokenType.LPAREN):
                count = self.consume_integer("Repeat count")
                self.consume(TokenType.RPAREN, ")")
                if last_symbol is None or count < 1:
                    self.error("Invalid PICTURE repeat count", self.previous())
                length += count - 1
                text += f"({count})"
                continue

            token = self.advance()
            for symbol in token.value:
                if symbol in "XA9":
                    length += 1
                    last_symbol = symbol
                elif symbol in "SV":
                    last_symbol = None
                else:
                    self.error(f"Invalid PICTURE symbol '{symbol}'", token)
            text += token.value

        if length == 0:
            self.error("Expected PICTURE string")

        pic_type = PicType.ALPHANUMERIC if ("X" in text or "A" in text) else PicType.NUMERIC
        return text, pic_type, length

    def _parse_map_definition(self) -> BMSMapDefinition:
        start = self.advance()
        bms_map = BMSMapDefinition(map_name=self.consume_name("Map name"))
        if self.match_word("MAPSET"):
            bms_map.mapset_name = self.consume_name("Mapset name")
        self.consume(TokenType.DOT, "End of MAP entry")

        while self.check(TokenType.LITERAL_NUMBER):
            field_start = self.peek()
            self.consume_integer("Level number")
            map_field = MapField(name=self.consume_name("Field name"), row=0, column=0, length=0)
            self.consume_word("LINE", "Field position")
            map_field.row = self.consume_integer("Line number")
            self.consume_word("COLUMN", "Field position")
            map_field.column = self.consume_integer("Column number")
            self.consume_word("LENGTH", "Field length")
            map_field.length = self.consume_integer("Field length")
            if self.match(TokenType.VALUE):
                self.match_word("IS")
                value = self.consume(TokenType.LITERAL_STRING, "Initial text")
                map_field.initial = value.value
            self.consume(TokenType.DOT, "End of map field")
            map_field.span = self._span_from(field_start)
            bms_map.fields.append(map_field)

        bms_map.span = self._span_from(start)
        return bms_map

    def _parse_procedure_division(self) -> ProcedureDivision:
        start = self.advance()
        self.advance()
        division = ProcedureDivision()
        if self.match(TokenType.USING):
            while self.check(TokenType.IDENTIFIER):
                division.using.append(self.advance().value)
            if not division.using:
                self.error("Expected parameter names after USING")
        self.consume(TokenType.DOT, "End of header")

        labels: List[Tuple[Token, bool]] = []
        while not self.check(TokenType.EOF):
            if self._at_label():
                label = self.advance()
                is_section = self.match(TokenType.SECTION)
                self.advance()
                labels.append((label, is_section))
                division.paragraphs[label.value] = Paragraph(
                    name=label.value,
                    start=len(division.statements),
                    end=len(division.statements),
                    is_section=is_section,
                )
                continue
            if self.check_word("END") and self.peek(1).type == TokenType.PROGRAM:
                # END PROGRAM name.
                while not self.match(TokenType.DOT) and not self.check(TokenType.EOF):
                    self.advance()
                continue
            if self.match(TokenType.DOT):
                continue

            self._period_closed = False
            division.statements.append(self._parse_statement())

        self._close_paragraphs(division, labels)
        division.span = self._span_from(start)
        return division

    def _close_paragraphs(self, division: ProcedureDivision, labels: List[Tuple[Token, bool]]) -> None:
        """Set each label's end index: a paragraph ends at the next label, a section at the next section."""
        count = len(division.statements)
        for index, (label, is_section) in enumerate(labels):
            paragraph = division.paragraphs[label.value]
            end = count
            end_line = division.statements[-1].span.end_line if division.statements else label.line
            for next_label, next_is_section in labels[index + 1 :]:
                if next_is_section or not is_section:
                    end = division.paragraphs[next_label.value].start
                    end_line = next_label.line - 1
                    break
            paragraph.end = end
            paragraph.span = SourceSpan(line=label.line, column=label.column, end_line=end_line)

    # --- Statements ---

    def _parse_statement(self) -> Statement:
        token = self.peek()

        if token.type in STRAY_TERMINATORS:
            depth_attr, message = STRAY_TERMINATORS[token.type]
            if getattr(self, depth_attr) == 0:
                self.error(message)
            self.error(f"Unexpected {token.value}")

        handler = self._statement_parsers().get(token.type)
        if handler is None:
            if token.type == TokenType.EOF:
                self.error("Unexpected end of file")
            self.error("Unexpected token or unknown statement")

        self.advance()
        statement = handler(token)
        if not self._period_closed and self.match(TokenType.DOT):
            self._period_closed = True
        statement.span = self._span_from(token)
        return statement

    def _statement_parsers(self) -> Dict[TokenType, object]:
        return {
            TokenType.MOVE: self._parse_move,
            TokenType.ADD: self._parse_add,
            TokenType.SUBTRACT: self._parse_subtract,
            TokenType.MULTIPLY: self._parse_multiply,
            TokenType.DIVIDE: self._parse_divide,
            TokenType.COMPUTE: self._parse_compute,
            TokenType.IF: self._parse_if,
            TokenType.PERFORM: self._parse_perform,
            TokenType.DISPLAY: self._parse_display,
            TokenType.ACCEPT: self._parse_accept,
            TokenType.CALL: self._parse_call,
            TokenType.EXIT: self._parse_exit,
            TokenType.GOBACK: lambda _token: GobackStatement(),
            TokenType.STOP: self._parse_stop,
            TokenType.OPEN: self._parse_open,
            TokenType.CLOSE: self._parse_close,
            TokenType.READ: self._parse_read,
            TokenType.WRITE: self._parse_write,
            TokenType.EXEC: self._parse_exec,
        }

    def _parse_body(self, terminators: Tuple[TokenType, ...], construct: str) -> List[Statement]:
        """Collect statements until a terminator, a closing period, or an error at EOF."""
        body: List[Statement] = []
        while not self._period_closed:
            if self.check(*terminators):
                break
            if self.check(TokenType.EOF):
                self.error(f"Unexpected end of file inside {construct}")
            if self.match(TokenType.DOT):
                self._period_closed = True
                break
            body.append(self._parse_statement())
        return body

    def _parse_move(self, _token: Token) -> MoveStatement:
        source = self._parse_operand()
        self.consume(TokenType.TO, "Keyword TO")
        target = self.consume_name("Target Identifier")
        ref_mod = None
        if self.match(TokenType.LPAREN):
            start = self.consume_integer("Reference modification start")
            self.consume(TokenType.COLON, ":")
            length = self.consume_integer("Reference modification length")
            self.consume(TokenType.RPAREN, ")")
            if start < 1 or length < 1:
                self.error("Reference modification must be positive", self.previous())
            ref_mod = ReferenceModification(start=start, length=length)
        return MoveStatement(source=source, target=target, ref_mod=ref_mod)

    def _parse_arithmetic(self, cls, keyword: TokenType, keyword_text: str):
        operand = self._parse_operand()
        self.consume(keyword, f"Keyword {keyword_text}")
        target = self._parse_operand()
        giving = None
        if self.match(TokenType.GIVING):
            giving = self.consume_name("GIVING Identifier")
        elif not isinstance(target, VariableRef):
            self.error("Expected GIVING after literal operand")
        return cls(operand=operand, target=target, giving=giving)

    def _parse_add(self, _token: Token) -> AddStatement:
        return self._parse_arithmetic(AddStatement, TokenType.TO, "TO")

    def _parse_subtract(self, _token: Token) -> SubtractStatement:
        return self._parse_arithmetic(SubtractStatement, TokenType.FROM, "FROM")

    def _parse_multiply(self, _token: Token) -> MultiplyStatement:
        return self._parse_arithmetic(MultiplyStatement, TokenType.BY, "BY")

    def _parse_divide(self, _token: Token) -> DivideStatement:
        if self.check(*OPERAND_START) and self.peek(1).type == TokenType.BY:
            operand = self._parse_operand()
            self.advance()
            target = self._parse_operand()
            self.consume(TokenType.GIVING, "DIVIDE ... BY requires GIVING")
            giving = self.consume_name("GIVING Identifier")
            return DivideStatement(operand=operand, target=target, giving=giving, by_form=True)
        return self._parse_arithmetic(DivideStatement, TokenType.INTO, "INTO")

    def _parse_compute(self, _token: Token) -> ComputeStatement:
        target = self.consume_name("Target Identifier")
        rounded = self.match_word("ROUNDED")
        if not self.match(TokenType.EQUALS) and not self.match_word("EQUAL"):
            self.error("Expected = in COMPUTE")
        expression = self._parse_expression()
        return ComputeStatement(target=target, expression=expression, rounded=rounded)

    def _parse_if(self, _token: Token) -> IfStatement:
        self._if_depth += 1
        try:
            condition = self._parse_condition()
            self.match(TokenType.THEN)
            statement = IfStatement(condition=condition)
            statement.then_body = self._parse_body((TokenType.ELSE, TokenType.END_IF), "IF")
            if not self._period_closed and self.match(TokenType.ELSE):
                statement.else_body = self._parse_body((TokenType.END_IF,), "IF")
            if not self._period_closed:
                self.consume(TokenType.END_IF, "Scope terminator")
            return statement
        finally:
            self._if_depth -= 1

    def _parse_perform(self, _token: Token) -> PerformStatement:
        if self.check(TokenType.IDENTIFIER) and self.peek(1).type != TokenType.TIMES:
            statement = PerformStatement(paragraph=self.advance().value)
            if self.match(TokenType.UNTIL):
                statement.until = self._parse_condition()
            elif self.check(*OPERAND_START) and self.peek(1).type == TokenType.TIMES:
                statement.times = self._parse_operand()
                self.advance()
            return statement

        self._perform_depth += 1
        try:
            statement = PerformStatement()
            if self.match(TokenType.UNTIL):
                statement.until = self._parse_condition()
            elif self.check(*OPERAND_START) and self.peek(1).type == TokenType.TIMES:
                statement.times = self._parse_operand()
                self.advance()
            statement.body = self._parse_body((TokenType.END_PERFORM,), "PERFORM")
            if not self._period_closed:
                self.consume(TokenType.END_PERFORM, "Scope terminator")
            return statement
        finally:
            self._perform_depth -= 1

    def _parse_display(self, _token: Token) -> DisplayStatement:
        statement = DisplayStatement()
        while self.check(*OPERAND_START) and not self._at_label():
            statement.values.append(self._parse_operand())
        if not statement.values:
            self.error("Expected Value after DISPLAY")
        return statement

    def _parse_accept(self, _token: Token) -> AcceptStatement:
        return AcceptStatement(target=self.consume_name("Target Identifier"))

    def _parse_call(self, _token: Token) -> CallStatement:
        statement = CallStatement(program=self._parse_operand())
        if self.match(TokenType.USING):
            if self.match(TokenType.BY):
                self.consume_word("REFERENCE", "BY REFERENCE")
            while self.check(TokenType.IDENTIFIER) and not self._at_label():
                statement.using.append(self.advance().value)
            if not statement.using:
                self.error("Expected parameter names after USING")
        return statement

    def _parse_exit(self, _token: Token) -> ExitProgramStatement:
        self.consume(TokenType.PROGRAM, "PROGRAM after EXIT")
        return ExitProgramStatement()

    def _parse_stop(self, _token: Token) -> StopRunStatement:
        self.consume(TokenType.RUN, "RUN after STOP")
        return StopRunStatement()

    def _parse_open(self, _token: Token) -> OpenStatement:
        statement = OpenStatement()
        while self.check(*OPEN_MODES):
            mode = OPEN_MODES[self.advance().type]
            names = 0
            while self.check(TokenType.IDENTIFIER) and not self._at_label():
                statement.files.append((mode, self.advance().value))
                names += 1
            if names == 0:
                self.error("Expected file name after open mode")
        if not statement.files:
            self.error("Expected INPUT, OUTPUT, I-O or EXTEND")
        return statement

    def _parse_close(self, _token: Token) -> CloseStatement:
        statement = CloseStatement()
        while self.check(TokenType.IDENTIFIER) and not self._at_label():
            statement.files.append(self.advance().value)
        if not statement.files:
            self.error("Expected file name after CLOSE")
        return statement

    def _parse_read(self, _token: Token) -> ReadStatement:
        statement = ReadStatement(file_name=self.consume_name("File name"))
        self.match_word("RECORD")
        if self.match(TokenType.INTO):
            statement.into = self.consume_name("INTO Identifier")

        if self.check_word("AT") or self.check_word("END"):
            self.match_word("AT")
            self.consume_word("END", "AT END phrase")
            self._read_depth += 1
            try:
                statement.at_end = self._parse_body((TokenType.END_READ,), "READ")
            finally:
                self._read_depth -= 1
            if not self._period_closed:
                self.consume(TokenType.END_READ, "Scope terminator")
        else:
            self.match(TokenType.END_READ)
        return statement

    def _parse_write(self, _token: Token) -> WriteStatement:
        statement = WriteStatement(record=self.consume_name("Record name"))
        if self.match(TokenType.FROM):
            statement.from_name = self.consume_name("FROM Identifier")
        return statement

    def _parse_exec(self, _token: Token) -> ExecCicsStatement:
        self.consume_word("CICS", "EXEC CICS")
        command_token = self.peek()
        command = self._parse_cics_command()
        statement = ExecCicsStatement(command=command)

        while not self.match(TokenType.END_EXEC):
            if self.check(TokenType.EOF):
                self.error("Expected END-EXEC", command_token)
            key = self.advance()
            if not key.is_word():
                self.error("Expected CICS option name", key)
            value: Optional[Operand] = None
            if self.match(TokenType.LPAREN):
                value = self._parse_operand()
                self.consume(TokenType.RPAREN, ")")
            statement.params[key.value] = value
        return statement

    def _parse_cics_command(self) -> CicsCommand:
        if self.match_word("SEND", "RECEIVE"):
            verb = self.previous().value
            # MAP stays in the token stream as the first option: MAP('name')
            if not self.check(TokenType.MAP):
                self.error(f"Expected MAP after {verb}")
            return CicsCommand.SEND_MAP if verb == "SEND" else CicsCommand.RECEIVE_MAP
        if self.match_word("HANDLE"):
            self.consume_word("CONDITION", "HANDLE CONDITION")
            return CicsCommand.HANDLE_CONDITION
        if self.match(TokenType.READ):
            return CicsCommand.READ
        if self.match(TokenType.WRITE):
            return CicsCommand.WRITE
        if self.match_word("REWRITE"):
            return CicsCommand.REWRITE
        if self.match_word("DELETE"):
            return CicsCommand.DELETE
        if self.match_word("RETURN"):
            return CicsCommand.RETURN
        if self.match_word("LINK"):
            return CicsCommand.LINK
        self.error("Unknown CICS command")

    # --- Operands, conditions and expressions ---

    def _parse_operand(self) -> Operand:
        token = self.peek()
        if self.match(TokenType.LITERAL_NUMBER):
            return Literal(Decimal(token.value))
        if self.match(TokenType.LITERAL_STRING):
            return Literal(token.value)
        if self.match(TokenType.ZERO):
            return Literal(Decimal(0), figurative="ZERO")
        if self.match(TokenType.SPACE):
            return Literal(" ", figurative="SPACE")
        if self.match(TokenType.IDENTIFIER):
            return VariableRef(token.value)
        self.error("Expected Value (Literal or Identifier)")

    def _parse_condition(self) -> Condition:
        left = self._parse_operand()
        self.match_word("IS")
        if self.match(TokenType.EQUALS):
            operator = RelationalOperator.EQUAL
        elif self.match(TokenType.GREATER):
            operator = RelationalOperator.GREATER
        elif self.match(TokenType.LESS):
            operator = RelationalOperator.LESS
        elif self.peek().value in RELATIONAL_WORDS and self.check(TokenType.IDENTIFIER):
            operator, filler = RELATIONAL_WORDS[self.advance().value]
            if filler == "TO":
                self.match(TokenType.TO)
            else:
                self.match_word(filler)
        else:
            self.error("Expected Logical Operator (=, >, <)")
        right = self._parse_operand()
        return Condition(left=left, operator=operator, right=right)

    def _parse_expression(self) -> Expression:
        left = self._parse_term()
        while True:
            if self.match(TokenType.PLUS):
                left = BinaryExpression(BinaryOperator.ADD, left, self._parse_term())
            elif self.match(TokenType.MINUS):
                left = BinaryExpression(BinaryOperator.SUBTRACT, left, self._parse_term())
            elif self.check(TokenType.LITERAL_NUMBER) and self.peek().value[0] in "+-":
                # "A -1" lexes as A followed by the literal -1
                token = self.advance()
                operator = BinaryOperator.ADD if token.value[0] == "+" else BinaryOperator.SUBTRACT
                first = Literal(Decimal(token.value[1:]))
                left = BinaryExpression(operator, left, self._parse_term(first))
            else:
                return left

    def _parse_term(self, first: Optional[Expression] = None) -> Expression:
        left = self._parse_factor(first)
        while self.check(TokenType.ASTERISK, TokenType.SLASH):
            operator = BinaryOperator.MULTIPLY if self.advance().type == TokenType.ASTERISK else BinaryOperator.DIVIDE
            left = BinaryExpression(operator, left, self._parse_factor())
        return left

    def _parse_factor(self, first: Optional[Expression] = None) -> Expression:
        left = first if first is not None else self._parse_primary()
        while self.match(TokenType.POWER):
            left = BinaryExpression(BinaryOperator.POWER, left, self._parse_primary())
        return left

    def _parse_primary(self) -> Expression:
        token = self.peek()
        if self.match(TokenType.LITERAL_NUMBER):
            return Literal(Decimal(token.value))
        if self.match(TokenType.ZERO):
            return Literal(Decimal(0), figurative="ZERO")
        if self.match(TokenType.IDENTIFIER):
            return VariableRef(token.value)
        if self.match(TokenType.LPAREN):
            expression = self._parse_expression()
            self.consume(TokenType.RPAREN, ")")
            return expression
        if self.match(TokenType.MINUS):
            return UnaryExpression(self._parse_primary())
        if self.match(TokenType.PLUS):
            return self._parse_primary()
        self.error("Expected Expression (Number, Identifier, or '(')")


def parse_source(source: str) -> CobolProgram:
    """Lex and parse already-expanded source text.

    Raises:
        LexError: On a lexical error
        ParseError: On a syntax error
    """
    return Parser(tokenize(source)).parse()
