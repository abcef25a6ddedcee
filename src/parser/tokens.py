"""Token definitions for the fixed-format COBOL lexer."""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict


class TokenType(Enum):
    """Kinds of tokens produced by the lexer."""

    # Division and section headers
    IDENTIFICATION = auto()
    ENVIRONMENT = auto()
    DATA = auto()
    PROCEDURE = auto()
    DIVISION = auto()
    SECTION = auto()
    PROGRAM_ID = auto()
    CONFIGURATION = auto()
    INPUT_OUTPUT = auto()
    FILE_CONTROL = auto()
    FILE = auto()
    WORKING_STORAGE = auto()
    LINKAGE = auto()
    FD = auto()
    SELECT = auto()

    # Data description
    PIC = auto()
    VALUE = auto()

    # Statements
    MOVE = auto()
    ADD = auto()
    SUBTRACT = auto()
    MULTIPLY = auto()
    DIVIDE = auto()
    COMPUTE = auto()
    IF = auto()
    PERFORM = auto()
    DISPLAY = auto()
    ACCEPT = auto()
    CALL = auto()
    EXIT = auto()
    GOBACK = auto()
    STOP = auto()
    OPEN = auto()
    CLOSE = auto()
    READ = auto()
    WRITE = auto()
    EXEC = auto()

    # Clause words
    TO = auto()
    FROM = auto()
    BY = auto()
    INTO = auto()
    GIVING = auto()
    THEN = auto()
    UNTIL = auto()
    TIMES = auto()
    USING = auto()
    PROGRAM = auto()
    RUN = auto()
    INPUT = auto()
    OUTPUT = auto()
    I_O = auto()
    EXTEND = auto()

    # Scope terminators
    ELSE = auto()
    END_IF = auto()
    END_PERFORM = auto()
    END_READ = auto()
    END_EXEC = auto()

    # Figurative constants
    ZERO = auto()
    SPACE = auto()

    # MAP SECTION header or CICS SEND/RECEIVE MAP parameter, by context
    MAP = auto()

    # Literals and names
    IDENTIFIER = auto()
    LITERAL_STRING = auto()
    LITERAL_NUMBER = auto()

    # Punctuation and operators
    DOT = auto()
    LPAREN = auto()
    RPAREN = auto()
    COLON = auto()
    EQUALS = auto()
    GREATER = auto()
    LESS = auto()
    PLUS = auto()
    MINUS = auto()
    ASTERISK = auto()
    SLASH = auto()
    POWER = auto()

    EOF = auto()


KEYWORDS: Dict[str, TokenType] = {
    "IDENTIFICATION": TokenType.IDENTIFICATION,
    "ENVIRONMENT": TokenType.ENVIRONMENT,
    "DATA": TokenType.DATA,
    "PROCEDURE": TokenType.PROCEDURE,
    "DIVISION": TokenType.DIVISION,
    "SECTION": TokenType.SECTION,
    "PROGRAM-ID": TokenType.PROGRAM_ID,
    "CONFIGURATION": TokenType.CONFIGURATION,
    "INPUT-OUTPUT": TokenType.INPUT_OUTPUT,
    "FILE-CONTROL": TokenType.FILE_CONTROL,
    "FILE": TokenType.FILE,
    "WORKING-STORAGE": TokenType.WORKING_STORAGE,
    "LINKAGE": TokenType.LINKAGE,
    "FD": TokenType.FD,
    "SELECT": TokenType.SELECT,
    "PIC": TokenType.PIC,
    "PICTURE": TokenType.PIC,
    "VALUE": TokenType.VALUE,
    "MOVE": TokenType.MOVE,
    "ADD": TokenType.ADD,
    "SUBTRACT": TokenType.SUBTRACT,
    "MULTIPLY": TokenType.MULTIPLY,
    "DIVIDE": TokenType.DIVIDE,
    "COMPUTE": TokenType.COMPUTE,
    "IF": TokenType.IF,
    "PERFORM": TokenType.PERFORM,
    "DISPLAY": TokenType.DISPLAY,
    "ACCEPT": TokenType.ACCEPT,
    "CALL": TokenType.CALL,
    "EXIT": TokenType.EXIT,
    "GOBACK": TokenType.GOBACK,
    "STOP": TokenType.STOP,
    "OPEN": TokenType.OPEN,
    "CLOSE": TokenType.CLOSE,
    "READ": TokenType.READ,
    "WRITE": TokenType.WRITE,
    "EXEC": TokenType.EXEC,
    "TO": TokenType.TO,
    "FROM": TokenType.FROM,
    "BY": TokenType.BY,
    "INTO": TokenType.INTO,
    "GIVING": TokenType.GIVING,
    "THEN": TokenType.THEN,
    "UNTIL": TokenType.UNTIL,
    "TIMES": TokenType.TIMES,
    "USING": TokenType.USING,
    "PROGRAM": TokenType.PROGRAM,
    "RUN": TokenType.RUN,
    "INPUT": TokenType.INPUT,
    "OUTPUT": TokenType.OUTPUT,
    "I-O": TokenType.I_O,
    "EXTEND": TokenType.EXTEND,
    "ELSE": TokenType.ELSE,
    "END-IF": TokenType.END_IF,
    "END-PERFORM": TokenType.END_PERFORM,
    "END-READ": TokenType.END_READ,
    "END-EXEC": TokenType.END_EXEC,
    "ZERO": TokenType.ZERO,
    "ZEROS": TokenType.ZERO,
    "ZEROES": TokenType.ZERO,
    "SPACE": TokenType.SPACE,
    "SPACES": TokenType.SPACE,
    "MAP": TokenType.MAP,
}

# Tokens that begin a statement in the PROCEDURE DIVISION
STATEMENT_VERBS = frozenset(
    {
        TokenType.MOVE,
        TokenType.ADD,
        TokenType.SUBTRACT,
        TokenType.MULTIPLY,
        TokenType.DIVIDE,
        TokenType.COMPUTE,
        TokenType.IF,
        TokenType.PERFORM,
        TokenType.DISPLAY,
        TokenType.ACCEPT,
        TokenType.CALL,
        TokenType.EXIT,
        TokenType.GOBACK,
        TokenType.STOP,
        TokenType.OPEN,
        TokenType.CLOSE,
        TokenType.READ,
        TokenType.WRITE,
        TokenType.EXEC,
    }
)


@dataclass(frozen=True)
class Token:
    """A lexical token. Never spans more than one source line."""

    type: TokenType
    value: str
    line: int
    column: int

    def is_word(self) -> bool:
        """True for identifiers, keywords and MAP (anything spelled as a COBOL word)."""
        return self.type == TokenType.IDENTIFIER or self.value in KEYWORDS
