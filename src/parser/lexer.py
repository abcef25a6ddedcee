"""Fixed-format lexer for COBOL source.

Each line is split into its fixed-format zones; only columns 8-72 are
tokenized. Comment lines (``*`` or ``/`` in column 7) are skipped and
anything from column 73 onwards is ignored.
"""

import logging
import re
from typing import List

from preprocessor.fixed_format import AREA_A_START, CONTENT_END, is_comment_line
from .tokens import KEYWORDS, Token, TokenType

logger = logging.getLogger(__name__)

NUMBER_PATTERN = re.compile(r"^[+-]?[0-9]+(\.[0-9]+)?$")

SINGLE_CHAR_TOKENS = {
    ".": TokenType.DOT,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    ":": TokenType.COLON,
    "=": TokenType.EQUALS,
    ">": TokenType.GREATER,
    "<": TokenType.LESS,
    "+": TokenType.PLUS,
    "-": TokenType.MINUS,
    "/": TokenType.SLASH,
}


class CompileError(Exception):
    """Fatal compilation error with a compiler-style code and position."""

    def __init__(self, code: str, message: str, line: int, column: int):
        self.code = code
        self.message = message
        self.line = line
        self.column = column
        super().__init__(f"{code} {message} at Line {line}, Column {column}")


class LexError(CompileError):
    """Raised when the source contains an illegal character or literal."""

    pass


def _is_word_char(char: str) -> bool:
    return char.isascii() and (char.isalnum() or char == "-")


class Lexer:
    """Tokenizes fixed-format COBOL source into a flat token list."""

    def __init__(self, source: str):
        self.source = source

    def tokenize(self) -> List[Token]:
        """Tokenize the whole source.

        Returns:
            Token list terminated by an EOF token whose line is one past the
            last source line

        Raises:
            LexError: On an unterminated string literal or illegal character
        """
        tokens: List[Token] = []
        lines = self.source.split("\n")

        for index, raw_line in enumerate(lines):
            line = raw_line.rstrip("\r")
            if len(line) < AREA_A_START or is_comment_line(line):
                continue
            self._tokenize_line(line[AREA_A_START - 1 : CONTENT_END], index + 1, tokens)

        tokens.append(Token(TokenType.EOF, "EOF", len(lines) + 1, 0))
        logger.debug(f"Lexed {len(tokens)} tokens from {len(lines)} lines")
        return tokens

    def _tokenize_line(self, content: str, line_number: int, tokens: List[Token]) -> None:
        pos = 0
        length = len(content)

        while pos < length:
            char = content[pos]
            # pos 0 of the content area is column 8
            column = pos + AREA_A_START

            if char.isspace():
                pos += 1
                continue

            # Signed numeric literal: sign immediately followed by a digit
            if char in "+-" and pos + 1 < length and content[pos + 1].isdigit():
                value, pos = self._read_word(content, pos)
                tokens.append(self._classify_word(value, line_number, column))
                continue

            if char == "*":
                if pos + 1 < length and content[pos + 1] == "*":
                    tokens.append(Token(TokenType.POWER, "**", line_number, column))
                    pos += 2
                else:
                    tokens.append(Token(TokenType.ASTERISK, "*", line_number, column))
                    pos += 1
                continue

            if char in SINGLE_CHAR_TOKENS:
                tokens.append(Token(SINGLE_CHAR_TOKENS[char], char, line_number, column))
                pos += 1
                continue

            if char in ('"', "'"):
                end = content.find(char, pos + 1)
                if end < 0:
                    raise LexError(
                        "IGYPS2002-S", "String literal not closed", line_number, column
                    )
                tokens.append(
                    Token(TokenType.LITERAL_STRING, content[pos + 1 : end], line_number, column)
                )
                pos = end + 1
                continue

            if _is_word_char(char):
                value, pos = self._read_word(content, pos)
                tokens.append(self._classify_word(value, line_number, column))
                continue

            raise LexError(
                "IGYPS2002-S", f"Illegal character '{char}'", line_number, column
            )

    @staticmethod
    def _read_word(content: str, pos: int):
        """Read a COBOL word starting at ``pos``; a dot is kept only before a digit."""
        start = pos
        pos += 1
        while pos < len(content):
            char = content[pos]
            is_decimal_dot = char == "." and pos + 1 < len(content) and content[pos + 1].isdigit()
            if _is_word_char(char) or is_decimal_dot:
                pos += 1
            else:
                break
        return content[start:pos], pos

    @staticmethod
    def _classify_word(value: str, line: int, column: int) -> Token:
        upper = value.upper()
        if NUMBER_PATTERN.match(upper):
            return Token(TokenType.LITERAL_NUMBER, upper, line, column)
        keyword = KEYWORDS.get(upper)
        if keyword is not None:
            return Token(keyword, upper, line, column)
        return Token(TokenType.IDENTIFIER, upper, line, column)


def tokenize(source: str) -> List[Token]:
    """Convenience wrapper around ``Lexer(source).tokenize()``."""
    return Lexer(source).tokenize()
