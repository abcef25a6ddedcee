"""Lexer and recursive-descent parser for fixed-format COBOL."""

from .cobol_parser import ParseError, Parser, parse_source
from .lexer import CompileError, LexError, Lexer, tokenize
from .tokens import KEYWORDS, Token, TokenType

__all__ = [
    "CompileError",
    "KEYWORDS",
    "LexError",
    "Lexer",
    "ParseError",
    "Parser",
    "Token",
    "TokenType",
    "parse_source",
    "tokenize",
]
