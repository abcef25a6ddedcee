"""Fixed-format Area A / Area B placement checks on raw source lines."""

import logging
import re
from typing import List

from preprocessor.fixed_format import (
    AREA_A_END,
    AREA_A_START,
    CONTENT_END,
    VALID_INDICATORS,
    split_line,
)
from .diagnostics import Diagnostic, Severity, sort_diagnostics

logger = logging.getLogger(__name__)

# Verbs and scope words that must begin in Area B
AREA_B_VERBS = frozenset(
    {
        "ACCEPT", "ADD", "CALL", "CLOSE", "COMPUTE", "CONTINUE", "DELETE",
        "DISPLAY", "DIVIDE", "EVALUATE", "EXEC", "EXIT", "GO", "GOBACK", "IF",
        "INITIALIZE", "INSPECT", "MERGE", "MOVE", "MULTIPLY", "OPEN", "PERFORM",
        "READ", "RELEASE", "RETURN", "REWRITE", "SEARCH", "SET", "SORT", "START",
        "STOP", "STRING", "SUBTRACT", "UNSTRING", "WRITE", "ELSE", "END-IF",
        "END-PERFORM", "END-READ", "END-EXEC", "THEN",
    }
)

AREA_B_LEVELS = frozenset({"66", "88"})
AREA_A_LEVELS = frozenset({"01", "1", "77"})
HEADER_WORDS = frozenset({"DIVISION", "SECTION"})

WORD_PATTERN = re.compile(r"[^\s.]+")


def validate_columns(source: str) -> List[Diagnostic]:
    """Check fixed-format layout rules line by line.

    Args:
        source: Raw (or expanded) source text

    Returns:
        Diagnostics sorted by position; never raises
    """
    diagnostics: List[Diagnostic] = []

    for index, raw_line in enumerate(source.split("\n")):
        line = raw_line.rstrip("\r")
        number = index + 1
        if not line.strip():
            continue

        fields = split_line(line, number)

        if fields.overflow.strip():
            diagnostics.append(
                Diagnostic(
                    number,
                    CONTENT_END + 1,
                    "IGYDS1004-I",
                    "TEXT IN COLUMNS 73-80 IGNORED.",
                    Severity.INFO,
                )
            )

        if fields.is_comment or fields.indicator.upper() == "D":
            continue
        if fields.indicator not in VALID_INDICATORS:
            diagnostics.append(
                Diagnostic(
                    number,
                    AREA_A_START - 1,
                    "IGYDS1001-E",
                    f"INVALID INDICATOR '{fields.indicator}' IN COLUMN 7.",
                    Severity.ERROR,
                )
            )
            continue
        if fields.indicator == "-":
            continue

        diagnostics.extend(_check_areas(fields.content, number))

    logger.debug(f"Column validation produced {len(diagnostics)} diagnostics")
    return sort_diagnostics(diagnostics)


def _check_areas(content: str, number: int) -> List[Diagnostic]:
    words = list(WORD_PATTERN.finditer(content.upper()))
    if not words:
        return []

    first = words[0]
    word = first.group()
    column = first.start() + AREA_A_START
    in_area_a = column <= AREA_A_END

    if in_area_a and word in AREA_B_VERBS:
        return [
            Diagnostic(
                number,
                column,
                "IGYDS1088-S",
                f"STATEMENT NOT ALLOWED IN AREA A. FOUND '{word}'",
                Severity.ERROR,
            )
        ]
    if in_area_a and word in AREA_B_LEVELS:
        return [
            Diagnostic(
                number,
                column,
                "IGYDS1088-S",
                f"LEVEL {word} ENTRY NOT ALLOWED IN AREA A.",
                Severity.ERROR,
            )
        ]

    is_header = word == "FD" or (len(words) > 1 and words[1].group() in HEADER_WORDS)
    if not in_area_a and (is_header or word in AREA_A_LEVELS):
        return [
            Diagnostic(
                number,
                column,
                "IGYDS1089-S",
                f"'{word}' MUST BEGIN IN AREA A.",
                Severity.ERROR,
            )
        ]
    return []
