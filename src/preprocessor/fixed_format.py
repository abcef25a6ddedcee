"""Fixed-format column helpers for COBOL source lines.

Traditional COBOL source is laid out on 80-column card images:
- Columns 1-6: Sequence number area (ignored)
- Column 7: Indicator area (``*`` or ``/`` comment, ``-`` continuation,
  ``D`` debug line)
- Columns 8-11: Area A (division/section headers, 01/77 levels, paragraphs)
- Columns 12-72: Area B (statements and subordinate entries)
- Columns 73-80: Identification area (ignored)

All column numbers in this module are 1-based, the way a compiler listing
reports them.
"""

from dataclasses import dataclass

INDICATOR_COLUMN = 7
AREA_A_START = 8
AREA_A_END = 11
AREA_B_START = 12
CONTENT_END = 72

COMMENT_INDICATORS = ("*", "/")
VALID_INDICATORS = (" ", "*", "/", "-", "D")


@dataclass(frozen=True)
class SourceLine:
    """A source line split into its fixed-format zones."""

    number: int
    sequence: str
    indicator: str
    content: str  # Columns 8-72
    overflow: str  # Columns 73+

    @property
    def is_comment(self) -> bool:
        return self.indicator in COMMENT_INDICATORS


def split_line(line: str, number: int = 0) -> SourceLine:
    """Split a raw source line into sequence, indicator, content and overflow.

    Args:
        line: Raw source line (without line terminator)
        number: 1-based line number, carried for diagnostics

    Returns:
        SourceLine with each zone extracted (missing zones are empty)
    """
    indicator = line[INDICATOR_COLUMN - 1] if len(line) >= INDICATOR_COLUMN else " "
    return SourceLine(
        number=number,
        sequence=line[: INDICATOR_COLUMN - 1],
        indicator=indicator,
        content=line[AREA_A_START - 1 : CONTENT_END],
        overflow=line[CONTENT_END:],
    )


def is_comment_line(line: str) -> bool:
    """Check if a line is a comment (``*`` or ``/`` in column 7)."""
    if len(line) >= INDICATOR_COLUMN:
        return line[INDICATOR_COLUMN - 1] in COMMENT_INDICATORS
    return False


def get_content_area(line: str) -> str:
    """Extract columns 8-72 of a non-comment line.

    Args:
        line: The source line

    Returns:
        The content portion of the line, empty for comments and short lines
    """
    if len(line) < AREA_A_START or is_comment_line(line):
        return ""
    return line[AREA_A_START - 1 : CONTENT_END].rstrip()
