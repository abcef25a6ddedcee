"""Compiler-style listing of a compilation result."""

from typing import List


def format_listing(result) -> List[str]:
    """Render diagnostics and fatal errors as listing lines ending with MAXCC.

    Args:
        result: CompilationResult

    Returns:
        Listing lines, e.g. ``IGYPS2104-E LINE 12, COL 20: ...`` and ``MAXCC=0012``
    """
    lines = []
    if result.missing_copy is not None:
        missing = result.missing_copy
        lines.append(
            f"IGYLI0001-S LINE {missing.line}, COL {missing.column}: "
            f"COPY MEMBER '{missing.name}' WAS NOT FOUND."
        )
    if result.error is not None:
        lines.append(result.error)
    lines.extend(d.format() for d in result.diagnostics)
    lines.append(f"MAXCC={result.return_code:04d}")
    return lines
