"""Diagnostic records shared by the column and semantic validators."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional


class Severity(Enum):
    """Diagnostic severity. Only ERROR blocks execution."""

    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"

    @property
    def return_code(self) -> int:
        return {Severity.ERROR: 12, Severity.WARNING: 4, Severity.INFO: 0}[self]


@dataclass(frozen=True)
class Diagnostic:
    """A positioned compiler message."""

    line: int
    column: int
    code: str
    message: str
    severity: Severity

    def format(self) -> str:
        return f"{self.code} LINE {self.line}, COL {self.column}: {self.message}"


def sort_diagnostics(diagnostics: Iterable[Diagnostic]) -> List[Diagnostic]:
    """Order diagnostics by position so both validators' streams can be merged."""
    return sorted(diagnostics, key=lambda d: (d.line, d.column))


def max_severity(diagnostics: Iterable[Diagnostic]) -> Optional[Severity]:
    """Return the most severe level present, or None for an empty list."""
    worst: Optional[Severity] = None
    for diagnostic in diagnostics:
        if worst is None or diagnostic.severity.return_code > worst.return_code:
            worst = diagnostic.severity
    return worst


def has_errors(diagnostics: Iterable[Diagnostic]) -> bool:
    return any(d.severity == Severity.ERROR for d in diagnostics)


def return_code(diagnostics: Iterable[Diagnostic]) -> int:
    """MAXCC of a diagnostic list: 12 with errors, 4 with warnings, else 0."""
    worst = max_severity(diagnostics)
    return worst.return_code if worst else 0
