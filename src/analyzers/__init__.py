"""Static validators for COBOL source and parsed programs."""

from .diagnostics import (
    Diagnostic,
    Severity,
    has_errors,
    max_severity,
    return_code,
    sort_diagnostics,
)
from .column_validator import validate_columns
from .semantic_validator import SemanticAnalyzer, SymbolInfo, validate_semantics

__all__ = [
    "Diagnostic",
    "Severity",
    "has_errors",
    "max_severity",
    "return_code",
    "sort_diagnostics",
    "validate_columns",
    "SemanticAnalyzer",
    "SymbolInfo",
    "validate_semantics",
]
