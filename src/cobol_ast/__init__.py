"""AST module containing the executable COBOL AST and the compile API."""

from .nodes import (
    CobolProgram,
    DataDivision,
    ProcedureDivision,
    Paragraph,
    PicType,
    SourceSpan,
    Statement,
    VariableDeclaration,
    STATEMENT_TYPES,
    walk_statements,
)
from .debug_tree import DebugNode, build_debug_tree, statement_lines
from .api import (
    compile_source,
    compile_file,
    CompileOptions,
    CompilationResult,
    CompilationError,
)

__all__ = [
    # AST nodes
    "CobolProgram",
    "DataDivision",
    "ProcedureDivision",
    "Paragraph",
    "PicType",
    "SourceSpan",
    "Statement",
    "VariableDeclaration",
    "STATEMENT_TYPES",
    "walk_statements",
    # Debug tree
    "DebugNode",
    "build_debug_tree",
    "statement_lines",
    # Public API
    "compile_source",
    "compile_file",
    "CompileOptions",
    "CompilationResult",
    "CompilationError",
]
