"""Public API for compiling COBOL source.

Compilation runs the whole front end: COPY expansion, lexing, parsing and
both static validators. Fatal failures (missing copybook, preprocessing
limits, lexical and syntax errors) come back as values on the result
rather than exceptions, so callers can supply a missing copybook and
retry.

Example:
    from cobol_ast import compile_source, CompileOptions

    result = compile_source(source, CompileOptions(library={"CUSTREC": text}))
    if result.succeeded:
        runtime.run(result.program)
    else:
        print(result.error or result.missing_copy)
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from analyzers.diagnostics import Diagnostic
    from preprocessor import LineMapping, MissingCopy
    from .debug_tree import DebugNode
    from .nodes import CobolProgram

logger = logging.getLogger(__name__)

FATAL_RETURN_CODE = 12


class CompilationError(Exception):
    """Raised when a source file cannot be read for compilation."""
    pass


@dataclass
class CompileOptions:
    """Options for compilation.

    Attributes:
        library: Copybook name to copybook text
        copybook_paths: Directories whose copybook files are added to the library
            (the source file's directory is always searched by compile_file)
        copybook_extensions: File extensions recognized as copybooks
        max_copy_passes: COPY expansion pass ceiling (default: 100)
        run_validators: Run the column and semantic validators (default: True)
    """
    library: Dict[str, str] = field(default_factory=dict)
    copybook_paths: List[Path] = field(default_factory=list)
    copybook_extensions: Optional[List[str]] = None
    max_copy_passes: Optional[int] = None
    run_validators: bool = True


@dataclass
class CompilationResult:
    """Result of compiling one program.

    Attributes:
        source_name: Name of the compiled source (file name or "<main>")
        expanded_source: Source after COPY expansion
        program: Parsed program, None when a fatal error occurred
        diagnostics: Column and semantic diagnostics, sorted by position
        error: Fatal error message (preprocessing, lexical or syntax)
        error_line: Line of the fatal error in the expanded source, when known
        error_column: Column of the fatal error, when known
        missing_copy: Copybook the library did not contain
        line_mapping: Expanded line number to original location
        execution_time_seconds: Wall time spent compiling
    """
    source_name: str
    expanded_source: str = ""
    program: Optional["CobolProgram"] = None
    diagnostics: List["Diagnostic"] = field(default_factory=list)
    error: Optional[str] = None
    error_line: Optional[int] = None
    error_column: Optional[int] = None
    missing_copy: Optional["MissingCopy"] = None
    line_mapping: Dict[int, "LineMapping"] = field(default_factory=dict)
    execution_time_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        """True when the program parsed and no diagnostic blocks execution."""
        from analyzers import has_errors

        return (
            self.program is not None
            and self.error is None
            and self.missing_copy is None
            and not has_errors(self.diagnostics)
        )

    @property
    def return_code(self) -> int:
        """MAXCC of the compilation: 12 on fatal errors, else from diagnostics."""
        from analyzers import return_code

        if self.error is not None or self.missing_copy is not None or self.program is None:
            return FATAL_RETURN_CODE
        return return_code(self.diagnostics)

    def original_location(self, line: int) -> Tuple[int, str, bool]:
        """Map an expanded line to (original_line, source_file, is_copybook)."""
        mapping = self.line_mapping.get(line)
        if mapping:
            return (mapping.original_line, mapping.source_file, mapping.is_copybook)
        return (line, self.source_name, False)

    def debug_tree(self) -> Optional["DebugNode"]:
        """Structural source tree of the parsed program, or None."""
        from .debug_tree import build_debug_tree

        if self.program is None:
            return None
        return build_debug_tree(self.program)


def compile_source(
    source: str,
    options: Optional[CompileOptions] = None,
    source_name: str = "<main>",
) -> CompilationResult:
    """Compile COBOL source text.

    Args:
        source: Fixed-format COBOL source
        options: Compile options (uses defaults if not provided)
        source_name: Name used in line mappings

    Returns:
        CompilationResult; never raises for problems in the source itself
    """
    # Import here to avoid circular imports: the parser depends on cobol_ast.nodes
    import time
    from preprocessor import CopyResolver, load_library
    from parser import CompileError, Parser, tokenize
    from analyzers import sort_diagnostics, validate_columns, validate_semantics

    if options is None:
        options = CompileOptions()

    start_time = time.perf_counter()
    library = dict(options.library)
    if options.copybook_paths:
        for name, text in load_library(options.copybook_paths, options.copybook_extensions).items():
            library.setdefault(name, text)

    resolver = CopyResolver(library, options.max_copy_passes)
    preprocessed = resolver.process(source, source_name)
    result = CompilationResult(
        source_name=source_name,
        expanded_source=preprocessed.expanded_source,
        line_mapping=preprocessed.line_mapping,
    )

    if preprocessed.missing_copy is not None:
        result.missing_copy = preprocessed.missing_copy
    elif preprocessed.error is not None:
        result.error = preprocessed.error
    else:
        try:
            result.program = Parser(tokenize(preprocessed.expanded_source)).parse()
        except CompileError as e:
            logger.info(f"Compilation of {source_name} failed: {e}")
            result.error = str(e)
            result.error_line = e.line
            result.error_column = e.column

    if result.program is not None and options.run_validators:
        result.diagnostics = sort_diagnostics(
            validate_columns(preprocessed.expanded_source) + validate_semantics(result.program)
        )

    result.execution_time_seconds = round(time.perf_counter() - start_time, 4)
    logger.info(
        f"Compiled {source_name}: RC={result.return_code}, "
        f"{len(result.diagnostics)} diagnostics in {result.execution_time_seconds}s"
    )
    return result


def compile_file(source_path: Path, options: Optional[CompileOptions] = None) -> CompilationResult:
    """Compile a COBOL source file.

    The file's own directory is searched for copybooks after any paths
    given in the options.

    Raises:
        FileNotFoundError: If the source file doesn't exist
        CompilationError: If the file cannot be read
    """
    if options is None:
        options = CompileOptions()

    if not source_path.exists():
        raise FileNotFoundError(f"Source file not found: {source_path}")
    if not source_path.is_file():
        raise FileNotFoundError(f"Source path is not a file: {source_path}")

    try:
        source = source_path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise CompilationError(f"Cannot read {source_path}: {e}") from e

    search_paths = list(options.copybook_paths)
    if source_path.parent not in search_paths:
        search_paths.append(source_path.parent)
    file_options = CompileOptions(
        library=options.library,
        copybook_paths=search_paths,
        copybook_extensions=options.copybook_extensions,
        max_copy_passes=options.max_copy_passes,
        run_validators=options.run_validators,
    )
    return compile_source(source, file_options, source_name=source_path.name)
