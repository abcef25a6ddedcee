"""Preprocessor module for COBOL source code: COPY expansion and column helpers."""

from .copy_resolver import (
    CopyResolver,
    CopyStatement,
    CopyResolutionError,
    CopybookValidationError,
    CopyDepthError,
    LineMapping,
    MissingCopy,
    PreprocessResult,
    load_library,
    process,
)
from .fixed_format import SourceLine, split_line, is_comment_line, get_content_area

__all__ = [
    "CopyResolver",
    "CopyStatement",
    "CopyResolutionError",
    "CopybookValidationError",
    "CopyDepthError",
    "LineMapping",
    "MissingCopy",
    "PreprocessResult",
    "load_library",
    "process",
    "SourceLine",
    "split_line",
    "is_comment_line",
    "get_content_area",
]
