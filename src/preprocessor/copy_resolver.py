"""COPY statement resolver for COBOL programs.

This module expands COPY statements against an in-memory copybook library
(copybook name -> source text). Features:
- Repeated whole-buffer passes so inlined text can itself contain COPY
- REPLACING clause support (pseudo-text and quoted operands)
- Missing copybooks reported with their exact position so the caller can
  supply the text and run the expansion again
- Copybook content validation (no division headers, nothing past column 72)
- Line mapping from expanded source back to the original source/copybook
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import networkx as nx

from .fixed_format import AREA_A_START, CONTENT_END, is_comment_line

logger = logging.getLogger(__name__)

MAIN_SOURCE = "<main>"


@dataclass
class LineMapping:
    """Maps an expanded line number to its original source location."""

    expanded_line: int
    original_line: int
    source_file: str  # "<main>" for the main source file, or copybook name
    is_copybook: bool = False


@dataclass
class CopyStatement:
    """Represents a parsed COPY statement."""

    copybook_name: str
    replacings: List[Tuple[str, str]] = field(default_factory=list)
    line_number: int = 0
    column: int = 0
    end_line_number: int = 0
    original_text: str = ""


@dataclass
class MissingCopy:
    """A COPY statement whose copybook is not in the library."""

    name: str
    line: int
    column: int
    source_file: str = MAIN_SOURCE


@dataclass
class PreprocessResult:
    """Outcome of copybook expansion.

    Exactly one of three shapes:
    - expanded source only: expansion completed
    - with ``missing_copy``: stopped at a copybook absent from the library;
      ``expanded_source`` is the buffer before the pass that found it
    - with ``error``: fatal preprocessing error (limit or validation)
    """

    expanded_source: str
    missing_copy: Optional[MissingCopy] = None
    error: Optional[str] = None
    line_mapping: Dict[int, LineMapping] = field(default_factory=dict)
    passes: int = 0

    @property
    def ok(self) -> bool:
        return self.missing_copy is None and self.error is None

    def original_location(self, expanded_line: int) -> Tuple[int, str, bool]:
        """Get the original location of an expanded line.

        Returns:
            Tuple of (original_line_number, source_file_name, is_from_copybook)
        """
        mapping = self.line_mapping.get(expanded_line)
        if mapping:
            return (mapping.original_line, mapping.source_file, mapping.is_copybook)
        return (expanded_line, MAIN_SOURCE, False)


class CopyResolutionError(Exception):
    """Fatal error during COPY statement resolution."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code} {message}")


class CopybookValidationError(CopyResolutionError):
    """Copybook content is not a valid source fragment."""

    def __init__(self, copybook_name: str, line: int, reason: str):
        self.copybook_name = copybook_name
        self.line = line
        super().__init__(
            "IGYLI0200-S",
            f"COPYBOOK '{copybook_name}' {reason} AT LINE {line}.",
        )


class CopyDepthError(CopyResolutionError):
    """The pass ceiling was reached while COPY statements were still expanding."""

    def __init__(self, max_passes: int, cycle: Optional[List[str]] = None):
        self.max_passes = max_passes
        self.cycle = cycle or []
        message = "COMPILER LIMIT EXCEEDED: NESTED COPY DEPTH."
        if self.cycle:
            message += f" CYCLE: {' -> '.join(self.cycle)}"
        super().__init__("IGYDS1090-S", message)


class CopyResolver:
    """Resolves COPY statements in COBOL source code against a library."""

    # COPY copybook-name, as a whole word
    COPY_PATTERN = re.compile(r"(?<![A-Za-z0-9_-])COPY\s+([A-Za-z0-9][A-Za-z0-9_-]*)", re.IGNORECASE)

    # REPLACING ==old== BY ==new== / 'old' BY 'new' / word BY word
    REPLACING_PATTERN = re.compile(
        r"(==.*?==|'[^']*'|\"[^\"]*\"|[A-Za-z0-9_:-]+)\s+BY\s+"
        r"(==.*?==|'[^']*'|\"[^\"]*\"|[A-Za-z0-9_:-]+)",
        re.IGNORECASE | re.DOTALL,
    )

    DIVISION_PATTERN = re.compile(
        r"\b(IDENTIFICATION|ID|ENVIRONMENT|DATA|PROCEDURE)\s+DIVISION\b", re.IGNORECASE
    )

    # Fixed pass ceiling guarding against circular copybooks
    MAX_PASSES = 100

    def __init__(self, library: Optional[Mapping[str, str]] = None, max_passes: Optional[int] = None):
        """Initialize the COPY resolver.

        Args:
            library: Mapping of copybook name to copybook source text
            max_passes: Override of the expansion pass ceiling
        """
        self.library: Dict[str, str] = {
            name.upper(): text for name, text in (library or {}).items()
        }
        self.max_passes = max_passes or self.MAX_PASSES
        self.dependency_graph = nx.DiGraph()

    def add_copybook(self, name: str, text: str) -> None:
        """Add (or replace) a copybook in the library."""
        self.library[name.upper()] = text

    def process(self, source: str, source_name: str = MAIN_SOURCE) -> PreprocessResult:
        """Expand all COPY statements in the source.

        Args:
            source: The COBOL source code
            source_name: Name of the source (used in line mappings)

        Returns:
            PreprocessResult describing the expanded source, a missing
            copybook, or a fatal error
        """
        self.dependency_graph = nx.DiGraph()
        self.dependency_graph.add_node(source_name)

        lines = source.splitlines()
        origins = [
            LineMapping(expanded_line=i + 1, original_line=i + 1, source_file=source_name)
            for i in range(len(lines))
        ]

        passes = 0
        try:
            while passes < self.max_passes:
                passes += 1
                outcome = self._expand_pass(lines, origins)
                if isinstance(outcome, MissingCopy):
                    logger.info(f"Copybook {outcome.name} not in library (line {outcome.line})")
                    return PreprocessResult(
                        expanded_source="\n".join(lines),
                        missing_copy=outcome,
                        line_mapping=self._renumber(origins),
                        passes=passes,
                    )
                if outcome is None:
                    logger.debug(f"COPY expansion finished after {passes} pass(es)")
                    return PreprocessResult(
                        expanded_source="\n".join(lines),
                        line_mapping=self._renumber(origins),
                        passes=passes,
                    )
                lines, origins = outcome
            raise CopyDepthError(self.max_passes, self._find_cycle())
        except CopyResolutionError as e:
            logger.error(f"COPY resolution failed: {e}")
            return PreprocessResult(
                expanded_source="\n".join(lines),
                error=str(e),
                line_mapping=self._renumber(origins),
                passes=passes,
            )

    def _expand_pass(self, lines: List[str], origins: List[LineMapping]):
        """Run one expansion pass over the whole buffer.

        Returns:
            None when no COPY statement was found, a MissingCopy when the
            library lacks a copybook, otherwise the new (lines, origins) pair
        """
        new_lines: List[str] = []
        new_origins: List[LineMapping] = []
        changed = False
        i = 0

        while i < len(lines):
            line = lines[i]
            origin = origins[i]
            match = self._find_copy(line)
            if match is None:
                new_lines.append(line)
                new_origins.append(origin)
                i += 1
                continue

            copy_stmt, end_index, end_offset = self._parse_copy_statement(lines, i, match)
            column = AREA_A_START + match.start()

            if copy_stmt.copybook_name not in self.library:
                return MissingCopy(
                    name=copy_stmt.copybook_name,
                    line=i + 1,
                    column=column,
                    source_file=origin.source_file,
                )

            content = self.library[copy_stmt.copybook_name]
            self._validate_copybook(copy_stmt.copybook_name, content)
            if copy_stmt.replacings:
                content = self._apply_replacings(content, copy_stmt.replacings)

            self.dependency_graph.add_edge(origin.source_file, copy_stmt.copybook_name)
            logger.debug(
                f"Inlining copybook {copy_stmt.copybook_name} at line {i + 1}, column {column}"
            )

            prefix = line[: AREA_A_START - 1 + match.start()]
            if prefix[AREA_A_START - 1 :].strip():
                new_lines.append(prefix)
                new_origins.append(origin)

            new_lines.append(f"      *++ BEGIN COPY {copy_stmt.copybook_name}")
            new_origins.append(origin)
            for j, book_line in enumerate(content.splitlines()):
                new_lines.append(book_line)
                new_origins.append(
                    LineMapping(
                        expanded_line=0,
                        original_line=j + 1,
                        source_file=copy_stmt.copybook_name,
                        is_copybook=True,
                    )
                )
            new_lines.append(f"      *++ END COPY {copy_stmt.copybook_name}")
            new_origins.append(origin)

            # Text after the terminating period stays at its original columns
            end_line = lines[end_index]
            cut = AREA_A_START + end_offset
            suffix = " " * cut + end_line[cut:]
            if suffix[:CONTENT_END].strip():
                new_lines.append(suffix)
                new_origins.append(origins[end_index])

            changed = True
            i = end_index + 1

        if not changed:
            return None
        return new_lines, new_origins

    def _find_copy(self, line: str) -> Optional[re.Match]:
        """Find a COPY keyword in the content area that is not inside a literal."""
        if len(line) < AREA_A_START or is_comment_line(line):
            return None
        content = line[AREA_A_START - 1 : CONTENT_END]
        for match in self.COPY_PATTERN.finditer(content):
            text_before = content[: match.start()]
            quote_count = text_before.count('"') + text_before.count("'")
            if quote_count % 2 == 0:
                return match
        return None

    def _parse_copy_statement(
        self, lines: List[str], start_index: int, match: re.Match
    ) -> Tuple[CopyStatement, int, int]:
        """Collect the full COPY statement text, which may span lines.

        Returns:
            Tuple of (statement, index of the line holding the terminating
            period, offset of that period within the line's content area)
        """
        copybook_name = match.group(1).upper()
        index = start_index
        content = lines[index][AREA_A_START - 1 : CONTENT_END]
        offset = match.end()
        parts: List[str] = []
        in_pseudo = False
        quote: Optional[str] = None

        while True:
            while offset < len(content):
                char = content[offset]
                if quote:
                    if char == quote:
                        quote = None
                elif content.startswith("==", offset):
                    in_pseudo = not in_pseudo
                    parts.append("==")
                    offset += 2
                    continue
                elif not in_pseudo and char in ("'", '"'):
                    quote = char
                elif not in_pseudo and char == ".":
                    text = "".join(parts)
                    return (
                        CopyStatement(
                            copybook_name=copybook_name,
                            replacings=self._parse_replacings(text),
                            line_number=start_index + 1,
                            column=AREA_A_START + match.start(),
                            end_line_number=index + 1,
                            original_text=f"COPY {copybook_name}{text}.",
                        ),
                        index,
                        offset,
                    )
                parts.append(char)
                offset += 1

            # Statement continues on the next non-comment line
            index += 1
            while index < len(lines) and is_comment_line(lines[index]):
                index += 1
            if index >= len(lines):
                # No terminating period: the statement ends with the buffer
                index = len(lines) - 1
                text = "".join(parts)
                return (
                    CopyStatement(
                        copybook_name=copybook_name,
                        replacings=self._parse_replacings(text),
                        line_number=start_index + 1,
                        column=AREA_A_START + match.start(),
                        end_line_number=index + 1,
                        original_text=f"COPY {copybook_name}{text}",
                    ),
                    index,
                    CONTENT_END,
                )
            parts.append(" ")
            content = lines[index][AREA_A_START - 1 : CONTENT_END]
            offset = 0

    def _parse_replacings(self, text: str) -> List[Tuple[str, str]]:
        """Parse the REPLACING operand pairs of a COPY statement."""
        upper = text.upper()
        position = upper.find("REPLACING")
        if position < 0:
            return []
        replacings = []
        for rep_match in self.REPLACING_PATTERN.finditer(text[position + len("REPLACING") :]):
            old_text = self._normalize_replacing_text(rep_match.group(1))
            new_text = self._normalize_replacing_text(rep_match.group(2))
            if old_text:
                replacings.append((old_text, new_text))
        return replacings

    def _normalize_replacing_text(self, text: str) -> str:
        """Normalize REPLACING text by removing pseudo-text delimiters and quotes."""
        text = text.strip()
        if text.startswith("==") and text.endswith("==") and len(text) >= 4:
            return text[2:-2].strip()
        if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
            return text[1:-1]
        return text

    def _validate_copybook(self, copybook_name: str, content: str) -> None:
        """Reject copybooks that are not plain data/procedure fragments.

        Raises:
            CopybookValidationError: On a division header or on code past column 72
        """
        for number, line in enumerate(content.splitlines(), 1):
            if is_comment_line(line):
                continue
            if self.DIVISION_PATTERN.search(line[AREA_A_START - 1 : CONTENT_END]):
                raise CopybookValidationError(copybook_name, number, "CONTAINS A DIVISION HEADER")
            if line[CONTENT_END:].strip():
                raise CopybookValidationError(copybook_name, number, "CONTAINS CODE BEYOND COLUMN 72")

    def _apply_replacings(self, content: str, replacings: List[Tuple[str, str]]) -> str:
        """Apply REPLACING clause substitutions.

        Args:
            content: Copybook content
            replacings: List of (old, new) replacement pairs

        Returns:
            Content with replacements applied
        """
        result = content
        for old_text, new_text in replacings:
            # Whole-word matching for COBOL words, plain text otherwise
            if re.fullmatch(r"[A-Za-z0-9_-]+", old_text):
                pattern = r"(?<![A-Za-z0-9_-])" + re.escape(old_text) + r"(?![A-Za-z0-9_-])"
            else:
                pattern = re.escape(old_text)
            result = re.sub(pattern, lambda _m: new_text, result, flags=re.IGNORECASE)
        return result

    def _find_cycle(self) -> List[str]:
        """Return the first inclusion cycle found in the dependency graph."""
        try:
            edges = nx.find_cycle(self.dependency_graph)
        except nx.NetworkXNoCycle:
            return []
        return [edge[0] for edge in edges] + [edges[-1][1]]

    @staticmethod
    def _renumber(origins: List[LineMapping]) -> Dict[int, LineMapping]:
        mapping = {}
        for number, origin in enumerate(origins, 1):
            mapping[number] = LineMapping(
                expanded_line=number,
                original_line=origin.original_line,
                source_file=origin.source_file,
                is_copybook=origin.is_copybook,
            )
        return mapping


def process(source: str, library: Optional[Mapping[str, str]] = None) -> PreprocessResult:
    """Expand COPY statements in ``source`` against ``library``.

    The caller can add a missing copybook to the library and call this
    function again; nothing is cached between calls.
    """
    return CopyResolver(library).process(source)


COPYBOOK_EXTENSIONS = [".cpy", ".copy", ".cbl", ".cob", ""]


def load_library(
    copybook_paths: Iterable[Path],
    extensions: Optional[List[str]] = None,
) -> Dict[str, str]:
    """Load every copybook file found in the given directories.

    Args:
        copybook_paths: Directories to scan
        extensions: File extensions recognized as copybooks

    Returns:
        Mapping of upper-cased copybook name to its text. Earlier paths win
        when the same name appears twice.
    """
    extensions = [ext.lower() for ext in (extensions or COPYBOOK_EXTENSIONS)]
    library: Dict[str, str] = {}
    for base_path in copybook_paths:
        if not base_path.is_dir():
            logger.warning(f"Copybook path is not a directory: {base_path}")
            continue
        for candidate in sorted(base_path.iterdir()):
            if not candidate.is_file() or candidate.suffix.lower() not in extensions:
                continue
            name = candidate.stem.upper() if candidate.suffix else candidate.name.upper()
            if name not in library:
                library[name] = candidate.read_text(encoding="utf-8", errors="replace")
    logger.debug(f"Loaded {len(library)} copybook(s)")
    return library
