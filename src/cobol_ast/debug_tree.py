"""Source-mapped structural tree derived from the executable AST.

The debug tree mirrors program structure (divisions, declarations,
paragraphs, statements and nested bodies) with start/end lines only. It is
built after parsing from the SourceSpan carried by each node, so it cannot
drift out of sync with the statements it describes.
"""

from dataclasses import dataclass, field
from typing import Dict, List

from .nodes import CobolProgram, Statement, walk_statements


@dataclass
class DebugNode:
    """One node of the structural tree."""

    kind: str
    start_line: int
    end_line: int
    name: str = ""
    children: List["DebugNode"] = field(default_factory=list)

    def contains(self, line: int) -> bool:
        return self.start_line <= line <= self.end_line

    def to_dict(self) -> Dict:
        result = {
            "kind": self.kind,
            "start_line": self.start_line,
            "end_line": self.end_line,
        }
        if self.name:
            result["name"] = self.name
        if self.children:
            result["children"] = [child.to_dict() for child in self.children]
        return result


def _statement_kind(statement: Statement) -> str:
    return type(statement).__name__.replace("Statement", "").upper()


def _statement_node(statement: Statement) -> DebugNode:
    node = DebugNode(
        kind=_statement_kind(statement),
        start_line=statement.span.line,
        end_line=statement.span.end_line,
    )
    for role, body in statement.children():
        if not body:
            continue
        block = DebugNode(
            kind=role,
            start_line=body[0].span.line,
            end_line=body[-1].span.end_line,
            children=[_statement_node(child) for child in body],
        )
        node.children.append(block)
    return node


def build_debug_tree(program: CobolProgram) -> DebugNode:
    """Derive the structural tree of a parsed program.

    Args:
        program: Parsed program whose nodes carry source spans

    Returns:
        Root PROGRAM node with DATA DIVISION and PROCEDURE DIVISION children
    """
    root = DebugNode(
        kind="PROGRAM",
        start_line=program.span.line,
        end_line=program.span.end_line,
        name=program.program_id,
    )

    data = program.data_division
    if data.span.line:
        data_node = DebugNode("DATA DIVISION", data.span.line, data.span.end_line)
        for fd in data.file_section:
            fd_node = DebugNode("FD", fd.span.line, fd.span.end_line, name=fd.file_name)
            fd_node.children = [
                DebugNode("VARIABLE", rec.span.line, rec.span.end_line, name=rec.name)
                for rec in fd.records
            ]
            data_node.children.append(fd_node)
        for declaration in data.working_storage + data.linkage:
            data_node.children.append(
                DebugNode("VARIABLE", declaration.span.line, declaration.span.end_line, name=declaration.name)
            )
        for bms_map in data.map_section:
            data_node.children.append(
                DebugNode("MAP", bms_map.span.line, bms_map.span.end_line, name=bms_map.map_name)
            )
        root.children.append(data_node)

    procedure = program.procedure_division
    proc_node = DebugNode("PROCEDURE DIVISION", procedure.span.line, procedure.span.end_line)
    statement_nodes = [_statement_node(stmt) for stmt in procedure.statements]

    # Paragraph nodes group the statements they cover; sections are flat labels here
    paragraphs = sorted(
        (p for p in procedure.paragraphs.values() if not p.is_section), key=lambda p: p.start
    )
    covered = set()
    for paragraph in paragraphs:
        para_node = DebugNode(
            "PARAGRAPH", paragraph.span.line, paragraph.span.end_line, name=paragraph.name
        )
        para_node.children = statement_nodes[paragraph.start : paragraph.end]
        covered.update(range(paragraph.start, paragraph.end))
        proc_node.children.append(para_node)

    loose = [node for index, node in enumerate(statement_nodes) if index not in covered]
    proc_node.children = sorted(loose + proc_node.children, key=lambda n: n.start_line)
    root.children.append(proc_node)
    return root


def statement_lines(program: CobolProgram) -> List[int]:
    """Lines that hold an executable statement, for breakpoint validation."""
    return sorted({stmt.span.line for stmt in walk_statements(program.procedure_division.statements)})


def find_innermost(node: DebugNode, line: int) -> DebugNode:
    """Return the deepest node whose line range contains ``line``."""
    for child in node.children:
        if child.contains(line):
            return find_innermost(child, line)
    return node
