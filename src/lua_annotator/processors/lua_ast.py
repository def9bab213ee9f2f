"""Abstract syntax tree for Lua sources.

The tree is intentionally structural: it records what the annotator needs
(declarations, their parameters and bodies, module tables, requires and the
leading doc block of each declaration) and keeps enough position
information to rewrite comment blocks in place.

Every node carries a ``Span``. Declaration nodes (``Assignment``,
``FunctionDecl``, ``MethodDecl``) additionally own an optional ``doc``
block with the annotations captured immediately above them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Iterator, TYPE_CHECKING

if TYPE_CHECKING:
    from lua_annotator.processors.annotations import DocBlock


@dataclass(frozen=True)
class Span:
    """Source position of a node.

    Attributes:
        line: 1-based line of the first token
        column: 1-based column of the first token
        start: Offset of the first character
        end: Offset one past the last character
    """
    line: int = 0
    column: int = 0
    start: int = 0
    end: int = 0


NO_SPAN = Span()


@dataclass
class Diagnostic:
    """A recoverable problem found while parsing or annotating a file."""
    severity: str
    kind: str
    message: str
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        return f"{self.line}:{self.column}: {self.severity}: {self.message}"


class Node:
    """Base class of every AST node."""

    span: Span

    def children(self) -> Iterator["Node"]:
        """Yield direct child nodes in source order."""
        for f in fields(self):
            if f.name in ("span", "doc"):
                continue
            yield from _nodes_in(getattr(self, f.name))


def _nodes_in(value: Any) -> Iterator[Node]:
    if isinstance(value, Node):
        yield value
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _nodes_in(item)


def walk(node: Node, skip_functions: bool = False) -> Iterator[Node]:
    """Depth-first pre-order traversal.

    Args:
        node: Root of the traversal (always yielded).
        skip_functions: Do not descend into nested function bodies.
    """
    yield node
    for child in node.children():
        if skip_functions and isinstance(child, (FunctionExpr, FunctionDecl)):
            yield child
            continue
        yield from walk(child, skip_functions)


# ============================================================================
# Expressions
# ============================================================================


@dataclass
class Literal(Node):
    """``kind`` is one of ``string``, ``number``, ``boolean``, ``nil``."""
    kind: str
    raw: str
    span: Span = NO_SPAN

    @property
    def value(self) -> str:
        """String contents without quotes or long-bracket fences."""
        if self.kind != "string":
            return self.raw
        raw = self.raw
        if raw.startswith("["):
            level = raw.index("[", 1) + 1
            body = raw[level:len(raw) - level]
            return body[1:] if body.startswith("\n") else body
        return raw[1:-1]


@dataclass
class Identifier(Node):
    name: str
    span: Span = NO_SPAN


@dataclass
class Index(Node):
    """``obj.name`` (``name`` set) or ``obj[key]``."""
    obj: Node
    key: Node | None = None
    name: str | None = None
    span: Span = NO_SPAN


@dataclass
class Call(Node):
    """Function call; ``method`` is set for ``obj:method(...)``."""
    callee: Node
    args: list[Node] = field(default_factory=list)
    method: str | None = None
    span: Span = NO_SPAN


@dataclass
class Require(Call):
    """A ``require("name")`` call with a literal module name."""
    module_name: str = ""


@dataclass
class BinaryOp(Node):
    op: str
    left: Node
    right: Node
    span: Span = NO_SPAN


@dataclass
class UnaryOp(Node):
    op: str
    operand: Node
    span: Span = NO_SPAN


@dataclass
class TableField(Node):
    """Constructor entry: ``name = v``, ``[key] = v`` or positional ``v``."""
    value: Node
    key: Node | None = None
    name: str | None = None
    doc: "DocBlock | None" = None
    span: Span = NO_SPAN


@dataclass
class TableConstructor(Node):
    fields: list[TableField] = field(default_factory=list)
    span: Span = NO_SPAN


@dataclass
class FunctionExpr(Node):
    params: list[str] = field(default_factory=list)
    is_vararg: bool = False
    body: "Block" = None
    span: Span = NO_SPAN


@dataclass
class Vararg(Node):
    span: Span = NO_SPAN


@dataclass
class Paren(Node):
    inner: Node
    span: Span = NO_SPAN


# ============================================================================
# Statements
# ============================================================================


@dataclass
class Block(Node):
    body: list[Node] = field(default_factory=list)
    span: Span = NO_SPAN


@dataclass
class Assignment(Node):
    """``[local] targets = values``; ``values`` may be empty for ``local x``."""
    targets: list[Node]
    values: list[Node] = field(default_factory=list)
    is_local: bool = False
    doc: "DocBlock | None" = None
    span: Span = NO_SPAN

    @property
    def name(self) -> str | None:
        return expression_name(self.targets[0]) if self.targets else None

    @property
    def decl_id(self) -> str:
        return f"{self.name}:{self.span.line}"


@dataclass
class FunctionDecl(Node):
    """``function a.b.c(...)`` or ``local function f(...)``.

    ``name`` is the full dotted name as written; ``table`` is everything
    before the final separator (``None`` for plain names).
    """
    name: str
    params: list[str] = field(default_factory=list)
    is_vararg: bool = False
    body: Block = None
    is_local: bool = False
    table: str | None = None
    member: str = ""
    doc: "DocBlock | None" = None
    span: Span = NO_SPAN

    @property
    def decl_id(self) -> str:
        return f"{self.name}:{self.span.line}"


@dataclass
class MethodDecl(FunctionDecl):
    """``function tbl:name(...)``; ``self`` is implicit and not in ``params``."""


@dataclass
class Return(Node):
    values: list[Node] = field(default_factory=list)
    span: Span = NO_SPAN


@dataclass
class ModuleReturn(Return):
    """A ``return`` at file scope, the candidate module value."""


@dataclass
class If(Node):
    """``clauses`` holds ``(condition, block)`` pairs for if/elseif."""
    clauses: list[tuple[Node, Block]] = field(default_factory=list)
    orelse: Block | None = None
    span: Span = NO_SPAN


@dataclass
class While(Node):
    condition: Node
    body: Block = None
    span: Span = NO_SPAN


@dataclass
class Repeat(Node):
    body: Block
    condition: Node = None
    span: Span = NO_SPAN


@dataclass
class NumericFor(Node):
    var: str
    start: Node
    stop: Node
    step: Node | None = None
    body: Block = None
    span: Span = NO_SPAN


@dataclass
class GenericFor(Node):
    names: list[str]
    exprs: list[Node] = field(default_factory=list)
    body: Block = None
    span: Span = NO_SPAN


@dataclass
class Do(Node):
    body: Block
    span: Span = NO_SPAN


@dataclass
class CallStatement(Node):
    call: Call
    span: Span = NO_SPAN


@dataclass
class Break(Node):
    span: Span = NO_SPAN


@dataclass
class Goto(Node):
    label: str
    span: Span = NO_SPAN


@dataclass
class Label(Node):
    name: str
    span: Span = NO_SPAN


@dataclass
class Opaque(Node):
    """Unparseable statement kept as raw text."""
    text: str
    diagnostic: Diagnostic | None = None
    span: Span = NO_SPAN


@dataclass
class Chunk(Node):
    """Root of a parsed file."""
    body: Block
    requires: list[Require] = field(default_factory=list)
    span: Span = NO_SPAN


def expression_name(expr: Node) -> str | None:
    """Dotted name of ``a``, ``a.b.c`` style expressions, else ``None``."""
    if isinstance(expr, Identifier):
        return expr.name
    if isinstance(expr, Index) and expr.name is not None:
        base = expression_name(expr.obj)
        if base is not None:
            return f"{base}.{expr.name}"
    return None
