"""Type expressions used in LSP annotations.

Annotation payloads such as ``string|nil``, ``table<string, integer>`` or
``fun(cb: fun(err?: string)): boolean`` are parsed with a Lark grammar into
small immutable ``TypeExpr`` trees. The trees render back to annotation
syntax and support the relations the merger needs: union normalisation,
nil handling, subtyping and equivalence (with ``@alias`` resolution).

Example:
    >>> t = parse_type("string?")
    >>> t.render()
    'string|nil'
    >>> is_subtype(parse_type("'left'|'right'"), parse_type("string"))
    True
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping

from lark import Lark, Token, Transformer, v_args
from lark.exceptions import LarkError


class AnnotationParseError(Exception):
    """Raised when annotation syntax (a type expression or tag) is malformed.

    Attributes:
        text: The offending text
        detail: Parser message
    """

    def __init__(self, text: str, detail: str = "") -> None:
        self.text = text
        self.detail = detail
        suffix = f": {detail}" if detail else ""
        super().__init__(f"Malformed annotation '{text}'{suffix}")


TYPE_GRAMMAR = r"""
    ?start: type

    ?type: optional_type
         | optional_type ("|" optional_type)+       -> union_type

    ?optional_type: primary_type
         | optional_type "?"                         -> nilable_type
         | optional_type "[" "]"                     -> array_type

    ?primary_type: function_type
         | table_shape
         | generic_type
         | literal_type
         | named_type
         | BACKTICK_NAME                             -> backtick_type
         | "(" type ")"

    function_type: "fun" "(" [fun_params] ")" [":" return_list]
    fun_params: fun_param ("," fun_param)*
    ?fun_param: NAME ":" type                        -> named_param
         | NAME "?" ":" type                         -> optional_param
         | "..." ":" type                            -> vararg_param
         | "..."                                     -> bare_vararg_param
         | type                                      -> unnamed_param
    return_list: type ("," type)*

    table_shape: "{" [shape_field ("," shape_field)* [","]] "}"
    ?shape_field: NAME ":" type                      -> named_field
         | NAME "?" ":" type                         -> optional_field
         | "[" type "]" ":" type                     -> indexed_field

    generic_type: NAME ("." NAME)* "<" type ("," type)* ">"
    named_type: NAME ("." NAME)*

    literal_type: STRING_DQ | STRING_SQ | NUMBER

    NAME: /[A-Za-z_][A-Za-z0-9_]*/
    BACKTICK_NAME: /`[^`]+`/
    STRING_DQ: /"(?:[^"\\]|\\.)*"/
    STRING_SQ: /'(?:[^'\\]|\\.)*'/
    NUMBER: /-?\d+(\.\d+)?/

    %import common.WS
    %ignore WS
"""

PRIMITIVE_TYPES = frozenset({
    "nil", "any", "unknown", "boolean", "number", "integer", "string",
    "table", "function", "userdata", "lightuserdata", "thread",
})


# ============================================================================
# Type expression nodes
# ============================================================================


class TypeExpr:
    """Base class of all type expression nodes."""

    def render(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class NamedType(TypeExpr):
    """A primitive, class, alias or generic parameter name."""
    name: str

    def render(self) -> str:
        return self.name


@dataclass(frozen=True)
class LiteralType(TypeExpr):
    """A string or number literal type, kept with its quotes."""
    text: str

    @property
    def is_string(self) -> bool:
        return self.text[:1] in ("'", '"')

    @property
    def is_integer(self) -> bool:
        return not self.is_string and "." not in self.text

    def render(self) -> str:
        return self.text


@dataclass(frozen=True)
class UnionType(TypeExpr):
    """Alternatives; build through ``make_union`` to keep it normalised."""
    members: tuple[TypeExpr, ...]

    def render(self) -> str:
        parts = []
        for member in self.members:
            text = member.render()
            if isinstance(member, FunctionType):
                text = f"({text})"
            parts.append(text)
        return "|".join(parts)


@dataclass(frozen=True)
class ArrayType(TypeExpr):
    element: TypeExpr

    def render(self) -> str:
        inner = self.element.render()
        if isinstance(self.element, (UnionType, FunctionType)):
            inner = f"({inner})"
        return f"{inner}[]"


@dataclass(frozen=True)
class GenericType(TypeExpr):
    """``base<arg, ...>``, e.g. ``table<string, number>``."""
    base: str
    args: tuple[TypeExpr, ...]

    def render(self) -> str:
        return f"{self.base}<{', '.join(a.render() for a in self.args)}>"


@dataclass(frozen=True)
class FunctionParam:
    name: str | None
    type_expr: TypeExpr | None
    optional: bool = False

    def render(self) -> str:
        if self.name is None:
            return self.type_expr.render() if self.type_expr else "any"
        mark = "?" if self.optional else ""
        if self.type_expr is None:
            return f"{self.name}{mark}"
        return f"{self.name}{mark}: {self.type_expr.render()}"


@dataclass(frozen=True)
class FunctionType(TypeExpr):
    params: tuple[FunctionParam, ...] = ()
    returns: tuple[TypeExpr, ...] = ()

    def render(self) -> str:
        text = f"fun({', '.join(p.render() for p in self.params)})"
        if self.returns:
            text += ": " + ", ".join(r.render() for r in self.returns)
        return text


@dataclass(frozen=True)
class ShapeField:
    key: str
    type_expr: TypeExpr
    optional: bool = False
    indexed: bool = False

    def render(self) -> str:
        if self.indexed:
            return f"[{self.key}]: {self.type_expr.render()}"
        mark = "?" if self.optional else ""
        return f"{self.key}{mark}: {self.type_expr.render()}"


@dataclass(frozen=True)
class TableShapeType(TypeExpr):
    """Inline table shape ``{ key: type, [K]: V }``."""
    fields: tuple[ShapeField, ...] = ()

    def render(self) -> str:
        if not self.fields:
            return "{}"
        return "{ " + ", ".join(f.render() for f in self.fields) + " }"


@dataclass(frozen=True)
class RawType(TypeExpr):
    """Unparseable type text, compared verbatim."""
    text: str

    def render(self) -> str:
        return self.text


ANY = NamedType("any")
NIL = NamedType("nil")
BOOLEAN = NamedType("boolean")
NUMBER = NamedType("number")
INTEGER = NamedType("integer")
STRING = NamedType("string")
TABLE = NamedType("table")
FUNCTION = NamedType("function")


# ============================================================================
# Parsing
# ============================================================================


class _ParamList(tuple):
    pass


class _ReturnList(tuple):
    pass


@v_args(inline=True)
class _TypeBuilder(Transformer):
    """Turns the Lark parse tree into ``TypeExpr`` nodes."""

    def union_type(self, *members):
        return make_union(*members)

    def nilable_type(self, inner):
        return make_union(inner, NIL)

    def array_type(self, inner):
        return ArrayType(inner)

    def named_type(self, *names):
        return NamedType(".".join(str(n) for n in names))

    def backtick_type(self, token):
        return NamedType(str(token))

    def generic_type(self, *items):
        names = [str(item) for item in items if isinstance(item, Token)]
        args = tuple(item for item in items if isinstance(item, TypeExpr))
        return GenericType(".".join(names), args)

    def literal_type(self, token):
        return LiteralType(str(token))

    def function_type(self, *items):
        params: tuple = ()
        returns: tuple = ()
        for item in items:
            if isinstance(item, _ParamList):
                params = tuple(item)
            elif isinstance(item, _ReturnList):
                returns = tuple(item)
        return FunctionType(params, returns)

    def fun_params(self, *params):
        return _ParamList(params)

    def return_list(self, *types):
        return _ReturnList(types)

    def named_param(self, name, type_expr):
        return FunctionParam(str(name), type_expr)

    def optional_param(self, name, type_expr):
        return FunctionParam(str(name), type_expr, optional=True)

    def vararg_param(self, type_expr):
        return FunctionParam("...", type_expr)

    def bare_vararg_param(self):
        return FunctionParam("...", None)

    def unnamed_param(self, type_expr):
        return FunctionParam(None, type_expr)

    def table_shape(self, *fields):
        return TableShapeType(tuple(f for f in fields if isinstance(f, ShapeField)))

    def named_field(self, name, type_expr):
        return ShapeField(str(name), type_expr)

    def optional_field(self, name, type_expr):
        return ShapeField(str(name), type_expr, optional=True)

    def indexed_field(self, key_type, type_expr):
        return ShapeField(key_type.render(), type_expr, indexed=True)


_parser: Lark | None = None


def _get_parser() -> Lark:
    global _parser
    if _parser is None:
        _parser = Lark(TYPE_GRAMMAR, parser="earley", ambiguity="resolve")
    return _parser


@lru_cache(maxsize=4096)
def parse_type(text: str) -> TypeExpr:
    """Parse an annotation type expression.

    Args:
        text: Type text such as ``string|nil`` or ``fun(x: number): boolean``.

    Returns:
        The parsed, normalised type expression.

    Raises:
        AnnotationParseError: If the text is empty or not valid type syntax.
    """
    stripped = text.strip()
    if not stripped:
        raise AnnotationParseError(text, "empty type")
    try:
        tree = _get_parser().parse(stripped)
        return _TypeBuilder().transform(tree)
    except LarkError as e:
        raise AnnotationParseError(text, str(e).splitlines()[0]) from e


def parse_type_lenient(text: str) -> TypeExpr:
    """Parse a type, falling back to ``RawType`` for malformed text."""
    try:
        return parse_type(text)
    except AnnotationParseError:
        return RawType(text.strip())


def split_type_prefix(text: str) -> tuple[str, str]:
    """Split annotation text into a leading type expression and the rest.

    Whitespace inside brackets, around ``|`` and after the return-type colon
    of ``fun(...)`` belongs to the type. A top-level ``#`` starts the
    description and a top-level ``,`` ends the type.

    Examples:
        >>> split_type_prefix("table<string, number> the map")
        ('table<string, number>', 'the map')
        >>> split_type_prefix("string | nil # maybe")
        ('string | nil', '# maybe')
    """
    n = len(text)
    i = 0
    while i < n and text[i].isspace():
        i += 1
    start = i
    depth = 0
    quote = ""
    while i < n:
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = ""
            i += 1
            continue
        if ch in "\"'`":
            quote = ch
        elif ch in "([{<":
            depth += 1
        elif ch in ")]}>":
            depth = max(0, depth - 1)
        elif depth == 0 and ch in "#,":
            break
        elif depth == 0 and ch.isspace():
            j = i
            while j < n and text[j].isspace():
                j += 1
            previous = text[start:i].rstrip()[-1:]
            following = text[j:j + 1]
            if previous in ("|", ":") or following in ("|", ":"):
                i = j
                continue
            break
        i += 1
    return text[start:i].strip(), text[i:].strip()


# ============================================================================
# Relations
# ============================================================================


def make_union(*types: TypeExpr | None) -> TypeExpr:
    """Build a flattened, de-duplicated union.

    ``any`` absorbs everything, ``integer`` folds into ``number`` and
    literals fold into their primitive when both are present.
    """
    flat: list[TypeExpr] = []
    for t in types:
        if t is None:
            continue
        members = t.members if isinstance(t, UnionType) else (t,)
        for member in members:
            if member not in flat:
                flat.append(member)

    if not flat:
        return ANY
    if any(m in (ANY, NamedType("unknown")) for m in flat):
        return ANY
    if NUMBER in flat:
        flat = [m for m in flat if m != INTEGER and not (isinstance(m, LiteralType) and not m.is_string)]
    if STRING in flat:
        flat = [m for m in flat if not (isinstance(m, LiteralType) and m.is_string)]
    if BOOLEAN in flat:
        flat = [m for m in flat if m not in (NamedType("true"), NamedType("false"))]
    if len(flat) == 1:
        return flat[0]
    return UnionType(tuple(flat))


def is_nilable(t: TypeExpr) -> bool:
    if t == NIL:
        return True
    return isinstance(t, UnionType) and NIL in t.members


def strip_nil(t: TypeExpr) -> TypeExpr:
    """Remove ``nil`` from a union; ``nil`` alone is returned unchanged."""
    if isinstance(t, UnionType):
        rest = [m for m in t.members if m != NIL]
        return make_union(*rest) if rest else NIL
    return t


def union_members(t: TypeExpr) -> tuple[TypeExpr, ...]:
    return t.members if isinstance(t, UnionType) else (t,)


def _resolve_alias(t: TypeExpr, aliases: Mapping[str, TypeExpr], depth: int = 0) -> TypeExpr:
    while isinstance(t, NamedType) and t.name in aliases and depth < 16:
        t = aliases[t.name]
        depth += 1
    if isinstance(t, UnionType):
        return make_union(*(_resolve_alias(m, aliases, depth + 1) for m in t.members))
    return t


def _is_table_like(t: TypeExpr) -> bool:
    if isinstance(t, (ArrayType, GenericType, TableShapeType)):
        return True
    return isinstance(t, NamedType) and t.name not in PRIMITIVE_TYPES and t.name not in ("true", "false")


def is_subtype(
    narrow: TypeExpr,
    wide: TypeExpr,
    aliases: Mapping[str, TypeExpr] | None = None
) -> bool:
    """Check that every value of ``narrow`` is also a value of ``wide``.

    Args:
        narrow: Candidate subtype.
        wide: Candidate supertype.
        aliases: ``@alias`` name to underlying type, resolved on both sides.
    """
    if aliases:
        narrow = _resolve_alias(narrow, aliases)
        wide = _resolve_alias(wide, aliases)

    if wide in (ANY, NamedType("unknown")):
        return True
    if narrow == wide:
        return True
    if isinstance(narrow, UnionType):
        return all(is_subtype(m, wide) for m in narrow.members)
    if isinstance(wide, UnionType):
        return any(is_subtype(narrow, m) for m in wide.members)
    if narrow in (ANY, NamedType("unknown")):
        return False

    if isinstance(narrow, RawType) or isinstance(wide, RawType):
        return "".join(narrow.render().split()) == "".join(wide.render().split())

    if narrow == INTEGER and wide == NUMBER:
        return True
    if isinstance(narrow, LiteralType):
        if narrow.is_string:
            return wide == STRING
        return wide == NUMBER or (wide == INTEGER and narrow.is_integer)
    if narrow in (NamedType("true"), NamedType("false")):
        return wide == BOOLEAN
    if isinstance(narrow, FunctionType):
        return wide == FUNCTION
    if wide == TABLE:
        return _is_table_like(narrow)
    if isinstance(narrow, ArrayType) and isinstance(wide, ArrayType):
        return is_subtype(narrow.element, wide.element)
    if isinstance(narrow, GenericType) and isinstance(wide, GenericType):
        return (
            narrow.base == wide.base
            and len(narrow.args) == len(wide.args)
            and all(is_subtype(a, b) for a, b in zip(narrow.args, wide.args))
        )
    return False


def types_equivalent(
    a: TypeExpr,
    b: TypeExpr,
    aliases: Mapping[str, TypeExpr] | None = None
) -> bool:
    return is_subtype(a, b, aliases) and is_subtype(b, a, aliases)
