"""LSP annotation model.

Parses ``---@tag`` doc comments into typed ``Annotation`` objects. Every
annotation keeps its verbatim text (``raw``) and the exact prefix up to
and including the tag (``prefix``), so an unchanged annotation always
renders byte-for-byte as it was read.

Recognised tags: class, field, param, return, alias (with ``---|``
entries), type, generic, operator, overload, enum, cast, diagnostic,
deprecated, nodiscard, async, vararg, version, see, source, module, meta,
as, private, protected and package. Anything else becomes an
``OpaqueAnnotation`` that is preserved verbatim. A recognised tag with a
malformed payload is kept the same way and also flagged with a
diagnostic.

Example:
    >>> ann = parse_annotation(["---@param name? string the user name"])
    >>> ann.name, ann.optional, ann.type_expr.render(), ann.description
    ('name', True, 'string', 'the user name')
    >>> ann.prefix
    '---@param'
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Sequence

from lua_annotator.processors.lua_ast import Diagnostic, Span, NO_SPAN
from lua_annotator.processors.lua_tokenizer import Token, TokenKind
from lua_annotator.processors.lua_types import (
    AnnotationParseError,
    NIL,
    RawType,
    TypeExpr,
    make_union,
    parse_type,
    parse_type_lenient,
    split_type_prefix,
)
from lua_annotator.utils.logger import get_logger

logger = get_logger("lua_annotator.processors.annotations")

DOC_MARKER = "---"

FLAG_TAGS = frozenset({
    "deprecated", "nodiscard", "async", "private", "protected", "package",
})

_TAG_RE = re.compile(r"^---@([A-Za-z_][\w-]*)")
_NAME_RE = re.compile(r"^(\.\.\.|[A-Za-z_][\w.]*)(\?)?")


@dataclass
class Annotation:
    """Base annotation.

    Attributes:
        kind: Tag name (``param``, ``return``...) or ``doc``/``block`` for raw comments
        raw: Verbatim text; alias headers include their entry lines joined by newlines
        prefix: ``---`` or ``---@tag`` exactly as written
        span: Position of the first line
    """
    kind: str
    raw: str
    prefix: str = DOC_MARKER
    span: Span = NO_SPAN

    @property
    def payload(self) -> str:
        """Text after the prefix, unmodified."""
        return self.raw.split("\n", 1)[0][len(self.prefix):]

    def render(self) -> list[str]:
        return self.raw.split("\n")


@dataclass
class ClassAnnotation(Annotation):
    name: str = ""
    parents: list[str] = field(default_factory=list)
    exact: bool = False


@dataclass
class FieldAnnotation(Annotation):
    name: str = ""
    type_expr: TypeExpr | None = None
    optional: bool = False
    scope: str | None = None
    description: str = ""


@dataclass
class ParamAnnotation(Annotation):
    name: str = ""
    type_expr: TypeExpr | None = None
    optional: bool = False
    description: str = ""

    @property
    def effective_type(self) -> TypeExpr | None:
        """The declared type, widened with ``nil`` for ``name?`` parameters."""
        if self.type_expr is None:
            return None
        return make_union(self.type_expr, NIL) if self.optional else self.type_expr


@dataclass
class ReturnSlot:
    type_expr: TypeExpr
    name: str = ""
    description: str = ""


@dataclass
class ReturnAnnotation(Annotation):
    slots: list[ReturnSlot] = field(default_factory=list)


@dataclass
class AliasEntry(Annotation):
    """A ``---| value # description`` line owned by an alias."""
    value: str = ""
    description: str = ""
    marker: str = ""


@dataclass
class AliasAnnotation(Annotation):
    name: str = ""
    type_expr: TypeExpr | None = None
    entries: list[AliasEntry] = field(default_factory=list)

    def add_entry(self, entry: AliasEntry) -> None:
        self.entries.append(entry)
        self.raw = f"{self.raw}\n{entry.raw}"

    def underlying_type(self) -> TypeExpr | None:
        """The aliased type, built from the entries when the header has none."""
        if self.type_expr is not None:
            return self.type_expr
        values = []
        for entry in self.entries:
            try:
                values.append(parse_type(entry.value))
            except AnnotationParseError:
                return None
        return make_union(*values) if values else None


@dataclass
class TypeAnnotation(Annotation):
    types: list[TypeExpr] = field(default_factory=list)
    description: str = ""


@dataclass
class GenericAnnotation(Annotation):
    params: list[tuple[str, TypeExpr | None]] = field(default_factory=list)


@dataclass
class OperatorAnnotation(Annotation):
    operator: str = ""
    operand: TypeExpr | None = None
    result: TypeExpr | None = None


@dataclass
class OverloadAnnotation(Annotation):
    type_expr: TypeExpr | None = None


@dataclass
class EnumAnnotation(Annotation):
    name: str = ""
    key: bool = False


@dataclass
class CastAnnotation(Annotation):
    name: str = ""
    operations: str = ""


@dataclass
class DiagnosticAnnotation(Annotation):
    action: str = ""
    names: list[str] = field(default_factory=list)


@dataclass
class FlagAnnotation(Annotation):
    """deprecated, nodiscard, async, private, protected, package."""
    text: str = ""


@dataclass
class VarargAnnotation(Annotation):
    type_expr: TypeExpr | None = None
    description: str = ""


@dataclass
class VersionAnnotation(Annotation):
    versions: list[str] = field(default_factory=list)


@dataclass
class SeeAnnotation(Annotation):
    reference: str = ""


@dataclass
class SourceAnnotation(Annotation):
    path: str = ""


@dataclass
class ModuleAnnotation(Annotation):
    module_name: str = ""


@dataclass
class MetaAnnotation(Annotation):
    name: str = ""


@dataclass
class AsAnnotation(Annotation):
    type_expr: TypeExpr | None = None


@dataclass
class RawComment(Annotation):
    """Doc or block comment lines kept verbatim (advisories, demoted tags)."""


@dataclass
class OpaqueAnnotation(Annotation):
    """Unknown or malformed tag preserved verbatim."""
    tag: str = ""
    reason: str = ""


@dataclass
class DocBlock:
    """The comment run attached to one declaration.

    Attributes:
        tokens: Comment tokens in source order
        description: Leading free-text ``---`` lines
        annotations: Annotations (and raw comments) after the description
        diagnostics: Problems found while parsing the block
    """
    tokens: list[Token]
    description: list[str] = field(default_factory=list)
    annotations: list[Annotation] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def start(self) -> int:
        return self.tokens[0].start

    @property
    def end(self) -> int:
        return self.tokens[-1].end

    @property
    def line(self) -> int:
        return self.tokens[0].line

    def of_kind(self, cls: type) -> list:
        return [a for a in self.annotations if isinstance(a, cls)]

    def raw_texts(self) -> set[str]:
        return {a.raw for a in self.annotations}


# ============================================================================
# Parsing
# ============================================================================


def _split_description(rest: str) -> str:
    rest = rest.strip()
    if rest.startswith("#"):
        rest = rest[1:].strip()
    return rest


def _parse_type_required(text: str, raw: str) -> tuple[TypeExpr, str]:
    type_text, rest = split_type_prefix(text)
    if not type_text:
        raise AnnotationParseError(raw, "missing type")
    return parse_type(type_text), rest


def _parse_param(ann: dict, payload: str) -> ParamAnnotation:
    text = payload.strip()
    match = _NAME_RE.match(text)
    if not match:
        raise AnnotationParseError(ann["raw"], "missing parameter name")
    type_text, rest = split_type_prefix(text[match.end():])
    if not type_text:
        raise AnnotationParseError(ann["raw"], "missing type")
    # A bad type still names the parameter, so the entry is kept
    type_expr = parse_type_lenient(type_text)
    return ParamAnnotation(
        **ann,
        name=match.group(1),
        optional=bool(match.group(2)),
        type_expr=type_expr,
        description=_split_description(rest),
    )


def _parse_return(ann: dict, payload: str) -> ReturnAnnotation:
    slots: list[ReturnSlot] = []
    text = payload
    while True:
        type_expr, rest = _parse_type_required(text, ann["raw"])
        if rest.startswith(","):
            slots.append(ReturnSlot(type_expr))
            text = rest[1:]
            continue
        name = ""
        description = rest
        if rest and not rest.startswith("#"):
            parts = rest.split(None, 1)
            candidate = parts[0].rstrip(",")
            if re.fullmatch(r"[A-Za-z_]\w*|\.\.\.", candidate):
                name = candidate
                description = parts[1] if len(parts) > 1 else ""
                if parts[0].endswith(","):
                    slots.append(ReturnSlot(type_expr, name))
                    text = description
                    continue
        slots.append(ReturnSlot(type_expr, name, _split_description(description)))
        return ReturnAnnotation(**ann, slots=slots)


def _parse_field(ann: dict, payload: str) -> FieldAnnotation:
    text = payload.strip()
    scope = None
    first = text.split(None, 1)
    if first and first[0] in ("public", "private", "protected", "package"):
        scope = first[0]
        text = first[1] if len(first) > 1 else ""
    if text.startswith("["):
        close = text.find("]")
        if close < 0:
            raise AnnotationParseError(ann["raw"], "unterminated field key")
        name, optional, text = text[:close + 1], False, text[close + 1:]
    else:
        match = _NAME_RE.match(text)
        if not match:
            raise AnnotationParseError(ann["raw"], "missing field name")
        name, optional, text = match.group(1), bool(match.group(2)), text[match.end():]
    type_expr, rest = _parse_type_required(text, ann["raw"])
    return FieldAnnotation(
        **ann, name=name, type_expr=type_expr, optional=optional,
        scope=scope, description=_split_description(rest),
    )


def _parse_class(ann: dict, payload: str) -> ClassAnnotation:
    text = payload.strip()
    exact = False
    if text.startswith("("):
        close = text.find(")")
        exact = "exact" in text[1:close]
        text = text[close + 1:].strip()
    head, _, parents = text.partition(":")
    names = head.split()
    if not names:
        raise AnnotationParseError(ann["raw"], "missing class name")
    parent_list = [p.strip() for p in parents.split(",") if p.strip()]
    return ClassAnnotation(**ann, name=names[0], parents=parent_list, exact=exact)


def _parse_alias(ann: dict, payload: str) -> AliasAnnotation:
    parts = payload.strip().split(None, 1)
    if not parts:
        raise AnnotationParseError(ann["raw"], "missing alias name")
    type_expr = None
    if len(parts) > 1:
        type_text, _ = split_type_prefix(parts[1])
        if type_text:
            type_expr = parse_type(type_text)
    return AliasAnnotation(**ann, name=parts[0], type_expr=type_expr)


def parse_alias_entry(raw: str, span: Span = NO_SPAN) -> AliasEntry:
    """Parse a ``---|`` line into an alias entry."""
    body = raw[4:]
    text = body.strip()
    marker = ""
    if text[:1] in (">", "+"):
        marker, text = text[0], text[1:].strip()
    value, _, description = text.partition("#")
    return AliasEntry(
        kind="alias-entry", raw=raw, prefix="---|", span=span,
        value=value.strip(), description=description.strip(), marker=marker,
    )


def _parse_tag(tag: str, ann: dict, payload: str) -> Annotation:
    text = payload.strip()
    if tag == "param":
        return _parse_param(ann, payload)
    if tag == "return":
        return _parse_return(ann, payload)
    if tag == "field":
        return _parse_field(ann, payload)
    if tag == "class":
        return _parse_class(ann, payload)
    if tag == "alias":
        return _parse_alias(ann, payload)
    if tag == "type":
        types = []
        rest = text
        while True:
            type_expr, rest = _parse_type_required(rest, ann["raw"])
            types.append(type_expr)
            if not rest.startswith(","):
                break
            rest = rest[1:]
        return TypeAnnotation(**ann, types=types, description=_split_description(rest))
    if tag == "generic":
        params = []
        for part in text.split(","):
            name, _, constraint = part.partition(":")
            if not name.strip():
                raise AnnotationParseError(ann["raw"], "missing generic name")
            params.append((name.strip(), parse_type(constraint) if constraint.strip() else None))
        return GenericAnnotation(**ann, params=params)
    if tag == "operator":
        match = re.match(r"^(\w+)\s*(?:\((.*?)\))?\s*(?::(.*))?$", text)
        if not match:
            raise AnnotationParseError(ann["raw"], "bad operator syntax")
        operand = parse_type(match.group(2)) if match.group(2) else None
        result = parse_type(match.group(3)) if match.group(3) else None
        return OperatorAnnotation(**ann, operator=match.group(1), operand=operand, result=result)
    if tag == "overload":
        type_expr, _ = _parse_type_required(text, ann["raw"])
        return OverloadAnnotation(**ann, type_expr=type_expr)
    if tag == "enum":
        key = text.startswith("(key)")
        name = text[5:].strip() if key else text
        if not name:
            raise AnnotationParseError(ann["raw"], "missing enum name")
        return EnumAnnotation(**ann, name=name.split()[0], key=key)
    if tag == "cast":
        name, _, operations = text.partition(" ")
        if not name:
            raise AnnotationParseError(ann["raw"], "missing cast target")
        return CastAnnotation(**ann, name=name, operations=operations.strip())
    if tag == "diagnostic":
        action, _, names = text.partition(":")
        return DiagnosticAnnotation(
            **ann, action=action.strip(),
            names=[n.strip() for n in names.split(",") if n.strip()],
        )
    if tag in FLAG_TAGS:
        return FlagAnnotation(**ann, text=text)
    if tag == "vararg":
        type_expr, rest = _parse_type_required(text, ann["raw"])
        return VarargAnnotation(**ann, type_expr=type_expr, description=_split_description(rest))
    if tag == "version":
        return VersionAnnotation(**ann, versions=[v.strip() for v in text.split(",") if v.strip()])
    if tag == "see":
        return SeeAnnotation(**ann, reference=text)
    if tag == "source":
        return SourceAnnotation(**ann, path=text)
    if tag == "module":
        return ModuleAnnotation(**ann, module_name=text.strip("'\""))
    if tag == "meta":
        return MetaAnnotation(**ann, name=text)
    if tag == "as":
        type_expr, _ = _parse_type_required(text.rstrip("]").rstrip(), ann["raw"])
        return AsAnnotation(**ann, type_expr=type_expr)
    return OpaqueAnnotation(**ann, tag=tag, reason="unsupported tag")


def parse_annotation(raw_lines: Sequence[str], span: Span = NO_SPAN) -> Annotation:
    """Parse one annotation from its raw comment lines.

    The first line is the tag line; any further lines are ``---|`` entries
    of an alias. Malformed payloads never raise: they produce an
    ``OpaqueAnnotation`` carrying the reason.

    Args:
        raw_lines: Verbatim comment text, dashes included.
        span: Position of the first line.

    Returns:
        The typed annotation.

    Example:
        >>> alias = parse_annotation(["---@alias Side", "---| 'left'", "---| 'right'"])
        >>> len(alias.entries)
        2
    """
    header = raw_lines[0]
    if header.startswith("---|"):
        return parse_alias_entry(header, span)
    match = _TAG_RE.match(header)
    if not match:
        kind = "block" if header.startswith("--[") else "doc"
        return RawComment(kind=kind, raw="\n".join(raw_lines), prefix=header[:3], span=span)

    tag = match.group(1)
    ann = {"kind": tag, "raw": header, "prefix": match.group(0), "span": span}
    try:
        result = _parse_tag(tag, ann, header[match.end():])
    except AnnotationParseError as e:
        return OpaqueAnnotation(**ann, tag=tag, reason=e.detail or str(e))

    if isinstance(result, AliasAnnotation):
        for line in raw_lines[1:]:
            result.add_entry(parse_alias_entry(line, span))
    return result


def parse_annotation_block(tokens: Sequence[Token]) -> DocBlock:
    """Split a comment run into description lines and annotations.

    Leading ``---`` lines (before any tag) form the description. ``---|``
    lines are absorbed by an alias only while they directly follow its
    header or a previous entry; an orphan entry is kept opaque and flagged.
    """
    block = DocBlock(tokens=list(tokens))
    current_alias: AliasAnnotation | None = None

    for token in tokens:
        span = Span(token.line, token.column, token.start, token.end)
        if token.kind is TokenKind.COMMENT_ALIAS_ENTRY:
            if current_alias is not None:
                current_alias.add_entry(parse_alias_entry(token.text, span))
                continue
            block.annotations.append(OpaqueAnnotation(
                kind="alias-entry", raw=token.text, prefix="---|", span=span,
                tag="|", reason="alias entry without alias",
            ))
            block.diagnostics.append(Diagnostic(
                "warning", "annotation", "Alias entry is not attached to an @alias",
                token.line, token.column,
            ))
            continue

        current_alias = None
        if token.kind is TokenKind.COMMENT_DOC and not block.annotations:
            block.description.append(token.text)
            continue

        annotation = parse_annotation([token.text], span)
        if isinstance(annotation, AliasAnnotation):
            current_alias = annotation
        if isinstance(annotation, OpaqueAnnotation) and annotation.reason != "unsupported tag":
            block.diagnostics.append(Diagnostic(
                "warning", "annotation",
                f"Malformed @{annotation.tag}: {annotation.reason}",
                token.line, token.column,
            ))
        elif isinstance(annotation, ParamAnnotation) and isinstance(annotation.type_expr, RawType):
            block.diagnostics.append(Diagnostic(
                "warning", "annotation",
                f"Unparseable type '{annotation.type_expr.text}' for @param {annotation.name}",
                token.line, token.column,
            ))
        block.annotations.append(annotation)

    if block.diagnostics:
        logger.debug(f"Annotation block at line {block.line}: {len(block.diagnostics)} diagnostic(s)")
    return block


# ============================================================================
# Formatting of new lines
# ============================================================================


def format_doc_line(text: str) -> str:
    """Render a free-text doc line; no space is inserted before a leading dash."""
    if not text or text.startswith("-"):
        return f"{DOC_MARKER}{text}"
    return f"{DOC_MARKER} {text}"


def format_tag_line(tag: str, *parts: str) -> str:
    body = " ".join(p for p in parts if p)
    return f"{DOC_MARKER}@{tag} {body}" if body else f"{DOC_MARKER}@{tag}"


def format_param(name: str, type_expr: TypeExpr, optional: bool = False, description: str = "") -> str:
    mark = "?" if optional else ""
    return format_tag_line("param", f"{name}{mark}", type_expr.render(), description)


def format_return(slots: Sequence[ReturnSlot]) -> str:
    parts = []
    for slot in slots:
        text = slot.type_expr.render()
        if slot.name:
            text = f"{text} {slot.name}"
        parts.append(text)
    text = ", ".join(parts)
    last = slots[-1] if slots else None
    if last is not None and last.description:
        sep = " # " if not last.name else " "
        text = f"{text}{sep}{last.description}"
    return format_tag_line("return", text)


def format_block_comment(lines: Sequence[str]) -> str:
    """Wrap lines in a ``--[[ ... ]]`` comment with a fence that cannot collide."""
    body = "\n".join(lines)
    level = 0
    while f"]{'=' * level}]" in body:
        level += 1
    fence = "=" * level
    return f"--[{fence}[ {body} ]{fence}]"


def collect_aliases(tokens: Sequence[Token]) -> dict[str, TypeExpr]:
    """Every ``@alias`` of a token stream, whether attached to code or not.

    Entry lines belong to the alias header they directly follow.
    """
    aliases: dict[str, TypeExpr] = {}
    i = 0
    while i < len(tokens):
        token = tokens[i]
        i += 1
        if token.kind is not TokenKind.COMMENT_ANNOTATION or not token.text.startswith("---@alias"):
            continue
        lines = [token.text]
        previous = token
        while (
            i < len(tokens)
            and tokens[i].kind is TokenKind.COMMENT_ALIAS_ENTRY
            and tokens[i].line == previous.end_line + 1
        ):
            previous = tokens[i]
            lines.append(previous.text)
            i += 1
        annotation = parse_annotation(lines)
        if isinstance(annotation, AliasAnnotation):
            underlying = annotation.underlying_type()
            if underlying is not None:
                aliases[annotation.name] = underlying
    return aliases
