"""Tests for the annotation model: tag parsing, doc blocks and formatting."""

import pytest

from lua_annotator.processors.annotations import (
    AliasAnnotation,
    AsAnnotation,
    CastAnnotation,
    ClassAnnotation,
    DiagnosticAnnotation,
    EnumAnnotation,
    FieldAnnotation,
    FlagAnnotation,
    GenericAnnotation,
    OpaqueAnnotation,
    OperatorAnnotation,
    OverloadAnnotation,
    ParamAnnotation,
    RawComment,
    ReturnAnnotation,
    ReturnSlot,
    TypeAnnotation,
    VarargAnnotation,
    VersionAnnotation,
    collect_aliases,
    format_block_comment,
    format_doc_line,
    format_param,
    format_return,
    format_tag_line,
    parse_annotation,
    parse_annotation_block,
)
from lua_annotator.processors.lua_tokenizer import tokenize
from lua_annotator.processors.lua_types import (
    INTEGER,
    NUMBER,
    STRING,
    FunctionType,
    RawType,
    parse_type,
)


def comment_tokens(source):
    return [t for t in tokenize(source) if t.is_comment]


# ============================================================================
# Tag Parsing
# ============================================================================


class TestParam:
    """@param name[?] type [description]"""

    def test_optional_with_description(self):
        ann = parse_annotation(["---@param name? string the user name"])
        assert isinstance(ann, ParamAnnotation)
        assert ann.name == "name"
        assert ann.optional
        assert ann.type_expr == STRING
        assert ann.description == "the user name"
        assert ann.prefix == "---@param"
        assert ann.effective_type == parse_type("string?")

    def test_hash_description(self):
        ann = parse_annotation(["---@param n integer # how many"])
        assert ann.description == "how many"

    def test_vararg_param(self):
        ann = parse_annotation(["---@param ... any"])
        assert ann.name == "..."

    def test_unparseable_type_is_kept_raw(self):
        ann = parse_annotation(["---@param cb fun(x:"])
        assert isinstance(ann, ParamAnnotation)
        assert isinstance(ann.type_expr, RawType)

    def test_missing_type_is_opaque(self):
        ann = parse_annotation(["---@param x"])
        assert isinstance(ann, OpaqueAnnotation)
        assert ann.tag == "param"
        assert ann.reason == "missing type"
        assert ann.raw == "---@param x"


class TestReturn:
    """@return type [name] [description], possibly several slots."""

    def test_single_with_hash_description(self):
        ann = parse_annotation(["---@return string # the text"])
        assert isinstance(ann, ReturnAnnotation)
        assert ann.slots == [ReturnSlot(STRING, "", "the text")]

    def test_named_slot(self):
        ann = parse_annotation(["---@return boolean ok whether it worked"])
        assert ann.slots[0].name == "ok"
        assert ann.slots[0].description == "whether it worked"

    def test_multiple_slots(self):
        ann = parse_annotation(["---@return string, integer"])
        assert [s.type_expr for s in ann.slots] == [STRING, INTEGER]

    def test_multiple_named_slots(self):
        ann = parse_annotation(["---@return string text, integer count"])
        assert [(s.type_expr, s.name) for s in ann.slots] == [(STRING, "text"), (INTEGER, "count")]

    def test_function_return_type(self):
        ann = parse_annotation(["---@return fun(a: string): boolean"])
        assert isinstance(ann.slots[0].type_expr, FunctionType)


class TestOtherTags:
    def test_class(self):
        ann = parse_annotation(["---@class (exact) Point: Base, Other"])
        assert isinstance(ann, ClassAnnotation)
        assert ann.name == "Point"
        assert ann.parents == ["Base", "Other"]
        assert ann.exact

    def test_field(self):
        ann = parse_annotation(["---@field private x? integer the x"])
        assert isinstance(ann, FieldAnnotation)
        assert (ann.scope, ann.name, ann.optional, ann.type_expr) == ("private", "x", True, INTEGER)
        assert ann.description == "the x"

    def test_indexed_field(self):
        ann = parse_annotation(["---@field [string] number"])
        assert ann.name == "[string]"
        assert ann.type_expr == NUMBER

    def test_alias_with_entries(self):
        ann = parse_annotation(["---@alias Side", "---| 'left' # go left", "---|>'right'"])
        assert isinstance(ann, AliasAnnotation)
        assert [e.value for e in ann.entries] == ["'left'", "'right'"]
        assert ann.entries[0].description == "go left"
        assert ann.entries[1].marker == ">"
        assert ann.underlying_type() == parse_type("'left'|'right'")
        assert ann.render() == ["---@alias Side", "---| 'left' # go left", "---|>'right'"]

    def test_alias_inline(self):
        ann = parse_annotation(["---@alias Id string|integer"])
        assert ann.underlying_type() == parse_type("string|integer")

    def test_type_list(self):
        ann = parse_annotation(["---@type string, number"])
        assert isinstance(ann, TypeAnnotation)
        assert ann.types == [STRING, NUMBER]

    def test_generic(self):
        ann = parse_annotation(["---@generic T: table, K"])
        assert isinstance(ann, GenericAnnotation)
        assert ann.params == [("T", parse_type("table")), ("K", None)]

    def test_operator(self):
        ann = parse_annotation(["---@operator add(Vector): Vector"])
        assert isinstance(ann, OperatorAnnotation)
        assert ann.operator == "add"
        assert ann.operand == parse_type("Vector")

    def test_overload(self):
        ann = parse_annotation(["---@overload fun(x: number): number"])
        assert isinstance(ann, OverloadAnnotation)

    def test_enum_key(self):
        ann = parse_annotation(["---@enum (key) Colors"])
        assert isinstance(ann, EnumAnnotation)
        assert ann.key and ann.name == "Colors"

    def test_cast(self):
        ann = parse_annotation(["---@cast x string"])
        assert isinstance(ann, CastAnnotation)
        assert (ann.name, ann.operations) == ("x", "string")

    def test_diagnostic(self):
        ann = parse_annotation(["---@diagnostic disable-next-line: unused-local, undefined-global"])
        assert isinstance(ann, DiagnosticAnnotation)
        assert ann.action == "disable-next-line"
        assert ann.names == ["unused-local", "undefined-global"]

    @pytest.mark.parametrize("tag", ["deprecated", "nodiscard", "async", "private", "protected", "package"])
    def test_flags(self, tag):
        assert isinstance(parse_annotation([f"---@{tag}"]), FlagAnnotation)

    def test_vararg(self):
        ann = parse_annotation(["---@vararg string"])
        assert isinstance(ann, VarargAnnotation)
        assert ann.type_expr == STRING

    def test_version(self):
        ann = parse_annotation(["---@version >5.1, JIT"])
        assert isinstance(ann, VersionAnnotation)
        assert ann.versions == [">5.1", "JIT"]

    def test_as(self):
        ann = parse_annotation(["--[[@as string]]"])
        assert isinstance(ann, RawComment)
        assert isinstance(parse_annotation(["---@as integer"]), AsAnnotation)

    def test_unknown_tag_is_opaque_and_verbatim(self):
        ann = parse_annotation(["---@frobnicate  spaced   payload"])
        assert isinstance(ann, OpaqueAnnotation)
        assert ann.reason == "unsupported tag"
        assert ann.render() == ["---@frobnicate  spaced   payload"]

    def test_payload_preserves_spacing(self):
        ann = parse_annotation(["---@param   x   number"])
        assert ann.prefix == "---@param"
        assert ann.payload == "   x   number"


# ============================================================================
# Doc Blocks
# ============================================================================


class TestDocBlock:
    """Splitting comment runs into description and annotations."""

    def test_description_then_annotations(self):
        block = parse_annotation_block(comment_tokens(
            "--- Summary line\n--- more\n---@param a number\n--- trailing\n"
        ))
        assert block.description == ["--- Summary line", "--- more"]
        assert [a.kind for a in block.annotations] == ["param", "doc"]
        assert block.start == 0
        assert block.line == 1

    def test_alias_entries_join_alias(self):
        block = parse_annotation_block(comment_tokens("---@alias M\n---| 'a'\n---| 'b'\n"))
        (alias,) = block.annotations
        assert len(alias.entries) == 2
        assert block.diagnostics == []

    def test_orphan_alias_entry_flagged(self):
        block = parse_annotation_block(comment_tokens("---@param a number\n---| 'x'\n"))
        assert isinstance(block.annotations[1], OpaqueAnnotation)
        assert block.diagnostics[0].kind == "annotation"
        assert block.diagnostics[0].line == 2

    def test_malformed_tag_flagged(self):
        block = parse_annotation_block(comment_tokens("---@return\n"))
        assert isinstance(block.annotations[0], OpaqueAnnotation)
        assert "Malformed @return" in block.diagnostics[0].message

    def test_unknown_tag_not_flagged(self):
        block = parse_annotation_block(comment_tokens("---@custom thing\n"))
        assert block.diagnostics == []

    def test_raw_param_type_flagged(self):
        block = parse_annotation_block(comment_tokens("---@param cb fun(x:\n"))
        assert "Unparseable type" in block.diagnostics[0].message

    def test_of_kind_and_raw_texts(self):
        block = parse_annotation_block(comment_tokens("---@param a number\n---@return string\n"))
        assert len(block.of_kind(ParamAnnotation)) == 1
        assert block.raw_texts() == {"---@param a number", "---@return string"}


# ============================================================================
# Formatting
# ============================================================================


class TestFormatting:
    def test_format_doc_line(self):
        assert format_doc_line("TODO: Add description") == "--- TODO: Add description"
        assert format_doc_line("-weird") == "----weird"

    def test_format_tag_line(self):
        assert format_tag_line("class", "Foo") == "---@class Foo"
        assert format_tag_line("nodiscard") == "---@nodiscard"

    def test_format_param(self):
        assert format_param("x", NUMBER) == "---@param x number"
        assert format_param("x", STRING, optional=True, description="name") == "---@param x? string name"

    def test_format_return(self):
        assert format_return([ReturnSlot(STRING), ReturnSlot(INTEGER)]) == "---@return string, integer"
        assert format_return([ReturnSlot(STRING, "", "text")]) == "---@return string # text"
        assert format_return([ReturnSlot(STRING, "s", "text")]) == "---@return string s text"

    def test_format_block_comment_picks_safe_fence(self):
        assert format_block_comment(["---@param x string"]) == "--[[ ---@param x string ]]"
        assert format_block_comment(["t[a[1]]"]) == "--[=[ t[a[1]] ]=]"

    def test_formatted_lines_parse_back(self):
        line = format_param("items", parse_type("string[]"), description="the items")
        ann = parse_annotation([line])
        assert ann.name == "items"
        assert ann.type_expr == parse_type("string[]")
        assert ann.description == "the items"


class TestCollectAliases:
    def test_collects_detached_and_attached_aliases(self):
        tokens = tokenize("---@alias A string\n\nlocal x = 1\n---@alias B\n---| 1\n---| 2\nlocal y\n")
        aliases = collect_aliases(tokens)
        assert aliases["A"] == STRING
        assert aliases["B"] == parse_type("1|2")

    def test_malformed_entries_skipped(self):
        tokens = tokenize("---@alias C\n---| 'ok\n")
        assert "C" not in collect_aliases(tokens)

    def test_entries_after_blank_line_are_not_absorbed(self):
        tokens = tokenize("---@alias Side\n\n---| 'left'\n---| 'right'\nlocal x = 1\n")
        assert "Side" not in collect_aliases(tokens)

    def test_entries_stop_at_first_gap(self):
        tokens = tokenize("---@alias Side\n---| 'left'\n\n---| 'right'\nlocal x = 1\n")
        assert collect_aliases(tokens)["Side"] == parse_type("'left'")
