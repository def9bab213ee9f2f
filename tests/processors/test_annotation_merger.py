"""Tests for merging inferred facts into existing doc blocks.

This test suite covers:
- Classification of existing types against inferred ones
- Per-slot merge outcomes and advisory lines
- Whole-block merging for functions, module tables and module members
- Placement of new entries and idempotence on merged output
"""

import textwrap
from pathlib import Path

import pytest

from lua_annotator.processors.annotation_merger import (
    Agreement,
    AnnotationMerger,
    MergeOutcome,
    classify,
    merge,
)
from lua_annotator.processors.annotations import format_param, parse_annotation
from lua_annotator.processors.lua_processor import LuaProcessor
from lua_annotator.processors.lua_types import (
    INTEGER,
    NIL,
    NUMBER,
    STRING,
    NamedType,
    RawType,
    make_union,
)
from lua_annotator.processors.type_inference import (
    UNKNOWN_FACT,
    Certainty,
    DeclarationFacts,
    TypeFact,
    certain,
)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def merger():
    return AnnotationMerger()


def declaration(source: str, decl_id: str):
    """Parse ``source`` and return one of its declarations."""
    result = LuaProcessor().process_source(Path("m.lua"), textwrap.dedent(source).lstrip("\n"))
    assert result.success, result.errors
    decl = result.symbols.get_declaration(decl_id)
    assert decl is not None, [d.decl_id for d in result.symbols.declarations]
    return decl


def function_facts(decl_id: str, params=None, returns=None, conflicts=None) -> DeclarationFacts:
    name = decl_id.rsplit(":", 1)[0]
    return DeclarationFacts(
        decl_id, name, "function",
        params=dict(params or {}),
        returns=list(returns or []),
        no_return=not returns,
        conflicts=dict(conflicts or {}),
    )


def uncertain(type_expr) -> TypeFact:
    return TypeFact(type_expr, Certainty.UNCERTAIN)


def param_render(name: str):
    return lambda t: format_param(name, t)


# ============================================================================
# Test Class: TestClassify
# ============================================================================


class TestClassify:
    """Test how an existing type relates to an inferred type."""

    def test_equal_types_agree(self):
        assert classify(NUMBER, NUMBER) is Agreement.AGREE

    def test_subtype_either_way_agrees(self):
        assert classify(NUMBER, INTEGER) is Agreement.AGREE
        assert classify(INTEGER, NUMBER) is Agreement.AGREE

    def test_missing_nil_is_optional(self):
        assert classify(STRING, make_union(STRING, NIL)) is Agreement.OPTIONAL

    def test_extra_nil_is_not_nil(self):
        assert classify(make_union(STRING, NIL), STRING) is Agreement.NOT_NIL

    def test_unrelated_types_contradict(self):
        assert classify(STRING, NUMBER) is Agreement.CONTRADICT

    def test_raw_type_is_never_contradicted(self):
        assert classify(RawType("fun(a: )"), NUMBER) is Agreement.AGREE

    def test_alias_is_resolved(self):
        aliases = {"Count": INTEGER}
        assert classify(NamedType("Count"), INTEGER, aliases) is Agreement.AGREE


# ============================================================================
# Test Class: TestMergeSlot
# ============================================================================


class TestMergeSlot:
    """Test single-slot merge outcomes."""

    def test_absent_entry_is_added(self):
        result = merge(None, None, certain(NUMBER), param_render("a"), "@param a")
        assert result.outcome is MergeOutcome.ADDED
        assert result.lines == ["---@param a number"]
        assert result.advisories == []

    def test_absent_unknown_entry_gets_todo(self):
        result = merge(None, None, UNKNOWN_FACT, param_render("a"), "@param a")
        assert result.lines == ["---@param a any"]
        assert result.advisories == ["--- TODO: Add type and description for param a"]

    def test_agreeing_entry_is_kept_verbatim(self):
        existing = parse_annotation(["---@param a   number  the count"])
        result = merge(existing, existing.type_expr, certain(INTEGER), param_render("a"), "@param a")
        assert result.outcome is MergeOutcome.KEPT
        assert result.lines == ["---@param a   number  the count"]
        assert not result.changed

    def test_unknown_fact_keeps_entry(self):
        existing = parse_annotation(["---@param a string"])
        result = merge(existing, existing.type_expr, UNKNOWN_FACT, param_render("a"), "@param a")
        assert result.outcome is MergeOutcome.KEPT

    def test_optional_entry_gets_note(self):
        existing = parse_annotation(["---@param a string"])
        inferred = uncertain(make_union(STRING, NIL))
        result = merge(existing, existing.type_expr, inferred, param_render("a"), "@param a")
        assert result.outcome is MergeOutcome.NOTED
        assert result.lines == ["---@param a string"]
        assert result.advisories == [
            "--- NOTE: @param a is declared string but may be nil (inferred string|nil)"
        ]

    def test_certain_non_nil_gets_note(self):
        existing = parse_annotation(["---@return string|nil"])
        slot_type = existing.slots[0].type_expr
        result = merge(existing, slot_type, certain(STRING), lambda t: "", "@return 1")
        assert result.outcome is MergeOutcome.NOTED
        assert result.lines == ["---@return string|nil"]
        assert result.advisories == [
            "--- NOTE: @return 1 is declared string|nil but is never nil (inferred string)"
        ]

    def test_uncertain_non_nil_keeps_entry(self):
        existing = parse_annotation(["---@param a string|nil"])
        result = merge(existing, existing.type_expr, uncertain(STRING), param_render("a"), "@param a")
        assert result.outcome is MergeOutcome.KEPT
        assert result.advisories == []

    def test_certain_contradiction_replaces(self):
        existing = parse_annotation(["---@param a string"])
        result = merge(existing, existing.type_expr, certain(NUMBER), param_render("a"), "@param a")
        assert result.outcome is MergeOutcome.REPLACED
        assert result.lines == ["--[[ ---@param a string ]]", "---@param a number"]
        assert result.changed

    def test_uncertain_contradiction_advises(self):
        existing = parse_annotation(["---@param a string"])
        result = merge(existing, existing.type_expr, uncertain(NUMBER), param_render("a"), "@param a")
        assert result.outcome is MergeOutcome.ADVISED
        assert result.lines == ["---@param a string"]
        assert result.advisories == ["--- TODO: verify @param a: inferred number"]


# ============================================================================
# Test Class: TestMergeFunction
# ============================================================================


class TestMergeFunction:
    """Test whole doc blocks of functions."""

    ADD = """
    local function add(a, b)
        return a + b
    end
    """

    def test_undocumented_function(self, merger):
        decl = declaration(self.ADD, "add:1")
        facts = function_facts(
            "add:1",
            params={"a": uncertain(NUMBER), "b": uncertain(NUMBER)},
            returns=[uncertain(NUMBER)],
        )
        result = merger.merge_declaration(decl, facts)
        assert result.changed
        assert result.lines == [
            "--- TODO: Add description",
            "---@param a number",
            "---@param b number",
            "---@return number",
        ]
        assert result.outcomes["param:a"] is MergeOutcome.ADDED
        assert result.outcomes["return:1"] is MergeOutcome.ADDED

    def test_complete_block_is_unchanged(self, merger):
        code = """
        --- Adds two numbers.
        ---@param a number
        ---@param b number
        ---@return number
        local function add(a, b)
            return a + b
        end
        """
        decl = declaration(code, "add:5")
        facts = function_facts(
            "add:5",
            params={"a": certain(NUMBER), "b": certain(NUMBER)},
            returns=[certain(NUMBER)],
        )
        result = merger.merge_declaration(decl, facts)
        assert not result.changed
        assert result.lines == [
            "--- Adds two numbers.",
            "---@param a number",
            "---@param b number",
            "---@return number",
        ]

    def test_missing_param_goes_after_last_param(self, merger):
        code = """
        ---@param a number
        ---@return number
        local function add(a, b)
            return a + b
        end
        """
        decl = declaration(code, "add:3")
        facts = function_facts(
            "add:3",
            params={"a": uncertain(NUMBER), "b": uncertain(NUMBER)},
            returns=[uncertain(NUMBER)],
        )
        result = merger.merge_declaration(decl, facts)
        assert result.lines == [
            "--- TODO: Add description",
            "---@param a number",
            "---@param b number",
            "---@return number",
        ]

    def test_unknown_param_gets_todo(self, merger):
        decl = declaration("local function ignore(x) end\n", "ignore:1")
        facts = function_facts("ignore:1", params={"x": UNKNOWN_FACT})
        result = merger.merge_declaration(decl, facts)
        assert result.lines == [
            "--- TODO: Add description",
            "---@param x any",
            "--- TODO: Add type and description for parameter 'x'",
        ]

    def test_nilable_param_is_optional(self, merger):
        decl = declaration("local function f(x) end\n", "f:1")
        facts = function_facts("f:1", params={"x": uncertain(make_union(STRING, NIL))})
        result = merger.merge_declaration(decl, facts)
        assert "---@param x? string" in result.lines

    def test_conflicting_usage_note(self, merger):
        decl = declaration("local function f(x) end\n", "f:1")
        facts = function_facts(
            "f:1",
            params={"x": uncertain(make_union(STRING, NUMBER))},
            conflicts={"param:x": (STRING, NUMBER)},
        )
        result = merger.merge_declaration(decl, facts)
        assert result.lines[1:] == [
            "---@param x string|number",
            "--- NOTE: parameter 'x' is used as string, number",
        ]

    def test_renamed_param_is_kept_with_note(self, merger):
        code = """
        ---@param value number
        local function f(x) return x + 1 end
        """
        decl = declaration(code, "f:2")
        facts = function_facts("f:2", params={"x": uncertain(NUMBER)}, returns=[uncertain(NUMBER)])
        result = merger.merge_declaration(decl, facts)
        assert result.lines[1:3] == [
            "---@param value number",
            "--- NOTE: @param value documents parameter 'x'",
        ]
        assert "---@param x number" not in result.lines
        assert result.outcomes["param:x"] is MergeOutcome.NOTED

    def test_certain_return_contradiction_is_demoted(self, merger):
        code = """
        ---@return string
        local function f() return 1 end
        """
        decl = declaration(code, "f:2")
        facts = function_facts("f:2", returns=[certain(INTEGER)])
        result = merger.merge_declaration(decl, facts)
        assert result.lines == [
            "--- TODO: Add description",
            "--[[ ---@return string ]]",
            "---@return integer",
        ]
        assert result.outcomes["return:1"] is MergeOutcome.REPLACED

    def test_extra_return_slot_is_appended(self, merger):
        code = """
        ---@return string
        local function f() return "a", 1 end
        """
        decl = declaration(code, "f:2")
        facts = function_facts("f:2", returns=[certain(STRING), certain(INTEGER)])
        result = merger.merge_declaration(decl, facts)
        assert result.lines == [
            "--- TODO: Add description",
            "---@return string",
            "---@return integer",
        ]

    def test_no_return_adds_no_return_tag(self, merger):
        decl = declaration("local function log(msg) print(msg) end\n", "log:1")
        facts = function_facts("log:1", params={"msg": UNKNOWN_FACT})
        result = merger.merge_declaration(decl, facts)
        assert not any(line.startswith("---@return") for line in result.lines)

    def test_custom_placeholder(self):
        merger = AnnotationMerger(placeholder_description="")
        decl = declaration("local function f(x) end\n", "f:1")
        facts = function_facts("f:1", params={"x": uncertain(STRING)})
        result = merger.merge_declaration(decl, facts)
        assert result.lines == ["---@param x string"]


# ============================================================================
# Test Class: TestMergeModule
# ============================================================================


class TestMergeModule:
    """Test module tables and module members."""

    MODULE = """
    local M = {}
    M.count = 0
    return M
    """

    def test_module_gets_class(self, merger):
        decl = declaration(self.MODULE, "M:1")
        facts = DeclarationFacts("M:1", "M", "module", binding=certain(NamedType("m")))
        result = merger.merge_declaration(decl, facts, class_name="m")
        assert result.lines[-1] == "---@class m"
        assert result.outcomes["class"] is MergeOutcome.ADDED

    def test_existing_class_is_kept(self, merger):
        code = """
        ---@class Counter
        local M = {}
        return M
        """
        decl = declaration(code, "M:2")
        facts = DeclarationFacts("M:2", "M", "module", binding=certain(NamedType("Counter")))
        result = merger.merge_declaration(decl, facts, class_name="Counter")
        assert not result.changed
        assert result.lines == ["---@class Counter"]

    def test_class_disabled(self):
        merger = AnnotationMerger(annotate_module_class=False)
        decl = declaration(self.MODULE, "M:1")
        facts = DeclarationFacts("M:1", "M", "module", binding=certain(NamedType("m")))
        assert not merger.merge_declaration(decl, facts, class_name="m").changed

    def test_member_gets_type(self, merger):
        decl = declaration(self.MODULE, "M.count:2")
        facts = DeclarationFacts("M.count:2", "M.count", "value", binding=certain(INTEGER))
        result = merger.merge_declaration(decl, facts, is_module_member=True)
        assert result.lines == ["--- TODO: Add description", "---@type integer"]

    def test_unknown_member_is_skipped(self, merger):
        decl = declaration(self.MODULE, "M.count:2")
        facts = DeclarationFacts("M.count:2", "M.count", "value", binding=UNKNOWN_FACT)
        result = merger.merge_declaration(decl, facts, is_module_member=True)
        assert not result.changed

    def test_member_types_disabled(self):
        merger = AnnotationMerger(annotate_module_members=False)
        decl = declaration(self.MODULE, "M.count:2")
        facts = DeclarationFacts("M.count:2", "M.count", "value", binding=certain(INTEGER))
        assert not merger.merge_declaration(decl, facts, is_module_member=True).changed


# ============================================================================
# Test Class: TestIdempotence
# ============================================================================


class TestIdempotence:
    """Test that merging merged output changes nothing."""

    @staticmethod
    def _rerun(merger, lines, code_line, decl_id, facts):
        source = "\n".join(lines + [code_line]) + "\n"
        decl = declaration(source, decl_id)
        return merger.merge_declaration(decl, facts)

    def test_advisories_are_not_repeated(self, merger):
        code_line = "local function bump(n) return n + 1 end"
        facts = function_facts("bump:2", params={"n": uncertain(NUMBER)}, returns=[uncertain(NUMBER)])
        first = self._rerun(merger, ["---@param n string"], code_line, "bump:2", facts)
        assert first.changed
        assert "--- TODO: verify @param n: inferred number" in first.lines

        decl_id = f"bump:{len(first.lines) + 1}"
        facts.decl_id = decl_id
        second = self._rerun(merger, first.lines, code_line, decl_id, facts)
        assert not second.changed
        assert second.lines == first.lines

    def test_demoted_entry_stays_demoted(self, merger):
        code_line = "local function bump(n) return n + 1 end"
        facts = function_facts("bump:2", params={"n": certain(NUMBER)}, returns=[certain(NUMBER)])
        first = self._rerun(merger, ["---@param n string"], code_line, "bump:2", facts)
        assert "--[[ ---@param n string ]]" in first.lines

        decl_id = f"bump:{len(first.lines) + 1}"
        second = self._rerun(merger, first.lines, code_line, decl_id, facts)
        assert not second.changed
