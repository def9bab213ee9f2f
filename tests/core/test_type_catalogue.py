"""Tests for the external type catalogue.

This test suite covers:
- Version constraint matching
- Entries read from annotated definition sources
- Version gating of entries and whole tables
- The bundled standard library and host-API catalogues
"""

import pytest

from lua_annotator.core.config import AnnotatorConfig
from lua_annotator.core.type_catalogue import (
    CatalogueEntry,
    TypeCatalogue,
    version_matches,
)
from lua_annotator.processors.lua_types import (
    ANY,
    INTEGER,
    NIL,
    NUMBER,
    STRING,
    TABLE,
    FunctionType,
    make_union,
)


# ============================================================================
# Test Class: TestVersionMatches
# ============================================================================


class TestVersionMatches:
    """Test ``@version`` constraint evaluation."""

    @pytest.mark.parametrize("constraints,version,expected", [
        (["5.1"], "5.1", True),
        (["5.1"], "5.4", False),
        ([">5.1"], "5.2", True),
        ([">5.1"], "5.1", False),
        (["<5.4"], "5.3", True),
        (["<5.4"], "5.4", False),
        (["5.1", "5.2"], "5.2", True),
        (["JIT"], "5.1", False),
        (["> 5.2"], "5.3", True),
    ])
    def test_constraints(self, constraints, version, expected):
        assert version_matches(constraints, version) is expected

    def test_non_numeric_target_never_matches(self):
        assert version_matches(["5.1"], "JIT") is False


# ============================================================================
# Test Class: TestLoadDefinitions
# ============================================================================


class TestLoadDefinitions:
    """Test reading entries from definition sources."""

    SOURCE = """
mylib = {}

---@param name string
---@param count? integer
---@return string
function mylib.repeat_name(name, count) end

---@type number
mylib.scale = 0

---@version 5.1
legacy = {}

function legacy.run() end
"""

    @pytest.fixture
    def loaded(self) -> TypeCatalogue:
        catalogue = TypeCatalogue()
        catalogue.load_definitions(self.SOURCE, "5.4", "mylib.lua")
        return catalogue

    def test_function_entry(self, loaded):
        entry = loaded.lookup("mylib.repeat_name")
        assert entry.kind == "function"
        assert entry.params == (("name", STRING), ("count", make_union(INTEGER, NIL)))
        assert entry.returns == (STRING,)

    def test_value_entry(self, loaded):
        entry = loaded.lookup("mylib.scale")
        assert entry.kind == "value"
        assert entry.binding_type() == NUMBER

    def test_table_entry(self, loaded):
        assert loaded.lookup("mylib").kind == "table"
        assert loaded.lookup("mylib").binding_type() == TABLE

    def test_gated_table_takes_members_along(self, loaded):
        assert "legacy" not in loaded
        assert "legacy.run" not in loaded

    def test_gated_table_included_for_matching_version(self):
        catalogue = TypeCatalogue()
        added = catalogue.load_definitions(self.SOURCE, "5.1")
        assert added == 5
        assert catalogue.lookup("legacy.run").returns == ()

    def test_returns_number_added(self):
        assert TypeCatalogue().load_definitions(self.SOURCE, "5.4") == 3

    def test_unannotated_params_are_any(self):
        catalogue = TypeCatalogue()
        catalogue.load_definitions("function f(a, ...) end\n", "5.4")
        assert catalogue.lookup("f").params == (("a", ANY), ("...", ANY))

    def test_invalid_source_raises(self):
        with pytest.raises(ValueError, match="Invalid definition file"):
            TypeCatalogue().load_definitions('x = "unterminated\n', "5.4", "broken.lua")

    def test_function_binding_type(self, loaded):
        binding = loaded.lookup("mylib.repeat_name").binding_type()
        assert isinstance(binding, FunctionType)
        assert [p.name for p in binding.params] == ["name", "count"]
        assert binding.returns == (STRING,)

    def test_add_and_len(self):
        catalogue = TypeCatalogue()
        catalogue.add(CatalogueEntry("answer", "value", value_type=INTEGER))
        assert len(catalogue) == 1
        assert "answer" in catalogue


# ============================================================================
# Test Class: TestBundledCatalogues
# ============================================================================


class TestBundledCatalogues:
    """Test the catalogues shipped with the package."""

    def test_stdlib_functions(self, catalogue):
        entry = catalogue.lookup("string.upper")
        assert entry.params == (("s", STRING),)
        assert entry.returns == (STRING,)
        assert catalogue.lookup("tonumber").returns == (make_union(NUMBER, NIL),)

    def test_stdlib_values(self, catalogue):
        assert catalogue.lookup("math.pi").binding_type() == NUMBER
        assert catalogue.lookup("string").kind == "table"

    def test_lua54_library(self, catalogue):
        assert "table.unpack" in catalogue
        assert "math.tointeger" in catalogue
        assert "utf8.char" in catalogue
        assert "unpack" not in catalogue
        assert "loadstring" not in catalogue

    def test_lua51_library(self):
        catalogue = TypeCatalogue.for_config(AnnotatorConfig(lua_version="5.1"))
        assert "unpack" in catalogue
        assert "loadstring" in catalogue
        assert "table.unpack" not in catalogue
        assert "utf8" not in catalogue
        assert "utf8.char" not in catalogue

    def test_frameworks_are_opt_in(self, catalogue):
        assert "wezterm.home_dir" not in catalogue
        assert "vim.api.nvim_get_current_buf" not in catalogue

    @pytest.mark.parametrize("framework,name", [
        ("neovim", "vim.api.nvim_get_current_buf"),
        ("wezterm", "wezterm.config_builder"),
        ("love2d", "love.graphics"),
        ("yazi", "ya.exec"),
    ])
    def test_framework_catalogues(self, framework, name):
        catalogue = TypeCatalogue.for_config(AnnotatorConfig(frameworks=[framework]))
        assert name in catalogue
        assert "string.format" in catalogue

    def test_default_is_newest_version(self):
        catalogue = TypeCatalogue.for_config(AnnotatorConfig(frameworks=["neovim"]))
        assert "vim.system" in catalogue
        assert "vim.api.nvim_buf_get_option" not in catalogue

    def test_pinned_version(self):
        catalogue = TypeCatalogue.for_config(AnnotatorConfig(frameworks=["neovim@0.9.0"]))
        assert "vim.api.nvim_buf_get_option" in catalogue
        assert "vim.system" not in catalogue

    def test_unknown_version_rejected(self):
        with pytest.raises(ValueError, match="Unknown version '0.1' of framework 'neovim'"):
            TypeCatalogue.for_config(AnnotatorConfig(frameworks=["neovim@0.1"]))

    def test_load_file(self, tmp_path):
        path = tmp_path / "defs.lua"
        path.write_text("---@type string\nhost_name = ''\n", encoding="utf-8")
        catalogue = TypeCatalogue()
        assert catalogue.load_file(path, "5.4") == 1
        assert catalogue.lookup("host_name").binding_type() == STRING

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ValueError, match="File not found"):
            TypeCatalogue().load_file(tmp_path / "missing.lua", "5.4")
