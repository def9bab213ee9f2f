"""Tests for the per-file front end.

This test suite covers:
- Parsing standard Lua syntax across versions (5.1 to 5.4)
- Lexical errors isolated to a failed result
- Recoverable parse errors reported as diagnostics
- File reading and syntax validation with luaparser
"""

from pathlib import Path

import pytest

from lua_annotator.processors.lua_processor import (
    LuaProcessor,
    ParseResult,
    MAX_FILE_SIZE_MB,
)
from lua_annotator.processors.lua_ast import Opaque
from lua_annotator.processors.lua_types import parse_type


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def tmp_lua_file(tmp_path):
    """Fixture to create temporary Lua files for testing."""
    def _create_file(content: str, filename: str = "test.lua") -> Path:
        file_path = tmp_path / filename
        file_path.write_text(content, encoding="utf-8")
        return file_path
    return _create_file


@pytest.fixture
def lua_processor():
    return LuaProcessor()


def assert_parse_success(result: ParseResult) -> None:
    """Helper to assert successful, diagnostic-free parsing."""
    assert result.success, f"Parse failed with errors: {result.errors}"
    assert result.chunk is not None
    assert result.errors == []
    assert result.diagnostics == []


# ============================================================================
# Test Class: TestLuaProcessorParsing
# ============================================================================


class TestLuaProcessorParsing:
    """Test standard Lua parsing across versions."""

    def test_parse_lua51_syntax(self, lua_processor):
        code = """
local function test()
    for i = 1, 10 do
        print(i)
    end
end
"""
        assert_parse_success(lua_processor.process_source("a.lua", code))

    def test_parse_lua52_syntax(self, lua_processor):
        """goto and labels."""
        code = """
::start::
local x = 10
if x > 5 then
    goto finish
end
::finish::
print("Done")
"""
        assert_parse_success(lua_processor.process_source("a.lua", code))

    def test_parse_lua53_syntax(self, lua_processor):
        """Bitwise and integer division operators."""
        code = """
local a = 5
local c = a & 3
local d = a | 3
local e = a ~ 3
local f = ~a
local g = a << 2
local h = a // 2
"""
        assert_parse_success(lua_processor.process_source("a.lua", code))

    def test_parse_lua54_syntax(self, lua_processor):
        """const and to-be-closed attributes."""
        code = """
local x <const> = 10
local f <close> = io.open("test.txt", "r")
"""
        assert_parse_success(lua_processor.process_source("a.lua", code))

    def test_result_carries_symbols_and_tokens(self, lua_processor):
        result = lua_processor.process_source(Path("lib/m.lua"), "local M = {}\nfunction M.f() end\nreturn M\n")
        assert result.file_path == Path("lib/m.lua")
        assert result.symbols.module.name == "M"
        assert result.tokens[-1].text == ""

    def test_collects_aliases(self, lua_processor):
        code = """
---@alias Mode
---| 'n'
---| 'v'

---@alias Handler fun(ev: string)
local x = 1
"""
        result = lua_processor.process_source("a.lua", code)
        assert result.aliases["Mode"] == parse_type("'n'|'v'")
        assert result.aliases["Handler"] == parse_type("fun(ev: string)")


# ============================================================================
# Test Class: TestErrorHandling
# ============================================================================


class TestErrorHandling:
    """Lexical errors fail the file; parse errors become diagnostics."""

    def test_lex_error_fails_file(self, lua_processor):
        result = lua_processor.process_source("bad.lua", 'local s = "unterminated\n')
        assert not result.success
        assert result.chunk is None
        assert "line 1" in result.errors[0]
        assert "Unterminated string literal" in result.errors[0]

    def test_parse_error_is_diagnostic(self, lua_processor):
        result = lua_processor.process_source("a.lua", "local x = = 1\nlocal y = 2\n")
        assert result.success
        assert isinstance(result.chunk.body.body[0], Opaque)
        assert [d.kind for d in result.diagnostics] == ["parse"]


# ============================================================================
# Test Class: TestFileReading
# ============================================================================


class TestFileReading:
    def test_parse_file(self, lua_processor, tmp_lua_file):
        path = tmp_lua_file("return { answer = 42 }\n")
        result = lua_processor.parse_file(path)
        assert_parse_success(result)
        assert result.source_code == "return { answer = 42 }\n"

    def test_missing_file(self, lua_processor, tmp_path):
        result = lua_processor.parse_file(tmp_path / "missing.lua")
        assert not result.success
        assert "File not found" in result.errors[0]

    def test_max_file_size_constant(self):
        assert MAX_FILE_SIZE_MB == 10

    def test_oversized_file_rejected(self, lua_processor, tmp_lua_file, monkeypatch):
        monkeypatch.setattr("lua_annotator.processors.lua_processor.MAX_FILE_SIZE_MB", 0)
        result = lua_processor.parse_file(tmp_lua_file("return 1\n"))
        assert not result.success
        assert result.errors[0].startswith("File too large")


# ============================================================================
# Test Class: TestSyntaxValidation
# ============================================================================


class TestSyntaxValidation:
    """Cross-checking with luaparser."""

    def test_validate_valid_code(self, lua_processor):
        is_valid, error = lua_processor.validate_syntax("local x = 10")
        assert is_valid
        assert error == ""

    def test_validate_invalid_code(self, lua_processor):
        is_valid, error = lua_processor.validate_syntax("local = = end")
        assert not is_valid
        assert error

    def test_validation_skipped_when_parse_already_failed(self):
        processor = LuaProcessor(validate_syntax=True)
        result = processor.process_source("a.lua", "local x = = 1\n")
        assert [d.kind for d in result.diagnostics] == ["parse"]
