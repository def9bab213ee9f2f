"""Shared fixtures for annotator core tests."""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable

import pytest

from lua_annotator.core.config import AnnotatorConfig
from lua_annotator.core.orchestrator import AnnotationOrchestrator
from lua_annotator.core.type_catalogue import TypeCatalogue
from lua_annotator.processors.lua_processor import LuaProcessor, ParseResult


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def lua() -> Callable[[str], str]:
    """Dedent an inline Lua snippet and drop its leading newline."""
    def _lua(source: str) -> str:
        return textwrap.dedent(source).lstrip("\n")
    return _lua


@pytest.fixture
def parse_lua(lua) -> Callable[..., ParseResult]:
    """Parse an inline Lua snippet as the given file."""
    processor = LuaProcessor()

    def _parse(source: str, path: str = "m.lua") -> ParseResult:
        result = processor.process_source(Path(path), lua(source))
        assert result.success, f"Parse failed with errors: {result.errors}"
        return result
    return _parse


@pytest.fixture(scope="session")
def catalogue() -> TypeCatalogue:
    """Standard library catalogue for Lua 5.4, built once."""
    return TypeCatalogue.for_config(AnnotatorConfig())


@pytest.fixture
def config() -> AnnotatorConfig:
    """Configuration without the luaparser cross-check."""
    return AnnotatorConfig(validate_syntax=False)


@pytest.fixture
def orchestrator(config: AnnotatorConfig, catalogue: TypeCatalogue) -> AnnotationOrchestrator:
    return AnnotationOrchestrator(config, catalogue)


@pytest.fixture
def sample_project(lua) -> dict[Path, str]:
    """Two files where main.lua requires util.lua."""
    return {
        Path("main.lua"): lua("""
            local util = require("util")

            local M = {}

            function M.run(name)
                return util.greet(name)
            end

            return M
        """),
        Path("util.lua"): lua("""
            local M = {}

            function M.greet(name)
                return "Hello, " .. name
            end

            return M
        """),
    }


@pytest.fixture
def state_transitions() -> Callable[[list], list[str]]:
    """Extract ``OLD -> NEW`` pairs from captured orchestrator log records."""
    def _transitions(records: list) -> list[str]:
        prefix = "State transition: "
        return [
            record.getMessage()[len(prefix):]
            for record in records
            if record.getMessage().startswith(prefix)
        ]
    return _transitions
