"""Lua source processor: the per-file front end of the annotator.

This module runs the tokenizer, parser and symbol extractor over one
source text and packages the outcome as a ``ParseResult``. A ``LexError``
fails only this file; parse problems are reported as diagnostics on an
otherwise successful result.

When syntax validation is enabled, the source is also parsed with the
luaparser library. Its verdict never changes the result: a disagreement
is reported as a warning diagnostic so the user can look at the file.

Example:
    >>> processor = LuaProcessor()
    >>> result = processor.process_source(Path("util.lua"), "local M = {}\\nreturn M")
    >>> if result.success:
    ...     print(result.symbols.module.name)
    M
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import luaparser.ast

from lua_annotator.processors.annotations import collect_aliases
from lua_annotator.processors.lua_ast import Chunk, Diagnostic
from lua_annotator.processors.lua_parser import parse
from lua_annotator.processors.lua_symbol_extractor import LuaSymbolExtractor, LuaSymbolTable
from lua_annotator.processors.lua_tokenizer import LexError, Token, tokenize
from lua_annotator.processors.lua_types import TypeExpr
from lua_annotator.utils.logger import get_logger

# Module constants
MAX_FILE_SIZE_MB: int = 10

# Initialize logger
logger = get_logger("lua_annotator.processors.lua_processor")


@dataclass
class ParseResult:
    """Result of processing one Lua source file.

    Attributes:
        chunk: The parsed AST root, or None if tokenizing failed.
        source_code: Original Lua source code.
        file_path: Path the source belongs to.
        success: Whether the file could be tokenized and parsed.
        tokens: Token stream (comments included).
        symbols: Declarations, requires and module of the file.
        errors: Fatal error messages.
        diagnostics: Recoverable problems (parse errors, malformed annotations).
        aliases: Type aliases declared anywhere in the file.

    Example:
        >>> result = processor.process_source(Path("a.lua"), source)
        >>> if not result.success:
        ...     for error in result.errors:
        ...         print(f"Error: {error}")
    """

    chunk: Chunk | None
    source_code: str
    file_path: Path
    success: bool
    tokens: list[Token] = field(default_factory=list)
    symbols: LuaSymbolTable | None = None
    errors: list[str] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    aliases: dict[str, TypeExpr] = field(default_factory=dict)


class LuaProcessor:
    """Tokenizes, parses and extracts symbols from Lua source.

    Attributes:
        validate_syntax_enabled: Cross-check sources with luaparser.

    Example:
        >>> processor = LuaProcessor(validate_syntax=False)
        >>> result = processor.process_source(Path("a.lua"), "return {}")
    """

    def __init__(self, validate_syntax: bool = False) -> None:
        self.logger = logger
        self.validate_syntax_enabled = validate_syntax
        self.logger.debug("LuaProcessor initialized")

    def process_source(self, file_path: Path | str, source_code: str) -> ParseResult:
        """Run the front end over source text that was already read.

        Args:
            file_path: Path used for reporting and module naming.
            source_code: Complete file contents.

        Returns:
            ParseResult; ``success`` is False only on a LexError.
        """
        path = Path(file_path)
        try:
            tokens = tokenize(source_code)
        except LexError as e:
            error_msg = f"Lexical error in {path} at line {e.line}, column {e.column}: {e.message}"
            self.logger.error(error_msg)
            return ParseResult(
                chunk=None,
                source_code=source_code,
                file_path=path,
                success=False,
                errors=[error_msg],
            )

        chunk, diagnostics = parse(tokens, source_code)
        extractor = LuaSymbolExtractor(path)
        extractor.visit(chunk)
        symbols = extractor.get_symbol_table()

        for diagnostic in diagnostics:
            if diagnostic.kind == "parse":
                self.logger.warning(f"{path}:{diagnostic}")

        if self.validate_syntax_enabled:
            is_valid, error = self.validate_syntax(source_code)
            if not is_valid and not any(d.kind == "parse" for d in diagnostics):
                diagnostics.append(Diagnostic("warning", "validation", f"luaparser: {error}"))
                self.logger.warning(f"luaparser rejects {path}: {error}")

        self.logger.debug(
            f"Processed {path}: {len(symbols.declarations)} declarations, "
            f"module={'yes' if symbols.module else 'no'}"
        )
        return ParseResult(
            chunk=chunk,
            source_code=source_code,
            file_path=path,
            success=True,
            tokens=tokens,
            symbols=symbols,
            diagnostics=diagnostics,
            aliases=collect_aliases(tokens),
        )

    def parse_file(self, file_path: Path | str) -> ParseResult:
        """Read a UTF-8 Lua file and process it.

        Used for bundled definition files; project sources are handed over
        as text by the caller.

        Args:
            file_path: Path to the Lua source file.

        Returns:
            ParseResult; read failures are reported in ``errors``.

        Note:
            Files larger than MAX_FILE_SIZE_MB (10 MB) are rejected.
        """
        path = Path(file_path)

        if not path.exists():
            error_msg = f"File not found: {path}"
            self.logger.error(error_msg)
            return ParseResult(chunk=None, source_code="", file_path=path, success=False, errors=[error_msg])

        if not os.access(path, os.R_OK):
            error_msg = f"File is not readable: {path}"
            self.logger.error(error_msg)
            return ParseResult(chunk=None, source_code="", file_path=path, success=False, errors=[error_msg])

        try:
            file_size = path.stat().st_size
            if file_size > MAX_FILE_SIZE_MB * 1024 * 1024:
                error_msg = (
                    f"File too large: {path} ({file_size / 1024 / 1024:.2f} MB). "
                    f"Maximum allowed size is {MAX_FILE_SIZE_MB} MB"
                )
                self.logger.error(error_msg)
                return ParseResult(chunk=None, source_code="", file_path=path, success=False, errors=[error_msg])
            source_code = path.read_text(encoding="utf-8")
        except OSError as e:
            error_msg = f"Failed to read file {path}: {e}"
            self.logger.error(error_msg)
            return ParseResult(chunk=None, source_code="", file_path=path, success=False, errors=[error_msg])
        except ValueError as e:
            error_msg = f"Encoding error reading file {path}: {e}"
            self.logger.error(error_msg)
            return ParseResult(chunk=None, source_code="", file_path=path, success=False, errors=[error_msg])

        return self.process_source(path, source_code)

    def validate_syntax(self, code: str) -> tuple[bool, str]:
        """Validate Lua syntax with luaparser.

        Args:
            code: Lua source code string to validate.

        Returns:
            Tuple of (is_valid, error_message). If valid, error_message is empty.

        Example:
            >>> is_valid, error = processor.validate_syntax("local x = 10")
            >>> is_valid
            True
        """
        try:
            luaparser.ast.parse(code)
            return (True, "")
        except SyntaxError as e:
            if hasattr(e, "lineno") and hasattr(e, "offset"):
                error_msg = f"Line {e.lineno}, column {e.offset}: {e.msg}"
            else:
                error_msg = f"Syntax error: {e}"
            return (False, error_msg)
        except Exception as e:
            error_msg = f"Unexpected error validating syntax: {e}"
            return (False, error_msg)
