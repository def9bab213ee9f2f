"""Lexical analysis of Lua source with comment classification.

The tokenizer turns Lua source text into a flat list of ``Token`` objects.
Whitespace is dropped, but every comment is kept verbatim and classified so
the parser can tell documentation from ordinary remarks:

- ``-- text``            -> COMMENT_PLAIN
- ``--- text``           -> COMMENT_DOC (exactly three dashes, no ``@``)
- ``---@tag ...``        -> COMMENT_ANNOTATION
- ``---| value``         -> COMMENT_ALIAS_ENTRY
- ``--[[ ... ]]``        -> COMMENT_BLOCK (any ``=`` fence level)

Comment text always includes its leading dashes, so ``---@param x -number``
is stored exactly as written.

Example:
    >>> tokens = tokenize("---@param x number\\nlocal function f(x) end")
    >>> tokens[0].kind
    <TokenKind.COMMENT_ANNOTATION: 'comment-annotation'>
    >>> tokens[0].text
    '---@param x number'
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from lua_annotator.utils.logger import get_logger

logger = get_logger("lua_annotator.processors.lua_tokenizer")


class LexError(Exception):
    """Raised for unterminated strings, long strings or block comments.

    Attributes:
        line: 1-based line where the offending literal starts
        column: 1-based column where the offending literal starts
    """

    def __init__(self, message: str, line: int, column: int) -> None:
        self.line = line
        self.column = column
        self.message = message
        super().__init__(f"{message} at line {line}, column {column}")


class TokenKind(Enum):
    """Lexical categories produced by the tokenizer."""
    IDENTIFIER = "identifier"
    KEYWORD = "keyword"
    OPERATOR = "operator"
    PUNCTUATION = "punctuation"
    STRING = "string-literal"
    NUMBER = "number-literal"
    COMMENT_PLAIN = "comment-plain"
    COMMENT_DOC = "comment-doc"
    COMMENT_ANNOTATION = "comment-annotation"
    COMMENT_ALIAS_ENTRY = "comment-alias-entry"
    COMMENT_BLOCK = "comment-block"
    EOF = "eof"


COMMENT_KINDS = frozenset({
    TokenKind.COMMENT_PLAIN,
    TokenKind.COMMENT_DOC,
    TokenKind.COMMENT_ANNOTATION,
    TokenKind.COMMENT_ALIAS_ENTRY,
    TokenKind.COMMENT_BLOCK,
})

# Comment kinds that may be attached to a declaration
DOC_COMMENT_KINDS = frozenset({
    TokenKind.COMMENT_DOC,
    TokenKind.COMMENT_ANNOTATION,
    TokenKind.COMMENT_ALIAS_ENTRY,
    TokenKind.COMMENT_BLOCK,
})

KEYWORDS = frozenset({
    "and", "break", "do", "else", "elseif", "end", "false", "for",
    "function", "goto", "if", "in", "local", "nil", "not", "or",
    "repeat", "return", "then", "true", "until", "while",
})

# Longest first so that greedy matching works
OPERATORS = (
    "...", "..", "==", "~=", "<=", ">=", "//", "<<", ">>",
    "+", "-", "*", "/", "%", "^", "#", "&", "~", "|", "<", ">", "=",
)

PUNCTUATION = ("::", "(", ")", "{", "}", "[", "]", ";", ":", ",", ".")


@dataclass(frozen=True)
class Token:
    """A single lexical token.

    Attributes:
        kind: Lexical category
        text: Exact source text of the token (comments keep their dashes)
        line: 1-based line of the first character
        column: 1-based column of the first character
        start: Offset of the first character in the source
        end: Offset one past the last character
    """
    kind: TokenKind
    text: str
    line: int
    column: int
    start: int = 0
    end: int = 0

    @property
    def end_line(self) -> int:
        """Line of the last character (differs from ``line`` for block comments)."""
        return self.line + self.text.count("\n")

    @property
    def is_comment(self) -> bool:
        return self.kind in COMMENT_KINDS

    def is_keyword(self, *words: str) -> bool:
        return self.kind is TokenKind.KEYWORD and self.text in words

    def is_symbol(self, *symbols: str) -> bool:
        return (
            self.kind in (TokenKind.OPERATOR, TokenKind.PUNCTUATION)
            and self.text in symbols
        )


def classify_line_comment(text: str) -> TokenKind:
    """Classify a ``--`` line comment from its verbatim text.

    Examples:
        >>> classify_line_comment("---@return string")
        <TokenKind.COMMENT_ANNOTATION: 'comment-annotation'>
        >>> classify_line_comment("---------")
        <TokenKind.COMMENT_PLAIN: 'comment-plain'>
    """
    if not text.startswith("---") or text.startswith("----"):
        return TokenKind.COMMENT_PLAIN
    marker = text[3:4]
    if marker == "@":
        return TokenKind.COMMENT_ANNOTATION
    if marker == "|":
        return TokenKind.COMMENT_ALIAS_ENTRY
    return TokenKind.COMMENT_DOC


class Lexer:
    """Single-use scanner over one source string."""

    def __init__(self, source: str) -> None:
        self.source = source
        self.length = len(source)
        self.index = 0
        self.line = 1
        self.column = 1
        self._tokens: list[Token] = []

    def _peek(self, offset: int = 0) -> str:
        pos = self.index + offset
        if pos >= self.length:
            return ""
        return self.source[pos]

    def _advance(self, count: int = 1) -> None:
        for _ in range(count):
            if self.index >= self.length:
                return
            if self.source[self.index] == "\n":
                self.line += 1
                self.column = 1
            else:
                self.column += 1
            self.index += 1

    def _emit(self, kind: TokenKind, start: int, line: int, column: int) -> None:
        self._tokens.append(
            Token(kind, self.source[start:self.index], line, column, start, self.index)
        )

    def _long_bracket_level(self, offset: int = 0) -> int:
        """Return the ``=`` count of a long bracket opening at offset, or -1."""
        if self._peek(offset) != "[":
            return -1
        level = 0
        while self._peek(offset + 1 + level) == "=":
            level += 1
        if self._peek(offset + 1 + level) == "[":
            return level
        return -1

    def _skip_long_bracket(self, level: int, what: str, line: int, column: int) -> None:
        """Consume a long bracket body up to its matching ``]=*]`` fence."""
        closing = "]" + "=" * level + "]"
        end = self.source.find(closing, self.index)
        if end < 0:
            raise LexError(f"Unterminated {what}", line, column)
        self._advance(end + len(closing) - self.index)

    def tokenize(self) -> list[Token]:
        if self.source.startswith("#!"):
            start = self.index
            while self.index < self.length and self._peek() != "\n":
                self._advance()
            self._emit(TokenKind.COMMENT_PLAIN, start, 1, 1)

        while True:
            ch = self._peek()
            if ch == "":
                self._tokens.append(
                    Token(TokenKind.EOF, "", self.line, self.column, self.index, self.index)
                )
                return self._tokens
            if ch.isspace():
                self._advance()
                continue

            start, line, column = self.index, self.line, self.column

            if ch == "-" and self._peek(1) == "-":
                self._scan_comment(start, line, column)
            elif ch in "\"'":
                self._scan_string(ch, start, line, column)
            elif ch == "[" and self._long_bracket_level() >= 0:
                level = self._long_bracket_level()
                self._advance(level + 2)
                self._skip_long_bracket(level, "long string", line, column)
                self._emit(TokenKind.STRING, start, line, column)
            elif ch.isdigit() or (ch == "." and self._peek(1).isdigit()):
                self._scan_number()
                self._emit(TokenKind.NUMBER, start, line, column)
            elif ch.isalpha() or ch == "_":
                while self._peek().isalnum() or self._peek() == "_":
                    self._advance()
                word = self.source[start:self.index]
                kind = TokenKind.KEYWORD if word in KEYWORDS else TokenKind.IDENTIFIER
                self._emit(kind, start, line, column)
            else:
                self._scan_symbol(start, line, column)

    def _scan_comment(self, start: int, line: int, column: int) -> None:
        level = self._long_bracket_level(2)
        if level >= 0:
            self._advance(2 + level + 2)
            self._skip_long_bracket(level, "block comment", line, column)
            self._emit(TokenKind.COMMENT_BLOCK, start, line, column)
            return
        while self.index < self.length and self._peek() not in ("\n", "\r"):
            self._advance()
        text = self.source[start:self.index]
        self._tokens.append(
            Token(classify_line_comment(text), text, line, column, start, self.index)
        )

    def _scan_string(self, quote: str, start: int, line: int, column: int) -> None:
        self._advance()
        while True:
            ch = self._peek()
            if ch == "" or ch == "\n":
                raise LexError("Unterminated string literal", line, column)
            if ch == "\\":
                # An escaped newline is a legal line continuation
                if self._peek(1) == "\r" and self._peek(2) == "\n":
                    self._advance(3)
                else:
                    self._advance(2)
                continue
            self._advance()
            if ch == quote:
                break
        self._emit(TokenKind.STRING, start, line, column)

    def _scan_number(self) -> None:
        if self._peek() == "0" and self._peek(1) in ("x", "X"):
            self._advance(2)
            exponent = "pP"
            digits = "0123456789abcdefABCDEF."
        else:
            exponent = "eE"
            digits = "0123456789."
        while True:
            ch = self._peek()
            if ch and ch in digits:
                self._advance()
            elif ch and ch in exponent:
                self._advance()
                if self._peek() in ("+", "-"):
                    self._advance()
                digits = "0123456789"
                exponent = ""
            else:
                break

    def _scan_symbol(self, start: int, line: int, column: int) -> None:
        for symbol in PUNCTUATION[:1] + OPERATORS + PUNCTUATION[1:]:
            if self.source.startswith(symbol, self.index):
                self._advance(len(symbol))
                kind = TokenKind.PUNCTUATION if symbol in PUNCTUATION else TokenKind.OPERATOR
                self._emit(kind, start, line, column)
                return
        # Unknown characters become single-character operator tokens and are
        # reported by the parser
        self._advance()
        self._emit(TokenKind.OPERATOR, start, line, column)


def tokenize(source: str) -> list[Token]:
    """Convert Lua source text into tokens terminated by an EOF token.

    Args:
        source: Complete file contents.

    Returns:
        List of tokens; the last one has kind ``TokenKind.EOF``.

    Raises:
        LexError: On an unterminated string, long string or block comment.
    """
    tokens = Lexer(source).tokenize()
    logger.debug(f"Tokenized {len(source)} characters into {len(tokens)} tokens")
    return tokens
