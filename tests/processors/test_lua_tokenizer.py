"""Tests for the Lua tokenizer and its comment classification."""

import pytest

from lua_annotator.processors.lua_tokenizer import (
    LexError,
    TokenKind,
    classify_line_comment,
    tokenize,
)


def kinds(source):
    return [t.kind for t in tokenize(source)]


def texts(source):
    return [t.text for t in tokenize(source) if t.kind is not TokenKind.EOF]


# ============================================================================
# Comment Classification
# ============================================================================


class TestCommentClassification:
    """Every comment is kept verbatim with one of five kinds."""

    @pytest.mark.parametrize(
        "text, kind",
        [
            ("-- plain remark", TokenKind.COMMENT_PLAIN),
            ("--", TokenKind.COMMENT_PLAIN),
            ("--- Adds two numbers", TokenKind.COMMENT_DOC),
            ("---", TokenKind.COMMENT_DOC),
            ("---@param x number", TokenKind.COMMENT_ANNOTATION),
            ("---| 'left'", TokenKind.COMMENT_ALIAS_ENTRY),
            ("---------", TokenKind.COMMENT_PLAIN),
            ("----@param x number", TokenKind.COMMENT_PLAIN),
        ],
    )
    def test_classify_line_comment(self, text, kind):
        assert classify_line_comment(text) is kind
        assert tokenize(text)[0].kind is kind

    def test_comment_text_keeps_leading_dashes(self):
        token = tokenize("---@param x -number\n")[0]
        assert token.text == "---@param x -number"

    def test_block_comment(self):
        tokens = tokenize("--[[ first\nsecond ]] local x")
        assert tokens[0].kind is TokenKind.COMMENT_BLOCK
        assert tokens[0].text == "--[[ first\nsecond ]]"
        assert tokens[0].end_line == 2
        assert tokens[1].is_keyword("local")

    def test_block_comment_with_fence_level(self):
        tokens = tokenize("--[==[ contains ]] inside ]==]")
        assert tokens[0].kind is TokenKind.COMMENT_BLOCK
        assert tokens[0].text.endswith("]==]")

    def test_unterminated_block_comment(self):
        with pytest.raises(LexError, match="Unterminated block comment"):
            tokenize("local x = 1\n--[[ never closed")

    def test_shebang_is_plain_comment(self):
        tokens = tokenize("#!/usr/bin/env lua\nprint(1)")
        assert tokens[0].kind is TokenKind.COMMENT_PLAIN
        assert tokens[0].text == "#!/usr/bin/env lua"


# ============================================================================
# Literals and Symbols
# ============================================================================


class TestLiterals:
    """Strings, long strings and numbers."""

    def test_quoted_strings_with_escapes(self):
        assert texts(r'x = "a\"b" .. ' + "'c'") == ["x", "=", r'"a\"b"', "..", "'c'"]

    def test_long_string(self):
        tokens = tokenize("s = [=[ a ]] b ]=]")
        assert tokens[2].kind is TokenKind.STRING
        assert tokens[2].text == "[=[ a ]] b ]=]"

    def test_unterminated_string_reports_position(self):
        with pytest.raises(LexError) as exc_info:
            tokenize('local a = 1\nlocal s = "open')
        assert exc_info.value.line == 2
        assert exc_info.value.column == 11

    def test_unterminated_long_string(self):
        with pytest.raises(LexError, match="Unterminated long string"):
            tokenize("s = [[ open")

    @pytest.mark.parametrize("number", ["42", "3.14", "0x1F", "1e10", "2.5E-3", ".5", "0x1p4"])
    def test_numbers(self, number):
        tokens = tokenize(number)
        assert tokens[0].kind is TokenKind.NUMBER
        assert tokens[0].text == number


class TestSymbols:
    """Keywords, identifiers and greedy operators."""

    def test_keywords_and_identifiers(self):
        tokens = tokenize("local function foo_1() end")
        assert [t.kind for t in tokens[:4]] == [
            TokenKind.KEYWORD, TokenKind.KEYWORD, TokenKind.IDENTIFIER, TokenKind.PUNCTUATION
        ]

    def test_greedy_operators(self):
        assert texts("a ... b .. c . d == e ~= f // g :: h") == [
            "a", "...", "b", "..", "c", ".", "d", "==", "e", "~=", "f", "//", "g", "::", "h"
        ]

    def test_method_call_punctuation(self):
        tokens = tokenize("obj:method()")
        assert tokens[1].is_symbol(":")
        assert tokens[1].kind is TokenKind.PUNCTUATION


# ============================================================================
# Positions
# ============================================================================


class TestPositions:
    """Line, column and offsets of tokens."""

    def test_line_and_column(self):
        tokens = tokenize("local x = 1\n  return x")
        ret = tokens[4]
        assert ret.text == "return"
        assert (ret.line, ret.column) == (2, 3)

    def test_offsets_slice_source(self):
        source = "---@type string\nlocal name = 'x'"
        for token in tokenize(source):
            assert source[token.start:token.end] == token.text

    def test_eof_token_terminates_stream(self):
        assert kinds("") == [TokenKind.EOF]
        assert kinds("x")[-1] is TokenKind.EOF
