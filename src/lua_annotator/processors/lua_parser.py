"""Recursive-descent parser producing the annotator's Lua AST.

The parser never fails hard: a statement it cannot understand is captured
as an ``Opaque`` node with a diagnostic and parsing resumes at the next
statement boundary. Each declaration receives the doc comment block that
sits directly above it, and top-level ``require`` calls are recorded as
module dependencies.

Example:
    >>> from lua_annotator.processors.lua_tokenizer import tokenize
    >>> source = "local M = {}\\nfunction M.hello(name) return 'hi ' .. name end\\nreturn M"
    >>> chunk, diagnostics = parse(tokenize(source), source)
    >>> [type(n).__name__ for n in chunk.body.body]
    ['Assignment', 'FunctionDecl', 'ModuleReturn']
"""

from __future__ import annotations

from typing import Sequence

from lua_annotator.processors.annotations import parse_annotation_block
from lua_annotator.processors.lua_ast import (
    Assignment,
    BinaryOp,
    Block,
    Break,
    Call,
    CallStatement,
    Chunk,
    Diagnostic,
    Do,
    FunctionDecl,
    FunctionExpr,
    GenericFor,
    Goto,
    Identifier,
    If,
    Index,
    Label,
    Literal,
    MethodDecl,
    ModuleReturn,
    Node,
    NumericFor,
    Opaque,
    Paren,
    Repeat,
    Require,
    Return,
    Span,
    TableConstructor,
    TableField,
    UnaryOp,
    Vararg,
    While,
)
from lua_annotator.processors.lua_tokenizer import DOC_COMMENT_KINDS, Token, TokenKind
from lua_annotator.utils.logger import get_logger

logger = get_logger("lua_annotator.processors.lua_parser")

# (left, right) binding power; right < left means right associative
BINARY_PRIORITY = {
    "or": (1, 1), "and": (2, 2),
    "<": (3, 3), ">": (3, 3), "<=": (3, 3), ">=": (3, 3), "~=": (3, 3), "==": (3, 3),
    "|": (4, 4), "~": (5, 5), "&": (6, 6), "<<": (7, 7), ">>": (7, 7),
    "..": (9, 8),
    "+": (10, 10), "-": (10, 10),
    "*": (11, 11), "/": (11, 11), "//": (11, 11), "%": (11, 11),
    "^": (14, 13),
}
UNARY_PRIORITY = 12
UNARY_OPERATORS = ("not", "#", "-", "~")

BLOCK_END_KEYWORDS = ("end", "else", "elseif", "until")
STATEMENT_KEYWORDS = (
    "local", "function", "return", "if", "while", "for", "repeat", "do",
    "break", "goto",
)


class ParseRecoverable(Exception):
    """Raised inside the parser when a statement cannot be understood."""

    def __init__(self, message: str, token: Token) -> None:
        self.token = token
        super().__init__(f"{message} near '{token.text or '<eof>'}'")


class Parser:
    """Single-use parser over one token list."""

    def __init__(self, tokens: Sequence[Token], source: str | None = None) -> None:
        self.tokens = list(tokens)
        self.source = source
        self.code: list[Token] = []
        self._code_index: list[int] = []
        for i, token in enumerate(self.tokens):
            if not token.is_comment:
                self.code.append(token)
                self._code_index.append(i)
        self.pos = 0
        self.diagnostics: list[Diagnostic] = []
        self.requires: list[Require] = []
        self._function_depth = 0
        self._block_depth = 0

    # ------------------------------------------------------------------
    # Token helpers
    # ------------------------------------------------------------------

    def _peek(self, offset: int = 0) -> Token:
        index = min(self.pos + offset, len(self.code) - 1)
        return self.code[index]

    def _advance(self) -> Token:
        token = self.code[self.pos]
        if token.kind is not TokenKind.EOF:
            self.pos += 1
        return token

    def _check(self, *symbols: str) -> bool:
        return self._peek().is_symbol(*symbols)

    def _accept(self, *symbols: str) -> Token | None:
        if self._check(*symbols):
            return self._advance()
        return None

    def _expect(self, symbol: str) -> Token:
        if not self._check(symbol):
            raise ParseRecoverable(f"'{symbol}' expected", self._peek())
        return self._advance()

    def _expect_keyword(self, word: str) -> Token:
        if not self._peek().is_keyword(word):
            raise ParseRecoverable(f"'{word}' expected", self._peek())
        return self._advance()

    def _expect_name(self) -> Token:
        token = self._peek()
        if token.kind is not TokenKind.IDENTIFIER:
            raise ParseRecoverable("name expected", token)
        return self._advance()

    def _span_from(self, first: Token) -> Span:
        last = self.code[self.pos - 1] if self.pos > 0 else first
        return Span(first.line, first.column, first.start, max(last.end, first.end))

    # ------------------------------------------------------------------
    # Blocks and statements
    # ------------------------------------------------------------------

    def parse_chunk(self) -> Chunk:
        first = self._peek()
        body = self._parse_block(top=True)
        return Chunk(body=body, requires=self.requires, span=self._span_from(first))

    def _parse_block(self, top: bool = False) -> Block:
        first = self._peek()
        statements: list[Node] = []
        if not top:
            self._block_depth += 1
        try:
            while True:
                token = self._peek()
                if token.kind is TokenKind.EOF:
                    break
                if token.is_keyword(*BLOCK_END_KEYWORDS):
                    if not top:
                        break
                    statements.append(self._recover(
                        self.pos, ParseRecoverable(f"unexpected '{token.text}'", token)
                    ))
                    continue
                start = self.pos
                try:
                    statement = self._parse_statement()
                except ParseRecoverable as e:
                    statement = self._recover(start, e)
                if statement is not None:
                    statements.append(statement)
        finally:
            if not top:
                self._block_depth -= 1
        return Block(body=statements, span=self._span_from(first))

    def _recover(self, start: int, error: ParseRecoverable) -> Opaque:
        """Skip to the next statement boundary and wrap the skipped text."""
        first = self.code[start]
        error_line = error.token.line
        self.pos = max(self.pos, start + 1)
        while True:
            token = self._peek()
            if token.kind is TokenKind.EOF:
                break
            if self._block_depth > 0 and token.is_keyword(*BLOCK_END_KEYWORDS):
                break
            if token.line > error_line and (
                token.is_keyword(*STATEMENT_KEYWORDS) or token.kind is TokenKind.IDENTIFIER
            ):
                break
            self._advance()

        last = self.code[max(self.pos - 1, start)]
        if self.source is not None:
            text = self.source[first.start:last.end]
        else:
            text = " ".join(t.text for t in self.code[start:self.pos])
        diagnostic = Diagnostic(
            "error", "parse", str(error), error.token.line, error.token.column
        )
        self.diagnostics.append(diagnostic)
        logger.warning(f"Parse error at line {diagnostic.line}: {diagnostic.message}")
        return Opaque(
            text=text, diagnostic=diagnostic,
            span=Span(first.line, first.column, first.start, last.end),
        )

    def _leading_doc(self, code_pos: int):
        """Collect the doc comment run directly above a code token."""
        index = self._code_index[code_pos]
        expected_line = self.tokens[index].line
        collected: list[Token] = []
        i = index - 1
        while i >= 0:
            token = self.tokens[i]
            if not token.is_comment or token.kind not in DOC_COMMENT_KINDS:
                break
            if token.end_line != expected_line - 1:
                break
            # A comment trailing code on the same line belongs to that code
            if i > 0 and not self.tokens[i - 1].is_comment and self.tokens[i - 1].end_line == token.line:
                break
            collected.append(token)
            expected_line = token.line
            i -= 1
        if not collected:
            return None
        collected.reverse()
        block = parse_annotation_block(collected)
        self.diagnostics.extend(block.diagnostics)
        return block

    def _parse_statement(self) -> Node | None:
        token = self._peek()
        start = self.pos

        if token.is_symbol(";"):
            self._advance()
            return None
        if token.is_symbol("::"):
            self._advance()
            name = self._expect_name()
            self._expect("::")
            return Label(name=name.text, span=self._span_from(token))
        if token.is_keyword("break"):
            self._advance()
            return Break(span=self._span_from(token))
        if token.is_keyword("goto"):
            self._advance()
            name = self._expect_name()
            return Goto(label=name.text, span=self._span_from(token))
        if token.is_keyword("do"):
            self._advance()
            body = self._parse_block()
            self._expect_keyword("end")
            return Do(body=body, span=self._span_from(token))
        if token.is_keyword("while"):
            self._advance()
            condition = self._parse_expr()
            self._expect_keyword("do")
            body = self._parse_block()
            self._expect_keyword("end")
            return While(condition=condition, body=body, span=self._span_from(token))
        if token.is_keyword("repeat"):
            self._advance()
            body = self._parse_block()
            self._expect_keyword("until")
            condition = self._parse_expr()
            return Repeat(body=body, condition=condition, span=self._span_from(token))
        if token.is_keyword("if"):
            return self._parse_if()
        if token.is_keyword("for"):
            return self._parse_for()
        if token.is_keyword("return"):
            return self._parse_return()
        if token.is_keyword("function"):
            doc = self._leading_doc(start)
            return self._parse_function_statement(token, doc, is_local=False)
        if token.is_keyword("local"):
            doc = self._leading_doc(start)
            self._advance()
            if self._peek().is_keyword("function"):
                self._advance()
                name = self._expect_name()
                params, is_vararg, body = self._parse_function_body()
                return FunctionDecl(
                    name=name.text, params=params, is_vararg=is_vararg, body=body,
                    is_local=True, member=name.text, doc=doc, span=self._span_from(token),
                )
            return self._parse_local(token, doc)

        expr = self._parse_suffixed_expr()
        if self._check("=", ","):
            doc = self._leading_doc(start)
            targets = [expr]
            while self._accept(","):
                targets.append(self._parse_suffixed_expr())
            self._expect("=")
            values = self._parse_expr_list()
            for target in targets:
                if not isinstance(target, (Identifier, Index)):
                    raise ParseRecoverable("cannot assign to expression", token)
            return Assignment(targets=targets, values=values, doc=doc, span=self._span_from(token))
        if isinstance(expr, Call):
            return CallStatement(call=expr, span=self._span_from(token))
        raise ParseRecoverable("syntax error", self._peek())

    def _parse_local(self, first: Token, doc) -> Assignment:
        targets: list[Node] = []
        while True:
            name = self._expect_name()
            targets.append(Identifier(name.text, Span(name.line, name.column, name.start, name.end)))
            if self._accept("<"):
                self._expect_name()
                self._expect(">")
            if not self._accept(","):
                break
        values: list[Node] = []
        if self._accept("="):
            values = self._parse_expr_list()
        return Assignment(
            targets=targets, values=values, is_local=True, doc=doc, span=self._span_from(first)
        )

    def _parse_if(self) -> If:
        first = self._advance()
        clauses = []
        condition = self._parse_expr()
        self._expect_keyword("then")
        clauses.append((condition, self._parse_block()))
        orelse = None
        while True:
            token = self._peek()
            if token.is_keyword("elseif"):
                self._advance()
                condition = self._parse_expr()
                self._expect_keyword("then")
                clauses.append((condition, self._parse_block()))
            elif token.is_keyword("else"):
                self._advance()
                orelse = self._parse_block()
            else:
                break
        self._expect_keyword("end")
        return If(clauses=clauses, orelse=orelse, span=self._span_from(first))

    def _parse_for(self) -> Node:
        first = self._advance()
        name = self._expect_name()
        if self._accept("="):
            start = self._parse_expr()
            self._expect(",")
            stop = self._parse_expr()
            step = self._parse_expr() if self._accept(",") else None
            self._expect_keyword("do")
            body = self._parse_block()
            self._expect_keyword("end")
            return NumericFor(
                var=name.text, start=start, stop=stop, step=step, body=body,
                span=self._span_from(first),
            )
        names = [name.text]
        while self._accept(","):
            names.append(self._expect_name().text)
        self._expect_keyword("in")
        exprs = self._parse_expr_list()
        self._expect_keyword("do")
        body = self._parse_block()
        self._expect_keyword("end")
        return GenericFor(names=names, exprs=exprs, body=body, span=self._span_from(first))

    def _parse_return(self) -> Return:
        first = self._advance()
        values: list[Node] = []
        token = self._peek()
        if not (
            token.kind is TokenKind.EOF
            or token.is_keyword(*BLOCK_END_KEYWORDS)
            or token.is_symbol(";")
        ):
            values = self._parse_expr_list()
        self._accept(";")
        cls = ModuleReturn if self._function_depth == 0 and self._block_depth == 0 else Return
        return cls(values=values, span=self._span_from(first))

    def _parse_function_statement(self, first: Token, doc, is_local: bool) -> FunctionDecl:
        self._advance()
        parts = [self._expect_name().text]
        method = None
        while True:
            if self._accept("."):
                parts.append(self._expect_name().text)
            elif self._accept(":"):
                method = self._expect_name().text
                break
            else:
                break
        params, is_vararg, body = self._parse_function_body()
        if method is not None:
            table = ".".join(parts)
            return MethodDecl(
                name=f"{table}:{method}", params=params, is_vararg=is_vararg, body=body,
                table=table, member=method, doc=doc, span=self._span_from(first),
            )
        return FunctionDecl(
            name=".".join(parts), params=params, is_vararg=is_vararg, body=body,
            is_local=is_local,
            table=".".join(parts[:-1]) or None, member=parts[-1],
            doc=doc, span=self._span_from(first),
        )

    def _parse_function_body(self) -> tuple[list[str], bool, Block]:
        self._expect("(")
        params: list[str] = []
        is_vararg = False
        if not self._check(")"):
            while True:
                if self._accept("..."):
                    is_vararg = True
                    break
                params.append(self._expect_name().text)
                if not self._accept(","):
                    break
        self._expect(")")
        self._function_depth += 1
        try:
            body = self._parse_block()
        finally:
            self._function_depth -= 1
        self._expect_keyword("end")
        return params, is_vararg, body

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _parse_expr_list(self) -> list[Node]:
        exprs = [self._parse_expr()]
        while self._accept(","):
            exprs.append(self._parse_expr())
        return exprs

    def _binary_operator(self) -> str | None:
        token = self._peek()
        if token.kind in (TokenKind.OPERATOR, TokenKind.KEYWORD) and token.text in BINARY_PRIORITY:
            return token.text
        return None

    def _parse_expr(self, limit: int = 0) -> Node:
        token = self._peek()
        if (
            token.is_keyword("not")
            or (token.kind is TokenKind.OPERATOR and token.text in UNARY_OPERATORS)
        ):
            self._advance()
            operand = self._parse_expr(UNARY_PRIORITY)
            left: Node = UnaryOp(op=token.text, operand=operand, span=self._span_from(token))
        else:
            left = self._parse_simple_expr()

        while True:
            op = self._binary_operator()
            if op is None or BINARY_PRIORITY[op][0] <= limit:
                break
            self._advance()
            right = self._parse_expr(BINARY_PRIORITY[op][1])
            left = BinaryOp(op=op, left=left, right=right, span=self._span_from(token))
        return left

    def _parse_simple_expr(self) -> Node:
        token = self._peek()
        span = Span(token.line, token.column, token.start, token.end)
        if token.kind is TokenKind.NUMBER:
            self._advance()
            return Literal("number", token.text, span)
        if token.kind is TokenKind.STRING:
            self._advance()
            return Literal("string", token.text, span)
        if token.is_keyword("nil"):
            self._advance()
            return Literal("nil", "nil", span)
        if token.is_keyword("true", "false"):
            self._advance()
            return Literal("boolean", token.text, span)
        if token.is_symbol("..."):
            self._advance()
            return Vararg(span=span)
        if token.is_symbol("{"):
            return self._parse_table()
        if token.is_keyword("function"):
            self._advance()
            params, is_vararg, body = self._parse_function_body()
            return FunctionExpr(
                params=params, is_vararg=is_vararg, body=body, span=self._span_from(token)
            )
        return self._parse_suffixed_expr()

    def _parse_primary_expr(self) -> Node:
        token = self._peek()
        if token.kind is TokenKind.IDENTIFIER:
            self._advance()
            return Identifier(token.text, Span(token.line, token.column, token.start, token.end))
        if token.is_symbol("("):
            self._advance()
            inner = self._parse_expr()
            self._expect(")")
            return Paren(inner=inner, span=self._span_from(token))
        raise ParseRecoverable("unexpected symbol", token)

    def _parse_suffixed_expr(self) -> Node:
        first = self._peek()
        expr = self._parse_primary_expr()
        while True:
            token = self._peek()
            if token.is_symbol("."):
                self._advance()
                name = self._expect_name()
                expr = Index(obj=expr, name=name.text, span=self._span_from(first))
            elif token.is_symbol("["):
                self._advance()
                key = self._parse_expr()
                self._expect("]")
                expr = Index(obj=expr, key=key, span=self._span_from(first))
            elif token.is_symbol(":"):
                self._advance()
                method = self._expect_name().text
                args = self._parse_call_args()
                expr = Call(callee=expr, args=args, method=method, span=self._span_from(first))
            elif token.is_symbol("(", "{") or token.kind is TokenKind.STRING:
                args = self._parse_call_args()
                expr = self._make_call(expr, args, first)
            else:
                return expr

    def _make_call(self, callee: Node, args: list[Node], first: Token) -> Call:
        span = self._span_from(first)
        if (
            isinstance(callee, Identifier)
            and callee.name == "require"
            and len(args) == 1
            and isinstance(args[0], Literal)
            and args[0].kind == "string"
        ):
            node = Require(callee=callee, args=args, module_name=args[0].value, span=span)
            if self._function_depth == 0:
                self.requires.append(node)
            return node
        return Call(callee=callee, args=args, span=span)

    def _parse_call_args(self) -> list[Node]:
        token = self._peek()
        if token.kind is TokenKind.STRING:
            self._advance()
            return [Literal("string", token.text, Span(token.line, token.column, token.start, token.end))]
        if token.is_symbol("{"):
            return [self._parse_table()]
        self._expect("(")
        args: list[Node] = []
        if not self._check(")"):
            args = self._parse_expr_list()
        self._expect(")")
        return args

    def _parse_table(self) -> TableConstructor:
        first = self._expect("{")
        fields: list[TableField] = []
        while not self._check("}"):
            token = self._peek()
            if token.is_symbol("["):
                self._advance()
                key = self._parse_expr()
                self._expect("]")
                self._expect("=")
                value = self._parse_expr()
                fields.append(TableField(value=value, key=key, span=self._span_from(token)))
            elif token.kind is TokenKind.IDENTIFIER and self._peek(1).is_symbol("="):
                doc = self._leading_doc(self.pos)
                self._advance()
                self._advance()
                value = self._parse_expr()
                fields.append(TableField(
                    value=value, name=token.text, doc=doc, span=self._span_from(token)
                ))
            else:
                value = self._parse_expr()
                fields.append(TableField(value=value, span=self._span_from(token)))
            if not self._accept(",", ";"):
                break
        self._expect("}")
        return TableConstructor(fields=fields, span=self._span_from(first))


def parse(tokens: Sequence[Token], source: str | None = None) -> tuple[Chunk, list[Diagnostic]]:
    """Parse a token stream into a ``Chunk``.

    Args:
        tokens: Output of ``tokenize``.
        source: The source text, used to keep exact text of opaque statements.

    Returns:
        Tuple of the chunk and the diagnostics collected while parsing.
    """
    parser = Parser(tokens, source)
    chunk = parser.parse_chunk()
    logger.debug(
        f"Parsed {len(chunk.body.body)} top-level statements "
        f"({len(chunk.requires)} requires, {len(parser.diagnostics)} diagnostics)"
    )
    return chunk, parser.diagnostics
