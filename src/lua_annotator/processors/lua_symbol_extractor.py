"""
Symbol extraction module for Lua code analysis.

This module walks a parsed chunk and extracts what the annotator works on:
require() calls, every annotatable declaration (functions in all syntactic
forms, module members, the module table) and the file's Module, the table
value returned at file scope.

Module detection follows the returned identifier back through renames
(``local R = M ... return R``) to the local that was bound to the table,
and collects members defined as ``M.x = ...``, ``function M.f()``,
``function M:m()`` or as fields of the table constructor.

Example:
    >>> from lua_annotator.processors.lua_tokenizer import tokenize
    >>> from lua_annotator.processors.lua_parser import parse
    >>> code = '''
    ... local M = {}
    ... function M.greet(name) return "Hello, " .. name end
    ... return M
    ... '''
    >>> chunk, _ = parse(tokenize(code), code)
    >>> extractor = LuaSymbolExtractor(Path("greet.lua"))
    >>> extractor.visit(chunk)
    >>> symbols = extractor.get_symbol_table()
    >>> symbols.module.name, list(symbols.module.exported_members)
    ('M', ['greet'])
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from lua_annotator.processors.annotations import DocBlock
from lua_annotator.processors.lua_ast import (
    Assignment,
    Block,
    Chunk,
    Do,
    FunctionDecl,
    FunctionExpr,
    GenericFor,
    Identifier,
    If,
    Index,
    MethodDecl,
    ModuleReturn,
    Node,
    NumericFor,
    Repeat,
    Require,
    TableConstructor,
    TableField,
    While,
    expression_name,
    walk,
)


@dataclass
class LuaImportInfo:
    """
    Represents a require() call in Lua code.

    Attributes:
        module_path: The required module name as written
        alias: Local name the result is bound to, if any
        line_number: Line number where the require() call appears
        is_relative: True if the name starts with '.'
    """
    module_path: str
    alias: Optional[str] = None
    line_number: int = 0
    is_relative: bool = False


@dataclass
class DeclarationInfo:
    """
    An annotatable declaration.

    Attributes:
        decl_id: Stable id, ``<name>:<line>``
        name: Name as written (``M.f``, ``M:m``, ``f``)
        kind: ``function``, ``value`` (module member value), ``field``
            (module table constructor field) or ``module``
        node: The AST node the declaration comes from
        doc: Attached doc block, if any
        params: Parameter names (``self`` excluded for methods)
        is_vararg: Whether the function takes ``...``
        body: Function body
        value: Assigned value expression for non-function declarations
        table: Owning table name for members and methods
        member: Final name component
        is_method: True for ``function t:m()``
        depth: Number of enclosing function bodies
    """
    decl_id: str
    name: str
    kind: str
    node: Node
    doc: DocBlock | None = None
    params: list[str] = field(default_factory=list)
    is_vararg: bool = False
    body: Block | None = None
    value: Node | None = None
    table: str | None = None
    member: str = ""
    is_method: bool = False
    depth: int = 0

    @property
    def line(self) -> int:
        return self.node.span.line


@dataclass
class ModuleInfo:
    """
    The table value a file returns at top level.

    Attributes:
        name: Local identifier bound to the table (``None`` for ``return {...}``)
        exported_members: Member name to the declaration defining it
        file_path: Source file
        aliases: Every local name that refers to the table
        declaration: The ``local M = {...}`` declaration, if any
    """
    name: str | None
    exported_members: dict[str, DeclarationInfo] = field(default_factory=dict)
    file_path: Path = field(default_factory=lambda: Path())
    aliases: set[str] = field(default_factory=set)
    declaration: DeclarationInfo | None = None


@dataclass
class LuaSymbolTable:
    """
    Aggregates all extracted symbols from one Lua file.

    Attributes:
        imports: Top-level require() calls
        declarations: Annotatable declarations in source order
        module: The detected module, or None
        file_path: Path to the source file
    """
    imports: list[LuaImportInfo] = field(default_factory=list)
    declarations: list[DeclarationInfo] = field(default_factory=list)
    module: ModuleInfo | None = None
    file_path: Path = field(default_factory=lambda: Path())

    def require_aliases(self) -> dict[str, str]:
        """Local name to required module name."""
        return {imp.alias: imp.module_path for imp in self.imports if imp.alias}

    def get_declaration(self, decl_id: str) -> DeclarationInfo | None:
        for decl in self.declarations:
            if decl.decl_id == decl_id:
                return decl
        return None


_NESTED_BLOCK_TYPES = (Do, While, Repeat, NumericFor, GenericFor)


class LuaSymbolExtractor:
    """
    Extracts declarations, requires and the module from a parsed chunk.

    Attributes:
        file_path: Path of the file being analysed
    """

    def __init__(self, file_path: Path) -> None:
        self.file_path = Path(file_path)
        self._imports: list[LuaImportInfo] = []
        self._declarations: list[DeclarationInfo] = []
        self._module: ModuleInfo | None = None

    def visit(self, chunk: Chunk) -> None:
        self._collect_imports(chunk)
        self._visit_block(chunk.body, depth=0)
        self._module = self._detect_module(chunk)
        self._declarations.sort(key=lambda d: d.node.span.start)

    def get_symbol_table(self) -> LuaSymbolTable:
        return LuaSymbolTable(
            imports=self._imports,
            declarations=self._declarations,
            module=self._module,
            file_path=self.file_path,
        )

    # ------------------------------------------------------------------
    # Requires
    # ------------------------------------------------------------------

    def _collect_imports(self, chunk: Chunk) -> None:
        aliases: dict[int, str] = {}
        for statement in chunk.body.body:
            if (
                isinstance(statement, Assignment)
                and len(statement.targets) == 1
                and len(statement.values) == 1
                and isinstance(statement.values[0], Require)
                and isinstance(statement.targets[0], Identifier)
            ):
                aliases[id(statement.values[0])] = statement.targets[0].name
        for req in chunk.requires:
            self._imports.append(LuaImportInfo(
                module_path=req.module_name,
                alias=aliases.get(id(req)),
                line_number=req.span.line,
                is_relative=req.module_name.startswith("."),
            ))

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def _visit_block(self, block: Block | None, depth: int) -> None:
        if block is None:
            return
        for statement in block.body:
            self._visit_statement(statement, depth)

    def _visit_statement(self, statement: Node, depth: int) -> None:
        if isinstance(statement, FunctionDecl):
            self._declarations.append(DeclarationInfo(
                decl_id=statement.decl_id,
                name=statement.name,
                kind="function",
                node=statement,
                doc=statement.doc,
                params=list(statement.params),
                is_vararg=statement.is_vararg,
                body=statement.body,
                table=statement.table,
                member=statement.member,
                is_method=isinstance(statement, MethodDecl),
                depth=depth,
            ))
            self._visit_block(statement.body, depth + 1)
            return

        if isinstance(statement, Assignment):
            value = statement.values[0] if len(statement.values) == 1 else None
            name = statement.name
            if (
                isinstance(value, FunctionExpr)
                and len(statement.targets) == 1
                and name is not None
            ):
                table, _, member = name.rpartition(".")
                self._declarations.append(DeclarationInfo(
                    decl_id=statement.decl_id,
                    name=name,
                    kind="function",
                    node=statement,
                    doc=statement.doc,
                    params=list(value.params),
                    is_vararg=value.is_vararg,
                    body=value.body,
                    table=table or None,
                    member=member,
                    depth=depth,
                ))
                self._visit_block(value.body, depth + 1)
                return

        if isinstance(statement, If):
            for condition, block in statement.clauses:
                self._scan_expressions(condition, depth)
                self._visit_block(block, depth)
            self._visit_block(statement.orelse, depth)
            return
        if isinstance(statement, _NESTED_BLOCK_TYPES):
            for child in statement.children():
                if isinstance(child, Block):
                    self._visit_block(child, depth)
                else:
                    self._scan_expressions(child, depth)
            return
        self._scan_expressions(statement, depth)

    def _scan_expressions(self, node: Node, depth: int) -> None:
        """Look for declarations inside function expressions."""
        for sub in walk(node, skip_functions=True):
            if isinstance(sub, FunctionExpr):
                self._visit_block(sub.body, depth + 1)

    # ------------------------------------------------------------------
    # Module detection
    # ------------------------------------------------------------------

    def _detect_module(self, chunk: Chunk) -> ModuleInfo | None:
        statements = chunk.body.body
        return_index = None
        for i, statement in enumerate(statements):
            if isinstance(statement, ModuleReturn):
                return_index = i
        if return_index is None:
            return None
        ret = statements[return_index]
        if len(ret.values) != 1:
            return None
        value = ret.values[0]

        if isinstance(value, TableConstructor):
            return self._module_from_literal(value)
        if not isinstance(value, Identifier):
            return None

        # Follow renames back to the local that received the table
        aliases = [value.name]
        current = value.name
        declaration: Assignment | None = None
        declaration_index = 0
        for index in range(return_index - 1, -1, -1):
            statement = statements[index]
            if not isinstance(statement, Assignment) or len(statement.targets) != 1:
                continue
            target = statement.targets[0]
            if not isinstance(target, Identifier) or target.name != current:
                continue
            source = statement.values[0] if statement.values else None
            if (
                declaration is None
                and isinstance(source, Identifier)
                and source.name not in aliases
            ):
                current = source.name
                aliases.append(current)
                continue
            # Later reassignments of the table keep the original local binding
            declaration = statement
            declaration_index = index
            if statement.is_local:
                break

        if declaration is None:
            return None

        module = ModuleInfo(name=current, file_path=self.file_path, aliases=set(aliases))
        module.declaration = DeclarationInfo(
            decl_id=declaration.decl_id,
            name=current,
            kind="module",
            node=declaration,
            doc=declaration.doc,
            value=declaration.values[0] if declaration.values else None,
        )
        self._declarations.append(module.declaration)

        # A rebinding of the local starts the member set over
        for statement in statements[declaration_index:return_index]:
            if self._rebinds_module(module, statement):
                self._reset_members(module, statement.values[0] if statement.values else None)
            else:
                self._collect_member(module, statement)
        return module

    @staticmethod
    def _rebinds_module(module: ModuleInfo, statement: Node) -> bool:
        if not isinstance(statement, Assignment) or len(statement.targets) != 1:
            return False
        target = statement.targets[0]
        if not isinstance(target, Identifier) or target.name not in module.aliases:
            return False
        source = statement.values[0] if statement.values else None
        return not (isinstance(source, Identifier) and source.name in module.aliases)

    def _reset_members(self, module: ModuleInfo, source: Node | None) -> None:
        module.exported_members = {}
        if not isinstance(source, TableConstructor):
            return
        for table_field in source.fields:
            if table_field.name is not None:
                module.exported_members[table_field.name] = self._field_declaration(
                    module.name, table_field
                )

    def _field_declaration(self, table: str, table_field: TableField) -> DeclarationInfo:
        value = table_field.value
        decl = DeclarationInfo(
            decl_id=f"{table}.{table_field.name}:{table_field.span.line}",
            name=f"{table}.{table_field.name}",
            kind="field",
            node=table_field,
            doc=table_field.doc,
            value=value,
            table=table,
            member=table_field.name,
        )
        if isinstance(value, FunctionExpr):
            decl.params = list(value.params)
            decl.is_vararg = value.is_vararg
            decl.body = value.body
        return decl

    def _collect_member(self, module: ModuleInfo, statement: Node) -> None:
        if isinstance(statement, FunctionDecl):
            if statement.table in module.aliases:
                decl = self._find_declaration(statement.decl_id)
                if decl is not None:
                    module.exported_members[statement.member] = decl
            return
        if not isinstance(statement, Assignment) or len(statement.targets) != 1:
            return
        target = statement.targets[0]
        if not (
            isinstance(target, Index)
            and target.name is not None
            and isinstance(target.obj, Identifier)
            and target.obj.name in module.aliases
        ):
            return
        decl = self._find_declaration(statement.decl_id)
        if decl is None:
            decl = DeclarationInfo(
                decl_id=statement.decl_id,
                name=expression_name(target) or target.name,
                kind="value",
                node=statement,
                doc=statement.doc,
                value=statement.values[0] if statement.values else None,
                table=target.obj.name,
                member=target.name,
            )
            self._declarations.append(decl)
        module.exported_members[target.name] = decl

    def _module_from_literal(self, table: TableConstructor) -> ModuleInfo:
        module = ModuleInfo(name=None, file_path=self.file_path)
        by_name = {d.name: d for d in self._declarations if d.depth == 0}
        for table_field in table.fields:
            if table_field.name is None:
                continue
            value = table_field.value
            target = expression_name(value) if value is not None else None
            if target is not None and target in by_name:
                module.exported_members[table_field.name] = by_name[target]
            else:
                module.exported_members[table_field.name] = self._field_declaration(
                    "<module>", table_field
                )
        return module

    def _find_declaration(self, decl_id: str) -> DeclarationInfo | None:
        for decl in self._declarations:
            if decl.decl_id == decl_id:
                return decl
        return None


def extract_symbols(chunk: Chunk, file_path: Path) -> LuaSymbolTable:
    """Convenience wrapper around ``LuaSymbolExtractor``."""
    extractor = LuaSymbolExtractor(file_path)
    extractor.visit(chunk)
    return extractor.get_symbol_table()
