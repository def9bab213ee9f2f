"""Type inference with graded certainty.

The engine walks one parsed file and assigns a ``TypeFact`` (a type
expression plus a ``Certainty``) to every parameter, return slot and
binding of every annotatable declaration. Facts come from:

- literals and operators, joined with ``join``;
- the external catalogue of standard-library and host-API signatures;
- functions of the same file, resolved on demand;
- members of other project files, read from the ``ProjectContext``
  snapshot of the previous pass;
- how a parameter is used in the body (always ``VARIANT_LIKELY``);
- annotations already in the source, which seed an ``UNCERTAIN`` fact
  and become ``CERTAIN`` only when the body corroborates them.

Each candidate type of a slot is kept as a ``Variant``; the slot's fact
is the union of its known variants with the joined certainty.

Example:
    >>> engine = InferenceEngine()
    >>> facts = engine.infer(parse_result, context)
    >>> fn = facts.declarations["add:1"]
    >>> fn.params["a"]
    TypeFact(type_expr=NamedType(name='number'), certainty=<Certainty.UNCERTAIN: 1>)
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import IntEnum
from pathlib import Path
from typing import Any, Iterable, Mapping, TYPE_CHECKING

from lua_annotator.processors.annotations import (
    ParamAnnotation,
    ReturnAnnotation,
    VarargAnnotation,
)
from lua_annotator.processors.lua_ast import (
    Assignment,
    BinaryOp,
    Block,
    Call,
    FunctionDecl,
    FunctionExpr,
    GenericFor,
    Identifier,
    If,
    Index,
    Literal,
    Node,
    NumericFor,
    Paren,
    Repeat,
    Require,
    Return,
    TableConstructor,
    UnaryOp,
    Vararg,
    While,
    Do,
    expression_name,
    walk,
)
from lua_annotator.processors.lua_symbol_extractor import DeclarationInfo
from lua_annotator.processors.lua_types import (
    ANY,
    BOOLEAN,
    FUNCTION,
    INTEGER,
    NIL,
    NUMBER,
    STRING,
    TABLE,
    ArrayType,
    FunctionParam,
    FunctionType,
    NamedType,
    RawType,
    TypeExpr,
    is_subtype,
    make_union,
    strip_nil,
    types_equivalent,
)
from lua_annotator.utils.logger import get_logger

if TYPE_CHECKING:
    from lua_annotator.processors.lua_processor import ParseResult

logger = get_logger("lua_annotator.processors.type_inference")

ARITHMETIC_OPERATORS = frozenset({"+", "-", "*", "/", "%", "^", "//"})
INTEGER_PRESERVING = frozenset({"+", "-", "*", "//", "%"})
COMPARISON_OPERATORS = frozenset({"==", "~=", "<", ">", "<=", ">="})
BITWISE_OPERATORS = frozenset({"&", "|", "~", "<<", ">>"})


class Certainty(IntEnum):
    """Confidence in an inferred type, ordered UNKNOWN < UNCERTAIN < CERTAIN."""
    UNKNOWN = 0
    UNCERTAIN = 1
    CERTAIN = 2


def join(*grades: Certainty) -> Certainty:
    """Combine certainties of the operands of one operation.

    Certain only if every operand is Certain, Unknown only if every operand
    is Unknown, Uncertain otherwise. Symmetric and associative.

    Raises:
        ValueError: If called without grades.
    """
    if not grades:
        raise ValueError("join() needs at least one certainty")
    if all(g is Certainty.CERTAIN for g in grades):
        return Certainty.CERTAIN
    if all(g is Certainty.UNKNOWN for g in grades):
        return Certainty.UNKNOWN
    return Certainty.UNCERTAIN


class VariantQualifier(IntEnum):
    VARIANT_UNKNOWN = 0
    VARIANT_LIKELY = 1
    VARIANT_CERTAIN = 2

    @classmethod
    def from_certainty(cls, certainty: Certainty) -> "VariantQualifier":
        return cls(int(certainty))

    @property
    def certainty(self) -> Certainty:
        return Certainty(int(self))


@dataclass(frozen=True)
class TypeFact:
    type_expr: TypeExpr
    certainty: Certainty

    def render(self) -> str:
        return self.type_expr.render()


UNKNOWN_FACT = TypeFact(ANY, Certainty.UNKNOWN)


def certain(type_expr: TypeExpr) -> TypeFact:
    return TypeFact(type_expr, Certainty.CERTAIN)


@dataclass(frozen=True)
class Variant:
    """One candidate type for a slot."""
    type_expr: TypeExpr
    qualifier: VariantQualifier


@dataclass
class SlotFacts:
    """Accumulates the variants observed for one slot."""
    variants: list[Variant] = field(default_factory=list)

    def add(self, fact: TypeFact) -> None:
        qualifier = VariantQualifier.from_certainty(fact.certainty)
        for i, existing in enumerate(self.variants):
            if existing.type_expr == fact.type_expr:
                if qualifier > existing.qualifier:
                    self.variants[i] = Variant(fact.type_expr, qualifier)
                return
        self.variants.append(Variant(fact.type_expr, qualifier))

    def add_likely(self, type_expr: TypeExpr) -> None:
        self.add(TypeFact(type_expr, Certainty.UNCERTAIN))

    def combined(self) -> TypeFact:
        if not self.variants:
            return UNKNOWN_FACT
        known = [v.type_expr for v in self.variants if v.qualifier > VariantQualifier.VARIANT_UNKNOWN]
        type_expr = make_union(*known) if known else ANY
        return TypeFact(type_expr, join(*(v.qualifier.certainty for v in self.variants)))

    def conflicts(self) -> tuple[TypeExpr, ...]:
        """Likely variants of equal strength that exclude each other."""
        likely = [
            v.type_expr for v in self.variants
            if v.qualifier is VariantQualifier.VARIANT_LIKELY and v.type_expr != NIL
        ]
        for i, a in enumerate(likely):
            for b in likely[i + 1:]:
                if not is_subtype(a, b) and not is_subtype(b, a):
                    return tuple(likely)
        return ()


@dataclass
class DeclarationFacts:
    """Inferred facts for one declaration.

    Attributes:
        decl_id: Declaration id (``name:line``)
        name: Declaration name as written
        kind: ``function``, ``value``, ``field`` or ``module``
        params: Parameter name to fact, in declaration order
        returns: One fact per return slot
        no_return: True when no ``return`` in the body yields a value
        binding: Fact for the declared name itself
        conflicts: Slot key to the disagreeing likely types
    """
    decl_id: str
    name: str
    kind: str
    params: dict[str, TypeFact] = field(default_factory=dict)
    returns: list[TypeFact] = field(default_factory=list)
    no_return: bool = False
    binding: TypeFact = UNKNOWN_FACT
    conflicts: dict[str, tuple[TypeExpr, ...]] = field(default_factory=dict)

    def grades(self) -> dict[str, Certainty]:
        grades = {f"param:{name}": fact.certainty for name, fact in self.params.items()}
        grades.update({f"return:{i}": fact.certainty for i, fact in enumerate(self.returns, 1)})
        grades["binding"] = self.binding.certainty
        return grades

    def snapshot(self) -> tuple:
        return (tuple(self.params.items()), tuple(self.returns), self.no_return, self.binding)


@dataclass
class FileFacts:
    """All declaration facts of one file for one pass."""
    file_path: Path
    declarations: dict[str, DeclarationFacts] = field(default_factory=dict)
    members: dict[str, str] = field(default_factory=dict)

    def member(self, name: str) -> DeclarationFacts | None:
        decl_id = self.members.get(name)
        return self.declarations.get(decl_id) if decl_id is not None else None

    def snapshot(self) -> tuple:
        return tuple(sorted((k, v.snapshot()) for k, v in self.declarations.items()))


# ============================================================================
# Pass comparison
# ============================================================================


def find_regressions(
    previous: Mapping[Path, FileFacts],
    current: Mapping[Path, FileFacts]
) -> list[str]:
    """List ``path:decl:slot`` keys whose certainty dropped between passes."""
    dropped = []
    for path, cur_file in current.items():
        prev_file = previous.get(path)
        if prev_file is None:
            continue
        for decl_id, cur in cur_file.declarations.items():
            prev = prev_file.declarations.get(decl_id)
            if prev is None:
                continue
            prev_grades = prev.grades()
            for key, grade in cur.grades().items():
                if key in prev_grades and grade < prev_grades[key]:
                    dropped.append(f"{path}:{decl_id}:{key}")
    return dropped


def merge_new_certain(
    previous: Mapping[Path, FileFacts],
    current: Mapping[Path, FileFacts]
) -> dict[Path, FileFacts]:
    """Fold facts that became Certain in ``current`` into ``previous``."""
    merged: dict[Path, FileFacts] = {}
    for path, prev_file in previous.items():
        cur_file = current.get(path)
        declarations = dict(prev_file.declarations)
        if cur_file is not None:
            for decl_id, cur in cur_file.declarations.items():
                prev = declarations.get(decl_id)
                if prev is None:
                    declarations[decl_id] = cur
                    continue
                params = dict(prev.params)
                for name, fact in cur.params.items():
                    old = params.get(name)
                    if fact.certainty is Certainty.CERTAIN and (old is None or old.certainty < fact.certainty):
                        params[name] = fact
                returns = list(prev.returns)
                for i, fact in enumerate(cur.returns):
                    if fact.certainty is not Certainty.CERTAIN:
                        continue
                    if i >= len(returns):
                        returns.append(fact)
                    elif returns[i].certainty < fact.certainty:
                        returns[i] = fact
                binding = prev.binding
                if cur.binding.certainty is Certainty.CERTAIN and binding.certainty < Certainty.CERTAIN:
                    binding = cur.binding
                declarations[decl_id] = replace(prev, params=params, returns=returns, binding=binding)
        merged[path] = FileFacts(path, declarations, dict(prev_file.members))
    return merged


# ============================================================================
# Engine
# ============================================================================


@dataclass
class _Callee:
    returns: list[TypeFact]
    params: list[tuple[str, TypeExpr]] = field(default_factory=list)


def literal_type(node: Literal) -> TypeExpr:
    if node.kind == "string":
        return STRING
    if node.kind == "boolean":
        return BOOLEAN
    if node.kind == "nil":
        return NIL
    raw = node.raw.lower()
    if raw.startswith("0x"):
        return NUMBER if ("." in raw or "p" in raw) else INTEGER
    return NUMBER if any(c in raw for c in ".e") else INTEGER


class InferenceEngine:
    """Infers declaration facts for one file at a time.

    Attributes:
        catalogue: Read-only lookup of external API signatures (may be None)
    """

    def __init__(self, catalogue: Any = None) -> None:
        self.catalogue = catalogue

    def infer(self, parse_result: "ParseResult", context: Any = None) -> FileFacts:
        """Infer facts for every declaration of a parsed file.

        Args:
            parse_result: Successful result of ``LuaProcessor.process_source``.
            context: ``ProjectContext`` read for cross-file facts, or None.

        Returns:
            FileFacts keyed by declaration id.
        """
        facts = _FileInference(self, parse_result, context).run()
        logger.debug(f"Inferred {len(facts.declarations)} declarations in {parse_result.file_path}")
        return facts


class _FileInference:
    """State for inferring one file in one pass."""

    def __init__(self, engine: InferenceEngine, parse_result: "ParseResult", context: Any) -> None:
        self.catalogue = engine.catalogue
        self.context = context
        self.path = parse_result.file_path
        self.symbols = parse_result.symbols
        self.module = self.symbols.module
        self.requires = self.symbols.require_aliases()
        self.aliases: dict[str, TypeExpr] = dict(parse_result.aliases)
        if context is not None:
            self.aliases = {**context.aliases, **self.aliases}
        self.module_aliases = self.module.aliases if self.module else set()
        self.class_type: TypeExpr = TABLE
        if context is not None:
            class_name = context.class_name_for(self.path)
            if class_name:
                self.class_type = NamedType(class_name)

        self.functions: dict[str, DeclarationInfo] = {}
        for decl in self.symbols.declarations:
            if decl.body is not None:
                self.functions.setdefault(self._canonical(decl.name.replace(":", ".")), decl)
        if self.module:
            for member, decl in self.module.exported_members.items():
                if decl.body is not None and self.module.name:
                    self.functions.setdefault(f"{self.module.name}.{member}", decl)

        self.file_values: dict[str, Node] = {}
        if parse_result.chunk is not None:
            for statement in parse_result.chunk.body.body:
                if (
                    isinstance(statement, Assignment)
                    and len(statement.targets) == 1
                    and len(statement.values) == 1
                    and isinstance(statement.targets[0], Identifier)
                ):
                    self.file_values[statement.targets[0].name] = statement.values[0]

        self._memo: dict[str, DeclarationFacts] = {}
        self._in_progress: set[str] = set()
        self._resolving: set[str] = set()
        self._current: list[DeclarationInfo] = []

    def run(self) -> FileFacts:
        result = FileFacts(self.path)
        for decl in self.symbols.declarations:
            facts = self._declaration_facts(decl)
            if facts is not None:
                result.declarations[decl.decl_id] = facts
        if self.module:
            for member, decl in self.module.exported_members.items():
                facts = self._declaration_facts(decl)
                if facts is not None:
                    result.declarations[decl.decl_id] = facts
                    result.members[member] = decl.decl_id
        return result

    def _canonical(self, name: str) -> str:
        root, dot, rest = name.partition(".")
        if self.module and self.module.name and root in self.module_aliases:
            return f"{self.module.name}{dot}{rest}"
        return name

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def _declaration_facts(self, decl: DeclarationInfo) -> DeclarationFacts | None:
        if decl.decl_id in self._memo:
            return self._memo[decl.decl_id]
        if decl.decl_id in self._in_progress:
            return None
        self._in_progress.add(decl.decl_id)
        try:
            if decl.body is not None:
                facts = self._infer_function(decl)
            elif decl.kind == "module":
                facts = DeclarationFacts(decl.decl_id, decl.name, decl.kind, binding=certain(self.class_type))
            else:
                binding = self._expr(decl.value, {}) if decl.value is not None else UNKNOWN_FACT
                facts = DeclarationFacts(decl.decl_id, decl.name, decl.kind, binding=binding)
        finally:
            self._in_progress.discard(decl.decl_id)
        self._memo[decl.decl_id] = facts
        return facts

    def _infer_function(self, decl: DeclarationInfo) -> DeclarationFacts:
        self._current.append(decl)
        try:
            return self._infer_function_body(decl)
        finally:
            self._current.pop()

    def _infer_function_body(self, decl: DeclarationInfo) -> DeclarationFacts:
        doc = decl.doc
        param_annotations: dict[str, TypeExpr] = {}
        return_annotations: list[TypeExpr] = []
        if doc is not None:
            for ann in doc.annotations:
                if isinstance(ann, ParamAnnotation) and ann.effective_type is not None:
                    param_annotations.setdefault(ann.name, ann.effective_type)
                elif isinstance(ann, VarargAnnotation) and ann.type_expr is not None:
                    param_annotations.setdefault("...", ann.type_expr)
                elif isinstance(ann, ReturnAnnotation):
                    return_annotations.extend(slot.type_expr for slot in ann.slots)

        names = list(decl.params) + (["..."] if decl.is_vararg else [])
        usage = self._param_usage(decl.body, names)
        facts = DeclarationFacts(decl.decl_id, decl.name, "function")

        for name in names:
            slot = usage.get(name, SlotFacts())
            annotated = param_annotations.get(name)
            if annotated is not None and not isinstance(annotated, RawType):
                if not slot.variants:
                    fact = TypeFact(annotated, Certainty.UNCERTAIN)
                elif all(is_subtype(v.type_expr, annotated, self.aliases) for v in slot.variants):
                    fact = certain(annotated)
                else:
                    fact = slot.combined()
            else:
                fact = slot.combined()
            facts.params[name] = fact
            conflicts = slot.conflicts()
            if conflicts:
                facts.conflicts[f"param:{name}"] = conflicts

        env: dict[str, TypeFact] = dict(facts.params)
        if decl.is_method:
            if decl.table in self.module_aliases:
                env["self"] = certain(self.class_type)
            else:
                env["self"] = TypeFact(TABLE, Certainty.UNCERTAIN)

        returns: list[tuple[bool, list[TypeFact]]] = []
        self._scan_block(decl.body, env, returns)

        if not any(has_values for has_values, _ in returns):
            facts.no_return = True
            facts.returns = [TypeFact(t, Certainty.UNCERTAIN) for t in return_annotations]
        else:
            rows = [row for _, row in returns]
            width = max(len(row) for row in rows)
            slots = [SlotFacts() for _ in range(width)]
            for row in rows:
                for i in range(width):
                    slots[i].add(row[i] if i < len(row) else certain(NIL))
            for i, slot in enumerate(slots):
                fact = slot.combined()
                annotated = return_annotations[i] if i < len(return_annotations) else None
                if annotated is not None and not isinstance(annotated, RawType):
                    if fact.certainty is Certainty.UNKNOWN:
                        fact = TypeFact(annotated, Certainty.UNCERTAIN)
                    elif types_equivalent(fact.type_expr, annotated, self.aliases):
                        fact = certain(fact.type_expr)
                facts.returns.append(fact)
                conflicts = slot.conflicts()
                if conflicts:
                    facts.conflicts[f"return:{i + 1}"] = conflicts

        facts.binding = certain(FunctionType(
            params=tuple(
                FunctionParam(name, fact.type_expr if fact.certainty > Certainty.UNKNOWN else None)
                for name, fact in facts.params.items()
            ),
            returns=tuple(f.type_expr for f in facts.returns) if not facts.no_return else (),
        ))
        return facts

    def _scan_block(
        self,
        block: Block | None,
        env: dict[str, TypeFact],
        returns: list[tuple[bool, list[TypeFact]]],
    ) -> set[str]:
        """Walk statements in order, binding names and evaluating each return in place.

        Returns the names declared local directly in ``block``.
        """
        declared: set[str] = set()
        if block is None:
            return declared
        for statement in block.body:
            if isinstance(statement, Return):
                returns.append((bool(statement.values), self._expr_list(statement.values, env)))
            elif isinstance(statement, Assignment):
                values = self._expr_list(statement.values, env) if statement.values else []
                for i, target in enumerate(statement.targets):
                    if not isinstance(target, Identifier):
                        continue
                    if statement.is_local:
                        declared.add(target.name)
                    elif target.name not in env:
                        continue
                    env[target.name] = values[i] if i < len(values) else certain(NIL)
            elif isinstance(statement, FunctionDecl):
                if statement.is_local:
                    env[statement.name] = certain(FUNCTION)
                    declared.add(statement.name)
            elif isinstance(statement, If):
                blocks = [body for _, body in statement.clauses]
                if statement.orelse is not None:
                    blocks.append(statement.orelse)
                self._scan_branches(blocks, env, returns, exhaustive=statement.orelse is not None)
            elif isinstance(statement, NumericFor):
                self._scan_branches(
                    [statement.body], env, returns, exhaustive=False,
                    loop_vars={statement.var: certain(NUMBER)},
                )
            elif isinstance(statement, GenericFor):
                self._scan_branches(
                    [statement.body], env, returns, exhaustive=False,
                    loop_vars={name: UNKNOWN_FACT for name in statement.names},
                )
            elif isinstance(statement, While):
                self._scan_branches([statement.body], env, returns, exhaustive=False)
            elif isinstance(statement, (Repeat, Do)):
                self._scan_branches([statement.body], env, returns, exhaustive=True)
        return declared

    def _scan_branches(
        self,
        blocks: list[Block],
        env: dict[str, TypeFact],
        returns: list[tuple[bool, list[TypeFact]]],
        exhaustive: bool,
        loop_vars: dict[str, TypeFact] | None = None,
    ) -> None:
        """Scan alternative blocks on copies of ``env``, then merge the names they rebind.

        When ``exhaustive`` is false control may also skip every block, so
        the binding from before stays one of the candidates.
        """
        outcomes: list[dict[str, TypeFact]] = []
        for block in blocks:
            branch_env = {**env, **(loop_vars or {})}
            declared = self._scan_block(block, branch_env, returns)
            outcomes.append({
                name: fact for name, fact in branch_env.items()
                if name in env and name not in declared and name not in (loop_vars or {})
            })
        for name, before in list(env.items()):
            after = [outcome.get(name, before) for outcome in outcomes]
            if not exhaustive:
                after.append(before)
            if all(fact == before for fact in after):
                continue
            env[name] = TypeFact(
                make_union(*(fact.type_expr for fact in after)),
                join(*(fact.certainty for fact in after)),
            )

    # ------------------------------------------------------------------
    # Parameter usage
    # ------------------------------------------------------------------

    def _param_usage(self, body: Block | None, names: list[str]) -> dict[str, SlotFacts]:
        slots = {name: SlotFacts() for name in names}
        nilable: set[str] = set()
        if body is None:
            return slots

        def param_of(node: Node | None) -> str | None:
            if isinstance(node, Paren):
                node = node.inner
            if isinstance(node, Identifier) and node.name in slots:
                return node.name
            return None

        for node in walk(body):
            if isinstance(node, BinaryOp):
                sides = ((node.left, node.right), (node.right, node.left))
                for side, other in sides:
                    name = param_of(side)
                    if name is None:
                        continue
                    if node.op in ARITHMETIC_OPERATORS:
                        slots[name].add_likely(NUMBER)
                    elif node.op == "..":
                        slots[name].add_likely(STRING)
                    elif node.op in BITWISE_OPERATORS:
                        slots[name].add_likely(INTEGER)
                    elif node.op in COMPARISON_OPERATORS and isinstance(other, Literal):
                        if other.kind == "nil":
                            nilable.add(name)
                        elif node.op in ("==", "~=") or other.kind in ("number", "string"):
                            slots[name].add_likely(literal_type(other))
            elif isinstance(node, UnaryOp) and node.op == "-":
                name = param_of(node.operand)
                if name is not None:
                    slots[name].add_likely(NUMBER)
            elif isinstance(node, Index):
                name = param_of(node.obj)
                if name is not None:
                    slots[name].add_likely(TABLE)
            elif isinstance(node, Call):
                name = param_of(node.callee)
                if name is not None:
                    if node.method is None:
                        slots[name].add_likely(FUNCTION)
                    elif self._catalogue_entry(f"string.{node.method}") is not None:
                        slots[name].add_likely(STRING)
                    else:
                        slots[name].add_likely(TABLE)
                self._usage_from_catalogue_call(node, param_of, slots)
            elif isinstance(node, Assignment):
                for target, value in zip(node.targets, node.values):
                    name = param_of(target)
                    if (
                        name is not None
                        and isinstance(value, BinaryOp)
                        and value.op == "or"
                        and param_of(value.left) == name
                        and isinstance(value.right, Literal)
                        and value.right.kind != "nil"
                    ):
                        slots[name].add_likely(literal_type(value.right))
                        nilable.add(name)

        for name in nilable:
            if slots[name].variants:
                slots[name].add_likely(NIL)
        return slots

    def _usage_from_catalogue_call(self, call: Call, param_of, slots: dict[str, SlotFacts]) -> None:
        if call.method is not None:
            return
        name = expression_name(call.callee)
        if name is None or self._is_shadowed(name):
            return
        entry = self._catalogue_entry(name)
        if entry is None or not entry.params:
            return
        for i, arg in enumerate(call.args):
            param = param_of(arg)
            if param is None:
                continue
            if i < len(entry.params):
                param_type = entry.params[i][1]
            elif entry.params[-1][0] == "...":
                param_type = entry.params[-1][1]
            else:
                continue
            param_type = strip_nil(param_type)
            if param_type not in (ANY, NIL):
                slots[param].add_likely(param_type)

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _expr_list(self, values: list[Node], env: dict[str, TypeFact]) -> list[TypeFact]:
        """Facts for an expression list; a trailing call expands to all its returns."""
        if not values:
            return []
        facts = [self._expr(v, env) for v in values[:-1]]
        last = values[-1]
        if isinstance(last, Call) and not isinstance(last, Require):
            facts.extend(self._call_results(last, env))
        elif isinstance(last, Vararg):
            facts.append(env.get("...", UNKNOWN_FACT))
        else:
            facts.append(self._expr(last, env))
        return facts

    def _expr(self, node: Node, env: dict[str, TypeFact]) -> TypeFact:
        if isinstance(node, Literal):
            return certain(literal_type(node))
        if isinstance(node, Paren):
            return self._expr(node.inner, env)
        if isinstance(node, Vararg):
            return env.get("...", UNKNOWN_FACT)
        if isinstance(node, Identifier):
            return self._lookup(node.name, env)
        if isinstance(node, Require):
            return self._module_fact(node.module_name)
        if isinstance(node, Call):
            results = self._call_results(node, env)
            return results[0] if results else UNKNOWN_FACT
        if isinstance(node, Index):
            return self._index_fact(node, env)
        if isinstance(node, BinaryOp):
            return self._binary_fact(node, env)
        if isinstance(node, UnaryOp):
            operand = self._expr(node.operand, env)
            if node.op == "not":
                return certain(BOOLEAN)
            if node.op == "-":
                result = INTEGER if operand.type_expr == INTEGER else NUMBER
            else:
                result = INTEGER
            return TypeFact(result, join(operand.certainty, Certainty.CERTAIN))
        if isinstance(node, TableConstructor):
            return self._table_fact(node, env)
        if isinstance(node, FunctionExpr):
            return certain(FUNCTION)
        return UNKNOWN_FACT

    def _binary_fact(self, node: BinaryOp, env: dict[str, TypeFact]) -> TypeFact:
        left = self._expr(node.left, env)
        right = self._expr(node.right, env)
        grade = join(left.certainty, right.certainty)
        op = node.op
        if op in ARITHMETIC_OPERATORS:
            if op in INTEGER_PRESERVING and left.type_expr == INTEGER and right.type_expr == INTEGER:
                return TypeFact(INTEGER, grade)
            return TypeFact(NUMBER, grade)
        if op == "..":
            return TypeFact(STRING, grade)
        if op in COMPARISON_OPERATORS:
            return TypeFact(BOOLEAN, grade)
        if op in BITWISE_OPERATORS:
            return TypeFact(INTEGER, grade)
        if op == "or":
            if left.certainty is Certainty.UNKNOWN:
                return TypeFact(right.type_expr, grade)
            return TypeFact(make_union(strip_nil(left.type_expr), right.type_expr), grade)
        if op == "and":
            return TypeFact(right.type_expr, min(grade, Certainty.UNCERTAIN))
        return UNKNOWN_FACT

    def _table_fact(self, node: TableConstructor, env: dict[str, TypeFact]) -> TypeFact:
        if node.fields and all(f.key is None and f.name is None for f in node.fields):
            if all(isinstance(f.value, Literal) and f.value.kind != "nil" for f in node.fields):
                element = make_union(*(literal_type(f.value) for f in node.fields))
                return certain(ArrayType(element))
        return certain(TABLE)

    def _lookup(self, name: str, env: dict[str, TypeFact]) -> TypeFact:
        if name in env:
            return env[name]
        if name in self.module_aliases:
            return certain(self.class_type)
        if name in self.requires:
            return self._module_fact(self.requires[name])
        if name in self.file_values and name not in self._resolving:
            self._resolving.add(name)
            try:
                return self._expr(self.file_values[name], {})
            finally:
                self._resolving.discard(name)
        if name in self.functions:
            return certain(FUNCTION)
        entry = self._catalogue_entry(name)
        if entry is not None:
            return certain(entry.binding_type())
        return UNKNOWN_FACT

    def _index_fact(self, node: Index, env: dict[str, TypeFact]) -> TypeFact:
        if node.name is None:
            return UNKNOWN_FACT
        obj = node.obj
        if isinstance(obj, Identifier) and obj.name not in env:
            if obj.name in self.module_aliases and self.module is not None:
                decl = self.module.exported_members.get(node.name)
                if decl is not None:
                    facts = self._declaration_facts(decl)
                    return facts.binding if facts is not None else UNKNOWN_FACT
            if obj.name in self.requires and self._is_project_module(self.requires[obj.name]):
                facts = self._remote_member(self.requires[obj.name], node.name)
                return facts.binding if facts is not None else UNKNOWN_FACT
        if isinstance(obj, Require):
            facts = self._remote_member(obj.module_name, node.name)
            return facts.binding if facts is not None else UNKNOWN_FACT
        name = expression_name(node)
        if name is not None and not self._is_shadowed(name):
            entry = self._catalogue_entry(name)
            if entry is not None:
                return certain(entry.binding_type())
        return UNKNOWN_FACT

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    def _call_results(self, call: Call, env: dict[str, TypeFact]) -> list[TypeFact]:
        if isinstance(call, Require):
            return [self._module_fact(call.module_name)]
        callee = self._resolve_callee(call, env)
        if callee is None or not callee.returns:
            return [UNKNOWN_FACT]
        results = []
        for fact in callee.returns:
            if fact.certainty is Certainty.UNKNOWN:
                results.append(UNKNOWN_FACT)
            else:
                results.append(TypeFact(fact.type_expr, join(fact.certainty, Certainty.CERTAIN)))
        return results

    def _resolve_callee(self, call: Call, env: dict[str, TypeFact]) -> _Callee | None:
        callee = call.callee
        if call.method is not None:
            return self._resolve_method(call, env)

        if isinstance(callee, Index) and isinstance(callee.obj, Require) and callee.name:
            return self._from_facts(self._remote_member(callee.obj.module_name, callee.name))

        name = expression_name(callee)
        if name is None:
            return None

        if not self._is_shadowed(name):
            entry = self._catalogue_entry(name)
            if entry is not None:
                return _Callee([certain(t) for t in entry.returns], list(entry.params))

        decl = self.functions.get(self._canonical(name))
        if decl is not None:
            return self._from_facts(self._declaration_facts(decl))

        root, _, rest = name.partition(".")
        if rest and "." not in rest and root in self.requires and root not in env:
            return self._from_facts(self._remote_member(self.requires[root], rest))
        return None

    def _resolve_method(self, call: Call, env: dict[str, TypeFact]) -> _Callee | None:
        callee = call.callee
        method = call.method
        if isinstance(callee, Identifier):
            if callee.name == "self" and self._current:
                table = self._current[-1].table
                if table is not None:
                    decl = self.functions.get(self._canonical(f"{table}.{method}"))
                    if decl is not None:
                        return self._from_facts(self._declaration_facts(decl))
            if callee.name not in env:
                decl = self.functions.get(self._canonical(f"{callee.name}.{method}"))
                if decl is not None:
                    return self._from_facts(self._declaration_facts(decl))
                if callee.name in self.requires:
                    return self._from_facts(self._remote_member(self.requires[callee.name], method))
        receiver = self._expr(callee, env)
        if strip_nil(receiver.type_expr) == STRING:
            entry = self._catalogue_entry(f"string.{method}")
            if entry is not None:
                return _Callee([certain(t) for t in entry.returns], list(entry.params[1:]))
        return None

    @staticmethod
    def _from_facts(facts: DeclarationFacts | None) -> _Callee | None:
        if facts is None:
            return None
        params = [(name, fact.type_expr) for name, fact in facts.params.items()]
        return _Callee(list(facts.returns), params)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _is_shadowed(self, name: str) -> bool:
        root = name.partition(".")[0]
        if root in self.requires:
            return self._is_project_module(self.requires[root])
        return (
            root in self.file_values
            or root in self.module_aliases
            or any(fn.partition(".")[0] == root for fn in self.functions)
        )

    def _is_project_module(self, require_name: str) -> bool:
        return self.context is not None and self.context.resolve(require_name) is not None

    def _catalogue_entry(self, name: str):
        if self.catalogue is None:
            return None
        root, dot, rest = name.partition(".")
        # local wezterm = require("wezterm") names a host API, not a project file
        if root in self.requires and not self._is_project_module(self.requires[root]):
            name = f"{self.requires[root]}{dot}{rest}"
        return self.catalogue.lookup(name)

    def _module_fact(self, require_name: str) -> TypeFact:
        fact = self.context.module_type(require_name) if self.context is not None else None
        if fact is not None:
            return fact
        entry = self.catalogue.lookup(require_name) if self.catalogue is not None else None
        return certain(entry.binding_type()) if entry is not None else UNKNOWN_FACT

    def _remote_member(self, require_name: str, member: str) -> DeclarationFacts | None:
        if self.context is None:
            return None
        return self.context.member_facts(require_name, member)


def iter_declaration_facts(files: Iterable[FileFacts]) -> Iterable[DeclarationFacts]:
    for file_facts in files:
        yield from file_facts.declarations.values()
