"""Annotation merger.

Reconciles inferred ``TypeFact``s with the doc block already above a
declaration and produces the block's new lines. The existing text is
authoritative wherever it is not proven wrong:

=========================  ==================================================
Existing vs inferred        Result
=========================  ==================================================
absent                      inferred entry (``any`` plus TODO when Unknown)
agrees / refines            existing entry verbatim
differs only by ``nil``     existing entry plus a NOTE naming the nil relation
contradicts, Certain        existing entry demoted to ``--[[ ]]``, new entry
contradicts, Uncertain      existing entry plus ``TODO: verify`` advisory
=========================  ==================================================

New ``@param`` lines are inserted after the last existing one, new
``@return`` lines after the last existing return. Present entries are
never reordered. Advisories already in the block are not repeated, so a
second run over merged output changes nothing.

Example:
    >>> merger = AnnotationMerger()
    >>> result = merger.merge_declaration(decl, facts)
    >>> print("\\n".join(result.lines))
    --- TODO: Add description
    ---@param a number
    ---@param b number
    ---@return number
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Mapping

from lua_annotator.processors.annotations import (
    Annotation,
    ClassAnnotation,
    ParamAnnotation,
    ReturnAnnotation,
    ReturnSlot,
    TypeAnnotation,
    VarargAnnotation,
    format_block_comment,
    format_doc_line,
    format_param,
    format_return,
    format_tag_line,
)
from lua_annotator.processors.lua_symbol_extractor import DeclarationInfo
from lua_annotator.processors.lua_types import (
    ANY,
    NIL,
    RawType,
    TypeExpr,
    is_nilable,
    is_subtype,
    strip_nil,
    types_equivalent,
)
from lua_annotator.processors.type_inference import Certainty, DeclarationFacts, TypeFact
from lua_annotator.utils.logger import get_logger

logger = get_logger("lua_annotator.processors.annotation_merger")

DEFAULT_PLACEHOLDER = "TODO: Add description"


class Agreement(Enum):
    AGREE = "agree"
    OPTIONAL = "optional"
    NOT_NIL = "not-nil"
    CONTRADICT = "contradict"


class MergeOutcome(Enum):
    KEPT = "kept"
    ADDED = "added"
    REPLACED = "replaced"
    ADVISED = "advised"
    NOTED = "noted"


def classify(
    existing: TypeExpr,
    inferred: TypeExpr,
    aliases: Mapping[str, TypeExpr] | None = None
) -> Agreement:
    """Relate an existing annotation type to an inferred one.

    An unparseable existing type is never contradicted. A declared type
    lacking only the ``nil`` that inference found is ``OPTIONAL``; any
    subtype relation in either direction is agreement. The reverse of
    ``OPTIONAL``, a declared ``nil`` that inference never produces, is
    ``NOT_NIL``.
    """
    if isinstance(existing, RawType):
        return Agreement.AGREE
    if types_equivalent(existing, inferred, aliases):
        return Agreement.AGREE
    if types_equivalent(strip_nil(existing), strip_nil(inferred), aliases):
        if is_nilable(inferred) and not is_nilable(existing):
            return Agreement.OPTIONAL
        if is_nilable(existing) and not is_nilable(inferred):
            return Agreement.NOT_NIL
    if is_subtype(existing, inferred, aliases) or is_subtype(inferred, existing, aliases):
        return Agreement.AGREE
    return Agreement.CONTRADICT


@dataclass
class SlotMerge:
    """Lines for one annotated slot.

    Attributes:
        lines: Annotation lines replacing the existing entry (or the new entry)
        advisories: Comment lines to place right after them
        outcome: What happened to the slot
    """
    lines: list[str]
    advisories: list[str] = field(default_factory=list)
    outcome: MergeOutcome = MergeOutcome.KEPT

    @property
    def changed(self) -> bool:
        return self.outcome in (MergeOutcome.ADDED, MergeOutcome.REPLACED)


def unknown_advisory(subject: str) -> str:
    return format_doc_line(f"TODO: Add type and description for {subject}")


def merge(
    existing: Annotation | None,
    existing_type: TypeExpr | None,
    inferred: TypeFact,
    render: Callable[[TypeExpr], str],
    subject: str,
    aliases: Mapping[str, TypeExpr] | None = None
) -> SlotMerge:
    """Merge one slot.

    Args:
        existing: The annotation currently documenting the slot, or None.
        existing_type: Type that annotation declares for the slot.
        inferred: Fact produced by inference.
        render: Builds the live annotation line for a type.
        subject: Human name of the slot for advisories (``@param x``).
        aliases: Alias table for type comparisons.

    Returns:
        The slot's lines and advisories.
    """
    if existing is None or existing_type is None:
        if inferred.certainty is Certainty.UNKNOWN:
            return SlotMerge([render(ANY)], [unknown_advisory(subject.lstrip("@"))], MergeOutcome.ADDED)
        return SlotMerge([render(inferred.type_expr)], [], MergeOutcome.ADDED)

    lines = existing.render()
    if inferred.certainty is Certainty.UNKNOWN:
        return SlotMerge(lines)

    agreement = classify(existing_type, inferred.type_expr, aliases)
    if agreement is Agreement.AGREE:
        return SlotMerge(lines)
    if agreement is Agreement.OPTIONAL:
        note = format_doc_line(
            f"NOTE: {subject} is declared {existing_type.render()} but may be nil "
            f"(inferred {inferred.render()})"
        )
        return SlotMerge(lines, [note], MergeOutcome.NOTED)
    if agreement is Agreement.NOT_NIL:
        # Only a Certain fact can show that nil never occurs
        if inferred.certainty is not Certainty.CERTAIN:
            return SlotMerge(lines)
        note = format_doc_line(
            f"NOTE: {subject} is declared {existing_type.render()} but is never nil "
            f"(inferred {inferred.render()})"
        )
        return SlotMerge(lines, [note], MergeOutcome.NOTED)
    if inferred.certainty is Certainty.CERTAIN:
        return SlotMerge(
            [format_block_comment(lines), render(inferred.type_expr)],
            [],
            MergeOutcome.REPLACED,
        )
    advisory = format_doc_line(f"TODO: verify {subject}: inferred {inferred.render()}")
    return SlotMerge(lines, [advisory], MergeOutcome.ADVISED)


def _render_param(name: str, optional: bool = False, description: str = "") -> Callable[[TypeExpr], str]:
    def render(type_expr: TypeExpr) -> str:
        nilable = optional or (is_nilable(type_expr) and type_expr != NIL)
        shown = strip_nil(type_expr) if nilable and type_expr != NIL else type_expr
        return format_param(name, shown, nilable, description)
    return render


def _conflict_note(subject: str, types: tuple[TypeExpr, ...]) -> str:
    return format_doc_line(f"NOTE: {subject} is used as {', '.join(t.render() for t in types)}")


@dataclass
class MergeResult:
    """New doc block of one declaration."""
    lines: list[str]
    changed: bool
    outcomes: dict[str, MergeOutcome] = field(default_factory=dict)


class AnnotationMerger:
    """Builds merged doc blocks for declarations.

    Attributes:
        placeholder_description: Description line added to changed blocks without one
        annotate_module_members: Add ``@type`` to module value members
        annotate_module_class: Add ``@class`` to the module table declaration
        aliases: ``@alias`` table used when comparing types
    """

    def __init__(
        self,
        placeholder_description: str = DEFAULT_PLACEHOLDER,
        annotate_module_members: bool = True,
        annotate_module_class: bool = True,
        aliases: Mapping[str, TypeExpr] | None = None
    ) -> None:
        self.placeholder_description = placeholder_description
        self.annotate_module_members = annotate_module_members
        self.annotate_module_class = annotate_module_class
        self.aliases = dict(aliases or {})

    def merge_declaration(
        self,
        decl: DeclarationInfo,
        facts: DeclarationFacts,
        class_name: str | None = None,
        is_module_member: bool = False
    ) -> MergeResult:
        """Merge inferred facts into the doc block of one declaration.

        Args:
            decl: The declaration.
            facts: Its inferred facts.
            class_name: Class to declare on a module table declaration.
            is_module_member: Whether a value declaration is a module field.

        Returns:
            The full new block; ``changed`` is False when it equals the old one.
        """
        doc = decl.doc
        block = _BlockBuilder(
            description=list(doc.description) if doc else [],
            annotations=list(doc.annotations) if doc else [],
            seen={token.text for token in doc.tokens} if doc else set(),
        )

        if decl.body is not None:
            self._merge_params(block, decl, facts)
            if not facts.no_return:
                self._merge_returns(block, facts)
        elif decl.kind == "module":
            if self.annotate_module_class and class_name and not block.has(ClassAnnotation):
                block.append_new([format_tag_line("class", class_name)], [])
                block.outcomes["class"] = MergeOutcome.ADDED
        elif is_module_member and self.annotate_module_members:
            self._merge_type(block, facts)

        if block.changed and not block.description and self.placeholder_description:
            block.description = [format_doc_line(self.placeholder_description)]

        lines = block.lines()
        if block.changed:
            logger.debug(f"Merged annotations for {decl.decl_id}: {len(lines)} lines")
        return MergeResult(lines, block.changed, block.outcomes)

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------

    def _merge_params(self, block: "_BlockBuilder", decl: DeclarationInfo, facts: DeclarationFacts) -> None:
        documented: dict[str, int] = {}
        for index, ann in enumerate(block.annotations):
            if isinstance(ann, ParamAnnotation):
                documented.setdefault(ann.name, index)
            elif isinstance(ann, VarargAnnotation):
                documented.setdefault("...", index)

        names = list(facts.params)
        unmatched_names = [n for n in names if n not in documented]
        unmatched_docs = [i for n, i in documented.items() if n not in facts.params and n != "self"]

        # Entries naming a different parameter stay as written
        for name, index in zip(list(unmatched_names), unmatched_docs):
            ann = block.annotations[index]
            note = format_doc_line(f"NOTE: @param {ann.name} documents parameter '{name}'")
            block.add_advisories(index, [note])
            block.outcomes[f"param:{name}"] = MergeOutcome.NOTED
            unmatched_names.remove(name)

        for name in names:
            fact = facts.params[name]
            subject = f"@param {name}"
            if name in documented:
                index = documented[name]
                ann = block.annotations[index]
                if isinstance(ann, ParamAnnotation):
                    existing_type = ann.effective_type
                    render = _render_param(ann.name, ann.optional, ann.description)
                else:
                    existing_type = ann.type_expr
                    render = _render_param("...", False, ann.description)
                result = merge(ann, existing_type, fact, render, subject, self.aliases)
                block.replace(index, result)
                block.outcomes[f"param:{name}"] = result.outcome
            elif name in unmatched_names:
                result = merge(None, None, fact, _render_param(name), f"parameter '{name}'", self.aliases)
                advisories = list(result.advisories)
                if f"param:{name}" in facts.conflicts:
                    advisories.append(_conflict_note(f"parameter '{name}'", facts.conflicts[f"param:{name}"]))
                block.insert_param(result.lines, advisories)
                block.outcomes[f"param:{name}"] = result.outcome

    def _merge_returns(self, block: "_BlockBuilder", facts: DeclarationFacts) -> None:
        slot_owner: list[tuple[int, int]] = []
        for index, ann in enumerate(block.annotations):
            if isinstance(ann, ReturnAnnotation):
                slot_owner.extend((index, k) for k in range(len(ann.slots)))

        pending: dict[int, list[ReturnSlot]] = {}
        advisories: dict[int, list[str]] = {}
        for i, fact in enumerate(facts.returns):
            number = i + 1
            subject = f"@return {number}"
            if i < len(slot_owner):
                index, k = slot_owner[i]
                ann = block.annotations[index]
                slot = ann.slots[k]
                result = merge(ann, slot.type_expr, fact, lambda t: "", subject, self.aliases)
                if result.outcome is MergeOutcome.REPLACED:
                    slots = pending.setdefault(index, list(ann.slots))
                    slots[k] = ReturnSlot(fact.type_expr, slot.name, slot.description)
                advisories.setdefault(index, []).extend(result.advisories)
                block.outcomes[f"return:{number}"] = result.outcome
                continue

            result = merge(
                None, None, fact, lambda t: format_return([ReturnSlot(t)]),
                f"return value {number}", self.aliases,
            )
            notes = list(result.advisories)
            if f"return:{number}" in facts.conflicts:
                notes.append(_conflict_note(f"return value {number}", facts.conflicts[f"return:{number}"]))
            block.insert_return(result.lines, notes)
            block.outcomes[f"return:{number}"] = result.outcome

        for index, ann in enumerate(block.annotations):
            if index in pending:
                lines = [format_block_comment(ann.render()), format_return(pending[index])]
                block.replace(index, SlotMerge(lines, advisories.get(index, []), MergeOutcome.REPLACED))
            elif advisories.get(index):
                block.add_advisories(index, advisories[index])

    def _merge_type(self, block: "_BlockBuilder", facts: DeclarationFacts) -> None:
        existing = block.first(TypeAnnotation)
        if existing is None:
            if facts.binding.certainty is Certainty.UNKNOWN:
                return
            block.append_new([format_tag_line("type", facts.binding.render())], [])
            block.outcomes["type"] = MergeOutcome.ADDED
            return
        index, ann = existing
        if not ann.types:
            return
        result = merge(
            ann, ann.types[0], facts.binding,
            lambda t: format_tag_line("type", t.render()), "@type", self.aliases,
        )
        block.replace(index, result)
        block.outcomes["type"] = result.outcome


class _BlockBuilder:
    """Existing annotations plus pending replacements and insertions."""

    def __init__(self, description: list[str], annotations: list[Annotation], seen: set[str]) -> None:
        self.description = description
        self.annotations = annotations
        self.seen = seen
        self.segments: list[list[str]] = [list(a.render()) for a in annotations]
        self.new_params: list[str] = []
        self.new_returns: list[str] = []
        self.new_tail: list[str] = []
        self.changed = False
        self.outcomes: dict[str, MergeOutcome] = {}

    def has(self, cls: type) -> bool:
        return any(isinstance(a, cls) for a in self.annotations)

    def first(self, cls: type) -> tuple[int, Annotation] | None:
        for index, ann in enumerate(self.annotations):
            if isinstance(ann, cls):
                return index, ann
        return None

    def _fresh(self, advisories: list[str]) -> list[str]:
        fresh = []
        for line in advisories:
            if line not in self.seen:
                self.seen.add(line)
                fresh.append(line)
        if fresh:
            self.changed = True
        return fresh

    def replace(self, index: int, result: SlotMerge) -> None:
        if result.changed:
            self.segments[index] = list(result.lines)
            self.changed = True
        self.segments[index].extend(self._fresh(result.advisories))

    def add_advisories(self, index: int, advisories: list[str]) -> None:
        self.segments[index].extend(self._fresh(advisories))

    def insert_param(self, lines: list[str], advisories: list[str]) -> None:
        self.new_params.extend(lines)
        self.new_params.extend(self._fresh(advisories))
        self.changed = True

    def insert_return(self, lines: list[str], advisories: list[str]) -> None:
        self.new_returns.extend(lines)
        self.new_returns.extend(self._fresh(advisories))
        self.changed = True

    def append_new(self, lines: list[str], advisories: list[str]) -> None:
        self.new_tail.extend(lines)
        self.new_tail.extend(self._fresh(advisories))
        self.changed = True

    def _last_index(self, cls: type) -> int | None:
        found = None
        for index, ann in enumerate(self.annotations):
            if isinstance(ann, cls):
                found = index
        return found

    def lines(self) -> list[str]:
        last_param = self._last_index((ParamAnnotation, VarargAnnotation))
        first_return = self.first(ReturnAnnotation)
        last_return = self._last_index(ReturnAnnotation)

        param_at = None
        if last_param is not None:
            param_at = last_param + 1
        elif first_return is not None:
            param_at = first_return[0]

        out = list(self.description)
        for index, segment in enumerate(self.segments):
            if index == param_at:
                out.extend(self.new_params)
            out.extend(segment)
            if index == last_return:
                out.extend(self.new_returns)
        if param_at is None or param_at >= len(self.segments):
            out.extend(self.new_params)
        if last_return is None:
            out.extend(self.new_returns)
        out.extend(self.new_tail)
        return out
