"""Source edits for merged annotation blocks.

The core never writes files. For every declaration whose doc block
changed it produces a ``TextEdit``: a replacement of the old block's
character range, or an insertion in front of the declaration when it had
no block. New lines take the indentation of the declaration.

``apply_edits`` is the reference serializer used to render a file from
its edits.

Example:
    >>> edit = build_edit(source, decl, ["---@param a number"])
    >>> apply_edits(source, [edit])
    '---@param a number\\nlocal function f(a) return a + 1 end\\n'
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from lua_annotator.processors.lua_symbol_extractor import DeclarationInfo
from lua_annotator.utils.logger import get_logger

logger = get_logger("lua_annotator.core.output_writer")


@dataclass(frozen=True)
class TextEdit:
    """Replace ``source[start:end]`` with ``text``.

    Attributes:
        start: Offset of the first replaced character
        end: Offset one past the last replaced character (``start`` for inserts)
        text: Replacement text
        line: 1-based line the edit starts on, for reporting
    """
    start: int
    end: int
    text: str
    line: int = 0

    @property
    def is_insert(self) -> bool:
        return self.start == self.end


def _indent_at(source: str, offset: int) -> str | None:
    """Whitespace before ``offset`` on its line; None if code precedes it."""
    line_start = source.rfind("\n", 0, offset) + 1
    prefix = source[line_start:offset]
    return prefix if not prefix.strip() else None


def build_edit(source: str, decl: DeclarationInfo, lines: Sequence[str]) -> TextEdit | None:
    """Edit that puts ``lines`` in place of the declaration's doc block.

    Args:
        source: Full file text.
        decl: Declaration being annotated.
        lines: Complete new block, one comment per entry.

    Returns:
        The edit, or None when the block is unchanged or cannot be placed
        (another statement precedes the declaration on its line).
    """
    if not lines:
        return None
    doc = decl.doc
    if doc is not None:
        start, end = doc.start, doc.end
    else:
        start = end = decl.node.span.start

    indent = _indent_at(source, start)
    if indent is None:
        logger.debug(f"Skipping {decl.decl_id}: declaration does not start its line")
        return None

    text = f"\n{indent}".join(lines)
    if doc is None:
        text = f"{text}\n{indent}"
    elif source[start:end] == text:
        return None
    return TextEdit(start, end, text, decl.node.span.line if doc is None else doc.line)


def apply_edits(source: str, edits: Iterable[TextEdit]) -> str:
    """Apply non-overlapping edits to ``source``.

    Raises:
        ValueError: If two edits overlap
    """
    ordered = sorted(edits, key=lambda e: (e.start, e.end))
    for previous, current in zip(ordered, ordered[1:]):
        if current.start < previous.end:
            raise ValueError(
                f"Overlapping edits at lines {previous.line} and {current.line}"
            )
    result = source
    for edit in reversed(ordered):
        result = result[:edit.start] + edit.text + result[edit.end:]
    return result
