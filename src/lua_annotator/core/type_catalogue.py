"""External type catalogue.

Signatures of the Lua standard library and of host APIs (Neovim, LÖVE,
WezTerm, Yazi) are read from annotated definition files: the bundled
``stdlib.lua`` plus one versioned file per selected framework, located
through the ``FrameworkRegistry``. The files are ordinary Lua with LSP
annotations and go through the same processor as project sources:

- ``function string.upper(s) end`` with ``@param``/``@return`` tags
  becomes a function entry;
- ``math.pi = 0`` preceded by ``---@type number`` becomes a value entry;
- ``string = {}`` becomes a table entry.

A ``---@version`` tag restricts an entry to matching Lua versions
(``5.1``, ``>5.1``, ``<5.4``, comma-separated for any-of). A table that
is gated out takes every entry under it along.

The catalogue is read-only once built and is shared by all inference
workers.

Example:
    >>> catalogue = TypeCatalogue.for_config(AnnotatorConfig(lua_version="5.1"))
    >>> catalogue.lookup("string.upper").returns
    (NamedType(name='string'),)
    >>> catalogue.lookup("table.unpack") is None
    True
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from lua_annotator.core.config import AnnotatorConfig
from lua_annotator.core.framework_registry import BUNDLED_FRAMEWORKS_DIR, FrameworkRegistry
from lua_annotator.processors.annotations import (
    ParamAnnotation,
    ReturnAnnotation,
    TypeAnnotation,
    VarargAnnotation,
    VersionAnnotation,
)
from lua_annotator.processors.lua_ast import Assignment, FunctionDecl, TableConstructor
from lua_annotator.processors.lua_processor import LuaProcessor, ParseResult
from lua_annotator.processors.lua_types import (
    ANY,
    TABLE,
    FunctionParam,
    FunctionType,
    TypeExpr,
)
from lua_annotator.utils.logger import get_logger

logger = get_logger("lua_annotator.core.type_catalogue")

STDLIB_FILE = BUNDLED_FRAMEWORKS_DIR / "stdlib.lua"


@dataclass(frozen=True)
class CatalogueEntry:
    """One external symbol.

    Attributes:
        name: Dotted name (``string.format``, ``vim.api.nvim_get_current_buf``)
        kind: ``function``, ``value`` or ``table``
        params: ``(name, type)`` pairs for functions
        returns: Return types for functions
        value_type: Type of a value entry
    """
    name: str
    kind: str
    params: tuple[tuple[str, TypeExpr], ...] = ()
    returns: tuple[TypeExpr, ...] = ()
    value_type: TypeExpr | None = None

    def binding_type(self) -> TypeExpr:
        if self.kind == "function":
            return FunctionType(
                params=tuple(FunctionParam(n, t) for n, t in self.params),
                returns=self.returns,
            )
        if self.kind == "value" and self.value_type is not None:
            return self.value_type
        return TABLE


def _parse_version(text: str) -> tuple[int, ...] | None:
    try:
        return tuple(int(part) for part in text.split("."))
    except ValueError:
        return None


def version_matches(constraints: Iterable[str], lua_version: str) -> bool:
    """Whether a ``@version`` constraint list admits ``lua_version``.

    ``>`` and ``<`` are strict. Names that are not version numbers
    (``JIT``) never match.
    """
    target = _parse_version(lua_version)
    for constraint in constraints:
        constraint = constraint.strip()
        op = ""
        if constraint[:1] in (">", "<"):
            op, constraint = constraint[0], constraint[1:].strip()
        bound = _parse_version(constraint)
        if bound is None or target is None:
            continue
        if op == ">" and target > bound:
            return True
        if op == "<" and target < bound:
            return True
        if not op and target == bound:
            return True
    return False


@dataclass
class TypeCatalogue:
    """Name-keyed table of external signatures."""

    entries: dict[str, CatalogueEntry] = field(default_factory=dict)

    def add(self, entry: CatalogueEntry) -> None:
        self.entries[entry.name] = entry

    def lookup(self, name: str) -> CatalogueEntry | None:
        return self.entries.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def load_definitions(self, source: str, lua_version: str, origin: str = "<definitions>") -> int:
        """Add every entry of an annotated definition file.

        Args:
            source: Lua definition source.
            lua_version: Version used to evaluate ``@version`` gates.
            origin: Name used in log messages.

        Returns:
            Number of entries added.

        Raises:
            ValueError: If the definition source cannot be tokenized.
        """
        return self._load_result(LuaProcessor().process_source(Path(origin), source), lua_version, origin)

    def load_file(self, path: Path, lua_version: str) -> int:
        """Add every entry of a definition file on disk.

        Raises:
            ValueError: If the file cannot be read or tokenized.
        """
        return self._load_result(LuaProcessor().parse_file(path), lua_version, str(path))

    def _load_result(self, result: ParseResult, lua_version: str, origin: str) -> int:
        if not result.success:
            raise ValueError(f"Invalid definition file {origin}: {'; '.join(result.errors)}")

        excluded: list[str] = []
        added = 0
        for statement in result.chunk.body.body:
            if isinstance(statement, FunctionDecl):
                name = statement.name.replace(":", ".")
            elif isinstance(statement, Assignment) and statement.name is not None:
                name = statement.name
            else:
                continue
            if any(name == prefix or name.startswith(prefix + ".") for prefix in excluded):
                continue

            doc = statement.doc
            if doc is not None:
                versions = [v for ann in doc.of_kind(VersionAnnotation) for v in ann.versions]
                if versions and not version_matches(versions, lua_version):
                    excluded.append(name)
                    continue

            entry = self._entry_for(name, statement)
            if entry is not None:
                self.add(entry)
                added += 1

        logger.debug(f"Loaded {added} catalogue entries from {origin}")
        return added

    @staticmethod
    def _entry_for(name: str, statement) -> CatalogueEntry | None:
        doc = statement.doc
        if isinstance(statement, FunctionDecl):
            annotated: dict[str, TypeExpr] = {}
            returns: list[TypeExpr] = []
            if doc is not None:
                for ann in doc.annotations:
                    if isinstance(ann, ParamAnnotation) and ann.effective_type is not None:
                        annotated[ann.name] = ann.effective_type
                    elif isinstance(ann, VarargAnnotation) and ann.type_expr is not None:
                        annotated["..."] = ann.type_expr
                    elif isinstance(ann, ReturnAnnotation):
                        returns.extend(slot.type_expr for slot in ann.slots)
            names = list(statement.params) + (["..."] if statement.is_vararg else [])
            params = tuple((n, annotated.get(n, ANY)) for n in names)
            return CatalogueEntry(name, "function", params=params, returns=tuple(returns))

        if doc is not None:
            types = [t for ann in doc.of_kind(TypeAnnotation) for t in ann.types]
            if types:
                return CatalogueEntry(name, "value", value_type=types[0])
        values = statement.values
        if len(values) == 1 and isinstance(values[0], TableConstructor):
            return CatalogueEntry(name, "table")
        return None

    @classmethod
    def for_config(cls, config: AnnotatorConfig) -> "TypeCatalogue":
        """Build the catalogue for a configuration: stdlib plus selected frameworks."""
        registry = FrameworkRegistry(config.framework_dirs)
        selected = [registry.resolve(selector) for selector in config.frameworks]
        catalogue = cls()
        catalogue.load_file(STDLIB_FILE, config.lua_version)
        for framework in selected:
            catalogue.load_file(framework.definition_path, config.lua_version)
        logger.info(
            f"Type catalogue ready: {len(catalogue)} entries "
            f"(Lua {config.lua_version}, frameworks: {', '.join(f.qualified_name for f in selected) or 'none'})"
        )
        return catalogue
