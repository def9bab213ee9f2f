"""Cross-file view of a Lua project.

The ProjectContext maps every file to its Module and every require name
to the file providing it. Between inference passes the driver publishes
the facts of the finished pass; during a pass the context is frozen and
every worker reads the same snapshot.

``converge`` runs passes until the facts stop changing:

- identical output of two consecutive passes ends the loop;
- a pass that would lower any certainty ends the loop too, after the
  facts that newly became Certain are folded into the previous result;
- ``max_passes`` is a safety cap that emits ``ConvergenceLimitReached``.

Example:
    >>> context = ProjectContext.build(parse_results)
    >>> context.resolve("util.strings").file_path
    PosixPath('lua/util/strings.lua')
    >>> outcome = context.converge(run_pass, max_passes=8)
    >>> outcome.converged, outcome.passes
    (True, 2)
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Mapping

from lua_annotator.core.dependency_graph import DependencyGraph
from lua_annotator.processors.annotations import ClassAnnotation
from lua_annotator.processors.lua_processor import ParseResult
from lua_annotator.processors.lua_symbol_extractor import DeclarationInfo
from lua_annotator.processors.lua_types import TABLE, NamedType, TypeExpr
from lua_annotator.processors.type_inference import (
    Certainty,
    DeclarationFacts,
    FileFacts,
    TypeFact,
    find_regressions,
    merge_new_certain,
)
from lua_annotator.utils.logger import get_logger
from lua_annotator.utils.path_utils import (
    module_name_for_path,
    normalize_require_name,
    require_name_matches,
)

logger = get_logger("lua_annotator.core.project_context")


class ConvergenceLimitReached(UserWarning):
    """Inference hit the pass cap before two passes agreed."""


@dataclass
class Module:
    """A file's returned table as seen from the rest of the project.

    Attributes:
        name: Local identifier bound to the table (None for ``return {...}``)
        exported_members: Member name to defining declaration
        file_path: Source file
        require_name: Dotted name derived from the path
        class_name: ``@class`` name used for the table's type, if any
        dependencies: Module names the file requires at top level
    """
    name: str | None
    exported_members: dict[str, DeclarationInfo]
    file_path: Path
    require_name: str
    class_name: str | None = None
    dependencies: list[str] = field(default_factory=list)


@dataclass
class ConvergenceResult:
    facts: dict[Path, FileFacts]
    passes: int
    converged: bool
    regressions: list[str] = field(default_factory=list)


class ProjectContext:
    """Registry of modules plus the published facts of the last pass.

    Attributes:
        root: Directory require names are computed against (None: paths as given)
        declare_module_classes: Whether modules without ``@class`` get one named
            after their require name
        passes_run: Number of passes the last ``converge`` call ran
    """

    def __init__(self, root: Path | None = None, declare_module_classes: bool = True) -> None:
        self.root = Path(root) if root is not None else None
        self.declare_module_classes = declare_module_classes
        self.passes_run = 0
        self._modules: dict[Path, Module] = {}
        self._require_names: dict[Path, str] = {}
        self._dependencies: dict[Path, list[tuple[str, int]]] = {}
        self._aliases: dict[str, TypeExpr] = {}
        self._facts: dict[Path, FileFacts] = {}
        self._frozen = False

    @classmethod
    def build(
        cls,
        parse_results: Iterable[ParseResult],
        root: Path | None = None,
        declare_module_classes: bool = True
    ) -> "ProjectContext":
        """Register every successfully parsed file."""
        context = cls(root, declare_module_classes)
        for result in parse_results:
            if result.success:
                context.register(result)
        logger.debug(f"Project context built: {len(context._require_names)} files, {len(context._modules)} modules")
        return context

    @classmethod
    def single_file(cls, parse_result: ParseResult, declare_module_classes: bool = True) -> "ProjectContext":
        return cls.build([parse_result], declare_module_classes=declare_module_classes)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, parse_result: ParseResult) -> Module | None:
        """Record a file, its requires, aliases and (if any) its Module.

        Raises:
            RuntimeError: If called while a pass is running
        """
        self._check_mutable()
        path = parse_result.file_path
        symbols = parse_result.symbols
        require_name = module_name_for_path(path, self.root)
        self._require_names[path] = require_name
        self._dependencies[path] = [(imp.module_path, imp.line_number) for imp in symbols.imports]
        self._aliases.update(parse_result.aliases)

        info = symbols.module
        if info is None:
            self._modules.pop(path, None)
            return None

        class_name = None
        if info.declaration is not None and info.declaration.doc is not None:
            classes = info.declaration.doc.of_kind(ClassAnnotation)
            if classes:
                class_name = classes[0].name
        if class_name is None and self.declare_module_classes and info.name is not None:
            class_name = require_name

        module = Module(
            name=info.name,
            exported_members=dict(info.exported_members),
            file_path=path,
            require_name=require_name,
            class_name=class_name,
            dependencies=[imp.module_path for imp in symbols.imports],
        )
        self._modules[path] = module
        return module

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError("ProjectContext is read-only while an inference pass is running")

    def freeze(self) -> None:
        self._frozen = True

    def thaw(self) -> None:
        self._frozen = False

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def modules(self) -> dict[Path, Module]:
        return dict(self._modules)

    @property
    def aliases(self) -> dict[str, TypeExpr]:
        return dict(self._aliases)

    def get_module(self, file_path: Path) -> Module | None:
        return self._modules.get(Path(file_path))

    def require_name_for(self, file_path: Path) -> str:
        path = Path(file_path)
        return self._require_names.get(path, module_name_for_path(path, self.root))

    def class_name_for(self, file_path: Path) -> str | None:
        module = self._modules.get(Path(file_path))
        return module.class_name if module is not None else None

    def resolve_path(self, require_name: str) -> Path | None:
        """File a require name refers to.

        Exact match on the derived name first, then a unique dotted-suffix
        match (``require("util")`` against ``lua/util.lua``).
        """
        wanted = normalize_require_name(require_name)
        if not wanted:
            return None
        candidates = []
        for path, name in self._require_names.items():
            if name == wanted:
                return path
            if require_name_matches(wanted, name):
                candidates.append(path)
        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            logger.debug(f"Ambiguous require '{require_name}': {len(candidates)} candidates")
        return None

    def resolve(self, require_name: str) -> Module | None:
        path = self.resolve_path(require_name)
        return self._modules.get(path) if path is not None else None

    def module_type(self, require_name: str) -> TypeFact | None:
        """Type of ``require(require_name)``; None when it is not a project module."""
        module = self.resolve(require_name)
        if module is None:
            return None
        if module.class_name:
            return TypeFact(NamedType(module.class_name), Certainty.CERTAIN)
        return TypeFact(TABLE, Certainty.CERTAIN)

    def member_facts(self, require_name: str, member: str) -> DeclarationFacts | None:
        """Published facts for ``require(require_name).member``."""
        module = self.resolve(require_name)
        if module is None:
            return None
        file_facts = self._facts.get(module.file_path)
        return file_facts.member(member) if file_facts is not None else None

    def facts_for(self, file_path: Path) -> FileFacts | None:
        return self._facts.get(Path(file_path))

    def build_dependency_graph(self) -> DependencyGraph:
        """Require graph over the registered files, in registration order."""
        graph = DependencyGraph()
        for path, require_name in self._require_names.items():
            graph.add_node(path, require_name, [name for name, _ in self._dependencies[path]])
        for path, deps in self._dependencies.items():
            for name, line in deps:
                target = self.resolve_path(name)
                if target is None:
                    logger.debug(f"{path}: require '{name}' is not a project file")
                    continue
                if target == path:
                    continue
                graph.add_edge(path, target, name, line)
        return graph

    # ------------------------------------------------------------------
    # Fixed point
    # ------------------------------------------------------------------

    def publish(self, facts: Mapping[Path, FileFacts]) -> None:
        """Make a finished pass visible to the next one.

        Raises:
            RuntimeError: If called while a pass is running
        """
        self._check_mutable()
        self._facts = dict(facts)

    def converge(
        self,
        run_pass: Callable[["ProjectContext"], dict[Path, FileFacts]],
        max_passes: int
    ) -> ConvergenceResult:
        """Run inference passes to a fixed point.

        Args:
            run_pass: Computes facts for every file from this context.
            max_passes: Upper bound on the number of passes.

        Returns:
            The converged (or last) facts and how the loop ended.
        """
        if max_passes < 1:
            raise ValueError("max_passes must be at least 1")

        previous: dict[Path, FileFacts] | None = None
        for pass_number in range(1, max_passes + 1):
            self.freeze()
            try:
                current = run_pass(self)
            finally:
                self.thaw()
            self.passes_run = pass_number
            logger.debug(f"Inference pass {pass_number} finished")

            if previous is not None:
                dropped = find_regressions(previous, current)
                if dropped:
                    logger.warning(
                        f"Pass {pass_number} lowered {len(dropped)} certainties; "
                        "keeping the previous pass with new certain facts"
                    )
                    merged = merge_new_certain(previous, current)
                    self.publish(merged)
                    return ConvergenceResult(merged, pass_number, True, dropped)
                if _snapshot(previous) == _snapshot(current):
                    self.publish(current)
                    logger.info(f"Inference converged after {pass_number} passes")
                    return ConvergenceResult(current, pass_number, True)

            self.publish(current)
            previous = current

        message = f"Inference did not converge within {max_passes} passes; using the last result"
        logger.warning(message)
        warnings.warn(message, ConvergenceLimitReached, stacklevel=2)
        return ConvergenceResult(previous, max_passes, False)


def _snapshot(facts: Mapping[Path, FileFacts]) -> dict:
    return {path: file_facts.snapshot() for path, file_facts in facts.items()}
