"""Annotation orchestrator: drives a batch of Lua sources through the pipeline.

Phases and state transitions::

    PENDING -> PARSING -> ANALYZING -> INFERRING -> MERGING -> COMPLETED
                  |                                              |
                  v                                              v
                FAILED                                        FAILED

1. **Parsing**: every file is tokenized, parsed and scanned for symbols
   on a worker thread. Files share no state at this stage.
2. **Analyzing**: after all parses finish, the ProjectContext registers
   each file's Module and the require graph fixes the processing order
   (required files first; input order when requires are circular).
3. **Inferring**: inference passes run until two passes agree. Within a
   pass the context is frozen and every file is inferred in parallel from
   the previous pass's published facts.
4. **Merging**: inferred facts are merged into each declaration's doc
   block and turned into text edits.

Errors stay with their file: a file that cannot be tokenized, or whose
inference raises, gets a failed ``FileResult`` and the rest of the batch
continues.

Example:
    >>> orchestrator = AnnotationOrchestrator(AnnotatorConfig(frameworks=["neovim"]))
    >>> result = orchestrator.annotate_project({
    ...     Path("lua/util.lua"): util_source,
    ...     Path("lua/main.lua"): main_source,
    ... })
    >>> for path, file_result in result.files.items():
    ...     print(path, len(file_result.edits), file_result.success)
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from lua_annotator.core.config import AnnotatorConfig
from lua_annotator.core.dependency_graph import CircularDependencyError
from lua_annotator.core.output_writer import TextEdit, apply_edits, build_edit
from lua_annotator.core.project_context import ProjectContext
from lua_annotator.core.type_catalogue import TypeCatalogue
from lua_annotator.processors.annotation_merger import AnnotationMerger
from lua_annotator.processors.lua_ast import Assignment, Diagnostic, FunctionDecl, TableField
from lua_annotator.processors.lua_processor import LuaProcessor, ParseResult
from lua_annotator.processors.type_inference import FileFacts, InferenceEngine
from lua_annotator.utils.logger import ROOT_LOGGER_NAME, get_logger, set_log_level

logger = get_logger("lua_annotator.core.orchestrator")


class JobState(Enum):
    """Phase of an annotation job.

    States:
        PENDING: Created, not started
        PARSING: Tokenizing and parsing files
        ANALYZING: Building the project context and require order
        INFERRING: Running inference passes
        MERGING: Merging facts into doc blocks and building edits
        COMPLETED: All files handled (some may have failed individually)
        FAILED: The batch itself could not be processed
    """
    PENDING = "pending"
    PARSING = "parsing"
    ANALYZING = "analyzing"
    INFERRING = "inferring"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class FileResult:
    """Outcome for one input file.

    Attributes:
        file_path: The input path
        success: False when the file could not be analysed
        errors: Fatal errors for this file
        diagnostics: Parse, annotation and validation diagnostics
        edits: Text edits in source order
        annotated_source: Source with the edits applied (None on failure)
    """
    file_path: Path
    success: bool
    errors: list[str] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    edits: list[TextEdit] = field(default_factory=list)
    annotated_source: str | None = None

    @property
    def changed(self) -> bool:
        return bool(self.edits)


@dataclass
class AnnotationResult:
    """Outcome of a batch.

    Attributes:
        success: True when every file succeeded
        current_state: Final job state
        files: Per-file results, in processing order
        processing_order: Order files were scheduled and reported in
        passes: Inference passes run
        converged: False when the pass cap was hit
        diagnostics: Project-level diagnostics (require cycles, convergence)
        errors: Batch-level error messages
        metadata: Timing, counts and the serialized require graph
    """
    success: bool
    current_state: JobState = JobState.PENDING
    files: dict[Path, FileResult] = field(default_factory=dict)
    processing_order: list[Path] = field(default_factory=list)
    passes: int = 0
    converged: bool = True
    diagnostics: list[Diagnostic] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


class AnnotationOrchestrator:
    """Coordinates parsing, inference and merging for a batch of sources.

    Attributes:
        config: Validated configuration
        catalogue: External type catalogue shared by all workers
        root: Directory require names are derived against
    """

    def __init__(
        self,
        config: AnnotatorConfig | None = None,
        catalogue: TypeCatalogue | None = None,
        root: Path | None = None
    ) -> None:
        self.config = config or AnnotatorConfig()
        self.config.validate()
        set_log_level(get_logger(ROOT_LOGGER_NAME), self.config.log_level)
        self.catalogue = catalogue if catalogue is not None else TypeCatalogue.for_config(self.config)
        self.root = Path(root) if root is not None else None
        self.processor = LuaProcessor(validate_syntax=self.config.validate_syntax)
        self.engine = InferenceEngine(self.catalogue)
        self._current_state = JobState.PENDING
        self._logger = logger

    def _transition_state(self, new_state: JobState, result: AnnotationResult) -> None:
        old_state = self._current_state
        self._current_state = new_state
        result.current_state = new_state
        self._logger.info(f"State transition: {old_state.name} -> {new_state.name}")

    def annotate_source(self, file_path: Path | str, source: str) -> FileResult:
        """Single-file mode: a project made of one file."""
        result = self.annotate_project({Path(file_path): source})
        return result.files[Path(file_path)]

    def annotate_project(self, sources: Mapping[Path | str, str]) -> AnnotationResult:
        """Annotate every source of a project.

        Args:
            sources: File path to UTF-8 source text.

        Returns:
            AnnotationResult with one FileResult per input file.
        """
        start = time.time()
        self._current_state = JobState.PENDING
        result = AnnotationResult(success=False)
        inputs = {Path(path): text for path, text in sources.items()}
        try:
            self._run(inputs, result)
        except Exception as e:
            self._logger.error(f"Annotation batch failed: {e}", exc_info=True)
            result.errors.append(f"Annotation batch failed: {e}")
            result.success = False
            self._transition_state(JobState.FAILED, result)
            return result

        result.success = all(f.success for f in result.files.values())
        result.metadata.update({
            "total_files": len(inputs),
            "failed_files": sum(1 for f in result.files.values() if not f.success),
            "changed_files": sum(1 for f in result.files.values() if f.changed),
            "total_edits": sum(len(f.edits) for f in result.files.values()),
            "passes": result.passes,
            "total_processing_time_seconds": time.time() - start,
        })
        self._transition_state(JobState.COMPLETED, result)
        self._logger.info(
            f"Annotated {len(inputs)} files: {result.metadata['changed_files']} changed, "
            f"{result.metadata['failed_files']} failed, {result.passes} passes"
        )
        return result

    def _run(self, inputs: dict[Path, str], result: AnnotationResult) -> None:
        self._transition_state(JobState.PARSING, result)
        parsed = self._parse_all(inputs, result)

        self._transition_state(JobState.ANALYZING, result)
        context = ProjectContext.build(
            parsed.values(), self.root, declare_module_classes=self.config.annotate_module_class
        )
        order = self._processing_order(context, list(inputs), result)
        result.processing_order = order

        self._transition_state(JobState.INFERRING, result)
        active = [path for path in order if path in parsed]
        failures: dict[Path, str] = {}

        def run_pass(ctx: ProjectContext) -> dict[Path, FileFacts]:
            return self._infer_all(active, parsed, ctx, failures)

        outcome = context.converge(run_pass, self.config.max_passes)
        result.passes = outcome.passes
        result.converged = outcome.converged
        if not outcome.converged:
            result.diagnostics.append(Diagnostic(
                "warning", "convergence",
                f"Inference did not converge within {self.config.max_passes} passes",
            ))

        self._transition_state(JobState.MERGING, result)
        files: dict[Path, FileResult] = {}
        for path in order:
            if path in result.files:
                files[path] = result.files[path]
                continue
            if path in failures:
                files[path] = FileResult(path, False, errors=[failures[path]])
                continue
            try:
                files[path] = self._merge_file(parsed[path], outcome.facts.get(path), context)
            except Exception as e:
                self._logger.error(f"Failed to annotate {path}: {e}", exc_info=True)
                files[path] = FileResult(path, False, errors=[f"Annotation failed: {e}"])
        result.files = files

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _parse_one(self, path: Path, text: str) -> ParseResult:
        try:
            return self.processor.process_source(path, text)
        except Exception as e:
            self._logger.error(f"Unexpected error parsing {path}: {e}", exc_info=True)
            return ParseResult(None, text, path, False, errors=[f"Unexpected parse failure: {e}"])

    def _parse_all(self, inputs: dict[Path, str], result: AnnotationResult) -> dict[Path, ParseResult]:
        with ThreadPoolExecutor(max_workers=self.config.max_workers, thread_name_prefix="lua-parse") as pool:
            futures = {path: pool.submit(self._parse_one, path, text) for path, text in inputs.items()}
            results = {path: future.result() for path, future in futures.items()}

        parsed = {}
        for path, parse_result in results.items():
            if parse_result.success:
                parsed[path] = parse_result
            else:
                result.files[path] = FileResult(path, False, errors=list(parse_result.errors))
        self._logger.debug(f"Parsed {len(parsed)}/{len(inputs)} files")
        return parsed

    def _processing_order(self, context: ProjectContext, inputs: list[Path], result: AnnotationResult) -> list[Path]:
        graph = context.build_dependency_graph()
        result.metadata["dependency_graph"] = graph.to_dict()
        try:
            order = graph.get_processing_order()
        except CircularDependencyError as e:
            self._logger.warning(f"{e.message}; using input order")
            result.diagnostics.append(Diagnostic("warning", "dependency", e.message))
            return inputs
        # Files that failed to parse are not in the graph
        return order + [path for path in inputs if path not in order]

    def _infer_one(self, parse_result: ParseResult, context: ProjectContext) -> FileFacts:
        return self.engine.infer(parse_result, context)

    def _infer_all(
        self,
        paths: list[Path],
        parsed: dict[Path, ParseResult],
        context: ProjectContext,
        failures: dict[Path, str]
    ) -> dict[Path, FileFacts]:
        todo = [path for path in paths if path not in failures]
        facts: dict[Path, FileFacts] = {}
        with ThreadPoolExecutor(max_workers=self.config.max_workers, thread_name_prefix="lua-infer") as pool:
            futures = {path: pool.submit(self._infer_one, parsed[path], context) for path in todo}
            for path, future in futures.items():
                try:
                    facts[path] = future.result()
                except Exception as e:
                    self._logger.error(f"Inference failed for {path}: {e}", exc_info=True)
                    failures[path] = f"Inference failed: {e}"
        return facts

    def _merge_file(self, parse_result: ParseResult, facts: FileFacts | None, context: ProjectContext) -> FileResult:
        path = parse_result.file_path
        file_result = FileResult(path, True, diagnostics=list(parse_result.diagnostics))
        if facts is None:
            file_result.annotated_source = parse_result.source_code
            return file_result

        merger = AnnotationMerger(
            placeholder_description=self.config.placeholder_description,
            annotate_module_members=self.config.annotate_module_members,
            annotate_module_class=self.config.annotate_module_class,
            aliases=context.aliases,
        )
        module = parse_result.symbols.module
        member_ids = {d.decl_id for d in module.exported_members.values()} if module else set()
        class_name = context.class_name_for(path)

        declarations = list(parse_result.symbols.declarations)
        if module is not None:
            # Functions defined inside the module table constructor
            declarations.extend(
                d for d in module.exported_members.values()
                if isinstance(d.node, TableField) and d.body is not None
            )
            declarations.sort(key=lambda d: d.node.span.start)

        for decl in declarations:
            if not isinstance(decl.node, (FunctionDecl, Assignment, TableField)):
                continue
            decl_facts = facts.declarations.get(decl.decl_id)
            if decl_facts is None:
                continue
            merged = merger.merge_declaration(
                decl, decl_facts, class_name=class_name, is_module_member=decl.decl_id in member_ids
            )
            if not merged.changed:
                continue
            edit = build_edit(parse_result.source_code, decl, merged.lines)
            if edit is not None:
                file_result.edits.append(edit)

        file_result.edits.sort(key=lambda e: e.start)
        file_result.annotated_source = apply_edits(parse_result.source_code, file_result.edits)
        self._logger.debug(f"{path}: {len(file_result.edits)} edits")
        return file_result
