"""Project-level annotation pipeline.

This module provides the configuration model, the external type
catalogue, the cross-file project context and the orchestrator that
drives a batch of sources to annotated text edits.

Classes:
    AnnotatorConfig: Configuration data model
    TypeCatalogue: Signatures of the Lua standard library and host APIs
    FrameworkRegistry: Versioned host-API definition files
    DependencyGraph: Require graph used for scheduling
    CircularDependencyError: Exception for circular requires
    ProjectContext: Modules, require resolution and the pass fixed point
    AnnotationOrchestrator: Parse, infer, merge and edit a batch of files
"""

from lua_annotator.core.config import AnnotatorConfig, load_config
from lua_annotator.core.dependency_graph import (
    CircularDependencyError,
    DependencyEdge,
    DependencyGraph,
    DependencyNode,
)
from lua_annotator.core.framework_registry import FrameworkRegistry, FrameworkVersion
from lua_annotator.core.orchestrator import (
    AnnotationOrchestrator,
    AnnotationResult,
    FileResult,
    JobState,
)
from lua_annotator.core.output_writer import TextEdit, apply_edits, build_edit
from lua_annotator.core.project_context import (
    ConvergenceLimitReached,
    ConvergenceResult,
    Module,
    ProjectContext,
)
from lua_annotator.core.type_catalogue import CatalogueEntry, TypeCatalogue

__all__ = [
    "AnnotatorConfig",
    "load_config",
    "CircularDependencyError",
    "DependencyEdge",
    "DependencyGraph",
    "DependencyNode",
    "FrameworkRegistry",
    "FrameworkVersion",
    "AnnotationOrchestrator",
    "AnnotationResult",
    "FileResult",
    "JobState",
    "TextEdit",
    "apply_edits",
    "build_edit",
    "ConvergenceLimitReached",
    "ConvergenceResult",
    "Module",
    "ProjectContext",
    "CatalogueEntry",
    "TypeCatalogue",
]
