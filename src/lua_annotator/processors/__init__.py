"""Public API for the Lua processors with lazy imports.

Importing the package does not load the type grammar or luaparser; each
name is imported from its module on first access.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

_EXPORT_MAP: dict[str, tuple[str, str]] = {
    "LexError": ("lua_annotator.processors.lua_tokenizer", "LexError"),
    "Token": ("lua_annotator.processors.lua_tokenizer", "Token"),
    "TokenKind": ("lua_annotator.processors.lua_tokenizer", "TokenKind"),
    "tokenize": ("lua_annotator.processors.lua_tokenizer", "tokenize"),
    "parse": ("lua_annotator.processors.lua_parser", "parse"),
    "Chunk": ("lua_annotator.processors.lua_ast", "Chunk"),
    "Diagnostic": ("lua_annotator.processors.lua_ast", "Diagnostic"),
    "DocBlock": ("lua_annotator.processors.annotations", "DocBlock"),
    "parse_annotation": ("lua_annotator.processors.annotations", "parse_annotation"),
    "parse_type": ("lua_annotator.processors.lua_types", "parse_type"),
    "is_subtype": ("lua_annotator.processors.lua_types", "is_subtype"),
    "LuaSymbolExtractor": ("lua_annotator.processors.lua_symbol_extractor", "LuaSymbolExtractor"),
    "LuaSymbolTable": ("lua_annotator.processors.lua_symbol_extractor", "LuaSymbolTable"),
    "DeclarationInfo": ("lua_annotator.processors.lua_symbol_extractor", "DeclarationInfo"),
    "LuaProcessor": ("lua_annotator.processors.lua_processor", "LuaProcessor"),
    "ParseResult": ("lua_annotator.processors.lua_processor", "ParseResult"),
    "Certainty": ("lua_annotator.processors.type_inference", "Certainty"),
    "TypeFact": ("lua_annotator.processors.type_inference", "TypeFact"),
    "InferenceEngine": ("lua_annotator.processors.type_inference", "InferenceEngine"),
    "AnnotationMerger": ("lua_annotator.processors.annotation_merger", "AnnotationMerger"),
}

__all__ = list(_EXPORT_MAP)


def __getattr__(name: str) -> Any:
    try:
        module_name, attr_name = _EXPORT_MAP[name]
    except KeyError as exc:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}") from exc
    value = getattr(import_module(module_name), attr_name)
    globals()[name] = value
    return value
