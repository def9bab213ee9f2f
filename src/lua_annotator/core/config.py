"""Configuration data model for annotation runs.

This module defines the AnnotatorConfig dataclass that controls one
annotator invocation: the targeted Lua version, the bundled host-API
catalogues to load, the convergence cap, worker count and the wording
of generated comments. It handles validation and JSON round-tripping.

Example:
    >>> config = AnnotatorConfig(lua_version="5.1", frameworks=["love2d"])
    >>> config.validate()
    >>> AnnotatorConfig.from_dict(config.to_dict()) == config
    True
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from lua_annotator.core.framework_registry import FrameworkRegistry
from lua_annotator.utils.logger import get_logger, VALID_LOG_LEVELS

logger = get_logger("lua_annotator.core.config")

VALID_LUA_VERSIONS = ("5.1", "5.2", "5.3", "5.4")

DEFAULT_PLACEHOLDER_DESCRIPTION = "TODO: Add description"


@dataclass
class AnnotatorConfig:
    """Annotator configuration.

    Attributes:
        lua_version: Targeted Lua version; gates the standard library catalogue
        frameworks: Host-API catalogues to load, as ``name`` or ``name@version``
        framework_dirs: Extra directories of ``<name>/<version>.lua`` definition files
        max_passes: Maximum number of inference passes over the project
        max_workers: Worker threads for parsing and inference
        placeholder_description: Text of the description line added when none exists
        annotate_module_members: Add ``@type`` to non-function module fields
        annotate_module_class: Add ``@class`` above the module table
        validate_syntax: Cross-check every file with luaparser
        log_level: Level for the package logger
    """

    lua_version: str = "5.4"
    frameworks: List[str] = field(default_factory=list)
    framework_dirs: List[str] = field(default_factory=list)
    max_passes: int = 8
    max_workers: int = 4
    placeholder_description: str = DEFAULT_PLACEHOLDER_DESCRIPTION
    annotate_module_members: bool = True
    annotate_module_class: bool = True
    validate_syntax: bool = True
    log_level: str = "INFO"

    def validate(self) -> None:
        """Validate the configuration.

        Raises:
            ValueError: If any validation check fails
        """
        if self.lua_version not in VALID_LUA_VERSIONS:
            raise ValueError(
                f"Invalid lua_version: {self.lua_version}. Expected one of {VALID_LUA_VERSIONS}"
            )

        registry = FrameworkRegistry(self.framework_dirs)
        for selector in self.frameworks:
            framework = registry.resolve(selector)
            if framework.lua_version != self.lua_version:
                logger.warning(
                    f"Framework {framework.qualified_name} embeds Lua {framework.lua_version}, "
                    f"but lua_version is {self.lua_version}"
                )

        if not isinstance(self.max_passes, int) or self.max_passes < 1:
            raise ValueError("Option 'max_passes' must be a positive integer")

        if not isinstance(self.max_workers, int) or self.max_workers < 1:
            raise ValueError("Option 'max_workers' must be a positive integer")

        if not isinstance(self.placeholder_description, str) or not self.placeholder_description.strip():
            raise ValueError("Option 'placeholder_description' must be a non-empty string")
        if "\n" in self.placeholder_description:
            raise ValueError("Option 'placeholder_description' must be a single line")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log_level: {self.log_level}. Must be one of {VALID_LOG_LEVELS}"
            )

        if self.max_passes > 32:
            logger.warning(
                f"max_passes={self.max_passes} is large; projects usually converge in 2-3 passes"
            )

        logger.debug("Configuration validated successfully")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for JSON serialization."""
        return {
            "lua_version": self.lua_version,
            "frameworks": list(self.frameworks),
            "framework_dirs": list(self.framework_dirs),
            "max_passes": self.max_passes,
            "max_workers": self.max_workers,
            "placeholder_description": self.placeholder_description,
            "annotate_module_members": self.annotate_module_members,
            "annotate_module_class": self.annotate_module_class,
            "validate_syntax": self.validate_syntax,
            "log_level": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AnnotatorConfig:
        """Create configuration from dictionary.

        Missing keys take their defaults; unknown keys are rejected.

        Raises:
            ValueError: If the dictionary holds unknown keys
        """
        known = set(cls().to_dict())
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        defaults = cls()
        config = cls(
            lua_version=str(data.get("lua_version", defaults.lua_version)),
            frameworks=list(data.get("frameworks", defaults.frameworks)),
            framework_dirs=list(data.get("framework_dirs", defaults.framework_dirs)),
            max_passes=data.get("max_passes", defaults.max_passes),
            max_workers=data.get("max_workers", defaults.max_workers),
            placeholder_description=data.get(
                "placeholder_description", defaults.placeholder_description
            ),
            annotate_module_members=bool(
                data.get("annotate_module_members", defaults.annotate_module_members)
            ),
            annotate_module_class=bool(
                data.get("annotate_module_class", defaults.annotate_module_class)
            ),
            validate_syntax=bool(data.get("validate_syntax", defaults.validate_syntax)),
            log_level=data.get("log_level", defaults.log_level),
        )
        logger.debug("Created configuration from dictionary")
        return config


def load_config(file_path: Path) -> AnnotatorConfig:
    """Load and validate a configuration from a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If JSON is invalid or validation fails
    """
    file_path = Path(file_path)
    if not file_path.exists():
        logger.error(f"Configuration file not found: {file_path}")
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("top-level JSON value must be an object")
        config = AnnotatorConfig.from_dict(data)
        config.validate()
        logger.debug(f"Configuration loaded from {file_path}")
        return config
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in configuration file {file_path}: {e}")
        raise ValueError(f"Invalid JSON format in configuration file: {e}")
    except ValueError as e:
        logger.error(f"Validation failed for configuration from {file_path}: {e}")
        raise ValueError(f"Configuration validation failed: {e}")
