"""
Utility modules for logging and module-path handling.

This package provides:
- Logging infrastructure with console and rotating file output
- Conversion between Lua file paths and ``require()`` module names

Examples:
    >>> from lua_annotator.utils import setup_logger, module_name_for_path
    >>> logger = setup_logger("lua_annotator")
    >>> module_name_for_path("lua/plugin/init.lua", "lua")
    'plugin'
"""

from .path_utils import (
    PathLike,
    LUA_EXTENSIONS,
    normalize_path,
    ensure_directory,
    is_lua_file,
    normalize_require_name,
    module_name_for_path,
    require_name_matches,
)

from .logger import (
    ROOT_LOGGER_NAME,
    setup_logger,
    get_logger,
    set_log_level,
    add_file_handler,
    add_console_handler,
    VALID_LOG_LEVELS,
)

__all__ = [
    # Path utilities
    "PathLike",
    "LUA_EXTENSIONS",
    "normalize_path",
    "ensure_directory",
    "is_lua_file",
    "normalize_require_name",
    "module_name_for_path",
    "require_name_matches",
    # Logger
    "ROOT_LOGGER_NAME",
    "setup_logger",
    "get_logger",
    "set_log_level",
    "add_file_handler",
    "add_console_handler",
    "VALID_LOG_LEVELS",
]
