"""
Path utilities for mapping Lua source paths to module names.

This module converts between file paths and the dotted names used in
``require()`` calls. It never touches the file system except in
``normalize_path`` and ``ensure_directory``; file discovery and reading
belong to the caller.

Examples:
    >>> from lua_annotator.utils.path_utils import module_name_for_path
    >>> module_name_for_path(Path("/project/lib/util/strings.lua"), Path("/project"))
    'lib.util.strings'
    >>> normalize_require_name("lib/util/strings")
    'lib.util.strings'
"""

from __future__ import annotations

from pathlib import PurePath, Path
from typing import Union

# Type alias for path-like objects
PathLike = Union[str, PurePath]

LUA_EXTENSIONS = (".lua", ".luau")

# Packages may be implemented by an init file inside the package directory
PACKAGE_INIT_STEM = "init"


def normalize_path(path: PathLike) -> Path:
    """
    Convert a string or Path object to a normalized absolute Path.

    Args:
        path: A file system path as string or Path object.

    Returns:
        Normalized absolute Path object.

    Raises:
        ValueError: If path is empty or None.

    Examples:
        >>> normalize_path("~/projects/plugin/init.lua")
        PosixPath('/home/user/projects/plugin/init.lua')
    """
    if path is None or (isinstance(path, str) and not path.strip()):
        raise ValueError("Path cannot be None or empty")

    return Path(path).expanduser().resolve()


def ensure_directory(path: Path) -> Path:
    """
    Create directory if it doesn't exist, return Path.

    Args:
        path: Directory path to create.

    Returns:
        The directory Path object.

    Raises:
        OSError: If directory creation fails.
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def is_lua_file(path: PathLike) -> bool:
    """
    Check whether a path names a Lua source file by its extension.

    Examples:
        >>> is_lua_file("init.lua")
        True
        >>> is_lua_file("README.md")
        False
    """
    return PurePath(path).suffix.lower() in LUA_EXTENSIONS


def normalize_require_name(name: str) -> str:
    """
    Normalize a ``require()`` argument to dotted form.

    Slashes and backslashes become dots, a trailing ``.lua`` extension and
    a trailing ``.init`` component are dropped, and leading ``./`` is
    ignored.

    Examples:
        >>> normalize_require_name("./lib/util.lua")
        'lib.util'
        >>> normalize_require_name("plugin.init")
        'plugin'
    """
    cleaned = name.strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    for ext in LUA_EXTENSIONS:
        if cleaned.lower().endswith(ext):
            cleaned = cleaned[: -len(ext)]
            break
    dotted = ".".join(part for part in cleaned.replace("/", ".").split(".") if part)
    if dotted == PACKAGE_INIT_STEM:
        return dotted
    if dotted.endswith("." + PACKAGE_INIT_STEM):
        dotted = dotted[: -len(PACKAGE_INIT_STEM) - 1]
    return dotted


def module_name_for_path(path: PathLike, root: PathLike | None = None) -> str:
    """
    Derive the dotted module name a file would be required by.

    Args:
        path: Path to the Lua source file.
        root: Optional project root; the name is made relative to it.

    Returns:
        Dotted module name (``init.lua`` resolves to its package name).

    Examples:
        >>> module_name_for_path("src/net/http.lua", "src")
        'net.http'
        >>> module_name_for_path("plugin/init.lua")
        'plugin'
    """
    pure = PurePath(path)
    if root is not None:
        try:
            pure = pure.relative_to(PurePath(root))
        except ValueError:
            pass
    parts = list(pure.parts)
    if pure.anchor and parts and parts[0] == pure.anchor:
        parts = parts[1:]
    if not parts:
        return ""
    parts[-1] = PurePath(parts[-1]).stem
    if len(parts) > 1 and parts[-1] == PACKAGE_INIT_STEM:
        parts = parts[:-1]
    return ".".join(parts)


def require_name_matches(require_name: str, module_name: str) -> bool:
    """
    Check whether a require name refers to a module name.

    The module name is usually derived from a path relative to the project
    root, while the require name is relative to a ``package.path`` entry
    that may sit deeper, so a dotted-suffix match is accepted.

    Examples:
        >>> require_name_matches("util", "lua.util")
        True
        >>> require_name_matches("til", "lua.util")
        False
    """
    wanted = normalize_require_name(require_name)
    if not wanted or not module_name:
        return False
    return module_name == wanted or module_name.endswith("." + wanted)
