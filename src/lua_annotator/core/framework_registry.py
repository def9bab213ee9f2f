"""Registry of versioned host-API definition files.

Framework definitions live in ``<root>/<name>/<version>.lua``. The
bundled root is ``lua_annotator/core/frameworks``; extra roots (the
user's ``~/.lua_annotator/frameworks`` when it exists, then any
``framework_dirs`` from the configuration) are scanned after it, and a
file found in a later root replaces the bundled one of the same name
and version.

A definition file may declare the Lua version its host embeds with a
``-- lua_version: X`` comment in its first lines; files without one are
taken as Lua 5.4.

Frameworks are selected as ``name`` (newest version) or
``name@version``.

Example:
    >>> registry = FrameworkRegistry()
    >>> registry.resolve("neovim@0.9.0").version
    '0.9.0'
    >>> registry.resolve("wezterm").version
    '20240222'
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from lua_annotator.utils.logger import get_logger
from lua_annotator.utils.path_utils import is_lua_file, normalize_path

logger = get_logger("lua_annotator.core.framework_registry")

BUNDLED_FRAMEWORKS_DIR = Path(__file__).parent / "frameworks"
USER_FRAMEWORKS_DIR = Path.home() / ".lua_annotator" / "frameworks"
DEFAULT_FRAMEWORK_LUA_VERSION = "5.4"

_LUA_VERSION_RE = re.compile(r"^--\s*lua_version:\s*(\S+)")
_HEADER_LINES = 5


@dataclass(frozen=True)
class FrameworkVersion:
    """One definition file of a framework.

    Attributes:
        name: Framework name (directory name)
        version: Version string (file stem)
        lua_version: Lua version the host embeds
        definition_path: Path of the definition file
    """
    name: str
    version: str
    lua_version: str
    definition_path: Path

    @property
    def qualified_name(self) -> str:
        return f"{self.name}@{self.version}"


def version_key(version: str) -> tuple:
    """Sort key that orders ``0.10.0`` after ``0.9.0``."""
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in re.split(r"[.\-]", version)
    )


def split_framework_selector(selector: str) -> tuple[str, str | None]:
    """Split ``name@version`` into its parts; the version may be absent."""
    name, sep, version = selector.partition("@")
    if not name or (sep and not version):
        raise ValueError(f"Invalid framework '{selector}'. Expected 'name' or 'name@version'")
    return name, version or None


def _read_lua_version(path: Path) -> str:
    with open(path, "r", encoding="utf-8") as f:
        for _ in range(_HEADER_LINES):
            line = f.readline()
            if not line:
                break
            match = _LUA_VERSION_RE.match(line.strip())
            if match:
                return match.group(1)
    return DEFAULT_FRAMEWORK_LUA_VERSION


class FrameworkRegistry:
    """Index of the framework definition files found on disk."""

    def __init__(self, extra_dirs: Iterable[Path | str] = ()) -> None:
        self.search_dirs: list[Path] = [BUNDLED_FRAMEWORKS_DIR]
        if USER_FRAMEWORKS_DIR.is_dir():
            self.search_dirs.append(USER_FRAMEWORKS_DIR)
        self.search_dirs.extend(normalize_path(d) for d in extra_dirs)
        self._frameworks: dict[str, dict[str, FrameworkVersion]] = {}
        for root in self.search_dirs:
            self._scan(root)
        logger.debug(
            f"Framework registry: {sum(len(v) for v in self._frameworks.values())} "
            f"definition files in {len(self.search_dirs)} directories"
        )

    def _scan(self, root: Path) -> None:
        if not root.is_dir():
            logger.warning(f"Framework directory not found: {root}")
            return
        for framework_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            for path in sorted(framework_dir.iterdir()):
                if not path.is_file() or not is_lua_file(path):
                    continue
                entry = FrameworkVersion(
                    name=framework_dir.name,
                    version=path.stem,
                    lua_version=_read_lua_version(path),
                    definition_path=path,
                )
                versions = self._frameworks.setdefault(entry.name, {})
                if entry.version in versions:
                    previous = versions[entry.version].definition_path
                    logger.debug(f"{entry.qualified_name} from {path} overrides {previous}")
                versions[entry.version] = entry

    def names(self) -> list[str]:
        return sorted(self._frameworks)

    def versions(self, name: str) -> list[str]:
        """Known versions of a framework, oldest first."""
        return sorted(self._frameworks.get(name, {}), key=version_key)

    def latest_version(self, name: str) -> str | None:
        versions = self.versions(name)
        return versions[-1] if versions else None

    def get(self, name: str, version: str | None = None) -> FrameworkVersion:
        """Look up one definition file; ``version=None`` picks the newest.

        Raises:
            ValueError: If the framework or version is unknown
        """
        if name not in self._frameworks:
            raise ValueError(f"Unknown framework '{name}'. Valid frameworks: {self.names()}")
        if version is None:
            version = self.latest_version(name)
        entry = self._frameworks[name].get(version)
        if entry is None:
            raise ValueError(
                f"Unknown version '{version}' of framework '{name}'. "
                f"Available versions: {self.versions(name)}"
            )
        return entry

    def resolve(self, selector: str) -> FrameworkVersion:
        """Look up ``name`` or ``name@version``."""
        name, version = split_framework_selector(selector)
        return self.get(name, version)

    def __contains__(self, selector: str) -> bool:
        try:
            self.resolve(selector)
        except ValueError:
            return False
        return True
