"""Tests for the versioned framework registry.

This test suite covers:
- Discovery of the bundled definition files
- Newest-version selection and ``name@version`` pinning
- Extra definition directories and overrides
- Lua version headers
"""

import pytest

from lua_annotator.core import framework_registry
from lua_annotator.core.framework_registry import (
    BUNDLED_FRAMEWORKS_DIR,
    FrameworkRegistry,
    split_framework_selector,
    version_key,
)


@pytest.fixture
def registry(monkeypatch, tmp_path):
    monkeypatch.setattr(framework_registry, "USER_FRAMEWORKS_DIR", tmp_path / "no-user-dir")
    return FrameworkRegistry()


@pytest.fixture
def extra_dir(tmp_path):
    root = tmp_path / "frameworks"
    (root / "neovim").mkdir(parents=True)
    (root / "neovim" / "0.11.0.lua").write_text(
        "---@meta\n-- lua_version: 5.1\n\nvim = {}\n", encoding="utf-8"
    )
    (root / "awesome").mkdir()
    (root / "awesome" / "4.3.lua").write_text("awesome = {}\n", encoding="utf-8")
    return root


# ============================================================================
# Test Class: TestBundled
# ============================================================================


class TestBundled:
    """Test the definition files shipped with the package."""

    def test_names(self, registry):
        assert registry.names() == ["love2d", "neovim", "wezterm", "yazi"]

    def test_versions_are_ordered(self, registry):
        assert registry.versions("neovim") == ["0.9.0", "0.10.0"]
        assert registry.versions("wezterm") == ["20230712", "20240222"]

    def test_latest_version(self, registry):
        assert registry.latest_version("neovim") == "0.10.0"
        assert registry.latest_version("roblox") is None

    def test_lua_version_header(self, registry):
        assert registry.get("love2d").lua_version == "5.1"
        assert registry.get("wezterm").lua_version == "5.4"

    def test_definition_path(self, registry):
        entry = registry.resolve("yazi@0.1.5")
        assert entry.definition_path == BUNDLED_FRAMEWORKS_DIR / "yazi" / "0.1.5.lua"
        assert entry.qualified_name == "yazi@0.1.5"


# ============================================================================
# Test Class: TestResolve
# ============================================================================


class TestResolve:
    """Test ``name`` and ``name@version`` lookup."""

    def test_bare_name_picks_newest(self, registry):
        assert registry.resolve("neovim").version == "0.10.0"

    def test_pinned_version(self, registry):
        assert registry.resolve("neovim@0.9.0").version == "0.9.0"

    def test_unknown_framework(self, registry):
        with pytest.raises(ValueError, match="Unknown framework 'roblox'"):
            registry.resolve("roblox")

    def test_unknown_version(self, registry):
        with pytest.raises(ValueError, match="Available versions: \\['0.9.0', '0.10.0'\\]"):
            registry.resolve("neovim@0.8.0")

    @pytest.mark.parametrize("selector", ["", "@0.9.0", "neovim@"])
    def test_malformed_selector(self, selector):
        with pytest.raises(ValueError, match="Invalid framework"):
            split_framework_selector(selector)

    def test_contains(self, registry):
        assert "love2d@11.5" in registry
        assert "love2d@0.1" not in registry

    def test_version_key(self):
        assert sorted(["0.10.0", "0.9.0", "0.9.1"], key=version_key) == ["0.9.0", "0.9.1", "0.10.0"]


# ============================================================================
# Test Class: TestExtraDirectories
# ============================================================================


class TestExtraDirectories:
    """Test user-supplied definition directories."""

    def test_new_version_and_framework(self, monkeypatch, tmp_path, extra_dir):
        monkeypatch.setattr(framework_registry, "USER_FRAMEWORKS_DIR", tmp_path / "no-user-dir")
        registry = FrameworkRegistry([extra_dir])
        assert registry.resolve("neovim").version == "0.11.0"
        assert registry.get("awesome").lua_version == "5.4"

    def test_later_directory_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setattr(framework_registry, "USER_FRAMEWORKS_DIR", tmp_path / "no-user-dir")
        root = tmp_path / "override"
        (root / "wezterm").mkdir(parents=True)
        override = root / "wezterm" / "20240222.lua"
        override.write_text("wezterm = {}\n", encoding="utf-8")
        registry = FrameworkRegistry([root])
        assert registry.get("wezterm", "20240222").definition_path == override.resolve()

    def test_non_lua_files_are_skipped(self, monkeypatch, tmp_path, extra_dir):
        monkeypatch.setattr(framework_registry, "USER_FRAMEWORKS_DIR", tmp_path / "no-user-dir")
        (extra_dir / "awesome" / "README.md").write_text("notes\n", encoding="utf-8")
        registry = FrameworkRegistry([extra_dir])
        assert registry.versions("awesome") == ["4.3"]

    def test_home_relative_directory(self, monkeypatch, tmp_path, extra_dir):
        monkeypatch.setattr(framework_registry, "USER_FRAMEWORKS_DIR", tmp_path / "no-user-dir")
        monkeypatch.setenv("HOME", str(tmp_path))
        registry = FrameworkRegistry(["~/frameworks"])
        assert registry.search_dirs[-1] == extra_dir.resolve()
        assert "awesome" in registry.names()

    def test_user_directory(self, monkeypatch, extra_dir):
        monkeypatch.setattr(framework_registry, "USER_FRAMEWORKS_DIR", extra_dir)
        registry = FrameworkRegistry()
        assert extra_dir in registry.search_dirs
        assert "awesome" in registry.names()

    def test_missing_directory_warns(self, monkeypatch, tmp_path, caplog):
        monkeypatch.setattr(framework_registry, "USER_FRAMEWORKS_DIR", tmp_path / "no-user-dir")
        FrameworkRegistry([tmp_path / "absent"])
        assert any("Framework directory not found" in r.getMessage() for r in caplog.records)
