"""Tests for workspace discovery and location keys."""

from pathlib import Path

import pytest

from locore.paths import (
    NoWorkspaceError,
    find_workspace_root,
    is_uri,
    location_key,
    parse_stored_location,
    to_workspace_relative,
    uri_to_path,
)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    (root / ".git").mkdir(parents=True)
    (root / "src" / "pkg").mkdir(parents=True)
    return root.resolve()


class TestFindWorkspaceRoot:
    def test_finds_root_from_nested_dir(self, workspace: Path) -> None:
        assert find_workspace_root(workspace / "src" / "pkg") == workspace

    def test_defaults_to_cwd(self, workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(workspace / "src")
        assert find_workspace_root() == workspace

    def test_git_file_counts(self, tmp_path: Path) -> None:
        # Worktrees and submodules have a .git file instead of a directory
        root = tmp_path / "worktree"
        root.mkdir()
        (root / ".git").write_text("gitdir: /elsewhere\n")
        assert find_workspace_root(root) == root.resolve()

    def test_no_workspace(self, tmp_path: Path) -> None:
        with pytest.raises(NoWorkspaceError, match="No workspace is open"):
            find_workspace_root(tmp_path)


def test_is_uri() -> None:
    assert is_uri("file:///tmp/a.py")
    assert is_uri("untitled://Untitled-1")
    assert not is_uri("src/a.py")
    assert not is_uri("/abs/a.py")


class TestUriToPath:
    def test_file_uri_decoded(self) -> None:
        assert uri_to_path("file:///tmp/my%20file.py") == Path("/tmp/my file.py")

    def test_plain_path_passes_through(self) -> None:
        assert uri_to_path("src/a.py") == Path("src/a.py")

    def test_other_scheme_has_no_path(self) -> None:
        assert uri_to_path("untitled://Untitled-1") is None


class TestLocationKey:
    def test_inside_workspace_is_relative(self, workspace: Path) -> None:
        uri = (workspace / "src" / "pkg" / "mod.py").as_uri()
        assert location_key(uri, workspace) == "src/pkg/mod.py"

    def test_outside_workspace_keeps_uri(self, workspace: Path, tmp_path: Path) -> None:
        uri = (tmp_path / "elsewhere.py").resolve().as_uri()
        assert location_key(uri, workspace) == uri

    def test_non_file_scheme_keeps_uri(self, workspace: Path) -> None:
        assert location_key("untitled://Untitled-1", workspace) == "untitled://Untitled-1"

    def test_relative_path_is_normalized(self, workspace: Path) -> None:
        assert location_key("src/../src/a.py", workspace) == "src/a.py"

    def test_to_workspace_relative_outside(self, workspace: Path) -> None:
        assert to_workspace_relative(workspace.parent / "x.py", workspace) is None


class TestParseStoredLocation:
    def test_relative_becomes_file_uri(self, workspace: Path) -> None:
        assert parse_stored_location("src/a.py", workspace) == (workspace / "src" / "a.py").as_uri()

    def test_uri_returned_as_is(self, workspace: Path) -> None:
        assert parse_stored_location("untitled://Untitled-1", workspace) == "untitled://Untitled-1"

    def test_round_trip_with_location_key(self, workspace: Path) -> None:
        uri = (workspace / "src" / "pkg" / "mod.py").as_uri()
        assert parse_stored_location(location_key(uri, workspace), workspace) == uri

    @pytest.mark.parametrize("value", ["", "bad\x00name"])
    def test_invalid_location(self, workspace: Path, value: str) -> None:
        with pytest.raises(ValueError, match="Invalid stored location"):
            parse_stored_location(value, workspace)
