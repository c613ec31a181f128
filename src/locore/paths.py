"""Workspace discovery and location keys for review threads.

A thread's location is stored as a workspace-relative POSIX path when the
file lives inside the workspace, and as the full URI string otherwise.
"""

import re
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

_URI_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


class NoWorkspaceError(Exception):
    """Raised when an operation needs a workspace and none is open."""

    pass


def find_workspace_root(start_path: Path | None = None) -> Path:
    """
    Find the workspace root by looking for a .git directory.

    Walks up the directory tree from start_path until finding a .git entry.

    Args:
        start_path: Starting directory for search (defaults to current working directory)

    Returns:
        Absolute path to workspace root

    Raises:
        NoWorkspaceError: If no .git entry is found in any parent directory
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    for parent in [current] + list(current.parents):
        if (parent / ".git").exists():
            return parent

    raise NoWorkspaceError(
        f"No workspace is open: no .git directory found in {start_path} or any parent directory."
    )


def is_uri(value: str) -> bool:
    """True for strings with a scheme prefix such as ``file://`` or ``untitled://``."""
    return bool(_URI_PATTERN.match(value))


def uri_to_path(uri: str) -> Path | None:
    """
    Map a thread URI to a filesystem path.

    Plain paths are returned as-is; ``file://`` URIs are decoded. Other
    schemes have no filesystem path and yield None.
    """
    if not is_uri(uri):
        return Path(uri)
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return None
    return Path(url2pathname(parsed.path))


def to_workspace_relative(path: Path, workspace_root: Path) -> str | None:
    """Return path relative to workspace_root with '/' separators, or None if outside."""
    if not path.is_absolute():
        path = workspace_root / path
    try:
        relative = path.resolve().relative_to(workspace_root.resolve())
    except ValueError:
        return None
    return relative.as_posix()


def location_key(uri: str, workspace_root: Path) -> str:
    """
    Compute the storage key for a thread URI.

    Args:
        uri: The live thread's URI (``file://`` URI or filesystem path)
        workspace_root: Root directory of the workspace

    Returns:
        Workspace-relative POSIX path for files inside the workspace,
        otherwise the URI string unchanged
    """
    path = uri_to_path(uri)
    if path is not None:
        relative = to_workspace_relative(path, workspace_root)
        if relative is not None:
            return relative
    return uri


def parse_stored_location(value: str, workspace_root: Path) -> str:
    """
    Turn a stored location back into a URI the UI can open.

    Args:
        value: Stored location (relative path or URI string)
        workspace_root: Root directory of the workspace

    Returns:
        The URI string for stored URIs, or a ``file://`` URI for relative paths

    Raises:
        ValueError: If the stored value cannot name a file
    """
    if not value or "\x00" in value:
        raise ValueError(f"Invalid stored location: {value!r}")
    if is_uri(value):
        return value
    return (workspace_root / value).resolve().as_uri()
