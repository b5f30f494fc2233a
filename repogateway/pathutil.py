"""Helpers for comparing and splitting repository lease paths."""

from __future__ import annotations


def check_path_overlap(path1: str, path2: str) -> bool:
    """Return True if one path lies inside the other, comparing whole components.

    A single leading slash is ignored; an empty path overlaps with everything.
    """
    path1 = path1.removeprefix("/")
    path2 = path2.removeprefix("/")

    if not path1 or not path2:
        return True

    shorter, longer = sorted((path1.split("/"), path2.split("/")), key=len)
    return longer[: len(shorter)] == shorter


def split_lease_path(lease_path: str) -> tuple[str, str]:
    """Split ``<REPO_NAME>/<SUBPATH>`` into the repository name and the subpath.

    The subpath keeps its leading slash. Raises ValueError for malformed input.
    """
    if lease_path.startswith("/"):
        raise ValueError("input has leading slash")

    repo_name, separator, _ = lease_path.partition("/")
    if not separator:
        raise ValueError("missing repository name or subpath")

    if repo_name.count(".") < 2:
        raise ValueError("input does not start with a FQDN")

    return repo_name, lease_path[len(repo_name):]