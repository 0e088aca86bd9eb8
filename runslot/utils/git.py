"""
Git helpers for the runslot CLI.

Resolves the branch and commit of a local checkout so that `runslot trigger`
can submit an event for the current working tree without arguments.
"""

import subprocess
from pathlib import Path
from typing import Optional, Union

from runslot.utils.logging import get_logger

log = get_logger("git")


class GitError(RuntimeError):
    """Raised when git cannot describe the checkout."""


def find_repo_root(start: Union[str, Path, None] = None) -> Optional[Path]:
    """
    Walk up from a directory to the first one containing a .git entry.

    :param start: Directory to start from (default: current directory).
    :return: Repository root, or None outside a repository.
    """
    path = Path(start or Path.cwd()).resolve()
    if not path.exists():
        raise GitError(f"Path '{path}' doesn't exist")

    for candidate in (path, *path.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def _rev_parse(*args: str, cwd: Union[str, Path, None] = None) -> str:
    root = find_repo_root(cwd)
    if root is None:
        raise GitError("Not inside a git repository")

    try:
        result = subprocess.run(
            ["git", "rev-parse", *args],
            cwd=root,
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as e:
        raise GitError("git executable not found") from e
    except subprocess.CalledProcessError as e:
        raise GitError(e.stderr.strip() or f"git rev-parse {' '.join(args)} failed") from e

    return result.stdout.strip()


def current_branch(cwd: Union[str, Path, None] = None) -> str:
    """
    Short name of the checked out branch.

    :raises GitError: On a detached HEAD or outside a repository.
    """
    branch = _rev_parse("--abbrev-ref", "HEAD", cwd=cwd)
    if branch == "HEAD":
        raise GitError("HEAD is detached; pass --branch explicitly")
    return branch


def current_commit(cwd: Union[str, Path, None] = None) -> str:
    """Full hash of the HEAD commit."""
    return _rev_parse("HEAD", cwd=cwd)
