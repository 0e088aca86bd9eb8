"""
Unit tests for runslot.utils.git module.
"""

import shutil
import subprocess

import pytest

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(repo, *args):
    subprocess.run(
        ["git", "-c", "user.name=runslot", "-c", "user.email=runslot@example.com", *args],
        cwd=repo, check=True, capture_output=True,
    )


@pytest.fixture
def repo(temp_dir):
    path = temp_dir / "repo"
    path.mkdir()
    _git(path, "init")
    _git(path, "commit", "--allow-empty", "-m", "initial")
    _git(path, "checkout", "-b", "feature-x")
    return path


class TestGitHelpers:
    """Tests for branch and commit resolution."""

    @pytest.mark.unit
    def test_current_branch(self, repo):
        from runslot.utils.git import current_branch

        assert current_branch(repo) == "feature-x"

    @pytest.mark.unit
    def test_current_commit(self, repo):
        from runslot.utils.git import current_commit

        expected = subprocess.run(
            ["git", "rev-parse", "HEAD"], cwd=repo, capture_output=True, text=True, check=True
        ).stdout.strip()

        assert current_commit(repo) == expected
        assert len(expected) == 40

    @pytest.mark.unit
    def test_from_subdirectory(self, repo):
        from runslot.utils.git import current_branch, find_repo_root

        sub = repo / "src" / "nested"
        sub.mkdir(parents=True)

        assert find_repo_root(sub) == repo.resolve()
        assert current_branch(sub) == "feature-x"

    @pytest.mark.unit
    def test_detached_head(self, repo):
        from runslot.utils.git import GitError, current_branch, current_commit

        _git(repo, "checkout", "--detach", current_commit(repo))

        with pytest.raises(GitError, match="detached"):
            current_branch(repo)

    @pytest.mark.unit
    def test_outside_repository(self, temp_dir):
        from runslot.utils.git import GitError, current_commit, find_repo_root

        plain = temp_dir / "plain"
        plain.mkdir()

        assert find_repo_root(plain) is None
        with pytest.raises(GitError):
            current_commit(plain)

    @pytest.mark.unit
    def test_missing_path(self, temp_dir):
        from runslot.utils.git import GitError, find_repo_root

        with pytest.raises(GitError, match="doesn't exist"):
            find_repo_root(temp_dir / "absent")
