"""Tests for repository bootstrap, environments and working tree safety."""
import shutil
import subprocess

import pytest

from netsec_sk.repo import (
    EnvironmentRegistry,
    GitMissingError,
    InvalidEnvIDError,
    RepoUnsafeError,
    check_safe_working_tree,
    init_repo,
    normalize_env_id,
    validate_env_id,
)
from netsec_sk.repo.layout import UnsafeEntityIDError, ensure_gitignore_entry, entity_paths

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def fake_git_init(path):
    (path / ".git").mkdir(parents=True)


def git(repo, *args):
    return subprocess.run(
        ["git", "-C", str(repo), *args],
        capture_output=True, text=True, check=True,
    )


class TestInitRepo:
    """Tests for init_repo."""

    def test_creates_base_layout(self, tmp_path):
        repo = tmp_path / "state-repo"
        calls = []

        result = init_repo(
            repo,
            look_path=lambda name: "/usr/bin/git" if name == "git" else None,
            git_init=lambda p: (calls.append(p), fake_git_init(p)),
        )

        assert result == repo.resolve()
        assert calls == [repo.resolve()]
        for sub in (".git", "envs", ".netsec-state", ".netsec-state/extract"):
            assert (repo / sub).is_dir()
        assert list((repo / "envs").iterdir()) == []
        assert (repo / ".gitignore").read_text() == ".netsec-state/\n"

    def test_fails_without_git(self, tmp_path):
        def must_not_run(path):
            raise AssertionError("git init must not run")

        with pytest.raises(GitMissingError):
            init_repo(tmp_path / "r", look_path=lambda name: None, git_init=must_not_run)

    def test_idempotent(self, tmp_path):
        repo = tmp_path / "r"
        init_repo(repo, look_path=lambda n: "git", git_init=fake_git_init)
        init_repo(repo, look_path=lambda n: "git", git_init=fake_git_init)

        assert (repo / ".gitignore").read_text() == ".netsec-state/\n"

    def test_gitignore_keeps_existing_entries(self, tmp_path):
        (tmp_path / ".gitignore").write_text("*.pyc")

        ensure_gitignore_entry(tmp_path)

        assert (tmp_path / ".gitignore").read_text() == "*.pyc\n.netsec-state/\n"

    @requires_git
    def test_real_git_init(self, tmp_path):
        repo = init_repo(tmp_path / "r")
        assert (repo / ".git").is_dir()
        assert git(repo, "config", "user.name").stdout.strip()


class TestEnvironments:
    """Tests for environment ids and the registry."""

    @pytest.mark.parametrize("raw", ["default", "a", "prod-01", "abc123", "a123456789012345678901234567890z"])
    def test_valid_ids(self, raw):
        validate_env_id(normalize_env_id(raw))

    @pytest.mark.parametrize("raw", ["", "-abc", "abc-", "a_b", "A B", "a" * 33])
    def test_invalid_ids(self, raw):
        with pytest.raises(InvalidEnvIDError):
            validate_env_id(normalize_env_id(raw))

    def test_create_and_list(self, tmp_path):
        registry = EnvironmentRegistry(tmp_path)

        assert registry.create(" Dev ") == ("dev", True)
        assert registry.create("dev") == ("dev", False)
        registry.create("prod")
        (tmp_path / "envs" / "Not_Valid").mkdir()

        assert registry.list() == ["dev", "prod"]
        for sub in ("state", "exports", "overrides"):
            assert (tmp_path / "envs" / "dev" / sub).is_dir()

    def test_create_invalid(self, tmp_path):
        with pytest.raises(InvalidEnvIDError):
            EnvironmentRegistry(tmp_path).create("bad_id")
        assert not (tmp_path / "envs").exists()

    def test_list_without_envs(self, tmp_path):
        assert EnvironmentRegistry(tmp_path).list() == []


class TestEntityPaths:
    """Tests for entity_paths."""

    def test_paths(self, tmp_path):
        latest, snapshots = entity_paths(tmp_path, "prod", "firewall", "SER-FW-001")
        assert latest == tmp_path / "envs" / "prod" / "state" / "devices" / "SER-FW-001" / "latest.json"
        assert snapshots == latest.parent / "snapshots"

    @pytest.mark.parametrize("entity_id", ["", "..", "../../escaped", "a/b", "/etc", ".git"])
    def test_rejects_unsafe_ids(self, tmp_path, entity_id):
        with pytest.raises(UnsafeEntityIDError):
            entity_paths(tmp_path, "prod", "panorama", entity_id)

    def test_rejects_symlinked_entity_dir(self, tmp_path):
        devices = tmp_path / "envs" / "prod" / "state" / "devices"
        devices.mkdir(parents=True)
        (devices / "S1").symlink_to(tmp_path)

        with pytest.raises(UnsafeEntityIDError):
            entity_paths(tmp_path, "prod", "firewall", "S1")


@requires_git
class TestWorkingTreeSafety:
    """Tests for check_safe_working_tree."""

    @pytest.fixture
    def repo(self, tmp_path):
        repo = init_repo(tmp_path / "r")
        (repo / "README.md").write_text("state\n")
        data = repo / "envs" / "prod" / "state" / "commits.ndjson"
        data.parent.mkdir(parents=True)
        data.write_text("{}\n")
        git(repo, "add", "README.md", "envs")
        git(repo, "commit", "-m", "seed")
        return repo

    def test_clean_tree(self, repo):
        check_safe_working_tree(repo)

    def test_untracked_files_allowed(self, repo):
        (repo / "fw.tgz").write_bytes(b"x")
        check_safe_working_tree(repo)

    def test_managed_changes_allowed(self, repo):
        (repo / "envs" / "prod" / "state" / "commits.ndjson").write_text("{}\n{}\n")
        check_safe_working_tree(repo)

    def test_tracked_change_outside_envs(self, repo):
        (repo / "README.md").write_text("edited\n")
        with pytest.raises(RepoUnsafeError):
            check_safe_working_tree(repo)

    @pytest.mark.parametrize("marker", ["MERGE_HEAD", "CHERRY_PICK_HEAD"])
    def test_in_progress_operation(self, repo, marker):
        (repo / ".git" / marker).write_text("0" * 40)
        with pytest.raises(RepoUnsafeError):
            check_safe_working_tree(repo)

    def test_rebase_dir(self, repo):
        (repo / ".git" / "rebase-merge").mkdir()
        with pytest.raises(RepoUnsafeError):
            check_safe_working_tree(repo)

    def test_non_git_directory_passes(self, tmp_path):
        plain = tmp_path / "plain"
        plain.mkdir()
        check_safe_working_tree(plain)
