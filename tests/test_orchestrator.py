"""End-to-end tests for ingest runs against a real git repository."""
import json
import shutil
from datetime import datetime, timezone

import pytest

from netsec_sk.commit import GitError, GitManager, NothingToCommitError
from netsec_sk.ingest import (
    IngestOptions,
    IngestSummary,
    LockHeldError,
    NoInputsError,
    acquire_lock,
    read_lock,
    run_ingest,
)
from netsec_sk.ingest import orchestrator
from netsec_sk.repo import InvalidEnvIDError, RepoUnsafeError
from netsec_sk.repo.layout import commit_ledger_path, ingest_log_path, lock_path
from netsec_sk.utils.audit_log import read_commit_ledger

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def read_rows(path):
    with open(path, "r", encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


def ingest(repo, *inputs, env_id="prod", **kwargs) -> IngestSummary:
    return run_ingest(IngestOptions(
        repo_path=repo,
        env_id=env_id,
        inputs=[str(p) for p in inputs],
        **kwargs,
    ))


def latest_path(repo, serial, env_id="prod", kind="devices"):
    return repo / "envs" / env_id / "state" / kind / serial / "latest.json"


class TestIngestRun:
    """Tests for run_ingest."""

    def test_commit_then_unchanged(self, state_repo, firewall_tgz, tmp_path):
        unsupported = tmp_path / "inputs" / "skip.txt"
        unsupported.write_text("not-archive")

        first = ingest(state_repo, firewall_tgz, unsupported)

        assert first.attempted == 2
        assert first.committed == 1
        assert first.parse_error_fatal == 1
        assert first.line() == (
            "Ingest complete: attempted=2 committed=1 skipped_duplicate_tsf=0 "
            "skipped_state_unchanged=0 parse_error_partial=0 parse_error_fatal=1"
        )
        assert [i.notes for i in first.issues] == ["unsupported_extension"]

        second = ingest(state_repo, firewall_tgz)

        assert second.committed == 0
        assert second.skipped_state_unchanged == 1
        assert GitManager(state_repo).commit_count() == 1

        rows = read_rows(ingest_log_path(state_repo))
        assert len(rows) == 3
        assert {r["run_id"] for r in rows[:2]} != {rows[2]["run_id"]}
        assert any(
            r["result"] == "parse_error_fatal" and r["notes"] == "unsupported_extension"
            for r in rows
        )
        committed = [r for r in rows if r["result"] == "committed"]
        assert committed[0]["tsf_id"] == "SER-FW-001|PA-440_ts.tgz"
        assert committed[0]["entity_type"] == "firewall"
        assert committed[0]["entity_id"] == "SER-FW-001"

    def test_commit_contents_and_ledger(self, state_repo, firewall_tgz):
        ingest(state_repo, firewall_tgz)

        manager = GitManager(state_repo)
        head = manager.get_history(limit=1)[0]
        assert head.message.startswith("ingest(prod): firewall/SER-FW-001 ")
        assert head.message.endswith(" SER-FW-001|PA-440_ts.tgz")

        tracked = manager._run_git("ls-files").stdout.split()
        assert "envs/prod/state/devices/SER-FW-001/latest.json" in tracked
        assert "envs/prod/state/commits.ndjson" not in tracked
        assert "envs/prod/exports/inventory.csv" in tracked
        assert not any(p.startswith(".netsec-state") for p in tracked)

        ledger = read_commit_ledger(commit_ledger_path(state_repo, "prod"))
        assert len(ledger) == 1
        entry = ledger[0]
        assert entry.git_commit == head.hash
        assert entry.tsf_original_name == "PA-440_ts.tgz"
        assert entry.changed_scope.startswith("device")
        assert "envs/prod/state/commits.ndjson" in entry.changed_paths

        latest = json.loads(latest_path(state_repo, "SER-FW-001").read_text())
        assert latest["state_sha256"] == entry.state_sha256
        assert latest["device"]["hostname"] == "fw-a"

    def test_changed_state_is_committed_again(self, state_repo, firewall_tgz, tgz, tmp_path):
        ingest(state_repo, firewall_tgz)
        updated = tgz(tmp_path / "inputs" / "fw2.tgz", {
            "tmp/cli/PA-440_ts.tgz.txt": (
                "firewall\nserial: SER-FW-001\nhostname: fw-a-renamed\n"
                "model: PA-440\nsw_version: 11.1.0\nmgmt_ip: 10.10.10.1\n"
            ),
        })

        summary = ingest(state_repo, updated)

        assert summary.committed == 1
        assert GitManager(state_repo).commit_count() == 2
        snapshots = latest_path(state_repo, "SER-FW-001").parent / "snapshots"
        assert len(list(snapshots.iterdir())) == 2
        ledger = read_commit_ledger(commit_ledger_path(state_repo, "prod"))
        assert ledger[-1].changed_scope == "device"

    def test_partial_is_persisted_not_committed(self, state_repo, tgz, tmp_path):
        archive = tgz(tmp_path / "inputs" / "partial.tgz", {
            "tmp/cli/PA-440_ts.tgz.txt": "firewall\nserial: SER-PARTIAL\n",
        })

        summary = ingest(state_repo, archive)

        assert summary.parse_error_partial == 1
        assert summary.committed == 0
        assert latest_path(state_repo, "SER-PARTIAL").exists()
        assert GitManager(state_repo).commit_count() == 0
        assert not commit_ledger_path(state_repo, "prod").exists()
        rows = read_rows(ingest_log_path(state_repo))
        assert rows[0]["result"] == "parse_error_partial"

    def test_duplicate_within_run(self, state_repo, tgz, tmp_path):
        members = {"tmp/cli/PA-440_ts.tgz.txt": "firewall\nserial: S1\nhostname: fw\nmgmt_ip: 10.0.0.1\n"}
        tgz(tmp_path / "batch" / "a.tgz", members)
        tgz(tmp_path / "batch" / "b.tgz", members)

        summary = ingest(state_repo, tmp_path / "batch")

        assert summary.attempted == 2
        assert summary.committed == 1
        assert summary.skipped_duplicate_tsf == 1
        rows = read_rows(ingest_log_path(state_repo))
        assert rows[0]["input_archive_path"].endswith("a.tgz")
        assert rows[1]["result"] == "skipped_duplicate_tsf"

    def test_fatal_parse(self, state_repo, tgz, tmp_path):
        archive = tgz(tmp_path / "inputs" / "odd.tgz", {"tmp/cli/x.txt": "unclassified\nserial: X1\n"})

        summary = ingest(state_repo, archive)

        assert summary.parse_error_fatal == 1
        assert read_rows(ingest_log_path(state_repo))[0]["notes"] == "parse_failed"

    def test_unsafe_archive_is_fatal(self, state_repo, tgz, tmp_path):
        archive = tgz(tmp_path / "inputs" / "evil.tgz", {"../../escape.txt": "x"})

        summary = ingest(state_repo, archive)

        assert summary.parse_error_fatal == 1
        assert read_rows(ingest_log_path(state_repo))[0]["notes"] == "extract_failed"
        assert not (state_repo / ".netsec-state" / "escape.txt").exists()

    def test_extract_dirs_removed(self, state_repo, firewall_tgz):
        ingest(state_repo, firewall_tgz)
        assert list((state_repo / ".netsec-state" / "extract").iterdir()) == []

    def test_keep_extract(self, state_repo, firewall_tgz):
        ingest(state_repo, firewall_tgz, keep_extract=True)

        runs = list((state_repo / ".netsec-state" / "extract").iterdir())
        assert len(runs) == 1
        kept = list(runs[0].iterdir())
        assert [p.name for p in kept] == ["001_fw.tgz"]

    def test_commit_failure_is_fatal(self, state_repo, firewall_tgz, monkeypatch):
        def broken_commit(repo_path, allowlist, subject):
            raise GitError("git commit failed: hook rejected")

        monkeypatch.setattr(orchestrator, "commit_changes", broken_commit)

        summary = ingest(state_repo, firewall_tgz)

        assert summary.parse_error_fatal == 1
        row = read_rows(ingest_log_path(state_repo))[0]
        assert row["notes"] == "commit_failed"
        assert "hook rejected" in row["error"]
        assert not commit_ledger_path(state_repo, "prod").exists()


    def test_path_like_serial_is_rejected(self, state_repo, tgz, tmp_path):
        archive = tgz(tmp_path / "inputs" / "evil.tgz", {
            "tmp/cli/PA-440_ts.tgz.txt": (
                "firewall\nserial: ../../../../../escaped\nhostname: fw\nmgmt_ip: 10.0.0.1\n"
            ),
        })

        summary = ingest(state_repo, archive)

        assert summary.parse_error_fatal == 1
        assert read_rows(ingest_log_path(state_repo))[0]["notes"] == "parse_failed"
        assert not (tmp_path / "escaped").exists()
        assert not (state_repo / "envs" / "prod" / "state" / "devices").exists()

    def test_state_persist_failure_is_fatal(self, state_repo, firewall_tgz, monkeypatch):
        def broken_persist(*args, **kwargs):
            raise OSError("read-only file system")

        monkeypatch.setattr(orchestrator, "persist_if_changed", broken_persist)

        summary = ingest(state_repo, firewall_tgz)

        assert summary.parse_error_fatal == 1
        row = read_rows(ingest_log_path(state_repo))[0]
        assert row["notes"] == "state_persist_failed"
        assert "read-only" in row["error"]
        assert GitManager(state_repo).commit_count() == 0
        assert not commit_ledger_path(state_repo, "prod").exists()

    def test_corrupt_latest_is_fatal_for_the_archive(self, state_repo, firewall_tgz):
        latest = latest_path(state_repo, "SER-FW-001")
        latest.parent.mkdir(parents=True)
        latest.write_text("[1, 2]")

        summary = ingest(state_repo, firewall_tgz)

        assert summary.attempted == 1
        assert summary.parse_error_fatal == 1
        assert read_rows(ingest_log_path(state_repo))[0]["notes"] == "state_persist_failed"
        assert latest.read_text() == "[1, 2]"

    def test_export_failure_is_fatal(self, state_repo, firewall_tgz, monkeypatch):
        def broken_export(repo_path, env_id, now=None):
            raise OSError("exports dir not writable")

        monkeypatch.setattr(orchestrator, "export_env", broken_export)

        summary = ingest(state_repo, firewall_tgz)

        assert summary.parse_error_fatal == 1
        assert summary.committed == 0
        row = read_rows(ingest_log_path(state_repo))[0]
        assert row["notes"] == "export_failed"
        assert "not writable" in row["error"]
        assert GitManager(state_repo).commit_count() == 0
        assert not commit_ledger_path(state_repo, "prod").exists()

    def test_nothing_to_commit_is_fatal(self, state_repo, firewall_tgz, monkeypatch):
        def empty_commit(repo_path, allowlist, subject):
            raise NothingToCommitError("no staged changes")

        monkeypatch.setattr(orchestrator, "commit_changes", empty_commit)

        summary = ingest(state_repo, firewall_tgz)

        assert summary.parse_error_fatal == 1
        assert read_rows(ingest_log_path(state_repo))[0]["notes"] == "nothing_to_commit"
        assert not commit_ledger_path(state_repo, "prod").exists()

    def test_ledger_append_failure_aborts_run(self, state_repo, firewall_tgz, monkeypatch):
        real_append = orchestrator.append_ndjson

        def failing_ledger(path, record):
            if path.name == "commits.ndjson":
                raise OSError("disk full")
            real_append(path, record)

        monkeypatch.setattr(orchestrator, "append_ndjson", failing_ledger)

        with pytest.raises(OSError):
            ingest(state_repo, firewall_tgz)

        rows = read_rows(ingest_log_path(state_repo))
        assert len(rows) == 1
        assert rows[0]["result"] == "parse_error_fatal"
        assert rows[0]["notes"] == "commit_ledger_append_failed"
        assert len(rows[0]["git_commit"]) == 40
        assert GitManager(state_repo).commit_count() == 1
        assert not commit_ledger_path(state_repo, "prod").exists()
        assert not lock_path(state_repo).exists()
        assert list((state_repo / ".netsec-state" / "extract").iterdir()) == []


class TestRunGuards:
    """Tests for the checks made before and around a run."""

    def test_no_inputs(self, state_repo):
        with pytest.raises(NoInputsError):
            ingest(state_repo)

    def test_lock_released_on_error(self, state_repo, firewall_tgz):
        with pytest.raises(InvalidEnvIDError):
            ingest(state_repo, firewall_tgz, env_id="Bad_Env")
        assert not lock_path(state_repo).exists()

    def test_missing_input(self, state_repo, tmp_path):
        with pytest.raises(FileNotFoundError):
            ingest(state_repo, tmp_path / "nope.tgz")
        assert not lock_path(state_repo).exists()

    def test_lock_held(self, state_repo, firewall_tgz, monkeypatch):
        started = datetime.now(timezone.utc)
        acquire_lock(state_repo, started, 4242, "ingest", None)

        class AliveInspector:
            def process_start_unix(self, pid):
                return int(started.timestamp())

        monkeypatch.setattr(orchestrator, "process_inspector", AliveInspector())

        with pytest.raises(LockHeldError):
            ingest(state_repo, firewall_tgz)
        assert read_lock(state_repo).pid == 4242
        assert not ingest_log_path(state_repo).exists()

    def test_stale_lock_warning(self, state_repo, firewall_tgz, monkeypatch):
        acquire_lock(state_repo, datetime.now(timezone.utc), 4242, "ingest", None)

        class DeadInspector:
            def process_start_unix(self, pid):
                return None

        monkeypatch.setattr(orchestrator, "process_inspector", DeadInspector())

        summary = ingest(state_repo, firewall_tgz)

        assert "stale_lock_removed" in summary.warnings
        assert summary.committed == 1

    def test_unsafe_repo(self, state_repo, firewall_tgz):
        (state_repo / ".git" / "MERGE_HEAD").write_text("0" * 40)

        with pytest.raises(RepoUnsafeError):
            ingest(state_repo, firewall_tgz)
        assert not ingest_log_path(state_repo).exists()


class TestReverseDNS:
    """Tests for rDNS enrichment during ingest."""

    def test_new_device_lookup_and_carry_over(self, state_repo, firewall_tgz, tgz, tmp_path, monkeypatch):
        calls = []

        def lookup(ip):
            calls.append(ip)
            return "fw-a.example.net"

        monkeypatch.setattr(orchestrator, "rdns_lookup", lookup)

        ingest(state_repo, firewall_tgz, enable_rdns=True)

        latest = json.loads(latest_path(state_repo, "SER-FW-001").read_text())
        reverse = latest["device"]["dns"]["reverse"]
        assert reverse["ptr_name"] == "fw-a.example.net"
        assert reverse["status"] == "ok"
        assert calls == ["10.10.10.1"]

        updated = tgz(tmp_path / "inputs" / "fw2.tgz", {
            "tmp/cli/PA-440_ts.tgz.txt": (
                "firewall\nserial: SER-FW-001\nhostname: fw-a2\nmgmt_ip: 10.10.10.1\n"
            ),
        })
        ingest(state_repo, updated, enable_rdns=True)

        latest = json.loads(latest_path(state_repo, "SER-FW-001").read_text())
        assert latest["device"]["hostname"] == "fw-a2"
        assert latest["device"]["dns"]["reverse"]["ptr_name"] == "fw-a.example.net"
        assert len(calls) == 1

    def test_disabled_by_default(self, state_repo, firewall_tgz, monkeypatch):
        def lookup(ip):
            raise AssertionError("lookup must not run")

        monkeypatch.setattr(orchestrator, "rdns_lookup", lookup)

        ingest(state_repo, firewall_tgz)

        latest = json.loads(latest_path(state_repo, "SER-FW-001").read_text())
        assert "dns" not in latest["device"]
