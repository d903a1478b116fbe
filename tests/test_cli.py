"""Tests for the netsec-sk command line."""
import json
import shutil

import pytest

from netsec_sk.cli import EXIT_CODES, AppError, build_parser, main


def run(capsys, *argv):
    code = main(list(argv))
    out, err = capsys.readouterr()
    return code, out, err


class TestParser:
    """Tests for argument parsing."""

    def test_repo_and_env_after_command(self, tmp_path):
        args = build_parser().parse_args(["devices", "--repo", str(tmp_path), "--env", "prod"])
        assert args.repo == tmp_path
        assert args.env == "prod"

    def test_repo_and_env_before_command(self, tmp_path):
        args = build_parser().parse_args(["--repo", str(tmp_path), "--env", "prod", "devices"])
        assert args.repo == tmp_path
        assert args.env == "prod"

    def test_history_commits_limit(self):
        args = build_parser().parse_args(["history", "commits", "--limit", "5"])
        assert args.history_command == "commits"
        assert args.limit == 5


class TestErrors:
    """Tests for error reporting and exit codes."""

    def test_usage_error(self, capsys):
        code, _, _ = run(capsys, "no-such-command")
        assert code == 2

    def test_app_error_exit_code(self):
        assert AppError("E_LOCK_HELD", "held").exit_code == 5
        assert AppError("E_SOMETHING_ELSE", "x").exit_code == EXIT_CODES["E_INTERNAL"]

    def test_invalid_env_id(self, capsys, tmp_path):
        code, _, err = run(capsys, "--repo", str(tmp_path), "env", "create", "Bad_Env")
        assert code == 2
        assert "ERROR E_USAGE" in err

    def test_show_missing_entity(self, capsys, tmp_path):
        code, _, err = run(capsys, "--repo", str(tmp_path), "--env", "prod", "show", "device", "S404")
        assert code == 6
        assert "ERROR E_IO" in err

    def test_show_rejects_path_like_id(self, capsys, tmp_path):
        code, out, err = run(capsys, "--repo", str(tmp_path), "--env", "prod", "show", "device", "../../..")
        assert code == 2
        assert out == ""
        assert "ERROR E_USAGE" in err

    def test_ingest_without_inputs(self, capsys, tmp_path):
        code, _, err = run(capsys, "--repo", str(tmp_path), "ingest")
        assert code == 2
        assert "ERROR E_USAGE" in err


class TestReadCommands:
    """Tests for commands that only read state."""

    def test_env_create_and_list(self, capsys, tmp_path):
        code, out, _ = run(capsys, "--repo", str(tmp_path), "env", "create", "prod")
        assert code == 0
        assert out == "Environment created: prod\n"

        _, out, _ = run(capsys, "env", "create", "prod", "--repo", str(tmp_path))
        assert out == "Environment already exists: prod\n"

        run(capsys, "--repo", str(tmp_path), "env", "create", "dev")
        _, out, _ = run(capsys, "--repo", str(tmp_path), "env", "list")
        assert out == "dev\nprod\n"

    def test_devices_empty(self, capsys, tmp_path):
        code, out, _ = run(capsys, "--repo", str(tmp_path), "--env", "prod", "devices")
        assert code == 0
        assert out == "DEVICE_ID\tHOSTNAME\tMODEL\tSW_VERSION\tMGMT_IP\n"

    def test_panorama_listing(self, capsys, tmp_path):
        latest = tmp_path / "envs" / "prod" / "state" / "panorama" / "P1" / "latest.json"
        latest.parent.mkdir(parents=True)
        latest.write_text(json.dumps({
            "panorama_instance": {"hostname": "pano", "model": "M-200", "version": "11.0.0", "mgmt_ip": "10.0.0.5"},
        }))

        code, out, _ = run(capsys, "--repo", str(tmp_path), "--env", "prod", "panorama")

        assert code == 0
        assert out.splitlines() == [
            "PANORAMA_ID\tHOSTNAME\tMODEL\tVERSION\tMGMT_IP",
            "P1\tpano\tM-200\t11.0.0\t10.0.0.5",
        ]

    def test_history_state_empty(self, capsys, tmp_path):
        code, out, _ = run(capsys, "--repo", str(tmp_path), "--env", "prod", "history", "state")
        assert code == 0
        assert out == "COMMITTED_AT_UTC\tGIT_COMMIT\tTSF_ID\tTSF_ORIGINAL_NAME\tCHANGED_SCOPE\n"


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestEndToEnd:
    """Tests for a full init, ingest and query session."""

    def test_session(self, capsys, tmp_path, firewall_tgz):
        repo = str(tmp_path / "repo")
        unsupported = tmp_path / "inputs" / "notes.txt"
        unsupported.write_text("not an archive")

        code, out, _ = run(capsys, "init", "--repo", repo)
        assert code == 0
        assert out.startswith("Initialized repository: ")

        assert run(capsys, "env", "create", "prod", "--repo", repo)[0] == 0

        code, out, _ = run(
            capsys, "--repo", repo, "--env", "prod", "ingest", str(firewall_tgz), str(unsupported)
        )
        assert code == 6
        assert out.strip() == (
            "Ingest complete: attempted=2 committed=1 skipped_duplicate_tsf=0 "
            "skipped_state_unchanged=0 parse_error_partial=0 parse_error_fatal=1"
        )

        code, out, _ = run(capsys, "--repo", repo, "--env", "prod", "ingest", str(firewall_tgz))
        assert code == 0
        assert "skipped_state_unchanged=1" in out

        code, out, _ = run(capsys, "--repo", repo, "--env", "prod", "devices")
        assert out.splitlines()[1] == "SER-FW-001\tfw-a\tPA-440\t11.0.0\t10.10.10.1"

        code, out, _ = run(capsys, "--repo", repo, "--env", "prod", "show", "device", "SER-FW-001")
        assert code == 0
        assert json.loads(out)["device"]["serial"] == "SER-FW-001"

        code, out, _ = run(capsys, "--repo", repo, "--env", "prod", "export")
        assert code == 0
        assert out == "Export complete: prod\n"

        code, out, _ = run(capsys, "--repo", repo, "--env", "prod", "topology")
        assert code == 0
        assert out.splitlines()[0] == "Topology edges: 0"

        code, out, _ = run(capsys, "--repo", repo, "--env", "prod", "history", "state")
        lines = out.splitlines()
        assert len(lines) == 2
        fields = lines[1].split("\t")
        assert fields[2:4] == ["SER-FW-001|PA-440_ts.tgz", "PA-440_ts.tgz"]
        assert fields[4].startswith("device")

        code, out, _ = run(capsys, "--repo", repo, "--env", "prod", "history", "commits")
        assert code == 0
        assert "ingest(prod): firewall/SER-FW-001" in out
