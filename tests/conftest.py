"""Shared fixtures: TSF archive builder and state repositories."""
import io
import tarfile
from pathlib import Path

import pytest

from netsec_sk.repo import init_repo


FIREWALL_TSF = (
    "firewall\n"
    "serial: SER-FW-001\n"
    "hostname: fw-a\n"
    "model: PA-440\n"
    "sw_version: 11.0.0\n"
    "mgmt_ip: 10.10.10.1\n"
)


def write_tgz(path: Path, members: dict) -> Path:
    """Write a gzip tar archive of name -> text content."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, "w:gz") as tar:
        for name, content in members.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return path


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep log files and settings from leaking in from the user environment."""
    for name in (
        "NETSEC_SK_REPO",
        "NETSEC_SK_ENV",
        "NETSEC_SK_RDNS",
        "NETSEC_SK_KEEP_EXTRACT",
        "NETSEC_SK_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("NETSEC_SK_LOG_FILE", str(tmp_path / "logs" / "netsec-sk.log"))


@pytest.fixture
def tgz():
    """Factory writing a .tgz with the given members."""
    return write_tgz


@pytest.fixture
def firewall_tgz(tmp_path):
    """A firewall TSF whose capture file names the original archive."""
    return write_tgz(
        tmp_path / "inputs" / "fw.tgz",
        {"tmp/cli/PA-440_ts.tgz.txt": FIREWALL_TSF},
    )


@pytest.fixture
def state_repo(tmp_path):
    """An initialized state repository (requires git)."""
    return init_repo(tmp_path / "repo")
