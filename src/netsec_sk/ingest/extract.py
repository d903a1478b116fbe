"""Safe extraction of gzip-compressed TSF tar archives."""
import logging
import os
import posixpath
import shutil
import tarfile
from pathlib import Path

from ..utils.logging_config import timed

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".tgz", ".tar.gz")


class UnsafeArchivePathError(Exception):
    """Raised for archive members that would escape the extraction root."""
    pass


class UnsupportedArchiveError(Exception):
    """Raised for inputs that are not gzip tar archives."""
    pass


def is_supported_archive(path) -> bool:
    return str(path).endswith(SUPPORTED_SUFFIXES)


def safe_extract_target(extract_root: Path, member_name: str) -> Path:
    """
    Resolve an archive member name to a path under extract_root.

    "." and "./" resolve to the root itself.

    Raises:
        UnsafeArchivePathError: For empty, absolute or escaping names
    """
    stripped = member_name.strip()
    if not stripped:
        raise UnsafeArchivePathError(f"unsafe archive entry path: {member_name!r}")

    clean = posixpath.normpath(stripped.replace("\\", "/"))
    if clean == ".":
        return Path(extract_root)
    if clean.startswith("/") or os.path.isabs(clean):
        raise UnsafeArchivePathError(f"unsafe archive entry path: {member_name!r}")
    if clean == ".." or clean.startswith("../"):
        raise UnsafeArchivePathError(f"unsafe archive entry path: {member_name!r}")

    root = os.path.abspath(extract_root)
    target = os.path.abspath(os.path.join(root, clean))
    rel = os.path.relpath(target, root)
    if rel == ".." or rel.startswith(".." + os.sep):
        raise UnsafeArchivePathError(f"unsafe archive entry path: {member_name!r}")
    return Path(target)


@timed("extract")
def extract_archive(archive_path: Path, extract_root: Path) -> None:
    """
    Extract a .tgz/.tar.gz archive into extract_root.

    Directories and regular files are materialized; symlinks and hard links
    abort the extraction; other member types are skipped. Files written
    before an error are left in place for the caller to discard.

    Raises:
        UnsupportedArchiveError: If the file name has an unsupported suffix
        UnsafeArchivePathError: On path traversal or link members
        tarfile.TarError, OSError: On corrupt archives or IO failures
    """
    if not is_supported_archive(archive_path):
        raise UnsupportedArchiveError(f"unsupported archive type: {archive_path}")

    with tarfile.open(archive_path, mode="r:gz") as tar:
        for member in tar:
            target = safe_extract_target(extract_root, member.name)

            if member.issym() or member.islnk():
                raise UnsafeArchivePathError(f"link entries are not allowed: {member.name!r}")

            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
            elif member.isreg():
                target.parent.mkdir(parents=True, exist_ok=True)
                src = tar.extractfile(member)
                if src is None:
                    continue
                with src, open(target, "wb") as out:
                    shutil.copyfileobj(src, out)
            else:
                logger.debug(f"Skipping non-file archive member {member.name!r}")
