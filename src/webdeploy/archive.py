"""
Deployment archive handling.

Extracts gzip tarballs into a scratch directory and measures build output
against the shared-hosting size budget.
"""

import logging
import math
import os
import tarfile
from pathlib import Path
from typing import Optional, Union

from webdeploy.exceptions import ArchiveError, ArchiveNotFoundError

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024
HAS_DATA_FILTER = hasattr(tarfile, "data_filter")

PathLike = Union[str, Path]


def _is_within(root: str, candidate: str) -> bool:
    return os.path.commonpath([root, candidate]) == root


def _check_member(member: tarfile.TarInfo, root: str) -> None:
    """Reject members that would land outside the extraction root."""
    if os.path.isabs(member.name):
        raise ArchiveError(f"Refusing absolute path in archive: {member.name}")

    target = os.path.realpath(os.path.join(root, member.name))
    if not _is_within(root, target):
        raise ArchiveError(f"Refusing path outside extraction directory: {member.name}")

    if member.isdev():
        raise ArchiveError(f"Refusing device file in archive: {member.name}")

    if member.issym():
        link_target = os.path.realpath(
            os.path.join(os.path.dirname(target), member.linkname)
        )
        if os.path.isabs(member.linkname) or not _is_within(root, link_target):
            raise ArchiveError(
                f"Refusing symlink pointing outside extraction directory: "
                f"{member.name} -> {member.linkname}"
            )
    elif member.islnk():
        link_target = os.path.realpath(os.path.join(root, member.linkname))
        if not _is_within(root, link_target):
            raise ArchiveError(
                f"Refusing hard link pointing outside extraction directory: "
                f"{member.name} -> {member.linkname}"
            )


def extract_archive(archive: PathLike, dest: PathLike) -> int:
    """Extract a gzip tar archive into dest.

    Args:
        archive: Path to the .tar.gz file
        dest: Directory to extract into (created if missing)

    Returns:
        Number of members extracted

    Raises:
        ArchiveNotFoundError: If the archive does not exist
        ArchiveError: If the archive is unreadable or has unsafe members
    """
    archive = Path(archive)
    dest = Path(dest)

    if not archive.is_file():
        raise ArchiveNotFoundError(f"Deployment archive not found: {archive}")

    dest.mkdir(parents=True, exist_ok=True)
    root = os.path.realpath(dest)

    try:
        with tarfile.open(archive, "r:gz") as tar:
            members = tar.getmembers()
            if HAS_DATA_FILTER:
                for member in members:
                    _check_member(member, root)
                tar.extractall(path=root, members=members, filter="data")
            else:
                # Checked one at a time so links extracted earlier are resolved
                for member in members:
                    _check_member(member, root)
                    tar.extract(member, path=root)
    except (tarfile.TarError, EOFError, OSError) as e:
        raise ArchiveError(f"Failed to extract {archive}: {e}") from e

    logger.info(f"📦 Extracted {len(members)} entries from {archive.name}")
    return len(members)


def directory_size_mb(path: PathLike) -> int:
    """Return the size of a file tree in whole megabytes, rounded up.

    A missing path counts as 0.
    """
    path = Path(path)
    if not path.exists():
        return 0

    if path.is_file():
        total = path.stat().st_size
    else:
        total = 0
        for dirpath, _dirnames, filenames in os.walk(path):
            for filename in filenames:
                try:
                    total += os.lstat(os.path.join(dirpath, filename)).st_size
                except OSError:
                    # Vanished between listing and stat
                    continue

    return math.ceil(total / BYTES_PER_MB)


def check_size_budget(size_mb: int, max_mb: int) -> Optional[str]:
    """Return a warning message when size_mb exceeds the budget."""
    if size_mb > max_mb:
        return (
            f"Deployment size ({size_mb}MB) is large for shared hosting "
            f"(budget {max_mb}MB). Consider optimizing assets or removing "
            f"unnecessary files"
        )
    return None
