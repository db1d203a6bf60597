"""
Whole-directory backup of the hosting directory.

The backup is taken before a deployment overwrites anything and is copied
back when the deployment or its verification fails.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def is_non_empty_dir(path: PathLike) -> bool:
    path = Path(path)
    return path.is_dir() and any(path.iterdir())


def clear_directory(path: PathLike) -> None:
    """Remove every entry inside path, dotfiles included, keeping path itself."""
    path = Path(path)
    for entry in path.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()


def copy_tree_contents(src: PathLike, dst: PathLike) -> int:
    """Copy the contents of src into dst, dotfiles included.

    Existing files in dst are overwritten. Returns the number of top-level
    entries copied.
    """
    src = Path(src)
    dst = Path(dst)
    dst.mkdir(parents=True, exist_ok=True)

    copied = 0
    for entry in src.iterdir():
        target = dst / entry.name
        if entry.is_dir() and not entry.is_symlink():
            shutil.copytree(entry, target, symlinks=True, dirs_exist_ok=True)
        else:
            if target.is_symlink() or target.exists():
                if target.is_dir() and not target.is_symlink():
                    shutil.rmtree(target)
                else:
                    target.unlink()
            shutil.copy2(entry, target, follow_symlinks=False)
        copied += 1
    return copied


class BackupManager:
    """Manages the single rollback backup of the hosting directory."""

    def __init__(self, deploy_dir: PathLike, backup_dir: PathLike):
        self.deploy_dir = Path(deploy_dir)
        self.backup_dir = Path(backup_dir)

    def has_backup(self) -> bool:
        """Check if a usable backup exists."""
        return self.backup_dir.is_dir()

    def remove_old_backup(self) -> bool:
        """Delete the previous backup. Returns True if one was removed."""
        if self.backup_dir.is_dir():
            shutil.rmtree(self.backup_dir)
            logger.info(f"🧹 Removed old backup: {self.backup_dir}")
            return True
        return False

    def create_backup(self) -> bool:
        """Copy the hosting directory to the backup location.

        Nothing is copied when the hosting directory is missing or empty.

        Returns:
            True if a backup was created
        """
        if not is_non_empty_dir(self.deploy_dir):
            logger.info(f"No existing deployment in {self.deploy_dir}, skipping backup")
            return False

        if self.backup_dir.exists():
            shutil.rmtree(self.backup_dir)

        shutil.copytree(self.deploy_dir, self.backup_dir, symlinks=True)
        logger.info(f"💾 Created backup of current deployment: {self.backup_dir}")
        return True

    def restore(self) -> bool:
        """Replace the hosting directory contents with the backup.

        Returns:
            False if there is no backup to restore from
        """
        if not self.has_backup():
            logger.warning("⚠️ No backup available for rollback")
            return False

        if self.deploy_dir.is_dir():
            clear_directory(self.deploy_dir)
        else:
            self.deploy_dir.mkdir(parents=True)

        copy_tree_contents(self.backup_dir, self.deploy_dir)
        logger.info(f"🔄 Restored {self.deploy_dir} from {self.backup_dir}")
        return True

    def describe(self) -> dict:
        """Summary of the backup for status output."""
        entries = 0
        if self.has_backup():
            for _dirpath, dirnames, filenames in os.walk(self.backup_dir):
                entries += len(dirnames) + len(filenames)
        return {
            "backup_dir": str(self.backup_dir),
            "exists": self.has_backup(),
            "entries": entries,
        }
