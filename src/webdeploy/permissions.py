"""Permission normalisation for deployed trees."""

import fnmatch
import logging
import os
from pathlib import Path
from typing import Union

from webdeploy.profiles import DeploymentProfile, DIR_MODE, READ_ONLY_FILE_MODE

logger = logging.getLogger(__name__)


def file_mode_for(name: str, profile: DeploymentProfile) -> int:
    """Mode a regular file named name receives under profile."""
    for pattern in profile.read_only_patterns:
        if fnmatch.fnmatch(name, pattern):
            return READ_ONLY_FILE_MODE
    return profile.file_mode


def apply_permissions(root: Union[str, Path], profile: DeploymentProfile) -> int:
    """Set directory and file modes below root according to profile.

    Symlinks are left alone. Returns the number of entries changed.
    """
    root = Path(root)
    changed = 0

    os.chmod(root, DIR_MODE)
    changed += 1

    for dirpath, dirnames, filenames in os.walk(root):
        for dirname in dirnames:
            path = os.path.join(dirpath, dirname)
            if os.path.islink(path):
                continue
            os.chmod(path, DIR_MODE)
            changed += 1
        for filename in filenames:
            path = os.path.join(dirpath, filename)
            if os.path.islink(path):
                continue
            os.chmod(path, file_mode_for(filename, profile))
            changed += 1

    logger.info(f"🔧 Permissions set on {changed} entries ({profile.name} profile)")
    return changed
