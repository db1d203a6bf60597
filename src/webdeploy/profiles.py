"""
Deployment profiles.

A profile describes what a build archive must contain and how it is laid out
on the host: the static export profile serves files straight from the hosting
directory, the standalone profile ships a Node server that the launcher runs.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Tuple, Union

from webdeploy.exceptions import ProfileDetectionError

logger = logging.getLogger(__name__)

DIR_MODE = 0o755
READ_ONLY_FILE_MODE = 0o644
EXECUTABLE_FILE_MODE = 0o755


@dataclass(frozen=True)
class DeploymentProfile:
    """Static description of one deployment style."""
    name: str
    description: str
    required_files: Tuple[str, ...]
    optional_files: Tuple[str, ...] = ()
    file_mode: int = READ_ONLY_FILE_MODE
    # Glob patterns forced to READ_ONLY_FILE_MODE regardless of file_mode
    read_only_patterns: Tuple[str, ...] = ()
    writes_launcher: bool = False
    can_start: bool = False
    labels: Dict[str, str] = field(default_factory=dict)


STATIC = DeploymentProfile(
    name="static",
    description="Static export served directly by the web server",
    required_files=("index.html",),
    optional_files=(".htaccess",),
    file_mode=READ_ONLY_FILE_MODE,
    labels={
        "index.html": "Main application file",
        ".htaccess": "Server configuration",
    },
)

STANDALONE = DeploymentProfile(
    name="standalone",
    description="Standalone Node.js server build",
    required_files=("server.js",),
    optional_files=("package.json",),
    file_mode=EXECUTABLE_FILE_MODE,
    read_only_patterns=("*.js", "*.json"),
    writes_launcher=True,
    can_start=True,
    labels={
        "server.js": "Server application",
        "package.json": "Package configuration",
    },
)

PROFILES = {profile.name: profile for profile in (STATIC, STANDALONE)}


def detect_profile(tree: Union[str, Path]) -> DeploymentProfile:
    """Pick the profile matching an extracted build tree.

    A server entry point wins over an HTML index, since standalone builds
    also carry static assets.
    """
    tree = Path(tree)
    if (tree / "server.js").is_file():
        logger.info("🔍 Detected standalone server build")
        return STANDALONE
    if (tree / "index.html").is_file():
        logger.info("🔍 Detected static export build")
        return STATIC
    raise ProfileDetectionError(
        f"Cannot detect deployment profile: neither server.js nor index.html found in {tree}"
    )


def get_profile(name: str, tree: Union[str, Path, None] = None) -> DeploymentProfile:
    """Resolve a profile by name; 'auto' inspects tree."""
    name = (name or "auto").lower()
    if name == "auto":
        if tree is None:
            raise ProfileDetectionError("Profile 'auto' needs a build tree to inspect")
        return detect_profile(tree)

    try:
        return PROFILES[name]
    except KeyError:
        raise ProfileDetectionError(
            f"Unknown deployment profile: {name}. Must be one of {sorted(PROFILES)}"
        ) from None
