"""
Standalone server launcher.

Writes the start.sh launcher into a standalone deployment, runs it detached
from the deploying shell, and checks that the server survives its startup
grace period.
"""

import logging
import os
import shlex
import shutil
import signal
import subprocess
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional, Union, Dict, Any

import requests

from webdeploy.exceptions import LaunchError
from webdeploy.settings import Settings
from webdeploy.utils.decorators import retry

logger = logging.getLogger(__name__)

START_SCRIPT = "start.sh"
SERVER_ENTRYPOINT = "server.js"
VERSION_TIMEOUT_SECONDS = 10
HEALTH_TIMEOUT_SECONDS = 5

PathLike = Union[str, Path]


@dataclass
class LaunchResult:
    """Outcome of starting the standalone server."""
    pid: Optional[int]
    running: bool
    log_file: str
    node_version: Optional[str] = None
    healthy: Optional[bool] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.running and self.healthy is not False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def write_start_script(deploy_dir: PathLike, settings: Settings) -> Path:
    """Write the start.sh launcher into deploy_dir and make it executable."""
    script = Path(deploy_dir) / START_SCRIPT
    lines = ["#!/bin/bash"]
    for key, value in settings.get_environment_dict().items():
        lines.append(f"export {key}={shlex.quote(value)}")
    lines.append(f"exec {shlex.quote(settings.node_binary)} {SERVER_ENTRYPOINT}")

    script.write_text("\n".join(lines) + "\n", encoding="utf-8")
    script.chmod(0o755)
    logger.info(f"📝 Wrote launcher script: {script}")
    return script


def node_version(binary: str = "node") -> Optional[str]:
    """Return the Node.js version string, or None if Node is unavailable."""
    executable = shutil.which(binary)
    if not executable:
        return None

    try:
        result = subprocess.run(
            [executable, "--version"],
            capture_output=True,
            text=True,
            timeout=VERSION_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"⚠️ Could not query {binary} version: {e}")
        return None

    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def is_process_alive(pid: int) -> bool:
    # Reap our own exited children so zombies do not count as running
    try:
        reaped, _status = os.waitpid(pid, os.WNOHANG)
        if reaped == pid:
            return False
    except ChildProcessError:
        pass

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    return True


def read_pid(pid_file: PathLike) -> Optional[int]:
    pid_file = Path(pid_file)
    if not pid_file.is_file():
        return None
    try:
        return int(pid_file.read_text().strip())
    except ValueError:
        logger.warning(f"⚠️ Ignoring malformed PID file: {pid_file}")
        return None


def probe_health(url: str, attempts: int = 3, delay: float = 1.0) -> int:
    """GET url until it answers with a non-error status.

    Returns:
        The HTTP status code of the successful response

    Raises:
        requests.RequestException: If every attempt fails
    """
    @retry(max_attempts=attempts, delay=delay, exceptions=(requests.RequestException,))
    def _probe() -> int:
        response = requests.get(url, timeout=HEALTH_TIMEOUT_SECONDS)
        response.raise_for_status()
        return response.status_code

    return _probe()


def start_application(deploy_dir: PathLike, settings: Settings) -> LaunchResult:
    """Start the standalone server in the background.

    The launcher runs in its own session with stdout and stderr redirected to
    the application log, so it outlives the deploying process.

    Raises:
        LaunchError: If the launcher script is missing or a server recorded
            in the PID file is still running
    """
    deploy_dir = Path(deploy_dir)
    script = deploy_dir / START_SCRIPT
    log_file = deploy_dir / settings.app_log_file
    pid_file = deploy_dir / settings.pid_file

    if not script.is_file():
        raise LaunchError(f"Launcher script missing: {script}")

    running_pid = read_pid(pid_file)
    if running_pid is not None and is_process_alive(running_pid):
        raise LaunchError(
            f"Application already running with PID {running_pid}, stop it first"
        )

    version = node_version(settings.node_binary)
    if version is None:
        logger.error(f"❌ Node.js not found ({settings.node_binary})")
        return LaunchResult(
            pid=None,
            running=False,
            log_file=str(log_file),
            error="Node.js not found. Install Node.js or use a static deployment",
        )
    logger.info(f"Node.js version: {version}")

    with open(log_file, "wb") as log_handle:
        process = subprocess.Popen(
            [str(script.resolve())],
            cwd=str(deploy_dir),
            stdin=subprocess.DEVNULL,
            stdout=log_handle,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )

    pid_file.write_text(str(process.pid))
    logger.info(f"🚀 Application started with PID: {process.pid}")

    time.sleep(settings.startup_wait_seconds)

    if process.poll() is not None:
        pid_file.unlink(missing_ok=True)
        logger.error(f"❌ Application failed to start (exit code {process.returncode})")
        return LaunchResult(
            pid=process.pid,
            running=False,
            log_file=str(log_file),
            node_version=version,
            error=f"Application exited with code {process.returncode}",
        )

    result = LaunchResult(
        pid=process.pid,
        running=True,
        log_file=str(log_file),
        node_version=version,
    )

    if settings.health_check_url:
        try:
            status = probe_health(settings.health_check_url, settings.health_check_attempts)
            result.healthy = True
            logger.info(f"✅ Health check passed ({status}): {settings.health_check_url}")
        except requests.RequestException as e:
            result.healthy = False
            result.error = f"Health check failed for {settings.health_check_url}: {e}"
            logger.error(f"❌ {result.error}")

    if result.success:
        logger.info("✅ Application is running")
    return result


def stop_application(deploy_dir: PathLike, settings: Settings) -> bool:
    """Send SIGTERM to the server's process group and drop the PID file.

    Returns:
        True if a running process was signalled
    """
    pid_file = Path(deploy_dir) / settings.pid_file
    pid = read_pid(pid_file)
    if pid is None:
        logger.info("No PID file found, nothing to stop")
        return False

    stopped = terminate_process_group(pid)
    if not stopped:
        logger.warning(f"⚠️ Process {pid} is not running, removing stale PID file")
    pid_file.unlink(missing_ok=True)
    return stopped


def terminate_process_group(pid: int) -> bool:
    """Send SIGTERM to the process group led by pid.

    Returns:
        False if no such process group exists

    Raises:
        LaunchError: If the group belongs to another user
    """
    try:
        os.killpg(pid, signal.SIGTERM)
    except ProcessLookupError:
        return False
    except PermissionError as e:
        raise LaunchError(f"Not allowed to stop process {pid}: {e}") from e

    logger.info(f"🛑 Sent SIGTERM to process group {pid}")
    return True


def application_status(deploy_dir: PathLike, settings: Settings) -> Dict[str, Any]:
    """Report the recorded server PID and whether it is alive."""
    deploy_dir = Path(deploy_dir)
    pid = read_pid(deploy_dir / settings.pid_file)
    return {
        "pid": pid,
        "running": pid is not None and is_process_alive(pid),
        "log_file": str(deploy_dir / settings.app_log_file),
    }
